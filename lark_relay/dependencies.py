from fastapi import Request

from lark_relay.config import Settings
from lark_relay.services.event_parser import LarkEventIngestor
from lark_relay.services.inbound_consumer import InboundConsumer
from lark_relay.services.outbound_sender import OutboundSender
from lark_relay.services.queue_service import MessageQueue


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_queue(request: Request) -> MessageQueue:
    return request.app.state.queue


def get_ingestor(request: Request) -> LarkEventIngestor:
    return request.app.state.ingestor


def get_inbound_consumer(request: Request) -> InboundConsumer:
    return request.app.state.inbound_consumer


def get_outbound_sender(request: Request) -> OutboundSender:
    return request.app.state.outbound_sender
