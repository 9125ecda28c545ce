from sqlalchemy import BigInteger, Column, Index, Integer, Text

from lark_relay.database import Base


class InboundMessage(Base):
    __tablename__ = "inbound_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(Text, nullable=False, unique=True)  # Lark message_id, dedup key
    chat_id = Column(Text, nullable=False)
    session_key = Column(Text, nullable=False)
    message_text = Column(Text, nullable=False)
    attachments_json = Column(Text)
    status = Column(Text, nullable=False, default="pending")  # pending, processing, completed, failed_permanent
    retries = Column(Integer, nullable=False, default=0)
    next_retry_at = Column(BigInteger)
    created_at = Column(BigInteger, nullable=False)
    updated_at = Column(BigInteger, nullable=False)
    completed_at = Column(BigInteger)
    response_text = Column(Text)
    last_error = Column(Text)

    __table_args__ = (Index("idx_inbound_status", "status", "next_retry_at"),)
