from sqlalchemy import BigInteger, Column, Index, Integer, Text

from lark_relay.database import Base


class OutboundMessage(Base):
    __tablename__ = "outbound_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    queue_type = Column(Text, nullable=False)  # reply, mirror
    run_id = Column(Text)
    session_key = Column(Text, nullable=False)
    chat_id = Column(Text, nullable=False)
    content = Column(Text, nullable=False)
    content_hash = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    retries = Column(Integer, nullable=False, default=0)
    next_retry_at = Column(BigInteger)
    created_at = Column(BigInteger, nullable=False)
    updated_at = Column(BigInteger, nullable=False)
    completed_at = Column(BigInteger)
    lark_message_id = Column(Text)
    last_error = Column(Text)

    __table_args__ = (
        Index("idx_outbound_status", "status", "next_retry_at"),
        Index("idx_outbound_hash", "content_hash", "chat_id", "created_at"),
    )
