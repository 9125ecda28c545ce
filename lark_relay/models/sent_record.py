from sqlalchemy import BigInteger, Column, Index, Integer, Text

from lark_relay.database import Base


class SentRecord(Base):
    """Append-only ledger of delivered content, used for outbound dedup."""

    __tablename__ = "sent_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    content_hash = Column(Text, nullable=False)
    chat_id = Column(Text, nullable=False)
    lark_message_id = Column(Text)
    created_at = Column(BigInteger, nullable=False)

    __table_args__ = (Index("idx_sent_hash", "content_hash", "chat_id", "created_at"),)
