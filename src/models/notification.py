import enum
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from src.utils.time import utcnow
from .base import Base, value_enum


class UpdateMode(enum.Enum):
    STANDARD = "standard"
    FROZEN = "frozen"
    DYNAMIC = "dynamic"


class Notification(Base):
    """A SIP-019 token metadata update event. Created once per on-chain event, never updated."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    smart_contract_id = Column(
        Integer, ForeignKey("smart_contracts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    block_height = Column(Integer, nullable=False, index=True)
    index_block_hash = Column(String, nullable=False)
    tx_id = Column(String, nullable=False)
    tx_index = Column(Integer, nullable=False)
    event_index = Column(Integer, nullable=False)
    update_mode = Column(value_enum(UpdateMode, "token_update_mode"), nullable=False, default=UpdateMode.STANDARD)
    ttl = Column(Integer, nullable=True, comment="Seconds between refreshes for dynamic tokens")
    created_at = Column(DateTime, default=utcnow, nullable=False)

    smart_contract = relationship("SmartContract")

    __table_args__ = (
        UniqueConstraint(
            "smart_contract_id",
            "block_height",
            "index_block_hash",
            "tx_id",
            "tx_index",
            "event_index",
            name="notifications_unique",
        ),
    )

    @property
    def order_key(self):
        return (self.block_height, self.tx_index, self.event_index)

    def __repr__(self):
        return (
            f"<Notification(id={self.id}, block_height={self.block_height}, tx_index={self.tx_index}, "
            f"event_index={self.event_index}, update_mode='{self.update_mode.value}')>"
        )


class FrozenToken(Base):
    __tablename__ = "frozen_tokens"

    token_id = Column(Integer, ForeignKey("tokens.id", ondelete="CASCADE"), primary_key=True)
    notification_id = Column(Integer, ForeignKey("notifications.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
