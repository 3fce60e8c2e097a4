import enum
from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from src.utils.time import utcnow
from .base import Base, value_enum
from .smart_contract import SipNumber


class TokenType(enum.Enum):
    FT = "ft"
    NFT = "nft"
    SFT = "sft"

    @classmethod
    def from_sip(cls, sip: SipNumber) -> "TokenType":
        return {
            SipNumber.SIP_009: cls.NFT,
            SipNumber.SIP_010: cls.FT,
            SipNumber.SIP_013: cls.SFT,
        }[sip]


class Token(Base):
    __tablename__ = "tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    smart_contract_id = Column(
        Integer, ForeignKey("smart_contracts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type = Column(value_enum(TokenType, "token_type"), nullable=False, index=True)
    token_number = Column(BigInteger, nullable=False)

    uri = Column(String, nullable=True)
    name = Column(String, nullable=True)
    symbol = Column(String, nullable=True)
    decimals = Column(Integer, nullable=True)
    total_supply = Column(Numeric(precision=78, scale=0), nullable=True)

    update_notification_id = Column(
        Integer,
        ForeignKey("notifications.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Latest SIP-019 notification (by chain order) that targeted this token",
    )

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, nullable=True, comment="NULL until metadata is processed once")

    smart_contract = relationship("SmartContract", back_populates="tokens")
    update_notification = relationship("Notification", foreign_keys=[update_notification_id])
    metadata_records = relationship(
        "MetadataRecord", back_populates="token", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        UniqueConstraint("smart_contract_id", "token_number", name="tokens_smart_contract_id_token_number_unique"),
    )

    def is_processed(self) -> bool:
        return self.updated_at is not None

    def __repr__(self):
        return f"<Token(id={self.id}, type='{self.type.value}', token_number={self.token_number})>"
