import enum
from sqlalchemy import JSON, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from src.utils.time import utcnow
from .base import Base, value_enum


class SipNumber(enum.Enum):
    SIP_009 = "sip-009"  # Non-Fungible Tokens
    SIP_010 = "sip-010"  # Fungible Tokens
    SIP_013 = "sip-013"  # Semi-Fungible Tokens


class SmartContract(Base):
    __tablename__ = "smart_contracts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    principal = Column(String, unique=True, index=True, nullable=False)
    sip = Column(value_enum(SipNumber, "sip_number"), nullable=False, index=True)
    abi = Column(JSON, nullable=True)
    tx_id = Column(String, nullable=False)
    tx_index = Column(Integer, nullable=False, default=0)
    block_height = Column(Integer, nullable=False, index=True)
    index_block_hash = Column(String, nullable=True)
    token_uri = Column(String, nullable=True, comment="URI template returned by the contract, may contain {id}")
    token_count = Column(Integer, nullable=True, comment="Only mutable column, set once tokens are counted")
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, nullable=True)

    tokens = relationship("Token", back_populates="smart_contract", cascade="all, delete-orphan", passive_deletes=True)

    def __repr__(self):
        return f"<SmartContract(id={self.id}, principal='{self.principal}', sip='{self.sip.value}')>"
