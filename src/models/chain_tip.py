from sqlalchemy import CheckConstraint, Column, DateTime, Integer

from .base import Base

CHAIN_TIP_ID = 1


class ChainTip(Base):
    """Single row holding the last seen block height and the last dynamic token sweep time."""

    __tablename__ = "chain_tip"

    id = Column(Integer, primary_key=True, default=CHAIN_TIP_ID)
    block_height = Column(Integer, nullable=False, default=0)
    last_dynamic_token_refresh_at = Column(DateTime, nullable=True)

    __table_args__ = (CheckConstraint(f"id = {CHAIN_TIP_ID}", name="chain_tip_one_row"),)
