"""
Chain tip tracking.

The chain tip is a single shared record: the last block height seen by chain ingestion and the
time of the last dynamic token sweep. It is created once by `initialize` and only ever changed
through the conditional updates below.
"""

from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.models.chain_tip import CHAIN_TIP_ID, ChainTip
from src.utils.exceptions import IndexerError


class ChainTipService:
    """Read and advance the chain tip record"""

    def __init__(self, db_session: Session):
        self.db = db_session
        self.logger = structlog.get_logger()

    def initialize(self) -> ChainTip:
        """Create the chain tip row if it does not exist yet."""
        tip = self.db.get(ChainTip, CHAIN_TIP_ID)
        if tip is not None:
            return tip
        try:
            self.db.add(ChainTip(id=CHAIN_TIP_ID, block_height=0))
            self.db.commit()
            self.logger.info("Chain tip initialized")
        except IntegrityError:
            # Another process created it first.
            self.db.rollback()
        return self.get()

    def get(self) -> ChainTip:
        tip = self.db.get(ChainTip, CHAIN_TIP_ID)
        if tip is None:
            raise IndexerError("Chain tip is not initialized")
        return tip

    def get_block_height(self) -> int:
        return self.get().block_height

    def advance_block_height(self, block_height: int, commit: bool = True) -> bool:
        """Move the tip forward. Heights at or behind the current tip are ignored."""
        result = self.db.execute(
            update(ChainTip)
            .where(ChainTip.id == CHAIN_TIP_ID, ChainTip.block_height < block_height)
            .values(block_height=block_height)
        )
        if commit:
            self.db.commit()
        return result.rowcount == 1

    def try_begin_dynamic_sweep(self, now: datetime, min_interval: float = 0) -> Optional[datetime]:
        """
        Take the right to run a dynamic token sweep.

        Only one caller can move `last_dynamic_token_refresh_at` away from the value it read, so
        concurrent sweepers resolve to a single winner. Returns the previous sweep time (or `now`
        for the very first sweep) when the sweep may run, `None` otherwise.
        """
        tip = self.get()
        previous = tip.last_dynamic_token_refresh_at
        if previous is not None and previous > now - timedelta(seconds=min_interval):
            return None

        if previous is None:
            seen_matches = ChainTip.last_dynamic_token_refresh_at.is_(None)
        else:
            seen_matches = ChainTip.last_dynamic_token_refresh_at == previous
        result = self.db.execute(
            update(ChainTip)
            .where(ChainTip.id == CHAIN_TIP_ID, seen_matches)
            .values(last_dynamic_token_refresh_at=now)
        )
        self.db.commit()
        if result.rowcount != 1:
            self.logger.info("Dynamic token sweep already running elsewhere")
            return None
        return previous or now
