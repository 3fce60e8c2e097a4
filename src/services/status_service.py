from typing import Any, Dict, Optional

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from src.config import settings
from src.models.chain_tip import CHAIN_TIP_ID, ChainTip
from src.models.smart_contract import SmartContract
from src.models.token import Token

from .cache_service import CacheService
from .job_queue import JobQueue

STATUS_CACHE_PREFIX = "status"


class StatusService:
    """Aggregate counters for the status endpoint, cached in Redis for `CACHE_TTL` seconds"""

    def __init__(self, db_session: Session, cache: Optional[CacheService] = None):
        self.db = db_session
        self.cache = cache
        self.logger = structlog.get_logger()

    def get_status(self) -> Dict[str, Any]:
        tip = self.db.get(ChainTip, CHAIN_TIP_ID)
        block_height = tip.block_height if tip else None
        key = self._cache_key(block_height)

        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        status = {
            "server_version": f"token-metadata-api v{settings.SERVICE_VERSION}",
            "status": "ready",
            "chain_tip": {"block_height": block_height} if tip else None,
            "tokens": self.get_token_counts(),
            "token_contracts": self.get_contract_counts(),
            "job_queue": JobQueue(self.db).get_status_counts(),
        }
        if self.cache is not None:
            self.cache.set(key, status, settings.CACHE_TTL)
        return status

    def get_token_counts(self) -> Dict[str, int]:
        rows = self.db.query(Token.type, func.count(Token.id)).group_by(Token.type).all()
        return {token_type.value: count for token_type, count in rows}

    def get_contract_counts(self) -> Dict[str, int]:
        rows = self.db.query(SmartContract.sip, func.count(SmartContract.id)).group_by(SmartContract.sip).all()
        return {sip.value: count for sip, count in rows}

    def invalidate(self) -> None:
        if self.cache is None:
            return
        tip = self.db.get(ChainTip, CHAIN_TIP_ID)
        self.cache.delete(self._cache_key(tip.block_height if tip else None))

    def _cache_key(self, block_height: Optional[int]) -> str:
        return self.cache.generate_key(STATUS_CACHE_PREFIX, block_height) if self.cache else ""
