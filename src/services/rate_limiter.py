"""
Per-host backoff ledger for outbound metadata fetches.

Rate limiting is tracked per hostname instead of per job because abuse is host scoped: one IPFS
gateway answering 429 affects every token whose metadata lives behind it.
"""

from datetime import datetime, timedelta
from typing import Optional, Set

import structlog
from sqlalchemy import func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from src.models.rate_limited_host import RateLimitedHost
from src.utils.time import utcnow


class HostRateLimiter:
    """Gate fetch attempts by hostname"""

    def __init__(self, db_session: Session):
        self.db = db_session
        self.logger = structlog.get_logger()

    def check_host(self, hostname: Optional[str], now: Optional[datetime] = None) -> bool:
        """Return True unless the host has a backoff window that has not elapsed yet."""
        if not hostname:
            return True
        now = now or utcnow()
        limited = (
            self.db.query(RateLimitedHost.id)
            .filter(RateLimitedHost.hostname == hostname, RateLimitedHost.retry_after > now)
            .first()
        )
        return limited is None

    def get_retry_after(self, hostname: str) -> Optional[datetime]:
        row = self.db.query(RateLimitedHost).filter_by(hostname=hostname).first()
        return row.retry_after if row else None

    def limited_hosts(self, now: Optional[datetime] = None) -> Set[str]:
        """All hostnames that must not be contacted right now."""
        now = now or utcnow()
        rows = self.db.query(RateLimitedHost.hostname).filter(RateLimitedHost.retry_after > now).all()
        return {row.hostname for row in rows}

    def penalize(self, hostname: str, retry_after: datetime, commit: bool = True) -> None:
        """
        Record a backoff window for a host.

        Runs as a single upsert so two workers penalizing the same host never lose an update, and an
        existing window is never shortened: the later `retry_after` wins.
        """
        dialect = self.db.get_bind().dialect.name
        values = {"hostname": hostname, "retry_after": retry_after, "created_at": utcnow()}
        if dialect == "postgresql":
            stmt = postgresql.insert(RateLimitedHost).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[RateLimitedHost.hostname],
                set_={"retry_after": func.greatest(RateLimitedHost.retry_after, stmt.excluded.retry_after)},
            )
        elif dialect == "sqlite":
            stmt = sqlite.insert(RateLimitedHost).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[RateLimitedHost.hostname],
                set_={"retry_after": func.max(RateLimitedHost.retry_after, stmt.excluded.retry_after)},
            )
        else:
            raise NotImplementedError(f"Rate limit upsert not supported for dialect {dialect}")

        self.db.execute(stmt)
        if commit:
            self.db.commit()
        self.logger.info("Host rate limited", hostname=hostname, retry_after=retry_after.isoformat())

    def penalize_for(self, hostname: str, seconds: float, commit: bool = True) -> datetime:
        retry_after = utcnow() + timedelta(seconds=seconds)
        self.penalize(hostname, retry_after, commit=commit)
        return retry_after

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete hosts whose window has elapsed."""
        now = now or utcnow()
        deleted = (
            self.db.query(RateLimitedHost)
            .filter(RateLimitedHost.retry_after <= now)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        if deleted:
            self.logger.info("Purged expired rate limited hosts", count=deleted)
        return deleted
