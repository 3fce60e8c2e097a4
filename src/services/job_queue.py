"""
Persisted job queue for token and contract metadata jobs.

Jobs move through `pending -> queued -> done | failed`, with recoverable failures going back to
`pending` after a backoff. Claims are compare-and-swap updates so any number of workers can share
the same table; on PostgreSQL candidate rows are additionally selected with `SKIP LOCKED`.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

import structlog
from sqlalchemy import func, or_, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from src.config import settings
from src.models.job import ACTIVE_JOB_STATUSES, ContractTarget, Job, JobStatus, JobTarget, TokenTarget
from src.models.token import Token
from src.utils.exceptions import IndexerError
from src.utils.time import utcnow
from src.utils.uri import fetchable_hostname

from .error_handler import JobErrorHandler
from .rate_limiter import HostRateLimiter

_ACTIVE_STATUS_SQL = "status IN ('pending', 'queued')"


class JobQueue:
    """Enqueue, claim and settle metadata jobs"""

    def __init__(self, db_session: Session, rate_limiter: Optional[HostRateLimiter] = None):
        self.db = db_session
        self.rate_limiter = rate_limiter or HostRateLimiter(db_session)
        self.error_handler = JobErrorHandler()
        self.logger = structlog.get_logger()

    def get_job(self, job_id: int) -> Optional[Job]:
        return self.db.get(Job, job_id)

    def active_job(self, target: JobTarget) -> Optional[Job]:
        """The pending or queued job for a target, if any."""
        query = self.db.query(Job).filter(Job.status.in_(ACTIVE_JOB_STATUSES))
        if isinstance(target, TokenTarget):
            query = query.filter(Job.token_id == target.token_id, Job.smart_contract_id.is_(None))
        else:
            query = query.filter(Job.smart_contract_id == target.smart_contract_id, Job.token_id.is_(None))
        return query.first()

    def enqueue(self, target: JobTarget, commit: bool = True) -> Job:
        """
        Insert a pending job for the target unless an active one already exists.

        The insert ignores conflicts on the partial unique index over active jobs, so two callers
        racing on the same target end up sharing a single job.
        """
        existing = self.active_job(target)
        if existing is not None:
            return existing

        if isinstance(target, TokenTarget):
            values = {"token_id": target.token_id, "smart_contract_id": None}
            conflict_column, sibling = Job.token_id, "smart_contract_id"
        elif isinstance(target, ContractTarget):
            values = {"token_id": None, "smart_contract_id": target.smart_contract_id}
            conflict_column, sibling = Job.smart_contract_id, "token_id"
        else:
            raise IndexerError(f"Unknown job target: {target!r}")

        values.update(status=JobStatus.PENDING, retry_count=0, created_at=utcnow(), updated_at=None)
        insert = self._insert_for_dialect()
        stmt = (
            insert(Job)
            .values(**values)
            .on_conflict_do_nothing(
                index_elements=[conflict_column],
                index_where=text(f"{sibling} IS NULL AND {_ACTIVE_STATUS_SQL}"),
            )
        )
        result = self.db.execute(stmt)
        job = self.active_job(target)
        if job is None:
            raise IndexerError(f"Could not enqueue job for {target!r}")
        if commit:
            self.db.commit()
        if result.rowcount:
            self.logger.debug("Job enqueued", job_id=job.id, target=repr(target))
        return job

    def claim_next(self, limit: int, now: Optional[datetime] = None) -> List[Job]:
        """
        Claim up to `limit` jobs for processing, moving them to `queued`.

        Queued jobs whose claim is older than `JOB_QUEUE_CLAIM_TIMEOUT` belonged to a worker that
        died and come first, oldest claim first. Pending jobs follow in creation order once their
        backoff has elapsed. Token jobs whose URI host is rate limited are left pending untouched.

        A returned job's `updated_at` is its claim stamp. Pass it back to `complete`, `fail` or
        `release` so that only the current holder of the claim can settle the job.
        """
        if limit <= 0:
            return []
        now = now or utcnow()
        scan_size = limit * max(settings.JOB_QUEUE_CLAIM_SCAN_FACTOR, 1)
        stale_before = now - timedelta(seconds=settings.JOB_QUEUE_CLAIM_TIMEOUT)

        stale = (
            self.db.query(Job)
            .filter(Job.status == JobStatus.QUEUED, Job.updated_at <= stale_before)
            .order_by(Job.updated_at.asc(), Job.id.asc())
            .limit(scan_size)
            .with_for_update(skip_locked=True, of=Job)
            .all()
        )
        pending = (
            self.db.query(Job)
            .filter(
                Job.status == JobStatus.PENDING,
                or_(Job.updated_at.is_(None), Job.updated_at <= now),
            )
            .order_by(Job.created_at.asc(), Job.id.asc())
            .limit(scan_size)
            .with_for_update(skip_locked=True, of=Job)
            .all()
        )
        candidates = stale + pending
        blocked = self._jobs_on_limited_hosts(candidates, now)

        claimed_ids: List[int] = []
        for job in candidates:
            if len(claimed_ids) >= limit:
                break
            self._assert_valid_target(job)
            if job.id in blocked:
                continue
            if self._try_claim(job.id, job.status, job.updated_at, now):
                claimed_ids.append(job.id)
        self.db.commit()

        if not claimed_ids:
            return []
        if blocked:
            self.logger.debug("Skipped jobs on rate limited hosts", count=len(blocked))
        jobs = {job.id: job for job in self.db.query(Job).filter(Job.id.in_(claimed_ids)).all()}
        return [jobs[job_id] for job_id in claimed_ids if job_id in jobs]

    def complete(self, job_id: int, claimed_at: Optional[datetime] = None, commit: bool = True) -> bool:
        """
        Move a claimed job to `done`.

        With `claimed_at`, only the claim that set that stamp may complete the job, so a worker whose
        claim went stale and was taken over affects nothing.
        """
        result = self.db.execute(
            update(Job)
            .where(Job.id == job_id, Job.status == JobStatus.QUEUED, *self._claim_matches(claimed_at))
            .values(status=JobStatus.DONE, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if commit:
            self.db.commit()
        if result.rowcount != 1:
            self.logger.warning("Job claim no longer held when completing", job_id=job_id)
            return False
        return True

    def fail(
        self,
        job_id: int,
        permanent: bool = False,
        retry_after: Optional[float] = None,
        claimed_at: Optional[datetime] = None,
        commit: bool = True,
    ) -> JobStatus:
        """
        Record a failed attempt.

        Permanent failures, and recoverable ones once `retry_count` has reached the ceiling, end in
        `failed`. Otherwise the retry count goes up and the job returns to `pending` with its
        `updated_at` pushed into the future by an exponential backoff, which `claim_next` honors.
        A job that is no longer held under `claimed_at` is left as it is and its status returned.
        """
        job = self.db.query(Job).filter(Job.id == job_id).with_for_update().populate_existing().first()
        if job is None:
            raise IndexerError(f"Job {job_id} not found")
        self._assert_valid_target(job)

        if job.status != JobStatus.QUEUED or (claimed_at is not None and job.updated_at != claimed_at):
            self.logger.warning("Job claim no longer held when failing", job_id=job_id, status=job.status.value)
            status = job.status
            if commit:
                self.db.commit()
            return status

        now = utcnow()
        if permanent or not self.error_handler.should_retry(job.retry_count):
            job.status = JobStatus.FAILED
            job.updated_at = now
            self.logger.warning(
                "Job failed",
                job_id=job.id,
                retry_count=job.retry_count,
                permanent=permanent,
            )
        else:
            job.retry_count = job.retry_count + 1
            delay = self.error_handler.get_retry_delay(job.retry_count)
            if retry_after:
                delay = max(delay, retry_after)
            job.status = JobStatus.PENDING
            job.updated_at = now + timedelta(seconds=delay)
            self.logger.info(
                "Job scheduled for retry",
                job_id=job.id,
                retry_count=job.retry_count,
                delay=delay,
            )
        status = job.status
        if commit:
            self.db.commit()
        else:
            self.db.flush()
        return status

    def release(
        self, job_id: int, not_before: datetime, claimed_at: Optional[datetime] = None, commit: bool = True
    ) -> bool:
        """Return a claimed job to `pending` without counting an attempt."""
        result = self.db.execute(
            update(Job)
            .where(Job.id == job_id, Job.status == JobStatus.QUEUED, *self._claim_matches(claimed_at))
            .values(status=JobStatus.PENDING, updated_at=not_before)
            .execution_options(synchronize_session=False)
        )
        if commit:
            self.db.commit()
        return result.rowcount == 1

    def get_status_counts(self) -> Dict[str, int]:
        rows = self.db.query(Job.status, func.count(Job.id)).group_by(Job.status).all()
        return {status.value: count for status, count in rows}

    def _assert_valid_target(self, job: Job) -> JobTarget:
        """Raises `JobIntegrityError` for rows that target both or neither key."""
        return job.target

    def _claim_matches(self, claimed_at: Optional[datetime]) -> tuple:
        if claimed_at is None:
            return ()
        return (Job.updated_at == claimed_at,)

    def _try_claim(self, job_id: int, seen_status: JobStatus, seen_updated_at: Optional[datetime], now: datetime) -> bool:
        if seen_updated_at is None:
            updated_at_matches = Job.updated_at.is_(None)
        else:
            updated_at_matches = Job.updated_at == seen_updated_at
        result = self.db.execute(
            update(Job)
            .where(Job.id == job_id, Job.status == seen_status, updated_at_matches)
            .values(status=JobStatus.QUEUED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _jobs_on_limited_hosts(self, jobs: List[Job], now: datetime) -> set:
        token_ids = [job.token_id for job in jobs if job.token_id is not None]
        if not token_ids:
            return set()
        limited = self.rate_limiter.limited_hosts(now)
        if not limited:
            return set()
        uris = dict(self.db.query(Token.id, Token.uri).filter(Token.id.in_(token_ids)).all())
        return {
            job.id
            for job in jobs
            if job.token_id is not None and fetchable_hostname(uris.get(job.token_id)) in limited
        }

    def _insert_for_dialect(self):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert
        if dialect == "sqlite":
            return sqlite.insert
        raise NotImplementedError(f"Job enqueue not supported for dialect {dialect}")
