"""
Job worker: claims jobs from the queue and processes them on a thread pool.

Each thread gets its own database session. Claiming is safe to run from several worker processes
at once since the queue only hands a job to whoever wins its claim update.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

import structlog
from sqlalchemy.orm import Session

from src.config import settings
from src.database.connection import SessionLocal
from src.models.job import JobStatus
from src.utils.exceptions import InvalidJobTarget, JobIntegrityError

from .job_queue import JobQueue
from .metadata_fetcher import HttpMetadataFetcher, MetadataFetcher
from .token_processor import TokenProcessor


class JobWorker:
    """Poll the job queue and run claimed jobs"""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        fetcher: Optional[MetadataFetcher] = None,
        concurrency: Optional[int] = None,
        poll_interval: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self._owns_fetcher = fetcher is None
        self.fetcher = fetcher or HttpMetadataFetcher()
        self.concurrency = concurrency or settings.JOB_QUEUE_CONCURRENCY_LIMIT
        self.poll_interval = settings.JOB_QUEUE_POLL_INTERVAL if poll_interval is None else poll_interval
        self.executor = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="job-worker")
        self.logger = structlog.get_logger()
        self._stop_event = threading.Event()

    def run(self, max_iterations: Optional[int] = None) -> None:
        """Process jobs until `stop` is called, or for `max_iterations` polls."""
        self.logger.info("Job worker started", concurrency=self.concurrency)
        iterations = 0
        try:
            while not self._stop_event.is_set():
                processed = self.run_once()
                iterations += 1
                if max_iterations is not None and iterations >= max_iterations:
                    break
                if processed == 0:
                    self._stop_event.wait(self.poll_interval)
        except KeyboardInterrupt:
            self.logger.info("Job worker interrupted by user")
        except (JobIntegrityError, InvalidJobTarget) as e:
            self.logger.error("Job worker aborting on corrupt job", error=str(e), iterations=iterations)
            raise
        finally:
            self.executor.shutdown(wait=True)
            if self._owns_fetcher:
                self.fetcher.close()
            self.logger.info("Job worker stopped", iterations=iterations)

    def run_once(self) -> int:
        """Claim one batch and process it. Returns the number of jobs processed."""
        job_ids = self._claim_batch()
        if not job_ids:
            return 0

        start = time.time()
        futures = [self.executor.submit(self.process_job, job_id) for job_id in job_ids]
        statuses: List[JobStatus] = [future.result() for future in futures]
        self.logger.info(
            "Job batch processed",
            jobs=len(job_ids),
            done=statuses.count(JobStatus.DONE),
            pending=statuses.count(JobStatus.PENDING),
            failed=statuses.count(JobStatus.FAILED),
            claims_lost=statuses.count(JobStatus.QUEUED),
            elapsed=round(time.time() - start, 3),
        )
        return len(job_ids)

    def process_job(self, job_id: int) -> JobStatus:
        db = self.session_factory()
        try:
            queue = JobQueue(db)
            job = queue.get_job(job_id)
            if job is None:
                self.logger.warning("Claimed job disappeared", job_id=job_id)
                return JobStatus.FAILED
            return TokenProcessor(db, self.fetcher, queue).process_job(job)
        except (JobIntegrityError, InvalidJobTarget) as e:
            self.logger.error("Job integrity violation", job_id=job_id, error=str(e))
            raise
        finally:
            db.close()

    def stop(self) -> None:
        self._stop_event.set()

    def _claim_batch(self) -> List[int]:
        db = self.session_factory()
        try:
            queue = JobQueue(db)
            queue.rate_limiter.purge_expired()
            return [job.id for job in queue.claim_next(self.concurrency)]
        finally:
            db.close()
