"""
Main entry point for the token metadata job worker.
"""

import signal

import structlog

from .config import settings
from .database.connection import SessionLocal
from .services.chain_tip import ChainTipService
from .services.job_worker import JobWorker
from .utils.logging import setup_logging


def main(max_iterations=None, debug=False):
    """Initialize the chain tip and run the job worker until stopped"""
    setup_logging("DEBUG" if debug else None)
    logger = structlog.get_logger()
    logger.info(
        "Starting token metadata worker",
        concurrency=settings.JOB_QUEUE_CONCURRENCY_LIMIT,
        max_retries=settings.JOB_QUEUE_MAX_RETRIES,
        strict_mode=settings.JOB_QUEUE_STRICT_MODE,
    )

    try:
        db = SessionLocal()
        try:
            ChainTipService(db).initialize()
        finally:
            db.close()

        worker = JobWorker()
        signal.signal(signal.SIGTERM, lambda signum, frame: worker.stop())
        worker.run(max_iterations=max_iterations)
    except Exception as e:
        logger.error("Unhandled exception", error=str(e))
        raise


if __name__ == "__main__":
    main()
