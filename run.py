"""
Runnable script for the token metadata service.
"""

import argparse
import uvicorn
from src.main import main as run_worker
from src.config import settings
import multiprocessing
import structlog

logger = structlog.get_logger()


def start_worker_process(max_iterations=None):
    """Starts the job worker in a separate process."""
    logger.info("Starting job worker process...")
    run_worker(max_iterations=max_iterations)


def start_api_server():
    """Starts the FastAPI server."""
    from src.api.main import app as api_app

    logger.info("Starting API server...")
    uvicorn.run(api_app, host=settings.API_HOST, port=settings.API_PORT)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Token metadata service")
    parser.add_argument(
        "--max-iterations", type=int, help="Stop the worker after this many queue polls"
    )
    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "--worker-only",
        action="store_true",
        help="Run only the job worker (no API server)",
    )
    group.add_argument(
        "--api-only",
        action="store_true",
        help="Run only the API server",
    )
    args = parser.parse_args()

    if args.worker_only:
        run_worker(max_iterations=args.max_iterations)
    elif args.api_only:
        start_api_server()
    else:
        worker_process = multiprocessing.Process(target=start_worker_process, args=(args.max_iterations,))
        worker_process.start()

        start_api_server()

        worker_process.join()
