"""
Error handling and recovery service for the token metadata pipeline.

This service decides what a failed job attempt means: whether the job should be retried later,
whether it failed for good, and whether the remote host needs to be backed off.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog

from src.config import settings
from src.utils.exceptions import (
    MalformedMetadata,
    MetadataSizeExceeded,
    RetryableJobError,
    TooManyRequests,
)


@dataclass
class FailureDecision:

    permanent: bool
    retry_after: Optional[float] = None
    penalize_hostname: Optional[str] = None
    penalize_seconds: Optional[float] = None


class JobErrorHandler:
    """Handle job processing errors and recovery"""

    def __init__(self):
        """Initialize the error handler"""
        self.logger = structlog.get_logger()

    def classify(self, error: Exception, context: Dict[str, Any]) -> FailureDecision:
        """
        Turn an error raised while processing a job into a retry decision.

        Args:
            error: The exception that occurred
            context: Additional context about the job

        Returns:
            FailureDecision describing the job transition and any host penalty
        """
        if isinstance(error, TooManyRequests):
            seconds = error.retry_after or settings.METADATA_RATE_LIMITED_HOST_RETRY_AFTER
            self.logger.warning(
                "Host rate limited us",
                hostname=error.hostname,
                status_code=error.status_code,
                retry_after=seconds,
                context=context,
            )
            return FailureDecision(
                permanent=False,
                retry_after=seconds,
                penalize_hostname=error.hostname or None,
                penalize_seconds=seconds,
            )

        if isinstance(error, MalformedMetadata):
            self.handle_validation_error(error, context)
            return FailureDecision(permanent=False)

        if isinstance(error, RetryableJobError):
            self.logger.warning("Recoverable job error", error=str(error), context=context)
            return FailureDecision(permanent=False, retry_after=error.retry_after)

        if isinstance(error, MetadataSizeExceeded):
            self.logger.warning("Metadata payload too large", error=str(error), context=context)
            return FailureDecision(permanent=True)

        self.logger.error("Unrecoverable job error", error=str(error), error_type=type(error).__name__, context=context)
        return FailureDecision(permanent=True)

    def handle_validation_error(self, error: Exception, context: Dict[str, Any]) -> None:
        """
        Handle metadata that was fetched but does not validate.

        Args:
            error: The exception that occurred
            context: Job that fetched the payload
        """
        self.logger.warning(
            "Metadata validation error",
            error=str(error),
            context=context,
            note="Will be retried, the remote host may fix the payload",
        )

    def should_retry(self, attempt: int) -> bool:
        """
        Determine if a job should be retried.

        Args:
            attempt: The number of attempts already made

        Returns:
            True if the job should be retried, False otherwise
        """
        if settings.JOB_QUEUE_STRICT_MODE:
            return True
        return attempt < settings.JOB_QUEUE_MAX_RETRIES

    def get_retry_delay(self, attempt: int) -> int:
        """
        Calculate the retry delay with exponential backoff.

        Args:
            attempt: The current retry attempt number (1-based)

        Returns:
            The delay in seconds
        """
        delay = settings.JOB_QUEUE_RETRY_AFTER * (2 ** (max(attempt, 1) - 1))
        return min(delay, settings.JOB_QUEUE_MAX_RETRY_AFTER)
