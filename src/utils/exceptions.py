"""
Token metadata exception handling and standardized error codes
"""

from datetime import datetime
from typing import Optional


class TokenErrorCodes:
    """Standardized error codes for token metadata lookups"""

    TOKEN_NOT_FOUND = "TOKEN_NOT_FOUND"
    TOKEN_NOT_PROCESSED = "TOKEN_NOT_PROCESSED"
    LOCALE_NOT_FOUND = "LOCALE_NOT_FOUND"


class TokenException(Exception):
    """Lookup error that is surfaced to API callers."""

    status_code = 500
    error_code = "UNKNOWN_ERROR"
    default_message = "Unknown error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(f"{self.error_code}: {self.message}")


class TokenNotFound(TokenException):
    status_code = 404
    error_code = TokenErrorCodes.TOKEN_NOT_FOUND
    default_message = "Token not found"


class TokenNotProcessed(TokenException):
    status_code = 422
    error_code = TokenErrorCodes.TOKEN_NOT_PROCESSED
    default_message = "Token metadata fetch in progress"


class LocaleNotFound(TokenException):
    status_code = 422
    error_code = TokenErrorCodes.LOCALE_NOT_FOUND
    default_message = "Locale not found"


class IndexerError(Exception):

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class JobIntegrityError(IndexerError):
    """A persisted job violates the token/contract target invariant."""

    pass


class ClaimLost(IndexerError):
    """The job was reclaimed by another worker while this one was still running it."""

    pass


class InvalidJobTarget(IndexerError):
    """A job target was requested with both keys or with neither."""

    pass


class ContractNotFound(IndexerError):
    pass


class RetryableJobError(Exception):
    """
    An error raised while processing a job that may succeed if tried again later.

    `retry_after` is the minimum number of seconds to wait before the next attempt, when the
    error knows it.
    """

    def __init__(self, message: str, retry_after: Optional[float] = None):
        self.message = message
        self.retry_after = retry_after
        super().__init__(message)


class FetchTimeout(RetryableJobError):
    pass


class FetchTransportError(RetryableJobError):
    pass


class HttpStatusError(RetryableJobError):

    def __init__(self, url: str, status_code: int, retry_after: Optional[float] = None):
        self.url = url
        self.status_code = status_code
        super().__init__(f"HTTP {status_code} from {url}", retry_after=retry_after)


class TooManyRequests(HttpStatusError):
    """Remote host answered 429/503, the whole host must be backed off."""

    def __init__(self, url: str, hostname: str, status_code: int = 429, retry_after: Optional[float] = None):
        self.hostname = hostname
        super().__init__(url, status_code, retry_after=retry_after)


class HostRateLimited(RetryableJobError):

    def __init__(self, hostname: str, retry_after_at: datetime):
        self.hostname = hostname
        self.retry_after_at = retry_after_at
        super().__init__(f"Host {hostname} is rate limited until {retry_after_at.isoformat()}")


class MalformedMetadata(RetryableJobError):
    """Payload was fetched but is not valid SIP-016 metadata."""

    pass


class MetadataSizeExceeded(Exception):
    """Payload is larger than the configured limit, never retried."""

    def __init__(self, url: str, limit: int):
        self.url = url
        self.limit = limit
        super().__init__(f"Metadata at {url} exceeds {limit} bytes")
