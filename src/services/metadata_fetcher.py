"""
Metadata fetch transport.

Fetches run outside any database transaction and are bounded by `METADATA_FETCH_TIMEOUT` and
`METADATA_MAX_PAYLOAD_BYTE_SIZE`. Failures are raised as pipeline errors so the job processor can
decide between a retry, a host penalty and a permanent failure.
"""

import base64
import json
import re
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional, Protocol
from urllib.parse import unquote, urlparse

import httpx
import structlog

from src.config import settings
from src.utils.exceptions import (
    FetchTimeout,
    FetchTransportError,
    HttpStatusError,
    MalformedMetadata,
    MetadataSizeExceeded,
    TooManyRequests,
)
from src.utils.time import to_epoch, utcnow
from src.utils.uri import get_fetchable_url

logger = structlog.get_logger()

RATE_LIMIT_STATUS_CODES = (429, 503)
_DATA_URI_REGEX = re.compile(
    r"^data:([a-z]+/[a-z0-9\-+.]+(;[a-z0-9\-.!#$%*+{}|~`]+=[a-z0-9\-.!#$%*+{}()|~`]+)*)?(;base64)?,(.*)$",
    re.IGNORECASE | re.DOTALL,
)


@dataclass
class FetchResult:
    payload: Dict[str, Any]
    hostname: Optional[str]
    url: str


class MetadataFetcher(Protocol):
    def fetch(self, uri: str) -> FetchResult: ...


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds to wait from a `Retry-After` header, given as seconds or as an HTTP date."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    return max(when.timestamp() - to_epoch(utcnow()), 0.0)


def decode_data_uri(uri: str) -> str:
    match = _DATA_URI_REGEX.match(uri.strip())
    if match is None:
        raise MalformedMetadata(f"Data URL could not be parsed: {uri[:64]}")
    is_base64, data = match.group(3), match.group(4) or ""
    if is_base64:
        try:
            return base64.b64decode(data).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            raise MalformedMetadata(f"Invalid base64 data URL: {e}") from e
    # Percent-encoded unless it already looks like a JSON literal.
    if data.startswith("%"):
        return unquote(data)
    return data


def parse_json_metadata(url: str, content: Optional[str]) -> Dict[str, Any]:
    if not content or not content.strip():
        raise MalformedMetadata(f"Fetched metadata is blank: {url}")
    try:
        result = json.loads(content)
    except ValueError as e:
        raise MalformedMetadata(f"JSON parse error: {url}") from e
    if not isinstance(result, dict):
        raise MalformedMetadata(f"Invalid raw metadata JSON schema: {url}")
    return result


class HttpMetadataFetcher:
    """Fetch metadata JSON from HTTP(S), IPFS and Arweave URIs and from `data:` URIs"""

    def __init__(self, client: Optional[httpx.Client] = None, max_payload_size: Optional[int] = None):
        self.client = client or httpx.Client(
            timeout=httpx.Timeout(settings.METADATA_FETCH_TIMEOUT),
            follow_redirects=True,
            max_redirects=settings.METADATA_FETCH_MAX_REDIRECTIONS,
            verify=False,
        )
        self.max_payload_size = max_payload_size or settings.METADATA_MAX_PAYLOAD_BYTE_SIZE

    def fetch(self, uri: str) -> FetchResult:
        if uri.lower().startswith("data:"):
            return FetchResult(payload=parse_json_metadata("data:", decode_data_uri(uri)), hostname=None, url=uri)

        try:
            url = get_fetchable_url(uri)
        except ValueError as e:
            raise MalformedMetadata(str(e)) from e
        hostname = urlparse(url).hostname
        content = self._get(url, hostname)
        return FetchResult(payload=parse_json_metadata(url, content), hostname=hostname, url=url)

    def close(self) -> None:
        self.client.close()

    def _get(self, url: str, hostname: Optional[str]) -> str:
        try:
            with self.client.stream("GET", url) as response:
                if response.status_code in RATE_LIMIT_STATUS_CODES:
                    raise TooManyRequests(
                        url,
                        hostname or "",
                        status_code=response.status_code,
                        retry_after=parse_retry_after(response.headers.get("Retry-After")),
                    )
                if response.status_code >= 400:
                    raise HttpStatusError(url, response.status_code)

                declared_size = response.headers.get("Content-Length")
                if declared_size and declared_size.isdigit() and int(declared_size) > self.max_payload_size:
                    raise MetadataSizeExceeded(url, self.max_payload_size)
                chunks = []
                size = 0
                for chunk in response.iter_bytes():
                    size += len(chunk)
                    if size > self.max_payload_size:
                        raise MetadataSizeExceeded(url, self.max_payload_size)
                    chunks.append(chunk)
        except httpx.TimeoutException as e:
            logger.debug("Metadata fetch timed out", url=url)
            raise FetchTimeout(f"Timed out fetching {url}") from e
        except httpx.HTTPError as e:
            raise FetchTransportError(f"{url}: {e}") from e

        return b"".join(chunks).decode("utf-8-sig", errors="replace")
