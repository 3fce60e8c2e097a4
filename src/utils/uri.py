"""
Helpers to turn token URIs into fetchable HTTP URLs.
"""

import re
from typing import Optional
from urllib.parse import urlparse

from src.config import settings

_ID_PATTERN = re.compile(r"{id}", re.IGNORECASE)
_LOCALE_PATTERN = re.compile(r"{locale}", re.IGNORECASE)
# Not SIP-016 compliant, but used by a number of deployed contracts.
_LEGACY_ID_PATTERN = re.compile(r"\$TOKEN_ID", re.IGNORECASE)


def token_specific_uri(uri: str, token_number: int, locale: Optional[str] = None) -> str:
    """Replace `{id}` with the token number and `{locale}` with the given locale."""
    token_str = str(token_number)
    uri = _ID_PATTERN.sub(token_str, uri)
    uri = _LOCALE_PATTERN.sub(locale or "", uri)
    return _LEGACY_ID_PATTERN.sub(token_str, uri)


def get_fetchable_url(uri: str) -> str:
    """
    Rewrite decentralized storage URIs into gateway URLs.

    `ipfs://` and `ar://` are served through the configured public gateways, `http(s)://` and
    `data:` URIs are returned untouched.
    """
    parsed = urlparse(uri)
    scheme = parsed.scheme.lower()
    if scheme == "ipfs":
        path = uri[len("ipfs://"):]
        if path.startswith("ipfs/"):
            path = path[len("ipfs/"):]
        return f"{settings.PUBLIC_GATEWAY_IPFS.rstrip('/')}/ipfs/{path}"
    if scheme == "ipns":
        return f"{settings.PUBLIC_GATEWAY_IPFS.rstrip('/')}/ipns/{uri[len('ipns://'):]}"
    if scheme == "ar":
        return f"{settings.PUBLIC_GATEWAY_ARWEAVE.rstrip('/')}/{uri[len('ar://'):]}"
    if scheme in ("http", "https", "data"):
        return uri
    raise ValueError(f"Unsupported URI scheme: {uri}")


def fetchable_hostname(uri: Optional[str]) -> Optional[str]:
    """Hostname a fetch of `uri` would hit, `None` for URIs that need no network access."""
    if not uri:
        return None
    try:
        url = get_fetchable_url(uri)
    except ValueError:
        return None
    if url.startswith("data:"):
        return None
    return urlparse(url).hostname
