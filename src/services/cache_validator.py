"""
Conditional request handling for token and status responses.

A token's ETag is the epoch of its most recent modification, the later of the token row and its
freshest metadata record, so any successful refresh produces a new validator.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Set, Tuple

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from src.models.chain_tip import CHAIN_TIP_ID, ChainTip
from src.models.metadata import MetadataRecord
from src.models.smart_contract import SmartContract
from src.models.token import Token
from src.utils.stacks import TOKEN_NUMBER_REGEX, is_contract_principal
from src.utils.time import to_epoch

CACHE_CONTROL_MUST_REVALIDATE = "public, no-cache, must-revalidate"
CACHE_HEADERS = ("Cache-Control", "ETag")


@dataclass
class CacheDecision:
    """What to do with a response given its ETag and the request's validators."""

    not_modified: bool = False
    headers: Dict[str, str] = field(default_factory=dict)
    strip_headers: Tuple[str, ...] = ()


def parse_if_none_match(header: Optional[str]) -> Set[str]:
    """
    Normalize an `If-None-Match` header into a set of bare ETag values.

    Weak validator prefixes and wrapping quotes are dropped, missing quotes are tolerated.
    """
    if not header:
        return set()
    etags = set()
    for candidate in header.split(","):
        value = candidate.strip()
        if value[:2].upper() == "W/":
            value = value[2:].strip()
        if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
            value = value[1:-1]
        elif value.startswith('"') or value.endswith('"'):
            value = value.strip('"')
        if value:
            etags.add(value)
    return etags


def token_from_path(path: str) -> Optional[Tuple[str, int]]:
    """
    Recover `(principal, token_number)` from a request path by scanning segments backwards.

    The token number defaults to 1 for routes that carry none (fungible tokens).
    """
    token_number = 1
    for segment in reversed(path.split("?", 1)[0].split("/")):
        if not segment:
            continue
        if is_contract_principal(segment):
            return segment, token_number
        if TOKEN_NUMBER_REGEX.match(segment):
            token_number = int(segment)
    return None


def evaluate(if_none_match: Optional[str], etag: Optional[str]) -> CacheDecision:
    if etag is None:
        return CacheDecision(strip_headers=CACHE_HEADERS)
    if etag in parse_if_none_match(if_none_match):
        return CacheDecision(not_modified=True, headers={"Cache-Control": CACHE_CONTROL_MUST_REVALIDATE})
    return CacheDecision(headers={"Cache-Control": CACHE_CONTROL_MUST_REVALIDATE, "ETag": f'"{etag}"'})


class CacheValidator:
    """Compute ETags from the database"""

    def __init__(self, db_session: Session):
        self.db = db_session
        self.logger = structlog.get_logger()

    def get_token_etag(self, principal: str, token_number: int = 1) -> Optional[str]:
        row = (
            self.db.query(Token.id, Token.updated_at)
            .join(SmartContract, Token.smart_contract_id == SmartContract.id)
            .filter(SmartContract.principal == principal, Token.token_number == token_number)
            .first()
        )
        if row is None or row.updated_at is None:
            return None
        metadata_updated_at = (
            self.db.query(func.max(MetadataRecord.updated_at)).filter(MetadataRecord.token_id == row.id).scalar()
        )
        modified = row.updated_at
        if metadata_updated_at is not None and metadata_updated_at > modified:
            modified = metadata_updated_at
        return f"{to_epoch(modified):.6f}"

    def get_token_etag_for_path(self, path: str) -> Optional[str]:
        token = token_from_path(path)
        if token is None:
            return None
        return self.get_token_etag(*token)

    def get_chain_tip_etag(self) -> Optional[str]:
        tip = self.db.get(ChainTip, CHAIN_TIP_ID)
        if tip is None:
            return None
        return str(tip.block_height)
