"""
Apply ETag decisions to FastAPI responses.
"""

from typing import Optional

from fastapi import Request, Response
from sqlalchemy.orm import Session

from src.services.cache_validator import CacheDecision, CacheValidator, evaluate


def cache_decision(request: Request, etag: Optional[str]) -> CacheDecision:
    return evaluate(request.headers.get("if-none-match"), etag)


def token_cache_decision(request: Request, db: Session) -> CacheDecision:
    """Decision for token routes, keyed by the principal and token number in the request path."""
    return cache_decision(request, CacheValidator(db).get_token_etag_for_path(request.url.path))


def apply_cache_decision(response: Response, decision: CacheDecision) -> None:
    for header in decision.strip_headers:
        if header in response.headers:
            del response.headers[header]
    for header, value in decision.headers.items():
        response.headers[header] = value


def not_modified_response(decision: CacheDecision) -> Response:
    return Response(status_code=304, headers=decision.headers)
