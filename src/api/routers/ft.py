from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, Request, Response
from sqlalchemy.orm import Session

from src.api.cache import apply_cache_decision, not_modified_response, token_cache_decision
from src.api.models import ErrorResponse, FungibleTokenResponse
from src.database.connection import get_db
from src.services.locale_bundle import LocaleBundleAssembler
from src.utils.stacks import SMART_CONTRACT_REGEX

router = APIRouter(prefix="/metadata/v1")


@router.get(
    "/ft/{principal}",
    response_model=FungibleTokenResponse,
    response_model_exclude_none=True,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Fungible Token Metadata",
)
def get_ft_metadata(
    request: Request,
    response: Response,
    principal: str = Path(..., pattern=SMART_CONTRACT_REGEX.pattern, description="SIP-010 contract principal"),
    locale: Optional[str] = Query(None, description="Metadata localization to retrieve"),
    db: Session = Depends(get_db),
):
    """Retrieves metadata for a SIP-010 Fungible Token"""
    decision = token_cache_decision(request, db)
    if decision.not_modified:
        return not_modified_response(decision)

    bundle = LocaleBundleAssembler(db).get_ft_metadata_bundle(principal, locale)
    token = bundle.token
    apply_cache_decision(response, decision)
    return FungibleTokenResponse(
        name=token.name,
        symbol=token.symbol,
        decimals=token.decimals,
        total_supply=token.total_supply,
        token_uri=token.uri,
        metadata=bundle.metadata,
    )
