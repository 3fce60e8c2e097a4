from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, Request, Response
from sqlalchemy.orm import Session

from src.api.cache import apply_cache_decision, not_modified_response, token_cache_decision
from src.api.models import ErrorResponse, NonFungibleTokenResponse
from src.database.connection import get_db
from src.services.locale_bundle import LocaleBundleAssembler
from src.utils.stacks import SMART_CONTRACT_REGEX

router = APIRouter(prefix="/metadata/v1")


@router.get(
    "/nft/{principal}/{token_id}",
    response_model=NonFungibleTokenResponse,
    response_model_exclude_none=True,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Non-Fungible Token Metadata",
)
def get_nft_metadata(
    request: Request,
    response: Response,
    principal: str = Path(..., pattern=SMART_CONTRACT_REGEX.pattern, description="SIP-009 contract principal"),
    token_id: int = Path(..., ge=0, description="Token number"),
    locale: Optional[str] = Query(None, description="Metadata localization to retrieve"),
    db: Session = Depends(get_db),
):
    decision = token_cache_decision(request, db)
    if decision.not_modified:
        return not_modified_response(decision)

    bundle = LocaleBundleAssembler(db).get_nft_metadata_bundle(principal, token_id, locale)
    apply_cache_decision(response, decision)
    return NonFungibleTokenResponse(token_uri=bundle.token.uri, metadata=bundle.metadata)
