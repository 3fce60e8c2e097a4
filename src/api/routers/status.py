from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from src.api.cache import apply_cache_decision, cache_decision, not_modified_response
from src.api.models import ApiStatusResponse
from src.database.connection import get_db
from src.services.cache_service import CacheService
from src.services.cache_validator import CacheValidator
from src.services.status_service import StatusService

router = APIRouter(prefix="/metadata/v1")


def get_cache_service() -> Optional[CacheService]:
    return CacheService()


def get_status_service(
    db: Session = Depends(get_db), cache: Optional[CacheService] = Depends(get_cache_service)
) -> StatusService:
    return StatusService(db, cache)


@router.get("/", response_model=ApiStatusResponse, summary="API Status")
def get_api_status(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    status_service: StatusService = Depends(get_status_service),
):
    """Displays the status of the API and its current workload"""
    decision = cache_decision(request, CacheValidator(db).get_chain_tip_etag())
    if decision.not_modified:
        return not_modified_response(decision)

    result = status_service.get_status()
    apply_cache_decision(response, decision)
    return ApiStatusResponse(**result)
