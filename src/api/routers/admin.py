import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from src.api.models import ErrorResponse, RefreshRequest, RefreshResponse
from src.api.routers.status import get_status_service
from src.database.connection import get_db
from src.services.notification_tracker import NotificationTracker
from src.services.status_service import StatusService

logger = structlog.get_logger()

router = APIRouter(prefix="/metadata/admin")


@router.post(
    "/refresh",
    response_model=RefreshResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Force a metadata refresh",
)
def refresh_token_metadata(
    request: RefreshRequest,
    db: Session = Depends(get_db),
    status_service: StatusService = Depends(get_status_service),
):
    """
    Enqueue a metadata refresh for a contract's tokens, frozen ones included.
    """
    enqueued = NotificationTracker(db).force_refresh(request.contract_id, request.token_ids)
    status_service.invalidate()
    logger.info("Admin refresh requested", contract=request.contract_id, enqueued=enqueued)
    return RefreshResponse(contract_id=request.contract_id, enqueued=enqueued)
