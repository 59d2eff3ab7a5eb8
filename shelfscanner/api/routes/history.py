"""
Scan History API Routes

Past scans of the signed-in reader. Sessions owned by someone else are
reported as not found.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from shelfscanner.api.dependencies import get_current_user, get_scan_repository
from shelfscanner.api.schemas import ErrorResponse, ScanHistoryDetail, ScanHistoryResponse
from shelfscanner.errors import NotFoundError
from shelfscanner.storage.models import ScanSession, User
from shelfscanner.storage.scan_repository import ScanRepository


router = APIRouter(prefix="/history", tags=["history"])

CurrentUser = Annotated[User, Depends(get_current_user)]


async def _owned_session(scans: ScanRepository, session_id: str, user: User) -> ScanSession:
    scan = await scans.get_session(session_id)
    if scan is None or scan.user_id != user.id:
        raise NotFoundError("Scan session", session_id)
    return scan


@router.get("", response_model=ScanHistoryResponse)
async def list_history(
    current_user: CurrentUser,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    scans: ScanRepository = Depends(get_scan_repository),
):
    """Scans of the current user, newest first."""
    sessions = await scans.list_user_sessions(current_user.id, limit=limit, offset=offset)
    return ScanHistoryResponse(sessions=sessions, limit=limit, offset=offset)


@router.get(
    "/{session_id}",
    response_model=ScanHistoryDetail,
    responses={404: {"model": ErrorResponse}},
)
async def get_history_item(
    session_id: str,
    current_user: CurrentUser,
    scans: ScanRepository = Depends(get_scan_repository),
):
    """One past scan with its books (most confident first) and recommendations."""
    scan = await _owned_session(scans, session_id, current_user)
    books = await scans.list_detected_books(session_id, order_by_confidence=True)
    recommendations = await scans.list_recommendations(session_id)

    return ScanHistoryDetail(
        session_id=scan.id,
        status=scan.status,
        detected_books=[b.to_dict() for b in books],
        recommendations=[r.to_dict() for r in recommendations],
        error=scan.error_message,
        created_at=scan.created_at,
    )


@router.delete(
    "/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
)
async def delete_history_item(
    session_id: str,
    current_user: CurrentUser,
    scans: ScanRepository = Depends(get_scan_repository),
):
    """Delete a past scan with its books, recommendations and feedback."""
    if not await scans.delete_session(session_id, user_id=current_user.id):
        raise NotFoundError("Scan session", session_id)
