"""
Scan API Routes

Upload a shelf photo, poll the session, fetch recommendations and leave
feedback. In the default phased mode POST /scan runs detection only and the
first GET of the recommendations runs enrichment and recommendation.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Response, UploadFile, status

from shelfscanner.api.dependencies import get_current_user_optional, get_pipeline
from shelfscanner.api.schemas import (
    ErrorResponse,
    FeedbackRequest,
    FeedbackResponse,
    RecommendationResponse,
    ScanResponse,
    ScanStatusValue,
    SessionStatusResponse,
)
from shelfscanner.errors import ValidationError
from shelfscanner.pipeline.orchestrator import ScanPipeline
from shelfscanner.storage.models import User


router = APIRouter(prefix="/scan", tags=["scan"])


# =============================================================================
# Scan Endpoints
# =============================================================================

@router.post(
    "",
    response_model=ScanResponse,
    responses={
        202: {"model": ScanResponse, "description": "Accepted, processing in background"},
        400: {"model": ErrorResponse, "description": "Invalid image"},
        413: {"model": ErrorResponse, "description": "Image too large"},
    },
)
async def create_scan(
    response: Response,
    background_tasks: BackgroundTasks,
    image: Optional[UploadFile] = File(None, description="Photo of a bookshelf"),
    pipeline: ScanPipeline = Depends(get_pipeline),
    user: Optional[User] = Depends(get_current_user_optional),
):
    """
    Upload a shelf photo and start a scan session.

    The upload is validated before any session exists, so a rejected image
    leaves nothing behind.
    """
    if image is None:
        raise ValidationError("No image file provided")

    # One byte past the limit is enough for validation to reject it
    data = await image.read(pipeline.max_upload_bytes + 1)
    submission = await pipeline.start_scan(
        data,
        content_type=image.content_type,
        user_id=user.id if user else None,
    )

    if pipeline.pipeline_mode == "background":
        background_tasks.add_task(
            pipeline.process_scan_in_background,
            submission.session_id,
            data,
            submission.mime_type,
        )
        response.status_code = status.HTTP_202_ACCEPTED
        return ScanResponse(
            session_id=submission.session_id,
            session_token=submission.session_token,
            status=ScanStatusValue.PROCESSING,
        )

    await pipeline.process_scan(submission.session_id, data, submission.mime_type)
    view = await pipeline.get_session_status(submission.session_id)

    return ScanResponse(
        session_id=submission.session_id,
        session_token=submission.session_token,
        status=view.status.value,
        books_detected=len(view.detected_books),
        error=view.error,
    )


@router.get(
    "/{session_id}",
    response_model=SessionStatusResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_scan(
    session_id: str,
    pipeline: ScanPipeline = Depends(get_pipeline),
):
    """Poll a scan session."""
    view = await pipeline.get_session_status(session_id)
    return SessionStatusResponse(
        session_id=view.session_id,
        status=view.status.value,
        detected_books=view.detected_books,
        recommendations=view.recommendations,
        error=view.error,
    )


@router.get(
    "/{session_id}/recommendations",
    response_model=list[RecommendationResponse],
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Detection pending or scan failed"},
    },
)
async def get_recommendations(
    session_id: str,
    pipeline: ScanPipeline = Depends(get_pipeline),
):
    """
    Recommendations for a scan, generating them on first request.

    Repeated calls return the stored list.
    """
    recommendations = await pipeline.run_enrichment_and_recommendation_phase(session_id)
    return [RecommendationResponse(**r.to_dict()) for r in recommendations]


@router.post(
    "/{session_id}/feedback",
    response_model=FeedbackResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}},
)
async def submit_feedback(
    session_id: str,
    feedback: FeedbackRequest,
    pipeline: ScanPipeline = Depends(get_pipeline),
    user: Optional[User] = Depends(get_current_user_optional),
):
    """Submit feedback on detections or recommendations."""
    record = await pipeline.submit_feedback(
        session_id,
        {
            "feedback_type": feedback.feedback_type.value,
            "detected_book_id": feedback.detected_book_id,
            "is_correct": feedback.is_correct,
            "corrected_title": feedback.corrected_title,
            "corrected_author": feedback.corrected_author,
            "comments": feedback.comments,
        },
        user_id=user.id if user else None,
    )
    return FeedbackResponse(id=record.id)
