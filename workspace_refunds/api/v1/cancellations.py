"""Client-facing cancellation endpoints and the automatic processing trigger"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from workspace_refunds.api.dependencies import (
    get_cancellation_service,
    get_current_user_id,
    get_request_id,
    parse_uuid,
)
from workspace_refunds.api.v1.schemas import (
    AutomaticRefundResponse,
    CancelBookingRequest,
    CancellationListResponse,
    CancellationRequestResponse,
    CreateCancellationResponse,
    PolicySummary,
    RefundBreakdownResponse,
    RefundPreviewResponse,
)
from workspace_refunds.config import settings
from workspace_refunds.domain.exceptions import DomainException
from workspace_refunds.infrastructure.database.session import get_db
from workspace_refunds.services.cancellations import CancellationRequestService

router = APIRouter()


@router.post("/bookings/{booking_id}/calculate-refund", response_model=RefundPreviewResponse)
def calculate_refund(
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    service: CancellationRequestService = Depends(get_cancellation_service),
):
    """Preview the refund a cancellation right now would give; nothing is saved"""
    booking_uuid = parse_uuid(booking_id, "booking_id")
    breakdown, policy = service.preview_refund(booking_uuid, user_id)

    return RefundPreviewResponse(
        booking_id=str(booking_uuid),
        breakdown=RefundBreakdownResponse.from_domain(breakdown),
        policy=PolicySummary(
            type=policy.type,
            automatic_refund=policy.automatic_refund,
            processing_fee_percentage=float(policy.processing_fee_percentage),
        ),
    )


@router.post("/bookings/{booking_id}/cancel", response_model=CreateCancellationResponse, status_code=201)
async def cancel_booking(
    booking_id: str,
    body: CancelBookingRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    service: CancellationRequestService = Depends(get_cancellation_service),
):
    """
    Open a cancellation request for the caller's booking.

    Flow:
    1. Validate reason, ownership and booking status
    2. Snapshot the refund breakdown under the listing's policy
    3. Persist the pending request and queue client and owner notifications
    4. Settle immediately when the request is automatic and auto processing is on
    """
    booking_uuid = parse_uuid(booking_id, "booking_id")
    cancellation = await service.create_request(booking_uuid, user_id, body.reason, body.reason_other)

    automatic = None
    if cancellation.is_automatic and settings.auto_process_on_create:
        try:
            result = await service.process_automatic_refund(cancellation.id)
            automatic = AutomaticRefundResponse(
                success=result.success,
                message=result.message,
                request=CancellationRequestResponse.from_orm_request(result.request),
            )
        except DomainException as e:
            # The request stays pending for the system trigger to pick up
            db.rollback()
            logging.warning(f"Automatic processing skipped: {e}", extra={"request_id": get_request_id(request)})

    return CreateCancellationResponse(
        request=CancellationRequestResponse.from_orm_request(service.get_client_request(cancellation.id, user_id)),
        automatic=automatic,
    )


@router.get("/client/cancellations", response_model=CancellationListResponse)
def list_client_cancellations(
    status: Optional[str] = Query(None, description="Filter by request status"),
    booking_id: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    user_id: str = Depends(get_current_user_id),
    service: CancellationRequestService = Depends(get_cancellation_service),
):
    booking_uuid = parse_uuid(booking_id, "booking_id") if booking_id else None
    result = service.get_client_requests(user_id, status, booking_uuid, page, limit)

    return CancellationListResponse(
        items=[CancellationRequestResponse.from_orm_request(r) for r in result.items],
        total=result.total,
        page=result.page,
        pages=result.pages,
    )


@router.get("/client/cancellations/{cancellation_id}", response_model=CancellationRequestResponse)
def get_client_cancellation(
    cancellation_id: str,
    user_id: str = Depends(get_current_user_id),
    service: CancellationRequestService = Depends(get_cancellation_service),
):
    cancellation = service.get_client_request(parse_uuid(cancellation_id, "cancellation_id"), user_id)
    return CancellationRequestResponse.from_orm_request(cancellation)


@router.post("/cancellations/{cancellation_id}/process-automatic", response_model=AutomaticRefundResponse)
async def process_automatic(
    cancellation_id: str,
    service: CancellationRequestService = Depends(get_cancellation_service),
):
    """
    System trigger for auto-eligible requests.

    Gateway failures are reported in the body (success=false), not as an
    HTTP error; the request is left failed for the retry job.
    """
    result = await service.process_automatic_refund(parse_uuid(cancellation_id, "cancellation_id"))

    return AutomaticRefundResponse(
        success=result.success,
        message=result.message,
        request=CancellationRequestResponse.from_orm_request(result.request),
    )
