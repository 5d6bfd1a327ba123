"""Owner-facing refund request endpoints"""

import time
import logging
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request

from workspace_refunds.api.dependencies import (
    get_cancellation_service,
    get_current_user_id,
    get_request_id,
    parse_uuid,
)
from workspace_refunds.api.v1.schemas import (
    ApproveRefundRequest,
    CancellationListResponse,
    CancellationRequestResponse,
    RefundStatsResponse,
    RejectRefundRequest,
)
from workspace_refunds.domain.models import OwnerRequestFilters
from workspace_refunds.services.cancellations import CancellationRequestService

router = APIRouter()


@router.get("/owner/refunds", response_model=CancellationListResponse)
def list_owner_refunds(
    status: Optional[str] = Query(None, description="Request status, or 'all'"),
    listing_id: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    owner_id: str = Depends(get_current_user_id),
    service: CancellationRequestService = Depends(get_cancellation_service),
):
    """
    Refund requests across the caller's listings, newest first.

    Returns:
        Page of requests plus the unpaged total
    """
    filters = OwnerRequestFilters(
        status=status,
        listing_id=parse_uuid(listing_id, "listing_id") if listing_id else None,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    result = service.get_owner_requests(owner_id, filters)

    return CancellationListResponse(
        items=[CancellationRequestResponse.from_orm_request(r) for r in result.items],
        total=result.total,
        page=result.page,
        pages=result.pages,
    )


@router.get("/owner/refunds/stats", response_model=RefundStatsResponse)
def get_owner_refund_stats(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    owner_id: str = Depends(get_current_user_id),
    service: CancellationRequestService = Depends(get_cancellation_service),
):
    return RefundStatsResponse.from_domain(service.get_owner_stats(owner_id, start_date, end_date))


@router.get("/owner/refunds/{cancellation_id}", response_model=CancellationRequestResponse)
def get_owner_refund(
    cancellation_id: str,
    owner_id: str = Depends(get_current_user_id),
    service: CancellationRequestService = Depends(get_cancellation_service),
):
    cancellation = service.get_owner_request(parse_uuid(cancellation_id, "cancellation_id"), owner_id)
    return CancellationRequestResponse.from_orm_request(cancellation)


@router.post("/owner/refunds/{cancellation_id}/approve", response_model=CancellationRequestResponse)
async def approve_refund(
    cancellation_id: str,
    request: Request,
    body: Optional[ApproveRefundRequest] = None,
    owner_id: str = Depends(get_current_user_id),
    service: CancellationRequestService = Depends(get_cancellation_service),
):
    """
    Approve a pending request and settle the refund.

    The response reflects the settled request: completed, or failed with a
    failure_reason when the gateway refused. Settlement failure is not an
    HTTP error.
    """
    start_time = time.time()
    request_uuid = parse_uuid(cancellation_id, "cancellation_id")
    body = body or ApproveRefundRequest()

    cancellation = await service.approve_request(
        request_uuid,
        owner_id,
        custom_refund_amount=body.custom_refund_amount,
        custom_refund_note=body.custom_refund_note,
    )

    logging.info(
        "Refund approved",
        extra={
            "request_id": get_request_id(request),
            "cancellation_id": str(cancellation.id),
            "status": cancellation.status,
            "duration_ms": (time.time() - start_time) * 1000,
        },
    )
    return CancellationRequestResponse.from_orm_request(cancellation)


@router.post("/owner/refunds/{cancellation_id}/reject", response_model=CancellationRequestResponse)
async def reject_refund(
    cancellation_id: str,
    body: RejectRefundRequest,
    owner_id: str = Depends(get_current_user_id),
    service: CancellationRequestService = Depends(get_cancellation_service),
):
    cancellation = await service.reject_request(parse_uuid(cancellation_id, "cancellation_id"), owner_id, body.reason)
    return CancellationRequestResponse.from_orm_request(cancellation)
