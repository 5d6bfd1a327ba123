"""Platform-wide cancellation oversight for admins"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Query

from workspace_refunds.api.dependencies import get_admin_user_id, get_cancellation_service, parse_uuid
from workspace_refunds.api.v1.schemas import (
    AdminCancellationListResponse,
    AdminCancellationResponse,
    PlatformStatsResponse,
)
from workspace_refunds.domain.models import AdminRequestFilters
from workspace_refunds.services.cancellations import CancellationRequestService
from workspace_refunds.utils.date_utils import end_of_day, start_of_day

router = APIRouter(dependencies=[Depends(get_admin_user_id)])


@router.get("/admin/cancellations", response_model=AdminCancellationListResponse)
def list_cancellations(
    status: Optional[str] = Query(None, description="Request status, or 'all'"),
    is_automatic: Optional[bool] = Query(None),
    date_from: Optional[date] = Query(None, description="First UTC day of requested_at, inclusive"),
    date_to: Optional[date] = Query(None, description="Last UTC day of requested_at, inclusive"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    service: CancellationRequestService = Depends(get_cancellation_service),
):
    """Every cancellation request on the platform, newest first, with its refund transactions"""
    filters = AdminRequestFilters(
        status=status,
        is_automatic=is_automatic,
        start_date=start_of_day(date_from) if date_from else None,
        end_date=end_of_day(date_to) if date_to else None,
        page=page,
        limit=limit,
    )
    result = service.get_admin_requests(filters)

    return AdminCancellationListResponse(
        items=[AdminCancellationResponse.from_orm_request(r, r.transactions) for r in result.items],
        total=result.total,
        page=result.page,
        pages=result.pages,
    )


@router.get("/admin/cancellations/stats", response_model=PlatformStatsResponse)
def get_cancellation_stats(service: CancellationRequestService = Depends(get_cancellation_service)):
    return PlatformStatsResponse.from_domain(service.get_platform_stats())


@router.get("/admin/cancellations/{cancellation_id}", response_model=AdminCancellationResponse)
def get_cancellation_details(
    cancellation_id: str,
    service: CancellationRequestService = Depends(get_cancellation_service),
):
    request, transactions = service.get_admin_request(parse_uuid(cancellation_id, "cancellation_id"))
    return AdminCancellationResponse.from_orm_request(request, transactions)
