"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from workspace_refunds.domain.models import CancellationPolicy, PlatformStats, PolicyTier, RefundBreakdown, RefundStats


class CancelBookingRequest(BaseModel):
    """Request body for POST /v1/bookings/{booking_id}/cancel"""

    reason: str = Field(..., min_length=1, description="schedule_change | found_alternative | emergency | other")
    reason_other: Optional[str] = Field(None, description="Free text, required when reason is 'other'")


class ApproveRefundRequest(BaseModel):
    """Request body for POST /v1/owner/refunds/{id}/approve"""

    custom_refund_amount: Optional[Decimal] = Field(None, description="Overrides the calculated refund")
    custom_refund_note: Optional[str] = None


class RejectRefundRequest(BaseModel):
    """Request body for POST /v1/owner/refunds/{id}/reject"""

    reason: str = ""


class PolicyTierSchema(BaseModel):
    hours_before_booking: float
    refund_percentage: float
    description: str

    @classmethod
    def from_domain(cls, tier: PolicyTier) -> "PolicyTierSchema":
        return cls(**tier.to_dict())


class RefundBreakdownResponse(BaseModel):
    """Refund calculation result"""

    original_amount: Decimal
    refund_percentage: Decimal
    refund_amount: Decimal
    processing_fee: Decimal
    final_refund: Decimal
    hours_until_booking: float
    applied_tier: Optional[PolicyTierSchema] = None
    message: Optional[str] = None

    @classmethod
    def from_domain(cls, breakdown: RefundBreakdown) -> "RefundBreakdownResponse":
        return cls(
            original_amount=breakdown.original_amount,
            refund_percentage=breakdown.refund_percentage,
            refund_amount=breakdown.refund_amount,
            processing_fee=breakdown.processing_fee,
            final_refund=breakdown.final_refund,
            hours_until_booking=breakdown.hours_until_booking,
            applied_tier=PolicyTierSchema.from_domain(breakdown.applied_tier) if breakdown.applied_tier else None,
            message=breakdown.message,
        )


class PolicySummary(BaseModel):
    type: str
    automatic_refund: bool
    processing_fee_percentage: float


class RefundPreviewResponse(BaseModel):
    """Response for POST /v1/bookings/{booking_id}/calculate-refund"""

    booking_id: str
    breakdown: RefundBreakdownResponse
    policy: PolicySummary


class CancellationRequestResponse(BaseModel):
    """Cancellation request as seen by clients and owners"""

    id: str
    booking_id: str
    client_id: str
    owner_id: str
    listing_id: str
    status: str
    is_automatic: bool
    requested_at: datetime

    booking_start_date: datetime
    booking_end_date: datetime
    booking_amount: Decimal

    original_amount: Decimal
    refund_percentage: Decimal
    refund_amount: Decimal
    processing_fee: Decimal
    final_refund: Decimal
    hours_until_booking: float
    applied_tier: Optional[Dict[str, Any]] = None

    cancellation_reason: str
    cancellation_reason_other: Optional[str] = None

    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    custom_refund_amount: Optional[Decimal] = None
    custom_refund_note: Optional[str] = None

    processed_at: Optional[datetime] = None
    refund_transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    retry_count: int = 0

    @classmethod
    def from_orm_request(cls, request: Any) -> "CancellationRequestResponse":
        data = {name: getattr(request, name) for name in cls.model_fields}
        for key in ("id", "booking_id", "listing_id"):
            data[key] = str(data[key])
        return cls(**data)


class CancellationListResponse(BaseModel):
    """Paginated list of cancellation requests"""

    items: List[CancellationRequestResponse]
    total: int
    page: int
    pages: int


class AutomaticRefundResponse(BaseModel):
    success: bool
    message: str
    request: CancellationRequestResponse


class CreateCancellationResponse(BaseModel):
    """Response for POST /v1/bookings/{booking_id}/cancel"""

    request: CancellationRequestResponse
    automatic: Optional[AutomaticRefundResponse] = None


class RefundStatsResponse(BaseModel):
    total_requests: int
    pending: int
    approved: int
    rejected: int
    approval_rate: int
    total_refunded: Decimal
    avg_refund_amount: Decimal
    reason_breakdown: Dict[str, int]

    @classmethod
    def from_domain(cls, stats: RefundStats) -> "RefundStatsResponse":
        return cls(**vars(stats))


class RefundTransactionResponse(BaseModel):
    """One gateway refund attempt"""

    id: str
    amount: Decimal
    currency: str
    status: str
    gateway_provider: str
    refund_transaction_id: Optional[str] = None
    gateway_error: Optional[str] = None
    initiated_at: datetime
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    @classmethod
    def from_orm_transaction(cls, transaction: Any) -> "RefundTransactionResponse":
        data = {name: getattr(transaction, name) for name in cls.model_fields}
        data["id"] = str(data["id"])
        return cls(**data)


class AdminCancellationResponse(CancellationRequestResponse):
    """Cancellation request with its refund transactions, for platform oversight"""

    booking_status: str
    last_retry_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    transactions: List[RefundTransactionResponse] = Field(default_factory=list)

    @classmethod
    def from_orm_request(cls, request: Any, transactions: Optional[List[Any]] = None) -> "AdminCancellationResponse":
        data = {name: getattr(request, name) for name in cls.model_fields if name != "transactions"}
        for key in ("id", "booking_id", "listing_id"):
            data[key] = str(data[key])
        data["transactions"] = [RefundTransactionResponse.from_orm_transaction(t) for t in transactions or []]
        return cls(**data)


class AdminCancellationListResponse(BaseModel):
    items: List[AdminCancellationResponse]
    total: int
    page: int
    pages: int


class PlatformStatsResponse(BaseModel):
    """Response for GET /v1/admin/cancellations/stats"""

    total: int
    by_status: Dict[str, int]
    automatic: int
    manual: int
    total_refund_amount: Decimal
    avg_refund_amount: Decimal
    total_original_amount: Decimal
    refund_rate: Decimal

    @classmethod
    def from_domain(cls, stats: PlatformStats) -> "PlatformStatsResponse":
        return cls(**vars(stats))


class PolicyResponse(BaseModel):
    """Listing cancellation policy"""

    type: str
    allow_cancellation: bool
    automatic_refund: bool
    tiers: List[PolicyTierSchema]
    processing_fee_percentage: float
    custom_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, policy: CancellationPolicy) -> "PolicyResponse":
        return cls(
            type=policy.type,
            allow_cancellation=policy.allow_cancellation,
            automatic_refund=policy.automatic_refund,
            tiers=[PolicyTierSchema.from_domain(t) for t in policy.tiers],
            processing_fee_percentage=float(policy.processing_fee_percentage),
            custom_notes=policy.custom_notes,
            created_at=policy.created_at,
            updated_at=policy.updated_at,
        )


class PolicyValidationResponse(BaseModel):
    valid: bool
    errors: List[str]
