"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class PolicyTier:
    """Minimum lead time mapped to a refund percentage"""

    hours_before_booking: float
    refund_percentage: Decimal
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hours_before_booking": self.hours_before_booking,
            "refund_percentage": float(self.refund_percentage),
            "description": self.description,
        }


@dataclass(frozen=True)
class CancellationPolicy:
    """Per-listing cancellation policy"""

    type: str
    allow_cancellation: bool
    automatic_refund: bool
    tiers: Tuple[PolicyTier, ...]
    processing_fee_percentage: Decimal
    custom_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CancellationPolicy":
        """Build a policy from stored or template data (assumed already validated)"""
        return cls(
            type=data["type"],
            allow_cancellation=bool(data.get("allow_cancellation", True)),
            automatic_refund=bool(data.get("automatic_refund", False)),
            tiers=tuple(
                PolicyTier(
                    hours_before_booking=float(t["hours_before_booking"]),
                    refund_percentage=Decimal(str(t["refund_percentage"])),
                    description=t["description"],
                )
                for t in data.get("tiers") or []
            ),
            processing_fee_percentage=Decimal(str(data.get("processing_fee_percentage") or 0)),
            custom_notes=data.get("custom_notes"),
            created_at=_parse_timestamp(data.get("created_at")),
            updated_at=_parse_timestamp(data.get("updated_at")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "allow_cancellation": self.allow_cancellation,
            "automatic_refund": self.automatic_refund,
            "tiers": [t.to_dict() for t in self.tiers],
            "processing_fee_percentage": float(self.processing_fee_percentage),
            "custom_notes": self.custom_notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class BookingTerms:
    """The two booking facts a refund depends on"""

    amount: Decimal
    start_date: datetime


@dataclass
class RefundBreakdown:
    """Output of the refund calculator"""

    original_amount: Decimal
    refund_percentage: Decimal
    refund_amount: Decimal
    processing_fee: Decimal
    final_refund: Decimal
    hours_until_booking: float
    applied_tier: Optional[PolicyTier]
    message: Optional[str] = None


@dataclass
class PolicyValidation:
    """Result of validating policy data; lists every violation found"""

    valid: bool
    errors: List[str] = field(default_factory=list)


@dataclass
class GatewayRefundResult:
    """Outcome reported by the payment gateway collaborator"""

    success: bool
    refund_id: Optional[str] = None
    error: Optional[str] = None
    gateway_response: Optional[Dict[str, Any]] = None


@dataclass
class NotificationResult:
    sent: bool
    reason: Optional[str] = None
    queued: bool = False  # handed to a background scheduler


@dataclass
class OwnerRequestFilters:
    """Filters for the owner request listing"""

    status: Optional[str] = None
    listing_id: Optional[Any] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    page: int = 1
    limit: int = 20


@dataclass
class AdminRequestFilters:
    """Filters for the platform-wide request listing"""

    status: Optional[str] = None
    is_automatic: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    page: int = 1
    limit: int = 20


@dataclass
class Page(Generic[T]):
    items: List[T]
    total: int
    page: int
    pages: int


@dataclass
class AutomaticRefundResult:
    success: bool
    request: Any
    message: str


@dataclass
class RefundStats:
    """Owner-facing aggregate over cancellation requests"""

    total_requests: int
    pending: int
    approved: int
    rejected: int
    approval_rate: int
    total_refunded: Decimal
    avg_refund_amount: Decimal
    reason_breakdown: Dict[str, int]


@dataclass
class PlatformStats:
    """Platform-wide aggregate over every cancellation request"""

    total: int
    by_status: Dict[str, int]
    automatic: int
    manual: int
    total_refund_amount: Decimal
    avg_refund_amount: Decimal
    total_original_amount: Decimal
    refund_rate: Decimal  # refunded share of original amounts, in percent


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)
