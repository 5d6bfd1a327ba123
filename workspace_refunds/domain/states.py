"""Status vocabularies and the cancellation request state machine"""

from enum import Enum
from typing import Dict, FrozenSet


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RefundTransactionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CancellationReason(str, Enum):
    SCHEDULE_CHANGE = "schedule_change"
    FOUND_ALTERNATIVE = "found_alternative"
    EMERGENCY = "emergency"
    OTHER = "other"


# Booking statuses written or inspected by this subsystem
BOOKING_CANCELLED = "cancelled"
BOOKING_COMPLETED = "completed"
CANCELLABLE_BOOKING_STATUSES: FrozenSet[str] = frozenset({"paid", "pending_payment", "awaiting_payment"})

# At most one request per booking may sit in one of these
ACTIVE_STATUSES: FrozenSet[RequestStatus] = frozenset(
    {RequestStatus.PENDING, RequestStatus.APPROVED, RequestStatus.PROCESSING, RequestStatus.COMPLETED}
)

# Statuses counted as "approved" in owner statistics
APPROVED_FAMILY: FrozenSet[RequestStatus] = frozenset(
    {RequestStatus.APPROVED, RequestStatus.PROCESSING, RequestStatus.COMPLETED}
)

TRANSITIONS: Dict[RequestStatus, FrozenSet[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({RequestStatus.APPROVED, RequestStatus.REJECTED, RequestStatus.PROCESSING}),
    # approved -> completed only when there is no payment reference to refund against;
    # approved -> failed when settlement breaks before reaching the gateway
    RequestStatus.APPROVED: frozenset({RequestStatus.PROCESSING, RequestStatus.COMPLETED, RequestStatus.FAILED}),
    RequestStatus.PROCESSING: frozenset({RequestStatus.COMPLETED, RequestStatus.FAILED}),
    # external retry job re-enters processing
    RequestStatus.FAILED: frozenset({RequestStatus.PROCESSING}),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.COMPLETED: frozenset(),
}


def can_transition(current: RequestStatus, target: RequestStatus) -> bool:
    """Check whether the state machine allows moving from current to target"""
    return RequestStatus(target) in TRANSITIONS[RequestStatus(current)]


def sources_for(target: RequestStatus) -> FrozenSet[RequestStatus]:
    """All statuses from which target is reachable in one step"""
    return frozenset(src for src, targets in TRANSITIONS.items() if RequestStatus(target) in targets)
