"""Data access layer for listings, bookings, cancellation requests and refund transactions"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple
from sqlalchemy import func, update
from sqlalchemy.orm import Session
from workspace_refunds.infrastructure.database.models import (
    Booking,
    CancellationRequest,
    Listing,
    RefundTransaction,
)
from workspace_refunds.domain.models import AdminRequestFilters, OwnerRequestFilters
from workspace_refunds.domain.states import RequestStatus
from workspace_refunds.utils.date_utils import utc_now


class ListingRepository:
    """Repository for listings and their cancellation policy"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, listing_id: uuid.UUID) -> Optional[Listing]:
        return self.db.get(Listing, listing_id)

    def save_policy(self, listing: Listing, policy: Dict[str, Any]) -> Listing:
        """Replace the listing's policy document"""
        listing.cancellation_policy = policy
        self.db.flush()
        return listing


class BookingRepository:
    """Repository for bookings; status and refund ledger are written separately"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, booking_id: uuid.UUID) -> Optional[Booking]:
        return self.db.get(Booking, booking_id)

    def set_status(self, booking_id: uuid.UUID, status: str) -> None:
        """Partial update of the booking status only"""
        self.db.execute(
            update(Booking)
            .where(Booking.id == booking_id)
            .values(status=status, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )

    def append_refund(self, booking_id: uuid.UUID, entry: Dict[str, Any]) -> None:
        """Append one entry to the booking's refund ledger"""
        booking = self.get(booking_id)
        if booking is None:
            return
        # Reassign so the JSON column is flagged dirty
        booking.refunds = [*(booking.refunds or []), entry]
        booking.updated_at = utc_now()
        self.db.flush()


class CancellationRequestRepository:
    """Repository for cancellation requests"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, **fields: Any) -> CancellationRequest:
        """Persist a new request"""
        db_request = CancellationRequest(**fields)
        self.db.add(db_request)
        self.db.flush()  # Get ID without committing
        return db_request

    def get(self, request_id: uuid.UUID) -> Optional[CancellationRequest]:
        return self.db.get(CancellationRequest, request_id)

    def find_active_for_booking(
        self, booking_id: uuid.UUID, active: Iterable[RequestStatus]
    ) -> Optional[CancellationRequest]:
        return (
            self.db.query(CancellationRequest)
            .filter(CancellationRequest.booking_id == booking_id)
            .filter(CancellationRequest.status.in_([RequestStatus(s).value for s in active]))
            .first()
        )

    def transition(
        self,
        request_id: uuid.UUID,
        from_statuses: Iterable[RequestStatus],
        to_status: RequestStatus,
        **values: Any,
    ) -> bool:
        """
        Atomically move a request to to_status if it is currently in from_statuses.

        Runs as one UPDATE ... WHERE status IN (...), so two concurrent callers
        cannot both succeed. Returns False when no row matched. Loaded
        instances are not synchronised; callers commit right after, which
        expires them.
        """
        stmt = (
            update(CancellationRequest)
            .where(CancellationRequest.id == request_id)
            .where(CancellationRequest.status.in_([RequestStatus(s).value for s in from_statuses]))
            .values(status=RequestStatus(to_status).value, updated_at=utc_now(), **values)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        return result.rowcount == 1

    def list_for_owner(self, owner_id: str, filters: OwnerRequestFilters) -> Tuple[List[CancellationRequest], int]:
        """Filtered, newest-first page of an owner's requests plus the unpaged total"""
        query = self.db.query(CancellationRequest).filter(CancellationRequest.owner_id == owner_id)

        if filters.status and filters.status != "all":
            query = query.filter(CancellationRequest.status == filters.status)
        if filters.listing_id:
            query = query.filter(CancellationRequest.listing_id == filters.listing_id)
        query = _within(query, filters.start_date, filters.end_date)

        return _paginate(query, filters.page, filters.limit)

    def list_for_client(
        self,
        client_id: str,
        status: Optional[str] = None,
        booking_id: Optional[uuid.UUID] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[CancellationRequest], int]:
        query = self.db.query(CancellationRequest).filter(CancellationRequest.client_id == client_id)
        if status:
            query = query.filter(CancellationRequest.status == status)
        if booking_id:
            query = query.filter(CancellationRequest.booking_id == booking_id)
        return _paginate(query, page, limit)

    def list_for_stats(
        self, owner_id: str, start_date: Optional[datetime] = None, end_date: Optional[datetime] = None
    ) -> List[CancellationRequest]:
        query = self.db.query(CancellationRequest).filter(CancellationRequest.owner_id == owner_id)
        return _within(query, start_date, end_date).all()

    def list_all(self, filters: AdminRequestFilters) -> Tuple[List[CancellationRequest], int]:
        """Platform-wide, newest-first page plus the unpaged total"""
        query = self.db.query(CancellationRequest)
        if filters.status and filters.status != "all":
            query = query.filter(CancellationRequest.status == filters.status)
        if filters.is_automatic is not None:
            query = query.filter(CancellationRequest.is_automatic == filters.is_automatic)
        query = _within(query, filters.start_date, filters.end_date)
        return _paginate(query, filters.page, filters.limit)

    def count_by(self, column) -> Dict[Any, int]:
        """Request counts grouped by one column"""
        rows = self.db.query(column, func.count(CancellationRequest.id)).group_by(column).all()
        return {key: count for key, count in rows}

    def refund_totals(self, statuses: Iterable[RequestStatus]) -> Tuple[int, Decimal, Decimal]:
        """Count, summed final refund and summed original amount over requests in statuses"""
        count, refunded, original = (
            self.db.query(
                func.count(CancellationRequest.id),
                func.sum(CancellationRequest.final_refund),
                func.sum(CancellationRequest.original_amount),
            )
            .filter(CancellationRequest.status.in_([RequestStatus(s).value for s in statuses]))
            .one()
        )
        return count, Decimal(str(refunded or 0)), Decimal(str(original or 0))

    def list_retryable(self, max_retries: int, limit: int = 50) -> List[CancellationRequest]:
        """Failed requests still under the retry ceiling, oldest first"""
        return (
            self.db.query(CancellationRequest)
            .filter(CancellationRequest.status == RequestStatus.FAILED.value)
            .filter(CancellationRequest.retry_count < max_retries)
            .order_by(CancellationRequest.updated_at.asc())
            .limit(limit)
            .all()
        )


class RefundTransactionRepository:
    """Repository for refund transactions"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, **fields: Any) -> RefundTransaction:
        transaction = RefundTransaction(**fields)
        self.db.add(transaction)
        self.db.flush()
        return transaction

    def get(self, transaction_id: uuid.UUID) -> Optional[RefundTransaction]:
        return self.db.get(RefundTransaction, transaction_id)

    def list_for_request(self, request_id: uuid.UUID) -> List[RefundTransaction]:
        """Every gateway attempt for a request, oldest first"""
        return (
            self.db.query(RefundTransaction)
            .filter(RefundTransaction.cancellation_request_id == request_id)
            .order_by(RefundTransaction.initiated_at.asc())
            .all()
        )


def _within(query, start_date: Optional[datetime], end_date: Optional[datetime]):
    if start_date:
        query = query.filter(CancellationRequest.requested_at >= start_date)
    if end_date:
        query = query.filter(CancellationRequest.requested_at <= end_date)
    return query


def _paginate(query, page: int, limit: int) -> Tuple[List[CancellationRequest], int]:
    total = query.count()
    items = (
        query.order_by(CancellationRequest.requested_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total
