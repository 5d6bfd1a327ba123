"""Cancellation request lifecycle: creation, owner resolution, automatic processing and settlement"""

import logging
import math
import time
import uuid
from collections import Counter
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, List, Optional, Tuple
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from workspace_refunds.config import settings
from workspace_refunds.domain.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from workspace_refunds.domain.models import (
    AdminRequestFilters,
    AutomaticRefundResult,
    BookingTerms,
    CancellationPolicy,
    NotificationResult,
    OwnerRequestFilters,
    Page,
    PlatformStats,
    RefundBreakdown,
    RefundStats,
)
from workspace_refunds.domain.refunds import calculate_refund, is_automatic_eligible, to_money
from workspace_refunds.domain.states import (
    ACTIVE_STATUSES,
    APPROVED_FAMILY,
    BOOKING_CANCELLED,
    BOOKING_COMPLETED,
    CANCELLABLE_BOOKING_STATUSES,
    CancellationReason,
    RequestStatus,
    sources_for,
)
from workspace_refunds.infrastructure.database.models import Booking, CancellationRequest, RefundTransaction
from workspace_refunds.infrastructure.database.repositories import (
    BookingRepository,
    CancellationRequestRepository,
    ListingRepository,
    RefundTransactionRepository,
)
from workspace_refunds.infrastructure.observability.logging import log_resolution
from workspace_refunds.infrastructure.observability.metrics import (
    cancellation_request_counter,
    record_settlement,
    resolution_counter,
)
from workspace_refunds.services.notifications import NotificationService
from workspace_refunds.services.payment_gateway import REFUND_REASON, PaymentGatewayService, refund_amount_for
from workspace_refunds.services.policies import PolicyManager
from workspace_refunds.utils.date_utils import ensure_utc, utc_now


class CancellationRequestService:
    """
    Orchestrates the cancellation request state machine.

        pending -> approved -> processing -> completed | failed
        pending -> rejected
        pending -> processing (automatic) -> completed | failed

    Status changes go through a conditional UPDATE on the current status, so
    concurrent approve/reject/automatic calls on one request cannot both win.
    Notifications are best effort and never affect the returned result; the
    notifier may hand webhook delivery to a background scheduler.
    """

    def __init__(
        self,
        db: Session,
        gateway: PaymentGatewayService,
        notifier: NotificationService,
        policies: Optional[PolicyManager] = None,
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[logging.Logger] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.notifier = notifier
        self.policies = policies or PolicyManager(db)
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self.bookings = BookingRepository(db)
        self.listings = ListingRepository(db)
        self.requests = CancellationRequestRepository(db)
        self.transactions = RefundTransactionRepository(db)

    # ------------------------------------------------------------------ client

    async def create_request(
        self,
        booking_id: uuid.UUID,
        client_id: str,
        reason: str,
        reason_other: Optional[str] = None,
    ) -> CancellationRequest:
        """
        Open a cancellation request for a booking.

        The refund breakdown and booking facts are snapshotted onto the
        request. The booking itself is left untouched until resolution.

        Raises:
            ValidationError: bad reason, booking not cancellable, policy forbids cancellation
            AuthorizationError: booking belongs to someone else
            NotFoundError: unknown booking or listing
            ConflictError: an active request already exists for the booking
        """
        reason, reason_other = _validate_reason(reason, reason_other)
        booking = self._load_client_booking(booking_id, client_id)

        now = self.clock()
        _validate_booking_status(booking, now)

        if self.requests.find_active_for_booking(booking.id, ACTIVE_STATUSES) is not None:
            raise ConflictError("A cancellation request already exists for this booking")

        policy = self.policies.get_policy(booking.listing_id)
        if not policy.allow_cancellation:
            raise ValidationError("Cancellation is not allowed for this workspace")

        breakdown = calculate_refund(BookingTerms(amount=booking.amount, start_date=booking.start_date), policy, now)
        is_automatic = is_automatic_eligible(policy, breakdown)

        listing = self.listings.get(booking.listing_id)
        if listing is None:
            raise NotFoundError("Listing not found")

        try:
            request = self.requests.create(
                booking_id=booking.id,
                client_id=client_id,
                owner_id=listing.owner_id,
                listing_id=listing.id,
                requested_at=now,
                booking_start_date=booking.start_date,
                booking_end_date=booking.end_date,
                booking_amount=booking.amount,
                booking_status=booking.status,
                original_amount=breakdown.original_amount,
                refund_percentage=breakdown.refund_percentage,
                refund_amount=breakdown.refund_amount,
                processing_fee=breakdown.processing_fee,
                final_refund=breakdown.final_refund,
                hours_until_booking=breakdown.hours_until_booking,
                applied_tier=breakdown.applied_tier.to_dict() if breakdown.applied_tier else None,
                cancellation_reason=reason,
                cancellation_reason_other=reason_other,
                status=RequestStatus.PENDING.value,
                is_automatic=is_automatic,
            )
            self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent create for the same booking
            self.db.rollback()
            raise ConflictError("A cancellation request already exists for this booking")

        cancellation_request_counter.labels(mode="automatic" if is_automatic else "manual").inc()
        self.logger.info(
            "Cancellation request created",
            extra={
                "request_id": str(request.id),
                "booking_id": str(booking.id),
                "is_automatic": is_automatic,
                "final_refund": str(breakdown.final_refund),
            },
        )

        await self._notify(self.notifier.send_cancellation_confirmation, request.id)
        if is_automatic:
            await self._notify(self.notifier.send_automatic_refund_processed, request.id)
        else:
            await self._notify(self.notifier.send_refund_request_notification, request.id)

        return request

    def preview_refund(self, booking_id: uuid.UUID, client_id: str) -> Tuple[RefundBreakdown, CancellationPolicy]:
        """Breakdown a cancellation right now would produce; nothing is stored"""
        booking = self._load_client_booking(booking_id, client_id)
        policy = self.policies.get_policy(booking.listing_id)
        if not policy.allow_cancellation:
            raise ValidationError("Cancellation is not allowed for this workspace")

        breakdown = calculate_refund(
            BookingTerms(amount=booking.amount, start_date=booking.start_date), policy, self.clock()
        )
        return breakdown, policy

    def get_client_requests(
        self,
        client_id: str,
        status: Optional[str] = None,
        booking_id: Optional[uuid.UUID] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Page[CancellationRequest]:
        page, limit = _page_bounds(page, limit)
        items, total = self.requests.list_for_client(client_id, status, booking_id, page, limit)
        return Page(items=items, total=total, page=page, pages=math.ceil(total / limit))

    def get_client_request(self, request_id: uuid.UUID, client_id: str) -> CancellationRequest:
        request = self.requests.get(request_id)
        if request is None:
            raise NotFoundError("Cancellation request not found")
        if request.client_id != client_id:
            raise AuthorizationError("Forbidden: This cancellation request does not belong to you")
        return request

    # ------------------------------------------------------------------- owner

    def get_owner_requests(self, owner_id: str, filters: Optional[OwnerRequestFilters] = None) -> Page[CancellationRequest]:
        """Newest-first page of an owner's requests; read only"""
        filters = filters or OwnerRequestFilters()
        filters.page, filters.limit = _page_bounds(filters.page, filters.limit)
        items, total = self.requests.list_for_owner(owner_id, filters)
        return Page(items=items, total=total, page=filters.page, pages=math.ceil(total / filters.limit))

    def get_owner_request(self, request_id: uuid.UUID, owner_id: str) -> CancellationRequest:
        request = self.requests.get(request_id)
        if request is None or request.owner_id != owner_id:
            raise NotFoundError("Refund request not found")
        return request

    def get_owner_stats(
        self, owner_id: str, start_date: Optional[datetime] = None, end_date: Optional[datetime] = None
    ) -> RefundStats:
        requests = self.requests.list_for_stats(owner_id, start_date, end_date)
        approved_family = {s.value for s in APPROVED_FAMILY}

        approved = [r for r in requests if r.status in approved_family]
        rejected = sum(1 for r in requests if r.status == RequestStatus.REJECTED.value)
        pending = sum(1 for r in requests if r.status == RequestStatus.PENDING.value)

        decided = len(approved) + rejected
        approval_rate = int(len(approved) * 100 / decided + 0.5) if decided else 0
        total_refunded = sum((r.final_refund for r in approved), Decimal("0.00"))
        avg_refund = to_money(total_refunded / len(approved)) if approved else Decimal("0.00")

        return RefundStats(
            total_requests=len(requests),
            pending=pending,
            approved=len(approved),
            rejected=rejected,
            approval_rate=approval_rate,
            total_refunded=total_refunded,
            avg_refund_amount=avg_refund,
            reason_breakdown=dict(Counter(r.cancellation_reason or "unknown" for r in requests)),
        )

    async def approve_request(
        self,
        request_id: uuid.UUID,
        owner_id: str,
        custom_refund_amount: Any = None,
        custom_refund_note: Optional[str] = None,
    ) -> CancellationRequest:
        """
        Approve a pending request, cancel the booking and settle the refund.

        A custom amount must lie within [0, booking_amount] and come with a
        justification note; it replaces final_refund. The returned request is
        always settled (completed or failed), even when the gateway failed.
        """
        start_time = time.time()
        request = self._load_owner_request(request_id, owner_id)
        _require_pending(request)

        values = {"approved_by": owner_id, "approved_at": self.clock()}
        if custom_refund_amount is not None:
            amount = _parse_amount(custom_refund_amount)
            if amount < 0 or amount > request.booking_amount:
                raise ValidationError(f"Custom refund amount must be between 0 and {request.booking_amount}")
            if not custom_refund_note or not custom_refund_note.strip():
                raise ValidationError("Justification note is required for custom refund amounts")
            values.update(
                custom_refund_amount=amount,
                custom_refund_note=custom_refund_note.strip(),
                final_refund=amount,
            )

        self._transition_or_conflict(request.id, RequestStatus.APPROVED, **values)
        self.bookings.set_status(request.booking_id, BOOKING_CANCELLED)
        self.db.commit()

        await self._settle(request.id)
        resolution_counter.labels(action="approved").inc()
        await self._notify(self.notifier.send_refund_approved, request.id)

        settled = self.requests.get(request.id)
        log_resolution(
            str(settled.id), owner_id, "approved", settled.status, refund_amount_for(settled),
            (time.time() - start_time) * 1000,
        )
        return settled

    async def reject_request(self, request_id: uuid.UUID, owner_id: str, reason: str) -> CancellationRequest:
        """Reject a pending request and put the booking back the way it was"""
        start_time = time.time()
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required")

        request = self._load_owner_request(request_id, owner_id)
        _require_pending(request)

        self._transition_or_conflict(
            request.id,
            RequestStatus.REJECTED,
            rejected_by=owner_id,
            rejected_at=self.clock(),
            rejection_reason=reason.strip(),
        )
        self.bookings.set_status(request.booking_id, request.booking_status)
        self.db.commit()

        resolution_counter.labels(action="rejected").inc()
        await self._notify(self.notifier.send_refund_rejected, request.id)

        rejected = self.requests.get(request.id)
        log_resolution(str(rejected.id), owner_id, "rejected", rejected.status, None, (time.time() - start_time) * 1000)
        return rejected

    # ------------------------------------------------------------------- admin

    def get_admin_requests(self, filters: Optional[AdminRequestFilters] = None) -> Page[CancellationRequest]:
        """Every request on the platform, newest first"""
        filters = filters or AdminRequestFilters()
        filters.page, filters.limit = _page_bounds(filters.page, filters.limit)
        items, total = self.requests.list_all(filters)
        return Page(items=items, total=total, page=filters.page, pages=math.ceil(total / filters.limit))

    def get_admin_request(self, request_id: uuid.UUID) -> Tuple[CancellationRequest, List[RefundTransaction]]:
        """A request together with every gateway attempt made for it"""
        request = self.requests.get(request_id)
        if request is None:
            raise NotFoundError("Cancellation request not found")
        return request, self.transactions.list_for_request(request.id)

    def get_platform_stats(self) -> PlatformStats:
        """
        Counts by status and by automatic/manual, plus refund totals.

        Refund totals cover approved, processing and completed requests;
        refund_rate is the refunded share of their original amounts.
        """
        by_status = self.requests.count_by(CancellationRequest.status)
        by_type = self.requests.count_by(CancellationRequest.is_automatic)
        refunded, total_refund, total_original = self.requests.refund_totals(APPROVED_FAMILY)

        return PlatformStats(
            total=sum(by_status.values()),
            by_status={s.value: by_status.get(s.value, 0) for s in RequestStatus},
            automatic=by_type.get(True, 0),
            manual=by_type.get(False, 0),
            total_refund_amount=to_money(total_refund),
            avg_refund_amount=to_money(total_refund / refunded) if refunded else Decimal("0.00"),
            total_original_amount=to_money(total_original),
            refund_rate=to_money(total_refund * 100 / total_original) if total_original else Decimal("0.00"),
        )

    # ------------------------------------------------------------------ system

    async def process_automatic_refund(self, request_id: uuid.UUID) -> AutomaticRefundResult:
        """Settle an auto-eligible pending request without owner involvement"""
        start_time = time.time()
        request = self.requests.get(request_id)
        if request is None:
            raise NotFoundError("Cancellation request not found")
        if not request.is_automatic:
            raise ValidationError("This request is not eligible for automatic refund")
        if request.status != RequestStatus.PENDING.value:
            raise ConflictError(f"Cannot process request with status: {request.status}")

        self._transition_or_conflict(request.id, RequestStatus.PROCESSING)
        self.bookings.set_status(request.booking_id, BOOKING_CANCELLED)
        self.db.commit()

        await self._settle(request.id)
        resolution_counter.labels(action="automatic").inc()

        updated = self.requests.get(request.id)
        success = updated.status == RequestStatus.COMPLETED.value
        if success:
            message = "Automatic refund processed successfully"
        elif updated.status == RequestStatus.FAILED.value:
            message = f"Automatic refund failed: {updated.failure_reason}"
        else:
            message = "Automatic refund processing initiated"

        log_resolution(
            str(updated.id), None, "automatic", updated.status, refund_amount_for(updated),
            (time.time() - start_time) * 1000,
        )
        return AutomaticRefundResult(success=success, request=updated, message=message)

    # ---------------------------------------------------------------- internal

    async def _settle(self, request_id: uuid.UUID) -> None:
        """
        Move an approved/processing request to completed or failed.

        No payment reference on the booking: completed directly, no money
        moves. Otherwise the gateway collaborator is called. Never raises.
        """
        try:
            request = self.requests.get(request_id)
            booking = self.bookings.get(request.booking_id)
            reference = booking.payment_reference if booking is not None else None

            if not reference:
                self.logger.warning(
                    "No payment reference on booking; completing without gateway refund",
                    extra={"request_id": str(request_id), "booking_id": str(request.booking_id)},
                )
                self.requests.transition(
                    request_id,
                    {RequestStatus.APPROVED, RequestStatus.PROCESSING},
                    RequestStatus.COMPLETED,
                    processed_at=self.clock(),
                )
                self.db.commit()
                record_settlement("skipped_no_reference")
                return

            self.requests.transition(
                request_id, {RequestStatus.APPROVED, RequestStatus.PROCESSING}, RequestStatus.PROCESSING
            )
            self.db.commit()

            request = self.requests.get(request_id)
            result = await self.gateway.process_refund(
                request_id=request.id,
                booking_id=request.booking_id,
                amount=refund_amount_for(request),
                payment_reference=reference,
                reason=REFUND_REASON,
            )
            if not result.success:
                self.logger.error(
                    f"Refund settlement failed: {result.error}", extra={"request_id": str(request_id)}
                )
                self._mark_failed(request_id, result.error or "Refund failed")

        except Exception as e:
            self.db.rollback()
            self.logger.exception("Error settling refund", extra={"request_id": str(request_id)})
            self._mark_failed(request_id, str(e))

    def _mark_failed(self, request_id: uuid.UUID, reason: str) -> None:
        """No-op when the request already left the settling statuses"""
        try:
            self.requests.transition(
                request_id,
                sources_for(RequestStatus.FAILED),
                RequestStatus.FAILED,
                failure_reason=reason,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            self.logger.exception("Could not mark request failed", extra={"request_id": str(request_id)})

    def _transition_or_conflict(self, request_id: uuid.UUID, target: RequestStatus, **values: Any) -> None:
        if not self.requests.transition(request_id, {RequestStatus.PENDING}, target, **values):
            self.db.rollback()
            raise ConflictError("Request has already been processed")

    async def _notify(self, send: Callable[[uuid.UUID], Awaitable[NotificationResult]], request_id: uuid.UUID) -> None:
        try:
            result = await send(request_id)
            if not result.sent and not result.queued:
                self.logger.info(
                    "Notification not sent",
                    extra={
                        "request_id": str(request_id),
                        "notification": getattr(send, "__name__", "notification"),
                        "reason": result.reason,
                    },
                )
        except Exception:
            self.logger.warning(
                "Notification failed", exc_info=True, extra={"request_id": str(request_id)}
            )

    def _load_client_booking(self, booking_id: uuid.UUID, client_id: str) -> Booking:
        booking = self.bookings.get(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        if booking.user_id != client_id:
            raise AuthorizationError("Unauthorized: This booking does not belong to you")
        return booking

    def _load_owner_request(self, request_id: uuid.UUID, owner_id: str) -> CancellationRequest:
        request = self.requests.get(request_id)
        if request is None:
            raise NotFoundError("Cancellation request not found")
        if request.owner_id != owner_id:
            raise AuthorizationError("Unauthorized: You do not own this listing")
        return request


def _validate_reason(reason: str, reason_other: Optional[str]) -> Tuple[str, Optional[str]]:
    valid = [r.value for r in CancellationReason]
    if reason not in valid:
        raise ValidationError(f"Invalid cancellation reason. Must be one of: {', '.join(valid)}")

    if reason == CancellationReason.OTHER.value:
        if not reason_other or not reason_other.strip():
            raise ValidationError('Please provide a reason for cancellation when selecting "other"')
        return reason, reason_other.strip()
    return reason, None


def _validate_booking_status(booking: Booking, now: datetime) -> None:
    if booking.status == BOOKING_CANCELLED:
        raise ValidationError("This booking has already been cancelled")
    if booking.status == BOOKING_COMPLETED:
        raise ValidationError("Cannot cancel a completed booking")
    if ensure_utc(booking.start_date) <= ensure_utc(now):
        raise ValidationError(
            "Cannot cancel a booking that has already started. Please contact the workspace owner directly."
        )
    if booking.status not in CANCELLABLE_BOOKING_STATUSES:
        raise ValidationError(f"Cannot cancel booking with status: {booking.status}")


def _require_pending(request: CancellationRequest) -> None:
    if request.status != RequestStatus.PENDING.value:
        raise ConflictError("Request has already been processed")


def _parse_amount(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("Custom refund amount must be a number")
    if not amount.is_finite():
        raise ValidationError("Custom refund amount must be a number")
    return to_money(amount)


def _page_bounds(page: Optional[int], limit: Optional[int]) -> Tuple[int, int]:
    page = max(1, page or 1)
    limit = min(max(1, limit or settings.default_page_size), settings.max_page_size)
    return page, limit
