"""Payment gateway collaborator: refund transactions, request settlement and the booking refund ledger"""

import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from workspace_refunds.config import settings
from workspace_refunds.domain.exceptions import GatewayError
from workspace_refunds.domain.models import GatewayRefundResult
from workspace_refunds.domain.states import RefundTransactionStatus, RequestStatus
from workspace_refunds.infrastructure.clients.payment_gateway import PaymentGatewayClient
from workspace_refunds.infrastructure.database.models import CancellationRequest
from workspace_refunds.infrastructure.database.repositories import (
    BookingRepository,
    CancellationRequestRepository,
    RefundTransactionRepository,
)
from workspace_refunds.infrastructure.observability.metrics import gateway_failure_counter, record_settlement
from workspace_refunds.utils.date_utils import utc_now

logger = logging.getLogger(__name__)

REFUND_REASON = "requested_by_customer"


class PaymentGatewayService:
    """Moves refund money through the gateway and records the outcome"""

    def __init__(self, db: Session, client: Optional[PaymentGatewayClient] = None):
        self.db = db
        self.client = client or PaymentGatewayClient()
        self.bookings = BookingRepository(db)
        self.requests = CancellationRequestRepository(db)
        self.transactions = RefundTransactionRepository(db)

    async def process_refund(
        self,
        request_id: uuid.UUID,
        booking_id: uuid.UUID,
        amount: Decimal,
        payment_reference: str,
        reason: str = REFUND_REASON,
    ) -> GatewayRefundResult:
        """
        Refund a processing request through the gateway.

        Flow:
        1. Create a pending RefundTransaction
        2. Call the gateway refunds API
        3. Mark transaction and request completed
        4. Append the refund to the booking's ledger (separate write)

        Never raises: on failure the transaction and request are marked
        failed and the error comes back in the result.
        """
        transaction_id = None
        logger.info(
            "Processing refund",
            extra={"request_id": str(request_id), "booking_id": str(booking_id), "amount": str(amount)},
        )

        try:
            if not payment_reference:
                raise GatewayError("Missing payment reference")

            booking = self.bookings.get(booking_id)
            request = self.requests.get(request_id)
            if booking is None:
                raise GatewayError("Booking not found")
            if request is None:
                raise GatewayError("Cancellation request not found")

            amount = Decimal(amount)
            if amount <= 0:
                # Nothing to move; the request is settled as-is
                self.requests.transition(request_id, {RequestStatus.PROCESSING}, RequestStatus.COMPLETED, processed_at=utc_now())
                self.db.commit()
                record_settlement("completed", 0.0)
                return GatewayRefundResult(success=True)

            transaction = self.transactions.create(
                cancellation_request_id=request_id,
                booking_id=booking_id,
                client_id=request.client_id,
                owner_id=request.owner_id,
                amount=amount,
                currency=booking.currency or settings.default_currency,
                payment_method=booking.payment_provider or settings.payment_gateway_provider,
                original_transaction_id=payment_reference,
                status=RefundTransactionStatus.PENDING.value,
                gateway_provider=settings.payment_gateway_provider,
            )
            transaction_id = transaction.id
            self.db.commit()

            refund = await self.client.create_refund(
                payment_reference=payment_reference,
                amount=amount,
                reason=reason,
                notes=f"Refund for cancellation request {request_id}",
            )
            refund_id = refund["id"]
            now = utc_now()

            transaction = self.transactions.get(transaction_id)
            transaction.status = RefundTransactionStatus.COMPLETED.value
            transaction.refund_transaction_id = refund_id
            transaction.gateway_response = refund
            transaction.completed_at = now
            transaction.updated_at = now

            self.requests.transition(
                request_id,
                {RequestStatus.PROCESSING},
                RequestStatus.COMPLETED,
                processed_at=now,
                refund_transaction_id=refund_id,
                gateway_response=refund,
            )
            self.db.commit()

            record_settlement("completed", float(amount))
            self._append_to_ledger(
                request_id,
                booking_id,
                {
                    "refund_id": refund_id,
                    "amount": str(amount),
                    "status": (refund.get("attributes") or {}).get("status", "pending"),
                    "created_at": now.isoformat(),
                },
            )
            logger.info("Refund processed", extra={"request_id": str(request_id), "refund_id": refund_id})
            return GatewayRefundResult(success=True, refund_id=refund_id, gateway_response=refund)

        except Exception as e:
            self.db.rollback()
            gateway_failure_counter.inc()
            logger.error(f"Refund processing failed: {e}", extra={"request_id": str(request_id)})
            self._record_failure(request_id, transaction_id, str(e))
            return GatewayRefundResult(success=False, error=str(e))

    async def retry_refund(self, request_id: uuid.UUID) -> GatewayRefundResult:
        """
        Re-run a failed refund, up to settings.refund_max_retries attempts.

        Called by the external retry job; returns a failure result instead of
        raising when the request cannot be retried.
        """
        request = self.requests.get(request_id)
        if request is None:
            return GatewayRefundResult(success=False, error="Cancellation request not found")
        if request.status != RequestStatus.FAILED.value:
            return GatewayRefundResult(success=False, error=f"Cannot retry request with status: {request.status}")
        if request.retry_count >= settings.refund_max_retries:
            return GatewayRefundResult(success=False, error="Maximum retry attempts reached")

        booking = self.bookings.get(request.booking_id)
        if booking is None or not booking.payment_reference:
            return GatewayRefundResult(success=False, error="Payment reference not found in booking")

        try:
            moved = self.requests.transition(
                request_id,
                {RequestStatus.FAILED},
                RequestStatus.PROCESSING,
                retry_count=CancellationRequest.retry_count + 1,
                last_retry_at=utc_now(),
                failure_reason=None,
            )
            self.db.commit()
        except IntegrityError:
            # A newer request for the same booking is already active
            self.db.rollback()
            return GatewayRefundResult(success=False, error="Another cancellation request is active for this booking")
        if not moved:
            return GatewayRefundResult(success=False, error="Request is no longer awaiting retry")

        return await self.process_refund(
            request_id=request.id,
            booking_id=booking.id,
            amount=refund_amount_for(request),
            payment_reference=booking.payment_reference,
        )

    def _append_to_ledger(self, request_id: uuid.UUID, booking_id: uuid.UUID, entry: Dict[str, Any]) -> None:
        """Money has already moved; a ledger write failure is logged, not reported as a failed refund"""
        try:
            self.bookings.append_refund(booking_id, entry)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception(
                "Refund completed but booking ledger update failed",
                extra={"request_id": str(request_id), "booking_id": str(booking_id), "refund_id": entry["refund_id"]},
            )

    def _record_failure(self, request_id: uuid.UUID, transaction_id: Optional[uuid.UUID], error: str) -> None:
        try:
            if transaction_id is not None:
                transaction = self.transactions.get(transaction_id)
                if transaction is not None and transaction.status == RefundTransactionStatus.PENDING.value:
                    transaction.status = RefundTransactionStatus.FAILED.value
                    transaction.gateway_error = error
                    transaction.failed_at = utc_now()
                    transaction.updated_at = transaction.failed_at

            self.requests.transition(request_id, {RequestStatus.PROCESSING}, RequestStatus.FAILED, failure_reason=error)
            self.db.commit()
            record_settlement("failed")
        except Exception:
            self.db.rollback()
            logger.exception("Failed to record refund failure", extra={"request_id": str(request_id)})


def refund_amount_for(request: CancellationRequest) -> Decimal:
    """Owner override if present, else the calculated final refund"""
    if request.custom_refund_amount is not None:
        return request.custom_refund_amount
    return request.final_refund
