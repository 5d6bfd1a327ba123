"""Best-effort cancellation and refund notifications"""

import logging
import uuid
from typing import Any, Callable, Dict, Optional
from sqlalchemy.orm import Session

from workspace_refunds.domain.exceptions import NotificationError
from workspace_refunds.domain.models import NotificationResult
from workspace_refunds.infrastructure.clients.notifications import NotificationClient
from workspace_refunds.infrastructure.database.models import CancellationRequest
from workspace_refunds.infrastructure.database.repositories import CancellationRequestRepository
from workspace_refunds.infrastructure.observability.metrics import notification_failure_counter

logger = logging.getLogger(__name__)

# Same call shape as BackgroundTasks.add_task
Scheduler = Callable[..., None]


class NotificationService:
    """
    Sends one event per lifecycle step to the notification webhook.

    The payload is built from the request as it stands when the method is
    called. With a scheduler (the request's BackgroundTasks in the API) the
    webhook delivery runs after the response is sent and the result comes
    back queued; without one it is delivered inline. Every public method
    returns a NotificationResult and never raises.
    """

    def __init__(
        self,
        db: Session,
        client: Optional[NotificationClient] = None,
        schedule: Optional[Scheduler] = None,
    ):
        self.requests = CancellationRequestRepository(db)
        self.client = client or NotificationClient()
        self.schedule = schedule

    async def send_cancellation_confirmation(self, request_id: uuid.UUID) -> NotificationResult:
        """Tell the client their cancellation request was received"""
        return await self._send("cancellation_confirmation", request_id, recipient="client")

    async def send_refund_request_notification(self, request_id: uuid.UUID) -> NotificationResult:
        """Ask the owner to review a new request"""
        return await self._send("refund_request", request_id, recipient="owner")

    async def send_refund_approved(self, request_id: uuid.UUID) -> NotificationResult:
        return await self._send("refund_approved", request_id, recipient="client")

    async def send_refund_rejected(self, request_id: uuid.UUID) -> NotificationResult:
        return await self._send("refund_rejected", request_id, recipient="client")

    async def send_automatic_refund_processed(self, request_id: uuid.UUID) -> NotificationResult:
        """Tell the owner a request qualified for automatic refund"""
        return await self._send("automatic_refund_processed", request_id, recipient="owner")

    async def _send(self, kind: str, request_id: uuid.UUID, recipient: str) -> NotificationResult:
        if not self.client.enabled:
            return NotificationResult(sent=False, reason="disabled")

        try:
            request = self.requests.get(request_id)
            if request is None:
                return NotificationResult(sent=False, reason="request_not_found")
            payload = _build_payload(kind, request, recipient)
        except Exception as e:
            notification_failure_counter.labels(kind=kind).inc()
            logger.exception("Could not build notification", extra={"kind": kind, "request_id": str(request_id)})
            return NotificationResult(sent=False, reason=str(e))

        if self.schedule is not None:
            self.schedule(self.deliver, kind, payload)
            return NotificationResult(sent=False, queued=True)

        return await self.deliver(kind, payload)

    async def deliver(self, kind: str, payload: Dict[str, Any]) -> NotificationResult:
        """Post one prepared event; delivery problems come back as sent=False with a reason"""
        try:
            await self.client.send_event(payload)
            return NotificationResult(sent=True)

        except NotificationError as e:
            notification_failure_counter.labels(kind=kind).inc()
            logger.warning("Notification failed", extra={"kind": kind, "request_id": payload["request_id"], "error": str(e)})
            return NotificationResult(sent=False, reason=str(e))

        except Exception as e:
            notification_failure_counter.labels(kind=kind).inc()
            logger.exception("Unexpected notification error", extra={"kind": kind, "request_id": payload["request_id"]})
            return NotificationResult(sent=False, reason=str(e))


def _build_payload(kind: str, request: CancellationRequest, recipient: str) -> Dict[str, Any]:
    refund = request.custom_refund_amount if request.custom_refund_amount is not None else request.final_refund
    return {
        "event": kind,
        "recipient_id": request.client_id if recipient == "client" else request.owner_id,
        "recipient_role": recipient,
        "request_id": str(request.id),
        "booking_id": str(request.booking_id),
        "listing_id": str(request.listing_id),
        "status": request.status,
        "is_automatic": request.is_automatic,
        "booking_amount": str(request.booking_amount),
        "refund_amount": str(refund),
        "rejection_reason": request.rejection_reason,
        "booking_start_date": request.booking_start_date.isoformat(),
    }
