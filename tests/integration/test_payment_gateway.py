"""Integration tests for refund settlement through the payment gateway"""

import httpx
import pytest
import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from prometheus_client import REGISTRY
from sqlalchemy.orm import Session

from workspace_refunds.config import settings
from workspace_refunds.domain.exceptions import GatewayError, NotificationError
from workspace_refunds.infrastructure.clients.notifications import NotificationClient
from workspace_refunds.infrastructure.clients.payment_gateway import PaymentGatewayClient, to_minor_units
from workspace_refunds.infrastructure.database.models import Booking, CancellationRequest, RefundTransaction
from workspace_refunds.infrastructure.database.repositories import CancellationRequestRepository
from workspace_refunds.services.notifications import NotificationService
from workspace_refunds.services.payment_gateway import PaymentGatewayService

CLIENT_ID = "client_1"
OWNER_ID = "owner_1"

GATEWAY_URL = "https://gateway.test/v1/refunds"


@pytest.fixture
def processing_request(service, make_listing, make_booking, db: Session):
    """A strict-policy request already moved into processing"""

    async def _make(payment_reference="pay_abc123"):
        booking = make_booking(make_listing(policy="strict"), hours_ahead=400, payment_reference=payment_reference)
        request = await service.create_request(booking.id, CLIENT_ID, "schedule_change")
        db.query(CancellationRequest).filter_by(id=request.id).update({"status": "processing"})
        db.commit()
        return db.get(CancellationRequest, request.id)

    return _make


def gateway_response(status_code: int, body) -> httpx.Response:
    return httpx.Response(status_code, json=body, request=httpx.Request("POST", GATEWAY_URL))


# ------------------------------------------------------------- process_refund


async def test_process_refund_success(db: Session, gateway_client, processing_request):
    request = await processing_request()
    gateway = PaymentGatewayService(db, gateway_client)

    result = await gateway.process_refund(
        request_id=request.id,
        booking_id=request.booking_id,
        amount=Decimal("450.00"),
        payment_reference="pay_abc123",
    )

    assert result.success is True
    assert result.refund_id == "ref_test_123"

    db.expire_all()
    request = db.get(CancellationRequest, request.id)
    assert request.status == "completed"
    assert request.refund_transaction_id == "ref_test_123"
    assert request.gateway_response["id"] == "ref_test_123"

    transaction = db.query(RefundTransaction).one()
    assert transaction.status == "completed"
    assert transaction.amount == Decimal("450.00")
    assert transaction.currency == "PHP"
    assert transaction.gateway_provider == "paymongo"
    assert transaction.completed_at is not None

    ledger = db.get(Booking, request.booking_id).refunds
    assert ledger == [
        {
            "refund_id": "ref_test_123",
            "amount": "450.00",
            "status": "pending",
            "created_at": ledger[0]["created_at"],
        }
    ]


async def test_process_refund_failure(db: Session, gateway_client, processing_request):
    gateway_client.create_refund.side_effect = GatewayError("Payment gateway unreachable")
    request = await processing_request()
    gateway = PaymentGatewayService(db, gateway_client)

    result = await gateway.process_refund(request.id, request.booking_id, Decimal("450.00"), "pay_abc123")

    assert result.success is False
    assert result.error == "Payment gateway unreachable"

    db.expire_all()
    request = db.get(CancellationRequest, request.id)
    assert request.status == "failed"
    assert request.failure_reason == "Payment gateway unreachable"
    assert db.get(Booking, request.booking_id).refunds == []

    transaction = db.query(RefundTransaction).one()
    assert transaction.status == "failed"
    assert transaction.gateway_error == "Payment gateway unreachable"
    assert transaction.failed_at is not None


async def test_process_refund_zero_amount_skips_gateway(db: Session, gateway_client, processing_request):
    request = await processing_request()
    gateway = PaymentGatewayService(db, gateway_client)

    result = await gateway.process_refund(request.id, request.booking_id, Decimal("0"), "pay_abc123")

    assert result.success is True
    gateway_client.create_refund.assert_not_awaited()
    db.expire_all()
    assert db.get(CancellationRequest, request.id).status == "completed"
    assert db.query(RefundTransaction).count() == 0


async def test_process_refund_missing_reference(db: Session, gateway_client, processing_request):
    request = await processing_request()
    gateway = PaymentGatewayService(db, gateway_client)

    result = await gateway.process_refund(request.id, request.booking_id, Decimal("450.00"), "")

    assert result.success is False
    assert result.error == "Missing payment reference"
    gateway_client.create_refund.assert_not_awaited()


async def test_ledger_write_failure_keeps_refund_successful(db: Session, gateway_client, processing_request):
    request = await processing_request()
    gateway = PaymentGatewayService(db, gateway_client)
    failures_before = REGISTRY.get_sample_value("refunds_gateway_failures_total")

    with patch.object(gateway.bookings, "append_refund", side_effect=RuntimeError("ledger locked")):
        result = await gateway.process_refund(request.id, request.booking_id, Decimal("450.00"), "pay_abc123")

    assert result.success is True
    assert result.refund_id == "ref_test_123"
    assert REGISTRY.get_sample_value("refunds_gateway_failures_total") == failures_before

    db.expire_all()
    request = db.get(CancellationRequest, request.id)
    assert request.status == "completed"
    assert request.failure_reason is None
    assert db.query(RefundTransaction).one().status == "completed"
    assert db.get(Booking, request.booking_id).refunds == []


# --------------------------------------------------------------- retry_refund


async def test_retry_failed_refund(db: Session, gateway_client, processing_request):
    gateway_client.create_refund.side_effect = [GatewayError("timeout"), {"id": "ref_retry_1", "attributes": {}}]
    request = await processing_request()
    gateway = PaymentGatewayService(db, gateway_client)
    await gateway.process_refund(request.id, request.booking_id, Decimal("450.00"), "pay_abc123")

    repo = CancellationRequestRepository(db)
    assert [r.id for r in repo.list_retryable(settings.refund_max_retries)] == [request.id]

    result = await gateway.retry_refund(request.id)

    assert result.success is True
    assert result.refund_id == "ref_retry_1"
    db.expire_all()
    request = db.get(CancellationRequest, request.id)
    assert request.status == "completed"
    assert request.retry_count == 1
    assert request.last_retry_at is not None
    assert request.failure_reason is None
    assert repo.list_retryable(settings.refund_max_retries) == []


async def test_retry_stops_at_ceiling(db: Session, gateway_client, processing_request):
    request = await processing_request()
    db.query(CancellationRequest).filter_by(id=request.id).update(
        {"status": "failed", "retry_count": settings.refund_max_retries}
    )
    db.commit()
    gateway = PaymentGatewayService(db, gateway_client)

    result = await gateway.retry_refund(request.id)

    assert result.success is False
    assert result.error == "Maximum retry attempts reached"
    assert CancellationRequestRepository(db).list_retryable(settings.refund_max_retries) == []
    gateway_client.create_refund.assert_not_awaited()


async def test_retry_requires_failed_status(db: Session, gateway_client, processing_request):
    request = await processing_request()
    gateway = PaymentGatewayService(db, gateway_client)

    result = await gateway.retry_refund(request.id)

    assert result.success is False
    assert result.error == "Cannot retry request with status: processing"


async def test_retry_without_payment_reference(db: Session, gateway_client, processing_request):
    request = await processing_request(payment_reference=None)
    db.query(CancellationRequest).filter_by(id=request.id).update({"status": "failed"})
    db.commit()
    gateway = PaymentGatewayService(db, gateway_client)

    result = await gateway.retry_refund(request.id)

    assert result.success is False
    assert result.error == "Payment reference not found in booking"


async def test_retry_blocked_by_newer_active_request(db: Session, service, gateway_client, processing_request):
    request = await processing_request()
    db.query(CancellationRequest).filter_by(id=request.id).update({"status": "failed"})
    db.commit()
    newer = await service.create_request(request.booking_id, CLIENT_ID, "emergency")
    gateway = PaymentGatewayService(db, gateway_client)

    result = await gateway.retry_refund(request.id)

    assert result.success is False
    assert result.error == "Another cancellation request is active for this booking"
    gateway_client.create_refund.assert_not_awaited()
    db.expire_all()
    assert db.get(CancellationRequest, request.id).status == "failed"
    assert db.get(CancellationRequest, newer.id).status == "pending"


# ------------------------------------------------------------------ HTTP client


def test_to_minor_units():
    assert to_minor_units(Decimal("450.00")) == 45000
    assert to_minor_units(Decimal("0.015")) == 2
    assert to_minor_units(Decimal("1")) == 100


async def test_gateway_client_sends_refund():
    client = PaymentGatewayClient(base_url="https://gateway.test/v1", secret_key="sk_test")
    body = {"data": {"id": "ref_1", "attributes": {"status": "pending", "amount": 45000}}}

    with patch("httpx.AsyncClient.post", new=AsyncMock(return_value=gateway_response(200, body))) as post:
        refund = await client.create_refund("pay_abc", Decimal("450.00"), "requested_by_customer", "note")

    assert refund["id"] == "ref_1"
    assert post.await_args.args[0] == GATEWAY_URL
    sent = post.await_args.kwargs["json"]["data"]["attributes"]
    assert sent == {
        "amount": 45000,
        "payment_id": "pay_abc",
        "reason": "requested_by_customer",
        "notes": "note",
    }


async def test_gateway_client_error_status():
    client = PaymentGatewayClient(base_url="https://gateway.test/v1", secret_key="sk_test")
    body = {"errors": [{"detail": "The payment has already been fully refunded."}]}

    with patch("httpx.AsyncClient.post", new=AsyncMock(return_value=gateway_response(400, body))):
        with pytest.raises(GatewayError, match="400 The payment has already been fully refunded"):
            await client.create_refund("pay_abc", Decimal("10"), "requested_by_customer", "note")


async def test_gateway_client_timeout():
    client = PaymentGatewayClient(base_url="https://gateway.test/v1", secret_key="sk_test", timeout=2.0)

    with patch("httpx.AsyncClient.post", new=AsyncMock(side_effect=httpx.ReadTimeout("slow"))):
        with pytest.raises(GatewayError, match="timeout after 2.0s"):
            await client.create_refund("pay_abc", Decimal("10"), "requested_by_customer", "note")


async def test_gateway_client_missing_id():
    client = PaymentGatewayClient(base_url="https://gateway.test/v1", secret_key="sk_test")

    with patch("httpx.AsyncClient.post", new=AsyncMock(return_value=gateway_response(200, {"data": {}}))):
        with pytest.raises(GatewayError, match="Invalid response"):
            await client.create_refund("pay_abc", Decimal("10"), "requested_by_customer", "note")


async def test_gateway_client_requires_secret_key():
    client = PaymentGatewayClient(base_url="https://gateway.test/v1", secret_key="")

    with pytest.raises(GatewayError, match="secret key is not configured"):
        await client.create_refund("pay_abc", Decimal("10"), "requested_by_customer", "note")


# ------------------------------------------------------------ notification client


@patch("workspace_refunds.infrastructure.clients.notifications.asyncio.sleep", new_callable=AsyncMock)
async def test_notification_client_retries_then_succeeds(mock_sleep: AsyncMock):
    client = NotificationClient(webhook_url="https://hooks.test/notify")
    responses = [
        httpx.Response(503, request=httpx.Request("POST", "https://hooks.test/notify")),
        httpx.Response(200, request=httpx.Request("POST", "https://hooks.test/notify")),
    ]

    with patch("httpx.AsyncClient.post", new=AsyncMock(side_effect=responses)) as post:
        await client.send_event({"event": "refund_approved"})

    assert post.await_count == 2
    mock_sleep.assert_awaited_once_with(settings.notification_backoff_base)


@patch("workspace_refunds.infrastructure.clients.notifications.asyncio.sleep", new_callable=AsyncMock)
async def test_notification_client_gives_up(mock_sleep: AsyncMock):
    client = NotificationClient(webhook_url="https://hooks.test/notify")

    with patch("httpx.AsyncClient.post", new=AsyncMock(side_effect=httpx.ConnectError("refused"))):
        with pytest.raises(NotificationError, match=f"after {settings.notification_max_retries} attempts"):
            await client.send_event({"event": "refund_approved"})

    assert mock_sleep.await_count == settings.notification_max_retries - 1


async def test_notification_service_swallows_delivery_errors(db: Session, service, make_listing, make_booking):
    booking = make_booking(make_listing(policy="strict"), hours_ahead=400)
    request = await service.create_request(booking.id, CLIENT_ID, "schedule_change")
    failing = MagicMock(enabled=True)
    failing.send_event = AsyncMock(side_effect=NotificationError("webhook down"))

    result = await NotificationService(db, failing).send_refund_approved(request.id)

    assert result.sent is False
    assert result.reason == "webhook down"


async def test_notification_service_disabled(db: Session):
    result = await NotificationService(db, NotificationClient(webhook_url="")).send_refund_rejected(uuid.uuid4())

    assert result.sent is False
    assert result.reason == "disabled"
