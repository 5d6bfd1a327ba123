"""Pytest fixtures for testing"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Generator, Optional
from unittest.mock import AsyncMock, MagicMock
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from workspace_refunds.api.dependencies import get_notification_client, get_payment_gateway_client
from workspace_refunds.api.main import create_app
from workspace_refunds.domain.policies import POLICY_TEMPLATES
from workspace_refunds.infrastructure.clients.notifications import NotificationClient
from workspace_refunds.infrastructure.database.models import Base, Booking, Listing
from workspace_refunds.infrastructure.database.session import get_db
from workspace_refunds.services.cancellations import CancellationRequestService
from workspace_refunds.services.notifications import NotificationService
from workspace_refunds.services.payment_gateway import PaymentGatewayService


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Fixed "now" for service-level tests
NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

OWNER_ID = "owner_1"
CLIENT_ID = "client_1"


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db: Session) -> sessionmaker:
    """Extra sessions against the same test database (for interleaving tests)"""
    return TestingSessionLocal


@pytest.fixture
def gateway_client() -> MagicMock:
    """Payment gateway client that accepts every refund"""
    client = MagicMock()
    client.create_refund = AsyncMock(return_value={"id": "ref_test_123", "attributes": {"status": "pending"}})
    return client


@pytest.fixture
def notification_client() -> NotificationClient:
    """Webhook client with delivery disabled"""
    return NotificationClient(webhook_url="")


@pytest.fixture
def make_service(gateway_client: MagicMock, notification_client: NotificationClient) -> Callable[..., CancellationRequestService]:
    def _make(session: Session, clock: Callable[[], datetime] = lambda: NOW, notifier=None) -> CancellationRequestService:
        return CancellationRequestService(
            session,
            gateway=PaymentGatewayService(session, gateway_client),
            notifier=notifier or NotificationService(session, notification_client),
            clock=clock,
        )

    return _make


@pytest.fixture
def service(db: Session, make_service) -> CancellationRequestService:
    return make_service(db)


@pytest.fixture
def make_listing(db: Session) -> Callable[..., Listing]:
    """Persist a listing; policy may be a template name, a dict, or None"""

    def _make(owner_id: str = OWNER_ID, policy=None, title: str = "Hot desk, Makati") -> Listing:
        if isinstance(policy, str):
            policy = POLICY_TEMPLATES[policy]
        listing = Listing(owner_id=owner_id, title=title, cancellation_policy=policy)
        db.add(listing)
        db.commit()
        return listing

    return _make


@pytest.fixture
def make_booking(db: Session) -> Callable[..., Booking]:
    """Persist a booking starting `hours_ahead` hours after `now`"""

    def _make(
        listing: Listing,
        user_id: str = CLIENT_ID,
        hours_ahead: float = 200,
        amount: str = "1000.00",
        status: str = "paid",
        payment_reference: Optional[str] = "pay_abc123",
        now: Optional[datetime] = None,
    ) -> Booking:
        start = (now or NOW) + timedelta(hours=hours_ahead)
        booking = Booking(
            user_id=user_id,
            listing_id=listing.id,
            start_date=start,
            end_date=start + timedelta(hours=8),
            amount=Decimal(amount),
            currency="PHP",
            status=status,
            payment_reference=payment_reference,
            payment_provider="paymongo",
            refunds=[],
        )
        db.add(booking)
        db.commit()
        return booking

    return _make


@pytest.fixture
def client(db: Session, gateway_client: MagicMock, notification_client: NotificationClient) -> TestClient:
    """Create FastAPI test client with test database and stubbed outbound clients"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        except Exception:
            db.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway_client] = lambda: gateway_client
    app.dependency_overrides[get_notification_client] = lambda: notification_client
    return TestClient(app)
