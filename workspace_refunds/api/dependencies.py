"""Dependency injection for FastAPI endpoints"""

import uuid
from typing import Optional
from fastapi import BackgroundTasks, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from workspace_refunds.infrastructure.clients.notifications import NotificationClient
from workspace_refunds.infrastructure.clients.payment_gateway import PaymentGatewayClient
from workspace_refunds.infrastructure.database.session import get_db
from workspace_refunds.services.cancellations import CancellationRequestService
from workspace_refunds.services.notifications import NotificationService
from workspace_refunds.services.payment_gateway import PaymentGatewayService
from workspace_refunds.services.policies import PolicyManager


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity as forwarded by the upstream auth gateway"""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id.strip()


def get_admin_user_id(
    user_id: str = Depends(get_current_user_id),
    x_user_role: Optional[str] = Header(default=None),
) -> str:
    """Admin identity; the upstream auth gateway forwards the caller's role in X-User-Role"""
    if (x_user_role or "").strip().lower() != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return user_id


def get_payment_gateway_client() -> PaymentGatewayClient:
    """Provide payment gateway API client instance"""
    return PaymentGatewayClient()


def get_notification_client() -> NotificationClient:
    """Provide notification webhook client instance"""
    return NotificationClient()


def get_policy_manager(db: Session = Depends(get_db)) -> PolicyManager:
    return PolicyManager(db)


def get_cancellation_service(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    gateway_client: PaymentGatewayClient = Depends(get_payment_gateway_client),
    notification_client: NotificationClient = Depends(get_notification_client),
) -> CancellationRequestService:
    """Notification webhooks are delivered as background tasks, after the response"""
    return CancellationRequestService(
        db,
        gateway=PaymentGatewayService(db, gateway_client),
        notifier=NotificationService(db, notification_client, schedule=background_tasks.add_task),
    )


def parse_uuid(value: str, name: str = "id") -> uuid.UUID:
    """Path identifiers arrive as strings; malformed ones are a client error"""
    try:
        return uuid.UUID(value)
    except (ValueError, AttributeError, TypeError):
        raise HTTPException(status_code=400, detail=f"Invalid {name}")
