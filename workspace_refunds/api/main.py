"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from workspace_refunds.api.errors import register_exception_handlers
from workspace_refunds.api.middleware import RequestIDMiddleware, MetricsMiddleware
from workspace_refunds.api.v1 import admin, cancellations, policies, refunds
from workspace_refunds.infrastructure.observability.logging import setup_logging
from workspace_refunds.config import settings

setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """
    Build the refunds API.

    Routers serve clients (/v1/bookings, /v1/client), owners (/v1/owner,
    /v1/listings) and admins (/v1/admin); domain errors raised anywhere
    below them are mapped to HTTP responses by the registered handlers.
    """
    app = FastAPI(
        title="Workspace Refunds",
        description="Booking cancellation requests, refund policies and refund settlement",
        version="0.1.0",
    )

    # Last added runs first: the request ID is set before metrics and handlers see the request
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)
    register_exception_handlers(app)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(cancellations.router, prefix="/v1", tags=["cancellations"])
    app.include_router(refunds.router, prefix="/v1", tags=["owner refunds"])
    app.include_router(policies.router, prefix="/v1", tags=["policies"])
    app.include_router(admin.router, prefix="/v1", tags=["admin"])

    return app


app = create_app()
