"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from workspace_refunds.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s",
        json_default=str,  # Decimal amounts, UUIDs
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_resolution(
    request_id: str,
    actor_id: Optional[str],
    action: str,
    status: str,
    refund_amount: Optional[Decimal],
    duration_ms: float,
) -> None:
    """Log structured resolution outcome (approve / reject / automatic) for analysis"""
    logging.getLogger("workspace_refunds.resolution").info(
        "Cancellation request resolved",
        extra={
            "request_id": request_id,
            "actor_id": actor_id,
            "step": "resolution_complete",
            "action": action,
            "status": status,
            "refund_amount": str(refund_amount) if refund_amount is not None else None,
            "duration_ms": duration_ms,
        },
    )
