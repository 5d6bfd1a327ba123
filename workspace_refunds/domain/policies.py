"""Cancellation policy presets and validation rules"""

import copy
import math
from numbers import Real
from typing import Any, Dict, List, Mapping

from workspace_refunds.domain.models import PolicyValidation

VALID_POLICY_TYPES = ("flexible", "moderate", "strict", "custom", "none")
DEFAULT_POLICY_TYPE = "moderate"

POLICY_TEMPLATES: Dict[str, Dict[str, Any]] = {
    "flexible": {
        "type": "flexible",
        "allow_cancellation": True,
        "automatic_refund": True,
        "tiers": [
            {"hours_before_booking": 24, "refund_percentage": 100, "description": "Full refund if cancelled 24+ hours before"},
            {"hours_before_booking": 0, "refund_percentage": 0, "description": "No refund if cancelled less than 24 hours before"},
        ],
        "processing_fee_percentage": 0,
        "custom_notes": "Flexible cancellation policy - Full refund with 24 hours notice",
    },
    "moderate": {
        "type": "moderate",
        "allow_cancellation": True,
        "automatic_refund": True,
        "tiers": [
            {"hours_before_booking": 168, "refund_percentage": 100, "description": "Full refund if cancelled 7+ days before"},
            {"hours_before_booking": 48, "refund_percentage": 50, "description": "50% refund if cancelled 2-7 days before"},
            {"hours_before_booking": 0, "refund_percentage": 0, "description": "No refund if cancelled less than 2 days before"},
        ],
        "processing_fee_percentage": 5,
        "custom_notes": "Moderate cancellation policy - Full refund with 7 days notice, 50% with 2 days notice",
    },
    "strict": {
        "type": "strict",
        "allow_cancellation": True,
        "automatic_refund": False,
        "tiers": [
            {"hours_before_booking": 336, "refund_percentage": 50, "description": "50% refund if cancelled 14+ days before"},
            {"hours_before_booking": 0, "refund_percentage": 0, "description": "No refund if cancelled less than 14 days before"},
        ],
        "processing_fee_percentage": 10,
        "custom_notes": "Strict cancellation policy - 50% refund only with 14 days notice",
    },
    "none": {
        "type": "none",
        "allow_cancellation": False,
        "automatic_refund": False,
        "tiers": [],
        "processing_fee_percentage": 0,
        "custom_notes": "No cancellations allowed",
    },
}


def get_policy_templates() -> Dict[str, Dict[str, Any]]:
    """Copy of the preset table; callers may mutate it freely"""
    return copy.deepcopy(POLICY_TEMPLATES)


def validate_policy(policy_data: Mapping[str, Any]) -> PolicyValidation:
    """
    Validate raw policy data and collect every violation.

    Rules:
    - type is required and one of VALID_POLICY_TYPES
    - allow_cancellation == False skips all tier rules
    - tiers: unique non-negative hours, percentages within 0-100, non-empty descriptions
    - sorted by hours descending, refund percentages must be non-increasing
    - processing_fee_percentage within 0-100
    """
    errors: List[str] = []

    policy_type = policy_data.get("type")
    if not policy_type:
        errors.append("Policy type is required")
    elif policy_type not in VALID_POLICY_TYPES:
        errors.append(f"Invalid policy type: {policy_type}. Must be one of: {', '.join(VALID_POLICY_TYPES)}")

    for flag in ("allow_cancellation", "automatic_refund"):
        if flag in policy_data and not isinstance(policy_data[flag], bool):
            errors.append(f"{flag} must be a boolean")

    if policy_data.get("allow_cancellation") is False:
        return PolicyValidation(valid=not errors, errors=errors)

    tiers = policy_data.get("tiers") or []
    if not isinstance(tiers, list):
        errors.append("Tiers must be a list")
        tiers = []

    well_formed = []
    seen_hours = set()
    for index, tier in enumerate(tiers):
        if not isinstance(tier, Mapping):
            errors.append(f"Tier {index + 1} must be an object")
            continue

        hours = tier.get("hours_before_booking")
        percentage = tier.get("refund_percentage")
        description = tier.get("description")
        label = f"Tier at {hours} hours" if _is_number(hours) else f"Tier {index + 1}"

        if not _is_number(hours):
            errors.append(f"{label} must have a numeric hours_before_booking")
        else:
            if hours in seen_hours:
                errors.append(f"Duplicate tier at {hours} hours")
            seen_hours.add(hours)
            if hours < 0:
                errors.append(f"Hours before booking must be non-negative: {hours}")

        if not _is_number(percentage):
            errors.append(f"{label} must have a numeric refund_percentage")
        elif percentage < 0 or percentage > 100:
            errors.append(f"Invalid refund percentage: {percentage}%. Must be between 0 and 100")

        if not isinstance(description, str) or not description.strip():
            errors.append(f"{label} must have a description")

        if _is_number(hours) and _is_number(percentage):
            well_formed.append((hours, percentage))

    ordered = sorted(well_formed, key=lambda t: t[0], reverse=True)
    for (hours, pct), (next_hours, next_pct) in zip(ordered, ordered[1:]):
        if pct < next_pct:
            errors.append(
                f"Tier ordering issue: Tier at {hours} hours has lower refund ({pct}%) "
                f"than tier at {next_hours} hours ({next_pct}%)"
            )

    fee = policy_data.get("processing_fee_percentage")
    if fee is not None:
        if not _is_number(fee):
            errors.append("Processing fee percentage must be numeric")
        elif fee < 0 or fee > 100:
            errors.append(f"Invalid processing fee percentage: {fee}%. Must be between 0 and 100")

    return PolicyValidation(valid=not errors, errors=errors)


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value)
