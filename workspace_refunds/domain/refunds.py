"""Refund calculator - turns a cancellation policy and lead time into a refund breakdown"""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Sequence

from workspace_refunds.domain.models import BookingTerms, CancellationPolicy, PolicyTier, RefundBreakdown
from workspace_refunds.utils.date_utils import hours_between, utc_now

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

# Automatic refunds are limited to full refunds with at least this much notice
AUTOMATIC_REFUND_MIN_HOURS = 24


def to_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def get_applicable_tier(tiers: Sequence[PolicyTier], hours_until_booking: float) -> Optional[PolicyTier]:
    """
    Pick the most generous tier whose lead-time threshold has been met.

    Tiers are sorted on a local copy by hours_before_booking descending; the
    first one with hours_before_booking <= hours_until_booking wins.
    """
    ordered = sorted(tiers, key=lambda t: t.hours_before_booking, reverse=True)
    for tier in ordered:
        if tier.hours_before_booking <= hours_until_booking:
            return tier
    return None


def calculate_processing_fee(amount: Decimal, fee_percentage: Decimal) -> Decimal:
    """
    Fee deducted from a refund amount.

    Raises:
        ValueError: fee_percentage outside [0, 100]. Policy validation should
            have rejected it long before it got here.
    """
    fee_percentage = Decimal(str(fee_percentage))
    if fee_percentage < 0 or fee_percentage > HUNDRED:
        raise ValueError(f"Invalid fee percentage: {fee_percentage}%. Must be between 0 and 100")

    if amount <= 0 or fee_percentage == 0:
        return Decimal("0.00")

    return to_money(amount * fee_percentage / HUNDRED)


def calculate_refund(
    booking: BookingTerms,
    policy: CancellationPolicy,
    cancelled_at: datetime | None = None,
) -> RefundBreakdown:
    """
    Main entry point: compute the refund owed for cancelling a booking.

    Steps:
    1. Lead time in hours between the cancellation instant and booking start
    2. Booking already started or passed -> zero refund
    3. Most generous satisfied tier -> refund percentage (none -> zero refund)
    4. Processing fee on the refund amount, final refund floored at zero

    Pure: depends only on its inputs (cancelled_at defaults to now).
    """
    if cancelled_at is None:
        cancelled_at = utc_now()

    amount = to_money(booking.amount)
    hours_until_booking = hours_between(cancelled_at, booking.start_date)

    if hours_until_booking <= 0:
        return _zero_refund(
            amount, hours_until_booking, "Booking has already started or passed. No refund available."
        )

    tier = get_applicable_tier(policy.tiers, hours_until_booking)
    if tier is None:
        return _zero_refund(amount, hours_until_booking, "No applicable refund tier found")

    refund_amount = to_money(amount * tier.refund_percentage / HUNDRED)
    processing_fee = calculate_processing_fee(refund_amount, policy.processing_fee_percentage)
    final_refund = max(Decimal("0.00"), refund_amount - processing_fee)

    return RefundBreakdown(
        original_amount=amount,
        refund_percentage=tier.refund_percentage,
        refund_amount=refund_amount,
        processing_fee=processing_fee,
        final_refund=final_refund,
        hours_until_booking=hours_until_booking,
        applied_tier=tier,
    )


def is_automatic_eligible(policy: CancellationPolicy, breakdown: RefundBreakdown) -> bool:
    """Automatic only when the policy allows it, the refund is 100%, and notice is ample"""
    if not policy.automatic_refund:
        return False
    if breakdown.refund_percentage != HUNDRED:
        return False
    return breakdown.hours_until_booking >= AUTOMATIC_REFUND_MIN_HOURS


def _zero_refund(amount: Decimal, hours_until_booking: float, message: str) -> RefundBreakdown:
    zero = Decimal("0.00")
    return RefundBreakdown(
        original_amount=amount,
        refund_percentage=Decimal("0"),
        refund_amount=zero,
        processing_fee=zero,
        final_refund=zero,
        hours_until_booking=hours_until_booking,
        applied_tier=None,
        message=message,
    )
