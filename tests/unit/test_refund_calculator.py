"""Unit tests for refund calculation"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from workspace_refunds.domain.models import BookingTerms, CancellationPolicy, PolicyTier
from workspace_refunds.domain.policies import POLICY_TEMPLATES
from workspace_refunds.domain.refunds import (
    calculate_processing_fee,
    calculate_refund,
    get_applicable_tier,
    is_automatic_eligible,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def moderate() -> CancellationPolicy:
    return CancellationPolicy.from_dict(POLICY_TEMPLATES["moderate"])


def booking_in(hours: float, amount: str = "1000") -> BookingTerms:
    return BookingTerms(amount=Decimal(amount), start_date=NOW + timedelta(hours=hours))


def test_full_refund_tier_with_fee(moderate: CancellationPolicy):
    """200h notice under moderate: 100% minus 5% fee"""
    breakdown = calculate_refund(booking_in(200), moderate, NOW)

    assert breakdown.refund_percentage == Decimal("100")
    assert breakdown.refund_amount == Decimal("1000.00")
    assert breakdown.processing_fee == Decimal("50.00")
    assert breakdown.final_refund == Decimal("950.00")
    assert breakdown.applied_tier.hours_before_booking == 168
    assert breakdown.hours_until_booking == pytest.approx(200)


def test_half_refund_tier(moderate: CancellationPolicy):
    """50h notice falls into the 48h tier"""
    breakdown = calculate_refund(booking_in(50), moderate, NOW)

    assert breakdown.refund_percentage == Decimal("50")
    assert breakdown.refund_amount == Decimal("500.00")
    assert breakdown.processing_fee == Decimal("25.00")
    assert breakdown.final_refund == Decimal("475.00")


def test_short_notice_gets_nothing(moderate: CancellationPolicy):
    breakdown = calculate_refund(booking_in(10), moderate, NOW)

    assert breakdown.refund_percentage == Decimal("0")
    assert breakdown.final_refund == Decimal("0.00")
    assert breakdown.applied_tier.hours_before_booking == 0


@pytest.mark.parametrize("hours", [0, -1, -48])
def test_started_booking_refunds_zero(moderate: CancellationPolicy, hours: float):
    """Lead time <= 0 always yields a zero refund, whatever the tiers say"""
    generous = CancellationPolicy(
        type="custom",
        allow_cancellation=True,
        automatic_refund=True,
        tiers=(PolicyTier(0, Decimal("100"), "Always full"),),
        processing_fee_percentage=Decimal("0"),
    )

    for policy in (moderate, generous):
        breakdown = calculate_refund(booking_in(hours), policy, NOW)
        assert breakdown.final_refund == Decimal("0.00")
        assert breakdown.applied_tier is None
        assert "already started" in breakdown.message


def test_no_matching_tier_refunds_zero():
    policy = CancellationPolicy(
        type="custom",
        allow_cancellation=True,
        automatic_refund=False,
        tiers=(PolicyTier(72, Decimal("100"), "Three days"),),
        processing_fee_percentage=Decimal("0"),
    )

    breakdown = calculate_refund(booking_in(24), policy, NOW)

    assert breakdown.final_refund == Decimal("0.00")
    assert breakdown.message == "No applicable refund tier found"


def test_tier_selection_is_monotonic(moderate: CancellationPolicy):
    """More notice never selects a less generous tier"""
    assert get_applicable_tier(moderate.tiers, 200).refund_percentage == Decimal("100")
    assert get_applicable_tier(moderate.tiers, 168).refund_percentage == Decimal("100")
    assert get_applicable_tier(moderate.tiers, 50).refund_percentage == Decimal("50")
    assert get_applicable_tier(moderate.tiers, 30).refund_percentage == Decimal("0")

    previous = Decimal("0")
    for hours in range(0, 400, 7):
        pct = get_applicable_tier(moderate.tiers, hours).refund_percentage
        assert pct >= previous
        previous = pct


def test_tier_selection_does_not_depend_on_input_order(moderate: CancellationPolicy):
    shuffled = (moderate.tiers[2], moderate.tiers[0], moderate.tiers[1])
    original = list(shuffled)

    assert get_applicable_tier(shuffled, 50).hours_before_booking == 48
    assert list(shuffled) == original


def test_refund_never_exceeds_original_and_never_negative():
    policy = CancellationPolicy(
        type="custom",
        allow_cancellation=True,
        automatic_refund=False,
        tiers=(PolicyTier(0, Decimal("100"), "Full"),),
        processing_fee_percentage=Decimal("100"),
    )

    breakdown = calculate_refund(booking_in(5, "333.33"), policy, NOW)

    assert breakdown.refund_amount <= breakdown.original_amount
    assert breakdown.final_refund == Decimal("0.00")


def test_amounts_rounded_to_cents():
    policy = CancellationPolicy(
        type="custom",
        allow_cancellation=True,
        automatic_refund=False,
        tiers=(PolicyTier(0, Decimal("33"), "A third-ish"),),
        processing_fee_percentage=Decimal("2.5"),
    )

    breakdown = calculate_refund(booking_in(10, "99.99"), policy, NOW)

    # 99.99 * 33% = 32.9967 -> 33.00; fee 2.5% of 33.00 = 0.825 -> 0.83
    assert breakdown.refund_amount == Decimal("33.00")
    assert breakdown.processing_fee == Decimal("0.83")
    assert breakdown.final_refund == Decimal("32.17")


@pytest.mark.parametrize("fee", [Decimal("-1"), Decimal("100.01"), Decimal("250")])
def test_processing_fee_out_of_range_raises(fee: Decimal):
    with pytest.raises(ValueError, match="Invalid fee percentage"):
        calculate_processing_fee(Decimal("100"), fee)


def test_processing_fee_zero_cases():
    assert calculate_processing_fee(Decimal("0"), Decimal("10")) == Decimal("0.00")
    assert calculate_processing_fee(Decimal("100"), Decimal("0")) == Decimal("0.00")


def test_automatic_eligibility(moderate: CancellationPolicy):
    """Needs policy opt-in, a 100% tier and at least 24h notice"""
    assert is_automatic_eligible(moderate, calculate_refund(booking_in(200), moderate, NOW)) is True
    assert is_automatic_eligible(moderate, calculate_refund(booking_in(50), moderate, NOW)) is False

    strict = CancellationPolicy.from_dict(POLICY_TEMPLATES["strict"])
    assert is_automatic_eligible(strict, calculate_refund(booking_in(400), strict, NOW)) is False


def test_full_refund_with_short_notice_is_not_automatic():
    always_full = CancellationPolicy(
        type="custom",
        allow_cancellation=True,
        automatic_refund=True,
        tiers=(PolicyTier(0, Decimal("100"), "Always full"),),
        processing_fee_percentage=Decimal("0"),
    )

    breakdown = calculate_refund(booking_in(10), always_full, NOW)

    assert breakdown.refund_percentage == Decimal("100")
    assert is_automatic_eligible(always_full, breakdown) is False


def test_naive_booking_start_treated_as_utc(moderate: CancellationPolicy):
    booking = BookingTerms(amount=Decimal("1000"), start_date=(NOW + timedelta(hours=200)).replace(tzinfo=None))

    breakdown = calculate_refund(booking, moderate, NOW)

    assert breakdown.hours_until_booking == pytest.approx(200)
