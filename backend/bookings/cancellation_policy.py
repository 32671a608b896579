"""Tiered cancellation fees for bookings."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Iterable, Sequence

from .pricing import CancellationTier, q2

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")
_SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class CancellationSettlement:
    """Represents how a cancelled booking should settle financially."""

    fee_percentage: Decimal
    cancellation_fee: Decimal
    refund_amount: Decimal


def _safe_decimal(value: object) -> Decimal:
    """Convert arbitrary value to Decimal, falling back to zero on failure."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return _ZERO


def sort_tiers(tiers: Iterable[CancellationTier]) -> list[CancellationTier]:
    """Return tiers ordered ascending by days_before_pickup."""
    return sorted(tiers, key=lambda tier: tier.days_before_pickup)


def evaluate(tiers: Sequence[CancellationTier], days_until_pickup: int) -> Decimal:
    """
    Return the fee percentage for a cancellation.

    Tiers must already be sorted ascending by days_before_pickup; the first
    tier with days_until_pickup <= days_before_pickup applies. When no tier
    matches the cancellation is free.
    """
    for tier in tiers:
        if days_until_pickup <= tier.days_before_pickup:
            return _safe_decimal(tier.fee_percentage)
    return _ZERO


def settle(total_amount: Decimal, fee_percentage: Decimal) -> CancellationSettlement:
    """Split total_amount into a fee and a refund that always add back up."""
    total = q2(_safe_decimal(total_amount))
    percentage = min(max(_safe_decimal(fee_percentage), _ZERO), _HUNDRED)
    fee = q2(total * percentage / _HUNDRED)
    return CancellationSettlement(
        fee_percentage=percentage,
        cancellation_fee=fee,
        refund_amount=total - fee,
    )


def days_until_pickup(start_date: date, now: datetime) -> int:
    """
    Whole days between now and the pickup date, rounded up.

    The pickup is taken at midnight of start_date in now's timezone.
    """
    pickup = datetime.combine(start_date, time.min, tzinfo=now.tzinfo)
    return math.ceil((pickup - now).total_seconds() / _SECONDS_PER_DAY)
