"""
Deterministic price quotes for camper bookings.

Everything in this module is pure: the catalog is passed in as frozen
snapshots (see ``vehicles.models``) so a quote can be reproduced from the
stored inputs alone, which the booking UI and dispute handling rely on.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Union

DateLike = Union[date, datetime]

TAX_RATE = Decimal("0.08")
HIGH_SEASON_MONTHS = frozenset({6, 7, 8})
LOW_SEASON_MONTHS = frozenset({11, 12, 1, 2})
WEEKLY_DISCOUNT_MIN_DAYS = 7
MONTHLY_DISCOUNT_MIN_DAYS = 28

_CENT = Decimal("0.01")
_ZERO = Decimal("0")
_ONE = Decimal("1")


def q2(value: Decimal) -> Decimal:
    """Round a Decimal value to cents using HALF_UP."""
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CancellationTier:
    days_before_pickup: int
    fee_percentage: Decimal


@dataclass(frozen=True)
class RateCard:
    """Per-vehicle pricing policy, owned by the vehicle catalog."""

    price_per_day: Decimal
    low_season_multiplier: Decimal = _ONE
    high_season_multiplier: Decimal = _ONE
    weekly_discount: Decimal = _ZERO
    monthly_discount: Decimal = _ZERO
    cleaning_fee: Decimal = _ZERO
    security_deposit_amount: Decimal = _ZERO
    mileage_included: int = 0
    additional_mileage_cost: Decimal = _ZERO
    cancellation_tiers: tuple[CancellationTier, ...] = ()


@dataclass(frozen=True)
class PricedOption:
    """An add-on or insurance package billed per rental day."""

    id: str
    name: str
    price_per_day: Decimal


@dataclass(frozen=True)
class MileageOption:
    id: str
    name: str
    included_km: int
    additional_km_cost: Decimal
    # Charged per rental day when non-zero.
    extra_cost: Decimal = _ZERO


@dataclass(frozen=True)
class LineItem:
    id: str
    name: str
    unit_price: Decimal
    days: int
    total: Decimal

    def as_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "name": self.name,
            "unit_price": str(self.unit_price),
            "days": str(self.days),
            "total": str(self.total),
        }


@dataclass(frozen=True)
class PriceBreakdown:
    """Every intermediate value of a quote, so the total can be reconstructed."""

    days: int
    price_per_day: Decimal
    base_price: Decimal
    seasonal_multiplier: Decimal
    seasonal_price: Decimal
    seasonal_adjustment: Decimal
    discount_rate: Decimal
    discount_amount: Decimal
    discounted_price: Decimal
    addon_items: tuple[LineItem, ...]
    addon_total: Decimal
    insurance_item: Optional[LineItem]
    insurance_cost: Decimal
    mileage_item: Optional[LineItem]
    mileage_cost: Decimal
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    cleaning_fee: Decimal
    security_deposit: Decimal
    total_price: Decimal

    def as_totals(self) -> dict[str, object]:
        """
        Serialize the breakdown for Booking.totals.

        Money values are strings so JSON storage never goes through floats.
        """
        return {
            "days": str(self.days),
            "price_per_day": str(self.price_per_day),
            "base_price": str(self.base_price),
            "seasonal_multiplier": str(self.seasonal_multiplier),
            "seasonal_price": str(self.seasonal_price),
            "seasonal_adjustment": str(self.seasonal_adjustment),
            "discount_rate": str(self.discount_rate),
            "discount_amount": str(self.discount_amount),
            "discounted_price": str(self.discounted_price),
            "addons": [item.as_dict() for item in self.addon_items],
            "addon_total": str(self.addon_total),
            "insurance": self.insurance_item.as_dict() if self.insurance_item else None,
            "insurance_cost": str(self.insurance_cost),
            "mileage": self.mileage_item.as_dict() if self.mileage_item else None,
            "mileage_cost": str(self.mileage_cost),
            "subtotal": str(self.subtotal),
            "tax_rate": str(self.tax_rate),
            "tax_amount": str(self.tax_amount),
            "cleaning_fee": str(self.cleaning_fee),
            "security_deposit": str(self.security_deposit),
            "total_price": str(self.total_price),
        }


def rental_days(start: DateLike, end: DateLike) -> int:
    """Return the number of rental days, rounding partial days up."""
    delta = end - start
    days = delta.days
    if delta.seconds or delta.microseconds:
        days += 1
    if days <= 0:
        raise ValueError("end must be after start")
    return days


def seasonal_multiplier(rate_card: RateCard, start: DateLike) -> Decimal:
    """Pick the multiplier from the start date's month only."""
    if start.month in HIGH_SEASON_MONTHS:
        return rate_card.high_season_multiplier
    if start.month in LOW_SEASON_MONTHS:
        return rate_card.low_season_multiplier
    return _ONE


def duration_discount_rate(rate_card: RateCard, days: int) -> Decimal:
    if days >= MONTHLY_DISCOUNT_MIN_DAYS:
        return rate_card.monthly_discount
    if days >= WEEKLY_DISCOUNT_MIN_DAYS:
        return rate_card.weekly_discount
    return _ZERO


def _per_day_item(option_id: str, name: str, unit_price: Decimal, days: int) -> LineItem:
    return LineItem(
        id=option_id,
        name=name,
        unit_price=q2(unit_price),
        days=days,
        total=q2(unit_price * days),
    )


def quote(
    rate_card: RateCard,
    start: DateLike,
    end: DateLike,
    addons: Iterable[PricedOption] = (),
    insurance: Optional[PricedOption] = None,
    mileage_package: Optional[MileageOption] = None,
    *,
    tax_rate: Decimal = TAX_RATE,
) -> PriceBreakdown:
    """
    Compute a price quote:
    - Base: price_per_day * days
    - Seasonal multiplier from the start month, then a weekly/monthly discount
    - Add-ons, insurance and the mileage package surcharge, each per day
    - Flat tax on the subtotal, plus the cleaning fee
    The security deposit is reported but never part of total_price.
    """
    days = rental_days(start, end)

    base_price = q2(rate_card.price_per_day * days)
    multiplier = seasonal_multiplier(rate_card, start)
    seasonal_price = q2(base_price * multiplier)

    discount_rate = duration_discount_rate(rate_card, days)
    discount_amount = q2(seasonal_price * discount_rate)
    discounted_price = seasonal_price - discount_amount

    addon_items = tuple(
        _per_day_item(addon.id, addon.name, addon.price_per_day, days) for addon in addons
    )
    addon_total = sum((item.total for item in addon_items), _ZERO)

    insurance_item = None
    insurance_cost = _ZERO
    if insurance is not None:
        insurance_item = _per_day_item(insurance.id, insurance.name, insurance.price_per_day, days)
        insurance_cost = insurance_item.total

    mileage_item = None
    mileage_cost = _ZERO
    if mileage_package is not None and mileage_package.extra_cost:
        mileage_item = _per_day_item(
            mileage_package.id, mileage_package.name, mileage_package.extra_cost, days
        )
        mileage_cost = mileage_item.total

    subtotal = q2(discounted_price + addon_total + insurance_cost + mileage_cost)
    tax_amount = q2(subtotal * tax_rate)
    cleaning_fee = q2(rate_card.cleaning_fee)
    total_price = q2(subtotal + tax_amount + cleaning_fee)

    return PriceBreakdown(
        days=days,
        price_per_day=q2(rate_card.price_per_day),
        base_price=base_price,
        seasonal_multiplier=multiplier,
        seasonal_price=seasonal_price,
        seasonal_adjustment=seasonal_price - base_price,
        discount_rate=discount_rate,
        discount_amount=discount_amount,
        discounted_price=discounted_price,
        addon_items=addon_items,
        addon_total=q2(addon_total),
        insurance_item=insurance_item,
        insurance_cost=q2(insurance_cost),
        mileage_item=mileage_item,
        mileage_cost=q2(mileage_cost),
        subtotal=subtotal,
        tax_rate=tax_rate,
        tax_amount=tax_amount,
        cleaning_fee=cleaning_fee,
        security_deposit=q2(rate_card.security_deposit_amount),
        total_price=total_price,
    )
