"""Vehicle catalog: campers, their rate cards and the bookable extras."""

from __future__ import annotations

from decimal import Decimal

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from bookings.pricing import CancellationTier as CancellationTierSnapshot
from bookings.pricing import MileageOption, PricedOption
from bookings.pricing import RateCard as RateCardSnapshot


class Vehicle(models.Model):
    id = models.SlugField(primary_key=True, max_length=80)
    name = models.CharField(max_length=140)
    location = models.CharField(max_length=120, blank=True, default="")
    capacity = models.PositiveSmallIntegerField(
        default=4,
        validators=[MinValueValidator(1)],
        help_text="Maximum number of travellers.",
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]

    def __str__(self) -> str:
        return f"{self.name} ({self.id})"


class RateCard(models.Model):
    """Pricing policy for one vehicle."""

    vehicle = models.OneToOneField(
        Vehicle,
        on_delete=models.CASCADE,
        related_name="rate_card",
        primary_key=True,
    )
    price_per_day = models.DecimalField(
        max_digits=8,
        decimal_places=2,
        validators=[MinValueValidator(0)],
    )
    low_season_multiplier = models.DecimalField(max_digits=5, decimal_places=3, default=Decimal("1"))
    high_season_multiplier = models.DecimalField(
        max_digits=5, decimal_places=3, default=Decimal("1")
    )
    weekly_discount = models.DecimalField(
        max_digits=4,
        decimal_places=3,
        default=Decimal("0"),
        validators=[MinValueValidator(0), MaxValueValidator(1)],
    )
    monthly_discount = models.DecimalField(
        max_digits=4,
        decimal_places=3,
        default=Decimal("0"),
        validators=[MinValueValidator(0), MaxValueValidator(1)],
    )
    cleaning_fee = models.DecimalField(max_digits=8, decimal_places=2, default=Decimal("0"))
    security_deposit_amount = models.DecimalField(
        max_digits=8, decimal_places=2, default=Decimal("0")
    )
    mileage_included = models.PositiveIntegerField(default=0, help_text="Kilometres per day.")
    additional_mileage_cost = models.DecimalField(
        max_digits=6, decimal_places=3, default=Decimal("0")
    )

    def __str__(self) -> str:
        return f"Rate card for {self.vehicle_id}"

    def as_rate_card(self) -> RateCardSnapshot:
        """Return the immutable snapshot consumed by the pricing engine."""
        return RateCardSnapshot(
            price_per_day=self.price_per_day,
            low_season_multiplier=self.low_season_multiplier,
            high_season_multiplier=self.high_season_multiplier,
            weekly_discount=self.weekly_discount,
            monthly_discount=self.monthly_discount,
            cleaning_fee=self.cleaning_fee,
            security_deposit_amount=self.security_deposit_amount,
            mileage_included=self.mileage_included,
            additional_mileage_cost=self.additional_mileage_cost,
            cancellation_tiers=tuple(
                CancellationTierSnapshot(
                    days_before_pickup=tier.days_before_pickup,
                    fee_percentage=tier.fee_percentage,
                )
                for tier in self.cancellation_tiers.all()
            ),
        )


class CancellationTier(models.Model):
    rate_card = models.ForeignKey(
        RateCard,
        on_delete=models.CASCADE,
        related_name="cancellation_tiers",
    )
    days_before_pickup = models.PositiveIntegerField()
    fee_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
    )

    class Meta:
        ordering = ["days_before_pickup"]
        constraints = [
            models.UniqueConstraint(
                fields=["rate_card", "days_before_pickup"],
                name="cancellation_tier_unique_days",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.fee_percentage}% within {self.days_before_pickup} days"


class PerDayExtra(models.Model):
    id = models.SlugField(primary_key=True, max_length=80)
    name = models.CharField(max_length=140)
    price_per_day = models.DecimalField(
        max_digits=8,
        decimal_places=2,
        validators=[MinValueValidator(0)],
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        abstract = True
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name

    def as_option(self) -> PricedOption:
        return PricedOption(id=self.id, name=self.name, price_per_day=self.price_per_day)


class Addon(PerDayExtra):
    """Optional equipment such as a bike rack or awning."""


class InsurancePackage(PerDayExtra):
    pass


class MileagePackage(models.Model):
    id = models.SlugField(primary_key=True, max_length=80)
    name = models.CharField(max_length=140)
    included_km = models.IntegerField(help_text="Kilometres per day, -1 for unlimited.")
    additional_km_cost = models.DecimalField(max_digits=6, decimal_places=3, default=Decimal("0"))
    extra_cost = models.DecimalField(
        max_digits=8,
        decimal_places=2,
        default=Decimal("0"),
        help_text="Surcharge per rental day.",
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name

    def as_option(self) -> MileageOption:
        return MileageOption(
            id=self.id,
            name=self.name,
            included_km=self.included_km,
            additional_km_cost=self.additional_km_cost,
            extra_cost=self.extra_cost,
        )
