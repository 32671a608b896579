from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Vehicle",
            fields=[
                ("id", models.SlugField(max_length=80, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=140)),
                ("location", models.CharField(blank=True, default="", max_length=120)),
                (
                    "capacity",
                    models.PositiveSmallIntegerField(
                        default=4,
                        help_text="Maximum number of travellers.",
                        validators=[django.core.validators.MinValueValidator(1)],
                    ),
                ),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="RateCard",
            fields=[
                (
                    "vehicle",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        primary_key=True,
                        related_name="rate_card",
                        serialize=False,
                        to="vehicles.vehicle",
                    ),
                ),
                (
                    "price_per_day",
                    models.DecimalField(
                        decimal_places=2,
                        max_digits=8,
                        validators=[django.core.validators.MinValueValidator(0)],
                    ),
                ),
                (
                    "low_season_multiplier",
                    models.DecimalField(decimal_places=3, default=Decimal("1"), max_digits=5),
                ),
                (
                    "high_season_multiplier",
                    models.DecimalField(decimal_places=3, default=Decimal("1"), max_digits=5),
                ),
                (
                    "weekly_discount",
                    models.DecimalField(
                        decimal_places=3,
                        default=Decimal("0"),
                        max_digits=4,
                        validators=[
                            django.core.validators.MinValueValidator(0),
                            django.core.validators.MaxValueValidator(1),
                        ],
                    ),
                ),
                (
                    "monthly_discount",
                    models.DecimalField(
                        decimal_places=3,
                        default=Decimal("0"),
                        max_digits=4,
                        validators=[
                            django.core.validators.MinValueValidator(0),
                            django.core.validators.MaxValueValidator(1),
                        ],
                    ),
                ),
                (
                    "cleaning_fee",
                    models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=8),
                ),
                (
                    "security_deposit_amount",
                    models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=8),
                ),
                (
                    "mileage_included",
                    models.PositiveIntegerField(default=0, help_text="Kilometres per day."),
                ),
                (
                    "additional_mileage_cost",
                    models.DecimalField(decimal_places=3, default=Decimal("0"), max_digits=6),
                ),
            ],
        ),
        migrations.CreateModel(
            name="CancellationTier",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("days_before_pickup", models.PositiveIntegerField()),
                (
                    "fee_percentage",
                    models.DecimalField(
                        decimal_places=2,
                        max_digits=5,
                        validators=[
                            django.core.validators.MinValueValidator(0),
                            django.core.validators.MaxValueValidator(100),
                        ],
                    ),
                ),
                (
                    "rate_card",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="cancellation_tiers",
                        to="vehicles.ratecard",
                    ),
                ),
            ],
            options={
                "ordering": ["days_before_pickup"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("rate_card", "days_before_pickup"),
                        name="cancellation_tier_unique_days",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="Addon",
            fields=[
                ("id", models.SlugField(max_length=80, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=140)),
                (
                    "price_per_day",
                    models.DecimalField(
                        decimal_places=2,
                        max_digits=8,
                        validators=[django.core.validators.MinValueValidator(0)],
                    ),
                ),
                ("is_active", models.BooleanField(default=True)),
            ],
            options={
                "ordering": ["name"],
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="InsurancePackage",
            fields=[
                ("id", models.SlugField(max_length=80, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=140)),
                (
                    "price_per_day",
                    models.DecimalField(
                        decimal_places=2,
                        max_digits=8,
                        validators=[django.core.validators.MinValueValidator(0)],
                    ),
                ),
                ("is_active", models.BooleanField(default=True)),
            ],
            options={
                "ordering": ["name"],
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="MileagePackage",
            fields=[
                ("id", models.SlugField(max_length=80, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=140)),
                (
                    "included_km",
                    models.IntegerField(help_text="Kilometres per day, -1 for unlimited."),
                ),
                (
                    "additional_km_cost",
                    models.DecimalField(decimal_places=3, default=Decimal("0"), max_digits=6),
                ),
                (
                    "extra_cost",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0"),
                        help_text="Surcharge per rental day.",
                        max_digits=8,
                    ),
                ),
                ("is_active", models.BooleanField(default=True)),
            ],
            options={
                "ordering": ["name"],
            },
        ),
    ]
