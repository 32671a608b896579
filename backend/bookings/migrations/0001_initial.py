import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("vehicles", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Booking",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                ("confirmation_number", models.CharField(max_length=12, unique=True)),
                ("start_date", models.DateField()),
                (
                    "end_date",
                    models.DateField(help_text="Return date, must be after start_date."),
                ),
                ("guest_count", models.PositiveSmallIntegerField(default=1)),
                ("pickup_location", models.CharField(max_length=120)),
                ("return_location", models.CharField(max_length=120)),
                ("addon_ids", models.JSONField(blank=True, default=list)),
                (
                    "insurance_package_id",
                    models.CharField(blank=True, default="", max_length=80),
                ),
                (
                    "mileage_package_id",
                    models.CharField(blank=True, default="", max_length=80),
                ),
                ("primary_driver", models.JSONField(blank=True, default=dict)),
                ("emergency_contact", models.JSONField(blank=True, default=dict)),
                ("total_amount", models.DecimalField(decimal_places=2, max_digits=10)),
                ("totals", models.JSONField(blank=True, default=dict)),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("pending", "pending"),
                            ("paid", "paid"),
                            ("refunded", "refunded"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("payment_id", models.CharField(blank=True, default="", max_length=120)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "pending"),
                            ("confirmed", "confirmed"),
                            ("completed", "completed"),
                            ("cancelled", "cancelled"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("cancellation_reason", models.TextField(blank=True, default="")),
                ("cancellation_date", models.DateTimeField(blank=True, null=True)),
                (
                    "cancellation_fee",
                    models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True),
                ),
                (
                    "refund_amount",
                    models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True),
                ),
                (
                    "cancelled_by",
                    models.CharField(
                        blank=True,
                        choices=[("user", "user"), ("admin", "admin"), ("system", "system")],
                        default="",
                        max_length=16,
                    ),
                ),
                ("idempotency_key", models.CharField(blank=True, max_length=80, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="camper_bookings",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "vehicle",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings",
                        to="vehicles.vehicle",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["vehicle", "start_date", "end_date"],
                        name="booking_vehicle_dates_idx",
                    ),
                    models.Index(fields=["user", "status"], name="booking_user_status_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("start_date__lt", models.F("end_date"))),
                        name="booking_start_before_end",
                    ),
                    models.UniqueConstraint(
                        fields=("vehicle", "idempotency_key"),
                        name="booking_unique_idempotency_key_per_vehicle",
                    ),
                ],
            },
        ),
    ]
