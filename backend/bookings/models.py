"""Database models for camper bookings."""

from __future__ import annotations

import uuid

from django.conf import settings
from django.db import models
from django.db.models import F, Q

from vehicles.models import Vehicle


class Booking(models.Model):
    """A reservation of one vehicle for a date range."""

    class Status(models.TextChoices):
        PENDING = "pending", "pending"
        CONFIRMED = "confirmed", "confirmed"
        COMPLETED = "completed", "completed"
        CANCELLED = "cancelled", "cancelled"

    class PaymentStatus(models.TextChoices):
        PENDING = "pending", "pending"
        PAID = "paid", "paid"
        REFUNDED = "refunded", "refunded"

    class CancelledBy(models.TextChoices):
        USER = "user", "user"
        ADMIN = "admin", "admin"
        SYSTEM = "system", "system"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    confirmation_number = models.CharField(max_length=12, unique=True)
    vehicle = models.ForeignKey(
        Vehicle,
        related_name="bookings",
        on_delete=models.PROTECT,
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="camper_bookings",
        on_delete=models.PROTECT,
    )
    start_date = models.DateField()
    end_date = models.DateField(help_text="Return date, must be after start_date.")
    guest_count = models.PositiveSmallIntegerField(default=1)
    pickup_location = models.CharField(max_length=120)
    return_location = models.CharField(max_length=120)
    addon_ids = models.JSONField(default=list, blank=True)
    insurance_package_id = models.CharField(max_length=80, blank=True, default="")
    mileage_package_id = models.CharField(max_length=80, blank=True, default="")
    primary_driver = models.JSONField(default=dict, blank=True)
    emergency_contact = models.JSONField(default=dict, blank=True)
    total_amount = models.DecimalField(max_digits=10, decimal_places=2)
    totals = models.JSONField(default=dict, blank=True)
    payment_status = models.CharField(
        max_length=16,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )
    payment_id = models.CharField(max_length=120, blank=True, default="")
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.PENDING,
    )
    cancellation_reason = models.TextField(blank=True, default="")
    cancellation_date = models.DateTimeField(null=True, blank=True)
    cancellation_fee = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    refund_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    cancelled_by = models.CharField(
        max_length=16,
        choices=CancelledBy.choices,
        blank=True,
        default="",
    )
    idempotency_key = models.CharField(max_length=80, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["vehicle", "start_date", "end_date"],
                name="booking_vehicle_dates_idx",
            ),
            models.Index(fields=["user", "status"], name="booking_user_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(start_date__lt=F("end_date")),
                name="booking_start_before_end",
            ),
            models.UniqueConstraint(
                fields=["vehicle", "idempotency_key"],
                name="booking_unique_idempotency_key_per_vehicle",
            ),
            models.UniqueConstraint(
                fields=["payment_id"],
                condition=~Q(payment_id=""),
                name="booking_unique_payment_id",
            ),
        ]

    def __str__(self) -> str:
        """Return a human-readable representation."""
        return f"Booking {self.confirmation_number} for {self.vehicle_id} ({self.status})"

    @property
    def days(self) -> int:
        """Return the count of booked days."""
        if not self.start_date or not self.end_date:
            return 0
        return (self.end_date - self.start_date).days

    def is_terminal(self) -> bool:
        """Return True if the booking reached a terminal state."""
        return self.status in {
            self.Status.CANCELLED,
            self.Status.COMPLETED,
        }
