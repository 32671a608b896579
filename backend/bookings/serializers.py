"""Serializers for booking-related API endpoints."""

from __future__ import annotations

from typing import Any, Optional

from rest_framework import serializers

from .domain import BookingRequest, DriverDetails, EmergencyContact
from .models import Booking
from .validators import FieldError


def flatten_errors(errors: Any, prefix: str = "") -> list[FieldError]:
    """Turn DRF's nested ``serializer.errors`` into flat field errors."""
    flat: list[FieldError] = []
    if isinstance(errors, dict):
        for key, value in errors.items():
            name = prefix if key == "non_field_errors" else f"{prefix}.{key}" if prefix else key
            flat.extend(flatten_errors(value, name))
    elif isinstance(errors, list):
        for item in errors:
            flat.extend(flatten_errors(item, prefix))
    else:
        flat.append(FieldError(prefix or "non_field_errors", str(errors)))
    return flat


class DriverSerializer(serializers.Serializer):
    first_name = serializers.CharField(required=False, allow_blank=True, default="")
    last_name = serializers.CharField(required=False, allow_blank=True, default="")
    email = serializers.EmailField(required=False, allow_blank=True, default="")
    phone = serializers.CharField(required=False, allow_blank=True, default="")
    license_number = serializers.CharField(required=False, allow_blank=True, default="")
    license_issue_date = serializers.DateField(required=False, allow_null=True, default=None)
    license_expiry_date = serializers.DateField(required=False, allow_null=True, default=None)
    date_of_birth = serializers.DateField(required=False, allow_null=True, default=None)


class EmergencyContactSerializer(serializers.Serializer):
    name = serializers.CharField(required=False, allow_blank=True, default="")
    phone = serializers.CharField(required=False, allow_blank=True, default="")


class BookingRequestSerializer(serializers.Serializer):
    """
    Parse a booking request.

    Fields are deliberately lenient: presence and business rules are checked
    by BookingValidator so every problem is reported in one response.
    """

    vehicle_id = serializers.CharField(required=False, allow_blank=True, default="")
    start_date = serializers.DateField(required=False, allow_null=True, default=None)
    end_date = serializers.DateField(required=False, allow_null=True, default=None)
    guest_count = serializers.IntegerField(required=False, allow_null=True, default=None)
    pickup_location = serializers.CharField(required=False, allow_blank=True, default="")
    return_location = serializers.CharField(required=False, allow_blank=True, default="")
    addon_ids = serializers.ListField(
        child=serializers.CharField(), required=False, default=list
    )
    insurance_package_id = serializers.CharField(
        required=False, allow_blank=True, allow_null=True, default=""
    )
    mileage_package_id = serializers.CharField(
        required=False, allow_blank=True, allow_null=True, default=""
    )
    primary_driver = DriverSerializer(required=False, allow_null=True, default=None)
    emergency_contact = EmergencyContactSerializer(required=False, allow_null=True, default=None)
    # A paid claim is only a hint; the lifecycle verifies payment_id with Stripe.
    payment_status = serializers.ChoiceField(
        choices=[Booking.PaymentStatus.PENDING, Booking.PaymentStatus.PAID],
        required=False,
        default=Booking.PaymentStatus.PENDING,
    )
    payment_id = serializers.CharField(required=False, allow_blank=True, default="")
    idempotency_key = serializers.CharField(
        required=False, allow_blank=True, allow_null=True, max_length=80, default=None
    )

    def validate(self, attrs: dict[str, Any]) -> dict[str, Any]:
        if attrs.get("payment_status") == Booking.PaymentStatus.PAID and not attrs.get(
            "payment_id"
        ):
            raise serializers.ValidationError(
                {"payment_id": ["A payment reference is required for paid bookings."]}
            )
        return attrs

    def to_request(self, user_id: int, idempotency_key: Optional[str] = None) -> BookingRequest:
        data = self.validated_data
        driver = data.get("primary_driver")
        contact = data.get("emergency_contact")
        return BookingRequest(
            user_id=user_id,
            vehicle_id=(data.get("vehicle_id") or "").strip(),
            start_date=data.get("start_date"),
            end_date=data.get("end_date"),
            guest_count=data.get("guest_count"),
            pickup_location=data.get("pickup_location") or "",
            return_location=data.get("return_location") or "",
            addon_ids=tuple(data.get("addon_ids") or ()),
            insurance_package_id=data.get("insurance_package_id") or "",
            mileage_package_id=data.get("mileage_package_id") or "",
            primary_driver=DriverDetails(**driver) if driver is not None else None,
            emergency_contact=EmergencyContact(**contact) if contact is not None else None,
            payment_status=data.get("payment_status") or Booking.PaymentStatus.PENDING,
            payment_id=data.get("payment_id") or "",
            idempotency_key=data.get("idempotency_key") or idempotency_key or None,
        )


class BookingSerializer(serializers.ModelSerializer):
    """Serialize Booking instances for API usage."""

    vehicle_id = serializers.ReadOnlyField()
    vehicle_name = serializers.ReadOnlyField(source="vehicle.name")
    user_id = serializers.ReadOnlyField()
    days = serializers.ReadOnlyField()

    class Meta:
        model = Booking
        fields = (
            "id",
            "confirmation_number",
            "vehicle_id",
            "vehicle_name",
            "user_id",
            "start_date",
            "end_date",
            "days",
            "guest_count",
            "pickup_location",
            "return_location",
            "addon_ids",
            "insurance_package_id",
            "mileage_package_id",
            "primary_driver",
            "emergency_contact",
            "total_amount",
            "totals",
            "payment_status",
            "payment_id",
            "status",
            "cancellation_reason",
            "cancellation_date",
            "cancellation_fee",
            "refund_amount",
            "cancelled_by",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


class DateRangeSerializer(serializers.Serializer):
    start_date = serializers.DateField()
    end_date = serializers.DateField()

    def validate(self, attrs: dict[str, Any]) -> dict[str, Any]:
        if attrs["end_date"] <= attrs["start_date"]:
            raise serializers.ValidationError({"end_date": ["End date must be after start date."]})
        return attrs


class AvailabilityCheckSerializer(DateRangeSerializer):
    vehicle_id = serializers.CharField()


class AvailabilitySearchSerializer(DateRangeSerializer):
    location = serializers.CharField(required=False, allow_blank=True, default="")


class QuoteRequestSerializer(DateRangeSerializer):
    vehicle_id = serializers.CharField()
    addon_ids = serializers.ListField(
        child=serializers.CharField(), required=False, default=list
    )
    insurance_package_id = serializers.CharField(required=False, allow_blank=True, default="")
    mileage_package_id = serializers.CharField(required=False, allow_blank=True, default="")


class MarkPaidSerializer(serializers.Serializer):
    payment_id = serializers.CharField(max_length=120)


class CancelBookingSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class BookingStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Booking.Status.choices)
