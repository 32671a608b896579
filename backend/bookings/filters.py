from __future__ import annotations

import django_filters as filters

from .models import Booking


class BookingFilter(filters.FilterSet):
    status = filters.ChoiceFilter(field_name="status", choices=Booking.Status.choices)
    vehicle = filters.CharFilter(field_name="vehicle_id")
    payment_status = filters.ChoiceFilter(
        field_name="payment_status", choices=Booking.PaymentStatus.choices
    )
    starts_after = filters.DateFilter(field_name="start_date", lookup_expr="gte")
    starts_before = filters.DateFilter(field_name="start_date", lookup_expr="lt")

    class Meta:
        model = Booking
        fields = ["status", "vehicle", "payment_status"]
