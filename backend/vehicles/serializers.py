"""Serializers for the vehicle catalog."""

from __future__ import annotations

from rest_framework import serializers

from .models import Vehicle


class VehicleSerializer(serializers.ModelSerializer):
    """Read-only summary used by availability search results."""

    price_per_day = serializers.SerializerMethodField()

    class Meta:
        model = Vehicle
        fields = ("id", "name", "location", "capacity", "price_per_day")
        read_only_fields = fields

    def get_price_per_day(self, obj: Vehicle) -> str | None:
        rate_card = getattr(obj, "rate_card", None)
        if rate_card is None:
            return None
        return str(rate_card.price_per_day)
