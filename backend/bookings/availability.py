"""Conflict detection and open-window search over vehicle reservations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional
from uuid import UUID

from django.conf import settings
from django.db.models import Exists, OuterRef, Q, QuerySet

from vehicles.models import Vehicle

from .domain import BLOCKING_STATUSES
from .models import Booking

logger = logging.getLogger(__name__)

DEFAULT_SUGGESTION_LIMIT = 5
DEFAULT_HORIZON_DAYS = 365


def ranges_conflict(start: date, end: date, other_start: date, other_end: date) -> bool:
    """
    Return True when [start, end) collides with [other_start, other_end).

    Mirrors conflict_q() clause for clause.
    """
    return (
        (other_start <= start < other_end)
        or (other_start < end <= other_end)
        or (start <= other_start and end >= other_end)
    )


def conflict_q(start: date, end: date) -> Q:
    return (
        Q(start_date__lte=start, end_date__gt=start)
        | Q(start_date__lt=end, end_date__gte=end)
        | Q(start_date__gte=start, end_date__lte=end)
    )


@dataclass(frozen=True)
class AlternativeWindow:
    available_from: date
    available_until: date

    @property
    def days_available(self) -> int:
        return (self.available_until - self.available_from).days

    def as_dict(self) -> dict[str, object]:
        return {
            "available_from": self.available_from.isoformat(),
            "available_until": self.available_until.isoformat(),
            "days_available": self.days_available,
        }


@dataclass(frozen=True)
class AvailabilityReport:
    available: bool
    conflicts: tuple[Booking, ...] = ()
    suggested_dates: tuple[AlternativeWindow, ...] = ()

    def as_dict(self) -> dict[str, object]:
        return {
            "available": self.available,
            "conflicts": [
                {"start_date": b.start_date.isoformat(), "end_date": b.end_date.isoformat()}
                for b in self.conflicts
            ],
            "suggested_dates": [window.as_dict() for window in self.suggested_dates],
        }


class AvailabilityIndex:
    """Read side of the reservation store: who holds which dates."""

    def __init__(
        self,
        *,
        suggestion_limit: Optional[int] = None,
        horizon_days: Optional[int] = None,
    ) -> None:
        if suggestion_limit is None:
            suggestion_limit = getattr(
                settings, "BOOKING_SUGGESTION_LIMIT", DEFAULT_SUGGESTION_LIMIT
            )
        if horizon_days is None:
            horizon_days = getattr(
                settings, "BOOKING_SUGGESTION_HORIZON_DAYS", DEFAULT_HORIZON_DAYS
            )
        self.suggestion_limit = suggestion_limit
        self.horizon_days = horizon_days

    def blocking_bookings(self, vehicle_id: str) -> QuerySet[Booking]:
        return Booking.objects.filter(vehicle_id=vehicle_id, status__in=BLOCKING_STATUSES)

    def conflicts(
        self,
        vehicle_id: str,
        start: date,
        end: date,
        exclude_booking_id: Optional[UUID] = None,
    ) -> list[Booking]:
        qs = self.blocking_bookings(vehicle_id).filter(conflict_q(start, end))
        if exclude_booking_id is not None:
            qs = qs.exclude(pk=exclude_booking_id)
        return list(qs.order_by("start_date"))

    def available(
        self,
        vehicle_id: str,
        start: date,
        end: date,
        exclude_booking_id: Optional[UUID] = None,
    ) -> bool:
        return not self.conflicts(vehicle_id, start, end, exclude_booking_id=exclude_booking_id)

    def check(self, vehicle_id: str, start: date, end: date) -> AvailabilityReport:
        """Conflicts plus suggestions in one answer for the booking form."""
        conflicts = self.conflicts(vehicle_id, start, end)
        if not conflicts:
            return AvailabilityReport(available=True)
        return AvailabilityReport(
            available=False,
            conflicts=tuple(conflicts),
            suggested_dates=tuple(self.suggest_alternatives(vehicle_id, start, end)),
        )

    def suggest_alternatives(
        self,
        vehicle_id: str,
        start: date,
        end: date,
        *,
        limit: Optional[int] = None,
        horizon_days: Optional[int] = None,
    ) -> list[AlternativeWindow]:
        """
        Return free windows at least as long as the requested stay.

        Walks the vehicle's blocking bookings from ``start`` forward and reports
        the gaps between them, then the open tail up to the horizon.
        """
        limit = self.suggestion_limit if limit is None else limit
        horizon_days = self.horizon_days if horizon_days is None else horizon_days
        days_needed = max((end - start).days, 1)
        horizon_end = start + timedelta(days=horizon_days)

        taken = (
            self.blocking_bookings(vehicle_id)
            .filter(end_date__gt=start, start_date__lt=horizon_end)
            .order_by("start_date")
            .values_list("start_date", "end_date")
        )

        windows: list[AlternativeWindow] = []
        cursor = start
        for booked_start, booked_end in taken:
            if len(windows) >= limit:
                break
            if (booked_start - cursor).days >= days_needed:
                windows.append(AlternativeWindow(cursor, booked_start))
            cursor = max(cursor, booked_end)

        if len(windows) < limit and (horizon_end - cursor).days >= days_needed:
            windows.append(AlternativeWindow(cursor, horizon_end))
        return windows[:limit]

    def search(self, start: date, end: date, location: Optional[str] = None) -> list[Vehicle]:
        """Active vehicles near ``location`` with nothing booked in [start, end)."""
        clashing = Booking.objects.filter(
            vehicle=OuterRef("pk"),
            status__in=BLOCKING_STATUSES,
        ).filter(conflict_q(start, end))
        qs = (
            Vehicle.objects.select_related("rate_card")
            .filter(is_active=True)
            .filter(~Exists(clashing))
        )
        if location:
            qs = qs.filter(location__icontains=location.strip())
        vehicles = list(qs.order_by("name"))
        logger.info(
            "availability search %s..%s location=%r found=%s", start, end, location, len(vehicles)
        )
        return vehicles
