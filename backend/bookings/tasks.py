"""Celery tasks for bookings."""

from __future__ import annotations

import logging
from datetime import date

from celery import shared_task
from django.utils import timezone

from .errors import BookingError
from .lifecycle import build_lifecycle
from .models import Booking

logger = logging.getLogger(__name__)


@shared_task(name="bookings.auto_complete_finished_bookings")
def auto_complete_finished_bookings() -> int:
    """
    Complete confirmed bookings whose return date has passed.

    Returns the number of bookings moved to completed.
    """
    lifecycle = build_lifecycle()
    today: date = timezone.localdate(lifecycle.clock())
    finished_ids = list(
        lifecycle.by_status(Booking.Status.CONFIRMED)
        .filter(end_date__lt=today)
        .values_list("id", flat=True)
    )

    completed = 0
    for booking_id in finished_ids:
        try:
            lifecycle.update_status(booking_id, Booking.Status.COMPLETED)
        except BookingError as exc:
            # Cancelled or completed concurrently; the next run skips it.
            logger.warning("bookings: could not complete booking %s: %s", booking_id, exc.kind)
            continue
        completed += 1

    if completed:
        logger.info("bookings: auto-completed %s finished bookings", completed)
    return completed
