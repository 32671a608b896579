from __future__ import annotations

import logging
from typing import Optional

from celery import shared_task
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import EmailMultiAlternatives
from django.db import DatabaseError
from django.template import TemplateDoesNotExist
from django.template.loader import render_to_string

from notifications.models import NotificationLog

logger = logging.getLogger(__name__)
User = get_user_model()

STATUS_WORDS = {
    "pending": "received",
    "confirmed": "confirmed",
    "completed": "completed",
    "cancelled": "cancelled",
}


def _record_delivery(type_: str, status: str, **fields) -> None:
    """Store one NotificationLog row; a failing insert only gets logged."""
    fields.setdefault("recipient", "")
    fields["error"] = fields.get("error") or ""
    try:
        NotificationLog.objects.create(type=type_, status=status, **fields)
    except DatabaseError:
        logger.exception("notifications: could not record %s delivery (%s)", type_, status)


def _email_bodies(template: str, context: dict) -> tuple[str, Optional[str]]:
    """Render the plain-text template and its optional HTML sibling."""
    text = render_to_string(f"email/{template}", context).strip()
    html_name = f"email/{template.rsplit('.', 1)[0]}.html"
    try:
        html = render_to_string(html_name, context).strip()
    except TemplateDoesNotExist:
        html = None
    return text, html


def deliver_email(
    type_: str,
    *,
    to_email: Optional[str],
    subject: str,
    template: str,
    context: dict,
    user_id: Optional[int] = None,
    booking_id=None,
) -> bool:
    """Send one templated email and record the outcome."""
    if not to_email:
        logger.warning("notifications: %s for booking %s has no recipient", type_, booking_id)
        _record_delivery(
            type_,
            NotificationLog.Status.FAILED,
            user_id=user_id,
            booking_id=booking_id,
            error="missing recipient email",
        )
        return False

    full_context = {
        "site_name": getattr(settings, "SITE_NAME", "CamperShare"),
        "currency": getattr(settings, "BOOKING_CURRENCY", "EUR"),
        "subject": subject,
        **context,
    }
    text, html = _email_bodies(template, full_context)
    message = EmailMultiAlternatives(
        subject=subject,
        body=text,
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=[to_email],
    )
    if html:
        message.attach_alternative(html, "text/html")

    try:
        message.send(fail_silently=False)
    except Exception as exc:
        logger.exception(
            "notifications: %s to %s failed for booking %s", type_, to_email, booking_id
        )
        _record_delivery(
            type_,
            NotificationLog.Status.FAILED,
            recipient=to_email,
            user_id=user_id,
            booking_id=booking_id,
            error=str(exc) or exc.__class__.__name__,
        )
        return False

    _record_delivery(
        type_,
        NotificationLog.Status.SENT,
        recipient=to_email,
        user_id=user_id,
        booking_id=booking_id,
    )
    return True


@shared_task(name="notifications.send_booking_status_email", queue="emails")
def send_booking_status_email(user_id: int, booking_id: str, new_status: str):
    """Tell the renter their booking was received, confirmed, completed or cancelled."""
    from bookings.models import Booking

    user = User.objects.filter(pk=user_id).first()
    if user is None:
        logger.warning("notifications: user %s no longer exists", user_id)
        return
    booking = Booking.objects.select_related("vehicle").filter(pk=booking_id).first()
    if booking is None:
        logger.warning("notifications: booking %s no longer exists", booking_id)
        return

    driver = booking.primary_driver or {}
    status_word = STATUS_WORDS.get(new_status, "updated")
    frontend_origin = (getattr(settings, "FRONTEND_ORIGIN", "") or "").rstrip("/")
    deliver_email(
        "booking_status_update",
        to_email=driver.get("email") or user.email,
        subject=f"Booking {booking.confirmation_number} {status_word}",
        template="booking_status_update.txt",
        context={
            "booking": booking,
            "vehicle_name": booking.vehicle.name,
            "status_word": status_word,
            "first_name": driver.get("first_name") or user.get_username(),
            "site_url": frontend_origin,
            "cta_url": (
                f"{frontend_origin}/bookings/{booking.confirmation_number}"
                if frontend_origin
                else ""
            ),
        },
        user_id=user_id,
        booking_id=booking.id,
    )
