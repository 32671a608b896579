"""Domain types and state transitions for bookings."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date
from typing import Optional

from .errors import InvalidStateTransitionError
from .models import Booking

# Statuses that block dates for availability and conflict detection.
BLOCKING_STATUSES = (
    Booking.Status.PENDING,
    Booking.Status.CONFIRMED,
    Booking.Status.COMPLETED,
)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    Booking.Status.PENDING: frozenset({Booking.Status.CONFIRMED, Booking.Status.CANCELLED}),
    Booking.Status.CONFIRMED: frozenset({Booking.Status.COMPLETED, Booking.Status.CANCELLED}),
    Booking.Status.COMPLETED: frozenset(),
    Booking.Status.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class DriverDetails:
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    license_number: str = ""
    license_issue_date: Optional[date] = None
    license_expiry_date: Optional[date] = None
    date_of_birth: Optional[date] = None

    def as_record(self) -> dict[str, Optional[str]]:
        """Return a JSON-safe snapshot for Booking.primary_driver."""
        return {
            key: value.isoformat() if isinstance(value, date) else value
            for key, value in asdict(self).items()
        }


@dataclass(frozen=True)
class EmergencyContact:
    name: str = ""
    phone: str = ""

    def as_record(self) -> dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class BookingRequest:
    """Everything a renter submits to reserve a vehicle."""

    user_id: Optional[int]
    vehicle_id: str = ""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    guest_count: Optional[int] = None
    pickup_location: str = ""
    return_location: str = ""
    addon_ids: tuple[str, ...] = ()
    insurance_package_id: str = ""
    mileage_package_id: str = ""
    primary_driver: Optional[DriverDetails] = None
    emergency_contact: Optional[EmergencyContact] = None
    payment_status: str = Booking.PaymentStatus.PENDING
    payment_id: str = ""
    idempotency_key: Optional[str] = None

    @property
    def is_paid(self) -> bool:
        return self.payment_status == Booking.PaymentStatus.PAID


@dataclass(frozen=True)
class Actor:
    """The user asking for a change; staff users act as admins."""

    id: Optional[int]
    is_admin: bool = False

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(id=getattr(user, "id", None), is_admin=bool(getattr(user, "is_staff", False)))

    @classmethod
    def system(cls) -> "Actor":
        """Scheduled jobs and internal callers."""
        return cls(id=None, is_admin=True)


@dataclass
class CreateOutcome:
    booking: Booking
    replayed: bool = False


def initial_status(request: BookingRequest) -> str:
    """Bookings paid up front start confirmed, all others pending."""
    if request.is_paid:
        return Booking.Status.CONFIRMED
    return Booking.Status.PENDING


def can_transition(current: str, new_status: str) -> bool:
    return new_status in ALLOWED_TRANSITIONS.get(current, frozenset())


def assert_can_transition(booking: Booking, new_status: str) -> None:
    """Raise InvalidStateTransitionError unless the graph allows the move."""
    if not can_transition(booking.status, new_status):
        raise InvalidStateTransitionError(booking.status, new_status)


def is_owner_or_admin(booking: Booking, actor: Actor) -> bool:
    if actor.is_admin:
        return True
    return actor.id is not None and actor.id == booking.user_id
