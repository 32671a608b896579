"""Field-level checks for booking requests."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from vehicles.models import Vehicle

from .domain import BookingRequest

MIN_DRIVER_AGE = 21


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str

    def as_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


@dataclass
class ValidationResult:
    errors: list[FieldError] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def add(self, field_name: str, message: str) -> None:
        self.errors.append(FieldError(field_name, message))


def age_on(birth_date: date, today: date) -> int:
    """Return completed years between birth_date and today."""
    years = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        years -= 1
    return years


class BookingValidator:
    """
    Collect every problem with a booking request in one pass.

    The validator never touches the database; the caller loads the vehicle
    (or passes None when it does not exist).
    """

    driver_fields = (
        ("first_name", "Driver first name is required."),
        ("last_name", "Driver last name is required."),
        ("email", "Driver email is required."),
        ("phone", "Driver phone is required."),
        ("license_number", "Driver license number is required."),
        ("license_issue_date", "License issue date is required."),
        ("license_expiry_date", "License expiry date is required."),
        ("date_of_birth", "Driver date of birth is required."),
    )

    def __init__(self, today: date, min_driver_age: int = MIN_DRIVER_AGE) -> None:
        self.today = today
        self.min_driver_age = min_driver_age

    def validate(self, request: BookingRequest, vehicle: Optional[Vehicle]) -> ValidationResult:
        result = ValidationResult()
        self._check_vehicle(request, vehicle, result)
        self._check_dates(request, result)
        self._check_guests(request, vehicle, result)
        self._check_locations(request, result)
        self._check_driver(request, result)
        self._check_emergency_contact(request, result)
        return result

    def _check_vehicle(
        self, request: BookingRequest, vehicle: Optional[Vehicle], result: ValidationResult
    ) -> None:
        if not request.vehicle_id:
            result.add("vehicle_id", "Vehicle is required.")
        elif vehicle is None:
            result.add("vehicle_id", "Vehicle not found.")
        elif not vehicle.is_active:
            result.add("vehicle_id", "Vehicle is not available for booking.")

    def _check_dates(self, request: BookingRequest, result: ValidationResult) -> None:
        if request.start_date is None:
            result.add("start_date", "Start date is required.")
        elif request.start_date < self.today:
            result.add("start_date", "Start date cannot be in the past.")
        if request.end_date is None:
            result.add("end_date", "End date is required.")
        elif request.start_date is not None and request.end_date <= request.start_date:
            result.add("end_date", "End date must be after start date.")

    def _check_guests(
        self, request: BookingRequest, vehicle: Optional[Vehicle], result: ValidationResult
    ) -> None:
        if request.guest_count is None or request.guest_count < 1:
            result.add("guest_count", "At least one guest is required.")
        elif vehicle is not None and request.guest_count > vehicle.capacity:
            result.add(
                "guest_count",
                f"This vehicle accommodates at most {vehicle.capacity} guests.",
            )

    def _check_locations(self, request: BookingRequest, result: ValidationResult) -> None:
        if not (request.pickup_location or "").strip():
            result.add("pickup_location", "Pickup location is required.")
        if not (request.return_location or "").strip():
            result.add("return_location", "Return location is required.")

    def _check_driver(self, request: BookingRequest, result: ValidationResult) -> None:
        driver = request.primary_driver
        if driver is None:
            result.add("primary_driver", "Primary driver details are required.")
            return
        for name, message in self.driver_fields:
            value = getattr(driver, name)
            if value is None or (isinstance(value, str) and not value.strip()):
                result.add(f"primary_driver.{name}", message)

        if driver.date_of_birth is not None:
            if age_on(driver.date_of_birth, self.today) < self.min_driver_age:
                result.add(
                    "primary_driver.date_of_birth",
                    f"Driver must be at least {self.min_driver_age} years old.",
                )
        if driver.license_expiry_date is not None and driver.license_expiry_date <= self.today:
            result.add("primary_driver.license_expiry_date", "Driver license has expired.")

    def _check_emergency_contact(self, request: BookingRequest, result: ValidationResult) -> None:
        contact = request.emergency_contact
        if contact is None or not (contact.name or "").strip():
            result.add("emergency_contact.name", "Emergency contact name is required.")
        if contact is None or not (contact.phone or "").strip():
            result.add("emergency_contact.phone", "Emergency contact phone is required.")
