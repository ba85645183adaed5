"""Per-entity field checks run before anything touches the database.

Each validator walks its rules in a fixed order and stops at the first
failure; callers show that single message next to the form.
"""
from __future__ import annotations
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Generic, Protocol, TypeVar, Union

from domain import (
    INT_MAX, AppointmentDTO, DepartmentDTO, DoctorDTO, MedicalInventoryDTO, PatientDTO,
    PatientFeedbackDTO, PrescriptionDTO,
)

T = TypeVar("T")
T_contra = TypeVar("T_contra", contravariant=True)

EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
REASON_MAX = 255
MIN_PHONE = 7
COST_MAX = Decimal("99999999.99")   # NUMERIC(10,2)


@dataclass(frozen=True)
class Valid:
    ok = True


@dataclass(frozen=True)
class Invalid:
    message: str
    ok = False


ValidationResult = Union[Valid, Invalid]
VALID = Valid()


class Validator(Protocol[T_contra]):
    def validate(self, entity: T_contra | None) -> ValidationResult: ...


def _blank(s: str | None) -> bool:
    return s is None or not s.strip()


def _too_long(s: str | None, limit: int) -> bool:
    return s is not None and len(s.strip()) > limit


def _missing_ref(ref: int | None) -> bool:
    return ref is None or ref <= 0


class _RuleValidator(Generic[T]):
    """Runs ``_rules`` in order; the first message produced wins."""

    null_message = "Entity cannot be null"

    def validate(self, entity: T | None) -> ValidationResult:
        if entity is None:
            return Invalid(self.null_message)
        for check, message in self._rules(entity):
            if check():
                return Invalid(message)
        return VALID

    def _rules(self, e: T):
        raise NotImplementedError


class DepartmentValidator(_RuleValidator[DepartmentDTO]):
    null_message = "Department cannot be null"

    def _rules(self, d):
        yield lambda: _blank(d.name), "Name is required"
        yield lambda: _too_long(d.name, 100), "Name must not exceed 100 characters"
        yield lambda: _too_long(d.phone, 15), "Phone must not exceed 15 characters"


class DoctorValidator(_RuleValidator[DoctorDTO]):
    null_message = "Doctor cannot be null"

    def _rules(self, d):
        yield lambda: _blank(d.first_name), "First name is required"
        yield lambda: _blank(d.last_name), "Last name is required"
        yield lambda: _blank(d.phone), "Phone is required"
        yield lambda: len(d.phone.strip()) < MIN_PHONE, "Phone must be at least 7 digits"
        yield lambda: _blank(d.email), "Email is required"
        yield lambda: not EMAIL_RE.match(d.email.strip()), "Email format is invalid"
        yield lambda: _too_long(d.first_name, 50), "First name must not exceed 50 characters"
        yield lambda: _too_long(d.middle_name, 50), "Middle name must not exceed 50 characters"
        yield lambda: _too_long(d.last_name, 50), "Last name must not exceed 50 characters"
        yield lambda: _too_long(d.phone, 15), "Phone must not exceed 15 characters"
        yield lambda: _too_long(d.email, 100), "Email must not exceed 100 characters"
        yield lambda: d.department_id is not None and d.department_id <= 0, "Department selection is invalid"


class PatientValidator(_RuleValidator[PatientDTO]):
    null_message = "Patient cannot be null"

    def _rules(self, p):
        yield lambda: _blank(p.first_name), "First name is required"
        yield lambda: _blank(p.last_name), "Last name is required"
        yield lambda: p.date_of_birth is None, "Date of birth is required"
        yield lambda: _blank(p.phone), "Phone is required"
        yield lambda: len(p.phone.strip()) < MIN_PHONE, "Phone must be at least 7 digits"
        yield lambda: _blank(p.email), "Email is required"
        yield lambda: not EMAIL_RE.match(p.email.strip()), "Email format is invalid"
        yield lambda: _too_long(p.first_name, 50), "First name must not exceed 50 characters"
        yield lambda: _too_long(p.middle_name, 50), "Middle name must not exceed 50 characters"
        yield lambda: _too_long(p.last_name, 50), "Last name must not exceed 50 characters"
        yield lambda: _too_long(p.phone, 15), "Phone must not exceed 15 characters"
        yield lambda: _too_long(p.email, 100), "Email must not exceed 100 characters"
        yield lambda: _too_long(p.address, 255), "Address must not exceed 255 characters"


class AppointmentValidator(_RuleValidator[AppointmentDTO]):
    null_message = "Appointment cannot be null"

    def __init__(self, today: Callable[[], date] = date.today):
        self.today = today

    def _rules(self, a):
        yield lambda: _missing_ref(a.patient_id), "Patient selection is required"
        yield lambda: _missing_ref(a.doctor_id), "Doctor selection is required"
        yield lambda: a.appointment_date is None, "Appointment date and time are required"
        # any time today is fine; only earlier calendar days are rejected
        yield lambda: a.appointment_date.date() < self.today(), "Appointment date must be today or in the future"
        yield lambda: _blank(a.reason), "Reason for appointment is required"
        yield lambda: _too_long(a.reason, REASON_MAX), f"Reason must not exceed {REASON_MAX} characters"


class PrescriptionValidator(_RuleValidator[PrescriptionDTO]):
    null_message = "Prescription cannot be null"

    def _rules(self, rx):
        yield lambda: rx.patient_id is None, "Patient is required"
        yield lambda: rx.doctor_id is None, "Doctor is required"
        yield lambda: rx.prescription_date is None, "Prescription date is required"
        for n, item in enumerate(rx.items or [], start=1):
            yield lambda item=item: _missing_ref(item.inventory_id), f"Item {n}: medication is required"
            yield lambda item=item: _too_long(item.dosage, 255), f"Item {n}: dosage must not exceed 255 characters"
            yield (lambda item=item: item.duration_days is not None and item.duration_days < 0,
                   f"Item {n}: duration cannot be negative")
            yield (lambda item=item: item.duration_days is not None and item.duration_days > INT_MAX,
                   f"Item {n}: duration is too large")


class MedicalInventoryValidator(_RuleValidator[MedicalInventoryDTO]):
    null_message = "Medical inventory item cannot be null"

    def _rules(self, m):
        yield lambda: _blank(m.name), "Name is required"
        yield lambda: m.quantity is None, "Quantity is required"
        yield lambda: m.quantity < 0, "Quantity cannot be negative"
        yield lambda: m.quantity > INT_MAX, "Quantity is too large"
        yield lambda: m.cost is not None and Decimal(m.cost) < 0, "Cost cannot be negative"
        yield lambda: m.cost is not None and Decimal(m.cost) > COST_MAX, f"Cost must not exceed {COST_MAX}"
        yield lambda: _too_long(m.name, 100), "Name must not exceed 100 characters"
        yield lambda: _too_long(m.type, 100), "Type must not exceed 100 characters"
        yield lambda: _too_long(m.unit, 20), "Unit must not exceed 20 characters"


class PatientFeedbackValidator(_RuleValidator[PatientFeedbackDTO]):
    null_message = "Patient feedback cannot be null"

    def _rules(self, f):
        yield lambda: f.patient_id is None, "Patient is required"
        yield lambda: f.doctor_id is None, "Doctor is required"
        yield lambda: f.rating is not None and not 1 <= f.rating <= 5, "Rating must be between 1 and 5"
