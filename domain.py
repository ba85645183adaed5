from __future__ import annotations
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TypeVar

# ---------- records handed to callers ----------

@dataclass
class DepartmentDTO:
    id: int | None
    name: str
    phone: str | None = None


@dataclass
class DoctorDTO:
    id: int | None
    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    middle_name: str | None = None
    department_id: int | None = None

    @property
    def full_name(self) -> str:
        return full_name(self.first_name, self.middle_name, self.last_name)


@dataclass
class PatientDTO:
    id: int | None
    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    middle_name: str | None = None
    date_of_birth: date | None = None
    address: str | None = None
    registration_date: datetime | None = None   # read-only, set by the store

    @property
    def full_name(self) -> str:
        return full_name(self.first_name, self.middle_name, self.last_name)


@dataclass
class AppointmentDTO:
    id: int | None
    patient_id: int | None
    doctor_id: int | None
    appointment_date: datetime | None
    reason: str | None = None
    patient_name: str | None = None   # display only
    doctor_name: str | None = None


@dataclass
class PrescriptionItemDTO:
    id: int | None
    inventory_id: int | None
    dosage: str | None = None
    duration_days: int | None = None
    prescription_id: int | None = None
    medication_name: str | None = None


@dataclass
class PrescriptionDTO:
    id: int | None
    patient_id: int | None
    doctor_id: int | None
    prescription_date: date | None
    notes: str | None = None
    # None leaves stored items alone on update; a list replaces them
    items: list[PrescriptionItemDTO] | None = None
    patient_name: str | None = None
    doctor_name: str | None = None


@dataclass
class MedicalInventoryDTO:
    id: int | None
    name: str
    type: str | None = None
    quantity: int | None = None
    unit: str | None = None
    expiry_date: date | None = None
    cost: Decimal | None = None


@dataclass
class PatientFeedbackDTO:
    id: int | None
    patient_id: int | None
    doctor_id: int | None
    rating: int | None = None
    comments: str | None = None
    feedback_date: datetime | None = None   # defaults to insert time
    patient_name: str | None = None
    doctor_name: str | None = None


@dataclass(frozen=True)
class VisitHistoryDTO:
    doctor_name: str
    visit_date: datetime
    reason: str | None
    notes: str = ""


def full_name(first: str | None, middle: str | None, last: str | None) -> str:
    return " ".join(p for p in (first, middle, last) if p)


# ---------- sort allow-lists ----------
# Values are the labels shown in the sort picker; the first member is the default.

class DoctorSort(str, Enum):
    ID_DESC = "ID (Newest)"
    ID_ASC = "ID (Oldest)"
    NAME_ASC = "Name (A-Z)"
    NAME_DESC = "Name (Z-A)"


class PatientSort(str, Enum):
    ID_DESC = "ID (Newest)"
    ID_ASC = "ID (Oldest)"
    NAME_ASC = "Name (A-Z)"
    NAME_DESC = "Name (Z-A)"
    DOB_ASC = "DOB (Oldest)"
    DOB_DESC = "DOB (Newest)"


class DepartmentSort(str, Enum):
    ID_DESC = "ID (Newest)"
    NAME_ASC = "Name (A-Z)"
    NAME_DESC = "Name (Z-A)"


class AppointmentSort(str, Enum):
    DATE_DESC = "Date (Newest)"
    DATE_ASC = "Date (Oldest)"
    TODAY = "Today"
    NEXT_7 = "Next 7 days"
    NEXT_30 = "Next 30 days"


class PrescriptionSort(str, Enum):
    NONE = "All"
    DATE_ASC = "Date (Oldest)"
    DATE_DESC = "Date (Newest)"
    PATIENT_ASC = "Patient (A-Z)"
    PATIENT_DESC = "Patient (Z-A)"
    DOCTOR_ASC = "Doctor (A-Z)"
    DOCTOR_DESC = "Doctor (Z-A)"


class MedicalInventorySort(str, Enum):
    NONE = "All"
    NAME_ASC = "Name (A-Z)"
    NAME_DESC = "Name (Z-A)"
    QUANTITY_ASC = "Quantity (Low-High)"
    QUANTITY_DESC = "Quantity (High-Low)"
    EXPIRY_ASC = "Expiry (Soonest)"
    EXPIRY_DESC = "Expiry (Latest)"


class PatientFeedbackSort(str, Enum):
    NONE = "All"
    DATE_ASC = "Date (Oldest)"
    DATE_DESC = "Date (Newest)"
    PATIENT_ASC = "Patient (A-Z)"
    PATIENT_DESC = "Patient (Z-A)"
    DOCTOR_ASC = "Doctor (A-Z)"
    DOCTOR_DESC = "Doctor (Z-A)"
    RATING_ASC = "Rating (Low-High)"
    RATING_DESC = "Rating (High-Low)"


S = TypeVar("S", bound=Enum)


def parse_sort(options: type[S], value: S | str | None) -> S:
    """Map a picker label or member name onto the allow-list.

    Anything unrecognised falls back to the default (first) option, so no
    caller-supplied text ever reaches an ORDER BY.
    """
    if isinstance(value, options):
        return value
    if isinstance(value, str):
        v = value.strip()
        for opt in options:
            if v == opt.value or v.upper() == opt.name:
                return opt
    return next(iter(options))


# ---------- search terms ----------

_ID_TERM = re.compile(r"[+-]?\d+")

# INT columns are signed 32-bit; wider ids match nothing and wider values are rejected
INT_MAX = 2**31 - 1


def normalize_term(term: str | None) -> str:
    return (term or "").strip()


def id_term(term: str | None) -> int | None:
    """Integer value of a purely numeric term, else None."""
    t = normalize_term(term)
    return int(t) if _ID_TERM.fullmatch(t) else None
