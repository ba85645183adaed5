from __future__ import annotations
import logging
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta
from typing import Callable, Generic, TypeVar
from sqlalchemy import select, func, or_, false
from sqlalchemy.exc import (
    DataError, IntegrityError, InterfaceError, OperationalError, SQLAlchemyError, TimeoutError as PoolTimeout,
)
from sqlalchemy.orm import contains_eager, selectinload
import models as m
from database import session_scope
from domain import (
    AppointmentDTO, AppointmentSort, DepartmentDTO, DepartmentSort, DoctorDTO, DoctorSort,
    MedicalInventoryDTO, MedicalInventorySort, PatientDTO, PatientFeedbackDTO, PatientFeedbackSort,
    PatientSort, PrescriptionDTO, PrescriptionItemDTO, PrescriptionSort, VisitHistoryDTO,
    INT_MAX, full_name, id_term, normalize_term, parse_sort,
)
from errors import ConnectivityError, HmsError, NotFoundError, PersistenceConstraintError, ValidationError

logger = logging.getLogger(__name__)

D = TypeVar("D")


# ------------------ error classification ------------------

def _constraint_error(entity: str, action: str, raw: str, hints) -> Exception:
    low = raw.lower()
    if "foreign key" in low:
        if action == "delete":
            msg = f"{entity} is still referenced by other records; remove those first."
        else:
            msg = f"{entity} refers to a record that does not exist."
        return PersistenceConstraintError(msg, PersistenceConstraintError.REFERENCE)
    if "not null" in low or "cannot be null" in low:
        return ValidationError(f"{entity} is missing a required value.")
    field = next((label for needle, label in hints if needle in low), None)
    if field:
        msg = f"{entity} with the same {field} already exists."
    else:
        msg = f"{entity} duplicates an existing record."
    return PersistenceConstraintError(msg, PersistenceConstraintError.UNIQUE, field)


def _raw(e: Exception) -> str:
    orig = getattr(e, "orig", None)
    return str(orig) if orig is not None else str(e)


@contextmanager
def classified_errors(entity: str, action: str, hints=()):
    """Translate driver failures into the service error taxonomy, logging the raw text."""
    try:
        yield
    except IntegrityError as e:
        raw = _raw(e)
        err = _constraint_error(entity, action, raw, hints)
        logger.warning("%s %s rejected [%s]: %s", entity, action, err.kind, raw)
        raise err from e
    except (DataError, OverflowError) as e:
        # value too long or out of range for its column
        raw = _raw(e)
        logger.warning("%s %s rejected [validation]: %s", entity, action, raw)
        raise ValidationError(f"{entity} has a value that does not fit its column.") from e
    except (OperationalError, InterfaceError, PoolTimeout) as e:
        raw = _raw(e)
        logger.error("%s %s failed [connectivity]: %s", entity, action, raw)
        raise ConnectivityError(f"Database unavailable: {raw}") from e
    except SQLAlchemyError as e:
        raw = _raw(e)
        logger.error("%s %s failed [error]: %s", entity, action, raw)
        raise HmsError(f"Database error: {raw}") from e


# ------------------ query helpers ------------------

def _like(term: str) -> str:
    esc = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{esc}%"


def _contains(pattern: str, *cols):
    return or_(*(func.lower(func.coalesce(c, "")).like(pattern, escape="\\") for c in cols))


def _name(cls):
    return cls.first_name + " " + cls.last_name


def _display_name(p) -> str:
    return full_name(p.first_name, None, p.last_name) if p is not None else ""


def _day_start(d: date) -> datetime:
    return datetime.combine(d, time.min)


# ------------------ base repository ------------------

class EntityRepo(Generic[D]):
    """
    Search / count / load / insert / update / delete for one table.

    Every call opens its own session and releases it before returning,
    whatever the outcome. Subclasses describe the table through the hooks
    below; search semantics are shared: a purely numeric term is an ID
    lookup, anything else a case-insensitive substring match.
    """

    orm: type[m.Base]
    entity = "Record"
    sort_options: type
    unique_hints: tuple[tuple[str, str], ...] = ()

    def __init__(self, session_factory):
        self.sf = session_factory

    # ----- hooks -----
    def _joined(self, stmt):
        return stmt

    def _eager(self, stmt):
        return stmt

    def _text_match(self, pattern: str):
        raise NotImplementedError

    def _order_by(self, sort) -> tuple:
        raise NotImplementedError

    def _window(self, sort):
        return None

    def _to_dto(self, orm) -> D:
        raise NotImplementedError

    def _apply(self, dto: D, orm):
        raise NotImplementedError

    # ----- plumbing -----
    @contextmanager
    def _session(self, action: str):
        with classified_errors(self.entity, action, self.unique_hints), session_scope(self.sf) as s:
            yield s

    def _filtered(self, stmt, term: str | None, sort):
        stmt = self._joined(stmt)
        ident = id_term(term)
        if ident is not None:
            stmt = stmt.where(self.orm.id == ident) if abs(ident) <= INT_MAX else stmt.where(false())
        elif normalize_term(term):
            stmt = stmt.where(self._text_match(_like(normalize_term(term))))
        window = self._window(sort)
        if window is not None:
            stmt = stmt.where(window)
        return stmt

    # ----- reads -----
    def find(self, term: str | None, limit: int, offset: int, sort=None) -> list[D]:
        sort = parse_sort(self.sort_options, sort)
        stmt = self._filtered(self._eager(select(self.orm)), term, sort)
        stmt = stmt.order_by(*self._order_by(sort)).limit(limit).offset(offset)
        with self._session("search") as s:
            return [self._to_dto(o) for o in s.scalars(stmt).unique()]

    def count(self, term: str | None, sort=None) -> int:
        sort = parse_sort(self.sort_options, sort)
        stmt = self._filtered(select(func.count(self.orm.id)).select_from(self.orm), term, sort)
        with self._session("count") as s:
            return s.scalar(stmt) or 0

    def get(self, ident: int) -> D | None:
        stmt = self._eager(self._joined(select(self.orm))).where(self.orm.id == ident)
        with self._session("load") as s:
            orm = s.scalars(stmt).unique().first()
            return self._to_dto(orm) if orm is not None else None

    # ----- writes -----
    def create(self, dto: D) -> int:
        with self._session("save") as s:
            orm = self._apply(dto, self.orm())
            s.add(orm)
            s.flush()
            return orm.id

    def update(self, dto: D) -> None:
        with self._session("save") as s:
            orm = s.get(self.orm, dto.id)
            if orm is None:
                raise NotFoundError(self.entity, dto.id)
            self._apply(dto, orm)
            s.flush()

    def delete(self, ident: int) -> None:
        with self._session("delete") as s:
            orm = s.get(self.orm, ident)
            if orm is None:
                raise NotFoundError(self.entity, ident)
            s.delete(orm)
            s.flush()


# ------------------ departments ------------------

class DepartmentRepo(EntityRepo[DepartmentDTO]):
    orm = m.Department
    entity = "Department"
    sort_options = DepartmentSort
    unique_hints = (("name", "name"),)

    def _text_match(self, pattern):
        return _contains(pattern, m.Department.name, m.Department.phone)

    def _order_by(self, sort):
        d = m.Department
        return {
            DepartmentSort.ID_DESC:   (d.id.desc(),),
            DepartmentSort.NAME_ASC:  (d.name.asc(), d.id.asc()),
            DepartmentSort.NAME_DESC: (d.name.desc(), d.id.desc()),
        }[sort]

    def _to_dto(self, o):
        return DepartmentDTO(id=o.id, name=o.name, phone=o.phone)

    def _apply(self, dto, o):
        o.name, o.phone = dto.name, dto.phone or None
        return o


# ------------------ doctors ------------------

class DoctorRepo(EntityRepo[DoctorDTO]):
    orm = m.Doctor
    entity = "Doctor"
    sort_options = DoctorSort
    unique_hints = (("email", "email"), ("phone", "phone"))

    def _text_match(self, pattern):
        d = m.Doctor
        return _contains(pattern, d.first_name, d.last_name, d.email, d.phone)

    def _order_by(self, sort):
        d = m.Doctor
        return {
            DoctorSort.ID_DESC:   (d.id.desc(),),
            DoctorSort.ID_ASC:    (d.id.asc(),),
            DoctorSort.NAME_ASC:  (d.last_name.asc(), d.first_name.asc(), d.id.asc()),
            DoctorSort.NAME_DESC: (d.last_name.desc(), d.first_name.desc(), d.id.desc()),
        }[sort]

    def _to_dto(self, o):
        return DoctorDTO(
            id=o.id, first_name=o.first_name, middle_name=o.middle_name, last_name=o.last_name,
            email=o.email, phone=o.phone, department_id=o.department_id,
        )

    def _apply(self, dto, o):
        o.first_name, o.middle_name, o.last_name = dto.first_name, dto.middle_name or None, dto.last_name
        o.email, o.phone, o.department_id = dto.email, dto.phone or None, dto.department_id
        return o


# ------------------ patients ------------------

class PatientRepo(EntityRepo[PatientDTO]):
    orm = m.Patient
    entity = "Patient"
    sort_options = PatientSort
    unique_hints = (("email", "email"), ("phone", "phone"))

    def _text_match(self, pattern):
        p = m.Patient
        return _contains(pattern, p.first_name, p.last_name, p.email, p.phone)

    def _order_by(self, sort):
        p = m.Patient
        return {
            PatientSort.ID_DESC:   (p.id.desc(),),
            PatientSort.ID_ASC:    (p.id.asc(),),
            PatientSort.NAME_ASC:  (p.last_name.asc(), p.first_name.asc(), p.id.asc()),
            PatientSort.NAME_DESC: (p.last_name.desc(), p.first_name.desc(), p.id.desc()),
            PatientSort.DOB_ASC:   (p.date_of_birth.asc(), p.id.asc()),
            PatientSort.DOB_DESC:  (p.date_of_birth.desc(), p.id.desc()),
        }[sort]

    def _to_dto(self, o):
        return PatientDTO(
            id=o.id, first_name=o.first_name, middle_name=o.middle_name, last_name=o.last_name,
            email=o.email, phone=o.phone, date_of_birth=o.date_of_birth, address=o.address,
            registration_date=o.registration_date,
        )

    def _apply(self, dto, o):
        # registration_date is left to the store
        o.first_name, o.middle_name, o.last_name = dto.first_name, dto.middle_name or None, dto.last_name
        o.email, o.phone = dto.email, dto.phone or None
        o.date_of_birth, o.address = dto.date_of_birth, dto.address or None
        return o

    def visit_history(self, patient_id: int) -> list[VisitHistoryDTO]:
        a = m.Appointment
        stmt = (select(a).join(a.doctor).options(contains_eager(a.doctor))
                .where(a.patient_id == patient_id)
                .order_by(a.appointment_date.desc(), a.id.desc()))
        with self._session("history") as s:
            return [
                VisitHistoryDTO(doctor_name=_display_name(r.doctor), visit_date=r.appointment_date, reason=r.reason)
                for r in s.scalars(stmt)
            ]


# ------------------ appointments ------------------

class AppointmentRepo(EntityRepo[AppointmentDTO]):
    orm = m.Appointment
    entity = "Appointment"
    sort_options = AppointmentSort
    unique_hints = (("appointmentdate", "patient, doctor and time"),
                    ("uq_appt", "patient, doctor and time"))

    # window sorts: label -> days after today still included
    WINDOWS = {AppointmentSort.TODAY: 0, AppointmentSort.NEXT_7: 7, AppointmentSort.NEXT_30: 30}

    def __init__(self, session_factory, today: Callable[[], date] = date.today):
        super().__init__(session_factory)
        self.today = today

    def _joined(self, stmt):
        return stmt.join(m.Appointment.patient).join(m.Appointment.doctor)

    def _eager(self, stmt):
        return stmt.options(contains_eager(m.Appointment.patient), contains_eager(m.Appointment.doctor))

    def _text_match(self, pattern):
        return _contains(pattern, _name(m.Patient), _name(m.Doctor), m.Appointment.reason)

    def _window(self, sort):
        days = self.WINDOWS.get(sort)
        if days is None:
            return None
        today = self.today()
        col = m.Appointment.appointment_date
        return (col >= _day_start(today)) & (col < _day_start(today + timedelta(days=days + 1)))

    def _order_by(self, sort):
        a = m.Appointment
        if sort is AppointmentSort.DATE_DESC:
            return (a.appointment_date.desc(), a.id.desc())
        return (a.appointment_date.asc(), a.id.asc())

    def _to_dto(self, o):
        return AppointmentDTO(
            id=o.id, patient_id=o.patient_id, doctor_id=o.doctor_id,
            appointment_date=o.appointment_date, reason=o.reason,
            patient_name=_display_name(o.patient), doctor_name=_display_name(o.doctor),
        )

    def _apply(self, dto, o):
        o.patient_id, o.doctor_id = dto.patient_id, dto.doctor_id
        o.appointment_date, o.reason = dto.appointment_date, dto.reason
        return o

    def _by(self, column, ident: int) -> list[AppointmentDTO]:
        a = m.Appointment
        stmt = (self._eager(self._joined(select(a)))
                .where(column == ident).order_by(a.appointment_date.desc(), a.id.desc()))
        with self._session("search") as s:
            return [self._to_dto(o) for o in s.scalars(stmt).unique()]

    def find_by_patient(self, patient_id: int) -> list[AppointmentDTO]:
        return self._by(m.Appointment.patient_id, patient_id)

    def find_by_doctor(self, doctor_id: int) -> list[AppointmentDTO]:
        return self._by(m.Appointment.doctor_id, doctor_id)


# ------------------ prescriptions ------------------

def _item_to_dto(i: m.PrescriptionItem) -> PrescriptionItemDTO:
    return PrescriptionItemDTO(
        id=i.id, prescription_id=i.prescription_id, inventory_id=i.inventory_id,
        dosage=i.dosage, duration_days=i.duration_days,
        medication_name=i.inventory.name if i.inventory is not None else None,
    )


class PrescriptionRepo(EntityRepo[PrescriptionDTO]):
    orm = m.Prescription
    entity = "Prescription"
    sort_options = PrescriptionSort

    def _joined(self, stmt):
        return stmt.join(m.Prescription.patient).join(m.Prescription.doctor)

    def _eager(self, stmt):
        rx = m.Prescription
        return stmt.options(
            contains_eager(rx.patient), contains_eager(rx.doctor),
            selectinload(rx.items).selectinload(m.PrescriptionItem.inventory),
        )

    def _text_match(self, pattern):
        return _contains(pattern, _name(m.Patient), _name(m.Doctor))

    def _order_by(self, sort):
        rx, S = m.Prescription, PrescriptionSort
        newest = (rx.prescription_date.desc(), rx.id.desc())
        return {
            S.NONE:         newest,
            S.DATE_ASC:     (rx.prescription_date.asc(), rx.id.asc()),
            S.DATE_DESC:    newest,
            S.PATIENT_ASC:  (_name(m.Patient).asc(), rx.id.asc()),
            S.PATIENT_DESC: (_name(m.Patient).desc(), rx.id.desc()),
            S.DOCTOR_ASC:   (_name(m.Doctor).asc(), rx.id.asc()),
            S.DOCTOR_DESC:  (_name(m.Doctor).desc(), rx.id.desc()),
        }[sort]

    def _to_dto(self, o):
        return PrescriptionDTO(
            id=o.id, patient_id=o.patient_id, doctor_id=o.doctor_id,
            prescription_date=o.prescription_date, notes=o.notes,
            items=[_item_to_dto(i) for i in o.items],
            patient_name=_display_name(o.patient), doctor_name=_display_name(o.doctor),
        )

    def _apply(self, dto, o):
        o.patient_id, o.doctor_id = dto.patient_id, dto.doctor_id
        o.prescription_date, o.notes = dto.prescription_date, dto.notes or None
        if dto.items is not None:
            # delete-orphan cascade drops whatever was stored before
            o.items = [
                m.PrescriptionItem(inventory_id=i.inventory_id, dosage=i.dosage or None,
                                   duration_days=i.duration_days)
                for i in dto.items
            ]
        return o

    def list_items(self, prescription_id: int) -> list[PrescriptionItemDTO]:
        pi = m.PrescriptionItem
        stmt = (select(pi).options(selectinload(pi.inventory))
                .where(pi.prescription_id == prescription_id).order_by(pi.id))
        with self._session("load") as s:
            return [_item_to_dto(i) for i in s.scalars(stmt)]


# ------------------ inventory ------------------

class MedicalInventoryRepo(EntityRepo[MedicalInventoryDTO]):
    orm = m.MedicalInventory
    entity = "Medical inventory item"
    sort_options = MedicalInventorySort
    unique_hints = (("name", "name"),)

    def _text_match(self, pattern):
        return _contains(pattern, m.MedicalInventory.name, m.MedicalInventory.type)

    def _order_by(self, sort):
        mi, S = m.MedicalInventory, MedicalInventorySort
        return {
            S.NONE:          (mi.id.desc(),),
            S.NAME_ASC:      (mi.name.asc(), mi.id.asc()),
            S.NAME_DESC:     (mi.name.desc(), mi.id.desc()),
            S.QUANTITY_ASC:  (mi.quantity.asc(), mi.id.asc()),
            S.QUANTITY_DESC: (mi.quantity.desc(), mi.id.desc()),
            S.EXPIRY_ASC:    (mi.expiry_date.asc(), mi.id.asc()),
            S.EXPIRY_DESC:   (mi.expiry_date.desc(), mi.id.desc()),
        }[sort]

    def _to_dto(self, o):
        return MedicalInventoryDTO(
            id=o.id, name=o.name, type=o.type, quantity=o.quantity, unit=o.unit,
            expiry_date=o.expiry_date, cost=o.cost,
        )

    def _apply(self, dto, o):
        o.name, o.type, o.quantity = dto.name, dto.type or None, dto.quantity
        o.unit, o.expiry_date, o.cost = dto.unit or None, dto.expiry_date, dto.cost
        return o


# ------------------ feedback ------------------

class PatientFeedbackRepo(EntityRepo[PatientFeedbackDTO]):
    orm = m.PatientFeedback
    entity = "Patient feedback"
    sort_options = PatientFeedbackSort
    unique_hints = (("feedbackdate", "patient, doctor and date"),
                    ("uq_feedback", "patient, doctor and date"))

    def _joined(self, stmt):
        return stmt.join(m.PatientFeedback.patient).join(m.PatientFeedback.doctor)

    def _eager(self, stmt):
        return stmt.options(contains_eager(m.PatientFeedback.patient), contains_eager(m.PatientFeedback.doctor))

    def _text_match(self, pattern):
        return _contains(pattern, _name(m.Patient), _name(m.Doctor))

    def _order_by(self, sort):
        f, S = m.PatientFeedback, PatientFeedbackSort
        newest = (f.feedback_date.desc(), f.id.desc())
        return {
            S.NONE:         newest,
            S.DATE_ASC:     (f.feedback_date.asc(), f.id.asc()),
            S.DATE_DESC:    newest,
            S.PATIENT_ASC:  (_name(m.Patient).asc(), f.id.asc()),
            S.PATIENT_DESC: (_name(m.Patient).desc(), f.id.desc()),
            S.DOCTOR_ASC:   (_name(m.Doctor).asc(), f.id.asc()),
            S.DOCTOR_DESC:  (_name(m.Doctor).desc(), f.id.desc()),
            S.RATING_ASC:   (f.rating.asc(), f.id.asc()),
            S.RATING_DESC:  (f.rating.desc(), f.id.desc()),
        }[sort]

    def _to_dto(self, o):
        return PatientFeedbackDTO(
            id=o.id, patient_id=o.patient_id, doctor_id=o.doctor_id, rating=o.rating,
            comments=o.comments, feedback_date=o.feedback_date,
            patient_name=_display_name(o.patient), doctor_name=_display_name(o.doctor),
        )

    def _apply(self, dto, o):
        o.patient_id, o.doctor_id = dto.patient_id, dto.doctor_id
        o.rating, o.comments = dto.rating, dto.comments or None
        # the feedback timestamp is fixed once the row exists
        if o.id is None and dto.feedback_date is not None:
            o.feedback_date = dto.feedback_date
        return o
