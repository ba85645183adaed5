from __future__ import annotations
import copy
import logging
from dataclasses import dataclass, fields, is_dataclass, replace
from datetime import date
from typing import Callable, Generic, Protocol, TypeVar

from cache import CacheStats, QueryCache
from domain import (
    AppointmentDTO, DepartmentDTO, DoctorDTO, MedicalInventoryDTO, PatientDTO, PatientFeedbackDTO,
    PrescriptionDTO, PrescriptionItemDTO, VisitHistoryDTO, normalize_term, parse_sort,
)
from errors import ValidationError
from repo import (
    AppointmentRepo, DepartmentRepo, DoctorRepo, EntityRepo, MedicalInventoryRepo,
    PatientFeedbackRepo, PatientRepo, PrescriptionRepo,
)
from validation import (
    AppointmentValidator, DepartmentValidator, DoctorValidator, MedicalInventoryValidator,
    PatientFeedbackValidator, PatientValidator, PrescriptionValidator, Validator,
)

logger = logging.getLogger(__name__)

D = TypeVar("D")


class SearchService(Protocol[D]):
    """What controllers need from a service; concrete services below provide it."""

    entity: str

    def search(self, search_term: str | None, limit: int, offset: int, sort_key=None) -> list[D]: ...
    def count(self, search_term: str | None, sort_key=None) -> int: ...
    def get(self, ident: int) -> D | None: ...
    def save(self, record: D) -> int: ...
    def delete(self, ident: int) -> None: ...
    def get_cache_stats(self) -> CacheStats: ...
    def reset_cache_stats(self) -> None: ...


def _trimmed(record):
    changes = {}
    for f in fields(record):
        v = getattr(record, f.name)
        if isinstance(v, str):
            changes[f.name] = v.strip()
        elif isinstance(v, list):
            changes[f.name] = [_trimmed(x) if is_dataclass(x) else x for x in v]
    return replace(record, **changes)


class EntityService(Generic[D]):
    """
    Validation, caching and write-through invalidation over one repository.

    Search and count results are cached by (term, sort, limit, offset); any
    save or delete flushes this service's cache and those of ``dependents``
    (services whose rows display this entity's names).
    """

    def __init__(self, repo: EntityRepo[D], validator: Validator[D], cache: QueryCache | None = None):
        self.repo = repo
        self.validator = validator
        self.entity = repo.entity
        self.cache = cache or QueryCache(repo.entity)
        self.dependents: list[EntityService] = []

    @staticmethod
    def _term_key(search_term: str | None) -> str:
        # matching is case-insensitive, so "SMITH" and "smith" share an entry
        return normalize_term(search_term).lower()

    def _sort_key(self, sort) -> str:
        return sort.name

    # ----- reads -----
    def search(self, search_term: str | None, limit: int, offset: int, sort_key=None) -> list[D]:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if offset < 0:
            raise ValueError("offset cannot be negative")
        sort = parse_sort(self.repo.sort_options, sort_key)
        key = ("search", self._term_key(search_term), self._sort_key(sort), limit, offset)
        rows = self.cache.get_or_load(key, lambda: self.repo.find(search_term, limit, offset, sort))
        # callers get their own copies; cached rows stay untouched
        return copy.deepcopy(rows)

    def count(self, search_term: str | None, sort_key=None) -> int:
        sort = parse_sort(self.repo.sort_options, sort_key)
        key = ("count", self._term_key(search_term), self._sort_key(sort))
        return self.cache.get_or_load(key, lambda: self.repo.count(search_term, sort))

    def get(self, ident: int) -> D | None:
        return copy.deepcopy(self.cache.get_or_load(("get", ident), lambda: self.repo.get(ident)))

    # ----- writes -----
    def save(self, record: D) -> int:
        result = self.validator.validate(record)
        if not result.ok:
            raise ValidationError(result.message)
        record = _trimmed(record)
        try:
            if record.id is None:
                ident = self.repo.create(record)
                logger.info("%s #%d created", self.entity, ident)
                return ident
            self.repo.update(record)
            logger.info("%s #%d updated", self.entity, record.id)
            return record.id
        finally:
            self.invalidate()

    def delete(self, ident: int) -> None:
        try:
            self.repo.delete(ident)
            logger.info("%s #%d deleted", self.entity, ident)
        finally:
            self.invalidate()

    # ----- cache -----
    def invalidate(self) -> None:
        self.cache.invalidate()
        for dep in self.dependents:
            dep.cache.invalidate()

    def get_cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def reset_cache_stats(self) -> None:
        self.cache.reset_stats()


class DepartmentService(EntityService[DepartmentDTO]):
    search_departments = EntityService.search
    count_departments = EntityService.count
    get_department = EntityService.get
    save_department = EntityService.save
    delete_department = EntityService.delete


class DoctorService(EntityService[DoctorDTO]):
    search_doctors = EntityService.search
    count_doctors = EntityService.count
    get_doctor = EntityService.get
    save_doctor = EntityService.save
    delete_doctor = EntityService.delete


class PatientService(EntityService[PatientDTO]):
    search_patients = EntityService.search
    count_patients = EntityService.count
    get_patient = EntityService.get
    save_patient = EntityService.save
    delete_patient = EntityService.delete

    def visit_history(self, patient_id: int) -> list[VisitHistoryDTO]:
        # reads appointments, so not cached under the patient's entries
        return self.repo.visit_history(patient_id)


class AppointmentService(EntityService[AppointmentDTO]):
    search_appointments = EntityService.search
    count_appointments = EntityService.count
    get_appointment = EntityService.get
    save_appointment = EntityService.save
    delete_appointment = EntityService.delete

    def _sort_key(self, sort) -> str:
        # window sorts are relative to today; yesterday's "Today" is another query
        if sort in AppointmentRepo.WINDOWS:
            return f"{sort.name}@{self.repo.today().isoformat()}"
        return sort.name

    def find_by_patient(self, patient_id: int) -> list[AppointmentDTO]:
        return self.repo.find_by_patient(patient_id)

    def find_by_doctor(self, doctor_id: int) -> list[AppointmentDTO]:
        return self.repo.find_by_doctor(doctor_id)


class PrescriptionService(EntityService[PrescriptionDTO]):
    search_prescriptions = EntityService.search
    count_prescriptions = EntityService.count
    get_prescription = EntityService.get
    save_prescription = EntityService.save
    delete_prescription = EntityService.delete

    def list_items(self, prescription_id: int) -> list[PrescriptionItemDTO]:
        return self.repo.list_items(prescription_id)


class MedicalInventoryService(EntityService[MedicalInventoryDTO]):
    search_inventory = EntityService.search
    count_inventory = EntityService.count
    get_inventory_item = EntityService.get
    save_inventory_item = EntityService.save
    delete_inventory_item = EntityService.delete


class PatientFeedbackService(EntityService[PatientFeedbackDTO]):
    search_feedback = EntityService.search
    count_feedback = EntityService.count
    get_feedback = EntityService.get
    save_feedback = EntityService.save
    delete_feedback = EntityService.delete


@dataclass
class Services:
    departments: DepartmentService
    doctors: DoctorService
    patients: PatientService
    appointments: AppointmentService
    prescriptions: PrescriptionService
    inventory: MedicalInventoryService
    feedback: PatientFeedbackService


def build_services(session_factory, today: Callable[[], date] = date.today) -> Services:
    """Wire every service against one session factory; no module-level state."""
    s = Services(
        departments=DepartmentService(DepartmentRepo(session_factory), DepartmentValidator()),
        doctors=DoctorService(DoctorRepo(session_factory), DoctorValidator()),
        patients=PatientService(PatientRepo(session_factory), PatientValidator()),
        appointments=AppointmentService(AppointmentRepo(session_factory, today=today),
                                        AppointmentValidator(today=today)),
        prescriptions=PrescriptionService(PrescriptionRepo(session_factory), PrescriptionValidator()),
        inventory=MedicalInventoryService(MedicalInventoryRepo(session_factory), MedicalInventoryValidator()),
        feedback=PatientFeedbackService(PatientFeedbackRepo(session_factory), PatientFeedbackValidator()),
    )
    named_by_people = [s.appointments, s.prescriptions, s.feedback]
    s.patients.dependents = list(named_by_people)
    s.doctors.dependents = list(named_by_people)
    s.inventory.dependents = [s.prescriptions]
    return s
