from dataclasses import replace
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import DataError, OperationalError, ProgrammingError, TimeoutError as PoolTimeout

from config import Settings
from domain import (
    AppointmentDTO, AppointmentSort, DepartmentDTO, DoctorSort, MedicalInventoryDTO, PatientFeedbackDTO,
    PrescriptionDTO, PrescriptionItemDTO,
)
from database import make_engine, make_session_factory
from errors import ConnectivityError, HmsError, NotFoundError, PersistenceConstraintError, ValidationError
from repo import classified_errors
from services import build_services
from conftest import TODAY, at, make_doctor, make_patient


@pytest.fixture
def doctors(services):
    return services.doctors


def seed_doctors(svc, n):
    return [svc.save_doctor(make_doctor(i)) for i in range(1, n + 1)]


def seed_visit(services, day=TODAY, hour=9, reason="Checkup"):
    pid = services.patients.save(make_patient(hour))
    did = services.doctors.save(make_doctor(hour))
    aid = services.appointments.save(AppointmentDTO(
        id=None, patient_id=pid, doctor_id=did, appointment_date=at(day, hour), reason=reason,
    ))
    return pid, did, aid


# ------------------ search & count ------------------

def test_numeric_term_is_an_id_lookup(doctors):
    ids = seed_doctors(doctors, 12)
    # "1" also appears in names and phones, but only the ID may match
    rows = doctors.search_doctors("1", 10, 0)
    assert [r.id for r in rows] == [ids[0]]
    assert doctors.count_doctors("1") == 1
    assert doctors.count_doctors(" +1 ") == 1
    assert doctors.count_doctors("999") == 0
    assert doctors.count_doctors("99999999999999999999") == 0


def test_text_term_is_case_insensitive_substring(doctors):
    doctors.save(make_doctor(1, last_name="Smith"))
    doctors.save(make_doctor(2, last_name="SMITHERS"))
    doctors.save(make_doctor(3, last_name="Jones"))
    assert doctors.count("smith") == 2
    assert {r.last_name for r in doctors.search("mItH", 10, 0)} == {"Smith", "SMITHERS"}
    assert doctors.count("@CLINIC.org") == 3


def test_like_wildcards_are_literal(doctors):
    doctors.save(make_doctor(1, last_name="100%_Real"))
    doctors.save(make_doctor(2, last_name="Plain"))
    assert doctors.count("%") == 1
    assert doctors.count("_") == 1


def test_blank_term_matches_everything(doctors):
    seed_doctors(doctors, 4)
    assert doctors.count("") == 4
    assert doctors.count(None) == 4
    assert doctors.count("   ") == 4


def test_limit_offset_and_sort(doctors):
    ids = seed_doctors(doctors, 7)
    page = doctors.search("", 3, 3, DoctorSort.ID_ASC.value)
    assert [r.id for r in page] == ids[3:6]
    newest_first = doctors.search("", 10, 0)
    assert [r.id for r in newest_first] == sorted(ids, reverse=True)
    # unknown labels fall back to the default order
    assert [r.id for r in doctors.search("", 10, 0, "DROP TABLE Doctor")] == sorted(ids, reverse=True)
    by_name = doctors.search("", 10, 0, "Name (Z-A)")
    assert by_name[0].last_name == "Lastname07"


def test_bad_paging_arguments(doctors):
    with pytest.raises(ValueError):
        doctors.search("", 0, 0)
    with pytest.raises(ValueError):
        doctors.search("", 10, -1)


def test_callers_get_copies(doctors):
    doctors.save(make_doctor(1))
    rows = doctors.search("", 10, 0)
    rows[0].first_name = "Mutated"
    assert doctors.search("", 10, 0)[0].first_name == "Doc01"


# ------------------ writes ------------------

def test_save_validates_before_io(doctors):
    with pytest.raises(ValidationError, match="Email format is invalid"):
        doctors.save(make_doctor(1, email="not-an-email"))
    assert doctors.count("") == 0


def test_save_trims_text(doctors):
    ident = doctors.save(make_doctor(1, first_name="  Ann ", email=" ann@clinic.org "))
    stored = doctors.get(ident)
    assert (stored.first_name, stored.email) == ("Ann", "ann@clinic.org")


def test_duplicate_email_is_a_unique_violation(doctors):
    first = doctors.save(make_doctor(1))
    second = doctors.save(make_doctor(2))
    with pytest.raises(PersistenceConstraintError) as info:
        doctors.save(replace(doctors.get(second), email="doc1@clinic.org"))
    err = info.value
    assert err.constraint == PersistenceConstraintError.UNIQUE
    assert err.field == "email"
    assert err.kind == "constraint:unique"
    assert doctors.get(second).email == "doc2@clinic.org"
    assert doctors.get(first).email == "doc1@clinic.org"


def test_update_and_delete_of_missing_row(doctors):
    with pytest.raises(NotFoundError, match="#42 no longer exists"):
        doctors.save(make_doctor(1, id=42))
    with pytest.raises(NotFoundError):
        doctors.delete(42)


def test_delete_of_referenced_doctor_is_reported(services):
    _, did, _ = seed_visit(services)
    with pytest.raises(PersistenceConstraintError) as info:
        services.doctors.delete_doctor(did)
    assert info.value.constraint == PersistenceConstraintError.REFERENCE
    assert services.doctors.get(did) is not None


def test_reference_to_missing_row_on_insert(services):
    did = services.doctors.save(make_doctor(1))
    with pytest.raises(PersistenceConstraintError) as info:
        services.appointments.save(AppointmentDTO(
            id=None, patient_id=999, doctor_id=did, appointment_date=at(TODAY), reason="x",
        ))
    assert info.value.constraint == PersistenceConstraintError.REFERENCE


def test_department_reference_on_doctor(services):
    dep = services.departments.save_department(DepartmentDTO(id=None, name="Cardiology", phone="5550000"))
    did = services.doctors.save(make_doctor(1, department_id=dep))
    with pytest.raises(PersistenceConstraintError):
        services.departments.delete_department(dep)
    services.doctors.save(replace(services.doctors.get(did), department_id=None))
    services.departments.delete_department(dep)
    assert services.departments.count("") == 0


# ------------------ cache ------------------

def test_writes_invalidate_cached_reads(doctors):
    seed_doctors(doctors, 2)
    assert doctors.count("") == 2
    assert doctors.count("") == 2
    assert doctors.get_cache_stats().hits == 1

    new_id = doctors.save(make_doctor(3))
    assert doctors.count("") == 3
    assert new_id in [r.id for r in doctors.search("", 10, 0)]

    doctors.delete(new_id)
    assert doctors.count("") == 2
    assert doctors.get(new_id) is None


def test_term_case_shares_a_cache_entry(doctors):
    doctors.save(make_doctor(1, last_name="Smith"))
    doctors.reset_cache_stats()
    doctors.count("SMITH")
    doctors.count("smith ")
    stats = doctors.get_cache_stats()
    assert (stats.hits, stats.misses) == (1, 1)


def test_renaming_a_patient_refreshes_appointment_rows(services):
    pid, _, _ = seed_visit(services)
    assert services.appointments.search("", 10, 0)[0].patient_name == "Pat09 Surname09"
    services.patients.save(replace(services.patients.get(pid), first_name="Renamed"))
    assert services.appointments.search("", 10, 0)[0].patient_name == "Renamed Surname09"
    assert services.appointments.count("renamed") == 1


# ------------------ appointments ------------------

def test_window_sorts_filter_count_and_rows(services):
    pid = services.patients.save(make_patient(1))
    did = services.doctors.save(make_doctor(1))
    repo = services.appointments.repo
    for days in (0, 3, 20, 40):
        services.appointments.save(AppointmentDTO(
            id=None, patient_id=pid, doctor_id=did, appointment_date=at(TODAY + timedelta(days=days)), reason="r",
        ))
    # already past; written below the validator
    repo.create(AppointmentDTO(id=None, patient_id=pid, doctor_id=did,
                               appointment_date=at(TODAY - timedelta(days=2)), reason="old"))
    appts = services.appointments
    assert appts.count("", AppointmentSort.TODAY.value) == 1
    assert appts.count("", "Next 7 days") == 2
    assert appts.count("", "Next 30 days") == 3
    assert appts.count("") == 5
    rows = appts.search("", 10, 0, "Next 30 days")
    assert [r.appointment_date.date() for r in rows] == [TODAY, TODAY + timedelta(days=3), TODAY + timedelta(days=20)]
    assert appts.search("", 10, 0)[0].appointment_date.date() == TODAY + timedelta(days=40)


def test_search_by_reason_and_names(services):
    seed_visit(services, reason="Back pain")
    appts = services.appointments
    assert appts.count("back") == 1
    assert appts.count("doc09 lastname09") == 1
    assert appts.count("nobody") == 0


def test_duplicate_slot_is_rejected(services):
    pid, did, aid = seed_visit(services)
    with pytest.raises(PersistenceConstraintError) as info:
        services.appointments.save(AppointmentDTO(
            id=None, patient_id=pid, doctor_id=did, appointment_date=at(TODAY), reason="again",
        ))
    assert info.value.constraint == PersistenceConstraintError.UNIQUE


def test_visit_history_and_lookups(services):
    pid, did, first = seed_visit(services)
    later = services.appointments.save(AppointmentDTO(
        id=None, patient_id=pid, doctor_id=did, appointment_date=at(TODAY + timedelta(days=5)), reason="Follow-up",
    ))
    history = services.patients.visit_history(pid)
    assert [h.reason for h in history] == ["Follow-up", "Checkup"]
    assert history[0].doctor_name == "Doc09 Lastname09"
    assert [a.id for a in services.appointments.find_by_patient(pid)] == [later, first]
    assert [a.id for a in services.appointments.find_by_doctor(did)] == [later, first]
    assert services.appointments.find_by_doctor(did + 100) == []


# ------------------ prescriptions ------------------

def test_prescription_items_follow_their_prescription(services):
    pid = services.patients.save(make_patient(1))
    did = services.doctors.save(make_doctor(1))
    aspirin = services.inventory.save_inventory_item(MedicalInventoryDTO(id=None, name="Aspirin", quantity=10))
    ibu = services.inventory.save_inventory_item(
        MedicalInventoryDTO(id=None, name="Ibuprofen", quantity=5, cost=Decimal("2.50")))

    rx_id = services.prescriptions.save_prescription(PrescriptionDTO(
        id=None, patient_id=pid, doctor_id=did, prescription_date=TODAY, items=[
            PrescriptionItemDTO(id=None, inventory_id=aspirin, dosage=" 1x/day ", duration_days=5),
            PrescriptionItemDTO(id=None, inventory_id=ibu, dosage="2x/day", duration_days=3),
        ],
    ))
    rx = services.prescriptions.get(rx_id)
    assert [i.medication_name for i in rx.items] == ["Aspirin", "Ibuprofen"]
    assert rx.items[0].dosage == "1x/day"
    assert rx.patient_name == "Pat01 Surname01"

    # an inventory item in use cannot go
    with pytest.raises(PersistenceConstraintError):
        services.inventory.delete_inventory_item(ibu)

    services.prescriptions.save(replace(rx, items=[PrescriptionItemDTO(id=None, inventory_id=ibu)]))
    assert [i.inventory_id for i in services.prescriptions.list_items(rx_id)] == [ibu]

    services.prescriptions.save(replace(services.prescriptions.get(rx_id), notes="edited", items=None))
    assert len(services.prescriptions.list_items(rx_id)) == 1

    services.prescriptions.delete(rx_id)
    assert services.prescriptions.list_items(rx_id) == []
    services.inventory.delete_inventory_item(ibu)


def test_renaming_medication_refreshes_prescriptions(services):
    pid = services.patients.save(make_patient(1))
    did = services.doctors.save(make_doctor(1))
    inv = services.inventory.save(MedicalInventoryDTO(id=None, name="Aspirin", quantity=10))
    services.prescriptions.save(PrescriptionDTO(
        id=None, patient_id=pid, doctor_id=did, prescription_date=TODAY,
        items=[PrescriptionItemDTO(id=None, inventory_id=inv)],
    ))
    assert services.prescriptions.search("", 5, 0)[0].items[0].medication_name == "Aspirin"
    services.inventory.save(replace(services.inventory.get(inv), name="Acetylsalicylic acid"))
    assert services.prescriptions.search("", 5, 0)[0].items[0].medication_name == "Acetylsalicylic acid"


# ------------------ inventory, feedback, patients ------------------

def test_inventory_sorting(services):
    inv = services.inventory
    inv.save(MedicalInventoryDTO(id=None, name="B", quantity=5, expiry_date=date(2026, 1, 1)))
    inv.save(MedicalInventoryDTO(id=None, name="A", quantity=9, expiry_date=date(2025, 6, 1)))
    inv.save(MedicalInventoryDTO(id=None, name="C", quantity=1, expiry_date=date(2027, 1, 1)))
    assert [r.name for r in inv.search_inventory("", 10, 0, "Quantity (Low-High)")] == ["C", "B", "A"]
    assert [r.name for r in inv.search_inventory("", 10, 0, "Expiry (Soonest)")] == ["A", "B", "C"]
    assert [r.name for r in inv.search_inventory("", 10, 0, "Name (Z-A)")] == ["C", "B", "A"]
    with pytest.raises(PersistenceConstraintError) as info:
        inv.save(MedicalInventoryDTO(id=None, name="A", quantity=1))
    assert info.value.field == "name"


def test_feedback_date_is_fixed_at_insert(services):
    pid = services.patients.save(make_patient(1))
    did = services.doctors.save(make_doctor(1))
    fid = services.feedback.save_feedback(PatientFeedbackDTO(id=None, patient_id=pid, doctor_id=did, rating=4))
    created = services.feedback.get(fid)
    assert created.feedback_date is not None

    services.feedback.save(replace(created, comments="Kind staff", rating=5,
                                   feedback_date=datetime(2000, 1, 1)))
    updated = services.feedback.get(fid)
    assert (updated.rating, updated.comments) == (5, "Kind staff")
    assert updated.feedback_date == created.feedback_date
    assert [r.rating for r in services.feedback.search("", 5, 0, "Rating (Low-High)")] == [5]


def test_patient_registration_date_set_by_store(services):
    pid = services.patients.save_patient(make_patient(1))
    created = services.patients.get(pid)
    assert created.registration_date is not None
    services.patients.save(replace(created, address="12 Elm St", registration_date=None))
    updated = services.patients.get(pid)
    assert updated.address == "12 Elm St"
    assert updated.registration_date == created.registration_date


def test_patient_dob_sort(services):
    services.patients.save(make_patient(1, date_of_birth=date(1990, 5, 1)))
    services.patients.save(make_patient(2, date_of_birth=date(1950, 5, 1)))
    oldest = services.patients.search_patients("", 10, 0, "DOB (Oldest)")
    assert oldest[0].date_of_birth == date(1950, 5, 1)


# ------------------ store failures ------------------

def test_value_too_wide_for_the_column_is_a_validation_error(services):
    # written below the validator so the store itself rejects it
    with pytest.raises(ValidationError, match="does not fit its column"):
        services.inventory.repo.create(MedicalInventoryDTO(id=None, name="Aspirin", quantity=2**63))
    assert services.inventory.count("") == 0


@pytest.mark.parametrize("exc,expected,kind", [
    (DataError("INSERT", {}, Exception("Data too long for column 'Type'")), ValidationError, "validation"),
    (PoolTimeout("QueuePool limit of size 5 overflow 10 reached"), ConnectivityError, "connectivity"),
    (OperationalError("SELECT 1", {}, Exception("Lost connection")), ConnectivityError, "connectivity"),
    (ProgrammingError("SELECT", {}, Exception("syntax error")), HmsError, "error"),
])
def test_store_errors_are_classified(exc, expected, kind, caplog):
    with pytest.raises(expected) as info:
        with classified_errors("Medical inventory item", "save"):
            raise exc
    assert info.value.kind == kind
    assert info.value.__cause__ is exc
    assert caplog.records and caplog.records[-1].name == "repo"


def test_unreachable_store_raises_connectivity_error(tmp_path):
    engine = make_engine(Settings(db_url=f"sqlite:///{tmp_path / 'no-such-dir' / 'hms.db'}",
                                  db_user="", db_password=""))
    try:
        svc = build_services(make_session_factory(engine), today=lambda: TODAY)
        with pytest.raises(ConnectivityError, match="Database unavailable"):
            svc.doctors.count("")
        with pytest.raises(ConnectivityError):
            svc.doctors.save(make_doctor(1))
    finally:
        engine.dispose()
