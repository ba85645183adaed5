from __future__ import annotations
from datetime import date, datetime

import pytest

from config import Settings
from database import init_db, make_engine, make_session_factory
from domain import DoctorDTO, PatientDTO
from models import Base
from services import build_services

TODAY = date(2025, 3, 10)


@pytest.fixture
def engine():
    eng = make_engine(Settings(db_url="sqlite://", db_user="", db_password=""))
    init_db(eng, Base)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def services(session_factory):
    return build_services(session_factory, today=lambda: TODAY)


def make_doctor(n: int, **kw) -> DoctorDTO:
    values = dict(
        id=None, first_name=f"Doc{n:02d}", last_name=f"Lastname{n:02d}",
        email=f"doc{n}@clinic.org", phone=f"555{n:05d}",
    )
    values.update(kw)
    return DoctorDTO(**values)


def make_patient(n: int, **kw) -> PatientDTO:
    values = dict(
        id=None, first_name=f"Pat{n:02d}", last_name=f"Surname{n:02d}",
        email=f"pat{n}@mail.com", phone=f"777{n:05d}", date_of_birth=date(1980, 1, 1 + n % 28),
    )
    values.update(kw)
    return PatientDTO(**values)


def at(day: date, hour: int = 9) -> datetime:
    return datetime(day.year, day.month, day.day, hour)
