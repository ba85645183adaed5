from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import (
    String, Date, DateTime, Text, Integer, Numeric, ForeignKey, UniqueConstraint, func
)

# Mirrors the hospital schema as deployed; column names are the database's,
# attribute names are ours.


class Base(DeclarativeBase):
    pass


class Department(Base):
    __tablename__ = "Department"
    __table_args__ = (UniqueConstraint("Name", name="uq_department_name"),)
    id:    Mapped[int] = mapped_column("ID", primary_key=True, autoincrement=True)
    name:  Mapped[str] = mapped_column("Name", String(100))
    phone: Mapped[str | None] = mapped_column("PhoneNumber", String(15), nullable=True)


class Doctor(Base):
    __tablename__ = "Doctor"
    __table_args__ = (
        UniqueConstraint("Email", name="uq_doctor_email"),
        UniqueConstraint("PhoneNumber", name="uq_doctor_phone"),
    )
    id:            Mapped[int] = mapped_column("ID", primary_key=True, autoincrement=True)
    first_name:    Mapped[str] = mapped_column("FirstName", String(50))
    middle_name:   Mapped[str | None] = mapped_column("MiddleName", String(50), nullable=True)
    last_name:     Mapped[str] = mapped_column("LastName", String(50))
    email:         Mapped[str] = mapped_column("Email", String(100))
    phone:         Mapped[str | None] = mapped_column("PhoneNumber", String(15), nullable=True)
    # weak reference: a doctor may exist before being assigned
    department_id: Mapped[int | None] = mapped_column(
        "DepartmentID", ForeignKey("Department.ID", name="fk_doctor_department"), nullable=True
    )
    department: Mapped[Department | None] = relationship()


class Patient(Base):
    __tablename__ = "Patient"
    __table_args__ = (
        UniqueConstraint("Email", name="uq_patient_email"),
        UniqueConstraint("PhoneNumber", name="uq_patient_phone"),
    )
    id:            Mapped[int] = mapped_column("ID", primary_key=True, autoincrement=True)
    first_name:    Mapped[str] = mapped_column("FirstName", String(50))
    middle_name:   Mapped[str | None] = mapped_column("MiddleName", String(50), nullable=True)
    last_name:     Mapped[str] = mapped_column("LastName", String(50))
    email:         Mapped[str] = mapped_column("Email", String(100))
    phone:         Mapped[str | None] = mapped_column("PhoneNumber", String(15), nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column("DateOfBirth", Date, nullable=True)
    address:       Mapped[str | None] = mapped_column("Address", String(255), nullable=True)
    # set by the store at insert; updates never write it
    registration_date: Mapped[datetime | None] = mapped_column(
        "RegistrationDate", DateTime, server_default=func.now()
    )


class Appointment(Base):
    __tablename__ = "Appointment"
    __table_args__ = (
        UniqueConstraint("PatientID", "DoctorID", "AppointmentDate", name="uq_appt_patient_doctor_datetime"),
    )
    id:               Mapped[int] = mapped_column("ID", primary_key=True, autoincrement=True)
    patient_id:       Mapped[int] = mapped_column("PatientID", ForeignKey("Patient.ID", name="fk_appt_patient"))
    doctor_id:        Mapped[int] = mapped_column("DoctorID", ForeignKey("Doctor.ID", name="fk_appt_doctor"))
    appointment_date: Mapped[datetime] = mapped_column("AppointmentDate", DateTime)
    reason:           Mapped[str | None] = mapped_column("Reason", String(255), nullable=True)
    patient: Mapped[Patient] = relationship()
    doctor:  Mapped[Doctor] = relationship()


class Prescription(Base):
    __tablename__ = "Prescription"
    id:                Mapped[int] = mapped_column("ID", primary_key=True, autoincrement=True)
    patient_id:        Mapped[int] = mapped_column("PatientID", ForeignKey("Patient.ID", name="fk_rx_patient"))
    doctor_id:         Mapped[int] = mapped_column("DoctorID", ForeignKey("Doctor.ID", name="fk_rx_doctor"))
    prescription_date: Mapped[date] = mapped_column("PrescriptionDate", Date)
    notes:             Mapped[str | None] = mapped_column("Notes", Text, nullable=True)
    patient: Mapped[Patient] = relationship()
    doctor:  Mapped[Doctor] = relationship()
    items:   Mapped[list[PrescriptionItem]] = relationship(
        back_populates="prescription", cascade="all, delete-orphan", order_by="PrescriptionItem.id"
    )


class MedicalInventory(Base):
    __tablename__ = "MedicalInventory"
    __table_args__ = (UniqueConstraint("Name", name="uq_inventory_name"),)
    id:          Mapped[int] = mapped_column("ID", primary_key=True, autoincrement=True)
    name:        Mapped[str] = mapped_column("Name", String(100))
    type:        Mapped[str | None] = mapped_column("Type", String(100), nullable=True)
    quantity:    Mapped[int | None] = mapped_column("Quantity", Integer, nullable=True)
    unit:        Mapped[str | None] = mapped_column("Unit", String(20), nullable=True)
    expiry_date: Mapped[date | None] = mapped_column("ExpiryDate", Date, nullable=True)
    cost:        Mapped[Decimal | None] = mapped_column("Cost", Numeric(10, 2), nullable=True)


class PrescriptionItem(Base):
    __tablename__ = "PrescriptionItem"
    id:              Mapped[int] = mapped_column("ID", primary_key=True, autoincrement=True)
    prescription_id: Mapped[int] = mapped_column(
        "PrescriptionID", ForeignKey("Prescription.ID", name="fk_item_rx")
    )
    inventory_id:    Mapped[int] = mapped_column(
        "MedicalInventoryID", ForeignKey("MedicalInventory.ID", name="fk_item_inventory")
    )
    dosage:          Mapped[str | None] = mapped_column("Dosage", String(255), nullable=True)
    duration_days:   Mapped[int | None] = mapped_column("DurationDays", Integer, nullable=True)
    prescription: Mapped[Prescription] = relationship(back_populates="items")
    inventory:    Mapped[MedicalInventory] = relationship()


class PatientFeedback(Base):
    __tablename__ = "PatientFeedback"
    __table_args__ = (
        UniqueConstraint("PatientID", "DoctorID", "FeedbackDate", name="uq_feedback_patient_doctor_date"),
    )
    id:            Mapped[int] = mapped_column("ID", primary_key=True, autoincrement=True)
    patient_id:    Mapped[int] = mapped_column("PatientID", ForeignKey("Patient.ID", name="fk_feedback_patient"))
    doctor_id:     Mapped[int] = mapped_column("DoctorID", ForeignKey("Doctor.ID", name="fk_feedback_doctor"))
    rating:        Mapped[int | None] = mapped_column("Rating", Integer, nullable=True)
    comments:      Mapped[str | None] = mapped_column("Comments", Text, nullable=True)
    feedback_date: Mapped[datetime] = mapped_column(
        "FeedbackDate", DateTime, default=datetime.now, server_default=func.now()
    )
    patient: Mapped[Patient] = relationship()
    doctor:  Mapped[Doctor] = relationship()
