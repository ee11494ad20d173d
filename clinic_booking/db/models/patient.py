# clinic_booking/db/models/patient.py
from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime
import uuid


class Patient(SQLModel, table=True):
    __tablename__ = "patients"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    first_name: str = Field(max_length=100)
    last_name: str = Field(max_length=100)
    email: str = Field(max_length=200, index=True)
    phone_number: Optional[str] = Field(default=None, max_length=30)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class PatientOrganization(SQLModel, table=True):
    """Links a patient to each clinic that treats them."""

    __tablename__ = "patient_organizations"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    patient_id: str = Field(foreign_key="patients.id", index=True)
    organization_id: str = Field(foreign_key="organizations.id", index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
