"""
Typed request payloads — the only shape services accept.

Every parser's transform() returns one of these. Services never read
raw request dicts.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any
from uuid import UUID


@dataclass
class SpecialityIntake:
    speciality_id: UUID | None
    doctor_id: UUID | None = None
    scheduled_time: datetime | None = None
    details: str = ""


@dataclass
class VisitIntake:
    patient_id: UUID | None
    hospital_id: UUID | None
    visit_date: datetime | None
    coordinator_id: UUID | None = None
    sales_id: UUID | None = None
    appointment_id: UUID | None = None
    is_emergency: bool = False
    specialities: list[SpecialityIntake] = field(default_factory=list)
    raw_payload: Any = field(default=None, repr=False)


@dataclass
class FollowUpTaskIntake:
    patient_ids: list[UUID]
    assigned_to_id: UUID | None
    notes: str = ""
    due_date: datetime | None = None
    raw_payload: Any = field(default=None, repr=False)


@dataclass
class AppointmentIntake:
    hospital_id: UUID | None
    scheduled_date: datetime | None
    notes: str = ""
    specialities: list[SpecialityIntake] = field(default_factory=list)


@dataclass
class FollowUpCompletionIntake:
    """
    approval_status  approved / rejected / postponed
    appointment      only when approved with create_appointment
    """

    approval_status: str
    notes: str = ""
    postponed_date: date | None = None
    create_appointment: bool = False
    appointment: AppointmentIntake | None = None
    raw_payload: Any = field(default=None, repr=False)


@dataclass
class TargetIntake:
    assigned_to_id: UUID | None
    type: str
    category: str
    target_value: int | None
    start_date: date | None
    end_date: date | None
    description: str = ""
    current_value: int = 0
    team_id: UUID | None = None
    raw_payload: Any = field(default=None, repr=False)


@dataclass
class TargetUpdateIntake:
    """Partial update: only fields present in the request are set."""

    fields: dict[str, Any] = field(default_factory=dict)
    raw_payload: Any = field(default=None, repr=False)

    def changes(self) -> dict[str, Any]:
        return dict(self.fields)


@dataclass
class ManualAdjustmentIntake:
    employee_id: UUID | None
    description: str
    amount: int = 1
    raw_payload: Any = field(default=None, repr=False)


@dataclass
class NominationIntake:
    nominated_patient_name: str
    phone_number: str = ""
    referrer_id: UUID | None = None
    sales_person_id: UUID | None = None
    coordinator_id: UUID | None = None
    raw_payload: Any = field(default=None, repr=False)


@dataclass
class NominationStatusIntake:
    status: str
    raw_payload: Any = field(default=None, repr=False)


@dataclass
class NominationConversionIntake:
    name_english: str = ""
    national_id: str = ""
    phone_number: str = ""
    dob: date | None = None
    raw_payload: Any = field(default=None, repr=False)
