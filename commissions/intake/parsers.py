"""
具体 Parser 实现。

新增接口：在此文件添加一个类，然后在 factory.py 注册即可。

已注册：
  visit                  — VisitParser
  visit_speciality       — VisitSpecialityParser
  follow_up_tasks        — FollowUpTaskParser
  follow_up_completion   — FollowUpCompletionParser
  target                 — TargetParser
  target_update          — TargetUpdateParser
  manual_adjustment      — ManualAdjustmentParser
  nomination             — NominationParser
  nomination_status      — NominationStatusParser
  nomination_conversion  — NominationConversionParser
"""

from ..models import Nomination, Target
from .base import BaseIntakeParser
from .types import (
    AppointmentIntake,
    FollowUpCompletionIntake,
    FollowUpTaskIntake,
    ManualAdjustmentIntake,
    NominationConversionIntake,
    NominationIntake,
    NominationStatusIntake,
    SpecialityIntake,
    TargetIntake,
    TargetUpdateIntake,
    VisitIntake,
)

TARGET_TYPES = [value for value, _ in Target.TYPE_CHOICES]
TARGET_CATEGORIES = [value for value, _ in Target.CATEGORY_CHOICES]
APPROVAL_STATUSES = ("approved", "rejected", "postponed")


# ── Visits ─────────────────────────────────────────────────────────────────
#
# {
#   "patientId": "...", "hospitalId": "...", "visitDate": "2024-03-01T10:00:00+04:00",
#   "coordinatorId": "...", "salesId": "...", "appointmentId": "...",
#   "specialities": [{"specialityId": "...", "doctorId": "...", "scheduledTime": "...", "details": ""}]
# }

class _SpecialityMixin:

    def speciality(self, raw, prefix) -> SpecialityIntake:
        if not isinstance(raw, dict):
            self.error(prefix, "Expected an object.")
            return SpecialityIntake(speciality_id=None)
        return SpecialityIntake(
            speciality_id=self.as_uuid(
                self.pick("specialityId", "speciality_id", "specialtyId", source=raw),
                f"{prefix}.speciality_id", required=True,
            ),
            doctor_id=self.as_uuid(self.pick("doctorId", "doctor_id", source=raw), f"{prefix}.doctor_id"),
            scheduled_time=self.as_datetime(
                self.pick("scheduledTime", "scheduled_time", source=raw), f"{prefix}.scheduled_time",
            ),
            details=self.as_text(self.pick("details", source=raw)),
        )

    def speciality_list(self, raw, field) -> list[SpecialityIntake]:
        if raw is None:
            return []
        if not isinstance(raw, list):
            self.error(field, "Expected a list.")
            return []
        return [self.speciality(item, f"{field}[{i}]") for i, item in enumerate(raw)]


class VisitParser(_SpecialityMixin, BaseIntakeParser):
    kind = "visit"

    def transform(self) -> VisitIntake:
        raw = self._parsed
        return VisitIntake(
            raw_payload=raw,
            patient_id=self.as_uuid(self.pick("patientId", "patient_id"), "patient_id", required=True),
            hospital_id=self.as_uuid(self.pick("hospitalId", "hospital_id"), "hospital_id", required=True),
            visit_date=self.as_datetime(self.pick("visitDate", "visit_date"), "visit_date", required=True),
            coordinator_id=self.as_uuid(self.pick("coordinatorId", "coordinator_id"), "coordinator_id"),
            sales_id=self.as_uuid(self.pick("salesId", "sales_id"), "sales_id"),
            appointment_id=self.as_uuid(self.pick("appointmentId", "appointment_id"), "appointment_id"),
            is_emergency=self.as_bool(self.pick("isEmergency", "is_emergency", default=False)),
            specialities=self.speciality_list(
                self.pick("specialities", "visitSpecialities", "specialties"), "specialities",
            ),
        )


class VisitSpecialityParser(_SpecialityMixin, BaseIntakeParser):
    kind = "visit_speciality"

    def transform(self) -> SpecialityIntake:
        return self.speciality(self._parsed, "speciality")


# ── Follow-up ──────────────────────────────────────────────────────────────

class FollowUpTaskParser(BaseIntakeParser):
    kind = "follow_up_tasks"

    def transform(self) -> FollowUpTaskIntake:
        raw_ids = self.pick("patientIds", "patient_ids", default=[])
        if not isinstance(raw_ids, list):
            self.error("patient_ids", "Expected a list.")
            raw_ids = []
        patient_ids = [self.as_uuid(v, f"patient_ids[{i}]", required=True) for i, v in enumerate(raw_ids)]
        return FollowUpTaskIntake(
            raw_payload=self._parsed,
            patient_ids=[p for p in patient_ids if p is not None],
            assigned_to_id=self.as_uuid(self.pick("assignedToId", "assigned_to_id"), "assigned_to_id", required=True),
            notes=self.as_text(self.pick("notes")),
            due_date=self.as_datetime(self.pick("dueDate", "due_date"), "due_date"),
        )

    def validate(self, intake: FollowUpTaskIntake) -> None:
        if not intake.patient_ids and not self._errors:
            self.error("patient_ids", "At least one patient is required.")
        super().validate(intake)


class FollowUpCompletionParser(_SpecialityMixin, BaseIntakeParser):
    kind = "follow_up_completion"

    def transform(self) -> FollowUpCompletionIntake:
        raw = self._parsed
        create_appointment = self.as_bool(self.pick("createAppointment", "create_appointment", default=False))
        appointment = None
        if create_appointment:
            source = self.pick("appointment", default=raw)
            if not isinstance(source, dict):
                self.error("appointment", "Expected an object.")
                source = {}
            appointment = AppointmentIntake(
                hospital_id=self.as_uuid(
                    self.pick("hospitalId", "hospital_id", source=source), "appointment.hospital_id", required=True,
                ),
                scheduled_date=self.as_datetime(
                    self.pick("scheduledDate", "scheduled_date", "appointmentDate", source=source),
                    "appointment.scheduled_date", required=True,
                ),
                notes=self.as_text(self.pick("appointmentNotes", "notes", source=source)),
                specialities=self.speciality_list(
                    self.pick("appointmentSpecialities", "specialities", source=source), "appointment.specialities",
                ),
            )

        return FollowUpCompletionIntake(
            raw_payload=raw,
            approval_status=self.as_choice(
                self.pick("approvalStatus", "approval_status", "status"), "approval_status", APPROVAL_STATUSES,
            ),
            notes=self.as_text(self.pick("notes")),
            postponed_date=self.as_date(self.pick("postponedDate", "postponed_date"), "postponed_date"),
            create_appointment=create_appointment,
            appointment=appointment,
        )

    def validate(self, intake: FollowUpCompletionIntake) -> None:
        if intake.approval_status == "rejected" and not intake.notes:
            self.error("notes", "Notes are required when rejecting a follow-up.")
        if intake.approval_status == "postponed" and intake.postponed_date is None \
                and not any(e["field"] == "postponed_date" for e in self._errors):
            self.error("postponed_date", "A postponed date is required when postponing.")
        if intake.create_appointment and intake.approval_status != "approved":
            self.error("create_appointment", "Appointments can only be booked for approved follow-ups.")
        super().validate(intake)


# ── Targets ────────────────────────────────────────────────────────────────

class TargetParser(BaseIntakeParser):
    kind = "target"

    def transform(self) -> TargetIntake:
        return TargetIntake(
            raw_payload=self._parsed,
            assigned_to_id=self.as_uuid(self.pick("assignedToId", "assigned_to_id"), "assigned_to_id", required=True),
            type=self.as_choice(self.pick("type"), "type", TARGET_TYPES),
            category=self.as_choice(self.pick("category"), "category", TARGET_CATEGORIES),
            target_value=self.as_int(self.pick("targetValue", "target_value"), "target_value", required=True),
            current_value=self.as_int(self.pick("currentValue", "current_value"), "current_value", default=0),
            start_date=self.as_date(self.pick("startDate", "start_date"), "start_date", required=True),
            end_date=self.as_date(self.pick("endDate", "end_date"), "end_date", required=True),
            description=self.as_text(self.pick("description")),
            team_id=self.as_uuid(self.pick("teamId", "team_id"), "team_id"),
        )

    def validate(self, intake: TargetIntake) -> None:
        if intake.target_value is not None and intake.target_value <= 0:
            self.error("target_value", "Target value must be greater than zero.")
        if intake.start_date and intake.end_date and intake.start_date > intake.end_date:
            self.error("end_date", "End date must not be before start date.")
        super().validate(intake)


class TargetUpdateParser(BaseIntakeParser):
    kind = "target_update"

    def transform(self) -> TargetUpdateIntake:
        raw = self._parsed
        fields = {}

        def present(*keys):
            return any(k in raw for k in keys)

        if present("type"):
            fields["type"] = self.as_choice(raw["type"], "type", TARGET_TYPES)
        if present("category"):
            fields["category"] = self.as_choice(raw["category"], "category", TARGET_CATEGORIES)
        if present("targetValue", "target_value"):
            fields["target_value"] = self.as_int(
                self.pick("targetValue", "target_value"), "target_value", required=True,
            )
        if present("currentValue", "current_value"):
            fields["current_value"] = self.as_int(
                self.pick("currentValue", "current_value"), "current_value", required=True,
            )
        if present("startDate", "start_date"):
            fields["start_date"] = self.as_date(self.pick("startDate", "start_date"), "start_date", required=True)
        if present("endDate", "end_date"):
            fields["end_date"] = self.as_date(self.pick("endDate", "end_date"), "end_date", required=True)
        if present("description"):
            fields["description"] = self.as_text(raw["description"])
        if present("isActive", "is_active"):
            fields["is_active"] = self.as_bool(self.pick("isActive", "is_active", default=False))

        return TargetUpdateIntake(fields=fields, raw_payload=raw)

    def validate(self, intake: TargetUpdateIntake) -> None:
        value = intake.fields.get("target_value")
        if value is not None and value <= 0:
            self.error("target_value", "Target value must be greater than zero.")
        super().validate(intake)


# ── Commissions ────────────────────────────────────────────────────────────

class ManualAdjustmentParser(BaseIntakeParser):
    kind = "manual_adjustment"

    def transform(self) -> ManualAdjustmentIntake:
        return ManualAdjustmentIntake(
            raw_payload=self._parsed,
            employee_id=self.as_uuid(self.pick("employeeId", "employee_id"), "employee_id", required=True),
            amount=self.as_int(self.pick("amount"), "amount", default=1),
            description=self.as_text(self.pick("description")),
        )

    def validate(self, intake: ManualAdjustmentIntake) -> None:
        if not intake.description:
            self.error("description", "A description is required for manual adjustments.")
        if intake.amount == 0:
            self.error("amount", "Amount must not be zero.")
        super().validate(intake)


# ── Nominations ────────────────────────────────────────────────────────────

class NominationParser(BaseIntakeParser):
    kind = "nomination"

    def transform(self) -> NominationIntake:
        return NominationIntake(
            raw_payload=self._parsed,
            nominated_patient_name=self.as_text(self.pick("nominatedPatientName", "nominated_patient_name", "name")),
            phone_number=self.as_text(self.pick("phoneNumber", "phone_number")),
            referrer_id=self.as_uuid(self.pick("referrerId", "referrer_id"), "referrer_id"),
            sales_person_id=self.as_uuid(self.pick("salesPersonId", "sales_person_id"), "sales_person_id"),
            coordinator_id=self.as_uuid(self.pick("coordinatorId", "coordinator_id"), "coordinator_id"),
        )

    def validate(self, intake: NominationIntake) -> None:
        if not intake.nominated_patient_name:
            self.error("nominated_patient_name", "This field is required.")
        super().validate(intake)


class NominationStatusParser(BaseIntakeParser):
    kind = "nomination_status"

    def transform(self) -> NominationStatusIntake:
        statuses = [value for value, _ in Nomination.STATUS_CHOICES]
        return NominationStatusIntake(
            raw_payload=self._parsed,
            status=self.as_choice(self.pick("status"), "status", statuses),
        )


class NominationConversionParser(BaseIntakeParser):
    kind = "nomination_conversion"

    def transform(self) -> NominationConversionIntake:
        return NominationConversionIntake(
            raw_payload=self._parsed,
            name_english=self.as_text(self.pick("nameEnglish", "name_english", "name")),
            national_id=self.as_text(self.pick("nationalId", "national_id")),
            phone_number=self.as_text(self.pick("phoneNumber", "phone_number")),
            dob=self.as_date(self.pick("dob", "dateOfBirth"), "dob"),
        )
