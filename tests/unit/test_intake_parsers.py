"""
测试 intake parser 系统：
- parse() 接受 dict / JSON bytes / JSON str
- camelCase 与 snake_case 字段名都可用
- validate() 一次性汇总全部字段错误
- 工厂函数 get_parser / parse_request
"""

import json
import uuid
from datetime import date

import pytest

from commissions.exceptions import ValidationError
from commissions.intake.factory import get_parser, parse_request
from commissions.intake.parsers import TargetParser, VisitParser
from commissions.intake.types import FollowUpCompletionIntake, TargetIntake, VisitIntake

PATIENT_ID = str(uuid.uuid4())
HOSPITAL_ID = str(uuid.uuid4())
SPECIALITY_ID = str(uuid.uuid4())


def errors_of(exc_info):
    return {e['field'] for e in exc_info.value.detail['errors']}


# ── parse() ───────────────────────────────────────────────────────────────

class TestParse:

    def test_accepts_json_bytes(self):
        body = json.dumps({'patientId': PATIENT_ID, 'hospitalId': HOSPITAL_ID, 'visitDate': '2024-03-10'})
        intake = VisitParser(raw_body=body.encode()).process()
        assert isinstance(intake, VisitIntake)

    def test_invalid_json(self):
        with pytest.raises(ValidationError) as exc_info:
            VisitParser(raw_body=b'{not json').process()
        assert exc_info.value.code == 'INVALID_JSON'

    def test_non_object_body(self):
        with pytest.raises(ValidationError) as exc_info:
            VisitParser(raw_body='[1, 2]').process()
        assert exc_info.value.code == 'INVALID_BODY'


# ── VisitParser ───────────────────────────────────────────────────────────

class TestVisitParser:

    def test_camel_case(self):
        intake = parse_request('visit', {
            'patientId': PATIENT_ID,
            'hospitalId': HOSPITAL_ID,
            'visitDate': '2024-03-10T10:00:00+04:00',
            'isEmergency': 'true',
            'specialities': [{'specialityId': SPECIALITY_ID, 'details': ' knee '}],
        })
        assert str(intake.patient_id) == PATIENT_ID
        assert intake.visit_date.isoformat() == '2024-03-10T10:00:00+04:00'
        assert intake.is_emergency is True
        assert str(intake.specialities[0].speciality_id) == SPECIALITY_ID
        assert intake.specialities[0].details == 'knee'

    def test_snake_case(self):
        intake = parse_request('visit', {
            'patient_id': PATIENT_ID,
            'hospital_id': HOSPITAL_ID,
            'visit_date': '2024-03-10',
        })
        assert intake.specialities == []

    def test_bare_date_is_start_of_business_day(self):
        intake = parse_request('visit', {'patientId': PATIENT_ID, 'hospitalId': HOSPITAL_ID, 'visitDate': '2024-03-10'})
        assert intake.visit_date.isoformat() == '2024-03-10T00:00:00+04:00'

    def test_naive_datetime_is_business_time(self):
        intake = parse_request('visit', {
            'patientId': PATIENT_ID, 'hospitalId': HOSPITAL_ID, 'visitDate': '2024-03-10T23:30:00',
        })
        assert intake.visit_date.utcoffset().total_seconds() == 4 * 3600

    def test_collects_every_error(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_request('visit', {
                'hospitalId': 'not-a-uuid',
                'visitDate': '2024-13-45',
                'specialities': [{'doctorId': 'x'}],
            })
        assert errors_of(exc_info) == {
            'patient_id',
            'hospital_id',
            'visit_date',
            'specialities[0].speciality_id',
            'specialities[0].doctor_id',
        }
        assert exc_info.value.http_status == 400


# ── FollowUpCompletionParser ──────────────────────────────────────────────

class TestFollowUpCompletion:

    def test_rejected_requires_notes(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_request('follow_up_completion', {'approvalStatus': 'rejected'})
        assert errors_of(exc_info) == {'notes'}

    def test_postponed_requires_date(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_request('follow_up_completion', {'approvalStatus': 'postponed'})
        assert errors_of(exc_info) == {'postponed_date'}

    def test_appointment_only_when_approved(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_request('follow_up_completion', {
                'approvalStatus': 'postponed',
                'postponedDate': '2024-03-20',
                'createAppointment': True,
                'appointment': {'hospitalId': HOSPITAL_ID, 'scheduledDate': '2024-03-21T09:00:00'},
            })
        assert errors_of(exc_info) == {'create_appointment'}

    def test_approved_with_appointment(self):
        intake = parse_request('follow_up_completion', {
            'approvalStatus': 'approved',
            'createAppointment': True,
            'appointment': {
                'hospitalId': HOSPITAL_ID,
                'scheduledDate': '2024-03-21T09:00:00',
                'specialities': [{'specialityId': SPECIALITY_ID}],
            },
        })
        assert isinstance(intake, FollowUpCompletionIntake)
        assert str(intake.appointment.hospital_id) == HOSPITAL_ID
        assert len(intake.appointment.specialities) == 1

    def test_unknown_status(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_request('follow_up_completion', {'approvalStatus': 'maybe'})
        assert 'approval_status' in errors_of(exc_info)


# ── Targets ───────────────────────────────────────────────────────────────

class TestTargetParsers:

    def _payload(self, **overrides):
        payload = {
            'assignedToId': str(uuid.uuid4()),
            'type': 'monthly',
            'category': 'new_patients',
            'targetValue': '12',
            'startDate': '2024-03-01',
            'endDate': '2024-03-31',
        }
        payload.update(overrides)
        return payload

    def test_create(self):
        intake = TargetParser(raw_body=self._payload()).process()
        assert isinstance(intake, TargetIntake)
        assert intake.target_value == 12
        assert intake.start_date == date(2024, 3, 1)
        assert intake.current_value == 0

    @pytest.mark.parametrize('overrides, field', [
        ({'targetValue': 0}, 'target_value'),
        ({'targetValue': 'ten'}, 'target_value'),
        ({'type': 'yearly'}, 'type'),
        ({'category': 'revenue'}, 'category'),
        ({'endDate': '2024-02-01'}, 'end_date'),
    ])
    def test_create_rejects(self, overrides, field):
        with pytest.raises(ValidationError) as exc_info:
            TargetParser(raw_body=self._payload(**overrides)).process()
        assert field in errors_of(exc_info)

    def test_update_only_keeps_present_fields(self):
        intake = parse_request('target_update', {'targetValue': 20, 'isActive': 'false'})
        assert intake.changes() == {'target_value': 20, 'is_active': False}

    def test_update_rejects_non_positive_value(self):
        with pytest.raises(ValidationError):
            parse_request('target_update', {'target_value': -1})


# ── Others ────────────────────────────────────────────────────────────────

class TestOtherParsers:

    def test_manual_adjustment_needs_description(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_request('manual_adjustment', {'employeeId': str(uuid.uuid4()), 'amount': 0})
        assert errors_of(exc_info) == {'description', 'amount'}

    def test_manual_adjustment_default_amount(self):
        intake = parse_request('manual_adjustment', {'employee_id': str(uuid.uuid4()), 'description': 'Bonus'})
        assert intake.amount == 1

    def test_follow_up_tasks_need_patients(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_request('follow_up_tasks', {'assignedToId': str(uuid.uuid4()), 'patientIds': []})
        assert errors_of(exc_info) == {'patient_ids'}

    def test_nomination_requires_name(self):
        with pytest.raises(ValidationError):
            parse_request('nomination', {'phoneNumber': '+971500000000'})

    def test_nomination_status_choice(self):
        assert parse_request('nomination_status', {'status': 'contacting'}).status == 'contacting'
        with pytest.raises(ValidationError):
            parse_request('nomination_status', {'status': 'lost'})


# ── Factory ───────────────────────────────────────────────────────────────

class TestFactory:

    def test_returns_parser_instance(self):
        assert isinstance(get_parser('visit', {}), VisitParser)

    def test_unknown_kind(self):
        with pytest.raises(ValidationError) as exc_info:
            get_parser('invoice', {})
        assert exc_info.value.code == 'UNKNOWN_INTAKE'
        assert 'visit' in exc_info.value.detail['known_kinds']
