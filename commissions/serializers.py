"""
Response serializers — ORM 对象 → JSON-able dict。

只负责「输出格式化」，不做任何解析或校验。
输入解析和校验在 commissions/intake/。
"""


def _iso(value):
    return value.isoformat() if value else None


def _id(value):
    return str(value) if value else None


def serialize_classification(classification):
    return {
        'category': classification.category,
        'employee_id': _id(classification.employee_id),
        'fallback_used': classification.fallback_used,
        'follow_up_task_id': _id(classification.follow_up_task_id),
    }


def serialize_commission(commission):
    return {
        'id': str(commission.id),
        'employee_id': str(commission.employee_id),
        'type': commission.type,
        'amount': commission.amount,
        'period': commission.period,
        'description': commission.description,
        'patient_id': _id(commission.patient_id),
        'visit_id': _id(commission.visit_id),
        'follow_up_task_id': _id(commission.follow_up_task_id),
        'created_at': _iso(commission.created_at),
    }


def serialize_visit(visit, classification=None, commissions=None):
    response = {
        'visit_id': str(visit.id),
        'patient_id': str(visit.patient_id),
        'hospital_id': str(visit.hospital_id),
        'visit_date': _iso(visit.visit_date),
        'coordinator_id': _id(visit.coordinator_id),
        'sales_id': _id(visit.sales_id),
        'specialities': [serialize_visit_speciality(vs) for vs in visit.specialities.all()],
        'created_at': _iso(visit.created_at),
    }
    if classification is not None:
        response['classification'] = serialize_classification(classification)
    if commissions is not None:
        response['commissions'] = [serialize_commission(c) for c in commissions]
    return response


def serialize_visit_speciality(visit_speciality):
    return {
        'id': str(visit_speciality.id),
        'speciality_id': str(visit_speciality.speciality_id),
        'doctor_id': _id(visit_speciality.doctor_id),
        'scheduled_time': _iso(visit_speciality.scheduled_time),
        'details': visit_speciality.details,
        'status': visit_speciality.status,
    }


def serialize_target(target, progress=None):
    response = {
        'id': str(target.id),
        'assigned_to_id': str(target.assigned_to_id),
        'team_id': _id(target.team_id),
        'type': target.type,
        'category': target.category,
        'description': target.description,
        'target_value': target.target_value,
        'current_value': target.current_value,
        'start_date': target.start_date.isoformat(),
        'end_date': target.end_date.isoformat(),
        'is_active': target.is_active,
        'completed_at': _iso(target.completed_at),
    }
    if progress is not None:
        response['progress'] = progress.to_dict()
    return response


def serialize_follow_up_task(task):
    return {
        'id': str(task.id),
        'patient_id': str(task.patient_id),
        'patient_name': task.patient.name_english,
        'assigned_to_id': str(task.assigned_to_id),
        'status': task.status,
        'notes': task.notes,
        'due_date': _iso(task.due_date),
        'completed_at': _iso(task.completed_at),
        'created_at': _iso(task.created_at),
    }


def serialize_appointment(appointment):
    return {
        'id': str(appointment.id),
        'patient_id': str(appointment.patient_id),
        'hospital_id': str(appointment.hospital_id),
        'scheduled_date': _iso(appointment.scheduled_date),
        'status': appointment.status,
        'created_from_follow_up_task_id': _id(appointment.created_from_follow_up_task_id),
        'is_new_patient_at_creation': appointment.is_new_patient_at_creation,
    }


def serialize_nomination(nomination):
    return {
        'id': str(nomination.id),
        'nominated_patient_name': nomination.nominated_patient_name,
        'phone_number': nomination.phone_number,
        'status': nomination.status,
        'referrer_id': _id(nomination.referrer_id),
        'sales_person_id': _id(nomination.sales_person_id),
        'coordinator_id': _id(nomination.coordinator_id),
        'converted_to_patient_id': _id(nomination.converted_to_patient_id),
    }


def serialize_patient(patient):
    return {
        'id': str(patient.id),
        'name_english': patient.name_english,
        'national_id': patient.national_id,
        'phone_number': patient.phone_number,
        'dob': _iso(patient.dob),
        'sales_person_id': _id(patient.sales_person_id),
    }
