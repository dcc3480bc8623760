"""
HTTP layer. Views only parse, delegate to services and serialize;
errors are raised and turned into responses by exception_handler.
"""

import uuid

from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from . import ledger, reports, services, targets
from .auth import IsAdminEmployee, IsManager
from .dates import current_month_window, parse_window, today
from .exceptions import ValidationError
from .intake.factory import parse_request
from .serializers import (
    serialize_appointment,
    serialize_classification,
    serialize_commission,
    serialize_follow_up_task,
    serialize_nomination,
    serialize_patient,
    serialize_target,
    serialize_visit,
    serialize_visit_speciality,
)


def _query_uuid(request, *keys):
    for key in keys:
        value = request.query_params.get(key)
        if value:
            try:
                return uuid.UUID(value)
            except ValueError:
                raise ValidationError(
                    message=f"Invalid id for {key}: {value!r}.",
                    code='INVALID_ID',
                    detail={'field': key},
                )
    return None


def _query_bool(request, key):
    value = request.query_params.get(key)
    if value is None:
        return None
    return value.strip().lower() in ('1', 'true', 'yes')


def _window(request, default=None):
    return parse_window(
        request.query_params.get('startDate') or request.query_params.get('start_date'),
        request.query_params.get('endDate') or request.query_params.get('end_date'),
        default=default,
    )


def _month_year(request):
    now = today()
    try:
        month = int(request.query_params.get('month') or now.month)
        year = int(request.query_params.get('year') or now.year)
    except ValueError:
        raise ValidationError(message='month and year must be integers.', code='INVALID_PERIOD')
    if not 1 <= month <= 12:
        raise ValidationError(message='month must be between 1 and 12.', code='INVALID_PERIOD')
    return month, year


# ── Commissions ──────────────────────────────────────────────────────────────

class CommissionBreakdownView(APIView):

    def get(self, request):
        result = reports.commission_breakdown(
            employee_id=_query_uuid(request, 'employeeId', 'employee_id'),
            window=_window(request, default=current_month_window()),
            # _t 是前端的 cache-buster
            use_cache='_t' not in request.query_params,
        )
        return Response(result)


class ManualAdjustmentView(APIView):
    permission_classes = [IsAuthenticated, IsAdminEmployee]

    def post(self, request):
        intake = parse_request('manual_adjustment', request.data)
        commission = ledger.create_manual_adjustment(intake, actor=request.user)
        return Response(serialize_commission(commission), status=status.HTTP_201_CREATED)


class DeleteAllCommissionsView(APIView):
    permission_classes = [IsAuthenticated, IsAdminEmployee]

    def delete(self, request):
        confirm = _query_bool(request, 'confirm') or bool(request.data.get('confirm', False))
        return Response(ledger.delete_all_commissions(confirm=confirm))


class LedgerReconciliationView(APIView):
    permission_classes = [IsAuthenticated, IsManager]

    def get(self, request):
        return Response(reports.ledger_reconciliation(_window(request, default=current_month_window())))


# ── Reports ──────────────────────────────────────────────────────────────────

class EmployeePerformanceView(APIView):

    def get(self, request, employee_id):
        return Response(reports.employee_performance(employee_id, _window(request, default=current_month_window())))


class ReportsSummaryView(APIView):

    def get(self, request):
        return Response(reports.reports_summary(_window(request, default=current_month_window())))


class TeamAnalysisView(APIView):

    def get(self, request):
        month, year = _month_year(request)
        return Response(reports.team_analysis(month, year))


# ── Targets ──────────────────────────────────────────────────────────────────

class TargetListView(APIView):

    def get(self, request):
        rows = targets.list_targets(
            assigned_to_id=_query_uuid(request, 'assignedToId', 'assigned_to_id'),
            is_active=_query_bool(request, 'isActive'),
            type_=request.query_params.get('type'),
            category=request.query_params.get('category'),
            team_id=_query_uuid(request, 'teamId', 'team_id'),
        )
        return Response({'targets': [serialize_target(t, p) for t, p in rows]})

    def post(self, request):
        intake = parse_request('target', request.data)
        target = targets.create_target(intake, actor=request.user)
        return Response(serialize_target(target, targets.progress(target)), status=status.HTTP_201_CREATED)


class TargetDetailView(APIView):

    def get(self, request, target_id):
        target = targets.get_target(target_id)
        return Response(serialize_target(target, targets.progress(target)))

    def put(self, request, target_id):
        intake = parse_request('target_update', request.data)
        target = targets.update_target(target_id, intake)
        return Response(serialize_target(target, targets.progress(target)))

    def delete(self, request, target_id):
        targets.delete_target(target_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class TargetTypesView(APIView):

    def get(self, request):
        return Response({'types': targets.TARGET_TYPES})


class TargetCategoriesView(APIView):

    def get(self, request):
        return Response({'categories': targets.TARGET_CATEGORIES})


class TargetStatsView(APIView):

    def get(self, request):
        return Response(targets.target_stats(_query_uuid(request, 'assignedToId', 'assigned_to_id')))


class TargetAnalysisView(APIView):

    def get(self, request):
        return Response(targets.target_analysis(
            _window(request, default=current_month_window()),
            employee_id=_query_uuid(request, 'employeeId', 'employee_id'),
        ))


class TargetResetView(APIView):
    permission_classes = [IsAuthenticated, IsManager]

    def post(self, request):
        return Response({'deactivated': targets.auto_reset_targets()})


# ── Visits ───────────────────────────────────────────────────────────────────

class VisitCreateView(APIView):

    def post(self, request):
        intake = parse_request('visit', request.data)
        visit, classification, commissions = services.create_visit(intake, actor=request.user)
        return Response(serialize_visit(visit, classification, commissions), status=status.HTTP_201_CREATED)


class VisitClassificationView(APIView):

    def get(self, request, visit_id):
        visit, classification = services.classify_visit(visit_id)
        return Response({'visit_id': str(visit.id), **serialize_classification(classification)})


class VisitSpecialityView(APIView):

    def post(self, request, visit_id):
        intake = parse_request('visit_speciality', request.data)
        visit_speciality, commissions = services.add_visit_speciality(visit_id, intake, actor=request.user)
        body = serialize_visit_speciality(visit_speciality)
        body['commissions'] = [serialize_commission(c) for c in commissions]
        return Response(body, status=status.HTTP_201_CREATED)


# ── Follow-up ────────────────────────────────────────────────────────────────

class FollowUpTaskListView(APIView):

    def get(self, request):
        tasks = services.list_follow_up_tasks(
            assigned_to_id=_query_uuid(request, 'assignedToId', 'assigned_to_id'),
            status=request.query_params.get('status'),
            patient_id=_query_uuid(request, 'patientId', 'patient_id'),
        )
        return Response({'tasks': [serialize_follow_up_task(t) for t in tasks]})

    def post(self, request):
        intake = parse_request('follow_up_tasks', request.data)
        created, skipped = services.create_follow_up_tasks(intake, actor=request.user)
        return Response(
            {'created': [serialize_follow_up_task(t) for t in created], 'skipped_patient_ids': skipped},
            status=status.HTTP_201_CREATED,
        )


class FollowUpTaskCompleteView(APIView):

    def put(self, request, task_id):
        intake = parse_request('follow_up_completion', request.data)
        task, appointment = services.complete_follow_up_task(task_id, intake, actor=request.user)
        body = serialize_follow_up_task(task)
        body['appointment'] = serialize_appointment(appointment) if appointment else None
        return Response(body)


# ── Nominations ──────────────────────────────────────────────────────────────

class NominationCreateView(APIView):

    def post(self, request):
        intake = parse_request('nomination', request.data)
        nomination = services.create_nomination(intake, actor=request.user)
        return Response(serialize_nomination(nomination), status=status.HTTP_201_CREATED)


class NominationStatusView(APIView):

    def put(self, request, nomination_id):
        intake = parse_request('nomination_status', request.data)
        return Response(serialize_nomination(services.update_nomination_status(nomination_id, intake)))


class NominationConvertView(APIView):

    def post(self, request, nomination_id):
        intake = parse_request('nomination_conversion', request.data)
        nomination, patient = services.convert_nomination(nomination_id, intake, actor=request.user)
        return Response(
            {'nomination': serialize_nomination(nomination), 'patient': serialize_patient(patient)},
            status=status.HTTP_201_CREATED,
        )


# ── Reference data ───────────────────────────────────────────────────────────

class HospitalListView(APIView):

    def get(self, request):
        return Response({'hospitals': services.list_hospitals()})
