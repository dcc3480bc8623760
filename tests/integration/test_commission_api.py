"""
Integration tests — /api/v1/commission/*

  HTTP Request → urls.py → View → ledger / reports → ORM → Response
"""
import uuid

import pytest

from commissions.models import Commission, Employee
from tests.conftest import CommissionFactory, PatientFactory, VisitFactory, dubai, send


# ===================================================================
# Breakdown
# ===================================================================

@pytest.mark.django_db
class TestBreakdown:

    def test_window_from_query(self, sales, client_for):
        VisitFactory(patient=PatientFactory(sales_person=sales), visit_date=dubai(2024, 3, 3))

        status, body = send(client_for(sales), 'get', '/commission/breakdown?startDate=2024-03-01&endDate=2024-03-31')

        assert status == 200
        assert body['period'] == {'start_date': '2024-03-01', 'end_date': '2024-03-31'}
        row = next(r for r in body['employees'] if r['employee_id'] == str(sales.id))
        assert row['commissions']['new_patients'] == 1
        assert 'type' not in body

    def test_single_employee(self, sales, coordinator, client_for):
        status, body = send(
            client_for(sales), 'get',
            f'/commission/breakdown?employeeId={sales.id}&start_date=2024-03-01&end_date=2024-03-31',
        )
        assert status == 200
        assert [r['employee_id'] for r in body['employees']] == [str(sales.id)]

    def test_cache_buster_param(self, sales, client_for):
        client = client_for(sales)
        url = '/commission/breakdown?startDate=2024-03-01&endDate=2024-03-31'
        send(client, 'get', url)
        CommissionFactory(employee=sales, period='2024-03-05')

        _, cached = send(client, 'get', url)
        _, fresh = send(client, 'get', f'{url}&_t=1700000000')

        assert cached['totals']['total_commissions'] == 0
        assert fresh['totals']['total_commissions'] == 1

    @pytest.mark.parametrize('query, code', [
        ('startDate=2024-02-30', 'INVALID_DATE'),
        ('startDate=2024-04-01&endDate=2024-03-01', 'INVALID_DATE_RANGE'),
        ('employeeId=abc', 'INVALID_ID'),
    ])
    def test_bad_query(self, sales, client_for, query, code):
        status, body = send(client_for(sales), 'get', f'/commission/breakdown?{query}')
        assert status == 400
        assert body['type'] == 'validation_error'
        assert body['code'] == code

    def test_unknown_employee(self, sales, client_for):
        status, body = send(client_for(sales), 'get', f'/commission/breakdown?employeeId={uuid.uuid4()}')
        assert status == 404
        assert body['code'] == 'EMPLOYEE_NOT_FOUND'


# ===================================================================
# Manual adjustment
# ===================================================================

@pytest.mark.django_db
class TestManualAdjustment:

    def test_created(self, sales, admin_client):
        status, body = send(admin_client, 'post', '/commission/manual-adjustment', {
            'employeeId': str(sales.id), 'description': 'Quarter bonus', 'amount': 3,
        })

        assert status == 201
        assert body['type'] == Commission.TYPE_MANUAL_ADJUSTMENT
        assert body['amount'] == 3
        assert Employee.objects.get(pk=sales.pk).commissions == 3

    def test_validation_errors(self, admin_client):
        status, body = send(admin_client, 'post', '/commission/manual-adjustment', {'amount': 'x'})

        assert status == 400
        fields = {e['field'] for e in body['detail']['errors']}
        assert fields == {'employee_id', 'amount', 'description'}

    def test_unknown_employee(self, admin_client):
        status, body = send(admin_client, 'post', '/commission/manual-adjustment', {
            'employeeId': str(uuid.uuid4()), 'description': 'x',
        })
        assert status == 404
        assert body['type'] == 'not_found'


# ===================================================================
# Delete all
# ===================================================================

@pytest.mark.django_db
class TestDeleteAll:

    def test_without_confirmation_warns(self, sales, admin_client):
        CommissionFactory(employee=sales)

        status, body = send(admin_client, 'delete', '/commission/all')

        assert status == 409
        assert body['type'] == 'warning'
        assert body['detail'] == {'commission_count': 1}
        assert Commission.objects.count() == 1

    def test_confirmed(self, sales, admin_client):
        CommissionFactory(employee=sales)

        status, body = send(admin_client, 'delete', '/commission/all?confirm=true')

        assert status == 200
        assert body['deleted_commissions'] == 1
        assert Commission.objects.count() == 0

    def test_confirm_in_body(self, sales, admin_client):
        CommissionFactory(employee=sales)
        status, _ = send(admin_client, 'delete', '/commission/all', {'confirm': True})
        assert status == 200


# ===================================================================
# Reconciliation
# ===================================================================

@pytest.mark.django_db
class TestReconciliation:

    def test_reports_missing_rows(self, sales, admin_client):
        VisitFactory(patient=PatientFactory(sales_person=sales), visit_date=dubai(2024, 3, 3))

        status, body = send(admin_client, 'get', '/commission/reconciliation?startDate=2024-03-01&endDate=2024-03-31')

        assert status == 200
        assert body['consistent'] is False
        assert body['mismatches'][0]['type'] == Commission.TYPE_PATIENT_CREATION
