"""
Management Command: issue_token

Mint a bearer token for an employee, for service accounts and for wiring a
new client against this API. Interactive logins are issued by the identity
service with the same secret and payload (see ``commissions.auth``).

Usage:
    python manage.py issue_token --employee-code=EMP-001 [--role=admin]
"""

from django.core.management.base import BaseCommand, CommandError

from commissions.auth import issue_token
from commissions.models import Employee


class Command(BaseCommand):
    help = 'Issue a bearer token for an active employee'

    def add_arguments(self, parser):
        parser.add_argument(
            '--employee-code',
            type=str,
            required=True,
            help='employee_code of the employee the token acts as',
        )
        parser.add_argument(
            '--role',
            type=str,
            default=None,
            help='Role claim to put in the token; defaults to the first active role',
        )

    def handle(self, *args, **options):
        code = options['employee_code']
        employee = (
            Employee.objects
            .prefetch_related('roles')
            .filter(employee_code=code, is_active=True, account_status='active')
            .first()
        )
        if employee is None:
            raise CommandError(f'No active employee with code {code}')

        role = options['role']
        if role is not None and not employee.has_role(role):
            raise CommandError(f'{employee} does not hold the {role} role')

        self.stdout.write(issue_token(employee, role))
