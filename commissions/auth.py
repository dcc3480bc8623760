"""
Bearer-token authentication.

Tokens are HS256 JWTs carrying ``{id, name, role}``. The signature alone is
not trusted: every request re-loads the employee and rejects inactive or
suspended accounts.
"""

import logging
import uuid
from datetime import timedelta

import jwt
from django.conf import settings
from django.utils import timezone
from rest_framework.authentication import BaseAuthentication, get_authorization_header
from rest_framework.exceptions import AuthenticationFailed
from rest_framework.permissions import BasePermission

from .models import Employee

logger = logging.getLogger(__name__)


def issue_token(employee, role=None) -> str:
    """
    Sign ``{id, name, role, iat, exp}`` with ``JWT_SECRET``.

    This is the token contract shared with the identity service that handles
    interactive logins; ``manage.py issue_token`` uses it for service accounts.
    """
    roles = employee.role_names
    payload = {
        'id': str(employee.id),
        'name': employee.name,
        'role': role or (roles[0] if roles else None),
        'iat': timezone.now(),
        'exp': timezone.now() + timedelta(hours=settings.JWT_EXPIRY_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


class EmployeeJWTAuthentication(BaseAuthentication):
    keyword = 'Bearer'

    def authenticate(self, request):
        header = get_authorization_header(request).split()
        if not header or header[0].lower() != self.keyword.lower().encode():
            return None
        if len(header) != 2:
            raise AuthenticationFailed('Invalid authorization header.')

        try:
            token = header[1].decode()
            payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        except UnicodeError:
            raise AuthenticationFailed('Invalid authorization header.')
        except jwt.ExpiredSignatureError:
            raise AuthenticationFailed('Token has expired.')
        except jwt.InvalidTokenError as exc:
            logger.info("[auth] rejected token: %s", exc)
            raise AuthenticationFailed('Invalid token.')

        try:
            employee_id = uuid.UUID(str(payload.get('id')))
        except ValueError:
            raise AuthenticationFailed('Invalid token.')

        employee = (
            Employee.objects
            .prefetch_related('roles')
            .filter(pk=employee_id, is_active=True, account_status='active')
            .first()
        )
        if employee is None:
            raise AuthenticationFailed('Employee not found or inactive.')
        return employee, payload

    def authenticate_header(self, request):
        return self.keyword


class HasEmployeeRole(BasePermission):
    allowed_roles = ()
    message = 'You do not have the role required for this action.'

    def has_permission(self, request, view):
        employee = request.user
        if employee is None or not getattr(employee, 'is_authenticated', False):
            return False
        return any(employee.has_role(role) for role in self.allowed_roles)


class IsAdminEmployee(HasEmployeeRole):
    allowed_roles = ('admin',)
    message = 'Admin role required.'


class IsManager(HasEmployeeRole):
    allowed_roles = ('admin', 'team_leader', 'finance')
    message = 'Admin, team leader or finance role required.'
