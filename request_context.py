"""Request-scoped helpers shared by the blueprints."""

from flask import current_app, g, request, session

from auth import get_auth_manager
from case_assignment import CaseAssignmentSystem
from column_config_service import ColumnConfigService
from customer_case_service import CustomerCaseService
from db import get_supabase
from employee_service import EmployeeService
from exceptions import ValidationError, TenantResolutionError
from reports import ReportService
from team_service import TeamService
from tenant_service import TenantService


def current_user():
    return {
        'user_id': session.get('user_id'),
        'role': session.get('role'),
        'tenant_id': session.get('tenant_id'),
        'name': session.get('name'),
        'emp_id': session.get('emp_id'),
    }


def current_tenant_id():
    """Tenant of the request host. SuperAdmins reach tenant data through the tenant's subdomain."""
    tenant = getattr(g, 'tenant', None)
    if not tenant:
        raise TenantResolutionError('Open this page from a company subdomain', 400)
    return tenant['id']


def json_body():
    data = request.get_json(silent=True)
    if data is None:
        data = request.form.to_dict() if request.form else {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def id_list(data, key):
    values = data.get(key)
    if values is None:
        values = request.form.getlist(key)
    if not isinstance(values, list):
        raise ValidationError(f'{key} must be a list')
    return [str(v) for v in values if v]


def tenant_service():
    return TenantService(get_supabase(), get_auth_manager())


def employee_service():
    return EmployeeService(get_supabase(), get_auth_manager())


def column_config_service():
    return ColumnConfigService(get_supabase())


def team_service():
    return TeamService(get_supabase())


def case_service():
    return CustomerCaseService(get_supabase())


def assignment_system():
    return CaseAssignmentSystem(get_supabase(), debug=current_app.config.get('ASSIGNMENT_DEBUG', False))


def report_service():
    return ReportService(get_supabase())
