import logging
import secrets
from datetime import datetime
from functools import wraps
from typing import Any, Dict, Optional, Tuple

import bcrypt
from flask import current_app, g, has_request_context, request, session

from db import first_row
from exceptions import AuthenticationError, PermissionDenied, ValidationError
from utils import get_ist_timestamp

logger = logging.getLogger(__name__)

ROLE_SUPER_ADMIN = 'SuperAdmin'
ROLE_COMPANY_ADMIN = 'CompanyAdmin'
ROLE_TEAM_INCHARGE = 'TeamIncharge'
ROLE_TELECALLER = 'Telecaller'

DASHBOARD_PATHS = {
    ROLE_SUPER_ADMIN: '/superadmin',
    ROLE_COMPANY_ADMIN: '/companyadmin',
    ROLE_TEAM_INCHARGE: '/teamincharge',
    ROLE_TELECALLER: '/telecaller',
}

MIN_PASSWORD_LENGTH = 6


def get_dashboard_path(role: Optional[str]) -> str:
    return DASHBOARD_PATHS.get(role, '/login')


class AuthManager:
    """Password checks, session creation and audit logging."""

    def __init__(self, supabase_client, bcrypt_rounds: int = 10):
        self.supabase = supabase_client
        self.bcrypt_rounds = bcrypt_rounds

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def hash_password(self, password: str) -> str:
        return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=self.bcrypt_rounds)).decode('utf-8')

    def verify_password(self, password: str, password_hash: Optional[str]) -> bool:
        if not password or not password_hash:
            return False
        try:
            return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
        except ValueError:
            # Not a bcrypt hash
            logger.warning("⚠️ Stored password hash is not a valid bcrypt hash")
            return False

    def validate_password_strength(self, password: Optional[str]) -> Tuple[bool, str]:
        if not password or not password.strip():
            return False, 'Password is required'
        if len(password) < MIN_PASSWORD_LENGTH:
            return False, f'Password must be at least {MIN_PASSWORD_LENGTH} characters long'
        return True, 'Password is valid'

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def authenticate_super_admin(self, username: str, password: str) -> Tuple[bool, str, Optional[Dict[str, Any]]]:
        """Authenticate against ``super_admins``.

        Returns:
            (success, message, user_data)
        """
        result = self.supabase.table('super_admins').select('id, username, password_hash') \
            .eq('username', username).limit(1).execute()
        admin = first_row(result)

        if not admin:
            logger.info(f"🔐 Super admin login failed, unknown username: {username}")
            return False, 'Invalid username or password', None

        if not self.verify_password(password, admin.get('password_hash')):
            logger.info(f"🔐 Super admin login failed, bad password: {username}")
            return False, 'Invalid username or password', None

        return True, 'Login successful', {
            'id': admin['id'],
            'name': admin['username'],
            'username': admin['username'],
            'role': ROLE_SUPER_ADMIN,
            'tenant_id': None,
        }

    def authenticate_tenant_user(self, identifier: str, password: str,
                                 tenant_id: str) -> Tuple[bool, str, Optional[Dict[str, Any]]]:
        """Authenticate a CompanyAdmin (by employee_id) or an employee (by emp_id) of one tenant."""
        admin = first_row(
            self.supabase.table('company_admins')
            .select('id, employee_id, name, email, password_hash, tenant_id')
            .eq('employee_id', identifier)
            .eq('tenant_id', tenant_id)
            .limit(1)
            .execute()
        )

        if admin:
            if not self.verify_password(password, admin.get('password_hash')):
                return False, 'Invalid employee ID or password', None
            return True, 'Login successful', {
                'id': admin['id'],
                'name': admin.get('name') or admin['employee_id'],
                'username': admin['employee_id'],
                'emp_id': admin['employee_id'],
                'email': admin.get('email'),
                'role': ROLE_COMPANY_ADMIN,
                'tenant_id': admin['tenant_id'],
            }

        employee = first_row(
            self.supabase.table('employees')
            .select('id, name, emp_id, mobile, password_hash, role, tenant_id, status')
            .eq('tenant_id', tenant_id)
            .eq('emp_id', identifier)
            .limit(1)
            .execute()
        )

        if employee:
            if employee.get('status') != 'active':
                return False, 'Your account is inactive. Please contact your administrator.', None
            if not self.verify_password(password, employee.get('password_hash')):
                return False, 'Invalid employee ID or password', None
            return True, 'Login successful', {
                'id': employee['id'],
                'name': employee['name'],
                'username': employee['emp_id'],
                'emp_id': employee['emp_id'],
                'email': employee.get('mobile') or employee['name'],
                'role': employee.get('role') or 'Employee',
                'tenant_id': employee['tenant_id'],
            }

        logger.info(f"🔐 No user found with identifier {identifier} in tenant {tenant_id}")
        return False, 'Invalid credentials', None

    def create_session(self, user_data: Dict[str, Any]) -> str:
        session.clear()
        session.permanent = True
        session_id = secrets.token_urlsafe(24)
        session['session_id'] = session_id
        session['user_id'] = user_data['id']
        session['role'] = user_data['role']
        session['tenant_id'] = user_data.get('tenant_id')
        session['name'] = user_data.get('name')
        session['username'] = user_data.get('username')
        session['emp_id'] = user_data.get('emp_id')
        session['login_time'] = datetime.utcnow().isoformat()
        return session_id

    def change_password(self, user_id: str, role: str, current_password: str, new_password: str) -> None:
        table, hash_field = self._password_table(role)
        account = first_row(self.supabase.table(table).select('id, password_hash').eq('id', user_id).limit(1).execute())
        if not account:
            raise AuthenticationError('Account not found')
        if not self.verify_password(current_password, account.get('password_hash')):
            raise AuthenticationError('Current password is incorrect')

        is_valid, message = self.validate_password_strength(new_password)
        if not is_valid:
            raise ValidationError(message)

        self.supabase.table(table).update({
            hash_field: self.hash_password(new_password),
            'updated_at': get_ist_timestamp(),
        }).eq('id', user_id).execute()

    @staticmethod
    def _password_table(role: str) -> Tuple[str, str]:
        if role == ROLE_SUPER_ADMIN:
            return 'super_admins', 'password_hash'
        if role == ROLE_COMPANY_ADMIN:
            return 'company_admins', 'password_hash'
        return 'employees', 'password_hash'

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def log_audit_event(self, user_id, user_type, action, resource=None, resource_id=None,
                        details=None, tenant_id=None):
        """Record an audit row. Failures are logged and never raised."""
        try:
            audit_data = {
                'tenant_id': tenant_id,
                'user_id': user_id,
                'user_role': user_type,
                'action': action,
                'resource': resource,
                'resource_id': str(resource_id) if resource_id is not None else None,
                'details': details or {},
                'created_at': get_ist_timestamp(),
            }
            if has_request_context():
                audit_data['ip_address'] = request.remote_addr
            self.supabase.table('audit_logs').insert(audit_data).execute()
        except Exception as e:
            logger.error(f"❌ Error logging audit event {action}: {e}")


def get_auth_manager() -> AuthManager:
    return current_app.config['AUTH_MANAGER']


def audit(action, resource=None, resource_id=None, details=None):
    """Audit helper bound to the current session."""
    tenant = getattr(g, 'tenant', None)
    get_auth_manager().log_audit_event(
        user_id=session.get('user_id'),
        user_type=session.get('role'),
        action=action,
        resource=resource,
        resource_id=resource_id,
        details=details,
        tenant_id=tenant['id'] if tenant else session.get('tenant_id'),
    )


def require_auth(allowed_roles=None):
    """Require a logged-in user, optionally with one of ``allowed_roles``.

    Tenant users may only act on the tenant resolved from the request host.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            role = session.get('role')
            if not session.get('user_id') or not role:
                raise AuthenticationError('Please log in to access this page')

            if allowed_roles and role not in allowed_roles:
                raise PermissionDenied('You do not have permission to access this page')

            if role != ROLE_SUPER_ADMIN:
                tenant = getattr(g, 'tenant', None)
                if not tenant or tenant['id'] != session.get('tenant_id'):
                    raise PermissionDenied('Access denied for this tenant')

            return f(*args, **kwargs)
        return decorated_function
    return decorator


def require_super_admin(f):
    return require_auth([ROLE_SUPER_ADMIN])(f)


def require_company_admin(f):
    return require_auth([ROLE_COMPANY_ADMIN, ROLE_SUPER_ADMIN])(f)


def require_team_incharge(f):
    return require_auth([ROLE_TEAM_INCHARGE, ROLE_COMPANY_ADMIN, ROLE_SUPER_ADMIN])(f)


def require_telecaller(f):
    return require_auth([ROLE_TELECALLER])(f)
