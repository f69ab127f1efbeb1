"""
Tenant administration for SuperAdmins.

Covers tenant CRUD, subdomain availability checks and the company admin
accounts that own each tenant.
"""

import logging
from typing import Any, Dict, List, Optional

from postgrest.exceptions import APIError

from db import first_row
from exceptions import ConflictError, DatabaseError, NotFoundError, PermissionDenied, ValidationError
from subdomain_validation import generate_subdomain_suggestions, sanitize_subdomain, validate_subdomain_format
from tenant_resolution import extract_subdomain, get_tenant_by_subdomain as lookup_tenant_by_subdomain
from utils import get_ist_timestamp

logger = logging.getLogger(__name__)

TENANT_STATUSES = ('active', 'inactive', 'suspended')
TENANT_PLANS = ('basic', 'standard', 'premium', 'enterprise')

UPDATABLE_FIELDS = (
    'name', 'subdomain', 'status', 'proprietor_name', 'phone_number', 'address',
    'gst_number', 'plan', 'max_users', 'max_connections', 'settings',
)

DB_ERROR_MESSAGES = {
    '23505': 'A tenant with this subdomain already exists',
    '23503': 'Invalid super admin reference. Please log in again.',
    '42501': 'Permission denied. Please ensure you are logged in as a super admin.',
}


def _raise_for_api_error(error: APIError, fallback: str):
    message = DB_ERROR_MESSAGES.get(error.code)
    if error.code == '23505':
        raise ConflictError(message)
    if error.code == '42501':
        raise PermissionDenied(message)
    if message:
        raise ValidationError(message)
    raise DatabaseError(error.message or fallback)


def _parse_limit(data, key, default):
    value = data.get(key)
    if value in (None, ''):
        return default
    try:
        limit = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{key} must be a whole number')
    if limit < 1:
        raise ValidationError(f'{key} must be at least 1')
    return limit


class TenantService:
    def __init__(self, supabase_client, auth_manager=None):
        self.supabase = supabase_client
        self.auth_manager = auth_manager

    # ------------------------------------------------------------------
    # Subdomains
    # ------------------------------------------------------------------

    def get_all_subdomains(self) -> List[str]:
        try:
            result = self.supabase.table('tenants').select('subdomain').execute()
            return [row['subdomain'].lower() for row in (result.data or []) if row.get('subdomain')]
        except Exception as e:
            logger.error(f"Error fetching subdomains: {e}")
            return []

    def validate_subdomain_uniqueness(self, subdomain: str, exclude_tenant_id: Optional[str] = None) -> bool:
        query = self.supabase.table('tenants').select('id, subdomain').ilike('subdomain', subdomain)
        if exclude_tenant_id:
            query = query.neq('id', exclude_tenant_id)
        result = query.limit(1).execute()
        return not result.data

    def check_subdomain_availability(self, subdomain: str) -> Dict[str, Any]:
        normalized = sanitize_subdomain(subdomain or '')
        is_valid, error = validate_subdomain_format(normalized)
        if not is_valid:
            return {'available': False, 'valid': False, 'error': error}

        try:
            taken = not self.validate_subdomain_uniqueness(normalized)
        except Exception as e:
            logger.error(f"❌ Error checking subdomain availability: {e}")
            return {
                'available': False,
                'valid': True,
                'error': 'Unable to verify subdomain availability. Please try again.'
            }

        if taken:
            suggestions = generate_subdomain_suggestions(normalized, self.get_all_subdomains())
            return {
                'available': False,
                'valid': True,
                'error': 'This subdomain is already taken',
                'suggestions': suggestions
            }

        return {'available': True, 'valid': True}

    # ------------------------------------------------------------------
    # Tenants
    # ------------------------------------------------------------------

    def list_tenants(self) -> List[Dict[str, Any]]:
        result = self.supabase.table('tenants').select('*').order('created_at', desc=True).execute()
        return result.data or []

    def get_tenant(self, tenant_id: str) -> Dict[str, Any]:
        tenant = first_row(self.supabase.table('tenants').select('*').eq('id', tenant_id).limit(1).execute())
        if not tenant:
            raise NotFoundError('Tenant not found')
        return tenant

    def get_tenant_by_subdomain(self, subdomain: str) -> Optional[Dict[str, Any]]:
        return lookup_tenant_by_subdomain(self.supabase, subdomain)

    def create_tenant(self, data: Dict[str, Any], created_by: Optional[str]) -> Dict[str, Any]:
        """Create a tenant and, when admin credentials are supplied, its company admin.

        Args:
            data: tenant fields plus optional admin_employee_id, admin_name,
                admin_email and admin_password
            created_by: id of the SuperAdmin creating the tenant

        Returns:
            dict: the tenant row, with ``company_admin`` when one was created
        """
        name = (data.get('name') or '').strip()
        if not name:
            raise ValidationError('Tenant name is required')

        subdomain = sanitize_subdomain(data.get('subdomain') or name)
        is_valid, error = validate_subdomain_format(subdomain)
        if not is_valid:
            raise ValidationError(error)
        if not self.validate_subdomain_uniqueness(subdomain):
            raise ConflictError(DB_ERROR_MESSAGES['23505'])

        status = data.get('status') or 'active'
        if status not in TENANT_STATUSES:
            raise ValidationError(f'Invalid status: {status}')
        plan = data.get('plan') or 'basic'
        if plan not in TENANT_PLANS:
            raise ValidationError(f'Invalid plan: {plan}')

        admin_fields = self._admin_fields(data)
        max_users = _parse_limit(data, 'max_users', 10)
        max_connections = _parse_limit(data, 'max_connections', 5)

        tenant_row = {
            'name': name,
            'subdomain': subdomain,
            'status': status,
            'proprietor_name': data.get('proprietor_name'),
            'phone_number': data.get('phone_number'),
            'address': data.get('address'),
            'gst_number': data.get('gst_number'),
            'plan': plan,
            'max_users': max_users,
            'max_connections': max_connections,
            'settings': data.get('settings') or {'branding': {}, 'features': {}},
            'created_by': created_by,
        }

        try:
            result = self.supabase.table('tenants').insert(tenant_row).execute()
        except APIError as e:
            logger.error(f"❌ Error creating tenant {subdomain}: {e.message}")
            _raise_for_api_error(e, 'Failed to create tenant')

        tenant = result.data[0]
        logger.info(f"🏢 Tenant created: {tenant['name']} ({tenant['subdomain']})")

        if admin_fields:
            try:
                tenant['company_admin'] = self.create_company_admin(tenant['id'], **admin_fields)
            except Exception:
                logger.error(f"❌ Company admin creation failed, removing tenant {subdomain}")
                self.supabase.table('tenants').delete().eq('id', tenant['id']).execute()
                raise

        return tenant

    def _admin_fields(self, data):
        employee_id = (data.get('admin_employee_id') or '').strip()
        password = data.get('admin_password') or ''
        if not employee_id and not password:
            return None
        if not employee_id or not password:
            raise ValidationError('Both admin employee ID and admin password are required')
        if self.auth_manager is not None:
            is_valid, message = self.auth_manager.validate_password_strength(password)
            if not is_valid:
                raise ValidationError(message)
        return {
            'employee_id': employee_id,
            'password': password,
            'name': (data.get('admin_name') or '').strip() or employee_id,
            'email': (data.get('admin_email') or '').strip() or None,
        }

    def update_tenant(self, tenant_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        self.get_tenant(tenant_id)

        update_data = {key: updates[key] for key in UPDATABLE_FIELDS if key in updates}
        if not update_data:
            raise ValidationError('No valid fields to update')

        if 'name' in update_data and not (update_data['name'] or '').strip():
            raise ValidationError('Tenant name is required')

        if 'subdomain' in update_data:
            subdomain = (update_data['subdomain'] or '').lower().strip()
            is_valid, error = validate_subdomain_format(subdomain)
            if not is_valid:
                raise ValidationError(error)
            if not self.validate_subdomain_uniqueness(subdomain, exclude_tenant_id=tenant_id):
                raise ConflictError(DB_ERROR_MESSAGES['23505'])
            update_data['subdomain'] = subdomain

        if 'status' in update_data and update_data['status'] not in TENANT_STATUSES:
            raise ValidationError(f"Invalid status: {update_data['status']}")
        if 'plan' in update_data and update_data['plan'] not in TENANT_PLANS:
            raise ValidationError(f"Invalid plan: {update_data['plan']}")
        for key, default in (('max_users', 10), ('max_connections', 5)):
            if key in update_data:
                update_data[key] = _parse_limit(update_data, key, default)

        update_data['updated_at'] = get_ist_timestamp()

        try:
            result = self.supabase.table('tenants').update(update_data).eq('id', tenant_id).execute()
        except APIError as e:
            logger.error(f"❌ Error updating tenant {tenant_id}: {e.message}")
            _raise_for_api_error(e, 'Failed to update tenant')

        if not result.data:
            raise DatabaseError('Failed to update tenant')
        return result.data[0]

    def set_tenant_status(self, tenant_id: str, status: str) -> Dict[str, Any]:
        return self.update_tenant(tenant_id, {'status': status})

    def delete_tenant(self, tenant_id: str) -> bool:
        self.get_tenant(tenant_id)
        try:
            self.supabase.table('tenants').delete().eq('id', tenant_id).execute()
        except APIError as e:
            logger.error(f"❌ Error deleting tenant {tenant_id}: {e.message}")
            raise DatabaseError('Failed to delete tenant')
        logger.info(f"🗑️ Tenant deleted: {tenant_id}")
        return True

    def resolve_from_host(self, hostname: str) -> Optional[Dict[str, Any]]:
        subdomain = extract_subdomain(hostname)
        return self.get_tenant_by_subdomain(subdomain) if subdomain else None

    # ------------------------------------------------------------------
    # Company admins
    # ------------------------------------------------------------------

    def list_company_admins(self, tenant_id: str) -> List[Dict[str, Any]]:
        result = self.supabase.table('company_admins') \
            .select('id, tenant_id, employee_id, name, email, status, created_at') \
            .eq('tenant_id', tenant_id).order('created_at').execute()
        return result.data or []

    def create_company_admin(self, tenant_id: str, employee_id: str, password: str,
                             name: Optional[str] = None, email: Optional[str] = None) -> Dict[str, Any]:
        if self.auth_manager is None:
            raise RuntimeError('AuthManager is required to create company admins')

        employee_id = (employee_id or '').strip()
        if not employee_id:
            raise ValidationError('Employee ID is required')

        is_valid, message = self.auth_manager.validate_password_strength(password)
        if not is_valid:
            raise ValidationError(message)

        existing = self.supabase.table('company_admins').select('id') \
            .eq('tenant_id', tenant_id).eq('employee_id', employee_id).limit(1).execute()
        clash = self.supabase.table('employees').select('id') \
            .eq('tenant_id', tenant_id).eq('emp_id', employee_id).limit(1).execute()
        if existing.data or clash.data:
            raise ConflictError(f'Employee ID {employee_id} already exists in this company')

        result = self.supabase.table('company_admins').insert({
            'tenant_id': tenant_id,
            'employee_id': employee_id,
            'name': name or employee_id,
            'email': email,
            'password_hash': self.auth_manager.hash_password(password),
            'status': 'active',
        }).execute()

        admin = dict(result.data[0])
        admin.pop('password_hash', None)
        logger.info(f"👤 Company admin {employee_id} created for tenant {tenant_id}")
        return admin
