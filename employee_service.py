import logging
import re
from typing import Any, Dict, List, Optional

from db import fetch_all, first_row
from exceptions import ConflictError, NotFoundError, ValidationError
from utils import generate_temp_password, get_ist_timestamp

logger = logging.getLogger(__name__)

EMPLOYEE_ROLES = ('TeamIncharge', 'Telecaller')
EMPLOYEE_STATUSES = ('active', 'inactive')
EMPLOYEE_FIELDS = 'id, tenant_id, name, mobile, emp_id, role, status, team_id, created_by, created_at, updated_at'

OPEN_CASE_STATUSES = ['assigned', 'in_progress']

# Header aliases accepted by the employee bulk upload
UPLOAD_HEADERS = {
    'name': 'name',
    'employee name': 'name',
    'mobile': 'mobile',
    'mobile no': 'mobile',
    'phone': 'mobile',
    'empid': 'emp_id',
    'emp id': 'emp_id',
    'emp_id': 'emp_id',
    'employee id': 'emp_id',
    'role': 'role',
    'password': 'password',
}


def normalize_mobile(mobile) -> str:
    return re.sub(r'\D', '', str(mobile or ''))


class EmployeeService:
    def __init__(self, supabase_client, auth_manager):
        self.supabase = supabase_client
        self.auth_manager = auth_manager

    def list_employees(self, tenant_id: str, role: Optional[str] = None,
                       status: Optional[str] = None) -> List[Dict[str, Any]]:
        def query():
            q = self.supabase.table('employees').select(EMPLOYEE_FIELDS).eq('tenant_id', tenant_id)
            if role:
                q = q.eq('role', role)
            if status:
                q = q.eq('status', status)
            return q.order('created_at', desc=True)

        return fetch_all(query)

    def get_employee(self, tenant_id: str, employee_id: str) -> Dict[str, Any]:
        employee = first_row(
            self.supabase.table('employees').select(EMPLOYEE_FIELDS)
            .eq('tenant_id', tenant_id).eq('id', employee_id).limit(1).execute()
        )
        if not employee:
            raise NotFoundError('Employee not found')
        return employee

    def _emp_id_taken(self, tenant_id: str, emp_id: str, exclude_id: Optional[str] = None) -> bool:
        query = self.supabase.table('employees').select('id').eq('tenant_id', tenant_id).eq('emp_id', emp_id)
        if exclude_id:
            query = query.neq('id', exclude_id)
        if query.limit(1).execute().data:
            return True
        admins = self.supabase.table('company_admins').select('id') \
            .eq('tenant_id', tenant_id).eq('employee_id', emp_id).limit(1).execute()
        return bool(admins.data)

    def _check_user_limit(self, tenant_id: str, adding: int = 1):
        tenant = first_row(self.supabase.table('tenants').select('id, max_users').eq('id', tenant_id).limit(1).execute())
        max_users = tenant.get('max_users') if tenant else None
        if not max_users:
            return
        current = len(fetch_all(lambda: self.supabase.table('employees').select('id').eq('tenant_id', tenant_id)))
        if current + adding > max_users:
            raise ValidationError(f'User limit reached. Your plan allows {max_users} users.')

    def _validate(self, data: Dict[str, Any], require_password: bool = True) -> Dict[str, Any]:
        name = (data.get('name') or '').strip()
        emp_id = str(data.get('emp_id') or '').strip()
        mobile = normalize_mobile(data.get('mobile'))
        role = (data.get('role') or '').strip()
        password = data.get('password') or ''

        if not name:
            raise ValidationError('Name is required')
        if not emp_id:
            raise ValidationError('Employee ID is required')
        if len(mobile) != 10:
            raise ValidationError('Mobile number must be 10 digits')
        if role not in EMPLOYEE_ROLES:
            raise ValidationError(f'Role must be one of: {", ".join(EMPLOYEE_ROLES)}')
        if require_password:
            is_valid, message = self.auth_manager.validate_password_strength(password)
            if not is_valid:
                raise ValidationError(message)

        return {'name': name, 'emp_id': emp_id, 'mobile': mobile, 'role': role, 'password': password}

    def create_employee(self, tenant_id: str, created_by: Optional[str], data: Dict[str, Any]) -> Dict[str, Any]:
        cleaned = self._validate(data)

        if self._emp_id_taken(tenant_id, cleaned['emp_id']):
            raise ConflictError(f"Employee ID {cleaned['emp_id']} already exists")
        self._check_user_limit(tenant_id)

        status = data.get('status') or 'active'
        if status not in EMPLOYEE_STATUSES:
            raise ValidationError(f'Invalid status: {status}')

        result = self.supabase.table('employees').insert({
            'tenant_id': tenant_id,
            'name': cleaned['name'],
            'mobile': cleaned['mobile'],
            'emp_id': cleaned['emp_id'],
            'role': cleaned['role'],
            'status': status,
            'password_hash': self.auth_manager.hash_password(cleaned['password']),
            'created_by': created_by,
        }).execute()

        employee = dict(result.data[0])
        employee.pop('password_hash', None)
        logger.info(f"👤 Employee created: {employee['emp_id']} ({employee['role']}) in tenant {tenant_id}")
        return employee

    def update_employee(self, tenant_id: str, employee_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        current = self.get_employee(tenant_id, employee_id)
        update_data = {}

        if 'name' in updates:
            name = (updates.get('name') or '').strip()
            if not name:
                raise ValidationError('Name is required')
            update_data['name'] = name

        if 'mobile' in updates:
            mobile = normalize_mobile(updates.get('mobile'))
            if len(mobile) != 10:
                raise ValidationError('Mobile number must be 10 digits')
            update_data['mobile'] = mobile

        if 'role' in updates:
            if updates['role'] not in EMPLOYEE_ROLES:
                raise ValidationError(f'Role must be one of: {", ".join(EMPLOYEE_ROLES)}')
            update_data['role'] = updates['role']

        if 'status' in updates:
            if updates['status'] not in EMPLOYEE_STATUSES:
                raise ValidationError(f"Invalid status: {updates['status']}")
            update_data['status'] = updates['status']

        if 'emp_id' in updates:
            emp_id = str(updates.get('emp_id') or '').strip()
            if not emp_id:
                raise ValidationError('Employee ID is required')
            if emp_id != current['emp_id'] and self._emp_id_taken(tenant_id, emp_id, exclude_id=employee_id):
                raise ConflictError(f'Employee ID {emp_id} already exists')
            update_data['emp_id'] = emp_id

        if updates.get('password'):
            is_valid, message = self.auth_manager.validate_password_strength(updates['password'])
            if not is_valid:
                raise ValidationError(message)
            update_data['password_hash'] = self.auth_manager.hash_password(updates['password'])

        if not update_data:
            raise ValidationError('No valid fields to update')

        update_data['updated_at'] = get_ist_timestamp()
        result = self.supabase.table('employees').update(update_data) \
            .eq('tenant_id', tenant_id).eq('id', employee_id).execute()

        # A telecaller leaving the role or going inactive gives up open cases
        became_unavailable = (
            current['role'] == 'Telecaller'
            and (update_data.get('role', 'Telecaller') != 'Telecaller' or update_data.get('status') == 'inactive')
        )
        if became_unavailable:
            self._release_cases(tenant_id, employee_id)

        employee = dict(result.data[0])
        employee.pop('password_hash', None)
        return employee

    def _release_cases(self, tenant_id: str, telecaller_id: str) -> int:
        now = get_ist_timestamp()
        released = self.supabase.table('customer_cases').update({
            'telecaller_id': None,
            'status': 'new',
            'updated_at': now,
        }).eq('tenant_id', tenant_id).eq('telecaller_id', telecaller_id).in_('status', OPEN_CASE_STATUSES).execute()
        count = len(released.data or [])
        if count:
            logger.info(f"🔄 Released {count} open case(s) from telecaller {telecaller_id}")
        return count

    def delete_employee(self, tenant_id: str, employee_id: str) -> bool:
        employee = self.get_employee(tenant_id, employee_id)

        if employee['role'] == 'TeamIncharge':
            teams = self.supabase.table('teams').select('id, name') \
                .eq('tenant_id', tenant_id).eq('team_incharge_id', employee_id).execute()
            if teams.data:
                raise ConflictError(
                    f"{employee['name']} is incharge of {len(teams.data)} team(s). Reassign the team(s) first."
                )
        else:
            self._release_cases(tenant_id, employee_id)
            self.supabase.table('customer_cases').update({'telecaller_id': None}) \
                .eq('tenant_id', tenant_id).eq('telecaller_id', employee_id).execute()

        self.supabase.table('employees').delete().eq('tenant_id', tenant_id).eq('id', employee_id).execute()
        logger.info(f"🗑️ Employee deleted: {employee['emp_id']}")
        return True

    def bulk_delete_employees(self, tenant_id: str, employee_ids: List[str]) -> Dict[str, Any]:
        result = {'successful': 0, 'failed': 0, 'errors': []}
        for employee_id in employee_ids:
            try:
                self.delete_employee(tenant_id, employee_id)
                result['successful'] += 1
            except Exception as e:
                result['failed'] += 1
                result['errors'].append({'id': employee_id, 'error': str(e)})
                logger.warning(f"⚠️ Could not delete employee {employee_id}: {e}")
        return result

    def reset_employee_password(self, tenant_id: str, employee_id: str) -> str:
        self.get_employee(tenant_id, employee_id)
        temp_password = generate_temp_password()
        self.supabase.table('employees').update({
            'password_hash': self.auth_manager.hash_password(temp_password),
            'updated_at': get_ist_timestamp(),
        }).eq('tenant_id', tenant_id).eq('id', employee_id).execute()
        logger.info(f"🔑 Password reset for employee {employee_id}")
        return temp_password

    def bulk_upload_employees(self, tenant_id: str, created_by: Optional[str],
                              rows: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Create employees from uploaded sheet rows.

        Rows without a Password column get a generated temporary password,
        returned in ``created`` so the admin can hand it over.
        """
        result = {'successful': 0, 'failed': 0, 'errors': [], 'created': []}

        for index, raw in enumerate(rows, start=2):
            data = {}
            for key, value in raw.items():
                field = UPLOAD_HEADERS.get(str(key).strip().lower())
                if field:
                    data[field] = str(value).strip() if value is not None else ''

            generated = None
            if not data.get('password'):
                generated = generate_temp_password()
                data['password'] = generated

            try:
                employee = self.create_employee(tenant_id, created_by, data)
            except Exception as e:
                result['failed'] += 1
                safe_data = {k: v for k, v in data.items() if k != 'password'}
                result['errors'].append({'row': index, 'error': str(e), 'data': safe_data})
                continue

            result['successful'] += 1
            created = {'id': employee['id'], 'emp_id': employee['emp_id'], 'name': employee['name']}
            if generated:
                created['temporary_password'] = generated
            result['created'].append(created)

        logger.info(f"📥 Employee upload for tenant {tenant_id}: "
                    f"{result['successful']} created, {result['failed']} failed")
        return result
