"""
Customer case storage, call logs and case queries.

Uploaded rows keep every configured column in ``case_data``; the well-known
columns are also copied to their own snake_case fields so they can be
filtered and sorted by the database.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from db import fetch_all, first_row
from exceptions import NotFoundError, PermissionDenied, ValidationError
from utils import get_ist_timestamp, is_valid_date, to_number

logger = logging.getLogger(__name__)

CASE_STATUSES = ('new', 'assigned', 'in_progress', 'resolved', 'closed')
TELECALLER_STATUSES = ('in_progress', 'resolved', 'closed')
CLOSED_STATUSES = ('resolved', 'closed')
PRIORITIES = ('low', 'medium', 'high', 'urgent')

CALL_STATUSES = (
    'connected', 'not_connected', 'busy', 'switched_off', 'wrong_number',
    'callback', 'ptp', 'paid', 'refused_to_pay', 'dispute',
)

PROMOTED_FIELDS = {
    'customerName': 'customer_name',
    'loanId': 'loan_id',
    'mobileNo': 'mobile_no',
    'loanAmount': 'loan_amount',
    'loanType': 'loan_type',
    'outstandingAmount': 'outstanding_amount',
    'posAmount': 'pos_amount',
    'emiAmount': 'emi_amount',
    'pendingDues': 'pending_dues',
    'dpd': 'dpd',
    'branchName': 'branch_name',
    'address': 'address',
    'sanctionDate': 'sanction_date',
    'lastPaidDate': 'last_paid_date',
    'lastPaidAmount': 'last_paid_amount',
    'paymentLink': 'payment_link',
    'remarks': 'remarks',
}

UPDATABLE_FIELDS = tuple(PROMOTED_FIELDS.values()) + (
    'case_data', 'status', 'priority', 'product_name', 'team_id',
)

SEARCH_FIELDS = ('customer_name', 'loan_id', 'mobile_no')


def parse_dpd(value) -> Optional[int]:
    """Leading integer of a DPD cell: '45 days' -> 45, 'abc' -> None."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)
    match = re.match(r'\s*([+-]?\d+)', str(value))
    return int(match.group(1)) if match else None


def build_case_row(tenant_id: str, case_data: Dict[str, Any], team_id: Optional[str] = None,
                   product_name: Optional[str] = None, uploaded_by: Optional[str] = None) -> Dict[str, Any]:
    """Shape an uploaded row into a ``customer_cases`` record."""
    row = {
        'tenant_id': tenant_id,
        'team_id': team_id,
        'product_name': product_name,
        'case_data': dict(case_data),
        'uploaded_by': uploaded_by,
        'priority': 'medium',
    }
    for source, target in PROMOTED_FIELDS.items():
        if source in case_data and case_data[source] not in (None, ''):
            row[target] = parse_dpd(case_data[source]) if source == 'dpd' else str(case_data[source]).strip()
    return row


class CustomerCaseService:
    def __init__(self, supabase_client):
        self.supabase = supabase_client

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _employee_map(self, tenant_id: str) -> Dict[str, Dict[str, Any]]:
        employees = fetch_all(lambda: self.supabase.table('employees').select('id, name, emp_id').eq('tenant_id', tenant_id))
        return {e['id']: e for e in employees}

    def _attach_telecallers(self, tenant_id: str, cases: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not cases:
            return cases
        employees = self._employee_map(tenant_id)
        for case in cases:
            case['telecaller'] = employees.get(case.get('telecaller_id'))
        return cases

    # ------------------------------------------------------------------
    # Case reads
    # ------------------------------------------------------------------

    def find_active_telecaller(self, tenant_id: str, emp_id: str) -> Optional[Dict[str, Any]]:
        return first_row(
            self.supabase.table('employees').select('id, name, emp_id')
            .eq('tenant_id', tenant_id).eq('emp_id', emp_id).eq('role', 'Telecaller').eq('status', 'active')
            .limit(1).execute()
        )

    def get_cases_by_telecaller(self, tenant_id: str, emp_id: str) -> List[Dict[str, Any]]:
        """Cases of the active telecaller with this EMPID, empty when there is none."""
        try:
            telecaller = self.find_active_telecaller(tenant_id, emp_id)
            if not telecaller:
                logger.warning(f"⚠️ No active telecaller found with EMPID: {emp_id}")
                return []
            return self.get_cases_for_telecaller_id(tenant_id, telecaller['id'])
        except Exception as e:
            logger.error(f"❌ Error fetching cases for telecaller {emp_id}: {e}")
            return []

    def get_cases_for_telecaller_id(self, tenant_id: str, telecaller_id: str) -> List[Dict[str, Any]]:
        return fetch_all(
            lambda: self.supabase.table('customer_cases').select('*')
            .eq('tenant_id', tenant_id).eq('telecaller_id', telecaller_id).order('created_at', desc=True)
        )

    def get_all_cases(self, tenant_id: str) -> List[Dict[str, Any]]:
        return fetch_all(
            lambda: self.supabase.table('customer_cases').select('*')
            .eq('tenant_id', tenant_id).order('created_at', desc=True)
        )

    def get_case(self, tenant_id: str, case_id: str) -> Dict[str, Any]:
        case = first_row(
            self.supabase.table('customer_cases').select('*')
            .eq('tenant_id', tenant_id).eq('id', case_id).limit(1).execute()
        )
        if not case:
            raise NotFoundError('Case not found')
        return case

    def get_team_cases(self, tenant_id: str, team_id: str) -> List[Dict[str, Any]]:
        cases = fetch_all(
            lambda: self.supabase.table('customer_cases').select('*')
            .eq('tenant_id', tenant_id).eq('team_id', team_id).order('created_at', desc=True)
        )
        return self._attach_telecallers(tenant_id, cases)

    def get_unassigned_team_cases(self, tenant_id: str, team_id: str) -> List[Dict[str, Any]]:
        return fetch_all(
            lambda: self.supabase.table('customer_cases').select('*')
            .eq('tenant_id', tenant_id).eq('team_id', team_id).is_('telecaller_id', 'null')
            .order('created_at', desc=True)
        )

    def get_cases_by_filters(self, tenant_id: str, team_id: Optional[str],
                             filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Team cases narrowed by product, telecaller, status, creation date range and search text."""
        product = (filters.get('product') or '').strip()
        telecaller = (filters.get('telecaller') or '').strip()
        status = (filters.get('status') or '').strip()
        date_from = (filters.get('date_from') or '').strip()
        date_to = (filters.get('date_to') or '').strip()
        search = (filters.get('search') or '').strip().lower()

        if date_from and not is_valid_date(date_from):
            raise ValidationError('date_from must be YYYY-MM-DD')
        if date_to and not is_valid_date(date_to):
            raise ValidationError('date_to must be YYYY-MM-DD')

        def query():
            q = self.supabase.table('customer_cases').select('*').eq('tenant_id', tenant_id)
            if team_id:
                q = q.eq('team_id', team_id)
            if product:
                q = q.eq('product_name', product)
            if telecaller == 'unassigned':
                q = q.is_('telecaller_id', 'null')
            elif telecaller:
                q = q.eq('telecaller_id', telecaller)
            if status:
                q = q.eq('status', status)
            if date_from:
                q = q.gte('created_at', date_from)
            if date_to:
                q = q.lte('created_at', date_to + 'T23:59:59.999Z')
            return q.order('created_at', desc=True)

        cases = fetch_all(query)

        if search:
            cases = [
                c for c in cases
                if any(search in str(c.get(field) or '').lower() for field in SEARCH_FIELDS)
            ]

        return self._attach_telecallers(tenant_id, cases)

    # ------------------------------------------------------------------
    # Case writes
    # ------------------------------------------------------------------

    def create_case(self, tenant_id: str, data: Dict[str, Any], uploaded_by: Optional[str] = None) -> Dict[str, Any]:
        case_data = data.get('case_data') or {}
        if not case_data.get('customerName') or not case_data.get('loanId'):
            raise ValidationError('Customer Name and Loan ID are required')

        row = build_case_row(tenant_id, case_data, data.get('team_id'), data.get('product_name'), uploaded_by)
        row['status'] = 'new'
        if data.get('priority'):
            if data['priority'] not in PRIORITIES:
                raise ValidationError(f"Invalid priority: {data['priority']}")
            row['priority'] = data['priority']

        result = self.supabase.table('customer_cases').insert(row).execute()
        return result.data[0]

    def update_case(self, tenant_id: str, case_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        self.get_case(tenant_id, case_id)
        update_data = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS}
        if not update_data:
            raise ValidationError('No valid fields to update')
        if 'status' in update_data and update_data['status'] not in CASE_STATUSES:
            raise ValidationError(f"Invalid status: {update_data['status']}")
        if 'priority' in update_data and update_data['priority'] not in PRIORITIES:
            raise ValidationError(f"Invalid priority: {update_data['priority']}")
        if 'dpd' in update_data:
            update_data['dpd'] = parse_dpd(update_data['dpd'])

        update_data['updated_at'] = get_ist_timestamp()
        result = self.supabase.table('customer_cases').update(update_data) \
            .eq('tenant_id', tenant_id).eq('id', case_id).execute()
        return result.data[0]

    def delete_case(self, tenant_id: str, case_id: str) -> None:
        self.get_case(tenant_id, case_id)
        self.supabase.table('case_call_logs').delete().eq('tenant_id', tenant_id).eq('case_id', case_id).execute()
        self.supabase.table('customer_cases').delete().eq('tenant_id', tenant_id).eq('id', case_id).execute()
        logger.info(f"🗑️ Case deleted: {case_id}")

    def update_case_status(self, tenant_id: str, case_id: str, telecaller_id: str,
                           status: str, remarks: Optional[str] = None) -> Dict[str, Any]:
        """Status change made by the telecaller working the case."""
        case = self.get_case(tenant_id, case_id)
        if case.get('telecaller_id') != telecaller_id:
            raise PermissionDenied('This case is not assigned to you')
        if status not in TELECALLER_STATUSES:
            raise ValidationError(f'Status must be one of: {", ".join(TELECALLER_STATUSES)}')

        update_data = {'status': status, 'updated_at': get_ist_timestamp()}
        if remarks is not None:
            update_data['remarks'] = remarks
        result = self.supabase.table('customer_cases').update(update_data) \
            .eq('tenant_id', tenant_id).eq('id', case_id).execute()
        return result.data[0]

    # ------------------------------------------------------------------
    # Call logs
    # ------------------------------------------------------------------

    def add_call_log(self, tenant_id: str, case_id: str, employee_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        case = self.get_case(tenant_id, case_id)
        if case.get('telecaller_id') != employee_id:
            raise PermissionDenied('This case is not assigned to you')
        if case.get('status') in CLOSED_STATUSES:
            raise ValidationError('Calls cannot be logged on a closed case')

        call_status = (data.get('call_status') or '').strip()
        if call_status not in CALL_STATUSES:
            raise ValidationError(f'call_status must be one of: {", ".join(CALL_STATUSES)}')

        ptp_date = (data.get('ptp_date') or '').strip() or None
        if call_status == 'ptp' and not ptp_date:
            raise ValidationError('ptp_date is required for a promise to pay')
        if ptp_date and not is_valid_date(ptp_date):
            raise ValidationError('ptp_date must be YYYY-MM-DD')

        amount_collected = None
        if data.get('amount_collected') not in (None, ''):
            amount_collected = to_number(data['amount_collected'])
            if amount_collected is None or amount_collected < 0:
                raise ValidationError('amount_collected must be a non-negative number')

        call_duration = None
        if data.get('call_duration') not in (None, ''):
            try:
                call_duration = int(data['call_duration'])
            except (TypeError, ValueError):
                raise ValidationError('call_duration must be a whole number of seconds')
            if call_duration < 0:
                raise ValidationError('call_duration must be a whole number of seconds')

        log = {
            'tenant_id': tenant_id,
            'case_id': case_id,
            'employee_id': employee_id,
            'call_status': call_status,
            'ptp_date': ptp_date,
            'call_notes': data.get('call_notes'),
            'call_duration': call_duration,
            'call_result': data.get('call_result'),
            'amount_collected': amount_collected,
        }
        result = self.supabase.table('case_call_logs').insert(log).execute()

        if case.get('status') == 'assigned':
            self.supabase.table('customer_cases').update({
                'status': 'in_progress',
                'updated_at': get_ist_timestamp(),
            }).eq('tenant_id', tenant_id).eq('id', case_id).execute()

        logger.info(f"📞 Call logged on case {case_id} by {employee_id}: {call_status}")
        return result.data[0]

    def get_call_logs_by_case(self, tenant_id: str, case_id: str) -> List[Dict[str, Any]]:
        result = self.supabase.table('case_call_logs').select('*') \
            .eq('tenant_id', tenant_id).eq('case_id', case_id).order('created_at', desc=True).execute()
        return result.data or []

    def get_call_logs_by_employee(self, tenant_id: str, employee_id: str) -> List[Dict[str, Any]]:
        return fetch_all(
            lambda: self.supabase.table('case_call_logs').select('*')
            .eq('tenant_id', tenant_id).eq('employee_id', employee_id).order('created_at', desc=True)
        )

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_case_stats_by_employee(self, tenant_id: str, employee_id: str) -> Dict[str, int]:
        cases = self.get_cases_for_telecaller_id(tenant_id, employee_id)
        return {
            'total_cases': len(cases),
            'pending_cases': sum(1 for c in cases if c.get('status') in ('new', 'assigned')),
            'in_progress_cases': sum(1 for c in cases if c.get('status') == 'in_progress'),
            'resolved_cases': sum(1 for c in cases if c.get('status') in CLOSED_STATUSES),
            'high_priority_cases': sum(1 for c in cases if c.get('priority') in ('high', 'urgent')),
        }

    def get_telecaller_case_stats(self, tenant_id: str, telecaller_id: str) -> Dict[str, int]:
        statuses = [
            row.get('status') for row in fetch_all(
                lambda: self.supabase.table('customer_cases').select('status')
                .eq('tenant_id', tenant_id).eq('telecaller_id', telecaller_id)
            )
        ]
        return {
            'total': len(statuses),
            'new': statuses.count('new'),
            'assigned': statuses.count('assigned'),
            'in_progress': statuses.count('in_progress'),
            'resolved': statuses.count('resolved'),
            'closed': statuses.count('closed'),
        }
