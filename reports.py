"""
Dashboard metrics and performance reports.

Rows are pulled with the batch fetcher and aggregated with pandas.
"""

import logging
from typing import Any, Dict, List, Optional

import pandas as pd

from db import fetch_all
from utils import filter_by_date, get_ist_date, to_number

logger = logging.getLogger(__name__)

CONNECTED_CALL_STATUSES = ('connected', 'ptp', 'paid', 'callback', 'refused_to_pay', 'dispute')
SUCCESS_CALL_STATUSES = ('ptp', 'paid')
OPEN_STATUSES = ('new', 'assigned', 'in_progress')


def dpd_bucket(dpd) -> str:
    if dpd is None or pd.isna(dpd):
        return 'Unknown'
    dpd = int(dpd)
    if dpd <= 30:
        return '0-30'
    if dpd <= 60:
        return '31-60'
    if dpd <= 90:
        return '61-90'
    return '90+'


def _frame(rows: List[Dict[str, Any]], columns: List[str]) -> pd.DataFrame:
    df = pd.DataFrame(rows)
    for column in columns:
        if column not in df.columns:
            df[column] = None
    return df


def _status_counts(df: pd.DataFrame) -> Dict[str, int]:
    counts = {status: 0 for status in ('new', 'assigned', 'in_progress', 'resolved', 'closed')}
    if not df.empty:
        for status, count in df['status'].value_counts().items():
            counts[status] = int(count)
    return counts


class ReportService:
    def __init__(self, supabase_client):
        self.supabase = supabase_client

    def _cases(self, tenant_id: str, **filters) -> pd.DataFrame:
        def query():
            q = self.supabase.table('customer_cases') \
                .select('id, team_id, telecaller_id, product_name, status, dpd, outstanding_amount, created_at') \
                .eq('tenant_id', tenant_id)
            for key, value in filters.items():
                if isinstance(value, (list, tuple)):
                    q = q.in_(key, list(value))
                elif value is not None:
                    q = q.eq(key, value)
            return q
        return _frame(fetch_all(query), ['id', 'team_id', 'telecaller_id', 'product_name', 'status',
                                         'dpd', 'outstanding_amount', 'created_at'])

    def _call_logs(self, tenant_id: str, employee_ids: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        def query():
            q = self.supabase.table('case_call_logs') \
                .select('id, case_id, employee_id, call_status, ptp_date, amount_collected, created_at') \
                .eq('tenant_id', tenant_id)
            if employee_ids is not None:
                q = q.in_('employee_id', employee_ids)
            return q
        return fetch_all(query)

    def company_overview(self, tenant_id: str) -> Dict[str, Any]:
        employees = _frame(
            fetch_all(lambda: self.supabase.table('employees').select('id, role, status').eq('tenant_id', tenant_id)),
            ['id', 'role', 'status'],
        )
        active = employees[employees['status'] == 'active']
        teams = fetch_all(lambda: self.supabase.table('teams').select('id, status').eq('tenant_id', tenant_id))
        products = fetch_all(
            lambda: self.supabase.table('column_configurations').select('product_name').eq('tenant_id', tenant_id)
        )
        cases = self._cases(tenant_id)

        outstanding = 0.0
        if not cases.empty:
            outstanding = float(cases['outstanding_amount'].map(to_number).fillna(0).sum())

        return {
            'total_employees': int(len(active)),
            'team_incharges': int((active['role'] == 'TeamIncharge').sum()),
            'telecallers': int((active['role'] == 'Telecaller').sum()),
            'inactive_employees': int(len(employees) - len(active)),
            'total_teams': len(teams),
            'active_teams': sum(1 for t in teams if t.get('status') == 'active'),
            'products': len({p['product_name'] for p in products if p.get('product_name')}),
            'total_cases': int(len(cases)),
            'cases_by_status': _status_counts(cases),
            'unassigned_cases': int(cases['telecaller_id'].isna().sum()) if not cases.empty else 0,
            'total_outstanding': round(outstanding, 2),
        }

    def team_incharge_metrics(self, tenant_id: str, incharge_id: Optional[str] = None) -> Dict[str, int]:
        """Dashboard cards for a TeamIncharge; all teams of the tenant when ``incharge_id`` is None."""
        def team_query():
            q = self.supabase.table('teams').select('id').eq('tenant_id', tenant_id)
            if incharge_id:
                q = q.eq('team_incharge_id', incharge_id)
            return q
        team_ids = [t['id'] for t in fetch_all(team_query)]

        if not team_ids:
            return {'total_teams': 0, 'total_telecallers': 0, 'total_cases': 0,
                    'active_cases': 0, 'resolved_cases': 0, 'pending_cases': 0}

        telecallers = fetch_all(
            lambda: self.supabase.table('employees').select('id').eq('tenant_id', tenant_id)
            .eq('role', 'Telecaller').in_('team_id', team_ids)
        )
        counts = _status_counts(self._cases(tenant_id, team_id=team_ids))

        return {
            'total_teams': len(team_ids),
            'total_telecallers': len(telecallers),
            'total_cases': sum(counts.values()),
            'active_cases': counts['assigned'] + counts['in_progress'],
            'resolved_cases': counts['resolved'] + counts['closed'],
            'pending_cases': counts['new'],
        }

    def telecaller_metrics(self, tenant_id: str, telecaller_id: str) -> Dict[str, Any]:
        cases = self._cases(tenant_id, telecaller_id=telecaller_id)
        counts = _status_counts(cases)

        today = get_ist_date()
        logs = self._call_logs(tenant_id, [telecaller_id])
        todays_logs = [log for log in logs if str(log.get('created_at') or '').startswith(today)]

        return {
            'assigned_cases': int(len(cases)),
            'calls_today': len(todays_logs),
            'recovery_today': round(sum(to_number(log.get('amount_collected')) or 0 for log in todays_logs), 2),
            'pending_followups': counts['in_progress'],
            'ptp_today': sum(1 for log in logs if log.get('ptp_date') == today),
            'status_overview': counts,
            'dpd_buckets': (
                {str(k): int(v) for k, v in cases['dpd'].map(dpd_bucket).value_counts().items()}
                if not cases.empty else {}
            ),
        }

    def telecaller_performance(self, tenant_id: str, team_id: Optional[str] = None,
                               date_filter: str = 'all') -> List[Dict[str, Any]]:
        """Per-telecaller call performance: name, calls, connected, success and success rate."""
        def telecaller_query():
            q = self.supabase.table('employees').select('id, name, emp_id') \
                .eq('tenant_id', tenant_id).eq('role', 'Telecaller')
            if team_id:
                q = q.eq('team_id', team_id)
            return q.order('name')
        telecallers = fetch_all(telecaller_query)
        if not telecallers:
            return []

        logs = filter_by_date(self._call_logs(tenant_id, [t['id'] for t in telecallers]), date_filter)
        df = _frame(logs, ['employee_id', 'call_status', 'amount_collected'])

        performance = []
        for telecaller in telecallers:
            own = df[df['employee_id'] == telecaller['id']] if not df.empty else df
            calls = int(len(own))
            connected = int(own['call_status'].isin(CONNECTED_CALL_STATUSES).sum()) if calls else 0
            success = int(own['call_status'].isin(SUCCESS_CALL_STATUSES).sum()) if calls else 0
            collected = float(own['amount_collected'].map(to_number).fillna(0).sum()) if calls else 0.0
            rate = (success / calls * 100) if calls else 0.0
            performance.append({
                'telecaller_id': telecaller['id'],
                'name': telecaller['name'],
                'emp_id': telecaller['emp_id'],
                'calls': calls,
                'connected': connected,
                'success': success,
                'amount_collected': round(collected, 2),
                'rate': f"{rate:.1f}%",
            })
        return performance
