#!/usr/bin/env python3
"""
Case assignment engine.

Features:
- Auto-assignment of uploaded cases by matching the row's EMPID to an
  active telecaller
- Manual assign / unassign / reassign of single cases and in bulk
- Round-robin fair distribution of a team's unassigned cases
- Portfolio reassignment between telecallers with preview
- Assignment history for every change
"""

import logging
import os
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from db import fetch_all, first_row
from exceptions import NotFoundError, ValidationError
from utils import get_ist_timestamp, to_number

logger = logging.getLogger(__name__)

INSERT_BATCH_SIZE = 100
OPEN_STATUSES = ['assigned', 'in_progress']
CLOSED_STATUSES = ('resolved', 'closed')

DPD_RANGES = {
    '0-30': (0, 30),
    '31-60': (31, 60),
    '61-90': (61, 90),
    '90+': (91, None),
}


@dataclass
class AssignmentHistory:
    """Case assignment history record"""
    tenant_id: str = ""
    case_id: str = ""
    telecaller_id: Optional[str] = None
    previous_telecaller_id: Optional[str] = None
    action: str = 'assigned'
    assignment_method: str = 'manual'
    assigned_by: Optional[str] = None


@dataclass
class ReassignFilters:
    """Which open cases move from one telecaller to another"""
    from_telecaller: str = ""
    to_telecaller: str = ""
    product: str = ""
    dpd_range: str = ""
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReassignFilters':
        def amount(key):
            value = data.get(key)
            if value in (None, ''):
                return None
            number = to_number(value)
            if number is None:
                raise ValidationError(f'{key} must be a number')
            return number

        filters = cls(
            from_telecaller=(data.get('from_telecaller') or '').strip(),
            to_telecaller=(data.get('to_telecaller') or '').strip(),
            product=(data.get('product') or '').strip(),
            dpd_range=(data.get('dpd_range') or '').strip(),
            min_amount=amount('min_amount'),
            max_amount=amount('max_amount'),
        )
        if not filters.from_telecaller:
            raise ValidationError('from_telecaller is required')
        if filters.dpd_range and filters.dpd_range not in DPD_RANGES:
            raise ValidationError(f'dpd_range must be one of: {", ".join(DPD_RANGES)}')
        if filters.min_amount is not None and filters.max_amount is not None \
                and filters.min_amount > filters.max_amount:
            raise ValidationError('min_amount cannot be greater than max_amount')
        return filters


def in_dpd_range(dpd, dpd_range: str) -> bool:
    if not dpd_range:
        return True
    if dpd is None:
        return False
    low, high = DPD_RANGES[dpd_range]
    return dpd >= low and (high is None or dpd <= high)


class CaseAssignmentSystem:
    """Assigns customer cases to telecallers"""

    def __init__(self, supabase_client, debug: Optional[bool] = None):
        self.supabase = supabase_client
        if debug is None:
            debug = os.environ.get('ASSIGNMENT_DEBUG', 'false').lower() == 'true'
        self.debug_mode = debug

    def debug_print(self, message: str, level: str = 'INFO'):
        """Debug print function with configurable levels"""
        if not self.debug_mode and level not in ('ERROR', 'WARNING'):
            return

        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        level_emoji = {
            'INFO': 'ℹ️',
            'SUCCESS': '✅',
            'WARNING': '⚠️',
            'ERROR': '❌',
            'DEBUG': '🔍',
            'SYSTEM': '🤖'
        }

        formatted_message = f"{level_emoji.get(level, 'ℹ️')} [{timestamp}] {message}"

        if level == 'ERROR':
            logger.error(formatted_message)
        elif level == 'WARNING':
            logger.warning(formatted_message)
        else:
            logger.info(formatted_message)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def build_telecaller_map(self, tenant_id: str) -> Dict[str, str]:
        """Map EMPID -> employee id over the tenant's active telecallers."""
        telecallers = fetch_all(
            lambda: self.supabase.table('employees').select('id, emp_id')
            .eq('tenant_id', tenant_id).eq('role', 'Telecaller').eq('status', 'active')
        )
        return {str(t['emp_id']).strip(): t['id'] for t in telecallers if t.get('emp_id')}

    def get_assignable_telecaller(self, tenant_id: str, telecaller_id: str) -> Dict[str, Any]:
        telecaller = first_row(
            self.supabase.table('employees').select('id, name, emp_id, team_id')
            .eq('tenant_id', tenant_id).eq('id', telecaller_id)
            .eq('role', 'Telecaller').eq('status', 'active').limit(1).execute()
        )
        if not telecaller:
            raise ValidationError('Telecaller not found or inactive')
        return telecaller

    def _get_case(self, tenant_id: str, case_id: str) -> Dict[str, Any]:
        case = first_row(
            self.supabase.table('customer_cases').select('id, tenant_id, team_id, telecaller_id, status')
            .eq('tenant_id', tenant_id).eq('id', case_id).limit(1).execute()
        )
        if not case:
            raise NotFoundError(f'Case {case_id} not found')
        return case

    def record_history(self, history: AssignmentHistory):
        """Insert a history row. Failures are logged and do not undo the assignment."""
        try:
            self.supabase.table('case_assignment_history').insert(asdict(history)).execute()
        except Exception as e:
            self.debug_print(f"History insert failed for case {history.case_id}: {e}", 'WARNING')

    def get_assignment_history(self, tenant_id: str, case_id: str) -> List[Dict[str, Any]]:
        result = self.supabase.table('case_assignment_history').select('*') \
            .eq('tenant_id', tenant_id).eq('case_id', case_id).order('created_at', desc=True).execute()
        return result.data or []

    # ------------------------------------------------------------------
    # Upload with auto-assignment
    # ------------------------------------------------------------------

    def create_bulk_cases(self, tenant_id: str, cases: List[Dict[str, Any]],
                          uploaded_by: Optional[str] = None, start_row: int = 1) -> Dict[str, Any]:
        """
        Insert uploaded cases, assigning each one whose EMPID matches an active telecaller.

        Args:
            tenant_id: tenant owning the cases
            cases: rows shaped by ``build_case_row``; ``case_data['EMPID']`` drives assignment
            uploaded_by: id of the uploading user
            start_row: number reported for the first case in ``errors``

        Returns:
            dict: total_uploaded, auto_assigned, unassigned and errors
                  ([{row, error, data}], numbered from ``start_row``)
        """
        result = {'total_uploaded': 0, 'auto_assigned': 0, 'unassigned': 0, 'errors': []}
        if not cases:
            return result

        telecaller_map = self.build_telecaller_map(tenant_id)
        self.debug_print(f"📋 {len(telecaller_map)} active telecaller(s) available for EMPID matching", 'DEBUG')

        now = get_ist_timestamp()
        prepared = []
        for index, case in enumerate(cases, start=start_row):
            row = dict(case, tenant_id=tenant_id)
            empid = str((row.get('case_data') or {}).get('EMPID') or '').strip()
            telecaller_id = telecaller_map.get(empid) if empid else None

            if telecaller_id:
                row.update({
                    'telecaller_id': telecaller_id,
                    'status': 'assigned',
                    'assigned_by': uploaded_by,
                    'assigned_at': now,
                })
            else:
                row.update({'telecaller_id': None, 'status': 'new'})
            prepared.append((index, row))

        total_batches = (len(prepared) + INSERT_BATCH_SIZE - 1) // INSERT_BATCH_SIZE
        for start in range(0, len(prepared), INSERT_BATCH_SIZE):
            batch = prepared[start:start + INSERT_BATCH_SIZE]
            batch_num = start // INSERT_BATCH_SIZE + 1
            try:
                inserted = self.supabase.table('customer_cases').insert([row for _, row in batch]).execute().data or []
                self.debug_print(f"Batch {batch_num}/{total_batches}: Inserted {len(inserted)} cases", 'DEBUG')
            except Exception as e:
                # Retry row by row so each failure is attributed to its row
                self.debug_print(f"Batch {batch_num}/{total_batches} failed ({e}), retrying row by row", 'WARNING')
                inserted = []
                for index, row in batch:
                    try:
                        inserted.extend(self.supabase.table('customer_cases').insert(row).execute().data or [])
                    except Exception as row_error:
                        result['errors'].append({
                            'row': index,
                            'error': getattr(row_error, 'message', None) or str(row_error),
                            'data': row.get('case_data'),
                        })

            for case in inserted:
                result['total_uploaded'] += 1
                if case.get('telecaller_id'):
                    result['auto_assigned'] += 1
                    self.record_history(AssignmentHistory(
                        tenant_id=tenant_id,
                        case_id=case['id'],
                        telecaller_id=case['telecaller_id'],
                        action='assigned',
                        assignment_method='empid_match',
                        assigned_by=uploaded_by,
                    ))
                else:
                    result['unassigned'] += 1

        logger.info(
            f"📥 Upload for tenant {tenant_id}: {result['total_uploaded']} uploaded, "
            f"{result['auto_assigned']} auto-assigned, {result['unassigned']} unassigned, "
            f"{len(result['errors'])} failed"
        )
        return result

    # ------------------------------------------------------------------
    # Manual assignment
    # ------------------------------------------------------------------

    def assign_case(self, tenant_id: str, case_id: str, telecaller_id: Optional[str],
                    assigned_by: Optional[str] = None, method: str = 'manual') -> Dict[str, Any]:
        """Assign a case to a telecaller, or unassign it when ``telecaller_id`` is None."""
        case = self._get_case(tenant_id, case_id)
        previous = case.get('telecaller_id')

        if case.get('status') in CLOSED_STATUSES:
            raise ValidationError(f'Case {case_id} is {case["status"]} and cannot be reassigned')

        now = get_ist_timestamp()
        if telecaller_id:
            self.get_assignable_telecaller(tenant_id, telecaller_id)
            # Re-assigning to the current owner keeps an in_progress case in progress
            keep_status = previous == telecaller_id and case.get('status') == 'in_progress'
            update_data = {
                'telecaller_id': telecaller_id,
                'status': 'in_progress' if keep_status else 'assigned',
                'assigned_by': assigned_by,
                'assigned_at': now,
                'updated_at': now,
            }
            action = 'reassigned' if previous and previous != telecaller_id else 'assigned'
        else:
            update_data = {
                'telecaller_id': None,
                'status': 'new',
                'assigned_by': None,
                'assigned_at': None,
                'updated_at': now,
            }
            action = 'unassigned'

        result = self.supabase.table('customer_cases').update(update_data) \
            .eq('tenant_id', tenant_id).eq('id', case_id).execute()
        if not result.data:
            raise NotFoundError(f'Case {case_id} not found')

        self.record_history(AssignmentHistory(
            tenant_id=tenant_id,
            case_id=case_id,
            telecaller_id=telecaller_id,
            previous_telecaller_id=previous,
            action=action,
            assignment_method=method,
            assigned_by=assigned_by,
        ))
        self.debug_print(f"Case {case_id} {action} ({previous} -> {telecaller_id})", 'SUCCESS')
        return result.data[0]

    def unassign_case(self, tenant_id: str, case_id: str, assigned_by: Optional[str] = None) -> Dict[str, Any]:
        return self.assign_case(tenant_id, case_id, None, assigned_by)

    def _bulk(self, tenant_id: str, case_ids: List[str], telecaller_id: Optional[str],
              assigned_by: Optional[str], method: str) -> Dict[str, Any]:
        action = 'assign' if telecaller_id else 'unassign'
        case_ids = list(dict.fromkeys(cid for cid in (case_ids or []) if cid))
        if not case_ids:
            raise ValidationError('No cases selected')
        if telecaller_id:
            # Fail fast: no case can succeed with a bad telecaller
            self.get_assignable_telecaller(tenant_id, telecaller_id)

        summary = {'total': len(case_ids), 'success': 0, 'errors': 0, 'error_details': [], 'action': action}
        for case_id in case_ids:
            try:
                self.assign_case(tenant_id, case_id, telecaller_id, assigned_by, method)
                summary['success'] += 1
            except Exception as e:
                summary['errors'] += 1
                summary['error_details'].append({'case_id': case_id, 'error': getattr(e, 'message', str(e))})
                self.debug_print(f"Failed to {action} case {case_id}: {e}", 'WARNING')

        logger.info(f"🔄 Bulk {action}: {summary['success']}/{summary['total']} succeeded, {summary['errors']} failed")
        return summary

    def bulk_assign(self, tenant_id: str, case_ids: List[str], telecaller_id: str,
                    assigned_by: Optional[str] = None) -> Dict[str, Any]:
        if not telecaller_id:
            raise ValidationError('telecaller_id is required')
        return self._bulk(tenant_id, case_ids, telecaller_id, assigned_by, 'manual')

    def bulk_unassign(self, tenant_id: str, case_ids: List[str], assigned_by: Optional[str] = None) -> Dict[str, Any]:
        return self._bulk(tenant_id, case_ids, None, assigned_by, 'manual')

    # ------------------------------------------------------------------
    # Fair distribution
    # ------------------------------------------------------------------

    def distribute_unassigned_cases(self, tenant_id: str, team_id: str,
                                    assigned_by: Optional[str] = None) -> Dict[str, Any]:
        """
        Spread a team's unassigned cases over its active telecallers using
        round-robin fair distribution. Distribution resumes after the
        telecaller who received the team's latest assignment.

        Returns:
            dict: success, message, assigned_count, failed_count, failed_cases
                  and per-telecaller distribution
        """
        telecallers = self.supabase.table('employees').select('id, name, emp_id') \
            .eq('tenant_id', tenant_id).eq('team_id', team_id).eq('role', 'Telecaller').eq('status', 'active') \
            .order('name').execute().data or []
        if not telecallers:
            return {'success': False, 'message': 'No active telecallers in this team', 'assigned_count': 0}

        cases = fetch_all(
            lambda: self.supabase.table('customer_cases').select('id')
            .eq('tenant_id', tenant_id).eq('team_id', team_id).is_('telecaller_id', 'null').eq('status', 'new')
            .order('created_at')
        )
        if not cases:
            return {'success': True, 'message': 'No unassigned cases found', 'assigned_count': 0}

        last_assigned = first_row(
            self.supabase.table('customer_cases').select('telecaller_id, assigned_at')
            .eq('tenant_id', tenant_id).eq('team_id', team_id).gte('assigned_at', '1970-01-01')
            .order('assigned_at', desc=True).limit(1).execute()
        )

        # Find starting index for round-robin
        start_index = 0
        if last_assigned:
            for i, telecaller in enumerate(telecallers):
                if telecaller['id'] == last_assigned.get('telecaller_id'):
                    start_index = (i + 1) % len(telecallers)
                    break

        self.debug_print(f"🤖 Distributing {len(cases)} case(s) over {len(telecallers)} telecaller(s), "
                         f"starting with {telecallers[start_index]['name']}", 'SYSTEM')

        distribution = {t['id']: 0 for t in telecallers}
        failed_cases = []
        assigned_count = 0
        for i, case in enumerate(cases):
            selected = telecallers[(start_index + i) % len(telecallers)]
            now = get_ist_timestamp()
            try:
                # Only claim the case if nobody assigned it meanwhile
                result = self.supabase.table('customer_cases').update({
                    'telecaller_id': selected['id'],
                    'status': 'assigned',
                    'assigned_by': assigned_by,
                    'assigned_at': now,
                    'updated_at': now,
                }).eq('tenant_id', tenant_id).eq('id', case['id']).is_('telecaller_id', 'null').execute()

                if not result.data:
                    self.debug_print(f"Case {case['id']} was already assigned by another process, skipping", 'INFO')
                    continue

                self.record_history(AssignmentHistory(
                    tenant_id=tenant_id,
                    case_id=case['id'],
                    telecaller_id=selected['id'],
                    action='assigned',
                    assignment_method='fair_distribution',
                    assigned_by=assigned_by,
                ))
                distribution[selected['id']] += 1
                assigned_count += 1
            except Exception as e:
                failed_cases.append({'case_id': case['id'], 'error': str(e)})
                self.debug_print(f"Auto-assign failed for case {case['id']}: {e}", 'ERROR')

        logger.info(f"🎉 Fair distribution for team {team_id}: {assigned_count} assigned, {len(failed_cases)} failed")
        return {
            'success': True,
            'message': f'Successfully assigned {assigned_count} cases',
            'assigned_count': assigned_count,
            'failed_count': len(failed_cases),
            'failed_cases': failed_cases,
            'distribution': [
                {'telecaller_id': t['id'], 'name': t['name'], 'assigned': distribution[t['id']]}
                for t in telecallers
            ],
        }

    # ------------------------------------------------------------------
    # Portfolio reassignment
    # ------------------------------------------------------------------

    def _matching_cases(self, tenant_id: str, filters: ReassignFilters) -> List[Dict[str, Any]]:
        def query():
            q = self.supabase.table('customer_cases') \
                .select('id, loan_id, customer_name, product_name, dpd, outstanding_amount, status') \
                .eq('tenant_id', tenant_id).eq('telecaller_id', filters.from_telecaller).in_('status', OPEN_STATUSES)
            if filters.product:
                q = q.eq('product_name', filters.product)
            return q.order('created_at')

        matched = []
        for case in fetch_all(query):
            if not in_dpd_range(case.get('dpd'), filters.dpd_range):
                continue
            amount = to_number(case.get('outstanding_amount'))
            if filters.min_amount is not None and (amount is None or amount < filters.min_amount):
                continue
            if filters.max_amount is not None and (amount is None or amount > filters.max_amount):
                continue
            matched.append(case)
        return matched

    def preview_reassignment(self, tenant_id: str, filter_data: Dict[str, Any]) -> Dict[str, Any]:
        filters = ReassignFilters.from_dict(filter_data)
        from_telecaller = self.get_telecaller(tenant_id, filters.from_telecaller)
        to_telecaller = None
        if filters.to_telecaller:
            to_telecaller = self.get_assignable_telecaller(tenant_id, filters.to_telecaller)

        cases = self._matching_cases(tenant_id, filters)
        return {
            'total_cases': len(cases),
            'total_outstanding': sum(to_number(c.get('outstanding_amount')) or 0 for c in cases),
            'from_telecaller': from_telecaller['name'],
            'to_telecaller': to_telecaller['name'] if to_telecaller else None,
            'product': filters.product or 'All',
            'dpd_range': filters.dpd_range or 'All',
            'cases': cases,
        }

    def reassign_cases(self, tenant_id: str, filter_data: Dict[str, Any],
                       assigned_by: Optional[str] = None) -> Dict[str, Any]:
        filters = ReassignFilters.from_dict(filter_data)
        if not filters.to_telecaller:
            raise ValidationError('to_telecaller is required')
        if filters.to_telecaller == filters.from_telecaller:
            raise ValidationError('Cannot reassign cases to the same telecaller')

        self.get_telecaller(tenant_id, filters.from_telecaller)
        self.get_assignable_telecaller(tenant_id, filters.to_telecaller)

        cases = self._matching_cases(tenant_id, filters)
        if not cases:
            return {'total': 0, 'success': 0, 'errors': 0, 'error_details': [], 'action': 'reassign'}

        summary = self._bulk(tenant_id, [c['id'] for c in cases], filters.to_telecaller, assigned_by, 'reassignment')
        summary['action'] = 'reassign'
        return summary

    def get_telecaller(self, tenant_id: str, telecaller_id: str) -> Dict[str, Any]:
        """Source telecaller of a reassignment; may already be inactive."""
        telecaller = first_row(
            self.supabase.table('employees').select('id, name, emp_id, status, team_id')
            .eq('tenant_id', tenant_id).eq('id', telecaller_id).eq('role', 'Telecaller').limit(1).execute()
        )
        if not telecaller:
            raise ValidationError('Telecaller not found')
        return telecaller
