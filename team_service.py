import logging
from typing import Any, Dict, List, Optional

from db import fetch_all, first_row
from exceptions import NotFoundError, PermissionDenied, ValidationError
from utils import get_ist_timestamp

logger = logging.getLogger(__name__)

MEMBER_FIELDS = 'id, name, emp_id'


class TeamService:
    def __init__(self, supabase_client):
        self.supabase = supabase_client

    def _active_employee(self, tenant_id: str, employee_id: str, role: str) -> Optional[Dict[str, Any]]:
        return first_row(
            self.supabase.table('employees').select('id, name, emp_id, role, status, team_id')
            .eq('tenant_id', tenant_id).eq('id', employee_id).eq('role', role).eq('status', 'active')
            .limit(1).execute()
        )

    def _validate_telecallers(self, tenant_id: str, telecaller_ids: List[str]) -> List[str]:
        ids = [tid for tid in dict.fromkeys(telecaller_ids or []) if tid]
        if not ids:
            return []
        found = self.supabase.table('employees').select('id') \
            .eq('tenant_id', tenant_id).eq('role', 'Telecaller').eq('status', 'active').in_('id', ids).execute()
        found_ids = {row['id'] for row in (found.data or [])}
        missing = [tid for tid in ids if tid not in found_ids]
        if missing:
            raise ValidationError(f'Invalid or inactive telecaller(s): {", ".join(map(str, missing))}')
        return ids

    def create_team(self, tenant_id: str, name: str, team_incharge_id: str, product_name: str,
                    telecaller_ids: Optional[List[str]] = None, created_by: Optional[str] = None) -> Dict[str, Any]:
        if not tenant_id:
            raise ValidationError('tenant_id is required')
        if not name or not name.strip():
            raise ValidationError('Team name is required and cannot be empty')
        if not team_incharge_id:
            raise ValidationError('team_incharge_id is required')
        if not product_name or not product_name.strip():
            raise ValidationError('product_name is required and cannot be empty')

        if not self._active_employee(tenant_id, team_incharge_id, 'TeamIncharge'):
            raise ValidationError('Team incharge must be an active TeamIncharge of this company')
        telecaller_ids = self._validate_telecallers(tenant_id, telecaller_ids)

        result = self.supabase.table('teams').insert({
            'tenant_id': tenant_id,
            'name': name.strip(),
            'team_incharge_id': team_incharge_id,
            'product_name': product_name.strip(),
            'status': 'active',
            'created_by': created_by or team_incharge_id,
        }).execute()
        team = result.data[0]

        if telecaller_ids:
            try:
                self.supabase.table('employees').update({'team_id': team['id']}) \
                    .eq('tenant_id', tenant_id).in_('id', telecaller_ids).execute()
            except Exception as e:
                # The team stays; membership can be fixed with update_team
                logger.warning(f"⚠️ Team {team['id']} created but telecaller assignment failed: {e}")

        logger.info(f"👥 Team created: {team['name']} with {len(telecaller_ids)} telecaller(s)")
        return team

    def _with_details(self, tenant_id: str, team: Dict[str, Any]) -> Dict[str, Any]:
        incharge = first_row(
            self.supabase.table('employees').select(MEMBER_FIELDS)
            .eq('tenant_id', tenant_id).eq('id', team.get('team_incharge_id')).limit(1).execute()
        )
        telecallers = self.supabase.table('employees').select(MEMBER_FIELDS) \
            .eq('tenant_id', tenant_id).eq('team_id', team['id']).order('name').execute().data or []
        total_cases = len(fetch_all(
            lambda: self.supabase.table('customer_cases').select('id').eq('tenant_id', tenant_id).eq('team_id', team['id'])
        ))
        return dict(team, team_incharge=incharge, telecallers=telecallers, total_cases=total_cases)

    def get_teams(self, tenant_id: str) -> List[Dict[str, Any]]:
        teams = self.supabase.table('teams').select('*').eq('tenant_id', tenant_id) \
            .order('created_at', desc=True).execute().data or []
        return [self._with_details(tenant_id, team) for team in teams]

    def get_teams_for_incharge(self, tenant_id: str, incharge_id: str) -> List[Dict[str, Any]]:
        teams = self.supabase.table('teams').select('*').eq('tenant_id', tenant_id) \
            .eq('team_incharge_id', incharge_id).order('created_at', desc=True).execute().data or []
        return [self._with_details(tenant_id, team) for team in teams]

    def get_team(self, tenant_id: str, team_id: str, with_details: bool = False) -> Dict[str, Any]:
        team = first_row(self.supabase.table('teams').select('*').eq('tenant_id', tenant_id).eq('id', team_id).limit(1).execute())
        if not team:
            raise NotFoundError('Team not found')
        return self._with_details(tenant_id, team) if with_details else team

    def get_managed_team(self, tenant_id: str, team_id: str, user: Dict[str, Any],
                         require_active: bool = False) -> Dict[str, Any]:
        """Fetch a team the current user may manage.

        TeamIncharges only manage their own teams, admins manage all of them.
        """
        team = self.get_team(tenant_id, team_id)
        if user.get('role') == 'TeamIncharge' and team.get('team_incharge_id') != user.get('user_id'):
            raise PermissionDenied('This team is not managed by you')
        if require_active and team.get('status') != 'active':
            raise ValidationError('Team is not active')
        return team

    def update_team(self, tenant_id: str, team_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        self.get_team(tenant_id, team_id)
        update_data = {}

        if 'name' in updates:
            if not (updates['name'] or '').strip():
                raise ValidationError('Team name is required and cannot be empty')
            update_data['name'] = updates['name'].strip()
        if 'product_name' in updates:
            if not (updates['product_name'] or '').strip():
                raise ValidationError('product_name is required and cannot be empty')
            update_data['product_name'] = updates['product_name'].strip()
        if 'team_incharge_id' in updates:
            if not self._active_employee(tenant_id, updates['team_incharge_id'], 'TeamIncharge'):
                raise ValidationError('Team incharge must be an active TeamIncharge of this company')
            update_data['team_incharge_id'] = updates['team_incharge_id']
        if 'status' in updates:
            if updates['status'] not in ('active', 'inactive'):
                raise ValidationError(f"Invalid status: {updates['status']}")
            update_data['status'] = updates['status']

        telecaller_ids = None
        if 'telecaller_ids' in updates and updates['telecaller_ids'] is not None:
            telecaller_ids = self._validate_telecallers(tenant_id, updates['telecaller_ids'])

        update_data['updated_at'] = get_ist_timestamp()
        team = self.supabase.table('teams').update(update_data) \
            .eq('tenant_id', tenant_id).eq('id', team_id).execute().data[0]

        if telecaller_ids is not None:
            self.supabase.table('employees').update({'team_id': None}) \
                .eq('tenant_id', tenant_id).eq('team_id', team_id).execute()
            if telecaller_ids:
                self.supabase.table('employees').update({'team_id': team_id}) \
                    .eq('tenant_id', tenant_id).in_('id', telecaller_ids).execute()

        return team

    def delete_team(self, tenant_id: str, team_id: str) -> None:
        self.get_team(tenant_id, team_id)
        self.supabase.table('employees').update({'team_id': None}) \
            .eq('tenant_id', tenant_id).eq('team_id', team_id).execute()
        self.supabase.table('teams').delete().eq('tenant_id', tenant_id).eq('id', team_id).execute()
        logger.info(f"🗑️ Team deleted: {team_id}")

    def toggle_team_status(self, tenant_id: str, team_id: str) -> Dict[str, Any]:
        team = self.get_team(tenant_id, team_id)
        new_status = 'inactive' if team.get('status') == 'active' else 'active'
        return self.supabase.table('teams').update({'status': new_status, 'updated_at': get_ist_timestamp()}) \
            .eq('tenant_id', tenant_id).eq('id', team_id).execute().data[0]

    def get_available_telecallers(self, tenant_id: str, exclude_team_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Telecallers without a team; with ``exclude_team_id`` also those outside that team."""
        telecallers = self.supabase.table('employees').select('id, name, emp_id, team_id') \
            .eq('tenant_id', tenant_id).eq('role', 'Telecaller').eq('status', 'active').order('name').execute().data or []
        if exclude_team_id:
            return [t for t in telecallers if t.get('team_id') is None or t.get('team_id') != exclude_team_id]
        return [t for t in telecallers if t.get('team_id') is None]

    def get_all_telecallers(self, tenant_id: str) -> List[Dict[str, Any]]:
        return self.supabase.table('employees').select('id, name, emp_id, team_id') \
            .eq('tenant_id', tenant_id).eq('role', 'Telecaller').eq('status', 'active').order('name').execute().data or []

    def get_team_telecallers(self, tenant_id: str, team_id: str) -> List[Dict[str, Any]]:
        return self.supabase.table('employees').select('id, name, emp_id, team_id') \
            .eq('tenant_id', tenant_id).eq('team_id', team_id).eq('role', 'Telecaller').eq('status', 'active') \
            .order('name').execute().data or []

    def get_team_incharges(self, tenant_id: str) -> List[Dict[str, Any]]:
        return self.supabase.table('employees').select(MEMBER_FIELDS) \
            .eq('tenant_id', tenant_id).eq('role', 'TeamIncharge').eq('status', 'active').order('name').execute().data or []
