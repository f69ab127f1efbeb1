import logging

from flask import Blueprint, jsonify, request, session

from auth import audit, require_super_admin
from db import count_rows, get_supabase, safe_get_data
from request_context import json_body, report_service, tenant_service

logger = logging.getLogger(__name__)

superadmin_bp = Blueprint('superadmin', __name__, url_prefix='/superadmin')


@superadmin_bp.route('/dashboard')
@require_super_admin
def dashboard():
    supabase = get_supabase()
    tenants = tenant_service().list_tenants()
    by_status = {}
    for tenant in tenants:
        by_status[tenant.get('status')] = by_status.get(tenant.get('status'), 0) + 1
    return jsonify({
        'success': True,
        'total_tenants': len(tenants),
        'tenants_by_status': by_status,
        'recent_tenants': tenants[:5],
        'platform_stats': {
            'total_company_admins': len(safe_get_data(supabase, 'company_admins', select_fields='id')),
            'total_employees': count_rows(supabase, 'employees'),
            'total_cases': count_rows(supabase, 'customer_cases'),
        },
    })


@superadmin_bp.route('/tenants')
@require_super_admin
def list_tenants():
    return jsonify({'success': True, 'tenants': tenant_service().list_tenants()})


@superadmin_bp.route('/tenants', methods=['POST'])
@require_super_admin
def create_tenant():
    tenant = tenant_service().create_tenant(json_body(), created_by=session.get('user_id'))
    audit('TENANT_CREATED', 'tenants', tenant['id'], {'name': tenant['name'], 'subdomain': tenant['subdomain']})
    return jsonify({'success': True, 'message': f"Tenant {tenant['name']} created successfully", 'tenant': tenant}), 201


@superadmin_bp.route('/tenants/<tenant_id>')
@require_super_admin
def get_tenant(tenant_id):
    service = tenant_service()
    tenant = service.get_tenant(tenant_id)
    overview = report_service().company_overview(tenant_id)
    return jsonify({
        'success': True,
        'tenant': tenant,
        'company_admins': service.list_company_admins(tenant_id),
        'overview': overview,
    })


@superadmin_bp.route('/tenants/<tenant_id>', methods=['PUT', 'PATCH'])
@require_super_admin
def update_tenant(tenant_id):
    data = json_body()
    tenant = tenant_service().update_tenant(tenant_id, data)
    audit('TENANT_UPDATED', 'tenants', tenant_id, {'fields': sorted(data.keys())})
    return jsonify({'success': True, 'message': 'Tenant updated successfully', 'tenant': tenant})


@superadmin_bp.route('/tenants/<tenant_id>/status', methods=['POST'])
@require_super_admin
def set_tenant_status(tenant_id):
    status = json_body().get('status')
    tenant = tenant_service().set_tenant_status(tenant_id, status)
    audit('TENANT_STATUS_CHANGED', 'tenants', tenant_id, {'status': status})
    return jsonify({'success': True, 'message': f'Tenant status changed to {status}', 'tenant': tenant})


@superadmin_bp.route('/tenants/<tenant_id>', methods=['DELETE'])
@require_super_admin
def delete_tenant(tenant_id):
    tenant_service().delete_tenant(tenant_id)
    audit('TENANT_DELETED', 'tenants', tenant_id)
    return jsonify({'success': True, 'message': 'Tenant deleted successfully'})


@superadmin_bp.route('/tenants/<tenant_id>/admins')
@require_super_admin
def list_company_admins(tenant_id):
    service = tenant_service()
    service.get_tenant(tenant_id)
    return jsonify({'success': True, 'company_admins': service.list_company_admins(tenant_id)})


@superadmin_bp.route('/tenants/<tenant_id>/admins', methods=['POST'])
@require_super_admin
def create_company_admin(tenant_id):
    data = json_body()
    service = tenant_service()
    service.get_tenant(tenant_id)
    admin = service.create_company_admin(
        tenant_id,
        employee_id=data.get('employee_id'),
        password=data.get('password') or '',
        name=(data.get('name') or '').strip() or None,
        email=(data.get('email') or '').strip() or None,
    )
    audit('COMPANY_ADMIN_CREATED', 'company_admins', admin['id'], {'tenant_id': tenant_id})
    return jsonify({'success': True, 'message': 'Company admin created successfully', 'company_admin': admin}), 201


@superadmin_bp.route('/check_subdomain')
@require_super_admin
def check_subdomain():
    subdomain = request.args.get('subdomain', '')
    return jsonify(dict(tenant_service().check_subdomain_availability(subdomain), success=True))
