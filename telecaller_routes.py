import logging

from flask import Blueprint, jsonify, request, session

from auth import audit, require_telecaller
from exceptions import PermissionDenied
from request_context import case_service, column_config_service, current_tenant_id, json_body, report_service
from utils import filter_by_date

logger = logging.getLogger(__name__)

telecaller_bp = Blueprint('telecaller', __name__, url_prefix='/telecaller')


def _own_case(tenant_id, case_id):
    case = case_service().get_case(tenant_id, case_id)
    if case.get('telecaller_id') != session.get('user_id'):
        raise PermissionDenied('This case is not assigned to you')
    return case


@telecaller_bp.route('/dashboard')
@require_telecaller
def dashboard():
    tenant_id = current_tenant_id()
    return jsonify({'success': True, 'metrics': report_service().telecaller_metrics(tenant_id, session['user_id'])})


@telecaller_bp.route('/cases')
@require_telecaller
def my_cases():
    """Assigned cases, with the active column layout of every product they belong to."""
    tenant_id = current_tenant_id()
    cases = case_service().get_cases_for_telecaller_id(tenant_id, session['user_id'])

    status = request.args.get('status')
    if status:
        cases = [c for c in cases if c.get('status') == status]

    config_service = column_config_service()
    columns = {}
    for case in cases:
        product = case.get('product_name') or ''
        if product not in columns:
            columns[product] = config_service.get_upload_columns(tenant_id, product or None)

    return jsonify({'success': True, 'total': len(cases), 'cases': cases, 'columns': columns})


@telecaller_bp.route('/cases/<case_id>')
@require_telecaller
def case_detail(case_id):
    tenant_id = current_tenant_id()
    case = _own_case(tenant_id, case_id)
    columns = column_config_service().get_upload_columns(tenant_id, case.get('product_name'))
    return jsonify({
        'success': True,
        'case': case,
        'columns': columns,
        'call_logs': case_service().get_call_logs_by_case(tenant_id, case_id),
    })


@telecaller_bp.route('/cases/<case_id>/calls')
@require_telecaller
def case_calls(case_id):
    tenant_id = current_tenant_id()
    _own_case(tenant_id, case_id)
    return jsonify({'success': True, 'call_logs': case_service().get_call_logs_by_case(tenant_id, case_id)})


@telecaller_bp.route('/cases/<case_id>/calls', methods=['POST'])
@require_telecaller
def log_call(case_id):
    tenant_id = current_tenant_id()
    data = json_body()
    log = case_service().add_call_log(tenant_id, case_id, session['user_id'], data)
    audit('CALL_LOGGED', 'case_call_logs', log['id'], {'case_id': case_id, 'call_status': log['call_status']})
    return jsonify({'success': True, 'message': 'Call logged successfully', 'call_log': log}), 201


@telecaller_bp.route('/cases/<case_id>/status', methods=['POST'])
@require_telecaller
def update_status(case_id):
    tenant_id = current_tenant_id()
    data = json_body()
    case = case_service().update_case_status(
        tenant_id, case_id, session['user_id'], data.get('status') or '', data.get('remarks')
    )
    audit('CASE_STATUS_UPDATED', 'customer_cases', case_id, {'status': case['status']})
    return jsonify({'success': True, 'message': f"Case marked as {case['status']}", 'case': case})


@telecaller_bp.route('/calls')
@require_telecaller
def my_calls():
    tenant_id = current_tenant_id()
    logs = case_service().get_call_logs_by_employee(tenant_id, session['user_id'])
    logs = filter_by_date(logs, request.args.get('date_filter', 'all'))
    return jsonify({'success': True, 'call_logs': logs})


@telecaller_bp.route('/stats')
@require_telecaller
def stats():
    tenant_id = current_tenant_id()
    service = case_service()
    return jsonify({
        'success': True,
        'stats': service.get_telecaller_case_stats(tenant_id, session['user_id']),
        'summary': service.get_case_stats_by_employee(tenant_id, session['user_id']),
    })
