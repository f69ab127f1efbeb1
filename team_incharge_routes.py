import io
import logging
import os

from flask import Blueprint, current_app, jsonify, request, send_file, session
from werkzeug.utils import secure_filename

from auth import audit, require_team_incharge
from customer_case_service import build_case_row
from excel_utils import allowed_file, export_cases_to_excel, generate_template, parse_case_file, validate_case_data
from exceptions import PermissionDenied, ValidationError
from request_context import (
    assignment_system, case_service, column_config_service, current_tenant_id, current_user, id_list, json_body,
    report_service, team_service,
)

logger = logging.getLogger(__name__)

team_incharge_bp = Blueprint('team_incharge', __name__, url_prefix='/teamincharge')

XLSX_MIMETYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


def _is_incharge():
    return session.get('role') == 'TeamIncharge'


def _managed_teams(tenant_id):
    if _is_incharge():
        return team_service().get_teams_for_incharge(tenant_id, session.get('user_id'))
    return team_service().get_teams(tenant_id)


def _managed_case(tenant_id, case_id):
    """Fetch a case, making sure a TeamIncharge only touches cases of their own teams."""
    case = case_service().get_case(tenant_id, case_id)
    if _is_incharge():
        if not case.get('team_id'):
            raise PermissionDenied('This case does not belong to your team')
        team_service().get_managed_team(tenant_id, case['team_id'], current_user())
    return case


def _managed_case_ids(tenant_id, case_ids):
    for case_id in case_ids:
        _managed_case(tenant_id, case_id)
    return case_ids


def _managed_telecaller(tenant_id, telecaller_id):
    """A TeamIncharge may only move cases from or to telecallers in their teams."""
    if not _is_incharge() or not telecaller_id:
        return
    telecaller = assignment_system().get_telecaller(tenant_id, telecaller_id)
    if not telecaller.get('team_id'):
        raise PermissionDenied('This telecaller is not in your team')
    team_service().get_managed_team(tenant_id, telecaller['team_id'], current_user())


# ----------------------------------------------------------------------
# Dashboard
# ----------------------------------------------------------------------

@team_incharge_bp.route('/dashboard')
@require_team_incharge
def dashboard():
    tenant_id = current_tenant_id()
    incharge_id = session.get('user_id') if _is_incharge() else None
    return jsonify({'success': True, 'metrics': report_service().team_incharge_metrics(tenant_id, incharge_id)})


# ----------------------------------------------------------------------
# Teams
# ----------------------------------------------------------------------

@team_incharge_bp.route('/teams')
@require_team_incharge
def list_teams():
    return jsonify({'success': True, 'teams': _managed_teams(current_tenant_id())})


@team_incharge_bp.route('/teams', methods=['POST'])
@require_team_incharge
def create_team():
    tenant_id = current_tenant_id()
    data = json_body()
    # A TeamIncharge always creates teams for themselves
    incharge_id = session.get('user_id') if _is_incharge() else data.get('team_incharge_id')

    team = team_service().create_team(
        tenant_id,
        data.get('name') or '',
        incharge_id,
        data.get('product_name') or '',
        telecaller_ids=data.get('telecaller_ids') or [],
        created_by=session.get('user_id'),
    )
    audit('TEAM_CREATED', 'teams', team['id'], {'name': team['name'], 'product_name': team['product_name']})
    return jsonify({'success': True, 'message': f"Team {team['name']} created successfully", 'team': team}), 201


@team_incharge_bp.route('/teams/<team_id>')
@require_team_incharge
def get_team(team_id):
    tenant_id = current_tenant_id()
    team_service().get_managed_team(tenant_id, team_id, current_user())
    return jsonify({'success': True, 'team': team_service().get_team(tenant_id, team_id, with_details=True)})


@team_incharge_bp.route('/teams/<team_id>', methods=['PUT', 'PATCH'])
@require_team_incharge
def update_team(team_id):
    tenant_id = current_tenant_id()
    service = team_service()
    service.get_managed_team(tenant_id, team_id, current_user())

    data = json_body()
    if _is_incharge() and data.get('team_incharge_id') not in (None, session.get('user_id')):
        raise PermissionDenied('You cannot hand a team over to another incharge')

    team = service.update_team(tenant_id, team_id, data)
    audit('TEAM_UPDATED', 'teams', team_id, {'fields': sorted(data.keys())})
    return jsonify({'success': True, 'message': 'Team updated successfully', 'team': team})


@team_incharge_bp.route('/teams/<team_id>', methods=['DELETE'])
@require_team_incharge
def delete_team(team_id):
    tenant_id = current_tenant_id()
    service = team_service()
    service.get_managed_team(tenant_id, team_id, current_user())
    service.delete_team(tenant_id, team_id)
    audit('TEAM_DELETED', 'teams', team_id)
    return jsonify({'success': True, 'message': 'Team deleted successfully'})


@team_incharge_bp.route('/teams/<team_id>/toggle', methods=['POST'])
@require_team_incharge
def toggle_team(team_id):
    tenant_id = current_tenant_id()
    service = team_service()
    service.get_managed_team(tenant_id, team_id, current_user())
    team = service.toggle_team_status(tenant_id, team_id)
    audit('TEAM_STATUS_CHANGED', 'teams', team_id, {'status': team['status']})
    return jsonify({'success': True, 'message': f"Team is now {team['status']}", 'team': team})


@team_incharge_bp.route('/teams/<team_id>/telecallers')
@require_team_incharge
def team_telecallers(team_id):
    tenant_id = current_tenant_id()
    team_service().get_managed_team(tenant_id, team_id, current_user())
    return jsonify({'success': True, 'telecallers': team_service().get_team_telecallers(tenant_id, team_id)})


@team_incharge_bp.route('/telecallers')
@require_team_incharge
def telecallers():
    tenant_id = current_tenant_id()
    service = team_service()
    if request.args.get('available') == 'true':
        result = service.get_available_telecallers(tenant_id, exclude_team_id=request.args.get('exclude_team_id'))
    else:
        result = service.get_all_telecallers(tenant_id)
    return jsonify({'success': True, 'telecallers': result})


@team_incharge_bp.route('/team_incharges')
@require_team_incharge
def team_incharges():
    return jsonify({'success': True, 'team_incharges': team_service().get_team_incharges(current_tenant_id())})


# ----------------------------------------------------------------------
# Upload
# ----------------------------------------------------------------------

@team_incharge_bp.route('/template')
@require_team_incharge
def download_template():
    tenant_id = current_tenant_id()
    product_name = request.args.get('product') or None
    team_id = request.args.get('team_id')
    if team_id:
        team = team_service().get_managed_team(tenant_id, team_id, current_user())
        product_name = team.get('product_name')

    columns = column_config_service().get_upload_columns(tenant_id, product_name)
    content = generate_template(columns)
    filename = f"{secure_filename(product_name or 'cases')}_template.xlsx"
    return send_file(io.BytesIO(content), mimetype=XLSX_MIMETYPE, as_attachment=True, download_name=filename)


@team_incharge_bp.route('/upload', methods=['POST'])
@require_team_incharge
def upload_cases():
    tenant_id = current_tenant_id()

    team_id = request.form.get('team_id', '').strip()
    if not team_id:
        raise ValidationError('Please select a team')
    team = team_service().get_managed_team(tenant_id, team_id, current_user(), require_active=True)

    if 'file' not in request.files or not request.files['file'].filename:
        raise ValidationError('No file selected')
    file = request.files['file']
    filename = secure_filename(str(file.filename))
    if not allowed_file(filename):
        raise ValidationError('Please upload a valid Excel file (.xlsx) or CSV file')

    file.stream.seek(0, os.SEEK_END)
    file_size = file.stream.tell()
    file.stream.seek(0)
    max_mb = current_app.config['MAX_UPLOAD_MB']
    if file_size > max_mb * 1024 * 1024:
        raise ValidationError(f'File too large. Maximum size is {max_mb}MB.')

    logger.info(f"📄 Processing file: {filename} ({file_size / 1024 / 1024:.2f} MB) for team {team['name']}")

    columns = column_config_service().get_upload_columns(tenant_id, team.get('product_name'))
    rows = parse_case_file(filename, file.stream, columns)
    if not rows:
        raise ValidationError('No valid data found in file')

    max_rows = current_app.config['MAX_UPLOAD_ROWS']
    if len(rows) > max_rows:
        raise ValidationError(f'Too many rows. Maximum {max_rows} cases per upload.')

    validation_errors = []
    for row_num, row in enumerate(rows, start=2):
        is_valid, errors = validate_case_data(row, columns)
        if not is_valid:
            validation_errors.append({'row': row_num, 'errors': errors})
    if validation_errors:
        return jsonify({
            'success': False,
            'message': f'Validation failed for {len(validation_errors)} row(s). No cases were uploaded.',
            'validation_errors': validation_errors,
        }), 400

    user_id = session.get('user_id')
    cases = [build_case_row(tenant_id, row, team['id'], team.get('product_name'), user_id) for row in rows]
    result = assignment_system().create_bulk_cases(tenant_id, cases, uploaded_by=user_id, start_row=2)

    audit('CASES_UPLOADED', 'customer_cases', details={
        'team_id': team['id'],
        'filename': filename,
        'total_uploaded': result['total_uploaded'],
        'auto_assigned': result['auto_assigned'],
    })
    return jsonify(dict(
        result,
        success=True,
        message=(f"Uploaded {result['total_uploaded']} cases: {result['auto_assigned']} auto-assigned, "
                 f"{result['unassigned']} unassigned"),
    ))


# ----------------------------------------------------------------------
# Cases
# ----------------------------------------------------------------------

@team_incharge_bp.route('/teams/<team_id>/cases')
@require_team_incharge
def team_cases(team_id):
    tenant_id = current_tenant_id()
    team_service().get_managed_team(tenant_id, team_id, current_user())
    cases = case_service().get_cases_by_filters(tenant_id, team_id, request.args.to_dict())
    return jsonify({'success': True, 'total': len(cases), 'cases': cases})


@team_incharge_bp.route('/teams/<team_id>/cases/unassigned')
@require_team_incharge
def unassigned_cases(team_id):
    tenant_id = current_tenant_id()
    team_service().get_managed_team(tenant_id, team_id, current_user())
    return jsonify({'success': True, 'cases': case_service().get_unassigned_team_cases(tenant_id, team_id)})


@team_incharge_bp.route('/cases/<case_id>')
@require_team_incharge
def case_detail(case_id):
    tenant_id = current_tenant_id()
    case = _managed_case(tenant_id, case_id)
    return jsonify({
        'success': True,
        'case': case,
        'call_logs': case_service().get_call_logs_by_case(tenant_id, case_id),
        'history': assignment_system().get_assignment_history(tenant_id, case_id),
    })


@team_incharge_bp.route('/cases/<case_id>/history')
@require_team_incharge
def case_history(case_id):
    tenant_id = current_tenant_id()
    _managed_case(tenant_id, case_id)
    return jsonify({'success': True, 'history': assignment_system().get_assignment_history(tenant_id, case_id)})


@team_incharge_bp.route('/cases/<case_id>/calls')
@require_team_incharge
def case_calls(case_id):
    tenant_id = current_tenant_id()
    _managed_case(tenant_id, case_id)
    return jsonify({'success': True, 'call_logs': case_service().get_call_logs_by_case(tenant_id, case_id)})


@team_incharge_bp.route('/cases/<case_id>', methods=['DELETE'])
@require_team_incharge
def delete_case(case_id):
    tenant_id = current_tenant_id()
    _managed_case(tenant_id, case_id)
    case_service().delete_case(tenant_id, case_id)
    audit('CASE_DELETED', 'customer_cases', case_id)
    return jsonify({'success': True, 'message': 'Case deleted successfully'})


@team_incharge_bp.route('/cases/<case_id>/reassign', methods=['POST'])
@require_team_incharge
def reassign_case(case_id):
    tenant_id = current_tenant_id()
    _managed_case(tenant_id, case_id)
    telecaller_id = json_body().get('telecaller_id') or None
    _managed_telecaller(tenant_id, telecaller_id)

    case = assignment_system().assign_case(tenant_id, case_id, telecaller_id, session.get('user_id'))
    audit('CASE_REASSIGNED', 'customer_cases', case_id, {'telecaller_id': telecaller_id})
    message = 'Case reassigned successfully' if telecaller_id else 'Case unassigned successfully'
    return jsonify({'success': True, 'message': message, 'case': case})


@team_incharge_bp.route('/cases/assign', methods=['POST'])
@require_team_incharge
def bulk_assign():
    tenant_id = current_tenant_id()
    data = json_body()
    case_ids = _managed_case_ids(tenant_id, id_list(data, 'case_ids'))
    telecaller_id = data.get('telecaller_id') or request.form.get('telecaller_id')
    _managed_telecaller(tenant_id, telecaller_id)

    result = assignment_system().bulk_assign(tenant_id, case_ids, telecaller_id, session.get('user_id'))
    audit('CASES_BULK_ASSIGNED', 'customer_cases', details={'count': result['success'], 'telecaller_id': telecaller_id})
    return jsonify({'success': True, 'summary': result,
                    'message': f"{result['success']} case(s) assigned, {result['errors']} failed"})


@team_incharge_bp.route('/cases/unassign', methods=['POST'])
@require_team_incharge
def bulk_unassign():
    tenant_id = current_tenant_id()
    case_ids = _managed_case_ids(tenant_id, id_list(json_body(), 'case_ids'))

    result = assignment_system().bulk_unassign(tenant_id, case_ids, session.get('user_id'))
    audit('CASES_BULK_UNASSIGNED', 'customer_cases', details={'count': result['success'], 'case_ids': case_ids})
    return jsonify({'success': True, 'summary': result,
                    'message': f"{result['success']} case(s) unassigned, {result['errors']} failed"})


@team_incharge_bp.route('/teams/<team_id>/distribute', methods=['POST'])
@require_team_incharge
def distribute(team_id):
    tenant_id = current_tenant_id()
    team_service().get_managed_team(tenant_id, team_id, current_user(), require_active=True)

    result = assignment_system().distribute_unassigned_cases(tenant_id, team_id, session.get('user_id'))
    if result.get('assigned_count'):
        audit('CASES_DISTRIBUTED', 'customer_cases', details={'team_id': team_id, 'count': result['assigned_count']})
    return jsonify(result), 200 if result['success'] else 400


@team_incharge_bp.route('/reassign/preview', methods=['POST'])
@require_team_incharge
def preview_reassignment():
    tenant_id = current_tenant_id()
    data = json_body()
    _managed_telecaller(tenant_id, data.get('from_telecaller'))
    _managed_telecaller(tenant_id, data.get('to_telecaller'))
    preview = assignment_system().preview_reassignment(tenant_id, data)
    return jsonify({'success': True, 'preview': preview})


@team_incharge_bp.route('/reassign', methods=['POST'])
@require_team_incharge
def reassign_cases():
    tenant_id = current_tenant_id()
    data = json_body()
    _managed_telecaller(tenant_id, data.get('from_telecaller'))
    _managed_telecaller(tenant_id, data.get('to_telecaller'))

    result = assignment_system().reassign_cases(tenant_id, data, session.get('user_id'))
    audit('CASES_REASSIGNED', 'customer_cases', details={
        'from_telecaller': data.get('from_telecaller'),
        'to_telecaller': data.get('to_telecaller'),
        'count': result['success'],
    })
    return jsonify({'success': True, 'summary': result, 'message': f"{result['success']} case(s) reassigned"})


@team_incharge_bp.route('/teams/<team_id>/export')
@require_team_incharge
def export_cases(team_id):
    tenant_id = current_tenant_id()
    team = team_service().get_managed_team(tenant_id, team_id, current_user())
    cases = case_service().get_cases_by_filters(tenant_id, team_id, request.args.to_dict())
    columns = column_config_service().get_upload_columns(tenant_id, team.get('product_name'))

    content, filename = export_cases_to_excel(cases, columns)
    audit('CASES_EXPORTED', 'customer_cases', details={'team_id': team_id, 'count': len(cases)})
    return send_file(io.BytesIO(content), mimetype=XLSX_MIMETYPE, as_attachment=True, download_name=filename)


# ----------------------------------------------------------------------
# Reports
# ----------------------------------------------------------------------

@team_incharge_bp.route('/performance')
@require_team_incharge
def performance():
    tenant_id = current_tenant_id()
    team_id = request.args.get('team_id') or None
    date_filter = request.args.get('date_filter', 'all')

    if team_id:
        team_service().get_managed_team(tenant_id, team_id, current_user())
        rows = report_service().telecaller_performance(tenant_id, team_id, date_filter)
    elif _is_incharge():
        rows = []
        for team in _managed_teams(tenant_id):
            rows.extend(report_service().telecaller_performance(tenant_id, team['id'], date_filter))
    else:
        rows = report_service().telecaller_performance(tenant_id, None, date_filter)

    return jsonify({'success': True, 'date_filter': date_filter, 'performance': rows})
