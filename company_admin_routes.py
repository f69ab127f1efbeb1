import logging

from flask import Blueprint, jsonify, request, session
from werkzeug.utils import secure_filename

from auth import audit, require_company_admin
from db import get_supabase
from excel_utils import parse_employee_file
from exceptions import ValidationError
from request_context import (
    column_config_service, current_tenant_id, employee_service, id_list, json_body, report_service,
    team_service,
)
from utils import filter_by_date

logger = logging.getLogger(__name__)

company_admin_bp = Blueprint('company_admin', __name__, url_prefix='/companyadmin')


@company_admin_bp.route('/dashboard')
@require_company_admin
def dashboard():
    tenant_id = current_tenant_id()
    return jsonify({'success': True, 'overview': report_service().company_overview(tenant_id)})


# ----------------------------------------------------------------------
# Employees
# ----------------------------------------------------------------------

@company_admin_bp.route('/employees')
@require_company_admin
def list_employees():
    employees = employee_service().list_employees(
        current_tenant_id(), role=request.args.get('role'), status=request.args.get('status')
    )
    return jsonify({'success': True, 'employees': employees})


@company_admin_bp.route('/employees', methods=['POST'])
@require_company_admin
def create_employee():
    employee = employee_service().create_employee(current_tenant_id(), session.get('user_id'), json_body())
    audit('EMPLOYEE_CREATED', 'employees', employee['id'], {'emp_id': employee['emp_id'], 'role': employee['role']})
    return jsonify({'success': True, 'message': f"{employee['role']} {employee['name']} added successfully",
                    'employee': employee}), 201


@company_admin_bp.route('/employees/<employee_id>')
@require_company_admin
def get_employee(employee_id):
    return jsonify({'success': True, 'employee': employee_service().get_employee(current_tenant_id(), employee_id)})


@company_admin_bp.route('/employees/<employee_id>', methods=['PUT', 'PATCH'])
@require_company_admin
def update_employee(employee_id):
    data = json_body()
    employee = employee_service().update_employee(current_tenant_id(), employee_id, data)
    audit('EMPLOYEE_UPDATED', 'employees', employee_id, {'fields': sorted(k for k in data if k != 'password')})
    return jsonify({'success': True, 'message': 'Employee updated successfully', 'employee': employee})


@company_admin_bp.route('/employees/<employee_id>', methods=['DELETE'])
@require_company_admin
def delete_employee(employee_id):
    employee_service().delete_employee(current_tenant_id(), employee_id)
    audit('EMPLOYEE_DELETED', 'employees', employee_id)
    return jsonify({'success': True, 'message': 'Employee deleted successfully'})


@company_admin_bp.route('/employees/bulk_delete', methods=['POST'])
@require_company_admin
def bulk_delete_employees():
    employee_ids = id_list(json_body(), 'employee_ids')
    if not employee_ids:
        raise ValidationError('No employees selected')

    result = employee_service().bulk_delete_employees(current_tenant_id(), employee_ids)
    audit('EMPLOYEES_BULK_DELETED', 'employees', details={'count': result['successful'], 'ids': employee_ids})
    return jsonify(dict(result, success=True,
                        message=f"{result['successful']} employee(s) deleted, {result['failed']} failed"))


@company_admin_bp.route('/employees/<employee_id>/reset_password', methods=['POST'])
@require_company_admin
def reset_employee_password(employee_id):
    temp_password = employee_service().reset_employee_password(current_tenant_id(), employee_id)
    audit('EMPLOYEE_PASSWORD_RESET', 'employees', employee_id)
    return jsonify({'success': True, 'message': 'Password reset successfully', 'temporary_password': temp_password})


@company_admin_bp.route('/employees/upload', methods=['POST'])
@require_company_admin
def upload_employees():
    if 'file' not in request.files or not request.files['file'].filename:
        raise ValidationError('No file selected')

    file = request.files['file']
    filename = secure_filename(str(file.filename))
    rows = parse_employee_file(filename, file.stream)
    logger.info(f"📥 Read {len(rows)} employee row(s) from {filename}")

    result = employee_service().bulk_upload_employees(current_tenant_id(), session.get('user_id'), rows)
    audit('EMPLOYEES_UPLOADED', 'employees', details={'successful': result['successful'], 'failed': result['failed']})
    return jsonify(dict(result, success=True,
                        message=f"{result['successful']} employee(s) created, {result['failed']} failed"))


# ----------------------------------------------------------------------
# Teams (read-only overview for admins)
# ----------------------------------------------------------------------

@company_admin_bp.route('/teams')
@require_company_admin
def list_teams():
    return jsonify({'success': True, 'teams': team_service().get_teams(current_tenant_id())})


# ----------------------------------------------------------------------
# Products and column configuration
# ----------------------------------------------------------------------

@company_admin_bp.route('/products')
@require_company_admin
def list_products():
    return jsonify({'success': True, 'products': column_config_service().list_products(current_tenant_id())})


@company_admin_bp.route('/products', methods=['POST'])
@require_company_admin
def add_product():
    name = column_config_service().add_product(current_tenant_id(), json_body().get('product_name'))
    audit('PRODUCT_ADDED', 'column_configurations', details={'product_name': name})
    return jsonify({'success': True, 'message': f'Product {name} added successfully', 'product_name': name}), 201


@company_admin_bp.route('/products/<product_name>', methods=['PUT', 'PATCH'])
@require_company_admin
def rename_product(product_name):
    new_name = column_config_service().rename_product(current_tenant_id(), product_name, json_body().get('new_name'))
    audit('PRODUCT_RENAMED', 'column_configurations', details={'from': product_name, 'to': new_name})
    return jsonify({'success': True, 'message': 'Product renamed successfully', 'product_name': new_name})


@company_admin_bp.route('/products/<product_name>', methods=['DELETE'])
@require_company_admin
def delete_product(product_name):
    column_config_service().delete_product(current_tenant_id(), product_name)
    audit('PRODUCT_DELETED', 'column_configurations', details={'product_name': product_name})
    return jsonify({'success': True, 'message': f'Product {product_name} deleted successfully'})


@company_admin_bp.route('/columns')
@require_company_admin
def get_columns():
    product_name = request.args.get('product')
    columns = column_config_service().get_column_configurations(current_tenant_id(), product_name)
    return jsonify({'success': True, 'columns': columns})


@company_admin_bp.route('/columns/<product_name>', methods=['POST'])
@require_company_admin
def save_columns(product_name):
    columns = json_body().get('columns')
    if not isinstance(columns, list):
        raise ValidationError('columns must be a list')
    saved = column_config_service().save_column_configurations(current_tenant_id(), product_name, columns)
    audit('COLUMNS_SAVED', 'column_configurations', details={'product_name': product_name, 'count': len(saved)})
    return jsonify({'success': True, 'message': 'Column configuration saved successfully', 'columns': saved})


@company_admin_bp.route('/columns/<product_name>/initialize', methods=['POST'])
@require_company_admin
def initialize_columns(product_name):
    created = column_config_service().initialize_default_columns(current_tenant_id(), product_name)
    message = 'Default columns initialized' if created else 'Columns already configured for this product'
    return jsonify({'success': True, 'initialized': created, 'message': message})


@company_admin_bp.route('/columns/<product_name>/custom', methods=['POST'])
@require_company_admin
def add_custom_column(product_name):
    data = json_body()
    columns = column_config_service().add_custom_column(
        current_tenant_id(),
        product_name,
        data.get('column_name'),
        (data.get('display_name') or '').strip() or data.get('column_name'),
        data.get('data_type') or 'text',
        bool(data.get('is_active', True)),
    )
    audit('CUSTOM_COLUMN_ADDED', 'column_configurations',
          details={'product_name': product_name, 'column_name': data.get('column_name')})
    return jsonify({'success': True, 'message': 'Custom column added successfully', 'columns': columns}), 201


@company_admin_bp.route('/columns/<product_name>/<column_name>', methods=['PUT', 'PATCH'])
@require_company_admin
def update_column(product_name, column_name):
    data = json_body()
    column = column_config_service().update_column(
        current_tenant_id(), product_name, column_name,
        display_name=data.get('display_name'),
        is_active=data.get('is_active'),
    )
    return jsonify({'success': True, 'message': 'Column updated successfully', 'column': column})


@company_admin_bp.route('/columns/<product_name>/<column_name>/toggle', methods=['POST'])
@require_company_admin
def toggle_column(product_name, column_name):
    column = column_config_service().toggle_column(current_tenant_id(), product_name, column_name)
    state = 'shown' if column['is_active'] else 'hidden'
    return jsonify({'success': True, 'message': f"Column {column['display_name']} is now {state}", 'column': column})


@company_admin_bp.route('/columns/<product_name>/<column_name>', methods=['DELETE'])
@require_company_admin
def remove_custom_column(product_name, column_name):
    columns = column_config_service().remove_custom_column(current_tenant_id(), product_name, column_name)
    audit('CUSTOM_COLUMN_REMOVED', 'column_configurations',
          details={'product_name': product_name, 'column_name': column_name})
    return jsonify({'success': True, 'message': 'Custom column removed successfully', 'columns': columns})


@company_admin_bp.route('/columns/clear', methods=['POST'])
@require_company_admin
def clear_columns():
    column_config_service().clear_all_column_configurations(current_tenant_id())
    audit('COLUMNS_CLEARED', 'column_configurations')
    return jsonify({'success': True, 'message': 'All column configurations cleared'})


# ----------------------------------------------------------------------
# Reports
# ----------------------------------------------------------------------

@company_admin_bp.route('/reports/performance')
@require_company_admin
def performance_report():
    date_filter = request.args.get('date_filter', 'all')
    performance = report_service().telecaller_performance(
        current_tenant_id(), team_id=request.args.get('team_id') or None, date_filter=date_filter
    )
    return jsonify({'success': True, 'date_filter': date_filter, 'performance': performance})


@company_admin_bp.route('/reports/audit')
@require_company_admin
def audit_report():
    tenant_id = current_tenant_id()
    logs = get_supabase().table('audit_logs').select('*').eq('tenant_id', tenant_id) \
        .order('created_at', desc=True).limit(500).execute().data or []
    logs = filter_by_date(logs, request.args.get('date_filter', 'all'))
    return jsonify({'success': True, 'logs': logs})
