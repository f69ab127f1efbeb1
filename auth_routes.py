import logging
import time

from flask import Blueprint, current_app, g, jsonify, redirect, session

from auth import ROLE_SUPER_ADMIN, get_auth_manager, get_dashboard_path, require_auth
from exceptions import AuthenticationError, ValidationError
from extensions import limiter
from request_context import current_user, json_body

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__)


def _tenant_payload(tenant):
    if not tenant:
        return None
    return {
        'id': tenant['id'],
        'name': tenant['name'],
        'subdomain': tenant['subdomain'],
        'status': tenant['status'],
        'plan': tenant.get('plan'),
        'settings': tenant.get('settings') or {'branding': {}, 'features': {}},
    }


@auth_bp.route('/')
def index():
    tenant = getattr(g, 'tenant', None)
    return jsonify({
        'success': True,
        'portal': 'tenant' if tenant else 'superadmin',
        'tenant': _tenant_payload(tenant),
        'authenticated': bool(session.get('user_id')),
    })


@auth_bp.route('/health')
def health():
    return jsonify({'status': 'ok'})


@auth_bp.route('/tenant')
def tenant_info():
    return jsonify({'success': True, 'tenant': _tenant_payload(getattr(g, 'tenant', None))})


@auth_bp.route('/login', methods=['POST'])
@limiter.limit(lambda: current_app.config['LOGIN_RATE_LIMIT'])
def login():
    start_time = time.time()
    data = json_body()
    username = str(data.get('username') or '').strip()
    password = str(data.get('password') or '')

    if not username or not password:
        raise ValidationError('Username and password are required')

    auth_manager = get_auth_manager()
    tenant = getattr(g, 'tenant', None)

    # The main domain is the SuperAdmin portal, tenant subdomains are for company staff
    if tenant is None:
        success, message, user_data = auth_manager.authenticate_super_admin(username, password)
    else:
        success, message, user_data = auth_manager.authenticate_tenant_user(username, password, tenant['id'])

    if not success:
        auth_manager.log_audit_event(
            user_id=None,
            user_type=None,
            action='LOGIN_FAILED',
            resource='auth',
            details={'username': username, 'reason': message},
            tenant_id=tenant['id'] if tenant else None,
        )
        raise AuthenticationError(message)

    auth_manager.create_session(user_data)
    auth_manager.log_audit_event(
        user_id=user_data['id'],
        user_type=user_data['role'],
        action='LOGIN',
        resource='auth',
        tenant_id=user_data.get('tenant_id'),
    )
    logger.info(f"🔐 {user_data['role']} {user_data['username']} logged in ({time.time() - start_time:.3f}s)")

    return jsonify({
        'success': True,
        'message': f"Welcome! Logged in as {user_data['role']}",
        'user': {
            'id': user_data['id'],
            'name': user_data.get('name'),
            'role': user_data['role'],
            'tenant_id': user_data.get('tenant_id'),
            'emp_id': user_data.get('emp_id'),
        },
        'redirect': get_dashboard_path(user_data['role']),
    })


@auth_bp.route('/logout', methods=['POST'])
def logout():
    if session.get('user_id'):
        get_auth_manager().log_audit_event(
            user_id=session.get('user_id'),
            user_type=session.get('role'),
            action='LOGOUT',
            resource='auth',
            tenant_id=session.get('tenant_id'),
        )
    session.clear()
    return jsonify({'success': True, 'message': 'You have been logged out'})


@auth_bp.route('/session')
@require_auth()
def session_info():
    user = current_user()
    return jsonify({'success': True, 'user': user, 'dashboard': get_dashboard_path(user['role'])})


@auth_bp.route('/dashboard')
@require_auth()
def dashboard():
    return redirect(get_dashboard_path(session.get('role')))


@auth_bp.route('/change_password', methods=['POST'])
@require_auth()
def change_password():
    data = json_body()
    new_password = data.get('new_password') or ''
    if new_password != (data.get('confirm_password') or ''):
        raise ValidationError('New passwords do not match')

    get_auth_manager().change_password(
        session['user_id'], session['role'], data.get('current_password') or '', new_password
    )
    get_auth_manager().log_audit_event(
        user_id=session['user_id'],
        user_type=session['role'],
        action='PASSWORD_CHANGED',
        resource='auth',
        tenant_id=session.get('tenant_id') if session.get('role') != ROLE_SUPER_ADMIN else None,
    )
    return jsonify({'success': True, 'message': 'Password changed successfully'})
