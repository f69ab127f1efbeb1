import logging

from flask import Flask, jsonify
from postgrest.exceptions import APIError
from werkzeug.exceptions import HTTPException

from auth import AuthManager
from auth_routes import auth_bp
from company_admin_routes import company_admin_bp
from config import configure_logging, load_config
from db import create_supabase_client
from exceptions import CRMError
from extensions import limiter
from superadmin_routes import superadmin_bp
from team_incharge_routes import team_incharge_bp
from telecaller_routes import telecaller_bp
from tenant_resolution import init_tenant_resolution

logger = logging.getLogger(__name__)


def register_error_handlers(app):
    @app.errorhandler(CRMError)
    def handle_crm_error(error):
        if error.status_code >= 500:
            logger.error(f"❌ {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(APIError)
    def handle_api_error(error):
        logger.error(f"❌ Database error {error.code}: {error.message}")
        return jsonify({'success': False, 'message': 'A database error occurred'}), 500

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        message = error.description
        if error.code == 413:
            message = f"File too large. Maximum size is {app.config['MAX_UPLOAD_MB']}MB."
        elif error.code == 429:
            message = 'Too many requests. Please try again later.'
        return jsonify({'success': False, 'message': message}), error.code


def create_app(config_overrides=None, supabase_client=None):
    """Application factory.

    Args:
        config_overrides: values replacing the environment-derived config
        supabase_client: client to use instead of one built from SUPABASE_URL/SUPABASE_KEY

    Returns:
        Flask: the configured app
    """
    config = load_config(config_overrides)
    if not config.get('TESTING'):
        configure_logging()

    app = Flask(__name__)
    app.config.update(config)
    app.secret_key = config['SECRET_KEY']

    if supabase_client is None:
        supabase_client = create_supabase_client(config['SUPABASE_URL'], config['SUPABASE_KEY'])
    app.config['SUPABASE'] = supabase_client

    # Store auth_manager in app config instead of direct attribute
    app.config['AUTH_MANAGER'] = AuthManager(supabase_client, bcrypt_rounds=config['BCRYPT_ROUNDS'])

    limiter.init_app(app)
    init_tenant_resolution(app)
    register_error_handlers(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(superadmin_bp)
    app.register_blueprint(company_admin_bp)
    app.register_blueprint(team_incharge_bp)
    app.register_blueprint(telecaller_bp)

    logger.info(f"🚀 Shakti CRM ready (base domain: {config['BASE_DOMAIN']})")
    return app


if __name__ == '__main__':
    app = create_app()
    print("🚀 Starting Shakti CRM...")
    print("📱 Server will be available at: http://127.0.0.1:5000")
    app.run(host='0.0.0.0', port=5000, debug=True, use_reloader=False)
