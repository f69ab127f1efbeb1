import os
import logging
from datetime import timedelta

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

SUPABASE_URL = os.environ.get('SUPABASE_URL')
SUPABASE_KEY = os.environ.get('SUPABASE_ANON_KEY')
SECRET_KEY = os.environ.get('FLASK_SECRET_KEY', 'fallback-secret-key-change-this')

BASE_DOMAIN = os.environ.get('BASE_DOMAIN', 'localhost')
TIMEZONE = os.environ.get('TIMEZONE', 'Asia/Kolkata')

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
LOG_FILE = os.environ.get('LOG_FILE', 'shakti_crm.log')
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

BCRYPT_ROUNDS = int(os.environ.get('BCRYPT_ROUNDS', '10'))
MAX_UPLOAD_ROWS = int(os.environ.get('MAX_UPLOAD_ROWS', '1000'))
MAX_UPLOAD_MB = int(os.environ.get('MAX_UPLOAD_MB', '10'))

LOGIN_RATE_LIMIT = os.environ.get('LOGIN_RATE_LIMIT', '20 per minute')
DEFAULT_RATE_LIMIT = os.environ.get('DEFAULT_RATE_LIMIT', '1000 per minute')

ASSIGNMENT_DEBUG = os.environ.get('ASSIGNMENT_DEBUG', 'false').lower() == 'true'


def load_config(overrides=None):
    """Build the Flask config mapping from environment defaults plus overrides."""
    config = {
        'SECRET_KEY': SECRET_KEY,
        'SUPABASE_URL': SUPABASE_URL,
        'SUPABASE_KEY': SUPABASE_KEY,
        'BASE_DOMAIN': BASE_DOMAIN,
        'BCRYPT_ROUNDS': BCRYPT_ROUNDS,
        'MAX_UPLOAD_ROWS': MAX_UPLOAD_ROWS,
        'MAX_UPLOAD_MB': MAX_UPLOAD_MB,
        'MAX_CONTENT_LENGTH': MAX_UPLOAD_MB * 1024 * 1024,
        'PERMANENT_SESSION_LIFETIME': timedelta(hours=24),
        'LOGIN_RATE_LIMIT': LOGIN_RATE_LIMIT,
        'RATELIMIT_DEFAULT': DEFAULT_RATE_LIMIT,
        'RATELIMIT_ENABLED': True,
        'ASSIGNMENT_DEBUG': ASSIGNMENT_DEBUG,
    }
    if overrides:
        config.update(overrides)
    return config


def configure_logging(level=None, log_file=None):
    """Configure root logging with a file handler and a console handler."""
    handlers = [logging.StreamHandler()]
    log_file = log_file if log_file is not None else LOG_FILE
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=getattr(logging, level or LOG_LEVEL, logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers
    )

    # Reduce Flask log noise
    logging.getLogger('werkzeug').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
