import re
import secrets
import string
from datetime import datetime, timedelta

import pytz

from config import TIMEZONE


def get_ist_timestamp():
    """Get current timestamp in Indian Standard Time with explicit timezone"""
    ist_time = datetime.now(pytz.timezone(TIMEZONE))
    offset = ist_time.strftime('%z')
    return ist_time.strftime('%Y-%m-%d %H:%M:%S.%f')[:-3] + offset[:3] + ':' + offset[3:]


def get_ist_date():
    """Today's date in IST as YYYY-MM-DD"""
    return datetime.now(pytz.timezone(TIMEZONE)).strftime('%Y-%m-%d')


def is_valid_date(date_string):
    """Validate date string format (YYYY-MM-DD)"""
    try:
        datetime.strptime(date_string, '%Y-%m-%d')
        return True
    except (ValueError, TypeError):
        return False


def parse_timestamp(value):
    """Parse an ISO timestamp or a bare YYYY-MM-DD date. Returns None when unparseable."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    value = str(value).strip()
    try:
        if 'T' in value or ' ' in value:
            return datetime.fromisoformat(value.replace('Z', '+00:00'))
        return datetime.strptime(value, '%Y-%m-%d')
    except ValueError:
        return None


def filter_by_date(rows, filter_type, date_field='created_at'):
    """Filter rows based on date range"""
    if not filter_type or filter_type == 'all':
        return rows

    today = datetime.now(pytz.timezone(TIMEZONE)).date()

    if filter_type == 'today':
        start_date = today
    elif filter_type == 'mtd':  # Month to Date
        start_date = today.replace(day=1)
    elif filter_type == 'week':
        start_date = today - timedelta(days=today.weekday())
    elif filter_type == 'month':
        start_date = today - timedelta(days=30)
    elif filter_type == 'quarter':
        start_date = today - timedelta(days=90)
    elif filter_type == 'year':
        start_date = today - timedelta(days=365)
    else:
        return rows

    filtered = []
    for row in rows:
        parsed = parse_timestamp(row.get(date_field))
        if parsed is None:
            # Rows without a usable date are kept
            filtered.append(row)
            continue
        if start_date <= parsed.date() <= today:
            filtered.append(row)
    return filtered


def to_number(value):
    """Convert values like '₹1,25,000.50' to float. Returns None for blanks and junk."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = re.sub(r'[^0-9.\-]', '', str(value))
    if cleaned in ('', '-', '.', '-.'):
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def generate_temp_password(length=10):
    alphabet = string.ascii_letters + string.digits
    while True:
        password = ''.join(secrets.choice(alphabet) for _ in range(length))
        if any(c.isdigit() for c in password) and any(c.isalpha() for c in password):
            return password
