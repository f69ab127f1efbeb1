import re
from typing import List, Optional, Tuple

RESERVED_SUBDOMAINS = [
    'www', 'api', 'app', 'admin', 'superadmin', 'dashboard', 'login',
    'mail', 'email', 'smtp', 'ftp', 'localhost', 'static', 'assets', 'cdn',
    'dev', 'staging', 'test', 'demo', 'docs', 'help', 'support', 'status',
    'blog',
]

SUBDOMAIN_REGEX = re.compile(r'^[a-z0-9]([a-z0-9-]*[a-z0-9])?$')

MIN_LENGTH = 3
MAX_LENGTH = 63


def validate_subdomain_format(subdomain: Optional[str]) -> Tuple[bool, Optional[str]]:
    """Check a subdomain against the format rules. Returns (is_valid, error)."""
    if not subdomain or not subdomain.strip():
        return False, 'Subdomain is required'

    normalized = subdomain.lower().strip()

    if len(normalized) < MIN_LENGTH:
        return False, 'Subdomain must be at least 3 characters long'

    if len(normalized) > MAX_LENGTH:
        return False, 'Subdomain must not exceed 63 characters'

    if not SUBDOMAIN_REGEX.match(normalized):
        return False, 'Subdomain can only contain lowercase letters, numbers, and hyphens (not at start/end)'

    if normalized in RESERVED_SUBDOMAINS:
        return False, 'This subdomain is reserved and cannot be used'

    return True, None


def sanitize_subdomain(subdomain: str) -> str:
    value = (subdomain or '').lower().strip()
    value = re.sub(r'[^a-z0-9-]', '', value)
    value = re.sub(r'^-+|-+$', '', value)
    value = re.sub(r'--+', '-', value)
    return value[:MAX_LENGTH]


def generate_subdomain_suggestions(base_name: str, existing_subdomains: List[str]) -> List[str]:
    """Suggest up to five free subdomains derived from ``base_name``."""
    sanitized = sanitize_subdomain(base_name)
    existing = set(existing_subdomains or [])
    suggestions = []

    if len(sanitized) < MIN_LENGTH:
        return suggestions

    for i in range(1, 6):
        suggestion = f"{sanitized}{i}"
        if suggestion not in existing and suggestion not in RESERVED_SUBDOMAINS:
            suggestions.append(suggestion)

    for suffix in ('-inc', '-co'):
        suggestion = f"{sanitized}{suffix}"
        if len(suggestion) <= MAX_LENGTH and suggestion not in existing:
            suggestions.append(suggestion)

    return suggestions[:5]
