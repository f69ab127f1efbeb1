import logging
import re
from typing import Any, Dict, Optional

from flask import g, request

from db import first_row, get_supabase
from exceptions import TenantResolutionError

logger = logging.getLogger(__name__)

IPV4_REGEX = re.compile(r'^\d{1,3}(\.\d{1,3}){3}$')


def _strip_port(hostname: str) -> str:
    return (hostname or '').split(':')[0].lower()


def extract_subdomain(hostname: str, base_domain: Optional[str] = None) -> str:
    """Return the tenant label of a hostname, or '' for the main domain.

    With ``base_domain`` set, the label directly in front of it is used, so
    a main host such as crm.example.com is not mistaken for tenant ``crm``.
    """
    host = _strip_port(hostname)
    parts = host.split('.')

    base = _strip_port(base_domain) if base_domain else ''
    if base and host == base:
        return ''
    if base and host.endswith('.' + base):
        return host[:-len(base) - 1].split('.')[-1]

    if IPV4_REGEX.match(host):
        return ''

    if 'localhost' in host:
        # acme.localhost -> acme, plain localhost -> ''
        if len(parts) == 2 and parts[1] == 'localhost' and parts[0] != 'localhost':
            return parts[0]
        return ''

    if len(parts) > 2:
        return parts[0]
    return ''


def extract_domain(hostname: str) -> str:
    host = _strip_port(hostname)
    if host == 'localhost' or '127.0.0.1' in host:
        return host
    parts = host.split('.')
    if len(parts) >= 2:
        return '.'.join(parts[-2:])
    return host


def is_main_domain(hostname: str, base_domain: Optional[str] = None) -> bool:
    subdomain = extract_subdomain(hostname, base_domain)
    return not subdomain or subdomain == 'www'


def get_tenant_identifier(hostname: str, base_domain: Optional[str] = None) -> Optional[str]:
    if is_main_domain(hostname, base_domain):
        return None
    return extract_subdomain(hostname, base_domain)


def get_tenant_by_subdomain(client, subdomain: str) -> Optional[Dict[str, Any]]:
    """Look a tenant up by subdomain, falling back to the subdomain of a full hostname."""
    normalized = (subdomain or '').lower().strip()
    if not normalized:
        return None

    tenant = first_row(client.table('tenants').select('*').eq('subdomain', normalized).limit(1).execute())
    if tenant:
        return tenant

    extracted = extract_subdomain(normalized)
    if extracted and extracted != normalized:
        logger.info(f"🔍 Retrying tenant lookup with extracted subdomain: {extracted}")
        return first_row(client.table('tenants').select('*').eq('subdomain', extracted).limit(1).execute())

    return None


def resolve_tenant(client, hostname: str, base_domain: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Resolve the active tenant for a request host.

    Returns None on the main domain (SuperAdmin portal). Raises
    TenantResolutionError for unknown or non-active tenants.
    """
    identifier = get_tenant_identifier(hostname, base_domain)
    if identifier is None:
        return None

    tenant = get_tenant_by_subdomain(client, identifier)
    if not tenant:
        logger.warning(f"⚠️ Tenant not found for subdomain: {identifier}")
        raise TenantResolutionError(f"Tenant not found for subdomain: {identifier}", 404)

    if tenant.get('status') != 'active':
        logger.warning(f"⚠️ Inactive tenant access attempt: {tenant.get('name')} ({tenant.get('status')})")
        raise TenantResolutionError(
            f'Tenant "{tenant.get("name")}" is not active (status: {tenant.get("status")})', 403
        )

    tenant.setdefault('settings', None)
    if not tenant['settings']:
        tenant['settings'] = {'branding': {}, 'features': {}}
    return tenant


def init_tenant_resolution(app):
    """Install the before_request hook that sets ``g.tenant``."""

    @app.before_request
    def load_tenant():
        g.tenant = None
        if request.endpoint in ('static', 'auth.health'):
            return None
        g.tenant = resolve_tenant(get_supabase(), request.host, app.config.get('BASE_DOMAIN'))
        return None
