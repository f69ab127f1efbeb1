import pytest

from subdomain_validation import (
    RESERVED_SUBDOMAINS, generate_subdomain_suggestions, sanitize_subdomain, validate_subdomain_format,
)


@pytest.mark.parametrize('subdomain', ['acme', 'acme-recoveries', 'abc', 'a1b2c3', 'x' * 63])
def test_valid_subdomains(subdomain):
    assert validate_subdomain_format(subdomain) == (True, None)


@pytest.mark.parametrize('subdomain,message', [
    ('', 'Subdomain is required'),
    ('   ', 'Subdomain is required'),
    (None, 'Subdomain is required'),
    ('ab', 'Subdomain must be at least 3 characters long'),
    ('x' * 64, 'Subdomain must not exceed 63 characters'),
    ('-acme', 'Subdomain can only contain lowercase letters, numbers, and hyphens (not at start/end)'),
    ('acme-', 'Subdomain can only contain lowercase letters, numbers, and hyphens (not at start/end)'),
    ('ac_me', 'Subdomain can only contain lowercase letters, numbers, and hyphens (not at start/end)'),
    ('www', 'This subdomain is reserved and cannot be used'),
    ('admin', 'This subdomain is reserved and cannot be used'),
])
def test_invalid_subdomains(subdomain, message):
    assert validate_subdomain_format(subdomain) == (False, message)


def test_validation_is_case_insensitive():
    assert validate_subdomain_format('ACME') == (True, None)
    assert validate_subdomain_format('API')[0] is False


def test_sanitize_subdomain():
    assert sanitize_subdomain('  Acme Recoveries Pvt. Ltd ') == 'acmerecoveriespvtltd'
    assert sanitize_subdomain('--acme--north--') == 'acme-north'
    assert sanitize_subdomain('x' * 80) == 'x' * 63
    assert sanitize_subdomain(None) == ''


def test_suggestions_skip_taken_names():
    suggestions = generate_subdomain_suggestions('acme', ['acme', 'acme1', 'acme2'])
    assert suggestions == ['acme3', 'acme4', 'acme5', 'acme-inc', 'acme-co']


def test_suggestions_limited_to_five():
    assert len(generate_subdomain_suggestions('acme', [])) == 5


def test_no_suggestions_for_short_names():
    assert generate_subdomain_suggestions('ab', []) == []


def test_reserved_list_contains_portal_names():
    for name in ('www', 'api', 'superadmin', 'login'):
        assert name in RESERVED_SUBDOMAINS
