import pytest
from postgrest.exceptions import APIError

from auth import AuthManager
from exceptions import ConflictError, DatabaseError, NotFoundError, PermissionDenied, ValidationError
from tenant_service import TenantService


@pytest.fixture
def service(fake_db):
    return TenantService(fake_db, AuthManager(fake_db, bcrypt_rounds=4))


def test_create_tenant_with_defaults(service, fake_db):
    tenant = service.create_tenant({'name': 'Acme Recoveries', 'subdomain': 'Acme'}, created_by='sa-1')
    assert tenant['subdomain'] == 'acme'
    assert tenant['status'] == 'active'
    assert tenant['plan'] == 'basic'
    assert tenant['max_users'] == 10
    assert tenant['max_connections'] == 5
    assert tenant['settings'] == {'branding': {}, 'features': {}}
    assert tenant['created_by'] == 'sa-1'
    assert 'company_admin' not in tenant
    assert len(fake_db.rows('tenants')) == 1


def test_subdomain_derived_from_name(service):
    tenant = service.create_tenant({'name': 'Star Collections'}, created_by=None)
    assert tenant['subdomain'] == 'starcollections'


def test_create_tenant_with_admin(service, fake_db):
    tenant = service.create_tenant({
        'name': 'Acme',
        'subdomain': 'acme',
        'admin_employee_id': 'ADM001',
        'admin_password': 'secret123',
        'admin_name': 'Asha',
    }, created_by=None)
    admin = tenant['company_admin']
    assert admin['employee_id'] == 'ADM001'
    assert admin['tenant_id'] == tenant['id']
    assert 'password_hash' not in admin
    assert fake_db.rows('company_admins')[0]['password_hash'].startswith('$2')


def test_create_tenant_validation(service, seed):
    seed.tenant('acme')
    with pytest.raises(ValidationError, match='Tenant name is required'):
        service.create_tenant({'name': '  '}, None)
    with pytest.raises(ValidationError, match='reserved'):
        service.create_tenant({'name': 'Admin Co', 'subdomain': 'admin'}, None)
    with pytest.raises(ConflictError, match='A tenant with this subdomain already exists'):
        service.create_tenant({'name': 'Acme Two', 'subdomain': 'ACME'}, None)
    with pytest.raises(ValidationError, match='Invalid plan'):
        service.create_tenant({'name': 'Beta', 'plan': 'gold'}, None)
    with pytest.raises(ValidationError, match='Both admin employee ID and admin password are required'):
        service.create_tenant({'name': 'Gamma', 'admin_employee_id': 'ADM001'}, None)
    with pytest.raises(ValidationError, match='max_users must be a whole number'):
        service.create_tenant({'name': 'Delta', 'max_users': 'many'}, None)
    with pytest.raises(ValidationError, match='max_connections must be at least 1'):
        service.create_tenant({'name': 'Delta', 'max_connections': '0'}, None)
    assert [t['subdomain'] for t in service.list_tenants()] == ['acme']


def test_weak_admin_password_creates_nothing(service, fake_db):
    with pytest.raises(ValidationError, match='Password must be at least 6 characters long'):
        service.create_tenant({
            'name': 'Beta', 'subdomain': 'beta', 'admin_employee_id': 'ADM001', 'admin_password': '123',
        }, None)
    assert fake_db.rows('tenants') == []

    tenant = service.create_tenant({
        'name': 'Beta', 'subdomain': 'beta', 'admin_employee_id': 'ADM001', 'admin_password': 'secret123',
    }, None)
    assert tenant['company_admin']['employee_id'] == 'ADM001'


def test_failed_admin_insert_removes_tenant(service, fake_db):
    fake_db.fail_next('company_admins', 'insert')
    with pytest.raises(APIError):
        service.create_tenant({
            'name': 'Beta', 'subdomain': 'beta', 'admin_employee_id': 'ADM001', 'admin_password': 'secret123',
        }, None)
    assert fake_db.rows('tenants') == []
    assert fake_db.rows('company_admins') == []


def test_update_tenant_limits(service, seed):
    acme = seed.tenant('acme')
    assert service.update_tenant(acme['id'], {'max_users': '25'})['max_users'] == 25
    with pytest.raises(ValidationError, match='max_users must be a whole number'):
        service.update_tenant(acme['id'], {'max_users': 'lots'})


@pytest.mark.parametrize('code,error', [
    ('23505', ConflictError),
    ('42501', PermissionDenied),
    ('23503', ValidationError),
    ('XX000', DatabaseError),
])
def test_database_errors_are_mapped(service, fake_db, code, error):
    fake_db.fail_next('tenants', 'insert', code=code)
    with pytest.raises(error):
        service.create_tenant({'name': 'Acme', 'subdomain': 'acme'}, None)


def test_check_subdomain_availability(service, seed):
    seed.tenant('acme')
    assert service.check_subdomain_availability('fresh') == {'available': True, 'valid': True}
    taken = service.check_subdomain_availability('acme')
    assert taken['available'] is False
    assert taken['error'] == 'This subdomain is already taken'
    assert 'acme1' in taken['suggestions']
    invalid = service.check_subdomain_availability('ab')
    assert invalid == {'available': False, 'valid': False, 'error': 'Subdomain must be at least 3 characters long'}


def test_list_and_get_tenants(service, seed):
    first = seed.tenant('first')
    second = seed.tenant('second')
    assert [t['id'] for t in service.list_tenants()] == [second['id'], first['id']]
    assert service.get_tenant(first['id'])['subdomain'] == 'first'
    with pytest.raises(NotFoundError):
        service.get_tenant('missing')


def test_update_tenant(service, seed):
    acme = seed.tenant('acme')
    seed.tenant('taken')
    updated = service.update_tenant(acme['id'], {'name': 'Acme India', 'plan': 'premium', 'ignored': 'x'})
    assert updated['name'] == 'Acme India'
    assert updated['plan'] == 'premium'
    assert 'ignored' not in updated

    with pytest.raises(ConflictError):
        service.update_tenant(acme['id'], {'subdomain': 'taken'})
    with pytest.raises(ValidationError, match='No valid fields to update'):
        service.update_tenant(acme['id'], {'foo': 'bar'})
    assert service.update_tenant(acme['id'], {'subdomain': 'ACME'})['subdomain'] == 'acme'


def test_status_and_delete(service, seed, fake_db):
    acme = seed.tenant('acme')
    assert service.set_tenant_status(acme['id'], 'suspended')['status'] == 'suspended'
    with pytest.raises(ValidationError):
        service.set_tenant_status(acme['id'], 'paused')
    assert service.delete_tenant(acme['id']) is True
    assert fake_db.rows('tenants') == []


def test_company_admin_id_must_be_unique_in_tenant(service, seed, acme):
    seed.employee(acme, 'EMP1')
    with pytest.raises(ConflictError, match='Employee ID EMP1 already exists in this company'):
        service.create_company_admin(acme['id'], 'EMP1', 'secret123')
    service.create_company_admin(acme['id'], 'ADM001', 'secret123')
    with pytest.raises(ConflictError):
        service.create_company_admin(acme['id'], 'ADM001', 'secret123')
    assert [a['employee_id'] for a in service.list_company_admins(acme['id'])] == ['ADM001']


def test_resolve_from_host(service, seed):
    acme = seed.tenant('acme')
    assert service.resolve_from_host('acme.example.com')['id'] == acme['id']
    assert service.resolve_from_host('example.com') is None


# Routes

@pytest.fixture
def superadmin(main_client, seed):
    seed.super_admin('root', 'secret123')
    main_client.login('root')
    return main_client


def test_superadmin_tenant_crud(superadmin, fake_db):
    response = superadmin.post('/superadmin/tenants', json={
        'name': 'Acme', 'subdomain': 'acme', 'admin_employee_id': 'ADM001', 'admin_password': 'secret123',
    })
    assert response.status_code == 201
    tenant = response.get_json()['tenant']

    listed = superadmin.get('/superadmin/tenants').get_json()['tenants']
    assert [t['id'] for t in listed] == [tenant['id']]

    detail = superadmin.get(f"/superadmin/tenants/{tenant['id']}").get_json()
    assert detail['company_admins'][0]['employee_id'] == 'ADM001'
    assert detail['overview']['total_cases'] == 0

    response = superadmin.put(f"/superadmin/tenants/{tenant['id']}", json={'plan': 'standard'})
    assert response.get_json()['tenant']['plan'] == 'standard'

    response = superadmin.post(f"/superadmin/tenants/{tenant['id']}/status", json={'status': 'suspended'})
    assert response.get_json()['tenant']['status'] == 'suspended'

    assert superadmin.get('/superadmin/dashboard').get_json()['tenants_by_status'] == {'suspended': 1}

    assert superadmin.delete(f"/superadmin/tenants/{tenant['id']}").status_code == 200
    actions = [r['action'] for r in fake_db.rows('audit_logs')]
    assert 'TENANT_CREATED' in actions and 'TENANT_DELETED' in actions


def test_superadmin_duplicate_subdomain(superadmin, seed):
    seed.tenant('acme')
    response = superadmin.post('/superadmin/tenants', json={'name': 'Acme', 'subdomain': 'acme'})
    assert response.status_code == 409
    assert response.get_json() == {'success': False, 'message': 'A tenant with this subdomain already exists'}


def test_superadmin_retry_after_weak_admin_password(superadmin, fake_db):
    payload = {'name': 'Beta', 'subdomain': 'beta', 'admin_employee_id': 'ADM001', 'admin_password': '123'}
    response = superadmin.post('/superadmin/tenants', json=payload)
    assert response.status_code == 400
    assert response.get_json()['message'] == 'Password must be at least 6 characters long'
    assert fake_db.rows('tenants') == []

    response = superadmin.post('/superadmin/tenants', json=dict(payload, admin_password='secret123'))
    assert response.status_code == 201


def test_superadmin_company_admins(superadmin, seed):
    acme = seed.tenant('acme')
    response = superadmin.post(f"/superadmin/tenants/{acme['id']}/admins", json={
        'employee_id': 'ADM002', 'password': 'secret123', 'name': 'Second Admin',
    })
    assert response.status_code == 201
    admins = superadmin.get(f"/superadmin/tenants/{acme['id']}/admins").get_json()['company_admins']
    assert [a['name'] for a in admins] == ['Second Admin']


def test_superadmin_check_subdomain(superadmin, seed):
    seed.tenant('acme')
    body = superadmin.get('/superadmin/check_subdomain?subdomain=acme').get_json()
    assert body['success'] and body['available'] is False


def test_superadmin_routes_need_superadmin(tenant_client, org):
    tenant_client.login('ADM001')
    response = tenant_client.get('/superadmin/tenants')
    assert response.status_code == 403


def test_superadmin_dashboard_platform_stats(superadmin, seed, org, fake_db):
    seed.case(org['tenant'], org['team'])
    fake_db.fail_next('company_admins', 'select')

    stats = superadmin.get('/superadmin/dashboard').get_json()['platform_stats']
    # A failed read counts as empty
    assert stats['total_company_admins'] == 0
    assert stats['total_employees'] == 3
    assert stats['total_cases'] == 1
