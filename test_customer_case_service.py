import pytest

from customer_case_service import CustomerCaseService, build_case_row, parse_dpd
from exceptions import NotFoundError, PermissionDenied, ValidationError


@pytest.fixture
def service(fake_db):
    return CustomerCaseService(fake_db)


@pytest.mark.parametrize('value,expected', [
    (None, None),
    (45, 45),
    (12.7, 12),
    ('45 days', 45),
    (' -3', -3),
    ('abc', None),
])
def test_parse_dpd(value, expected):
    assert parse_dpd(value) == expected


def test_build_case_row_promotes_known_columns():
    row = build_case_row('t1', {
        'EMPID': 'TC001', 'customerName': ' Ravi ', 'loanId': 'LN1', 'dpd': '30', 'mobileNo': '',
        'vehicleNo': 'KA01',
    }, team_id='team', product_name='PL', uploaded_by='u1')
    assert row['customer_name'] == 'Ravi'
    assert row['loan_id'] == 'LN1'
    assert row['dpd'] == 30
    assert 'mobile_no' not in row
    assert row['case_data']['vehicleNo'] == 'KA01'
    assert row['team_id'] == 'team'
    assert row['product_name'] == 'PL'
    assert row['uploaded_by'] == 'u1'
    assert row['priority'] == 'medium'


def test_create_and_update_case(service, acme):
    case = service.create_case(acme['id'], {
        'case_data': {'customerName': 'Ravi', 'loanId': 'LN1'}, 'priority': 'high', 'product_name': 'PL',
    })
    assert case['status'] == 'new'
    assert case['priority'] == 'high'

    with pytest.raises(ValidationError, match='Customer Name and Loan ID are required'):
        service.create_case(acme['id'], {'case_data': {'customerName': 'Ravi'}})
    with pytest.raises(ValidationError, match='Invalid priority'):
        service.create_case(acme['id'], {'case_data': {'customerName': 'Ravi', 'loanId': 'L'}, 'priority': 'now'})

    updated = service.update_case(acme['id'], case['id'], {'dpd': '61 days', 'tenant_id': 'evil'})
    assert updated['dpd'] == 61
    assert updated['tenant_id'] == acme['id']
    with pytest.raises(ValidationError, match='No valid fields to update'):
        service.update_case(acme['id'], case['id'], {'tenant_id': 'evil'})
    with pytest.raises(ValidationError, match='Invalid status'):
        service.update_case(acme['id'], case['id'], {'status': 'lost'})


def test_cases_are_tenant_scoped(service, seed, org):
    other = seed.tenant('globex')
    case = seed.case(org['tenant'], org['team'])
    with pytest.raises(NotFoundError):
        service.get_case(other['id'], case['id'])
    assert service.get_all_cases(other['id']) == []


def test_delete_case_removes_call_logs(service, seed, org, fake_db):
    case = seed.case(org['tenant'], org['team'], org['alice'])
    service.add_call_log(org['tenant']['id'], case['id'], org['alice']['id'], {'call_status': 'busy'})
    service.delete_case(org['tenant']['id'], case['id'])
    assert fake_db.rows('customer_cases') == []
    assert fake_db.rows('case_call_logs') == []


def test_cases_by_telecaller_emp_id(service, seed, org):
    seed.case(org['tenant'], org['team'], org['alice'])
    seed.case(org['tenant'], org['team'], org['bob'])
    tenant_id = org['tenant']['id']
    assert len(service.get_cases_by_telecaller(tenant_id, 'TC001')) == 1
    assert service.get_cases_by_telecaller(tenant_id, 'NOPE') == []


def test_team_cases_attach_telecaller(service, seed, org):
    seed.case(org['tenant'], org['team'], org['alice'])
    loose = seed.case(org['tenant'], org['team'])
    tenant_id, team_id = org['tenant']['id'], org['team']['id']

    cases = service.get_team_cases(tenant_id, team_id)
    assert [c['telecaller'] for c in cases] == [None, {'id': org['alice']['id'], 'name': 'Alice', 'emp_id': 'TC001'}]
    assert [c['id'] for c in service.get_unassigned_team_cases(tenant_id, team_id)] == [loose['id']]


def test_cases_by_filters(service, seed, org):
    tenant = org['tenant']
    team_id = org['team']['id']
    ravi = seed.case(tenant, org['team'], org['alice'], customer_name='Ravi', status='in_progress')
    meena = seed.case(tenant, org['team'], customer_name='Meena', mobile_no='9000000001')
    seed.case(tenant, org['team'], org['bob'], customer_name='Kiran', product_name='Gold Loan')

    def ids(**filters):
        return [c['id'] for c in service.get_cases_by_filters(tenant['id'], team_id, filters)]

    assert len(ids()) == 3
    assert ids(telecaller='unassigned') == [meena['id']]
    assert ids(telecaller=org['alice']['id']) == [ravi['id']]
    assert ids(status='in_progress') == [ravi['id']]
    assert len(ids(product='Personal Loan')) == 2
    assert ids(search='00000') == [meena['id']]
    assert ids(search='RAVI') == [ravi['id']]
    assert len(ids(date_from='2000-01-01', date_to='2999-12-31')) == 3
    assert ids(date_to='2000-01-01') == []

    cases = service.get_cases_by_filters(tenant['id'], team_id, {'telecaller': org['alice']['id']})
    assert cases[0]['telecaller']['name'] == 'Alice'

    with pytest.raises(ValidationError, match='date_from must be YYYY-MM-DD'):
        service.get_cases_by_filters(tenant['id'], team_id, {'date_from': '01/02/2024'})


def test_update_case_status(service, seed, org):
    tenant_id = org['tenant']['id']
    case = seed.case(org['tenant'], org['team'], org['alice'])

    updated = service.update_case_status(tenant_id, case['id'], org['alice']['id'], 'resolved', 'Paid in full')
    assert updated['status'] == 'resolved'
    assert updated['remarks'] == 'Paid in full'

    with pytest.raises(PermissionDenied):
        service.update_case_status(tenant_id, case['id'], org['bob']['id'], 'closed')
    with pytest.raises(ValidationError, match='Status must be one of'):
        service.update_case_status(tenant_id, case['id'], org['alice']['id'], 'new')


def test_add_call_log(service, seed, org, fake_db):
    tenant_id = org['tenant']['id']
    case = seed.case(org['tenant'], org['team'], org['alice'])

    log = service.add_call_log(tenant_id, case['id'], org['alice']['id'], {
        'call_status': 'ptp', 'ptp_date': '2030-01-05', 'amount_collected': '₹1,500', 'call_duration': '90',
        'call_notes': 'Will pay Friday',
    })
    assert log['amount_collected'] == 1500.0
    assert log['call_duration'] == 90
    assert fake_db.get('customer_cases', case['id'])['status'] == 'in_progress'
    assert service.get_call_logs_by_case(tenant_id, case['id'])[0]['id'] == log['id']
    assert len(service.get_call_logs_by_employee(tenant_id, org['alice']['id'])) == 1


@pytest.mark.parametrize('data,message', [
    ({'call_status': 'asleep'}, 'call_status must be one of'),
    ({'call_status': 'ptp'}, 'ptp_date is required'),
    ({'call_status': 'ptp', 'ptp_date': 'friday'}, 'ptp_date must be YYYY-MM-DD'),
    ({'call_status': 'paid', 'amount_collected': '-5'}, 'amount_collected must be a non-negative number'),
    ({'call_status': 'busy', 'call_duration': 'long'}, 'call_duration must be a whole number'),
])
def test_add_call_log_validation(service, seed, org, data, message):
    case = seed.case(org['tenant'], org['team'], org['alice'])
    with pytest.raises(ValidationError, match=message):
        service.add_call_log(org['tenant']['id'], case['id'], org['alice']['id'], data)


def test_add_call_log_rules(service, seed, org):
    tenant_id = org['tenant']['id']
    case = seed.case(org['tenant'], org['team'], org['alice'])
    with pytest.raises(PermissionDenied):
        service.add_call_log(tenant_id, case['id'], org['bob']['id'], {'call_status': 'busy'})

    closed = seed.case(org['tenant'], org['team'], org['alice'], status='closed')
    with pytest.raises(ValidationError, match='closed case'):
        service.add_call_log(tenant_id, closed['id'], org['alice']['id'], {'call_status': 'busy'})


def test_stats(service, seed, org):
    tenant = org['tenant']
    seed.case(tenant, org['team'], org['alice'])
    seed.case(tenant, org['team'], org['alice'], status='in_progress', priority='urgent')
    seed.case(tenant, org['team'], org['alice'], status='closed')

    summary = service.get_case_stats_by_employee(tenant['id'], org['alice']['id'])
    assert summary == {
        'total_cases': 3, 'pending_cases': 1, 'in_progress_cases': 1, 'resolved_cases': 1, 'high_priority_cases': 1,
    }
    stats = service.get_telecaller_case_stats(tenant['id'], org['alice']['id'])
    assert stats == {'total': 3, 'new': 0, 'assigned': 1, 'in_progress': 1, 'resolved': 0, 'closed': 1}


# Telecaller routes

def test_telecaller_sees_own_cases(tenant_client, seed, org):
    mine = seed.case(org['tenant'], org['team'], org['alice'])
    seed.case(org['tenant'], org['team'], org['bob'])
    tenant_client.login('TC001')

    body = tenant_client.get('/telecaller/cases').get_json()
    assert [c['id'] for c in body['cases']] == [mine['id']]
    assert body['columns']['Personal Loan'][0]['column_name'] == 'customerName'

    assert tenant_client.get('/telecaller/cases?status=closed').get_json()['cases'] == []

    detail = tenant_client.get(f"/telecaller/cases/{mine['id']}").get_json()
    assert detail['case']['id'] == mine['id']
    assert detail['call_logs'] == []


def test_telecaller_cannot_open_other_cases(tenant_client, seed, org):
    theirs = seed.case(org['tenant'], org['team'], org['bob'])
    tenant_client.login('TC001')
    response = tenant_client.get(f"/telecaller/cases/{theirs['id']}")
    assert response.status_code == 403
    assert response.get_json()['message'] == 'This case is not assigned to you'
    response = tenant_client.post(f"/telecaller/cases/{theirs['id']}/calls", json={'call_status': 'busy'})
    assert response.status_code == 403


def test_telecaller_logs_calls_and_updates_status(tenant_client, seed, org, fake_db):
    case = seed.case(org['tenant'], org['team'], org['alice'])
    tenant_client.login('TC001')

    response = tenant_client.post(f"/telecaller/cases/{case['id']}/calls", json={
        'call_status': 'paid', 'amount_collected': 2000,
    })
    assert response.status_code == 201
    assert response.get_json()['call_log']['call_status'] == 'paid'
    assert fake_db.rows('audit_logs', action='CALL_LOGGED')

    calls = tenant_client.get(f"/telecaller/cases/{case['id']}/calls").get_json()['call_logs']
    assert len(calls) == 1
    assert len(tenant_client.get('/telecaller/calls?date_filter=today').get_json()['call_logs']) == 1

    response = tenant_client.post(f"/telecaller/cases/{case['id']}/status", json={'status': 'resolved'})
    assert response.get_json()['message'] == 'Case marked as resolved'

    body = tenant_client.get('/telecaller/stats').get_json()
    assert body['stats']['resolved'] == 1
    assert body['summary']['resolved_cases'] == 1


def test_telecaller_dashboard(tenant_client, seed, org):
    seed.case(org['tenant'], org['team'], org['alice'], dpd=45)
    tenant_client.login('TC001')
    metrics = tenant_client.get('/telecaller/dashboard').get_json()['metrics']
    assert metrics['assigned_cases'] == 1
    assert metrics['dpd_buckets'] == {'31-60': 1}


def test_other_roles_cannot_use_telecaller_pages(tenant_client, org):
    tenant_client.login('TI001')
    assert tenant_client.get('/telecaller/cases').status_code == 403
