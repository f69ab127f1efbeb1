"""
Pytest fixtures: an in-memory stand-in for the Supabase table API plus
seed helpers for tenants, users, teams and cases.
"""

import copy
import re
import uuid
from datetime import datetime, timedelta

import bcrypt
import pytest
import pytz
from postgrest.exceptions import APIError

from app import create_app

IST = pytz.timezone('Asia/Kolkata')

TENANT_HOST = 'acme.example.com'
MAIN_HOST = 'example.com'


class FakeResponse:
    def __init__(self, data):
        self.data = data
        self.count = len(data)


def _comparable(a, b):
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a, b
    return str(a), str(b)


class FakeQuery:
    """Records a chain of builder calls and runs it against FakeSupabase tables on execute()."""

    def __init__(self, db, table_name):
        self.db = db
        self.table_name = table_name
        self.operation = 'select'
        self.fields = '*'
        self.payload = None
        self.filters = []
        self.orders = []
        self.limit_count = None
        self.range_bounds = None

    # Operations
    def select(self, fields='*', count=None):
        self.operation = 'select'
        self.fields = fields
        return self

    def insert(self, rows):
        self.operation = 'insert'
        self.payload = rows
        return self

    def update(self, data):
        self.operation = 'update'
        self.payload = data
        return self

    def delete(self):
        self.operation = 'delete'
        return self

    # Filters
    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self.filters.append(lambda row: row.get(column) != value)
        return self

    def in_(self, column, values):
        values = list(values)
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def is_(self, column, value):
        if value in ('null', None):
            self.filters.append(lambda row: row.get(column) is None)
        else:
            self.filters.append(lambda row: row.get(column) is value)
        return self

    def ilike(self, column, pattern):
        regex = re.compile(
            '^' + '.*'.join(re.escape(part) for part in pattern.split('%')) + '$', re.IGNORECASE
        )
        self.filters.append(lambda row: row.get(column) is not None and bool(regex.match(str(row.get(column)))))
        return self

    def gte(self, column, value):
        def check(row):
            if row.get(column) is None:
                return False
            left, right = _comparable(row.get(column), value)
            return left >= right
        self.filters.append(check)
        return self

    def lte(self, column, value):
        def check(row):
            if row.get(column) is None:
                return False
            left, right = _comparable(row.get(column), value)
            return left <= right
        self.filters.append(check)
        return self

    # Modifiers
    def order(self, column, desc=False):
        self.orders.append((column, desc))
        return self

    def limit(self, count):
        self.limit_count = count
        return self

    def range(self, start, end):
        self.range_bounds = (start, end)
        return self

    # Execution
    def _matching(self):
        return [row for row in self.db.tables.setdefault(self.table_name, []) if all(f(row) for f in self.filters)]

    def _project(self, row):
        if self.fields.strip() == '*':
            return copy.deepcopy(row)
        fields = [f.strip() for f in self.fields.split(',') if f.strip()]
        return {f: copy.deepcopy(row.get(f)) for f in fields}

    def execute(self):
        self.db.check_failure(self.table_name, self.operation)

        if self.operation == 'insert':
            rows = self.payload if isinstance(self.payload, list) else [self.payload]
            return FakeResponse([copy.deepcopy(self.db.insert_row(self.table_name, row)) for row in rows])

        matched = self._matching()

        if self.operation == 'update':
            for row in matched:
                row.update(copy.deepcopy(self.payload))
            return FakeResponse([copy.deepcopy(row) for row in matched])

        if self.operation == 'delete':
            table = self.db.tables[self.table_name]
            self.db.tables[self.table_name] = [row for row in table if not any(row is m for m in matched)]
            return FakeResponse([copy.deepcopy(row) for row in matched])

        rows = list(matched)
        for column, desc in reversed(self.orders):
            present = [r for r in rows if r.get(column) is not None]
            missing = [r for r in rows if r.get(column) is None]
            present.sort(key=lambda r: _comparable(r.get(column), r.get(column))[0], reverse=desc)
            # Postgres puts NULLs last ascending and first descending
            rows = missing + present if desc else present + missing

        if self.range_bounds is not None:
            start, end = self.range_bounds
            rows = rows[start:end + 1]
        if self.limit_count is not None:
            rows = rows[:self.limit_count]

        return FakeResponse([self._project(row) for row in rows])


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.failures = []
        self.calls = []
        self._last_timestamp = None

    def table(self, name):
        self.calls.append(name)
        return FakeQuery(self, name)

    def timestamp(self):
        now = datetime.now(IST)
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now.isoformat(timespec='microseconds')

    def insert_row(self, table_name, row):
        stored = copy.deepcopy(row)
        stored.setdefault('id', str(uuid.uuid4()))
        now = self.timestamp()
        stored.setdefault('created_at', now)
        stored.setdefault('updated_at', now)
        self.tables.setdefault(table_name, []).append(stored)
        return stored

    def fail_next(self, table_name, operation, code='XX000', message='simulated failure', times=1):
        """Make the next ``times`` matching operations raise postgrest's APIError."""
        for _ in range(times):
            self.failures.append((table_name, operation, code, message))

    def check_failure(self, table_name, operation):
        for index, (table, op, code, message) in enumerate(self.failures):
            if table == table_name and op == operation:
                del self.failures[index]
                raise APIError({'message': message, 'code': code, 'hint': None, 'details': None})

    def rows(self, table_name, **filters):
        return [
            row for row in self.tables.get(table_name, [])
            if all(row.get(k) == v for k, v in filters.items())
        ]

    def get(self, table_name, row_id):
        return next((row for row in self.tables.get(table_name, []) if row['id'] == row_id), None)


def hash_password(password):
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=4)).decode('utf-8')


class Seeder:
    """Insert fixture rows straight into the fake database."""

    def __init__(self, db):
        self.db = db

    def tenant(self, subdomain='acme', name=None, status='active', **fields):
        row = {
            'name': name or subdomain.title(),
            'subdomain': subdomain,
            'status': status,
            'plan': 'basic',
            'max_users': 10,
            'max_connections': 5,
            'settings': {'branding': {}, 'features': {}},
        }
        row.update(fields)
        return self.db.insert_row('tenants', row)

    def super_admin(self, username='root', password='secret123'):
        return self.db.insert_row('super_admins', {'username': username, 'password_hash': hash_password(password)})

    def company_admin(self, tenant, employee_id='ADM001', password='secret123', name='Asha Admin'):
        return self.db.insert_row('company_admins', {
            'tenant_id': tenant['id'],
            'employee_id': employee_id,
            'name': name,
            'email': 'admin@example.com',
            'password_hash': hash_password(password),
            'status': 'active',
        })

    def employee(self, tenant, emp_id, role='Telecaller', name=None, password='secret123',
                 status='active', team_id=None, mobile='9876543210'):
        return self.db.insert_row('employees', {
            'tenant_id': tenant['id'],
            'name': name or f'Employee {emp_id}',
            'mobile': mobile,
            'emp_id': emp_id,
            'role': role,
            'status': status,
            'team_id': team_id,
            'password_hash': hash_password(password),
        })

    def team(self, tenant, incharge, name='Team A', product_name='Personal Loan', status='active'):
        return self.db.insert_row('teams', {
            'tenant_id': tenant['id'],
            'name': name,
            'team_incharge_id': incharge['id'],
            'product_name': product_name,
            'status': status,
            'created_by': incharge['id'],
        })

    def case(self, tenant, team=None, telecaller=None, status=None, **fields):
        row = {
            'tenant_id': tenant['id'],
            'team_id': team['id'] if team else None,
            'product_name': team['product_name'] if team else None,
            'telecaller_id': telecaller['id'] if telecaller else None,
            'status': status or ('assigned' if telecaller else 'new'),
            'priority': 'medium',
            'customer_name': 'Ravi Kumar',
            'loan_id': f'LN{uuid.uuid4().hex[:8].upper()}',
            'mobile_no': '9876543210',
            'case_data': {},
        }
        row.update(fields)
        return self.db.insert_row('customer_cases', row)


class HostClient:
    """Flask test client pinned to one host, so tenant resolution sees a subdomain."""

    def __init__(self, client, host):
        self.client = client
        self.base_url = f'http://{host}'

    def _call(self, method, path, **kwargs):
        kwargs.setdefault('base_url', self.base_url)
        return getattr(self.client, method)(path, **kwargs)

    def get(self, path, **kwargs):
        return self._call('get', path, **kwargs)

    def post(self, path, **kwargs):
        return self._call('post', path, **kwargs)

    def put(self, path, **kwargs):
        return self._call('put', path, **kwargs)

    def patch(self, path, **kwargs):
        return self._call('patch', path, **kwargs)

    def delete(self, path, **kwargs):
        return self._call('delete', path, **kwargs)

    def login(self, username, password='secret123'):
        response = self.post('/login', json={'username': username, 'password': password})
        assert response.status_code == 200, response.get_json()
        return response


@pytest.fixture
def fake_db():
    return FakeSupabase()


@pytest.fixture
def seed(fake_db):
    return Seeder(fake_db)


@pytest.fixture
def app(fake_db):
    app = create_app(
        {
            'TESTING': True,
            'SECRET_KEY': 'test-secret',
            'BASE_DOMAIN': MAIN_HOST,
            'BCRYPT_ROUNDS': 4,
            'RATELIMIT_ENABLED': False,
            'MAX_UPLOAD_ROWS': 50,
        },
        supabase_client=fake_db,
    )
    return app


@pytest.fixture
def tenant_client(app):
    return HostClient(app.test_client(), TENANT_HOST)


@pytest.fixture
def main_client(app):
    return HostClient(app.test_client(), MAIN_HOST)


@pytest.fixture
def acme(seed):
    return seed.tenant('acme', name='Acme Recoveries')


@pytest.fixture
def org(seed, acme):
    """A small collection team: admin, incharge, two telecallers and a team."""
    admin = seed.company_admin(acme)
    incharge = seed.employee(acme, 'TI001', role='TeamIncharge', name='Tara Incharge')
    team = seed.team(acme, incharge)
    alice = seed.employee(acme, 'TC001', name='Alice', team_id=team['id'])
    bob = seed.employee(acme, 'TC002', name='Bob', team_id=team['id'])
    return {'tenant': acme, 'admin': admin, 'incharge': incharge, 'team': team, 'alice': alice, 'bob': bob}
