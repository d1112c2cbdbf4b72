from app import get_db
from app.models.authz import Role, UserRole
from app.models.audit import AuditLog
from app.services.policy import count_admin_users
from tests.test_utils_seed import seed_actor_user, unique_email, ensure_role, ensure_user, ensure_user_role_assignment
from tests.test_lifecycle_helpers import login_headers


def _admin(client):
    email = unique_email('admin')
    user = seed_actor_user('admin', email)
    return user, login_headers(client, email)


def test_role_crud_flow(client, app_context):
    _, headers = _admin(client)
    name = f"Temp-{unique_email('r')[:12]}"
    resp = client.post('/iam/roles', json={'name': name}, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    role_id = resp.get_json()['id']
    assert client.post('/iam/roles', json={'name': name}, headers=headers).status_code == 400

    bad = client.put(f'/iam/roles/{role_id}/permissions', json={'permissions': ['ACC.READ']}, headers=headers)
    assert bad.status_code == 400
    ok = client.put(f'/iam/roles/{role_id}/permissions', json={'permissions': ['ORDER.READ', 'QUOTE.READ']}, headers=headers)
    assert ok.status_code == 200
    listed = client.get('/iam/roles?limit=200', headers=headers).get_json()['data']
    mine = next(r for r in listed if r['id'] == role_id)
    assert mine['permissions'] == ['ORDER.READ', 'QUOTE.READ']
    assert client.put('/iam/roles/999999/permissions', json={'permissions': []}, headers=headers).status_code == 404

    audits = get_db().query(AuditLog).filter(AuditLog.action == 'ROLE.CREATE', AuditLog.entity_id == str(role_id)).all()
    assert audits, 'Expected audit log for ROLE.CREATE'
    assert audits[0].perms_snapshot['actor_role'] == 'admin'


def test_last_admin_cannot_be_demoted(client, app_context):
    session = get_db()
    admin_role = session.query(Role).filter_by(name='Admin').one_or_none()
    if admin_role is None:
        admin_role = ensure_role('Admin')
    # strip the Admin role from everyone but one fresh user
    session.query(UserRole).filter(UserRole.role_id == admin_role.id).delete()
    session.commit()
    user, headers = _admin(client)
    assert count_admin_users() == 1
    customer_role = ensure_role('Customer')
    resp = client.put(f'/iam/users/{user.id}/roles', json={'role_ids': [customer_role.id]}, headers=headers)
    assert resp.status_code == 400
    assert 'last Admin' in resp.get_json()['error']['detail']
    second = ensure_user(unique_email('admin2'))
    ensure_user_role_assignment(second, admin_role)
    resp = client.put(f'/iam/users/{user.id}/roles', json={'role_ids': [customer_role.id]}, headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()['role_ids'] == [customer_role.id]


def test_user_creation_with_roles(client, app_context):
    _, headers = _admin(client)
    supplier_role = ensure_role('Supplier')
    email = unique_email('newsup')
    resp = client.post('/iam/users', json={'name': 'New Supplier', 'email': email.upper(), 'password': 'pw',
                                           'company_name': 'Acme Prints', 'role_ids': [supplier_role.id]},
                       headers=headers)
    assert resp.status_code == 201, resp.get_json()
    body = resp.get_json()
    assert body['email'] == email and body['role_ids'] == [supplier_role.id]
    assert client.post('/iam/users', json={'name': 'x', 'email': email, 'password': 'pw'}, headers=headers).status_code == 400
    assert client.post('/iam/users', json={'name': 'x', 'email': unique_email('y'), 'password': 'pw', 'role_ids': [999999]},
                       headers=headers).status_code == 400
    login = client.post('/iam/auth/login', json={'email': email, 'password': 'pw'})
    assert login.get_json()['actor_role'] == 'supplier'


def test_audit_log_listing(client, app_context):
    _, headers = _admin(client)
    client.post('/iam/roles', json={'name': f"Audit-{unique_email('a')[:10]}"}, headers=headers)
    resp = client.get('/iam/audit/logs?limit=10', headers=headers)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['data'], 'Expected audit data'
    ids = [r['id'] for r in body['data']]
    assert ids == sorted(ids, reverse=True)
    role_create = client.get('/iam/audit/logs?action=ROLE.CREATE', headers=headers)
    assert role_create.status_code == 200
    assert all(r['action'] == 'ROLE.CREATE' for r in role_create.get_json()['data'])
    assert client.get('/iam/audit/logs?actor_user_id=abc', headers=headers).status_code == 400
