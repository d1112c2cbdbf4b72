"""Reusable test helpers for HTTP level order lifecycle tests.

Patterns unified:
 - Auth header creation using direct JWT claims (bypassing /login) or a real login.
 - Creation + transition sequencing with assertion helpers.

Direct JWT headers must be minted inside an app context.
"""
from __future__ import annotations
from typing import Dict, List, Optional
from flask_jwt_extended import create_access_token
from app.constants.permissions import ACTOR_CUSTOMER, ACTOR_SUPPLIER, ACTOR_ADMIN
from tests.test_utils_seed import seed_actor_user, preset_codes, ROLE_FOR_ACTOR, ORDER_PAYLOAD

# ---------- Generic Auth Helpers ---------- #

def jwt_headers(user_id: int, perms: List[str], role: str = ACTOR_CUSTOMER):
    token = create_access_token(identity=str(user_id), additional_claims={
        'perms': perms,
        'roles': [],
        'actor_role': role,
    })
    return {'Authorization': f'Bearer {token}'}


def login_headers(client, email: str, password: str = 'pw'):
    resp = client.post('/iam/auth/login', json={'email': email, 'password': password})
    assert resp.status_code == 200, resp.get_json()
    return {'Authorization': f"Bearer {resp.get_json()['access_token']}"}


def actor_headers(kind: str, email: Optional[str] = None):
    """(user, headers) for a fresh user with the preset permissions of ``kind``."""
    user = seed_actor_user(kind, email)
    return user, jwt_headers(user.id, preset_codes(ROLE_FOR_ACTOR[kind]), kind)


def http_cast():
    """customer, two suppliers and an admin as {'name': (user, headers)}."""
    return {
        'customer': actor_headers(ACTOR_CUSTOMER),
        'supplier': actor_headers(ACTOR_SUPPLIER),
        'supplier2': actor_headers(ACTOR_SUPPLIER),
        'admin': actor_headers(ACTOR_ADMIN),
    }

# ---------- Assertion Helpers ---------- #

def assert_transition(client, url: str, headers: Dict[str, str], expected_status: int, json: dict = None,
                      expected_body_value: str = None):
    resp = client.post(url, json=json or {}, headers=headers)
    assert resp.status_code == expected_status, resp.get_json()
    if expected_status < 400 and expected_body_value is not None:
        assert resp.get_json()['status'] == expected_body_value
    return resp


def create_resource_and_assert(client, url: str, payload: dict, headers: Dict[str, str], expected_initial_status: str = None):
    resp = client.post(url, json=payload, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    body = resp.get_json()
    if expected_initial_status:
        assert body['status'] == expected_initial_status
    return body

# ---------- Domain wrappers ---------- #

def create_http_order(client, headers, **overrides):
    return create_resource_and_assert(client, '/orders', {**ORDER_PAYLOAD, **overrides}, headers,
                                      expected_initial_status='request_created')


def quote_http_order(client, cast, price=100):
    order = create_http_order(client, cast['customer'][1])
    resp = client.post(f"/orders/{order['id']}/quotes", json={'price': price}, headers=cast['supplier'][1])
    assert resp.status_code == 201, resp.get_json()
    return order


__all__ = [
    'jwt_headers', 'login_headers', 'actor_headers', 'http_cast', 'assert_transition',
    'create_resource_and_assert', 'create_http_order', 'quote_http_order',
    'ACTOR_CUSTOMER', 'ACTOR_SUPPLIER', 'ACTOR_ADMIN',
]
