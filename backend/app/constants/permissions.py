"""Central enum-like definitions to avoid typos in permission/service strings.
Extend cautiously; never rename codes silently, add new ones and retire old ones via migration.
"""
from __future__ import annotations
from typing import List, Dict

SERVICES = ['ORDER', 'QUOTE', 'PAY', 'ADDR', 'ADMIN']

SERVICE_ACTIONS = {
    'ORDER': ['READ', 'CREATE', 'UPDATE', 'CANCEL', 'FULFILL', 'PRICE', 'ADMIN', 'DELETE'],
    'QUOTE': ['READ', 'SUBMIT'],
    'PAY': ['CREATE', 'CONFIRM'],
    'ADDR': ['MANAGE'],
    'ADMIN': ['USER.MANAGE', 'ROLE.MANAGE', 'SETTINGS.MANAGE'],
}


def build_all_permission_codes() -> List[str]:
    codes: List[str] = []
    for svc, actions in SERVICE_ACTIONS.items():
        for act in actions:
            codes.append(f"{svc}.{act}")
    return codes

ALL_PERMISSION_CODES = build_all_permission_codes()

# Actor kinds the order lifecycle distinguishes.
ACTOR_CUSTOMER = 'customer'
ACTOR_SUPPLIER = 'supplier'
ACTOR_ADMIN = 'admin'
ACTOR_KINDS = (ACTOR_CUSTOMER, ACTOR_SUPPLIER, ACTOR_ADMIN)

ROLE_PRESETS: Dict[str, List[str]] = {
    'Customer': ['ORDER.READ', 'ORDER.CREATE', 'ORDER.UPDATE', 'ORDER.CANCEL', 'PAY.CREATE', 'ADDR.MANAGE'],
    'Supplier': ['ORDER.READ', 'QUOTE.READ', 'QUOTE.SUBMIT', 'ORDER.FULFILL'],
    'Admin': ['*'],
}

# Role name -> actor kind, checked in order (first match wins).
ROLE_ACTOR_KINDS = [
    ('Admin', ACTOR_ADMIN),
    ('Supplier', ACTOR_SUPPLIER),
    ('Customer', ACTOR_CUSTOMER),
]

WILDCARD_ROLE = 'Admin'

# Actor kinds a visitor may pick at sign-up, and the preset role each one joins.
# Admins are only ever appointed through /iam/users.
SELF_SERVICE_ROLES = {
    ACTOR_CUSTOMER: 'Customer',
    ACTOR_SUPPLIER: 'Supplier',
}
