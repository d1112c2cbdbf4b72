from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Set
from flask_jwt_extended import get_jwt, get_jwt_identity
from sqlalchemy import select
from app.models.authz import UserRole, RolePermission, Permission, Role
from app.constants.permissions import (
    ROLE_ACTOR_KINDS, WILDCARD_ROLE, ACTOR_ADMIN, ACTOR_SUPPLIER, ACTOR_CUSTOMER,
)
from app.errors import NotPermitted, ValidationError
from app import get_db


@dataclass(frozen=True)
class Actor:
    """Who is acting on an order: user id (None for system) and lifecycle role."""
    user_id: Optional[int]
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ACTOR_ADMIN

    @property
    def is_supplier(self) -> bool:
        return self.role == ACTOR_SUPPLIER

    @property
    def is_customer(self) -> bool:
        return self.role == ACTOR_CUSTOMER

    def __str__(self):
        return f'{self.role}:{self.user_id if self.user_id is not None else "system"}'


SYSTEM_ACTOR = Actor(user_id=None, role=ACTOR_ADMIN)


def current_permissions() -> Set[str]:
    claims = get_jwt()
    return set(claims.get('perms', []))


def has_permissions(*codes: str) -> bool:
    perms = current_permissions()
    return all(c in perms for c in codes)


def current_actor() -> Actor:
    """Actor from the verified JWT; role claim was resolved at login."""
    claims = get_jwt()
    return Actor(user_id=int(get_jwt_identity()), role=claims.get('actor_role', ACTOR_CUSTOMER))


def _user_role_names(session, user_id: int) -> Set[str]:
    rows = session.execute(
        select(Role.name).join(UserRole, UserRole.role_id == Role.id).where(UserRole.user_id == user_id)
    ).scalars()
    return set(rows)


def resolve_actor_role(user_id: int, session=None) -> str:
    """Map RBAC role membership to one actor kind; users without a known role act as customers."""
    session = session or get_db()
    names = _user_role_names(session, user_id)
    for role_name, kind in ROLE_ACTOR_KINDS:
        if role_name in names:
            return kind
    return ACTOR_CUSTOMER


def compute_effective_permissions(user_id: int):
    session = get_db()
    role_ids = {r.role_id for r in session.execute(select(UserRole).where(UserRole.user_id==user_id)).scalars()}
    perm_codes = set()
    if role_ids:
        role_perms = session.execute(select(RolePermission).where(RolePermission.role_id.in_(role_ids))).scalars().all()
        perm_ids = [rp.permission_id for rp in role_perms]
        if perm_ids:
            for p in session.execute(select(Permission).where(Permission.id.in_(perm_ids))).scalars():
                perm_codes.add(p.code)
    # Wildcard role expands to every permission known at login time
    wildcard = session.execute(select(Role).where(Role.name==WILDCARD_ROLE)).scalar_one_or_none()
    if wildcard and wildcard.id in role_ids:
        for p in session.execute(select(Permission)).scalars():
            perm_codes.add(p.code)
    return {
        'roles': sorted(role_ids),
        'perms': sorted(perm_codes),
        'actor_role': resolve_actor_role(user_id, session),
    }


def count_admin_users(session=None) -> int:
    """Number of distinct users holding the wildcard (Admin) role."""
    session = session or get_db()
    admin_role = session.execute(select(Role).where(Role.name==WILDCARD_ROLE)).scalar_one_or_none()
    if not admin_role:
        return 0
    user_ids = {ur.user_id for ur in session.execute(select(UserRole).where(UserRole.role_id==admin_role.id)).scalars()}
    return len(user_ids)


def assert_not_removing_last_admin(target_user_id: int, new_direct_role_ids: set[int]):
    """Ensure that after applying new_direct_role_ids for target_user_id at least one Admin remains."""
    session = get_db()
    admin_role = session.execute(select(Role).where(Role.name==WILDCARD_ROLE)).scalar_one_or_none()
    if not admin_role or admin_role.id in new_direct_role_ids:
        return
    had_admin = session.execute(
        select(UserRole).where(UserRole.user_id==target_user_id, UserRole.role_id==admin_role.id)
    ).scalar_one_or_none() is not None
    if had_admin and count_admin_users(session) <= 1:
        raise ValidationError('Cannot remove last Admin role')


def assert_owns_record(owner_user_id: int, actor: Actor):
    if actor.user_id != owner_user_id:
        raise NotPermitted('Record ownership required')


def assert_role(actor: Actor, *roles: str):
    if actor.role not in roles:
        raise NotPermitted(f'Requires role {" or ".join(roles)}')
