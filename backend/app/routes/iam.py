from flask import Blueprint, request, abort, current_app
from flask_jwt_extended import create_access_token, jwt_required, get_jwt_identity
from app.models.authz import User, Role, Permission, RolePermission, UserRole
from app.models.audit import AuditLog
from sqlalchemy import select, delete
from app import get_db
from app.errors import ValidationError, InfrastructureError
from app.services.policy import compute_effective_permissions, assert_not_removing_last_admin
from app.utils.listing import apply_pagination, make_cached_list_response, respond
from app.utils.filters import apply_filters
from app.utils.validation import require_text, optional_text
from app.decorators.audit import audit_log
from app.decorators.auth import require_permissions
from app.constants.permissions import ACTOR_CUSTOMER, ACTOR_SUPPLIER, SELF_SERVICE_ROLES

iam_bp = Blueprint('iam', __name__)

MIN_PASSWORD_LENGTH = 8


def _paged(q, order_col, to_json, head: bool, ts_attr: str = 'updated_at'):
    paged_q, total, limit, offset = apply_pagination(q.order_by(order_col))
    rows = paged_q.all()
    latest_ts = getattr(rows[0], ts_attr) if rows else None
    resp, etag = make_cached_list_response([to_json(r) for r in rows], total, limit, offset, latest_ts)
    return respond(resp, etag, latest_ts, head=head)


def _permission_json(p: Permission):
    return {'id': p.id, 'code': p.code, 'service': p.service, 'action': p.action, 'description': p.description}


def _role_json(r: Role):
    return {'id': r.id, 'name': r.name, 'is_system': r.is_system, 'permissions': sorted(rp.permission.code for rp in r.permissions)}


def _user_json(u: User):
    return {
        'id': u.id,
        'name': u.name,
        'email': u.email,
        'phone': u.phone,
        'company_name': u.company_name,
        'address': u.address,
        'is_active': u.is_active,
        'role_ids': sorted(ur.role_id for ur in u.user_roles),
    }


@iam_bp.route('/permissions', methods=['GET', 'HEAD'])
@require_permissions('ADMIN.ROLE.MANAGE')
def list_permissions():
    return _paged(get_db().query(Permission), Permission.id.asc(), _permission_json, request.method == 'HEAD')


@iam_bp.route('/roles', methods=['GET', 'HEAD'])
@require_permissions('ADMIN.ROLE.MANAGE')
def list_roles():
    return _paged(get_db().query(Role), Role.id.asc(), _role_json, request.method == 'HEAD')


@iam_bp.post('/roles')
@require_permissions('ADMIN.ROLE.MANAGE')
@audit_log('ROLE.CREATE', entity='Role', entity_id_key='id', meta_keys=['name'])
def create_role():
    data = request.get_json(silent=True) or {}
    name = require_text(data.get('name'), 'name')
    session = get_db()
    if session.execute(select(Role).where(Role.name==name)).scalar_one_or_none():
        raise ValidationError('role exists')
    role = Role(name=name, is_system=False, description=optional_text(data.get('description'), 'description'))
    session.add(role)
    session.commit()
    return {'id': role.id, 'name': role.name}, 201


@iam_bp.put('/roles/<int:role_id>/permissions')
@require_permissions('ADMIN.ROLE.MANAGE')
@audit_log(
    'ROLE.PERM.REPLACE',
    entity='Role',
    entity_id_key='id',
    meta_builder=lambda data, rv, a, kw: {'count': len(data.get('permissions', []))},
)
def replace_role_permissions(role_id: int):
    session = get_db()
    role = session.execute(select(Role).where(Role.id==role_id)).scalar_one_or_none()
    if not role:
        abort(404)
    data = request.get_json(silent=True) or {}
    codes = data.get('permissions') or []
    perms = session.execute(select(Permission).where(Permission.code.in_(codes))).scalars().all()
    missing = set(codes) - {p.code for p in perms}
    if missing:
        raise ValidationError(f'Unknown permission codes: {sorted(missing)}')
    session.execute(delete(RolePermission).where(RolePermission.role_id==role.id))
    for p in perms:
        session.add(RolePermission(role_id=role.id, permission_id=p.id))
    session.commit()
    # bulk delete bypassed the collection
    session.expire(role, ['permissions'])
    return {'id': role.id, 'permissions': sorted(codes)}


@iam_bp.route('/users', methods=['GET', 'HEAD'])
@require_permissions('ADMIN.USER.MANAGE')
def list_users():
    return _paged(get_db().query(User), User.id.asc(), _user_json, request.method == 'HEAD')


@iam_bp.post('/users')
@require_permissions('ADMIN.USER.MANAGE')
@audit_log('USER.CREATE', entity='User', entity_id_key='id', meta_keys=['email', 'role_ids'])
def create_user():
    data = request.get_json(silent=True) or {}
    email = require_text(data.get('email'), 'email').lower()
    password = require_text(data.get('password'), 'password')
    session = get_db()
    if session.execute(select(User).where(User.email==email)).scalar_one_or_none():
        raise ValidationError('email already registered')
    role_ids = set(data.get('role_ids') or [])
    roles = session.execute(select(Role).where(Role.id.in_(list(role_ids)))).scalars().all() if role_ids else []
    missing = role_ids - {r.id for r in roles}
    if missing:
        raise ValidationError(f'Unknown role ids: {sorted(missing)}')
    user = User(
        name=require_text(data.get('name'), 'name'),
        email=email,
        phone=optional_text(data.get('phone'), 'phone'),
        company_name=optional_text(data.get('company_name'), 'company_name'),
        address=optional_text(data.get('address'), 'address'),
    )
    user.set_password(password)
    session.add(user)
    session.flush()
    for rid in role_ids:
        session.add(UserRole(user_id=user.id, role_id=rid))
    session.commit()
    session.refresh(user)
    return _user_json(user), 201


@iam_bp.put('/users/<int:user_id>/roles')
@require_permissions('ADMIN.USER.MANAGE')
@audit_log('USER.ROLES.SET', entity='User', entity_id_key='user_id', meta_keys=['role_ids'])
def set_user_roles(user_id: int):
    session = get_db()
    user = session.execute(select(User).where(User.id==user_id)).scalar_one_or_none()
    if not user:
        abort(404)
    data = request.get_json(silent=True) or {}
    role_ids = set(data.get('role_ids') or [])
    roles = session.execute(select(Role).where(Role.id.in_(list(role_ids)))).scalars().all() if role_ids else []
    missing = role_ids - {r.id for r in roles}
    if missing:
        raise ValidationError(f'Unknown role ids: {sorted(missing)}')
    assert_not_removing_last_admin(user.id, role_ids)
    # Replace direct assignments
    session.execute(delete(UserRole).where(UserRole.user_id==user.id))
    for rid in role_ids:
        session.add(UserRole(user_id=user.id, role_id=rid))
    session.commit()
    session.expire(user, ['user_roles'])
    return {'user_id': user.id, 'role_ids': sorted(role_ids)}


def _issue_token(user: User):
    eff = compute_effective_permissions(user.id)
    claims = {
        'roles': eff['roles'],
        'perms': eff['perms'],
        'actor_role': eff['actor_role'],
    }
    # JWT identity must be a string (flask-jwt-extended v4 requirement)
    token = create_access_token(identity=str(user.id), additional_claims=claims)
    return {'access_token': token, 'actor_role': eff['actor_role']}


@iam_bp.post('/auth/login')
def login():
    data = request.get_json(silent=True) or {}
    email = data.get('email'); password = data.get('password')
    if not isinstance(email, str) or not email or not password:
        raise ValidationError('email & password required')
    session = get_db()
    user = session.execute(select(User).where(User.email==email.strip().lower())).scalar_one_or_none()
    if not user or not user.is_active or not user.verify_password(password):
        abort(401, description='invalid credentials')
    return _issue_token(user)


@iam_bp.post('/auth/register')
def register():
    """Self sign-up as a customer or a supplier; returns a token like login."""
    data = request.get_json(silent=True) or {}
    kind = str(data.get('role') or ACTOR_CUSTOMER).strip().lower()
    if kind not in SELF_SERVICE_ROLES:
        raise ValidationError(f'role must be one of {sorted(SELF_SERVICE_ROLES)}')
    email = require_text(data.get('email'), 'email').lower()
    password = require_text(data.get('password'), 'password')
    if '@' not in email:
        raise ValidationError('email is invalid')
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f'password must be at least {MIN_PASSWORD_LENGTH} characters')
    session = get_db()
    if session.execute(select(User).where(User.email==email)).scalar_one_or_none():
        raise ValidationError('email already registered')
    role = session.execute(select(Role).where(Role.name==SELF_SERVICE_ROLES[kind])).scalar_one_or_none()
    if role is None:
        current_app.logger.error('sign-up refused: role %s not seeded', SELF_SERVICE_ROLES[kind])
        raise InfrastructureError('Sign-up is not available yet')
    user = User(
        name=require_text(data.get('name'), 'name'),
        email=email,
        company_name=optional_text(data.get('company_name'), 'company_name') if kind == ACTOR_SUPPLIER else None,
    )
    user.set_password(password)
    session.add(user)
    session.flush()
    session.add(UserRole(user_id=user.id, role_id=role.id))
    session.commit()
    current_app.logger.info('user=%s registered as %s', user.id, kind)
    return {**_issue_token(user), 'user_id': user.id}, 201


def _current_user(session) -> User:
    user = session.execute(select(User).where(User.id==int(get_jwt_identity()))).scalar_one_or_none()
    if not user:
        abort(404)
    return user


@iam_bp.get('/auth/me')
@jwt_required()
def me():
    user = _current_user(get_db())
    eff = compute_effective_permissions(user.id)
    return {**_user_json(user), 'roles': eff['roles'], 'perms': eff['perms'], 'actor_role': eff['actor_role']}


PROFILE_FIELDS = ('phone', 'company_name', 'address')


@iam_bp.patch('/auth/me')
@jwt_required()
def update_profile():
    """Edit own contact details; email, password and roles are not editable here."""
    data = request.get_json(silent=True) or {}
    changes = {f: optional_text(data.get(f), f) for f in PROFILE_FIELDS if f in data}
    if 'name' in data:
        changes['name'] = require_text(data.get('name'), 'name')
    session = get_db()
    user = _current_user(session)
    for field, value in changes.items():
        setattr(user, field, value)
    session.commit()
    return _user_json(user)


AUDIT_FILTERS = {
    'actor_user_id': {'coerce': int, 'op': lambda qu, v: qu.filter(AuditLog.actor_user_id==v)},
    'action': {'op': lambda qu, v: qu.filter(AuditLog.action==v)},
    'entity': {'op': lambda qu, v: qu.filter(AuditLog.entity==v)},
    'entity_id': {'op': lambda qu, v: qu.filter(AuditLog.entity_id==v)},
}


def _audit_json(r: AuditLog):
    return {
        'id': r.id,
        'actor_user_id': r.actor_user_id,
        'action': r.action,
        'entity': r.entity,
        'entity_id': r.entity_id,
        'meta': r.meta,
        'created_at': r.created_at.isoformat() if r.created_at else None,
    }


@iam_bp.route('/audit/logs', methods=['GET', 'HEAD'])
@require_permissions('ADMIN.SETTINGS.MANAGE')
def list_audit_logs():
    q = apply_filters(get_db().query(AuditLog), AUDIT_FILTERS, request.args)
    # newest first so the top row timestamp invalidates the ETag when logs arrive
    return _paged(q, AuditLog.id.desc(), _audit_json, request.method == 'HEAD', ts_attr='created_at')
