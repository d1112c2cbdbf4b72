#!/usr/bin/env python
"""Idempotent seed script for permissions & the Customer / Supplier / Admin roles.

Usage:
    python backend/scripts/seed_authz.py               # seed normally
    python backend/scripts/seed_authz.py --show-roles  # print role -> permission counts (after ensuring seed)
    python backend/scripts/seed_authz.py --dry-run     # run logic then rollback (no DB changes)
    python backend/scripts/seed_authz.py --export-json roles.json --validate

The first Admin account comes from SEED_ADMIN_EMAIL / SEED_ADMIN_PASSWORD.
"""
from __future__ import annotations
import os, sys, argparse, textwrap, json, hashlib, difflib

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from sqlalchemy import select, inspect

from app import create_app, get_db  # type: ignore
from app.models.authz import Base, Permission, Role, RolePermission, User, UserRole
from app.constants.permissions import SERVICE_ACTIONS, ROLE_PRESETS, WILDCARD_ROLE, build_all_permission_codes

EXIT_INVALID = 2
EXIT_CHECKSUM = 4


def ensure_permissions(session) -> int:
    existing = {p.code for p in session.execute(select(Permission)).scalars().all()}
    created = 0
    for svc, actions in SERVICE_ACTIONS.items():
        for act in actions:
            code = f"{svc}.{act}"
            if code not in existing:
                session.add(Permission(code=code, service=svc, action=act, description=code.replace('.', ' - ')))
                created += 1
    session.flush()
    return created


def desired_codes(role_name: str):
    raw = ROLE_PRESETS[role_name]
    if '*' in raw:
        return set(build_all_permission_codes())
    return {c for c in raw if '.' in c}


def role_codes(session, role_id: int):
    """Permission codes granted to a role, read from the table rather than a cached collection."""
    return set(session.execute(
        select(Permission.code)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .where(RolePermission.role_id == role_id)
    ).scalars())


def ensure_roles(session) -> int:
    """Create missing preset roles and top up their permissions; extra grants are left alone."""
    roles = {r.name: r for r in session.execute(select(Role).where(Role.name.in_(list(ROLE_PRESETS)))).scalars()}
    created = 0
    for role_name in ROLE_PRESETS:
        if role_name not in roles:
            role = Role(name=role_name, is_system=True, description=role_name)
            session.add(role)
            roles[role_name] = role
            created += 1
    session.flush()

    perms_map = {p.code: p for p in session.execute(select(Permission)).scalars()}
    for role_name, role in roles.items():
        current = role_codes(session, role.id)
        for code in sorted(desired_codes(role_name) - current):
            if code not in perms_map:
                print(f"[WARN] Missing permission referenced by role {role_name}: {code}")
                continue
            session.add(RolePermission(role=role, permission=perms_map[code]))
    session.flush()
    return created


def ensure_initial_admin(session):
    admin_role = session.execute(select(Role).where(Role.name == WILDCARD_ROLE)).scalar_one_or_none()
    if not admin_role:
        print(f'[WARN] {WILDCARD_ROLE} role missing; skipping admin user creation')
        return None
    admin_email = os.getenv('SEED_ADMIN_EMAIL', 'admin@example.com').strip().lower()
    user = session.execute(select(User).where(User.email == admin_email)).scalar_one_or_none()
    if user:
        return user
    user = User(name='Administrator', email=admin_email, password_hash='')
    user.set_password(os.getenv('SEED_ADMIN_PASSWORD', 'ChangeMe123!'))
    session.add(user)
    session.flush()
    session.add(UserRole(user_id=user.id, role_id=admin_role.id))
    print(f"[INFO] Created initial admin user {admin_email} with temporary password.")
    return user


def build_role_permission_map(session):
    mapping = {}
    for role in session.execute(select(Role)).scalars().all():
        mapping[role.name] = sorted(role_codes(session, role.id))
    return mapping


def roles_checksum(role_perm_map) -> str:
    canonical = json.dumps(role_perm_map, sort_keys=True, separators=(',', ':'))
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()


def validate(session, role_perm_map):
    """Return a list of problems: malformed or unknown codes, dangling role references."""
    problems = []
    codes = set(session.execute(select(Permission.code)).scalars().all())
    for code in sorted(codes):
        if '.' not in code:
            problems.append(f"Invalid format (missing '.'): {code}")
            continue
        svc, action = code.split('.', 1)
        if svc not in SERVICE_ACTIONS:
            problems.append(f"Unknown service '{svc}' in code: {code}")
            continue
        if action not in SERVICE_ACTIONS[svc]:
            suggestion = difflib.get_close_matches(action, SERVICE_ACTIONS[svc], n=1)
            hint = f" (did you mean {suggestion[0]})" if suggestion else ''
            problems.append(f"Unknown action '{action}' for service '{svc}' in code: {code}{hint}")
    for role_name, role_codes in role_perm_map.items():
        for c in role_codes:
            if c not in codes:
                problems.append(f"Role '{role_name}' references missing permission code: {c}")
    return problems


def print_role_summary(role_perm_map):
    if not role_perm_map:
        print("[INFO] No roles present.")
        return
    name_w = max(len(n) for n in role_perm_map)
    print(f"{'Role'.ljust(name_w)} | Count | Sample (up to 8)")
    print('-' * (name_w + 40))
    for name, codes in sorted(role_perm_map.items()):
        print(f"{name.ljust(name_w)} | {str(len(codes)).rjust(5)} | {', '.join(codes[:8])}")


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Seed RBAC permissions & roles",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_authz.py\n  dry run: seed_authz.py --dry-run\n  show roles: seed_authz.py --show-roles\n""")
    )
    p.add_argument('--show-roles', action='store_true', help='Print role permission counts after seeding')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    p.add_argument('--export-json', nargs='?', const='-', metavar='FILE', help='Export role->permissions JSON (to FILE or stdout if omitted)')
    p.add_argument('--validate', action='store_true', help='Validate existing permission codes & role references; exits non-zero on problems')
    p.add_argument('--fail-if-changed', metavar='CHECKSUM', help='Exit 4 if computed roles checksum differs from provided value')
    return p.parse_args(argv)


def seed(session):
    created_p = ensure_permissions(session)
    created_r = ensure_roles(session)
    ensure_initial_admin(session)
    return created_p, created_r


def main(argv=None) -> int:
    args = parse_args(argv)
    app = create_app()
    with app.app_context():
        session = get_db()
        if not inspect(session.get_bind()).has_table('permissions'):
            # bootstrap only; real environments run `alembic upgrade head`
            Base.metadata.create_all(session.get_bind())
        try:
            created_p, created_r = seed(session)
            role_perm_map = build_role_permission_map(session)
            checksum = roles_checksum(role_perm_map)
            if args.validate:
                problems = validate(session, role_perm_map)
                if problems:
                    print('\n[VALIDATION] FAIL:')
                    for p in problems:
                        print(' -', p)
                    session.rollback()
                    return EXIT_INVALID
                print('[VALIDATION] OK: All permission codes & role references valid.')
            if args.fail_if_changed and checksum != args.fail_if_changed:
                print(f"[CHECKSUM] MISMATCH: expected {args.fail_if_changed} got {checksum}")
                session.rollback()
                return EXIT_CHECKSUM
            if args.dry_run:
                session.rollback()
                print(f"[DRY-RUN] (rolled back) Permissions would create: {created_p}, Roles would create: {created_r}")
            else:
                session.commit()
                print(f"[DONE] Permissions created: {created_p}, Roles created: {created_r}")
            if args.show_roles:
                print('\nRole Permission Summary:')
                print_role_summary(role_perm_map)
            if args.export_json is not None:
                payload = {
                    'roles': role_perm_map,
                    'meta': {
                        'permissions_total': sum(len(v) for v in role_perm_map.values()),
                        'distinct_permissions': len({p for plist in role_perm_map.values() for p in plist}),
                        'roles_checksum_sha256': checksum,
                        'role_names_sorted': sorted(role_perm_map.keys()),
                        'dry_run': args.dry_run,
                    }
                }
                if args.export_json == '-':
                    print(json.dumps(payload, indent=2, sort_keys=True))
                else:
                    with open(args.export_json, 'w', encoding='utf-8') as f:
                        json.dump(payload, f, indent=2, sort_keys=True)
                    print(f"[INFO] Exported JSON to {args.export_json}")
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
    return 0


if __name__ == '__main__':
    sys.exit(main())
