from app.constants.permissions import ROLE_PRESETS, ALL_PERMISSION_CODES, WILDCARD_ROLE
from app.openapi_parts.constants import ACTION_REGISTRY


def _spec(client):
    resp = client.get('/openapi.json')
    assert resp.status_code == 200
    return resp.get_json()


def test_all_action_endpoints_have_permissions(client):
    paths = _spec(client)['paths']
    missing = []
    action_endpoints = 0
    for path, ops in paths.items():
        op = ops.get('post')
        if op is None:
            continue
        # pattern: /collection/{id}/action
        segments = path.strip('/').split('/')
        if len(segments) == 3 and segments[1].startswith('{'):
            action_endpoints += 1
            if not op.get('x-required-permissions'):
                missing.append(path)
    assert not missing, f'Action endpoints missing x-required-permissions: {missing}'
    assert action_endpoints >= len(ACTION_REGISTRY['Order'])


def test_read_endpoints_have_read_permissions(client):
    paths = _spec(client)['paths']
    read_missing = []
    for path, ops in paths.items():
        if path.startswith('/iam/auth/'):
            continue
        for method in ('get', 'head'):
            if method in ops and 'x-required-permissions' not in ops[method]:
                read_missing.append(f'{method.upper()} {path}')
    assert not read_missing, f'Read endpoints missing x-required-permissions: {read_missing}'


def test_documented_permissions_are_known_codes(client):
    unknown = set()
    for ops in _spec(client)['paths'].values():
        for op in ops.values():
            unknown.update(p for p in op.get('x-required-permissions', []) if p not in ALL_PERMISSION_CODES)
    assert not unknown, f'Unknown permission codes documented: {sorted(unknown)}'


def test_action_permissions_exist_in_some_role():
    perms = {a['permission'] for actions in ACTION_REGISTRY.values() for a in actions}
    concrete = {code for role, codes in ROLE_PRESETS.items() if role != WILDCARD_ROLE for code in codes}
    # admin only actions are covered by the wildcard role
    admin_only = {'ORDER.ADMIN', 'ORDER.PRICE'}
    missing = sorted(p for p in perms - admin_only if p not in concrete)
    assert not missing, f'Action permissions not present in any concrete role: {missing}'


def test_role_presets_use_known_codes():
    for role, codes in ROLE_PRESETS.items():
        for code in codes:
            assert code == '*' or code in ALL_PERMISSION_CODES, f'{role} uses unknown code {code}'
