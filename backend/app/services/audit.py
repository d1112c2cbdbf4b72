from __future__ import annotations
from typing import Any, Dict, Optional
from flask import has_request_context
from flask_jwt_extended import get_jwt, get_jwt_identity
from app import get_db
from app.models.audit import AuditLog


def _jwt_context():
    """Return (actor_id, claims) of the verified request token, or (None, {}) outside one."""
    if not has_request_context():
        return None, {}
    try:
        claims = get_jwt() or {}
        ident = get_jwt_identity()
    except RuntimeError:  # jwt not verified for this request
        return None, {}
    return (int(ident) if ident is not None else None), claims


def add_audit(action: str, entity: Optional[str] = None, entity_id: Optional[str] = None,
              meta: Optional[Dict[str, Any]] = None, session=None):
    """Stage an audit log entry in the given (or request) session.

    Parameters:
      action: short action code e.g. ORDER.DELETE, ORDER.STATUS.SET, USER.ROLES.SET
      entity: optional entity name (Order, Role, User)
      entity_id: optional primary key, stored as string
      meta: additional JSON-safe dictionary (shallow copied)
    """
    session = session or get_db()
    actor, claims = _jwt_context()
    log = AuditLog(
        actor_user_id=actor or 0,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        perms_snapshot={'perms': claims.get('perms', []), 'actor_role': claims.get('actor_role')},
        meta=dict(meta or {}),
    )
    session.add(log)
    # No commit here; caller's transaction boundary controls durability.
    return log
