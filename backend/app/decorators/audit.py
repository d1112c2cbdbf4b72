from __future__ import annotations
"""Audit logging decorator for administrative route handlers.

Usage examples:

@audit_log('ORDER.DELETE', entity='Order', entity_id_key='id', meta_keys=['order_number', 'status'])
def delete_order(order_id): ...

@audit_log('ORDER.STATUS.SET', entity='Order', entity_id_key='id', diff_keys=['status'],
           pre_fetch=lambda a, kw: _prefetch_status(kw.get('order_id')))
def set_status(order_id): ...

Parameters:
  action: required audit action code
  entity: optional entity label (Order, Role, User)
  entity_id_key: key in the returned JSON object whose value becomes entity_id
  entity_id_arg: view keyword argument used when entity_id_key is absent
  meta_keys: keys projected from the returned JSON into meta
  meta_builder: callable(data, rv, args, kwargs) -> meta dict, overrides meta_keys
  diff_keys / pre_fetch: snapshot before the view runs; changed keys land in meta['changes']

Only successful views are audited: an exception raised by the view propagates
untouched. Audit failures are logged and never break the response, whose
business transaction is already committed.
"""

from functools import wraps
from typing import Any, Callable, Iterable, Optional, Dict

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from app.services.audit import add_audit
from app import get_db


def _extract_payload(rv: Any):
    """Return the JSON-able dict of a Flask view return value (dict, (dict, status), ...)."""
    if isinstance(rv, tuple) and rv:
        return rv[0]
    return rv


def _diff(before: Dict[str, Any], after: Dict[str, Any], keys: Iterable[str]) -> Dict[str, Any]:
    changes = {}
    for k in keys:
        if k in before and k in after and before.get(k) != after.get(k):
            changes[k] = {'before': before.get(k), 'after': after.get(k)}
    return changes


def audit_log(
    action: str,
    *,
    entity: Optional[str] = None,
    entity_id_key: Optional[str] = None,
    entity_id_arg: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
    meta_builder: Optional[Callable[[dict, Any, tuple, dict], dict]] = None,
    diff_keys: Optional[Iterable[str]] = None,
    pre_fetch: Optional[Callable[[tuple, dict], Dict[str, Any]]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            before = pre_fetch(args, kwargs) if (diff_keys and pre_fetch) else None
            rv = fn(*args, **kwargs)
            data = _extract_payload(rv)
            if not isinstance(data, dict):
                data = {}
            entity_id = data.get(entity_id_key) if entity_id_key else None
            if entity_id is None and entity_id_arg:
                entity_id = kwargs.get(entity_id_arg)
            if meta_builder:
                meta = meta_builder(data, rv, args, kwargs)
            else:
                meta = {k: data.get(k) for k in (meta_keys or []) if k in data}
            if before:
                changes = _diff(before, data, diff_keys)
                if changes:
                    meta['changes'] = changes
            session = get_db()
            try:
                add_audit(action, entity, entity_id, meta, session=session)
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                current_app.logger.exception('audit write failed for %s', action)
            return rv
        return wrapper
    return outer
