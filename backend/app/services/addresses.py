from __future__ import annotations
from typing import Any, Dict

from sqlalchemy import select
from werkzeug.exceptions import NotFound

from app.errors import NotPermitted
from app.models.address import SavedAddress
from app.services.policy import Actor
from app.utils.transactions import atomic
from app.utils.validation import require_text, optional_text


def _owned(session, address_id: int, actor: Actor) -> SavedAddress:
    addr = session.execute(select(SavedAddress).where(SavedAddress.id == address_id)).scalar_one_or_none()
    if addr is None:
        raise NotFound('Address not found')
    if addr.customer_id != actor.user_id:
        raise NotPermitted('Record ownership required')
    return addr


def addresses_query(session, actor: Actor):
    return session.query(SavedAddress).filter(SavedAddress.customer_id == actor.user_id)


def create_address(session, actor: Actor, data: Dict[str, Any]) -> SavedAddress:
    addr = SavedAddress(
        customer_id=actor.user_id,
        name=require_text(data.get('name'), 'name'),
        address=require_text(data.get('address'), 'address'),
        phone=optional_text(data.get('phone'), 'phone'),
    )
    with atomic(session):
        session.add(addr)
    return addr


def update_address(session, address_id: int, actor: Actor, data: Dict[str, Any]) -> SavedAddress:
    with atomic(session):
        addr = _owned(session, address_id, actor)
        if 'name' in data:
            addr.name = require_text(data.get('name'), 'name')
        if 'address' in data:
            addr.address = require_text(data.get('address'), 'address')
        if 'phone' in data:
            addr.phone = optional_text(data.get('phone'), 'phone')
    return addr


def delete_address(session, address_id: int, actor: Actor):
    with atomic(session):
        session.delete(_owned(session, address_id, actor))


def address_json(a: SavedAddress):
    return {
        'id': a.id,
        'name': a.name,
        'address': a.address,
        'phone': a.phone,
        'created_at': a.created_at.isoformat() if a.created_at else None,
        'updated_at': a.updated_at.isoformat() if a.updated_at else None,
    }
