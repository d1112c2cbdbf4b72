from __future__ import annotations
from flask import Blueprint, request
from app import get_db
from app.decorators.auth import require_permissions
from app.models.address import SavedAddress
from app.services import addresses as address_service
from app.services.policy import current_actor
from app.utils.listing import apply_pagination, make_cached_list_response, respond

addresses_bp = Blueprint('addresses', __name__)


def _list_response(head: bool = False):
    q = address_service.addresses_query(get_db(), current_actor()).order_by(SavedAddress.created_at.desc(), SavedAddress.id.desc())
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    latest_ts = max((a.updated_at for a in rows), default=None)
    resp, etag = make_cached_list_response([address_service.address_json(a) for a in rows], total, limit, offset, latest_ts)
    return respond(resp, etag, latest_ts, head=head)


@addresses_bp.get('')
@require_permissions('ADDR.MANAGE')
def list_addresses():
    return _list_response()


@addresses_bp.route('', methods=['HEAD'])
@require_permissions('ADDR.MANAGE')
def head_addresses():
    return _list_response(head=True)


@addresses_bp.post('')
@require_permissions('ADDR.MANAGE')
def create_address():
    a = address_service.create_address(get_db(), current_actor(), request.get_json(silent=True) or {})
    return address_service.address_json(a), 201


@addresses_bp.put('/<int:address_id>')
@require_permissions('ADDR.MANAGE')
def update_address(address_id: int):
    a = address_service.update_address(get_db(), address_id, current_actor(), request.get_json(silent=True) or {})
    return address_service.address_json(a)


@addresses_bp.delete('/<int:address_id>')
@require_permissions('ADDR.MANAGE')
def delete_address(address_id: int):
    address_service.delete_address(get_db(), address_id, current_actor())
    return {'status': 'deleted'}
