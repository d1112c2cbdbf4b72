from __future__ import annotations
from typing import List, Optional
from sqlalchemy import select

from app.models.history import OrderStatusHistory
from app.utils.transactions import retry_read


def append_history(session, order, status: str, notes: Optional[str] = None, changed_by: Optional[int] = None):
    """Stage a history row in the caller's transaction. Rows are never updated afterwards."""
    row = OrderStatusHistory(order_id=order.id, status=status, notes=notes, changed_by=changed_by)
    session.add(row)
    return row


@retry_read
def list_history(session, order_id: str) -> List[OrderStatusHistory]:
    stmt = (
        select(OrderStatusHistory)
        .where(OrderStatusHistory.order_id == order_id)
        .order_by(OrderStatusHistory.created_at.asc(), OrderStatusHistory.id.asc())
    )
    return list(session.execute(stmt).scalars())


def history_json(row: OrderStatusHistory):
    return {
        'id': row.id,
        'order_id': row.order_id,
        'status': row.status,
        'notes': row.notes,
        'changed_by': row.changed_by,
        'created_at': row.created_at.isoformat() if row.created_at else None,
    }
