from __future__ import annotations
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, ForeignKey, DateTime
from typing import Optional
from datetime import datetime

from .authz import Base
from app.utils.clock import utcnow


class OrderStatusHistory(Base):
    """Append-only ledger row: one per status an order entered."""
    __tablename__ = 'order_status_history'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[str] = mapped_column(ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    changed_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)  # NULL = system
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    order = relationship('Order', back_populates='history')
