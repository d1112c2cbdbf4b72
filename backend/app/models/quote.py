from __future__ import annotations
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, ForeignKey, DateTime, Numeric, UniqueConstraint
from typing import Optional
from decimal import Decimal
from datetime import datetime

from .authz import Base
from app.utils.clock import utcnow


class SupplierQuote(Base):
    __tablename__ = 'supplier_quotes'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[str] = mapped_column(ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True)
    supplier_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False, index=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    order = relationship('Order', back_populates='quotes')

    # One quote per supplier per order; the unique index also settles insert races.
    __table_args__ = (UniqueConstraint('order_id', 'supplier_id', name='uq_quote_order_supplier'),)
