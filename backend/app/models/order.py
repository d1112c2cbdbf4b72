from __future__ import annotations
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, ForeignKey, DateTime, Numeric, JSON
from typing import Optional, List, Dict, Any
from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime
import uuid

from .authz import Base
from app.utils.clock import utcnow


def _new_order_id() -> str:
    return uuid.uuid4().hex


class Order(Base):
    __tablename__ = 'orders'
    # Lifecycle status constants
    STATUS_ADMIN_REVIEW = 'admin_review'
    STATUS_REQUEST_CREATED = 'request_created'
    STATUS_PRICE_QUOTED = 'price_quoted'
    STATUS_PAYMENT_CONFIRMED = 'payment_confirmed'
    STATUS_PRODUCTION_STARTED = 'production_started'
    STATUS_IN_TRANSIT = 'in_transit'
    STATUS_IN_CUSTOMS = 'in_customs'
    STATUS_DELIVERED = 'delivered'
    STATUS_CANCELED = 'canceled'
    ALL_STATUSES = (
        STATUS_ADMIN_REVIEW,
        STATUS_REQUEST_CREATED,
        STATUS_PRICE_QUOTED,
        STATUS_PAYMENT_CONFIRMED,
        STATUS_PRODUCTION_STARTED,
        STATUS_IN_TRANSIT,
        STATUS_IN_CUSTOMS,
        STATUS_DELIVERED,
        STATUS_CANCELED,
    )
    TERMINAL_STATUSES = (STATUS_DELIVERED, STATUS_CANCELED)
    # Content is customer editable only while quotes are still being collected.
    EDITABLE_STATUSES = (STATUS_REQUEST_CREATED, STATUS_PRICE_QUOTED)

    # Meaning of admin_margin depends on which rule priced the order.
    PRICING_SUPPLIER_QUOTE = 'supplier_quote'  # admin_margin = absolute profit
    PRICING_ADMIN_OVERRIDE = 'admin_override'  # admin_margin = percentage
    PRICING_MANUAL = 'manual'  # admin_margin = absolute profit, null while supplier_price is unknown

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_order_id)
    order_number: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    customer_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    product_link: Mapped[Optional[str]] = mapped_column(String(2048))
    delivery_address: Mapped[Optional[str]] = mapped_column(Text)
    phone_number: Mapped[Optional[str]] = mapped_column(String(32))
    uploaded_files: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    files_uploaded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    supplier_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    admin_margin: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    final_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    pricing_path: Mapped[Optional[str]] = mapped_column(String(16))

    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_REQUEST_CREATED, index=True)
    assigned_supplier_id: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True, index=True)
    supplier_image_url: Mapped[Optional[str]] = mapped_column(String(2048))
    supplier_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(64), unique=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    quotes = relationship('SupplierQuote', back_populates='order', cascade='all, delete-orphan', order_by='SupplierQuote.id')
    history = relationship('OrderStatusHistory', back_populates='order', cascade='all, delete-orphan', order_by='OrderStatusHistory.id')
    payments = relationship('PaymentTransaction', back_populates='order', cascade='all, delete-orphan',
                            order_by='PaymentTransaction.id')

    # Every ORM UPDATE becomes "... WHERE id=? AND version=?"
    __mapper_args__ = {'version_id_col': version}

    @property
    def display_number(self) -> str:
        return f'#{self.order_number}'

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    @property
    def profit_amount(self) -> Optional[Decimal]:
        if self.final_price is None or self.supplier_price is None:
            return None
        return (Decimal(self.final_price) - Decimal(self.supplier_price)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)

    @property
    def margin_percent(self) -> Optional[Decimal]:
        profit = self.profit_amount
        if profit is None or not self.supplier_price:
            return None
        return (profit / Decimal(self.supplier_price) * 100).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


class OrderNumberSequence(Base):
    """Monotonic counter backing order_number; never decremented so numbers are never reused."""
    __tablename__ = 'order_number_sequences'
    name: Mapped[str] = mapped_column(String(32), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
