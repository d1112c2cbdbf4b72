"""Domain error taxonomy for the order desk.

Every error is a werkzeug ``HTTPException`` so that ``abort``-style control
flow keeps working and the app-wide handler renders one JSON shape. Each class
carries a stable machine readable ``error_code`` next to the HTTP status.
"""
from __future__ import annotations
from typing import Optional
from werkzeug.exceptions import HTTPException


class OrderDeskError(HTTPException):
    code = 400
    error_code = 'ORDER_DESK_ERROR'
    description = 'Request could not be processed'

    def __init__(self, description: Optional[str] = None):
        super().__init__(description=description or self.description)


class ValidationError(OrderDeskError):
    code = 400
    error_code = 'VALIDATION_ERROR'
    description = 'Invalid input'


class InvalidTransition(OrderDeskError):
    code = 400
    error_code = 'INVALID_TRANSITION'

    def __init__(self, current: str, target: str, role: Optional[str] = None, field_name: str = 'status'):
        self.current = current
        self.target = target
        self.role = role
        msg = f'Invalid {field_name} transition {current} -> {target}'
        if role:
            msg += f' for {role}'
        super().__init__(msg)


class NoQuotesAvailable(OrderDeskError):
    code = 400
    error_code = 'NO_QUOTES_AVAILABLE'
    description = 'No supplier quotes available for this order'


class PriceOutOfRange(OrderDeskError):
    code = 400
    error_code = 'PRICE_OUT_OF_RANGE'
    description = 'Price exceeds the supported maximum of 99,999,999.99'


class NotPermitted(OrderDeskError):
    code = 403
    error_code = 'ACCESS_DENIED'
    description = 'Action not permitted for this actor'


class OrderNotFound(OrderDeskError):
    code = 404
    error_code = 'ORDER_NOT_FOUND'
    description = 'Order not found'


class QuoteNotFound(OrderDeskError):
    code = 404
    error_code = 'QUOTE_NOT_FOUND'
    description = 'No quote from this supplier for the order'


class OrderNotEditable(OrderDeskError):
    code = 409
    error_code = 'ORDER_NOT_EDITABLE'
    description = 'Order can only be edited while awaiting quotes'


class OrderNotCancelable(OrderDeskError):
    code = 409
    error_code = 'ORDER_NOT_CANCELABLE'
    description = 'Order can no longer be canceled'


class AlreadyQuoted(OrderDeskError):
    code = 409
    error_code = 'ALREADY_QUOTED'
    description = 'Supplier already submitted a quote for this order'


class OrderAssignedToOther(OrderDeskError):
    code = 409
    error_code = 'ORDER_ASSIGNED_TO_OTHER'
    description = 'Order is assigned to another supplier'


class QuoteLocked(OrderDeskError):
    code = 409
    error_code = 'QUOTE_LOCKED'
    description = 'Quotes are frozen once the order left the quoting stage'


class PriceAlreadySet(OrderDeskError):
    code = 409
    error_code = 'PRICE_ALREADY_SET'
    description = 'Final price already set for this order'


class ConcurrencyConflict(OrderDeskError):
    code = 409
    error_code = 'CONCURRENCY_CONFLICT'
    description = 'Order was modified concurrently, reload and retry'


class InfrastructureError(OrderDeskError):
    code = 503
    error_code = 'INFRASTRUCTURE_ERROR'
    description = 'Storage temporarily unavailable'


__all__ = [
    'OrderDeskError', 'ValidationError', 'InvalidTransition', 'NoQuotesAvailable', 'PriceOutOfRange',
    'NotPermitted', 'OrderNotFound', 'QuoteNotFound', 'OrderNotEditable', 'OrderNotCancelable',
    'AlreadyQuoted', 'OrderAssignedToOther', 'QuoteLocked', 'PriceAlreadySet', 'ConcurrencyConflict',
    'InfrastructureError',
]
