"""Centralized constants for the OpenAPI spec builder.

Splitting these out keeps `app/openapi_builder.py` concise. Ordering here is
the ordering of the generated document, so keep lists stable.
"""
from typing import Dict, List, Tuple

# Entity registry: (SchemaName, collection path, id param, id type, read permission)
ENTITIES: List[Tuple[str, str, str, str, str]] = [
    ("Order", "orders", "order_id", "string", "ORDER.READ"),
    ("SavedAddress", "addresses", "address_id", "integer", "ADDR.MANAGE"),
]

# Permissions guarding entity writes, keyed by HTTP method
WRITE_PERMISSIONS: Dict[str, Dict[str, str]] = {
    "Order": {"post": "ORDER.CREATE", "put": "ORDER.UPDATE", "delete": "ORDER.DELETE"},
    "SavedAddress": {"post": "ADDR.MANAGE", "put": "ADDR.MANAGE", "delete": "ADDR.MANAGE"},
}

# Declarative registry for action (state-changing) endpoints under a single resource.
ACTION_REGISTRY: Dict[str, List[Dict[str, str]]] = {
    "Order": [
        {"action": "files", "summary": "Attach files (multipart 'files')", "permission": "ORDER.UPDATE", "body": "multipart"},
        {"action": "cancel", "summary": "Cancel order", "permission": "ORDER.CANCEL", "body": "NotesBody"},
        {"action": "approve", "summary": "Approve order under review", "permission": "ORDER.ADMIN", "body": "NotesBody"},
        {"action": "reject", "summary": "Reject order under review", "permission": "ORDER.ADMIN", "body": "NotesBody"},
        {"action": "deliver", "summary": "Mark order delivered", "permission": "ORDER.ADMIN", "body": "NotesBody"},
        {"action": "status", "summary": "Set order status (admin)", "permission": "ORDER.ADMIN", "body": "StatusBody"},
        {"action": "edit", "summary": "Manual correction of content, prices and status (admin)", "permission": "ORDER.ADMIN", "body": "AdminEditBody"},
        {"action": "final-price", "summary": "Set final price from lowest quote", "permission": "ORDER.PRICE", "body": "FinalPriceBody"},
        {"action": "complete", "summary": "Upload completion image (multipart 'image')", "permission": "ORDER.FULFILL", "body": "multipart"},
        {"action": "ship", "summary": "Move order to transit", "permission": "ORDER.FULFILL", "body": "NotesBody"},
        {"action": "revert", "summary": "Revert order to production", "permission": "ORDER.FULFILL", "body": "NotesBody"},
        {"action": "payment-reference", "summary": "Issue payment reference", "permission": "PAY.CREATE", "body": ""},
    ],
}

SORT_PARAM_MAP = {
    "Order": "SortOrdersParam",
    "SavedAddress": "",
}

SORT_DETAILS = {
    "SortOrdersParam": "Multi-field sort (order_number,status,title,final_price,created_at,updated_at). Prefix - for desc",
}

ORDER_FILTER_PARAMS = [
    {"name": "status", "in": "query", "schema": {"type": "string"}},
    {"name": "q", "in": "query", "schema": {"type": "string"}, "description": "Title substring or #<order number>"},
    {"name": "customer_id", "in": "query", "schema": {"type": "integer"}},
    {"name": "assigned_supplier_id", "in": "query", "schema": {"type": "integer"}},
    {"name": "updated_since", "in": "query", "schema": {"type": "string", "format": "date-time"}},
]

MONEY = {"type": "number", "format": "decimal", "nullable": True}
TIMESTAMP = {"type": "string", "format": "date-time", "nullable": True}

ORDER_PROPERTIES = {
    "id": {"type": "string"},
    "order_number": {"type": "integer"},
    "display_number": {"type": "string"},
    "customer_id": {"type": "integer"},
    "title": {"type": "string"},
    "description": {"type": "string"},
    "quantity": {"type": "integer", "minimum": 1},
    "product_link": {"type": "string", "nullable": True},
    "delivery_address": {"type": "string", "nullable": True},
    "phone_number": {"type": "string", "nullable": True},
    "uploaded_files": {"type": "array", "items": {"$ref": "#/components/schemas/FileRef"}},
    "files_uploaded_at": TIMESTAMP,
    "status": {"type": "string"},
    "status_label": {"type": "string"},
    "status_color": {"type": "string", "nullable": True},
    "assigned_supplier_id": {"type": "integer", "nullable": True},
    "supplier_price": MONEY,
    "admin_margin": MONEY,
    "final_price": MONEY,
    "pricing_path": {"type": "string", "enum": ["supplier_quote", "admin_override", "manual"], "nullable": True},
    "profit_amount": MONEY,
    "margin_percent": MONEY,
    "supplier_image_url": {"type": "string", "nullable": True},
    "supplier_completed_at": TIMESTAMP,
    "payment_reference": {"type": "string", "nullable": True},
    "payment_confirmed_at": TIMESTAMP,
    "created_at": TIMESTAMP,
    "updated_at": TIMESTAMP,
    "version": {"type": "integer"},
    "allowed_transitions": {"type": "array", "items": {"type": "string"}},
}

__all__ = [
    "ENTITIES",
    "ACTION_REGISTRY",
    "WRITE_PERMISSIONS",
    "SORT_PARAM_MAP",
    "SORT_DETAILS",
    "ORDER_FILTER_PARAMS",
    "ORDER_PROPERTIES",
]
