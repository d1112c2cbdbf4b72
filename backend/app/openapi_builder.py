"""Deterministic OpenAPI spec builder.

Scope:
- Auth and IAM endpoints
- Orders: list/single with caching headers, lifecycle actions, quotes, history, payment
- Saved addresses
- The order status machine is embedded from the runtime graph (``x-transitions``)
  so the document never drifts from what the service enforces.

This is the canonical builder module; `app/openapi.py` re-exports from here.
"""
from typing import Any, Dict
from .openapi_parts.constants import ENTITIES, SORT_DETAILS, ORDER_PROPERTIES
from .openapi_parts.helpers import object_schema
from .openapi_parts.paths import build_entity_paths, build_fixed_paths
from .services.lifecycle import ORDER_FSM, STATUS_TABLE

__all__ = ["build_openapi_spec"]

ERROR_TITLES = {
    "400": "Bad Request",
    "403": "Forbidden",
    "404": "Not Found",
    "409": "Conflict",
    "503": "Service Unavailable",
}


def _schemas() -> Dict[str, Any]:
    order = object_schema(dict(ORDER_PROPERTIES), ["id", "order_number", "status"])
    order["x-transitions"] = ORDER_FSM.describe()
    order["x-statuses"] = [s._asdict() for s in STATUS_TABLE]
    return {
        "Order": order,
        "OrderInput": object_schema({
            "title": {"type": "string"},
            "description": {"type": "string"},
            "quantity": {"type": "integer", "minimum": 1},
            "product_link": {"type": "string", "format": "uri"},
            "delivery_address": {"type": "string"},
            "phone_number": {"type": "string"},
        }, ["title", "description"]),
        "FileRef": object_schema({
            "id": {"type": "string"}, "name": {"type": "string"}, "size": {"type": "integer"},
            "type": {"type": "string"}, "url": {"type": "string"}, "uploaded_at": {"type": "string"},
        }),
        "SupplierQuote": object_schema({
            "id": {"type": "integer"}, "order_id": {"type": "string"}, "supplier_id": {"type": "integer"},
            "price": {"type": "number"}, "notes": {"type": "string", "nullable": True},
            "created_at": {"type": "string"}, "updated_at": {"type": "string"},
        }, ["id", "order_id", "supplier_id", "price"]),
        "QuoteInput": object_schema({"price": {"type": "number", "exclusiveMinimum": 0}, "notes": {"type": "string"}}, ["price"]),
        "StatusHistory": object_schema({
            "id": {"type": "integer"}, "order_id": {"type": "string"}, "status": {"type": "string"},
            "notes": {"type": "string", "nullable": True}, "changed_by": {"type": "integer", "nullable": True},
            "created_at": {"type": "string"},
        }, ["id", "status"]),
        "NotesBody": object_schema({"notes": {"type": "string"}}),
        "StatusBody": object_schema({"status": {"type": "string"}, "notes": {"type": "string"}}, ["status"]),
        "AdminEditBody": object_schema({
            "title": {"type": "string"}, "description": {"type": "string"}, "quantity": {"type": "integer", "minimum": 1},
            "product_link": {"type": "string", "nullable": True}, "delivery_address": {"type": "string", "nullable": True},
            "phone_number": {"type": "string", "nullable": True},
            "supplier_price": {"type": "number", "exclusiveMinimum": 0, "nullable": True},
            "final_price": {"type": "number", "exclusiveMinimum": 0, "nullable": True},
            "status": {"type": "string"}, "notes": {"type": "string"},
        }),
        "FinalPriceBody": object_schema({"margin_percent": {"type": "number", "minimum": 0}}, ["margin_percent"]),
        "PaymentConfirmInput": object_schema({
            "reference": {"type": "string"}, "transaction_id": {"type": "string"}, "amount": {"type": "number"},
        }, ["reference", "transaction_id", "amount"]),
        "SavedAddress": object_schema({
            "id": {"type": "integer"}, "name": {"type": "string"}, "address": {"type": "string"},
            "phone": {"type": "string", "nullable": True},
        }, ["id", "name", "address"]),
        "SavedAddressInput": object_schema({
            "name": {"type": "string"}, "address": {"type": "string"}, "phone": {"type": "string"},
        }, ["name", "address"]),
        "Pagination": object_schema({
            "total": {"type": "integer"},
            "limit": {"type": "integer"},
            "offset": {"type": "integer"},
            "returned": {"type": "integer"},
        }, ["total", "limit", "offset", "returned"]),
        "Error": object_schema({
            "error": object_schema({
                "status": {"type": "integer"},
                "title": {"type": "string"},
                "detail": {"type": "string"},
                "code": {"type": "string"},
            }, ["status", "title", "detail"]),
        }, ["error"]),
    }


def build_openapi_spec() -> Dict[str, Any]:
    components: Dict[str, Any] = {
        "schemas": _schemas(),
        "responses": {
            f"E{code}": {"description": title, "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Error"}}}}
            for code, title in ERROR_TITLES.items()
        },
        "securitySchemes": {"BearerAuth": {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"}},
        "parameters": {
            "LimitParam": {"name": "limit", "in": "query", "schema": {"type": "integer", "default": 50}},
            "OffsetParam": {"name": "offset", "in": "query", "schema": {"type": "integer", "default": 0}},
        },
    }
    for pname, desc in SORT_DETAILS.items():
        components["parameters"][pname] = {"name": "sort", "in": "query", "schema": {"type": "string"}, "description": desc}

    paths: Dict[str, Any] = {}
    for schema_name, coll, id_param, id_type, read_perm in ENTITIES:
        # deterministic merge: keys are unique per entity, order preserved by insertion
        paths.update(build_entity_paths(schema_name, coll, id_param, id_type, read_perm))
    paths.update(build_fixed_paths())

    # Add operationIds & tags
    tag_desc: Dict[str, str] = {}
    for path, ops in paths.items():
        tag = path.split("/")[1].capitalize()
        for method, od in ops.items():
            rid = path.strip("/").replace("/", "_").replace("{", "").replace("}", "").replace("-", "_")
            od["operationId"] = f"{method}_{rid}"
            od["tags"] = [tag]
        tag_desc[tag] = f"{tag} endpoints"

    return {
        "openapi": "3.0.3",
        "info": {"title": "Order Desk API", "version": "0.1.0"},
        "paths": paths,
        "components": components,
        "security": [{"BearerAuth": []}],
        "tags": [{"name": n, "description": d} for n, d in sorted(tag_desc.items())],
    }
