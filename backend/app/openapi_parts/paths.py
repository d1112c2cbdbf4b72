"""Path fragment builders for the OpenAPI spec.

Each entity contributes, in order: list path, single-resource path, then its
action endpoints in registry order. Fixed paths (auth, quotes, payments) follow.
"""
from typing import Any, Dict, List

from .constants import ACTION_REGISTRY, SORT_PARAM_MAP, ORDER_FILTER_PARAMS, WRITE_PERMISSIONS
from .helpers import caching_headers, json_body, json_response, error_responses, path_param


def build_entity_paths(schema_name: str, coll: str, id_param: str, id_type: str, read_perm: str) -> Dict[str, Any]:
    paths: Dict[str, Any] = {}
    list_path = f"/{coll}"
    single_path = f"{list_path}/{{{id_param}}}"
    writes = WRITE_PERMISSIONS[schema_name]

    list_params: List[Dict[str, Any]] = [
        {"$ref": "#/components/parameters/LimitParam"},
        {"$ref": "#/components/parameters/OffsetParam"},
    ]
    if SORT_PARAM_MAP.get(schema_name):
        list_params.append({"$ref": f"#/components/parameters/{SORT_PARAM_MAP[schema_name]}"})
    if schema_name == "Order":
        list_params.extend(ORDER_FILTER_PARAMS)

    paths[list_path] = {
        "get": {
            "summary": f"List {coll}",
            "parameters": list_params,
            "responses": {
                "200": {
                    "description": "OK",
                    "headers": caching_headers(),
                    "content": {
                        "application/json": {
                            "schema": {
                                "type": "object",
                                "properties": {
                                    "data": {"type": "array", "items": {"$ref": f"#/components/schemas/{schema_name}"}},
                                    "pagination": {"$ref": "#/components/schemas/Pagination"},
                                },
                            }
                        }
                    },
                },
                "304": {"description": "Not Modified"},
                **error_responses("400"),
            },
            "x-required-permissions": [read_perm],
        },
        "head": {
            "summary": f"{schema_name} list validators",
            "responses": {
                "200": {"description": "Headers only", "headers": caching_headers()},
                "304": {"description": "Not Modified"},
            },
            "x-required-permissions": [read_perm],
        },
        "post": {
            "summary": f"Create {schema_name}",
            "requestBody": json_body(f"{schema_name}Input"),
            "responses": {"201": json_response(schema_name, "Created"), **error_responses("400", "403")},
            "x-required-permissions": [writes["post"]],
        },
    }

    id_params = [path_param(id_param, id_type)]
    single: Dict[str, Any] = {
        "put": {
            "summary": f"Update {schema_name}",
            "parameters": id_params,
            "requestBody": json_body(f"{schema_name}Input"),
            "responses": {"200": json_response(schema_name), **error_responses("400", "403", "404", "409")},
            "x-required-permissions": [writes["put"]],
        },
        "delete": {
            "summary": f"Delete {schema_name}",
            "parameters": id_params,
            "responses": {"200": {"description": "Deleted"}, **error_responses("403", "404")},
            "x-required-permissions": [writes["delete"]],
        },
    }
    if schema_name == "Order":
        single = {
            "get": {
                "summary": "Get order",
                "parameters": id_params,
                "responses": {
                    "200": {**json_response(schema_name), "headers": caching_headers()},
                    "304": {"description": "Not Modified"},
                    **error_responses("404"),
                },
                "x-required-permissions": [read_perm],
            },
            "head": {
                "summary": "Order validators",
                "parameters": id_params,
                "responses": {
                    "200": {"description": "Headers only", "headers": caching_headers()},
                    "304": {"description": "Not Modified"},
                    **error_responses("404"),
                },
                "x-required-permissions": [read_perm],
            },
            **single,
        }
    paths[single_path] = single

    for spec in ACTION_REGISTRY.get(schema_name, []):
        op: Dict[str, Any] = {
            "summary": spec["summary"],
            "parameters": id_params,
            "responses": {"200": json_response(schema_name), **error_responses("400", "403", "404", "409")},
            "x-required-permissions": [spec["permission"]],
        }
        if spec["body"] == "multipart":
            op["requestBody"] = {"required": True, "content": {"multipart/form-data": {"schema": {"type": "object"}}}}
        elif spec["body"]:
            op["requestBody"] = json_body(spec["body"])
        paths[f"{single_path}/{spec['action']}"] = {"post": op}

    return paths


def build_fixed_paths() -> Dict[str, Any]:
    order_id = [path_param("order_id")]
    return {
        "/iam/auth/login": {"post": {"summary": "Login", "security": [], "responses": {"200": {"description": "JWT issued"}, "401": {"description": "Invalid credentials"}}}},
        "/iam/auth/register": {"post": {"summary": "Sign up as customer or supplier", "security": [], "responses": {"201": {"description": "Account created, JWT issued"}, **error_responses("400")}}},
        "/iam/auth/me": {
            "get": {"summary": "Current user", "responses": {"200": {"description": "OK"}}},
            "patch": {"summary": "Update own name and contact details", "responses": {"200": {"description": "OK"}, **error_responses("400")}},
        },
        "/iam/users": {
            "get": {"summary": "List users", "responses": {"200": {"description": "OK"}}, "x-required-permissions": ["ADMIN.USER.MANAGE"]},
            "post": {"summary": "Create user", "responses": {"201": {"description": "Created"}}, "x-required-permissions": ["ADMIN.USER.MANAGE"]},
        },
        "/iam/roles": {
            "get": {"summary": "List roles", "responses": {"200": {"description": "OK"}}, "x-required-permissions": ["ADMIN.ROLE.MANAGE"]},
            "post": {"summary": "Create role", "responses": {"201": {"description": "Created"}}, "x-required-permissions": ["ADMIN.ROLE.MANAGE"]},
        },
        "/iam/audit/logs": {"get": {"summary": "List audit logs", "responses": {"200": {"description": "OK"}}, "x-required-permissions": ["ADMIN.SETTINGS.MANAGE"]}},
        "/orders/statuses": {"get": {"summary": "Status display table and transition graph", "responses": {"200": {"description": "OK"}}, "x-required-permissions": ["ORDER.READ"]}},
        "/orders/stats": {"get": {"summary": "Admin dashboard counts", "responses": {"200": {"description": "OK"}}, "x-required-permissions": ["ORDER.ADMIN"]}},
        "/orders/{order_id}/history": {
            "get": {
                "summary": "Status history, oldest first",
                "parameters": order_id,
                "responses": {"200": {"description": "OK", "content": {"application/json": {"schema": {"type": "object", "properties": {"data": {"type": "array", "items": {"$ref": "#/components/schemas/StatusHistory"}}}}}}}, **error_responses("404")},
                "x-required-permissions": ["ORDER.READ"],
            }
        },
        "/orders/{order_id}/quotes": {
            "get": {"summary": "List quotes (suppliers see their own)", "parameters": order_id, "responses": {"200": {"description": "OK"}, **error_responses("403", "404")}, "x-required-permissions": ["QUOTE.READ"]},
            "post": {"summary": "Submit quote", "parameters": order_id, "requestBody": json_body("QuoteInput"), "responses": {"201": json_response("SupplierQuote", "Created"), **error_responses("400", "403", "404", "409")}, "x-required-permissions": ["QUOTE.SUBMIT"]},
            "put": {"summary": "Update own quote", "parameters": order_id, "requestBody": json_body("QuoteInput"), "responses": {"200": json_response("SupplierQuote"), **error_responses("400", "403", "404", "409")}, "x-required-permissions": ["QUOTE.SUBMIT"]},
        },
        "/orders/{order_id}/payment": {"get": {"summary": "Payment status", "parameters": order_id, "responses": {"200": {"description": "OK"}, **error_responses("404")}, "x-required-permissions": ["ORDER.READ"]}},
        "/payments/confirm": {"post": {"summary": "Record a confirmed bank payment", "requestBody": json_body("PaymentConfirmInput"), "responses": {"201": {"description": "Recorded"}, **error_responses("400", "404", "409")}, "x-required-permissions": ["PAY.CONFIRM"]}},
    }


__all__ = ["build_entity_paths", "build_fixed_paths"]
