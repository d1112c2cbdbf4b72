"""Helper functions for the OpenAPI builder."""
from typing import Any, Dict, List


def object_schema(properties: Dict[str, Any], required: List[str] = None) -> Dict[str, Any]:
    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def caching_headers() -> Dict[str, Any]:
    return {
        "ETag": {"schema": {"type": "string"}},
        "Last-Modified": {"schema": {"type": "string"}},
        "X-Last-Modified-ISO": {"schema": {"type": "string"}},
        "X-Poll-Interval": {"schema": {"type": "integer"}, "description": "Seconds until the next poll"},
    }


def json_body(schema_name: str) -> Dict[str, Any]:
    return {"required": True, "content": {"application/json": {"schema": {"$ref": f"#/components/schemas/{schema_name}"}}}}


def json_response(schema_name: str, description: str = "OK") -> Dict[str, Any]:
    return {"description": description, "content": {"application/json": {"schema": {"$ref": f"#/components/schemas/{schema_name}"}}}}


def error_responses(*codes: str) -> Dict[str, Any]:
    return {c: {"$ref": f"#/components/responses/E{c}"} for c in codes}


def path_param(name: str, type_: str = "string") -> Dict[str, Any]:
    return {"name": name, "in": "path", "required": True, "schema": {"type": type_}}


__all__ = ["object_schema", "caching_headers", "json_body", "json_response", "error_responses", "path_param"]
