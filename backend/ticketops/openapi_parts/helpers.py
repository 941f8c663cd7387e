"""Helper functions for the OpenAPI builder."""
from typing import Any, Dict


def schema_minimal(name: str) -> Dict[str, Any]:
    return {"type": "object", "properties": {"id": {"type": "integer"}}, "required": ["id"]}


def caching_headers() -> Dict[str, Any]:
    return {
        "ETag": {"schema": {"type": "string"}},
        "Last-Modified": {"schema": {"type": "string"}},
        "X-Last-Modified-ISO": {"schema": {"type": "string"}},
    }


def id_path_param(id_param: str) -> Dict[str, Any]:
    return {"name": id_param, "in": "path", "required": True, "schema": {"type": "integer"}}


def action_post(summary: str, schema_name: str, id_param: str, permission: str) -> Dict[str, Any]:
    """POST operation for a state-changing action on a single resource."""
    return {
        "post": {
            "summary": summary,
            "parameters": [id_path_param(id_param)],
            "responses": {
                "200": {
                    "description": "OK",
                    "content": {"application/json": {"schema": {"$ref": f"#/components/schemas/{schema_name}"}}},
                },
                "400": {"$ref": "#/components/responses/BadRequest"},
                "403": {"$ref": "#/components/responses/Forbidden"},
                "404": {"$ref": "#/components/responses/NotFound"},
                "409": {"$ref": "#/components/responses/Conflict"},
            },
            "x-required-permissions": [permission],
        }
    }


__all__ = ["schema_minimal", "caching_headers", "id_path_param", "action_post"]
