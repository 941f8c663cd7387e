"""Common helper for building service paths with deterministic structure."""
from typing import Any, Dict, List, Tuple
from ..helpers import caching_headers, id_path_param, action_post
from ..constants import SORT_PARAM_MAP


def build_service_paths(schema_name: str, coll: str, id_param: str,
                        actions: List[Tuple[str, str, str]] = ()) -> Dict[str, Any]:
    """`actions` is a list of (url segment, summary, permission) tuples."""
    paths: Dict[str, Any] = {}
    list_path = f"/{coll}"
    single_path = f"{list_path}/{{{id_param}}}"

    # List endpoint
    paths[list_path] = {
        "get": {
            "summary": f"List {schema_name}",
            "parameters": [
                {"$ref": "#/components/parameters/LimitParam"},
                {"$ref": "#/components/parameters/OffsetParam"},
                {"$ref": f"#/components/parameters/{SORT_PARAM_MAP[schema_name]}"},
            ],
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
                "400": {"$ref": "#/components/responses/BadRequest"},
            },
        },
        "head": {
            "summary": f"{schema_name} list validators",
            "responses": {
                "200": {"description": "Headers only", "headers": caching_headers()},
                "304": {"description": "Not Modified"},
            },
        },
    }

    # Single resource
    paths[single_path] = {
        "get": {
            "summary": f"Get {schema_name}",
            "parameters": [id_path_param(id_param)],
            "responses": {
                "200": {
                    "description": "OK",
                    "headers": caching_headers(),
                    "content": {"application/json": {"schema": {"$ref": f"#/components/schemas/{schema_name}"}}},
                },
                "304": {"description": "Not Modified"},
                "404": {"$ref": "#/components/responses/NotFound"},
            },
        },
        "head": {
            "summary": f"{schema_name} validators",
            "parameters": [id_path_param(id_param)],
            "responses": {
                "200": {"description": "Headers only", "headers": caching_headers()},
                "304": {"description": "Not Modified"},
                "404": {"$ref": "#/components/responses/NotFound"},
            },
        },
    }

    for segment, summary, permission in actions:
        paths[f"{single_path}/{segment}"] = action_post(summary, schema_name, id_param, permission)

    return paths


__all__ = ["build_service_paths"]
