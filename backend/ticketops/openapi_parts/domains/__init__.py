"""Per-entity OpenAPI path builders.

`_common.build_service_paths` emits list, single and action paths for one
entity in a fixed order: list path, single path, then actions.
"""

__all__ = ["_common"]
