"""Modular pieces for the programmatic OpenAPI builder.

Constants and helpers the builder imports so path generation stays readable
as the API grows.
"""

__all__ = [
    "constants",
]
