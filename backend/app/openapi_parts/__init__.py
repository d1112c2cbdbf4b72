"""Modular pieces for the programmatic OpenAPI builder.

Constants describe entities and order actions; ``paths`` turns them into
path items so the builder itself stays short.
"""

__all__ = [
    "constants",
    "helpers",
    "paths",
]
