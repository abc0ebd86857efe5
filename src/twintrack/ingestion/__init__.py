"""Ingestion layer.

This package turns raw feed frames into normalized, typed updates. Only the
state/store layer is allowed to apply them.
"""

__all__: list[str] = []
