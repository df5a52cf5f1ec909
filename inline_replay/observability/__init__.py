"""Observability for the inline replay harness.

Exports the Prometheus metric helpers used by the store-facing components.
"""

from inline_replay.observability.metrics import (
    set_loaded_keys,
    track_compile_method,
    track_decision,
    track_identity,
    track_query,
)

__all__ = [
    "set_loaded_keys",
    "track_compile_method",
    "track_decision",
    "track_identity",
    "track_query",
]
