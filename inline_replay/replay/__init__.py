"""Deterministic Replay of Compiler Decisions.

This module provides the recording and replay halves of the harness.

Key Components:
- DecisionRecorder: Appends inline and early-compile decisions to the store
- ReplaySetLoader / InlineSet: Preloads an inline set for in-memory queries
- CompileSetLoader / CompileSet: Preloads enabled early compile methods

Usage:
    from inline_replay.replay import DecisionRecorder, ReplaySetLoader

    # Recording decisions
    recorder = DecisionRecorder(gateway, resolver, scope)
    recorder.record_inline_decision(caller, bci, callee, require_inline=True)

    # Replaying decisions
    inline_set = ReplaySetLoader(gateway).load(scope.experiment_id, "baseline")
    inline_set.force_inline(caller, bci, callee)
"""

from __future__ import annotations

from inline_replay.replay.compile_set import (
    CompileSet,
    CompileSetLoader,
)
from inline_replay.replay.inline_set import (
    InlineSet,
    ReplaySetLoader,
)
from inline_replay.replay.recorder import (
    DecisionRecorder,
)

__all__ = [
    # Recorder
    "DecisionRecorder",
    # Inline sets
    "InlineSet",
    "ReplaySetLoader",
    # Early compile sets
    "CompileSet",
    "CompileSetLoader",
]
