"""Inline Replay.

Records the inlining and early-compilation decisions of a JIT compiler
into PostgreSQL and replays them in later runs, so compiler experiments
are reproducible across processes.

Example:
    ```python
    from inline_replay import MethodRef, initialize

    with initialize() as context:
        caller = MethodRef("A", "m", "()V", code_size=10)
        callee = MethodRef("B", "n", "()V")
        if context.is_recording_inline_set():
            context.add_inline_decision(caller, 5, callee, require_inline=True)
        elif context.is_using_inline_set():
            context.force_inline(caller, 5, callee)
    ```
"""

from inline_replay.config import Settings, get_settings
from inline_replay.identity import IdentityResolver
from inline_replay.mode import Mode, ReplayContext, initialize, resolve_mode
from inline_replay.models import (
    ExperimentScope,
    InlineDecisionRecord,
    MethodHandle,
    MethodRef,
)
from inline_replay.replay import (
    CompileSet,
    CompileSetLoader,
    DecisionRecorder,
    InlineSet,
    ReplaySetLoader,
)

__version__ = "1.0.0"

__all__ = [
    # Configuration
    "Settings",
    "get_settings",
    # Mode and context
    "Mode",
    "ReplayContext",
    "initialize",
    "resolve_mode",
    # Identity
    "IdentityResolver",
    "ExperimentScope",
    "MethodHandle",
    "MethodRef",
    "InlineDecisionRecord",
    # Replay
    "DecisionRecorder",
    "ReplaySetLoader",
    "InlineSet",
    "CompileSetLoader",
    "CompileSet",
]
