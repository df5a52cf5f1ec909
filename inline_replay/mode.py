"""Mode Selection and Process Context.

The operating mode is chosen exactly once, at process start, from
configuration. There are no runtime transitions.

Modes:
- DISABLED: every operation is a no-op and no store connection is opened
- RECORDING_INLINE_SET: a provisioned inline set is resolved, decisions are appended
- USING_INLINE_SET: a named inline set is preloaded, calls are answered from memory
- RECORDING_EARLY_COMPILE: early compile methods are recorded
- USING_EARLY_COMPILE: enabled early compile methods are preloaded

Missing or unrecognized configuration selects DISABLED with a warning
instead of aborting. Load-bearing settings per mode are listed in
``REQUIRED_SETTINGS``.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable
from enum import Enum
from types import TracebackType
from typing import TYPE_CHECKING, Any

from inline_replay.config import Settings, get_settings
from inline_replay.db.connection import get_pool_stats
from inline_replay.db.gateway import QueryGateway
from inline_replay.identity import IdentityResolver
from inline_replay.replay.compile_set import CompileSet, CompileSetLoader
from inline_replay.replay.inline_set import InlineSet, ReplaySetLoader
from inline_replay.replay.recorder import DecisionRecorder

if TYPE_CHECKING:
    from inline_replay.models import ExperimentScope, MethodHandle

logger = logging.getLogger(__name__)


# =============================================================================
# Modes
# =============================================================================


class Mode(str, Enum):
    """Operating mode, fixed for the lifetime of the process."""

    DISABLED = "disabled"
    RECORDING_INLINE_SET = "recording_inline_set"
    USING_INLINE_SET = "using_inline_set"
    RECORDING_EARLY_COMPILE = "recording_c2_early_compile"
    USING_EARLY_COMPILE = "using_c2_early_compile"

    @property
    def is_recording(self) -> bool:
        return self in (Mode.RECORDING_INLINE_SET, Mode.RECORDING_EARLY_COMPILE)

    @property
    def is_using(self) -> bool:
        return self in (Mode.USING_INLINE_SET, Mode.USING_EARLY_COMPILE)


_MODE_ALIASES: dict[str, Mode] = {
    "recording_early_compile": Mode.RECORDING_EARLY_COMPILE,
    "using_early_compile": Mode.USING_EARLY_COMPILE,
}

_IDENTITY_SETTINGS = ("PACKAGE_NAME", "PACKAGE_VERSION", "EXPERIMENT_NAME")

REQUIRED_SETTINGS: dict[Mode, tuple[str, ...]] = {
    Mode.DISABLED: (),
    Mode.RECORDING_INLINE_SET: _IDENTITY_SETTINGS + ("INLINE_SET_NAME",),
    Mode.USING_INLINE_SET: _IDENTITY_SETTINGS + ("INLINE_SET_NAME",),
    Mode.RECORDING_EARLY_COMPILE: _IDENTITY_SETTINGS,
    Mode.USING_EARLY_COMPILE: _IDENTITY_SETTINGS,
}


def parse_mode(value: str | None) -> Mode | None:
    """Parse a mode name case-insensitively; None if unrecognized."""
    if value is None:
        return None
    normalized = value.strip().lower()
    try:
        return Mode(normalized)
    except ValueError:
        return _MODE_ALIASES.get(normalized)


def resolve_mode(settings: Settings) -> Mode:
    """Select the operating mode from settings.

    Falls back to DISABLED when the disable switch is set, the mode is
    absent or unrecognized, or a load-bearing setting for the requested
    mode is missing.
    """
    if settings.DISABLED:
        logger.info("Inline replay disabled by switch")
        return Mode.DISABLED

    if settings.MODE is None:
        logger.info("No inline replay mode configured, running disabled")
        return Mode.DISABLED

    mode = parse_mode(settings.MODE)
    if mode is None:
        logger.warning(
            f"Unrecognized inline replay mode {settings.MODE!r}, running disabled",
            extra={"mode": settings.MODE},
        )
        return Mode.DISABLED

    missing = [name for name in REQUIRED_SETTINGS[mode] if getattr(settings, name) is None]
    if missing:
        logger.warning(
            f"Mode {mode.value} needs {', '.join(missing)}, running disabled",
            extra={"mode": mode.value, "missing": missing},
        )
        return Mode.DISABLED

    return mode


# =============================================================================
# Process Context
# =============================================================================


class ReplayContext:
    """Process-wide harness state, constructed once by ``initialize``.

    Each host operation is a no-op (or ``False``) outside the mode it
    belongs to. The context owns the store gateway of recording modes
    and closes it on ``close()`` or when leaving a ``with`` block.

    Example:
        with initialize() as context:
            if context.is_using_inline_set():
                context.force_inline(caller, bci, callee)
            elif context.is_recording_inline_set():
                context.add_inline_decision(caller, bci, callee, True)
    """

    def __init__(
        self,
        mode: Mode,
        *,
        scope: ExperimentScope | None = None,
        gateway: QueryGateway | None = None,
        recorder: DecisionRecorder | None = None,
        inline_set: InlineSet | None = None,
        compile_set: CompileSet | None = None,
    ) -> None:
        self._mode = mode
        self._scope = scope
        self._gateway = gateway
        self._recorder = recorder
        self._inline_set = inline_set
        self._compile_set = compile_set

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def scope(self) -> ExperimentScope | None:
        return self._scope

    @property
    def recorder(self) -> DecisionRecorder | None:
        return self._recorder

    @property
    def inline_set(self) -> InlineSet | None:
        return self._inline_set

    @property
    def compile_set(self) -> CompileSet | None:
        return self._compile_set

    # =========================================================================
    # Mode Predicates
    # =========================================================================

    def is_disabled(self) -> bool:
        return self._mode is Mode.DISABLED

    def is_recording(self) -> bool:
        return self._mode.is_recording

    def is_using(self) -> bool:
        return self._mode.is_using

    def is_recording_inline_set(self) -> bool:
        return self._mode is Mode.RECORDING_INLINE_SET

    def is_using_inline_set(self) -> bool:
        return self._mode is Mode.USING_INLINE_SET

    def is_recording_early_compile(self) -> bool:
        return self._mode is Mode.RECORDING_EARLY_COMPILE

    def is_using_early_compile(self) -> bool:
        return self._mode is Mode.USING_EARLY_COMPILE

    def use_inline_set(self) -> bool:
        """Whether an existing inline set was resolved at start-up."""
        return self._scope is not None and self._scope.inline_set_id is not None

    # =========================================================================
    # Host Operations
    # =========================================================================

    def force_inline(self, caller: MethodHandle, bci: int, callee: MethodHandle) -> bool:
        """In-memory membership test; never touches the store."""
        if self._inline_set is None:
            return False
        return self._inline_set.force_inline(caller, bci, callee)

    def should_compile(self, method: MethodHandle, bci: int) -> bool:
        """In-memory membership test; never touches the store."""
        if self._compile_set is None:
            return False
        return self._compile_set.should_compile(method, bci)

    def add_inline_decision(
        self,
        caller: MethodHandle,
        bci: int,
        callee: MethodHandle,
        require_inline: bool,
    ) -> int | None:
        """Record a decision; returns the inline method call id, or None when not recording."""
        if self._mode is not Mode.RECORDING_INLINE_SET or self._recorder is None:
            return None
        return self._recorder.record_inline_decision(caller, bci, callee, require_inline)

    def add_compile_method(self, method: MethodHandle, bci: int) -> int | None:
        """Record an early compile method; returns its method id, or None when not recording."""
        if self._mode is not Mode.RECORDING_EARLY_COMPILE or self._recorder is None:
            return None
        return self._recorder.add_compile_method(method, bci)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def pool_stats(self) -> dict[str, Any]:
        """Connection pool statistics of the held gateway.

        Using and disabled modes hold no gateway and report
        ``not_initialized``.
        """
        pool = self._gateway.pool if self._gateway is not None else None
        return get_pool_stats(pool)

    def close(self) -> None:
        """Release the store gateway, if any."""
        if self._gateway is not None:
            self._gateway.close()
            self._gateway = None

    def __enter__(self) -> ReplayContext:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"ReplayContext(mode={self._mode.value}, scope={self._scope})"


GatewayFactory = Callable[[Settings], QueryGateway]


def initialize(
    settings: Settings | None = None,
    gateway_factory: GatewayFactory = QueryGateway.connect,
) -> ReplayContext:
    """Select the mode and construct the components it needs.

    Recording modes keep a gateway, resolver and recorder. Using modes
    load their set, then release the gateway: afterwards they only answer
    membership queries. DISABLED opens no connection at all.

    Args:
        settings: Settings to read. Defaults to the cached process settings.
        gateway_factory: Opens the store gateway; replaced in tests.

    Returns:
        ReplayContext for the selected mode.

    Raises:
        DatabaseError: On any store failure during startup. These are fatal.
    """
    settings = settings or get_settings()
    logging.getLogger("inline_replay").setLevel(settings.LOG_LEVEL)

    mode = resolve_mode(settings)
    if mode is Mode.DISABLED:
        return ReplayContext(Mode.DISABLED)

    logger.info(f"Starting inline replay in {mode.value} mode", extra={"mode": mode.value})

    gateway = gateway_factory(settings)
    try:
        gateway.verify_migration(settings.MIGRATION_APP, settings.MIGRATION_NAME)

        resolver = IdentityResolver(gateway, strategy=settings.RESOLVE_STRATEGY)
        # REQUIRED_SETTINGS guarantees these are present for every non-disabled mode
        scope = resolver.open_scope(
            settings.PACKAGE_NAME,  # type: ignore[arg-type]
            settings.PACKAGE_VERSION,  # type: ignore[arg-type]
            settings.EXPERIMENT_NAME,  # type: ignore[arg-type]
        )

        if mode is Mode.RECORDING_INLINE_SET:
            # the named set must already be provisioned
            inline_set_id = ReplaySetLoader(gateway).load_inline_set_id(
                scope.experiment_id,
                settings.INLINE_SET_NAME,  # type: ignore[arg-type]
            )
            scope = dataclasses.replace(scope, inline_set_id=inline_set_id)

        if mode.is_recording:
            return ReplayContext(
                mode,
                scope=scope,
                gateway=gateway,
                recorder=DecisionRecorder(gateway, resolver, scope),
            )

        if mode is Mode.USING_INLINE_SET:
            inline_set = ReplaySetLoader(gateway).load(
                scope.experiment_id,
                settings.INLINE_SET_NAME,  # type: ignore[arg-type]
            )
            context = ReplayContext(
                mode,
                scope=dataclasses.replace(scope, inline_set_id=inline_set.inline_set_id),
                inline_set=inline_set,
            )
        else:
            context = ReplayContext(
                mode,
                scope=scope,
                compile_set=CompileSetLoader(gateway).load(scope.experiment_id),
            )
    except Exception:
        gateway.close()
        raise

    gateway.close()
    return context
