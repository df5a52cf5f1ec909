"""Decision Recording for Deterministic Replay.

Provides the DecisionRecorder class for appending the compiler's inlining
and early-compilation decisions to the store, tied to resolved identities.

The recording system is append-only:
- Inline decisions accumulate as a history, never updated or deleted
- Early compile methods are recorded disabled; enabling them is an
  administrative step outside the harness
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from inline_replay.db import queries
from inline_replay.db.gateway import Params
from inline_replay.models import InlineDecisionRecord, handle_key
from inline_replay.observability.metrics import track_compile_method, track_decision

if TYPE_CHECKING:
    from inline_replay.db.gateway import QueryGateway
    from inline_replay.identity import IdentityResolver
    from inline_replay.models import ExperimentScope, MethodHandle

logger = logging.getLogger(__name__)


class DecisionRecorder:
    """Records inline and early-compile decisions for one experiment.

    Example:
        recorder = DecisionRecorder(gateway, resolver, scope)

        # Resolve the call and append a decision
        recorder.record_inline_decision(caller, 5, callee, require_inline=True)

        # Mark a method for early compilation (recorded disabled)
        recorder.add_compile_method(method, bci=-1)
    """

    def __init__(
        self,
        gateway: QueryGateway,
        resolver: IdentityResolver,
        scope: ExperimentScope,
    ) -> None:
        """Initialize the DecisionRecorder.

        Args:
            gateway: Gateway statements are executed through.
            resolver: Resolver deriving call and method identities.
            scope: Package and experiment all decisions belong to.
        """
        self._gateway = gateway
        self._resolver = resolver
        self._scope = scope

    @property
    def scope(self) -> ExperimentScope:
        return self._scope

    # =========================================================================
    # Inline Decisions
    # =========================================================================

    def get_inline_method_call_id(
        self,
        caller: MethodHandle,
        bci: int,
        callee: MethodHandle,
    ) -> int:
        """Resolve the experiment-scoped identity decisions are recorded against."""
        return self._resolver.inline_method_call_id(self._scope, caller, bci, callee)

    def add_inline_decision(self, inline_method_call_id: int, require_inline: bool) -> int:
        """Append one inline decision.

        No uniqueness is enforced: repeated calls for the same call
        accumulate a history. The store numbers decisions per call, so a
        call recorded across several runs keeps one increasing sequence.

        Args:
            inline_method_call_id: Resolved experiment-scoped call.
            require_inline: Whether the compiler decided to inline.

        Returns:
            The sequence number assigned to the decision.
        """
        params = (
            Params()
            .add_int(inline_method_call_id)
            .add_bool(require_inline)
            .add_int(inline_method_call_id)
        )
        rows = self._gateway.execute_tuples(queries.INSERT_INLINE_DECISION, params)
        sequence = int(rows[0][0])
        track_decision(require_inline)

        logger.debug(
            f"Recorded inline decision for call {inline_method_call_id}",
            extra={
                "inline_method_call_id": inline_method_call_id,
                "require_inline": require_inline,
                "sequence": sequence,
            },
        )
        return sequence

    def record_inline_decision(
        self,
        caller: MethodHandle,
        bci: int,
        callee: MethodHandle,
        require_inline: bool,
    ) -> int:
        """Resolve a call and append a decision for it.

        Returns:
            The inline method call identifier the decision was recorded against.
        """
        inline_method_call_id = self.get_inline_method_call_id(caller, bci, callee)
        self.add_inline_decision(inline_method_call_id, require_inline)
        return inline_method_call_id

    def get_inline_decisions(self, inline_method_call_id: int) -> list[InlineDecisionRecord]:
        """Read back the decision history of one call, oldest first."""
        rows = self._gateway.execute_tuples(
            queries.SELECT_INLINE_DECISIONS,
            Params().add_int(inline_method_call_id),
        )
        return [
            InlineDecisionRecord(
                id=int(row[0]),
                inline_method_call_id=int(row[1]),
                require_inline=bool(row[2]),
                sequence=int(row[3]),
            )
            for row in rows
        ]

    # =========================================================================
    # Early Compile Methods
    # =========================================================================

    def add_compile_method(self, method: MethodHandle, bci: int) -> int:
        """Record a method selected for early compilation.

        The fact is stored with ``is_enabled = false``; recording the same
        method and bci again is a no-op.

        Returns:
            The resolved method identifier.
        """
        method_id = self._resolver.method_id(self._scope, method)
        params = (
            Params()
            .add_int(self._scope.experiment_id)
            .add_int(method_id)
            .add_int(bci)
            .add_bool(False)
        )
        self._gateway.execute_command(queries.INSERT_C2_COMPILE_METHOD, params)
        track_compile_method()

        logger.debug(
            f"Recorded early compile method {handle_key(method)}@{bci}",
            extra={"method_id": method_id, "bci": bci},
        )
        return method_id
