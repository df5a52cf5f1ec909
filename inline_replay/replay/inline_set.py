"""Inline Set Replay.

Provides the ReplaySetLoader, which bulk-loads a named inline set from
the store, and the InlineSet it produces, which answers the compiler's
"must this call be inlined?" question from memory.

After the initial load the membership test issues zero store queries:
it runs on the compiler's inlining decision path.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from inline_replay.db import queries
from inline_replay.db.connection import InlineSetNotFoundError, IntegrityViolationError
from inline_replay.db.gateway import Params
from inline_replay.models import inline_call_key
from inline_replay.observability.metrics import set_loaded_keys

if TYPE_CHECKING:
    from collections.abc import Iterable

    from inline_replay.db.gateway import QueryGateway
    from inline_replay.models import MethodHandle

logger = logging.getLogger(__name__)


class InlineSet:
    """Immutable in-memory membership set of replayed calls.

    Keys have the form ``A.m ()V@5 B.n ()V``.
    """

    __slots__ = ("_keys", "inline_set_id")

    def __init__(self, keys: Iterable[str], inline_set_id: int | None = None) -> None:
        self._keys = frozenset(keys)
        self.inline_set_id = inline_set_id

    def force_inline(self, caller: MethodHandle, bci: int, callee: MethodHandle) -> bool:
        """Whether the call at ``caller@bci`` to ``callee`` is in the set."""
        key = inline_call_key(
            caller.holder_name,
            caller.name,
            caller.descriptor,
            bci,
            callee.holder_name,
            callee.name,
            callee.descriptor,
        )
        return key in self._keys

    @property
    def keys(self) -> frozenset[str]:
        return self._keys

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def __repr__(self) -> str:
        return f"InlineSet(id={self.inline_set_id}, size={len(self._keys)})"


class ReplaySetLoader:
    """Loads pre-provisioned inline sets for replay.

    Inline sets are never created here; provisioning them is external.

    Example:
        loader = ReplaySetLoader(gateway)
        inline_set = loader.load(scope.experiment_id, "baseline")
        if inline_set.force_inline(caller, bci, callee):
            ...
    """

    def __init__(self, gateway: QueryGateway) -> None:
        self._gateway = gateway

    def load_inline_set_id(self, experiment_id: int, name: str) -> int:
        """Look up an existing inline set.

        Raises:
            InlineSetNotFoundError: If the set does not exist (or is ambiguous).
        """
        params = Params().add_int(experiment_id).add_text(name)
        try:
            return self._gateway.fetch_id(queries.SELECT_INLINE_SET_ID, params)
        except IntegrityViolationError as e:
            logger.critical(
                f"Inline set {name!r} is not provisioned for experiment {experiment_id}",
                extra={"experiment_id": experiment_id, "inline_set": name},
            )
            raise InlineSetNotFoundError(experiment_id, name, e.row_count) from e

    def load_inline_set_members(self, inline_set_id: int) -> frozenset[str]:
        """Bulk-load every call of an inline set as canonical keys.

        Issues a single join query ordered by caller method name, bci and
        callee method name.
        """
        rows = self._gateway.execute_tuples(
            queries.SELECT_INLINE_SET_MEMBERS,
            Params().add_int(inline_set_id),
        )
        keys = frozenset(
            inline_call_key(
                caller_klass,
                caller_method,
                caller_descriptor,
                int(bci),
                callee_klass,
                callee_method,
                callee_descriptor,
            )
            for (
                caller_klass,
                caller_method,
                caller_descriptor,
                bci,
                callee_klass,
                callee_method,
                callee_descriptor,
            ) in rows
        )
        return keys

    def load(self, experiment_id: int, name: str) -> InlineSet:
        """Resolve an inline set by name and load its members."""
        inline_set_id = self.load_inline_set_id(experiment_id, name)
        inline_set = InlineSet(self.load_inline_set_members(inline_set_id), inline_set_id)
        set_loaded_keys("inline", len(inline_set))

        logger.info(
            f"Loaded inline set {name!r} with {len(inline_set)} calls",
            extra={"inline_set_id": inline_set_id, "experiment_id": experiment_id},
        )
        return inline_set
