"""Early Compile Set Replay.

Provides the CompileSetLoader, which bulk-loads the enabled early compile
methods of an experiment, and the CompileSet it produces. Membership
tests run from memory with zero store queries after the load.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from inline_replay.db import queries
from inline_replay.db.gateway import Params
from inline_replay.models import compile_key
from inline_replay.observability.metrics import set_loaded_keys

if TYPE_CHECKING:
    from collections.abc import Iterable

    from inline_replay.db.gateway import QueryGateway
    from inline_replay.models import MethodHandle

logger = logging.getLogger(__name__)


class CompileSet:
    """Immutable in-memory set of ``A.m ()V@5`` keys."""

    __slots__ = ("_keys",)

    def __init__(self, keys: Iterable[str]) -> None:
        self._keys = frozenset(keys)

    def should_compile(self, method: MethodHandle, bci: int) -> bool:
        """Whether ``method@bci`` was selected for early compilation."""
        return compile_key(method.holder_name, method.name, method.descriptor, bci) in self._keys

    @property
    def keys(self) -> frozenset[str]:
        return self._keys

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def __repr__(self) -> str:
        return f"CompileSet(size={len(self._keys)})"


class CompileSetLoader:
    """Loads the enabled early compile methods of an experiment."""

    def __init__(self, gateway: QueryGateway) -> None:
        self._gateway = gateway

    def load_early_compile_methods(self, experiment_id: int) -> frozenset[str]:
        """Bulk-load enabled early compile methods as canonical keys.

        Rows recorded with ``is_enabled = false`` are ignored.
        """
        rows = self._gateway.execute_tuples(
            queries.SELECT_EARLY_COMPILE_METHODS,
            Params().add_int(experiment_id),
        )
        return frozenset(
            compile_key(klass_name, method_name, descriptor, int(bci))
            for klass_name, method_name, descriptor, bci in rows
        )

    def load(self, experiment_id: int) -> CompileSet:
        compile_set = CompileSet(self.load_early_compile_methods(experiment_id))
        set_loaded_keys("compile", len(compile_set))

        logger.info(
            f"Loaded {len(compile_set)} early compile methods",
            extra={"experiment_id": experiment_id},
        )
        return compile_set
