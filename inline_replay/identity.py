"""Identity Resolution for the inline replay harness.

Maps compiler entities (packages, classes, methods, call sites, calls)
to store identifiers, creating rows on first reference. Every entity is
resolved by its natural key, so identical keys from any process converge
on one row.

Two statement shapes are supported:
- upsert: one atomic insert-or-touch statement returning the id
- insert_select: an insert that no-ops on conflict, then a select

Either way the lookup must yield exactly one row; anything else is a
fatal integrity violation.

Method identifiers are memoized per session, first by content key and
optionally by the host's method handle object.
"""

from __future__ import annotations

import logging
import threading
import weakref
from typing import TYPE_CHECKING, Any, Literal

from inline_replay.db import queries
from inline_replay.db.connection import IntegrityViolationError
from inline_replay.db.gateway import Params
from inline_replay.models import ExperimentScope, MethodHandle, handle_key, method_key
from inline_replay.observability.metrics import track_identity

if TYPE_CHECKING:
    from inline_replay.db.gateway import QueryGateway
    from inline_replay.db.queries import Column, EntityStatements

logger = logging.getLogger(__name__)

ResolveStrategy = Literal["upsert", "insert_select"]


def build_params(columns: tuple[Column, ...], values: tuple[Any, ...]) -> Params:
    """Bind values to statement columns using each column's wire format."""
    params = Params()
    for column, value in zip(columns, values, strict=True):
        if column.kind == "int":
            params.add_int(value)
        elif column.kind == "bool":
            params.add_bool(value)
        else:
            params.add_text(value)
    return params


class IdentityResolver:
    """Get-or-create resolution of compiler entities.

    Caches are advisory: a miss always falls back to the store, and two
    threads missing on the same key both resolve it and store the same
    value. The cache lock is never held across a store round-trip.

    Example:
        resolver = IdentityResolver(gateway)
        scope = resolver.open_scope("Foo", "1.0", "Exp1")
        method_id = resolver.method_id(scope, MethodRef("A", "m", "()V"))
    """

    def __init__(
        self,
        gateway: QueryGateway,
        strategy: ResolveStrategy = "upsert",
        use_handle_cache: bool = True,
    ) -> None:
        """Initialize the resolver.

        Args:
            gateway: Gateway all statements are executed through.
            strategy: Get-or-create statement shape.
            use_handle_cache: Whether to memoize by method handle object
                              in addition to the content key.
        """
        if strategy not in ("upsert", "insert_select"):
            raise ValueError(f"Unknown resolve strategy: {strategy}")
        self._gateway = gateway
        self._strategy = strategy
        self._use_handle_cache = use_handle_cache
        self._lock = threading.Lock()
        self._method_ids: dict[tuple[int, str], int] = {}
        self._handle_ids: weakref.WeakKeyDictionary[Any, tuple[int, int]] = (
            weakref.WeakKeyDictionary()
        )

    @property
    def strategy(self) -> ResolveStrategy:
        return self._strategy

    # =========================================================================
    # Get-or-create Protocol
    # =========================================================================

    def _get_or_create(self, statements: EntityStatements, *values: Any) -> int:
        params = build_params(statements.columns, values)
        try:
            if self._strategy == "upsert":
                entity_id = self._gateway.fetch_id(statements.upsert, params)
            else:
                self._gateway.execute_command(statements.insert, params)
                key_params = build_params(statements.key, values[: len(statements.key)])
                entity_id = self._gateway.fetch_id(statements.select, key_params)
        except IntegrityViolationError as e:
            logger.critical(
                f"Integrity violation resolving {statements.entity}: {e}",
                extra={"entity": statements.entity, "key": repr(values)},
            )
            raise

        track_identity(statements.entity, cached=False)
        return entity_id

    def get_or_create_package_base(self, name: str) -> int:
        return self._get_or_create(queries.PACKAGE_BASE, name)

    def get_or_create_package(self, base_id: int, version: str) -> int:
        return self._get_or_create(queries.PACKAGE, base_id, version)

    def get_or_create_experiment(self, package_id: int, name: str) -> int:
        return self._get_or_create(queries.EXPERIMENT, package_id, name)

    def get_or_create_klass(self, package_id: int, name: str) -> int:
        return self._get_or_create(queries.KLASS, package_id, name)

    def get_or_create_method(
        self,
        klass_id: int,
        name: str,
        descriptor: str,
        is_instance_method: bool,
        size: int,
    ) -> int:
        """Resolve a method; size and instance flag are kept from the first insert."""
        return self._get_or_create(
            queries.METHOD, klass_id, name, descriptor, is_instance_method, size
        )

    def get_or_create_call_site(self, caller_id: int, bci: int) -> int:
        return self._get_or_create(queries.CALL_SITE, caller_id, bci)

    def get_or_create_method_call(self, call_site_id: int, callee_id: int) -> int:
        return self._get_or_create(queries.METHOD_CALL, call_site_id, callee_id)

    def get_or_create_inline_method_call(
        self, experiment_id: int, method_call_id: int
    ) -> int:
        return self._get_or_create(
            queries.INLINE_METHOD_CALL, experiment_id, method_call_id
        )

    # =========================================================================
    # Session-level Resolution
    # =========================================================================

    def open_scope(
        self,
        package_name: str,
        package_version: str,
        experiment_name: str,
    ) -> ExperimentScope:
        """Resolve package base, package and experiment for a session.

        Returns:
            ExperimentScope with the package and experiment identifiers.
        """
        base_id = self.get_or_create_package_base(package_name)
        package_id = self.get_or_create_package(base_id, package_version)
        experiment_id = self.get_or_create_experiment(package_id, experiment_name)

        logger.info(
            f"Resolved experiment {package_name} {package_version}/{experiment_name}",
            extra={"package_id": package_id, "experiment_id": experiment_id},
        )
        return ExperimentScope(package_id=package_id, experiment_id=experiment_id)

    def resolve_method_id(
        self,
        package_id: int,
        klass_name: str,
        method_name: str,
        descriptor: str,
        is_static: bool,
        code_size: int,
    ) -> int:
        """Resolve a method by content key, memoizing the result.

        The content-key cache is the authoritative memo: a hit issues no
        store statements at all.
        """
        cache_key = (package_id, method_key(klass_name, method_name, descriptor))
        with self._lock:
            cached = self._method_ids.get(cache_key)
        if cached is not None:
            track_identity("method", cached=True)
            return cached

        klass_id = self.get_or_create_klass(package_id, klass_name)
        method_id = self.get_or_create_method(
            klass_id, method_name, descriptor, not is_static, code_size
        )
        with self._lock:
            self._method_ids[cache_key] = method_id
        return method_id

    def method_id(self, scope: ExperimentScope, method: MethodHandle) -> int:
        """Resolve a host method handle.

        A handle-cache miss always falls back to the content-key path.
        Handles that cannot be weakly referenced are simply not memoized
        by handle.
        """
        if self._use_handle_cache:
            cached = self._lookup_handle(method, scope.package_id)
            if cached is not None:
                track_identity("method", cached=True)
                return cached

        method_id = self.resolve_method_id(
            scope.package_id,
            method.holder_name,
            method.name,
            method.descriptor,
            method.is_static,
            method.code_size,
        )

        if self._use_handle_cache:
            self._remember_handle(method, scope.package_id, method_id)
        return method_id

    def call_site_id(self, scope: ExperimentScope, caller: MethodHandle, bci: int) -> int:
        caller_id = self.method_id(scope, caller)
        return self.get_or_create_call_site(caller_id, bci)

    def inline_method_call_id(
        self,
        scope: ExperimentScope,
        caller: MethodHandle,
        bci: int,
        callee: MethodHandle,
    ) -> int:
        """Resolve the experiment-scoped identity of one call.

        Derives the call site, the callee method and the method call, then
        the inline method call within the scope's experiment.
        """
        call_site_id = self.call_site_id(scope, caller, bci)
        callee_id = self.method_id(scope, callee)
        method_call_id = self.get_or_create_method_call(call_site_id, callee_id)
        return self.get_or_create_inline_method_call(scope.experiment_id, method_call_id)

    # =========================================================================
    # Handle Cache
    # =========================================================================

    def _lookup_handle(self, method: MethodHandle, package_id: int) -> int | None:
        try:
            with self._lock:
                entry = self._handle_ids.get(method)
        except TypeError:
            return None
        if entry is None or entry[0] != package_id:
            return None
        return entry[1]

    def _remember_handle(self, method: MethodHandle, package_id: int, method_id: int) -> None:
        try:
            with self._lock:
                self._handle_ids[method] = (package_id, method_id)
        except TypeError:
            logger.debug(f"Method handle {handle_key(method)} is not cacheable by identity")

    def cache_info(self) -> dict[str, int]:
        """Sizes of the memoization caches."""
        with self._lock:
            return {
                "methods": len(self._method_ids),
                "handles": len(self._handle_ids),
            }

    def clear_caches(self) -> None:
        with self._lock:
            self._method_ids.clear()
            self._handle_ids.clear()
