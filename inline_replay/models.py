"""Shared types for the inline replay harness.

Defines the surface the host compiler must expose for its methods, the
identity scope a session resolves at startup, the records read back
from the store, and the canonical string keys used by the in-memory
replay sets.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, TypedDict, runtime_checkable


# =============================================================================
# Host Collaborator Surface
# =============================================================================


@runtime_checkable
class MethodHandle(Protocol):
    """Identity attributes of a host compiler method.

    Any object exposing these attributes can be resolved, recorded or
    queried. Only these five attributes are ever read.
    """

    @property
    def holder_name(self) -> str: ...

    @property
    def name(self) -> str: ...

    @property
    def descriptor(self) -> str: ...

    @property
    def is_static(self) -> bool: ...

    @property
    def code_size(self) -> int: ...


@dataclass(frozen=True)
class MethodRef:
    """Plain method handle for hosts without their own representation.

    Example:
        >>> MethodRef("A", "m", "()V", is_static=False, code_size=10)
    """

    holder_name: str
    name: str
    descriptor: str
    is_static: bool = False
    code_size: int = 0


# =============================================================================
# Identity Scope
# =============================================================================


@dataclass(frozen=True)
class ExperimentScope:
    """Identifiers resolved once at startup and shared by every call.

    Attributes:
        package_id: Package (name + version) the session belongs to.
        experiment_id: Experiment scoping all decision data.
        inline_set_id: Replayed inline set, when one was loaded.
    """

    package_id: int
    experiment_id: int
    inline_set_id: int | None = None


# =============================================================================
# Stored Records
# =============================================================================


class InlineDecisionRecord(TypedDict):
    """One appended inline decision as read back from the store.

    Attributes:
        id: Row identifier.
        inline_method_call_id: Experiment-scoped call the decision is about.
        require_inline: Whether the compiler decided to inline.
        sequence: Order of the decision within its recording session.
    """

    id: int
    inline_method_call_id: int
    require_inline: bool
    sequence: int


# =============================================================================
# Canonical Keys
# =============================================================================


def method_key(klass_name: str, method_name: str, descriptor: str) -> str:
    """Content key of a method: ``klass.method descriptor``."""
    return f"{klass_name}.{method_name} {descriptor}"


def handle_key(method: MethodHandle) -> str:
    """Content key of a host method handle."""
    return method_key(method.holder_name, method.name, method.descriptor)


def inline_call_key(
    caller_klass: str,
    caller_method: str,
    caller_descriptor: str,
    bci: int,
    callee_klass: str,
    callee_method: str,
    callee_descriptor: str,
) -> str:
    """Key of one call: ``A.m ()V@5 B.n ()V``."""
    caller = method_key(caller_klass, caller_method, caller_descriptor)
    callee = method_key(callee_klass, callee_method, callee_descriptor)
    return f"{caller}@{bci} {callee}"


def compile_key(klass_name: str, method_name: str, descriptor: str, bci: int) -> str:
    """Key of an early compile method: ``A.m ()V@5``."""
    return f"{method_key(klass_name, method_name, descriptor)}@{bci}"
