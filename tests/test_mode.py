"""
Mode Selection Tests.

Tests for process start-up including:
- Mode parsing and lenient fallback to disabled
- Disabled mode opening no store connection
- Component construction per mode
- Gateway release for using modes and on fatal errors
"""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

import pytest

from inline_replay.db.connection import InlineSetNotFoundError, MigrationMissingError
from inline_replay.db.gateway import QueryGateway
from inline_replay.models import MethodRef
from inline_replay.mode import Mode, ReplayContext, initialize, parse_mode, resolve_mode
from tests.fakes import COMPILE_METHODS, DECISIONS, FakeGateway, make_settings

CALLER = MethodRef("A", "m", "()V", code_size=10)
CALLEE = MethodRef("B", "n", "()V")

IDENTITY = {
    "PACKAGE_NAME": "Foo",
    "PACKAGE_VERSION": "1.0",
    "EXPERIMENT_NAME": "Exp1",
}

WITH_SET = {**IDENTITY, "INLINE_SET_NAME": "baseline"}


# =============================================================================
# Mode Resolution
# =============================================================================


class TestParseMode:
    """Mode names are matched case-insensitively."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("disabled", Mode.DISABLED),
            ("recording_inline_set", Mode.RECORDING_INLINE_SET),
            ("USING_INLINE_SET", Mode.USING_INLINE_SET),
            ("recording_c2_early_compile", Mode.RECORDING_EARLY_COMPILE),
            ("using_c2_early_compile", Mode.USING_EARLY_COMPILE),
            ("recording_early_compile", Mode.RECORDING_EARLY_COMPILE),
            (" using_early_compile ", Mode.USING_EARLY_COMPILE),
            ("replaying", None),
            (None, None),
        ],
    )
    def test_parse(self, value: str | None, expected: Mode | None) -> None:
        assert parse_mode(value) is expected

    def test_recording_and_using_partition(self) -> None:
        assert {m for m in Mode if m.is_recording} == {
            Mode.RECORDING_INLINE_SET,
            Mode.RECORDING_EARLY_COMPILE,
        }
        assert {m for m in Mode if m.is_using} == {
            Mode.USING_INLINE_SET,
            Mode.USING_EARLY_COMPILE,
        }


class TestResolveMode:
    """Missing or unrecognized configuration selects disabled."""

    def test_no_mode_is_disabled(self) -> None:
        assert resolve_mode(make_settings(**IDENTITY)) is Mode.DISABLED

    def test_switch_overrides_mode(self) -> None:
        settings = make_settings(MODE="recording_inline_set", DISABLED=True, **IDENTITY)

        assert resolve_mode(settings) is Mode.DISABLED

    def test_unknown_mode_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="inline_replay"):
            mode = resolve_mode(make_settings(MODE="replaying", **IDENTITY))

        assert mode is Mode.DISABLED
        assert "replaying" in caplog.text

    @pytest.mark.parametrize("missing", ["PACKAGE_NAME", "PACKAGE_VERSION", "EXPERIMENT_NAME"])
    def test_missing_identity_setting(self, missing: str) -> None:
        values = {k: v for k, v in IDENTITY.items() if k != missing}

        assert resolve_mode(make_settings(MODE="recording_c2_early_compile", **values)) is Mode.DISABLED

    def test_using_inline_set_needs_set_name(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="inline_replay"):
            mode = resolve_mode(make_settings(MODE="using_inline_set", **IDENTITY))

        assert mode is Mode.DISABLED
        assert "INLINE_SET_NAME" in caplog.text

    def test_complete_configuration(self) -> None:
        settings = make_settings(MODE="using_inline_set", INLINE_SET_NAME="baseline", **IDENTITY)

        assert resolve_mode(settings) is Mode.USING_INLINE_SET


# =============================================================================
# Disabled
# =============================================================================


class TestDisabled:
    """Disabled mode is inert."""

    def test_no_gateway_opened(self) -> None:
        factory = MagicMock()

        context = initialize(make_settings(DISABLED=True, **IDENTITY), gateway_factory=factory)

        factory.assert_not_called()
        assert context.is_disabled()
        assert not context.is_recording()
        assert not context.is_using()
        assert context.scope is None

    def test_operations_are_no_ops(self) -> None:
        context = initialize(make_settings(), gateway_factory=MagicMock())

        assert context.force_inline(CALLER, 5, CALLEE) is False
        assert context.should_compile(CALLER, 5) is False
        assert context.add_inline_decision(CALLER, 5, CALLEE, True) is None
        assert context.add_compile_method(CALLER, 5) is None
        context.close()


# =============================================================================
# Recording Modes
# =============================================================================


@pytest.fixture
def baseline(fake_gateway: FakeGateway) -> int:
    """Provision the empty inline set "baseline" for Foo 1.0 / Exp1."""
    _, inline_set_id = fake_gateway.provision_inline_set("baseline", "Foo", "1.0", "Exp1")
    return inline_set_id


class TestRecording:
    """Recording modes keep the gateway for appends."""

    def test_recording_inline_set(self, fake_gateway: FakeGateway, baseline: int) -> None:
        settings = make_settings(MODE="recording_inline_set", **WITH_SET)

        with initialize(settings, gateway_factory=lambda s: fake_gateway) as context:
            assert context.is_recording_inline_set()
            assert context.use_inline_set()
            assert context.scope.inline_set_id == baseline
            assert not fake_gateway.closed
            call_id = context.add_inline_decision(CALLER, 5, CALLEE, True)
            assert context.add_compile_method(CALLER, 5) is None

        assert fake_gateway.closed
        (decision,) = fake_gateway.rows(DECISIONS)
        assert decision["inline_method_call_id"] == call_id
        assert fake_gateway.count(COMPILE_METHODS) == 0

    def test_recording_inline_set_needs_set_name(self) -> None:
        settings = make_settings(MODE="recording_inline_set", **IDENTITY)

        assert resolve_mode(settings) is Mode.DISABLED

    def test_recording_into_unprovisioned_set_is_fatal(
        self, fake_gateway: FakeGateway, baseline: int
    ) -> None:
        settings = make_settings(
            MODE="recording_inline_set", **{**WITH_SET, "INLINE_SET_NAME": "basline"}
        )

        with pytest.raises(InlineSetNotFoundError):
            initialize(settings, gateway_factory=lambda s: fake_gateway)

        assert fake_gateway.closed
        assert fake_gateway.count(DECISIONS) == 0

    def test_recording_early_compile(self, fake_gateway: FakeGateway) -> None:
        settings = make_settings(MODE="recording_early_compile", **IDENTITY)

        with initialize(settings, gateway_factory=lambda s: fake_gateway) as context:
            assert context.is_recording_early_compile()
            assert not context.use_inline_set()
            assert context.add_compile_method(CALLER, 5) is not None
            assert context.add_inline_decision(CALLER, 5, CALLEE, True) is None

        assert fake_gateway.count(COMPILE_METHODS) == 1
        assert fake_gateway.count(DECISIONS) == 0

    def test_scope_created_on_first_run(self, fake_gateway: FakeGateway) -> None:
        settings = make_settings(MODE="recording_c2_early_compile", **IDENTITY)

        context = initialize(settings, gateway_factory=lambda s: fake_gateway)

        assert context.scope is not None
        assert context.scope.inline_set_id is None
        assert fake_gateway.count("project_totus_experiment") == 1
        context.close()

    def test_factory_receives_settings(self, fake_gateway: FakeGateway, baseline: int) -> None:
        settings = make_settings(MODE="recording_inline_set", **WITH_SET)
        factory = MagicMock(return_value=fake_gateway)

        initialize(settings, gateway_factory=factory).close()

        factory.assert_called_once_with(settings)

    def test_pool_stats_of_held_gateway(self) -> None:
        pool = MagicMock()
        pool.closed = False
        pool.min_size = 1
        pool.max_size = 4
        pool.get_stats.return_value = {"pool_size": 1, "pool_available": 1}
        context = ReplayContext(Mode.RECORDING_EARLY_COMPILE, gateway=QueryGateway(pool))

        stats = context.pool_stats()

        assert stats["status"] == "active"
        assert stats["size"] == 1
        assert ReplayContext(Mode.DISABLED).pool_stats() == {"status": "not_initialized"}


# =============================================================================
# Using Modes
# =============================================================================


class TestUsing:
    """Using modes preload their set and release the gateway."""

    def test_using_inline_set(self, fake_gateway: FakeGateway, baseline: int) -> None:
        recording = initialize(
            make_settings(MODE="recording_inline_set", **WITH_SET),
            gateway_factory=lambda s: fake_gateway,
        )
        call_id = recording.add_inline_decision(CALLER, 5, CALLEE, True)
        fake_gateway.add_inline_set_member(baseline, call_id)
        recording.close()
        fake_gateway.closed = False

        context = initialize(
            make_settings(MODE="using_inline_set", **WITH_SET),
            gateway_factory=lambda s: fake_gateway,
        )

        assert fake_gateway.closed
        assert context.is_using_inline_set()
        assert context.use_inline_set()
        assert context.scope.inline_set_id == baseline
        assert context.pool_stats() == {"status": "not_initialized"}
        executed = len(fake_gateway.statements)
        assert context.force_inline(CALLER, 5, CALLEE) is True
        assert context.force_inline(CALLER, 6, CALLEE) is False
        assert context.add_inline_decision(CALLER, 5, CALLEE, True) is None
        assert len(fake_gateway.statements) == executed

    def test_missing_inline_set_is_fatal(self, fake_gateway: FakeGateway) -> None:
        settings = make_settings(MODE="using_inline_set", INLINE_SET_NAME="absent", **IDENTITY)

        with pytest.raises(InlineSetNotFoundError):
            initialize(settings, gateway_factory=lambda s: fake_gateway)

        assert fake_gateway.closed

    def test_using_early_compile(self, fake_gateway: FakeGateway) -> None:
        with initialize(
            make_settings(MODE="recording_c2_early_compile", **IDENTITY),
            gateway_factory=lambda s: fake_gateway,
        ) as recording:
            recording.add_compile_method(CALLER, 5)
            recording.add_compile_method(CALLEE, -1)
            fake_gateway.enable_compile_methods(recording.scope.experiment_id)
        fake_gateway.closed = False

        context = initialize(
            make_settings(MODE="using_c2_early_compile", **IDENTITY),
            gateway_factory=lambda s: fake_gateway,
        )

        assert fake_gateway.closed
        assert context.is_using_early_compile()
        assert context.should_compile(CALLER, 5) is True
        assert context.should_compile(CALLEE, -1) is True
        assert context.should_compile(CALLER, 6) is False
        assert context.force_inline(CALLER, 5, CALLEE) is False


# =============================================================================
# Start-up Failures
# =============================================================================


class TestStartupFailures:
    """Store failures during start-up are fatal and release the gateway."""

    def test_missing_migration(self) -> None:
        gateway = FakeGateway(migrations=set())
        settings = make_settings(MODE="recording_inline_set", **WITH_SET)

        with pytest.raises(MigrationMissingError):
            initialize(settings, gateway_factory=lambda s: gateway)

        assert gateway.closed
        assert gateway.count("project_totus_package_base") == 0

    def test_close_is_idempotent(self, fake_gateway: FakeGateway) -> None:
        context = ReplayContext(Mode.RECORDING_INLINE_SET, gateway=fake_gateway)

        context.close()
        fake_gateway.closed = False
        context.close()

        assert fake_gateway.closed is False
