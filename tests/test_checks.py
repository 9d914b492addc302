"""Tests for the device-specific check classes.

Each check class is driven directly through a CheckContext, without the
orchestrator, so individual findings can be asserted in isolation.
"""

from __future__ import annotations

import pytest

from device_conform.checks import (
    CheckContext,
    DeviceChecks,
    FocuserChecks,
    GenericChecks,
    SafetyMonitorChecks,
    checks_for,
)
from device_conform.conform.classifier import Verdict
from device_conform.conform.timing import MemberTimer
from device_conform.drivers.exceptions import InvalidOperationError
from device_conform.drivers.twin import DigitalTwinDevice, TwinConfig
from device_conform.drivers.types import DeviceCategory
from tests.helpers import messages


@pytest.fixture
def make_checks(make_config, recorder, reporter, cancel, clock):
    """Factory building a check object around a connected handle.

    Returns:
        Callable(check_class, handle, **config_overrides) -> DeviceChecks.
    """

    def _make(check_class, handle, **overrides):
        handle.connected = True
        context = CheckContext(
            handle=handle,
            category=handle.category,
            config=make_config(handle.category, **overrides),
            recorder=recorder,
            reporter=reporter,
            timer=MemberTimer(recorder, clock=clock),
            cancel=cancel,
            clock=clock,
        )
        return check_class(context)

    return _make


class TestChecksFor:
    """Tests for checks_for()."""

    @pytest.mark.parametrize(
        ("category", "expected"),
        [
            (DeviceCategory.FOCUSER, FocuserChecks),
            (DeviceCategory.SAFETY_MONITOR, SafetyMonitorChecks),
            (DeviceCategory.DOME, GenericChecks),
            (DeviceCategory.TELESCOPE, GenericChecks),
        ],
    )
    def test_dispatch(self, category, expected):
        """Dedicated classes where they exist, GenericChecks otherwise."""
        assert checks_for(category) is expected


# =============================================================================
# Focuser
# =============================================================================


class TestFocuserProperties:
    """FocuserChecks.check_properties findings."""

    def test_default_focuser_passes(self, make_checks, focuser_twin, recorder):
        """Every property of the default twin is in range."""
        checks = make_checks(FocuserChecks, focuser_twin)

        checks.check_properties()

        assert recorder.counts().clean
        assert checks.absolute is True
        assert checks.max_step == 10000
        assert checks.temp_comp_true_ok and checks.temp_comp_false_ok
        assert focuser_twin.read("TempComp") is False

    @pytest.mark.parametrize(
        ("fields", "test", "message"),
        [
            (
                {"MaxIncrement": 20000},
                "MaxIncrement",
                "MaxIncrement is greater than MaxStep and shouldn't be: 20000",
            ),
            (
                {"Position": 20000},
                "Position",
                "Position is > MaxStep, actual value: 20000",
            ),
            (
                {"IsMoving": True},
                "IsMoving",
                "IsMoving is True at start of tests and it should be false",
            ),
            (
                {"Temperature": 60.0},
                "Temperature",
                "Temperature > 50.0, - possibly an issue, actual value: 60.0",
            ),
            (
                {"Temperature": -60.0},
                "Temperature",
                "Temperature < -50.0, - possibly an issue, actual value: -60.0",
            ),
            (
                {"StepSize": 0.0},
                "StepSize",
                "StepSize must be > 0.0, actual value: 0.0",
            ),
            (
                {"TempComp": True, "TempCompAvailable": False},
                "TempComp Read",
                "TempComp is True when TempCompAvailable is False - this should not be so",
            ),
        ],
    )
    def test_out_of_range_values(
        self, make_checks, make_twin, recorder, fields, test, message
    ):
        """Out-of-range readings are reported against their member."""
        checks = make_checks(FocuserChecks, make_twin(fields=fields))

        checks.check_properties()

        assert messages(recorder.results, test) == [message]

    def test_optional_step_size_not_implemented(self, make_checks, make_twin, recorder):
        """StepSize is optional, so not implementing it passes."""
        checks = make_checks(
            FocuserChecks, make_twin(not_implemented=frozenset({"StepSize"}))
        )

        checks.check_properties()

        assert recorder.counts().clean
        assert recorder.results.worst("StepSize") is Verdict.OK

    def test_temp_comp_unavailable(self, make_checks, make_twin, recorder):
        """Setting TempComp without the hardware must raise not-implemented."""
        checks = make_checks(FocuserChecks, make_twin(fields={"TempCompAvailable": False}))

        checks.check_properties()

        assert recorder.counts().clean
        assert recorder.results.worst("TempComp Write") is Verdict.OK
        assert checks.temp_comp_true_ok is False

    def test_relative_focuser_position(self, make_checks, make_twin, recorder):
        """A relative focuser refusing Position passes."""
        checks = make_checks(FocuserChecks, make_twin(fields={"Absolute": False}))

        checks.check_properties()

        assert recorder.counts().clean
        assert checks.absolute_position_ok is False


class _SynchronousFocuser(DigitalTwinDevice):
    """Twin whose Move blocks for two seconds and never reports IsMoving."""

    def invoke(self, member, **params):
        if member == "Move":
            self.clock.advance(2.0)
        return super().invoke(member, **params)


class _TempCompLockedFocuser(DigitalTwinDevice):
    """Twin that refuses TempComp = False once ``locked`` is set."""

    locked = False

    def write(self, member, value):
        if self.locked and member == "TempComp" and value is False:
            raise InvalidOperationError("TempComp is locked on")
        return super().write(member, value)


class TestFocuserMethods:
    """FocuserChecks.check_methods findings."""

    def test_asynchronous_moves(self, make_checks, make_twin, recorder):
        """Moves that report IsMoving are waited for and pass."""
        twin = make_twin(move_time_s=2.0)
        checks = make_checks(FocuserChecks, twin)
        checks.check_properties()

        checks.check_methods()

        assert recorder.counts().clean
        assert recorder.results.worst("Move - To MidPoint") is Verdict.OK
        assert twin.read("Position") == 10000

    def test_synchronous_move_on_async_interface(
        self, make_checks, recorder, clock
    ):
        """Verifies a blocking Move is reported for interface version 4.

        Arrangement:
        1. Focuser whose Move takes 2 s and never sets IsMoving.

        Action:
        Runs the property then method checks.

        Assertion Strategy:
        - The first move test has exactly the synchronous-move issue.
        """
        twin = _SynchronousFocuser(clock=clock)
        checks = make_checks(FocuserChecks, twin)
        checks.check_properties()

        checks.check_methods()

        assert messages(recorder.results, "Move - TempComp False") == [
            "The focuser moved synchronously and the Move() method exceeded the "
            "standard response time of 1.0 seconds."
        ]

    def test_synchronous_move_allowed_before_v4(self, make_checks, recorder, clock):
        """Older focusers may move synchronously."""
        twin = _SynchronousFocuser(TwinConfig(interface_version=3), clock=clock)
        checks = make_checks(FocuserChecks, twin)
        checks.check_properties()

        checks.check_methods()

        assert recorder.counts().clean

    def test_move_timeout(self, make_checks, make_twin, recorder):
        """A move that never finishes is an error naming the wait."""
        checks = make_checks(
            FocuserChecks, make_twin(move_time_s=1000.0), focuser_timeout_s=5.0
        )
        checks.check_properties()

        checks.check_methods()

        assert recorder.results.errors[0].test == "Move"
        assert recorder.results.errors[0].message == (
            'The "Moving focuser" operation exceeded its 5 second timeout.'
        )

    def test_halt_not_implemented(self, make_checks, make_twin, recorder):
        """Halt is optional."""
        checks = make_checks(
            FocuserChecks, make_twin(not_implemented=frozenset({"Halt"}))
        )
        checks.check_properties()

        checks.check_methods()

        assert recorder.counts().clean
        assert recorder.results.worst("Halt") is Verdict.OK

    def test_temp_comp_write_fails_before_limit_moves(self, make_checks, clock, recorder):
        """Verifies a TempComp write failure is reported under Move.

        Arrangement:
        1. Absolute focuser whose TempComp write works during the
           property checks and is then locked.
        2. The temperature-compensated move step is skipped.

        Action:
        Runs check_methods().

        Assertion Strategy:
        - No exception escapes the check.
        - The failed writes are recorded against Move.
        - The limit moves are not attempted.
        """
        twin = _TempCompLockedFocuser(clock=clock)
        checks = make_checks(FocuserChecks, twin)
        checks.check_properties()
        checks.temp_comp_true_ok = False
        twin.locked = True

        checks.check_methods()

        findings = recorder.results.issues + recorder.results.errors
        assert [f.test for f in findings] == ["Move", "Move"]
        assert all("TempComp is locked on" in f.message for f in findings)
        assert recorder.results.worst("Move - To 0") is None


class TestFocuserPerformance:
    """FocuserChecks.check_performance."""

    def test_skips_unsupported_members(self, make_checks, focuser_twin, recorder):
        """Without successful property reads every loop is skipped."""
        checks = make_checks(FocuserChecks, focuser_twin)

        checks.check_performance()

        for member in ("Position", "IsMoving", "Temperature"):
            assert recorder.results.worst(member) is Verdict.INFO

    def test_runs_after_properties(self, make_checks, focuser_twin, recorder):
        """Readable members get a transaction rate."""
        checks = make_checks(FocuserChecks, focuser_twin)
        checks.check_properties()

        checks.check_performance()

        assert recorder.counts().clean
        assert recorder.results.worst("Position") is Verdict.OK


# =============================================================================
# SafetyMonitor and generic families
# =============================================================================


class TestSafetyMonitorChecks:
    """SafetyMonitorChecks findings."""

    def test_pre_connect_exception(self, make_twin, make_checks, recorder):
        """An IsSafe failure before connection is an issue."""
        twin = make_twin(
            DeviceCategory.SAFETY_MONITOR, not_implemented=frozenset({"IsSafe"})
        )
        checks = make_checks(SafetyMonitorChecks, twin)
        twin.connected = False

        checks.pre_connect_checks()

        assert messages(recorder.results, "IsSafe") == [
            "Cannot confirm that IsSafe is false before connection because it "
            "threw an exception: IsSafe is not implemented"
        ]

    def test_is_safe_mandatory(self, make_twin, make_checks, recorder):
        """IsSafe not implemented while connected is an issue."""
        twin = make_twin(
            DeviceCategory.SAFETY_MONITOR, not_implemented=frozenset({"IsSafe"})
        )
        checks = make_checks(SafetyMonitorChecks, twin)

        checks.check_properties()

        assert recorder.results.worst("IsSafe") is Verdict.ISSUE


class TestGenericChecks:
    """GenericChecks sweep."""

    def test_can_properties_first(self, make_twin, make_checks, recorder):
        """Can* flags are read in their own step and others are left alone."""
        twin = make_twin(DeviceCategory.DOME, fields={"CanPark": True, "Slewing": False})
        checks = make_checks(GenericChecks, twin)

        checks.read_can_properties()

        assert recorder.results.worst("CanPark") is Verdict.OK
        assert recorder.results.worst("Slewing") is None

    def test_unimplemented_properties_pass(self, make_twin, make_checks, recorder):
        """Every family property is treated as optional."""
        checks = make_checks(GenericChecks, make_twin(DeviceCategory.ROTATOR))

        checks.check_properties()

        assert recorder.counts().clean
        assert recorder.results.worst("Position") is Verdict.OK


# =============================================================================
# Base class helpers
# =============================================================================


class TestDeviceChecksBase:
    """Helpers shared by every check class."""

    def test_configuration_alerts(self, make_checks, focuser_twin, recorder):
        """Performance alerts only for families with a performance step."""
        checks = make_checks(
            DeviceChecks, focuser_twin, test_methods=False, test_performance=False
        )

        checks.check_configuration()

        assert [f.message for f in recorder.results.configuration_alerts] == [
            "Method tests were omitted due to Conform configuration."
        ]

    def test_performance_failure_is_info(self, make_checks, focuser_twin, recorder):
        """A failing loop ends with an INFO verdict."""
        checks = make_checks(DeviceChecks, focuser_twin)

        def fail():
            raise RuntimeError("link lost")

        assert checks.performance_test("Position", fail) is None
        assert messages(recorder.results, "Position", "issues") == []
        assert recorder.results.worst("Position") is Verdict.INFO

    def test_slow_rate_is_info(self, make_checks, focuser_twin, recorder, clock):
        """Rates at or below ten per second are INFO."""
        checks = make_checks(DeviceChecks, focuser_twin)

        rate = checks.performance_test("Position", lambda: clock.advance(0.2))

        assert rate is not None and rate < 10
        assert recorder.results.worst("Position") is Verdict.INFO

    def test_status_sink(self, make_checks, focuser_twin):
        """set_status forwards to the context's sink when there is one."""
        checks = make_checks(DeviceChecks, focuser_twin)
        updates = []
        checks.context.status = lambda action, text: updates.append((action, text))

        checks.set_status("Move", "1 / 2")

        assert updates == [("Move", "1 / 2")]
