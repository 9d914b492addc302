"""Focuser checks.

Covers the focuser's configuration properties, temperature compensation,
Halt, and Move for both absolute and relative focusers. Absolute
focusers are also driven to their travel limits and slightly beyond, to
confirm they stop gracefully rather than raising.

Move is asynchronous from interface version 4: it must return promptly
and report progress through IsMoving. Older focusers may move
synchronously.
"""

from __future__ import annotations

from dataclasses import dataclass

from device_conform.checks.base import CheckContext, DeviceChecks
from device_conform.conform.classifier import MemberKind, Requiredness
from device_conform.conform.polling import raise_if_timed_out, wait_while
from device_conform.drivers.capabilities import supports_async_protocol
from device_conform.observability import TargetTime, get_logger

logger = get_logger(__name__)

__all__ = ["FocuserChecks"]

#: Steps beyond the travel limits used to check graceful limit handling.
OUT_OF_RANGE_INCREMENT = 10

#: Temperatures outside this band are reported as suspicious.
TEMPERATURE_LIMIT = 50.0


@dataclass(frozen=True)
class _LimitMove:
    test: str
    target: int
    expected: int
    ok_message: str
    permitted_message: str = ""
    user_message: str = ""


class FocuserChecks(DeviceChecks):
    """Property, method and performance checks for focusers."""

    has_properties = True
    has_methods = True
    has_performance_check = True

    def __init__(self, context: CheckContext) -> None:
        super().__init__(context)
        self.absolute = False
        self.max_step = 0
        self.max_increment = 0
        self.position = 0
        self.temp_comp = False
        self.temp_comp_available = False
        self.temp_comp_true_ok = False
        self.temp_comp_false_ok = False
        self.absolute_position_ok = False
        self.can_read_is_moving = False
        self.can_read_temperature = False

    # =========================================================================
    # Properties
    # =========================================================================

    def check_properties(self) -> None:
        """Read and range-check every focuser property."""
        steps = (
            self._check_absolute,
            self._check_is_moving,
            self._check_max_step,
            self._check_max_increment,
            self._check_position,
            self._check_step_size,
            self._check_temp_comp_available,
            self._check_temp_comp_read,
            self._check_temp_comp_write,
            self._restore_temp_comp,
            self._check_temperature,
        )
        for step in steps:
            step()
            if self.cancelled:
                return

    def _check_absolute(self) -> None:
        try:
            self.absolute = bool(self.read("Absolute"))
            self.recorder.ok("Absolute", str(self.absolute))
        except Exception as exc:
            self.handle_exception("Absolute", MemberKind.PROPERTY, Requiredness.MANDATORY, exc)

    def _check_is_moving(self) -> None:
        try:
            is_moving = bool(self.read("IsMoving"))
        except Exception as exc:
            self.handle_exception("IsMoving", MemberKind.PROPERTY, Requiredness.MANDATORY, exc)
            return
        if is_moving:
            self.recorder.issue(
                "IsMoving", "IsMoving is True at start of tests and it should be false"
            )
        else:
            self.recorder.ok("IsMoving", str(is_moving))
            self.can_read_is_moving = True

    def _check_max_step(self) -> None:
        try:
            self.max_step = int(self.read("MaxStep"))
            self.recorder.ok("MaxStep", str(self.max_step))
        except Exception as exc:
            self.handle_exception("MaxStep", MemberKind.PROPERTY, Requiredness.MANDATORY, exc)

    def _check_max_increment(self) -> None:
        try:
            self.max_increment = int(self.read("MaxIncrement"))
        except Exception as exc:
            self.handle_exception(
                "MaxIncrement", MemberKind.PROPERTY, Requiredness.MANDATORY, exc
            )
            return
        if self.max_increment < 1:
            self.recorder.issue(
                "MaxIncrement",
                f"MaxIncrement must be at least 1, actual value: {self.max_increment}",
            )
        elif self.max_increment > self.max_step:
            self.recorder.issue(
                "MaxIncrement",
                "MaxIncrement is greater than MaxStep and shouldn't be: "
                f"{self.max_increment}",
            )
        else:
            self.recorder.ok("MaxIncrement", str(self.max_increment))

    def _check_position(self) -> None:
        if not self.absolute:
            try:
                self.log_call("Position", "About to get Position property")
                self.handle.read("Position")
                self.recorder.issue(
                    "Position",
                    "This is a relative focuser but it didn't raise an exception for "
                    "Focuser.Position",
                )
            except Exception as exc:
                self.handle_exception(
                    "Position",
                    MemberKind.PROPERTY,
                    Requiredness.MUST_NOT_BE_IMPLEMENTED,
                    exc,
                    "Position must not be implemented for a relative focuser",
                )
            return

        try:
            self.position = int(self.read("Position"))
        except Exception as exc:
            self.handle_exception(
                "Position",
                MemberKind.PROPERTY,
                Requiredness.MUST_BE_IMPLEMENTED,
                exc,
                "Position must be implemented for an absolute focuser",
            )
            return
        if self.position < 0:
            self.recorder.issue("Position", f"Position is < 0, actual value: {self.position}")
        elif self.position > self.max_step:
            self.recorder.issue(
                "Position", f"Position is > MaxStep, actual value: {self.position}"
            )
        else:
            self.recorder.ok("Position", str(self.position))
            self.absolute_position_ok = True

    def _check_step_size(self) -> None:
        try:
            self.log_call("StepSize", "About to get StepSize property")
            step_size = float(self.handle.read("StepSize"))
        except Exception as exc:
            self.handle_exception("StepSize", MemberKind.PROPERTY, Requiredness.OPTIONAL, exc)
            return
        if step_size <= 0.0:
            self.recorder.issue(
                "StepSize", f"StepSize must be > 0.0, actual value: {step_size}"
            )
        else:
            self.recorder.ok("StepSize", str(step_size))

    def _check_temp_comp_available(self) -> None:
        try:
            self.temp_comp_available = bool(self.read("TempCompAvailable"))
            self.recorder.ok("TempCompAvailable", str(self.temp_comp_available))
        except Exception as exc:
            self.handle_exception(
                "TempCompAvailable", MemberKind.PROPERTY, Requiredness.MANDATORY, exc
            )

    def _check_temp_comp_read(self) -> None:
        try:
            self.temp_comp = bool(
                self.time_member("TempComp Read", lambda: self.handle.read("TempComp"))
            )
        except Exception as exc:
            self.handle_exception(
                "TempComp Read", MemberKind.PROPERTY, Requiredness.MANDATORY, exc
            )
            return
        if self.temp_comp and not self.temp_comp_available:
            self.recorder.issue(
                "TempComp Read",
                "TempComp is True when TempCompAvailable is False - this should not be so",
            )
        else:
            self.recorder.ok("TempComp Read", str(self.temp_comp))

    def _check_temp_comp_write(self) -> None:
        if not self.temp_comp_available:
            try:
                self.log_call("TempComp Write", "About to set TempComp property")
                self.handle.write("TempComp", True)
                self.recorder.issue(
                    "TempComp Write",
                    "Temperature compensation is not available but no exception was "
                    "raised when TempComp was set True",
                )
            except Exception as exc:
                self.handle_exception(
                    "TempComp Write",
                    MemberKind.PROPERTY,
                    Requiredness.MUST_NOT_BE_IMPLEMENTED,
                    exc,
                    "Temperature compensation is not available",
                )
            return

        try:
            self.time_member(
                "TempComp Write",
                lambda: self.handle.write("TempComp", True),
                TargetTime.STANDARD,
            )
            self.recorder.ok("TempComp Write", "Successfully turned temperature compensation on")
            self.temp_comp_true_ok = True
            self.handle.write("TempComp", False)
            self.recorder.ok(
                "TempComp Write", "Successfully turned temperature compensation off"
            )
            self.temp_comp_false_ok = True
        except Exception as exc:
            self.handle_exception(
                "TempComp Write",
                MemberKind.PROPERTY,
                Requiredness.MUST_BE_IMPLEMENTED,
                exc,
                "Temperature compensation is available but",
            )

    def _restore_temp_comp(self) -> None:
        try:
            self.handle.write("TempComp", self.temp_comp)
        except Exception as exc:
            # Already reported by the TempComp Write check.
            logger.debug("Could not restore TempComp", error=str(exc))

    def _check_temperature(self) -> None:
        try:
            temperature = float(self.read("Temperature"))
        except Exception as exc:
            self.handle_exception(
                "Temperature", MemberKind.PROPERTY, Requiredness.OPTIONAL, exc
            )
            return
        if temperature <= -TEMPERATURE_LIMIT:
            self.recorder.issue(
                "Temperature",
                f"Temperature < -50.0, - possibly an issue, actual value: {temperature}",
            )
        elif temperature >= TEMPERATURE_LIMIT:
            self.recorder.issue(
                "Temperature",
                f"Temperature > 50.0, - possibly an issue, actual value: {temperature}",
            )
        else:
            self.recorder.ok("Temperature", str(temperature))
            self.can_read_temperature = True

    # =========================================================================
    # Methods
    # =========================================================================

    def check_methods(self) -> None:
        """Halt, Move, temperature-compensated Move and limit moves."""
        try:
            self.log_call("Halt", "About to call Halt method")
            self.time_member("Halt", lambda: self.handle.invoke("Halt"), TargetTime.STANDARD)
            self.recorder.ok("Halt", "Focuser halted OK")
        except Exception as exc:
            self.handle_exception("Halt", MemberKind.METHOD, Requiredness.OPTIONAL, exc)
        if self.cancelled:
            return

        try:
            if self.temp_comp_false_ok:
                self.handle.write("TempComp", False)
            self._move_and_return("Move - TempComp False", check_accuracy=True)
        except Exception as exc:
            self.handle_exception("Move", MemberKind.METHOD, Requiredness.MANDATORY, exc)
        if self.cancelled:
            return

        if self.temp_comp_true_ok:
            self._check_move_with_temp_comp()
            if self.cancelled:
                return

        if self.absolute:
            if self.temp_comp_false_ok:
                try:
                    self.handle.write("TempComp", False)
                except Exception as exc:
                    self.handle_exception("Move", MemberKind.METHOD, Requiredness.MANDATORY, exc)
                    self._restore_temp_comp()
                    return
            for move in self._limit_moves():
                self._check_limit_move(move)
                if self.cancelled:
                    return

        self._restore_temp_comp()

    def _check_move_with_temp_comp(self) -> None:
        if self.handle.interface_version < 3:
            test = "Move - TempComp True"
            try:
                self.handle.write("TempComp", True)
                self._move_and_return(test, check_accuracy=True)
                self.recorder.issue(
                    test,
                    "TempComp is True but no exception is thrown by the Move Method - "
                    "See Focuser.TempComp entry in Platform help file",
                )
            except Exception as exc:
                self.reporter.handle_invalid_operation_as_ok(
                    test,
                    MemberKind.METHOD,
                    Requiredness.MUST_BE_IMPLEMENTED,
                    exc,
                    "TempComp is True but incorrect exception was thrown by the Move Method",
                    "InvalidOperation Exception correctly raised as expected",
                )
        else:
            test = "Move - TempComp True V3"
            try:
                self.handle.write("TempComp", True)
                # Position is not predictable while compensation is active
                self._move_and_return(test, check_accuracy=False)
            except Exception as exc:
                self.handle_exception(test, MemberKind.METHOD, Requiredness.MANDATORY, exc)

    def _limit_moves(self) -> list[_LimitMove]:
        mid_point = self.max_step // 2
        return [
            _LimitMove("Move - To 0", 0, 0, "Reported position: {position}."),
            _LimitMove(
                "Move - Below 0",
                -OUT_OF_RANGE_INCREMENT,
                0,
                "Movement below 0 was not permitted. (Actually moved to {position})",
                "Move was permitted below position 0. ",
                "Move should fail gracefully by just moving to position 0; it should "
                "not throw an exception",
            ),
            _LimitMove(
                "Move - To MidPoint", mid_point, mid_point, "Reported position: {position}."
            ),
            _LimitMove(
                "Move - To MaxStep", self.max_step, self.max_step, "Reported position: {position}."
            ),
            _LimitMove(
                "Move - Above MaxStep",
                self.max_step + OUT_OF_RANGE_INCREMENT,
                self.max_step,
                "Movement above MaxStep was not permitted. (Actually moved to {position})",
                "Move was permitted above position MaxStep. ",
                "Move should fail gracefully by just moving to position MaxStep; it "
                "should not throw an exception",
            ),
        ]

    def _check_limit_move(self, move: _LimitMove) -> None:
        try:
            self._move_to(move.test, move.target)
            position = int(self.handle.read("Position"))
        except Exception as exc:
            self.handle_exception(
                move.test, MemberKind.METHOD, Requiredness.MANDATORY, exc, move.user_message
            )
            return
        tolerance = self.config.focuser_move_tolerance
        if abs(position - move.expected) <= tolerance:
            self.recorder.ok(move.test, move.ok_message.format(position=position))
        else:
            self.recorder.issue(
                move.test,
                f"{move.permitted_message}Move ended at {position}, which is "
                f"{abs(position - move.expected)} steps away from the expected position "
                f"{move.expected}. This is outside the configured move tolerance: "
                f"{tolerance}.",
            )

    def _move_and_return(self, test: str, check_accuracy: bool) -> None:
        """Make a small move, check where it ended, then move back."""
        original = 0
        if self.absolute:
            original = int(self.handle.read("Position"))
            target = original + self.max_step // 10
            if target >= self.max_step:
                target = original - self.max_step // 10
            if abs(target - original) > self.max_increment:
                target = original + self.max_increment
        else:
            target = min(round(self.max_increment / 10.0), self.max_increment)

        self._move_to(test, target)

        if self.absolute and check_accuracy:
            position = int(self.handle.read("Position"))
            tolerance = self.config.focuser_move_tolerance
            if abs(target - position) <= tolerance:
                self.recorder.ok(test, "Absolute move OK")
            else:
                self.recorder.issue(
                    test,
                    f"Move ended at {position}, which is {abs(position - target)} steps "
                    f"away from the expected position {target}. This is outside the "
                    f"configured move tolerance: {tolerance}.",
                )
        elif self.absolute:
            self.recorder.ok(test, "Absolute move OK")
        else:
            self.recorder.ok(test, "Relative move OK")

        self.handle.invoke("Move", Position=original if self.absolute else -target)
        self._wait_for_move("Moving back to starting position")

    def _move_to(self, test: str, target: int) -> None:
        if self.handle.read("IsMoving"):
            self.recorder.issue(
                test, "Focuser is already moving before start of Move test, rest of test skipped"
            )
            return
        logger.debug("Moving focuser", test=test, target=target, absolute=self.absolute)
        clock = self.context.clock
        start = clock.monotonic()
        self.time_member(
            f"Move to {target}",
            lambda: self.handle.invoke("Move", Position=target),
            TargetTime.STANDARD,
        )
        duration = clock.monotonic() - start
        standard = TargetTime.STANDARD.seconds
        if duration > standard and not self.handle.read("IsMoving"):
            if supports_async_protocol(self.context.category, self.handle.interface_version):
                self.recorder.issue(
                    test,
                    "The focuser moved synchronously and the Move() method exceeded the "
                    f"standard response time of {standard:.1f} seconds.",
                )
            return
        self._wait_for_move("Moving focuser")

    def _wait_for_move(self, action: str) -> None:
        timeout_s = self.config.focuser_timeout_s
        result = wait_while(
            action,
            lambda: bool(self.handle.read("IsMoving")),
            self.config.poll_interval_ms,
            timeout_s,
            self.context.cancel,
            status=self.context.status,
            clock=self.context.clock,
        )
        raise_if_timed_out(action, timeout_s, result)

    # =========================================================================
    # Performance
    # =========================================================================

    def check_performance(self) -> None:
        """Transaction rates of Position, IsMoving and Temperature."""
        for member, supported in (
            ("Position", self.absolute_position_ok),
            ("IsMoving", self.can_read_is_moving),
            ("Temperature", self.can_read_temperature),
        ):
            if not supported:
                self.recorder.info(member, "Skipping test as property is not supported")
                continue
            self.performance_test(member, lambda m=member: self.handle.read(m))
            if self.cancelled:
                return
