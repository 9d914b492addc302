"""Base class for device-specific checks.

The orchestrator runs the same step sequence for every device family
and calls into a ``DeviceChecks`` subclass for the family-specific
parts. Each ``has_*`` flag tells the orchestrator whether the matching
step exists; unflagged steps are never called.

Subclasses get a ``CheckContext`` with the handle and the shared run
services, plus helpers for timing members and running transaction-rate
loops.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from device_conform.conform.classifier import MemberKind, Requiredness
from device_conform.conform.handling import ExceptionReporter
from device_conform.conform.polling import SYSTEM_CLOCK, CancelSignal, Clock, StatusSink
from device_conform.conform.results import VerdictRecorder
from device_conform.conform.timing import MemberTimer
from device_conform.drivers.types import DeviceCategory, DeviceHandle
from device_conform.observability import TargetTime, get_logger

if TYPE_CHECKING:
    from device_conform.config import ConformConfig

logger = get_logger(__name__)

__all__ = [
    "PERFORMANCE_GOOD_RATE",
    "CheckContext",
    "DeviceChecks",
]

#: Transactions per second above which a performance loop is OK.
PERFORMANCE_GOOD_RATE = 10.0

# Seconds between status updates inside a performance loop.
_PERFORMANCE_STATUS_INTERVAL_S = 1.0


@dataclass
class CheckContext:
    """Everything a check needs to talk to the device and report.

    Attributes:
        handle: Device under test.
        category: Device family.
        config: Run configuration.
        recorder: Verdict sink.
        reporter: Exception classification helpers.
        timer: Response-time measurement.
        cancel: External cancellation signal.
        clock: Time source.
        status: Optional live status sink.
    """

    handle: DeviceHandle
    category: DeviceCategory
    config: ConformConfig
    recorder: VerdictRecorder
    reporter: ExceptionReporter
    timer: MemberTimer
    cancel: CancelSignal
    clock: Clock = SYSTEM_CLOCK
    status: StatusSink | None = None


class DeviceChecks:
    """Family-specific steps of a conformance run.

    Every step is a no-op here. Subclasses override the steps they
    implement and set the matching flag.
    """

    has_pre_connect_check = False
    has_can_properties = False
    has_pre_run_check = False
    has_properties = False
    has_methods = False
    has_performance_check = False
    has_post_run_check = False

    def __init__(self, context: CheckContext) -> None:
        self.context = context
        self.handle = context.handle
        self.recorder = context.recorder
        self.reporter = context.reporter
        self.config = context.config

    @property
    def cancelled(self) -> bool:
        """True once the run was asked to stop."""
        return self.context.cancel.is_set()

    # =========================================================================
    # Steps
    # =========================================================================

    def pre_connect_checks(self) -> None:
        """Checks made before the device is connected."""

    def read_can_properties(self) -> None:
        """Read the Can* capability flags."""

    def pre_run_check(self) -> None:
        """Bring the device into a known state before testing."""

    def check_properties(self) -> None:
        """Family-specific property checks."""

    def check_methods(self) -> None:
        """Family-specific method checks."""

    def check_performance(self) -> None:
        """Transaction-rate loops."""

    def post_run_check(self) -> None:
        """Restore the device after testing."""

    def check_configuration(self) -> None:
        """Raise configuration alerts for test groups that were skipped."""
        if not self.config.test_properties:
            self.recorder.configuration_alert(
                "Property tests were omitted due to Conform configuration."
            )
        if not self.config.test_methods:
            self.recorder.configuration_alert(
                "Method tests were omitted due to Conform configuration."
            )
        if self.has_performance_check and not self.config.test_performance:
            self.recorder.configuration_alert(
                "Performance tests were omitted due to Conform configuration."
            )

    # =========================================================================
    # Helpers
    # =========================================================================

    def log_call(self, test: str, message: str) -> None:
        """Note a device call, visible when method-call display is enabled."""
        if self.config.display_method_calls:
            logger.info(message, test=test)
        else:
            logger.debug(message, test=test)

    def time_member(
        self, member: str, fn: Callable[[], Any], target: TargetTime = TargetTime.FAST
    ) -> Any:
        """Call ``fn`` and report its response time under ``member``."""
        return self.context.timer.call(member, fn, target)

    def read(self, member: str, target: TargetTime = TargetTime.FAST) -> Any:
        """Timed read of a category-specific property."""
        self.log_call(member, f"About to get {member} property")
        return self.time_member(member, lambda: self.handle.read(member), target)

    def handle_exception(
        self,
        member: str,
        kind: MemberKind,
        requiredness: Requiredness,
        exc: BaseException,
        user_message: str = "",
    ) -> None:
        """Shortcut for ``reporter.handle_exception``."""
        self.reporter.handle_exception(member, kind, requiredness, exc, user_message)

    def set_status(self, action: str, text: str) -> None:
        if self.context.status is not None:
            self.context.status(action, text)

    def performance_test(self, member: str, fn: Callable[[], Any]) -> float | None:
        """Call ``fn`` repeatedly for the configured loop time.

        Reports the transaction rate as OK above ``PERFORMANCE_GOOD_RATE``
        per second and as INFO otherwise. A device error ends the loop with
        an INFO verdict, because slow or failing reads were already
        reported by the property checks.

        Returns:
            Transactions per second, or None when cancelled or failed.
        """
        clock = self.context.clock
        loop_s = self.config.performance_loop_s
        start = clock.monotonic()
        count = 0
        last_status = 0.0
        try:
            while True:
                fn()
                count += 1
                elapsed = clock.monotonic() - start
                if elapsed > last_status + _PERFORMANCE_STATUS_INTERVAL_S:
                    self.set_status(member, f"{count} transactions in {elapsed:.0f} seconds")
                    last_status = elapsed
                    if self.cancelled:
                        return None
                if elapsed > loop_s:
                    break
        except Exception as exc:
            self.recorder.info(member, f"Unable to complete test: {exc}")
            return None

        rate = count / elapsed
        message = f"Transaction rate: {rate:.1f} per second"
        if rate > PERFORMANCE_GOOD_RATE:
            self.recorder.ok(member, message)
        else:
            self.recorder.info(member, message)
        return rate
