"""SafetyMonitor checks.

A safety monitor has one member, IsSafe. It must report unsafe while
disconnected, because clients treat a disconnected monitor as a reason
to close up.
"""

from __future__ import annotations

from device_conform.checks.base import DeviceChecks
from device_conform.conform.classifier import MemberKind, Requiredness

__all__ = ["SafetyMonitorChecks"]


class SafetyMonitorChecks(DeviceChecks):
    """IsSafe before connection, IsSafe while connected and its read rate."""

    has_pre_connect_check = True
    has_properties = True
    has_performance_check = True

    def pre_connect_checks(self) -> None:
        try:
            self.log_call("IsSafe", "About to get IsSafe property")
            is_safe = self.handle.read("IsSafe")
        except Exception as exc:
            self.recorder.issue(
                "IsSafe",
                "Cannot confirm that IsSafe is false before connection because it "
                f"threw an exception: {exc}",
            )
            return
        if is_safe:
            self.recorder.issue("IsSafe", "Reports true before connection rather than false")
        else:
            self.recorder.ok("IsSafe", "Reports false before connection")

    def check_properties(self) -> None:
        try:
            is_safe = self.read("IsSafe")
            self.recorder.ok("IsSafe", str(bool(is_safe)))
        except Exception as exc:
            self.handle_exception("IsSafe", MemberKind.PROPERTY, Requiredness.MANDATORY, exc)

    def check_performance(self) -> None:
        self.performance_test("IsSafe", lambda: self.handle.read("IsSafe"))
