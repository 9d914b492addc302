"""Checks for device families without a dedicated check class.

Reads every property in the family's field table, Can* capability flags
first. Methods are not called: without knowledge of the family there is
no safe way to drive hardware.
"""

from __future__ import annotations

from device_conform.checks.base import DeviceChecks
from device_conform.conform.classifier import MemberKind, Requiredness
from device_conform.drivers.capabilities import table_for

__all__ = ["GenericChecks"]


class GenericChecks(DeviceChecks):
    """Read-only sweep of the category's properties."""

    has_can_properties = True
    has_properties = True

    def _property_names(self) -> list[str]:
        return sorted(table_for(self.context.category).properties)

    def read_can_properties(self) -> None:
        for member in self._property_names():
            if not member.startswith("Can"):
                continue
            self._read_optional(member)
            if self.cancelled:
                return

    def check_properties(self) -> None:
        for member in self._property_names():
            if member.startswith("Can"):
                continue
            self._read_optional(member)
            if self.cancelled:
                return

    def _read_optional(self, member: str) -> None:
        try:
            value = self.read(member)
            self.recorder.ok(member, str(value))
        except Exception as exc:
            self.handle_exception(member, MemberKind.PROPERTY, Requiredness.OPTIONAL, exc)
