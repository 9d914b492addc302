"""Device handle type definitions and protocols.

This module holds the enums, data classes and the capability protocol
every device handle implements. Keeping them apart from the
implementations lets the conformance core depend on the interface only,
never on a concrete transport.

Types defined here:
- DeviceCategory: Enum of the supported device families
- Technology: How the handle reaches the device
- StateValue: One entry of a DeviceState snapshot
- DeviceHandle: Protocol for device handle implementations

Example:
    from device_conform.drivers.types import DeviceCategory, DeviceHandle

    def describe(handle: DeviceHandle) -> str:
        return f"{handle.name} (interface {handle.interface_version})"
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable


class DeviceCategory(Enum):
    """Supported device families."""

    CAMERA = "Camera"
    COVER_CALIBRATOR = "CoverCalibrator"
    DOME = "Dome"
    FILTER_WHEEL = "FilterWheel"
    FOCUSER = "Focuser"
    OBSERVING_CONDITIONS = "ObservingConditions"
    ROTATOR = "Rotator"
    SAFETY_MONITOR = "SafetyMonitor"
    SWITCH = "Switch"
    TELESCOPE = "Telescope"
    VIDEO = "Video"

    @property
    def alpaca_name(self) -> str:
        """Lower-case device type used in Alpaca URLs."""
        return self.value.lower()

    @classmethod
    def parse(cls, text: str) -> DeviceCategory:
        """Look up a category by name, ignoring case.

        Accepts the display value ("SafetyMonitor"), the Alpaca form
        ("safetymonitor") or the enum name ("SAFETY_MONITOR").

        Raises:
            ValueError: If ``text`` names no category.

        Example:
            >>> DeviceCategory.parse("focuser")
            <DeviceCategory.FOCUSER: 'Focuser'>
        """
        wanted = text.replace("_", "").replace("-", "").lower()
        for category in cls:
            if category.alpaca_name == wanted:
                return category
        raise ValueError(f"Unknown device category: {text}")


class Technology(Enum):
    """How a device handle reaches the device.

    ALPACA devices are reached over HTTP. NATIVE handles are in-process
    objects supplied by a driver module. DRIVER_ACCESS handles are
    in-process objects wrapped by a client library that reports every
    unimplemented member with the generic not-implemented error.
    """

    ALPACA = "alpaca"
    NATIVE = "native"
    DRIVER_ACCESS = "driver_access"


@dataclass(frozen=True)
class StateValue:
    """One named value from a DeviceState snapshot."""

    name: str
    value: Any


@runtime_checkable
class DeviceHandle(Protocol):  # pragma: no cover
    """Capability interface of a device under test.

    Property names follow the device contract (``interface_version`` for
    InterfaceVersion, ``supported_actions`` for SupportedActions). Members
    a device does not support raise the not-implemented error of their
    kind. ``read``, ``write`` and ``invoke`` reach category-specific members by
    their contract name ("MaxStep", "Move").
    """

    @property
    def connected(self) -> bool:
        """Legacy connection flag."""
        ...

    @connected.setter
    def connected(self, value: bool) -> None:
        """Connect (True) or disconnect (False) synchronously."""
        ...

    @property
    def connecting(self) -> bool:
        """True while an asynchronous Connect()/Disconnect() is in flight."""
        ...

    def connect(self) -> None:
        """Start an asynchronous connect. Must return promptly."""
        ...

    def disconnect(self) -> None:
        """Start an asynchronous disconnect. Must return promptly."""
        ...

    @property
    def interface_version(self) -> int:
        """Version of the category interface the device implements."""
        ...

    @property
    def description(self) -> str:
        """Device description."""
        ...

    @property
    def driver_info(self) -> str:
        """Driver information string."""
        ...

    @property
    def driver_version(self) -> str:
        """Driver version string."""
        ...

    @property
    def name(self) -> str:
        """Short device name."""
        ...

    @property
    def supported_actions(self) -> Sequence[Any]:
        """Names accepted by ``action()``."""
        ...

    @property
    def device_state(self) -> Sequence[StateValue]:
        """Operational state snapshot."""
        ...

    def action(self, action_name: str, parameters: str = "") -> str:
        """Invoke a device-specific action."""
        ...

    def read(self, member: str) -> Any:
        """Read a category-specific property by contract name."""
        ...

    def write(self, member: str, value: Any) -> None:
        """Set a category-specific property by contract name."""
        ...

    def invoke(self, member: str, **params: Any) -> Any:
        """Call a category-specific method by contract name."""
        ...

    def close(self) -> None:
        """Release transport resources. Called once during teardown."""
        ...
