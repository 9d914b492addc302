"""Device and harness exception families.

Two hierarchies live here:

* Device-side errors, raised by a device handle when a member fails.
  They mirror the ASCOM exception contract: each carries the numeric
  error code the contract assigns to it, and ``NativeError`` wraps a
  bare numeric code from an in-process driver that does not use the
  typed classes.
* Harness errors, raised by device-conform itself. Only
  ``ConfigurationError`` and ``DeviceCreationError`` are fatal to a run;
  the rest are recovered into verdicts.

Example:
    from device_conform.drivers.exceptions import (
        PropertyNotImplementedError,
    )

    raise PropertyNotImplementedError("StepSize is not available")
"""

from __future__ import annotations

__all__ = [
    # Error numbers
    "NOT_IMPLEMENTED",
    "INVALID_VALUE",
    "VALUE_NOT_SET",
    "NOT_CONNECTED",
    "INVALID_WHILE_PARKED",
    "INVALID_WHILE_SLAVED",
    "INVALID_OPERATION",
    "ACTION_NOT_IMPLEMENTED",
    "OPERATION_CANCELLED",
    "DRIVER_BASE",
    # Device errors
    "DriverError",
    "NotImplementedMemberError",
    "PropertyNotImplementedError",
    "MethodNotImplementedError",
    "ActionNotImplementedError",
    "InvalidValueError",
    "ValueNotSetError",
    "NotConnectedError",
    "ParkedError",
    "SlavedError",
    "InvalidOperationError",
    "OperationCancelledError",
    "NativeError",
    # Harness errors
    "ConformError",
    "ConfigurationError",
    "DeviceCreationError",
    "OperationTimeoutError",
    "PostconditionError",
    "MissingMemberError",
]

# =============================================================================
# Error numbers (native HRESULT form)
# =============================================================================

NOT_IMPLEMENTED = 0x80040400
INVALID_VALUE = 0x80040401
VALUE_NOT_SET = 0x80040402
NOT_CONNECTED = 0x80040407
INVALID_WHILE_PARKED = 0x80040408
INVALID_WHILE_SLAVED = 0x80040409
INVALID_OPERATION = 0x8004040B
ACTION_NOT_IMPLEMENTED = 0x8004040C
OPERATION_CANCELLED = 0x8004040E

#: First number of the driver-specific range.
DRIVER_BASE = 0x80040500


# =============================================================================
# Device errors
# =============================================================================


class DriverError(Exception):
    """Base class for errors raised by a device.

    Attributes:
        number: Numeric error code in native form.
    """

    default_number: int = DRIVER_BASE

    def __init__(self, message: str = "", number: int | None = None) -> None:
        """Create the error.

        Args:
            message: Human-readable description from the device.
            number: Error number. Defaults to the class's contract number.
        """
        super().__init__(message)
        self.number = self.default_number if number is None else number


class NotImplementedMemberError(DriverError):
    """A member is not implemented (generic form, kind unspecified)."""

    default_number = NOT_IMPLEMENTED


class PropertyNotImplementedError(NotImplementedMemberError):
    """A property is not implemented."""


class MethodNotImplementedError(NotImplementedMemberError):
    """A method is not implemented."""


class ActionNotImplementedError(DriverError):
    """Action() was given a name that is not supported."""

    default_number = ACTION_NOT_IMPLEMENTED


class InvalidValueError(DriverError):
    """A supplied value is out of range or of the wrong form."""

    default_number = INVALID_VALUE


class ValueNotSetError(DriverError):
    """A value was read before it was ever set."""

    default_number = VALUE_NOT_SET


class NotConnectedError(DriverError):
    """The device is not connected."""

    default_number = NOT_CONNECTED


class ParkedError(DriverError):
    """The operation is invalid while parked."""

    default_number = INVALID_WHILE_PARKED


class SlavedError(DriverError):
    """The operation is invalid while slaved."""

    default_number = INVALID_WHILE_SLAVED


class InvalidOperationError(DriverError):
    """The operation is invalid in the current device state."""

    default_number = INVALID_OPERATION


class OperationCancelledError(DriverError):
    """An in-progress operation was cancelled."""

    default_number = OPERATION_CANCELLED


class NativeError(Exception):
    """Generic wrapper carrying a native numeric error code.

    Raised by in-process drivers that signal failure through a numeric
    code rather than a typed exception. The classifier treats a matching
    code as equivalent to the typed form.

    Attributes:
        code: The native error code.
    """

    def __init__(self, code: int, message: str = "") -> None:
        """Create the wrapper.

        Args:
            code: Native error code (e.g. 0x80040400).
            message: Optional description.
        """
        super().__init__(message or f"Native error 0x{code:08X}")
        self.code = code


# =============================================================================
# Harness errors
# =============================================================================


class ConformError(Exception):
    """Base exception for device-conform harness failures."""


class ConfigurationError(ConformError):
    """Run configuration is invalid. Fatal: the run does not start."""


class DeviceCreationError(ConformError):
    """The device handle could not be created. Fatal: no report."""


class OperationTimeoutError(ConformError):
    """An asynchronous operation did not complete within its timeout."""

    def __init__(self, action: str, timeout_s: float) -> None:
        """Create the error with the standard message.

        Args:
            action: Name of the operation being waited for.
            timeout_s: Contractual timeout in seconds.
        """
        super().__init__(
            f'The "{action}" operation exceeded its {timeout_s:g} second timeout.'
        )
        self.action = action
        self.timeout_s = timeout_s


class PostconditionError(ConformError):
    """A call succeeded but the state readback disagrees."""


class MissingMemberError(ConformError):
    """A member required by the advertised interface is absent."""
