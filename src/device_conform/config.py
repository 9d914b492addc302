"""Run configuration.

``ConformConfig`` carries every setting of a conformance run: how the
device is reached, which test groups run, time limits and timing report
switches. Defaults match a typical Alpaca run; CLI flags override them.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from device_conform.conform.classifier import ErrorCodes
from device_conform.conform.connection import RunTimeouts
from device_conform.conform.polling import DEFAULT_POLL_INTERVAL_MS, MIN_POLL_INTERVAL_MS
from device_conform.drivers.exceptions import ConfigurationError
from device_conform.drivers.types import DeviceCategory, Technology

__all__ = [
    "DEFAULT_ALPACA_PORT",
    "ConformConfig",
]

# =============================================================================
# Constants
# =============================================================================

#: Default Alpaca server port.
DEFAULT_ALPACA_PORT = 11111

#: Default time for an HTTP connection to be established.
DEFAULT_CONNECTION_TIMEOUT_S = 2.0

#: Default time for an HTTP response.
DEFAULT_RESPONSE_TIMEOUT_S = 10.0


@dataclass
class ConformConfig:
    """Settings of one conformance run.

    Attributes:
        category: Device family under test. Required.
        technology: How the device is reached.
        alpaca_address: Host of the Alpaca server.
        alpaca_port: Port of the Alpaca server.
        device_number: Alpaca device number.
        driver_path: ``module:factory`` import path for native drivers.
        connection_timeout_s: HTTP connection establishment limit.
        response_timeout_s: HTTP response limit.
        connect_disconnect_timeout_s: Limit for Connect()/Disconnect().
        operation_initiation_max_s: Limit for an asynchronous call to return.
        poll_interval_ms: Busy-flag poll interval, at least 100.
        test_properties: Run the common-member and property checks.
        test_methods: Run the method checks.
        test_performance: Run the transaction-rate loops.
        display_method_calls: Log each device call at INFO.
        report_good_timings: Add in-target timing lines to the report.
        report_bad_timings: Add out-of-target timing lines to the report.
        performance_loop_s: Duration of each transaction-rate loop.
        focuser_timeout_s: Limit for a focuser move to finish.
        focuser_move_tolerance: Steps a focuser may miss its target by.
        error_codes: Native error numbers per semantic family.
    """

    category: DeviceCategory | None = None
    technology: Technology = Technology.ALPACA

    # Device location
    alpaca_address: str = "127.0.0.1"
    alpaca_port: int = DEFAULT_ALPACA_PORT
    device_number: int = 0
    driver_path: str = ""

    # Time limits
    connection_timeout_s: float = DEFAULT_CONNECTION_TIMEOUT_S
    response_timeout_s: float = DEFAULT_RESPONSE_TIMEOUT_S
    connect_disconnect_timeout_s: float = 5.0
    operation_initiation_max_s: float = 1.0
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS

    # Test selection
    test_properties: bool = True
    test_methods: bool = True
    test_performance: bool = True

    # Reporting
    display_method_calls: bool = False
    report_good_timings: bool = False
    report_bad_timings: bool = False

    # Device-specific
    performance_loop_s: float = 5.0
    focuser_timeout_s: float = 60.0
    focuser_move_tolerance: int = 2

    error_codes: ErrorCodes = field(default_factory=ErrorCodes)

    @property
    def timeouts(self) -> RunTimeouts:
        """Connection time limits as a RunTimeouts value."""
        return RunTimeouts(
            connect_disconnect_s=self.connect_disconnect_timeout_s,
            operation_initiation_max_s=self.operation_initiation_max_s,
            poll_interval_ms=self.poll_interval_ms,
        )

    @property
    def device_label(self) -> str:
        """Human-readable device location used in logs."""
        category = self.category.value if self.category else "Unknown"
        if self.technology is Technology.ALPACA:
            return (
                f"{category} {self.device_number} at "
                f"{self.alpaca_address}:{self.alpaca_port}"
            )
        return f"{category} {self.driver_path or 'in-process'}"

    def validate(self) -> None:
        """Check the configuration before a run starts.

        Raises:
            ConfigurationError: On the first invalid setting found.
        """
        if self.category is None:
            raise ConfigurationError("No device type has been selected")
        if self.technology is Technology.ALPACA:
            if not self.alpaca_address:
                raise ConfigurationError("An Alpaca device requires an address")
            if not 0 < self.alpaca_port < 65536:
                raise ConfigurationError(f"Invalid Alpaca port: {self.alpaca_port}")
            if self.device_number < 0:
                raise ConfigurationError(
                    f"Invalid Alpaca device number: {self.device_number}"
                )
        for name in (
            "connection_timeout_s",
            "response_timeout_s",
            "connect_disconnect_timeout_s",
            "operation_initiation_max_s",
            "performance_loop_s",
            "focuser_timeout_s",
        ):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be greater than zero")
        if self.poll_interval_ms < MIN_POLL_INTERVAL_MS:
            raise ConfigurationError(
                f"poll_interval_ms must be at least {MIN_POLL_INTERVAL_MS}, "
                f"got {self.poll_interval_ms}"
            )
        if self.focuser_move_tolerance < 0:
            raise ConfigurationError("focuser_move_tolerance cannot be negative")
