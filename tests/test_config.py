"""Tests for the run configuration."""

from __future__ import annotations

import pytest

from device_conform.conform.classifier import ErrorCodes
from device_conform.conform.connection import RunTimeouts
from device_conform.conform.polling import DEFAULT_POLL_INTERVAL_MS
from device_conform.config import DEFAULT_ALPACA_PORT, ConformConfig
from device_conform.drivers.exceptions import ConfigurationError
from device_conform.drivers.types import DeviceCategory, Technology


class TestDefaults:
    """Default settings of ConformConfig."""

    def test_defaults(self):
        """Verifies the out-of-the-box run settings.

        Arrangement:
        1. ConformConfig() with no arguments.

        Action:
        Reads the settings.

        Assertion Strategy:
        - An Alpaca device on the local host and default port.
        - All test groups on, timing reports off.
        - Contract error codes.
        """
        config = ConformConfig()

        assert config.technology is Technology.ALPACA
        assert (config.alpaca_address, config.alpaca_port) == ("127.0.0.1", DEFAULT_ALPACA_PORT)
        assert config.test_properties and config.test_methods and config.test_performance
        assert not config.report_good_timings and not config.report_bad_timings
        assert config.poll_interval_ms == DEFAULT_POLL_INTERVAL_MS
        assert config.error_codes == ErrorCodes()

    def test_timeouts(self):
        """The timeouts property bundles the connection time limits."""
        config = ConformConfig(
            connect_disconnect_timeout_s=12.0,
            operation_initiation_max_s=2.0,
            poll_interval_ms=250,
        )

        assert config.timeouts == RunTimeouts(
            connect_disconnect_s=12.0, operation_initiation_max_s=2.0, poll_interval_ms=250
        )


class TestDeviceLabel:
    """Tests for ConformConfig.device_label."""

    def test_alpaca_label(self):
        """Alpaca devices are labelled by number and server."""
        config = ConformConfig(
            category=DeviceCategory.FOCUSER, alpaca_address="10.0.0.5", device_number=1
        )
        assert config.device_label == "Focuser 1 at 10.0.0.5:11111"

    def test_native_label(self):
        """Native devices are labelled by driver path."""
        config = ConformConfig(
            category=DeviceCategory.SWITCH,
            technology=Technology.NATIVE,
            driver_path="drivers.switch:create",
        )
        assert config.device_label == "Switch drivers.switch:create"

    def test_in_process_label(self):
        """Without a driver path the device is in-process."""
        config = ConformConfig(category=DeviceCategory.SWITCH, technology=Technology.NATIVE)
        assert config.device_label == "Switch in-process"

    def test_unknown_category(self):
        """A missing category still yields a label."""
        assert ConformConfig().device_label.startswith("Unknown 0")


class TestValidate:
    """Tests for ConformConfig.validate()."""

    def test_valid(self):
        """A configuration with a category passes."""
        ConformConfig(category=DeviceCategory.FOCUSER).validate()

    @pytest.mark.parametrize(
        ("overrides", "message"),
        [
            ({"category": None}, "No device type has been selected"),
            ({"alpaca_address": ""}, "requires an address"),
            ({"alpaca_port": 0}, "Invalid Alpaca port: 0"),
            ({"alpaca_port": 70000}, "Invalid Alpaca port: 70000"),
            ({"device_number": -1}, "Invalid Alpaca device number: -1"),
            ({"response_timeout_s": 0}, "response_timeout_s must be greater than zero"),
            ({"performance_loop_s": -1.0}, "performance_loop_s must be greater than zero"),
            ({"focuser_timeout_s": 0}, "focuser_timeout_s must be greater than zero"),
            ({"poll_interval_ms": 50}, "poll_interval_ms must be at least 100, got 50"),
            ({"focuser_move_tolerance": -1}, "focuser_move_tolerance cannot be negative"),
        ],
    )
    def test_invalid(self, overrides, message):
        """Each invalid setting is reported by name."""
        settings = {"category": DeviceCategory.FOCUSER, **overrides}

        with pytest.raises(ConfigurationError, match=message):
            ConformConfig(**settings).validate()

    def test_alpaca_fields_ignored_for_native(self):
        """Alpaca location settings only matter for Alpaca runs."""
        ConformConfig(
            category=DeviceCategory.FOCUSER,
            technology=Technology.NATIVE,
            alpaca_address="",
            alpaca_port=0,
        ).validate()
