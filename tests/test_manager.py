"""Tests for the run manager."""

from __future__ import annotations

import io

import pytest

from device_conform.conform.manager import ConformanceRunner
from device_conform.config import ConformConfig
from device_conform.drivers.exceptions import ConfigurationError, DeviceCreationError
from device_conform.drivers.factory import twin_factory
from device_conform.drivers.twin import DigitalTwinDevice, TwinConfig
from device_conform.drivers.types import DeviceCategory
from device_conform.observability import configure_logging


class _TrackingTwin(DigitalTwinDevice):
    """Twin that remembers whether it was closed."""

    closed = False

    def close(self) -> None:
        self.closed = True


class _BrokenCloseTwin(DigitalTwinDevice):
    def close(self) -> None:
        raise OSError("socket already closed")


@pytest.fixture
def make_runner(make_config, clock):
    """Factory for runners over a native focuser configuration."""

    def _make(device_factory=None, category=DeviceCategory.FOCUSER, **overrides):
        return ConformanceRunner(
            make_config(category, **overrides),
            device_factory=device_factory or twin_factory(clock=clock),
            clock=clock,
        )

    return _make


class TestConformanceRunner:
    """Tests for ConformanceRunner."""

    def test_clean_run_is_sealed(self, make_runner):
        """Verifies a successful run returns a frozen, clean set.

        Arrangement:
        1. Runner over a default focuser twin.

        Action:
        Runs once.

        Assertion Strategy:
        - Counts are clean.
        - The set is sealed and rejects writes.
        """
        results = make_runner().run()

        assert results.counts().clean
        assert results.sealed
        with pytest.raises(RuntimeError):
            results.add_issue("Name", "late")

    def test_twin_follows_configured_category(self, make_runner):
        """One twin template serves whichever family is configured."""
        results = make_runner(category=DeviceCategory.SAFETY_MONITOR).run()

        assert results.worst("IsSafe") is not None

    def test_handle_is_closed(self, make_runner, clock):
        """The handle is closed after the run."""
        twins: list[_TrackingTwin] = []

        def factory(config: ConformConfig) -> _TrackingTwin:
            twins.append(_TrackingTwin(TwinConfig(), clock=clock))
            return twins[-1]

        make_runner(factory).run()

        assert twins[0].closed is True

    def test_invalid_configuration(self):
        """Configuration errors escape before any device is built."""
        calls: list[ConformConfig] = []
        runner = ConformanceRunner(ConformConfig(), device_factory=calls.append)

        with pytest.raises(ConfigurationError, match="No device type"):
            runner.run()
        assert calls == []

    def test_factory_errors_are_wrapped(self, make_runner):
        """Arbitrary factory failures become DeviceCreationError."""

        def factory(config: ConformConfig):
            raise ValueError("driver not registered")

        with pytest.raises(DeviceCreationError) as exc_info:
            make_runner(factory).run()

        assert str(exc_info.value) == (
            "Unable to create the Focuser in-process device: driver not registered"
        )
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_creation_errors_pass_through(self, make_runner):
        """DeviceCreationError from the factory is not wrapped again."""
        error = DeviceCreationError("no such driver")

        def factory(config: ConformConfig):
            raise error

        with pytest.raises(DeviceCreationError) as exc_info:
            make_runner(factory).run()

        assert exc_info.value is error

    def test_close_failure_is_logged(self, make_runner, clock):
        """A failed close is logged and the results are still returned."""
        buffer = io.StringIO()
        configure_logging(level="WARNING", stream=buffer, force=True)

        results = make_runner(lambda config: _BrokenCloseTwin(clock=clock)).run()

        assert results.sealed
        assert "Device handle close failed" in buffer.getvalue()
        assert "socket already closed" in buffer.getvalue()

    def test_stop_before_run(self, make_runner):
        """stop() makes the next run end immediately as cancelled."""
        runner = make_runner()
        runner.stop()

        results = runner.run()

        assert results.cancelled is True
        assert [f.test for f in results.issues] == ["StopKey"]

    def test_stats_accumulate_across_runs(self, make_runner):
        """Response times from every run land in the runner's statistics."""
        runner = make_runner()

        runner.run()
        runner.run()

        assert runner.stats.get_summary("Name").calls == 2
