"""Pytest configuration and fixtures for device-conform tests.

Provides a fake clock so poll loops, connection settling and
performance loops run instantly, plus ready-made twins, recorders and
run configurations shared across test modules.
"""

from __future__ import annotations

import threading

import pytest

from device_conform.conform.classifier import ExceptionClassifier
from device_conform.conform.handling import ExceptionReporter
from device_conform.conform.results import VerdictRecorder
from device_conform.config import ConformConfig
from device_conform.drivers.twin import DigitalTwinDevice, TwinConfig
from device_conform.drivers.types import DeviceCategory, Technology
from device_conform.observability import reset_logging
from tests.helpers import FakeClock


@pytest.fixture(autouse=True)
def _reset_logging():
    """Leave the logging system unconfigured after every test.

    CLI tests call ``configure_logging(force=True)`` and attach a
    transcript handler; resetting keeps handlers from leaking between
    tests.
    """
    yield
    reset_logging()


@pytest.fixture
def clock() -> FakeClock:
    """Fresh fake clock.

    Returns:
        FakeClock starting at t=1000 s with a 1 ms tick.
    """
    return FakeClock()


@pytest.fixture
def frozen_clock() -> FakeClock:
    """Fake clock that only moves on ``sleep()``/``advance()``."""
    return FakeClock(tick=0.0)


@pytest.fixture
def cancel() -> threading.Event:
    """Unset cancellation signal."""
    return threading.Event()


@pytest.fixture
def recorder() -> VerdictRecorder:
    """Recorder writing into a fresh ResultSet."""
    return VerdictRecorder()


@pytest.fixture
def reporter(recorder: VerdictRecorder) -> ExceptionReporter:
    """Reporter for native handles, writing to ``recorder``."""
    return ExceptionReporter(ExceptionClassifier(technology=Technology.NATIVE), recorder)


@pytest.fixture
def focuser_config() -> ConformConfig:
    """Native focuser run configuration with short performance loops."""
    return ConformConfig(
        category=DeviceCategory.FOCUSER,
        technology=Technology.NATIVE,
        performance_loop_s=0.05,
    )


@pytest.fixture
def make_config():
    """Factory for native run configurations.

    Returns:
        Callable(category, **overrides) -> ConformConfig.

    Example:
        >>> config = make_config(DeviceCategory.SWITCH, test_methods=False)
    """

    def _make(category: DeviceCategory, **overrides) -> ConformConfig:
        settings = {
            "category": category,
            "technology": Technology.NATIVE,
            "performance_loop_s": 0.05,
        }
        settings.update(overrides)
        return ConformConfig(**settings)

    return _make


@pytest.fixture
def make_twin(clock: FakeClock):
    """Factory for digital twins bound to the fake clock.

    Returns:
        Callable(category=FOCUSER, **twin_config_fields) -> DigitalTwinDevice.

    Example:
        >>> twin = make_twin(DeviceCategory.SAFETY_MONITOR, safe_when_disconnected=True)
    """

    def _make(
        category: DeviceCategory = DeviceCategory.FOCUSER, **fields
    ) -> DigitalTwinDevice:
        return DigitalTwinDevice(TwinConfig(category=category, **fields), clock=clock)

    return _make


@pytest.fixture
def focuser_twin(make_twin) -> DigitalTwinDevice:
    """Default absolute focuser twin (interface version 4)."""
    return make_twin(DeviceCategory.FOCUSER)
