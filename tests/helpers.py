"""Test helper functions for device-conform.

Provides protocol compliance assertions, driver factories importable by
``module:factory`` path, and result lookups used across test modules.

Example:
    from tests.helpers import assert_implements_protocol
    from device_conform.drivers.types import DeviceHandle

    def test_twin_implements_protocol():
        assert_implements_protocol(DigitalTwinDevice(), DeviceHandle)
"""

from __future__ import annotations

from typing import Any

from device_conform.conform.results import ResultSet
from device_conform.drivers.twin import DigitalTwinDevice, TwinConfig
from device_conform.drivers.types import DeviceCategory


class FakeClock:
    """Deterministic clock for tests.

    ``sleep()`` advances time by the requested amount. Every
    ``monotonic()`` call also advances by ``tick`` seconds so loops that
    only read the clock (performance loops) still terminate.

    Attributes:
        now: Current time in seconds.
        tick: Auto-advance per ``monotonic()`` call.
        sleeps: Every duration passed to ``sleep()``.
    """

    def __init__(self, start: float = 1000.0, tick: float = 0.001) -> None:
        self.now = start
        self.tick = tick
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        self.now += self.tick
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if seconds > 0:
            self.now += seconds

    def advance(self, seconds: float) -> None:
        """Move time forward without recording a sleep."""
        self.now += seconds


def assert_implements_protocol(instance: object, protocol: type[Any]) -> None:
    """Assert that an instance implements a runtime-checkable Protocol.

    Args:
        instance: Object to check for protocol compliance.
        protocol: Protocol class decorated with @runtime_checkable.

    Raises:
        AssertionError: If the instance does not implement the protocol,
            listing the members it lacks.
        TypeError: If the protocol is not @runtime_checkable.
    """
    if isinstance(instance, protocol):
        return
    object_attrs = set(dir(object))
    expected = {
        attr for attr in set(dir(protocol)) - object_attrs if not attr.startswith("_")
    }
    missing = sorted(attr for attr in expected if not hasattr(type(instance), attr))
    raise AssertionError(
        f"{type(instance).__name__} does not implement {protocol.__name__}. "
        f"Missing: {', '.join(missing) or 'unknown'}"
    )


def make_twin(category: DeviceCategory) -> DigitalTwinDevice:
    """Native driver factory, loadable as ``tests.helpers:make_twin``."""
    return DigitalTwinDevice(TwinConfig(category=category))


def not_a_device(category: DeviceCategory) -> object:
    """Factory returning an object that is not a device handle."""
    return object()


NOT_CALLABLE = "not a factory"


def messages(results: ResultSet, test: str, kind: str = "issues") -> list[str]:
    """Messages recorded under ``test`` in one of the ResultSet lists.

    Args:
        results: Run results.
        test: Test name to filter on.
        kind: "issues", "errors", "configuration_alerts" or "timings".

    Returns:
        Messages in detection order.
    """
    return [f.message for f in getattr(results, kind) if f.test == test]
