"""Connection lifecycle of the device under test.

Devices whose interface version carries the asynchronous protocol are
connected with Connect() and watched through Connecting. Before that the
legacy Connected toggle is exercised once, because every device must
still honour it. Older devices are driven through Connected only.

The machine allows one transition in flight. A request that arrives
while a transition is running, or while the device itself reports
Connecting, is rejected with an INFO verdict and never reaches the
device.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from device_conform.conform.polling import (
    DEFAULT_POLL_INTERVAL_MS,
    SYSTEM_CLOCK,
    CancelSignal,
    Clock,
    StatusSink,
    raise_if_timed_out,
    wait_for,
    wait_while,
)
from device_conform.conform.results import VerdictRecorder
from device_conform.conform.timing import MemberTimer
from device_conform.drivers.capabilities import supports_async_protocol
from device_conform.drivers.exceptions import MissingMemberError, PostconditionError
from device_conform.drivers.types import DeviceCategory, DeviceHandle
from device_conform.observability import TargetTime, get_logger

logger = get_logger(__name__)

__all__ = [
    "IN_PROGRESS_MESSAGE",
    "ConnectionState",
    "RunTimeouts",
    "ConnectionStateMachine",
    "time_method",
]

#: INFO text for a request made while a transition is running.
IN_PROGRESS_MESSAGE = (
    "Ignoring this request because a Connect() or Disconnect() operation is "
    "already in progress."
)

#: Pause between the legacy Connected = True and Connected = False toggles.
TOGGLE_SETTLE_MS = 500


class ConnectionState(Enum):
    """Connection state tracked by the harness."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


@dataclass(frozen=True)
class RunTimeouts:
    """Time limits of a run.

    Attributes:
        connect_disconnect_s: Limit for Connect()/Disconnect() to finish.
        operation_initiation_max_s: Limit for an asynchronous call to return.
        poll_interval_ms: Busy-flag poll interval.
    """

    connect_disconnect_s: float = 5.0
    operation_initiation_max_s: float = 1.0
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS


def time_method(
    name: str,
    fn: Callable[[], object],
    recorder: VerdictRecorder,
    clock: Clock = SYSTEM_CLOCK,
    ceiling_s: float = 1.0,
    timer: MemberTimer | None = None,
) -> float:
    """Call an asynchronous initiator and check that it returned promptly.

    Args:
        name: Member name the finding is reported under.
        fn: The initiating call, e.g. ``handle.connect``.
        recorder: Verdict sink.
        clock: Time source.
        ceiling_s: Longest acceptable initiation time.
        timer: Optional timer that also reports a STANDARD timing line.

    Returns:
        Initiation time in seconds.

    Raises:
        Exception: Whatever ``fn`` raises propagates unchanged.
    """
    start = clock.monotonic()
    fn()
    elapsed = clock.monotonic() - start
    if timer is not None:
        timer.report(name, elapsed, TargetTime.STANDARD)
    if elapsed > ceiling_s:
        recorder.issue(
            name,
            f"Operation initiation took {elapsed:.1f} seconds, which is more than "
            f"the configured maximum: {ceiling_s:.1f} seconds.",
        )
    return elapsed


class ConnectionStateMachine:
    """Drives Connect/Disconnect for one handle and records the verdicts.

    Usage:
        machine = ConnectionStateMachine(handle, DeviceCategory.FOCUSER,
                                         recorder, cancel)
        if machine.connect():
            ...
            machine.disconnect()
    """

    def __init__(
        self,
        handle: DeviceHandle,
        category: DeviceCategory,
        recorder: VerdictRecorder,
        cancel: CancelSignal,
        timeouts: RunTimeouts | None = None,
        clock: Clock = SYSTEM_CLOCK,
        status: StatusSink | None = None,
        timer: MemberTimer | None = None,
    ) -> None:
        self.handle = handle
        self.category = category
        self.recorder = recorder
        self.cancel = cancel
        self.timeouts = timeouts or RunTimeouts()
        self.clock = clock
        self.status = status
        self.timer = timer
        self._state = ConnectionState.IDLE
        self._lock = threading.Lock()
        self._async_protocol: bool | None = None

    @property
    def state(self) -> ConnectionState:
        """Current harness-side connection state."""
        return self._state

    @property
    def uses_async_protocol(self) -> bool:
        """True when the device's interface version has Connect()/Connecting."""
        if self._async_protocol is None:
            self._async_protocol = supports_async_protocol(
                self.category, self.handle.interface_version
            )
        return self._async_protocol

    # =========================================================================
    # Transitions
    # =========================================================================

    def connect(self) -> bool:
        """Connect the device.

        Returns:
            True when connected. False when the request was rejected as
            concurrent or the run was cancelled part way.

        Raises:
            MissingMemberError: The device advertises the asynchronous
                protocol but has no Connecting member.
            OperationTimeoutError: Connecting stayed True past the limit.
            PostconditionError: A Connected readback disagreed.
            Exception: Device errors propagate for the caller to record.
        """
        return self._transition(
            "Connect", ConnectionState.CONNECTING, ConnectionState.CONNECTED, self._do_connect
        )

    def disconnect(self) -> bool:
        """Disconnect the device. Same contract as ``connect()``."""
        return self._transition(
            "Disconnect", ConnectionState.DISCONNECTING, ConnectionState.IDLE, self._do_disconnect
        )

    def _transition(
        self,
        test: str,
        busy: ConnectionState,
        done: ConnectionState,
        work: Callable[[], bool],
    ) -> bool:
        if not self._lock.acquire(blocking=False):
            self.recorder.info(test, IN_PROGRESS_MESSAGE)
            return False
        previous = self._state
        try:
            self._state = busy
            logger.debug("Connection transition", test=test, state=busy.value)
            if not work():
                self._state = previous
                return False
            self._state = done
            return True
        except Exception:
            self._state = previous
            raise
        finally:
            self._lock.release()

    def _read_connecting(self) -> bool:
        try:
            return bool(self.handle.connecting)
        except AttributeError as exc:
            raise MissingMemberError(
                "The Connecting property is not present in the device interface."
            ) from exc

    def _do_connect(self) -> bool:
        if self.uses_async_protocol:
            if self._read_connecting():
                self.recorder.info("Connect", IN_PROGRESS_MESSAGE)
                return False
            if not self._verify_connected_toggle():
                return False
            time_method(
                "Connect",
                self.handle.connect,
                self.recorder,
                self.clock,
                self.timeouts.operation_initiation_max_s,
                self.timer,
            )
            if not self._wait_until_idle("Connecting to device"):
                return False
        else:
            self.handle.connected = True

        if not self.handle.connected:
            raise PostconditionError(
                "The device connected without error but Connected Get returned False."
            )
        if self.uses_async_protocol:
            self.recorder.ok("Connect", "Connected to device successfully using Connect()")
        else:
            self.recorder.ok("Connected", "Connected to device successfully using Connected = True")
        return True

    def _do_disconnect(self) -> bool:
        if self.uses_async_protocol:
            if self._read_connecting():
                self.recorder.info("Disconnect", IN_PROGRESS_MESSAGE)
                return False
            time_method(
                "Disconnect",
                self.handle.disconnect,
                self.recorder,
                self.clock,
                self.timeouts.operation_initiation_max_s,
                self.timer,
            )
            if not self._wait_until_idle("Disconnecting from device"):
                return False
        else:
            self.handle.connected = False

        if self.handle.connected:
            raise PostconditionError(
                "The device disconnected without error but Connected Get returned True."
            )
        if self.uses_async_protocol:
            self.recorder.ok(
                "Disconnect", "Disconnected from device successfully using Disconnect()"
            )
        else:
            self.recorder.ok("Connected", "False")
        return True

    def _verify_connected_toggle(self) -> bool:
        """Round-trip Connected = True / False. False when cancelled."""
        self.handle.connected = True
        if not self.handle.connected:
            raise PostconditionError(
                "Set Connected True - The device connected without error but "
                "Connected Get returned False."
            )
        self.recorder.ok("Connected", "Connected to device successfully using Connected = True")

        settle = wait_for(
            TOGGLE_SETTLE_MS,
            self.cancel,
            update_interval_ms=100,
            status=self.status,
            clock=self.clock,
            action="Waiting for the device to settle",
        )

        self.handle.connected = False
        if self.handle.connected:
            raise PostconditionError(
                "Set Connected False - The device disconnected without error but "
                "Connected Get returned True."
            )
        self.recorder.ok(
            "Connected", "Disconnected from device successfully using Connected = False"
        )
        return not settle.cancelled and not self.cancel.is_set()

    def _wait_until_idle(self, action: str) -> bool:
        result = wait_while(
            action,
            self._read_connecting,
            self.timeouts.poll_interval_ms,
            self.timeouts.connect_disconnect_s,
            self.cancel,
            status=self.status,
            clock=self.clock,
        )
        if result.cancelled:
            return False
        raise_if_timed_out(action, self.timeouts.connect_disconnect_s, result)
        return True
