"""Bounded, cancellable waiting for asynchronous device operations.

``wait_while`` polls a condition until it clears, the timeout passes or
the run is cancelled. Wake points fall on multiples of the poll interval
measured from loop start, so scheduler delays do not accumulate into
drift. A grace period of two poll intervals is added to the deadline to
absorb jitter; it never extends the contractual timeout reported to the
user.

The loop never raises for timeout or cancellation. It returns a
``PollResult`` and the caller decides whether to escalate, usually via
``raise_if_timed_out``.

Example:
    cancel = threading.Event()
    result = wait_while(
        "Connecting to device",
        lambda: handle.connecting,
        poll_interval_ms=500,
        timeout_s=5.0,
        cancel=cancel,
    )
    raise_if_timed_out("Connecting to device", 5.0, result)
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from device_conform.drivers.exceptions import OperationTimeoutError
from device_conform.observability import get_logger

logger = get_logger(__name__)

__all__ = [
    "MIN_POLL_INTERVAL_MS",
    "DEFAULT_POLL_INTERVAL_MS",
    "GRACE_POLL_INTERVALS",
    "Clock",
    "SystemClock",
    "SYSTEM_CLOCK",
    "CancelSignal",
    "StatusSink",
    "PollResult",
    "wait_while",
    "wait_for",
    "raise_if_timed_out",
]

# =============================================================================
# Constants
# =============================================================================

#: Smallest poll interval accepted by wait_while().
MIN_POLL_INTERVAL_MS = 100

#: Poll interval used for connection and operation waits.
DEFAULT_POLL_INTERVAL_MS = 500

#: Poll intervals added to the deadline before a timeout is declared.
GRACE_POLL_INTERVALS = 2

# Wake-point rounding, so a wake that lands a few ms early still counts.
_ROUNDING_MS = 50


class Clock(Protocol):  # pragma: no cover
    """Protocol for time functions (injectable for testing).

    Example:
        class FakeClock:
            def __init__(self):
                self.now = 0.0

            def monotonic(self) -> float:
                return self.now

            def sleep(self, seconds: float) -> None:
                self.now += seconds
    """

    def monotonic(self) -> float:
        """Return monotonic time in seconds."""
        ...

    def sleep(self, seconds: float) -> None:
        """Suspend for ``seconds`` without busy-waiting."""
        ...


class SystemClock:
    """Clock backed by the ``time`` module."""

    def monotonic(self) -> float:
        """Return ``time.monotonic()``."""
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        """Sleep; zero or negative durations return immediately."""
        if seconds > 0:
            time.sleep(seconds)


#: Shared default clock.
SYSTEM_CLOCK = SystemClock()


class CancelSignal(Protocol):  # pragma: no cover
    """Cooperative cancellation flag. ``threading.Event`` satisfies it."""

    def is_set(self) -> bool:
        """True once cancellation was requested."""
        ...


#: Receives (action, status_text) after each wake.
StatusSink = Callable[[str, str], None]


@dataclass(frozen=True)
class PollResult:
    """Terminal state of a poll loop.

    At most one of ``timed_out`` and ``cancelled`` is True; neither means
    the condition cleared normally.
    """

    elapsed_ms: int
    timed_out: bool = False
    cancelled: bool = False

    @property
    def completed(self) -> bool:
        """True when the condition cleared before timeout or cancellation."""
        return not (self.timed_out or self.cancelled)


def _elapsed_ms(clock: Clock, start: float) -> float:
    return (clock.monotonic() - start) * 1000.0


def wait_while(
    action: str,
    condition: Callable[[], bool],
    poll_interval_ms: int,
    timeout_s: float,
    cancel: CancelSignal,
    status: StatusSink | None = None,
    clock: Clock = SYSTEM_CLOCK,
) -> PollResult:
    """Wait while ``condition()`` stays true.

    Business context: Asynchronous device members (Connect(), slews,
    cover moves) return immediately and expose a busy flag. The harness
    must tell a slow device from a hung one without flagging a timeout a
    poll tick early and without ignoring the stop button.

    Implementation details: The condition is evaluated first on every
    iteration, so a condition that clears at the deadline counts as a
    normal completion. Sleep length is computed from loop start:
    ``loop = (elapsed_ms + 50) // poll`` and the next wake is at
    ``poll * (loop + 1)``. The deadline is ``timeout_s`` plus
    ``GRACE_POLL_INTERVALS`` intervals. Cancellation is checked before
    each sleep and again on each wake, and no status is pushed once it is
    seen.

    Args:
        action: Operation name used in status text.
        condition: Busy predicate; the loop ends when it returns False.
        poll_interval_ms: Interval between evaluations, at least 100.
        timeout_s: Contractual timeout in seconds.
        cancel: External cancellation signal.
        status: Optional sink receiving (action, "x.x / y.y seconds").
        clock: Time source.

    Returns:
        PollResult with elapsed time and the terminal flags.

    Raises:
        ValueError: If ``poll_interval_ms`` is below 100. This is a
            programming error, not a device failure.
        Exception: Whatever ``condition()`` raises propagates unchanged.

    Example:
        >>> result = wait_while("Move", lambda: focuser.read("IsMoving"),
        ...                     500, 60.0, cancel)
        >>> result.completed
        True
    """
    if poll_interval_ms < MIN_POLL_INTERVAL_MS:
        raise ValueError(
            f"Poll interval must be at least {MIN_POLL_INTERVAL_MS}ms, "
            f"got {poll_interval_ms}ms"
        )

    start = clock.monotonic()
    deadline_ms = timeout_s * 1000.0 + GRACE_POLL_INTERVALS * poll_interval_ms

    if status is not None:
        status(action, f"0.0 / {timeout_s:.1f} seconds")

    while condition():
        if cancel.is_set():
            return _finish(action, clock, start, cancelled=True)

        elapsed = _elapsed_ms(clock, start)
        if elapsed >= deadline_ms:
            return _finish(action, clock, start, timed_out=True)

        loop = int((elapsed + _ROUNDING_MS) // poll_interval_ms)
        clock.sleep((poll_interval_ms * (loop + 1) - elapsed) / 1000.0)

        if cancel.is_set():
            return _finish(action, clock, start, cancelled=True)

        if status is not None:
            shown = min(round((loop + 1) * poll_interval_ms / 1000.0, 1), timeout_s)
            status(action, f"{shown:.1f} / {timeout_s:.1f} seconds")

    return _finish(action, clock, start)


def _finish(
    action: str,
    clock: Clock,
    start: float,
    timed_out: bool = False,
    cancelled: bool = False,
) -> PollResult:
    result = PollResult(
        elapsed_ms=int(round(_elapsed_ms(clock, start))),
        timed_out=timed_out,
        cancelled=cancelled,
    )
    logger.debug(
        "Poll loop finished",
        action=action,
        elapsed_ms=result.elapsed_ms,
        timed_out=timed_out,
        cancelled=cancelled,
    )
    return result


def wait_for(
    duration_ms: int,
    cancel: CancelSignal,
    update_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
    status: StatusSink | None = None,
    clock: Clock = SYSTEM_CLOCK,
    action: str = "Waiting",
) -> PollResult:
    """Wait a fixed time in cancellable steps.

    Used to let a device settle, e.g. between the legacy connection
    toggles. Status shows elapsed and total seconds.

    Args:
        duration_ms: Total wait.
        cancel: External cancellation signal.
        update_interval_ms: Step length, at least 100.
        status: Optional status sink.
        clock: Time source.
        action: Name used in status text.

    Returns:
        PollResult; ``cancelled`` is True if the wait was cut short.

    Raises:
        ValueError: If ``update_interval_ms`` is below 100.
    """
    if update_interval_ms < MIN_POLL_INTERVAL_MS:
        raise ValueError(
            f"Update interval must be at least {MIN_POLL_INTERVAL_MS}ms, "
            f"got {update_interval_ms}ms"
        )

    start = clock.monotonic()
    total_s = duration_ms / 1000.0
    while True:
        if cancel.is_set():
            return _finish(action, clock, start, cancelled=True)
        elapsed = _elapsed_ms(clock, start)
        if elapsed >= duration_ms:
            return _finish(action, clock, start)
        clock.sleep(min(update_interval_ms, duration_ms - elapsed) / 1000.0)
        if status is not None and not cancel.is_set():
            shown = min(_elapsed_ms(clock, start) / 1000.0, total_s)
            status(action, f"{shown:.1f} / {total_s:.1f} seconds")


def raise_if_timed_out(action: str, timeout_s: float, result: PollResult) -> None:
    """Escalate a timed-out poll result.

    Raises:
        OperationTimeoutError: If ``result.timed_out`` is True.
    """
    if result.timed_out:
        raise OperationTimeoutError(action, timeout_s)
