"""Member response-time statistics.

Collects the duration of every timed device call during a conformance
run and classifies it against the response-time target for that kind of
member:

- FAST: configuration and state reporting members (0.1 s)
- STANDARD: property writes and asynchronous initiators (1.0 s)
- EXTENDED: synchronous long-running methods (600 s)

Thread-safe, so a status display may read summaries while the run thread
records.

Example:
    stats = MemberStats()

    stats.record("Position", duration_s=0.012, target=TargetTime.FAST)
    stats.record("Move", duration_s=1.8, target=TargetTime.STANDARD)

    summary = stats.get_summary("Move")
    print(f"Over target: {summary.over_target}")

    data = stats.to_dict()
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

# =============================================================================
# Constants
# =============================================================================

#: Default number of timing records kept per member.
DEFAULT_STATS_WINDOW_SIZE: int = 1000


class TargetTime(Enum):
    """Response-time target class of a device member, in seconds."""

    FAST = 0.1
    STANDARD = 1.0
    EXTENDED = 600.0

    @property
    def seconds(self) -> float:
        """Target duration in seconds."""
        return float(self.value)


# =============================================================================
# Helpers
# =============================================================================


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def _percentile(sorted_values: list[float], percentile: float) -> float:
    """Nearest-rank percentile of an already sorted list.

    Args:
        sorted_values: Ascending values. Must not be empty.
        percentile: 0-100.

    Returns:
        The value at the requested rank.

    Example:
        >>> _percentile([1.0, 2.0, 3.0, 4.0], 50)
        2.0
    """
    if len(sorted_values) == 1:
        return sorted_values[0]
    index = max(0, int(round(percentile / 100 * len(sorted_values))) - 1)
    return sorted_values[min(index, len(sorted_values) - 1)]


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class TimingSummary:
    """Summary statistics for one device member.

    Attributes:
        member: Member name (e.g. "Position").
        target: Target class applied to the member.
        calls: Number of timed calls.
        over_target: Calls that exceeded the target.
        min_duration_s: Fastest call.
        max_duration_s: Slowest call.
        avg_duration_s: Mean duration.
        p95_duration_s: 95th percentile duration.
        last_call_time: UTC time of the most recent call.
    """

    member: str
    target: TargetTime
    calls: int = 0
    over_target: int = 0
    min_duration_s: float = 0.0
    max_duration_s: float = 0.0
    avg_duration_s: float = 0.0
    p95_duration_s: float = 0.0
    last_call_time: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary.

        Returns:
            Dict with every field; ``target`` becomes its name and
            ``last_call_time`` an ISO string or None.
        """
        return {
            "member": self.member,
            "target": self.target.name,
            "calls": self.calls,
            "over_target": self.over_target,
            "min_duration_s": self.min_duration_s,
            "max_duration_s": self.max_duration_s,
            "avg_duration_s": self.avg_duration_s,
            "p95_duration_s": self.p95_duration_s,
            "last_call_time": (
                self.last_call_time.isoformat() if self.last_call_time else None
            ),
        }


@dataclass
class TimingRecord:
    """Single timed call."""

    timestamp: float  # monotonic time
    duration_s: float


class MemberTimingCollector:
    """Rolling timing window for a single member."""

    def __init__(
        self,
        member: str,
        target: TargetTime,
        window_size: int = DEFAULT_STATS_WINDOW_SIZE,
    ) -> None:
        """Create a collector.

        Args:
            member: Member name the collector belongs to.
            target: Response-time class used for over-target counting.
            window_size: Records kept for min/max/avg/p95.
        """
        self.member = member
        self.target = target
        self._records: deque[TimingRecord] = deque(maxlen=window_size)
        self._calls = 0
        self._over_target = 0
        self._last_call_time: datetime | None = None
        self._lock = threading.Lock()

    def record(self, duration_s: float) -> bool:
        """Record one call.

        Args:
            duration_s: Elapsed time of the call.

        Returns:
            True when the call finished within the target.
        """
        within = duration_s <= self.target.seconds
        with self._lock:
            self._records.append(TimingRecord(time.monotonic(), duration_s))
            self._calls += 1
            if not within:
                self._over_target += 1
            self._last_call_time = _utc_now()
        return within

    def get_summary(self) -> TimingSummary:
        """Compute a snapshot summary.

        Durations are copied under the lock; sorting happens outside it.
        """
        with self._lock:
            calls = self._calls
            over_target = self._over_target
            last_call_time = self._last_call_time
            durations = [r.duration_s for r in self._records]

        if durations:
            min_dur = min(durations)
            max_dur = max(durations)
            avg_dur = sum(durations) / len(durations)
            p95_dur = _percentile(sorted(durations), 95)
        else:
            min_dur = max_dur = avg_dur = p95_dur = 0.0

        return TimingSummary(
            member=self.member,
            target=self.target,
            calls=calls,
            over_target=over_target,
            min_duration_s=min_dur,
            max_duration_s=max_dur,
            avg_duration_s=avg_dur,
            p95_duration_s=p95_dur,
            last_call_time=last_call_time,
        )


class MemberStats:
    """Timing statistics for every member touched by a run.

    Collectors are created lazily on first record. A member keeps the
    target class it was first recorded with.

    Usage:
        stats = MemberStats()
        within = stats.record("IsSafe", 0.004, TargetTime.FAST)
        summaries = stats.get_all_summaries()
    """

    def __init__(self, window_size: int = DEFAULT_STATS_WINDOW_SIZE) -> None:
        """Create an empty statistics container.

        Args:
            window_size: Records kept per member.
        """
        self._window_size = window_size
        self._collectors: dict[str, MemberTimingCollector] = {}
        self._lock = threading.Lock()

    def _get_collector(self, member: str, target: TargetTime) -> MemberTimingCollector:
        """Get or create the collector for ``member``."""
        with self._lock:
            if member not in self._collectors:
                self._collectors[member] = MemberTimingCollector(
                    member, target, self._window_size
                )
            return self._collectors[member]

    def record(self, member: str, duration_s: float, target: TargetTime) -> bool:
        """Record a timed call.

        Args:
            member: Member name.
            duration_s: Elapsed seconds.
            target: Target class for the member.

        Returns:
            True when the call finished within its target.
        """
        return self._get_collector(member, target).record(duration_s)

    def get_summary(self, member: str) -> TimingSummary | None:
        """Summary for one member, or None when it was never timed."""
        with self._lock:
            collector = self._collectors.get(member)
        if collector is None:
            return None
        return collector.get_summary()

    def get_all_summaries(self) -> dict[str, TimingSummary]:
        """Summaries for every timed member, in first-recorded order."""
        with self._lock:
            collectors = list(self._collectors.values())
        return {c.member: c.get_summary() for c in collectors}

    @property
    def over_target_count(self) -> int:
        """Total number of calls that exceeded their target."""
        return sum(s.over_target for s in self.get_all_summaries().values())

    def to_dict(self) -> dict[str, Any]:
        """Export all summaries as JSON-compatible data."""
        return {
            member: summary.to_dict()
            for member, summary in self.get_all_summaries().items()
        }
