"""Response-time measurement of device calls.

``MemberTimer`` wraps a device call, feeds the duration to ``MemberStats``
and writes a timing line to the run's ResultSet when the configuration
asks for it. Lines look like::

    At 21:04:13.512 MaxStep                  0.004 seconds. ✓ (FAST)
    At 21:04:13.988 Move                     1.204 seconds. OUTSIDE STANDARD RESPONSE TIME TARGET: 1.0 seconds.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import TypeVar

from device_conform.conform.polling import SYSTEM_CLOCK, Clock
from device_conform.conform.results import VerdictRecorder
from device_conform.drivers.types import DeviceCategory
from device_conform.observability import MemberStats, TargetTime, get_logger

logger = get_logger(__name__)

__all__ = ["MemberTimer", "timing_pad_width"]

T = TypeVar("T")

_DEFAULT_PAD_WIDTH = 24

# Categories with long member names get a wider name column.
_PAD_WIDTHS = {
    DeviceCategory.COVER_CALIBRATOR: 20,
    DeviceCategory.OBSERVING_CONDITIONS: 33,
    DeviceCategory.SWITCH: 25,
    DeviceCategory.TELESCOPE: 42,
}


def timing_pad_width(category: DeviceCategory | None) -> int:
    """Member-name column width used in timing lines for ``category``."""
    if category is None:
        return _DEFAULT_PAD_WIDTH
    return _PAD_WIDTHS.get(category, _DEFAULT_PAD_WIDTH)


class MemberTimer:
    """Times device calls against their response-time targets.

    Every measurement is recorded in ``stats``. Only lines selected by
    ``report_good`` / ``report_bad`` reach the ResultSet, and only
    reported out-of-target lines count as timing issues.
    """

    def __init__(
        self,
        recorder: VerdictRecorder,
        stats: MemberStats | None = None,
        clock: Clock = SYSTEM_CLOCK,
        report_good: bool = False,
        report_bad: bool = False,
        pad_width: int = _DEFAULT_PAD_WIDTH,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.recorder = recorder
        self.stats = stats if stats is not None else MemberStats()
        self.clock = clock
        self.report_good = report_good
        self.report_bad = report_bad
        self.pad_width = pad_width
        self._now = now

    def call(self, member: str, fn: Callable[[], T], target: TargetTime) -> T:
        """Call ``fn``, report its duration under ``member``, return its result.

        Exceptions from ``fn`` propagate and nothing is reported for the
        failed call.
        """
        start = self.clock.monotonic()
        result = fn()
        self.report(member, self.clock.monotonic() - start, target)
        return result

    def report(self, member: str, elapsed_s: float, target: TargetTime) -> bool:
        """Record one measurement. Returns True when within target."""
        within = self.stats.record(member, elapsed_s, target)
        stamp = self._now().strftime("%H:%M:%S.%f")[:-3]
        prefix = f"At {stamp} {member:<{self.pad_width}} {elapsed_s:.3f} seconds."
        if within:
            if self.report_good:
                self.recorder.timing(member, f"{prefix} ✓ ({target.name})", True)
        elif self.report_bad:
            self.recorder.timing(
                member,
                f"{prefix} OUTSIDE {target.name} RESPONSE TIME TARGET: "
                f"{target.seconds:.1f} seconds.",
                False,
            )
        else:
            logger.debug(
                "Member outside response target",
                member=member,
                elapsed_s=round(elapsed_s, 3),
                target=target.name,
            )
        return within
