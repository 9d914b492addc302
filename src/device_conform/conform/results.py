"""Verdict accumulation for one conformance run.

``ResultSet`` owns the ordered issue, error, configuration alert and
timing lists of a run. ``VerdictRecorder`` is the single writer: every
check reports through it, and it mirrors each verdict to the structured
logger so the live transcript and the final report agree.

Lists are append-only and keep duplicates, because the same member may
fail in several sub-tests and each failure is a separate finding.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from device_conform.conform.classifier import ClassifiedOutcome, Verdict
from device_conform.observability import get_logger

logger = get_logger(__name__)

__all__ = [
    "CONFIGURATION_ALERT_KEY",
    "Finding",
    "ResultCounts",
    "ResultSet",
    "VerdictRecorder",
]

#: Test name under which configuration alerts are stored.
CONFIGURATION_ALERT_KEY = "Conform configuration"

_VERDICT_LEVELS = {
    Verdict.OK: logging.INFO,
    Verdict.INFO: logging.INFO,
    Verdict.ISSUE: logging.WARNING,
    Verdict.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class Finding:
    """One (test name, message) pair."""

    test: str
    message: str


@dataclass(frozen=True)
class ResultCounts:
    """Derived counts of a ResultSet."""

    errors: int
    issues: int
    configuration_alerts: int
    timing_issues: int

    @property
    def clean(self) -> bool:
        """True when nothing needs the driver author's attention."""
        return self.errors == 0 and self.issues == 0 and self.configuration_alerts == 0


@dataclass
class ResultSet:
    """Findings of one run.

    Attributes:
        errors: Errors in detection order.
        issues: Issues in detection order.
        configuration_alerts: Tests skipped by configuration.
        timings: Timing report lines.
        timing_issues: Number of calls outside their response target.
        cancelled: True when the run was interrupted.
    """

    errors: list[Finding] = field(default_factory=list)
    issues: list[Finding] = field(default_factory=list)
    configuration_alerts: list[Finding] = field(default_factory=list)
    timings: list[Finding] = field(default_factory=list)
    timing_issues: int = 0
    cancelled: bool = False
    _worst: dict[str, Verdict] = field(default_factory=dict, repr=False)
    _sealed: bool = field(default=False, repr=False)

    @property
    def sealed(self) -> bool:
        """True once the report has been produced."""
        return self._sealed

    def seal(self) -> None:
        """Freeze the set. Later writes raise RuntimeError."""
        self._sealed = True

    def _check_open(self) -> None:
        if self._sealed:
            raise RuntimeError("ResultSet is sealed; the run has already been reported")

    def note(self, test: str, verdict: Verdict) -> None:
        """Track the highest severity seen for ``test``."""
        self._check_open()
        current = self._worst.get(test)
        if current is None or current < verdict:
            self._worst[test] = verdict

    def add_issue(self, test: str, message: str) -> None:
        """Append an issue."""
        self.note(test, Verdict.ISSUE)
        self.issues.append(Finding(test, message))

    def add_error(self, test: str, message: str) -> None:
        """Append an error."""
        self.note(test, Verdict.ERROR)
        self.errors.append(Finding(test, message))

    def add_configuration_alert(self, message: str) -> None:
        """Append a configuration alert."""
        self._check_open()
        self.configuration_alerts.append(Finding(CONFIGURATION_ALERT_KEY, message))

    def add_timing(self, test: str, message: str, within_target: bool) -> None:
        """Append a timing line; out-of-target lines count as timing issues."""
        self._check_open()
        self.timings.append(Finding(test, message))
        if not within_target:
            self.timing_issues += 1

    def worst(self, test: str) -> Verdict | None:
        """Highest severity recorded for ``test``, or None if never seen."""
        return self._worst.get(test)

    def counts(self) -> ResultCounts:
        """Current counts."""
        return ResultCounts(
            errors=len(self.errors),
            issues=len(self.issues),
            configuration_alerts=len(self.configuration_alerts),
            timing_issues=self.timing_issues,
        )


class VerdictRecorder:
    """Single writer for a ResultSet.

    Usage:
        recorder = VerdictRecorder()
        recorder.ok("Name", "Focuser simulator")
        recorder.issue("SupportedActions", "Supported action 0 Is an empty string")
        recorder.counts().issues  # 1
    """

    def __init__(self, results: ResultSet | None = None) -> None:
        """Create a recorder.

        Args:
            results: Set to write into. A fresh one is created when None.
        """
        self.results = results or ResultSet()
        self._owner: int | None = None

    def _claim(self) -> None:
        # One writer per run: the first thread that records owns the set.
        ident = threading.get_ident()
        if self._owner is None:
            self._owner = ident
        elif self._owner != ident:
            raise RuntimeError("VerdictRecorder used from a second thread")

    def _log(self, test: str, verdict: Verdict, message: str) -> None:
        logger.verdict(_VERDICT_LEVELS[verdict], test, verdict.name, message)

    def ok(self, test: str, message: str) -> None:
        """Record a pass."""
        self._claim()
        self.results.note(test, Verdict.OK)
        self._log(test, Verdict.OK, message)

    def info(self, test: str, message: str) -> None:
        """Record an informational note."""
        self._claim()
        self.results.note(test, Verdict.INFO)
        self._log(test, Verdict.INFO, message)

    def issue(self, test: str, message: str) -> None:
        """Record a deviation from the device contract."""
        self._claim()
        self.results.add_issue(test, message)
        self._log(test, Verdict.ISSUE, message)

    def error(self, test: str, message: str) -> None:
        """Record a failure that blocks further testing of a path."""
        self._claim()
        self.results.add_error(test, message)
        self._log(test, Verdict.ERROR, message)

    def debug(self, test: str, message: str) -> None:
        """Diagnostic detail, never counted."""
        logger.debug(message, test=test)

    def record(self, outcome: ClassifiedOutcome) -> None:
        """Record a classified outcome under its member name."""
        if outcome.verdict is Verdict.OK:
            self.ok(outcome.member_name, outcome.message)
        elif outcome.verdict is Verdict.INFO:
            self.info(outcome.member_name, outcome.message)
        elif outcome.verdict is Verdict.ISSUE:
            self.issue(outcome.member_name, outcome.message)
        else:
            self.error(outcome.member_name, outcome.message)

    def configuration_alert(self, message: str) -> None:
        """Record that part of the run was skipped by configuration."""
        self._claim()
        self.results.add_configuration_alert(message)
        logger.info(message, test=CONFIGURATION_ALERT_KEY, alert=True)

    def timing(self, test: str, message: str, within_target: bool) -> None:
        """Record a timing report line."""
        self._claim()
        self.results.add_timing(test, message, within_target)
        logger.debug(message, test=test, within_target=within_target)

    def counts(self) -> ResultCounts:
        """Counts of the underlying ResultSet."""
        return self.results.counts()
