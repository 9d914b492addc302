"""Conformance run sequencing.

``TestOrchestrator`` runs the fixed step sequence against one device
handle and returns the ResultSet:

1. pre-connect checks
2. connect
3. common-member sweep
4. capability-flag sweep
5. pre-run check
6. property checks
7. method checks
8. performance checks
9. post-run check
10. disconnect
11. configuration check

Family-specific steps are delegated to a ``DeviceChecks`` subclass.
Every step looks at the cancellation signal first; a cancelled run keeps
the verdicts recorded so far and gains a StopKey issue.

Example:
    orchestrator = TestOrchestrator(DeviceCategory.FOCUSER, config=config)
    results = orchestrator.run(handle)
    print(results.counts())
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass

from device_conform.checks import CheckContext, DeviceChecks, checks_for
from device_conform.conform.classifier import (
    ExceptionClassifier,
    MemberKind,
    Requiredness,
    Verdict,
)
from device_conform.conform.connection import ConnectionStateMachine, RunTimeouts
from device_conform.conform.handling import ExceptionReporter
from device_conform.conform.polling import SYSTEM_CLOCK, CancelSignal, Clock, StatusSink
from device_conform.conform.results import ResultSet, VerdictRecorder
from device_conform.conform.timing import MemberTimer, timing_pad_width
from device_conform.config import ConformConfig
from device_conform.drivers.capabilities import (
    TIMESTAMP_STATE_KEY,
    expected_state_keys,
    supports_async_protocol,
    table_for,
)
from device_conform.drivers.exceptions import MissingMemberError
from device_conform.drivers.types import DeviceCategory, DeviceHandle
from device_conform.observability import LogContext, MemberStats, TargetTime, get_logger

logger = get_logger(__name__)

__all__ = [
    "STOP_KEY_MESSAGE",
    "MemberCheck",
    "COMMON_MEMBERS",
    "TestOrchestrator",
]

#: Issue recorded when a run is cancelled before it finishes.
STOP_KEY_MESSAGE = (
    "The conformance test is incomplete because it was interrupted by the stop "
    "key or to protect the device being tested."
)


@dataclass(frozen=True)
class MemberCheck:
    """A member swept by the common-member step."""

    name: str
    kind: MemberKind
    requiredness: Requiredness


COMMON_MEMBERS: tuple[MemberCheck, ...] = (
    MemberCheck("InterfaceVersion", MemberKind.PROPERTY, Requiredness.MANDATORY),
    MemberCheck("Connected", MemberKind.PROPERTY, Requiredness.MANDATORY),
    MemberCheck("Description", MemberKind.PROPERTY, Requiredness.MANDATORY),
    MemberCheck("DriverInfo", MemberKind.PROPERTY, Requiredness.MANDATORY),
    MemberCheck("DriverVersion", MemberKind.PROPERTY, Requiredness.MANDATORY),
    MemberCheck("Name", MemberKind.PROPERTY, Requiredness.MANDATORY),
    MemberCheck("Action", MemberKind.METHOD, Requiredness.OPTIONAL),
    MemberCheck("SupportedActions", MemberKind.PROPERTY, Requiredness.OPTIONAL),
    MemberCheck("DeviceState", MemberKind.PROPERTY, Requiredness.MANDATORY),
)


class _Run:
    """Per-run collaborators, built fresh by every ``run()`` call."""

    def __init__(
        self,
        orchestrator: TestOrchestrator,
        handle: DeviceHandle,
        timeouts: RunTimeouts,
    ) -> None:
        config = orchestrator.config
        self.handle = handle
        self.category = orchestrator.category
        self.cancel = orchestrator.cancel
        self.recorder = VerdictRecorder()
        self.reporter = ExceptionReporter(orchestrator.classifier, self.recorder)
        self.timer = MemberTimer(
            self.recorder,
            stats=orchestrator.stats,
            clock=orchestrator.clock,
            report_good=config.report_good_timings,
            report_bad=config.report_bad_timings,
            pad_width=timing_pad_width(self.category),
        )
        self.machine = ConnectionStateMachine(
            handle,
            self.category,
            self.recorder,
            self.cancel,
            timeouts=timeouts,
            clock=orchestrator.clock,
            status=orchestrator.status,
            timer=self.timer,
        )
        self.checks = orchestrator.checks_factory(
            CheckContext(
                handle=handle,
                category=self.category,
                config=config,
                recorder=self.recorder,
                reporter=self.reporter,
                timer=self.timer,
                cancel=self.cancel,
                clock=orchestrator.clock,
                status=orchestrator.status,
            )
        )

    @property
    def results(self) -> ResultSet:
        return self.recorder.results


class TestOrchestrator:
    """Runs the conformance step sequence against a device handle.

    Not a pytest test class, despite the name.
    """

    __test__ = False

    def __init__(
        self,
        category: DeviceCategory,
        config: ConformConfig | None = None,
        cancel: CancelSignal | None = None,
        checks_factory: Callable[[CheckContext], DeviceChecks] | None = None,
        clock: Clock = SYSTEM_CLOCK,
        status: StatusSink | None = None,
        stats: MemberStats | None = None,
    ) -> None:
        """Create an orchestrator for one device family.

        Args:
            category: Device family under test.
            config: Run configuration. Defaults to ``ConformConfig`` with
                ``category`` filled in.
            cancel: External cancellation signal. A private
                ``threading.Event`` when omitted.
            checks_factory: Builds the family-specific checks. Defaults to
                ``checks_for(category)``.
            clock: Time source for every wait and timing.
            status: Optional live status sink.
            stats: Response-time statistics shared across runs.
        """
        self.category = category
        self.config = config or ConformConfig(category=category)
        self.cancel = cancel if cancel is not None else threading.Event()
        self.checks_factory = checks_factory or checks_for(category)
        self.classifier = ExceptionClassifier(
            codes=self.config.error_codes, technology=self.config.technology
        )
        self.clock = clock
        self.status = status
        self.stats = stats if stats is not None else MemberStats()

    @property
    def cancelled(self) -> bool:
        """True once cancellation was requested."""
        return self.cancel.is_set()

    def run(
        self,
        handle: DeviceHandle,
        required_members: Sequence[MemberCheck] = COMMON_MEMBERS,
        timeouts: RunTimeouts | None = None,
    ) -> ResultSet:
        """Run every step against ``handle``.

        Device failures become verdicts; nothing raised by the device
        escapes. The handle is neither created nor closed here.

        Args:
            handle: Connected-or-not device under test.
            required_members: Members swept by the common-member step.
            timeouts: Connection time limits. Defaults to the config's.

        Returns:
            The ResultSet of the run, partial when cancelled.
        """
        run = _Run(self, handle, timeouts or self.config.timeouts)
        with LogContext(category=self.category.value):
            logger.info("Conformance run started", technology=self.config.technology.value)
            self._run_steps(run, required_members)
            if self.cancelled:
                run.results.cancelled = True
                run.recorder.issue("StopKey", STOP_KEY_MESSAGE)
                logger.info("Conformance run interrupted")
            else:
                logger.info("Conformance run finished", **asdict(run.recorder.counts()))
        return run.results

    # =========================================================================
    # Step sequence
    # =========================================================================

    def _run_steps(self, run: _Run, required_members: Sequence[MemberCheck]) -> None:
        checks = run.checks
        config = self.config

        if self.cancelled:
            return
        if checks.has_pre_connect_check:
            self._step(run, "PreConnectChecks", checks.pre_connect_checks)
            if self.cancelled:
                return

        if not self._connect(run) or self.cancelled:
            return

        stages: list[tuple[str, bool, Callable[[], None]]] = [
            (
                "CheckCommonMethods",
                config.test_properties,
                lambda: self._check_common_members(run, required_members),
            ),
            (
                "ReadCanProperties",
                config.test_properties and checks.has_can_properties,
                checks.read_can_properties,
            ),
            ("PreRunCheck", checks.has_pre_run_check, checks.pre_run_check),
            (
                "CheckProperties",
                config.test_properties and checks.has_properties,
                checks.check_properties,
            ),
            ("CheckMethods", config.test_methods and checks.has_methods, checks.check_methods),
            (
                "CheckPerformance",
                config.test_performance and checks.has_performance_check,
                checks.check_performance,
            ),
            ("PostRunCheck", checks.has_post_run_check, checks.post_run_check),
        ]
        for stage, enabled, step in stages:
            if self.cancelled:
                return
            if enabled and not self._step(run, stage, step):
                return

        if self.cancelled:
            return
        self._disconnect(run)

        if self.cancelled:
            return
        self._step(run, "CheckConfiguration", checks.check_configuration)

    def _step(self, run: _Run, stage: str, step: Callable[[], None]) -> bool:
        """Run one stage. False when it raised and testing was abandoned."""
        logger.debug("Stage started", stage=stage)
        try:
            step()
        except Exception as exc:
            outcome = self.classifier.classify(
                stage, exc, MemberKind.METHOD, Requiredness.MANDATORY
            )
            if outcome.verdict is Verdict.ERROR:
                run.recorder.record(outcome)
            else:
                run.recorder.issue(
                    stage, f"Exception when testing device - testing abandoned: {exc}"
                )
            run.recorder.debug(stage, f"Exception detail: {exc!r}")
            logger.info("Further tests abandoned", stage=stage)
            return False
        return True

    def _connect(self, run: _Run) -> bool:
        try:
            return run.machine.connect()
        except MissingMemberError as exc:
            table = table_for(self.category)
            run.recorder.issue("Connect", f"{exc} Further testing abandoned.")
            run.recorder.info(
                "Connect",
                f"The {self.category.value} device reported interface version "
                f"{run.handle.interface_version}, which indicates that it supports the "
                "Connect() and Disconnect() methods and the Connecting property.",
            )
            run.recorder.info(
                "Connect",
                "However, the Connecting property is not present in the device interface.",
            )
            run.recorder.info(
                "Connect",
                "Please check whether the device is reporting the correct interface "
                f"version. For Platform 6 devices the latest {self.category.value} "
                f"interface version is {table.latest_legacy_version}.",
            )
        except Exception as exc:
            outcome = self.classifier.classify(
                "Connect", exc, MemberKind.METHOD, Requiredness.MANDATORY
            )
            if outcome.verdict is Verdict.ERROR:
                run.recorder.record(outcome)
            else:
                run.recorder.issue(
                    "Connect", f"Connection exception - further testing abandoned: {exc}"
                )
            run.recorder.debug("Connect", f"Exception detail: {exc!r}")
        return False

    def _disconnect(self, run: _Run) -> None:
        try:
            run.machine.disconnect()
        except Exception as exc:
            outcome = self.classifier.classify(
                "Disconnect", exc, MemberKind.METHOD, Requiredness.MANDATORY
            )
            if outcome.verdict is Verdict.ERROR:
                run.recorder.record(outcome)
            else:
                run.recorder.issue(
                    "Connected", f"Exception when setting Connected to false: {exc}"
                )
            run.recorder.debug("Connected", f"Exception detail: {exc!r}")

    # =========================================================================
    # Common-member sweep
    # =========================================================================

    def _check_common_members(
        self, run: _Run, required_members: Sequence[MemberCheck]
    ) -> None:
        handlers: dict[str, Callable[[_Run, MemberCheck], None]] = {
            "InterfaceVersion": self._check_interface_version,
            "Connected": self._check_connected,
            "Description": self._check_description,
            "DriverInfo": self._check_driver_info,
            "DriverVersion": self._check_driver_version,
            "Name": self._check_name,
            "Action": self._check_action,
            "SupportedActions": self._check_supported_actions,
            "DeviceState": self._check_device_state,
        }
        for member in required_members:
            if self.cancelled:
                return
            handler = handlers.get(member.name, self._check_other_member)
            try:
                handler(run, member)
            except Exception as exc:
                run.reporter.handle_exception(
                    member.name, member.kind, member.requiredness, exc
                )

    def _read(self, run: _Run, member: str, getter: Callable[[], object]) -> object:
        if self.config.display_method_calls:
            logger.info(f"About to get property {member}", test=member)
        return run.timer.call(member, getter, TargetTime.FAST)

    def _check_interface_version(self, run: _Run, member: MemberCheck) -> None:
        version = self._read(run, member.name, lambda: run.handle.interface_version)
        if int(version) < 1:
            run.recorder.issue(
                member.name,
                f"InterfaceVersion must be 1 or greater but driver returned: {version}",
            )
        else:
            run.recorder.ok(member.name, str(version))

    def _check_connected(self, run: _Run, member: MemberCheck) -> None:
        try:
            connected = self._read(run, member.name, lambda: run.handle.connected)
        except Exception as exc:
            run.recorder.issue(member.name, str(exc))
            return
        run.recorder.ok(member.name, str(connected))

    def _check_description(self, run: _Run, member: MemberCheck) -> None:
        description = self._read(run, member.name, lambda: run.handle.description) or ""
        limit = table_for(self.category).description_limit
        if description == "":
            run.recorder.info(member.name, "No description string")
        elif limit is not None and len(description) > limit:
            run.recorder.issue(
                member.name,
                f"Maximum number of characters is {limit} for compatibility with FITS "
                f"headers, found: {len(description)} characters: {description}",
            )
        else:
            run.recorder.ok(member.name, str(description))

    def _check_driver_info(self, run: _Run, member: MemberCheck) -> None:
        driver_info = self._read(run, member.name, lambda: run.handle.driver_info) or ""
        if driver_info == "":
            run.recorder.info(member.name, "No DriverInfo string")
        else:
            run.recorder.ok(member.name, str(driver_info))

    def _check_driver_version(self, run: _Run, member: MemberCheck) -> None:
        # Telescope interface version 1 has no DriverVersion member.
        if self.category is DeviceCategory.TELESCOPE and run.handle.interface_version == 1:
            run.recorder.info(
                member.name,
                "Skipping test because DriverVersion is not a member of this interface "
                "version.",
            )
            return
        try:
            version = self._read(run, member.name, lambda: run.handle.driver_version) or ""
        except Exception as exc:
            run.recorder.issue(member.name, str(exc))
            return
        if version == "":
            run.recorder.info(member.name, "No DriverVersion string")
        else:
            run.recorder.ok(member.name, str(version))

    def _check_name(self, run: _Run, member: MemberCheck) -> None:
        name = self._read(run, member.name, lambda: run.handle.name) or ""
        if name == "":
            run.recorder.info(member.name, "Name is empty")
        else:
            run.recorder.ok(member.name, str(name))

    def _check_action(self, run: _Run, member: MemberCheck) -> None:
        run.recorder.info(member.name, "The Action method cannot be tested generically")

    def _check_supported_actions(self, run: _Run, member: MemberCheck) -> None:
        actions = list(
            self._read(run, member.name, lambda: run.handle.supported_actions) or []
        )
        if not actions:
            run.recorder.ok(member.name, "Driver returned an empty action list")
            return
        for index, action in enumerate(actions, start=1):
            if not isinstance(action, str):
                run.recorder.issue(
                    member.name,
                    f"Actions must be strings. The type of action {index} {action!r} "
                    f"is: {type(action).__name__}",
                )
            elif action == "":
                run.recorder.issue(member.name, f"Supported action {index} Is an empty string")
            else:
                run.recorder.ok(member.name, f"Found action: {action}")

    def _check_device_state(self, run: _Run, member: MemberCheck) -> None:
        if not supports_async_protocol(self.category, run.handle.interface_version):
            run.recorder.info(
                member.name,
                "DeviceState tests omitted - DeviceState is not a member of this "
                "interface version.",
            )
            return

        state = list(self._read(run, member.name, lambda: run.handle.device_state))
        run.recorder.ok(member.name, f"Received {len(state)} operational state properties.")

        expected = self._expected_state_keys(run, member)
        found = dict.fromkeys(expected, False)
        by_lower = {key.lower(): key for key in expected}
        for item in state:
            if item.name in found or item.name == TIMESTAMP_STATE_KEY:
                if item.name in found:
                    found[item.name] = True
                run.recorder.ok(member.name, f"  {item.name} = {item.value}")
            elif item.name.lower() in by_lower:
                key = by_lower[item.name.lower()]
                run.recorder.issue(
                    member.name,
                    f"The {key} property name is mis-cased: {item.name}. "
                    f"The correct casing is: {key}",
                )
            else:
                run.recorder.issue(
                    member.name,
                    "A non-operational property was included in the DeviceState "
                    f"response: {item.name} = {item.value}",
                )

        missing = [key for key, seen in found.items() if not seen]
        for key in missing:
            run.recorder.info(
                member.name,
                f"Operational property {key} was not included in the DeviceState response.",
            )
        if not missing:
            run.recorder.ok(member.name, "Found all expected operational properties")

    def _expected_state_keys(self, run: _Run, member: MemberCheck) -> tuple[str, ...]:
        if self.category is not DeviceCategory.SWITCH:
            return expected_state_keys(self.category)
        max_switch = 0
        try:
            max_switch = int(run.handle.read("MaxSwitch"))
        except Exception as exc:
            run.recorder.issue(member.name, f"MaxSwitch exception: {exc}")
        run.recorder.info(member.name, f"MaxSwitch: {max_switch}")
        return expected_state_keys(self.category, max_switch=max_switch)

    def _check_other_member(self, run: _Run, member: MemberCheck) -> None:
        if member.kind is MemberKind.METHOD:
            value = run.timer.call(
                member.name, lambda: run.handle.invoke(member.name), TargetTime.STANDARD
            )
        else:
            value = self._read(run, member.name, lambda: run.handle.read(member.name))
        if member.requiredness is Requiredness.MUST_NOT_BE_IMPLEMENTED:
            run.recorder.issue(
                member.name,
                f"{member.name} must not be implemented but returned a value: {value}",
            )
            return
        run.recorder.ok(member.name, str(value))
