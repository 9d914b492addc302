"""Run manager.

``ConformanceRunner`` owns the parts of a run around the orchestrator:
it validates the configuration, builds the device handle, runs the
steps, always closes the handle and seals the ResultSet so the report
is produced from a frozen set.

Only configuration and device-creation failures escape as exceptions.
Everything the device does wrong during the run is a verdict.

Example:
    config = ConformConfig(category=DeviceCategory.FOCUSER)
    runner = ConformanceRunner(config)
    results = runner.run()
    print(render_report(results, config))
"""

from __future__ import annotations

import threading
from collections.abc import Callable

from device_conform.conform.orchestrator import TestOrchestrator
from device_conform.conform.polling import SYSTEM_CLOCK, Clock, StatusSink
from device_conform.conform.results import ResultSet
from device_conform.config import ConformConfig
from device_conform.drivers.exceptions import DeviceCreationError
from device_conform.drivers.factory import create_device
from device_conform.drivers.types import DeviceHandle
from device_conform.observability import LogContext, MemberStats, get_logger

logger = get_logger(__name__)

__all__ = ["DeviceFactory", "ConformanceRunner"]

#: Builds a device handle from a validated configuration.
DeviceFactory = Callable[[ConformConfig], DeviceHandle]


class ConformanceRunner:
    """Validates, creates, runs and tears down one conformance run.

    The runner can be reused; each ``run()`` creates a fresh handle.
    ``stats`` accumulates response times across runs.
    """

    def __init__(
        self,
        config: ConformConfig,
        device_factory: DeviceFactory = create_device,
        cancel: threading.Event | None = None,
        clock: Clock = SYSTEM_CLOCK,
        status: StatusSink | None = None,
    ) -> None:
        """Create a runner.

        Args:
            config: Run configuration, validated on every ``run()``.
            device_factory: Builds the handle. Defaults to
                ``create_device``, which picks Alpaca or native by
                ``config.technology``.
            cancel: Stop signal shared with the caller. A private event
                when omitted; use ``stop()`` to set it.
            clock: Time source handed to the orchestrator.
            status: Optional live status sink.
        """
        self.config = config
        self.device_factory = device_factory
        self.cancel = cancel if cancel is not None else threading.Event()
        self.clock = clock
        self.status = status
        self.stats = MemberStats()

    def stop(self) -> None:
        """Ask a running conformance run to stop at the next step boundary."""
        self.cancel.set()

    def run(self) -> ResultSet:
        """Execute one conformance run.

        Returns:
            The sealed ResultSet.

        Raises:
            ConfigurationError: The configuration is invalid.
            DeviceCreationError: The handle could not be built.
        """
        self.config.validate()
        assert self.config.category is not None  # validate() guarantees it

        with LogContext(device=self.config.device_label):
            handle = self._create_handle()
            try:
                orchestrator = TestOrchestrator(
                    self.config.category,
                    config=self.config,
                    cancel=self.cancel,
                    clock=self.clock,
                    status=self.status,
                    stats=self.stats,
                )
                results = orchestrator.run(handle)
            finally:
                self._close(handle)

        results.seal()
        return results

    def _create_handle(self) -> DeviceHandle:
        logger.info("Creating device handle", technology=self.config.technology.value)
        try:
            return self.device_factory(self.config)
        except DeviceCreationError:
            raise
        except Exception as exc:
            raise DeviceCreationError(
                f"Unable to create the {self.config.device_label} device: {exc}"
            ) from exc

    def _close(self, handle: DeviceHandle) -> None:
        try:
            handle.close()
        except Exception as exc:
            # The run has finished; a failed close is not a finding.
            logger.warning("Device handle close failed", error=str(exc))
