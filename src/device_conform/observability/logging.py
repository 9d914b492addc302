"""Structured logging for device-conform.

Builds on Python's standard logging module with:
- Keyword arguments rendered as key=value pairs, or JSON for CI
- LogContext, so every record of a run carries the device identity
- Verdict records (``StructuredLogger.verdict``) carrying test and
  verdict keys, mirrored to a live console by ``transcript_to``

All loggers hang below ``device_conform``, which does not propagate:
embedding applications see conformance output only through the handlers
installed here.

Security Note:
    Device strings (Description, DriverInfo, action names) are untrusted.
    Pass them as keyword arguments rather than formatting them into the
    message so a CRLF in a driver description cannot forge log lines:

    # SAFE
    logger.info("Read member", member="Description", value=description)

    # UNSAFE
    logger.info(f"Description is {description}")

Example:
    logger = get_logger(__name__)

    logger.info("Run started")

    with LogContext(device="Focuser 0", technology="alpaca"):
        logger.info("Connecting")  # includes device and technology
        logger.info("Connected", elapsed_ms=412)

    configure_logging(json_format=True)
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import threading
from collections.abc import Callable, Iterator, MutableMapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, cast

_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "log_context", default={}
)

#: Name of the package root logger. Every module logger hangs below it.
ROOT_LOGGER_NAME = "device_conform"

#: Structured keys that mark a record as a conformance verdict.
TEST_KEY = "test"
VERDICT_KEY = "verdict"


# =============================================================================
# Structured Log Record
# =============================================================================


class StructuredLogRecord(logging.LogRecord):
    """LogRecord carrying a ``structured_data`` dict.

    The formatters read ``structured_data`` to render key=value pairs or
    JSON fields.
    """

    structured_data: dict[str, Any]

    def __init__(
        self,
        name: str,
        level: int,
        pathname: str,
        lineno: int,
        msg: object,
        args: tuple[Any, ...] | MutableMapping[str, Any] | None,
        exc_info: Any,
        func: str | None = None,
        sinfo: str | None = None,
        **kwargs: Any,
    ) -> None:
        """Create the record and attach structured data.

        Args:
            name: Logger name (e.g., 'device_conform.conform.connection').
            level: Numeric log level.
            pathname: Source file of the logging call.
            lineno: Line number of the logging call.
            msg: Log message, may contain % placeholders.
            args: Arguments for % formatting, or None.
            exc_info: Exception tuple, or None.
            func: Function name of the logging call.
            sinfo: Stack info string.
            **kwargs: ``structured_data`` (dict) is stored when present.

        Example:
            >>> record = StructuredLogRecord(
            ...     name="test", level=20, pathname="t.py", lineno=1,
            ...     msg="Verdict", args=(), exc_info=None,
            ...     structured_data={"test": "Name", "verdict": "OK"}
            ... )
            >>> record.structured_data["verdict"]
            'OK'
        """
        super().__init__(
            name, level, pathname, lineno, msg, args, exc_info, func, sinfo
        )
        self.structured_data = kwargs.get("structured_data", {})


# =============================================================================
# Structured Logger
# =============================================================================


class StructuredLogger(logging.Logger):
    """Logger whose keyword arguments become structured data.

    Usage:
        logger = StructuredLogger("device_conform.checks")
        logger.info("Member read", member="MaxStep", value=10000)
    """

    def debug(
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log debug message with optional structured data kwargs."""
        if self.isEnabledFor(logging.DEBUG):
            self._log(
                logging.DEBUG,
                msg,
                args,
                exc_info=exc_info,
                extra=extra,
                stack_info=stack_info,
                stacklevel=stacklevel + 1,
                **kwargs,
            )

    def info(
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log info message with optional structured data kwargs."""
        if self.isEnabledFor(logging.INFO):
            self._log(
                logging.INFO,
                msg,
                args,
                exc_info=exc_info,
                extra=extra,
                stack_info=stack_info,
                stacklevel=stacklevel + 1,
                **kwargs,
            )

    def warning(
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log warning message with optional structured data kwargs."""
        if self.isEnabledFor(logging.WARNING):
            self._log(
                logging.WARNING,
                msg,
                args,
                exc_info=exc_info,
                extra=extra,
                stack_info=stack_info,
                stacklevel=stacklevel + 1,
                **kwargs,
            )

    def error(
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log error message with optional structured data kwargs."""
        if self.isEnabledFor(logging.ERROR):
            self._log(
                logging.ERROR,
                msg,
                args,
                exc_info=exc_info,
                extra=extra,
                stack_info=stack_info,
                stacklevel=stacklevel + 1,
                **kwargs,
            )

    def verdict(
        self,
        level: int,
        test: str,
        verdict: str,
        message: str,
        stacklevel: int = 1,
    ) -> None:
        """Log a conformance verdict.

        Verdict records carry the test and verdict names under ``TEST_KEY``
        and ``VERDICT_KEY``; they are the only records TranscriptHandler
        forwards. The message is passed without % arguments, so driver
        text containing '%' is logged as-is.

        Args:
            level: Numeric log level matching the verdict's severity.
            test: Test or member name, e.g. 'Move - To MidPoint'.
            verdict: Verdict name, e.g. 'ISSUE'.
            message: Finding text as it appears in the report.
            stacklevel: Frames to skip when locating the caller.

        Example:
            >>> logger.verdict(logging.WARNING, "MaxStep", "ISSUE", "MaxStep is 0")
            # Output: "... - WARNING - MaxStep is 0 | test=MaxStep verdict=ISSUE"
        """
        if self.isEnabledFor(level):
            self._log(
                level,
                message,
                (),
                stacklevel=stacklevel + 1,
                **{TEST_KEY: test, VERDICT_KEY: verdict},
            )

    def _log(
        self,
        level: int,
        msg: object,
        args: tuple[Any, ...] | MutableMapping[str, Any] | None = None,
        exc_info: Any = None,
        extra: dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **kwargs: Any,
    ) -> None:
        """Merge LogContext values and kwargs into ``structured_data``.

        Explicit keyword arguments override ambient context values, so a
        check can report ``member=...`` while the run context supplies
        ``device=...``.

        Args:
            level: Numeric log level.
            msg: Log message.
            args: Arguments for % formatting.
            exc_info: Exception info, True, or None.
            extra: Extra dict; ``structured_data`` is added/overwritten.
            stack_info: Include a stack trace when True.
            stacklevel: Frames to skip when locating the caller.
            **kwargs: Structured key-value pairs.
        """
        context = _log_context.get()
        structured_data = {**context, **kwargs}

        if extra is None:
            extra = {}
        extra["structured_data"] = structured_data

        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


# =============================================================================
# Formatters
# =============================================================================


class StructuredFormatter(logging.Formatter):
    """Human-readable formatter with structured data.

    Format: timestamp - name - level - message | key=value key=value
    """

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        include_structured: bool = True,
    ) -> None:
        """Initialize the formatter.

        Args:
            fmt: Format string. Defaults to
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'.
            datefmt: Date format for %(asctime)s.
            include_structured: Append ' | key=value' pairs when True.

        Example:
            >>> formatter = StructuredFormatter(fmt="%(levelname)s: %(message)s")
            >>> handler.setFormatter(formatter)
            # Output: "INFO: Connected | device="Focuser 0" elapsed_ms=412"
        """
        if fmt is None:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        super().__init__(fmt, datefmt)
        self.include_structured = include_structured

    def format(self, record: logging.LogRecord) -> str:
        """Format the base message and append structured pairs.

        Args:
            record: Record to format. A missing or empty
                ``structured_data`` attribute yields the base format only.

        Returns:
            The formatted line, e.g.
            '... - INFO - Verdict | test=Name verdict=OK'.
        """
        base = super().format(record)

        if not self.include_structured:
            return base

        structured = getattr(record, "structured_data", {})
        if not structured:
            return base

        pairs = " ".join(f"{k}={_format_value(v)}" for k, v in structured.items())
        return f"{base} | {pairs}"


class JSONFormatter(logging.Formatter):
    """JSON formatter emitting one object per line (NDJSON).

    Keys: timestamp, level, logger, message, exception (when present) and
    every structured data key at top level.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a record as a single-line JSON object.

        Non-serializable values fall back to ``str()``.

        Args:
            record: Record to format.

        Returns:
            JSON string without trailing newline.

        Example:
            >>> output = JSONFormatter().format(record)
            >>> json.loads(output)["verdict"]
            'ISSUE'
        """
        log_dict: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        structured = getattr(record, "structured_data", {})
        log_dict.update(structured)

        if record.exc_info:
            log_dict["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_dict, default=str)


def _format_value(value: Any) -> str:
    """Render a structured value for the key=value format.

    None becomes 'null', strings with spaces are quoted, dicts and lists
    are JSON encoded, everything else uses ``str()``.

    Example:
        >>> _format_value("Focuser 0")
        '"Focuser 0"'
        >>> _format_value(["Position", "IsMoving"])
        '["Position", "IsMoving"]'
    """
    if value is None:
        return "null"
    if isinstance(value, str):
        if " " in value:
            return f'"{value}"'
        return value
    if isinstance(value, dict | list):
        return json.dumps(value, default=str)
    return str(value)


# =============================================================================
# Context Management
# =============================================================================


@dataclass
class LogContext:
    """Context manager adding key-value pairs to every record in scope.

    Thread-safe and supports nesting.

    Usage:
        with LogContext(device="SafetyMonitor 0"):
            logger.info("Pre-connect checks")

            with LogContext(step="connect"):
                logger.info("Connecting")  # device and step
    """

    _kwargs: dict[str, Any] = field(default_factory=dict, init=False, repr=True)
    _token: contextvars.Token[dict[str, Any]] | None = field(
        default=None, init=False, repr=False
    )

    def __init__(self, **kwargs: Any) -> None:
        """Store the pairs to inject.

        Args:
            **kwargs: Key-value pairs added to every record in scope.
        """
        self._kwargs = kwargs

    def __enter__(self) -> LogContext:
        """Merge this context over the current one and activate it.

        Returns:
            Self.
        """
        current = _log_context.get()
        new_context = {**current, **self._kwargs}
        self._token = _log_context.set(new_context)
        return self

    def __exit__(self, *args: Any) -> None:
        """Restore the context active before ``__enter__``.

        Exceptions are not suppressed.
        """
        if self._token is not None:
            _log_context.reset(self._token)


# =============================================================================
# Configuration
# =============================================================================

_configured = False
_config_lock = threading.Lock()


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
    force: bool = False,
) -> None:
    """Configure the device-conform logging system.

    Installs one stream handler on the ``device_conform`` root logger.
    Idempotent unless ``force=True``; guarded by a lock for concurrent
    initialization.

    Args:
        level: Minimum level, as int or name ('DEBUG', 'INFO', ...).
        json_format: Use JSONFormatter (NDJSON) when True, otherwise
            StructuredFormatter.
        stream: Output stream. Defaults to sys.stderr so stdout stays free
            for the conformance report.
        include_structured: Append key=value pairs in text mode.
        force: Reconfigure even when already configured.

    Example:
        >>> configure_logging(level="DEBUG")
        >>> configure_logging(json_format=True, force=True)
        >>> buffer = io.StringIO()
        >>> configure_logging(stream=buffer, force=True)
    """
    with _config_lock:
        if force:
            _reset_logging_impl()
        _configure_logging_impl(level, json_format, stream, include_structured)


def _configure_logging_impl(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
) -> None:
    """Internal implementation of configure_logging (assumes lock is held)."""
    global _configured

    if _configured:
        return

    logging.setLoggerClass(StructuredLogger)

    if stream is None:
        stream = sys.stderr
    handler = logging.StreamHandler(stream)

    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = StructuredFormatter(include_structured=include_structured)
    handler.setFormatter(formatter)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    root.addHandler(handler)

    # Verdicts stay out of the host application's root handlers.
    root.propagate = False

    _configured = True


def _reset_logging_impl() -> None:
    """Internal implementation of reset_logging (assumes lock is held)."""
    global _configured

    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    _configured = False


def reset_logging() -> None:
    """Remove all handlers and mark logging unconfigured.

    Intended for tests; the next ``configure_logging()`` or
    ``get_logger()`` call reinitializes the system.
    """
    with _config_lock:
        _reset_logging_impl()


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for a module.

    Configures logging with defaults (INFO, text, stderr) on first use.

    Args:
        name: Logger name, normally ``__name__``.

    Returns:
        StructuredLogger accepting ``logger.info("msg", key=value)``.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Poll loop finished", elapsed_ms=1500, timed_out=False)
    """
    if not _configured:
        with _config_lock:
            if not _configured:  # pragma: no branch
                _configure_logging_impl()

    logger = logging.getLogger(name)

    # setLoggerClass() guarantees the concrete type; cast documents it.
    return cast(StructuredLogger, logger)


# =============================================================================
# Transcript Integration
# =============================================================================

#: Callable receiving (test_name, verdict_name, message) for live display.
TranscriptSink = Callable[[str, str, str], None]


class TranscriptHandler(logging.Handler):
    """Handler forwarding verdict records to a live transcript sink.

    Only records carrying both ``test`` and ``verdict`` structured keys are
    forwarded, so ordinary diagnostic logging never reaches the console
    transcript. A thread-local guard stops a sink that logs from
    recursing into itself.

    Usage:
        handler = TranscriptHandler(lambda test, verdict, msg: print(...))
        logging.getLogger("device_conform").addHandler(handler)
    """

    _local = threading.local()

    def __init__(self, sink: TranscriptSink, level: int = logging.NOTSET) -> None:
        """Create the handler.

        Args:
            sink: Receives (test_name, verdict_name, message).
            level: Minimum level to forward. Default forwards everything.
        """
        super().__init__(level)
        self._sink = sink

    def emit(self, record: logging.LogRecord) -> None:
        """Forward a verdict record to the sink.

        Errors raised by the sink are routed to ``handleError()`` so a
        broken display never aborts a conformance run.
        """
        if getattr(self._local, "emitting", False):
            return

        structured = getattr(record, "structured_data", {})
        if TEST_KEY not in structured or VERDICT_KEY not in structured:
            return

        try:
            self._local.emitting = True
            self._sink(
                str(structured[TEST_KEY]),
                str(structured[VERDICT_KEY]),
                record.getMessage(),
            )
        except Exception:
            self.handleError(record)
        finally:
            self._local.emitting = False


@contextmanager
def transcript_to(sink: TranscriptSink) -> Iterator[TranscriptHandler]:
    """Mirror verdict records to ``sink`` while the block runs.

    OK and INFO verdicts are INFO records, but diagnostics may be
    configured quieter. The package root logger is opened to INFO for the
    block while its existing handlers are held at the configured level,
    so the transcript is complete and the diagnostic stream is unchanged.
    Levels and handlers are restored on exit.

    Args:
        sink: Receives (test_name, verdict_name, message).

    Yields:
        The installed TranscriptHandler.

    Example:
        >>> with transcript_to(lambda test, verdict, msg: print(test, verdict, msg)):
        ...     results = runner.run()
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    configured = root.getEffectiveLevel()
    saved = [(handler, handler.level) for handler in root.handlers]
    for handler, level in saved:
        handler.setLevel(max(level, configured))
    root.setLevel(min(logging.INFO, configured))

    transcript = TranscriptHandler(sink, level=logging.INFO)
    root.addHandler(transcript)
    try:
        yield transcript
    finally:
        root.removeHandler(transcript)
        root.setLevel(configured)
        for handler, level in saved:
            handler.setLevel(level)
