"""Observability module for device-conform.

Provides structured logging and member response-time statistics for
conformance runs.

Example:
    from device_conform.observability import get_logger, LogContext

    logger = get_logger(__name__)

    with LogContext(device="Focuser 0"):
        logger.info("Reading member", member="MaxStep")

Statistics Example:
    from device_conform.observability import MemberStats, TargetTime

    stats = MemberStats()
    stats.record("MaxStep", duration_s=0.02, target=TargetTime.FAST)
    print(stats.get_summary("MaxStep").avg_duration_s)
"""

from device_conform.observability.logging import (
    LogContext,
    StructuredLogger,
    TranscriptHandler,
    configure_logging,
    get_logger,
    reset_logging,
    transcript_to,
)
from device_conform.observability.stats import (
    MemberStats,
    TargetTime,
    TimingSummary,
)

__all__ = [
    # Logging
    "LogContext",
    "StructuredLogger",
    "TranscriptHandler",
    "configure_logging",
    "get_logger",
    "reset_logging",
    "transcript_to",
    # Statistics
    "MemberStats",
    "TargetTime",
    "TimingSummary",
]
