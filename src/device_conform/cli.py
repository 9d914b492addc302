"""CLI entry point for device-conform.

Provides the ``device-conform`` console script with subcommands:

- ``alpaca`` - Test an Alpaca device over HTTP
- ``native`` - Test an in-process driver loaded from ``module:factory``
- ``twin`` - Test an in-process digital twin
- ``serve-twin`` - Serve digital twins over the Alpaca API
- ``discover`` - List Alpaca devices on the local network

Usage::

    device-conform alpaca --address 192.168.1.20 --device-type focuser
    device-conform twin --device-type safetymonitor --report-timings
    device-conform serve-twin --port 11111
    device-conform discover --timeout 3

Exit codes: 0 when the device passed cleanly, 1 when the report lists
issues, errors or configuration alerts, 2 when the run could not start.
"""

from __future__ import annotations

import argparse
import sys
import threading
from contextlib import nullcontext

from device_conform.conform.manager import ConformanceRunner, DeviceFactory
from device_conform.conform.report import render_report
from device_conform.conform.results import ResultSet
from device_conform.config import DEFAULT_ALPACA_PORT, ConformConfig
from device_conform.drivers.discovery import AlpacaDiscoverer, DiscoveryCache, device_key
from device_conform.drivers.exceptions import ConformError
from device_conform.drivers.factory import create_device, twin_factory
from device_conform.drivers.twin import TwinConfig
from device_conform.drivers.types import DeviceCategory, Technology
from device_conform.observability import (
    configure_logging,
    get_logger,
    transcript_to,
)

logger = get_logger(__name__)

__all__ = ["EXIT_CLEAN", "EXIT_FINDINGS", "EXIT_FATAL", "build_parser", "main"]

EXIT_CLEAN = 0
EXIT_FINDINGS = 1
EXIT_FATAL = 2

# Seconds between checks for Ctrl+C while a run is in progress.
_JOIN_INTERVAL_S = 0.2


def _category(text: str) -> DeviceCategory:
    try:
        return DeviceCategory.parse(text)
    except ValueError as exc:
        choices = ", ".join(c.alpaca_name for c in DeviceCategory)
        raise argparse.ArgumentTypeError(f"{exc} (choose from {choices})") from exc


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands."""
    logging_flags = argparse.ArgumentParser(add_help=False)
    logging_flags.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Diagnostic log level (default: WARNING)",
    )
    logging_flags.add_argument(
        "--json-logs", action="store_true", help="Write diagnostic logs as NDJSON"
    )

    run_flags = argparse.ArgumentParser(add_help=False, parents=[logging_flags])
    run_flags.add_argument(
        "--device-type", type=_category, required=True, help="Device family, e.g. focuser"
    )
    run_flags.add_argument(
        "--no-properties", action="store_true", help="Skip common-member and property tests"
    )
    run_flags.add_argument("--no-methods", action="store_true", help="Skip method tests")
    run_flags.add_argument(
        "--no-performance", action="store_true", help="Skip transaction-rate tests"
    )
    run_flags.add_argument(
        "--connect-timeout",
        type=float,
        default=5.0,
        help="Seconds allowed for Connect()/Disconnect() (default: 5)",
    )
    run_flags.add_argument(
        "--performance-loop",
        type=float,
        default=5.0,
        help="Seconds each transaction-rate loop runs (default: 5)",
    )
    run_flags.add_argument(
        "--report-timings",
        action="store_true",
        help="Include every member response time in the report",
    )
    run_flags.add_argument(
        "--display-method-calls",
        action="store_true",
        help="Log each device call as it is made",
    )
    run_flags.add_argument(
        "--no-transcript",
        action="store_true",
        help="Do not print verdicts while the run is in progress",
    )

    parser = argparse.ArgumentParser(
        prog="device-conform",
        description="Conformance tests for ASCOM Alpaca and native astronomy devices",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    alpaca = subparsers.add_parser(
        "alpaca", parents=[run_flags], help="Test an Alpaca device over HTTP"
    )
    alpaca.add_argument("--address", default="127.0.0.1", help="Alpaca server host")
    alpaca.add_argument("--port", type=int, default=DEFAULT_ALPACA_PORT, help="Alpaca port")
    alpaca.add_argument("--device-number", type=int, default=0, help="Alpaca device number")

    native = subparsers.add_parser(
        "native", parents=[run_flags], help="Test an in-process driver"
    )
    native.add_argument("driver_path", help="Driver factory as package.module:function")
    native.add_argument(
        "--driver-access",
        action="store_true",
        help="The driver is wrapped by a client library that reports every "
        "unimplemented member with the generic not-implemented error",
    )

    twin = subparsers.add_parser(
        "twin", parents=[run_flags], help="Test an in-process digital twin"
    )
    twin.add_argument(
        "--interface-version", type=int, default=None, help="InterfaceVersion to report"
    )
    twin.add_argument(
        "--not-implemented",
        action="append",
        default=[],
        metavar="MEMBER",
        help="Member the twin reports as not implemented (repeatable)",
    )

    serve = subparsers.add_parser(
        "serve-twin", parents=[logging_flags], help="Serve digital twins over Alpaca"
    )
    serve.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve.add_argument("--port", type=int, default=DEFAULT_ALPACA_PORT, help="Bind port")

    discover = subparsers.add_parser(
        "discover", parents=[logging_flags], help="List Alpaca devices on the network"
    )
    discover.add_argument(
        "--timeout", type=float, default=2.0, help="Seconds to wait for replies"
    )
    return parser


def config_from_args(args: argparse.Namespace) -> ConformConfig:
    """Translate parsed run arguments into a ConformConfig."""
    config = ConformConfig(
        category=args.device_type,
        test_properties=not args.no_properties,
        test_methods=not args.no_methods,
        test_performance=not args.no_performance,
        connect_disconnect_timeout_s=args.connect_timeout,
        performance_loop_s=args.performance_loop,
        report_good_timings=args.report_timings,
        report_bad_timings=args.report_timings,
        display_method_calls=args.display_method_calls,
    )
    if args.command == "alpaca":
        config.technology = Technology.ALPACA
        config.alpaca_address = args.address
        config.alpaca_port = args.port
        config.device_number = args.device_number
    elif args.command == "native":
        config.technology = (
            Technology.DRIVER_ACCESS if args.driver_access else Technology.NATIVE
        )
        config.driver_path = args.driver_path
    else:
        config.technology = Technology.NATIVE
    return config


def _print_verdict(test: str, verdict: str, message: str) -> None:
    print(f"{test:<24} {verdict:<6} {message}", flush=True)


def _execute(runner: ConformanceRunner) -> ResultSet:
    """Run in a worker thread so Ctrl+C can stop it at a step boundary."""
    outcome: dict[str, object] = {}

    def work() -> None:
        try:
            outcome["results"] = runner.run()
        except Exception as exc:
            outcome["error"] = exc

    worker = threading.Thread(target=work, name="conformance-run", daemon=True)
    worker.start()
    try:
        while worker.is_alive():
            worker.join(_JOIN_INTERVAL_S)
    except KeyboardInterrupt:
        logger.warning("Stop requested, finishing the current step")
        runner.stop()
        worker.join()

    error = outcome.get("error")
    if isinstance(error, Exception):
        raise error
    results = outcome["results"]
    assert isinstance(results, ResultSet)
    return results


def run_conformance(args: argparse.Namespace) -> int:
    """Run one conformance test from parsed arguments and print the report."""
    config = config_from_args(args)
    factory: DeviceFactory = create_device
    if args.command == "twin":
        factory = twin_factory(
            TwinConfig(
                category=args.device_type,
                interface_version=args.interface_version,
                not_implemented=frozenset(args.not_implemented),
            )
        )

    transcript = nullcontext() if args.no_transcript else transcript_to(_print_verdict)
    try:
        with transcript:
            results = _execute(ConformanceRunner(config, device_factory=factory))
    except ConformError as exc:
        logger.error("Conformance run could not start", error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FATAL

    print()
    print(render_report(results, config), end="")
    if results.counts().clean and not results.cancelled:
        return EXIT_CLEAN
    return EXIT_FINDINGS


def run_discover(timeout_s: float) -> int:
    """Print every Alpaca device that answers discovery."""
    endpoints = DiscoveryCache(AlpacaDiscoverer(), key=device_key).get(timeout_s)
    if not endpoints:
        print("No Alpaca devices found")
        return EXIT_CLEAN
    for endpoint in endpoints:
        meta = endpoint.metadata
        if meta:
            print(
                f"{endpoint.base_url}  {meta.get('DeviceType')} "
                f"{meta.get('DeviceNumber')}  {meta.get('DeviceName')}"
            )
        else:
            print(endpoint.base_url)
    return EXIT_CLEAN


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point for device-conform.

    Args:
        argv: Arguments without the program name. ``sys.argv[1:]`` when
            None.

    Returns:
        Process exit code.

    Raises:
        SystemExit: On --help or argument parsing errors.
    """
    args = build_parser().parse_args(argv)
    configure_logging(level=args.log_level, json_format=args.json_logs, force=True)

    if args.command == "serve-twin":
        from device_conform.web.app import serve

        serve(host=args.host, port=args.port)
        return EXIT_CLEAN
    if args.command == "discover":
        return run_discover(args.timeout)
    return run_conformance(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
