"""Command line entry point: ``ingestbench run`` and ``ingestbench provision``."""
from __future__ import annotations

import argparse
import logging
import os
import signal
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ingestbench.config import BenchConfig, ConfigError, parse_duration
from ingestbench.coordinator import CycleCoordinator
from ingestbench.counters import SharedCounters
from ingestbench.cycle import StopSignal
from ingestbench.identities import IdentitySourceError, load_identities
from ingestbench.logs import setup_logging
from ingestbench.monitor import DeliveryMonitor
from ingestbench.provision import provision
from ingestbench.store import RecordStore, StoreError

LOGGER = logging.getLogger(__name__)

_DATABASE_FIELDS = (
    "db_host",
    "db_port",
    "db_user",
    "db_password",
    "db_name",
    "db_sslmode",
    "db_table",
)

_RUN_FIELDS = (
    "token_file",
    "device_count",
    "mqtt_host",
    "mqtt_port",
    "mqtt_tls",
    "topic",
    "qos",
    "publish_timeout",
    "interval",
    "cycle_count",
    "connect_wait",
    "log_cycles",
    "min_value",
    "max_value",
    "points_per_message",
    "monitor_interval",
    "advisory_threshold",
) + _DATABASE_FIELDS


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--env-file", type=Path, help="Path to the .env config file.")
    parser.add_argument("--log-level", dest="log_level", help="Logging level (default INFO).")
    parser.add_argument("--log-dir", dest="log_dir", type=Path, help="Directory for session log files.")


def _add_database_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("database")
    group.add_argument("--db-host", dest="db_host", help="Database host.")
    group.add_argument("--db-port", dest="db_port", type=int, help="Database port.")
    group.add_argument("--db-user", dest="db_user", help="Database user.")
    group.add_argument("--db-pass", dest="db_password", help="Database password.")
    group.add_argument("--db-name", dest="db_name", help="Database name.")
    group.add_argument("--db-ssl", dest="db_sslmode", help="Database SSL mode.")
    group.add_argument("--db-table", dest="db_table", help="Table holding ingested telemetry.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ingestbench",
        description="Synchronized MQTT telemetry load test with database ingestion check.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run the synchronized publish test.")
    _add_common_args(run)
    run.add_argument("--token-file", dest="token_file", type=Path, help="Device token file.")
    run.add_argument("--clients", dest="device_count", type=int, help="Number of simulated devices.")
    run.add_argument("--mqtt-host", dest="mqtt_host", help="MQTT broker host.")
    run.add_argument("--mqtt-port", dest="mqtt_port", type=int, help="MQTT broker port.")
    run.add_argument(
        "--tls", dest="mqtt_tls", action=argparse.BooleanOptionalAction, default=None,
        help="Use TLS for broker connections.",
    )
    run.add_argument("--topic", dest="topic", help="Publish topic.")
    run.add_argument("--qos", dest="qos", type=int, choices=[0, 1, 2], help="MQTT QoS (0, 1 or 2).")
    run.add_argument(
        "--publish-timeout", dest="publish_timeout", type=parse_duration,
        help="Maximum wait for a publish acknowledgement (e.g. 10s).",
    )
    run.add_argument(
        "--interval", dest="interval", type=parse_duration,
        help="Time between send cycles (e.g. 10ms).",
    )
    run.add_argument("--cycles", dest="cycle_count", type=int, help="Number of send cycles.")
    run.add_argument(
        "--connect-wait", dest="connect_wait", type=parse_duration,
        help="Settle time after spawning devices (e.g. 3s).",
    )
    run.add_argument(
        "--log-cycles", dest="log_cycles", action=argparse.BooleanOptionalAction, default=None,
        help="Log progress after every cycle.",
    )
    run.add_argument("--min-value", dest="min_value", type=float, help="Minimum sensor value.")
    run.add_argument("--max-value", dest="max_value", type=float, help="Maximum sensor value.")
    run.add_argument(
        "--data-points", dest="points_per_message", type=int,
        help="Data points per message.",
    )
    run.add_argument(
        "--log-interval", dest="monitor_interval", type=parse_duration,
        help="Delivery monitor interval (e.g. 10s).",
    )
    run.add_argument(
        "--advisory-threshold", dest="advisory_threshold", type=float,
        help="Overall write ratio (percent) above which a catch-up note is printed.",
    )
    run.add_argument(
        "--observe", type=parse_duration, default=0.0,
        help="Keep the delivery monitor running this long after the last cycle.",
    )
    run.add_argument(
        "--hold", action="store_true",
        help="Keep the delivery monitor running until Enter is pressed.",
    )
    _add_database_args(run)
    run.set_defaults(handler=run_command)

    prov = subparsers.add_parser("provision", help="Create test devices in the platform database.")
    _add_common_args(prov)
    prov.add_argument("--count", type=int, default=3, help="Number of devices to create.")
    prov.add_argument("--tenant", help="Tenant id (defaults to TENANT_ID).")
    prov.add_argument("--prefix", help="Device name prefix (defaults to DEVICE_PREFIX or 'bench').")
    prov.add_argument("--number", help="Device name number (defaults to DEVICE_NUMBER or '1').")
    prov.add_argument("--batch", type=int, default=100, help="Devices per transaction.")
    prov.add_argument("--output", type=Path, default=Path("data"), help="Output directory.")
    prov.add_argument("--id-file", default="device_id.txt", help="File name for device ids.")
    prov.add_argument("--token-file", default="device_tokens.txt", help="File name for device tokens.")
    prov.add_argument(
        "--overwrite", action="store_true",
        help="Overwrite the output files instead of appending.",
    )
    _add_database_args(prov)
    prov.set_defaults(handler=provision_command)
    return parser


def _overrides(args: argparse.Namespace, fields: Sequence[str]) -> Dict[str, Any]:
    values = {name: getattr(args, name, None) for name in fields}
    values["log_level"] = args.log_level.upper() if args.log_level else None
    values["log_dir"] = args.log_dir
    return values


def load_config(args: argparse.Namespace, fields: Sequence[str]) -> BenchConfig:
    config = BenchConfig.load(args.env_file)
    return config.with_overrides(**_overrides(args, fields)).validate()


def configure_signal_handlers(stop_signal: StopSignal) -> None:
    def _handler(signum: int, _frame) -> None:
        if not stop_signal.is_set():
            LOGGER.warning("Signal %s received, stopping run...", signal.Signals(signum).name)
        stop_signal.trip()

    for sig in (signal.SIGINT, getattr(signal, "SIGTERM", None)):
        if sig is None:
            continue
        signal.signal(sig, _handler)


def _observe(monitor: DeliveryMonitor, seconds: float, hold: bool) -> None:
    if monitor.degraded or not monitor.is_alive():
        return
    signal.signal(signal.SIGINT, signal.default_int_handler)
    try:
        if seconds > 0:
            LOGGER.info("Delivery monitor keeps observing for %.1fs", seconds)
            threading.Event().wait(seconds)
        if hold:
            input("Press Enter to exit...\n")
    except (KeyboardInterrupt, EOFError):
        LOGGER.info("Observation ended")


def run_command(args: argparse.Namespace) -> int:
    try:
        config = load_config(args, _RUN_FIELDS)
    except ConfigError as exc:
        raise SystemExit(f"[ERROR] {exc}")

    session_id = datetime.now().strftime("run-%Y%m%d-%H%M%S")
    log_path = setup_logging(session_id, config.log_dir, config.log_level)
    LOGGER.info("Load test starting, session %s", session_id)
    LOGGER.info("Current config:")
    for line in config.describe():
        LOGGER.info(line)

    try:
        identities = load_identities(config.token_file)
    except IdentitySourceError as exc:
        LOGGER.error("Cannot read device tokens: %s", exc)
        raise SystemExit(f"[ERROR] {exc}")

    counters = SharedCounters()
    stop_signal = StopSignal()
    configure_signal_handlers(stop_signal)

    monitor = DeliveryMonitor(config, counters, RecordStore(config))
    monitor.start()
    if not monitor.ready.wait(config.monitor_init_timeout):
        LOGGER.warning(
            "Delivery monitor not ready after %.1fs, starting without it",
            config.monitor_init_timeout,
        )

    coordinator = CycleCoordinator(config, identities, counters, stop_signal=stop_signal)
    summary = coordinator.run()
    if not summary.aborted:
        _observe(monitor, args.observe, args.hold)
    monitor.stop()
    if log_path is not None:
        LOGGER.info("Log file: %s", log_path)
    return 1 if summary.aborted else 0


def provision_command(args: argparse.Namespace) -> int:
    try:
        config = load_config(args, _DATABASE_FIELDS)
    except ConfigError as exc:
        raise SystemExit(f"[ERROR] {exc}")
    setup_logging("provision", None, config.log_level)

    tenant = args.tenant or os.getenv("TENANT_ID")
    if not tenant:
        raise SystemExit("[ERROR] A tenant id is required (--tenant or TENANT_ID).")
    prefix = args.prefix or os.getenv("DEVICE_PREFIX") or "bench"
    number = args.number or os.getenv("DEVICE_NUMBER") or "1"

    try:
        devices = provision(
            config,
            count=args.count,
            tenant_id=tenant,
            prefix=prefix,
            number=number,
            batch_size=args.batch,
            output_dir=args.output,
            id_file=args.id_file,
            token_file=args.token_file,
            append=not args.overwrite,
        )
    except (StoreError, ValueError) as exc:
        LOGGER.error("Device creation failed: %s", exc)
        raise SystemExit(f"[ERROR] {exc}")
    LOGGER.info("Device creation finished: %d devices", len(devices))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.handler(args)
