"""Command line entry point for the TEG Influx collector."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
from pathlib import Path
from typing import Any, Dict, Optional

from .config import DEFAULT_ENV_PATH, ServiceConfig, build_config, load_env_file, redact_config
from .errors import AuthError
from .metrics import snapshot_points
from .service import GatewayService, PollingResult

LOGGER = logging.getLogger("teg_service.cli")


def configure_logging(level_name: str) -> None:
    numeric_level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def _load_environment(explicit: Optional[str]) -> None:
    env_file = explicit or os.environ.get("TEG_ENV_FILE")
    candidates = []
    if env_file:
        candidates.append(Path(env_file))
    candidates.append(Path.cwd() / ".env")
    candidates.append(DEFAULT_ENV_PATH)

    seen: set[Path] = set()
    for candidate in candidates:
        resolved = candidate.resolve()
        if resolved in seen:
            continue
        seen.add(resolved)
        if resolved.exists():
            load_env_file(resolved)
            break


def _load_config(env_file: Optional[str]) -> ServiceConfig:
    _load_environment(env_file)
    config = build_config()
    configure_logging(config.log_level)
    LOGGER.debug("Configuration: %s", redact_config(config))
    return config


def _result_payload(result: PollingResult, prefix: str) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "success": result.success,
        "duration": result.duration,
        "timestamp": result.timestamp.isoformat(),
        "written": result.written,
        "failed_endpoint": result.failed_endpoint,
        "gateway_unreachable": result.gateway_unreachable,
        "collect_error": str(result.collect_error) if result.collect_error else None,
        "sink_error": result.sink_error,
    }
    if result.snapshot is not None:
        snapshot = result.snapshot
        payload["summary"] = {
            "gateway_id": snapshot.status.din,
            "site_name": snapshot.site_info.site_name,
            "firmware_version": snapshot.status.version,
            "grid_status": snapshot.grid_status.grid_status,
            "charge_percent": snapshot.soe.percentage,
            "site_power": snapshot.meters.site.instant_power,
            "solar_power": snapshot.meters.solar.instant_power,
            "inverters": len(snapshot.vitals.inverters),
            "device_alerts": len(snapshot.vitals.alerts),
            "points": len(snapshot_points(snapshot, prefix)),
        }
    return payload


def _poll_command(args: argparse.Namespace, config: ServiceConfig) -> int:
    async def _run() -> Dict[str, Any]:
        service = GatewayService(config)
        try:
            result = await service.poll_once(push=not args.no_push, store_result=False)
            return _result_payload(result, config.measurement_prefix)
        finally:
            await service.stop()

    try:
        payload = asyncio.run(_run())
    except AuthError as exc:
        LOGGER.error("Authentication failed: %s", exc)
        return 1
    print(json.dumps(payload, indent=2 if args.pretty else None, default=str))
    return 0 if payload["success"] else 1


def _run_command(args: argparse.Namespace, config: ServiceConfig) -> int:
    async def _run() -> int:
        service = GatewayService(config)
        stop_requested = asyncio.Event()
        loop = asyncio.get_running_loop()

        def _handle_signal(signum: int) -> None:
            LOGGER.info("Received signal %s - shutting down", signal.Signals(signum).name)
            stop_requested.set()

        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, _handle_signal, signum)

        await service.start()
        stopper = asyncio.create_task(stop_requested.wait(), name="teg-signal-wait")
        runner = asyncio.create_task(service.wait(), name="teg-loop-wait")
        try:
            await asyncio.wait({stopper, runner}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            runner.cancel()
            await service.stop()

        if service.fatal_error is not None:
            LOGGER.critical("Fatal error: %s", service.fatal_error)
            return 1
        return 0

    return asyncio.run(_run())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Collect Tesla Energy Gateway telemetry into InfluxDB")
    subparsers = parser.add_subparsers(dest="command", required=True)

    poll = subparsers.add_parser("poll", help="Execute a single polling cycle")
    poll.add_argument("--env-file", help="Path to .env file overriding defaults")
    poll.add_argument(
        "--no-push",
        action="store_true",
        help="Do not write results to InfluxDB",
    )
    poll.add_argument(
        "--pretty",
        action="store_true",
        help="Pretty-print JSON output",
    )
    poll.set_defaults(func=_poll_command)

    run = subparsers.add_parser("run", help="Poll on the configured interval until interrupted")
    run.add_argument("--env-file", help="Path to .env file overriding defaults")
    run.set_defaults(func=_run_command)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = _load_config(args.env_file)
    except RuntimeError as exc:
        LOGGER.error("Invalid configuration: %s", exc)
        return 2
    try:
        return args.func(args, config)
    except Exception as exc:  # pragma: no cover - CLI surface
        LOGGER.exception("Command failed: %s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
