"""magmon command-line interface."""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import dataclasses
import json
import logging
import signal
import sys
import time
from typing import Any, Dict, List, Optional

import uvicorn
from rich.console import Console
from rich.logging import RichHandler

from magmon.api import create_app
from magmon.config import MonitorConfig, parse_interval
from magmon.monitor import build_monitor
from magmon.registry import SensorStatus, is_valid_address

_STATUS_STYLES = {
	SensorStatus.OPEN: "bold red",
	SensorStatus.CLOSED: "bold green",
	SensorStatus.UNKNOWN: "yellow",
}

# argparse dest -> MonitorConfig field
_CONFIG_OVERRIDES = {
	"adapter": "adapter",
	"restart_interval": "restart_interval",
	"connect_timeout": "connect_timeout",
	"summary_interval": "summary_interval",
	"metrics": "metrics_path",
	"host": "host",
	"port": "port",
}


def _configure_logging(level: str) -> None:
	logging.basicConfig(
		level=level.upper(),
		format="%(message)s",
		datefmt="[%X]",
		handlers=[RichHandler(rich_tracebacks=True)],
	)


def _config_from_args(args: argparse.Namespace) -> MonitorConfig:
	config = MonitorConfig.from_env()
	supplied = vars(args)
	overrides: Dict[str, Any] = {}
	# flags left out are absent from the namespace; a given value may be None (off)
	for dest, field_name in _CONFIG_OVERRIDES.items():
		if dest in supplied:
			overrides[field_name] = supplied[dest]
	return dataclasses.replace(config, **overrides)


def _cmd_serve(args: argparse.Namespace) -> int:
	config = _config_from_args(args)
	app = create_app(config=config)
	# keep the rich handler installed by _configure_logging
	uvicorn.run(app, host=config.host, port=config.port, log_config=None)
	return 0


async def _watch(args: argparse.Namespace) -> int:
	invalid = [address for address in args.addresses if not is_valid_address(address)]
	if invalid:
		raise ValueError(f"invalid MAC address: {', '.join(invalid)}")

	monitor = build_monitor(_config_from_args(args))
	console = Console()

	def _print_status(address: str, status: SensorStatus) -> None:
		if args.json:
			sys.stdout.write(json.dumps({"address": address, "status": status.value, "time": time.time()}) + "\n")
			sys.stdout.flush()
			return
		console.print(f"{address}\t{status.value}", style=_STATUS_STYLES[status])

	monitor.set_status_listener(_print_status)

	stop_event = asyncio.Event()
	loop = asyncio.get_running_loop()
	for sig in (signal.SIGINT, signal.SIGTERM):
		with contextlib.suppress(NotImplementedError):
			loop.add_signal_handler(sig, stop_event.set)

	async with monitor:
		for address in args.addresses:
			await monitor.register_device(address)
		with contextlib.suppress(asyncio.TimeoutError):
			await asyncio.wait_for(stop_event.wait(), timeout=args.runtime)
	return 0


def _cmd_watch(args: argparse.Namespace) -> int:
	return asyncio.run(_watch(args))


def _build_parser() -> argparse.ArgumentParser:
	common = argparse.ArgumentParser(add_help=False, argument_default=argparse.SUPPRESS)
	common.add_argument("--adapter", help="BLE adapter identifier (e.g. hci0)")
	common.add_argument("--restart-interval", type=float, help="Quiet period before scanning resumes, seconds")
	common.add_argument("--connect-timeout", type=float, help="Connection timeout seconds")
	common.add_argument(
		"--summary-interval",
		type=parse_interval,
		help="Seconds between device summaries in the log (0 or off disables them)",
	)
	common.add_argument("--metrics", help="Path to a CSV file for connection events")
	common.add_argument("--log-level", default="INFO", help="Logging level")

	parser = argparse.ArgumentParser(description="magmon door sensor monitor")
	sub = parser.add_subparsers(dest="command", required=True)

	serve = sub.add_parser("serve", parents=[common], help="Run the HTTP server")
	serve.add_argument("--host", default=argparse.SUPPRESS, help="Interface to bind")
	serve.add_argument("--port", type=int, default=argparse.SUPPRESS, help="Port to listen on")
	serve.set_defaults(handler=_cmd_serve)

	watch = sub.add_parser("watch", parents=[common], help="Print status changes of the given sensors")
	watch.add_argument("addresses", nargs="+", metavar="ADDRESS", help="Sensor address (xx:xx:xx:xx:xx:xx)")
	watch.add_argument("--runtime", type=float, help="Stop after this many seconds")
	watch.add_argument("--json", action="store_true", help="Output JSON lines")
	watch.set_defaults(handler=_cmd_watch)

	return parser


def main(argv: Optional[List[str]] = None) -> int:
	parser = _build_parser()
	args = parser.parse_args(argv)
	_configure_logging(args.log_level)
	try:
		return args.handler(args)
	except ValueError as exc:
		parser.error(str(exc))


if __name__ == "__main__":
	sys.exit(main())
