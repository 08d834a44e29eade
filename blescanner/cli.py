"""blescanner command-line interface."""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from typing import Any, List, Optional

from rich.console import Console
from rich.table import Table

from blescanner.bleak_backend import build_manager
from blescanner.config import LinkConfig
from blescanner.lifecycle import ConnectionLifecycleManager
from blescanner.models import PeripheralHandle


def _config_from_args(args: argparse.Namespace) -> LinkConfig:
	config = LinkConfig.from_env()
	return config.with_overrides(
		scan_timeout=args.timeout,
		adapter=args.adapter,
		log_path=args.log,
		max_retries=getattr(args, "max_retries", None),
		connect_timeout=getattr(args, "connect_timeout", None),
		pairing_enabled=False if getattr(args, "no_pairing", False) else None,
	)


def _echo_log(manager: ConnectionLifecycleManager, console: Console) -> None:
	def _print(line: str) -> None:
		if line:
			console.print(line, markup=False, highlight=False)

	manager.log.add_listener(_print)


async def _wait_for_device(
	manager: ConnectionLifecycleManager,
	query: str,
	timeout: Optional[float],
) -> Optional[PeripheralHandle]:
	found = asyncio.Event()

	def _on_discovered(handle: PeripheralHandle) -> None:
		if manager.registry.find(query) is not None:
			found.set()

	manager.add_discovery_listener(_on_discovered)
	try:
		await manager.start_scan()
		with contextlib.suppress(asyncio.TimeoutError):
			await asyncio.wait_for(found.wait(), timeout=timeout)
	finally:
		manager.remove_discovery_listener(_on_discovered)
		await manager.stop_scan()
	return manager.registry.find(query)


async def _cmd_scan(args: argparse.Namespace) -> int:
	config = _config_from_args(args)
	manager = build_manager(config)
	async with manager:
		await manager.start_scan()
		with contextlib.suppress(asyncio.TimeoutError):
			await asyncio.wait_for(_until_scan_stops(manager), timeout=(config.scan_timeout or 0) + 5.0)
		await manager.stop_scan()
		data = [handle.to_dict() for handle in manager.discovered_devices]

	if args.json:
		json.dump(data, sys.stdout, indent=2)
		sys.stdout.write("\n")
		return 0
	console = Console()
	table = Table(title="Discovered Peripherals", show_lines=False)
	for column in ("identifier", "name"):
		table.add_column(column.upper())
	for entry in data:
		table.add_row(str(entry["identifier"]), str(entry["name"] or "(no name)"))
	console.print(table)
	return 0


async def _until_scan_stops(manager: ConnectionLifecycleManager) -> None:
	while manager.is_scanning:
		await asyncio.sleep(0.1)


async def _cmd_connect(args: argparse.Namespace) -> int:
	config = _config_from_args(args)
	manager = build_manager(config)
	console = Console()
	_echo_log(manager, console)

	stop_event = asyncio.Event()

	def _signal_handler(*_: Any) -> None:
		stop_event.set()

	loop = asyncio.get_running_loop()
	for sig in (signal.SIGINT, signal.SIGTERM):
		with contextlib.suppress(NotImplementedError):
			loop.add_signal_handler(sig, _signal_handler)

	async with manager:
		handle = await _wait_for_device(manager, args.device, config.scan_timeout)
		if handle is None:
			console.print(f"Device {args.device!r} not found.")
			return 1
		await manager.connect(handle)
		with contextlib.suppress(asyncio.TimeoutError):
			await asyncio.wait_for(stop_event.wait(), timeout=args.runtime)
		await manager.disconnect()
		await manager.wait_idle()
	return 0


def _cmd_serve(args: argparse.Namespace) -> int:
	import uvicorn

	uvicorn.run("blescanner.api:app", host=args.host, port=args.port, reload=args.reload)
	return 0


def _build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(description="BLE central connection utilities")
	parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
	sub = parser.add_subparsers(dest="command", required=True)

	def _common(command: argparse.ArgumentParser) -> None:
		command.add_argument("--timeout", type=float, help="Scan timeout in seconds")
		command.add_argument("--adapter", help="BLE adapter identifier")
		command.add_argument("--log", help="Append the text log to this file")

	scan = sub.add_parser("scan", help="Discover nearby BLE peripherals")
	_common(scan)
	scan.add_argument("--json", action="store_true", help="Output JSON")
	scan.set_defaults(handler=_cmd_scan)

	connect = sub.add_parser("connect", help="Connect, subscribe and activate a peripheral")
	_common(connect)
	connect.add_argument("device", help="Identifier (MAC/UUID) or name of the peripheral")
	connect.add_argument("--runtime", type=float, help="Stay connected this many seconds")
	connect.add_argument("--max-retries", type=int, help="Reconnect attempts before unpairing")
	connect.add_argument("--connect-timeout", type=float, help="Connection timeout seconds")
	connect.add_argument("--no-pairing", action="store_true", help="Skip OS-level pairing")
	connect.set_defaults(handler=_cmd_connect)

	serve = sub.add_parser("serve", help="Run the HTTP control API")
	serve.add_argument("--host", default="127.0.0.1")
	serve.add_argument("--port", type=int, default=8000)
	serve.add_argument("--reload", action="store_true")
	serve.set_defaults(handler=_cmd_serve)

	return parser


def main(argv: Optional[List[str]] = None) -> int:
	parser = _build_parser()
	args = parser.parse_args(argv)
	logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
	try:
		if args.command == "serve":
			return args.handler(args)
		return asyncio.run(args.handler(args))
	except ValueError as exc:
		parser.error(str(exc))
	return 2


if __name__ == "__main__":
	sys.exit(main())
