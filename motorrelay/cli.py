"""motor-relay command-line interface."""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import inspect
import json
import logging
import signal
import sys
from typing import Any, List, Optional

import uvicorn
from rich.console import Console
from rich.table import Table

from motorrelay.agent import DeviceAgent
from motorrelay.config import RelaySettings
from motorrelay.errors import InvalidDateRange, RelayError
from motorrelay.models import DateRangeQuery
from motorrelay.store import MAX_RESULTS, LogStore


def _date_range(args: argparse.Namespace) -> DateRangeQuery:
	try:
		return DateRangeQuery.from_payload({"startDate": args.start, "endDate": args.end})
	except InvalidDateRange as exc:
		raise ValueError(str(exc)) from exc


def _open_store(settings: RelaySettings) -> LogStore:
	store = LogStore(settings.database_url)
	if not store.connect():
		raise ValueError("log store unavailable; set RELAY_DATABASE_URL")
	return store


def _cmd_serve(args: argparse.Namespace) -> int:
	settings = RelaySettings.from_env()
	host = args.host or settings.host
	port = args.port or settings.port
	if args.reload:
		uvicorn.run("motorrelay.api:app", host=host, port=port, reload=True)
		return 0
	from motorrelay.api import create_app

	uvicorn.run(create_app(settings), host=host, port=port)
	return 0


def _cmd_logs(args: argparse.Namespace) -> int:
	query = _date_range(args)
	store = _open_store(RelaySettings.from_env())
	try:
		entries = [entry.to_dict() for entry in store.find(query, limit=args.limit)]
	finally:
		store.close()
	if args.json:
		json.dump(entries, sys.stdout, indent=2)
		sys.stdout.write("\n")
		return 0
	table = Table(title="Motor Duty Cycles", show_lines=False)
	for column in ("serverTime", "macAddress", "onTime", "offTime", "duration"):
		table.add_column(column)
	for entry in entries:
		table.add_row(*(str(entry.get(key) or "") for key in ("serverTime", "macAddress", "onTime", "offTime", "duration")))
	Console().print(table)
	return 0


def _cmd_clear_logs(args: argparse.Namespace) -> int:
	query = _date_range(args)
	if query.is_unrestricted and not args.yes:
		raise ValueError("refusing to delete every log without --yes")
	store = _open_store(RelaySettings.from_env())
	try:
		deleted = store.delete_many(query)
	finally:
		store.close()
	sys.stdout.write(f"Deleted {deleted} logs.\n")
	return 0


async def _cmd_agent(args: argparse.Namespace) -> int:
	agent = DeviceAgent(
		args.url,
		mac=args.mac,
		status_interval=args.status_interval,
		base_backoff=args.base_backoff,
		max_backoff=args.max_backoff,
	)

	def _signal_handler(*_: Any) -> None:
		agent.request_stop()

	loop = asyncio.get_running_loop()
	for sig in (signal.SIGINT, signal.SIGTERM):
		with contextlib.suppress(NotImplementedError):
			loop.add_signal_handler(sig, _signal_handler)

	try:
		await agent.run(runtime=args.runtime)
	finally:
		agent.request_stop()
	return 0


def _build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(description="Motor controller relay")
	parser.add_argument("--log-level", default="INFO", help="Python logging level")
	sub = parser.add_subparsers(dest="command", required=True)

	serve = sub.add_parser("serve", help="Run the websocket relay")
	serve.add_argument("--host", help="Listen address (default: HOST or 0.0.0.0)")
	serve.add_argument("--port", type=int, help="Listen port (default: PORT or 3000)")
	serve.add_argument("--reload", action="store_true", help="Auto-reload on code changes")
	serve.set_defaults(handler=_cmd_serve)

	logs = sub.add_parser("logs", help="Show stored duty-cycle logs")
	logs.add_argument("--start", help="First day (YYYY-MM-DD), inclusive")
	logs.add_argument("--end", help="Last day (YYYY-MM-DD), inclusive")
	logs.add_argument("--limit", type=int, default=MAX_RESULTS, help="Maximum rows (capped at 100)")
	logs.add_argument("--json", action="store_true", help="Output JSON")
	logs.set_defaults(handler=_cmd_logs)

	clear = sub.add_parser("clear-logs", help="Delete stored duty-cycle logs")
	clear.add_argument("--start", help="First day (YYYY-MM-DD), inclusive")
	clear.add_argument("--end", help="Last day (YYYY-MM-DD), inclusive")
	clear.add_argument("--yes", action="store_true", help="Confirm deleting every log")
	clear.set_defaults(handler=_cmd_clear_logs)

	agent = sub.add_parser("agent", help="Run a simulated device against a relay")
	agent.add_argument("url", help="Relay websocket URL, e.g. ws://localhost:3000/")
	agent.add_argument("--mac", default="24:0A:C4:00:00:01", help="Reported MAC address")
	agent.add_argument("--status-interval", type=float, default=5.0, help="Seconds between status updates")
	agent.add_argument("--base-backoff", type=float, default=2.0, help="Initial reconnect backoff")
	agent.add_argument("--max-backoff", type=float, default=60.0, help="Maximum reconnect backoff")
	agent.add_argument("--runtime", type=float, help="Optional run duration seconds")
	agent.set_defaults(handler=_cmd_agent)

	return parser


def main(argv: Optional[List[str]] = None) -> int:
	parser = _build_parser()
	args = parser.parse_args(argv)
	logging.basicConfig(
		level=getattr(logging, str(args.log_level).upper(), logging.INFO),
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)
	try:
		if inspect.iscoroutinefunction(args.handler):
			return asyncio.run(args.handler(args))
		return args.handler(args)
	except (ValueError, RelayError) as exc:
		parser.error(str(exc))


if __name__ == "__main__":
	sys.exit(main())
