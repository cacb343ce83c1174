from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

from .config import MonitorConfig
from .logging_setup import configure_logging
from .messages import TabCommand
from .monitor import TabMonitor
from .shared_store import SharedStore
from .status import collect_status
from .windows import default_window_backend

_LOGGER = logging.getLogger("tabwatch.cli")


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True, ensure_ascii=False))


def _store(args: argparse.Namespace) -> SharedStore:
    root = getattr(args, "data_dir", None)
    return SharedStore(Path(root) if root else None)


def cmd_host(args: argparse.Namespace) -> int:
    from .bridge import TabBridge

    return asyncio.run(TabBridge(_store(args)).run())


def cmd_status(args: argparse.Namespace) -> int:
    report = collect_status(_store(args))
    _print_json(report)
    return 0 if report["ok"] else 1


def cmd_request_update(args: argparse.Namespace) -> int:
    store = _store(args)
    browsers = store.connected_browsers()
    for browser in browsers:
        store.enqueue_command(TabCommand.request_update(browser))
    _print_json({"requested": browsers})
    return 0 if browsers else 1


async def _watch(monitor: TabMonitor, *, once: bool) -> None:
    if once:
        monitor.poll_tabs()
        monitor.refresh_windows()
        print(json.dumps(monitor.snapshot(), ensure_ascii=False), flush=True)
        return
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop.set)
    await monitor.run(stop)


def cmd_watch(args: argparse.Namespace) -> int:
    cfg = MonitorConfig.from_env()
    if args.interval is not None:
        cfg = replace(cfg, tabs_interval_s=max(0.1, float(args.interval)))

    last: dict[str, Any] = {}
    monitor: TabMonitor

    def emit() -> None:
        nonlocal last
        snap = monitor.snapshot()
        if snap != last:
            last = snap
            print(json.dumps(snap, ensure_ascii=False), flush=True)

    monitor = TabMonitor(
        _store(args),
        default_window_backend(),
        config=cfg,
        on_change=None if args.once else emit,
    )
    try:
        asyncio.run(_watch(monitor, once=args.once))
    except KeyboardInterrupt:
        return 0
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tabwatch", description="Browser tab monitor bridge.")
    parser.add_argument("--data-dir", default=None, help="shared directory (default: TABWATCH_DATA_DIR or per-OS)")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ERROR")
    sub = parser.add_subparsers(dest="cmd", required=True)

    host = sub.add_parser("host", help="run the native messaging host on stdin/stdout")
    host.set_defaults(func=cmd_host)

    status = sub.add_parser("status", help="print bridge/store diagnostics as JSON")
    status.set_defaults(func=cmd_status)

    watch = sub.add_parser("watch", help="poll the store and print state changes")
    watch.add_argument("--interval", type=float, default=None, help="tabs poll interval in seconds")
    watch.add_argument("--once", action="store_true", help="print one snapshot and exit")
    watch.set_defaults(func=cmd_watch)

    update = sub.add_parser("request-update", help="ask every connected browser for a fresh snapshot")
    update.set_defaults(func=cmd_request_update)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level.upper() if args.log_level else None)
    _LOGGER.debug("command=%s", args.cmd)
    return int(args.func(args))


if __name__ == "__main__":
    sys.exit(main())
