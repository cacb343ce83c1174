"""File-backed mailbox shared by the bridge (one per browser) and the monitor UI.

Layout under the shared directory:
- `tabs-{browser}.json`        latest full snapshot, replaced atomically by the bridge
- `commands-{browser}.json`    command queue, appended by the UI, drained by the bridge
- `connection-{browser}.txt`   "connected" / "disconnected", mtime doubles as heartbeat

Nothing here raises to the caller: the poller must keep ticking whatever the disk does.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import sys
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import StoreConfig
from .messages import KNOWN_BROWSERS, TabCommand, TabRecord, TabsSnapshot, browser_display_name, normalize_browser
from .paths import commands_path, connection_path, sanitize_browser_id, shared_dir, snapshot_path

_LOGGER = logging.getLogger("tabwatch.shared_store")

_CONNECTED = "connected"
_DISCONNECTED = "disconnected"


@dataclass(frozen=True, slots=True)
class MergedView:
    tabs: tuple[TabRecord, ...] = ()
    browser_data: dict[str, TabsSnapshot] = field(default_factory=dict)
    connected_browsers: tuple[str, ...] = ()

    @property
    def total_tab_count(self) -> int:
        return len(self.tabs)

    @property
    def connected_browser_names(self) -> list[str]:
        return [browser_display_name(b) for b in self.connected_browsers]


def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # Unique per process so the bridge and the UI never share a temp file.
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    try:
        tmp.write_text(text, encoding="utf-8")
        tmp.replace(path)
    finally:
        with contextlib.suppress(FileNotFoundError):
            tmp.unlink()


@contextlib.contextmanager
def _queue_lock(path: Path) -> Iterator[None]:
    """Exclusive, blocking lock on `{queue}.lock` held across a queue read-modify-write."""
    lock_path = path.with_suffix(".lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    fp = open(lock_path, "a+", encoding="utf-8")  # noqa: SIM115
    try:
        if sys.platform == "win32":
            import msvcrt

            fp.seek(0)
            msvcrt.locking(fp.fileno(), msvcrt.LK_LOCK, 1)
        else:
            import fcntl

            fcntl.flock(fp.fileno(), fcntl.LOCK_EX)
    except OSError:
        with contextlib.suppress(Exception):
            fp.close()
        raise
    try:
        yield
    finally:
        with contextlib.suppress(Exception):
            if sys.platform == "win32":
                import msvcrt

                fp.seek(0)
                msvcrt.locking(fp.fileno(), msvcrt.LK_UNLCK, 1)
            else:
                import fcntl

                fcntl.flock(fp.fileno(), fcntl.LOCK_UN)
        with contextlib.suppress(Exception):
            fp.close()


def _load_json(path: Path) -> Any:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as exc:
        _LOGGER.debug("read failed path=%s error=%s", path, exc)
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        _LOGGER.debug("undecodable json path=%s error=%s", path, exc)
        return None


class SharedStore:
    def __init__(
        self,
        root: Path | None = None,
        *,
        config: StoreConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.root = Path(root) if root is not None else shared_dir()
        with contextlib.suppress(OSError):
            self.root.mkdir(parents=True, exist_ok=True)
        self._cfg = config or StoreConfig.from_env()
        self._clock = clock

    # ─────────────────────────────────────────────────────────────────────────
    # Browser set
    # ─────────────────────────────────────────────────────────────────────────

    def browsers(self) -> list[str]:
        """Known browsers first, then any other identifier that has files on disk."""
        out = list(KNOWN_BROWSERS)
        extra: set[str] = set()
        try:
            for p in self.root.iterdir():
                name = p.name
                for prefix, suffix in (("tabs-", ".json"), ("connection-", ".txt")):
                    if name.startswith(prefix) and name.endswith(suffix):
                        extra.add(name[len(prefix) : -len(suffix)])
        except OSError:
            return out
        out.extend(sorted(b for b in extra if b and b not in KNOWN_BROWSERS))
        return out

    def _age(self, path: Path) -> float | None:
        try:
            return self._clock() - path.stat().st_mtime
        except OSError:
            return None

    # ─────────────────────────────────────────────────────────────────────────
    # Snapshots (bridge writes, UI reads)
    # ─────────────────────────────────────────────────────────────────────────

    def write_snapshot(self, browser: str, snapshot: TabsSnapshot) -> bool:
        path = snapshot_path(self.root, browser)
        try:
            _atomic_write_text(path, json.dumps(snapshot.to_dict(), ensure_ascii=False))
        except OSError as exc:
            _LOGGER.warning("write_snapshot failed browser=%s error=%s", browser, exc)
            return False
        return True

    def read_snapshot(self, browser: str) -> TabsSnapshot | None:
        return TabsSnapshot.from_dict(_load_json(snapshot_path(self.root, browser)))

    def snapshot_mtime(self, browser: str) -> float | None:
        try:
            return snapshot_path(self.root, browser).stat().st_mtime
        except OSError:
            return None

    def latest_snapshot_mtime(self) -> float | None:
        latest: float | None = None
        for browser in self.browsers():
            mtime = self.snapshot_mtime(browser)
            if mtime is not None and (latest is None or mtime > latest):
                latest = mtime
        return latest

    def read_all_connected(self) -> MergedView:
        tabs: list[TabRecord] = []
        browser_data: dict[str, TabsSnapshot] = {}
        connected: list[str] = []

        for browser in self.browsers():
            age = self._age(snapshot_path(self.root, browser))
            has_recent_data = age is not None and age < self._cfg.freshness_window_s
            if not (has_recent_data or self.is_connected(browser)):
                continue
            snapshot = self.read_snapshot(browser)
            if snapshot is None:
                continue
            connected.append(browser)
            browser_data[browser] = snapshot
            tabs.extend(tab.with_browser(browser) for tab in snapshot.tabs)

        return MergedView(tabs=tuple(tabs), browser_data=browser_data, connected_browsers=tuple(connected))

    # ─────────────────────────────────────────────────────────────────────────
    # Commands (UI writes, bridge drains)
    # ─────────────────────────────────────────────────────────────────────────

    def _read_commands(self, path: Path) -> list[TabCommand]:
        raw = _load_json(path)
        if not isinstance(raw, list):
            return []
        return [c for c in (TabCommand.from_dict(item) for item in raw) if c is not None]

    def pending_commands(self, browser: str) -> list[TabCommand]:
        return self._read_commands(commands_path(self.root, browser))

    def enqueue_command(self, command: TabCommand) -> bool:
        browser = command.target_browser
        path = commands_path(self.root, browser)
        try:
            with _queue_lock(path):
                commands = self._read_commands(path)
                commands.append(command)
                _atomic_write_text(path, json.dumps([c.to_dict() for c in commands], ensure_ascii=False))
        except OSError as exc:
            _LOGGER.warning("enqueue_command failed type=%s browser=%s error=%s", command.type, browser, exc)
            return False
        _LOGGER.info("queued command type=%s browser=%s", command.type, browser)
        return True

    def drain_commands(self, browser: str) -> list[TabCommand]:
        """Take every queued command for `browser`. Commands are returned at most once."""
        path = commands_path(self.root, browser)
        claim = path.with_name(f".{path.name}.{os.getpid()}.drain")
        try:
            # Same lock as enqueue: a drain never lands between an enqueue's read and its write.
            with _queue_lock(path):
                path.replace(claim)
        except FileNotFoundError:
            return []
        except OSError as exc:
            _LOGGER.debug("drain_commands claim failed browser=%s error=%s", browser, exc)
            return []
        try:
            return self._read_commands(claim)
        finally:
            with contextlib.suppress(OSError):
                claim.unlink()

    def drain_all_commands(self) -> list[TabCommand]:
        out: list[TabCommand] = []
        for browser in self.browsers():
            out.extend(self.drain_commands(browser))
        return out

    # ─────────────────────────────────────────────────────────────────────────
    # Connection flag (bridge heartbeat)
    # ─────────────────────────────────────────────────────────────────────────

    def set_connected(self, browser: str, connected: bool) -> bool:
        path = connection_path(self.root, browser)
        try:
            _atomic_write_text(path, _CONNECTED if connected else _DISCONNECTED)
        except OSError as exc:
            _LOGGER.warning("set_connected failed browser=%s error=%s", browser, exc)
            return False
        return True

    def is_connected(self, browser: str) -> bool:
        path = connection_path(self.root, browser)
        try:
            content = path.read_text(encoding="utf-8", errors="replace").strip()
        except OSError:
            return False
        age = self._age(path)
        if age is None or age > self._cfg.liveness_window_s:
            return False
        return content == _CONNECTED

    def connected_browsers(self) -> list[str]:
        return [b for b in self.browsers() if self.is_connected(b)]

    def any_connected(self) -> bool:
        return any(self.is_connected(b) for b in self.browsers())

    def describe(self) -> dict[str, Any]:
        """Per-browser file state for diagnostics."""
        out: dict[str, Any] = {}
        for browser in self.browsers():
            snap_age = self._age(snapshot_path(self.root, browser))
            conn_age = self._age(connection_path(self.root, browser))
            if snap_age is None and conn_age is None:
                continue
            snapshot = self.read_snapshot(browser)
            out[sanitize_browser_id(normalize_browser(browser))] = {
                "connected": self.is_connected(browser),
                "snapshotAgeS": round(snap_age, 3) if snap_age is not None else None,
                "heartbeatAgeS": round(conn_age, 3) if conn_age is not None else None,
                "tabCount": len(snapshot.tabs) if snapshot is not None else None,
                "pendingCommands": len(self.pending_commands(browser)),
            }
        return out
