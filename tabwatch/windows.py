"""Window backend boundary.

The monitor only talks to `WindowBackend`. Every call is best-effort and
fire-and-forget: callers re-poll to learn whether anything actually happened.
"""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import subprocess
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Protocol

from .history import RecentlyQuitApp
from .messages import truncate

_LOGGER = logging.getLogger("tabwatch.windows")

# Activation is timing-sensitive (focus stealing, workspaces); repeat it a few times.
ACTIVATION_RETRY_DELAYS: tuple[float, ...] = (0.0, 0.05, 0.15)
# One windows tick lists visible and minimized windows; both reuse a single wmctrl scan.
_SCAN_TTL_S = 0.5

MIN_WINDOW_SIZE = 100

EXCLUDED_OWNERS = frozenset(
    {
        "Dock",
        "Window Server",
        "WindowServer",
        "SystemUIServer",
        "Spotlight",
        "Control Center",
        "Notification Center",
        "gnome-shell",
        "plasmashell",
        "xfce4-panel",
        "tabwatch",
    }
)


@dataclass(frozen=True, slots=True)
class Bounds:
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0


@dataclass(frozen=True, slots=True)
class WindowInfo:
    window_id: int
    owner_pid: int
    owner_name: str
    window_name: str | None = None
    bounds: Bounds = field(default_factory=Bounds)
    layer: int = 0
    is_on_screen: bool = True
    is_hidden: bool = False
    is_minimized: bool = False
    bundle_id: str | None = None
    bundle_path: str | None = None

    @property
    def id(self) -> int:
        return self.window_id

    @property
    def display_title(self) -> str:
        if self.window_name:
            return self.window_name
        return self.owner_name

    def truncated_title(self, max_length: int = 50) -> str:
        return truncate(self.display_title, max_length)

    @property
    def size_description(self) -> str:
        return f"{int(self.bounds.width)} × {int(self.bounds.height)}"

    def as_minimized(self) -> WindowInfo:
        return replace(self, bounds=Bounds(), layer=0, is_on_screen=False, is_hidden=False, is_minimized=True)


@dataclass(slots=True)
class AppWindowGroup:
    app_name: str
    pid: int
    windows: list[WindowInfo]

    @property
    def id(self) -> str:
        return f"{self.pid}-{self.app_name}"

    @property
    def window_count(self) -> int:
        return len(self.windows)


class WindowBackend(Protocol):
    def list_windows(self) -> list[WindowInfo]: ...

    def list_hidden_apps(self) -> list[WindowInfo]: ...

    def list_minimized(self) -> list[WindowInfo]: ...

    def activate(self, window: WindowInfo) -> None: ...

    def minimize(self, window: WindowInfo) -> None: ...

    def unminimize(self, window: WindowInfo) -> None: ...

    def hide(self, window: WindowInfo) -> None: ...

    def unhide(self, window: WindowInfo) -> None: ...

    def close(self, window: WindowInfo) -> None: ...

    def launch(self, app: RecentlyQuitApp) -> None: ...


def list_all(backend: WindowBackend) -> list[WindowInfo]:
    """Visible windows, then hidden apps, then minimized windows."""
    out: list[WindowInfo] = []
    for source in (backend.list_windows, backend.list_hidden_apps, backend.list_minimized):
        try:
            out.extend(source())
        except Exception as exc:  # noqa: BLE001
            _LOGGER.debug("window enumeration failed source=%s error=%s", source.__name__, exc)
    return out


def group_by_app(windows: Sequence[WindowInfo]) -> list[AppWindowGroup]:
    groups: dict[int, AppWindowGroup] = {}
    for w in windows:
        group = groups.get(w.owner_pid)
        if group is None:
            groups[w.owner_pid] = AppWindowGroup(app_name=w.owner_name, pid=w.owner_pid, windows=[w])
        else:
            group.windows.append(w)
    return sorted(groups.values(), key=lambda g: g.app_name.lower())


def is_listable(window: WindowInfo) -> bool:
    if window.owner_name in EXCLUDED_OWNERS:
        return False
    if window.layer != 0:
        return False
    return window.bounds.width >= MIN_WINDOW_SIZE and window.bounds.height >= MIN_WINDOW_SIZE


class NullWindowBackend:
    """Backend for platforms without window control: nothing listed, every action a no-op."""

    def list_windows(self) -> list[WindowInfo]:
        return []

    def list_hidden_apps(self) -> list[WindowInfo]:
        return []

    def list_minimized(self) -> list[WindowInfo]:
        return []

    def activate(self, window: WindowInfo) -> None:
        return None

    def minimize(self, window: WindowInfo) -> None:
        return None

    def unminimize(self, window: WindowInfo) -> None:
        return None

    def hide(self, window: WindowInfo) -> None:
        return None

    def unhide(self, window: WindowInfo) -> None:
        return None

    def close(self, window: WindowInfo) -> None:
        return None

    def launch(self, app: RecentlyQuitApp) -> None:
        return None


Runner = Callable[[list[str]], "str | None"]


def _run(argv: list[str]) -> str | None:
    try:
        proc = subprocess.run(argv, capture_output=True, text=True, timeout=2.0, check=False)
    except (OSError, subprocess.SubprocessError) as exc:
        _LOGGER.debug("command failed argv=%s error=%s", argv[0], exc)
        return None
    if proc.returncode != 0:
        _LOGGER.debug("command exit=%s argv=%s stderr=%s", proc.returncode, argv[0], proc.stderr.strip())
        return None
    return proc.stdout


def _proc_comm(pid: int) -> str | None:
    try:
        return Path(f"/proc/{pid}/comm").read_text(encoding="utf-8").strip() or None
    except OSError:
        return None


def _proc_exe(pid: int) -> str | None:
    try:
        return os.readlink(f"/proc/{pid}/exe")
    except OSError:
        return None


class WmctrlWindowBackend:
    """X11 backend built on `wmctrl` (+ `xprop`/`xdotool` where wmctrl has no verb)."""

    def __init__(
        self,
        *,
        runner: Runner | None = None,
        schedule: Callable[[float, Callable[[], None]], None] | None = None,
    ) -> None:
        self._run = runner or _run
        self._schedule = schedule or self._schedule_thread
        self._scan_cache: tuple[float, list[WindowInfo]] | None = None

    @staticmethod
    def available() -> bool:
        return shutil.which("wmctrl") is not None

    @staticmethod
    def _schedule_thread(delay: float, fn: Callable[[], None]) -> None:
        if delay <= 0:
            fn()
            return
        t = threading.Timer(delay, fn)
        t.daemon = True
        t.start()

    def _hex(self, window: WindowInfo) -> str:
        return f"0x{window.window_id:08x}"

    def _is_minimized(self, window_id: int) -> bool:
        out = self._run(["xprop", "-id", f"0x{window_id:08x}", "_NET_WM_STATE"])
        return bool(out and "_NET_WM_STATE_HIDDEN" in out)

    def _scan(self) -> list[WindowInfo]:
        now = time.monotonic()
        if self._scan_cache is not None and now - self._scan_cache[0] < _SCAN_TTL_S:
            return self._scan_cache[1]
        windows = self._scan_windows()
        self._scan_cache = (now, windows)
        return windows

    def _act(self, argv: list[str]) -> None:
        self._scan_cache = None
        self._run(argv)

    def _scan_windows(self) -> list[WindowInfo]:
        # wmctrl -lpGx: id desktop pid x y w h wm_class host title...
        out = self._run(["wmctrl", "-lpGx"])
        if not out:
            return []
        windows: list[WindowInfo] = []
        for line in out.splitlines():
            parts = line.split(None, 9)
            if len(parts) < 9:
                continue
            try:
                window_id = int(parts[0], 16)
                desktop = int(parts[1])
                pid = int(parts[2])
                x, y, w, h = (float(v) for v in parts[3:7])
            except ValueError:
                continue
            wm_class = parts[7]
            title = parts[9] if len(parts) > 9 else ""
            owner = _proc_comm(pid) or wm_class.split(".")[-1] or "unknown"
            windows.append(
                WindowInfo(
                    window_id=window_id,
                    owner_pid=pid,
                    owner_name=owner,
                    window_name=title or None,
                    bounds=Bounds(x, y, w, h),
                    # Sticky windows (desktop -1) are panels/docks, not app windows.
                    layer=0 if desktop >= 0 else 1,
                    is_minimized=self._is_minimized(window_id),
                    bundle_id=wm_class if wm_class and wm_class != "N/A" else None,
                    bundle_path=_proc_exe(pid),
                )
            )
        return windows

    def list_windows(self) -> list[WindowInfo]:
        return [w for w in self._scan() if not w.is_minimized and is_listable(w)]

    def list_hidden_apps(self) -> list[WindowInfo]:
        # X11 has no app-level hide; minimized windows cover it.
        return []

    def list_minimized(self) -> list[WindowInfo]:
        return [w.as_minimized() for w in self._scan() if w.is_minimized and w.owner_name not in EXCLUDED_OWNERS]

    def activate(self, window: WindowInfo) -> None:
        argv = ["wmctrl", "-i", "-a", self._hex(window)]
        for delay in ACTIVATION_RETRY_DELAYS:
            self._schedule(delay, lambda: self._act(argv))

    def minimize(self, window: WindowInfo) -> None:
        self._act(["xdotool", "windowminimize", str(window.window_id)])

    def unminimize(self, window: WindowInfo) -> None:
        self.activate(window)

    def hide(self, window: WindowInfo) -> None:
        self.minimize(window)

    def unhide(self, window: WindowInfo) -> None:
        self.activate(window)

    def close(self, window: WindowInfo) -> None:
        self._act(["wmctrl", "-i", "-c", self._hex(window)])

    def launch(self, app: RecentlyQuitApp) -> None:
        argv: list[str] | None = None
        if app.bundle_path:
            argv = [app.bundle_path]
        elif app.bundle_id and shutil.which("gtk-launch"):
            argv = ["gtk-launch", app.bundle_id.split(".")[0]]
        if argv is None:
            _LOGGER.debug("nothing to launch for app=%s", app.app_name)
            return
        with contextlib.suppress(OSError):
            subprocess.Popen(  # noqa: S603
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )


def default_window_backend() -> WindowBackend:
    if WmctrlWindowBackend.available():
        return WmctrlWindowBackend()
    return NullWindowBackend()
