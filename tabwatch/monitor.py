"""UI-side state: polls the shared store and the window backend, derives display state.

The monitor is a write-through cache. User actions mutate local state right away
and queue a command; the next poll's snapshot is authoritative and replaces local
state wholesale. Nothing is rolled back explicitly.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import time
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from .config import MonitorConfig
from .history import ClosedTabHistory, QuitAppHistory, RecentlyClosedTab, RecentlyQuitApp
from .messages import KNOWN_BROWSERS, UNKNOWN_BROWSER, TabCommand, TabRecord, browser_display_name
from .shared_store import SharedStore
from .windows import AppWindowGroup, NullWindowBackend, WindowBackend, WindowInfo, group_by_app, list_all

_LOGGER = logging.getLogger("tabwatch.monitor")

ACTIVATION_FOLLOW_UP_S = 0.22
WINDOW_REFRESH_DELAY_S = 0.3

Scheduler = Callable[[float, Callable[[], None]], Any]


class ViewMode(enum.Enum):
    BROWSER_TABS = "browser"
    WINDOWS = "windows"


class SortOrder(enum.Enum):
    NEWEST_FIRST = "newest"
    OLDEST_FIRST = "oldest"


@dataclass(slots=True)
class DomainGroup:
    domain: str
    tabs: list[TabRecord]
    is_expanded: bool = False

    @property
    def id(self) -> str:
        return self.domain

    @property
    def tab_count(self) -> int:
        return len(self.tabs)

    @property
    def tab_ids(self) -> list[int]:
        return [t.tab_id for t in self.tabs]

    @property
    def is_single_tab(self) -> bool:
        return len(self.tabs) == 1


def resolve_browser_prefix(token: str) -> str | None:
    """Browser id whose id or display name is the only one starting with `token`."""
    t = token.strip().lower()
    if not t:
        return None
    candidates = [b for b in KNOWN_BROWSERS if b.startswith(t) or browser_display_name(b).lower().startswith(t)]
    if len(candidates) != 1:
        return None
    return candidates[0]


def parse_search_query(query: str) -> tuple[str | None, str]:
    """Split `"brave github"` into (`"brave"`, `"github"`); no browser prefix -> (None, query)."""
    trimmed = query.strip()
    tokens = trimmed.lower().split()
    if not tokens:
        return None, ""
    browser = resolve_browser_prefix(tokens[0])
    if browser is not None:
        return browser, " ".join(tokens[1:])
    return None, trimmed


def _matches_text(q: str, *fields: str) -> bool:
    return any(q in f.lower() for f in fields)


class TabMonitor:
    def __init__(
        self,
        store: SharedStore,
        window_backend: WindowBackend | None = None,
        *,
        config: MonitorConfig | None = None,
        clock: Callable[[], float] = time.time,
        scheduler: Scheduler | None = None,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._store = store
        self._windows_backend: WindowBackend = window_backend or NullWindowBackend()
        self._cfg = config or MonitorConfig.from_env()
        self._scheduler = scheduler
        self._on_change = on_change

        # Published state
        self.tabs: list[TabRecord] = []
        self.is_connected = False
        self.connected_browsers: list[str] = []
        self.search_query = ""
        self.sort_order = SortOrder.NEWEST_FIRST
        self.view_mode = ViewMode.BROWSER_TABS
        self.expanded_domains: set[str] = set()
        self.windows: list[WindowInfo] = []
        self.app_groups: list[AppWindowGroup] = []
        self.expanded_apps: set[str] = set()
        self.revision = 0

        self._last_data_mtime: float | None = None
        self._activation_token = 0
        self._closed = ClosedTabHistory(
            retention_s=self._cfg.closed_retention_s, max_entries=self._cfg.closed_max_entries, clock=clock
        )
        self._quit = QuitAppHistory(retention_s=self._cfg.quit_retention_s, clock=clock)
        self._tasks: list[asyncio.Task[None]] = []

    def _changed(self) -> None:
        self.revision += 1
        if self._on_change is not None:
            try:
                self._on_change()
            except Exception:  # noqa: BLE001
                _LOGGER.exception("on_change callback failed")

    def _schedule(self, delay: float, fn: Callable[[], None]) -> None:
        if self._scheduler is not None:
            self._scheduler(delay, fn)
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            _LOGGER.debug("no running loop; deferred action dropped")
            return
        loop.call_later(delay, fn)

    # ─────────────────────────────────────────────────────────────────────────
    # Polling
    # ─────────────────────────────────────────────────────────────────────────

    def poll_tabs(self) -> bool:
        """One tabs tick. Returns True when a fresh snapshot was merged."""
        browsers = self._store.connected_browsers()
        connected = bool(browsers)
        dirty = False
        if connected != self.is_connected:
            self.is_connected = connected
            dirty = True
        if browsers != self.connected_browsers:
            self.connected_browsers = browsers
            dirty = True

        mtime = self._store.latest_snapshot_mtime()
        if mtime is None or (self._last_data_mtime is not None and mtime <= self._last_data_mtime):
            if dirty:
                self._changed()
            return False
        self._last_data_mtime = mtime

        merged = self._store.read_all_connected()
        added = self._closed.record(merged.tabs, browsers)
        if added:
            _LOGGER.info("recorded %d recently closed tab(s)", len(added))
        self.tabs = list(merged.tabs)
        self._changed()
        return True

    def refresh_windows(self) -> None:
        self._quit.prune()
        self.windows = list_all(self._windows_backend)
        self._regroup_windows()
        self._changed()

    def _regroup_windows(self) -> None:
        self.app_groups = group_by_app([w for w in self.windows if not w.is_hidden and not w.is_minimized])

    def request_update(self) -> None:
        # Force a re-read and ask every live extension for a fresh snapshot.
        self._last_data_mtime = None
        for browser in self._store.connected_browsers():
            self._store.enqueue_command(TabCommand.request_update(browser))
        self.poll_tabs()
        if self.view_mode is ViewMode.WINDOWS:
            self.refresh_windows()

    async def _every(self, interval: float, tick: Callable[[], Any]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                tick()
            except Exception:  # noqa: BLE001
                _LOGGER.exception("poll tick failed")

    def _windows_tick(self) -> None:
        if self.view_mode is ViewMode.WINDOWS:
            self.refresh_windows()

    async def run(self, stop: asyncio.Event | None = None) -> None:
        stop = stop or asyncio.Event()
        self.poll_tabs()
        self.refresh_windows()
        self._tasks = [
            asyncio.create_task(self._every(self._cfg.tabs_interval_s, self.poll_tabs), name="tabwatch-tabs-poll"),
            asyncio.create_task(
                self._every(self._cfg.windows_interval_s, self._windows_tick), name="tabwatch-windows-poll"
            ),
        ]
        _LOGGER.info("started polling store=%s", self._store.root)
        try:
            await stop.wait()
        finally:
            await self.stop()

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for t in tasks:
            t.cancel()
        for t in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await t

    # ─────────────────────────────────────────────────────────────────────────
    # Tabs: derived state
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def tab_count(self) -> int:
        return len(self.tabs)

    @property
    def domain_count(self) -> int:
        return len({t.domain for t in self.tabs})

    @property
    def active_tab(self) -> TabRecord | None:
        return next((t for t in self.tabs if t.active), None)

    @property
    def active_domain(self) -> str | None:
        tab = self.active_tab
        return tab.domain if tab is not None else None

    @property
    def connected_browser_names(self) -> str:
        if not self.connected_browsers:
            return "Disconnected"
        return " + ".join(browser_display_name(b) for b in self.connected_browsers)

    def _search_tabs(self) -> list[TabRecord]:
        browser, text = parse_search_query(self.search_query)
        if browser is None and not text:
            return list(self.tabs)
        q = text.lower()
        out = []
        for tab in self.tabs:
            if browser is not None and (tab.browser or UNKNOWN_BROWSER).lower() != browser:
                continue
            if q and not _matches_text(q, tab.title, tab.url, tab.domain):
                continue
            out.append(tab)
        return out

    def _tab_sort_key(self, tab: TabRecord) -> tuple[bool, int, str]:
        minute = (tab.opened_at or 0) // 60000
        if self.sort_order is SortOrder.NEWEST_FIRST:
            minute = -minute
        return (not tab.active, minute, tab.title.lower())

    def _sorted_tabs(self, tabs: Iterable[TabRecord]) -> list[TabRecord]:
        return sorted(tabs, key=self._tab_sort_key)

    @property
    def filtered_tabs(self) -> list[TabRecord]:
        return self._sorted_tabs(self._search_tabs())

    def _group_sort_time(self, group: DomainGroup) -> int:
        times = [t.opened_at for t in group.tabs if t.opened_at is not None]
        if not times:
            return 0
        return max(times) if self.sort_order is SortOrder.NEWEST_FIRST else min(times)

    @property
    def domain_groups(self) -> list[DomainGroup]:
        """Domains with two or more matching tabs."""
        by_domain: dict[str, list[TabRecord]] = {}
        for tab in self._search_tabs():
            by_domain.setdefault(tab.domain, []).append(tab)

        groups = [
            DomainGroup(domain=d, tabs=self._sorted_tabs(tabs), is_expanded=d in self.expanded_domains)
            for d, tabs in by_domain.items()
            if len(tabs) >= 2
        ]

        def key(g: DomainGroup) -> tuple[bool, int, str]:
            minute = self._group_sort_time(g) // 60000
            if self.sort_order is SortOrder.NEWEST_FIRST:
                minute = -minute
            return (not any(t.active for t in g.tabs), minute, g.domain.lower())

        return sorted(groups, key=key)

    @property
    def single_tabs(self) -> list[TabRecord]:
        """Tabs whose domain has exactly one match; shown without a group header."""
        tabs = self._search_tabs()
        counts = Counter(t.domain for t in tabs)
        return self._sorted_tabs(t for t in tabs if counts[t.domain] == 1)

    @property
    def recently_closed_tabs(self) -> list[RecentlyClosedTab]:
        return self._closed.entries

    @property
    def filtered_recently_closed(self) -> list[RecentlyClosedTab]:
        kept = self._closed.live_entries()
        browser, text = parse_search_query(self.search_query)
        if browser is None and not text:
            return kept
        q = text.lower()
        out = []
        for item in kept:
            if browser is not None and item.browser.lower() != browser:
                continue
            if q and not _matches_text(q, item.title, item.url, item.domain):
                continue
            out.append(item)
        return out

    # ─────────────────────────────────────────────────────────────────────────
    # Tabs: actions (optimistic)
    # ─────────────────────────────────────────────────────────────────────────

    def toggle_sort_order(self) -> None:
        if self.sort_order is SortOrder.NEWEST_FIRST:
            self.sort_order = SortOrder.OLDEST_FIRST
        else:
            self.sort_order = SortOrder.NEWEST_FIRST
        self._changed()

    def toggle_domain_expanded(self, domain: str) -> None:
        if domain in self.expanded_domains:
            self.expanded_domains.discard(domain)
        else:
            self.expanded_domains.add(domain)
        self._changed()

    def expand_all_domains(self) -> None:
        self.expanded_domains.update(g.domain for g in self.domain_groups)
        self._changed()

    def collapse_all_domains(self) -> None:
        self.expanded_domains.clear()
        self._changed()

    def close_tab(self, tab: TabRecord) -> None:
        self._store.enqueue_command(TabCommand.close(tab.tab_id, browser=tab.browser))
        self.tabs = [t for t in self.tabs if t.key != tab.key]
        self._changed()

    def close_all_tabs_in_domain(self, domain: str) -> None:
        domain_tabs = [t for t in self.tabs if t.domain == domain]
        if not domain_tabs:
            return
        # Tab ids are per browser, so queue one CLOSE_TABS per browser.
        by_browser: dict[str | None, list[int]] = {}
        for t in domain_tabs:
            by_browser.setdefault(t.browser, []).append(t.tab_id)
        for browser, ids in by_browser.items():
            self._store.enqueue_command(TabCommand.close_tabs(ids, browser=browser))
        self.tabs = [t for t in self.tabs if t.domain != domain]
        self.expanded_domains.discard(domain)
        self._changed()

    def activate_tab(self, tab: TabRecord) -> None:
        self._store.enqueue_command(TabCommand.activate(tab.tab_id, tab.window_id, browser=tab.browser))

    def reopen_recently_closed(self, entry: RecentlyClosedTab) -> None:
        self._closed.remove(entry.id)
        self._store.enqueue_command(TabCommand.open_url(entry.url, browser=entry.browser))
        self._changed()

    # ─────────────────────────────────────────────────────────────────────────
    # Windows: derived state
    # ─────────────────────────────────────────────────────────────────────────

    def _visible_windows(self) -> list[WindowInfo]:
        return [w for w in self.windows if not w.is_hidden and not w.is_minimized]

    @property
    def window_count(self) -> int:
        return len(self._visible_windows())

    @property
    def hidden_app_count(self) -> int:
        return len(self.windows) - self.window_count

    @property
    def app_count(self) -> int:
        return len(self.app_groups)

    @property
    def current_mode_count(self) -> int:
        if self.view_mode is ViewMode.WINDOWS:
            return self.window_count
        return self.tab_count

    @property
    def hidden_apps(self) -> list[WindowInfo]:
        hidden = [w for w in self.windows if w.is_hidden or w.is_minimized]
        q = self.search_query.strip().lower()
        if q:
            hidden = [w for w in hidden if q in w.owner_name.lower()]
        return sorted(hidden, key=lambda w: w.owner_name.lower())

    def _window_matches(self, w: WindowInfo, q: str) -> bool:
        return _matches_text(q, w.display_title, w.owner_name)

    @property
    def filtered_windows(self) -> list[WindowInfo]:
        visible = self._visible_windows()
        q = self.search_query.strip().lower()
        if not q:
            return visible
        return [w for w in visible if self._window_matches(w, q)]

    @property
    def filtered_app_groups(self) -> list[AppWindowGroup]:
        """Apps with two or more matching windows."""
        q = self.search_query.strip().lower()
        groups = []
        for g in self.app_groups:
            windows = [w for w in g.windows if self._window_matches(w, q)] if q else list(g.windows)
            if len(windows) >= 2:
                groups.append(AppWindowGroup(app_name=g.app_name, pid=g.pid, windows=windows))
        return groups

    @property
    def single_window_apps(self) -> list[WindowInfo]:
        windows = self.filtered_windows
        counts = Counter(w.owner_pid for w in windows)
        return sorted((w for w in windows if counts[w.owner_pid] == 1), key=lambda w: w.owner_name.lower())

    @property
    def filtered_recently_quit(self) -> list[RecentlyQuitApp]:
        kept = self._quit.live_entries()
        q = self.search_query.strip().lower()
        if not q:
            return kept
        return [e for e in kept if q in e.app_name.lower()]

    # ─────────────────────────────────────────────────────────────────────────
    # Windows: actions
    # ─────────────────────────────────────────────────────────────────────────

    def _perform_activation(self, window: WindowInfo) -> None:
        try:
            if window.is_hidden:
                self._windows_backend.unhide(window)
            elif window.is_minimized:
                self._windows_backend.unminimize(window)
            else:
                self._windows_backend.activate(window)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.debug("activation failed window=%s error=%s", window.window_id, exc)

    def activate_window(self, window: WindowInfo) -> int:
        """Activate now, then once more after things settle unless a newer click superseded us."""
        self._activation_token += 1
        token = self._activation_token

        def follow_up() -> None:
            if self._activation_token != token:
                return
            self._perform_activation(window)

        self._perform_activation(window)
        self._schedule(ACTIVATION_FOLLOW_UP_S, follow_up)
        self._schedule(WINDOW_REFRESH_DELAY_S, self.refresh_windows)
        return token

    def hide_window(self, window: WindowInfo) -> None:
        # Minimize (not app-hide); the window shows up as a minimized pseudo-entry until the next refresh.
        try:
            self._windows_backend.minimize(window)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.debug("minimize failed window=%s error=%s", window.window_id, exc)
        self.windows = [w for w in self.windows if w.id != window.id]
        self.windows.append(window.as_minimized())
        self._regroup_windows()
        self._changed()
        self._schedule(WINDOW_REFRESH_DELAY_S, self.refresh_windows)

    def close_window(self, window: WindowInfo) -> None:
        app_windows = [w for w in self.windows if w.owner_pid == window.owner_pid and w.id != window.id]
        last_window = not any(not w.is_hidden for w in app_windows)
        try:
            self._windows_backend.close(window)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.debug("close failed window=%s error=%s", window.window_id, exc)

        if last_window:
            self._quit.record(window.owner_name, bundle_id=window.bundle_id, bundle_path=window.bundle_path)
            self.windows = [w for w in self.windows if w.owner_pid != window.owner_pid]
            prefix = f"{window.owner_pid}-"
            self.expanded_apps = {a for a in self.expanded_apps if not a.startswith(prefix)}
        else:
            self.windows = [w for w in self.windows if w.id != window.id]
        self._regroup_windows()
        self._changed()

    def relaunch_recently_quit(self, app: RecentlyQuitApp) -> None:
        self._quit.remove(app)
        try:
            self._windows_backend.launch(app)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.debug("launch failed app=%s error=%s", app.app_name, exc)
        self._changed()

    def toggle_app_expanded(self, app_id: str) -> None:
        if app_id in self.expanded_apps:
            self.expanded_apps.discard(app_id)
        else:
            self.expanded_apps.add(app_id)
        self._changed()

    def expand_all_apps(self) -> None:
        self.expanded_apps.update(g.id for g in self.app_groups)
        self._changed()

    def collapse_all_apps(self) -> None:
        self.expanded_apps.clear()
        self._changed()

    def set_view_mode(self, mode: ViewMode) -> None:
        self.view_mode = mode
        if mode is ViewMode.WINDOWS:
            self.refresh_windows()
        else:
            self._changed()

    def snapshot(self) -> dict[str, Any]:
        """Plain-data view for logging and the CLI."""
        return {
            "connected": self.is_connected,
            "connectedBrowsers": list(self.connected_browsers),
            "tabCount": self.tab_count,
            "domainCount": self.domain_count,
            "activeDomain": self.active_domain,
            "recentlyClosed": [
                {"title": e.title, "url": e.url, "browser": e.browser, "closedAt": e.closed_at}
                for e in self.filtered_recently_closed
            ],
            "windowCount": self.window_count,
            "recentlyQuit": [{"app": e.app_name, "quitAt": e.quit_at} for e in self.filtered_recently_quit],
        }
