"""Synthetic "recently closed" / "recently quit" history.

The extension only ever sends full snapshots, so closures are inferred by diffing
consecutive snapshots. Entries live in memory only, newest first, bounded by a
retention window (and a hard cap for tabs).
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from .messages import UNKNOWN_BROWSER, TabRecord, browser_display_name, relative_time_text


@dataclass(frozen=True, slots=True)
class RecentlyClosedTab:
    title: str
    url: str
    domain: str
    browser: str
    closed_at: float

    @property
    def id(self) -> str:
        return f"{self.browser}-{self.closed_at}-{self.url}"

    @property
    def browser_display_name(self) -> str:
        return browser_display_name(self.browser)

    def relative_time_text(self, *, now: float | None = None) -> str:
        ref = time.time() if now is None else now
        return relative_time_text(ref - self.closed_at)


@dataclass(frozen=True, slots=True)
class RecentlyQuitApp:
    app_name: str
    quit_at: float
    bundle_id: str | None = None
    bundle_path: str | None = None

    @property
    def id(self) -> str:
        if self.bundle_id:
            return self.bundle_id
        return f"{self.app_name}-{self.quit_at}"

    def same_app(self, other: RecentlyQuitApp) -> bool:
        if self.bundle_id:
            return other.bundle_id == self.bundle_id
        return other.bundle_id is None and other.app_name == self.app_name

    def relative_time_text(self, *, now: float | None = None) -> str:
        ref = time.time() if now is None else now
        return relative_time_text(ref - self.quit_at)


class ClosedTabHistory:
    def __init__(
        self,
        *,
        retention_s: float = 15 * 60,
        max_entries: int = 30,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.retention_s = retention_s
        self.max_entries = max_entries
        self._clock = clock
        self._entries: list[RecentlyClosedTab] = []
        self._baseline: dict[str, TabRecord] = {}

    @property
    def entries(self) -> list[RecentlyClosedTab]:
        return list(self._entries)

    def reset_baseline(self, tabs: Iterable[TabRecord]) -> None:
        self._baseline = {t.key: t for t in tabs}

    def record(self, new_tabs: Iterable[TabRecord], connected_browsers: Iterable[str]) -> list[RecentlyClosedTab]:
        """Diff `new_tabs` against the previous call and return the entries added."""
        new_by_key = {t.key: t for t in new_tabs}
        connected = {b.lower() for b in connected_browsers}
        added: list[RecentlyClosedTab] = []

        # With nobody connected a disappearing tab says nothing about the tab itself.
        if connected and self._baseline:
            now = self._clock()
            for key, old in self._baseline.items():
                if key in new_by_key:
                    continue
                browser = (old.browser or UNKNOWN_BROWSER).lower()
                if browser != UNKNOWN_BROWSER and browser not in connected:
                    continue
                if not old.url:
                    continue
                entry = RecentlyClosedTab(
                    title=old.title, url=old.url, domain=old.domain, browser=browser, closed_at=now
                )
                self._entries.insert(0, entry)
                added.append(entry)

        self.prune()
        self._baseline = new_by_key
        return added

    def prune(self) -> None:
        cutoff = self._clock() - self.retention_s
        self._entries = [e for e in self._entries if e.closed_at >= cutoff][: self.max_entries]

    def live_entries(self) -> list[RecentlyClosedTab]:
        now = self._clock()
        return [e for e in self._entries if now - e.closed_at <= self.retention_s]

    def remove(self, entry_id: str) -> None:
        self._entries = [e for e in self._entries if e.id != entry_id]


class QuitAppHistory:
    def __init__(self, *, retention_s: float = 15 * 60, clock: Callable[[], float] = time.time) -> None:
        self.retention_s = retention_s
        self._clock = clock
        self._entries: list[RecentlyQuitApp] = []

    @property
    def entries(self) -> list[RecentlyQuitApp]:
        return list(self._entries)

    def prune(self) -> None:
        now = self._clock()
        self._entries = [e for e in self._entries if now - e.quit_at <= self.retention_s]

    def record(self, app_name: str, *, bundle_id: str | None = None, bundle_path: str | None = None) -> RecentlyQuitApp:
        self.prune()
        entry = RecentlyQuitApp(app_name=app_name, quit_at=self._clock(), bundle_id=bundle_id, bundle_path=bundle_path)
        self._entries = [e for e in self._entries if not entry.same_app(e)]
        self._entries.insert(0, entry)
        return entry

    def remove(self, entry: RecentlyQuitApp) -> None:
        self._entries = [e for e in self._entries if not entry.same_app(e)]

    def live_entries(self) -> list[RecentlyQuitApp]:
        now = self._clock()
        kept = [e for e in self._entries if now - e.quit_at <= self.retention_s]
        return sorted(kept, key=lambda e: e.quit_at, reverse=True)
