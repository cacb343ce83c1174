"""Wire/data model shared by the bridge, the shared store and the monitor.

JSON keys follow the extension's camelCase names; Python attributes are snake_case.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

TABS_UPDATE = "TABS_UPDATE"
CONNECTION_STATUS = "CONNECTION_STATUS"
ERROR = "ERROR"

CLOSE_TAB = "CLOSE_TAB"
CLOSE_TABS = "CLOSE_TABS"
ACTIVATE_TAB = "ACTIVATE_TAB"
OPEN_URL = "OPEN_URL"
REQUEST_UPDATE = "REQUEST_UPDATE"

UNKNOWN_BROWSER = "unknown"

# Iteration order for polling. Any other identifier is still accepted as a key.
KNOWN_BROWSERS: tuple[str, ...] = ("chrome", "brave", "edge", "opera", "vivaldi", UNKNOWN_BROWSER)

_DISPLAY_NAMES = {
    "chrome": "Chrome",
    "brave": "Brave",
    "edge": "Edge",
    "opera": "Opera",
    "vivaldi": "Vivaldi",
}

TWO_PART_TLDS = frozenset({"co.uk", "com.au", "co.jp", "co.kr", "com.br", "co.nz"})


def now_ms() -> int:
    return int(time.time() * 1000)


def normalize_browser(raw: Any) -> str:
    s = str(raw or "").strip().lower()
    return s or UNKNOWN_BROWSER


def browser_display_name(browser: str | None) -> str:
    if not browser:
        return "Browser"
    key = browser.lower()
    return _DISPLAY_NAMES.get(key) or key.title()


def full_domain(url: str) -> str:
    """Host without a leading `www.` (e.g. `music.youtube.com`)."""
    try:
        host = urlsplit(url).hostname
    except ValueError:
        host = None
    if not host:
        return url if url else "Other"
    if host.startswith("www."):
        return host[4:]
    return host


def root_domain(url: str) -> str:
    """Grouping domain: last two labels, three for known two-part TLDs (`bbc.co.uk`)."""
    full = full_domain(url)
    parts = [p for p in full.split(".") if p]
    if len(parts) < 2:
        return full
    last_two = ".".join(parts[-2:])
    if last_two in TWO_PART_TLDS and len(parts) >= 3:
        return ".".join(parts[-3:])
    return last_two


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 1] + "…"


def format_open_duration(seconds: float) -> str:
    minutes = int(seconds // 60)
    hours = minutes // 60
    days = hours // 24
    if days > 0:
        return f"{days}d {hours % 24}h"
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m"
    return "< 1m"


def relative_time_text(seconds: float) -> str:
    secs = max(0, int(seconds))
    if secs < 60:
        return f"{secs}s ago"
    minutes = secs // 60
    if minutes < 60:
        return f"{minutes}m ago"
    return f"{minutes // 60}h ago"


def _as_int(raw: Any) -> int | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    return None


def _opt_str(raw: Any) -> str | None:
    return raw if isinstance(raw, str) else None


@dataclass(frozen=True, slots=True)
class TabRecord:
    tab_id: int
    window_id: int
    title: str = ""
    url: str = ""
    fav_icon_url: str | None = None
    active: bool = False
    pinned: bool = False
    opened_at: int | None = None
    browser: str | None = None

    @property
    def key(self) -> str:
        # Tab ids are only unique within one browser.
        return f"{self.browser or UNKNOWN_BROWSER}-{self.tab_id}"

    @property
    def full_domain(self) -> str:
        return full_domain(self.url)

    @property
    def domain(self) -> str:
        return root_domain(self.url)

    @property
    def browser_display_name(self) -> str:
        return browser_display_name(self.browser)

    def open_duration(self, *, now: float | None = None) -> float | None:
        if self.opened_at is None:
            return None
        ref = time.time() if now is None else now
        return ref - self.opened_at / 1000.0

    def formatted_duration(self, *, now: float | None = None) -> str:
        duration = self.open_duration(now=now)
        if duration is None:
            return ""
        return format_open_duration(duration)

    def truncated_title(self, max_length: int = 40) -> str:
        return truncate(self.title, max_length)

    def with_browser(self, browser: str) -> TabRecord:
        return TabRecord(
            tab_id=self.tab_id,
            window_id=self.window_id,
            title=self.title,
            url=self.url,
            fav_icon_url=self.fav_icon_url,
            active=self.active,
            pinned=self.pinned,
            opened_at=self.opened_at,
            browser=browser,
        )

    @classmethod
    def from_dict(cls, raw: Any) -> TabRecord | None:
        if not isinstance(raw, dict):
            return None
        tab_id = _as_int(raw.get("tabId"))
        if tab_id is None:
            return None
        window_id = _as_int(raw.get("windowId"))
        browser = raw.get("browser")
        return cls(
            tab_id=tab_id,
            window_id=window_id if window_id is not None else 0,
            title=str(raw.get("title") or ""),
            url=str(raw.get("url") or ""),
            fav_icon_url=_opt_str(raw.get("favIconUrl")),
            active=bool(raw.get("active")),
            pinned=bool(raw.get("pinned")),
            opened_at=_as_int(raw.get("openedAt")),
            browser=normalize_browser(browser) if isinstance(browser, str) and browser.strip() else None,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "tabId": self.tab_id,
            "windowId": self.window_id,
            "title": self.title,
            "url": self.url,
            "active": self.active,
            "pinned": self.pinned,
        }
        if self.fav_icon_url is not None:
            out["favIconUrl"] = self.fav_icon_url
        if self.opened_at is not None:
            out["openedAt"] = self.opened_at
        if self.browser is not None:
            out["browser"] = self.browser
        return out


@dataclass(frozen=True, slots=True)
class TabsSnapshot:
    tabs: tuple[TabRecord, ...] = ()
    tab_count: int | None = None
    browser: str | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> TabsSnapshot | None:
        if not isinstance(raw, dict):
            return None
        raw_tabs = raw.get("tabs")
        if not isinstance(raw_tabs, list):
            return None
        tabs = tuple(t for t in (TabRecord.from_dict(item) for item in raw_tabs) if t is not None)
        browser = raw.get("browser")
        return cls(
            tabs=tabs,
            tab_count=_as_int(raw.get("tabCount")),
            browser=normalize_browser(browser) if isinstance(browser, str) and browser.strip() else None,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"tabs": [t.to_dict() for t in self.tabs]}
        out["tabCount"] = self.tab_count if self.tab_count is not None else len(self.tabs)
        if self.browser is not None:
            out["browser"] = self.browser
        return out


@dataclass(frozen=True, slots=True)
class IncomingMessage:
    """Extension -> host message. `type` is kept as free text; unknown types are not an error."""

    type: str
    timestamp: int | None = None
    browser: str | None = None
    data: TabsSnapshot | None = None
    status: str | None = None
    extension_version: str | None = None
    code: str | None = None
    message: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> IncomingMessage:
        browser = raw.get("browser")
        return cls(
            type=str(raw.get("type") or ""),
            timestamp=_as_int(raw.get("timestamp")),
            browser=normalize_browser(browser) if isinstance(browser, str) and browser.strip() else None,
            data=TabsSnapshot.from_dict(raw.get("data")),
            status=_opt_str(raw.get("status")),
            extension_version=_opt_str(raw.get("extensionVersion")),
            code=_opt_str(raw.get("code")),
            message=_opt_str(raw.get("message")),
        )

    def detected_browser(self) -> str:
        if self.browser:
            return self.browser
        if self.data is not None and self.data.browser:
            return self.data.browser
        return UNKNOWN_BROWSER


@dataclass(frozen=True, slots=True)
class TabCommand:
    """Host -> extension command, queued per browser in the shared store."""

    type: str
    tab_id: int | None = None
    tab_ids: tuple[int, ...] | None = None
    window_id: int | None = None
    url: str | None = None
    browser: str | None = None
    timestamp: int = field(default_factory=now_ms)

    @classmethod
    def close(cls, tab_id: int, browser: str | None = None) -> TabCommand:
        return cls(type=CLOSE_TAB, tab_id=tab_id, browser=browser)

    @classmethod
    def close_tabs(cls, tab_ids: list[int] | tuple[int, ...], browser: str | None = None) -> TabCommand:
        return cls(type=CLOSE_TABS, tab_ids=tuple(tab_ids), browser=browser)

    @classmethod
    def activate(cls, tab_id: int, window_id: int, browser: str | None = None) -> TabCommand:
        return cls(type=ACTIVATE_TAB, tab_id=tab_id, window_id=window_id, browser=browser)

    @classmethod
    def open_url(cls, url: str, browser: str | None = None) -> TabCommand:
        return cls(type=OPEN_URL, url=url, browser=browser)

    @classmethod
    def request_update(cls, browser: str | None = None) -> TabCommand:
        return cls(type=REQUEST_UPDATE, browser=browser)

    @property
    def target_browser(self) -> str:
        return normalize_browser(self.browser)

    def to_wire(self) -> dict[str, Any] | None:
        """Frame payload for the extension, or None if a required field is missing."""
        if self.type == CLOSE_TAB:
            if self.tab_id is None:
                return None
            return {"type": CLOSE_TAB, "tabId": self.tab_id}
        if self.type == CLOSE_TABS:
            if self.tab_ids is None:
                return None
            return {"type": CLOSE_TABS, "tabIds": list(self.tab_ids)}
        if self.type == ACTIVATE_TAB:
            if self.tab_id is None:
                return None
            return {"type": ACTIVATE_TAB, "tabId": self.tab_id, "windowId": self.window_id or 0}
        if self.type == OPEN_URL:
            if not self.url:
                return None
            return {"type": OPEN_URL, "url": self.url}
        if self.type == REQUEST_UPDATE:
            return {"type": REQUEST_UPDATE}
        return None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type, "timestamp": self.timestamp}
        if self.tab_id is not None:
            out["tabId"] = self.tab_id
        if self.tab_ids is not None:
            out["tabIds"] = list(self.tab_ids)
        if self.window_id is not None:
            out["windowId"] = self.window_id
        if self.url is not None:
            out["url"] = self.url
        if self.browser is not None:
            out["browser"] = self.browser
        return out

    @classmethod
    def from_dict(cls, raw: Any) -> TabCommand | None:
        if not isinstance(raw, dict):
            return None
        ctype = raw.get("type")
        if not isinstance(ctype, str) or not ctype:
            return None
        raw_ids = raw.get("tabIds")
        tab_ids: tuple[int, ...] | None = None
        if isinstance(raw_ids, list):
            tab_ids = tuple(i for i in (_as_int(x) for x in raw_ids) if i is not None)
        ts = _as_int(raw.get("timestamp"))
        return cls(
            type=ctype,
            tab_id=_as_int(raw.get("tabId")),
            tab_ids=tab_ids,
            window_id=_as_int(raw.get("windowId")),
            url=_opt_str(raw.get("url")),
            browser=_opt_str(raw.get("browser")),
            timestamp=ts if ts is not None else 0,
        )
