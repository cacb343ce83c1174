from __future__ import annotations

import os
import re
import sys
from pathlib import Path

APP_DIR_NAME = "tabwatch"


def _default_root(*, platform: str, home: Path) -> Path:
    if platform == "darwin":
        return home / "Library" / "Application Support" / APP_DIR_NAME
    if platform == "win32":
        local = os.environ.get("LOCALAPPDATA")
        base = Path(local) if local else (home / "AppData" / "Local")
        return base / APP_DIR_NAME
    xdg = os.environ.get("XDG_DATA_HOME")
    if isinstance(xdg, str) and xdg.strip():
        return Path(xdg.strip()).expanduser() / APP_DIR_NAME
    return home / ".local" / "share" / APP_DIR_NAME


def shared_root(*, platform: str | None = None, home: Path | None = None) -> Path:
    """Directory both processes agree on. `TABWATCH_DATA_DIR` wins over the platform default."""
    raw = os.environ.get("TABWATCH_DATA_DIR")
    if isinstance(raw, str) and raw.strip():
        return Path(raw.strip()).expanduser()
    return _default_root(platform=platform or sys.platform, home=home or Path.home())


def shared_dir(*, platform: str | None = None, home: Path | None = None) -> Path:
    p = shared_root(platform=platform, home=home)
    p.mkdir(parents=True, exist_ok=True)
    return p


_SAFE_ID_RE = re.compile(r"[^a-z0-9_.-]+")


def sanitize_browser_id(raw: str, *, max_len: int = 32) -> str:
    s = str(raw or "").strip().lower()
    if not s:
        return "unknown"
    s = _SAFE_ID_RE.sub("-", s).strip("-.") or "unknown"
    return s[: max(8, int(max_len))]


def snapshot_path(root: Path, browser: str) -> Path:
    return root / f"tabs-{sanitize_browser_id(browser)}.json"


def commands_path(root: Path, browser: str) -> Path:
    return root / f"commands-{sanitize_browser_id(browser)}.json"


def connection_path(root: Path, browser: str) -> Path:
    return root / f"connection-{sanitize_browser_id(browser)}.txt"
