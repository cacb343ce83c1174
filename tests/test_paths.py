from __future__ import annotations

from pathlib import Path


def test_shared_root_env_override(monkeypatch, tmp_path) -> None:
    from tabwatch import paths

    monkeypatch.setenv("TABWATCH_DATA_DIR", str(tmp_path / "shared"))
    p = paths.shared_dir()
    assert p == tmp_path / "shared"
    assert p.exists()


def test_default_root_per_platform(monkeypatch, tmp_path) -> None:
    from tabwatch import paths

    monkeypatch.delenv("TABWATCH_DATA_DIR", raising=False)
    monkeypatch.delenv("XDG_DATA_HOME", raising=False)
    monkeypatch.delenv("LOCALAPPDATA", raising=False)

    home = Path(tmp_path)
    assert paths.shared_root(platform="darwin", home=home) == home / "Library" / "Application Support" / "tabwatch"
    assert paths.shared_root(platform="linux", home=home) == home / ".local" / "share" / "tabwatch"
    assert paths.shared_root(platform="win32", home=home) == home / "AppData" / "Local" / "tabwatch"

    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))
    assert paths.shared_root(platform="linux", home=home) == tmp_path / "xdg" / "tabwatch"


def test_browser_file_names_are_sanitized(tmp_path) -> None:
    from tabwatch.paths import commands_path, connection_path, sanitize_browser_id, snapshot_path

    assert sanitize_browser_id("Chrome") == "chrome"
    assert sanitize_browser_id("../../etc/passwd") == "etc-passwd"
    assert sanitize_browser_id("") == "unknown"

    assert snapshot_path(tmp_path, "brave").name == "tabs-brave.json"
    assert commands_path(tmp_path, "brave").name == "commands-brave.json"
    assert connection_path(tmp_path, "brave").name == "connection-brave.txt"
    assert snapshot_path(tmp_path, "a/b").parent == tmp_path
