from __future__ import annotations

import contextlib
import json
import os
import select
import struct
import subprocess
import sys
import time
from pathlib import Path
from typing import Any

_REPO_ROOT = Path(__file__).resolve().parents[1]


def _read_exact(fp, n: int, *, timeout_s: float) -> bytes:
    buf = bytearray()
    fd = fp.fileno()
    deadline = time.time() + max(0.01, float(timeout_s))
    while len(buf) < n:
        remaining = deadline - time.time()
        if remaining <= 0:
            raise TimeoutError(f"timeout while reading {n} bytes")
        r, _w, _x = select.select([fp], [], [], remaining)
        if not r:
            continue
        chunk = os.read(fd, n - len(buf))
        if not chunk:
            raise EOFError("unexpected EOF")
        buf.extend(chunk)
    return bytes(buf)


def _read_native_message(fp, *, timeout_s: float) -> dict[str, Any]:
    header = _read_exact(fp, 4, timeout_s=timeout_s)
    (length,) = struct.unpack("<I", header)
    raw = _read_exact(fp, int(length), timeout_s=timeout_s)
    data = json.loads(raw.decode("utf-8"))
    assert isinstance(data, dict)
    return data


def _write_native_message(fp, msg: dict[str, Any]) -> None:
    raw = json.dumps(msg, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    fp.write(struct.pack("<I", len(raw)))
    fp.write(raw)
    fp.flush()


def _wait_for(path: Path, *, timeout_s: float) -> None:
    deadline = time.time() + timeout_s
    while time.time() < deadline and not path.exists():
        time.sleep(0.02)
    assert path.exists(), f"{path.name} never appeared"


def test_native_host_roundtrip_with_monitor(tmp_path: Path) -> None:
    from tabwatch.config import MonitorConfig
    from tabwatch.monitor import TabMonitor
    from tabwatch.shared_store import SharedStore

    env = os.environ.copy()
    env["TABWATCH_DATA_DIR"] = str(tmp_path)
    env["TABWATCH_COMMAND_POLL_INTERVAL"] = "0.05"
    env["PYTHONPATH"] = os.pathsep.join(p for p in (str(_REPO_ROOT), env.get("PYTHONPATH", "")) if p)

    proc = subprocess.Popen(
        [sys.executable, "-m", "tabwatch.native_host"],
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        cwd=str(_REPO_ROOT),
        env=env,
    )
    assert proc.stdin is not None
    assert proc.stdout is not None

    try:
        # 1) Extension -> host: a full snapshot from Chrome.
        _write_native_message(
            proc.stdin,
            {
                "type": "TABS_UPDATE",
                "browser": "chrome",
                "timestamp": int(time.time() * 1000),
                "data": {
                    "tabs": [
                        {"tabId": 1, "windowId": 1, "title": "Repo A", "url": "https://github.com/a", "active": True},
                        {"tabId": 2, "windowId": 1, "title": "Repo B", "url": "https://github.com/b"},
                        {"tabId": 3, "windowId": 1, "title": "Docs", "url": "https://docs.python.org/3/"},
                    ],
                    "tabCount": 3,
                },
            },
        )
        _wait_for(tmp_path / "tabs-chrome.json", timeout_s=5.0)

        # 2) Monitor sees the merged view.
        monitor = TabMonitor(SharedStore(tmp_path), config=MonitorConfig())
        assert monitor.poll_tabs() is True
        assert monitor.is_connected is True
        assert "chrome" in monitor.connected_browsers
        assert monitor.tab_count == 3
        assert monitor.domain_count == 2
        assert monitor.active_domain == "github.com"

        # 3) Monitor -> host -> extension: optimistic close goes out as a frame.
        tab = next(t for t in monitor.tabs if t.tab_id == 2)
        monitor.close_tab(tab)
        assert monitor.tab_count == 2
        cmd = _read_native_message(proc.stdout, timeout_s=5.0)
        assert cmd == {"type": "CLOSE_TAB", "tabId": 2}

        # 4) Extension goes away: clean exit, flag flips to disconnected.
        proc.stdin.close()
        assert proc.wait(timeout=5.0) == 0
        assert (tmp_path / "connection-chrome.txt").read_text(encoding="utf-8") == "disconnected"
    finally:
        with contextlib.suppress(Exception):
            proc.terminate()
        with contextlib.suppress(Exception):
            proc.wait(timeout=2.0)


def test_native_host_exits_nonzero_on_bad_frame(tmp_path: Path) -> None:
    env = os.environ.copy()
    env["TABWATCH_DATA_DIR"] = str(tmp_path)
    env["PYTHONPATH"] = os.pathsep.join(p for p in (str(_REPO_ROOT), env.get("PYTHONPATH", "")) if p)

    proc = subprocess.run(
        [sys.executable, "-m", "tabwatch.native_host"],
        input=struct.pack("<I", 0),
        capture_output=True,
        cwd=str(_REPO_ROOT),
        env=env,
        timeout=10.0,
    )
    assert proc.returncode == 1
    assert proc.stdout == b""
    assert b"protocol fault" in proc.stderr
