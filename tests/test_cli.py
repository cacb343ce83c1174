from __future__ import annotations

import json


def test_status_reports_no_data(tmp_path) -> None:
    from tabwatch.shared_store import SharedStore
    from tabwatch.status import collect_status

    report = collect_status(SharedStore(tmp_path))
    assert report["ok"] is False
    assert report["summary"]["status"] == "no_data"
    assert report["sharedDir"] == str(tmp_path)
    assert report["browsers"] == {}


def test_status_connected_and_waiting(tmp_path) -> None:
    import os
    import time

    from tabwatch.messages import TabRecord, TabsSnapshot
    from tabwatch.shared_store import SharedStore
    from tabwatch.status import collect_status

    store = SharedStore(tmp_path)
    store.write_snapshot("brave", TabsSnapshot(tabs=(TabRecord(tab_id=1, window_id=1),)))
    store.set_connected("brave", True)

    report = collect_status(store)
    assert report["ok"] is True
    assert report["summary"]["status"] == "connected"
    assert "Brave" in report["summary"]["reason"]
    assert report["browsers"]["brave"]["tabCount"] == 1

    old = time.time() - 60
    os.utime(tmp_path / "connection-brave.txt", (old, old))
    report = collect_status(store)
    assert report["summary"]["status"] == "waiting_for_extension"


def test_cli_status_exit_code(tmp_path, capsys, monkeypatch) -> None:
    from tabwatch import cli

    monkeypatch.setattr(cli, "configure_logging", lambda _level=None: None)

    assert cli.main(["--data-dir", str(tmp_path), "status"]) == 1
    out = json.loads(capsys.readouterr().out)
    assert out["summary"]["status"] == "no_data"


def test_cli_request_update_targets_connected_browsers(tmp_path, capsys, monkeypatch) -> None:
    from tabwatch import cli
    from tabwatch.shared_store import SharedStore

    monkeypatch.setattr(cli, "configure_logging", lambda _level=None: None)

    store = SharedStore(tmp_path)
    store.set_connected("chrome", True)

    assert cli.main(["--data-dir", str(tmp_path), "request-update"]) == 0
    assert json.loads(capsys.readouterr().out) == {"requested": ["chrome"]}
    assert [c.type for c in store.pending_commands("chrome")] == ["REQUEST_UPDATE"]


def test_cli_watch_once_prints_snapshot(tmp_path, capsys, monkeypatch) -> None:
    from tabwatch import cli
    from tabwatch.messages import TabRecord, TabsSnapshot
    from tabwatch.shared_store import SharedStore
    from tabwatch.windows import NullWindowBackend

    monkeypatch.setattr(cli, "default_window_backend", NullWindowBackend)
    monkeypatch.setattr(cli, "configure_logging", lambda _level=None: None)
    store = SharedStore(tmp_path)
    store.write_snapshot(
        "chrome",
        TabsSnapshot(
            tabs=(
                TabRecord(tab_id=1, window_id=1, url="https://github.com/a", active=True),
                TabRecord(tab_id=2, window_id=1, url="https://python.org/"),
            )
        ),
    )
    store.set_connected("chrome", True)

    assert cli.main(["--data-dir", str(tmp_path), "watch", "--once"]) == 0
    snap = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert snap["tabCount"] == 2
    assert snap["domainCount"] == 2
    assert snap["activeDomain"] == "github.com"
    assert snap["connectedBrowsers"] == ["chrome"]
