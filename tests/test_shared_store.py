from __future__ import annotations

import json
import os
import time


def _snapshot(*tab_ids: int, url: str = "https://example.com/"):
    from tabwatch.messages import TabRecord, TabsSnapshot

    return TabsSnapshot(tabs=tuple(TabRecord(tab_id=i, window_id=1, title=f"t{i}", url=url) for i in tab_ids))


def _age(path, seconds: float) -> None:
    ts = time.time() - seconds
    os.utime(path, (ts, ts))


def test_snapshot_write_is_atomic_and_readable(tmp_path) -> None:
    from tabwatch.shared_store import SharedStore

    store = SharedStore(tmp_path)
    assert store.write_snapshot("chrome", _snapshot(1, 2)) is True

    raw = json.loads((tmp_path / "tabs-chrome.json").read_text(encoding="utf-8"))
    assert raw["tabCount"] == 2
    assert [t["tabId"] for t in raw["tabs"]] == [1, 2]
    # No temp files left behind.
    assert sorted(p.name for p in tmp_path.iterdir()) == ["tabs-chrome.json"]

    snap = store.read_snapshot("chrome")
    assert snap is not None
    assert [t.tab_id for t in snap.tabs] == [1, 2]


def test_corrupt_or_missing_files_degrade_to_none(tmp_path) -> None:
    from tabwatch.shared_store import SharedStore

    store = SharedStore(tmp_path)
    assert store.read_snapshot("chrome") is None

    (tmp_path / "tabs-chrome.json").write_text("{not json", encoding="utf-8")
    assert store.read_snapshot("chrome") is None

    (tmp_path / "commands-chrome.json").write_bytes(b"\xff\xfe\x00")
    assert store.pending_commands("chrome") == []

    (tmp_path / "connection-chrome.txt").write_bytes(b"\xffconnected")
    assert store.is_connected("chrome") is False


def test_merge_is_idempotent_and_tags_browser(tmp_path) -> None:
    from tabwatch.shared_store import SharedStore

    store = SharedStore(tmp_path)
    store.write_snapshot("chrome", _snapshot(1, 2))
    store.write_snapshot("brave", _snapshot(1))
    store.set_connected("chrome", True)
    store.set_connected("brave", True)

    first = store.read_all_connected()
    second = store.read_all_connected()
    assert first == second
    assert first.total_tab_count == 3
    assert {t.key for t in first.tabs} == {"chrome-1", "chrome-2", "brave-1"}
    assert set(first.connected_browsers) == {"chrome", "brave"}
    assert set(first.connected_browser_names) == {"Chrome", "Brave"}


def test_stale_heartbeat_and_stale_snapshot_drop_browser(tmp_path) -> None:
    from tabwatch.shared_store import SharedStore

    store = SharedStore(tmp_path)
    store.write_snapshot("chrome", _snapshot(1))
    store.set_connected("chrome", True)
    assert store.connected_browsers() == ["chrome"]

    # Bridge crashed: the flag still says "connected" but it is too old.
    _age(tmp_path / "connection-chrome.txt", 11)
    assert store.is_connected("chrome") is False
    # A fresh snapshot alone still counts as live data.
    assert store.read_all_connected().total_tab_count == 1

    _age(tmp_path / "tabs-chrome.json", 16)
    assert store.read_all_connected().total_tab_count == 0


def test_disconnected_flag_is_not_live(tmp_path) -> None:
    from tabwatch.shared_store import SharedStore

    store = SharedStore(tmp_path)
    store.set_connected("edge", False)
    assert store.is_connected("edge") is False
    assert store.any_connected() is False
    assert (tmp_path / "connection-edge.txt").read_text(encoding="utf-8") == "disconnected"


def test_commands_are_delivered_at_most_once(tmp_path) -> None:
    from tabwatch.messages import TabCommand
    from tabwatch.shared_store import SharedStore

    store = SharedStore(tmp_path)
    assert store.enqueue_command(TabCommand.close(1, browser="chrome"))
    assert store.enqueue_command(TabCommand.close_tabs([2, 3], browser="chrome"))
    assert store.enqueue_command(TabCommand.close(9, browser="brave"))
    assert len(store.pending_commands("chrome")) == 2

    drained = store.drain_commands("chrome")
    assert [c.type for c in drained] == ["CLOSE_TAB", "CLOSE_TABS"]
    assert drained[1].tab_ids == (2, 3)
    assert store.drain_commands("chrome") == []
    assert store.pending_commands("brave")[0].tab_id == 9
    assert not any(p.name.endswith(".drain") for p in tmp_path.iterdir())


def test_drain_waits_for_an_enqueue_in_progress(tmp_path, monkeypatch) -> None:
    import threading

    from tabwatch import shared_store
    from tabwatch.messages import TabCommand
    from tabwatch.shared_store import SharedStore

    store = SharedStore(tmp_path)
    assert store.enqueue_command(TabCommand.close(1, browser="chrome"))

    real_write = shared_store._atomic_write_text
    drained: list = []
    drainer: list[threading.Thread] = []

    def write_with_drain_in_between(path, text):
        if path.name == "commands-chrome.json" and not drainer:
            # The enqueue has read the queue but not yet written it back.
            t = threading.Thread(target=lambda: drained.extend(store.drain_commands("chrome")))
            drainer.append(t)
            t.start()
            t.join(0.2)
            assert t.is_alive()
        real_write(path, text)

    monkeypatch.setattr(shared_store, "_atomic_write_text", write_with_drain_in_between)
    assert store.enqueue_command(TabCommand.close(2, browser="chrome"))
    drainer[0].join(5)
    assert not drainer[0].is_alive()

    delivered = drained + store.drain_commands("chrome")
    assert [c.tab_id for c in delivered] == [1, 2]


def test_commands_without_browser_go_to_unknown_queue(tmp_path) -> None:
    from tabwatch.messages import TabCommand
    from tabwatch.shared_store import SharedStore

    store = SharedStore(tmp_path)
    store.enqueue_command(TabCommand.request_update())
    assert (tmp_path / "commands-unknown.json").exists()
    assert [c.type for c in store.drain_all_commands()] == ["REQUEST_UPDATE"]


def test_unknown_browser_ids_are_discovered(tmp_path) -> None:
    from tabwatch.shared_store import SharedStore

    store = SharedStore(tmp_path)
    store.write_snapshot("arc", _snapshot(4))
    store.set_connected("arc", True)

    assert store.browsers()[-1] == "arc"
    assert "arc" in store.connected_browsers()
    merged = store.read_all_connected()
    assert [t.key for t in merged.tabs] == ["arc-4"]


def test_latest_snapshot_mtime_tracks_newest_file(tmp_path) -> None:
    from tabwatch.shared_store import SharedStore

    store = SharedStore(tmp_path)
    assert store.latest_snapshot_mtime() is None
    store.write_snapshot("chrome", _snapshot(1))
    _age(tmp_path / "tabs-chrome.json", 5)
    older = store.latest_snapshot_mtime()
    store.write_snapshot("brave", _snapshot(2))
    newer = store.latest_snapshot_mtime()
    assert older is not None and newer is not None
    assert newer > older


def test_describe_reports_per_browser_state(tmp_path) -> None:
    from tabwatch.messages import TabCommand
    from tabwatch.shared_store import SharedStore

    store = SharedStore(tmp_path)
    store.write_snapshot("chrome", _snapshot(1, 2))
    store.set_connected("chrome", True)
    store.enqueue_command(TabCommand.close(1, browser="chrome"))

    info = store.describe()
    assert list(info) == ["chrome"]
    assert info["chrome"]["connected"] is True
    assert info["chrome"]["tabCount"] == 2
    assert info["chrome"]["pendingCommands"] == 1
