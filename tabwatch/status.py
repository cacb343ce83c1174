from __future__ import annotations

from typing import Any

from .messages import browser_display_name
from .shared_store import SharedStore


def collect_status(store: SharedStore | None = None) -> dict[str, Any]:
    """Return a low-noise diagnostic bundle for the shared directory."""

    store = store or SharedStore()
    browsers = store.describe()
    connected = store.connected_browsers()
    have_data = any(info.get("tabCount") is not None for info in browsers.values())

    if connected:
        status = "connected"
        names = " + ".join(browser_display_name(b) for b in connected)
        reason = f"Extension bridge is connected ({names})."
        ok = True
    elif have_data:
        status = "waiting_for_extension"
        reason = "Snapshots exist but no bridge has sent a heartbeat recently."
        ok = False
    else:
        status = "no_data"
        reason = "No bridge has written to the shared directory yet."
        ok = False

    return {
        "ok": ok,
        "summary": {"ok": ok, "status": status, "reason": reason},
        "sharedDir": str(store.root),
        "connectedBrowsers": connected,
        "browsers": browsers,
    }
