"""Chrome Native Messaging host for tabwatch.

This process is launched by the browser when the extension calls `connectNative()`.

It acts as a local bridge:
- Extension <-> native host: Chrome Native Messaging (stdin/stdout framing)
- Monitor UI <-> native host: per-browser files in the shared directory
"""

from __future__ import annotations

import asyncio

from .bridge import TabBridge
from .logging_setup import configure_logging
from .shared_store import SharedStore


def main() -> None:
    # Native messaging requires strict stdout framing. Never write logs to stdout.
    configure_logging()
    try:
        raise SystemExit(asyncio.run(TabBridge(SharedStore()).run()))
    except KeyboardInterrupt:
        raise SystemExit(0) from None


if __name__ == "__main__":
    main()
