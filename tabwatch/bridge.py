from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from typing import Any, BinaryIO

from .config import BridgeConfig
from .framing import FrameError, decode_json, encode_json, read_frame, write_frame
from .messages import CONNECTION_STATUS, ERROR, TABS_UPDATE, UNKNOWN_BROWSER, IncomingMessage, TabCommand
from .shared_store import SharedStore

_LOGGER = logging.getLogger("tabwatch.bridge")

EXIT_OK = 0
EXIT_PROTOCOL_FAULT = 1


class TabBridge:
    """Native Messaging host: Extension (stdin/stdout frames) <-> SharedStore (files).

    - A blocking read loop classifies incoming frames and writes snapshots + heartbeats.
    - A poll task drains this browser's command queue every few hundred ms and sends frames.
    - Both share only the outbound stream (guarded by one lock) and the files on disk.
    """

    def __init__(
        self,
        store: SharedStore,
        *,
        reader: BinaryIO | None = None,
        writer: BinaryIO | None = None,
        config: BridgeConfig | None = None,
    ) -> None:
        self._store = store
        self._reader = reader if reader is not None else sys.stdin.buffer
        self._writer = writer if writer is not None else sys.stdout.buffer
        self._cfg = config or BridgeConfig.from_env()
        self._write_lock = asyncio.Lock()
        self._browser = UNKNOWN_BROWSER

    @property
    def browser(self) -> str:
        return self._browser

    def _latch_browser(self, candidate: str) -> None:
        # Identity is decided once; later messages never re-detect.
        if self._browser == UNKNOWN_BROWSER and candidate != UNKNOWN_BROWSER:
            self._browser = candidate
            _LOGGER.info("detected browser=%s", candidate)

    # ─────────────────────────────────────────────────────────────────────────
    # Extension -> host
    # ─────────────────────────────────────────────────────────────────────────

    def _read_message(self) -> dict[str, Any] | None:
        payload = read_frame(self._reader)
        if payload is None:
            return None
        return decode_json(payload)

    def handle_message(self, msg: IncomingMessage) -> None:
        _LOGGER.debug("received type=%s", msg.type)

        if msg.type == TABS_UPDATE:
            if msg.data is None:
                _LOGGER.warning("TABS_UPDATE without data ignored")
                return
            self._latch_browser(msg.detected_browser())
            self._store.set_connected(self._browser, True)
            self._store.write_snapshot(self._browser, msg.data)
            _LOGGER.debug("wrote %d tabs for %s", len(msg.data.tabs), self._browser)
            return

        if msg.type == CONNECTION_STATUS:
            self._latch_browser(msg.detected_browser())
            self._store.set_connected(self._browser, True)
            _LOGGER.debug("heartbeat browser=%s status=%s", self._browser, msg.status)
            return

        if msg.type == ERROR:
            _LOGGER.warning("extension error code=%s message=%s", msg.code, msg.message or "unknown")
            return

        _LOGGER.info("unknown message type ignored: %s", msg.type)

    async def _extension_loop(self) -> int:
        while True:
            try:
                raw = await asyncio.to_thread(self._read_message)
            except FrameError as exc:
                _LOGGER.error("protocol fault, closing connection: %s", exc)
                return EXIT_PROTOCOL_FAULT
            except OSError as exc:
                _LOGGER.error("stdin read failed, closing connection: %s", exc)
                return EXIT_PROTOCOL_FAULT
            if raw is None:
                _LOGGER.info("extension closed the connection")
                return EXIT_OK
            self.handle_message(IncomingMessage.from_dict(raw))

    # ─────────────────────────────────────────────────────────────────────────
    # Host -> extension
    # ─────────────────────────────────────────────────────────────────────────

    async def _ext_send(self, payload: dict[str, Any]) -> None:
        # Length prefix and payload must never interleave with another writer.
        async with self._write_lock:
            await asyncio.to_thread(write_frame, self._writer, encode_json(payload))

    async def send_command(self, command: TabCommand) -> bool:
        wire = command.to_wire()
        if wire is None:
            _LOGGER.warning("dropping malformed command type=%s", command.type)
            return False
        try:
            await self._ext_send(wire)
        except (OSError, ValueError) as exc:
            # At-most-once: the UI already applied its optimistic update.
            _LOGGER.warning("failed to send command type=%s: %s", command.type, exc)
            return False
        _LOGGER.info("sent command type=%s browser=%s", command.type, self._browser)
        return True

    async def send_pending_commands(self) -> int:
        sent = 0
        for command in self._store.drain_commands(self._browser):
            if await self.send_command(command):
                sent += 1
        return sent

    async def _command_loop(self) -> None:
        while True:
            try:
                await self.send_pending_commands()
            except Exception:  # noqa: BLE001
                _LOGGER.exception("command poll failed")
            await asyncio.sleep(self._cfg.command_poll_interval_s)

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def run(self) -> int:
        _LOGGER.info("bridge starting store=%s", self._store.root)
        self._store.set_connected(self._browser, True)

        poller = asyncio.create_task(self._command_loop(), name="tabwatch-command-poll")
        try:
            code = await self._extension_loop()
        finally:
            poller.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await poller
            self._store.set_connected(self._browser, False)
            _LOGGER.info("bridge ended browser=%s", self._browser)
        return code
