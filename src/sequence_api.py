"""
Sequence Client Gateway

WebSocket endpoint (/ws) carrying JSON events {"event": ..., "data": ...}:
- move          {servo, angle, speed}  - direct write, no store, no delay
- saveSequence  [step, ...]            - append a group, persist
- getSequences                         - reply sequencesList
- playSequence                         - play stored groups (homing first)
- downloadTxt                          - export text, reply txtReady
- importTxt     "<text>"               - stage text file, play it

Server-pushed events: notice, deviceError, sequenceCaptured.

REST endpoints:
- GET /api/sequences - Snapshot of stored groups
- GET /api/status    - Player state and connection info
- GET /downloadTxt   - Export and download sequences.txt
"""

import json
import asyncio
import logging
from pathlib import Path

from aiohttp import web

from lib.servo import Step, encode_step, StorageWriteError, ChannelWriteError
from lib.connection_logger import log_ws_connect, log_ws_disconnect, log_client_event

logger = logging.getLogger(__name__)


class ClientGateway:
    """
    Forwards client events into the store, player and channel,
    and pushes results and notices back to clients.
    """

    def __init__(self, channel, store, player, import_path="imported_moves.txt"):
        """
        Args:
            channel: SerialChannel for direct moves.
            store: SequenceStore shared with the player and device listener.
            player: SequencePlayer owning playback sessions.
            import_path: Staging file for importTxt content.
        """
        self.channel = channel
        self.store = store
        self.player = player
        self.import_path = Path(import_path)
        self.clients = set()

        self._handlers = {
            "move": self._on_move,
            "saveSequence": self._on_save_sequence,
            "getSequences": self._on_get_sequences,
            "playSequence": self._on_play_sequence,
            "downloadTxt": self._on_download_txt,
            "importTxt": self._on_import_txt,
        }

    # =========================================================================
    # WebSocket
    # =========================================================================

    async def handle_websocket(self, request):
        """GET /ws - Client event channel"""
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.clients.add(ws)
        logger.info(f"Client connected. Total: {len(self.clients)}")
        log_ws_connect(request)

        async def reply(event, data=None):
            await self._send(ws, event, data)

        try:
            async for msg in ws:
                if msg.type != web.WSMsgType.TEXT:
                    continue
                try:
                    message = json.loads(msg.data)
                except json.JSONDecodeError:
                    logger.warning(f"[WS] Ignoring non-JSON frame: {msg.data[:80]!r}")
                    await reply("notice", {"level": "warning", "message": "Invalid JSON message"})
                    continue

                if not isinstance(message, dict):
                    await reply("notice", {"level": "warning", "message": "Message must be an object"})
                    continue

                event = message.get("event", "")
                log_client_event(request, event)
                await self.dispatch(event, message.get("data"), reply)
        finally:
            self.clients.discard(ws)
            logger.info(f"Client disconnected. Total: {len(self.clients)}")
            log_ws_disconnect(request)

        return ws

    async def dispatch(self, event, data, reply):
        """
        Route one client event.

        Args:
            event: Event name.
            data: Event payload (already JSON-decoded).
            reply: async function(event, data) answering the sender.
        """
        handler = self._handlers.get(event)
        if handler is None:
            logger.warning(f"[WS] Unknown event: {event!r}")
            await reply("notice", {"level": "warning", "message": f"Unknown event: {event}"})
            return
        await handler(data, reply)

    async def broadcast(self, event, data=None):
        """Send an event to every connected client."""
        for ws in list(self.clients):
            if not ws.closed:
                await self._send(ws, event, data)

    async def report_device_error(self, error):
        """Tell every client the device channel is degraded."""
        await self.broadcast("deviceError", {"message": str(error)})

    async def _send(self, ws, event, data):
        try:
            await ws.send_json({"event": event, "data": data})
        except (ConnectionResetError, RuntimeError) as e:
            logger.debug(f"Failed to send to WebSocket: {e}")
            self.clients.discard(ws)

    # =========================================================================
    # Event handlers
    # =========================================================================

    async def _on_move(self, data, reply):
        step = Step.from_mapping(data)
        if not step.valid:
            logger.warning(f"[WS] Ignoring malformed move: {data!r}")
            await reply("notice", {"level": "warning", "message": "Move needs numeric servo, angle and speed"})
            return

        command = encode_step(step)
        logger.info(f"Sending command: {command.strip()}")
        try:
            await asyncio.to_thread(self.channel.write_line, command)
        except ChannelWriteError as e:
            logger.error(f"Move failed: {e}")
            await self.report_device_error(e)

    async def _on_save_sequence(self, data, reply):
        if not isinstance(data, list) or not data:
            await reply("notice", {"level": "warning", "message": "Sequence must be a non-empty list of steps"})
            return

        group = [Step.from_mapping(item) for item in data]
        try:
            self.store.record_sequence(group)
        except StorageWriteError as e:
            await reply("notice", {"level": "error", "message": str(e)})

    async def _on_get_sequences(self, data, reply):
        await reply("sequencesList", self.store.to_json_ready())

    async def _on_play_sequence(self, data, reply):
        if self.player.is_busy():
            await reply("notice", {"level": "warning", "message": "Playback already in progress"})
            return
        self.player.play_stored_sequence()

    async def _on_download_txt(self, data, reply):
        try:
            path = self.store.export_to_text()
        except StorageWriteError as e:
            await reply("notice", {"level": "error", "message": str(e)})
            return
        await reply("txtReady", path)

    async def _on_import_txt(self, data, reply):
        if not isinstance(data, str):
            await reply("notice", {"level": "warning", "message": "importTxt expects text content"})
            return

        if self.player.is_busy():
            await reply("notice", {"level": "warning", "message": "Playback already in progress"})
            return

        try:
            self.import_path.write_text(data, encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to stage import file {self.import_path}: {e}")
            await reply("notice", {"level": "error", "message": f"Failed to write {self.import_path}: {e}"})
            return
        logger.info(f"Imported text saved to {self.import_path}")

        if not self.player.play_from_file(self.import_path):
            await reply("notice", {"level": "warning", "message": "Playback already in progress"})

    # =========================================================================
    # REST handlers
    # =========================================================================

    async def handle_sequences(self, request):
        """GET /api/sequences - Snapshot of stored groups"""
        return web.json_response(self.store.to_json_ready())

    async def handle_status(self, request):
        """GET /api/status - Player and device status"""
        return web.json_response({
            'state': self.player.state.value,
            'connected': self.channel.is_connected(),
            'port': self.channel.port,
            'clients': len(self.clients),
            'sequences': len(self.store),
        })

    async def handle_download_txt(self, request):
        """GET /downloadTxt - Export the store and return it as an attachment"""
        try:
            path = self.store.export_to_text()
        except StorageWriteError as e:
            return web.json_response({'error': str(e)}, status=500)

        return web.FileResponse(
            path,
            headers={'Content-Disposition': f'attachment; filename="{Path(path).name}"'}
        )


def setup_routes(app, gateway, cors=None):
    """Add gateway routes to the app."""
    api_routes = [
        web.get('/api/sequences', gateway.handle_sequences),
        web.get('/api/status', gateway.handle_status),
        web.get('/downloadTxt', gateway.handle_download_txt),
    ]
    for route in api_routes:
        resource_route = app.router.add_route(route.method, route.path, route.handler)
        if cors is not None:
            cors.add(resource_route)

    # WebSocket route (no CORS)
    app.router.add_get('/ws', gateway.handle_websocket)

    logger.info("Sequence routes registered: /ws, /api/sequences, /api/status, /downloadTxt")
