"""
Device Listener
Consumes lines sent by the device and records device-initiated captures
into the SequenceStore.

  SEQUENCE_START            -> store.begin_capture()
  SEQUENCE,<s>,<a>,<sp>     -> store.append_captured_step()
  SEQUENCE_END              -> store.end_capture()
  anything else             -> logged only
"""

import asyncio
import logging

from .command_encoder import decode_line
from .exceptions import ChannelReadError, StorageWriteError

logger = logging.getLogger(__name__)

CAPTURE_START = "SEQUENCE_START"
CAPTURE_END = "SEQUENCE_END"
CAPTURE_STEP_PREFIX = "SEQUENCE,"


class DeviceListener:
    """
    Reads the device channel in a background task.
    """

    def __init__(self, channel, store, notify=None):
        """
        Args:
            channel: SerialChannel providing read_line().
            store: SequenceStore receiving captured steps.
            notify: async function(event, data) used to broadcast
                    capture results and failures to clients.
        """
        self.channel = channel
        self.store = store
        self.notify = notify
        self._task = None

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._listen())
            logger.info("[DeviceListener] Started")

    async def stop(self):
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("[DeviceListener] Stopped")

    async def _listen(self):
        while True:
            try:
                line = await asyncio.to_thread(self.channel.read_line)
            except ChannelReadError as e:
                logger.error(f"[DeviceListener] Read failed, listener stopped: {e}")
                await self._notify("deviceError", {"message": str(e)})
                return

            if line is None:
                continue
            await self.handle_line(line)

    async def handle_line(self, line):
        """Dispatch one device line by protocol prefix."""
        line = line.strip()
        if not line:
            return

        logger.info(f"[DeviceListener] Device says: {line}")

        if line.startswith(CAPTURE_START):
            self.store.begin_capture()
        elif line.startswith(CAPTURE_END):
            await self._finish_capture()
        elif line.startswith(CAPTURE_STEP_PREFIX):
            step = decode_line(line[len(CAPTURE_STEP_PREFIX):])
            if step is None:
                logger.warning(f"[DeviceListener] Dropping malformed capture line: {line!r}")
                return
            self.store.append_captured_step(step)

    async def _finish_capture(self):
        try:
            self.store.end_capture()
        except StorageWriteError as e:
            await self._notify("notice", {"level": "error", "message": str(e)})
            return
        await self._notify("sequenceCaptured", {"count": len(self.store)})

    async def _notify(self, event, data):
        if self.notify:
            await self.notify(event, data)
