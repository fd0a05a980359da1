"""
Sequence Player
Schedules stored or imported steps onto the serial channel.

States:
  IDLE -> HOMING -> PLAYING -> IDLE        (stored sequence)
  IDLE -> IMPORT_PLAYING -> IDLE           (imported text file)

Only one session runs at a time; a second play request is rejected.
Each session is one asyncio.Task; waits are asyncio sleeps, so the
server keeps serving clients during playback.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from pathlib import Path

from .command_encoder import Step, encode_step, iter_decoded_lines
from .exceptions import ChannelWriteError

logger = logging.getLogger(__name__)

# Homing pose
HOMING_SERVO_IDS = range(1, 7)
HOMING_ANGLE = 90
HOMING_SPEED = 5

# Timing defaults (milliseconds)
HOME_SETTLE_MS = 2000
DELAY_PER_SPEED_UNIT_MS = 50
MIN_GROUP_DELAY_MS = 50
IMPORT_LINE_DELAY_MS = 1000


class PlayerState(enum.Enum):
    IDLE = "idle"
    HOMING = "homing"
    PLAYING = "playing"
    IMPORT_PLAYING = "import_playing"


@dataclass
class PlaybackTiming:
    home_settle_ms: float = HOME_SETTLE_MS
    delay_per_speed_unit_ms: float = DELAY_PER_SPEED_UNIT_MS
    min_group_delay_ms: float = MIN_GROUP_DELAY_MS
    import_line_delay_ms: float = IMPORT_LINE_DELAY_MS

    @classmethod
    def from_config(cls, playback_cfg):
        """Build timing from the `playback` config section (missing keys keep defaults)."""
        playback_cfg = playback_cfg or {}
        return cls(
            home_settle_ms=playback_cfg.get("home_settle_ms", HOME_SETTLE_MS),
            delay_per_speed_unit_ms=playback_cfg.get("delay_per_speed_unit_ms", DELAY_PER_SPEED_UNIT_MS),
            min_group_delay_ms=playback_cfg.get("min_group_delay_ms", MIN_GROUP_DELAY_MS),
            import_line_delay_ms=playback_cfg.get("import_line_delay_ms", IMPORT_LINE_DELAY_MS),
        )


def homing_commands():
    """Command lines that move servos 1..6 to the neutral pose, in id order."""
    return [encode_step(Step(servo, HOMING_ANGLE, HOMING_SPEED)) for servo in HOMING_SERVO_IDS]


class SequencePlayer:
    """
    Drives timed playback of the SequenceStore or of an imported file.
    """

    def __init__(self, channel, store, timing=None, on_device_error=None, sleep=asyncio.sleep):
        """
        Args:
            channel: SerialChannel (write_lines is called from a worker thread).
            store: SequenceStore to snapshot for stored playback.
            timing: PlaybackTiming; defaults apply when None.
            on_device_error: async function(error) called when a write fails.
            sleep: async function(seconds); injectable for tests.
        """
        self.channel = channel
        self.store = store
        self.timing = timing or PlaybackTiming()
        self.on_device_error = on_device_error
        self._sleep = sleep
        self._state = PlayerState.IDLE
        self._task = None

    @property
    def state(self):
        return self._state

    def is_busy(self):
        return self._state != PlayerState.IDLE

    # ─────────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────────

    def play_stored_sequence(self):
        """
        Start playback of the store (homing first).

        Returns:
            bool: True if a session was started. False when the store is
            empty or another session is running.
        """
        if self.is_busy():
            logger.warning(f"[SequencePlayer] Play rejected, session active ({self._state.value})")
            return False

        snapshot = self.store.list()
        if not snapshot:
            logger.info("[SequencePlayer] No stored sequences, nothing to play")
            return False

        self._start(self._run_stored(snapshot), PlayerState.HOMING)
        return True

    def play_from_file(self, path):
        """
        Start playback of a text file, one line per second, no homing.
        No completion event is emitted.

        Returns:
            bool: True if a session was started, False if one is running.
        """
        if self.is_busy():
            logger.warning(f"[SequencePlayer] Import play rejected, session active ({self._state.value})")
            return False

        self._start(self._run_file(Path(path)), PlayerState.IMPORT_PLAYING)
        return True

    async def wait(self):
        """Wait for the current session (if any) to finish."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    def cancel(self):
        """Stop scheduling further writes. Used on shutdown."""
        if self._task and not self._task.done():
            self._task.cancel()
            logger.info("[SequencePlayer] Playback cancelled")

    async def shutdown(self):
        self.cancel()
        await self.wait()

    def group_delay_ms(self, group):
        """
        Delay after a group: first step's speed x delay-per-unit,
        never below the configured floor.
        """
        speed = group[0].speed if group else None
        if speed is None:
            return self.timing.min_group_delay_ms
        return max(self.timing.min_group_delay_ms, speed * self.timing.delay_per_speed_unit_ms)

    # ─────────────────────────────────────────────────────────────────────
    # Internal: sessions
    # ─────────────────────────────────────────────────────────────────────

    def _start(self, coro, state):
        self._state = state
        self._task = asyncio.create_task(coro)
        self._task.add_done_callback(self._on_session_done)

    def _on_session_done(self, task):
        if task is self._task:
            self._state = PlayerState.IDLE
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[SequencePlayer] Session crashed: {exc!r}")

    async def _run_stored(self, snapshot):
        try:
            logger.info("[SequencePlayer] Homing servos to 90 before playback")
            loop = asyncio.get_running_loop()
            homing_started = loop.time()
            await self._write(homing_commands())
            # Settle time counts from the start of homing
            elapsed_ms = (loop.time() - homing_started) * 1000.0
            await self._wait_ms(max(0.0, self.timing.home_settle_ms - elapsed_ms))

            self._state = PlayerState.PLAYING
            logger.info(f"[SequencePlayer] Playing {len(snapshot)} groups")
            for group in snapshot:
                lines = []
                for step in group:
                    if step.valid:
                        lines.append(encode_step(step))
                    else:
                        logger.warning(f"[SequencePlayer] Skipping malformed step: {step}")
                if lines:
                    await self._write(lines)
                await self._wait_ms(self.group_delay_ms(group))

            logger.info("[SequencePlayer] Playback finished")
        except ChannelWriteError as e:
            await self._halt(e)
        finally:
            self._state = PlayerState.IDLE

    async def _run_file(self, path):
        try:
            try:
                text = path.read_text(encoding='utf-8')
            except OSError as e:
                logger.error(f"[SequencePlayer] Cannot read {path}: {e}")
                return

            logger.info(f"[SequencePlayer] Playing lines from {path}")
            for line, step in iter_decoded_lines(text):
                if step is None:
                    logger.warning(f"[SequencePlayer] Skipping malformed line: {line!r}")
                else:
                    await self._write([encode_step(step)])
                await self._wait_ms(self.timing.import_line_delay_ms)

            logger.info(f"[SequencePlayer] Finished playing {path}")
        except ChannelWriteError as e:
            await self._halt(e)
        finally:
            self._state = PlayerState.IDLE

    # ─────────────────────────────────────────────────────────────────────
    # Internal: helpers
    # ─────────────────────────────────────────────────────────────────────

    async def _write(self, lines):
        await asyncio.to_thread(self.channel.write_lines, lines)
        for line in lines:
            logger.info(f"[SequencePlayer] Sent: {line.strip()}")

    async def _wait_ms(self, ms):
        await self._sleep(ms / 1000.0)

    async def _halt(self, error):
        logger.error(f"[SequencePlayer] Channel write failed, playback halted: {error}")
        if self.on_device_error:
            await self.on_device_error(error)
