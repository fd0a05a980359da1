"""
Sequence Store
Thread-safe, process-lifetime list of recorded step groups.

Each entry is one group: a list of Steps written together during playback.
The full store is written to a JSON file on every saving mutation
and to a text file on export.
"""

import json
import logging
import threading
from pathlib import Path

from .command_encoder import Step, encode_sequence_to_text
from .exceptions import StorageWriteError

logger = logging.getLogger(__name__)


class SequenceStore:
    """
    Ordered groups of steps, guarded by a single lock.
    Insertion order is playback and export order.
    """

    def __init__(self, store_path="sequences.json", export_path="sequences.txt"):
        """
        Args:
            store_path: JSON file rewritten on capture end and manual save.
            export_path: Text file written by export_to_text().
        """
        self._lock = threading.Lock()
        self._groups = []
        self.store_path = Path(store_path)
        self.export_path = Path(export_path)

    def __len__(self):
        with self._lock:
            return len(self._groups)

    def is_empty(self):
        return len(self) == 0

    # ─────────────────────────────────────────────────────────────────────
    # Device capture
    # ─────────────────────────────────────────────────────────────────────

    def begin_capture(self):
        """Clear the store before a device-initiated recording."""
        with self._lock:
            self._groups = []
        logger.info("[SequenceStore] Capture started, store cleared")

    def append_captured_step(self, step: Step):
        with self._lock:
            self._groups.append([step])

    def end_capture(self):
        """Persist the full store. Raises StorageWriteError on disk failure."""
        with self._lock:
            payload = self._serialize()
        self._write(self.store_path, payload)
        logger.info(f"[SequenceStore] Capture saved to {self.store_path}")

    # ─────────────────────────────────────────────────────────────────────
    # Client operations
    # ─────────────────────────────────────────────────────────────────────

    def record_sequence(self, group):
        """
        Append a client-submitted group and persist the store.

        The in-memory append happens first; a StorageWriteError leaves
        the group in memory.
        """
        with self._lock:
            self._groups.append(list(group))
            payload = self._serialize()
        self._write(self.store_path, payload)
        logger.info(f"[SequenceStore] Sequence saved ({len(group)} steps)")

    def list(self):
        """Return an immutable snapshot: tuple of groups, each a tuple of Steps."""
        with self._lock:
            return tuple(tuple(group) for group in self._groups)

    def to_json_ready(self):
        """Snapshot as nested lists of dicts, ready for json.dumps."""
        return [[step.to_dict() for step in group] for group in self.list()]

    def export_to_text(self):
        """
        Write the store as text and return the file path.

        Raises:
            StorageWriteError: if the file cannot be written.
        """
        text = encode_sequence_to_text(self.list())
        self._write(self.export_path, text)
        logger.info(f"[SequenceStore] Exported to {self.export_path}")
        return str(self.export_path)

    # ─────────────────────────────────────────────────────────────────────
    # Internal
    # ─────────────────────────────────────────────────────────────────────

    def _serialize(self):
        data = [[step.to_dict() for step in group] for group in self._groups]
        return json.dumps(data, indent=2)

    def _write(self, path, content):
        try:
            with open(path, 'w', encoding='utf-8') as f:
                f.write(content)
        except OSError as e:
            logger.error(f"[SequenceStore] Write failed for {path}: {e}")
            raise StorageWriteError(f"Failed to write {path}: {e}", path=str(path)) from e
