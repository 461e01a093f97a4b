"""
LiveLoop DMX State Manager - Single Source of Truth for channel values

Holds LiveLevels: the one 512-channel buffer the transmitter streams to
hardware. Scenes store their own copies; recalling one copies into here.

EDIT INTENTS:
- Every mutation bumps a version counter and records when it happened
- Manual channel edits are "soft" (the transmitter waits for the debounce
  window to go quiet before publishing them)
- Bulk writes (blackout, full, fill, recall, load) are "urgent" and are
  published on the transmitter's next cycle
- The transmitter reads everything through snapshot(), under the same lock
"""

import time
import threading
from dataclasses import dataclass
from typing import List
import core_registry as reg

DMX_CHANNELS = 512


def clamp_level(value) -> int:
    try:
        value = int(round(float(value)))
    except (TypeError, ValueError):
        return 0
    return max(0, min(255, value))


def normalize_levels(levels) -> List[int]:
    """Clamp every value and pad/truncate to exactly 512 channels."""
    out = [clamp_level(v) for v in list(levels or [])[:DMX_CHANNELS]]
    out.extend([0] * (DMX_CHANNELS - len(out)))
    return out


@dataclass
class LevelsSnapshot:
    version: int
    levels: List[int]
    edited_at: float
    urgent: bool


class DMXStateManager:
    """Thread-safe owner of LiveLevels."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._levels = [0] * DMX_CHANNELS
        self.lock = threading.Lock()
        self._version = 0
        self._edited_at = 0.0
        self._urgent = False
        self._last_emit_time = 0.0  # Throttle socketio emit to ~10fps

    def _mark_edit(self, urgent):
        # Caller holds self.lock
        self._version += 1
        self._edited_at = self._clock()
        # Urgent stays set until the transmitter publishes this version
        self._urgent = self._urgent or urgent

    # ─────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────

    def get_levels(self) -> List[int]:
        with self.lock:
            return list(self._levels)

    def get_channel(self, index) -> int:
        """Get single channel value (0-indexed); out of range reads as 0"""
        with self.lock:
            if isinstance(index, int) and 0 <= index < DMX_CHANNELS:
                return self._levels[index]
            return 0

    @property
    def version(self) -> int:
        with self.lock:
            return self._version

    def snapshot(self) -> LevelsSnapshot:
        with self.lock:
            return LevelsSnapshot(self._version, list(self._levels), self._edited_at, self._urgent)

    def clear_urgent(self, version):
        """Called by the transmitter once `version` has been published."""
        with self.lock:
            if self._version == version:
                self._urgent = False

    # ─────────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────────

    def set_channel(self, index, value) -> bool:
        """Set one channel. Out-of-range index is a no-op; value is clamped.

        Returns True if the buffer changed.
        """
        try:
            index = int(index)
        except (TypeError, ValueError):
            return False
        if index < 0 or index >= DMX_CHANNELS:
            return False
        value = clamp_level(value)
        with self.lock:
            if self._levels[index] == value:
                return False
            self._levels[index] = value
            self._mark_edit(urgent=False)
        self._emit()
        return True

    def set_levels(self, levels, urgent=True):
        """Bulk overwrite of all 512 channels."""
        new_levels = normalize_levels(levels)
        with self.lock:
            self._levels = new_levels
            self._mark_edit(urgent=urgent)
        self._emit(force=True)

    def fill(self, value):
        self.set_levels([clamp_level(value)] * DMX_CHANNELS)

    def blackout(self):
        self.fill(0)

    def full(self):
        self.fill(255)

    def _emit(self, force=False):
        now = time.monotonic()
        if not force and now - self._last_emit_time <= 0.1:
            return
        self._last_emit_time = now
        reg.emit('dmx_update', {'levels': self.get_levels()})
