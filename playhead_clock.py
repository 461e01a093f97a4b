"""
Playhead Clock - Drives clip playheads from wall-clock time

Runs at TICK_HZ on its own thread and calls ConsoleManager.tick(). Playheads
advance by measured monotonic time, not by tick count, so a late tick never
slows playback down. Playhead positions are pushed to clients at a lower
rate than the tick rate.
"""

import time
import logging
import threading

import core_registry as reg

logger = logging.getLogger(__name__)


class PlayheadClock:

    DEFAULT_HZ = 30
    EMIT_INTERVAL = 0.1  # ~10 playhead updates per second

    def __init__(self, console, hz=DEFAULT_HZ, clock=time.monotonic):
        self.console = console
        self.hz = max(1, int(hz))
        self.interval = 1.0 / self.hz
        self._clock = clock
        self._running = False
        self._stop_flag = threading.Event()
        self._thread = None
        self._last_emit = 0.0
        self.ticks = 0

    def start(self):
        if self._running:
            return
        self._running = True
        self._stop_flag.clear()
        self._thread = threading.Thread(target=self._tick_loop, daemon=True,
                                        name="playhead-clock")
        self._thread.start()
        logger.info("Playhead clock started at %d Hz", self.hz)

    def stop(self):
        if not self._running:
            return
        self._stop_flag.set()
        self._running = False
        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None
        logger.info("Playhead clock stopped")

    @property
    def running(self):
        return self._running

    def step(self, now=None):
        """One tick: advance playheads and maybe push positions."""
        if now is None:
            now = self._clock()
        self.console.tick(now)
        self.ticks += 1
        if now - self._last_emit >= self.EMIT_INTERVAL:
            self._last_emit = now
            positions = self.console.playhead_snapshot()
            if positions:
                reg.emit('playhead_update', {'clips': positions})

    def _tick_loop(self):
        while not self._stop_flag.is_set():
            started = self._clock()
            try:
                self.step(started)
            except Exception as e:
                logger.exception("Playhead tick error: %s", e)
            sleep_time = self.interval - (self._clock() - started)
            if sleep_time > 0:
                self._stop_flag.wait(sleep_time)
