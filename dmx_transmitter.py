"""
DMX Transmitter - Fixed-rate serial output of LiveLevels

Keeps a USB/serial DMX interface continuously fed with the live levels.

Timing:
- The loop runs at a fixed cadence (default 40 fps) on its own thread
- Manual channel edits are published to the outgoing frame only after the
  debounce window (default 200 ms) passes without further edits
- Bulk writes (blackout, full, scene recall) are published on the next cycle
- The published frame is resent every cycle; many receivers black out
  without a continuous signal

Wire format (DMX-512 physical layer):
    250000 baud, 8 data bits, no parity, 2 stop bits, no flow control
    BREAK (>= 88 us) -> MARK AFTER BREAK (>= 8 us) -> start code 0x00 + 512 slots

Failures never stop the loop: the port handle is dropped, the status goes to
"error", and the next cycle reopens and retries.
"""

import time
import logging
import threading
from enum import Enum
from typing import Callable, Dict, List, Optional

import serial
from serial.tools import list_ports as serial_list_ports

import core_registry as reg
from dmx_state_manager import DMXStateManager, DMX_CHANNELS

logger = logging.getLogger(__name__)

DMX_BAUD = 250000
START_CODE = 0x00
BREAK_SECONDS = 110e-6
MARK_AFTER_BREAK_SECONDS = 12e-6
OPEN_RETRY_SECONDS = 0.5


class DmxTransportError(Exception):
    """Base exception for DMX output errors."""
    pass


class DmxPortError(DmxTransportError):
    """Could not open the serial interface."""
    pass


class TransmitState(Enum):
    WAITING = "waiting"   # No interface selected
    SENDING = "sending"   # Interface selected, first frame not yet confirmed
    OK = "ok"
    ERROR = "error"


def open_dmx_port(path: str):
    """Open a serial port with DMX-512 framing."""
    try:
        return serial.Serial(
            port=path,
            baudrate=DMX_BAUD,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_TWO,
            xonxoff=False,
            rtscts=False,
            dsrdtr=False,
            timeout=0.1,
            write_timeout=0.1,
        )
    except (serial.SerialException, OSError, ValueError) as e:
        raise DmxPortError(f"Could not open DMX interface {path}: {e}") from e


def list_ports() -> List[Dict]:
    """Enumerate serial interfaces. A port's path is its only stable identity."""
    ports = []
    for info in serial_list_ports.comports():
        ports.append({
            "path": info.device,
            "kind": "usb" if getattr(info, "vid", None) is not None else None,
            "manufacturer": info.manufacturer or None,
            "product": info.product or None,
            "serial_number": info.serial_number or None,
        })
    ports.sort(key=lambda p: p["path"])
    return ports


def build_frame(levels) -> bytes:
    """Start code followed by exactly 512 channel bytes."""
    slots = bytes(levels[:DMX_CHANNELS])
    if len(slots) < DMX_CHANNELS:
        slots += bytes(DMX_CHANNELS - len(slots))
    return bytes([START_CODE]) + slots


class DmxTransmitter:
    """
    Streams DMXStateManager levels to one serial interface.

    Attributes:
        fps: Target frames per second
        debounce: Quiet time (seconds) before manual edits are published
        write_timeout: How long port switching waits for an in-flight write
    """

    DEFAULT_FPS = 40
    DEFAULT_DEBOUNCE_MS = 200
    DEFAULT_WRITE_TIMEOUT = 0.5

    def __init__(self, live_levels: DMXStateManager, fps: int = DEFAULT_FPS,
                 debounce_ms: int = DEFAULT_DEBOUNCE_MS,
                 port_factory: Callable = open_dmx_port,
                 clock: Callable[[], float] = time.monotonic,
                 write_timeout: float = DEFAULT_WRITE_TIMEOUT,
                 blackout_on_exit: bool = True):
        self.live = live_levels
        self.fps = max(1, int(fps))
        self.frame_interval = 1.0 / self.fps
        self.debounce = max(0, int(debounce_ms)) / 1000.0
        self.write_timeout = write_timeout
        self.blackout_on_exit = blackout_on_exit
        self._port_factory = port_factory
        self._clock = clock

        self._running = False
        self._stop_flag = threading.Event()
        self._thread: Optional[threading.Thread] = None

        # Serializes open/write/close against port switching
        self._io_lock = threading.Lock()
        self._port_path: Optional[str] = None
        self._port = None
        self._retry_at = 0.0

        # Published frame (what actually goes on the wire)
        self._frame: List[int] = [0] * DMX_CHANNELS
        self._published_version = -1

        # Status
        self._state = TransmitState.WAITING
        self._message = "Waiting for interface selection"
        self._frames_sent = 0
        self._error_count = 0
        self._last_error: Optional[str] = None
        self._actual_fps = 0.0

    # ─────────────────────────────────────────────────────────
    # Engine Control
    # ─────────────────────────────────────────────────────────

    def start(self):
        if self._running:
            return
        self._running = True
        self._stop_flag.clear()
        self._thread = threading.Thread(target=self._transmit_loop, daemon=True,
                                        name="dmx-transmitter")
        self._thread.start()
        logger.info("DMX transmitter started at %d fps", self.fps)

    def stop(self):
        if not self._running:
            return
        self._stop_flag.set()
        self._running = False
        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None

        with self._io_lock:
            if self._port is not None and self.blackout_on_exit:
                try:
                    self._write_frame(self._port, [0] * DMX_CHANNELS)
                except DmxTransportError as e:
                    logger.warning("Blackout on exit failed: %s", e)
            self._close_port()
        logger.info("DMX transmitter stopped")

    @property
    def running(self) -> bool:
        return self._running

    # ─────────────────────────────────────────────────────────
    # Interface selection
    # ─────────────────────────────────────────────────────────

    @property
    def port_path(self) -> Optional[str]:
        return self._port_path

    def select_port(self, path: Optional[str]):
        """Switch the target interface. None deselects and idles the loop.

        The previous handle is closed only after any in-flight write
        finishes (or write_timeout passes).
        """
        path = path or None
        acquired = self._io_lock.acquire(timeout=self.write_timeout)
        if not acquired:
            logger.warning("Timed out waiting for in-flight DMX write; closing anyway")
        try:
            if path == self._port_path:
                return
            self._close_port()
            self._port_path = path
            self._retry_at = 0.0
        finally:
            if acquired:
                self._io_lock.release()

        if path is None:
            self._set_state(TransmitState.WAITING, "Waiting for interface selection")
        else:
            self._set_state(TransmitState.SENDING, f"Connecting to {path}")
        reg.audit('dmx_interface_selected', port=path)
        logger.info("DMX interface selected: %s", path)

    # ─────────────────────────────────────────────────────────
    # Cycle
    # ─────────────────────────────────────────────────────────

    def run_cycle(self, now: Optional[float] = None) -> bool:
        """Run one transmission cycle. Returns True if a frame was written."""
        if now is None:
            now = self._clock()
        self._publish(now)

        if self._port_path is None:
            if self._state != TransmitState.WAITING:
                self._set_state(TransmitState.WAITING, "Waiting for interface selection")
            return False

        with self._io_lock:
            path = self._port_path
            if path is None:
                return False
            if self._port is None:
                if now < self._retry_at:
                    return False
                try:
                    self._port = self._port_factory(path)
                    logger.info("DMX interface opened: %s", path)
                except DmxTransportError as e:
                    self._retry_at = now + OPEN_RETRY_SECONDS
                    self._record_error(str(e))
                    return False
            try:
                self._write_frame(self._port, self._frame)
            except DmxTransportError as e:
                self._close_port()
                self._record_error(str(e))
                return False

        self._frames_sent += 1
        if self._state != TransmitState.OK:
            self._set_state(TransmitState.OK, f"Streaming DMX to {path} at {self.fps} Hz")
        return True

    def send_now(self) -> Dict:
        """Publish and write the current live levels immediately.

        Foreground operation: reports success or failure to the caller.
        """
        self._publish(self._clock(), force=True)
        path = self._port_path
        if path is None:
            return {"success": False, "error": "No DMX interface selected"}

        with self._io_lock:
            try:
                if self._port is None:
                    self._port = self._port_factory(path)
                self._write_frame(self._port, self._frame)
            except DmxTransportError as e:
                self._close_port()
                self._record_error(str(e))
                return {"success": False, "error": str(e), "port": path}

        self._frames_sent += 1
        self._set_state(TransmitState.OK, f"Streaming DMX to {path} at {self.fps} Hz")
        return {"success": True, "port": path}

    # ─────────────────────────────────────────────────────────
    # Status
    # ─────────────────────────────────────────────────────────

    @property
    def state(self) -> TransmitState:
        return self._state

    def get_frame(self) -> List[int]:
        return list(self._frame)

    def get_status(self) -> Dict:
        return {
            "running": self._running,
            "state": self._state.value,
            "message": self._message,
            "port": self._port_path,
            "connected": self._port is not None,
            "fps": self.fps,
            "actual_fps": round(self._actual_fps, 1),
            "frames_sent": self._frames_sent,
            "error_count": self._error_count,
            "last_error": self._last_error,
        }

    # ─────────────────────────────────────────────────────────
    # Internal
    # ─────────────────────────────────────────────────────────

    def _publish(self, now: float, force: bool = False):
        """Coalesce live edits into the outgoing frame."""
        snap = self.live.snapshot()
        if snap.version == self._published_version:
            return
        if not (force or snap.urgent or now - snap.edited_at >= self.debounce):
            return
        self._frame = snap.levels
        self._published_version = snap.version
        self.live.clear_urgent(snap.version)

    def _write_frame(self, port, levels):
        frame = build_frame(levels)
        try:
            port.break_condition = True
            time.sleep(BREAK_SECONDS)
            port.break_condition = False
            time.sleep(MARK_AFTER_BREAK_SECONDS)
            port.write(frame)
        except (serial.SerialException, OSError) as e:
            raise DmxTransportError(f"DMX write failed on {self._port_path}: {e}") from e

    def _close_port(self):
        # Caller holds self._io_lock (or owns the port exclusively)
        port, self._port = self._port, None
        if port is None:
            return
        try:
            port.close()
        except (serial.SerialException, OSError) as e:
            logger.warning("Error closing DMX interface: %s", e)

    def _record_error(self, message):
        self._error_count += 1
        self._last_error = message
        if self._state != TransmitState.ERROR or self._message != message:
            logger.error("DMX output error: %s", message)
        self._set_state(TransmitState.ERROR, message)

    def _set_state(self, state: TransmitState, message: str):
        changed = state != self._state or message != self._message
        self._state = state
        self._message = message
        if changed:
            reg.emit('dmx_status', {'state': state.value, 'message': message,
                                    'port': self._port_path})

    def _transmit_loop(self):
        """Main loop - runs at target FPS until stop()"""
        loop_start = self._clock()
        cycles = 0
        while not self._stop_flag.is_set():
            frame_start = self._clock()
            try:
                self.run_cycle(frame_start)
            except Exception as e:
                # Lighting must keep refreshing after any unexpected fault
                logger.exception("DMX transmitter cycle error: %s", e)

            cycles += 1
            frame_end = self._clock()
            total_elapsed = frame_end - loop_start
            if total_elapsed > 0:
                self._actual_fps = cycles / total_elapsed

            sleep_time = self.frame_interval - (frame_end - frame_start)
            if sleep_time > 0:
                self._stop_flag.wait(sleep_time)
