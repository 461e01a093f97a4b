"""
Decode Queue - Bounded-concurrency audio decoding

Audio decoding is CPU heavy. Importing a whole set at once must not starve
the control plane, so at most `max_concurrent` decodes run at a time and the
rest wait in submission order.

Guarantees:
- Never more than max_concurrent tasks running
- Every finished slot (success or failure) admits exactly one waiting task
- A failure reaches only that task's on_error callback
- Cancelled tasks never call back: dropped if waiting, result discarded if running

Example:
    queue = DecodeQueue(max_concurrent=2)
    queue.submit(lambda: open(path, "rb").read(), on_decoded, on_error)
"""

import io
import logging
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional, Union

import numpy as np
import soundfile as sf
from pydub import AudioSegment

logger = logging.getLogger(__name__)


class DecodeError(Exception):
    """Audio bytes could not be decoded (corrupt or unsupported)."""
    pass


@dataclass
class DecodedAudio:
    samples: np.ndarray  # float32, shape (frames, channels)
    sample_rate: int

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def channels(self) -> int:
        return int(self.samples.shape[1]) if self.samples.ndim > 1 else 1

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.frames / float(self.sample_rate)


def _decode_with_pydub(data: bytes) -> DecodedAudio:
    # ffmpeg-backed; covers containers libsndfile cannot read (m4a, older mp3)
    seg = AudioSegment.from_file(io.BytesIO(data))
    raw = np.array(seg.get_array_of_samples())
    channels = max(1, int(seg.channels))
    scale = float(1 << (8 * seg.sample_width - 1))
    samples = (raw.astype(np.float32) / scale).reshape((-1, channels))
    return DecodedAudio(samples=samples, sample_rate=int(seg.frame_rate))


def decode_audio_bytes(data: bytes) -> DecodedAudio:
    """Decode raw file bytes to float32 samples."""
    if not data:
        raise DecodeError("Empty audio source")
    try:
        samples, sr = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)
        decoded = DecodedAudio(samples=samples, sample_rate=int(sr))
    except (sf.LibsndfileError, RuntimeError, TypeError) as e:
        logger.debug("soundfile could not decode source (%s); trying ffmpeg", e)
        try:
            decoded = _decode_with_pydub(data)
        except Exception as e2:
            raise DecodeError(f"Unsupported or corrupt audio: {e2}") from e2
    if decoded.frames == 0:
        raise DecodeError("Audio source contains no samples")
    return decoded


Source = Union[bytes, Callable[[], bytes]]


class DecodeTask:
    """One queued decode. Exists only inside the queue."""

    def __init__(self, task_id: int, source: Source,
                 on_decoded: Callable[[DecodedAudio], None],
                 on_error: Callable[[Exception], None],
                 label: Optional[str] = None):
        self.task_id = task_id
        self.source = source
        self.on_decoded = on_decoded
        self.on_error = on_error
        self.label = label or f"task-{task_id}"
        self.cancelled = False
        self.done = threading.Event()

    def cancel(self):
        self.cancelled = True

    def read_source(self) -> bytes:
        if callable(self.source):
            return self.source()
        return self.source


class DecodeQueue:
    """FIFO admission in front of a fixed pool of decode workers."""

    DEFAULT_MAX_CONCURRENT = 2

    def __init__(self, max_concurrent: int = DEFAULT_MAX_CONCURRENT,
                 decoder: Callable[[bytes], DecodedAudio] = decode_audio_bytes):
        self.max_concurrent = max(1, int(max_concurrent))
        self._decoder = decoder
        self._lock = threading.Lock()
        self._waiting: Deque[DecodeTask] = deque()
        self._active = 0
        self._next_id = 1
        self._completed = 0
        self._failed = 0
        self._cancelled = 0
        self._closed = False
        self._pool = ThreadPoolExecutor(max_workers=self.max_concurrent,
                                        thread_name_prefix="audio-decode")

    def submit(self, source: Source, on_decoded, on_error, label=None) -> DecodeTask:
        with self._lock:
            if self._closed:
                raise RuntimeError("Decode queue is shut down")
            task = DecodeTask(self._next_id, source, on_decoded, on_error, label)
            self._next_id += 1
            self._waiting.append(task)
        self._admit()
        return task

    def cancel(self, task: DecodeTask):
        """Cancel a task. Waiting tasks are dropped; running ones are discarded."""
        task.cancel()
        with self._lock:
            try:
                self._waiting.remove(task)
            except ValueError:
                return
            self._cancelled += 1
        task.done.set()

    def _admit(self):
        to_start = []
        with self._lock:
            while self._active < self.max_concurrent and self._waiting:
                task = self._waiting.popleft()
                self._active += 1
                to_start.append(task)
        for task in to_start:
            self._pool.submit(self._run, task)

    def _run(self, task: DecodeTask):
        result = None
        error = None
        try:
            data = task.read_source()
            result = self._decoder(data)
        except Exception as e:
            error = e

        try:
            if task.cancelled:
                logger.debug("Discarding result of cancelled decode %s", task.label)
                with self._lock:
                    self._cancelled += 1
            elif error is not None:
                with self._lock:
                    self._failed += 1
                logger.warning("Decode failed for %s: %s", task.label, error)
                self._deliver(task.on_error, error, task)
            else:
                with self._lock:
                    self._completed += 1
                self._deliver(task.on_decoded, result, task)
        finally:
            with self._lock:
                self._active -= 1
            task.done.set()
            if not self._closed:
                self._admit()

    def _deliver(self, callback, value, task):
        if callback is None:
            return
        try:
            callback(value)
        except Exception:
            # A broken callback must not stall the queue
            logger.exception("Decode callback for %s raised", task.label)

    # ─────────────────────────────────────────────────────────
    # Status / lifecycle
    # ─────────────────────────────────────────────────────────

    @property
    def active(self) -> int:
        with self._lock:
            return self._active

    @property
    def waiting(self) -> int:
        with self._lock:
            return len(self._waiting)

    def get_status(self) -> Dict:
        with self._lock:
            return {
                "max_concurrent": self.max_concurrent,
                "active": self._active,
                "waiting": len(self._waiting),
                "completed": self._completed,
                "failed": self._failed,
                "cancelled": self._cancelled,
            }

    def shutdown(self, wait: bool = True):
        with self._lock:
            self._closed = True
            dropped = list(self._waiting)
            self._waiting.clear()
        for task in dropped:
            task.cancel()
            task.done.set()
        self._pool.shutdown(wait=wait)
