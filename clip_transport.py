"""
Clip Transport - Per-clip play/pause/stop state machine and the clip arena

This module provides:
- PlayState: stopped / playing / paused
- Clip: one loaded audio unit with its own transport (play head, start cue, loop)
- ClipRegistry: clips keyed by id, owner of the unique key assignment rule

Architecture:
- The playhead only moves through advance(elapsed), driven by the playhead clock
- Stopped clips always sit on their start cue
- A clip without decoded audio accepts play() but defers it until
  attach_decoded() supplies a duration
- Key -> clip lookups are derived from the clips themselves, never stored

Version: 1.0.0
"""

import uuid
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_VOLUME = 0.8
VOLUME_STEP = 0.05


# ============================================================
# Play State
# ============================================================

class PlayState(Enum):
    STOPPED = "stopped"
    PLAYING = "playing"
    PAUSED = "paused"


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def normalize_key_code(code: Optional[str]) -> Optional[str]:
    """Map numeric keypad digits onto their main-row equivalents.

    Both key assignment and key matching go through this, so "Numpad1"
    and "Digit1" always address the same clip.
    """
    if not code:
        return None
    code = str(code).strip()
    if not code:
        return None
    if code.startswith("Numpad") and len(code) == 7 and code[6].isdigit():
        return "Digit" + code[6]
    return code


# ============================================================
# Clip
# ============================================================

@dataclass
class Clip:
    """A loaded audio clip and its transport state."""
    clip_id: str
    name: str
    source_ref: Optional[str] = None
    volume: float = DEFAULT_VOLUME
    start_cue: float = 0.0
    loop: bool = False
    assigned_key: Optional[str] = None
    duration: float = 0.0
    playhead: float = 0.0
    state: PlayState = PlayState.STOPPED

    # Runtime state
    play_pending: bool = False
    decode_error: Optional[str] = None
    decode_generation: int = 0
    sample_rate: int = 0
    channels: int = 0
    _last_volume: float = field(default=DEFAULT_VOLUME, repr=False)

    def __post_init__(self):
        self.volume = clamp(float(self.volume), 0.0, 1.0)
        self.start_cue = max(0.0, float(self.start_cue))
        self.playhead = self.start_cue
        if self.volume > 0:
            self._last_volume = self.volume

    # ─────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────

    @property
    def is_playing(self) -> bool:
        return self.state == PlayState.PLAYING

    @property
    def is_decoded(self) -> bool:
        return self.duration > 0

    # ─────────────────────────────────────────────────────────
    # Transport
    # ─────────────────────────────────────────────────────────

    def play(self):
        """Start or resume playback from max(playhead, start_cue)."""
        if self.state == PlayState.PLAYING:
            return
        if not self.is_decoded:
            # Not a failure: the request is honoured once audio arrives.
            # A clip whose decode failed stays silent until a new source.
            if self.decode_error is None:
                self.play_pending = True
            return
        if self.playhead < self.start_cue:
            self.playhead = self.start_cue
        self.play_pending = False
        self.state = PlayState.PLAYING

    def pause(self):
        if self.state != PlayState.PLAYING:
            return
        self.state = PlayState.PAUSED

    def stop(self):
        """Hard reset to the start cue from any state."""
        self.play_pending = False
        self.playhead = self.start_cue
        self.state = PlayState.STOPPED

    def cancel_pending(self):
        """Drop a deferred play request without touching the playhead."""
        self.play_pending = False

    @property
    def is_active(self) -> bool:
        """Playing, or waiting on decode to start playing."""
        return self.state == PlayState.PLAYING or self.play_pending

    def restart(self):
        self.stop()
        self.play()

    def seek(self, t: float):
        """Move the playhead, clamped to [0, duration]."""
        upper = self.duration if self.duration > 0 else 0.0
        self.playhead = clamp(float(t), 0.0, upper)
        if self.state == PlayState.STOPPED:
            # Stopped clips sit on the cue point; seeking while stopped
            # is remembered as a pause at the new position.
            if self.playhead != self.start_cue:
                self.state = PlayState.PAUSED

    def advance(self, elapsed: float) -> bool:
        """Advance the playhead by elapsed seconds.

        Returns True when the clip reached its end during this step.
        """
        if self.state != PlayState.PLAYING or elapsed <= 0:
            return False
        self.playhead += elapsed
        if self.duration > 0 and self.playhead >= self.duration:
            self.on_reach_end()
            return True
        return False

    def on_reach_end(self):
        self.playhead = self.start_cue
        if not self.loop:
            self.state = PlayState.STOPPED

    # ─────────────────────────────────────────────────────────
    # Properties
    # ─────────────────────────────────────────────────────────

    def set_start_cue(self, t: float):
        if self.duration > 0:
            # Half-open interval: the cue must leave something to play
            upper = max(0.0, self.duration - 1e-6)
            cue = clamp(float(t), 0.0, upper)
        else:
            # Unknown length; re-clamped once attach_decoded() runs
            cue = max(0.0, float(t))
        self.start_cue = cue
        if self.state == PlayState.STOPPED:
            self.playhead = cue

    def set_volume(self, v: float):
        self.volume = clamp(float(v), 0.0, 1.0)
        if self.volume > 0:
            self._last_volume = self.volume

    def nudge_volume(self, delta: float):
        self.set_volume(round(self.volume + delta, 4))

    def toggle_mute(self):
        if self.volume > 0:
            self._last_volume = self.volume
            self.volume = 0.0
        else:
            self.volume = self._last_volume or DEFAULT_VOLUME

    def set_loop(self, loop: bool):
        self.loop = bool(loop)

    def rename(self, name: str):
        name = (name or "").strip()
        if name:
            self.name = name

    # ─────────────────────────────────────────────────────────
    # Decode results
    # ─────────────────────────────────────────────────────────

    def attach_decoded(self, duration: float, sample_rate: int = 0, channels: int = 0):
        """Attach decoded audio facts; starts a deferred play request."""
        self.duration = max(0.0, float(duration))
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.decode_error = None
        if self.start_cue >= self.duration:
            self.set_start_cue(self.start_cue)
        if self.state == PlayState.STOPPED:
            self.playhead = self.start_cue
        if self.play_pending:
            self.play()

    def mark_decode_failed(self, message: str):
        self.decode_error = message or "decode failed"
        self.duration = 0.0
        self.play_pending = False
        self.stop()

    def reset_source(self, source_ref: Optional[str]):
        """Point the clip at a new source; previous decode results are void."""
        self.source_ref = source_ref
        self.decode_generation += 1
        self.decode_error = None
        self.duration = 0.0
        self.stop()

    # ─────────────────────────────────────────────────────────
    # Serialization
    # ─────────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            "id": self.clip_id,
            "name": self.name,
            "path": self.source_ref,
            "volume": round(self.volume, 4),
            "start_cue": self.start_cue,
            "loop": self.loop,
            "assigned_key": self.assigned_key,
            "duration": self.duration,
            "playhead": round(self.playhead, 4),
            "state": self.state.value,
            "play_pending": self.play_pending,
            "decoded": self.is_decoded,
            "decode_error": self.decode_error,
        }


# ============================================================
# Clip Registry
# ============================================================

class ClipRegistry:
    """
    Addressable arena of clips keyed by id.

    The registry is the only place a key gets assigned, which is what keeps
    each key bound to at most one clip. Callers serialize access (see
    ConsoleManager); the registry itself holds no lock.
    """

    def __init__(self):
        self._clips: Dict[str, Clip] = {}

    def __len__(self):
        return len(self._clips)

    def __contains__(self, clip_id):
        return clip_id in self._clips

    def __iter__(self):
        return iter(list(self._clips.values()))

    def create(self, name: str, source_ref: Optional[str] = None,
               clip_id: Optional[str] = None, **props) -> Clip:
        clip_id = clip_id or str(uuid.uuid4())
        if clip_id in self._clips:
            raise ValueError(f"Clip id already in use: {clip_id}")
        key = props.pop("assigned_key", None)
        clip = Clip(clip_id=clip_id, name=name, source_ref=source_ref, **props)
        self._clips[clip_id] = clip
        if key:
            self.assign_key(clip_id, key)
        logger.debug("Clip created: %s (%s)", name, clip_id)
        return clip

    def get(self, clip_id: Optional[str]) -> Optional[Clip]:
        if clip_id is None:
            return None
        return self._clips.get(clip_id)

    def remove(self, clip_id: str) -> Optional[Clip]:
        clip = self._clips.pop(clip_id, None)
        if clip:
            clip.stop()
            clip.decode_generation += 1
            logger.debug("Clip removed: %s (%s)", clip.name, clip_id)
        return clip

    def clear(self):
        for clip_id in list(self._clips):
            self.remove(clip_id)

    def all(self) -> List[Clip]:
        return list(self._clips.values())

    def playing(self) -> List[Clip]:
        return [c for c in self._clips.values() if c.is_playing]

    # ─────────────────────────────────────────────────────────
    # Key bindings
    # ─────────────────────────────────────────────────────────

    def assign_key(self, clip_id: str, key: Optional[str]) -> Optional[str]:
        """Bind key to clip_id, detaching it from any previous holder.

        Returns the id of the clip that lost the key, if any.
        """
        clip = self._clips.get(clip_id)
        if clip is None:
            raise KeyError(clip_id)
        key = normalize_key_code(key)
        displaced = None
        if key is not None:
            for other in self._clips.values():
                if other.clip_id != clip_id and other.assigned_key == key:
                    other.assigned_key = None
                    displaced = other.clip_id
                    logger.info("Key %s moved from '%s' to '%s'", key, other.name, clip.name)
        clip.assigned_key = key
        return displaced

    def key_map(self) -> Dict[str, str]:
        return {c.assigned_key: c.clip_id for c in self._clips.values() if c.assigned_key}

    def find_by_key(self, key: Optional[str]) -> Optional[Clip]:
        key = normalize_key_code(key)
        if key is None:
            return None
        for clip in self._clips.values():
            if clip.assigned_key == key:
                return clip
        return None

    # ─────────────────────────────────────────────────────────
    # Time source
    # ─────────────────────────────────────────────────────────

    def advance_all(self, elapsed: float) -> List[Clip]:
        """Advance every playing clip; returns the clips that hit their end."""
        ended = []
        for clip in self._clips.values():
            if clip.advance(elapsed):
                ended.append(clip)
        return ended
