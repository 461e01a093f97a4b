"""
Trigger Router - Keyboard input to clip transport actions

Rules, in priority order:
1. Pause key pauses every playing clip
2. Micro volume keys nudge every playing clip
3. Arrow keys nudge the focused clip
4. Assigned keys trigger their clip:
   - already playing  -> restart from the cue point
   - modifier held    -> layered play, other clips untouched
   - no modifier      -> exclusive play, other playing clips stopped

Key codes are normalized before lookup (keypad digits alias main-row digits).
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from clip_transport import ClipRegistry, normalize_key_code, VOLUME_STEP

logger = logging.getLogger(__name__)


class Keys:
    PAUSE_ALL = "Space"
    VOLUME_DOWN_PLAYING = "Comma"
    VOLUME_UP_PLAYING = "Period"
    VOLUME_UP_FOCUSED = "ArrowUp"
    VOLUME_DOWN_FOCUSED = "ArrowDown"


class TriggerAction:
    NONE = "none"
    PAUSE_ALL = "pause_all"
    VOLUME_PLAYING = "volume_playing"
    VOLUME_FOCUSED = "volume_focused"
    RESTART = "restart"
    PLAY_LAYERED = "play_layered"
    PLAY_EXCLUSIVE = "play_exclusive"


@dataclass
class TriggerResult:
    action: str
    code: Optional[str] = None
    clip_id: Optional[str] = None
    affected: List[str] = field(default_factory=list)
    stopped: List[str] = field(default_factory=list)

    @property
    def handled(self) -> bool:
        return self.action != TriggerAction.NONE

    def to_dict(self) -> dict:
        return {
            "handled": self.handled,
            "action": self.action,
            "code": self.code,
            "clip_id": self.clip_id,
            "affected": self.affected,
            "stopped": self.stopped,
        }


class TriggerRouter:
    """Routes normalized key presses to transports in a ClipRegistry."""

    def __init__(self, registry: ClipRegistry, volume_step: float = VOLUME_STEP):
        self.registry = registry
        self.volume_step = volume_step
        self._focused_id: Optional[str] = None

    # ─────────────────────────────────────────────────────────
    # Focus
    # ─────────────────────────────────────────────────────────

    @property
    def focused_id(self) -> Optional[str]:
        # A removed clip silently loses focus
        if self._focused_id is not None and self._focused_id not in self.registry:
            self._focused_id = None
        return self._focused_id

    def focus(self, clip_id: Optional[str]):
        if clip_id is not None and clip_id not in self.registry:
            raise KeyError(clip_id)
        self._focused_id = clip_id

    def clear_focus(self):
        self._focused_id = None

    # ─────────────────────────────────────────────────────────
    # Key handling
    # ─────────────────────────────────────────────────────────

    def handle(self, code: str, shift: bool = False) -> TriggerResult:
        code = normalize_key_code(code)
        if code is None:
            return TriggerResult(TriggerAction.NONE)

        if code == Keys.PAUSE_ALL:
            paused = []
            for clip in self.registry.all():
                if clip.is_playing:
                    clip.pause()
                elif clip.play_pending:
                    clip.cancel_pending()
                else:
                    continue
                paused.append(clip.clip_id)
            return TriggerResult(TriggerAction.PAUSE_ALL, code, affected=paused)

        if code in (Keys.VOLUME_DOWN_PLAYING, Keys.VOLUME_UP_PLAYING):
            delta = self.volume_step if code == Keys.VOLUME_UP_PLAYING else -self.volume_step
            nudged = []
            for clip in self.registry.playing():
                clip.nudge_volume(delta)
                nudged.append(clip.clip_id)
            return TriggerResult(TriggerAction.VOLUME_PLAYING, code, affected=nudged)

        focused = self.registry.get(self.focused_id)
        if focused and code in (Keys.VOLUME_UP_FOCUSED, Keys.VOLUME_DOWN_FOCUSED):
            delta = self.volume_step if code == Keys.VOLUME_UP_FOCUSED else -self.volume_step
            focused.nudge_volume(delta)
            return TriggerResult(TriggerAction.VOLUME_FOCUSED, code,
                                 clip_id=focused.clip_id, affected=[focused.clip_id])

        clip = self.registry.find_by_key(code)
        if clip is None:
            return TriggerResult(TriggerAction.NONE, code)

        if clip.is_playing:
            clip.restart()
            logger.debug("Retrigger restart: %s", clip.name)
            return TriggerResult(TriggerAction.RESTART, code,
                                 clip_id=clip.clip_id, affected=[clip.clip_id])

        if shift:
            clip.play()
            return TriggerResult(TriggerAction.PLAY_LAYERED, code,
                                 clip_id=clip.clip_id, affected=[clip.clip_id])

        stopped = []
        for other in self.registry.all():
            # Pending clips count: they would start once their decode lands
            if other.clip_id != clip.clip_id and other.is_active:
                other.stop()
                stopped.append(other.clip_id)
        clip.play()
        return TriggerResult(TriggerAction.PLAY_EXCLUSIVE, code, clip_id=clip.clip_id,
                             affected=[clip.clip_id] + stopped, stopped=stopped)
