"""
Scene Store - Named, colored snapshots of the 512 live channel levels

A Scene is a full copy of LiveLevels plus a display name/color and an
optional link to a clip. Links are informational ("this look belongs to this
song"); playing a linked clip does not recall its scene.

Operations:
- create_scene: new scene captured from the current live levels
- record_scene: overwrite a scene's levels with the live levels
- recall_scene: copy a scene's levels into the live levels, mark it active
- update_scene: rename / recolor / relink, never touches levels
"""

import uuid
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dmx_state_manager import DMXStateManager, DMX_CHANNELS, normalize_levels

logger = logging.getLogger(__name__)

SCENE_COLOR_PALETTE = [
    "#fb7185", "#38bdf8", "#a78bfa", "#fbbf24",
    "#34d399", "#f472b6", "#fb923c", "#eab308",
]

_UNSET = object()


@dataclass
class Scene:
    """A lighting snapshot. levels is always exactly 512 values."""
    scene_id: str
    name: str
    color: str
    levels: List[int] = field(default_factory=lambda: [0] * DMX_CHANNELS)
    linked_clip_id: Optional[str] = None

    def __post_init__(self):
        self.levels = normalize_levels(self.levels)

    def to_dict(self) -> dict:
        return {
            "id": self.scene_id,
            "name": self.name,
            "color": self.color,
            "levels": list(self.levels),
            "linked_clip_id": self.linked_clip_id,
        }


class SceneStore:
    """Scenes in creation order plus the single active-scene marker."""

    def __init__(self, live_levels: DMXStateManager):
        self.live = live_levels
        self.lock = threading.RLock()
        self._scenes: Dict[str, Scene] = {}
        self._created = 0
        self.active_scene_id: Optional[str] = None

    def __len__(self):
        return len(self._scenes)

    def get_scene(self, scene_id) -> Optional[Scene]:
        with self.lock:
            return self._scenes.get(scene_id)

    def list_scenes(self) -> List[Scene]:
        with self.lock:
            return list(self._scenes.values())

    def create_scene(self, name=None, color=None) -> Scene:
        with self.lock:
            ordinal = self._created
            self._created += 1
            scene = Scene(
                scene_id=str(uuid.uuid4()),
                name=name or f"Scene {len(self._scenes) + 1}",
                color=color or SCENE_COLOR_PALETTE[ordinal % len(SCENE_COLOR_PALETTE)],
                levels=self.live.get_levels(),
            )
            self._scenes[scene.scene_id] = scene
        logger.info("Scene created: %s", scene.name)
        return scene

    def add_scene(self, scene: Scene) -> Scene:
        """Insert a fully formed scene (session load)."""
        with self.lock:
            self._scenes[scene.scene_id] = scene
            self._created += 1
        return scene

    def record_scene(self, scene_id) -> Optional[Scene]:
        with self.lock:
            scene = self._scenes.get(scene_id)
            if scene is None:
                return None
            scene.levels = self.live.get_levels()
        logger.info("Scene recorded: %s", scene.name)
        return scene

    def recall_scene(self, scene_id) -> Optional[Scene]:
        with self.lock:
            scene = self._scenes.get(scene_id)
            if scene is None:
                return None
            self.live.set_levels(scene.levels, urgent=True)
            self.active_scene_id = scene_id
        logger.info("Scene recalled: %s", scene.name)
        return scene

    def update_scene(self, scene_id, name=_UNSET, color=_UNSET,
                     linked_clip_id=_UNSET) -> Optional[Scene]:
        with self.lock:
            scene = self._scenes.get(scene_id)
            if scene is None:
                return None
            if name is not _UNSET and name:
                scene.name = str(name)
            if color is not _UNSET and color:
                scene.color = str(color)
            if linked_clip_id is not _UNSET:
                scene.linked_clip_id = linked_clip_id or None
            return scene

    def delete_scene(self, scene_id) -> bool:
        with self.lock:
            scene = self._scenes.pop(scene_id, None)
            if scene is None:
                return False
            if self.active_scene_id == scene_id:
                self.active_scene_id = None
        logger.info("Scene deleted: %s", scene.name)
        return True

    def unlink_clip(self, clip_id) -> List[str]:
        """Null out links to a removed clip. Scenes themselves are kept."""
        unlinked = []
        with self.lock:
            for scene in self._scenes.values():
                if scene.linked_clip_id == clip_id:
                    scene.linked_clip_id = None
                    unlinked.append(scene.scene_id)
        return unlinked

    def clear(self):
        with self.lock:
            self._scenes.clear()
            self._created = 0
            self.active_scene_id = None
