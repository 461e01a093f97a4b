"""
LiveLoop Console Manager - Control plane facade

Owns every piece of live state and is the only thing the HTTP blueprints and
the playhead clock talk to:
- ClipRegistry + TriggerRouter (audio clips and key triggers)
- DMXStateManager + SceneStore (live levels and lighting scenes)
- DecodeQueue (background audio decoding)
- DmxTransmitter (serial output loop)

All clip/router/scene mutations happen under self.lock, so transport fields
are never written from two threads at once. Decode completions arrive on
worker threads and take the same lock; results for removed or re-sourced
clips are recognised by their generation number and dropped.

Foreground operations return {'success': bool, ...} dicts, the same shape
the API hands back to clients.
"""

import os
import time
import logging
import threading
from functools import partial
from typing import Dict, List, Optional

import core_registry as reg
from clip_transport import ClipRegistry, Clip
from trigger_router import TriggerRouter
from dmx_state_manager import DMXStateManager
from scene_store import SceneStore, Scene, SCENE_COLOR_PALETTE
from decode_queue import DecodeQueue, DecodeTask
from dmx_transmitter import DmxTransmitter, open_dmx_port, list_ports
from session_codec import (
    SessionData, SessionItem, SessionScene, SessionLoadResult,
    save_session_file, load_session_file, DEFAULT_SESSION_NAME,
)

logger = logging.getLogger(__name__)

MAX_FETCH_ATTEMPTS = 3
_UNSET = object()


def _finite(value, label: str) -> float:
    if isinstance(value, bool):
        raise TypeError(f"{label} must be a number")
    number = float(value)
    if number != number or number in (float("inf"), float("-inf")):
        raise ValueError(f"{label} must be a finite number")
    return number


def read_source_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def clip_name_from_path(path: str) -> str:
    base = os.path.basename(str(path).replace("\\", "/"))
    name, _ext = os.path.splitext(base)
    return name or "Untitled"


class ConsoleManager:
    """Single owner of clips, lighting and output for one console session."""

    def __init__(self, dmx_fps: int = DmxTransmitter.DEFAULT_FPS,
                 debounce_ms: int = DmxTransmitter.DEFAULT_DEBOUNCE_MS,
                 max_concurrent_decodes: int = DecodeQueue.DEFAULT_MAX_CONCURRENT,
                 port_factory=open_dmx_port, decoder=None,
                 source_reader=read_source_file, clock=time.monotonic):
        self.lock = threading.RLock()
        self._clock = clock
        self._read_source = source_reader

        self.session_name = DEFAULT_SESSION_NAME
        self.clips = ClipRegistry()
        self.router = TriggerRouter(self.clips)
        self.dmx_state = DMXStateManager(clock=clock)
        self.scenes = SceneStore(self.dmx_state)
        if decoder is not None:
            self.decode_queue = DecodeQueue(max_concurrent_decodes, decoder=decoder)
        else:
            self.decode_queue = DecodeQueue(max_concurrent_decodes)
        self.transmitter = DmxTransmitter(self.dmx_state, fps=dmx_fps,
                                          debounce_ms=debounce_ms,
                                          port_factory=port_factory, clock=clock)

        self._decode_tasks: Dict[str, DecodeTask] = {}
        self._last_tick: Optional[float] = None

    # ─────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────

    def start(self):
        self.transmitter.start()

    def shutdown(self):
        self.transmitter.stop()
        self.decode_queue.shutdown(wait=False)

    # ─────────────────────────────────────────────────────────
    # Clips
    # ─────────────────────────────────────────────────────────

    def import_clip(self, path: Optional[str], name: Optional[str] = None,
                    clip_id: Optional[str] = None, **props) -> Clip:
        """Create a clip (duration 0) and queue its audio for decoding."""
        with self.lock:
            clip = self.clips.create(name or clip_name_from_path(path or ""),
                                     source_ref=path, clip_id=clip_id, **props)
            self._queue_decode(clip)
        logger.info("Clip imported: %s", clip.name)
        reg.audit('clip_imported', clip_id=clip.clip_id, path=path)
        self._emit_clip(clip)
        return clip

    def remove_clip(self, clip_id: str) -> Dict:
        with self.lock:
            task = self._decode_tasks.pop(clip_id, None)
            if task is not None:
                self.decode_queue.cancel(task)
            clip = self.clips.remove(clip_id)
            if clip is None:
                return {"success": False, "error": "Clip not found"}
            unlinked = self.scenes.unlink_clip(clip_id)
        logger.info("Clip removed: %s", clip.name)
        reg.audit('clip_removed', clip_id=clip_id)
        reg.emit('clip_removed', {'id': clip_id, 'unlinked_scenes': unlinked})
        return {"success": True, "removed": clip_id, "unlinked_scenes": unlinked}

    def get_clip(self, clip_id: str) -> Optional[Dict]:
        with self.lock:
            clip = self.clips.get(clip_id)
            return clip.to_dict() if clip else None

    def list_clips(self) -> List[Dict]:
        with self.lock:
            return [c.to_dict() for c in self.clips]

    def update_clip(self, clip_id: str, name=_UNSET, volume=_UNSET, start_cue=_UNSET,
                    loop=_UNSET, assigned_key=_UNSET, path=_UNSET) -> Dict:
        """Apply several clip edits at once.

        Every value is checked before the clip changes, so a bad field leaves
        the clip exactly as it was.
        """
        try:
            if name is not _UNSET and not isinstance(name, str):
                raise TypeError("name must be a string")
            if volume is not _UNSET:
                volume = _finite(volume, "volume")
            if start_cue is not _UNSET:
                start_cue = _finite(start_cue, "start_cue")
            if loop is not _UNSET and not isinstance(loop, bool):
                raise TypeError("loop must be true or false")
            if path is not _UNSET and path is not None and not isinstance(path, str):
                raise TypeError("path must be a string")
        except (TypeError, ValueError) as e:
            return {"success": False, "error": f"Invalid value: {e}"}

        with self.lock:
            clip = self.clips.get(clip_id)
            if clip is None:
                return {"success": False, "error": "Clip not found"}
            displaced = None
            if name is not _UNSET:
                clip.rename(name)
            if volume is not _UNSET:
                clip.set_volume(volume)
            if start_cue is not _UNSET:
                clip.set_start_cue(start_cue)
            if loop is not _UNSET:
                clip.set_loop(loop)
            if assigned_key is not _UNSET:
                displaced = self.clips.assign_key(clip_id, assigned_key)
            if path is not _UNSET and path != clip.source_ref:
                self._cancel_decode(clip_id)
                clip.reset_source(path)
                self._queue_decode(clip)
            result = clip.to_dict()
            displaced_clip = self.clips.get(displaced)
        self._emit_clip(clip)
        if displaced_clip is not None:
            self._emit_clip(displaced_clip)
        return {"success": True, "clip": result, "displaced": displaced}

    def assign_key(self, clip_id: str, key: Optional[str]) -> Dict:
        return self.update_clip(clip_id, assigned_key=key)

    def key_map(self) -> Dict[str, str]:
        with self.lock:
            return self.clips.key_map()

    # ─────────────────────────────────────────────────────────
    # Transport
    # ─────────────────────────────────────────────────────────

    def _transport(self, clip_id: str, action: str, *args) -> Dict:
        with self.lock:
            clip = self.clips.get(clip_id)
            if clip is None:
                return {"success": False, "error": "Clip not found"}
            getattr(clip, action)(*args)
            result = clip.to_dict()
        self._emit_clip(clip)
        return {"success": True, "clip": result}

    def play_clip(self, clip_id: str, layered: bool = False) -> Dict:
        """Play a clip under the exclusive/layered policy (no restart)."""
        with self.lock:
            clip = self.clips.get(clip_id)
            if clip is None:
                return {"success": False, "error": "Clip not found"}
            stopped = []
            if not layered:
                for other in self.clips.all():
                    if other.clip_id != clip_id and other.is_active:
                        other.stop()
                        stopped.append(other)
            clip.play()
            result = clip.to_dict()
        for other in stopped:
            self._emit_clip(other)
        self._emit_clip(clip)
        return {"success": True, "clip": result, "stopped": [c.clip_id for c in stopped]}

    def pause_clip(self, clip_id: str) -> Dict:
        return self._transport(clip_id, "pause")

    def stop_clip(self, clip_id: str) -> Dict:
        return self._transport(clip_id, "stop")

    def restart_clip(self, clip_id: str) -> Dict:
        return self._transport(clip_id, "restart")

    def seek_clip(self, clip_id: str, position: float) -> Dict:
        return self._transport(clip_id, "seek", position)

    def toggle_mute(self, clip_id: str) -> Dict:
        return self._transport(clip_id, "toggle_mute")

    def stop_all(self) -> Dict:
        with self.lock:
            stopped = [c for c in self.clips.playing()]
            for clip in self.clips:
                clip.stop()
        for clip in stopped:
            self._emit_clip(clip)
        return {"success": True, "stopped": [c.clip_id for c in stopped]}

    # ─────────────────────────────────────────────────────────
    # Triggers
    # ─────────────────────────────────────────────────────────

    def press_key(self, code: str, shift: bool = False) -> Dict:
        with self.lock:
            result = self.router.handle(code, shift=shift)
            affected = [self.clips.get(cid) for cid in result.affected]
        for clip in affected:
            if clip is not None:
                self._emit_clip(clip)
        return result.to_dict()

    def focus_clip(self, clip_id: Optional[str]) -> Dict:
        with self.lock:
            try:
                self.router.focus(clip_id)
            except KeyError:
                return {"success": False, "error": "Clip not found"}
        return {"success": True, "focused": clip_id}

    # ─────────────────────────────────────────────────────────
    # Time source
    # ─────────────────────────────────────────────────────────

    def tick(self, now: Optional[float] = None) -> List[Clip]:
        """Advance playing clips by the wall-clock time since the last tick."""
        if now is None:
            now = self._clock()
        with self.lock:
            last, self._last_tick = self._last_tick, now
            if last is None:
                return []
            ended = self.clips.advance_all(max(0.0, now - last))
        for clip in ended:
            self._emit_clip(clip)
        return ended

    def playhead_snapshot(self) -> List[Dict]:
        with self.lock:
            return [{"id": c.clip_id, "playhead": round(c.playhead, 3),
                     "state": c.state.value} for c in self.clips.playing()]

    # ─────────────────────────────────────────────────────────
    # Decoding
    # ─────────────────────────────────────────────────────────

    def _queue_decode(self, clip: Clip, attempt: int = 1):
        # Caller holds self.lock
        if not clip.source_ref:
            return
        generation = clip.decode_generation
        path = clip.source_ref
        task = self.decode_queue.submit(
            partial(self._read_source, path),
            on_decoded=partial(self._on_decoded, clip.clip_id, generation),
            on_error=partial(self._on_decode_error, clip.clip_id, generation, attempt),
            label=clip.name,
        )
        self._decode_tasks[clip.clip_id] = task

    def _cancel_decode(self, clip_id: str):
        task = self._decode_tasks.pop(clip_id, None)
        if task is not None:
            self.decode_queue.cancel(task)

    def _live_clip(self, clip_id, generation) -> Optional[Clip]:
        clip = self.clips.get(clip_id)
        if clip is None or clip.decode_generation != generation:
            logger.debug("Discarding stale decode result for %s", clip_id)
            return None
        return clip

    def _on_decoded(self, clip_id, generation, audio):
        with self.lock:
            clip = self._live_clip(clip_id, generation)
            if clip is None:
                return
            self._decode_tasks.pop(clip_id, None)
            clip.attach_decoded(audio.duration, audio.sample_rate, audio.channels)
        logger.info("Decoded %s: %.2fs", clip.name, clip.duration)
        self._emit_clip(clip)

    def _on_decode_error(self, clip_id, generation, attempt, error):
        with self.lock:
            clip = self._live_clip(clip_id, generation)
            if clip is None:
                return
            if isinstance(error, OSError) and attempt < MAX_FETCH_ATTEMPTS:
                logger.warning("Could not read %s (attempt %d/%d): %s",
                               clip.source_ref, attempt, MAX_FETCH_ATTEMPTS, error)
                self._queue_decode(clip, attempt + 1)
                return
            self._decode_tasks.pop(clip_id, None)
            clip.mark_decode_failed(str(error))
        logger.error("Clip '%s' unusable: %s", clip.name, error)
        self._emit_clip(clip)

    # ─────────────────────────────────────────────────────────
    # Lighting
    # ─────────────────────────────────────────────────────────

    def get_levels(self) -> List[int]:
        return self.dmx_state.get_levels()

    def set_channel(self, index, value) -> Dict:
        changed = self.dmx_state.set_channel(index, value)
        return {"success": True, "changed": changed}

    def blackout(self) -> Dict:
        self.dmx_state.blackout()
        reg.audit('dmx_blackout')
        return {"success": True}

    def full(self) -> Dict:
        self.dmx_state.full()
        return {"success": True}

    def fill(self, value) -> Dict:
        self.dmx_state.fill(value)
        return {"success": True}

    def list_scenes(self) -> List[Dict]:
        return [s.to_dict() for s in self.scenes.list_scenes()]

    def create_scene(self, name=None, color=None) -> Dict:
        scene = self.scenes.create_scene(name=name, color=color)
        self._emit_scene(scene)
        return {"success": True, "scene": scene.to_dict()}

    def record_scene(self, scene_id) -> Dict:
        scene = self.scenes.record_scene(scene_id)
        if scene is None:
            return {"success": False, "error": "Scene not found"}
        self._emit_scene(scene)
        return {"success": True, "scene": scene.to_dict()}

    def recall_scene(self, scene_id) -> Dict:
        scene = self.scenes.recall_scene(scene_id)
        if scene is None:
            return {"success": False, "error": "Scene not found"}
        reg.audit('scene_recalled', scene_id=scene_id)
        return {"success": True, "active_scene_id": scene_id}

    def update_scene(self, scene_id, **changes) -> Dict:
        allowed = {k: v for k, v in changes.items() if k in ("name", "color", "linked_clip_id")}
        linked = allowed.get("linked_clip_id")
        if linked:
            with self.lock:
                if linked not in self.clips:
                    return {"success": False, "error": "Linked clip not found"}
        scene = self.scenes.update_scene(scene_id, **allowed)
        if scene is None:
            return {"success": False, "error": "Scene not found"}
        self._emit_scene(scene)
        return {"success": True, "scene": scene.to_dict()}

    def delete_scene(self, scene_id) -> Dict:
        if not self.scenes.delete_scene(scene_id):
            return {"success": False, "error": "Scene not found"}
        return {"success": True, "deleted": scene_id}

    # ─────────────────────────────────────────────────────────
    # DMX output
    # ─────────────────────────────────────────────────────────

    def list_ports(self) -> List[Dict]:
        return list_ports()

    def select_interface(self, path: Optional[str]) -> Dict:
        self.transmitter.select_port(path)
        return {"success": True, "port": self.transmitter.port_path}

    def send_now(self) -> Dict:
        return self.transmitter.send_now()

    # ─────────────────────────────────────────────────────────
    # Session
    # ─────────────────────────────────────────────────────────

    def build_session(self) -> SessionData:
        with self.lock:
            items = [SessionItem(
                item_id=c.clip_id, name=c.name, volume=c.volume,
                start_point=c.start_cue, is_looping=c.loop,
                assigned_key=c.assigned_key, path=c.source_ref,
            ) for c in self.clips]
            scenes = [SessionScene(
                scene_id=s.scene_id, name=s.name, color=s.color,
                levels=list(s.levels), linked_item_id=s.linked_clip_id,
            ) for s in self.scenes.list_scenes()]
            return SessionData(
                name=self.session_name,
                items=items,
                dmx_levels=self.dmx_state.get_levels(),
                scenes=scenes,
                selected_interface=self.transmitter.port_path,
                active_scene_id=self.scenes.active_scene_id,
            )

    def save_session(self, path: str) -> Dict:
        try:
            save_session_file(self.build_session(), path)
        except OSError as e:
            logger.error("Failed to save session to %s: %s", path, e)
            return {"success": False, "error": f"Failed to save session: {e}"}
        reg.audit('session_saved', path=path)
        return {"success": True, "path": path}

    def load_session(self, path: str) -> Dict:
        # SessionFormatError propagates: a foreground failure for the caller
        try:
            result = load_session_file(path)
        except OSError as e:
            logger.error("Failed to load session from %s: %s", path, e)
            return {"success": False, "error": f"Failed to load session: {e}"}
        self.apply_session(result)
        reg.audit('session_loaded', path=path, degraded=result.degraded)
        return {"success": True, "path": path, **result.to_dict()}

    def new_session(self, name: str = DEFAULT_SESSION_NAME) -> Dict:
        self.apply_session(SessionLoadResult(session=SessionData(name=name)))
        return {"success": True, "name": name}

    def apply_session(self, result: SessionLoadResult):
        session = result.session
        with self.lock:
            for clip_id in list(self._decode_tasks):
                self._cancel_decode(clip_id)
            self.clips.clear()
            self.router.clear_focus()
            self.scenes.clear()
            self.session_name = session.name

            for item in session.items:
                clip = self.clips.create(
                    item.name, source_ref=item.path, clip_id=item.item_id,
                    volume=item.volume, start_cue=item.start_point,
                    loop=item.is_looping, assigned_key=item.assigned_key,
                )
                self._queue_decode(clip)

            for index, s in enumerate(session.scenes):
                self.scenes.add_scene(Scene(
                    scene_id=s.scene_id, name=s.name,
                    color=s.color or SCENE_COLOR_PALETTE[index % len(SCENE_COLOR_PALETTE)],
                    levels=s.levels, linked_clip_id=s.linked_item_id,
                ))
            self.scenes.active_scene_id = session.active_scene_id

        self.dmx_state.set_levels(session.dmx_levels, urgent=True)
        if session.selected_interface:
            self.transmitter.select_port(session.selected_interface)
        logger.info("Session '%s' applied: %d clips, %d scenes",
                    session.name, len(session.items), len(session.scenes))
        reg.emit('session_update', {'name': session.name})

    # ─────────────────────────────────────────────────────────
    # Status
    # ─────────────────────────────────────────────────────────

    def get_status(self) -> Dict:
        with self.lock:
            clips = len(self.clips)
            playing = [c.clip_id for c in self.clips.playing()]
            focused = self.router.focused_id
        return {
            "session": self.session_name,
            "clips": clips,
            "playing": playing,
            "focused_clip_id": focused,
            "scenes": len(self.scenes),
            "active_scene_id": self.scenes.active_scene_id,
            "dmx": self.transmitter.get_status(),
            "decode": self.decode_queue.get_status(),
        }

    # ─────────────────────────────────────────────────────────
    # Events
    # ─────────────────────────────────────────────────────────

    def _emit_clip(self, clip: Clip):
        reg.emit('clip_update', clip.to_dict())

    def _emit_scene(self, scene: Scene):
        reg.emit('scene_update', scene.to_dict())
