"""
Session Codec - Session document <-> plain data

Document shape (version 3):
    {
      "version": 3,
      "name": "My Set",
      "items": [{"id", "name", "volume", "startPoint", "isLooping",
                 "assignedKey", "path"}],
      "dmxLevels": [512 ints],
      "scenes": [{"id", "name", "color", "levels": [512 ints], "linkedItemId"}],
      "selectedInterface": "/dev/ttyUSB0",
      "activeSceneId": null
    }

Loading is forgiving: missing optional fields take their defaults, broken
pieces are repaired, and every repair is reported as a warning. A document
without "items" (legacy v1) loads in degraded mode. Only a document that is
not JSON, or not a JSON object, raises SessionFormatError.
"""

import json
import uuid
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from clip_transport import DEFAULT_VOLUME, clamp, normalize_key_code
from dmx_state_manager import DMX_CHANNELS, normalize_levels

logger = logging.getLogger(__name__)

SESSION_VERSION = 3
DEFAULT_SESSION_NAME = "My Set"


class SessionFormatError(Exception):
    """The document is not a readable session at all."""
    pass


@dataclass
class SessionItem:
    item_id: str
    name: str
    volume: float = DEFAULT_VOLUME
    start_point: float = 0.0
    is_looping: bool = False
    assigned_key: Optional[str] = None
    path: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "id": self.item_id,
            "type": "audio",
            "name": self.name,
            "volume": self.volume,
            "startPoint": self.start_point,
            "isLooping": self.is_looping,
            "assignedKey": self.assigned_key,
        }
        if self.path:
            data["path"] = self.path
        return data


@dataclass
class SessionScene:
    scene_id: str
    name: str
    color: str
    levels: List[int]
    linked_item_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.scene_id,
            "name": self.name,
            "color": self.color,
            "levels": list(self.levels),
            "linkedItemId": self.linked_item_id,
        }


@dataclass
class SessionData:
    name: str = DEFAULT_SESSION_NAME
    items: List[SessionItem] = field(default_factory=list)
    dmx_levels: List[int] = field(default_factory=lambda: [0] * DMX_CHANNELS)
    scenes: List[SessionScene] = field(default_factory=list)
    selected_interface: Optional[str] = None
    active_scene_id: Optional[str] = None
    version: int = SESSION_VERSION


@dataclass
class SessionLoadResult:
    session: SessionData
    warnings: List[str] = field(default_factory=list)
    degraded: bool = False

    def to_dict(self) -> dict:
        return {"degraded": self.degraded, "warnings": list(self.warnings)}


# ============================================================
# Encode
# ============================================================

def encode_session(session: SessionData) -> Dict[str, Any]:
    doc = {
        "version": SESSION_VERSION,
        "name": session.name,
        "items": [item.to_dict() for item in session.items],
        "dmxLevels": normalize_levels(session.dmx_levels),
        "scenes": [scene.to_dict() for scene in session.scenes],
        "activeSceneId": session.active_scene_id,
    }
    if session.selected_interface:
        doc["selectedInterface"] = session.selected_interface
    return doc


def save_session_file(session: SessionData, path: str):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(encode_session(session), f, indent=2)
    logger.info("Session saved: %s (%d items, %d scenes)",
                path, len(session.items), len(session.scenes))


# ============================================================
# Decode
# ============================================================

def _as_float(value, default):
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    if result != result:  # NaN
        return default
    return result


def _levels(raw, label, warnings) -> List[int]:
    if not isinstance(raw, list):
        warnings.append(f"{label}: levels missing or not a list, using zeros")
        return [0] * DMX_CHANNELS
    if len(raw) != DMX_CHANNELS:
        warnings.append(f"{label}: expected {DMX_CHANNELS} levels, got {len(raw)}")
    return normalize_levels(raw)


def _decode_item(raw, index, warnings) -> Optional[SessionItem]:
    if not isinstance(raw, dict):
        warnings.append(f"Item {index + 1} is not an object, skipped")
        return None
    item_id = str(raw.get("id") or uuid.uuid4())
    path = raw.get("path") or None
    bad_path = path is not None and not isinstance(path, str)
    if bad_path:
        path = None
    name = raw.get("name") or (path.replace("\\", "/").rsplit("/", 1)[-1]
                               if path else f"Item {index + 1}")
    volume = _as_float(raw.get("volume"), DEFAULT_VOLUME)
    start = _as_float(raw.get("startPoint"), 0.0)
    if bad_path:
        warnings.append(f"Item '{name}' has an invalid file path; audio cannot be restored")
    elif path is None:
        warnings.append(f"Item '{name}' has no file path; audio cannot be restored")
    looping = raw.get("isLooping")
    if looping is None:
        looping = False
    elif not isinstance(looping, bool):
        warnings.append(f"Item '{name}' has a non-boolean isLooping; looping disabled")
        looping = False
    return SessionItem(
        item_id=item_id,
        name=str(name),
        volume=clamp(volume, 0.0, 1.0),
        start_point=max(0.0, start),
        is_looping=looping,
        assigned_key=normalize_key_code(raw.get("assignedKey")),
        path=path,
    )


def decode_session(doc: Any) -> SessionLoadResult:
    """Turn a parsed document into SessionData plus repair warnings."""
    if not isinstance(doc, dict):
        raise SessionFormatError("Session document must be a JSON object")

    warnings: List[str] = []
    degraded = False
    session = SessionData(name=str(doc.get("name") or "Loaded Session"))
    try:
        session.version = int(doc.get("version", 1))
    except (TypeError, ValueError):
        session.version = 1

    raw_items = doc.get("items")
    if raw_items is None:
        degraded = True
        warnings.append("Legacy session format. Some data might be missing.")
        raw_items = doc.get("tracks") or []
    if not isinstance(raw_items, list):
        degraded = True
        warnings.append("Session items are not a list; no clips restored")
        raw_items = []

    seen_ids = set()
    seen_keys: Dict[str, SessionItem] = {}
    for index, raw in enumerate(raw_items):
        item = _decode_item(raw, index, warnings)
        if item is None:
            continue
        if item.item_id in seen_ids:
            warnings.append(f"Duplicate item id {item.item_id}; assigned a new id")
            item.item_id = str(uuid.uuid4())
        seen_ids.add(item.item_id)
        if item.assigned_key:
            previous = seen_keys.get(item.assigned_key)
            if previous is not None:
                # Last write wins, same as live key assignment
                warnings.append(f"Key {item.assigned_key} was assigned twice; "
                                f"kept on '{item.name}'")
                previous.assigned_key = None
            seen_keys[item.assigned_key] = item
        session.items.append(item)

    if "dmxLevels" in doc:
        session.dmx_levels = _levels(doc.get("dmxLevels"), "dmxLevels", warnings)

    raw_scenes = doc.get("scenes") or []
    if not isinstance(raw_scenes, list):
        warnings.append("Scenes are not a list; no scenes restored")
        raw_scenes = []
    for index, raw in enumerate(raw_scenes):
        if not isinstance(raw, dict):
            warnings.append(f"Scene {index + 1} is not an object, skipped")
            continue
        name = str(raw.get("name") or f"Scene {index + 1}")
        linked = raw.get("linkedItemId") or None
        if linked is not None and linked not in seen_ids:
            warnings.append(f"Scene '{name}' linked to unknown item; link cleared")
            linked = None
        session.scenes.append(SessionScene(
            scene_id=str(raw.get("id") or uuid.uuid4()),
            name=name,
            color=str(raw.get("color") or ""),
            levels=_levels(raw.get("levels"), f"Scene '{name}'", warnings),
            linked_item_id=linked,
        ))

    session.selected_interface = doc.get("selectedInterface") or None
    active = doc.get("activeSceneId") or None
    if active is not None and active not in {s.scene_id for s in session.scenes}:
        warnings.append("Active scene not found; no scene marked active")
        active = None
    session.active_scene_id = active

    for w in warnings:
        logger.warning("Session load: %s", w)
    return SessionLoadResult(session=session, warnings=warnings, degraded=degraded)


def loads_session(text: str) -> SessionLoadResult:
    try:
        doc = json.loads(text)
    except json.JSONDecodeError as e:
        raise SessionFormatError(f"Session file is not valid JSON: {e}") from e
    return decode_session(doc)


def load_session_file(path: str) -> SessionLoadResult:
    with open(path, "r", encoding="utf-8") as f:
        text = f.read()
    return loads_session(text)
