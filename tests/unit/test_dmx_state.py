"""
Unit Tests for LiveLevels and the Scene Store

Tests for:
- Channel bounds and value clamping
- Edit intents (soft channel edits vs urgent bulk writes)
- Scene create / record / recall round trip over 512 channels
- Scene metadata and clip links
"""

import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from dmx_state_manager import DMXStateManager, DMX_CHANNELS, clamp_level, normalize_levels
from scene_store import SceneStore, SCENE_COLOR_PALETTE


@pytest.fixture
def live():
    return DMXStateManager()


@pytest.fixture
def store(live):
    return SceneStore(live)


class TestLevelHelpers:

    def test_clamp_level(self):
        assert clamp_level(300) == 255
        assert clamp_level(-4) == 0
        assert clamp_level(12.6) == 13
        assert clamp_level("bad") == 0

    def test_normalize_pads_and_truncates(self):
        assert len(normalize_levels([1, 2, 3])) == DMX_CHANNELS
        assert normalize_levels([1, 2, 3])[:4] == [1, 2, 3, 0]
        assert len(normalize_levels(list(range(600)))) == DMX_CHANNELS
        assert normalize_levels(None) == [0] * DMX_CHANNELS


class TestLiveLevels:
    """Tests for DMXStateManager writes."""

    def test_starts_dark(self, live):
        assert live.get_levels() == [0] * DMX_CHANNELS

    @pytest.mark.parametrize("index", [-1, 512, 10000, "abc", None])
    def test_out_of_range_channel_is_noop(self, live, index):
        version = live.version
        assert live.set_channel(index, 200) is False
        assert live.version == version
        assert live.get_levels() == [0] * DMX_CHANNELS

    def test_set_channel_clamps(self, live):
        assert live.set_channel(0, 300) is True
        assert live.set_channel(511, -20) is False  # already 0
        assert live.get_channel(0) == 255

    def test_same_value_does_not_bump_version(self, live):
        live.set_channel(5, 100)
        version = live.version
        assert live.set_channel(5, 100) is False
        assert live.version == version

    def test_channel_edit_is_soft(self, live):
        live.set_channel(3, 10)
        assert live.snapshot().urgent is False

    def test_bulk_write_is_urgent(self, live):
        live.full()
        snap = live.snapshot()
        assert snap.urgent is True
        assert snap.levels == [255] * DMX_CHANNELS
        live.clear_urgent(snap.version)
        assert live.snapshot().urgent is False

    def test_clear_urgent_ignores_stale_version(self, live):
        live.blackout()
        stale = live.version
        live.fill(40)
        live.clear_urgent(stale)
        assert live.snapshot().urgent is True

    def test_snapshot_is_a_copy(self, live):
        snap = live.snapshot()
        snap.levels[0] = 99
        assert live.get_channel(0) == 0


class TestSceneStore:
    """Tests for scene snapshots."""

    def test_create_copies_live_levels(self, live, store):
        live.set_channel(0, 128)
        scene = store.create_scene()
        live.set_channel(0, 5)
        assert scene.levels[0] == 128
        assert len(scene.levels) == DMX_CHANNELS

    def test_round_trip_all_channels(self, live, store):
        pattern = [i % 256 for i in range(DMX_CHANNELS)]
        live.set_levels(pattern)
        scene = store.create_scene("Pattern")
        live.blackout()
        store.recall_scene(scene.scene_id)
        assert live.get_levels() == pattern
        assert store.active_scene_id == scene.scene_id

    def test_recall_is_urgent(self, live, store):
        scene = store.create_scene()
        live.clear_urgent(live.version)
        store.recall_scene(scene.scene_id)
        assert live.snapshot().urgent is True

    def test_record_overwrites_levels(self, live, store):
        scene = store.create_scene()
        live.fill(77)
        store.record_scene(scene.scene_id)
        assert scene.levels == [77] * DMX_CHANNELS

    def test_default_names_and_palette(self, store):
        scenes = [store.create_scene() for _ in range(len(SCENE_COLOR_PALETTE) + 1)]
        assert scenes[0].name == "Scene 1"
        assert scenes[2].name == "Scene 3"
        assert [s.color for s in scenes[:len(SCENE_COLOR_PALETTE)]] == SCENE_COLOR_PALETTE
        assert scenes[-1].color == SCENE_COLOR_PALETTE[0]

    def test_update_does_not_touch_levels(self, live, store):
        live.fill(9)
        scene = store.create_scene()
        live.fill(200)
        store.update_scene(scene.scene_id, name="Verse", color="#000000", linked_clip_id="clip-1")
        assert scene.name == "Verse"
        assert scene.color == "#000000"
        assert scene.linked_clip_id == "clip-1"
        assert scene.levels == [9] * DMX_CHANNELS

    def test_unknown_scene_ids(self, store):
        assert store.recall_scene("missing") is None
        assert store.record_scene("missing") is None
        assert store.update_scene("missing", name="x") is None
        assert store.delete_scene("missing") is False

    def test_delete_active_scene_clears_marker(self, store):
        scene = store.create_scene()
        store.recall_scene(scene.scene_id)
        assert store.delete_scene(scene.scene_id) is True
        assert store.active_scene_id is None
        assert len(store) == 0

    def test_unlink_clip(self, store):
        a = store.create_scene()
        b = store.create_scene()
        store.update_scene(a.scene_id, linked_clip_id="clip-1")
        store.update_scene(b.scene_id, linked_clip_id="clip-2")
        assert store.unlink_clip("clip-1") == [a.scene_id]
        assert a.linked_clip_id is None
        assert b.linked_clip_id == "clip-2"
