"""
Unit Tests for Clip Transport

Tests for:
- Key code normalization (keypad aliases)
- Clip play/pause/stop/restart/seek state machine
- Start cue and volume clamping
- Deferred play while audio is decoding
- ClipRegistry key uniqueness and time advance
"""

import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from clip_transport import (
    Clip,
    ClipRegistry,
    PlayState,
    DEFAULT_VOLUME,
    normalize_key_code,
)


def decoded_clip(duration=10.0, **kwargs):
    clip = Clip(clip_id=kwargs.pop("clip_id", "c1"), name=kwargs.pop("name", "Kick"), **kwargs)
    clip.attach_decoded(duration, 44100, 2)
    return clip


class TestNormalizeKeyCode:
    """Tests for keypad -> main row aliasing."""

    def test_numpad_digit_maps_to_digit(self):
        assert normalize_key_code("Numpad1") == "Digit1"
        assert normalize_key_code("Numpad0") == "Digit0"

    def test_other_codes_unchanged(self):
        assert normalize_key_code("Digit5") == "Digit5"
        assert normalize_key_code("KeyA") == "KeyA"
        assert normalize_key_code("NumpadAdd") == "NumpadAdd"

    def test_empty_is_none(self):
        assert normalize_key_code("") is None
        assert normalize_key_code(None) is None
        assert normalize_key_code("   ") is None


class TestClipDefaults:
    """Tests for a freshly created clip."""

    def test_defaults(self):
        clip = Clip(clip_id="c1", name="Kick")
        assert clip.volume == DEFAULT_VOLUME
        assert clip.start_cue == 0.0
        assert clip.loop is False
        assert clip.duration == 0.0
        assert clip.state == PlayState.STOPPED

    def test_playhead_starts_on_cue(self):
        clip = Clip(clip_id="c1", name="Kick", start_cue=2.5)
        assert clip.playhead == 2.5

    def test_volume_clamped_on_create(self):
        assert Clip(clip_id="a", name="a", volume=3.0).volume == 1.0
        assert Clip(clip_id="b", name="b", volume=-1).volume == 0.0


class TestTransport:
    """Tests for the play/pause/stop state machine."""

    def test_play_from_stopped(self):
        clip = decoded_clip()
        clip.play()
        assert clip.state == PlayState.PLAYING
        assert clip.playhead == 0.0

    def test_play_snaps_to_cue(self):
        clip = decoded_clip(start_cue=3.0)
        clip.seek(1.0)
        clip.play()
        assert clip.playhead == 3.0

    def test_pause_keeps_playhead(self):
        clip = decoded_clip()
        clip.play()
        clip.advance(1.5)
        clip.pause()
        assert clip.state == PlayState.PAUSED
        assert clip.playhead == pytest.approx(1.5)

    def test_resume_after_pause(self):
        clip = decoded_clip()
        clip.play()
        clip.advance(2.0)
        clip.pause()
        clip.play()
        assert clip.is_playing
        assert clip.playhead == pytest.approx(2.0)

    def test_pause_when_stopped_is_noop(self):
        clip = decoded_clip()
        clip.pause()
        assert clip.state == PlayState.STOPPED

    @pytest.mark.parametrize("setup", ["playing", "paused", "stopped"])
    def test_stop_resets_to_cue_from_any_state(self, setup):
        clip = decoded_clip(start_cue=1.25)
        if setup in ("playing", "paused"):
            clip.play()
            clip.advance(3.0)
        if setup == "paused":
            clip.pause()
        clip.stop()
        assert clip.state == PlayState.STOPPED
        assert clip.playhead == 1.25

    def test_restart_is_idempotent(self):
        clip = decoded_clip(start_cue=0.5)
        clip.play()
        clip.advance(4.0)
        clip.restart()
        first = (clip.state, clip.playhead)
        clip.restart()
        assert (clip.state, clip.playhead) == first == (PlayState.PLAYING, 0.5)

    def test_seek_clamped(self):
        clip = decoded_clip(duration=5.0)
        clip.play()
        clip.seek(99)
        assert clip.playhead == 5.0
        clip.seek(-3)
        assert clip.playhead == 0.0

    def test_seek_while_stopped_becomes_paused(self):
        clip = decoded_clip()
        clip.seek(4.0)
        assert clip.state == PlayState.PAUSED
        assert clip.playhead == 4.0


class TestAdvance:
    """Tests for playhead advance and end-of-clip handling."""

    def test_advance_only_while_playing(self):
        clip = decoded_clip()
        assert clip.advance(1.0) is False
        assert clip.playhead == 0.0

    def test_reaching_end_stops_on_cue(self):
        clip = decoded_clip(duration=2.0, start_cue=0.5)
        clip.play()
        assert clip.advance(2.0) is True
        assert clip.state == PlayState.STOPPED
        assert clip.playhead == 0.5

    def test_looping_clip_wraps_to_cue(self):
        clip = decoded_clip(duration=2.0, start_cue=0.5, loop=True)
        clip.play()
        assert clip.advance(1.6) is True
        assert clip.state == PlayState.PLAYING
        assert clip.playhead == 0.5


class TestSetters:
    """Tests for clamped property setters."""

    def test_start_cue_clamped_to_duration(self):
        clip = decoded_clip(duration=4.0)
        clip.set_start_cue(10.0)
        assert clip.start_cue < 4.0
        assert clip.start_cue == pytest.approx(4.0)
        clip.set_start_cue(-1)
        assert clip.start_cue == 0.0

    def test_start_cue_setter_idempotent(self):
        clip = decoded_clip(duration=4.0)
        clip.set_start_cue(2.2)
        once = clip.start_cue
        clip.set_start_cue(2.2)
        assert clip.start_cue == once

    def test_stopped_playhead_follows_cue(self):
        clip = decoded_clip()
        clip.set_start_cue(3.0)
        assert clip.playhead == 3.0

    def test_playing_playhead_ignores_cue_change(self):
        clip = decoded_clip()
        clip.play()
        clip.advance(1.0)
        clip.set_start_cue(3.0)
        assert clip.playhead == pytest.approx(1.0)

    def test_cue_kept_until_duration_known(self):
        clip = Clip(clip_id="c1", name="Kick", start_cue=12.0)
        assert clip.start_cue == 12.0
        clip.attach_decoded(5.0)
        assert clip.start_cue < 5.0
        assert clip.playhead == clip.start_cue

    def test_volume_clamped_and_idempotent(self):
        clip = decoded_clip()
        clip.set_volume(1.7)
        assert clip.volume == 1.0
        clip.set_volume(1.7)
        assert clip.volume == 1.0
        clip.set_volume(-0.2)
        assert clip.volume == 0.0

    def test_nudge_volume(self):
        clip = decoded_clip()
        clip.nudge_volume(0.05)
        assert clip.volume == pytest.approx(0.85)
        clip.set_volume(1.0)
        clip.nudge_volume(0.05)
        assert clip.volume == 1.0

    def test_toggle_mute_restores_volume(self):
        clip = decoded_clip(volume=0.6)
        clip.toggle_mute()
        assert clip.volume == 0.0
        clip.toggle_mute()
        assert clip.volume == pytest.approx(0.6)

    def test_rename_ignores_blank(self):
        clip = decoded_clip()
        clip.rename("  ")
        assert clip.name == "Kick"
        clip.rename("Snare")
        assert clip.name == "Snare"


class TestDecodeLifecycle:
    """Tests for play requests around decoding."""

    def test_play_before_decode_is_deferred(self):
        clip = Clip(clip_id="c1", name="Kick")
        clip.play()
        assert clip.state == PlayState.STOPPED
        assert clip.play_pending is True
        clip.attach_decoded(3.0, 48000, 2)
        assert clip.state == PlayState.PLAYING
        assert clip.play_pending is False

    def test_failed_decode_blocks_playback(self):
        clip = Clip(clip_id="c1", name="Kick")
        clip.mark_decode_failed("corrupt")
        clip.play()
        assert clip.state == PlayState.STOPPED
        assert clip.play_pending is False
        assert clip.to_dict()["decode_error"] == "corrupt"

    def test_stop_clears_pending(self):
        clip = Clip(clip_id="c1", name="Kick")
        clip.play()
        clip.stop()
        clip.attach_decoded(3.0)
        assert clip.state == PlayState.STOPPED

    def test_reset_source_bumps_generation(self):
        clip = decoded_clip()
        generation = clip.decode_generation
        clip.play()
        clip.reset_source("/music/other.wav")
        assert clip.decode_generation == generation + 1
        assert clip.duration == 0.0
        assert clip.state == PlayState.STOPPED


class TestClipRegistry:
    """Tests for the clip arena and key assignment."""

    def test_create_and_get(self):
        reg = ClipRegistry()
        clip = reg.create("Kick", source_ref="/music/Kick.wav")
        assert reg.get(clip.clip_id) is clip
        assert clip.clip_id in reg
        assert len(reg) == 1

    def test_duplicate_id_rejected(self):
        reg = ClipRegistry()
        reg.create("Kick", clip_id="x")
        with pytest.raises(ValueError):
            reg.create("Snare", clip_id="x")

    def test_key_is_unique(self):
        reg = ClipRegistry()
        a = reg.create("A", clip_id="a", assigned_key="Digit1")
        b = reg.create("B", clip_id="b")
        displaced = reg.assign_key("b", "Digit1")
        assert displaced == "a"
        assert a.assigned_key is None
        assert b.assigned_key == "Digit1"
        assert reg.key_map() == {"Digit1": "b"}

    def test_assign_normalizes_keypad(self):
        reg = ClipRegistry()
        reg.create("A", clip_id="a")
        reg.assign_key("a", "Numpad3")
        assert reg.find_by_key("Digit3").clip_id == "a"
        assert reg.find_by_key("Numpad3").clip_id == "a"

    def test_assign_unknown_clip(self):
        reg = ClipRegistry()
        with pytest.raises(KeyError):
            reg.assign_key("missing", "Digit1")

    def test_unassign(self):
        reg = ClipRegistry()
        reg.create("A", clip_id="a", assigned_key="KeyQ")
        reg.assign_key("a", None)
        assert reg.key_map() == {}

    def test_remove_frees_key(self):
        reg = ClipRegistry()
        reg.create("A", clip_id="a", assigned_key="Digit1")
        removed = reg.remove("a")
        assert removed is not None
        assert reg.find_by_key("Digit1") is None
        assert reg.remove("a") is None

    def test_advance_all_returns_ended(self):
        reg = ClipRegistry()
        short = reg.create("Short", clip_id="s")
        long = reg.create("Long", clip_id="l")
        short.attach_decoded(1.0)
        long.attach_decoded(10.0)
        short.play()
        long.play()
        ended = reg.advance_all(1.5)
        assert ended == [short]
        assert long.playhead == pytest.approx(1.5)
        assert reg.playing() == [long]
