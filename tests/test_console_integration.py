"""
LiveLoop Core - Console Integration Tests

End-to-end behaviour through ConsoleManager:
1. Import -> decode -> assign key -> press key -> playing and advancing
2. Play requests made while decoding
3. Clip removal racing an in-flight decode
4. Source fetch retries and decode failures
5. Scenes linked to clips
6. Session save / new / load round trip

Decoding uses a stub decoder so no audio files or codecs are needed; the
serial port is a Mock.
"""

import json
import time
import threading
import pytest
from unittest.mock import Mock

import numpy as np

import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from console_manager import ConsoleManager, MAX_FETCH_ATTEMPTS
from clip_transport import PlayState
from decode_queue import DecodedAudio, DecodeError
from dmx_state_manager import DMX_CHANNELS
from session_codec import SessionFormatError


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def two_second_decoder(data):
    return DecodedAudio(np.zeros((88200, 2), dtype=np.float32), 44100)


def make_console(**kwargs):
    kwargs.setdefault("decoder", two_second_decoder)
    kwargs.setdefault("source_reader", lambda path: b"RIFF....WAVE")
    kwargs.setdefault("port_factory", Mock())
    return ConsoleManager(**kwargs)


@pytest.fixture
def console():
    c = make_console()
    yield c
    c.shutdown()


def decoded(console, clip):
    return wait_for(lambda: console.clips.get(clip.clip_id).is_decoded)


class TestEndToEnd:
    """Import -> decode -> trigger."""

    def test_kick_on_digit1(self, console):
        clip = console.import_clip("/music/Kick.wav")
        assert clip.name == "Kick"
        assert clip.duration == 0.0
        assert decoded(console, clip)
        assert clip.duration == pytest.approx(2.0)

        console.assign_key(clip.clip_id, "Digit1")
        result = console.press_key("Digit1")
        assert result["handled"] is True
        assert clip.state == PlayState.PLAYING
        assert clip.playhead == 0.0

        console.tick(100.0)
        console.tick(100.5)
        assert clip.playhead == pytest.approx(0.5)

    def test_clip_stops_at_end(self, console):
        clip = console.import_clip("/music/Kick.wav")
        assert decoded(console, clip)
        console.play_clip(clip.clip_id)
        console.tick(10.0)
        ended = console.tick(12.5)
        assert ended == [clip]
        assert clip.state == PlayState.STOPPED
        assert clip.playhead == clip.start_cue

    def test_exclusive_click_play(self, console):
        a = console.import_clip("/music/A.wav")
        b = console.import_clip("/music/B.wav")
        assert decoded(console, a) and decoded(console, b)
        console.play_clip(a.clip_id)
        result = console.play_clip(b.clip_id)
        assert result["stopped"] == [a.clip_id]
        console.play_clip(a.clip_id, layered=True)
        assert a.is_playing and b.is_playing

    def test_unknown_clip_operations(self, console):
        assert console.play_clip("missing")["success"] is False
        assert console.remove_clip("missing")["success"] is False
        assert console.update_clip("missing", volume=0.1)["success"] is False
        assert console.focus_clip("missing")["success"] is False

    def test_invalid_update_changes_nothing(self, console):
        clip = console.import_clip("/music/Kick.wav")
        result = console.update_clip(clip.clip_id, name="New", volume=None)
        assert result["success"] is False
        assert "Invalid value" in result["error"]
        assert clip.name == "Kick"
        assert clip.volume == 0.8
        result = console.update_clip(clip.clip_id, volume=0.5, start_cue="soon", loop=True)
        assert result["success"] is False
        assert clip.volume == 0.8
        assert clip.loop is False

    def test_focus_can_be_cleared(self, console):
        clip = console.import_clip("/music/Kick.wav")
        console.focus_clip(clip.clip_id)
        assert console.router.focused_id == clip.clip_id
        assert console.focus_clip(None) == {"success": True, "focused": None}
        assert console.router.focused_id is None


class TestDecodeRaces:
    """Play requests and removal while decoding."""

    def test_play_while_decoding_starts_when_ready(self):
        gate = threading.Event()

        def slow_decoder(data):
            gate.wait(5)
            return two_second_decoder(data)

        console = make_console(decoder=slow_decoder)
        try:
            clip = console.import_clip("/music/Slow.wav", assigned_key="KeyS")
            console.press_key("KeyS")
            assert clip.play_pending is True
            assert clip.state == PlayState.STOPPED
            gate.set()
            assert wait_for(lambda: clip.is_playing)
        finally:
            gate.set()
            console.shutdown()

    def test_remove_during_decode_discards_result(self):
        gate = threading.Event()

        def slow_decoder(data):
            gate.wait(5)
            return two_second_decoder(data)

        console = make_console(decoder=slow_decoder)
        try:
            clip = console.import_clip("/music/Gone.wav")
            assert wait_for(lambda: console.decode_queue.active == 1)
            console.remove_clip(clip.clip_id)
            gate.set()
            assert wait_for(lambda: console.decode_queue.active == 0)
            assert clip.clip_id not in console.clips
            assert clip.duration == 0.0
            assert console.decode_queue.get_status()["cancelled"] == 1
        finally:
            gate.set()
            console.shutdown()

    def test_new_source_voids_old_decode(self):
        gates = {"/music/old.wav": threading.Event(), "/music/new.wav": threading.Event()}
        durations = {"/music/old.wav": 1, "/music/new.wav": 3}

        def path_decoder(data):
            path = data.decode()
            gates[path].wait(5)
            return DecodedAudio(np.zeros((durations[path] * 100, 1), dtype=np.float32), 100)

        console = make_console(source_reader=lambda path: path.encode(), decoder=path_decoder)
        try:
            clip = console.import_clip("/music/old.wav")
            console.update_clip(clip.clip_id, path="/music/new.wav")
            gates["/music/new.wav"].set()
            assert wait_for(lambda: clip.is_decoded)
            gates["/music/old.wav"].set()
            assert wait_for(lambda: console.decode_queue.active == 0)
            assert clip.duration == pytest.approx(3.0)
        finally:
            for gate in gates.values():
                gate.set()
            console.shutdown()


class TestSourceFailures:

    def test_fetch_retried_then_succeeds(self):
        calls = []

        def flaky_reader(path):
            calls.append(path)
            if len(calls) < MAX_FETCH_ATTEMPTS:
                raise OSError("network share busy")
            return b"audio"

        console = make_console(source_reader=flaky_reader)
        try:
            clip = console.import_clip("/mnt/share/Loop.wav")
            assert decoded(console, clip)
            assert len(calls) == MAX_FETCH_ATTEMPTS
            assert clip.decode_error is None
        finally:
            console.shutdown()

    def test_fetch_gives_up_after_max_attempts(self):
        calls = []

        def missing_reader(path):
            calls.append(path)
            raise FileNotFoundError(path)

        console = make_console(source_reader=missing_reader)
        try:
            clip = console.import_clip("/music/missing.wav")
            assert wait_for(lambda: clip.decode_error is not None)
            assert len(calls) == MAX_FETCH_ATTEMPTS
            console.play_clip(clip.clip_id)
            assert clip.state == PlayState.STOPPED
        finally:
            console.shutdown()

    def test_decode_error_not_retried(self):
        def broken_decoder(data):
            raise DecodeError("corrupt header")

        console = make_console(decoder=broken_decoder)
        try:
            clip = console.import_clip("/music/Broken.wav")
            assert wait_for(lambda: clip.decode_error is not None)
            assert "corrupt header" in clip.decode_error
            assert console.decode_queue.get_status()["failed"] == 1
        finally:
            console.shutdown()


class TestScenesAndClips:

    def test_removing_clip_unlinks_scene(self, console):
        clip = console.import_clip("/music/Verse.wav")
        scene = console.create_scene("Verse look")["scene"]
        assert console.update_scene(scene["id"], linked_clip_id=clip.clip_id)["success"]
        result = console.remove_clip(clip.clip_id)
        assert result["unlinked_scenes"] == [scene["id"]]
        assert console.scenes.get_scene(scene["id"]).linked_clip_id is None

    def test_link_to_unknown_clip_rejected(self, console):
        scene = console.create_scene()["scene"]
        result = console.update_scene(scene["id"], linked_clip_id="ghost")
        assert result["success"] is False

    def test_recall_unknown_scene(self, console):
        assert console.recall_scene("ghost")["success"] is False


class TestSessions:
    """Save / new / load through the console."""

    def test_round_trip(self, console, tmp_path):
        kick = console.import_clip("/music/Kick.wav", assigned_key="Digit1")
        pad = console.import_clip("/music/Pad.wav", volume=0.4, loop=True)
        assert decoded(console, kick) and decoded(console, pad)
        console.update_clip(kick.clip_id, start_cue=0.75)
        console.set_channel(0, 200)
        console.fill(0)
        console.set_channel(10, 99)
        scene = console.create_scene("Chorus")["scene"]
        console.update_scene(scene["id"], linked_clip_id=pad.clip_id)
        console.recall_scene(scene["id"])

        path = str(tmp_path / "set.json")
        assert console.save_session(path)["success"]

        console.new_session()
        assert len(console.clips) == 0
        assert len(console.scenes) == 0

        result = console.load_session(path)
        assert result["success"] is True
        assert result["degraded"] is False
        restored = console.clips.get(kick.clip_id)
        assert restored.assigned_key == "Digit1"
        assert restored.start_cue == 0.75
        assert console.clips.get(pad.clip_id).volume == pytest.approx(0.4)
        assert console.clips.get(pad.clip_id).loop is True
        assert console.scenes.get_scene(scene["id"]).linked_clip_id == pad.clip_id
        assert console.scenes.active_scene_id == scene["id"]
        assert console.get_levels()[10] == 99
        assert wait_for(lambda: restored.is_decoded)

    def test_legacy_file_loads_degraded(self, console, tmp_path):
        path = tmp_path / "old.json"
        path.write_text(json.dumps({"version": 1, "dmxLevels": [50] * DMX_CHANNELS}))
        result = console.load_session(str(path))
        assert result["success"] is True
        assert result["degraded"] is True
        assert console.get_levels() == [50] * DMX_CHANNELS

    def test_invalid_file_raises(self, console, tmp_path):
        path = tmp_path / "junk.json"
        path.write_text("not a session")
        with pytest.raises(SessionFormatError):
            console.load_session(str(path))

    def test_missing_file_reports_error(self, console, tmp_path):
        result = console.load_session(str(tmp_path / "nope.json"))
        assert result["success"] is False


class TestStatus:

    def test_status_shape(self, console):
        clip = console.import_clip("/music/Kick.wav")
        assert decoded(console, clip)
        console.play_clip(clip.clip_id)
        status = console.get_status()
        assert status["clips"] == 1
        assert status["playing"] == [clip.clip_id]
        assert status["dmx"]["state"] == "waiting"
        assert status["decode"]["max_concurrent"] == 2
