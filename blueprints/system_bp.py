"""
LiveLoop Core — System Blueprint
Routes: /api/health, /api/status
Dependencies: console, playhead_clock, version, start time
"""

import time
from flask import Blueprint, jsonify

system_bp = Blueprint('system', __name__)

# Dependencies injected at registration time
_console = None
_playhead_clock = None
_LIVELOOP_VERSION = None
_START_TIME = None


def init_app(console, playhead_clock, version, start_time):
    """Initialize blueprint with required dependencies."""
    global _console, _playhead_clock, _LIVELOOP_VERSION, _START_TIME
    _console = console
    _playhead_clock = playhead_clock
    _LIVELOOP_VERSION = version
    _START_TIME = start_time


@system_bp.route('/api/health', methods=['GET'])
def health():
    dmx = _console.transmitter.get_status()
    return jsonify({
        'status': 'healthy',
        'version': _LIVELOOP_VERSION,
        'uptime': int(time.time() - _START_TIME) if _START_TIME else 0,
        'dmx_state': dmx['state'],
        'clock_running': bool(_playhead_clock and _playhead_clock.running),
    })

@system_bp.route('/api/status', methods=['GET'])
def status():
    """Full console status for the UI status bar"""
    data = _console.get_status()
    data['version'] = _LIVELOOP_VERSION
    return jsonify(data)
