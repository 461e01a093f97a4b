"""
LiveLoop Core — DMX Blueprint
Routes: /api/dmx/*
Dependencies: console (ConsoleManager)
"""

from flask import Blueprint, jsonify, request

from dmx_state_manager import DMX_CHANNELS

dmx_bp = Blueprint('dmx', __name__)

_console = None


def init_app(console):
    """Initialize blueprint with required dependencies."""
    global _console
    _console = console


# ---------------------------------------------------------
# Live levels
# ---------------------------------------------------------
@dmx_bp.route('/api/dmx/levels', methods=['GET'])
def get_levels():
    return jsonify({'levels': _console.get_levels()})

@dmx_bp.route('/api/dmx/levels', methods=['POST'])
def set_levels():
    """Bulk overwrite: {levels: [512 ints]}"""
    data = request.get_json() or {}
    levels = data.get('levels')
    if not isinstance(levels, list):
        return jsonify({'success': False, 'error': 'levels list required'}), 400
    _console.dmx_state.set_levels(levels, urgent=True)
    return jsonify({'success': True})

@dmx_bp.route('/api/dmx/channel', methods=['POST'])
def set_channel():
    """Set one channel. channel is 1-512 (DMX numbering); index is 0-511."""
    data = request.get_json() or {}
    if 'index' in data:
        index = data.get('index')
    elif 'channel' in data:
        try:
            index = int(data.get('channel')) - 1
        except (TypeError, ValueError):
            return jsonify({'success': False, 'error': 'Invalid channel'}), 400
    else:
        return jsonify({'success': False, 'error': 'channel or index required'}), 400
    return jsonify(_console.set_channel(index, data.get('value', 0)))

@dmx_bp.route('/api/dmx/blackout', methods=['POST'])
def blackout():
    return jsonify(_console.blackout())

@dmx_bp.route('/api/dmx/full', methods=['POST'])
def full():
    return jsonify(_console.full())

@dmx_bp.route('/api/dmx/fill', methods=['POST'])
def fill():
    data = request.get_json() or {}
    if 'value' not in data:
        return jsonify({'success': False, 'error': 'value required'}), 400
    return jsonify(_console.fill(data['value']))


# ---------------------------------------------------------
# Output interface
# ---------------------------------------------------------
@dmx_bp.route('/api/dmx/ports', methods=['GET'])
def list_ports():
    return jsonify({'ports': _console.list_ports(), 'selected': _console.transmitter.port_path})

@dmx_bp.route('/api/dmx/interface', methods=['POST'])
def select_interface():
    """Select the serial port by path; null deselects"""
    data = request.get_json() or {}
    return jsonify(_console.select_interface(data.get('path')))

@dmx_bp.route('/api/dmx/send', methods=['POST'])
def send_now():
    result = _console.send_now()
    return jsonify(result) if result.get('success') else (jsonify(result), 503)

@dmx_bp.route('/api/dmx/status', methods=['GET'])
def dmx_status():
    status = _console.transmitter.get_status()
    status['channels'] = DMX_CHANNELS
    return jsonify(status)
