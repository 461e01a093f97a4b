"""
LiveLoop Core — Clips Blueprint
Routes: /api/clips/*
Dependencies: console (ConsoleManager)
"""

from flask import Blueprint, jsonify, request

clips_bp = Blueprint('clips', __name__)

_console = None


def init_app(console):
    """Initialize blueprint with required dependencies."""
    global _console
    _console = console


def _respond(result):
    if result.get('success'):
        return jsonify(result)
    status = 404 if 'not found' in str(result.get('error', '')).lower() else 400
    return jsonify(result), status


@clips_bp.route('/api/clips', methods=['GET'])
def list_clips():
    return jsonify(_console.list_clips())

@clips_bp.route('/api/clips', methods=['POST'])
def import_clip():
    """Import an audio file; it decodes in the background"""
    data = request.get_json() or {}
    path = data.get('path')
    if not path:
        return jsonify({'success': False, 'error': 'path required'}), 400
    props = {k: data[k] for k in ('volume', 'start_cue', 'loop', 'assigned_key') if k in data}
    try:
        clip = _console.import_clip(path, name=data.get('name'), clip_id=data.get('id'), **props)
    except ValueError as e:
        return jsonify({'success': False, 'error': str(e)}), 400
    return jsonify({'success': True, 'clip': clip.to_dict()}), 201

@clips_bp.route('/api/clips/<clip_id>', methods=['GET'])
def get_clip(clip_id):
    clip = _console.get_clip(clip_id)
    return jsonify(clip) if clip else (jsonify({'error': 'Clip not found'}), 404)

@clips_bp.route('/api/clips/<clip_id>', methods=['PUT'])
def update_clip(clip_id):
    data = request.get_json() or {}
    changes = {k: data[k] for k in ('name', 'volume', 'start_cue', 'loop', 'assigned_key', 'path')
               if k in data}
    try:
        return _respond(_console.update_clip(clip_id, **changes))
    except (TypeError, ValueError) as e:
        return jsonify({'success': False, 'error': f'Invalid value: {e}'}), 400

@clips_bp.route('/api/clips/<clip_id>', methods=['DELETE'])
def delete_clip(clip_id):
    return _respond(_console.remove_clip(clip_id))

@clips_bp.route('/api/clips/<clip_id>/play', methods=['POST'])
def play_clip(clip_id):
    """Play (exclusive unless layered=true)"""
    data = request.get_json(silent=True) or {}
    return _respond(_console.play_clip(clip_id, layered=bool(data.get('layered', False))))

@clips_bp.route('/api/clips/<clip_id>/pause', methods=['POST'])
def pause_clip(clip_id):
    return _respond(_console.pause_clip(clip_id))

@clips_bp.route('/api/clips/<clip_id>/stop', methods=['POST'])
def stop_clip(clip_id):
    return _respond(_console.stop_clip(clip_id))

@clips_bp.route('/api/clips/<clip_id>/restart', methods=['POST'])
def restart_clip(clip_id):
    return _respond(_console.restart_clip(clip_id))

@clips_bp.route('/api/clips/<clip_id>/seek', methods=['POST'])
def seek_clip(clip_id):
    data = request.get_json() or {}
    try:
        position = float(data.get('position'))
    except (TypeError, ValueError):
        return jsonify({'success': False, 'error': 'position (seconds) required'}), 400
    return _respond(_console.seek_clip(clip_id, position))

@clips_bp.route('/api/clips/<clip_id>/mute', methods=['POST'])
def mute_clip(clip_id):
    return _respond(_console.toggle_mute(clip_id))

@clips_bp.route('/api/clips/<clip_id>/key', methods=['POST'])
def assign_key(clip_id):
    """Assign a trigger key (null to unassign). The key moves off any other clip."""
    data = request.get_json() or {}
    return _respond(_console.assign_key(clip_id, data.get('key')))

@clips_bp.route('/api/clips/focus', methods=['POST'])
def set_focus():
    """Focus a clip by id, or clear focus with {"id": null}"""
    data = request.get_json(silent=True) or {}
    return _respond(_console.focus_clip(data.get('id')))

@clips_bp.route('/api/clips/<clip_id>/focus', methods=['POST'])
def focus_clip(clip_id):
    return _respond(_console.focus_clip(clip_id))

@clips_bp.route('/api/clips/stop-all', methods=['POST'])
def stop_all():
    return jsonify(_console.stop_all())
