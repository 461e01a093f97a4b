"""
LiveLoop Core — Scenes Blueprint
Routes: /api/scenes/*
Dependencies: console (ConsoleManager)
"""

from flask import Blueprint, jsonify, request

scenes_bp = Blueprint('scenes', __name__)

_console = None


def init_app(console):
    """Initialize blueprint with required dependencies."""
    global _console
    _console = console


def _respond(result):
    if result.get('success'):
        return jsonify(result)
    status = 404 if result.get('error') == 'Scene not found' else 400
    return jsonify(result), status


@scenes_bp.route('/api/scenes', methods=['GET'])
def get_scenes():
    return jsonify({'scenes': _console.list_scenes(),
                    'active_scene_id': _console.scenes.active_scene_id})

@scenes_bp.route('/api/scenes', methods=['POST'])
def create_scene():
    """Capture the current live levels as a new scene"""
    data = request.get_json(silent=True) or {}
    return jsonify(_console.create_scene(name=data.get('name'), color=data.get('color'))), 201

@scenes_bp.route('/api/scenes/<scene_id>', methods=['PUT'])
def update_scene(scene_id):
    """Rename / recolor / relink. Levels are changed only by record."""
    data = request.get_json() or {}
    changes = {k: data[k] for k in ('name', 'color', 'linked_clip_id') if k in data}
    return _respond(_console.update_scene(scene_id, **changes))

@scenes_bp.route('/api/scenes/<scene_id>', methods=['DELETE'])
def delete_scene(scene_id):
    return _respond(_console.delete_scene(scene_id))

@scenes_bp.route('/api/scenes/<scene_id>/record', methods=['POST'])
def record_scene(scene_id):
    return _respond(_console.record_scene(scene_id))

@scenes_bp.route('/api/scenes/<scene_id>/recall', methods=['POST'])
def recall_scene(scene_id):
    return _respond(_console.recall_scene(scene_id))
