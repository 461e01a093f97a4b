"""
LiveLoop Core — Session Blueprint
Routes: /api/session/*
Dependencies: console (ConsoleManager), default session file path
"""

import logging
from flask import Blueprint, jsonify, request

from session_codec import SessionFormatError, encode_session

session_bp = Blueprint('session', __name__)

_console = None
_default_path = None


def init_app(console, default_path):
    """Initialize blueprint with required dependencies."""
    global _console, _default_path
    _console = console
    _default_path = default_path


def _path_from_request():
    data = request.get_json(silent=True) or {}
    return data.get('path') or _default_path


@session_bp.route('/api/session', methods=['GET'])
def get_session():
    """Current session as a session document"""
    return jsonify(encode_session(_console.build_session()))

@session_bp.route('/api/session/save', methods=['POST'])
def save_session():
    path = _path_from_request()
    if not path:
        return jsonify({'success': False, 'error': 'path required'}), 400
    result = _console.save_session(path)
    return jsonify(result) if result['success'] else (jsonify(result), 500)

@session_bp.route('/api/session/load', methods=['POST'])
def load_session():
    """Load a session file. Degraded loads succeed with warnings."""
    path = _path_from_request()
    if not path:
        return jsonify({'success': False, 'error': 'path required'}), 400
    try:
        result = _console.load_session(path)
    except SessionFormatError as e:
        logging.warning(f"Rejected session file {path}: {e}")
        return jsonify({'success': False, 'error': str(e)}), 400
    return jsonify(result) if result['success'] else (jsonify(result), 404)

@session_bp.route('/api/session/new', methods=['POST'])
def new_session():
    data = request.get_json(silent=True) or {}
    if data.get('name'):
        return jsonify(_console.new_session(data['name']))
    return jsonify(_console.new_session())
