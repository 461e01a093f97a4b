"""
LiveLoop Core — Keys Blueprint
Routes: /api/keys/*
Dependencies: console (ConsoleManager)
"""

from flask import Blueprint, jsonify, request

keys_bp = Blueprint('keys', __name__)

_console = None


def init_app(console):
    """Initialize blueprint with required dependencies."""
    global _console
    _console = console


@keys_bp.route('/api/keys/press', methods=['POST'])
def press_key():
    """Route a key press. Body: {code: "Digit1", shift: false}"""
    data = request.get_json() or {}
    code = data.get('code')
    if not code:
        return jsonify({'handled': False, 'error': 'code required'}), 400
    return jsonify(_console.press_key(code, shift=bool(data.get('shift', False))))

@keys_bp.route('/api/keys/map', methods=['GET'])
def key_map():
    return jsonify(_console.key_map())
