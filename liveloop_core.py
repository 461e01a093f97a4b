#!/usr/bin/env python3
"""
LiveLoop Core v1.0 - Live performance console engine
Audio clip triggering plus DMX lighting from one control plane

Runtime:
- Clip transports advanced by the playhead clock (30 Hz)
- Keyboard triggers routed to clips (exclusive / layered / retrigger)
- 512-channel LiveLevels streamed to a USB/serial DMX interface at 40 fps
- Audio decoded in the background, at most 2 at a time
- Sessions saved/loaded as JSON documents

API:
- REST (Flask blueprints) under /api/*
- Socket.IO push events for clip, playhead, DMX and scene updates
"""

import os
import json
import time
import logging
from logging.handlers import RotatingFileHandler

from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO

import core_registry as reg
from console_manager import ConsoleManager
from playhead_clock import PlayheadClock

LIVELOOP_VERSION = "1.0.0"

logger = logging.getLogger("liveloop")


# ============================================================
# Configuration (environment)
# ============================================================

def _env_int(name, default):
    raw = os.environ.get(name, '')
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default


def load_config():
    """Read LIVELOOP_* environment variables into a plain dict."""
    data_dir = os.environ.get('LIVELOOP_DATA_DIR') or os.path.join(os.path.expanduser("~"), "liveloop")
    return {
        'api_port': _env_int('LIVELOOP_API_PORT', 8892),
        'dmx_interface': os.environ.get('LIVELOOP_DMX_INTERFACE') or None,
        'dmx_fps': _env_int('LIVELOOP_DMX_FPS', 40),
        'debounce_ms': _env_int('LIVELOOP_DEBOUNCE_MS', 200),
        'max_decodes': _env_int('LIVELOOP_MAX_DECODES', 2),
        'tick_hz': _env_int('LIVELOOP_TICK_HZ', 30),
        'data_dir': data_dir,
        'log_level': os.environ.get('LIVELOOP_LOG_LEVEL', 'INFO').upper(),
        'cors_origins': get_allowed_origins(),
    }


DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
    "tauri://localhost",
]


def get_allowed_origins():
    origins = DEFAULT_CORS_ORIGINS.copy()
    # Allow additional origins via environment variable
    env_origins = os.environ.get('LIVELOOP_CORS_ORIGINS', '')
    if env_origins:
        for origin in env_origins.split(','):
            origin = origin.strip()
            if origin and origin not in origins:
                origins.append(origin)
    return origins


# ============================================================
# Logging
# ============================================================

_audit_logger = logging.getLogger('liveloop.audit')


def setup_logging(level='INFO', log_dir=None):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )
    if log_dir and not _audit_logger.handlers:
        os.makedirs(log_dir, exist_ok=True)
        _audit_logger.setLevel(logging.INFO)
        _audit_logger.propagate = False  # Don't spam console
        handler = RotatingFileHandler(
            os.path.join(log_dir, 'audit.log'),
            maxBytes=5 * 1024 * 1024,  # 5 MB per file
            backupCount=5,
            encoding='utf-8'
        )
        handler.setFormatter(logging.Formatter('%(asctime)s %(message)s', datefmt='%Y-%m-%dT%H:%M:%S'))
        _audit_logger.addHandler(handler)


def audit_log(event_type, **kwargs):
    """Write a structured audit log entry (JSON line)."""
    entry = json.dumps({'event': event_type, **kwargs}, separators=(',', ':'), default=str)
    _audit_logger.info(entry)


# ============================================================
# App factory
# ============================================================

def create_app(config=None, console=None):
    """Build the Flask app, Socket.IO server and console, wired into core_registry.

    Nothing is started here; main() starts the background loops.
    """
    cfg = load_config()
    if config:
        cfg.update(config)

    reg.LIVELOOP_API_PORT = cfg['api_port']
    reg.DMX_FPS = cfg['dmx_fps']
    reg.DEBOUNCE_MS = cfg['debounce_ms']
    reg.MAX_CONCURRENT_DECODES = cfg['max_decodes']
    reg.TICK_HZ = cfg['tick_hz']
    reg.DATA_DIR = cfg['data_dir']
    reg.SESSION_FILE = os.path.join(cfg['data_dir'], 'session.json')
    reg.audit_log = audit_log

    app = Flask(__name__)
    CORS(app, resources={r"/api/*": {"origins": cfg['cors_origins']}})
    socketio = SocketIO(app, cors_allowed_origins=cfg['cors_origins'], async_mode='threading')
    reg.socketio = socketio

    if console is None:
        console = ConsoleManager(
            dmx_fps=cfg['dmx_fps'],
            debounce_ms=cfg['debounce_ms'],
            max_concurrent_decodes=cfg['max_decodes'],
        )
    reg.console = console
    reg.playhead_clock = PlayheadClock(console, hz=cfg['tick_hz'])

    if cfg['dmx_interface']:
        console.select_interface(cfg['dmx_interface'])

    from blueprints.clips_bp import clips_bp, init_app as clips_init
    from blueprints.keys_bp import keys_bp, init_app as keys_init
    from blueprints.dmx_bp import dmx_bp, init_app as dmx_init
    from blueprints.scenes_bp import scenes_bp, init_app as scenes_init
    from blueprints.session_bp import session_bp, init_app as session_init
    from blueprints.system_bp import system_bp, init_app as system_init

    # Wire dependencies into blueprints that need shared state
    clips_init(console)
    keys_init(console)
    dmx_init(console)
    scenes_init(console)
    session_init(console, reg.SESSION_FILE)
    system_init(console, reg.playhead_clock, LIVELOOP_VERSION, time.time())

    app.register_blueprint(clips_bp)
    app.register_blueprint(keys_bp)
    app.register_blueprint(dmx_bp)
    app.register_blueprint(scenes_bp)
    app.register_blueprint(session_bp)
    app.register_blueprint(system_bp)

    app.config['LIVELOOP'] = cfg
    return app, socketio


def main():
    cfg = load_config()
    setup_logging(cfg['log_level'], os.path.join(cfg['data_dir'], 'logs'))
    os.makedirs(cfg['data_dir'], exist_ok=True)

    app, socketio = create_app(cfg)
    console = reg.console

    logger.info("=" * 60)
    logger.info("  LiveLoop Core v%s", LIVELOOP_VERSION)
    logger.info("  API port: %d  DMX: %s @ %d fps", cfg['api_port'],
                cfg['dmx_interface'] or 'none', cfg['dmx_fps'])
    logger.info("  Data dir: %s", cfg['data_dir'])
    logger.info("=" * 60)

    console.start()
    reg.playhead_clock.start()
    audit_log('startup', version=LIVELOOP_VERSION, port=cfg['api_port'])
    try:
        socketio.run(app, host='0.0.0.0', port=cfg['api_port'],
                     allow_unsafe_werkzeug=True)
    finally:
        reg.playhead_clock.stop()
        console.shutdown()
        audit_log('shutdown')


if __name__ == '__main__':
    main()
