"""
LiveLoop Core Registry - Shared Instance Registry

Modules and blueprints import from here to reach shared instances.
liveloop_core.py populates these during startup.

All attributes are None until liveloop_core.py initializes them. Modules
must tolerate a missing socketio/audit_log so they stay usable in tests
and scripts that never start the server.
"""

# ── Core managers ──
console = None            # ConsoleManager instance
playhead_clock = None     # PlayheadClock instance

# ── Infrastructure ──
socketio = None           # Flask-SocketIO instance

# ── Utilities ──
audit_log = None          # Function for persistent audit logging

# ── Constants (set during startup) ──
LIVELOOP_API_PORT = 8892
DMX_FPS = 40
DEBOUNCE_MS = 200
MAX_CONCURRENT_DECODES = 2
TICK_HZ = 30
DATA_DIR = None           # Path to data directory
SESSION_FILE = None       # Path to the autosave session document


def emit(event, payload):
    """Emit a Socket.IO event if a server is wired in."""
    if socketio:
        socketio.emit(event, payload)


def audit(event_type, **kwargs):
    """Write an audit entry if the audit logger is wired in."""
    if audit_log:
        audit_log(event_type, **kwargs)
