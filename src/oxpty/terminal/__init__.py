"""PTY session domain package."""

from .manager import SessionManager
from .models import BackendKind, PaneHandle, PtySize, SessionStatus, SignalKind
from .selection import BackendInfo, backend_info, choose_backend, create_backend
from .session import Pty, open_session
from .state import SessionState

__all__ = [
    "backend_info",
    "BackendInfo",
    "BackendKind",
    "choose_backend",
    "create_backend",
    "open_session",
    "PaneHandle",
    "Pty",
    "PtySize",
    "SessionManager",
    "SessionState",
    "SessionStatus",
    "SignalKind",
]
