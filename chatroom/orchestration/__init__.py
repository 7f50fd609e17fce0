"""Orchestration layer for sessions and stream connections."""

from .channel import Channel
from .session_registry import SessionRegistry, Session
from .session_manager import SessionManager
from .websocket_handler import WebSocketHandler, RelayConnection, RelayState

__all__ = [
    'Channel',
    'SessionRegistry',
    'Session',
    'SessionManager',
    'WebSocketHandler',
    'RelayConnection',
    'RelayState'
]
