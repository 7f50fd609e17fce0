"""Mock objects for testing"""

from .mock_websocket import MockWebSocket

__all__ = [
    'MockWebSocket'
]
