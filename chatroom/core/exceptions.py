"""
Error kinds raised by the relay.
Each carries the HTTP status code and the short plain-text message sent to clients.
"""


class RelayError(Exception):
    """Base exception for relay errors."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AlreadyLoggedIn(RelayError):
    """Raised when logging in an identity that already has a session."""
    status_code = 409

    def __init__(self, username: str):
        super().__init__(f"User {username} is already logged in")
        self.username = username


class NotLoggedIn(RelayError):
    """Raised when an identity has no session."""
    status_code = 409

    def __init__(self, username: str):
        super().__init__(f"User {username} is not logged in")
        self.username = username


class InvalidToken(RelayError):
    """Raised when the presented token does not match the session token."""
    status_code = 409

    def __init__(self, username: str, message: str = "Invalid token"):
        super().__init__(message)
        self.username = username


class StreamAlreadyBound(RelayError):
    """Raised when a session already has a live stream and replacement is disabled."""
    status_code = 409

    def __init__(self, username: str):
        super().__init__(f"User {username} already has an open stream")
        self.username = username


class MalformedHandshake(RelayError):
    """Raised when the first stream frame is not a valid handshake."""

    def __init__(self, detail: str):
        super().__init__(f"Can't decode body: {detail}")


class MethodNotAllowed(RelayError):
    status_code = 405

    def __init__(self, method: str = ""):
        super().__init__("Invalid request method")
        self.method = method


class BodyMissing(RelayError):

    def __init__(self):
        super().__init__("Request body missing")


class DecodeError(RelayError):

    def __init__(self, detail: str = ""):
        super().__init__("Can't decode body")
        self.detail = detail


class TransportError(RelayError):
    """Raised when reading from or writing to a stream connection fails."""
    pass


class ChannelClosed(Exception):
    """Raised when sending to or receiving from a closed channel."""
    pass
