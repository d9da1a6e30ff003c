"""
Error taxonomy for the chat history layer.
"""


class ChatHistoryError(Exception):
    """Base exception for chat history operations."""
    pass


class NotFoundError(ChatHistoryError):
    """Session id does not exist."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class PermissionDeniedError(ChatHistoryError):
    """Caller is not the owner of the session. The stored owner is never exposed."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Unauthorized access to session: {session_id}")


class StoreUnavailableError(ChatHistoryError):
    """The document store could not be reached or failed the request."""
    pass


class InvalidArgumentError(ChatHistoryError, ValueError):
    """A caller-supplied argument was rejected before touching the store."""
    pass
