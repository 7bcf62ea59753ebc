"""Session error types."""


class SessionError(Exception):
    """Base class for session lifecycle errors."""


class ConcurrentTurnNotAllowed(SessionError):
    """Raised when ``run_turn`` is called while a turn is in flight."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} already has a turn in progress")


class SessionClosedError(SessionError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} is closed")


class SessionBusyError(SessionError):
    """Raised for operations that require an idle session."""

    def __init__(self, session_id: str, operation: str):
        self.session_id = session_id
        self.operation = operation
        super().__init__(f"Session {session_id} is busy; cannot {operation}")
