"""
Exceptions for Personal Knowledge MCP
Copyright 2025 Jurden Bruce

Unknown ids are reported with None/False return values, not exceptions.
These classes cover the conditions a caller has to handle explicitly.
"""


class PersonalKnowledgeError(Exception):
    """Base class for all knowledge store errors"""


class SessionError(PersonalKnowledgeError):
    """A session precondition was violated"""


class NoActiveSessionError(SessionError):
    def __init__(self):
        super().__init__("No active session. Call start_logging_session first.")


class SessionNotFoundError(SessionError):
    def __init__(self, session_id: int):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class SessionClosedError(SessionError):
    def __init__(self, session_id: int):
        self.session_id = session_id
        super().__init__(f"Session {session_id} is already closed")


class VectorIndexNotInitializedError(PersonalKnowledgeError):
    """Raised on read paths when no vector collection has been created yet"""

    def __init__(self):
        super().__init__(
            "Vector database not initialized. Add an entry or run 'pk vectors convert' first."
        )
