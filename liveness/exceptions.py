"""
Exceptions raised to callers of the liveness engine
"""


class SessionStateError(RuntimeError):
    """Raised when an operation is not allowed in the current session state"""
