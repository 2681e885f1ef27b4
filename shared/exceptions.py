# ============================================================================
# shared/exceptions.py - Reconciliation error taxonomy
# ============================================================================


class ReconcileError(Exception):
    """Base class for reconciliation errors"""
    pass


class ParseError(ReconcileError):
    """Malformed managed-block structure; the whole file operation is rejected"""

    def __init__(self, message: str, line_number: int = None):
        self.line_number = line_number
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)


class ValidationError(ReconcileError):
    """Entity or label fails generation preconditions"""
    pass


class ConfigIOError(ReconcileError):
    """Configuration file could not be read or written"""

    def __init__(self, path: str, cause: Exception):
        self.path = path
        self.cause = cause
        super().__init__(f"{path}: {cause}")


class EngineUnreachable(ReconcileError):
    """Neither the management interface nor the CLI answered"""
    pass
