"""
Checkpoint store exceptions.

Missing threads or checkpoints are not errors: stores and the manager
return ``None`` for them.
"""


class CheckpointError(Exception):
    """Base exception for checkpoint persistence errors."""

    def __init__(self, message: str, code: int | None = None):
        self.message = message
        self.code = code
        super().__init__(self.message)


class StoreError(CheckpointError):
    """Raised when a backend operation fails."""

    def __init__(self, operation: str, message: str, code: int = 1001):
        self.operation = operation
        super().__init__(f"Store operation '{operation}' failed: {message}", code=code)


class StoreConnectionError(StoreError):
    """Raised when the backend cannot be reached or times out."""

    def __init__(self, operation: str = "connect", message: str = "Backend unreachable"):
        super().__init__(operation, message, code=1002)


class SerializationError(CheckpointError):
    """Raised when state or metadata cannot be encoded or decoded."""

    def __init__(self, message: str):
        super().__init__(f"Serialization error: {message}", code=1003)


class ValidationError(CheckpointError):
    """Raised for malformed ids or arguments, before any I/O."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Invalid {field}: {message}", code=1004)


class ConfigurationError(CheckpointError):
    """Raised when configuration cannot be loaded or is invalid."""

    def __init__(self, message: str):
        super().__init__(f"Configuration error: {message}", code=1005)
