class ApplicationError(Exception):
    """Base class for application-specific errors."""
    pass

class InvalidPayloadError(ApplicationError):
    """Raised when an incoming event is malformed or has an unknown type."""
    pass

class InsufficientInventoryError(ApplicationError):
    """Raised when a reservation is rejected at admission time."""
    pass

class PreconditionFailedError(ApplicationError):
    """Raised when a conditional write's predicate does not hold at apply time."""
    pass

class SnapshotNotFoundError(ApplicationError):
    """Raised when a partition has no snapshot yet."""
    pass

class SnapshotAlreadyExistsError(ApplicationError):
    """Raised when attempting to create a snapshot that already exists."""
    pass

class DatabaseError(ApplicationError):
    """Raised for general database-related errors not specifically handled."""
    def __init__(self, message="A database error occurred.", original_exception=None):
        super().__init__(message)
        self.original_exception = original_exception

class StoreTimeoutError(DatabaseError):
    """Raised when a store call exceeds its deadline. The outcome is unknown."""
    pass

class ConfigurationError(ApplicationError):
    """Raised when required service configuration is missing or invalid."""
    pass
