class RepositoryConfigurationError(Exception):
    """Exception raised when a repository class is missing required configuration."""

    def __init__(self, message: str = "The repository is not configured correctly."):
        super().__init__(message)


class KeyAlreadyExistsException(Exception):
    """Exception raised when trying to insert a row that would violate a unique constraint."""

    def __init__(self, message: str = "A row with the same key already exists."):
        super().__init__(message)


class TemplateError(ValueError):
    """Raised when a SQL template cannot be rendered with the supplied values."""
    pass


class TransactionError(RuntimeError):
    """Raised on commit/rollback when no transaction is open."""
    pass
