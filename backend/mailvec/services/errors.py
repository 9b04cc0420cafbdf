"""Error types raised by the classification core."""

from typing import Optional


class MailvecError(Exception):
    """Base class for all errors raised by mailvec services."""


class DimensionMismatch(MailvecError):
    """Two embeddings of different lengths were compared.

    Means vectors from different providers (or a corrupted record) were
    mixed together. Not retryable.
    """

    def __init__(self, left: int, right: int):
        super().__init__(f"Vectors must have the same length (got {left} and {right})")
        self.left = left
        self.right = right


class ProviderError(MailvecError):
    """The embedding provider failed (transport, quota, bad response)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class MailSourceError(MailvecError):
    """The mail source could not be reached or rejected the request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class MessageParseError(MailvecError):
    """A fetched message could not be turned into an email record."""


class NotFound(MailvecError):
    """A referenced email or category does not exist."""

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity.capitalize()} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class PersistenceError(MailvecError):
    """Opaque failure from the storage layer."""
