class AnonymizationError(Exception):
    """Base exception for all anonymization errors."""


class InvalidInput(AnonymizationError, ValueError):
    """Raised when a value cannot be pseudonymized or a mapping record is malformed."""
