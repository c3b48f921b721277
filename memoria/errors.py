class MemoizeError(Exception):
    """Base class for errors raised by memoria."""


class InvalidOptionsError(MemoizeError, ValueError):
    """Raised when memoization options fail validation."""


class ExpirationPolicyError(MemoizeError):
    """Raised when an expiration policy cannot arm a watcher for an entry."""
