"""Error taxonomy for envkey.

Every failure surfaces as a single :class:`EnvkeyError` subclass carrying one
descriptive message. Lower-level exceptions (OS, YAML, pydantic, AEAD) are
translated at the module boundary with ``raise ... from err``.
"""


class EnvkeyError(Exception):
    """Base class for all envkey errors."""


class ValidationError(EnvkeyError, ValueError):
    """Raised when input, stored content, or ciphertext encoding is malformed."""


class AuthorizationError(EnvkeyError):
    """Raised when the caller is not an admin of the team."""


class StateConflictError(EnvkeyError):
    """Raised when an operation conflicts with the current team state."""


class AbortedError(StateConflictError):
    """Raised when the operator declines a confirmation."""


class EmptyRecipientsError(ValidationError, StateConflictError):
    """Raised when there is nobody to encrypt a secret for."""


class CryptoError(EnvkeyError):
    """Raised when an envelope cannot be opened with the given identity."""


class StoreIOError(EnvkeyError):
    """Raised on filesystem read, write, or lock failures."""


class StoreNotFoundError(StoreIOError):
    """Raised when the store file does not exist yet."""
