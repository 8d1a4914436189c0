"""Exception hierarchy for goslings.

All exceptions inherit from :class:`GoslingsError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`goslings.exit_codes`.
The top-level error handler in :func:`goslings.app.main` catches
``GoslingsError`` and exits with the appropriate code.

Subclass hierarchy::

    GoslingsError (exit 1)
    +-- ConfigError                         (exit 1)
    +-- InvalidUsageError                   (exit 2)
    |   +-- UnsupportedServiceError
    +-- AuthError                           (exit 3)
    |   +-- NotAuthenticatedError
    |   +-- TokenNotFoundError
    |   +-- AcquisitionError
    |   +-- AllMethodsFailedError
    |   +-- RenewalFailedError
    |   +-- CredentialsExpiredError         (exit 4)
    +-- StoreError                          (exit 5)
    |   +-- StoreNotInitializedError
    |   +-- StoreNotFoundError
    |   +-- UnsupportedStoreTypeError
    |   +-- StoreBackendNotImplementedError
    |   +-- SerializationError
    |   +-- EncryptionError
    |       +-- DecryptionError
    +-- OperationCancelledError             (exit 130)
        +-- DeadlineExceededError
"""

from goslings.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_CREDENTIALS_EXPIRED,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_STORE_ERROR,
)


class GoslingsError(Exception):
    """Base exception for all goslings errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`goslings.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(GoslingsError):
    """Raised for configuration problems (invalid JSON, bad key sources, malformed keys)."""

    exit_code = EXIT_GENERIC_FAILURE


class InvalidUsageError(GoslingsError):
    """Raised for invalid CLI arguments or missing required parameters."""

    exit_code = EXIT_INVALID_USAGE


class UnsupportedServiceError(InvalidUsageError):
    """Raised when a token is requested for a service tag goslings does not know."""


# --- Authentication ---


class AuthError(GoslingsError):
    """Raised when authentication fails or cannot proceed."""

    exit_code = EXIT_AUTH_FAILURE


class NotAuthenticatedError(AuthError):
    """Raised when no credentials are cached, or renewal is attempted without any.

    The expected recovery is a fresh ``authenticate`` call.
    """

    def __init__(self, message: str = "not authenticated", exit_code: int | None = None):
        super().__init__(message, exit_code)


class CredentialsExpiredError(AuthError):
    """Raised when a cached token is past its expiry.

    Distinct from :class:`NotAuthenticatedError` because the recovery
    differs: stale credentials are renewed, missing ones are acquired.
    """

    exit_code = EXIT_CREDENTIALS_EXPIRED

    def __init__(self, message: str = "credentials have expired", exit_code: int | None = None):
        super().__init__(message, exit_code)


class TokenNotFoundError(AuthError):
    """Raised when credentials are cached but hold no token for the requested service."""


class AcquisitionError(AuthError):
    """Raised by an acquisition capability when a single strategy fails.

    The lease demotes these to debug detail; they only surface when a
    renewal re-runs one specific strategy.
    """


class AllMethodsFailedError(AuthError):
    """Raised when every strategy in the fallback chain was skipped or failed.

    Attributes:
        attempts: ``(strategy, reason)`` pairs in the order they were tried,
            including skips.
    """

    def __init__(
        self,
        message: str = "all authentication methods failed",
        attempts: list[tuple[str, str]] | None = None,
    ):
        super().__init__(message)
        self.attempts = attempts or []


class RenewalFailedError(AuthError):
    """Raised when existing credentials could not be renewed."""


# --- Store ---


class StoreError(GoslingsError):
    """Raised when the credential store cannot be read or written."""

    exit_code = EXIT_STORE_ERROR


class StoreNotInitializedError(StoreError):
    """Raised when an operation needs a store that is missing or already closed."""

    def __init__(
        self, message: str = "credential store not initialized", exit_code: int | None = None
    ):
        super().__init__(message, exit_code)


class StoreNotFoundError(StoreError):
    """Raised when a persisted aggregate does not exist yet.

    Callers treat this as "no state yet" rather than an operational failure.
    """


class UnsupportedStoreTypeError(StoreError):
    """Raised when the store backend selector is not a known backend."""


class StoreBackendNotImplementedError(StoreError):
    """Raised for known store backends (Kubernetes secrets, Vault) that are not available."""


class SerializationError(StoreError):
    """Raised when an aggregate cannot be converted to or from its JSON form."""


class EncryptionError(StoreError):
    """Raised for encryption failures, including an encryption key of the wrong length."""


class DecryptionError(EncryptionError):
    """Raised when a stored blob fails authenticated decryption (wrong key, corruption, truncation)."""


# --- Cancellation ---


class OperationCancelledError(GoslingsError):
    """Raised when the caller cancelled an in-flight acquisition or renewal.

    This is deliberately not an :class:`AuthError`: it means the caller gave
    up, not that every method was tried and none worked.
    """

    exit_code = EXIT_CANCELLED

    def __init__(self, message: str = "operation cancelled", exit_code: int | None = None):
        super().__init__(message, exit_code)


class DeadlineExceededError(OperationCancelledError):
    """Raised when an operation ran past the deadline of its cancellation token."""

    def __init__(self, message: str = "deadline exceeded", exit_code: int | None = None):
        super().__init__(message, exit_code)
