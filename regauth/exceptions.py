"""Custom exception hierarchy for the regauth credential client.

This module defines a structured exception hierarchy that lets callers
tell apart problems with the store location, the store contents, the
registry's verdict on a credential, and transport construction.

Exception Hierarchy:
    RegAuthError (base)
    ├── ConfigurationError
    ├── ConfigPathError
    ├── StoreError
    │   ├── StoreCorruptError
    │   ├── StoreAccessError
    │   └── StoreWriteError
    ├── CredentialError
    │   ├── InvalidCredentialError
    │   ├── AuthRejectedError
    │   ├── LoginTimeoutError
    │   ├── NotFoundError
    │   └── HelperError
    └── TransportError

Example Usage:
    >>> from regauth.exceptions import AuthRejectedError
    >>> try:
    ...     await client.login("localhost:5000", "alice", "wrong")
    ... except AuthRejectedError as e:
    ...     print(e.reason)
"""

from pathlib import Path


class RegAuthError(Exception):
    """Base exception for all regauth errors.

    All custom exceptions inherit from this base class, allowing callers
    to catch every regauth-specific error with a single except clause.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        """Initialize exception.

        Args:
            message: Error message
        """
        self.message = message
        super().__init__(message)


class ConfigurationError(RegAuthError):
    """Client settings are invalid.

    Examples:
        - Settings file not found
        - Invalid YAML syntax
        - Invalid setting values
    """

    pass


class ConfigPathError(RegAuthError):
    """The supplied or default store path cannot be used.

    Raised during client construction when the path is a directory
    (including the filesystem root) or cannot be reached because of
    permissions.

    Attributes:
        path: The offending path
    """

    def __init__(self, message: str, path: Path | str | None = None) -> None:
        self.path = Path(path) if path is not None else None
        full_message = message
        if path is not None:
            full_message = f"{message} (path: {path})"
        super().__init__(full_message)
        self.message = message


# =============================================================================
# Store Errors
# =============================================================================


class StoreError(RegAuthError):
    """Base class for credential store failures.

    Attributes:
        message: Human-readable error description
        path: Location of the store file involved
    """

    def __init__(self, message: str, path: Path | str | None = None) -> None:
        """Initialize exception.

        Args:
            message: Error message
            path: Store file path (if known)
        """
        self.path = Path(path) if path is not None else None
        full_message = message
        if path is not None:
            full_message = f"{message} (store: {path})"
        super().__init__(full_message)
        # Preserve original message
        self.message = message


class StoreCorruptError(StoreError):
    """Existing store file cannot be parsed."""

    pass


class StoreAccessError(StoreError):
    """Store file or its directory cannot be read due to permissions."""

    pass


class StoreWriteError(StoreError):
    """A put or delete could not be persisted.

    The store file and the in-memory records are left as they were
    before the attempt.
    """

    pass


# =============================================================================
# Credential Errors
# =============================================================================


class CredentialError(RegAuthError):
    """Credential-related errors.

    This is the base class for errors about a specific host's credential.

    Attributes:
        message: Human-readable error description
        host: Registry host the error concerns
        suggestion: Optional suggestion for resolution
    """

    def __init__(
        self,
        message: str,
        host: str | None = None,
        suggestion: str | None = None,
    ) -> None:
        """Initialize exception.

        Args:
            message: Error message
            host: Registry host the error concerns
            suggestion: Optional suggestion for resolution
        """
        self.host = host
        self.suggestion = suggestion

        full_message = message
        if host:
            full_message = f"{message} (host: {host})"
        if suggestion:
            full_message = f"{full_message}\nSuggestion: {suggestion}"

        super().__init__(full_message)
        # Preserve original message (super sets self.message to full_message)
        self.message = message


class InvalidCredentialError(CredentialError):
    """Login attempted with an unusable credential, e.g. an empty username."""

    pass


class AuthRejectedError(CredentialError):
    """The registry did not accept the credential.

    Also raised when the registry cannot be reached at all, since the
    credential could not be verified either way.

    Attributes:
        reason: Short description of why the login failed
        status_code: HTTP status code (if a response was received)
    """

    def __init__(
        self,
        reason: str,
        host: str | None = None,
        status_code: int | None = None,
        suggestion: str | None = None,
    ) -> None:
        self.reason = reason
        self.status_code = status_code
        message = f"Login rejected: {reason}"
        if status_code:
            message = f"{message} (HTTP {status_code})"
        super().__init__(message, host=host, suggestion=suggestion)


class LoginTimeoutError(CredentialError):
    """Login did not complete before its deadline.

    Attributes:
        timeout_seconds: The deadline that was exceeded
    """

    def __init__(
        self,
        message: str,
        timeout_seconds: float | None = None,
        host: str | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        if timeout_seconds and "timeout" not in message.lower():
            message = f"{message} (timeout: {timeout_seconds}s)"
        super().__init__(message, host=host)


class NotFoundError(CredentialError):
    """No credential is stored for the host."""

    pass


class HelperError(CredentialError):
    """An external credential helper failed.

    Attributes:
        helper: Name of the helper program (without the
            ``docker-credential-`` prefix)
    """

    def __init__(
        self,
        message: str,
        helper: str | None = None,
        host: str | None = None,
        suggestion: str | None = None,
    ) -> None:
        self.helper = helper
        if helper and "helper" not in message.lower():
            message = f"Credential helper '{helper}' failed: {message}"
        super().__init__(message, host=host, suggestion=suggestion)


class TransportError(RegAuthError):
    """The resolver's HTTP transport could not be constructed.

    Examples:
        - CA bundle file missing
        - CA bundle is not valid PEM
    """

    pass
