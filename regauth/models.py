"""
Domain models for registry credentials.

A ``CredentialRecord`` is the normalized view of one entry in the
credential store, regardless of whether the secret lives in the store
file itself or behind an external helper program.

Example:
    Creating an inline record::

        record = CredentialRecord(
            host="localhost:5000",
            username="alice",
            secret="wonderland",
        )
"""

from dataclasses import dataclass, field
from enum import Enum

_SCHEMES = ("https://", "http://")


class CredentialSourceKind(str, Enum):
    """Where a record's secret comes from."""

    INLINE = "inline"
    """Secret is stored directly in the store file."""

    EXTERNAL_HELPER = "external_helper"
    """Secret is fetched from a ``docker-credential-<helper>`` program at lookup time."""


@dataclass(frozen=True)
class CredentialRecord:
    """Credential for a single registry host.

    Attributes:
        host: Canonical registry address (``hostname[:port]``, no scheme)
        username: Login name, empty for token-only auth
        secret: Password or token; excluded from ``repr``
        source: Whether the secret is inline or behind a helper
        helper: Helper program name when ``source`` is EXTERNAL_HELPER
    """

    host: str
    username: str = ""
    secret: str = field(default="", repr=False)
    source: CredentialSourceKind = CredentialSourceKind.INLINE
    helper: str | None = None

    def __post_init__(self) -> None:
        if not self.host:
            raise ValueError("Credential record requires a host")
        if self.source == CredentialSourceKind.EXTERNAL_HELPER and not self.helper:
            raise ValueError("External helper records require a helper name")
        if self.source == CredentialSourceKind.INLINE and self.helper:
            raise ValueError("Inline records cannot name a helper")

    @property
    def is_inline(self) -> bool:
        return self.source == CredentialSourceKind.INLINE


def canonical_host(value: str) -> str:
    """Normalize a registry address to its store key.

    Strips an ``http://`` or ``https://`` scheme and trailing slashes.
    Nothing else is rewritten: ``Registry.Example:443`` and
    ``registry.example`` stay distinct keys.

    Raises:
        ValueError: If the address is empty
    """
    host = value.strip()
    lowered = host.lower()
    for scheme in _SCHEMES:
        if lowered.startswith(scheme):
            host = host[len(scheme) :]
            break
    host = host.rstrip("/")
    if not host:
        raise ValueError(f"Invalid registry host: {value!r}")
    return host
