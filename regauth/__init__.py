"""regauth: credential client for container and artifact registries.

This package provides:
- A file-backed credential store compatible with the Docker CLI config
- Login verification against the registry's auth endpoint
- Graceful anonymous lookups for hosts without stored credentials
- An authenticated httpx resolver for the artifact transfer layer

Example usage:

    from regauth import new_client

    client = new_client("~/.docker/config.json")
    await client.login("localhost:5000", "alice", "wonderland")
    username, password = await client.credential("localhost:5000")

    async with client.resolver() as resolver:
        response = await resolver.request("GET", "localhost:5000", "/v2/_catalog")
"""

__version__ = "0.1.0"

from .client import CredentialClient, check_store_path, new_client
from .config import ClientSettings
from .exceptions import (
    AuthRejectedError,
    ConfigPathError,
    ConfigurationError,
    CredentialError,
    HelperError,
    InvalidCredentialError,
    LoginTimeoutError,
    NotFoundError,
    RegAuthError,
    StoreAccessError,
    StoreCorruptError,
    StoreError,
    StoreWriteError,
    TransportError,
)
from .models import CredentialRecord, CredentialSourceKind, canonical_host
from .resolver import RegistryAuth, RegistryCredential, RegistryResolver
from .session import AuthSession, Challenge, parse_challenge
from .sources import CredentialSource, ExternalHelperSource, InlineSource, source_for
from .store import CredentialStore
from .utils.logging_config import configure_logging

__all__ = [
    "__version__",
    # Client
    "CredentialClient",
    "new_client",
    "check_store_path",
    "ClientSettings",
    # Store and records
    "CredentialStore",
    "CredentialRecord",
    "CredentialSourceKind",
    "canonical_host",
    # Sources
    "CredentialSource",
    "InlineSource",
    "ExternalHelperSource",
    "source_for",
    # Network
    "AuthSession",
    "Challenge",
    "parse_challenge",
    "RegistryAuth",
    "RegistryCredential",
    "RegistryResolver",
    # Logging
    "configure_logging",
    # Exceptions
    "RegAuthError",
    "ConfigurationError",
    "ConfigPathError",
    "StoreError",
    "StoreCorruptError",
    "StoreAccessError",
    "StoreWriteError",
    "CredentialError",
    "InvalidCredentialError",
    "AuthRejectedError",
    "LoginTimeoutError",
    "NotFoundError",
    "HelperError",
    "TransportError",
]
