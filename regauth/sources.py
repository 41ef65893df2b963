"""Credential sources: where a stored record's secret actually comes from."""

import json
from typing import Protocol

import structlog

from .exceptions import HelperError
from .models import CredentialRecord, CredentialSourceKind
from .utils.async_subprocess import run_command

log = structlog.get_logger(__name__)

HELPER_PREFIX = "docker-credential-"

# Username reported by helpers when the secret is an identity token
IDENTITY_TOKEN_USERNAME = "<token>"


class CredentialSource(Protocol):
    """Protocol for retrieving the (username, secret) pair of a record."""

    @property
    def kind(self) -> CredentialSourceKind:
        """Source variant."""
        ...

    async def fetch(self, host: str) -> tuple[str, str]:
        """Return (username, secret) for ``host``.

        An empty pair means the source holds nothing for the host.

        Raises:
            HelperError: If an external helper fails
        """
        ...


class InlineSource:
    """Secret stored directly in the credential store."""

    def __init__(self, record: CredentialRecord) -> None:
        self._record = record

    @property
    def kind(self) -> CredentialSourceKind:
        return CredentialSourceKind.INLINE

    async def fetch(self, host: str) -> tuple[str, str]:
        return self._record.username, self._record.secret


class ExternalHelperSource:
    """Secret retrieved from a ``docker-credential-<helper>`` program.

    Only the ``get`` verb of the helper protocol is used: the host is
    written to the helper's stdin and a JSON object with ``Username``
    and ``Secret`` is read back from stdout.

    Example:
        >>> source = ExternalHelperSource("pass")
        >>> username, secret = await source.fetch("ghcr.io")
    """

    def __init__(self, helper: str, timeout: float | None = 10.0) -> None:
        if not helper or "/" in helper:
            raise HelperError(f"Invalid credential helper name: {helper!r}", helper=helper or None)
        self.helper = helper
        self.timeout = timeout

    @property
    def kind(self) -> CredentialSourceKind:
        return CredentialSourceKind.EXTERNAL_HELPER

    @property
    def program(self) -> str:
        return f"{HELPER_PREFIX}{self.helper}"

    async def fetch(self, host: str) -> tuple[str, str]:
        try:
            stdout, stderr, code = await run_command(
                self.program,
                "get",
                input=host,
                check=False,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise HelperError(
                f"{self.program} not found on PATH",
                helper=self.helper,
                host=host,
                suggestion=f"Install {self.program} or remove the helper from the store",
            ) from e
        except PermissionError as e:
            raise HelperError(f"{self.program} is not executable", helper=self.helper, host=host) from e
        except TimeoutError as e:
            raise HelperError(
                f"no response within {self.timeout}s",
                helper=self.helper,
                host=host,
            ) from e

        if code != 0:
            output = stdout.strip() or stderr.strip()
            if "credentials not found" in output.lower():
                log.debug("helper_has_no_credential", helper=self.helper, host=host)
                return "", ""
            raise HelperError(
                output or f"exited with status {code}",
                helper=self.helper,
                host=host,
            )

        try:
            payload = json.loads(stdout)
            username = payload.get("Username") or ""
            secret = payload.get("Secret") or ""
        except (json.JSONDecodeError, AttributeError) as e:
            raise HelperError("returned malformed output", helper=self.helper, host=host) from e

        if not isinstance(username, str) or not isinstance(secret, str):
            raise HelperError("returned malformed output", helper=self.helper, host=host)

        if username == IDENTITY_TOKEN_USERNAME:
            username = ""

        log.debug("helper_credential_retrieved", helper=self.helper, host=host)
        return username, secret


def source_for(record: CredentialRecord, helper_timeout: float | None = 10.0) -> CredentialSource:
    """Pick the source variant for a stored record."""
    if record.source == CredentialSourceKind.EXTERNAL_HELPER:
        assert record.helper is not None
        return ExternalHelperSource(record.helper, timeout=helper_timeout)
    return InlineSource(record)

