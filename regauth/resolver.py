"""Authenticated HTTP transport handed to the artifact transfer layer.

``RegistryResolver`` wraps an ``httpx.AsyncClient`` whose ``RegistryAuth``
looks up credentials per host only when a registry challenges a
request, so a multi-registry operation never needs to know its hosts
in advance.
"""

import ssl
from collections.abc import AsyncGenerator, Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import structlog

from .exceptions import AuthRejectedError, TransportError
from .session import (
    Challenge,
    basic_auth_header,
    extract_token,
    parse_challenge,
    registry_base_url,
)

log = structlog.get_logger(__name__)

CredentialLookup = Callable[[str], Awaitable[tuple[str, str]]]


@dataclass(frozen=True)
class RegistryCredential:
    """Request-decorating credential for one registry host."""

    username: str
    secret: str = field(repr=False)

    def authorization_header(self) -> str:
        if self.username:
            return basic_auth_header(self.username, self.secret)
        return f"Bearer {self.secret}"


class RegistryAuth(httpx.Auth):
    """httpx auth flow answering registry challenges with stored credentials.

    Requests go out anonymously (or with a bearer token cached for the
    host). On a 401 the credential for the request's host is looked up
    and the challenge is answered: basic auth directly, bearer by
    fetching a token from the challenge realm first. Hosts with no
    credential get anonymous tokens where the registry hands them out.
    """

    requires_response_body = True

    def __init__(self, lookup: CredentialLookup, user_agent: str | None = None) -> None:
        self._lookup = lookup
        self._user_agent = user_agent
        self._tokens: dict[str, str] = {}

    def sync_auth_flow(self, request: httpx.Request) -> Any:
        raise RuntimeError("RegistryAuth only supports httpx.AsyncClient")

    async def async_auth_flow(self, request: httpx.Request) -> AsyncGenerator[httpx.Request, httpx.Response]:
        host = request.url.netloc.decode("ascii")

        cached = self._tokens.get(host)
        if cached and "Authorization" not in request.headers:
            request.headers["Authorization"] = f"Bearer {cached}"

        response = yield request
        if response.status_code != 401:
            return

        challenge = parse_challenge(response.headers.get("WWW-Authenticate", ""))
        if challenge is None:
            return

        username, secret = await self._lookup(host)

        if challenge.scheme == "basic":
            if not username and not secret:
                log.debug("anonymous_access_denied", host=host)
                return
            request.headers["Authorization"] = RegistryCredential(username, secret).authorization_header()
            yield request
            return

        if challenge.scheme != "bearer" or not challenge.realm:
            return

        token_response = yield self._token_request(request, challenge, username, secret)
        if token_response.status_code != 200:
            raise AuthRejectedError(
                "token request failed",
                host=host,
                status_code=token_response.status_code,
            )

        token = extract_token(token_response)
        if not token:
            raise AuthRejectedError("token endpoint returned no token", host=host)

        self._tokens[host] = token
        log.debug("registry_token_acquired", host=host, scope=challenge.scope, anonymous=not username)

        request.headers["Authorization"] = f"Bearer {token}"
        yield request

    def _token_request(
        self,
        request: httpx.Request,
        challenge: Challenge,
        username: str,
        secret: str,
    ) -> httpx.Request:
        assert challenge.realm is not None
        params: dict[str, str] = {}
        if challenge.service:
            params["service"] = challenge.service
        if challenge.scope:
            params["scope"] = challenge.scope

        # Built outside the client, so its default headers are not applied
        headers: dict[str, str] = {}
        if self._user_agent:
            headers["User-Agent"] = self._user_agent
        if username or secret:
            params["account"] = username
            headers["Authorization"] = basic_auth_header(username, secret)

        url = request.url.join(challenge.realm).copy_merge_params(params)
        return httpx.Request("GET", url, headers=headers)


def build_ssl_context(ca_file: Path | None = None, verify: bool = True) -> ssl.SSLContext | bool:
    """Create the TLS configuration for the resolver's transport.

    Raises:
        TransportError: If the CA bundle cannot be loaded
    """
    if not verify:
        return False

    context = ssl.create_default_context()
    if ca_file is not None:
        try:
            context.load_verify_locations(cafile=str(ca_file))
        except (OSError, ssl.SSLError) as e:
            raise TransportError(f"Cannot load CA bundle {ca_file}: {e}") from e
    return context


class RegistryResolver:
    """Registry-aware HTTP client for the transfer layer.

    Example:
        >>> async with client.resolver() as resolver:
        ...     response = await resolver.request("GET", "localhost:5000", "/v2/_catalog")
    """

    def __init__(
        self,
        lookup: CredentialLookup,
        *,
        insecure_registries: Iterable[str] = (),
        ca_file: Path | None = None,
        verify: bool = True,
        user_agent: str = "regauth",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize resolver.

        Args:
            lookup: Coroutine returning (username, secret) for a host
            insecure_registries: Hosts to reach over plain HTTP
            ca_file: Extra CA bundle for TLS verification
            verify: Set False to skip TLS certificate verification
            user_agent: User-Agent header for all requests
            timeout: Per-request network timeout in seconds
            transport: Optional httpx transport

        Raises:
            TransportError: If the HTTP transport cannot be constructed
        """
        self._lookup = lookup
        self.insecure_registries = tuple(insecure_registries)
        self.auth = RegistryAuth(lookup, user_agent=user_agent)

        ssl_context = build_ssl_context(ca_file, verify)
        try:
            self.client = httpx.AsyncClient(
                auth=self.auth,
                transport=transport,
                verify=ssl_context,
                timeout=timeout,
                headers={"User-Agent": user_agent},
                follow_redirects=True,
            )
        except (OSError, ValueError, ssl.SSLError) as e:
            raise TransportError(f"Cannot construct registry transport: {e}") from e

        log.debug("registry_resolver_created", verify=verify, ca_file=str(ca_file) if ca_file else None)

    def base_url(self, host: str) -> str:
        return registry_base_url(host, self.insecure_registries)

    async def authorization(self, host: str) -> RegistryCredential | None:
        """Return the credential to decorate requests to ``host``, or None for anonymous access."""
        username, secret = await self._lookup(host)
        if not username and not secret:
            return None
        return RegistryCredential(username=username, secret=secret)

    async def request(self, method: str, host: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request to ``path`` on the registry at ``host``."""
        url = f"{self.base_url(host)}/{path.lstrip('/')}"
        return await self.client.request(method, url, **kwargs)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "RegistryResolver":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
