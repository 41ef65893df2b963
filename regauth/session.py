"""Registry login verification over the Docker Registry v2 auth handshake.

The session probes ``/v2/`` on the registry and answers whatever
challenge comes back (HTTP basic, or a bearer token from the realm
named in the challenge). It never stores anything; ``CredentialClient``
uses it as an oracle before writing a credential.
"""

import asyncio
import base64
import re
import ssl
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from .exceptions import AuthRejectedError, LoginTimeoutError

log = structlog.get_logger(__name__)

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})

_CHALLENGE_PARAM = re.compile(r'([A-Za-z0-9_-]+)\s*=\s*(?:"((?:[^"\\]|\\.)*)"|([^\s,]*))')
_ESCAPED = re.compile(r"\\(.)")


@dataclass(frozen=True)
class Challenge:
    """A parsed ``WWW-Authenticate`` header.

    Attributes:
        scheme: Lower-cased auth scheme (``basic``, ``bearer``)
        params: Challenge parameters with lower-cased names
    """

    scheme: str
    params: dict[str, str] = field(default_factory=dict)

    @property
    def realm(self) -> str | None:
        return self.params.get("realm")

    @property
    def service(self) -> str | None:
        return self.params.get("service")

    @property
    def scope(self) -> str | None:
        return self.params.get("scope")


def parse_challenge(header: str) -> Challenge | None:
    """Parse ``Scheme key="value", key2=value2`` into a Challenge.

    Returns None for an empty header.
    """
    header = header.strip()
    if not header:
        return None

    scheme, _, rest = header.partition(" ")
    params: dict[str, str] = {}
    for match in _CHALLENGE_PARAM.finditer(rest):
        quoted, bare = match.group(2), match.group(3)
        value = _ESCAPED.sub(r"\1", quoted) if quoted is not None else bare
        params[match.group(1).lower()] = value
    return Challenge(scheme=scheme.lower(), params=params)


def basic_auth_header(username: str, password: str) -> str:
    """Build an ``Authorization`` header value for HTTP basic auth."""
    token = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
    return f"Basic {token}"


def registry_hostname(host: str) -> str:
    """Strip the port from ``hostname[:port]`` (bracketed IPv6 included)."""
    if host.startswith("["):
        return host[1 : host.find("]")] if "]" in host else host[1:]
    if host.count(":") > 1:
        return host
    return host.partition(":")[0]


def uses_plain_http(host: str, insecure_registries: Iterable[str] = ()) -> bool:
    """Loopback registries and those explicitly marked insecure speak plain HTTP."""
    return host in set(insecure_registries) or registry_hostname(host) in LOOPBACK_HOSTS


def registry_base_url(host: str, insecure_registries: Iterable[str] = ()) -> str:
    scheme = "http" if uses_plain_http(host, insecure_registries) else "https"
    return f"{scheme}://{host}"


def _is_tls_failure(error: BaseException) -> bool:
    current: BaseException | None = error
    while current is not None:
        if isinstance(current, ssl.SSLError):
            return True
        current = current.__cause__ or current.__context__
    return "ssl" in str(error).lower() or "certificate" in str(error).lower()


class AuthSession:
    """Verify a username/password pair against a registry.

    Stateless: every call opens its own ``httpx.AsyncClient`` inside an
    ``async with`` block, so a cancelled or timed-out login never leaks
    a connection.

    Example:
        >>> session = AuthSession()
        >>> await session.verify_login("localhost:5000", "alice", "wonderland", timeout=10)
    """

    def __init__(
        self,
        insecure_registries: Iterable[str] = (),
        user_agent: str = "regauth",
        verify: ssl.SSLContext | bool = True,
        request_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize auth session.

        Args:
            insecure_registries: Hosts to reach over plain HTTP
            user_agent: User-Agent header for all requests
            verify: TLS verification setting passed to httpx
            request_timeout: Per-request network timeout in seconds
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self.insecure_registries = tuple(insecure_registries)
        self.user_agent = user_agent
        self.verify = verify
        self.request_timeout = request_timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            verify=self.verify,
            timeout=self.request_timeout,
            headers={"User-Agent": self.user_agent},
            follow_redirects=True,
        )

    async def verify_login(
        self,
        host: str,
        username: str,
        password: str,
        *,
        timeout: float | None = None,
    ) -> None:
        """Present a credential to the registry and wait for its verdict.

        Args:
            host: Registry address (``hostname[:port]``)
            username: Login name
            password: Password or token
            timeout: Overall deadline in seconds; None waits indefinitely

        Raises:
            AuthRejectedError: If the registry rejects the credential or
                cannot be reached
            LoginTimeoutError: If the deadline passes first
            asyncio.CancelledError: If the calling task is cancelled
        """
        try:
            await asyncio.wait_for(self._handshake(host, username, password), timeout=timeout)
        except TimeoutError as e:
            log.warning("login_timed_out", host=host, timeout=timeout)
            raise LoginTimeoutError("Login timed out", timeout_seconds=timeout, host=host) from e

    async def _handshake(self, host: str, username: str, password: str) -> None:
        base_url = registry_base_url(host, self.insecure_registries)
        ping_url = f"{base_url}/v2/"

        async with self._client() as client:
            try:
                response = await client.get(ping_url)

                if response.status_code == 200:
                    log.info("registry_allows_anonymous_access", host=host)
                    return
                if response.status_code != 401:
                    raise AuthRejectedError(
                        f"unexpected response from {ping_url}",
                        host=host,
                        status_code=response.status_code,
                    )

                challenge = parse_challenge(response.headers.get("WWW-Authenticate", ""))
                if challenge is None or challenge.scheme == "basic":
                    await self._basic_login(client, ping_url, host, username, password)
                elif challenge.scheme == "bearer":
                    await self._token_login(client, challenge, ping_url, host, username, password)
                else:
                    raise AuthRejectedError(
                        f"unsupported authentication scheme '{challenge.scheme}'",
                        host=host,
                    )

            except httpx.TimeoutException as e:
                raise AuthRejectedError("registry did not respond in time", host=host) from e
            except httpx.ConnectError as e:
                if _is_tls_failure(e):
                    raise AuthRejectedError(
                        f"TLS handshake failed: {e}",
                        host=host,
                        suggestion="Check the registry certificate or add the host to insecure_registries",
                    ) from e
                raise AuthRejectedError(f"registry unreachable: {e}", host=host) from e
            except httpx.HTTPError as e:
                raise AuthRejectedError(f"request failed: {e}", host=host) from e

        log.info("login_verified", host=host, username=username, scheme=challenge.scheme if challenge else "basic")

    async def _basic_login(
        self,
        client: httpx.AsyncClient,
        ping_url: str,
        host: str,
        username: str,
        password: str,
    ) -> None:
        response = await client.get(ping_url, headers={"Authorization": basic_auth_header(username, password)})
        self._check_verdict(response, host)

    async def _token_login(
        self,
        client: httpx.AsyncClient,
        challenge: Challenge,
        ping_url: str,
        host: str,
        username: str,
        password: str,
    ) -> None:
        if not challenge.realm:
            raise AuthRejectedError("bearer challenge does not name a token realm", host=host)

        params: dict[str, Any] = {"account": username}
        if challenge.service:
            params["service"] = challenge.service
        if challenge.scope:
            params["scope"] = challenge.scope

        realm_url = httpx.URL(ping_url).join(challenge.realm)
        response = await client.get(
            realm_url,
            params=params,
            headers={"Authorization": basic_auth_header(username, password)},
        )
        self._check_verdict(response, host)

        token = extract_token(response)
        if not token:
            raise AuthRejectedError("token endpoint returned no token", host=host)

        response = await client.get(ping_url, headers={"Authorization": f"Bearer {token}"})
        self._check_verdict(response, host)

    @staticmethod
    def _check_verdict(response: httpx.Response, host: str) -> None:
        if response.status_code == 200:
            return
        if response.status_code in (401, 403):
            raise AuthRejectedError(
                "invalid username or password",
                host=host,
                status_code=response.status_code,
            )
        raise AuthRejectedError(
            f"unexpected response from {response.request.url}",
            host=host,
            status_code=response.status_code,
        )


def extract_token(response: httpx.Response) -> str | None:
    """Pull the bearer token out of a token endpoint response."""
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    token = payload.get("token") or payload.get("access_token")
    return token if isinstance(token, str) else None
