"""Pytest configuration and shared fixtures."""

import base64
import secrets
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

from regauth.client import CredentialClient, new_client
from regauth.config import ClientSettings
from regauth.session import AuthSession

TEST_USERNAME = "alice"
TEST_PASSWORD = "wonderland"


class FakeRegistry:
    """In-process Docker Registry v2 endpoint for ``httpx.MockTransport``.

    Supports three auth modes:
    - ``none``: every request is allowed
    - ``basic``: HTTP basic auth against ``users``
    - ``bearer``: token auth with a token endpoint at ``/token``
    """

    def __init__(
        self,
        users: dict[str, str] | None = None,
        scheme: str = "basic",
        allow_anonymous_tokens: bool = True,
        realm: str = "https://auth.example.test/token",
        service: str = "fake-registry",
    ) -> None:
        self.users = users if users is not None else {TEST_USERNAME: TEST_PASSWORD}
        self.scheme = scheme
        self.allow_anonymous_tokens = allow_anonymous_tokens
        self.realm = realm
        self.service = service
        self.requests: list[httpx.Request] = []
        self.tokens: dict[str, str] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        # Auth flows mutate and resend the same Request, so keep a copy
        self.requests.append(httpx.Request(request.method, request.url, headers=request.headers.raw))
        if request.url.path == "/token":
            return self._issue_token(request)
        if request.url.path.startswith("/v2/"):
            return self._serve(request)
        return httpx.Response(404)

    @property
    def token_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == "/token"]

    def _basic_user(self, request: httpx.Request) -> str | None:
        header = request.headers.get("Authorization", "")
        if not header.startswith("Basic "):
            return None
        username, _, password = base64.b64decode(header[6:]).decode().partition(":")
        if username and self.users.get(username) == password:
            return username
        return None

    def _serve(self, request: httpx.Request) -> httpx.Response:
        if self.scheme == "none":
            return httpx.Response(200, json={})

        if self.scheme == "basic":
            if self._basic_user(request):
                return httpx.Response(200, json={})
            return httpx.Response(401, headers={"WWW-Authenticate": 'Basic realm="fake-registry"'})

        header = request.headers.get("Authorization", "")
        if header.startswith("Bearer ") and header[7:] in self.tokens:
            return httpx.Response(200, json={})

        challenge = f'Bearer realm="{self.realm}",service="{self.service}"'
        repository = request.url.path[len("/v2/") :].split("/manifests")[0].strip("/")
        if repository:
            challenge += f',scope="repository:{repository}:pull"'
        return httpx.Response(401, headers={"WWW-Authenticate": challenge})

    def _issue_token(self, request: httpx.Request) -> httpx.Response:
        if "Authorization" in request.headers:
            username = self._basic_user(request)
            if username is None:
                return httpx.Response(401, json={"details": "incorrect username or password"})
        elif self.allow_anonymous_tokens:
            username = ""
        else:
            return httpx.Response(401, json={"details": "authentication required"})

        token = secrets.token_hex(16)
        self.tokens[token] = username
        return httpx.Response(200, json={"token": token, "expires_in": 300})


@pytest.fixture
def registry_factory() -> type[FakeRegistry]:
    """Build fake registries with other auth modes or users."""
    return FakeRegistry


@pytest.fixture
def registry() -> FakeRegistry:
    """Registry requiring alice:wonderland over basic auth."""
    return FakeRegistry()


@pytest.fixture
def registry_host() -> str:
    return "localhost:5000"


@pytest.fixture
def settings(tmp_path: Path) -> ClientSettings:
    """Settings with the default store inside the test's temp directory."""
    return ClientSettings(config_dir=tmp_path / "docker", login_timeout=5.0, helper_timeout=2.0)


@pytest.fixture
def session_factory() -> Callable[[FakeRegistry], AuthSession]:
    def factory(fake: FakeRegistry) -> AuthSession:
        return AuthSession(transport=httpx.MockTransport(fake))

    return factory


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "t.conf"


@pytest.fixture
def client(
    store_path: Path,
    settings: ClientSettings,
    registry: FakeRegistry,
    session_factory: Callable[[FakeRegistry], AuthSession],
) -> CredentialClient:
    """Client with its store at ``t.conf`` talking to the fake registry."""
    return new_client(store_path, settings=settings, session=session_factory(registry))
