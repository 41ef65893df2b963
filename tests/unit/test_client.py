"""Tests for regauth/client.py - client construction, login, logout and lookup."""

import asyncio
import json
import os
import sys
from pathlib import Path
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from regauth.client import CredentialClient, check_store_path, new_client
from regauth.config import ClientSettings
from regauth.exceptions import (
    AuthRejectedError,
    ConfigPathError,
    HelperError,
    InvalidCredentialError,
    LoginTimeoutError,
    NotFoundError,
    StoreCorruptError,
    TransportError,
)
from regauth.session import AuthSession

needs_permissions = pytest.mark.skipif(
    sys.platform == "win32" or (hasattr(os, "geteuid") and os.geteuid() == 0),
    reason="file permission checks do not apply on Windows or as root",
)


def unreachable_session() -> AuthSession:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("[Errno -2] Name or service not known", request=request)

    return AuthSession(transport=httpx.MockTransport(handler))


def stalled_session() -> AuthSession:
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(30)
        return httpx.Response(200)

    return AuthSession(transport=httpx.MockTransport(handler))


def write_store(path, document: dict) -> None:
    path.write_text(json.dumps(document))


# =============================================================================
# Construction Tests
# =============================================================================


class TestNewClient:
    """Tests for new_client and store path validation."""

    def test_explicit_path(self, store_path, settings):
        """Should bind the client to the first path given."""
        client = new_client(store_path, store_path.with_name("ignored.conf"), settings=settings)

        assert isinstance(client, CredentialClient)
        assert client.path == store_path
        assert not store_path.exists()

    def test_root_directory_rejected(self, settings):
        """Should refuse the filesystem root as a store path."""
        with pytest.raises(ConfigPathError, match="directory"):
            new_client("/", settings=settings)

    def test_directory_rejected(self, tmp_path, settings):
        """Should refuse any existing directory as a store path."""
        with pytest.raises(ConfigPathError) as exc_info:
            new_client(tmp_path, settings=settings)

        assert exc_info.value.path == tmp_path

    def test_path_through_file_rejected(self, tmp_path, settings):
        """Should refuse a path whose parent is a regular file."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")

        with pytest.raises(ConfigPathError):
            new_client(blocker / "t.conf", settings=settings)

    def test_missing_parents_allowed(self, tmp_path, settings):
        """Should accept a path whose directories do not exist yet."""
        client = new_client(tmp_path / "a" / "b" / "t.conf", settings=settings)

        assert client.store.hosts() == []

    def test_default_path(self, settings):
        """Should fall back to the settings' default store path."""
        client = new_client(settings=settings)

        assert client.path == settings.config_dir / "config.json"

    def test_default_path_from_docker_config(self, tmp_path, monkeypatch):
        """Should honour DOCKER_CONFIG for the default location."""
        monkeypatch.setenv("DOCKER_CONFIG", str(tmp_path / "dockercfg"))

        client = new_client()

        assert client.path == tmp_path / "dockercfg" / "config.json"

    def test_corrupt_store_rejected(self, store_path, settings):
        """Should refuse to build a client over an unparsable store."""
        store_path.write_text("{not json")

        with pytest.raises(StoreCorruptError):
            new_client(store_path, settings=settings)

    def test_existing_store_loaded(self, store_path, settings):
        """Should see credentials already in the store file."""
        write_store(store_path, {"auths": {"localhost:5000": {"auth": "YWxpY2U6d29uZGVybGFuZA=="}}})

        client = new_client(store_path, settings=settings)

        assert client.store.hosts() == ["localhost:5000"]

    @needs_permissions
    def test_unsearchable_directory_rejected(self, tmp_path, settings):
        """Should refuse a store inside a directory it cannot enter."""
        locked = tmp_path / "locked"
        locked.mkdir()
        locked.chmod(0o400)
        try:
            with pytest.raises(ConfigPathError):
                new_client(locked / "t.conf", settings=settings)
        finally:
            locked.chmod(0o700)

    @needs_permissions
    def test_read_only_store_rejected(self, store_path, settings):
        """Should refuse a store file it cannot write."""
        store_path.write_text("{}")
        store_path.chmod(0o400)

        with pytest.raises(ConfigPathError, match="readable and writable"):
            new_client(store_path, settings=settings)

    @needs_permissions
    def test_inaccessible_default_directory_rejected(self, settings):
        """Should refuse a default store directory it cannot use."""
        settings.config_dir.mkdir()
        settings.config_dir.chmod(0o400)
        try:
            with pytest.raises(ConfigPathError, match="Default store directory"):
                new_client(settings=settings)
        finally:
            settings.config_dir.chmod(0o700)


class TestCheckStorePath:
    """Tests for check_store_path."""

    def test_returns_usable_path(self, store_path):
        """Should return the path unchanged when it can hold a store."""
        assert check_store_path(store_path) == store_path

    def test_special_file_rejected(self):
        """Should refuse paths that are not regular files."""
        if not os.path.exists("/dev/null"):
            pytest.skip("no /dev/null on this platform")

        with pytest.raises(ConfigPathError, match="regular file"):
            check_store_path(Path("/dev/null"))


# =============================================================================
# Login Tests
# =============================================================================


class TestLogin:
    """Tests for CredentialClient.login."""

    @pytest.mark.asyncio
    async def test_login_stores_credential(self, client, store_path, registry_host):
        """Should verify alice:wonderland and store it."""
        await client.login(registry_host, "alice", "wonderland")

        assert await client.credential(registry_host) == ("alice", "wonderland")
        document = json.loads(store_path.read_text())
        assert document["auths"][registry_host]["auth"] == "YWxpY2U6d29uZGVybGFuZA=="

    @pytest.mark.asyncio
    async def test_login_persists_across_clients(self, client, store_path, settings, registry_host):
        """Should be visible to a client created later on the same store."""
        await client.login(registry_host, "alice", "wonderland")

        later = new_client(store_path, settings=settings)

        assert await later.credential(registry_host) == ("alice", "wonderland")

    @pytest.mark.asyncio
    async def test_rejected_login_stores_nothing(self, client, store_path, registry_host):
        """Should leave the store untouched when the registry rejects the credential."""
        with pytest.raises(AuthRejectedError):
            await client.login(registry_host, "oscar", "opponent")

        assert await client.credential(registry_host) == ("", "")
        assert not store_path.exists()

    @pytest.mark.asyncio
    async def test_rejected_login_keeps_previous_credential(self, client, registry_host):
        """Should keep the earlier credential when a later login is rejected."""
        await client.login(registry_host, "alice", "wonderland")

        with pytest.raises(AuthRejectedError):
            await client.login(registry_host, "alice", "wrong")

        assert await client.credential(registry_host) == ("alice", "wonderland")

    @pytest.mark.asyncio
    async def test_empty_username_rejected(self, client, registry, registry_host):
        """Should refuse an empty username without contacting the registry."""
        with pytest.raises(InvalidCredentialError) as exc_info:
            await client.login(registry_host, "", "wonderland")

        assert exc_info.value.suggestion is not None
        assert registry.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("host", ["", "   ", "https://"])
    async def test_empty_username_checked_before_host(self, client, registry, host):
        """Should report the missing username even when the host is unusable too."""
        with pytest.raises(InvalidCredentialError):
            await client.login(host, "", "wonderland")

        assert registry.requests == []

    @pytest.mark.asyncio
    async def test_unreachable_registry(self, store_path, settings):
        """Should raise AuthRejectedError for a host that cannot be reached."""
        client = new_client(store_path, settings=settings, session=unreachable_session())

        with pytest.raises(AuthRejectedError, match="unreachable"):
            await client.login("mybadhost:54321", "alice", "wonderland")

        assert await client.credential("mybadhost:54321") == ("", "")

    @pytest.mark.asyncio
    async def test_host_normalized(self, client, registry_host):
        """Should store credentials under the host without scheme or trailing slash."""
        await client.login(f"http://{registry_host}/", "alice", "wonderland")

        assert client.store.hosts() == [registry_host]
        assert await client.credential(registry_host) == ("alice", "wonderland")

    @pytest.mark.asyncio
    async def test_relogin_overwrites(self, registry_factory, session_factory, store_path, settings, registry_host):
        """Should replace the stored credential on a later successful login."""
        registry = registry_factory(users={"alice": "wonderland", "bob": "builder"})
        client = new_client(store_path, settings=settings, session=session_factory(registry))

        await client.login(registry_host, "alice", "wonderland")
        await client.login(registry_host, "bob", "builder")

        assert await client.credential(registry_host) == ("bob", "builder")

    @pytest.mark.asyncio
    async def test_token_registry(self, registry_factory, session_factory, store_path, settings, registry_host):
        """Should log in to registries that use bearer tokens."""
        client = new_client(store_path, settings=settings, session=session_factory(registry_factory(scheme="bearer")))

        await client.login(registry_host, "alice", "wonderland")

        assert await client.credential(registry_host) == ("alice", "wonderland")


class TestLoginCancellation:
    """Tests for login deadlines and cancellation."""

    @pytest.mark.asyncio
    async def test_explicit_timeout(self, store_path, settings, registry_host):
        """Should raise LoginTimeoutError and store nothing when the deadline passes."""
        client = new_client(store_path, settings=settings, session=stalled_session())

        with pytest.raises(LoginTimeoutError):
            await client.login(registry_host, "alice", "wonderland", timeout=0.05)

        assert not store_path.exists()

    @pytest.mark.asyncio
    async def test_settings_timeout_applied(self, store_path, tmp_path, registry_host):
        """Should use settings.login_timeout when no timeout is given."""
        settings = ClientSettings(config_dir=tmp_path, login_timeout=0.05)
        client = new_client(store_path, settings=settings, session=stalled_session())

        with pytest.raises(LoginTimeoutError) as exc_info:
            await client.login(registry_host, "alice", "wonderland")

        assert exc_info.value.timeout_seconds == 0.05

    @pytest.mark.asyncio
    async def test_cancelled_login_stores_nothing(self, store_path, settings, registry_host):
        """Should leave the store untouched when the login task is cancelled."""
        client = new_client(store_path, settings=settings, session=stalled_session())

        task = asyncio.create_task(client.login(registry_host, "alice", "wonderland"))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert await client.credential(registry_host) == ("", "")
        assert not store_path.exists()


# =============================================================================
# Logout Tests
# =============================================================================


class TestLogout:
    """Tests for CredentialClient.logout."""

    @pytest.mark.asyncio
    async def test_logout_removes_credential(self, client, registry_host):
        """Should forget the credential so lookups become anonymous."""
        await client.login(registry_host, "alice", "wonderland")

        await client.logout(registry_host)

        assert await client.credential(registry_host) == ("", "")

    @pytest.mark.asyncio
    async def test_logout_twice_raises(self, client, registry_host):
        """Should raise NotFoundError when the host is already logged out."""
        await client.login(registry_host, "alice", "wonderland")
        await client.logout(registry_host)

        with pytest.raises(NotFoundError):
            await client.logout(registry_host)

    @pytest.mark.asyncio
    async def test_logout_unknown_host(self, client):
        """Should raise NotFoundError for a host that was never logged in."""
        with pytest.raises(NotFoundError) as exc_info:
            await client.logout("non-existing-host:42")

        assert exc_info.value.host == "non-existing-host:42"

    @pytest.mark.asyncio
    async def test_logout_keeps_other_hosts(self, registry, session_factory, store_path, settings, registry_host):
        """Should leave other hosts' credentials in place."""
        write_store(store_path, {"auths": {"ghcr.io": {"auth": "Ym9iOmJ1aWxkZXI="}}})
        client = new_client(store_path, settings=settings, session=session_factory(registry))
        await client.login(registry_host, "alice", "wonderland")

        await client.logout(registry_host)

        assert await client.credential("ghcr.io") == ("bob", "builder")


# =============================================================================
# Credential Lookup Tests
# =============================================================================


class TestCredential:
    """Tests for CredentialClient.credential."""

    @pytest.mark.asyncio
    async def test_unknown_host_is_anonymous(self, client):
        """Should return empty strings for hosts with no credential."""
        assert await client.credential("docker.io") == ("", "")

    @pytest.mark.asyncio
    async def test_sees_external_edits(self, client, store_path):
        """Should pick up a credential another process added to the store."""
        assert await client.credential("ghcr.io") == ("", "")

        write_store(store_path, {"auths": {"ghcr.io": {"auth": "Ym9iOmJ1aWxkZXI="}}})
        os.utime(store_path, ns=(1_000_000_000, 1_000_000_000))

        assert await client.credential("ghcr.io") == ("bob", "builder")

    @pytest.mark.asyncio
    async def test_identity_token(self, store_path, settings):
        """Should return an empty username with an identity token."""
        write_store(store_path, {"auths": {"registry.test": {"identitytoken": "refresh-token"}}})
        client = new_client(store_path, settings=settings)

        assert await client.credential("registry.test") == ("", "refresh-token")

    @pytest.mark.asyncio
    async def test_host_helper(self, store_path, settings):
        """Should ask the host's credential helper."""
        write_store(store_path, {"credHelpers": {"gcr.io": "gcloud"}})
        client = new_client(store_path, settings=settings)
        output = json.dumps({"Username": "oauth2accesstoken", "Secret": "ya29.token"})
        mock_run = AsyncMock(return_value=(output, "", 0))

        with patch("regauth.sources.run_command", mock_run):
            result = await client.credential("gcr.io")

        assert result == ("oauth2accesstoken", "ya29.token")
        assert mock_run.await_args.args == ("docker-credential-gcloud", "get")
        assert mock_run.await_args.kwargs["timeout"] == settings.helper_timeout

    @pytest.mark.asyncio
    async def test_host_helper_failure_raises(self, store_path, settings):
        """Should raise HelperError when the host's own helper fails."""
        write_store(store_path, {"credHelpers": {"gcr.io": "gcloud"}})
        client = new_client(store_path, settings=settings)

        with patch("regauth.sources.run_command", AsyncMock(side_effect=FileNotFoundError())):
            with pytest.raises(HelperError):
                await client.credential("gcr.io")

    @pytest.mark.asyncio
    async def test_default_helper(self, store_path, settings):
        """Should ask the credsStore helper for hosts with no entry."""
        write_store(store_path, {"credsStore": "desktop"})
        client = new_client(store_path, settings=settings)
        output = json.dumps({"Username": "carol", "Secret": "s3cret"})

        with patch("regauth.sources.run_command", AsyncMock(return_value=(output, "", 0))):
            assert await client.credential("registry.test") == ("carol", "s3cret")

    @pytest.mark.asyncio
    async def test_default_helper_failure_is_anonymous(self, store_path, settings):
        """Should fall back to anonymous access when the credsStore helper fails."""
        write_store(store_path, {"credsStore": "desktop"})
        client = new_client(store_path, settings=settings)

        with patch("regauth.sources.run_command", AsyncMock(side_effect=FileNotFoundError())):
            assert await client.credential("registry.test") == ("", "")

    @pytest.mark.asyncio
    async def test_blank_default_helper_is_anonymous(self, store_path, settings):
        """Should treat an empty credsStore as no default helper."""
        write_store(store_path, {"auths": {}, "credsStore": ""})
        client = new_client(store_path, settings=settings)
        mock_run = AsyncMock()

        with patch("regauth.sources.run_command", mock_run):
            assert await client.credential("docker.io") == ("", "")

        mock_run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_default_helper_is_anonymous(self, store_path, settings):
        """Should fall back to anonymous access when credsStore is not a helper name."""
        write_store(store_path, {"credsStore": "../bin/evil"})
        client = new_client(store_path, settings=settings)
        mock_run = AsyncMock()

        with patch("regauth.sources.run_command", mock_run):
            assert await client.credential("registry.test") == ("", "")

        mock_run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_inline_entry_wins_over_default_helper(self, store_path, settings):
        """Should not consult credsStore for hosts with an inline credential."""
        write_store(
            store_path,
            {"credsStore": "desktop", "auths": {"ghcr.io": {"auth": "Ym9iOmJ1aWxkZXI="}}},
        )
        client = new_client(store_path, settings=settings)
        mock_run = AsyncMock()

        with patch("regauth.sources.run_command", mock_run):
            assert await client.credential("ghcr.io") == ("bob", "builder")

        mock_run.assert_not_awaited()


# =============================================================================
# Resolver Tests
# =============================================================================


class TestResolver:
    """Tests for CredentialClient.resolver."""

    @pytest.mark.asyncio
    async def test_resolver_uses_stored_credential(self, client, registry, registry_host):
        """Should authenticate transfer requests with the logged-in credential."""
        await client.login(registry_host, "alice", "wonderland")

        async with client.resolver(transport=httpx.MockTransport(registry)) as resolver:
            response = await resolver.request("GET", registry_host, "/v2/_catalog")

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_resolver_sees_later_logout(self, client, registry, registry_host):
        """Should look credentials up at request time, not at construction."""
        await client.login(registry_host, "alice", "wonderland")

        async with client.resolver(transport=httpx.MockTransport(registry)) as resolver:
            await client.logout(registry_host)
            response = await resolver.request("GET", registry_host, "/v2/_catalog")

        assert response.status_code == 401

    def test_resolver_bad_ca_file(self, client, tmp_path):
        """Should raise TransportError for an unusable CA bundle."""
        with pytest.raises(TransportError):
            client.resolver(ca_file=tmp_path / "missing.pem")

    @pytest.mark.asyncio
    async def test_resolver_insecure(self, client):
        """Should build a transport that skips certificate checks."""
        resolver = client.resolver(insecure=True)

        assert resolver.base_url("localhost:5000") == "http://localhost:5000"
        await resolver.aclose()
