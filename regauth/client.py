"""Credential client: login, logout and lookup against one credential store."""

import os
import stat
from pathlib import Path
from typing import Any

import structlog

from .config import ClientSettings
from .exceptions import ConfigPathError, HelperError, InvalidCredentialError
from .models import CredentialRecord, canonical_host
from .resolver import RegistryResolver, build_ssl_context
from .session import AuthSession
from .sources import ExternalHelperSource, source_for
from .store import CredentialStore

log = structlog.get_logger(__name__)


def _nearest_existing_dir(path: Path) -> Path:
    for candidate in path.parents:
        try:
            info = candidate.stat()
        except (FileNotFoundError, NotADirectoryError):
            continue
        except PermissionError as e:
            raise ConfigPathError("Permission denied reaching store directory", candidate) from e
        except OSError as e:
            raise ConfigPathError(f"Cannot access store directory: {e.strerror or e}", candidate) from e
        if not stat.S_ISDIR(info.st_mode):
            raise ConfigPathError("Store path runs through a file", candidate)
        return candidate
    raise ConfigPathError("Store path has no existing parent directory", path)


def check_store_path(path: Path) -> Path:
    """Make sure ``path`` can hold a credential store.

    The path must be an existing regular file that can be read and
    written, or a path that can be created. Either way its directory
    must allow creating the temporary file used for atomic writes.

    Raises:
        ConfigPathError: If the path is a directory, runs through a file,
            or is unreachable because of permissions
    """
    try:
        info = path.stat()
    except FileNotFoundError:
        info = None
    except PermissionError as e:
        raise ConfigPathError("Permission denied accessing store path", path) from e
    except NotADirectoryError as e:
        raise ConfigPathError("Store path runs through a file", path) from e
    except OSError as e:
        raise ConfigPathError(f"Cannot access store path: {e.strerror or e}", path) from e

    if info is not None:
        if stat.S_ISDIR(info.st_mode):
            raise ConfigPathError("Store path is a directory", path)
        if not stat.S_ISREG(info.st_mode):
            raise ConfigPathError("Store path is not a regular file", path)
        if not os.access(path, os.R_OK | os.W_OK):
            raise ConfigPathError("Store file is not readable and writable", path)

    directory = path.parent if info is not None else _nearest_existing_dir(path)
    if not os.access(directory, os.W_OK | os.X_OK):
        raise ConfigPathError("Store directory is not writable", directory)

    return path


class CredentialClient:
    """Registry credential client bound to one credential store.

    Every public operation is its own transaction; the client keeps no
    session state between calls. Calls on one client are expected to be
    made by a single logical caller.

    Example:
        >>> client = new_client("/tmp/t.conf")
        >>> await client.login("localhost:5000", "alice", "wonderland")
        >>> await client.credential("localhost:5000")
        ('alice', 'wonderland')
    """

    def __init__(
        self,
        store: CredentialStore,
        settings: ClientSettings | None = None,
        session: AuthSession | None = None,
    ) -> None:
        """Initialize credential client.

        Args:
            store: Loaded credential store owned by this client
            settings: Client settings (defaults read from the environment)
            session: Login verifier; built from settings if omitted
        """
        self.settings = settings or ClientSettings()
        self.store = store
        self.session = session or AuthSession(
            insecure_registries=self.settings.insecure_registries,
            user_agent=self.settings.user_agent,
            verify=build_ssl_context(self.settings.ca_file),
        )

    @property
    def path(self) -> Path:
        return self.store.path

    async def login(
        self,
        host: str,
        username: str,
        password: str,
        *,
        timeout: float | None = None,
    ) -> None:
        """Verify a credential with the registry, then store it.

        Args:
            host: Registry address (``hostname[:port]``)
            username: Login name, required
            password: Password or token
            timeout: Deadline in seconds; defaults to ``settings.login_timeout``

        Raises:
            InvalidCredentialError: If ``username`` is empty
            AuthRejectedError: If the registry rejects the credential
            LoginTimeoutError: If the deadline passes first
            StoreWriteError: If the verified credential cannot be stored
        """
        if not username:
            raise InvalidCredentialError(
                "Username is required to log in",
                host=host.strip() or None,
                suggestion="Pass the registry account name along with the password",
            )
        host = canonical_host(host)

        log.info("login_started", host=host, username=username)
        effective_timeout = timeout if timeout is not None else self.settings.login_timeout
        await self.session.verify_login(host, username, password, timeout=effective_timeout)

        self.store.put(host, CredentialRecord(host=host, username=username, secret=password))
        log.info("login_succeeded", host=host, username=username)

    async def logout(self, host: str) -> None:
        """Forget the stored credential for ``host``.

        Raises:
            NotFoundError: If no credential is stored for ``host``
            StoreWriteError: If the store cannot be written
        """
        host = canonical_host(host)
        self.store.delete(host)
        log.info("logout_succeeded", host=host)

    async def credential(self, host: str) -> tuple[str, str]:
        """Return (username, password) for ``host``.

        A host with no stored credential yields ``("", "")``; anonymous
        access is the normal case, not an error.

        Raises:
            StoreCorruptError: If the store changed on disk and cannot be parsed
            StoreAccessError: If the store changed on disk and cannot be read
            HelperError: If the host's configured helper fails
        """
        host = canonical_host(host)
        record = self.store.get(host)

        if record is None:
            helper = self.store.default_helper
            if not helper:
                return "", ""
            try:
                source = ExternalHelperSource(helper, timeout=self.settings.helper_timeout)
                return await source.fetch(host)
            except HelperError as e:
                log.warning("default_helper_failed", host=host, helper=helper, error=e.message)
                return "", ""

        return await source_for(record, helper_timeout=self.settings.helper_timeout).fetch(host)

    def resolver(self, *, ca_file: Path | None = None, insecure: bool = False, **kwargs: Any) -> RegistryResolver:
        """Build a resolver that looks up this client's credentials per host.

        Args:
            ca_file: CA bundle overriding ``settings.ca_file``
            insecure: Skip TLS certificate verification
            **kwargs: Passed through to ``RegistryResolver`` (e.g. ``transport``)

        Raises:
            TransportError: If the HTTP transport cannot be constructed
        """
        return RegistryResolver(
            self.credential,
            insecure_registries=self.settings.insecure_registries,
            ca_file=ca_file or self.settings.ca_file,
            verify=not insecure,
            user_agent=self.settings.user_agent,
            **kwargs,
        )


def new_client(
    *config_paths: str | Path,
    settings: ClientSettings | None = None,
    session: AuthSession | None = None,
) -> CredentialClient:
    """Create a credential client.

    Args:
        *config_paths: Store file locations; only the first is used. With
            none, ``settings.default_store_path`` is used.
        settings: Client settings (defaults read from the environment)
        session: Login verifier override

    Raises:
        ConfigPathError: If the store location is unusable
        StoreCorruptError: If an existing store cannot be parsed
        StoreAccessError: If an existing store cannot be read
    """
    settings = settings or ClientSettings()

    if config_paths:
        path = Path(config_paths[0]).expanduser()
    else:
        path = settings.default_store_path
        directory = path.parent
        if os.path.isdir(directory) and not os.access(directory, os.R_OK | os.W_OK | os.X_OK):
            raise ConfigPathError("Default store directory is not accessible", directory)

    store = CredentialStore.load(check_store_path(path))
    log.debug("credential_client_created", path=str(path))
    return CredentialClient(store, settings=settings, session=session)
