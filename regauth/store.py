"""File-backed credential store in the Docker CLI ``config.json`` format.

Storage Model:
- ``auths[host].auth`` holds base64(``username:password``) for inline records
- ``credHelpers[host]`` names an external helper for that host
- ``credsStore`` names a default helper for hosts with no other entry
- Unknown top-level keys are preserved on rewrite
- File written with mode 600 via a temporary file and atomic rename
"""

import base64
import binascii
import json
import os
import tempfile
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import (
    NotFoundError,
    StoreAccessError,
    StoreCorruptError,
    StoreWriteError,
)
from .models import CredentialRecord, CredentialSourceKind

log = structlog.get_logger(__name__)


def encode_auth(username: str, password: str) -> str:
    """Encode a username/password pair the way the Docker CLI does."""
    return base64.b64encode(f"{username}:{password}".encode()).decode("ascii")


def decode_auth(value: str) -> tuple[str, str]:
    """Decode a base64 ``username:password`` blob.

    Raises:
        ValueError: If the value is not valid base64 or has no separator
    """
    try:
        decoded = base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ValueError("auth field is not valid base64") from e

    username, sep, password = decoded.partition(":")
    if not sep:
        raise ValueError("auth field must decode to username:password")
    return username, password


class AuthEntry(BaseModel):
    """One ``auths`` entry of the store file."""

    model_config = ConfigDict(extra="allow")

    auth: str | None = None
    username: str | None = None
    password: str | None = None
    identitytoken: str | None = None

    def credential(self) -> tuple[str, str] | None:
        """Return (username, secret), or None if the entry holds no credential."""
        if self.identitytoken:
            return "", self.identitytoken
        if self.auth:
            return decode_auth(self.auth)
        if self.username or self.password:
            return self.username or "", self.password or ""
        return None


class StoreDocument(BaseModel):
    """Top-level structure of the store file."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    auths: dict[str, AuthEntry] = Field(default_factory=dict)
    cred_helpers: dict[str, str] = Field(default_factory=dict, alias="credHelpers")
    creds_store: str | None = Field(default=None, alias="credsStore")

    def to_json(self) -> str:
        data = self.model_dump(by_alias=True, exclude_none=True)
        if not data.get("credHelpers"):
            data.pop("credHelpers", None)
        return json.dumps(data, indent="\t") + "\n"


class CredentialStore:
    """Host-keyed credential records persisted to a single JSON file.

    Records are held in memory after ``load``. A lookup that misses in
    memory re-reads the file if it changed on disk since it was last
    read. Writes go to a temporary sibling file that then replaces the
    store, so a failed write never leaves a partially written store and
    never changes the in-memory records.

    Only one writer per store path is supported; concurrent writers
    from other processes are last-write-wins.

    Example:
        >>> store = CredentialStore.load(Path("~/.docker/config.json").expanduser())
        >>> store.put("localhost:5000", CredentialRecord("localhost:5000", "alice", "wonderland"))
        >>> store.get("localhost:5000").username
        'alice'
    """

    def __init__(self, path: Path, document: StoreDocument | None = None) -> None:
        self.path = path
        self._document = document or StoreDocument()
        self._mtime_ns: int | None = None

    @classmethod
    def load(cls, path: Path | str) -> "CredentialStore":
        """Read the store file, or start an empty store if it is absent.

        Raises:
            StoreCorruptError: If the file exists but cannot be parsed
            StoreAccessError: If the file exists but cannot be read
        """
        store = cls(Path(path))
        store._read()
        log.debug("credential_store_loaded", path=str(store.path), hosts=len(store.hosts()))
        return store

    @property
    def default_helper(self) -> str | None:
        """Helper named by ``credsStore``, consulted for unconfigured hosts.

        A blank ``credsStore`` (common in Docker Desktop configs) means none.
        """
        return self._document.creds_store or None

    def hosts(self) -> list[str]:
        """Return the hosts that have a stored credential or helper reference."""
        inline = {host for host, entry in self._document.auths.items() if entry.credential() is not None}
        return sorted(inline | set(self._document.cred_helpers))

    def get(self, host: str) -> CredentialRecord | None:
        """Return the record for ``host``, or None if it has none.

        Raises:
            StoreCorruptError: If a changed store file cannot be parsed
            StoreAccessError: If a changed store file cannot be read
        """
        record = self._lookup(host)
        if record is None and self._changed_on_disk():
            self._read()
            record = self._lookup(host)
        return record

    def put(self, host: str, record: CredentialRecord) -> None:
        """Insert or overwrite the record for ``host`` and persist it.

        Raises:
            ValueError: If the record belongs to a different host
            StoreWriteError: If the store cannot be written
        """
        if record.host != host:
            raise ValueError(f"Record for {record.host!r} cannot be stored under {host!r}")

        document = self._document.model_copy(deep=True)
        if record.source == CredentialSourceKind.EXTERNAL_HELPER:
            assert record.helper is not None
            document.auths.pop(host, None)
            document.cred_helpers[host] = record.helper
        else:
            document.cred_helpers.pop(host, None)
            document.auths[host] = AuthEntry(auth=encode_auth(record.username, record.secret))

        self._write(document)
        log.info("credential_stored", host=host, source=record.source.value)

    def delete(self, host: str) -> None:
        """Remove the record for ``host`` and persist the change.

        Raises:
            NotFoundError: If no record exists for ``host``
            StoreWriteError: If the store cannot be written
        """
        if host not in self._document.auths and host not in self._document.cred_helpers and self._changed_on_disk():
            self._read()

        if host not in self._document.auths and host not in self._document.cred_helpers:
            raise NotFoundError(
                "No stored credential",
                host=host,
                suggestion="Log in to the registry before logging out",
            )

        document = self._document.model_copy(deep=True)
        document.auths.pop(host, None)
        document.cred_helpers.pop(host, None)

        self._write(document)
        log.info("credential_deleted", host=host)

    def _lookup(self, host: str) -> CredentialRecord | None:
        helper = self._document.cred_helpers.get(host)
        if helper:
            return CredentialRecord(
                host=host,
                source=CredentialSourceKind.EXTERNAL_HELPER,
                helper=helper,
            )

        entry = self._document.auths.get(host)
        if entry is None:
            return None
        credential = entry.credential()
        if credential is None:
            return None
        username, secret = credential
        return CredentialRecord(host=host, username=username, secret=secret)

    def _changed_on_disk(self) -> bool:
        try:
            mtime_ns = self.path.stat().st_mtime_ns
        except FileNotFoundError:
            return self._mtime_ns is not None
        except PermissionError as e:
            raise StoreAccessError("Permission denied reading credential store", self.path) from e
        return mtime_ns != self._mtime_ns

    def _read(self) -> None:
        try:
            raw = self.path.read_bytes()
            mtime_ns: int | None = self.path.stat().st_mtime_ns
        except FileNotFoundError:
            self._document = StoreDocument()
            self._mtime_ns = None
            return
        except PermissionError as e:
            raise StoreAccessError("Permission denied reading credential store", self.path) from e
        except OSError as e:
            raise StoreAccessError(f"Cannot read credential store: {e.strerror or e}", self.path) from e

        self._document = self._parse(raw)
        self._mtime_ns = mtime_ns

    def _parse(self, raw: bytes) -> StoreDocument:
        if not raw.strip():
            return StoreDocument()

        try:
            data: Any = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StoreCorruptError(f"Credential store is not valid JSON: {e}", self.path) from e

        if not isinstance(data, dict):
            raise StoreCorruptError("Credential store must be a JSON object", self.path)

        try:
            document = StoreDocument.model_validate(data)
        except ValidationError as e:
            raise StoreCorruptError(f"Credential store has an invalid structure: {e}", self.path) from e

        for host, entry in document.auths.items():
            try:
                entry.credential()
            except ValueError as e:
                raise StoreCorruptError(f"Invalid auth entry for {host}: {e}", self.path) from e

        return document

    def _write(self, document: StoreDocument) -> None:
        """Persist ``document`` atomically, then adopt it as the in-memory state."""
        payload = document.to_json().encode("utf-8")
        temp_name: str | None = None

        try:
            self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

            fd, temp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                dir=self.path.parent,
            )
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())

            # Restrict permissions before moving
            try:
                os.chmod(temp_name, 0o600)
            except OSError as e:
                log.warning("store_permissions_not_set", path=temp_name, error=str(e))

            os.replace(temp_name, self.path)
            temp_name = None
        except OSError as e:
            raise StoreWriteError(f"Failed to write credential store: {e.strerror or e}", self.path) from e
        finally:
            if temp_name is not None:
                try:
                    os.unlink(temp_name)
                except OSError:
                    log.warning("store_temp_file_left_behind", path=temp_name)

        self._document = document
        try:
            self._mtime_ns = self.path.stat().st_mtime_ns
        except OSError:
            self._mtime_ns = None
        log.debug("credential_store_saved", path=str(self.path))
