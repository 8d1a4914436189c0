"""Encrypted at-rest persistence for authentication state.

Three aggregates are persisted independently -- credentials, auth
parameters, and Microsoft 365 resources -- each in its own file under a
caller-chosen directory:

* ``credentials.enc``
* ``params.enc``
* ``m365.enc``

Every file holds ``nonce || ciphertext``: a fresh random 24-byte nonce
followed by the AES-256-GCM encryption (ciphertext plus tag) of the
aggregate's JSON form. Decryption is authenticated and fails closed: a wrong
key, a flipped bit, or a truncated file raises
:class:`~goslings.exceptions.DecryptionError` and never yields partial
plaintext.

Files are written atomically via :func:`goslings.config.atomic_write`
(temp file plus ``os.replace``) with ``0o600`` permissions so that secrets are never
world-readable, even momentarily. The directory itself is created ``0o700``.

Only the file backend exists. :func:`create_store` recognises the Kubernetes
and Vault selectors and refuses them explicitly; a new backend implements
:class:`Store` and is wired in there without touching the manager or leases.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, TypeVar

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import BaseModel, ValidationError

from goslings.config import atomic_write
from goslings.exceptions import (
    DecryptionError,
    EncryptionError,
    SerializationError,
    StoreBackendNotImplementedError,
    StoreError,
    StoreNotFoundError,
    StoreNotInitializedError,
    UnsupportedStoreTypeError,
)
from goslings.models import AuthParams, Credentials, M365Resources, ManagerOptions, StoreType

logger = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 24

CREDENTIALS_FILE = "credentials.enc"
PARAMS_FILE = "params.enc"
M365_FILE = "m365.enc"

_Model = TypeVar("_Model", bound=BaseModel)


class Store(ABC):
    """Persistence for the three authentication aggregates.

    ``load_*`` methods raise :class:`~goslings.exceptions.StoreNotFoundError`
    when the aggregate was never saved (or was cleared), and another
    :class:`~goslings.exceptions.StoreError` for anything else.
    """

    @abstractmethod
    def store_credentials(self, creds: Credentials) -> None: ...

    @abstractmethod
    def load_credentials(self) -> Credentials: ...

    @abstractmethod
    def store_params(self, params: AuthParams) -> None: ...

    @abstractmethod
    def load_params(self) -> AuthParams: ...

    @abstractmethod
    def store_m365_resources(self, resources: M365Resources) -> None: ...

    @abstractmethod
    def load_m365_resources(self) -> M365Resources: ...

    @abstractmethod
    def clear(self) -> None:
        """Remove all three aggregates. Clearing an empty store is not an error."""
        ...

    def close(self) -> None:
        """Release resources and discard key material. Default: no-op."""


class FileStore(Store):
    """Encrypted file-backed :class:`Store`.

    Args:
        base_path: Directory for the encrypted blobs, created ``0o700`` if
            absent.
        key: Exactly 32 bytes of key material. A private copy is kept and
            zeroed by :meth:`close`.

    Raises:
        EncryptionError: If *key* is not 32 bytes long.
        StoreError: If the directory cannot be created.

    Example::

        store = FileStore(Path("/tmp/creds"), bytes(32))
        store.store_params(AuthParams(tenant_id="t"))
        assert store.load_params().tenant_id == "t"
    """

    def __init__(self, base_path: Path | str, key: bytes) -> None:
        if len(key) != KEY_SIZE:
            raise EncryptionError(f"encryption key must be exactly {KEY_SIZE} bytes")

        self._base_path = Path(base_path).expanduser()
        try:
            self._base_path.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreError(
                f"failed to create directory for credentials: {exc}"
            ) from exc

        self._key: Optional[bytearray] = bytearray(key)

    @property
    def base_path(self) -> Path:
        """The directory holding the encrypted blobs."""
        return self._base_path

    def path_for(self, filename: str) -> Path:
        return self._base_path / filename

    # ------------------------------------------------------------------ #
    # Aggregates
    # ------------------------------------------------------------------ #

    def store_credentials(self, creds: Credentials) -> None:
        self._save(CREDENTIALS_FILE, creds, "credentials")

    def load_credentials(self) -> Credentials:
        return self._load(CREDENTIALS_FILE, Credentials, "credentials")

    def store_params(self, params: AuthParams) -> None:
        self._save(PARAMS_FILE, params, "parameters")

    def load_params(self) -> AuthParams:
        return self._load(PARAMS_FILE, AuthParams, "parameters")

    def store_m365_resources(self, resources: M365Resources) -> None:
        self._save(M365_FILE, resources, "M365 resources")

    def load_m365_resources(self) -> M365Resources:
        return self._load(M365_FILE, M365Resources, "M365 resources")

    def clear(self) -> None:
        """Delete all three blobs.

        Missing files are ignored. If one deletion fails the others are
        still attempted, and the first failure is raised afterwards.

        Raises:
            StoreError: Wrapping the first deletion failure.
            StoreNotInitializedError: If the store has been closed.
        """
        self._require_open()
        first_error: Optional[OSError] = None
        for filename in (CREDENTIALS_FILE, PARAMS_FILE, M365_FILE):
            try:
                self.path_for(filename).unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.debug("Failed to delete %s: %s", filename, exc)
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise StoreError(f"failed to clear credential store: {first_error}") from first_error

    def close(self) -> None:
        """Zero the in-memory key. Subsequent operations raise ``StoreNotInitializedError``."""
        if self._key is not None:
            for i in range(len(self._key)):
                self._key[i] = 0
            self._key = None

    # ------------------------------------------------------------------ #
    # Encryption
    # ------------------------------------------------------------------ #

    def _require_open(self) -> bytearray:
        if self._key is None:
            raise StoreNotInitializedError("credential store is closed")
        return self._key

    def _cipher(self) -> AESGCM:
        return AESGCM(bytes(self._require_open()))

    def encrypt(self, data: bytes) -> bytes:
        """Return ``nonce || ciphertext`` for *data* under a fresh random nonce."""
        cipher = self._cipher()
        nonce = os.urandom(NONCE_SIZE)
        return nonce + cipher.encrypt(nonce, data, None)

    def decrypt(self, blob: bytes) -> bytes:
        """Authenticate and decrypt a ``nonce || ciphertext`` blob.

        Raises:
            DecryptionError: If the blob is too short or fails authentication.
        """
        cipher = self._cipher()
        if len(blob) < NONCE_SIZE:
            raise DecryptionError("data too short to contain nonce")
        nonce, ciphertext = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
        try:
            return cipher.decrypt(nonce, ciphertext, None)
        except InvalidTag as exc:
            raise DecryptionError("failed to decrypt data") from exc

    # ------------------------------------------------------------------ #
    # File I/O
    # ------------------------------------------------------------------ #

    def _save(self, filename: str, model: BaseModel, label: str) -> None:
        self._require_open()
        try:
            data = model.model_dump_json().encode("utf-8")
        except (ValueError, TypeError) as exc:
            raise SerializationError(f"failed to marshal {label}: {exc}") from exc

        blob = self.encrypt(data)
        try:
            atomic_write(self.path_for(filename), blob)
        except OSError as exc:
            raise StoreError(f"failed to write {label} file: {exc}") from exc

    def _load(self, filename: str, model_type: type[_Model], label: str) -> _Model:
        self._require_open()
        path = self.path_for(filename)
        try:
            blob = path.read_bytes()
        except FileNotFoundError as exc:
            raise StoreNotFoundError(f"{label} file not found") from exc
        except OSError as exc:
            raise StoreError(f"failed to read {label} file: {exc}") from exc

        data = self.decrypt(blob)
        try:
            return model_type.model_validate_json(data)
        except ValidationError as exc:
            raise SerializationError(f"failed to unmarshal {label}: {exc}") from exc


def create_store(options: ManagerOptions) -> Store:
    """Build the store selected by ``options.store_type``.

    Raises:
        StoreBackendNotImplementedError: For the Kubernetes and Vault backends.
        UnsupportedStoreTypeError: For unknown selectors.
        EncryptionError: If the encryption key is not 32 bytes.
    """
    try:
        store_type = StoreType(options.store_type)
    except ValueError:
        raise UnsupportedStoreTypeError(
            f"unsupported store type: {options.store_type}"
        ) from None

    if store_type == StoreType.FILE:
        return FileStore(options.store_path, options.encryption_key)
    if store_type == StoreType.KUBERNETES:
        raise StoreBackendNotImplementedError("kubernetes store not implemented")
    if store_type == StoreType.VAULT:
        raise StoreBackendNotImplementedError("vault store not implemented")
    raise UnsupportedStoreTypeError(f"unsupported store type: {store_type.value}")
