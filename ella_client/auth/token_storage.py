"""
Credential storage for the ELLA API client.

This module keeps the access token and refresh token in two named slots. The
durable substrate is pluggable (memory, system keyring, encrypted file); the
store itself never raises: read failures are cache misses and write failures
degrade to session-only storage.
"""

import os
import json
import logging
import base64
from pathlib import Path
from typing import Optional, Dict

import keyring
from keyring.errors import PasswordDeleteError
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ella_shared.interfaces import ICredentialBackend
from ella_shared.models import CredentialPair

logger = logging.getLogger(__name__)

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"

DEFAULT_ACCESS_TOKEN_KEY = "ella:token"
DEFAULT_REFRESH_TOKEN_KEY = "ella:refresh_token"


class TokenStorageError(Exception):
    """Raised by credential backends; never escapes CredentialStore."""
    pass


class InMemoryCredentialBackend(ICredentialBackend):
    """Process-local backend."""

    def __init__(self):
        self._values: Dict[str, str] = {}

    def read(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def write(self, key: str, value: str) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)


class KeyringCredentialBackend(ICredentialBackend):
    """Stores each slot as a password in the system keyring."""

    def __init__(self, service_name: str = "ella-client"):
        self.service_name = service_name

    def read(self, key: str) -> Optional[str]:
        return keyring.get_password(self.service_name, key)

    def write(self, key: str, value: str) -> None:
        keyring.set_password(self.service_name, key, value)

    def delete(self, key: str) -> None:
        try:
            keyring.delete_password(self.service_name, key)
        except PasswordDeleteError:
            pass


class EncryptedFileCredentialBackend(ICredentialBackend):
    """
    Stores all slots in one Fernet-encrypted JSON file.

    The encryption key lives in the system keyring when one is usable,
    otherwise in a key file with 0600 permissions next to the token file.
    """

    def __init__(
        self,
        storage_path: Optional[Path] = None,
        service_name: str = "ella-client",
        use_keyring: Optional[bool] = None
    ):
        self.service_name = service_name
        self.storage_path = Path(storage_path) if storage_path else self._get_default_storage_path()
        self.key_path = self.storage_path.with_suffix('.key')
        self.keyring_available = (
            is_keyring_available(service_name) if use_keyring is None else use_keyring
        )
        self._encryption_key: Optional[bytes] = None

    def _get_default_storage_path(self) -> Path:
        """Get path for encrypted file storage."""
        xdg_config = os.environ.get('XDG_CONFIG_HOME')
        if xdg_config:
            config_dir = Path(xdg_config) / 'ella-client'
        else:
            config_dir = Path.home() / '.config' / 'ella-client'
        return config_dir / 'credentials.enc'

    def _get_encryption_key(self) -> bytes:
        """Get or create the Fernet key."""
        if self._encryption_key:
            return self._encryption_key

        if self.keyring_available:
            try:
                stored_key = keyring.get_password(self.service_name, "encryption_key")
                if stored_key:
                    self._encryption_key = base64.b64decode(stored_key.encode())
                    return self._encryption_key
            except Exception as e:
                logger.warning(f"Failed to get encryption key from keyring: {e}")
        elif self.key_path.exists():
            self._encryption_key = self.key_path.read_bytes().strip()
            return self._encryption_key

        password = os.urandom(32)
        salt = os.urandom(16)
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=100000,
        )
        key = base64.urlsafe_b64encode(kdf.derive(password))

        stored = False
        if self.keyring_available:
            try:
                keyring.set_password(self.service_name, "encryption_key", base64.b64encode(key).decode())
                stored = True
            except Exception as e:
                logger.warning(f"Failed to store encryption key in keyring: {e}")

        if not stored:
            self.key_path.parent.mkdir(parents=True, exist_ok=True)
            self.key_path.write_bytes(key)
            os.chmod(self.key_path, 0o600)

        self._encryption_key = key
        return key

    def _load_all(self) -> Dict[str, str]:
        if not self.storage_path.exists():
            return {}
        fernet = Fernet(self._get_encryption_key())
        try:
            decrypted = fernet.decrypt(self.storage_path.read_bytes()).decode()
        except InvalidToken:
            raise TokenStorageError(f"Credential file cannot be decrypted: {self.storage_path}")
        return json.loads(decrypted)

    def _save_all(self, values: Dict[str, str]) -> None:
        if not values:
            if self.storage_path.exists():
                self.storage_path.unlink()
            return

        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        fernet = Fernet(self._get_encryption_key())
        self.storage_path.write_bytes(fernet.encrypt(json.dumps(values).encode()))
        os.chmod(self.storage_path, 0o600)

    def read(self, key: str) -> Optional[str]:
        return self._load_all().get(key)

    def write(self, key: str, value: str) -> None:
        values = self._load_all()
        values[key] = value
        self._save_all(values)

    def delete(self, key: str) -> None:
        values = self._load_all()
        if key in values:
            del values[key]
            self._save_all(values)


def is_keyring_available(service_name: str = "ella-client") -> bool:
    """Check that the system keyring round-trips a value."""
    try:
        test_key = f"{service_name}_test"
        keyring.set_password(service_name, test_key, "test")
        result = keyring.get_password(service_name, test_key)
        keyring.delete_password(service_name, test_key)
        return result == "test"
    except Exception as e:
        logger.debug(f"Keyring not available: {e}")
        return False


def create_credential_backend(
    kind: str = "auto",
    service_name: str = "ella-client",
    storage_path: Optional[Path] = None
) -> ICredentialBackend:
    """
    Build a backend by name.

    Args:
        kind: 'memory', 'keyring', 'file' or 'auto' (keyring when usable, else file)
        service_name: Keyring service namespace
        storage_path: Encrypted file location for the 'file' backend

    Returns:
        Credential backend instance
    """
    kind = (kind or "auto").lower()

    if kind == "memory":
        return InMemoryCredentialBackend()
    if kind == "keyring":
        return KeyringCredentialBackend(service_name)
    if kind == "file":
        return EncryptedFileCredentialBackend(storage_path, service_name)
    if kind == "auto":
        if is_keyring_available(service_name):
            return KeyringCredentialBackend(service_name)
        return EncryptedFileCredentialBackend(storage_path, service_name, use_keyring=False)

    raise ValueError(f"Unknown credential backend: {kind}")


class CredentialStore:
    """
    Named slots for the access token and the refresh token.

    Every value written in this process is also kept in a session layer, so a
    failed durable write still leaves the value readable until the process
    exits. Clearing leaves a tombstone in the session layer, so a failed
    durable delete does not resurrect the old value.
    """

    def __init__(
        self,
        backend: Optional[ICredentialBackend] = None,
        access_token_key: str = DEFAULT_ACCESS_TOKEN_KEY,
        refresh_token_key: str = DEFAULT_REFRESH_TOKEN_KEY
    ):
        self.backend = backend or InMemoryCredentialBackend()
        self._keys = {ACCESS_TOKEN: access_token_key, REFRESH_TOKEN: refresh_token_key}
        self._session: Dict[str, Optional[str]] = {}

    def _key(self, name: str) -> str:
        return self._keys.get(name, name)

    def get(self, name: str) -> Optional[str]:
        """Return the stored value, or None if absent or unreadable."""
        key = self._key(name)
        if key in self._session:
            return self._session[key]

        try:
            return self.backend.read(key)
        except Exception as e:
            logger.warning(f"Failed to read credential '{name}', treating as absent: {e}")
            return None

    def set(self, name: str, value: str) -> None:
        """Store a value. Persistence failures are logged and swallowed."""
        key = self._key(name)
        self._session[key] = value

        try:
            self.backend.write(key, value)
        except Exception as e:
            logger.warning(f"Failed to persist credential '{name}', keeping it for this session only: {e}")

    def clear(self, name: str) -> None:
        """Remove a value."""
        key = self._key(name)
        self._session[key] = None

        try:
            self.backend.delete(key)
        except Exception as e:
            logger.warning(f"Failed to remove credential '{name}' from storage: {e}")

    def clear_all(self) -> None:
        """Remove both the access token and the refresh token."""
        self.clear(ACCESS_TOKEN)
        self.clear(REFRESH_TOKEN)
        logger.info("Stored credentials cleared")

    def get_access_token(self) -> Optional[str]:
        return self.get(ACCESS_TOKEN)

    def get_refresh_token(self) -> Optional[str]:
        return self.get(REFRESH_TOKEN)

    def get_credentials(self) -> Optional[CredentialPair]:
        access_token = self.get_access_token()
        if not access_token:
            return None
        return CredentialPair(access_token, self.get_refresh_token())

    def store_credentials(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        """
        Store a fresh access token and, when given, a rotated refresh token.

        A None refresh token leaves the stored one untouched.
        """
        self.set(ACCESS_TOKEN, access_token)
        if refresh_token:
            self.set(REFRESH_TOKEN, refresh_token)
