"""Bearer credential storage for the reference client.

The agent only needs three capabilities: get, set, clear. Two stores ship:
an in-memory one (tests, short-lived scripts) and a file store that keeps
the token encrypted at rest with AES-GCM.

File format::

    ENC:v2:<base64(salt || nonce || ciphertext || tag)>

The AES key is stretched from a caller-supplied passphrase with
PBKDF2-HMAC-SHA256 over a random per-file salt.
"""

import base64
import binascii
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from timetrack.utils.logger import logger

_PREFIX = "ENC:v2:"
_SALT_SIZE = 16
_NONCE_SIZE = 12  # 96-bit nonce recommended for AES-GCM
_KEY_SIZE = 32    # 256-bit AES key
DEFAULT_ITERATIONS = 600_000


class CredentialStore(ABC):
    @abstractmethod
    def get_token(self) -> Optional[str]:
        ...

    @abstractmethod
    def set_token(self, token: str) -> None:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...


class MemoryCredentialStore(CredentialStore):
    def __init__(self, token: Optional[str] = None):
        self._token = token

    def get_token(self) -> Optional[str]:
        return self._token

    def set_token(self, token: str) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None


def _derive_key(passphrase: str, salt: bytes, iterations: int) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=_KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(passphrase.encode("utf-8"))


class FileCredentialStore(CredentialStore):
    def __init__(self, path: Union[str, Path], passphrase: str, iterations: int = DEFAULT_ITERATIONS):
        if not passphrase:
            raise ValueError("passphrase must not be empty")
        self.path = Path(path).expanduser()
        self._passphrase = passphrase
        self.iterations = iterations

    def _encrypt(self, plaintext: str) -> str:
        salt = os.urandom(_SALT_SIZE)
        nonce = os.urandom(_NONCE_SIZE)
        key = _derive_key(self._passphrase, salt, self.iterations)
        ct = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), associated_data=None)
        return _PREFIX + base64.b64encode(salt + nonce + ct).decode("ascii")

    def _decrypt(self, value: str) -> Optional[str]:
        if not value.startswith(_PREFIX):
            logger.warning("Credential file %s has an unknown format; ignoring it", self.path)
            return None
        try:
            raw = base64.b64decode(value[len(_PREFIX):].encode("ascii"), validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Credential file %s is not valid base64; ignoring it", self.path)
            return None
        if len(raw) <= _SALT_SIZE + _NONCE_SIZE:
            return None
        salt = raw[:_SALT_SIZE]
        nonce = raw[_SALT_SIZE:_SALT_SIZE + _NONCE_SIZE]
        ct = raw[_SALT_SIZE + _NONCE_SIZE:]
        key = _derive_key(self._passphrase, salt, self.iterations)
        try:
            return AESGCM(key).decrypt(nonce, ct, associated_data=None).decode("utf-8")
        except InvalidTag:
            # Wrong passphrase or tampered file; behave as if signed out.
            logger.warning("Credential file %s could not be decrypted", self.path)
            return None

    def get_token(self) -> Optional[str]:
        if not self.path.exists():
            return None
        return self._decrypt(self.path.read_text(encoding="utf-8").strip())

    def set_token(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(self._encrypt(token), encoding="utf-8")
        os.chmod(tmp, 0o600)
        os.replace(tmp, self.path)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
