"""
Encrypted at-rest storage for database passwords.

The whole `name -> password` map is sealed as a single AES-256-GCM blob
under a key derived with scrypt from the operator's secret. Each write
decrypts the map, applies one change and re-encrypts everything with a new
salt and IV before atomically replacing the file.

A SHA-256 digest of the secret is stored next to the blob so a wrong secret
is detected before any key derivation happens. Once decryption fails the
vault stays in the failing state: reads come back empty and writes are
refused until the operator either restarts with the right secret or calls
`reset()` to accept the loss of the stored passwords.
"""
import hashlib
import hmac
import json
import os
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Set

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .errors import ConfigurationError, DecryptionError
from .logger import get_logger
from .metrics import VAULT_DECRYPTION_FAILING
from .mutation_queue import MutationQueue
from .utils import atomic_write_json

logger = get_logger(__name__)

SALT_BYTES = 16
IV_BYTES = 12
TAG_BYTES = 16
KEY_BYTES = 32
SCRYPT_N = 2 ** 14
SCRYPT_R = 8
SCRYPT_P = 1


def secret_digest(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def derive_key(secret: str, salt: bytes) -> bytes:
    kdf = Scrypt(salt=salt, length=KEY_BYTES, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(secret.encode("utf-8"))


def seal(secret: str, passwords: Dict[str, str]) -> dict:
    """Encrypts the full password map into the on-disk blob layout."""
    salt = os.urandom(SALT_BYTES)
    iv = os.urandom(IV_BYTES)
    key = derive_key(secret, salt)
    sealed = AESGCM(key).encrypt(iv, json.dumps(passwords).encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
    return {
        "secretHash": secret_digest(secret),
        "salt": salt.hex(),
        "iv": iv.hex(),
        "authTag": tag.hex(),
        "encrypted": ciphertext.hex(),
    }


def unseal(secret: str, blob: dict) -> Dict[str, str]:
    """
    Decrypts a blob produced by `seal`.

    Raises DecryptionError when the secret does not match the stored digest,
    the authentication tag does not verify or the payload is malformed.
    """
    if not isinstance(blob, dict):
        raise DecryptionError("Password store is not a JSON object")

    stored_hash = blob.get("secretHash")
    if not isinstance(stored_hash, str) or not hmac.compare_digest(
        stored_hash, secret_digest(secret)
    ):
        raise DecryptionError("Encryption secret does not match the password store")

    try:
        salt = bytes.fromhex(blob["salt"])
        iv = bytes.fromhex(blob["iv"])
        tag = bytes.fromhex(blob["authTag"])
        ciphertext = bytes.fromhex(blob["encrypted"])
        key = derive_key(secret, salt)
        plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
        passwords = json.loads(plaintext.decode("utf-8"))
    except InvalidTag as e:
        raise DecryptionError("Password store failed authentication") from e
    except (KeyError, TypeError, ValueError) as e:
        raise DecryptionError(f"Password store is malformed: {e}") from e

    if not isinstance(passwords, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in passwords.items()
    ):
        raise DecryptionError("Password store does not contain a name to password map")
    return passwords


@dataclass
class VaultStatus:
    enabled: bool
    decryption_failing: bool


class CredentialVault:
    def __init__(self, path: str, secret: Optional[str], queue: MutationQueue):
        self.path = path
        self._secret = secret or None
        self._queue = queue
        self._decryption_failing = False
        if not self._secret:
            logger.warning("No encryption secret configured, password storage is disabled.")

    @property
    def enabled(self) -> bool:
        return self._secret is not None

    @property
    def decryption_failing(self) -> bool:
        """Last known decryption state, without touching the store."""
        return self._decryption_failing

    def _read(self) -> Dict[str, str]:
        if self._decryption_failing:
            raise DecryptionError("Password store cannot be decrypted with the configured secret")
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                blob = json.load(f)
            return unseal(self._secret, blob)
        except FileNotFoundError:
            # Missing or removed by reset() while we were reading
            return {}
        except (OSError, ValueError, DecryptionError) as e:
            self._decryption_failing = True
            VAULT_DECRYPTION_FAILING.set(1)
            logger.error(f"Failed to decrypt password store {self.path}: {e}")
            if isinstance(e, DecryptionError):
                raise
            raise DecryptionError(f"Password store is unreadable: {e}") from e

    def _write(self, passwords: Dict[str, str]) -> None:
        atomic_write_json(self.path, seal(self._secret, passwords), mode=0o600)

    def _mutate(self, change: Callable[[Dict[str, str]], bool]) -> None:
        passwords = self._read()
        if change(passwords):
            self._write(passwords)

    def get(self, name: str) -> Optional[str]:
        if not self.enabled:
            return None
        try:
            return self._read().get(name)
        except DecryptionError:
            return None

    def list(self) -> Set[str]:
        if not self.enabled:
            return set()
        try:
            return set(self._read())
        except DecryptionError:
            return set()

    def set(self, name: str, password: str) -> None:
        if not self.enabled:
            raise ConfigurationError("Password storage is disabled: no encryption secret configured")

        def change(passwords):
            passwords[name] = password
            return True

        self._queue.run(self._mutate, change)
        logger.info(f"Stored password for '{name}'.")

    def delete(self, name: str) -> None:
        if not self.enabled:
            raise ConfigurationError("Password storage is disabled: no encryption secret configured")

        def change(passwords):
            return passwords.pop(name, None) is not None

        self._queue.run(self._mutate, change)
        logger.info(f"Deleted password for '{name}'.")

    def reset(self) -> None:
        """Discards the password store, accepting the loss of every stored password."""

        def wipe():
            if os.path.exists(self.path):
                os.remove(self.path)
            self._decryption_failing = False
            VAULT_DECRYPTION_FAILING.set(0)

        self._queue.run(wipe)
        logger.warning(f"Password store {self.path} was reset by the operator.")

    def status(self) -> VaultStatus:
        if self.enabled and not self._decryption_failing:
            try:
                self._read()
            except DecryptionError:
                pass
        return VaultStatus(enabled=self.enabled, decryption_failing=self._decryption_failing)
