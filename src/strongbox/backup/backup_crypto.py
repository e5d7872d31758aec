"""Backup encryption using AES-256-GCM with PBKDF2 key derivation.

- PBKDF2-SHA256 (100k iterations by default) with a fixed application salt
- AES-256-GCM for authenticated encryption
- Random 12-byte nonce per encryption, stored next to the ciphertext

The GCM tag is split off the ciphertext so the stored payload carries
nonce, tag and ciphertext as separate fields.
"""

import base64
import os
from dataclasses import dataclass
from typing import Any, Dict

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .exceptions import AuthenticationFailure, UnsupportedFormatVersion

FORMAT_VERSION = "1.0.0"
SUPPORTED_FORMAT_VERSIONS = frozenset({FORMAT_VERSION})


@dataclass(frozen=True)
class EncryptedPayload:
    """One encrypted backup as stored at rest."""
    nonce: bytes
    auth_tag: bytes
    ciphertext: bytes
    format_version: str = FORMAT_VERSION

    def to_dict(self) -> Dict[str, Any]:
        """Text-safe form: binary fields are base64 encoded."""
        return {
            "format_version": self.format_version,
            "nonce": base64.b64encode(self.nonce).decode("ascii"),
            "auth_tag": base64.b64encode(self.auth_tag).decode("ascii"),
            "ciphertext": base64.b64encode(self.ciphertext).decode("ascii"),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptedPayload":
        """Inverse of to_dict().

        Raises:
            ValueError: Missing field or invalid base64.
        """
        try:
            return cls(
                nonce=base64.b64decode(data["nonce"], validate=True),
                auth_tag=base64.b64decode(data["auth_tag"], validate=True),
                ciphertext=base64.b64decode(data["ciphertext"], validate=True),
                format_version=str(data["format_version"]),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed encrypted payload: {e}") from e


class BackupCrypto:
    """Encrypt/decrypt backup payloads with a user-provided passphrase.

    Args:
        iterations: PBKDF2 round count.  Deliberately expensive; tests
                    lower it through BackupConfig.kdf_iterations.
    """

    DEFAULT_ITERATIONS = 100_000
    KEY_LENGTH = 32              # 256 bits for AES-256
    NONCE_LENGTH = 12            # 96-bit nonce for GCM
    TAG_LENGTH = 16              # 128-bit GCM tag
    SALT = b"strongbox_backup_salt_v1"  # Static salt: same passphrase, same key

    def __init__(self, iterations: int = DEFAULT_ITERATIONS):
        if iterations < 1:
            raise ValueError("KDF iterations must be positive.")
        self.iterations = iterations

    def derive_key(self, passphrase: str) -> bytes:
        """Derive a 256-bit key from the passphrase via PBKDF2-SHA256."""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=self.KEY_LENGTH,
            salt=self.SALT,
            iterations=self.iterations,
            backend=default_backend(),
        )
        return kdf.derive(passphrase.encode("utf-8"))

    def encrypt(self, plaintext: bytes, passphrase: str) -> EncryptedPayload:
        """Encrypt plaintext with AES-256-GCM under a fresh random nonce."""
        key = self.derive_key(passphrase)
        nonce = os.urandom(self.NONCE_LENGTH)
        sealed = AESGCM(key).encrypt(nonce, plaintext, None)
        return EncryptedPayload(
            nonce=nonce,
            auth_tag=sealed[-self.TAG_LENGTH:],
            ciphertext=sealed[:-self.TAG_LENGTH],
        )

    def decrypt(self, payload: EncryptedPayload, passphrase: str) -> bytes:
        """Decrypt and authenticate a stored payload.

        Raises:
            AuthenticationFailure: Wrong passphrase or corrupt data.  The two
                cases are deliberately indistinguishable.
            UnsupportedFormatVersion: Payload written by an unknown format.
        """
        if payload.format_version not in SUPPORTED_FORMAT_VERSIONS:
            raise UnsupportedFormatVersion(payload.format_version)
        if (
            len(payload.nonce) != self.NONCE_LENGTH
            or len(payload.auth_tag) != self.TAG_LENGTH
        ):
            raise AuthenticationFailure("Invalid passphrase or corrupt backup.")
        key = self.derive_key(passphrase)
        try:
            return AESGCM(key).decrypt(
                payload.nonce, payload.ciphertext + payload.auth_tag, None
            )
        except InvalidTag:
            raise AuthenticationFailure("Invalid passphrase or corrupt backup.") from None
