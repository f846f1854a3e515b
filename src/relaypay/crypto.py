"""Encryption of wallet private keys at rest.

Uses AES-256-GCM. Ciphertexts are stored as ``nonce:tag:ciphertext`` with each
part hex encoded. The authentication tag is bound to a fixed associated-data
label, so ciphertext produced for another purpose never decrypts here.

Decryption fails closed: anything that does not authenticate raises
DecryptionFailed. Nothing is ever returned as-is.
"""

import binascii
import logging
import os
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from relaypay.errors import DecryptionFailed

logger = logging.getLogger(__name__)

ASSOCIATED_DATA = b"wallet-encryption"
KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16


def generate_encryption_key() -> str:
    """Generate a new encryption key.

    Returns:
        64 hex characters (32 random bytes)
    """
    return secrets.token_hex(KEY_BYTES)


def parse_key(key: str) -> bytes:
    """Decode a hex encryption key and check its length."""
    try:
        raw = bytes.fromhex(key.strip())
    except ValueError:
        raise ValueError("Encryption key must be hex encoded")
    if len(raw) != KEY_BYTES:
        raise ValueError(f"Encryption key must be {KEY_BYTES} bytes ({KEY_BYTES * 2} hex chars)")
    return raw


class EncryptionProvider:
    """Encrypts and decrypts wallet secrets with AES-256-GCM.

    Usage:
        provider = EncryptionProvider(key_hex)
        stored = provider.encrypt("0xabc...")
        secret = provider.decrypt(stored)
    """

    def __init__(self, key: str):
        """Initialize with a 64 hex char key."""
        self._aead = AESGCM(parse_key(key))

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a secret with a fresh random nonce."""
        nonce = os.urandom(NONCE_BYTES)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), ASSOCIATED_DATA)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return f"{nonce.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, stored: str) -> str:
        """Decrypt a stored secret.

        Raises:
            DecryptionFailed: On malformed input, wrong key or tampered data
        """
        parts = stored.split(":") if isinstance(stored, str) else []
        if len(parts) != 3:
            raise DecryptionFailed("Ciphertext is not in nonce:tag:data format")

        try:
            nonce, tag, ciphertext = (binascii.unhexlify(part) for part in parts)
        except (binascii.Error, ValueError):
            raise DecryptionFailed("Ciphertext is not valid hex")

        if len(nonce) != NONCE_BYTES or len(tag) != TAG_BYTES:
            raise DecryptionFailed("Ciphertext has an invalid nonce or tag length")

        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, ASSOCIATED_DATA)
        except InvalidTag:
            raise DecryptionFailed("Ciphertext failed authentication")

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise DecryptionFailed("Decrypted secret is not valid UTF-8")

    def reencrypt(self, stored: str, new_provider: "EncryptionProvider") -> str:
        """Re-encrypt a stored secret under another key (key rotation)."""
        return new_provider.encrypt(self.decrypt(stored))


def get_encryption_provider(key: Optional[str] = None) -> EncryptionProvider:
    """Get a provider using ENCRYPTION_KEY from settings.

    Raises:
        RuntimeError: If no key is configured
    """
    if key is None:
        from relaypay.config import get_settings

        key = get_settings().encryption_key

    if not key:
        logger.critical("ENCRYPTION_KEY is not set - wallet keys cannot be stored or read")
        raise RuntimeError("ENCRYPTION_KEY is not configured")

    return EncryptionProvider(key)
