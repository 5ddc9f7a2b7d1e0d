"""
Vault Crypto Core — Key derivation, encryption/decryption, and serialization.

Implements the two cryptographic engines of the vault:
- KDF: PBKDF2-HMAC-SHA256(master_password, salt, 600k iterations) → 256-bit key
- AEAD: AES-256-GCM with a fresh random 96-bit IV per call → EncryptedBlob

Security Note:
    Never log plaintext, keys or ciphertext values.
    IVs are random 96-bit; collision probability negligible under normal usage.
"""
import os
import base64
import asyncio
import binascii
import logging
from typing import Any

import orjson
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..conf import PBKDF2_ITERATIONS, SALT_LENGTH, IV_LENGTH, KEY_LENGTH
from ..exceptions import DecryptionFailed
from .models import EncryptedBlob

logger = logging.getLogger("passcommit.vault")

TAG_LENGTH = 16  # GCM tag


# ---------------------------------------------------------------------------
# Encoding helpers
# ---------------------------------------------------------------------------

def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(data: str) -> bytes:
    """Strict base64 decoding.

    Raises:
        ValueError: If data is not valid base64.
    """
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, TypeError) as err:
        raise ValueError(f"Invalid base64 data: {err}") from err


def generate_salt() -> bytes:
    """Generate a random 16-byte salt for a new key-derivation epoch."""
    return os.urandom(SALT_LENGTH)


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(
    password: str,
    salt: bytes,
    iterations: int = PBKDF2_ITERATIONS,
) -> bytes:
    """Derive a 32-byte AES-256 key from a master password using PBKDF2.

    Pure function of its inputs; nothing is cached between calls.

    Args:
        password: The master password.
        salt: 16-byte vault salt.
        iterations: PBKDF2 iteration count.

    Returns:
        32-byte derived key.

    Raises:
        ValueError: If the salt is not exactly 16 bytes.
    """
    if len(salt) != SALT_LENGTH:
        raise ValueError(
            f"salt must be exactly {SALT_LENGTH} bytes, got {len(salt)}"
        )
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


async def derive_key_async(
    password: str,
    salt: bytes,
    iterations: int = PBKDF2_ITERATIONS,
) -> bytes:
    """Run :func:`derive_key` in a worker thread."""
    return await asyncio.to_thread(derive_key, password, salt, iterations)


# ---------------------------------------------------------------------------
# Authenticated encryption
# ---------------------------------------------------------------------------

def _check_key(key: bytes) -> None:
    if len(key) != KEY_LENGTH:
        raise ValueError(
            f"key must be exactly {KEY_LENGTH} bytes, got {len(key)}"
        )


def encrypt(plaintext: bytes, key: bytes, salt: bytes) -> EncryptedBlob:
    """Encrypt plaintext with AES-256-GCM under a fresh random IV.

    Args:
        plaintext: Data to encrypt.
        key: 32-byte session key.
        salt: Vault salt, carried in the blob as metadata.

    Returns:
        EncryptedBlob with base64 ciphertext (tag appended), iv and salt.
    """
    _check_key(key)
    iv = os.urandom(IV_LENGTH)
    ct = AESGCM(key).encrypt(iv, plaintext, None)
    return EncryptedBlob(
        ciphertext=b64encode(ct),
        iv=b64encode(iv),
        salt=b64encode(salt),
    )


def decrypt(blob: EncryptedBlob, key: bytes) -> bytes:
    """Decrypt an EncryptedBlob.

    Args:
        blob: Blob produced by :func:`encrypt`.
        key: 32-byte session key.

    Returns:
        Decrypted plaintext bytes.

    Raises:
        DecryptionFailed: Wrong key, tampered data or malformed blob.
    """
    _check_key(key)
    try:
        iv = b64decode(blob.iv)
        ct = b64decode(blob.ciphertext)
    except ValueError as err:
        raise DecryptionFailed(f"Malformed encrypted blob: {err}") from err
    if len(iv) != IV_LENGTH:
        raise DecryptionFailed(
            f"Malformed encrypted blob: iv is {len(iv)} bytes"
        )
    if len(ct) < TAG_LENGTH:
        raise DecryptionFailed(
            f"Malformed encrypted blob: ciphertext too short ({len(ct)} bytes)"
        )
    try:
        return AESGCM(key).decrypt(iv, ct, None)
    except InvalidTag:
        raise DecryptionFailed(
            "Decryption failed: invalid key or tampered data"
        ) from None


def encrypt_text(text: str, key: bytes, salt: bytes) -> str:
    """Encrypt a string and return the blob as a JSON string."""
    return encrypt(text.encode("utf-8"), key, salt).to_json()


def decrypt_text(data: str, key: bytes) -> str:
    """Decrypt a JSON-string blob produced by :func:`encrypt_text`.

    Raises:
        DecryptionFailed: Wrong key, tampered data or malformed blob.
    """
    try:
        blob = EncryptedBlob.from_json(data)
    except ValueError as err:
        # orjson.JSONDecodeError and pydantic ValidationError are ValueErrors
        raise DecryptionFailed(f"Malformed encrypted blob: {err}") from err
    return decrypt(blob, key).decode("utf-8")


# ---------------------------------------------------------------------------
# Key export (wrapped key)
# ---------------------------------------------------------------------------

def export_key(key: bytes) -> dict[str, Any]:
    """Export a session key as a symmetric JSON Web Key."""
    _check_key(key)
    return {
        "kty": "oct",
        "k": base64.urlsafe_b64encode(key).rstrip(b"=").decode("ascii"),
        "alg": "A256GCM",
        "ext": True,
        "key_ops": ["encrypt", "decrypt"],
    }


def import_key(jwk: dict[str, Any]) -> bytes:
    """Import a session key exported by :func:`export_key`.

    Raises:
        ValueError: If the JWK is not a 256-bit symmetric key.
    """
    if not isinstance(jwk, dict) or jwk.get("kty") != "oct":
        raise ValueError("Wrapped key is not a symmetric JWK")
    encoded = jwk.get("k")
    if not isinstance(encoded, str):
        raise ValueError("Wrapped key has no key material")
    padded = encoded + "=" * (-len(encoded) % 4)
    try:
        key = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as err:
        raise ValueError(f"Wrapped key material is not base64url: {err}") from err
    _check_key(key)
    return key


# ---------------------------------------------------------------------------
# Value serialization
# ---------------------------------------------------------------------------

def serialize_records(records: list[dict[str, Any]]) -> bytes:
    """Serialize the record list to JSON bytes for encryption."""
    return orjson.dumps(records)


def deserialize_records(data: bytes) -> list[dict[str, Any]]:
    """Parse decrypted vault plaintext back into a list of record dicts.

    Raises:
        ValueError: If the plaintext is not a JSON list.
    """
    parsed = orjson.loads(data)
    if not isinstance(parsed, list):
        raise ValueError("Vault plaintext is not a list of records")
    return parsed
