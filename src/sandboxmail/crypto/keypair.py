"""Inbox KEM keys and the AEAD key schedule."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from pqcrypto.kem.ml_kem_768 import decrypt as mlkem_decapsulate
from pqcrypto.kem.ml_kem_768 import generate_keypair as mlkem_generate_keypair

from ..errors import InvalidSecretKeyError
from .constants import (
    AES_KEY_SIZE,
    HKDF_CONTEXT,
    MLKEM768_CIPHERTEXT_SIZE,
    MLKEM768_CPA_PRIVATE_KEY_SIZE,
    MLKEM768_PUBLIC_KEY_SIZE,
    MLKEM768_SECRET_KEY_SIZE,
)
from .utils import to_base64url

# The encoded secret key is cpaPrivateKey || publicKey || H(publicKey) || z.
_PUBLIC_KEY_SLICE = slice(
    MLKEM768_CPA_PRIVATE_KEY_SIZE, MLKEM768_CPA_PRIVATE_KEY_SIZE + MLKEM768_PUBLIC_KEY_SIZE
)


def _check_secret_key(secret_key: bytes) -> None:
    if len(secret_key) != MLKEM768_SECRET_KEY_SIZE:
        raise InvalidSecretKeyError(
            f"Invalid secret key length: {len(secret_key)}, expected {MLKEM768_SECRET_KEY_SIZE}"
        )


@dataclass(frozen=True)
class Keypair:
    """ML-KEM-768 keypair owned by exactly one inbox."""

    public_key: bytes
    secret_key: bytes = field(repr=False)

    @classmethod
    def generate(cls) -> Keypair:
        public_key, secret_key = mlkem_generate_keypair()
        return cls(public_key=bytes(public_key), secret_key=bytes(secret_key))

    @classmethod
    def from_secret_key(cls, secret_key: bytes) -> Keypair:
        """Rebuild a keypair from a secret key; the public half is embedded in it."""
        return cls(public_key=derive_public_key_from_secret(secret_key), secret_key=secret_key)

    @property
    def public_key_b64(self) -> str:
        """The public key as sent to the server when creating an inbox."""
        return to_base64url(self.public_key)

    def is_consistent(self) -> bool:
        """True when both halves have ML-KEM-768 sizes and belong together."""
        if len(self.public_key) != MLKEM768_PUBLIC_KEY_SIZE:
            return False
        if len(self.secret_key) != MLKEM768_SECRET_KEY_SIZE:
            return False
        return self.secret_key[_PUBLIC_KEY_SLICE] == self.public_key

    def decapsulate(self, ct_kem: bytes) -> bytes:
        """Recover the 32-byte shared secret for ``ct_kem``.

        A ciphertext produced for another key does not fail here: ML-KEM
        returns an unrelated secret and the AEAD tag check rejects it later.

        Raises:
            InvalidSecretKeyError: If the secret key or ciphertext is malformed.
        """
        _check_secret_key(self.secret_key)
        if len(ct_kem) != MLKEM768_CIPHERTEXT_SIZE:
            raise InvalidSecretKeyError(
                f"Invalid KEM ciphertext length: {len(ct_kem)}, "
                f"expected {MLKEM768_CIPHERTEXT_SIZE}"
            )
        return bytes(mlkem_decapsulate(self.secret_key, ct_kem))


def generate_keypair() -> Keypair:
    """Generate a fresh ML-KEM-768 keypair."""
    return Keypair.generate()


def derive_public_key_from_secret(secret_key: bytes) -> bytes:
    _check_secret_key(secret_key)
    return secret_key[_PUBLIC_KEY_SLICE]


def derive_key(shared_secret: bytes, ct_kem: bytes, aad: bytes) -> bytes:
    """Derive the AES-256-GCM key with HKDF-SHA-512.

    salt = SHA-256(ct_kem)
    info = context || len(aad) as u32 big-endian || aad
    """
    info = HKDF_CONTEXT.encode("ascii") + len(aad).to_bytes(4, "big") + aad
    hkdf = HKDF(
        algorithm=hashes.SHA512(),
        length=AES_KEY_SIZE,
        salt=hashlib.sha256(ct_kem).digest(),
        info=info,
    )
    return hkdf.derive(shared_secret)
