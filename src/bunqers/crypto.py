"""Cryptographic utilities for bunqers.

Handles the client key pair, canonical JSON bodies, and RSA signing and
verification. bunq signs with RSA PKCS#1 v1.5 over SHA-256 and exchanges
public keys as PEM, so that is what everything here speaks.
"""
from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .errors import KeyGenerationError, MalformedSignatureError


MIN_KEY_SIZE = 2048
PUBLIC_EXPONENT = 65537


class KeyManager:
    """Holds the client's RSA key pair.

    The private key never leaves this object: there is no export for it and
    ``repr`` only shows the key size.

    Example::

        keys = KeyManager.generate()
        pem = keys.public_key_pem()
        signature = keys.sign(b'{"secret":"..."}')
    """

    def __init__(self, private_key: rsa.RSAPrivateKey):
        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise ValueError("KeyManager requires an RSA private key")
        if private_key.key_size < MIN_KEY_SIZE:
            raise ValueError(
                f"RSA key must be at least {MIN_KEY_SIZE} bits, got {private_key.key_size}"
            )
        self._private_key = private_key

    @classmethod
    def generate(cls, key_size: int = MIN_KEY_SIZE) -> KeyManager:
        """Generate a fresh RSA key pair.

        Raises:
            ValueError: If ``key_size`` is below 2048 bits.
            KeyGenerationError: If the crypto backend cannot produce a key.
        """
        if key_size < MIN_KEY_SIZE:
            raise ValueError(f"RSA key must be at least {MIN_KEY_SIZE} bits, got {key_size}")
        try:
            private_key = rsa.generate_private_key(
                public_exponent=PUBLIC_EXPONENT, key_size=key_size
            )
        except (UnsupportedAlgorithm, ValueError, OSError) as exc:
            raise KeyGenerationError(f"Could not generate RSA key: {exc}") from exc
        return cls(private_key)

    @classmethod
    def from_private_pem(cls, pem: str | bytes) -> KeyManager:
        """Load a caller-managed PEM private key (PKCS#1 or PKCS#8, unencrypted).

        Raises:
            ValueError: If the PEM is malformed or not an RSA key.
        """
        data = pem.encode("ascii") if isinstance(pem, str) else pem
        try:
            private_key = serialization.load_pem_private_key(data, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise ValueError(f"Invalid private key PEM: {exc}") from exc
        return cls(private_key)

    @property
    def key_size(self) -> int:
        return self._private_key.key_size

    def public_key_pem(self) -> str:
        """Public half as a PEM SubjectPublicKeyInfo string."""
        pem = self._private_key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return pem.decode("ascii")

    def sign(self, message: bytes) -> str:
        """Sign ``message`` and return the base64 signature."""
        signature = self._private_key.sign(message, padding.PKCS1v15(), hashes.SHA256())
        return base64.b64encode(signature).decode("ascii")

    def __repr__(self) -> str:
        return f"KeyManager(rsa={self.key_size})"


def sort_keys_deep(obj: Any) -> Any:
    """Recursively sort dictionary keys for deterministic serialization."""
    if isinstance(obj, dict):
        return {k: sort_keys_deep(v) for k, v in sorted(obj.items())}
    if isinstance(obj, list):
        return [sort_keys_deep(item) for item in obj]
    return obj


def canonicalize(obj: Any) -> bytes:
    """Produce the request body bytes: sorted keys, compact separators, UTF-8.

    These exact bytes are both transmitted and signed.
    """
    return json.dumps(
        sort_keys_deep(obj), separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def load_public_key(public_key_pem: str) -> rsa.RSAPublicKey:
    """Parse a server public key PEM.

    Raises:
        MalformedSignatureError: If the PEM cannot be loaded as an RSA key.
    """
    try:
        public_key = serialization.load_pem_public_key(public_key_pem.encode("ascii"))
    except (ValueError, TypeError, UnicodeEncodeError, UnsupportedAlgorithm) as exc:
        raise MalformedSignatureError(
            f"Server public key is not a valid PEM: {exc}", code="MALFORMED_SERVER_KEY"
        ) from exc
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise MalformedSignatureError(
            "Server public key is not an RSA key", code="MALFORMED_SERVER_KEY"
        )
    return public_key


def decode_signature(signature_b64: str) -> bytes:
    """Strict base64 decode of a signature header value.

    Raises:
        MalformedSignatureError: If the value is not valid base64.
    """
    try:
        return base64.b64decode(signature_b64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedSignatureError(f"Signature is not valid base64: {exc}") from exc


def verify_signature(message: bytes, signature_b64: str, public_key_pem: str) -> bool:
    """Verify an RSA PKCS#1 v1.5 / SHA-256 signature over ``message``.

    Returns False for a well-formed signature that does not match. Raises
    ``MalformedSignatureError`` when the signature or key cannot be parsed.
    """
    public_key = load_public_key(public_key_pem)
    signature = decode_signature(signature_b64)
    try:
        public_key.verify(signature, message, padding.PKCS1v15(), hashes.SHA256())
    except InvalidSignature:
        return False
    return True
