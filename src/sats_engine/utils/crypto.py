"""Cryptographic helpers — hashing and HMAC."""

from __future__ import annotations

import hashlib
import hmac


def sha256(data: bytes) -> bytes:
    """Single SHA-256 hash."""
    return hashlib.sha256(data).digest()


def sha256d(data: bytes) -> bytes:
    """Double SHA-256 hash (SHA256(SHA256(data)))."""
    return sha256(sha256(data))


def ripemd160(data: bytes) -> bytes:
    """RIPEMD-160 hash."""
    h = hashlib.new("ripemd160")
    h.update(data)
    return h.digest()


def hash160(data: bytes) -> bytes:
    """RIPEMD-160(SHA-256(data)), the Bitcoin Hash160."""
    return ripemd160(sha256(data))


def hmac_sha256(key: bytes, message: bytes) -> bytes:
    """HMAC-SHA256 of *message* keyed with *key*."""
    return hmac.new(key, message, hashlib.sha256).digest()
