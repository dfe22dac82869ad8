"""secp256k1 keys — Base58Check, ECDSA signing, BIP32 role keys.

Implements the key material used by the engine:
- Base58 / Base58Check encoding (addresses and WIF)
- Public key derivation and SEC compression
- Deterministic (RFC 6979) low-S ECDSA signatures in DER form
- Point arithmetic helpers used by counterparty key derivation
- BIP32 private derivation for the wallet's role keys
"""

from __future__ import annotations

import hashlib
import hmac
import struct
from dataclasses import dataclass

from ecdsa import SECP256k1, SigningKey, VerifyingKey
from ecdsa.der import UnexpectedDER
from ecdsa.ellipticcurve import INFINITY
from ecdsa.keys import BadSignatureError, MalformedPointError
from ecdsa.util import sigdecode_der, sigencode_der_canonize

from sats_engine.utils.crypto import hash160, sha256d

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CURVE = SECP256k1
CURVE_ORDER = CURVE.order
CURVE_GEN = CURVE.generator

_MASTER_HMAC_KEY = b"Bitcoin seed"
HARDENED = 0x80000000

# Role paths used by the desktop wallet this engine serves.
WALLET_PATH = "m/44'/236'/0'/1/0"
ORDINALS_PATH = "m/44'/236'/1'/0/0"
IDENTITY_PATH = "m/0'/236'/0'/0/0"


# ---------------------------------------------------------------------------
# Base58Check encoding / decoding
# ---------------------------------------------------------------------------

_B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def base58_encode(payload: bytes) -> str:
    """Encode raw bytes to Base58 (no checksum)."""
    n = int.from_bytes(payload, "big")
    chars: list[str] = []
    while n > 0:
        n, remainder = divmod(n, 58)
        chars.append(_B58_ALPHABET[remainder])
    leading = len(payload) - len(payload.lstrip(b"\x00"))
    return _B58_ALPHABET[0] * leading + "".join(reversed(chars))


def base58_decode(s: str) -> bytes:
    """Decode a Base58 string to raw bytes (no checksum).

    Raises:
        ValueError: If *s* contains a character outside the Base58 alphabet.
    """
    n = 0
    for char in s:
        idx = _B58_ALPHABET.find(char)
        if idx < 0:
            msg = f"Invalid Base58 character: {char!r}"
            raise ValueError(msg)
        n = n * 58 + idx
    body = n.to_bytes((n.bit_length() + 7) // 8, "big") if n > 0 else b""
    leading = len(s) - len(s.lstrip(_B58_ALPHABET[0]))
    return b"\x00" * leading + body


def base58check_encode(payload: bytes) -> str:
    """Encode bytes with a 4-byte SHA256d checksum (Base58Check)."""
    return base58_encode(payload + sha256d(payload)[:4])


def base58check_decode(s: str) -> bytes:
    """Decode a Base58Check string, verifying the checksum.

    Raises:
        ValueError: If the string is too short or the checksum is invalid.
    """
    raw = base58_decode(s)
    if len(raw) < 4:
        msg = "Base58Check string too short"
        raise ValueError(msg)
    payload, checksum = raw[:-4], raw[-4:]
    if sha256d(payload)[:4] != checksum:
        msg = "Base58Check checksum mismatch"
        raise ValueError(msg)
    return payload


# ---------------------------------------------------------------------------
# ECDSA helpers
# ---------------------------------------------------------------------------


def private_key_to_public_key(privkey_bytes: bytes, *, compressed: bool = True) -> bytes:
    """Derive the SEC-encoded public key for a 32-byte private key.

    Args:
        privkey_bytes: 32-byte big-endian scalar.
        compressed: If True, return the 33-byte compressed encoding.

    Returns:
        The public key bytes (33 compressed or 65 uncompressed).
    """
    vk = SigningKey.from_string(privkey_bytes, curve=CURVE).get_verifying_key()
    return vk.to_string("compressed" if compressed else "uncompressed")


def compress_public_key(pubkey: bytes) -> bytes:
    """Return the 33-byte compressed form of any SEC or raw 64-byte public key.

    Raises:
        ValueError: If *pubkey* is not a valid secp256k1 point.
    """
    return _verifying_key(pubkey).to_string("compressed")


def decompress_public_key(pubkey: bytes) -> bytes:
    """Return the 65-byte uncompressed (0x04-prefixed) form of a public key."""
    return _verifying_key(pubkey).to_string("uncompressed")


def is_valid_public_key(pubkey: bytes) -> bool:
    """Check whether *pubkey* decodes to a point on secp256k1."""
    try:
        _verifying_key(pubkey)
    except ValueError:
        return False
    return True


def sign_digest(privkey_bytes: bytes, digest: bytes) -> bytes:
    """Sign a 32-byte digest, returning a canonical low-S DER signature.

    Nonces are derived per RFC 6979, so the same key and digest always
    produce the same signature.
    """
    sk = SigningKey.from_string(privkey_bytes, curve=CURVE)
    return sk.sign_digest_deterministic(
        digest,
        hashfunc=hashlib.sha256,
        sigencode=sigencode_der_canonize,
    )


def verify_signature(pubkey_bytes: bytes, digest: bytes, signature: bytes) -> bool:
    """Verify a DER signature over a 32-byte digest."""
    try:
        vk = _verifying_key(pubkey_bytes)
        return vk.verify_digest(signature, digest, sigdecode=sigdecode_der)
    except (ValueError, BadSignatureError, UnexpectedDER):
        return False


# ---------------------------------------------------------------------------
# Point arithmetic
# ---------------------------------------------------------------------------


def pubkey_to_point(pubkey: bytes):  # type: ignore[no-untyped-def]
    """Decode a SEC public key to a curve point."""
    return _verifying_key(pubkey).pubkey.point


def point_to_pubkey(point) -> bytes:  # type: ignore[no-untyped-def]
    """Encode a curve point as a 33-byte compressed public key.

    Raises:
        ValueError: If *point* is the point at infinity.
    """
    if point == INFINITY:
        msg = "Cannot encode the point at infinity"
        raise ValueError(msg)
    return VerifyingKey.from_public_point(point, curve=CURVE).to_string("compressed")


def scalar_to_bytes(k: int) -> bytes:
    """Encode a scalar in ``[1, n)`` as 32 big-endian bytes."""
    if not 0 < k < CURVE_ORDER:
        msg = "Scalar out of range for secp256k1"
        raise ValueError(msg)
    return k.to_bytes(32, "big")


def _verifying_key(pubkey: bytes) -> VerifyingKey:
    try:
        return VerifyingKey.from_string(pubkey, curve=CURVE)
    except MalformedPointError as exc:
        msg = f"Invalid public key: {exc}"
        raise ValueError(msg) from exc


# ---------------------------------------------------------------------------
# BIP32 private derivation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExtendedPrivateKey:
    """A BIP32 extended private key.

    Only private (hardened and normal) derivation is needed: role keys are
    derived from the seed once at unlock and never re-exported as xpubs.

    Attributes:
        key: 32-byte private scalar.
        chain_code: 32-byte chain code.
        depth: Derivation depth (0 for master).
    """

    key: bytes
    chain_code: bytes
    depth: int = 0

    @classmethod
    def from_seed(cls, seed: bytes) -> ExtendedPrivateKey:
        """Create the master key from a BIP32 seed.

        Raises:
            ValueError: If the seed length is outside 16-64 bytes.
        """
        if not 16 <= len(seed) <= 64:
            msg = f"Seed must be 16-64 bytes, got {len(seed)}"
            raise ValueError(msg)
        digest = hmac.new(_MASTER_HMAC_KEY, seed, hashlib.sha512).digest()
        return cls(key=scalar_to_bytes(int.from_bytes(digest[:32], "big")), chain_code=digest[32:])

    def public_key(self) -> bytes:
        """Return the 33-byte compressed public key."""
        return private_key_to_public_key(self.key)

    def fingerprint(self) -> bytes:
        """First 4 bytes of Hash160(compressed pubkey)."""
        return hash160(self.public_key())[:4]

    def derive_child(self, index: int) -> ExtendedPrivateKey:
        """Derive the child at *index* (``>= HARDENED`` for hardened)."""
        if index >= HARDENED:
            data = b"\x00" + self.key + struct.pack(">I", index)
        else:
            data = self.public_key() + struct.pack(">I", index)
        digest = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        tweak = int.from_bytes(digest[:32], "big")
        if tweak >= CURVE_ORDER:
            msg = "Derived key is invalid (tweak >= curve order)"
            raise ValueError(msg)
        child = (tweak + int.from_bytes(self.key, "big")) % CURVE_ORDER
        return ExtendedPrivateKey(
            key=scalar_to_bytes(child),
            chain_code=digest[32:],
            depth=self.depth + 1,
        )

    def derive_path(self, path: str) -> ExtendedPrivateKey:
        """Derive along a path like ``m/44'/236'/0'/1/0``."""
        key = self
        for part in path.strip().split("/"):
            if part in ("m", "M", ""):
                continue
            hardened = part.endswith(("'", "h", "H"))
            index = int(part.rstrip("'hH"))
            key = key.derive_child(index + HARDENED if hardened else index)
        return key
