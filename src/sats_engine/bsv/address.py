"""Address encoding — P2PKH addresses and WIF private keys.

- P2PKH address generation from public keys or public key hashes
- Address validation and network detection
- WIF (Wallet Import Format) encoding/decoding
"""

from __future__ import annotations

from sats_engine.bsv.keys import base58check_decode, base58check_encode
from sats_engine.utils.crypto import hash160

# Network version bytes
_MAINNET_PUBKEY_HASH = 0x00  # 1...
_TESTNET_PUBKEY_HASH = 0x6F  # m... or n...
_MAINNET_WIF = 0x80
_TESTNET_WIF = 0xEF


def pubkey_hash_to_address(pubkey_hash: bytes, *, testnet: bool = False) -> str:
    """Encode a 20-byte Hash160 as a Base58Check P2PKH address."""
    if len(pubkey_hash) != 20:
        msg = f"pubkey_hash must be 20 bytes, got {len(pubkey_hash)}"
        raise ValueError(msg)
    version = _TESTNET_PUBKEY_HASH if testnet else _MAINNET_PUBKEY_HASH
    return base58check_encode(bytes([version]) + pubkey_hash)


def pubkey_to_address(pubkey: bytes, *, testnet: bool = False) -> str:
    """Generate the P2PKH address for a SEC-encoded public key."""
    return pubkey_hash_to_address(hash160(pubkey), testnet=testnet)


def address_to_pubkey_hash(address: str) -> bytes:
    """Extract the 20-byte public key hash from a P2PKH address.

    Raises:
        ValueError: If the address is malformed or uses an unknown version byte.
    """
    payload = base58check_decode(address)
    if len(payload) != 21:
        msg = f"Invalid address payload length: {len(payload)}"
        raise ValueError(msg)
    if payload[0] not in (_MAINNET_PUBKEY_HASH, _TESTNET_PUBKEY_HASH):
        msg = f"Unsupported address version: {payload[0]:#04x}"
        raise ValueError(msg)
    return payload[1:]


def validate_address(address: str) -> bool:
    """Check if *address* is a valid mainnet or testnet P2PKH address."""
    try:
        address_to_pubkey_hash(address)
    except ValueError:
        return False
    return True


def privkey_to_wif(privkey: bytes, *, compressed: bool = True, testnet: bool = False) -> str:
    """Encode a 32-byte private key as WIF."""
    payload = bytes([_TESTNET_WIF if testnet else _MAINNET_WIF]) + privkey
    if compressed:
        payload += b"\x01"
    return base58check_encode(payload)


def wif_to_privkey(wif: str) -> tuple[bytes, bool, bool]:
    """Decode a WIF string.

    Returns:
        Tuple of (privkey_bytes, compressed, testnet).

    Raises:
        ValueError: If the WIF is malformed.
    """
    payload = base58check_decode(wif)
    if payload[:1] not in (bytes([_MAINNET_WIF]), bytes([_TESTNET_WIF])):
        msg = "Unknown WIF version byte"
        raise ValueError(msg)
    testnet = payload[0] == _TESTNET_WIF
    if len(payload) == 34 and payload[-1] == 0x01:
        return payload[1:33], True, testnet
    if len(payload) == 33:
        return payload[1:33], False, testnet
    msg = f"Invalid WIF payload length: {len(payload)}"
    raise ValueError(msg)
