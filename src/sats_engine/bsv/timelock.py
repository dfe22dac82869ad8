"""OP_PUSH_TX timelock scripts — build, parse and size.

The locking script is an sCrypt-compiled template: it takes a
``<signature> <publicKey> <preimage>`` solution, checks the preimage against
the spending transaction by re-deriving a signature on-chain, then asserts
that the preimage's nLockTime is at least the embedded unlock height, that
the input sequence is below final, and that ``<publicKey>`` hashes to the
embedded public key hash.

Layout of a compiled script::

    LOCKUP_PREFIX (102 bytes) | 0x14 <pkh 20 bytes> | <n> <height LE n bytes> | LOCKUP_SUFFIX
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sats_engine.bsv.keys import is_valid_public_key
from sats_engine.bsv.script import compile_asm
from sats_engine.utils.crypto import hash160

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Template
# ---------------------------------------------------------------------------

LOCKUP_PREFIX = (
    "97dfd76851bf465e8f715593b217714858bbe9570ff3bd5e33840a34e20ff026 "
    "02ba79df5f8ae7604a9830f03c7933028186aede0675a16f025dc4f8be8eec0382 "
    "1008ce7480da41702918d1ec8e6849ba32b4d65b1e40dc669c31a1e6306b266c "
    "0 0"
)

LOCKUP_SUFFIX = (
    "OP_NOP 0 OP_PICK 0065cd1d OP_LESSTHAN OP_VERIFY 0 OP_PICK OP_4 OP_ROLL OP_DROP OP_3 "
    "OP_ROLL OP_3 OP_ROLL OP_3 OP_ROLL OP_1 OP_PICK OP_3 OP_ROLL OP_DROP OP_2 OP_ROLL "
    "OP_2 OP_ROLL OP_DROP OP_DROP OP_NOP OP_5 OP_PICK 41 OP_NOP OP_1 OP_PICK OP_7 "
    "OP_PICK OP_7 OP_PICK "
    "0ac407f0e4bd44bfc207355a778b046225a7068fc59ee7eda43ad905aadbffc800 "
    "6c266b30e6a1319c66dc401e5bd6b432ba49688eecd118297041da8074ce0810 OP_9 OP_PICK OP_6 "
    "OP_PICK OP_NOP OP_6 OP_PICK OP_HASH256 0 OP_PICK OP_NOP 0 OP_PICK OP_1 OP_SPLIT "
    "OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT "
    "OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT "
    "OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT "
    "OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT "
    "OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT "
    "OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP "
    "OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT "
    "OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP "
    "OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT "
    "OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP "
    "OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT 00 OP_CAT OP_BIN2NUM OP_1 "
    "OP_ROLL OP_DROP OP_NOP OP_7 OP_PICK OP_6 OP_PICK OP_6 OP_PICK OP_6 OP_PICK OP_6 "
    "OP_PICK OP_NOP OP_3 OP_PICK OP_6 OP_PICK OP_4 OP_PICK OP_7 OP_PICK OP_MUL OP_ADD "
    "OP_MUL 414136d08c5ed2bf3ba048afe6dcaebafeffffffffffffffffffffffffffffff00 OP_1 "
    "OP_PICK OP_1 OP_PICK OP_NOP OP_1 OP_PICK OP_1 OP_PICK OP_MOD 0 OP_PICK 0 "
    "OP_LESSTHAN OP_IF 0 OP_PICK OP_2 OP_PICK OP_ADD OP_ELSE 0 OP_PICK OP_ENDIF OP_1 "
    "OP_ROLL OP_DROP OP_1 OP_ROLL OP_DROP OP_1 OP_ROLL OP_DROP OP_NOP OP_2 OP_ROLL "
    "OP_DROP OP_1 OP_ROLL OP_1 OP_PICK OP_1 OP_PICK OP_2 OP_DIV OP_GREATERTHAN OP_IF 0 "
    "OP_PICK OP_2 OP_PICK OP_SUB OP_2 OP_ROLL OP_DROP OP_1 OP_ROLL OP_ENDIF OP_3 OP_PICK "
    "OP_SIZE OP_NIP OP_2 OP_PICK OP_SIZE OP_NIP OP_3 OP_PICK 20 OP_NUM2BIN OP_1 OP_SPLIT "
    "OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT "
    "OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT "
    "OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT "
    "OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT "
    "OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT OP_1 OP_SPLIT "
    "OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP "
    "OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT "
    "OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP "
    "OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT "
    "OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP "
    "OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT OP_SWAP OP_CAT 20 OP_2 OP_PICK OP_SUB OP_SPLIT "
    "OP_NIP OP_4 OP_3 OP_PICK OP_ADD OP_2 OP_PICK OP_ADD 30 OP_1 OP_PICK OP_CAT OP_2 "
    "OP_CAT OP_4 OP_PICK OP_CAT OP_8 OP_PICK OP_CAT OP_2 OP_CAT OP_3 OP_PICK OP_CAT OP_2 "
    "OP_PICK OP_CAT OP_7 OP_PICK OP_CAT 0 OP_PICK OP_1 OP_ROLL OP_DROP OP_1 OP_ROLL "
    "OP_DROP OP_1 OP_ROLL OP_DROP OP_1 OP_ROLL OP_DROP OP_1 OP_ROLL OP_DROP OP_1 OP_ROLL "
    "OP_DROP OP_1 OP_ROLL OP_DROP OP_1 OP_ROLL OP_DROP OP_1 OP_ROLL OP_DROP OP_1 OP_ROLL "
    "OP_DROP OP_1 OP_ROLL OP_DROP OP_1 OP_ROLL OP_DROP OP_1 OP_ROLL OP_DROP OP_NOP 0 "
    "OP_PICK OP_7 OP_PICK OP_CHECKSIG OP_1 OP_ROLL OP_DROP OP_1 OP_ROLL OP_DROP OP_1 "
    "OP_ROLL OP_DROP OP_1 OP_ROLL OP_DROP OP_1 OP_ROLL OP_DROP OP_1 OP_ROLL OP_DROP OP_1 "
    "OP_ROLL OP_DROP OP_1 OP_ROLL OP_DROP OP_1 OP_ROLL OP_DROP OP_NOP OP_1 OP_ROLL "
    "OP_DROP OP_1 OP_ROLL OP_DROP OP_NOP OP_VERIFY OP_5 OP_PICK OP_NOP 0 OP_PICK OP_NOP "
    "0 OP_PICK OP_SIZE OP_NIP OP_1 OP_PICK OP_1 OP_PICK OP_4 OP_SUB OP_SPLIT OP_DROP "
    "OP_1 OP_PICK OP_8 OP_SUB OP_SPLIT OP_NIP OP_1 OP_ROLL OP_DROP OP_1 OP_ROLL OP_DROP "
    "OP_NOP OP_NOP 0 OP_PICK 00 OP_CAT OP_BIN2NUM OP_1 OP_ROLL OP_DROP OP_NOP OP_1 "
    "OP_ROLL OP_DROP OP_NOP 0065cd1d OP_LESSTHAN OP_VERIFY OP_5 OP_PICK OP_NOP 0 OP_PICK "
    "OP_NOP 0 OP_PICK OP_SIZE OP_NIP OP_1 OP_PICK OP_1 OP_PICK 28 OP_SUB OP_SPLIT "
    "OP_DROP OP_1 OP_PICK 2c OP_SUB OP_SPLIT OP_NIP OP_1 OP_ROLL OP_DROP OP_1 OP_ROLL "
    "OP_DROP OP_NOP OP_NOP 0 OP_PICK 00 OP_CAT OP_BIN2NUM OP_1 OP_ROLL OP_DROP OP_NOP "
    "OP_1 OP_ROLL OP_DROP OP_NOP ffffffff00 OP_LESSTHAN OP_VERIFY OP_5 OP_PICK OP_NOP 0 "
    "OP_PICK OP_NOP 0 OP_PICK OP_SIZE OP_NIP OP_1 OP_PICK OP_1 OP_PICK OP_4 OP_SUB "
    "OP_SPLIT OP_DROP OP_1 OP_PICK OP_8 OP_SUB OP_SPLIT OP_NIP OP_1 OP_ROLL OP_DROP OP_1 "
    "OP_ROLL OP_DROP OP_NOP OP_NOP 0 OP_PICK 00 OP_CAT OP_BIN2NUM OP_1 OP_ROLL OP_DROP "
    "OP_NOP OP_1 OP_ROLL OP_DROP OP_NOP OP_2 OP_PICK OP_GREATERTHANOREQUAL OP_VERIFY "
    "OP_6 OP_PICK OP_HASH160 OP_1 OP_PICK OP_EQUAL OP_VERIFY OP_7 OP_PICK OP_7 OP_PICK "
    "OP_CHECKSIG OP_NIP OP_NIP OP_NIP OP_NIP OP_NIP OP_NIP OP_NIP OP_NIP"
)

# First push of every compiled timelock script (0x20 + 32-byte constant).
TIMELOCK_SCRIPT_SIGNATURE = "2097dfd76851bf465e8f715593b217714858bbe9570ff3bd5e33840a34e20ff026"

_PREFIX_HEX_LEN = 204
_PKH_PUSH = "14"
_MAX_LOCKTIME_PUSH = 4

# nLockTime values from here on are timestamps; the template rejects them.
LOCKTIME_THRESHOLD = 500_000_000


# ---------------------------------------------------------------------------
# Little-endian helpers
# ---------------------------------------------------------------------------


def int_to_le_hex(n: int) -> str:
    """Encode a non-negative integer as minimal little-endian hex.

    ``0 -> "00"``, ``255 -> "ff"``, ``500000 -> "20a107"``.
    """
    if n < 0:
        msg = "int_to_le_hex expects a non-negative integer"
        raise ValueError(msg)
    if n == 0:
        return "00"
    return n.to_bytes((n.bit_length() + 7) // 8, "little").hex()


def le_hex_to_int(hex_str: str) -> int:
    """Decode little-endian hex produced by :func:`int_to_le_hex`."""
    return int.from_bytes(bytes.fromhex(hex_str), "little")


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ParsedTimelock:
    """Parameters recovered from a timelock locking script."""

    unlock_block: int
    public_key_hash: str


def create_timelock_script(public_key_hash: str, unlock_block: int) -> bytes:
    """Compile the timelock locking script for *public_key_hash*.

    Args:
        public_key_hash: 40-char hex Hash160 of the owner's public key.
        unlock_block: First block height at which the output may be spent.

    Returns:
        The script bytes; identical inputs always yield identical bytes.

    Raises:
        ValueError: If the hash is not 20 bytes of hex, or the height is not
            in ``1 .. LOCKTIME_THRESHOLD - 1``.
    """
    if len(public_key_hash) != 40:
        msg = f"public_key_hash must be 40 hex chars, got {len(public_key_hash)}"
        raise ValueError(msg)
    bytes.fromhex(public_key_hash)
    if not 0 < unlock_block < LOCKTIME_THRESHOLD:
        msg = f"unlock_block must be a block height in 1..{LOCKTIME_THRESHOLD - 1}, got {unlock_block}"
        raise ValueError(msg)
    asm = f"{LOCKUP_PREFIX} {public_key_hash.lower()} {int_to_le_hex(unlock_block)} {LOCKUP_SUFFIX}"
    return compile_asm(asm)


def public_key_to_hash(public_key_hex: str) -> str:
    """Hash160 hex of a compressed public key hex string."""
    pubkey = bytes.fromhex(public_key_hex)
    if not is_valid_public_key(pubkey):
        msg = "Invalid public key"
        raise ValueError(msg)
    return hash160(pubkey).hex()


def timelock_script_size(public_key_hex: str, unlock_block: int) -> int:
    """Exact byte size of the timelock script for a public key and height."""
    return len(create_timelock_script(public_key_to_hash(public_key_hex), unlock_block))


# ---------------------------------------------------------------------------
# Parse
# ---------------------------------------------------------------------------


def is_timelock_script(script_hex: str) -> bool:
    """Cheap prefix check for a compiled timelock script."""
    return script_hex.lower().startswith(TIMELOCK_SCRIPT_SIGNATURE)


def parse_timelock_script(script_hex: str) -> ParsedTimelock | None:
    """Recover ``(unlock_block, public_key_hash)`` from a timelock script.

    Returns:
        The parsed parameters, or None for anything that is not a
        well-formed timelock script. Never raises.
    """
    script_hex = script_hex.lower()
    if not is_timelock_script(script_hex):
        return None

    pkh_start = _PREFIX_HEX_LEN
    if script_hex[pkh_start : pkh_start + 2] != _PKH_PUSH:
        return None
    public_key_hash = script_hex[pkh_start + 2 : pkh_start + 42]
    if len(public_key_hash) != 40:
        return None

    lock_start = pkh_start + 42
    push_byte = script_hex[lock_start : lock_start + 2]
    try:
        push_len = int(push_byte, 16)
        bytes.fromhex(public_key_hash)
    except ValueError:
        return None
    if push_len == 0 or push_len > _MAX_LOCKTIME_PUSH:
        return None

    height_hex = script_hex[lock_start + 2 : lock_start + 2 + push_len * 2]
    if len(height_hex) != push_len * 2:
        return None
    try:
        unlock_block = le_hex_to_int(height_hex)
    except ValueError:
        logger.debug("Timelock script has non-hex lock height: %s", height_hex)
        return None

    return ParsedTimelock(unlock_block=unlock_block, public_key_hash=public_key_hash)
