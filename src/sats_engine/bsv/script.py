"""BSV script building — opcodes, ASM compilation, P2PKH and OP_RETURN.

Provides construction and inspection of the scripts the engine emits:
- The opcode table needed by standard and sCrypt-compiled scripts
- Minimal data pushes and an ASM-to-bytes compiler
- P2PKH (Pay-to-Public-Key-Hash) lock and unlock scripts
- OP_RETURN (null data) scripts
- Script type detection
"""

from __future__ import annotations

import enum
import re
import struct

from sats_engine.bsv.address import address_to_pubkey_hash
from sats_engine.utils.crypto import hash160

# ---------------------------------------------------------------------------
# Opcodes
# ---------------------------------------------------------------------------


class OpCode(int, enum.Enum):
    """Bitcoin SV opcodes (subset used by wallet and sCrypt templates)."""

    OP_0 = 0x00
    OP_PUSHDATA1 = 0x4C
    OP_PUSHDATA2 = 0x4D
    OP_PUSHDATA4 = 0x4E
    OP_1NEGATE = 0x4F
    OP_1 = 0x51
    OP_2 = 0x52
    OP_3 = 0x53
    OP_4 = 0x54
    OP_5 = 0x55
    OP_6 = 0x56
    OP_7 = 0x57
    OP_8 = 0x58
    OP_9 = 0x59
    OP_10 = 0x5A
    OP_11 = 0x5B
    OP_12 = 0x5C
    OP_13 = 0x5D
    OP_14 = 0x5E
    OP_15 = 0x5F
    OP_16 = 0x60
    OP_NOP = 0x61
    OP_IF = 0x63
    OP_NOTIF = 0x64
    OP_ELSE = 0x67
    OP_ENDIF = 0x68
    OP_VERIFY = 0x69
    OP_RETURN = 0x6A
    OP_TOALTSTACK = 0x6B
    OP_FROMALTSTACK = 0x6C
    OP_2DROP = 0x6D
    OP_2DUP = 0x6E
    OP_IFDUP = 0x73
    OP_DEPTH = 0x74
    OP_DROP = 0x75
    OP_DUP = 0x76
    OP_NIP = 0x77
    OP_OVER = 0x78
    OP_PICK = 0x79
    OP_ROLL = 0x7A
    OP_ROT = 0x7B
    OP_SWAP = 0x7C
    OP_TUCK = 0x7D
    OP_CAT = 0x7E
    OP_SPLIT = 0x7F
    OP_NUM2BIN = 0x80
    OP_BIN2NUM = 0x81
    OP_SIZE = 0x82
    OP_INVERT = 0x83
    OP_AND = 0x84
    OP_OR = 0x85
    OP_XOR = 0x86
    OP_EQUAL = 0x87
    OP_EQUALVERIFY = 0x88
    OP_1ADD = 0x8B
    OP_1SUB = 0x8C
    OP_NEGATE = 0x8F
    OP_ABS = 0x90
    OP_NOT = 0x91
    OP_0NOTEQUAL = 0x92
    OP_ADD = 0x93
    OP_SUB = 0x94
    OP_MUL = 0x95
    OP_DIV = 0x96
    OP_MOD = 0x97
    OP_LSHIFT = 0x98
    OP_RSHIFT = 0x99
    OP_BOOLAND = 0x9A
    OP_BOOLOR = 0x9B
    OP_NUMEQUAL = 0x9C
    OP_NUMEQUALVERIFY = 0x9D
    OP_NUMNOTEQUAL = 0x9E
    OP_LESSTHAN = 0x9F
    OP_GREATERTHAN = 0xA0
    OP_LESSTHANOREQUAL = 0xA1
    OP_GREATERTHANOREQUAL = 0xA2
    OP_MIN = 0xA3
    OP_MAX = 0xA4
    OP_WITHIN = 0xA5
    OP_RIPEMD160 = 0xA6
    OP_SHA1 = 0xA7
    OP_SHA256 = 0xA8
    OP_HASH160 = 0xA9
    OP_HASH256 = 0xAA
    OP_CODESEPARATOR = 0xAB
    OP_CHECKSIG = 0xAC
    OP_CHECKSIGVERIFY = 0xAD
    OP_CHECKMULTISIG = 0xAE
    OP_CHECKMULTISIGVERIFY = 0xAF

    # Aliases (enum members sharing a value resolve to the first name above)
    OP_FALSE = 0x00
    OP_TRUE = 0x51


# ---------------------------------------------------------------------------
# Script Type
# ---------------------------------------------------------------------------


class ScriptType(enum.StrEnum):
    """Known locking script types."""

    P2PKH = "pubkeyhash"
    NULL_DATA = "nulldata"
    TIMELOCK = "timelock"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Data push helpers
# ---------------------------------------------------------------------------


def push_data(data: bytes) -> bytes:
    """Encode a data push using the shortest PUSHDATA form.

    An empty payload is pushed as ``OP_0``; every non-empty payload is pushed
    as raw data, even a single byte in the small-integer range.
    """
    length = len(data)
    if length == 0:
        return bytes([OpCode.OP_0])
    if length < OpCode.OP_PUSHDATA1:
        return bytes([length]) + data
    if length <= 0xFF:
        return bytes([OpCode.OP_PUSHDATA1, length]) + data
    if length <= 0xFFFF:
        return bytes([OpCode.OP_PUSHDATA2]) + struct.pack("<H", length) + data
    return bytes([OpCode.OP_PUSHDATA4]) + struct.pack("<I", length) + data


_HEX_RE = re.compile(r"^[0-9a-fA-F]*$")


def compile_asm(asm: str) -> bytes:
    """Compile a space-separated ASM string to script bytes.

    Tokens are interpreted as:
    - ``OP_*`` names: the opcode byte
    - ``0``: ``OP_0``; ``-1``: ``OP_1NEGATE``
    - anything else: hex data, left-padded to whole bytes, minimally pushed

    Raises:
        ValueError: On an unknown opcode name or a non-hex data token.
    """
    script = bytearray()
    for token in asm.split():
        if token.startswith("OP_"):
            try:
                script.append(OpCode[token])
            except KeyError:
                msg = f"Unknown opcode: {token}"
                raise ValueError(msg) from None
        elif token == "0":
            script.append(OpCode.OP_0)
        elif token == "-1":
            script.append(OpCode.OP_1NEGATE)
        else:
            if not _HEX_RE.match(token):
                msg = f"Invalid hex data token: {token!r}"
                raise ValueError(msg)
            if len(token) % 2:
                token = "0" + token
            script += push_data(bytes.fromhex(token))
    return bytes(script)


# ---------------------------------------------------------------------------
# P2PKH scripts
# ---------------------------------------------------------------------------


def p2pkh_lock_script(pubkey_hash: bytes) -> bytes:
    """Build a P2PKH locking script.

    ``OP_DUP OP_HASH160 <20 bytes> OP_EQUALVERIFY OP_CHECKSIG``

    Args:
        pubkey_hash: 20-byte RIPEMD160(SHA256(pubkey)).

    Returns:
        25-byte locking script.
    """
    if len(pubkey_hash) != 20:
        msg = f"pubkey_hash must be 20 bytes, got {len(pubkey_hash)}"
        raise ValueError(msg)
    return (
        bytes([OpCode.OP_DUP, OpCode.OP_HASH160])
        + push_data(pubkey_hash)
        + bytes([OpCode.OP_EQUALVERIFY, OpCode.OP_CHECKSIG])
    )


def p2pkh_lock_script_for_address(address: str) -> bytes:
    """Build the P2PKH locking script paying to a Base58Check address."""
    return p2pkh_lock_script(address_to_pubkey_hash(address))


def p2pkh_lock_script_for_pubkey(pubkey: bytes) -> bytes:
    """Build the P2PKH locking script for a SEC-encoded public key."""
    return p2pkh_lock_script(hash160(pubkey))


def p2pkh_unlock_script(signature: bytes, pubkey: bytes) -> bytes:
    """Build a P2PKH unlocking script ``<sig+sighash> <pubkey>``."""
    return push_data(signature) + push_data(pubkey)


# ---------------------------------------------------------------------------
# OP_RETURN scripts
# ---------------------------------------------------------------------------


def op_return_script(*data_items: bytes) -> bytes:
    """Build a ``OP_FALSE OP_RETURN <push>...`` null data script."""
    script = bytes([OpCode.OP_FALSE, OpCode.OP_RETURN])
    for item in data_items:
        script += push_data(item)
    return script


# ---------------------------------------------------------------------------
# Script type detection
# ---------------------------------------------------------------------------


def detect_script_type(script: bytes) -> ScriptType:
    """Classify a locking script as P2PKH, null data, timelock or unknown."""
    # Imported lazily: the timelock module compiles its template with this one.
    from sats_engine.bsv.timelock import is_timelock_script

    if len(script) == 0:
        return ScriptType.UNKNOWN

    if (
        len(script) == 25
        and script[0] == OpCode.OP_DUP
        and script[1] == OpCode.OP_HASH160
        and script[2] == 0x14
        and script[23] == OpCode.OP_EQUALVERIFY
        and script[24] == OpCode.OP_CHECKSIG
    ):
        return ScriptType.P2PKH

    if script[0] == OpCode.OP_RETURN:
        return ScriptType.NULL_DATA
    if len(script) >= 2 and script[0] == OpCode.OP_FALSE and script[1] == OpCode.OP_RETURN:
        return ScriptType.NULL_DATA

    if is_timelock_script(script.hex()):
        return ScriptType.TIMELOCK

    return ScriptType.UNKNOWN


def extract_pubkey_hash(script: bytes) -> bytes | None:
    """Return the 20-byte hash of a P2PKH locking script, else None."""
    if detect_script_type(script) != ScriptType.P2PKH:
        return None
    return script[3:23]
