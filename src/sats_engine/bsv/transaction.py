"""Transaction serialisation and signing — raw hex, txid, FORKID sighash.

Provides pure-Python BSV transaction handling:
- VarInt encoding/decoding
- TxInput / TxOutput data classes (inputs remember the output they spend)
- Transaction class with serialize / deserialize / txid computation
- BIP-143 style signature preimage with SIGHASH_FORKID
- P2PKH input signing
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from io import BytesIO

from sats_engine.bsv.keys import private_key_to_public_key, sign_digest
from sats_engine.bsv.script import p2pkh_unlock_script
from sats_engine.utils.crypto import sha256d

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_SEQUENCE = 0xFFFFFFFF
# One below final: makes nLockTime enforceable for the input.
LOCKTIME_SEQUENCE = 0xFFFFFFFE

SIGHASH_ALL = 0x01
SIGHASH_NONE = 0x02
SIGHASH_SINGLE = 0x03
SIGHASH_FORKID = 0x40
SIGHASH_ANYONECANPAY = 0x80
SIGHASH_ALL_FORKID = SIGHASH_ALL | SIGHASH_FORKID


# ---------------------------------------------------------------------------
# VarInt encoding / decoding
# ---------------------------------------------------------------------------


def encode_varint(n: int) -> bytes:
    """Encode an integer as a Bitcoin-style variable-length integer."""
    if n < 0xFD:
        return struct.pack("<B", n)
    if n <= 0xFFFF:
        return b"\xfd" + struct.pack("<H", n)
    if n <= 0xFFFFFFFF:
        return b"\xfe" + struct.pack("<I", n)
    return b"\xff" + struct.pack("<Q", n)


def varint_size(n: int) -> int:
    """Number of bytes :func:`encode_varint` uses for *n*."""
    if n < 0xFD:
        return 1
    if n <= 0xFFFF:
        return 3
    if n <= 0xFFFFFFFF:
        return 5
    return 9


def read_varint(stream: BytesIO) -> int:
    """Read a Bitcoin-style variable-length integer from a byte stream."""
    first = stream.read(1)
    if len(first) == 0:
        msg = "Unexpected end of stream reading varint"
        raise ValueError(msg)
    n = first[0]
    if n < 0xFD:
        return n
    if n == 0xFD:
        return struct.unpack("<H", stream.read(2))[0]
    if n == 0xFE:
        return struct.unpack("<I", stream.read(4))[0]
    return struct.unpack("<Q", stream.read(8))[0]


# ---------------------------------------------------------------------------
# TxInput / TxOutput
# ---------------------------------------------------------------------------


@dataclass
class TxOutput:
    """A transaction output.

    Attributes:
        value: Output value in satoshis.
        script_pubkey: Locking script.
    """

    value: int
    script_pubkey: bytes

    def serialize(self) -> bytes:
        return struct.pack("<q", self.value) + encode_varint(len(self.script_pubkey)) + self.script_pubkey

    @classmethod
    def deserialize(cls, stream: BytesIO) -> TxOutput:
        value = struct.unpack("<q", stream.read(8))[0]
        script_pubkey = stream.read(read_varint(stream))
        return cls(value=value, script_pubkey=script_pubkey)


@dataclass
class TxInput:
    """A transaction input.

    Attributes:
        prev_tx_id: 32-byte hash of the previous transaction (internal byte order).
        prev_tx_out_index: Index of the output in the previous transaction.
        script_sig: Unlocking script.
        sequence: Sequence number.
        source_satoshis: Value of the spent output (needed for the sighash).
        source_script: Locking script of the spent output (the sighash scriptCode).
    """

    prev_tx_id: bytes
    prev_tx_out_index: int
    script_sig: bytes = b""
    sequence: int = DEFAULT_SEQUENCE
    source_satoshis: int = 0
    source_script: bytes = b""

    @classmethod
    def spending(
        cls,
        txid_hex: str,
        vout: int,
        satoshis: int,
        locking_script: bytes,
        *,
        sequence: int = DEFAULT_SEQUENCE,
    ) -> TxInput:
        """Create an input spending ``txid_hex:vout`` (display byte order txid)."""
        return cls(
            prev_tx_id=bytes.fromhex(txid_hex)[::-1],
            prev_tx_out_index=vout,
            sequence=sequence,
            source_satoshis=satoshis,
            source_script=locking_script,
        )

    @property
    def prev_tx_id_hex(self) -> str:
        """Previous transaction ID in display (reversed) hex."""
        return self.prev_tx_id[::-1].hex()

    def outpoint(self) -> bytes:
        return self.prev_tx_id + struct.pack("<I", self.prev_tx_out_index)

    def serialize(self) -> bytes:
        return (
            self.outpoint()
            + encode_varint(len(self.script_sig))
            + self.script_sig
            + struct.pack("<I", self.sequence)
        )

    @classmethod
    def deserialize(cls, stream: BytesIO) -> TxInput:
        prev_tx_id = stream.read(32)
        if len(prev_tx_id) != 32:
            msg = "Unexpected end of stream reading prev_tx_id"
            raise ValueError(msg)
        prev_tx_out_index = struct.unpack("<I", stream.read(4))[0]
        script_sig = stream.read(read_varint(stream))
        sequence = struct.unpack("<I", stream.read(4))[0]
        return cls(
            prev_tx_id=prev_tx_id,
            prev_tx_out_index=prev_tx_out_index,
            script_sig=script_sig,
            sequence=sequence,
        )


# ---------------------------------------------------------------------------
# Transaction
# ---------------------------------------------------------------------------


@dataclass
class Transaction:
    """A BSV transaction."""

    version: int = 1
    inputs: list[TxInput] = field(default_factory=list)
    outputs: list[TxOutput] = field(default_factory=list)
    locktime: int = 0

    def serialize(self) -> bytes:
        """Serialize the transaction to raw bytes."""
        result = struct.pack("<i", self.version)
        result += encode_varint(len(self.inputs))
        for inp in self.inputs:
            result += inp.serialize()
        result += encode_varint(len(self.outputs))
        for out in self.outputs:
            result += out.serialize()
        result += struct.pack("<I", self.locktime)
        return result

    def to_hex(self) -> str:
        return self.serialize().hex()

    @classmethod
    def from_hex(cls, hex_str: str) -> Transaction:
        stream = BytesIO(bytes.fromhex(hex_str))
        version = struct.unpack("<i", stream.read(4))[0]
        inputs = [TxInput.deserialize(stream) for _ in range(read_varint(stream))]
        outputs = [TxOutput.deserialize(stream) for _ in range(read_varint(stream))]
        locktime = struct.unpack("<I", stream.read(4))[0]
        return cls(version=version, inputs=inputs, outputs=outputs, locktime=locktime)

    def txid(self) -> str:
        """Transaction ID: double-SHA256 of the serialization, display byte order."""
        return sha256d(self.serialize())[::-1].hex()

    @property
    def size(self) -> int:
        """Transaction size in bytes."""
        return len(self.serialize())

    def total_input(self) -> int:
        return sum(inp.source_satoshis for inp in self.inputs)

    def total_output(self) -> int:
        return sum(out.value for out in self.outputs)

    def add_input(self, inp: TxInput) -> TxInput:
        self.inputs.append(inp)
        return inp

    def add_output(self, value: int, script_pubkey: bytes) -> TxOutput:
        out = TxOutput(value=value, script_pubkey=script_pubkey)
        self.outputs.append(out)
        return out

    # ------------------------------------------------------------------
    # Signature hashing
    # ------------------------------------------------------------------

    def sighash_preimage(self, input_index: int, sighash_type: int = SIGHASH_ALL_FORKID) -> bytes:
        """Build the BIP-143 style preimage signed for *input_index*.

        Layout: version | hashPrevouts | hashSequence | outpoint | scriptCode |
        value | nSequence | hashOutputs | nLockTime | sighash type.

        Raises:
            ValueError: If *sighash_type* lacks SIGHASH_FORKID or the index is invalid.
        """
        if not sighash_type & SIGHASH_FORKID:
            msg = "Only SIGHASH_FORKID signatures are supported"
            raise ValueError(msg)
        if not 0 <= input_index < len(self.inputs):
            msg = f"Input index {input_index} out of range"
            raise ValueError(msg)

        base_type = sighash_type & 0x1F
        anyone_can_pay = bool(sighash_type & SIGHASH_ANYONECANPAY)
        inp = self.inputs[input_index]
        zero = b"\x00" * 32

        hash_prevouts = zero
        if not anyone_can_pay:
            hash_prevouts = sha256d(b"".join(i.outpoint() for i in self.inputs))

        hash_sequence = zero
        if not anyone_can_pay and base_type not in (SIGHASH_NONE, SIGHASH_SINGLE):
            hash_sequence = sha256d(b"".join(struct.pack("<I", i.sequence) for i in self.inputs))

        hash_outputs = zero
        if base_type not in (SIGHASH_NONE, SIGHASH_SINGLE):
            hash_outputs = sha256d(b"".join(o.serialize() for o in self.outputs))
        elif base_type == SIGHASH_SINGLE and input_index < len(self.outputs):
            hash_outputs = sha256d(self.outputs[input_index].serialize())

        return (
            struct.pack("<i", self.version)
            + hash_prevouts
            + hash_sequence
            + inp.outpoint()
            + encode_varint(len(inp.source_script))
            + inp.source_script
            + struct.pack("<q", inp.source_satoshis)
            + struct.pack("<I", inp.sequence)
            + hash_outputs
            + struct.pack("<I", self.locktime)
            + struct.pack("<I", sighash_type)
        )

    def sighash(self, input_index: int, sighash_type: int = SIGHASH_ALL_FORKID) -> bytes:
        """Digest actually signed by OP_CHECKSIG: SHA256d of the preimage."""
        return sha256d(self.sighash_preimage(input_index, sighash_type))

    def sign_p2pkh_input(
        self,
        input_index: int,
        privkey: bytes,
        sighash_type: int = SIGHASH_ALL_FORKID,
    ) -> None:
        """Sign a P2PKH input in place with *privkey*."""
        signature = sign_digest(privkey, self.sighash(input_index, sighash_type))
        pubkey = private_key_to_public_key(privkey)
        self.inputs[input_index].script_sig = p2pkh_unlock_script(
            signature + bytes([sighash_type]), pubkey
        )
