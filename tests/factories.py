"""Test doubles and builders shared across test modules."""

from __future__ import annotations

import asyncio

from sats_engine.bsv.address import privkey_to_wif, pubkey_to_address
from sats_engine.bsv.keys import private_key_to_public_key
from sats_engine.bsv.script import p2pkh_lock_script_for_address
from sats_engine.bsv.transaction import Transaction
from sats_engine.engine.domain import Utxo
from sats_engine.errors.wallet_errors import BroadcastFailed

WALLET_PRIV = (0x11).to_bytes(32, "big")
IDENTITY_PRIV = (0x22).to_bytes(32, "big")
COUNTERPARTY_PRIV = (0x33).to_bytes(32, "big")
WALLET_WIF = privkey_to_wif(WALLET_PRIV)
IDENTITY_WIF = privkey_to_wif(IDENTITY_PRIV)
WALLET_PUBKEY = private_key_to_public_key(WALLET_PRIV)
WALLET_ADDRESS = pubkey_to_address(WALLET_PUBKEY)
RECIPIENT_ADDRESS = pubkey_to_address(private_key_to_public_key((0x44).to_bytes(32, "big")))


class FakeChain:
    """In-process broadcaster, chain oracle and fee oracle.

    Attributes:
        height: Reported chain tip.
        fee_rate: Reported fee quote.
        broadcasts: Raw hex of every broadcast attempt.
        broadcast_error: Raised by ``broadcast`` when set.
        already_known: Broadcast fails but the network holds the tx, so
            every input reads as spent by it.
        spent: ``(txid, vout) -> spending txid`` answers.
        spent_error: Raised by ``is_output_spent`` when set.
        height_error: Raised by ``get_block_height`` when set.
        delay: Seconds ``broadcast`` sleeps before answering.
    """

    def __init__(self, *, height: int = 850_000, fee_rate: float = 0.1) -> None:
        self.height = height
        self.fee_rate = fee_rate
        self.broadcasts: list[str] = []
        self.broadcast_error: Exception | None = None
        self.already_known = False
        self.spent: dict[tuple[str, int], str] = {}
        self.spent_error: Exception | None = None
        self.height_error: Exception | None = None
        self.delay = 0.0

    async def broadcast(self, raw_hex: str, txid: str) -> str:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.broadcasts.append(raw_hex)
        if self.already_known:
            for inp in Transaction.from_hex(raw_hex).inputs:
                self.spent[(inp.prev_tx_id_hex, inp.prev_tx_out_index)] = txid
            msg = "Transaction already known"
            raise BroadcastFailed(msg)
        if self.broadcast_error is not None:
            raise self.broadcast_error
        return txid

    async def get_block_height(self) -> int:
        if self.height_error is not None:
            raise self.height_error
        return self.height

    async def is_output_spent(self, txid: str, vout: int) -> str | None:
        if self.spent_error is not None:
            raise self.spent_error
        return self.spent.get((txid, vout))

    async def quote_fee_rate(self) -> float:
        return self.fee_rate


def make_utxo(
    txid_byte: str = "aa",
    vout: int = 0,
    satoshis: int = 10_000,
    *,
    address: str = WALLET_ADDRESS,
    **kwargs,
) -> Utxo:
    """A P2PKH UTXO with txid ``txid_byte * 32`` paying *address*."""
    return Utxo(
        txid=txid_byte * 32,
        vout=vout,
        satoshis=satoshis,
        locking_script=p2pkh_lock_script_for_address(address).hex(),
        address=address,
        **kwargs,
    )
