"""Domain value types shared by the engine, the builders and the ledger store.

These are plain dataclasses; the ORM rows in :mod:`sats_engine.engine.models`
convert to them with ``to_domain()`` so no session-bound object escapes an
operation.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime


class Basket(enum.StrEnum):
    """Purpose tag grouping UTXOs."""

    DEFAULT = "default"
    LOCKS = "locks"
    IDENTITY = "identity"
    DERIVED = "derived"
    ORDINALS = "ordinals"


class SpendingStatus(enum.StrEnum):
    """Ledger spending status of a UTXO row."""

    UNSPENT = "unspent"
    PENDING = "pending"
    SPENT = "spent"


class TxStatus(enum.StrEnum):
    """Lifecycle of a recorded transaction."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


OutpointKey = tuple[str, int]


@dataclass(frozen=True)
class Utxo:
    """An output the wallet can spend or track."""

    txid: str
    vout: int
    satoshis: int
    locking_script: str
    address: str = ""
    basket: str = Basket.DEFAULT
    spendable: bool = True
    spending_status: SpendingStatus = SpendingStatus.UNSPENT
    pending_txid: str | None = None
    spent_txid: str | None = None
    account_id: int = 1
    created_at: datetime | None = None

    @property
    def key(self) -> OutpointKey:
        return (self.txid, self.vout)

    @property
    def status(self) -> str:
        """``none``, ``pending:<txid>`` or ``confirmed``."""
        if self.spending_status == SpendingStatus.PENDING:
            return f"pending:{self.pending_txid}"
        if self.spending_status == SpendingStatus.SPENT:
            return "confirmed"
        return "none"


@dataclass(frozen=True)
class LockedUtxo:
    """A UTXO held by the timelock script, with its lock parameters."""

    txid: str
    vout: int
    satoshis: int
    locking_script: str
    unlock_block: int
    public_key_hex: str = ""
    lock_block: int | None = None
    ordinal_origin: str | None = None
    created_at: datetime | None = None
    account_id: int = 1

    @property
    def key(self) -> OutpointKey:
        return (self.txid, self.vout)

    def blocks_remaining(self, current_height: int) -> int:
        return max(0, self.unlock_block - current_height)


@dataclass(frozen=True)
class DerivedAddress:
    """A receiving address whose key is re-derived on demand."""

    address: str
    sender_pubkey: str
    invoice_number: str
    label: str | None = None
    legacy_private_key_wif: str | None = None
    account_id: int = 1


@dataclass(frozen=True)
class TransactionRecord:
    """A recorded transaction with its signed wallet-relative amount."""

    txid: str
    raw_hex: str = ""
    description: str = ""
    labels: list[str] = field(default_factory=list)
    amount: int = 0
    status: TxStatus = TxStatus.PENDING
    block_height: int | None = None
    account_id: int = 1
