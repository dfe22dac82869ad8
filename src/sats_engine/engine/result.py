"""Result container returned by every public engine operation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

from sats_engine.errors.wallet_errors import WalletError

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or a :class:`WalletError`, never both.

    Expected failures (insufficient funds, lock not yet spendable, failed
    broadcast) come back as ``Result.fail(...)`` instead of being raised so
    callers can branch on ``is_ok`` without a try/except around every call.
    """

    value: T | None = None
    error: WalletError | None = None

    @classmethod
    def ok(cls, value: T) -> Result[T]:
        return cls(value=value)

    @classmethod
    def fail(cls, error: WalletError) -> Result[T]:
        return cls(error=error)

    @property
    def is_ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value, re-raising the carried error on failure."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Operation payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SendResult:
    """A broadcast payment.

    ``ledger_synced`` is False when the transaction reached the network but
    the local ledger could not be updated; the sweep repairs it later.
    """

    txid: str
    satoshis: int
    fee: int
    change: int
    raw_hex: str
    ledger_synced: bool = True


@dataclass(frozen=True)
class LockResult:
    txid: str
    satoshis: int
    fee: int
    unlock_block: int
    lock_vout: int
    locking_script: str
    ledger_synced: bool = True


@dataclass(frozen=True)
class UnlockResult:
    """Outcome of an unlock.

    When another transaction already spent the lock, ``txid`` is that
    transaction, ``spent_elsewhere`` is set and nothing came back to the
    wallet, so ``satoshis`` and ``fee`` are zero.
    """

    txid: str
    satoshis: int
    fee: int
    ledger_synced: bool = True
    spent_elsewhere: bool = False


@dataclass(frozen=True)
class ConsolidateResult:
    txid: str
    input_count: int
    satoshis: int
    fee: int
    ledger_synced: bool = True
