"""Tests for LedgerStore on in-memory SQLite."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from factories import RECIPIENT_ADDRESS, make_utxo

from sats_engine.engine.domain import (
    Basket,
    DerivedAddress,
    LockedUtxo,
    SpendingStatus,
    TransactionRecord,
)
from sats_engine.engine.services.ledger_store import LedgerStore
from sats_engine.errors.wallet_errors import DatabaseError, WalletError


def _lock(txid_byte: str = "dd", unlock_block: int = 900_000) -> LockedUtxo:
    return LockedUtxo(
        txid=txid_byte * 32,
        vout=0,
        satoshis=10_000,
        locking_script="00" * 40,
        unlock_block=unlock_block,
        public_key_hex="02" + "11" * 32,
        lock_block=850_000,
    )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:
    async def test_spendable_in_insertion_order(self, ledger: LedgerStore) -> None:
        await ledger.insert_utxo(make_utxo("bb", satoshis=2_000))
        await ledger.insert_utxo(make_utxo("aa", satoshis=1_000))
        utxos = await ledger.select_spendable_utxos()
        assert [u.txid[:2] for u in utxos] == ["bb", "aa"]
        assert all(u.spending_status == SpendingStatus.UNSPENT for u in utxos)

    async def test_filters_basket_and_address(self, ledger: LedgerStore) -> None:
        await ledger.insert_utxo(make_utxo("aa"))
        await ledger.insert_utxo(make_utxo("bb", basket=Basket.DERIVED, address=RECIPIENT_ADDRESS))
        assert len(await ledger.select_spendable_utxos(Basket.DEFAULT)) == 1
        derived = await ledger.select_spendable_utxos(Basket.DERIVED, address=RECIPIENT_ADDRESS)
        assert [u.txid[:2] for u in derived] == ["bb"]
        assert await ledger.select_spendable_utxos(Basket.DERIVED, address="1Nobody") == []

    async def test_non_spendable_excluded(self, ledger: LedgerStore) -> None:
        await ledger.insert_utxo(make_utxo("aa", spendable=False))
        assert await ledger.select_spendable_utxos() == []
        assert len(await ledger.get_unspent_in_basket(Basket.DEFAULT)) == 1

    async def test_balance(self, ledger: LedgerStore) -> None:
        await ledger.insert_utxo(make_utxo("aa", satoshis=1_000))
        await ledger.insert_utxo(make_utxo("bb", satoshis=2_000, basket=Basket.DERIVED))
        await ledger.insert_utxo(make_utxo("cc", satoshis=4_000, spendable=False))
        assert await ledger.get_balance() == 3_000
        assert await ledger.get_balance(basket=Basket.DEFAULT) == 1_000

    async def test_get_utxos_preserves_order(self, ledger: LedgerStore) -> None:
        await ledger.insert_utxo(make_utxo("aa"))
        await ledger.insert_utxo(make_utxo("bb"))
        found = await ledger.get_utxos([("bb" * 32, 0), ("aa" * 32, 0)])
        assert [u.txid[:2] for u in found] == ["bb", "aa"]

    async def test_get_utxos_missing(self, ledger: LedgerStore) -> None:
        with pytest.raises(WalletError, match="not found"):
            await ledger.get_utxos([("ee" * 32, 0)])

    async def test_insert_is_idempotent(self, ledger: LedgerStore) -> None:
        first = await ledger.insert_utxo(make_utxo("aa"))
        second = await ledger.insert_utxo(make_utxo("aa", satoshis=1))
        assert first == second
        utxo = await ledger.get_utxo(("aa" * 32, 0))
        assert utxo is not None
        assert utxo.satoshis == 10_000
        assert utxo.created_at is not None


# ---------------------------------------------------------------------------
# Spending transitions
# ---------------------------------------------------------------------------


class TestSpendingTransitions:
    async def test_pending_then_confirm(self, ledger: LedgerStore) -> None:
        await ledger.insert_utxo(make_utxo("aa"))
        key = ("aa" * 32, 0)

        await ledger.mark_pending([key], "f1" * 32)
        utxo = await ledger.get_utxo(key)
        assert utxo is not None
        assert utxo.status == f"pending:{'f1' * 32}"
        assert await ledger.select_spendable_utxos() == []

        await ledger.confirm_spent([key], "f1" * 32)
        utxo = await ledger.get_utxo(key)
        assert utxo is not None
        assert utxo.status == "confirmed"
        assert utxo.spent_txid == "f1" * 32
        assert utxo.pending_txid is None

    async def test_rollback_restores_spendable(self, ledger: LedgerStore) -> None:
        await ledger.insert_utxo(make_utxo("aa"))
        key = ("aa" * 32, 0)
        await ledger.mark_pending([key], "f1" * 32)
        await ledger.rollback_pending([key])
        utxo = await ledger.get_utxo(key)
        assert utxo is not None
        assert utxo.status == "none"
        assert len(await ledger.select_spendable_utxos()) == 1

    async def test_rollback_leaves_spent_rows(self, ledger: LedgerStore) -> None:
        await ledger.insert_utxo(make_utxo("aa"))
        key = ("aa" * 32, 0)
        await ledger.confirm_spent([key], "f1" * 32)
        await ledger.rollback_pending([key])
        utxo = await ledger.get_utxo(key)
        assert utxo is not None
        assert utxo.spending_status == SpendingStatus.SPENT

    async def test_mark_pending_is_all_or_nothing(self, ledger: LedgerStore) -> None:
        await ledger.insert_utxo(make_utxo("aa"))
        await ledger.insert_utxo(make_utxo("bb"))
        await ledger.mark_pending([("bb" * 32, 0)], "f1" * 32)

        with pytest.raises(WalletError, match="already pending"):
            await ledger.mark_pending([("aa" * 32, 0), ("bb" * 32, 0)], "f2" * 32)

        aa = await ledger.get_utxo(("aa" * 32, 0))
        assert aa is not None
        assert aa.spending_status == SpendingStatus.UNSPENT

    async def test_mark_pending_unknown_key(self, ledger: LedgerStore) -> None:
        with pytest.raises(WalletError):
            await ledger.mark_pending([("ee" * 32, 0)], "f1" * 32)

    async def test_stale_pending(self, ledger: LedgerStore) -> None:
        await ledger.insert_utxo(make_utxo("aa"))
        await ledger.mark_pending([("aa" * 32, 0)], "f1" * 32)
        future = datetime.now(UTC) + timedelta(minutes=1)
        past = datetime.now(UTC) - timedelta(minutes=1)
        assert [u.txid[:2] for u in await ledger.get_stale_pending(future)] == ["aa"]
        assert await ledger.get_stale_pending(past) == []


# ---------------------------------------------------------------------------
# Atomic units
# ---------------------------------------------------------------------------


class TestRunAtomic:
    async def test_commits_together(self, ledger: LedgerStore) -> None:
        async def _apply(bound: LedgerStore) -> None:
            await bound.insert_utxo(make_utxo("aa"))
            await bound.insert_utxo(make_utxo("bb"))

        await ledger.run_atomic(_apply)
        assert len(await ledger.select_spendable_utxos()) == 2

    async def test_rolls_back_on_error(self, ledger: LedgerStore) -> None:
        async def _apply(bound: LedgerStore) -> None:
            await bound.insert_utxo(make_utxo("aa"))
            msg = "boom"
            raise WalletError(msg)

        with pytest.raises(WalletError, match="boom"):
            await ledger.run_atomic(_apply)
        assert await ledger.select_spendable_utxos() == []

    async def test_storage_fault_becomes_database_error(self, ledger: LedgerStore) -> None:
        async def _apply(bound: LedgerStore) -> None:
            await bound.insert_utxo(make_utxo("aa"))
            await bound.insert_utxo(make_utxo("bb", satoshis=None))  # type: ignore[arg-type]

        with pytest.raises(DatabaseError):
            await ledger.run_atomic(_apply)
        assert await ledger.select_spendable_utxos() == []

    async def test_single_call_fault(self, ledger: LedgerStore) -> None:
        with pytest.raises(DatabaseError):
            await ledger.insert_utxo(make_utxo("bb", satoshis=None))  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Locks / transactions / derived addresses
# ---------------------------------------------------------------------------


class TestLocks:
    async def test_insert_and_list(self, ledger: LedgerStore) -> None:
        await ledger.insert_lock(_lock("dd", 900_000))
        await ledger.insert_lock(_lock("cc", 880_000))
        locks = await ledger.get_locks()
        assert [lock.unlock_block for lock in locks] == [880_000, 900_000]
        assert locks[1].lock_block == 850_000

        backing = await ledger.get_utxo(("dd" * 32, 0))
        assert backing is not None
        assert backing.basket == Basket.LOCKS
        assert backing.spendable is False
        assert await ledger.get_balance() == 0

    async def test_insert_lock_idempotent(self, ledger: LedgerStore) -> None:
        assert await ledger.insert_lock(_lock()) == await ledger.insert_lock(_lock())

    async def test_mark_unlocked(self, ledger: LedgerStore) -> None:
        await ledger.insert_lock(_lock())
        await ledger.mark_lock_unlocked("dd" * 32, 0)
        assert await ledger.get_locks() == []
        assert len(await ledger.get_locks(include_unlocked=True)) == 1


class TestTransactions:
    async def test_record_and_merge(self, ledger: LedgerStore) -> None:
        txid = "ab" * 32
        await ledger.record_transaction(TransactionRecord(txid=txid, labels=["send"], amount=-500))
        await ledger.record_transaction(
            TransactionRecord(txid=txid, raw_hex="0100", description="later", labels=["lock", "send"])
        )
        record = await ledger.get_transaction(txid)
        assert record is not None
        assert record.labels == ["lock", "send"]
        assert record.amount == -500
        assert record.raw_hex == "0100"
        assert record.description == "later"

    async def test_missing(self, ledger: LedgerStore) -> None:
        assert await ledger.get_transaction("00" * 32) is None


class TestDerivedAddresses:
    async def test_add_once(self, ledger: LedgerStore) -> None:
        derived = DerivedAddress(address="1Derived", sender_pubkey="02" + "33" * 32, invoice_number="7")
        await ledger.add_derived_address(derived)
        await ledger.add_derived_address(derived)
        assert await ledger.get_derived_addresses() == [derived]
