"""Tests for the broadcast saga: every path ends confirmed or spendable."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import httpx
import pytest
from factories import RECIPIENT_ADDRESS, WALLET_ADDRESS, WALLET_WIF, FakeChain, make_utxo
from sqlalchemy import update

from sats_engine.chain import ChainService
from sats_engine.config.settings import NetworkConfig
from sats_engine.datastore.client import Datastore
from sats_engine.engine.builder import BuiltTransaction, FundingInput, OwnerKey, TxOutputSpec, build_p2pkh_transaction
from sats_engine.engine.domain import Basket, LockedUtxo, SpendingStatus, TransactionRecord
from sats_engine.engine.models.utxo import UtxoRow
from sats_engine.engine.services.broadcast_saga import BroadcastSaga, SagaOutcome, SagaPlan, SpendState
from sats_engine.engine.services.ledger_store import LedgerStore
from sats_engine.errors.wallet_errors import BroadcastFailed, DatabaseError, NetworkTimeout

_FOREIGN_TXID = "fe" * 32


async def _fund(ledger: LedgerStore, *txid_bytes: str) -> list[FundingInput]:
    inputs = []
    for txid_byte in txid_bytes:
        utxo = make_utxo(txid_byte, satoshis=3_000)
        await ledger.insert_utxo(utxo)
        inputs.append(FundingInput(utxo, OwnerKey(WALLET_WIF)))
    return inputs


def _build(inputs: list[FundingInput], satoshis: int = 5_000) -> BuiltTransaction:
    return build_p2pkh_transaction(inputs, [TxOutputSpec(RECIPIENT_ADDRESS, satoshis)], WALLET_ADDRESS, 0.1)


class _Bookkeeping:
    """Counts runs and records the transaction through the bound store."""

    def __init__(self, built: BuiltTransaction, *, fail: bool = False) -> None:
        self.built = built
        self.fail = fail
        self.calls = 0

    async def __call__(self, ledger: LedgerStore) -> None:
        self.calls += 1
        await ledger.record_transaction(TransactionRecord(txid=self.built.txid, labels=["send"]))
        if self.fail:
            msg = "disk full"
            raise DatabaseError(msg)


async def _status(ledger: LedgerStore, txid_byte: str) -> SpendingStatus:
    utxo = await ledger.get_utxo((txid_byte * 32, 0))
    assert utxo is not None
    return utxo.spending_status


@pytest.fixture
def saga(ledger: LedgerStore, chain: FakeChain) -> BroadcastSaga:
    return BroadcastSaga(ledger, chain, chain)


# ---------------------------------------------------------------------------
# Execute
# ---------------------------------------------------------------------------


class TestExecute:
    async def test_success_confirms_inputs(self, saga: BroadcastSaga, ledger: LedgerStore, chain: FakeChain) -> None:
        built = _build(await _fund(ledger, "aa", "bb"))
        bookkeeping = _Bookkeeping(built)

        result = await saga.execute(SagaPlan(built, 1, bookkeeping))

        assert result.outcome == SagaOutcome.BROADCAST
        assert result.state == SpendState.CONFIRMED
        assert result.ledger_synced
        assert chain.broadcasts == [built.raw_hex]
        assert bookkeeping.calls == 1
        assert await _status(ledger, "aa") == SpendingStatus.SPENT
        assert await _status(ledger, "bb") == SpendingStatus.SPENT
        assert await ledger.get_transaction(built.txid) is not None

    async def test_mark_pending_failure_broadcasts_nothing(
        self, saga: BroadcastSaga, ledger: LedgerStore, chain: FakeChain
    ) -> None:
        inputs = await _fund(ledger, "aa", "bb")
        await ledger.mark_pending([("aa" * 32, 0)], "11" * 32)

        with pytest.raises(DatabaseError):
            await saga.execute(SagaPlan(_build(inputs), 1, _Bookkeeping(_build(inputs))))

        assert chain.broadcasts == []
        assert await _status(ledger, "bb") == SpendingStatus.UNSPENT

    async def test_broadcast_failure_rolls_back(self, saga: BroadcastSaga, ledger: LedgerStore, chain: FakeChain) -> None:
        built = _build(await _fund(ledger, "aa", "bb"))
        chain.broadcast_error = BroadcastFailed("WoC: 500 | ARC: 500")
        bookkeeping = _Bookkeeping(built)

        with pytest.raises(BroadcastFailed, match="WoC"):
            await saga.execute(SagaPlan(built, 1, bookkeeping))

        assert bookkeeping.calls == 0
        assert await _status(ledger, "aa") == SpendingStatus.UNSPENT
        assert await _status(ledger, "bb") == SpendingStatus.UNSPENT
        assert await ledger.get_transaction(built.txid) is None

    async def test_non_wallet_error_wrapped(self, saga: BroadcastSaga, ledger: LedgerStore, chain: FakeChain) -> None:
        built = _build(await _fund(ledger, "aa", "bb"))
        chain.broadcast_error = ConnectionResetError("reset by peer")

        with pytest.raises(BroadcastFailed, match="reset by peer"):
            await saga.execute(SagaPlan(built, 1, _Bookkeeping(built)))
        assert await _status(ledger, "aa") == SpendingStatus.UNSPENT

    async def test_already_known_is_success(self, saga: BroadcastSaga, ledger: LedgerStore, chain: FakeChain) -> None:
        built = _build(await _fund(ledger, "aa", "bb"))
        chain.already_known = True
        bookkeeping = _Bookkeeping(built)

        result = await saga.execute(SagaPlan(built, 1, bookkeeping))

        assert result.outcome == SagaOutcome.ALREADY_KNOWN
        assert result.txid == built.txid
        assert bookkeeping.calls == 1
        assert await _status(ledger, "aa") == SpendingStatus.SPENT
        assert await _status(ledger, "bb") == SpendingStatus.SPENT

    async def test_foreign_spend_fails_by_default(
        self, saga: BroadcastSaga, ledger: LedgerStore, chain: FakeChain
    ) -> None:
        built = _build(await _fund(ledger, "aa", "bb"))
        chain.broadcast_error = BroadcastFailed("missing inputs")
        chain.spent[("aa" * 32, 0)] = _FOREIGN_TXID
        hook_calls: list[str] = []

        async def _on_foreign(_ledger: LedgerStore, spender: str) -> None:
            hook_calls.append(spender)

        with pytest.raises(BroadcastFailed):
            await saga.execute(SagaPlan(built, 1, _Bookkeeping(built), on_foreign_spend=_on_foreign))

        aa = await ledger.get_utxo(("aa" * 32, 0))
        assert aa is not None
        assert aa.spending_status == SpendingStatus.SPENT
        assert aa.spent_txid == _FOREIGN_TXID
        assert await _status(ledger, "bb") == SpendingStatus.UNSPENT
        assert hook_calls == [_FOREIGN_TXID]

    async def test_foreign_spend_accepted(self, saga: BroadcastSaga, ledger: LedgerStore, chain: FakeChain) -> None:
        built = _build(await _fund(ledger, "aa", "bb"))
        chain.broadcast_error = BroadcastFailed("missing inputs")
        chain.spent[("aa" * 32, 0)] = _FOREIGN_TXID
        bookkeeping = _Bookkeeping(built)

        result = await saga.execute(SagaPlan(built, 1, bookkeeping, accept_foreign_spend=True))

        assert result.outcome == SagaOutcome.FOREIGN_SPEND
        assert result.txid == _FOREIGN_TXID
        assert result.state == SpendState.CONFIRMED
        assert result.ledger_synced
        assert bookkeeping.calls == 0
        assert await _status(ledger, "aa") == SpendingStatus.SPENT
        assert await _status(ledger, "bb") == SpendingStatus.UNSPENT
        assert await ledger.get_transaction(built.txid) is None

    async def test_spent_check_failure_rolls_back(
        self, saga: BroadcastSaga, ledger: LedgerStore, chain: FakeChain
    ) -> None:
        built = _build(await _fund(ledger, "aa", "bb"))
        chain.broadcast_error = BroadcastFailed("timeout")
        chain.spent_error = NetworkTimeout("is_output_spent", 10)

        with pytest.raises(BroadcastFailed):
            await saga.execute(SagaPlan(built, 1, _Bookkeeping(built)))
        assert await _status(ledger, "aa") == SpendingStatus.UNSPENT

    async def test_unexpected_spent_check_error_rolls_back(
        self, saga: BroadcastSaga, ledger: LedgerStore, chain: FakeChain
    ) -> None:
        built = _build(await _fund(ledger, "aa", "bb"))
        chain.broadcast_error = BroadcastFailed("timeout")
        chain.spent_error = ValueError("Expecting value: line 1 column 1 (char 0)")

        with pytest.raises(BroadcastFailed, match="timeout"):
            await saga.execute(SagaPlan(built, 1, _Bookkeeping(built)))
        assert await _status(ledger, "aa") == SpendingStatus.UNSPENT
        assert await _status(ledger, "bb") == SpendingStatus.UNSPENT

    async def test_woc_html_spent_check_rolls_back(self, ledger: LedgerStore) -> None:
        def _woc(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(503, text="unavailable")
            return httpx.Response(200, text="<html>rate limited</html>")

        html = httpx.MockTransport(_woc)
        failing = httpx.MockTransport(lambda _r: httpx.Response(503, text="unavailable"))
        service = ChainService(NetworkConfig())
        service.woc._client = httpx.AsyncClient(transport=html, base_url="https://woc.example.com/main")
        service.arc._client = httpx.AsyncClient(transport=failing, base_url="https://arc.example.com")
        service.mapi._client = httpx.AsyncClient(transport=failing, base_url="https://mapi.example.com")
        built = _build(await _fund(ledger, "aa", "bb"))

        with pytest.raises(BroadcastFailed):
            await BroadcastSaga(ledger, service, service).execute(SagaPlan(built, 1, _Bookkeeping(built)))

        assert await _status(ledger, "aa") == SpendingStatus.UNSPENT
        assert await _status(ledger, "bb") == SpendingStatus.UNSPENT
        await service.close()

    async def test_ledger_failure_after_broadcast_still_succeeds(
        self, saga: BroadcastSaga, ledger: LedgerStore, chain: FakeChain, caplog: pytest.LogCaptureFixture
    ) -> None:
        built = _build(await _fund(ledger, "aa", "bb"))

        result = await saga.execute(SagaPlan(built, 1, _Bookkeeping(built, fail=True)))

        assert result.txid == built.txid
        assert not result.ledger_synced
        assert chain.broadcasts == [built.raw_hex]
        assert any(r.levelname == "CRITICAL" for r in caplog.records)
        # the atomic unit rolled back, so the record is absent and the inputs stay pending
        assert await ledger.get_transaction(built.txid) is None
        assert await _status(ledger, "aa") == SpendingStatus.PENDING


# ---------------------------------------------------------------------------
# Sweep
# ---------------------------------------------------------------------------


async def _backdate_pending(datastore: Datastore, minutes: int = 30) -> None:
    async with datastore.unit_of_work() as session:
        await session.execute(
            update(UtxoRow)
            .where(UtxoRow.spending_status == SpendingStatus.PENDING.value)
            .values(pending_since=datetime.now(UTC) - timedelta(minutes=minutes))
        )


class TestSweep:
    async def test_resolves_each_row(
        self, saga: BroadcastSaga, ledger: LedgerStore, chain: FakeChain, datastore: Datastore
    ) -> None:
        await _fund(ledger, "aa", "bb", "cc")
        await ledger.mark_pending([("aa" * 32, 0), ("bb" * 32, 0), ("cc" * 32, 0)], "11" * 32)
        await _backdate_pending(datastore)
        chain.spent[("aa" * 32, 0)] = "11" * 32

        original = chain.is_output_spent

        async def _flaky(txid: str, vout: int) -> str | None:
            if txid == "cc" * 32:
                raise NetworkTimeout("is_output_spent", 10)
            return await original(txid, vout)

        chain.is_output_spent = _flaky  # type: ignore[method-assign]

        report = await saga.sweep_stale_pending(600)

        assert report.confirmed == [("aa" * 32, 0)]
        assert report.rolled_back == [("bb" * 32, 0)]
        assert report.unresolved == [("cc" * 32, 0)]
        assert await _status(ledger, "aa") == SpendingStatus.SPENT
        assert await _status(ledger, "bb") == SpendingStatus.UNSPENT
        assert await _status(ledger, "cc") == SpendingStatus.PENDING

    async def test_fresh_pending_left_alone(self, saga: BroadcastSaga, ledger: LedgerStore) -> None:
        await _fund(ledger, "aa")
        await ledger.mark_pending([("aa" * 32, 0)], "11" * 32)
        report = await saga.sweep_stale_pending(600)
        assert report.confirmed == report.rolled_back == report.unresolved == []
        assert await _status(ledger, "aa") == SpendingStatus.PENDING

    async def test_spent_lock_marked_unlocked(
        self, saga: BroadcastSaga, ledger: LedgerStore, chain: FakeChain, datastore: Datastore
    ) -> None:
        locked = LockedUtxo(txid="dd" * 32, vout=0, satoshis=1_000, locking_script="00", unlock_block=900_000)
        await ledger.insert_lock(locked, basket=Basket.LOCKS)
        await ledger.mark_pending([locked.key], "12" * 32)
        await _backdate_pending(datastore)
        chain.spent[locked.key] = "12" * 32

        report = await saga.sweep_stale_pending(600)

        assert report.confirmed == [locked.key]
        assert await ledger.get_locks() == []
