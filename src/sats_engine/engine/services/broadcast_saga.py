"""Broadcast saga — coordinate a network broadcast with the local ledger.

Per selected UTXO set the states are::

    spendable -> pending(txid) -> confirmed(txid)
                               -> spendable            (rolled back)

Every path through :meth:`BroadcastSaga.execute` leaves the inputs either
confirmed or spendable. Rows stranded in ``pending`` by a process crash are
resolved by :meth:`BroadcastSaga.sweep_stale_pending`.

A ledger failure *after* a successful broadcast is logged as critical and
the operation still reports success: the transaction is on chain and the
ledger is repaired later from the chain.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sats_engine.engine.domain import Basket, OutpointKey
from sats_engine.errors.wallet_errors import BroadcastFailed, DatabaseError, WalletError

if TYPE_CHECKING:
    from sats_engine.engine.builder import BuiltTransaction
    from sats_engine.engine.collaborators import Broadcaster, ChainOracle
    from sats_engine.engine.services.ledger_store import LedgerStore

logger = logging.getLogger(__name__)

Bookkeeping = Callable[["LedgerStore"], Awaitable[None]]
ForeignSpendHook = Callable[["LedgerStore", str], Awaitable[None]]


class SpendState(enum.StrEnum):
    """Where the selected inputs end up."""

    SPENDABLE = "spendable"
    PENDING = "pending"
    CONFIRMED = "confirmed"


class SagaOutcome(enum.StrEnum):
    BROADCAST = "broadcast"
    ALREADY_KNOWN = "already_known"
    FOREIGN_SPEND = "foreign_spend"


@dataclass
class SagaPlan:
    """What to broadcast and how to record it.

    Attributes:
        built: The signed transaction.
        account_id: Ledger account of the inputs.
        bookkeeping: Ledger writes run atomically once the transaction is
            known to the network (record, confirm inputs, insert outputs).
        on_foreign_spend: Extra ledger writes when another transaction
            spent our input, called with that transaction's id.
        spent_check: Outpoint queried when the broadcast outcome is
            ambiguous; defaults to the first input.
        accept_foreign_spend: Treat a foreign spender of the checked input
            as the outcome rather than a failure. Unlocks use this: the
            lock is gone either way.
    """

    built: BuiltTransaction
    account_id: int
    bookkeeping: Bookkeeping
    on_foreign_spend: ForeignSpendHook | None = None
    spent_check: OutpointKey | None = None
    accept_foreign_spend: bool = False

    @property
    def keys(self) -> list[OutpointKey]:
        return self.built.spent_keys

    @property
    def check_key(self) -> OutpointKey | None:
        if self.spent_check is not None:
            return self.spent_check
        return self.keys[0] if self.keys else None


@dataclass(frozen=True)
class SagaResult:
    txid: str
    outcome: SagaOutcome
    state: SpendState
    ledger_synced: bool = True


@dataclass
class SweepReport:
    confirmed: list[OutpointKey] = field(default_factory=list)
    rolled_back: list[OutpointKey] = field(default_factory=list)
    unresolved: list[OutpointKey] = field(default_factory=list)


def _as_broadcast_failed(cause: BaseException) -> BroadcastFailed:
    if isinstance(cause, BroadcastFailed):
        return cause
    return BroadcastFailed(cause)


class BroadcastSaga:
    """Mark pending, broadcast, then confirm or roll back."""

    def __init__(self, ledger: LedgerStore, broadcaster: Broadcaster, chain: ChainOracle) -> None:
        self._ledger = ledger
        self._broadcaster = broadcaster
        self._chain = chain

    async def execute(self, plan: SagaPlan) -> SagaResult:
        """Run the saga for *plan*.

        Returns:
            The outcome; ``state`` is always ``confirmed`` on return. For a
            ``FOREIGN_SPEND`` outcome ``txid`` is the foreign spender.

        Raises:
            DatabaseError: The inputs could not be marked pending; nothing
                was broadcast.
            BroadcastFailed: The broadcast failed; the inputs are spendable
                again, or confirmed spent by a foreign transaction when the
                plan does not accept that outcome.
        """
        txid = plan.built.txid

        # spendable -> pending
        try:
            await self._ledger.mark_pending(plan.keys, txid, plan.account_id)
        except DatabaseError:
            raise
        except WalletError as exc:
            raise DatabaseError(exc.message) from exc

        # broadcast
        try:
            returned = await self._broadcaster.broadcast(plan.built.raw_hex, txid)
        except Exception as exc:  # noqa: BLE001 - every failure is resolved below
            logger.error("Broadcast of %s failed: %s", txid, exc)
            return await self._resolve_failure(plan, exc)

        if returned and returned != txid:
            logger.warning("Broadcaster returned txid %s, expected %s", returned, txid)

        # pending -> confirmed
        synced = await self._commit(plan)
        logger.info("Broadcast %s (fee=%d)", txid, plan.built.fee)
        return SagaResult(txid=txid, outcome=SagaOutcome.BROADCAST, state=SpendState.CONFIRMED, ledger_synced=synced)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _commit(self, plan: SagaPlan) -> bool:
        txid = plan.built.txid

        async def _apply(ledger: LedgerStore) -> None:
            await plan.bookkeeping(ledger)
            await ledger.confirm_spent(plan.keys, txid, plan.account_id)

        try:
            await self._ledger.run_atomic(_apply)
        except WalletError as exc:
            logger.critical(
                "Transaction %s is on chain but the ledger update failed; "
                "local state will be reconciled from the chain: %s",
                txid,
                exc,
            )
            return False
        return True

    async def _resolve_failure(self, plan: SagaPlan, cause: BaseException) -> SagaResult:
        txid = plan.built.txid
        check = plan.check_key
        spender = await self._spender_of(check)

        # pending -> confirmed (the network already has our transaction)
        if spender == txid:
            logger.info("Transaction %s already known to the network; recording it", txid)
            synced = await self._commit(plan)
            return SagaResult(
                txid=txid,
                outcome=SagaOutcome.ALREADY_KNOWN,
                state=SpendState.CONFIRMED,
                ledger_synced=synced,
            )

        # pending -> confirmed(foreign) / spendable
        if spender is not None and check is not None:
            logger.warning(
                "Input %s:%d was spent by foreign transaction %s, not %s",
                check[0],
                check[1],
                spender,
                txid,
            )
            synced = await self._record_foreign_spend(plan, check, spender)
            if not plan.accept_foreign_spend:
                raise _as_broadcast_failed(cause)
            return SagaResult(
                txid=spender,
                outcome=SagaOutcome.FOREIGN_SPEND,
                state=SpendState.CONFIRMED,
                ledger_synced=synced,
            )

        # pending -> spendable
        try:
            await self._ledger.rollback_pending(plan.keys, plan.account_id)
        except WalletError as exc:
            logger.critical("Rollback of %d pending inputs for %s failed: %s", len(plan.keys), txid, exc)
        raise _as_broadcast_failed(cause)

    async def _record_foreign_spend(self, plan: SagaPlan, check: OutpointKey, spender: str) -> bool:
        others = [k for k in plan.keys if k != check]

        async def _apply(ledger: LedgerStore) -> None:
            await ledger.confirm_spent([check], spender, plan.account_id)
            await ledger.rollback_pending(others, plan.account_id)
            if plan.on_foreign_spend is not None:
                await plan.on_foreign_spend(ledger, spender)

        try:
            await self._ledger.run_atomic(_apply)
        except WalletError as exc:
            logger.critical("Could not record foreign spend by %s: %s", spender, exc)
            return False
        return True

    async def _spender_of(self, key: OutpointKey | None) -> str | None:
        if key is None:
            return None
        # an unanswerable check counts as unspent so the inputs get rolled back
        try:
            return await self._chain.is_output_spent(key[0], key[1])
        except Exception as exc:  # noqa: BLE001
            logger.warning("Spent check for %s:%d failed: %s", key[0], key[1], exc)
            return None

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    async def sweep_stale_pending(self, timeout_seconds: float, account_id: int | None = None) -> SweepReport:
        """Resolve rows pending for longer than *timeout_seconds* via the chain.

        Spent outputs are confirmed (and their locks marked unlocked);
        unspent ones are rolled back; oracle failures leave the row pending
        for the next sweep.
        """
        cutoff = datetime.now(UTC) - timedelta(seconds=timeout_seconds)
        report = SweepReport()
        for utxo in await self._ledger.get_stale_pending(cutoff, account_id):
            try:
                spender = await self._chain.is_output_spent(utxo.txid, utxo.vout)
            except WalletError as exc:
                logger.warning("Sweep could not check %s:%d: %s", utxo.txid, utxo.vout, exc)
                report.unresolved.append(utxo.key)
                continue

            if spender is None:
                await self._ledger.rollback_pending([utxo.key], utxo.account_id)
                report.rolled_back.append(utxo.key)
                continue

            async def _confirm(ledger: LedgerStore, utxo=utxo, spender=spender) -> None:  # type: ignore[no-untyped-def]
                await ledger.confirm_spent([utxo.key], spender, utxo.account_id)
                if utxo.basket == Basket.LOCKS:
                    await ledger.mark_lock_unlocked(utxo.txid, utxo.vout, utxo.account_id)

            await self._ledger.run_atomic(_confirm)
            report.confirmed.append(utxo.key)

        if report.confirmed or report.rolled_back:
            logger.info(
                "Pending sweep: %d confirmed, %d rolled back, %d unresolved",
                len(report.confirmed),
                len(report.rolled_back),
                len(report.unresolved),
            )
        return report
