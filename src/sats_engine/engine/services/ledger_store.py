"""Ledger store — UTXO, lock, transaction and derived-address persistence.

Every method runs in its own unit of work unless the store is bound to a
session by :meth:`LedgerStore.run_atomic`, in which case all calls made
through the bound store commit together or not at all.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from sats_engine.engine.domain import (
    Basket,
    DerivedAddress,
    LockedUtxo,
    OutpointKey,
    SpendingStatus,
    TransactionRecord,
    Utxo,
)
from sats_engine.engine.models.derived_address import DerivedAddressRow
from sats_engine.engine.models.lock import LockRow
from sats_engine.engine.models.transaction import TransactionRecordRow
from sats_engine.engine.models.utxo import UtxoRow
from sats_engine.errors.definitions import ErrUtxoAlreadyPending, ErrUtxoNotFound
from sats_engine.errors.wallet_errors import DatabaseError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from sats_engine.datastore.client import Datastore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _now() -> datetime:
    return datetime.now(UTC)


class LedgerStore:
    """SQLAlchemy-backed ledger of outputs and transactions.

    Storage failures surface as :class:`DatabaseError`; business rule
    violations (double pending, unknown outpoint) as their own
    :class:`WalletError` subclasses.
    """

    def __init__(self, datastore: Datastore, *, session: AsyncSession | None = None) -> None:
        self._datastore = datastore
        self._session = session

    # ------------------------------------------------------------------
    # Session handling
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _scope(self) -> AsyncIterator[AsyncSession]:
        if self._session is not None:
            yield self._session
            return
        try:
            async with self._datastore.unit_of_work() as session:
                yield session
        except SQLAlchemyError as exc:
            raise DatabaseError(exc) from exc

    async def run_atomic(self, fn: Callable[[LedgerStore], Awaitable[T]]) -> T:
        """Run *fn* with a store bound to one transaction; all or nothing.

        Raises:
            DatabaseError: The transaction failed and was rolled back.
        """
        if self._session is not None:
            return await fn(self)
        try:
            async with self._datastore.unit_of_work() as session:
                return await fn(LedgerStore(self._datastore, session=session))
        except SQLAlchemyError as exc:
            raise DatabaseError(exc) from exc

    # ------------------------------------------------------------------
    # UTXO queries
    # ------------------------------------------------------------------

    async def select_spendable_utxos(
        self,
        basket: str = Basket.DEFAULT,
        account_id: int = 1,
        *,
        address: str | None = None,
    ) -> list[Utxo]:
        """Unspent, spendable UTXOs of a basket in insertion order."""
        stmt = select(UtxoRow).where(
            UtxoRow.basket == str(basket),
            UtxoRow.account_id == account_id,
            UtxoRow.spendable.is_(True),
            UtxoRow.spending_status == SpendingStatus.UNSPENT.value,
        )
        if address is not None:
            stmt = stmt.where(UtxoRow.address == address)
        async with self._scope() as session:
            result = await session.execute(stmt.order_by(UtxoRow.id))
            return [row.to_domain() for row in result.scalars().all()]

    async def get_unspent_in_basket(self, basket: str, account_id: int = 1) -> list[Utxo]:
        """Unspent UTXOs of a basket regardless of ``spendable``."""
        stmt = (
            select(UtxoRow)
            .where(
                UtxoRow.basket == str(basket),
                UtxoRow.account_id == account_id,
                UtxoRow.spending_status == SpendingStatus.UNSPENT.value,
            )
            .order_by(UtxoRow.id)
        )
        async with self._scope() as session:
            result = await session.execute(stmt)
            return [row.to_domain() for row in result.scalars().all()]

    async def get_utxo(self, key: OutpointKey, account_id: int = 1) -> Utxo | None:
        async with self._scope() as session:
            row = await self._utxo_row(session, key, account_id)
            return row.to_domain() if row is not None else None

    async def get_utxos(self, keys: Sequence[OutpointKey], account_id: int = 1) -> list[Utxo]:
        """Look up several outpoints, preserving the order of *keys*.

        Raises:
            WalletError: If any outpoint is not in the ledger.
        """
        found: list[Utxo] = []
        async with self._scope() as session:
            for key in keys:
                row = await self._utxo_row(session, key, account_id)
                if row is None:
                    raise ErrUtxoNotFound
                found.append(row.to_domain())
        return found

    async def get_balance(self, account_id: int = 1, basket: str | None = None) -> int:
        """Sum of unspent, spendable satoshis, optionally for one basket."""
        stmt = select(func.coalesce(func.sum(UtxoRow.satoshis), 0)).where(
            UtxoRow.account_id == account_id,
            UtxoRow.spendable.is_(True),
            UtxoRow.spending_status == SpendingStatus.UNSPENT.value,
        )
        if basket is not None:
            stmt = stmt.where(UtxoRow.basket == str(basket))
        async with self._scope() as session:
            result = await session.execute(stmt)
            return int(result.scalar_one())

    async def get_stale_pending(self, older_than: datetime, account_id: int | None = None) -> list[Utxo]:
        """UTXOs pending since before *older_than*."""
        stmt = select(UtxoRow).where(
            UtxoRow.spending_status == SpendingStatus.PENDING.value,
            UtxoRow.pending_since < older_than,
        )
        if account_id is not None:
            stmt = stmt.where(UtxoRow.account_id == account_id)
        async with self._scope() as session:
            result = await session.execute(stmt.order_by(UtxoRow.id))
            return [row.to_domain() for row in result.scalars().all()]

    @staticmethod
    async def _utxo_row(session: AsyncSession, key: OutpointKey, account_id: int) -> UtxoRow | None:
        result = await session.execute(
            select(UtxoRow).where(
                UtxoRow.txid == key[0],
                UtxoRow.vout == key[1],
                UtxoRow.account_id == account_id,
            )
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Spending state transitions
    # ------------------------------------------------------------------

    async def mark_pending(self, keys: Sequence[OutpointKey], txid: str, account_id: int = 1) -> None:
        """Move every key from ``unspent`` to ``pending(txid)`` atomically.

        Raises:
            WalletError: A key is missing or already pending/spent; nothing
                is changed in that case.
        """
        now = _now()
        async with self._scope() as session:
            for key in keys:
                result = await session.execute(
                    update(UtxoRow)
                    .where(
                        UtxoRow.txid == key[0],
                        UtxoRow.vout == key[1],
                        UtxoRow.account_id == account_id,
                        UtxoRow.spending_status == SpendingStatus.UNSPENT.value,
                    )
                    .values(
                        spending_status=SpendingStatus.PENDING.value,
                        pending_spending_txid=txid,
                        pending_since=now,
                    )
                )
                if result.rowcount != 1:
                    logger.warning("Cannot mark %s:%d pending for %s", key[0], key[1], txid)
                    raise ErrUtxoAlreadyPending
        logger.debug("Marked %d utxos pending for %s", len(keys), txid)

    async def confirm_spent(self, keys: Sequence[OutpointKey], txid: str, account_id: int = 1) -> None:
        """Mark keys spent by *txid*, whatever their current state."""
        now = _now()
        async with self._scope() as session:
            for key in keys:
                await session.execute(
                    update(UtxoRow)
                    .where(
                        UtxoRow.txid == key[0],
                        UtxoRow.vout == key[1],
                        UtxoRow.account_id == account_id,
                    )
                    .values(
                        spending_status=SpendingStatus.SPENT.value,
                        spent_txid=txid,
                        spent_at=now,
                        pending_spending_txid=None,
                        pending_since=None,
                    )
                )

    async def rollback_pending(self, keys: Sequence[OutpointKey], account_id: int = 1) -> None:
        """Return pending keys to ``unspent``. Spent rows are left alone."""
        async with self._scope() as session:
            for key in keys:
                await session.execute(
                    update(UtxoRow)
                    .where(
                        UtxoRow.txid == key[0],
                        UtxoRow.vout == key[1],
                        UtxoRow.account_id == account_id,
                        UtxoRow.spending_status == SpendingStatus.PENDING.value,
                    )
                    .values(
                        spending_status=SpendingStatus.UNSPENT.value,
                        pending_spending_txid=None,
                        pending_since=None,
                    )
                )
        logger.debug("Rolled back %d pending utxos", len(keys))

    # ------------------------------------------------------------------
    # Inserts
    # ------------------------------------------------------------------

    async def insert_utxo(self, utxo: Utxo) -> int:
        """Insert *utxo*, returning its row id. Existing outpoints are kept as-is."""
        async with self._scope() as session:
            existing = await self._utxo_row(session, utxo.key, utxo.account_id)
            if existing is not None:
                return existing.id
            row = UtxoRow(
                txid=utxo.txid,
                vout=utxo.vout,
                satoshis=utxo.satoshis,
                locking_script=utxo.locking_script,
                address=utxo.address,
                basket=str(utxo.basket),
                spendable=utxo.spendable,
                spending_status=SpendingStatus.UNSPENT.value,
                account_id=utxo.account_id,
            )
            session.add(row)
            await session.flush()
            return row.id

    async def insert_lock(self, locked: LockedUtxo, *, basket: str = Basket.LOCKS) -> int:
        """Insert a lock together with its backing, non-spendable UTXO."""
        backing = Utxo(
            txid=locked.txid,
            vout=locked.vout,
            satoshis=locked.satoshis,
            locking_script=locked.locking_script,
            basket=basket,
            spendable=False,
            account_id=locked.account_id,
        )
        async with self._scope() as session:
            utxo_id = await LedgerStore(self._datastore, session=session).insert_utxo(backing)
            existing = await session.execute(select(LockRow).where(LockRow.utxo_id == utxo_id))
            row = existing.scalar_one_or_none()
            if row is not None:
                return row.id
            row = LockRow(
                utxo_id=utxo_id,
                unlock_block=locked.unlock_block,
                lock_block=locked.lock_block,
                public_key_hex=locked.public_key_hex,
                ordinal_origin=locked.ordinal_origin,
                account_id=locked.account_id,
            )
            session.add(row)
            await session.flush()
            return row.id

    # ------------------------------------------------------------------
    # Locks
    # ------------------------------------------------------------------

    async def mark_lock_unlocked(self, txid: str, vout: int, account_id: int = 1) -> None:
        async with self._scope() as session:
            utxo = await self._utxo_row(session, (txid, vout), account_id)
            if utxo is None:
                logger.warning("No lock for %s:%d to mark unlocked", txid, vout)
                return
            await session.execute(
                update(LockRow).where(LockRow.utxo_id == utxo.id).values(unlocked_at=_now())
            )

    async def get_locks(self, account_id: int = 1, *, include_unlocked: bool = False) -> list[LockedUtxo]:
        stmt = select(LockRow).where(LockRow.account_id == account_id)
        if not include_unlocked:
            stmt = stmt.where(LockRow.unlocked_at.is_(None))
        async with self._scope() as session:
            result = await session.execute(stmt.order_by(LockRow.unlock_block, LockRow.id))
            return [row.to_domain() for row in result.scalars().unique().all()]

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def record_transaction(self, record: TransactionRecord) -> None:
        """Insert a record, or merge labels and fill blanks on an existing txid."""
        async with self._scope() as session:
            result = await session.execute(
                select(TransactionRecordRow).where(
                    TransactionRecordRow.txid == record.txid,
                    TransactionRecordRow.account_id == record.account_id,
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                session.add(
                    TransactionRecordRow(
                        txid=record.txid,
                        raw_hex=record.raw_hex,
                        description=record.description,
                        labels=sorted(set(record.labels)),
                        amount=record.amount,
                        status=record.status.value,
                        block_height=record.block_height,
                        account_id=record.account_id,
                    )
                )
                await session.flush()
                return

            row.labels = sorted(set(row.labels or []) | set(record.labels))
            if record.description:
                row.description = record.description
            if record.raw_hex and not row.raw_hex:
                row.raw_hex = record.raw_hex
            if record.amount and not row.amount:
                row.amount = record.amount
            if record.block_height is not None:
                row.block_height = record.block_height
            await session.flush()

    async def get_transaction(self, txid: str, account_id: int = 1) -> TransactionRecord | None:
        async with self._scope() as session:
            result = await session.execute(
                select(TransactionRecordRow).where(
                    TransactionRecordRow.txid == txid,
                    TransactionRecordRow.account_id == account_id,
                )
            )
            row = result.scalar_one_or_none()
            return row.to_domain() if row is not None else None

    # ------------------------------------------------------------------
    # Derived addresses
    # ------------------------------------------------------------------

    async def add_derived_address(self, derived: DerivedAddress) -> None:
        """Store a derived address; rows are immutable so repeats are ignored."""
        async with self._scope() as session:
            result = await session.execute(
                select(DerivedAddressRow.id).where(DerivedAddressRow.address == derived.address)
            )
            if result.scalar_one_or_none() is not None:
                return
            session.add(
                DerivedAddressRow(
                    address=derived.address,
                    sender_pubkey=derived.sender_pubkey,
                    invoice_number=derived.invoice_number,
                    private_key_wif=derived.legacy_private_key_wif,
                    label=derived.label,
                    account_id=derived.account_id,
                )
            )
            await session.flush()

    async def get_derived_addresses(self, account_id: int = 1) -> list[DerivedAddress]:
        async with self._scope() as session:
            result = await session.execute(
                select(DerivedAddressRow)
                .where(DerivedAddressRow.account_id == account_id)
                .order_by(DerivedAddressRow.id)
            )
            return [row.to_domain() for row in result.scalars().all()]
