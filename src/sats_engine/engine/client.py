"""WalletEngine — central engine client owning the ledger, chain and saga."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from functools import partial
from typing import TYPE_CHECKING, TypeVar

from sats_engine.bsv.address import wif_to_privkey
from sats_engine.bsv.derivation import derive_sender_address
from sats_engine.bsv.script import p2pkh_lock_script_for_address
from sats_engine.bsv.timelock import parse_timelock_script
from sats_engine.chain.service import ChainService
from sats_engine.datastore.client import Datastore
from sats_engine.engine.builder import (
    DerivedKey,
    FundingInput,
    OwnerKey,
    SigningStrategy,
    TxOutputSpec,
    build_consolidation_transaction,
    build_lock_transaction,
    build_p2pkh_transaction,
    build_unlock_transaction,
)
from sats_engine.engine.coin_selection import dedupe_utxos
from sats_engine.engine.domain import (
    Basket,
    DerivedAddress,
    LockedUtxo,
    OutpointKey,
    SpendingStatus,
    TransactionRecord,
    Utxo,
)
from sats_engine.engine.fees import ExactFee, MaxSend, calculate_exact_fee, calculate_max_send
from sats_engine.engine.keystore import KeyRole
from sats_engine.engine.result import ConsolidateResult, LockResult, Result, SendResult, UnlockResult
from sats_engine.engine.services.broadcast_saga import BroadcastSaga, SagaOutcome, SagaPlan
from sats_engine.engine.services.fee_service import FeeRateProvider
from sats_engine.engine.services.ledger_store import LedgerStore
from sats_engine.engine.state import EngineState
from sats_engine.errors.definitions import ErrEngineNotUnlocked, ErrNoOutputs
from sats_engine.errors.wallet_errors import InvalidAmount, InvalidParams, WalletError
from sats_engine.taskmanager.manager import CronJob, TaskManager
from sats_engine.taskmanager.tasks import (
    REFRESH_FEE_RATE,
    SWEEP_PENDING_SPENDS,
    task_refresh_fee_rate,
    task_sweep_pending_spends,
)
from sats_engine.utils.crypto import hash160

if TYPE_CHECKING:
    from sats_engine.config.settings import AppConfig
    from sats_engine.engine.collaborators import Broadcaster, ChainOracle, FeeOracle
    from sats_engine.engine.keystore import KeyStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Error messages
_ERR_NOT_INITIALIZED = "Engine not initialized. Call initialize() first."

# Average block interval used to back-date a lock whose height was never recorded.
BLOCK_INTERVAL_MS = 600_000


def estimate_lock_block(current_height: int, created_at: datetime, now: datetime | None = None) -> int:
    """Estimate the height a lock was made at from its age.

    ``current_height - elapsed_ms // 600000``, never below zero. Naive
    timestamps are read as UTC.
    """
    now = now or datetime.now(UTC)
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=UTC)
    elapsed_ms = max(0.0, (now - created_at).total_seconds() * 1000)
    return max(0, current_height - int(elapsed_ms // BLOCK_INTERVAL_MS))


def _check_amount(satoshis: object) -> None:
    if isinstance(satoshis, bool) or not isinstance(satoshis, int) or satoshis <= 0:
        raise InvalidAmount(f"satoshis must be a positive integer, got {satoshis!r}")


class WalletEngine:
    """Central engine that owns the ledger, chain collaborators and tasks.

    Every public operation returns a :class:`Result`; expected failures come
    back as ``Result.fail`` carrying a :class:`WalletError`. Operations that
    spend run under one ``asyncio.Lock`` per engine so two concurrent spends
    never select the same outputs.

    Usage::

        engine = WalletEngine(config)
        await engine.initialize()
        await engine.unlock(InMemoryKeyStore.from_seed(seed))
        result = await engine.send_bsv(address, 5000)
        await engine.close()
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        broadcaster: Broadcaster | None = None,
        chain: ChainOracle | None = None,
        fee_oracle: FeeOracle | None = None,
    ) -> None:
        """Initialize engine with configuration.

        Args:
            config: Engine configuration.
            broadcaster: Transaction broadcaster; defaults to a ``ChainService``.
            chain: Block height / spent-output oracle; defaults to a ``ChainService``.
            fee_oracle: Network fee quotes; defaults to a ``ChainService``.
        """
        self._config = config
        self._initialized = False

        # Infrastructure components
        self._datastore: Datastore | None = None
        self._ledger: LedgerStore | None = None
        self._chain_service: ChainService | None = None
        self._broadcaster = broadcaster
        self._chain = chain
        self._fee_oracle = fee_oracle

        # Services
        self._fee_provider: FeeRateProvider | None = None
        self._saga: BroadcastSaga | None = None
        self._task_manager: TaskManager | None = None

        # Session
        self._state: EngineState | None = None
        self._spend_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Open the ledger, connect the chain service and start background tasks.

        Raises:
            RuntimeError: If already initialized.
        """
        if self._initialized:
            msg = "Engine already initialized"
            raise RuntimeError(msg)

        self._datastore = Datastore(self._config.db)
        await self._datastore.open(migrate=True)
        self._ledger = LedgerStore(self._datastore)

        if self._broadcaster is None or self._chain is None or self._fee_oracle is None:
            self._chain_service = ChainService(self._config.network)
            await self._chain_service.connect()
            self._broadcaster = self._broadcaster or self._chain_service
            self._chain = self._chain or self._chain_service
            self._fee_oracle = self._fee_oracle or self._chain_service

        self._fee_provider = FeeRateProvider(self._config.fee, self._fee_oracle)
        self._saga = BroadcastSaga(self._ledger, self._broadcaster, self._chain)

        if self._config.task.enabled:
            self._task_manager = TaskManager()
            self._task_manager.register(
                SWEEP_PENDING_SPENDS,
                CronJob(
                    handler=partial(task_sweep_pending_spends, self),
                    period=self._config.task.pending_sweep_period,
                    run_at_start=True,
                ),
            )
            self._task_manager.register(
                REFRESH_FEE_RATE,
                CronJob(
                    handler=partial(task_refresh_fee_rate, self),
                    period=self._config.task.fee_refresh_period,
                ),
            )
            await self._task_manager.start()

        self._initialized = True
        logger.info("Wallet engine initialized (network=%s)", self._config.network.network)

    async def close(self) -> None:
        """Gracefully shut down all services and connections.

        Can be called multiple times (idempotent).
        """
        if not self._initialized:
            return

        # Stop task manager first (depends on services)
        if self._task_manager is not None:
            await self._task_manager.stop()
            self._task_manager = None

        await self.lock()

        self._saga = None
        self._fee_provider = None
        self._ledger = None

        if self._chain_service is not None:
            await self._chain_service.close()
            self._chain_service = None

        if self._datastore is not None:
            await self._datastore.close()
            self._datastore = None

        self._initialized = False
        logger.info("Wallet engine closed")

    async def unlock(self, key_store: KeyStore) -> Result[EngineState]:
        """Open a session whose operations fetch keys from *key_store*."""
        try:
            state = await EngineState.open(
                key_store,
                account_id=self._config.account_id,
                testnet=self._config.network.testnet,
            )
        except WalletError as exc:
            logger.warning("Unlock failed: %s", exc)
            return Result.fail(exc)
        except ValueError as exc:
            return Result.fail(InvalidParams(f"key store returned an invalid key: {exc}"))
        async with self._spend_lock:
            if self._state is not None:
                await self._state.clear()
            self._state = state
        return Result.ok(state)

    async def lock(self) -> None:
        """Drop the session. Waits for an in-flight spend to finish."""
        async with self._spend_lock:
            if self._state is not None:
                await self._state.clear()
                self._state = None

    @asynccontextmanager
    async def spend_guard(self) -> AsyncIterator[None]:
        """Serialize selection → build → broadcast → ledger update."""
        async with self._spend_lock:
            yield

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_unlocked(self) -> bool:
        return self._state is not None

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def state(self) -> EngineState | None:
        """Current session state (None while locked)."""
        return self._state

    @property
    def datastore(self) -> Datastore:
        if self._datastore is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._datastore

    @property
    def ledger(self) -> LedgerStore:
        if self._ledger is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._ledger

    @property
    def saga(self) -> BroadcastSaga:
        if self._saga is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._saga

    @property
    def fee_provider(self) -> FeeRateProvider:
        if self._fee_provider is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._fee_provider

    @property
    def chain_service(self) -> ChainService | None:
        """The built-in chain service, or None when collaborators were injected."""
        return self._chain_service

    @property
    def task_manager(self) -> TaskManager | None:
        """Get the task manager (None if not enabled)."""
        return self._task_manager

    def _require_state(self) -> EngineState:
        if self._state is None:
            raise ErrEngineNotUnlocked
        return self._state

    def _require_chain(self) -> ChainOracle:
        if self._chain is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._chain

    async def _run(self, operation: str, fn: Callable[[], Awaitable[T]]) -> Result[T]:
        try:
            return Result.ok(await fn())
        except WalletError as exc:
            logger.warning("%s failed: %s", operation, exc)
            return Result.fail(exc)
        except Exception as exc:
            logger.exception("%s failed unexpectedly", operation)
            return Result.fail(WalletError(f"{operation} failed: {exc}", code="internal-error"))

    # ------------------------------------------------------------------
    # Funding
    # ------------------------------------------------------------------

    async def _spendable_outputs(self, account_id: int) -> list[tuple[Utxo, DerivedAddress | None]]:
        """Default-basket outputs then each derived address's, deduplicated."""
        candidates: list[tuple[Utxo, DerivedAddress | None]] = [
            (utxo, None) for utxo in await self.ledger.select_spendable_utxos(Basket.DEFAULT, account_id)
        ]
        for derived in await self.ledger.get_derived_addresses(account_id):
            utxos = await self.ledger.select_spendable_utxos(Basket.DERIVED, account_id, address=derived.address)
            candidates.extend((utxo, derived) for utxo in utxos)

        owners: dict[OutpointKey, DerivedAddress | None] = {}
        for utxo, derived in candidates:
            owners.setdefault(utxo.key, derived)
        return [(utxo, owners[utxo.key]) for utxo in dedupe_utxos(u for u, _ in candidates)]

    async def _funding_inputs(self, state: EngineState, operation: str) -> list[FundingInput]:
        outputs = await self._spendable_outputs(state.account_id)
        wallet_wif = await state.key_store.get_signing_key_for(KeyRole.WALLET, operation)
        identity_wif: str | None = None

        inputs: list[FundingInput] = []
        for utxo, derived in outputs:
            strategy: SigningStrategy
            if derived is None:
                strategy = OwnerKey(wallet_wif)
            elif derived.legacy_private_key_wif:
                strategy = OwnerKey(derived.legacy_private_key_wif)
            else:
                if identity_wif is None:
                    identity_wif = await state.key_store.get_signing_key_for(KeyRole.IDENTITY, operation)
                strategy = DerivedKey(identity_wif, derived.sender_pubkey, derived.invoice_number)
            inputs.append(FundingInput(utxo, strategy))
        return inputs

    @staticmethod
    def _wallet_output(state: EngineState, txid: str, vout: int, satoshis: int) -> Utxo:
        return Utxo(
            txid=txid,
            vout=vout,
            satoshis=satoshis,
            locking_script=p2pkh_lock_script_for_address(state.wallet_address).hex(),
            address=state.wallet_address,
            basket=Basket.DEFAULT,
            account_id=state.account_id,
        )

    async def _current_height(self) -> int | None:
        try:
            return await self._require_chain().get_block_height()
        except WalletError as exc:
            logger.warning("Could not fetch block height: %s", exc)
            return None

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def send_bsv(self, to_address: str, satoshis: int) -> Result[SendResult]:
        """Pay *satoshis* to *to_address*, change back to the wallet."""

        async def _op() -> SendResult:
            _check_amount(satoshis)
            return await self._send(
                [TxOutputSpec(to_address, satoshis)],
                f"Sent {satoshis} sats to {to_address}",
                "send_bsv",
            )

        return await self._run("send_bsv", _op)

    async def send_multi(self, outputs: Sequence[TxOutputSpec]) -> Result[SendResult]:
        """Pay several recipients in one transaction."""

        async def _op() -> SendResult:
            if not outputs:
                raise ErrNoOutputs
            for spec in outputs:
                _check_amount(spec.satoshis)
            total = sum(spec.satoshis for spec in outputs)
            return await self._send(list(outputs), f"Sent {total} sats to {len(outputs)} recipients", "send_multi")

        return await self._run("send_multi", _op)

    async def _send(self, outputs: list[TxOutputSpec], description: str, operation: str) -> SendResult:
        state = self._require_state()
        rate = await self.fee_provider.get_rate(state.cache)
        total = sum(spec.satoshis for spec in outputs)

        async with self.spend_guard():
            inputs = await self._funding_inputs(state, operation)
            built = build_p2pkh_transaction(inputs, outputs, state.wallet_address, rate)
            record = TransactionRecord(
                txid=built.txid,
                raw_hex=built.raw_hex,
                description=description,
                labels=["send"],
                amount=-(total + built.fee),
                account_id=state.account_id,
            )

            async def _bookkeeping(ledger: LedgerStore) -> None:
                await ledger.record_transaction(record)
                if built.change_vout is not None:
                    await ledger.insert_utxo(self._wallet_output(state, built.txid, built.change_vout, built.change))

            outcome = await self.saga.execute(SagaPlan(built, state.account_id, _bookkeeping))

        return SendResult(
            txid=outcome.txid,
            satoshis=total,
            fee=built.fee,
            change=built.change,
            raw_hex=built.raw_hex,
            ledger_synced=outcome.ledger_synced,
        )

    # ------------------------------------------------------------------
    # Locks
    # ------------------------------------------------------------------

    async def lock_bsv(
        self,
        satoshis: int,
        unlock_block: int,
        ordinal_origin: str | None = None,
    ) -> Result[LockResult]:
        """Lock *satoshis* to the wallet key until *unlock_block*.

        With *ordinal_origin* an ``OP_RETURN`` output links the lock to that
        inscription.
        """
        return await self._run("lock_bsv", partial(self._lock, satoshis, unlock_block, ordinal_origin))

    async def _lock(self, satoshis: int, unlock_block: int, ordinal_origin: str | None) -> LockResult:
        _check_amount(satoshis)
        state = self._require_state()
        rate = await self.fee_provider.get_rate(state.cache)
        lock_block = await self._current_height()
        lock_config = self._config.lock

        async with self.spend_guard():
            wif = await state.key_store.get_signing_key_for(KeyRole.WALLET, "lock_bsv")
            utxos = await self.ledger.select_spendable_utxos(Basket.DEFAULT, state.account_id)
            built = build_lock_transaction(
                [FundingInput(utxo, OwnerKey(wif)) for utxo in utxos],
                satoshis,
                unlock_block,
                state.wallet_pubkey,
                state.wallet_address,
                rate,
                ordinal_origin=ordinal_origin,
                app_tag=lock_config.app_tag,
                buffer=lock_config.selection_buffer,
            )
            lock_script = built.tx.outputs[0].script_pubkey.hex()
            locked = LockedUtxo(
                txid=built.txid,
                vout=0,
                satoshis=satoshis,
                locking_script=lock_script,
                unlock_block=unlock_block,
                public_key_hex=state.wallet_pubkey,
                lock_block=lock_block,
                ordinal_origin=ordinal_origin,
                account_id=state.account_id,
            )
            record = TransactionRecord(
                txid=built.txid,
                raw_hex=built.raw_hex,
                description=f"Locked {satoshis} sats until block {unlock_block}",
                labels=["lock"],
                amount=-(satoshis + built.fee),
                account_id=state.account_id,
            )

            async def _bookkeeping(ledger: LedgerStore) -> None:
                await ledger.record_transaction(record)
                await ledger.insert_lock(locked, basket=lock_config.basket)
                if built.change_vout is not None:
                    await ledger.insert_utxo(self._wallet_output(state, built.txid, built.change_vout, built.change))

            outcome = await self.saga.execute(SagaPlan(built, state.account_id, _bookkeeping))

        return LockResult(
            txid=outcome.txid,
            satoshis=satoshis,
            fee=built.fee,
            unlock_block=unlock_block,
            lock_vout=0,
            locking_script=lock_script,
            ledger_synced=outcome.ledger_synced,
        )

    async def unlock_bsv(self, locked: LockedUtxo) -> Result[UnlockResult]:
        """Spend a matured lock back to the wallet address.

        Fails with ``LockNotSpendable`` (nothing broadcast, ledger untouched)
        while the chain tip is below ``unlock_block``.
        If the broadcast fails because another transaction already spent the
        lock, the lock is marked unlocked and the result names that
        transaction with ``spent_elsewhere`` set.
        """
        return await self._run("unlock_bsv", partial(self._unlock, locked))

    async def _unlock(self, locked: LockedUtxo) -> UnlockResult:
        state = self._require_state()
        parsed = parse_timelock_script(locked.locking_script)
        if parsed is None:
            msg = f"{locked.txid}:{locked.vout} is not a timelock output"
            raise InvalidParams(msg)
        if parsed.public_key_hash != hash160(bytes.fromhex(state.wallet_pubkey)).hex():
            msg = f"lock {locked.txid}:{locked.vout} is not owned by the wallet key"
            raise InvalidParams(msg)

        rate = await self.fee_provider.get_rate(state.cache)
        height = await self._require_chain().get_block_height()

        async with self.spend_guard():
            wif = await state.key_store.get_signing_key_for(KeyRole.WALLET, "unlock_bsv")
            built = build_unlock_transaction(locked, wif, rate, current_height=height)
            record = TransactionRecord(
                txid=built.txid,
                raw_hex=built.raw_hex,
                description=f"Unlocked {built.change} sats from block {locked.unlock_block}",
                labels=["unlock"],
                amount=built.change,
                account_id=state.account_id,
            )

            async def _bookkeeping(ledger: LedgerStore) -> None:
                await ledger.record_transaction(record)
                await ledger.insert_utxo(self._wallet_output(state, built.txid, 0, built.change))
                await ledger.mark_lock_unlocked(locked.txid, locked.vout, state.account_id)

            async def _spent_elsewhere(ledger: LedgerStore, _spender: str) -> None:
                await ledger.mark_lock_unlocked(locked.txid, locked.vout, state.account_id)

            outcome = await self.saga.execute(
                SagaPlan(
                    built,
                    state.account_id,
                    _bookkeeping,
                    on_foreign_spend=_spent_elsewhere,
                    accept_foreign_spend=True,
                )
            )

        if outcome.outcome == SagaOutcome.FOREIGN_SPEND:
            return UnlockResult(
                txid=outcome.txid,
                satoshis=0,
                fee=0,
                ledger_synced=outcome.ledger_synced,
                spent_elsewhere=True,
            )
        return UnlockResult(
            txid=outcome.txid,
            satoshis=built.change,
            fee=built.fee,
            ledger_synced=outcome.ledger_synced,
        )

    async def detect_locks(self) -> Result[list[LockedUtxo]]:
        """Timelock outputs in the lock basket, parsed from their scripts.

        A lock without a recorded height gets one estimated from its age.
        """
        return await self._run("detect_locks", self._detect_locks)

    async def _detect_locks(self) -> list[LockedUtxo]:
        state = self._require_state()
        known = {lock.key: lock for lock in await self.ledger.get_locks(state.account_id)}
        height = await self._current_height()
        now = datetime.now(UTC)

        found: list[LockedUtxo] = []
        for utxo in await self.ledger.get_unspent_in_basket(self._config.lock.basket, state.account_id):
            parsed = parse_timelock_script(utxo.locking_script)
            if parsed is None:
                logger.debug("Skipping non-timelock output %s:%d in lock basket", utxo.txid, utxo.vout)
                continue
            lock = known.get(utxo.key)
            lock_block = lock.lock_block if lock is not None else None
            if lock_block is None and height is not None and utxo.created_at is not None:
                lock_block = estimate_lock_block(height, utxo.created_at, now)
            found.append(
                LockedUtxo(
                    txid=utxo.txid,
                    vout=utxo.vout,
                    satoshis=utxo.satoshis,
                    locking_script=utxo.locking_script,
                    unlock_block=parsed.unlock_block,
                    public_key_hex=lock.public_key_hex if lock is not None else "",
                    lock_block=lock_block,
                    ordinal_origin=lock.ordinal_origin if lock is not None else None,
                    created_at=utxo.created_at,
                    account_id=state.account_id,
                )
            )
        return found

    # ------------------------------------------------------------------
    # Consolidation
    # ------------------------------------------------------------------

    async def consolidate_utxos(self, keys: Sequence[OutpointKey]) -> Result[ConsolidateResult]:
        """Merge the given wallet outputs into one."""
        return await self._run("consolidate_utxos", partial(self._consolidate, list(keys)))

    async def _consolidate(self, keys: list[OutpointKey]) -> ConsolidateResult:
        state = self._require_state()
        rate = await self.fee_provider.get_rate(state.cache)

        async with self.spend_guard():
            utxos = await self.ledger.get_utxos(keys, state.account_id)
            for utxo in utxos:
                if not utxo.spendable or utxo.spending_status != SpendingStatus.UNSPENT:
                    msg = f"utxo {utxo.txid}:{utxo.vout} is not spendable ({utxo.status})"
                    raise InvalidParams(msg)
            wif = await state.key_store.get_signing_key_for(KeyRole.WALLET, "consolidate_utxos")
            built = build_consolidation_transaction(utxos, wif, rate)
            record = TransactionRecord(
                txid=built.txid,
                raw_hex=built.raw_hex,
                description=f"Consolidated {len(built.spent)} UTXOs",
                labels=["consolidate"],
                amount=-built.fee,
                account_id=state.account_id,
            )

            async def _bookkeeping(ledger: LedgerStore) -> None:
                await ledger.record_transaction(record)
                await ledger.insert_utxo(self._wallet_output(state, built.txid, 0, built.change))

            outcome = await self.saga.execute(SagaPlan(built, state.account_id, _bookkeeping))

        return ConsolidateResult(
            txid=outcome.txid,
            input_count=len(built.spent),
            satoshis=built.change,
            fee=built.fee,
            ledger_synced=outcome.ledger_synced,
        )

    # ------------------------------------------------------------------
    # Derived addresses
    # ------------------------------------------------------------------

    async def register_derived_address(
        self,
        sender_pubkey: str,
        invoice_number: str,
        label: str | None = None,
    ) -> Result[DerivedAddress]:
        """Record the address a counterparty pays for *invoice_number*.

        Only ``(address, sender_pubkey, invoice_number)`` is stored; the
        spending key is re-derived whenever the address is spent from.
        """

        async def _op() -> DerivedAddress:
            state = self._require_state()
            identity_wif = await state.key_store.get_signing_key_for(KeyRole.IDENTITY, "register_derived_address")
            try:
                address = derive_sender_address(
                    wif_to_privkey(identity_wif)[0],
                    bytes.fromhex(sender_pubkey),
                    invoice_number,
                    testnet=state.testnet,
                )
            except ValueError as exc:
                raise InvalidParams(f"cannot derive address: {exc}") from exc
            derived = DerivedAddress(
                address=address,
                sender_pubkey=sender_pubkey,
                invoice_number=invoice_number,
                label=label,
                account_id=state.account_id,
            )
            await self.ledger.add_derived_address(derived)
            return derived

        return await self._run("register_derived_address", _op)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_fee_rate(self) -> float:
        """Effective fee rate in sat/byte; never fails."""
        cache = self._state.cache if self._state is not None else None
        return await self.fee_provider.get_rate(cache)

    async def get_max_send(self) -> Result[MaxSend]:
        """Largest single payment the wallet can make right now."""

        async def _op() -> MaxSend:
            state = self._require_state()
            rate = await self.fee_provider.get_rate(state.cache)
            outputs = await self._spendable_outputs(state.account_id)
            return calculate_max_send([utxo for utxo, _ in outputs], rate)

        return await self._run("get_max_send", _op)

    async def estimate_exact_fee(self, satoshis: int) -> Result[ExactFee]:
        async def _op() -> ExactFee:
            state = self._require_state()
            rate = await self.fee_provider.get_rate(state.cache)
            outputs = await self._spendable_outputs(state.account_id)
            return calculate_exact_fee(satoshis, [utxo for utxo, _ in outputs], rate)

        return await self._run("estimate_exact_fee", _op)

    async def get_balance(self, basket: str | None = None) -> Result[int]:
        async def _op() -> int:
            state = self._require_state()
            return await self.ledger.get_balance(state.account_id, basket)

        return await self._run("get_balance", _op)

    async def health_check(self) -> dict[str, str]:
        """Check health status of all engine components.

        Returns:
            Dictionary with component statuses ('ok', 'error',
            'not_initialized', ...).
        """
        status = {
            "engine": "ok" if self._initialized else "not_initialized",
            "datastore": "unknown",
            "chain": "unknown",
            "session": "unlocked" if self._state is not None else "locked",
            "tasks": "running" if self._task_manager and self._task_manager.is_running else "stopped",
        }
        if not self._initialized:
            return status

        status["datastore"] = "ok" if self._datastore is not None and await self._datastore.ping() else "error"

        if self._chain_service is not None:
            chain_status = await self._chain_service.healthcheck()
            status["chain"] = "ok" if all(v == "ok" for v in chain_status.values()) else "degraded"
        else:
            status["chain"] = "external"
        return status
