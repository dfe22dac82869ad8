"""Transaction builders — P2PKH sends, timelocks, unlocks and consolidation.

Every funding input carries a :data:`SigningStrategy` naming how its key is
obtained. Strategies are resolved to raw private keys once, before the
transaction is assembled, so the builders themselves are pure: the same
inputs, outputs and keys always produce the same signed transaction and txid.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from sats_engine.bsv.address import validate_address, wif_to_privkey
from sats_engine.bsv.derivation import derive_child_private_key
from sats_engine.bsv.keys import private_key_to_public_key, sign_digest
from sats_engine.bsv.script import (
    extract_pubkey_hash,
    op_return_script,
    p2pkh_lock_script_for_address,
    p2pkh_lock_script_for_pubkey,
    push_data,
)
from sats_engine.bsv.timelock import LOCKTIME_THRESHOLD, create_timelock_script, public_key_to_hash
from sats_engine.bsv.transaction import (
    LOCKTIME_SEQUENCE,
    SIGHASH_ALL_FORKID,
    Transaction,
    TxInput,
)
from sats_engine.engine.coin_selection import (
    DEFAULT_SELECTION_BUFFER,
    accumulate_covering,
    dedupe_utxos,
    select_coins,
)
from sats_engine.engine.domain import LockedUtxo, OutpointKey, Utxo
from sats_engine.engine.fees import calculate_lock_fee, calculate_tx_fee, fee_from_bytes, lock_output_size
from sats_engine.errors.definitions import (
    ErrInvalidAddress,
    ErrInvalidLockingScript,
    ErrInvalidSatoshis,
    ErrInvalidUnlockBlock,
    ErrNoOutputs,
    ErrNothingToConsolidate,
)
from sats_engine.errors.wallet_errors import InsufficientFunds, InvalidParams, LockNotSpendable, WalletError
from sats_engine.utils.crypto import hash160, sha256d

logger = logging.getLogger(__name__)

LOCK_SELECTION_BUFFER = 500

# Unlock size estimate: signature 73 + pubkey 34 + preimage ~180 + lock script.
_UNLOCK_SIG_BYTES = 73
_UNLOCK_PUBKEY_BYTES = 34
_UNLOCK_PREIMAGE_BYTES = 180


# ---------------------------------------------------------------------------
# Signing strategies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OwnerKey:
    """Input owned directly by a wallet key."""

    wif: str


@dataclass(frozen=True)
class DerivedKey:
    """Input paid to a counterparty-derived address; key is re-derived."""

    identity_wif: str
    counterparty_pubkey: str
    invoice_number: str


SigningStrategy = OwnerKey | DerivedKey


def resolve_signing_key(strategy: SigningStrategy) -> bytes:
    """Turn a strategy into the 32-byte private key that unlocks the input.

    Raises:
        InvalidParams: If the WIF or counterparty public key is malformed.
    """
    try:
        if isinstance(strategy, OwnerKey):
            return wif_to_privkey(strategy.wif)[0]
        identity_priv = wif_to_privkey(strategy.identity_wif)[0]
        return derive_child_private_key(
            identity_priv,
            bytes.fromhex(strategy.counterparty_pubkey),
            strategy.invoice_number,
        )
    except ValueError as exc:
        raise InvalidParams(f"cannot resolve signing key: {exc}") from exc


# ---------------------------------------------------------------------------
# Inputs / outputs / result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FundingInput:
    """A UTXO paired with the strategy for its signing key."""

    utxo: Utxo
    strategy: SigningStrategy


@dataclass(frozen=True)
class TxOutputSpec:
    address: str
    satoshis: int


@dataclass
class BuiltTransaction:
    """A fully signed transaction plus the bookkeeping the ledger needs.

    Attributes:
        tx: The signed transaction.
        txid: Transaction id, known before broadcast.
        raw_hex: Serialized transaction.
        fee: Fee paid in satoshis.
        change: Change returned to the wallet (0 when none).
        change_vout: Output index of the change, or None.
        spent: UTXOs consumed by the transaction.
    """

    tx: Transaction
    txid: str
    raw_hex: str
    fee: int
    change: int = 0
    change_vout: int | None = None
    spent: list[Utxo] = field(default_factory=list)

    @property
    def spent_keys(self) -> list[OutpointKey]:
        return [u.key for u in self.spent]


def _script_bytes(utxo: Utxo) -> bytes:
    try:
        return bytes.fromhex(utxo.locking_script)
    except ValueError as exc:
        raise ErrInvalidLockingScript from exc


def _sign_inputs(tx: Transaction, keys: Sequence[bytes]) -> None:
    for index, privkey in enumerate(keys):
        expected = extract_pubkey_hash(tx.inputs[index].source_script)
        if expected is not None and expected != hash160(private_key_to_public_key(privkey)):
            msg = f"signing key does not match the locking script of input {index}"
            raise InvalidParams(msg)
        tx.sign_p2pkh_input(index, privkey, SIGHASH_ALL_FORKID)


def _finalize(
    tx: Transaction,
    keys: Sequence[bytes],
    spent: list[Utxo],
    fee: int,
    change: int,
    change_vout: int | None,
) -> BuiltTransaction:
    if tx.total_input() != tx.total_output() + fee:
        msg = (
            f"output sum check failed: inputs {tx.total_input()} != "
            f"outputs {tx.total_output()} + fee {fee}"
        )
        raise WalletError(msg, code="builder-invariant")
    _sign_inputs(tx, keys)
    built = BuiltTransaction(
        tx=tx,
        txid=tx.txid(),
        raw_hex=tx.to_hex(),
        fee=fee,
        change=change,
        change_vout=change_vout,
        spent=spent,
    )
    logger.debug(
        "Built tx %s: %d inputs, %d outputs, fee=%d, size=%d",
        built.txid,
        len(tx.inputs),
        len(tx.outputs),
        fee,
        tx.size,
    )
    return built


def _add_funding(tx: Transaction, selected: Sequence[Utxo], by_key: dict[OutpointKey, FundingInput]) -> list[bytes]:
    keys: list[bytes] = []
    for utxo in selected:
        tx.add_input(TxInput.spending(utxo.txid, utxo.vout, utxo.satoshis, _script_bytes(utxo)))
        keys.append(resolve_signing_key(by_key[utxo.key].strategy))
    return keys


def _index_inputs(inputs: Sequence[FundingInput]) -> dict[OutpointKey, FundingInput]:
    by_key: dict[OutpointKey, FundingInput] = {}
    for fi in inputs:
        by_key.setdefault(fi.utxo.key, fi)
    return by_key


def _validate_address(address: str) -> None:
    if not validate_address(address):
        raise ErrInvalidAddress


# ---------------------------------------------------------------------------
# P2PKH send
# ---------------------------------------------------------------------------


def build_p2pkh_transaction(
    inputs: Sequence[FundingInput],
    outputs: Sequence[TxOutputSpec],
    change_address: str,
    rate: float,
    *,
    buffer: int = DEFAULT_SELECTION_BUFFER,
) -> BuiltTransaction:
    """Build and sign a transaction paying *outputs* from *inputs*.

    Inputs may be owned by different keys; each is signed with the key its
    strategy resolves to.

    Raises:
        InvalidParams: Empty outputs, bad address or malformed input data.
        InvalidAmount: Any output amount that is not positive.
        InsufficientFunds: The inputs cannot cover outputs plus fee.
    """
    if not outputs:
        raise ErrNoOutputs
    for spec in outputs:
        if spec.satoshis <= 0:
            raise ErrInvalidSatoshis
        _validate_address(spec.address)
    _validate_address(change_address)

    target = sum(spec.satoshis for spec in outputs)
    by_key = _index_inputs(inputs)
    selection = select_coins(
        [fi.utxo for fi in inputs],
        target,
        rate,
        buffer=buffer,
        extra_outputs=len(outputs) - 1,
    )

    tx = Transaction()
    keys = _add_funding(tx, selection.utxos, by_key)
    for spec in outputs:
        tx.add_output(spec.satoshis, p2pkh_lock_script_for_address(spec.address))

    change_vout = None
    if selection.change > 0:
        change_vout = len(tx.outputs)
        tx.add_output(selection.change, p2pkh_lock_script_for_address(change_address))

    return _finalize(tx, keys, selection.utxos, selection.fee, selection.change, change_vout)


# ---------------------------------------------------------------------------
# Lock
# ---------------------------------------------------------------------------


def lock_op_return_script(app_tag: str, ordinal_origin: str) -> bytes:
    """``OP_FALSE OP_RETURN <app_tag> "lock" <ordinal_origin>`` link output."""
    return op_return_script(app_tag.encode(), b"lock", ordinal_origin.encode())


def build_lock_transaction(
    inputs: Sequence[FundingInput],
    satoshis: int,
    unlock_block: int,
    public_key_hex: str,
    change_address: str,
    rate: float,
    *,
    ordinal_origin: str | None = None,
    app_tag: str = "wrootz",
    buffer: int = LOCK_SELECTION_BUFFER,
) -> BuiltTransaction:
    """Build and sign a transaction locking *satoshis* until *unlock_block*.

    Output layout: vout 0 is the timelock output, then the optional
    OP_RETURN link to *ordinal_origin*, then change.
    """
    if satoshis <= 0:
        raise ErrInvalidSatoshis
    if not 0 < unlock_block < LOCKTIME_THRESHOLD:
        raise ErrInvalidUnlockBlock
    _validate_address(change_address)

    try:
        lock_script = create_timelock_script(public_key_to_hash(public_key_hex), unlock_block)
    except ValueError as exc:
        raise InvalidParams(f"cannot build timelock script: {exc}") from exc

    link_script = lock_op_return_script(app_tag, ordinal_origin) if ordinal_origin else None
    link_bytes = lock_output_size(len(link_script)) if link_script else 0

    by_key = _index_inputs(inputs)
    selected, total, fee = accumulate_covering(
        (fi.utxo for fi in inputs),
        satoshis,
        buffer,
        lambda count, _subtotal: calculate_lock_fee(count, len(lock_script), rate, link_bytes),
    )
    change = total - satoshis - fee
    if change < 0:
        raise InsufficientFunds(required=satoshis + fee, available=total)

    tx = Transaction()
    keys = _add_funding(tx, selected, by_key)
    tx.add_output(satoshis, lock_script)
    if link_script is not None:
        tx.add_output(0, link_script)

    change_vout = None
    if change > 0:
        change_vout = len(tx.outputs)
        tx.add_output(change, p2pkh_lock_script_for_address(change_address))

    return _finalize(tx, keys, selected, fee, change, change_vout)


# ---------------------------------------------------------------------------
# Unlock
# ---------------------------------------------------------------------------


def unlock_fee(locking_script_size: int, rate: float) -> int:
    """Fee for spending a timelock output with a preimage solution."""
    unlock_script = _UNLOCK_SIG_BYTES + _UNLOCK_PUBKEY_BYTES + _UNLOCK_PREIMAGE_BYTES + locking_script_size
    size = 4 + 1 + 36 + 3 + unlock_script + 4 + 1 + 34 + 4
    return fee_from_bytes(size, rate)


def build_unlock_transaction(
    locked: LockedUtxo,
    wif: str,
    rate: float,
    *,
    current_height: int | None = None,
) -> BuiltTransaction:
    """Spend a timelock output back to its owner.

    The transaction has nLockTime = ``unlock_block`` and input sequence
    ``0xFFFFFFFE``. The unlocking script is ``<sig+0x41> <pubkey> <preimage>``
    where the preimage is the input's own FORKID signature preimage.

    Args:
        locked: The lock to spend.
        wif: Owner key for the lock's public key hash.
        rate: Fee rate in sat/byte.
        current_height: If given, reject before maturity.

    Raises:
        LockNotSpendable: ``current_height < unlock_block``.
        InsufficientFunds: The fee consumes the whole locked amount.
        InvalidParams: Malformed locking script or key.
    """
    if current_height is not None and current_height < locked.unlock_block:
        raise LockNotSpendable(locked.unlock_block - current_height, unlock_block=locked.unlock_block)

    try:
        lock_script = bytes.fromhex(locked.locking_script)
    except ValueError as exc:
        raise ErrInvalidLockingScript from exc

    fee = unlock_fee(len(lock_script), rate)
    output_sats = locked.satoshis - fee
    if output_sats <= 0:
        raise InsufficientFunds(required=fee + 1, available=locked.satoshis)

    privkey = resolve_signing_key(OwnerKey(wif))
    pubkey = private_key_to_public_key(privkey)

    tx = Transaction(version=1, locktime=locked.unlock_block)
    tx.add_input(
        TxInput.spending(
            locked.txid,
            locked.vout,
            locked.satoshis,
            lock_script,
            sequence=LOCKTIME_SEQUENCE,
        )
    )
    tx.add_output(output_sats, p2pkh_lock_script_for_pubkey(pubkey))

    preimage = tx.sighash_preimage(0, SIGHASH_ALL_FORKID)
    logger.debug("Unlock preimage: %d bytes, nLockTime=%d", len(preimage), tx.locktime)
    signature = sign_digest(privkey, sha256d(preimage))
    tx.inputs[0].script_sig = (
        push_data(signature + bytes([SIGHASH_ALL_FORKID])) + push_data(pubkey) + push_data(preimage)
    )

    spent = Utxo(
        txid=locked.txid,
        vout=locked.vout,
        satoshis=locked.satoshis,
        locking_script=locked.locking_script,
        spendable=False,
        account_id=locked.account_id,
    )
    return BuiltTransaction(
        tx=tx,
        txid=tx.txid(),
        raw_hex=tx.to_hex(),
        fee=fee,
        change=output_sats,
        change_vout=0,
        spent=[spent],
    )


# ---------------------------------------------------------------------------
# Consolidation
# ---------------------------------------------------------------------------


def build_consolidation_transaction(
    utxos: Sequence[Utxo],
    wif: str,
    rate: float,
) -> BuiltTransaction:
    """Merge *utxos* into a single output at the owner's address.

    Raises:
        InvalidParams: Fewer than two distinct UTXOs.
        InsufficientFunds: The fee consumes the whole input total.
    """
    selected = dedupe_utxos(utxos)
    total = sum(u.satoshis for u in selected)
    if len(selected) < 2:
        raise ErrNothingToConsolidate

    privkey = resolve_signing_key(OwnerKey(wif))
    fee = calculate_tx_fee(len(selected), 1, rate)
    output_sats = total - fee
    if output_sats <= 0:
        raise InsufficientFunds(required=fee + 1, available=total)

    tx = Transaction()
    for utxo in selected:
        tx.add_input(TxInput.spending(utxo.txid, utxo.vout, utxo.satoshis, _script_bytes(utxo)))
    tx.add_output(output_sats, p2pkh_lock_script_for_pubkey(private_key_to_public_key(privkey)))

    return _finalize(tx, [privkey] * len(selected), selected, fee, output_sats, 0)
