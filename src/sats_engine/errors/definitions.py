"""Pre-built error instances for message-only failures."""

from __future__ import annotations

from sats_engine.errors.wallet_errors import InvalidAmount, InvalidParams, WalletError

# -- Engine lifecycle ------------------------------------------------------

ErrEngineNotUnlocked = WalletError(
    "wallet engine has no unlocked session", status_code=423, code="engine-not-unlocked"
)

# -- Validation ------------------------------------------------------------

ErrInvalidSatoshis = InvalidAmount("satoshis must be a positive integer")
ErrInvalidUnlockBlock = InvalidParams("unlock block must be a block height below 500000000")
ErrInvalidAddress = InvalidParams("invalid P2PKH address")
ErrInvalidLockingScript = InvalidParams("locking script is not valid hex")
ErrNoOutputs = InvalidParams("transaction needs at least one output")
ErrNothingToConsolidate = InvalidParams("need at least two UTXOs to consolidate")

# -- Ledger ----------------------------------------------------------------

ErrUtxoAlreadyPending = WalletError(
    "utxo is already pending in another transaction", status_code=409, code="utxo-pending"
)
ErrUtxoNotFound = WalletError("utxo not found", status_code=404, code="utxo-not-found")
