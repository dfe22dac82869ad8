"""Tests for error classes and pre-defined error instances."""

from __future__ import annotations

import pytest

from sats_engine.errors import definitions as defs
from sats_engine.errors.chain_errors import ARCError, MAPIError, WoCError
from sats_engine.errors.wallet_errors import (
    BroadcastFailed,
    DatabaseError,
    InsufficientFunds,
    InvalidAmount,
    InvalidParams,
    LockNotSpendable,
    NetworkTimeout,
    WalletError,
    WalletLocked,
)

# ---------------------------------------------------------------------------
# WalletError base class
# ---------------------------------------------------------------------------


class TestWalletError:
    def test_default_attributes(self) -> None:
        err = WalletError("something broke")
        assert str(err) == "something broke"
        assert err.message == "something broke"
        assert err.status_code == 500
        assert err.code == "wallet-error"

    def test_custom_attributes(self) -> None:
        err = WalletError("bad request", status_code=400, code="bad-req")
        assert err.status_code == 400
        assert err.code == "bad-req"

    def test_is_exception(self) -> None:
        with pytest.raises(WalletError, match="boom"):
            raise WalletError("boom")


# ---------------------------------------------------------------------------
# Typed errors
# ---------------------------------------------------------------------------


class TestTaxonomy:
    def test_insufficient_funds(self) -> None:
        err = InsufficientFunds(required=6_000, available=4_000)
        assert err.shortfall == 2_000
        assert err.code == "insufficient-funds"
        assert err.status_code == 422
        assert "6000" in err.message

    def test_shortfall_never_negative(self) -> None:
        assert InsufficientFunds(required=10, available=50).shortfall == 0

    def test_lock_not_spendable(self) -> None:
        err = LockNotSpendable(10, unlock_block=900_010)
        assert err.blocks_remaining == 10
        assert err.unlock_block == 900_010
        assert err.code == "lock-not-spendable"

    def test_wrapped_causes(self) -> None:
        cause = RuntimeError("disk full")
        assert DatabaseError(cause).cause is cause
        assert str(DatabaseError(cause)) == "database error: disk full"
        assert str(BroadcastFailed("WoC: x | ARC: y")) == "broadcast failed: WoC: x | ARC: y"

    def test_network_timeout(self) -> None:
        err = NetworkTimeout("is_output_spent", 10)
        assert err.operation == "is_output_spent"
        assert err.message == "is_output_spent timed out after 10s"
        assert err.status_code == 504

    @pytest.mark.parametrize(
        ("err", "code", "status"),
        [
            (InvalidAmount(), "invalid-amount", 400),
            (InvalidParams("bad"), "invalid-params", 400),
            (WalletLocked(), "wallet-locked", 423),
            (BroadcastFailed("x"), "broadcast-failed", 502),
            (DatabaseError("x"), "database-error", 500),
        ],
    )
    def test_codes(self, err: WalletError, code: str, status: int) -> None:
        assert isinstance(err, WalletError)
        assert err.code == code
        assert err.status_code == status


# ---------------------------------------------------------------------------
# Chain errors
# ---------------------------------------------------------------------------


class TestChainErrors:
    @pytest.mark.parametrize(
        ("cls", "code"),
        [(WoCError, "woc-error"), (ARCError, "arc-error"), (MAPIError, "mapi-error")],
    )
    def test_defaults(self, cls: type[WalletError], code: str) -> None:
        err = cls("failed")
        assert isinstance(err, WalletError)
        assert err.status_code == 502
        assert err.code == code

    def test_custom_status(self) -> None:
        assert ARCError("timeout", status_code=504).status_code == 504


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------


class TestDefinitions:
    def test_all_are_wallet_errors(self) -> None:
        errors = [v for k, v in vars(defs).items() if k.startswith("Err")]
        assert errors
        assert all(isinstance(e, WalletError) for e in errors)

    def test_codes(self) -> None:
        assert defs.ErrEngineNotUnlocked.status_code == 423
        assert defs.ErrInvalidSatoshis.code == "invalid-amount"
        assert defs.ErrUtxoAlreadyPending.code == "utxo-pending"
