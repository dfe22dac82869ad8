"""Tests for counterparty (BRC-42 style) and tagged key derivation."""

from __future__ import annotations

from sats_engine.bsv.address import pubkey_to_address
from sats_engine.bsv.derivation import (
    TAGGED_PATH_PREFIX,
    compute_shared_secret,
    derive_child_private_key,
    derive_child_public_key,
    derive_sender_address,
    derive_tagged_key,
    find_derived_key_for_address,
    tagged_derivation_path,
)
from sats_engine.bsv.keys import private_key_to_public_key

_IDENTITY = (0x22).to_bytes(32, "big")
_SENDER = (0x33).to_bytes(32, "big")
_IDENTITY_PUB = private_key_to_public_key(_IDENTITY)
_SENDER_PUB = private_key_to_public_key(_SENDER)


class TestCounterpartyDerivation:
    def test_shared_secret_is_symmetric(self) -> None:
        assert compute_shared_secret(_IDENTITY, _SENDER_PUB) == compute_shared_secret(_SENDER, _IDENTITY_PUB)

    def test_sender_and_receiver_agree(self) -> None:
        child_priv = derive_child_private_key(_IDENTITY, _SENDER_PUB, "invoice-1")
        child_pub = derive_child_public_key(_SENDER, _IDENTITY_PUB, "invoice-1")
        assert private_key_to_public_key(child_priv) == child_pub

    def test_deterministic(self) -> None:
        a = derive_child_private_key(_IDENTITY, _SENDER_PUB, "42")
        b = derive_child_private_key(_IDENTITY, _SENDER_PUB, "42")
        assert a == b
        assert len(a) == 32

    def test_invoice_separates_keys(self) -> None:
        a = derive_child_private_key(_IDENTITY, _SENDER_PUB, "1")
        b = derive_child_private_key(_IDENTITY, _SENDER_PUB, "2")
        assert a != b
        assert a != _IDENTITY

    def test_sender_address(self) -> None:
        child_pub = derive_child_public_key(_SENDER, _IDENTITY_PUB, "payment")
        assert derive_sender_address(_IDENTITY, _SENDER_PUB, "payment") == pubkey_to_address(child_pub)


class TestFindDerivedKey:
    def test_numeric_invoice(self) -> None:
        target = derive_sender_address(_IDENTITY, _SENDER_PUB, "7")
        match = find_derived_key_for_address(_IDENTITY, target, [_SENDER_PUB])
        assert match is not None
        assert match.invoice_number == "7"
        assert match.sender_pubkey == _SENDER_PUB
        assert pubkey_to_address(private_key_to_public_key(match.privkey)) == target

    def test_common_invoice(self) -> None:
        target = derive_sender_address(_IDENTITY, _SENDER_PUB, "payment")
        match = find_derived_key_for_address(_IDENTITY, target, [_IDENTITY_PUB, _SENDER_PUB])
        assert match is not None
        assert match.invoice_number == "payment"

    def test_extra_invoice(self) -> None:
        target = derive_sender_address(_IDENTITY, _SENDER_PUB, "order-9001")
        assert find_derived_key_for_address(_IDENTITY, target, [_SENDER_PUB]) is None
        match = find_derived_key_for_address(_IDENTITY, target, [_SENDER_PUB], invoice_numbers=["order-9001"])
        assert match is not None


class TestTaggedKeys:
    def test_path_shape(self) -> None:
        path = tagged_derivation_path("wrootz", "post-1")
        assert path.startswith(TAGGED_PATH_PREFIX + "/")
        label_index, id_index = (int(p) for p in path.split("/")[-2:])
        assert 0 <= label_index < 2**31
        assert 0 <= id_index < 2**31

    def test_deterministic_and_scoped(self) -> None:
        a = derive_tagged_key(_IDENTITY, "wrootz", "post-1", "example.com")
        b = derive_tagged_key(_IDENTITY, "wrootz", "post-1", "example.com")
        c = derive_tagged_key(_IDENTITY, "wrootz", "post-2", "example.com")
        assert a == b
        assert a.privkey != c.privkey
        assert a.address == pubkey_to_address(a.pubkey)
