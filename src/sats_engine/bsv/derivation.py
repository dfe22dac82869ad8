"""Counterparty key derivation (BRC-42 style ECDH + HMAC).

The receiver reconstructs the spending key for a payment address from
``(identity_key, sender_pubkey, invoice_number)``; the sender arrives at the
matching public key from its own private key and the receiver's identity
public key. Both sides compute the same ECDH shared secret, so neither learns
the other's private material and the child private key never needs to be
stored.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from sats_engine.bsv.address import pubkey_to_address
from sats_engine.bsv.keys import (
    CURVE_GEN,
    CURVE_ORDER,
    point_to_pubkey,
    private_key_to_public_key,
    pubkey_to_point,
    scalar_to_bytes,
)
from sats_engine.utils.crypto import hmac_sha256, sha256

# Invoice numbers tried when searching for the key behind an observed address.
NUMERIC_INVOICE_RANGE = range(101)
COMMON_INVOICE_NUMBERS: tuple[str, ...] = ("", "default", "payment", "send", "1", "0")

TAGGED_PATH_PREFIX = "m/44'/236'/218'"


def compute_shared_secret(privkey: bytes, counterparty_pubkey: bytes) -> bytes:
    """ECDH shared secret ``counterparty_pub * priv`` as a compressed point."""
    scalar = int.from_bytes(privkey, "big")
    return point_to_pubkey(pubkey_to_point(counterparty_pubkey) * scalar)


def _invoice_tweak(shared_secret: bytes, invoice_number: str) -> int:
    return int.from_bytes(hmac_sha256(shared_secret, invoice_number.encode("utf-8")), "big")


def derive_child_private_key(
    identity_privkey: bytes,
    counterparty_pubkey: bytes,
    invoice_number: str,
) -> bytes:
    """Derive the child private key for a counterparty and invoice number.

    Args:
        identity_privkey: The wallet's 32-byte identity private key.
        counterparty_pubkey: SEC-encoded public key of the other party.
        invoice_number: Arbitrary invoice string agreed with the counterparty.

    Returns:
        The 32-byte child private key ``(priv + HMAC(shared, invoice)) mod n``.
    """
    shared = compute_shared_secret(identity_privkey, counterparty_pubkey)
    child = (int.from_bytes(identity_privkey, "big") + _invoice_tweak(shared, invoice_number)) % CURVE_ORDER
    return scalar_to_bytes(child)


def derive_child_public_key(
    sender_privkey: bytes,
    recipient_pubkey: bytes,
    invoice_number: str,
) -> bytes:
    """Sender-side derivation of the recipient's child public key.

    Equals ``private_key_to_public_key(derive_child_private_key(recipient_priv,
    sender_pub, invoice_number))`` without knowing ``recipient_priv``.
    """
    shared = compute_shared_secret(sender_privkey, recipient_pubkey)
    # Jacobian generator on the left: it accepts affine points as the addend.
    point = CURVE_GEN * _invoice_tweak(shared, invoice_number) + pubkey_to_point(recipient_pubkey)
    return point_to_pubkey(point)


def derive_sender_address(
    identity_privkey: bytes,
    sender_pubkey: bytes,
    invoice_number: str,
    *,
    testnet: bool = False,
) -> str:
    """P2PKH address the sender pays to for this invoice number."""
    child = derive_child_private_key(identity_privkey, sender_pubkey, invoice_number)
    return pubkey_to_address(private_key_to_public_key(child), testnet=testnet)


@dataclass(frozen=True)
class DerivedKeyMatch:
    """A derived private key together with the inputs that produced it."""

    privkey: bytes
    sender_pubkey: bytes
    invoice_number: str


def _candidate_invoices(extra: Iterable[str] | None) -> Iterator[str]:
    for i in NUMERIC_INVOICE_RANGE:
        yield str(i)
    yield from COMMON_INVOICE_NUMBERS
    if extra is not None:
        yield from extra


def find_derived_key_for_address(
    identity_privkey: bytes,
    target_address: str,
    sender_pubkeys: Iterable[bytes],
    *,
    invoice_numbers: Iterable[str] | None = None,
    testnet: bool = False,
) -> DerivedKeyMatch | None:
    """Search known senders and common invoice numbers for *target_address*.

    Returns:
        The first match, or None if no combination produces the address.
    """
    extra = list(invoice_numbers) if invoice_numbers is not None else None
    for sender in sender_pubkeys:
        for invoice in _candidate_invoices(extra):
            child = derive_child_private_key(identity_privkey, sender, invoice)
            if pubkey_to_address(private_key_to_public_key(child), testnet=testnet) == target_address:
                return DerivedKeyMatch(privkey=child, sender_pubkey=sender, invoice_number=invoice)
    return None


# ---------------------------------------------------------------------------
# Tagged (app-scoped) keys
# ---------------------------------------------------------------------------


def tagged_derivation_path(label: str, id_: str) -> str:
    """Deterministic informational path ``m/44'/236'/218'/{label}/{id}``."""
    label_index = int.from_bytes(sha256(label.encode("utf-8"))[:4], "big") % 0x80000000
    id_index = int.from_bytes(sha256(id_.encode("utf-8"))[:4], "big") % 0x80000000
    return f"{TAGGED_PATH_PREFIX}/{label_index}/{id_index}"


@dataclass(frozen=True)
class TaggedKey:
    privkey: bytes
    pubkey: bytes
    address: str
    derivation_path: str


def derive_tagged_key(
    root_privkey: bytes,
    label: str,
    id_: str,
    domain: str = "",
    *,
    testnet: bool = False,
) -> TaggedKey:
    """Derive an app-scoped key by self-derivation with ``label:id:domain``."""
    root_pub = private_key_to_public_key(root_privkey)
    child = derive_child_private_key(root_privkey, root_pub, f"{label}:{id_}:{domain}")
    pub = private_key_to_public_key(child)
    return TaggedKey(
        privkey=child,
        pubkey=pub,
        address=pubkey_to_address(pub, testnet=testnet),
        derivation_path=tagged_derivation_path(label, id_),
    )
