"""Key store — source of signing keys for the duration of one operation.

The engine never keeps private keys between calls: every operation asks the
key store for the WIF it needs, uses it to build and sign, and drops it.
"""

from __future__ import annotations

import enum
import logging
from typing import Protocol, Self, runtime_checkable

from mnemonic import Mnemonic

from sats_engine.bsv.address import privkey_to_wif
from sats_engine.bsv.keys import (
    IDENTITY_PATH,
    ORDINALS_PATH,
    WALLET_PATH,
    ExtendedPrivateKey,
)
from sats_engine.errors.wallet_errors import InvalidParams, WalletLocked

logger = logging.getLogger(__name__)


class KeyRole(enum.StrEnum):
    """Which wallet key an operation needs."""

    WALLET = "wallet"
    IDENTITY = "identity"
    ORDINALS = "ordinals"


@runtime_checkable
class KeyStore(Protocol):
    """Supplies WIF keys per call; raises :class:`WalletLocked` when locked."""

    async def get_signing_key_for(self, role: KeyRole | str, operation: str) -> str: ...


class InMemoryKeyStore:
    """Key store holding the three wallet keys in memory until :meth:`lock`.

    Example::

        store = InMemoryKeyStore.from_seed(seed)
        wif = await store.get_signing_key_for("wallet", "send_bsv")
    """

    def __init__(
        self,
        wallet_wif: str,
        identity_wif: str,
        ordinals_wif: str | None = None,
    ) -> None:
        self._keys: dict[KeyRole, str] | None = {
            KeyRole.WALLET: wallet_wif,
            KeyRole.IDENTITY: identity_wif,
        }
        if ordinals_wif is not None:
            self._keys[KeyRole.ORDINALS] = ordinals_wif

    @classmethod
    def from_seed(cls, seed: bytes, *, testnet: bool = False) -> Self:
        """Derive the wallet, ordinals and identity keys from a BIP32 seed."""
        master = ExtendedPrivateKey.from_seed(seed)
        return cls(
            wallet_wif=privkey_to_wif(master.derive_path(WALLET_PATH).key, testnet=testnet),
            identity_wif=privkey_to_wif(master.derive_path(IDENTITY_PATH).key, testnet=testnet),
            ordinals_wif=privkey_to_wif(master.derive_path(ORDINALS_PATH).key, testnet=testnet),
        )

    @classmethod
    def from_mnemonic(cls, words: str, passphrase: str = "", *, testnet: bool = False) -> Self:
        """Derive the keys from a BIP39 English mnemonic.

        Raises:
            InvalidParams: The phrase fails the BIP39 wordlist or checksum check.
        """
        m = Mnemonic("english")
        if not m.check(words):
            msg = "invalid BIP39 mnemonic"
            raise InvalidParams(msg)
        return cls.from_seed(Mnemonic.to_seed(words, passphrase), testnet=testnet)

    @property
    def is_locked(self) -> bool:
        return self._keys is None

    def lock(self) -> None:
        """Forget every key; later requests raise :class:`WalletLocked`."""
        self._keys = None
        logger.info("Key store locked")

    async def get_signing_key_for(self, role: KeyRole | str, operation: str) -> str:  # noqa: ASYNC910
        if self._keys is None:
            raise WalletLocked(f"wallet is locked; cannot sign for {operation}")
        try:
            key_role = KeyRole(role)
        except ValueError as exc:
            raise InvalidParams(f"unknown key role: {role}") from exc
        wif = self._keys.get(key_role)
        if wif is None:
            raise InvalidParams(f"no {key_role} key available for {operation}")
        logger.debug("Issued %s key for %s", key_role, operation)
        return wif

