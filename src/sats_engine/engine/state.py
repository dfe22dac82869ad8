"""EngineState — everything that lives only while the wallet is unlocked."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sats_engine.bsv.address import pubkey_to_address, wif_to_privkey
from sats_engine.bsv.keys import private_key_to_public_key
from sats_engine.cache.memory import MemoryCache
from sats_engine.engine.keystore import KeyRole, KeyStore

logger = logging.getLogger(__name__)


@dataclass
class EngineState:
    """Session state created by ``WalletEngine.unlock`` and cleared by ``lock``.

    Only public key material is held here. Private keys are fetched from
    :attr:`key_store` per operation and never stored on the state.

    Attributes:
        key_store: Source of signing keys for this session.
        account_id: Ledger account the session operates on.
        wallet_pubkey: Compressed wallet public key (hex).
        wallet_address: P2PKH address for change and lock ownership.
        identity_pubkey: Compressed identity public key (hex).
        testnet: Whether addresses use the testnet version byte.
        cache: Session cache (fee-rate quotes).
    """

    key_store: KeyStore
    account_id: int
    wallet_pubkey: str
    wallet_address: str
    identity_pubkey: str
    testnet: bool = False
    cache: MemoryCache = field(default_factory=MemoryCache)

    @classmethod
    async def open(cls, key_store: KeyStore, *, account_id: int = 1, testnet: bool = False) -> EngineState:
        """Read public key data from *key_store* and build the session state.

        Raises:
            WalletLocked: The key store refuses to hand out keys.
        """
        wallet_priv = wif_to_privkey(await key_store.get_signing_key_for(KeyRole.WALLET, "unlock"))[0]
        identity_priv = wif_to_privkey(await key_store.get_signing_key_for(KeyRole.IDENTITY, "unlock"))[0]
        wallet_pub = private_key_to_public_key(wallet_priv)
        state = cls(
            key_store=key_store,
            account_id=account_id,
            wallet_pubkey=wallet_pub.hex(),
            wallet_address=pubkey_to_address(wallet_pub, testnet=testnet),
            identity_pubkey=private_key_to_public_key(identity_priv).hex(),
            testnet=testnet,
        )
        logger.info("Engine session opened for account %d (%s)", account_id, state.wallet_address)
        return state

    async def clear(self) -> None:
        await self.cache.flush()
        logger.info("Engine session cleared for account %d", self.account_id)
