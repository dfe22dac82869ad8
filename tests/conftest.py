"""Shared test fixtures for the sats-engine test suite."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from factories import IDENTITY_WIF, WALLET_WIF, FakeChain

from sats_engine.config.settings import AppConfig, DatabaseConfig, FeeConfig, TaskConfig
from sats_engine.datastore.client import Datastore
from sats_engine.engine.client import WalletEngine
from sats_engine.engine.keystore import InMemoryKeyStore
from sats_engine.engine.services.ledger_store import LedgerStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


@pytest.fixture
def app_config() -> AppConfig:
    """Engine config on in-memory SQLite with background tasks off."""
    return AppConfig(
        db=DatabaseConfig(dsn="sqlite+aiosqlite:///:memory:"),
        fee=FeeConfig(user_rate=0.1),
        task=TaskConfig(enabled=False),
    )


@pytest.fixture
async def datastore(app_config: AppConfig) -> AsyncIterator[Datastore]:
    ds = Datastore(app_config.db)
    await ds.open(migrate=True)
    yield ds
    await ds.close()


@pytest.fixture
def ledger(datastore: Datastore) -> LedgerStore:
    return LedgerStore(datastore)


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def key_store() -> InMemoryKeyStore:
    return InMemoryKeyStore(WALLET_WIF, IDENTITY_WIF)


@pytest.fixture
async def engine(
    app_config: AppConfig,
    chain: FakeChain,
    key_store: InMemoryKeyStore,
) -> AsyncIterator[WalletEngine]:
    """Initialized and unlocked engine wired to :class:`FakeChain`."""
    eng = WalletEngine(app_config, broadcaster=chain, chain=chain, fee_oracle=chain)
    await eng.initialize()
    result = await eng.unlock(key_store)
    assert result.is_ok
    yield eng
    await eng.close()
