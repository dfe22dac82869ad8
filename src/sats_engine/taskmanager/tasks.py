"""Background task definitions — cron job handlers.

- ``sweep_pending_spends`` resolves inputs stranded in ``pending`` by a
  crash between broadcast and the ledger update
- ``refresh_fee_rate`` keeps the session fee-rate cache warm
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sats_engine.errors.wallet_errors import WalletError

if TYPE_CHECKING:
    from sats_engine.engine.client import WalletEngine

logger = logging.getLogger(__name__)

SWEEP_PENDING_SPENDS = "sweep_pending_spends"
REFRESH_FEE_RATE = "refresh_fee_rate"


async def task_sweep_pending_spends(engine: WalletEngine) -> None:
    """Confirm or roll back outputs pending longer than the configured timeout.

    Runs under the engine's spend guard so it never races a live spend.
    """
    try:
        async with engine.spend_guard():
            report = await engine.saga.sweep_stale_pending(engine.config.task.pending_timeout)
        if report.unresolved:
            logger.warning("%d pending outputs still unresolved after sweep", len(report.unresolved))
    except WalletError as exc:
        logger.error("sweep_pending_spends failed: %s", exc)


async def task_refresh_fee_rate(engine: WalletEngine) -> None:
    """Fetch a fresh fee quote into the session cache (no-op while locked)."""
    state = engine.state
    if state is None:
        return
    rate = await engine.fee_provider.refresh(state.cache)
    logger.debug("Fee rate refreshed: %.4f sat/byte", rate)
