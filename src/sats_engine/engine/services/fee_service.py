"""Fee rate provider — user override, cached network quote, or default."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sats_engine.engine.fees import clamp_fee_rate
from sats_engine.errors.wallet_errors import WalletError

if TYPE_CHECKING:
    from sats_engine.cache.memory import MemoryCache
    from sats_engine.config.settings import FeeConfig
    from sats_engine.engine.collaborators import FeeOracle

logger = logging.getLogger(__name__)

FEE_RATE_CACHE_KEY = "fee_rate"


class FeeRateProvider:
    """Resolve the effective fee rate in sat/byte.

    Priority: the clamped user override if configured, then a cached network
    quote younger than the quote TTL, then a fresh quote, then the default
    rate. Quote failures never reach the caller.
    """

    def __init__(self, config: FeeConfig, oracle: FeeOracle | None = None) -> None:
        self._config = config
        self._oracle = oracle

    @property
    def default_rate(self) -> float:
        return clamp_fee_rate(self._config.default_rate)

    def _clamp(self, rate: float) -> float:
        return max(self._config.min_rate, min(self._config.max_rate, clamp_fee_rate(rate)))

    async def get_rate(self, cache: MemoryCache | None = None) -> float:
        if self._config.user_rate is not None:
            return self._clamp(self._config.user_rate)

        if cache is not None:
            cached = await cache.get(FEE_RATE_CACHE_KEY)
            if cached is not None:
                return float(cached)

        return await self.refresh(cache)

    async def refresh(self, cache: MemoryCache | None = None) -> float:
        """Fetch a fresh quote and store it in *cache*; default rate on failure."""
        if self._oracle is None:
            return self.default_rate
        try:
            quoted = await self._oracle.quote_fee_rate()
        except WalletError as exc:
            logger.warning("Fee quote failed, using default rate %.3f: %s", self.default_rate, exc)
            return self.default_rate

        rate = self._clamp(quoted)
        if rate != quoted:
            logger.debug("Clamped quoted fee rate %.4f to %.4f", quoted, rate)
        if cache is not None:
            await cache.set(FEE_RATE_CACHE_KEY, rate, ttl=self._config.quote_ttl_seconds)
        return rate
