"""Combined WhatsOnChain + ARC + mAPI chain service.

Implements the engine's ``Broadcaster``, ``ChainOracle`` and ``FeeOracle``
protocols on top of the three HTTP clients.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sats_engine.chain.arc.service import ARCService
from sats_engine.chain.mapi.client import MAPIClient
from sats_engine.chain.woc.client import WoCClient
from sats_engine.errors.wallet_errors import BroadcastFailed, WalletError

if TYPE_CHECKING:
    from sats_engine.config.settings import NetworkConfig

logger = logging.getLogger(__name__)


class ChainService:
    """Unified chain service composing WhatsOnChain, ARC and mAPI.

    Usage::

        chain = ChainService(config.network)
        await chain.connect()
        try:
            txid = await chain.broadcast(raw_hex, local_txid)
            height = await chain.get_block_height()
        finally:
            await chain.close()
    """

    def __init__(self, config: NetworkConfig) -> None:
        self._woc = WoCClient(config)
        self._arc = ARCService(config)
        self._mapi = MAPIClient(config)

    async def connect(self) -> None:
        """Connect all HTTP clients."""
        await self._woc.connect()
        await self._arc.connect()
        await self._mapi.connect()

    async def close(self) -> None:
        """Close all HTTP clients."""
        await self._woc.close()
        await self._arc.close()
        await self._mapi.close()

    @property
    def is_connected(self) -> bool:
        return self._woc.is_connected and self._arc.is_connected and self._mapi.is_connected

    @property
    def woc(self) -> WoCClient:
        return self._woc

    @property
    def arc(self) -> ARCService:
        return self._arc

    @property
    def mapi(self) -> MAPIClient:
        return self._mapi

    # ------------------------------------------------------------------
    # Broadcaster
    # ------------------------------------------------------------------

    async def broadcast(self, raw_hex: str, txid: str) -> str:
        """Broadcast through WoC, ARC (JSON), ARC (text) then mAPI.

        Args:
            raw_hex: Signed transaction hex.
            txid: Locally computed txid, compared against broadcaster replies.

        Returns:
            The txid reported by the first broadcaster that accepts.

        Raises:
            BroadcastFailed: Every route failed; the message lists each cause.
        """
        errors: list[str] = []

        try:
            returned = await self._woc.broadcast(raw_hex)
        except WalletError as exc:
            logger.warning("WoC broadcast failed: %s", exc)
            errors.append(f"WoC: {exc}")
        else:
            self._check_txid("WoC", returned, txid)
            logger.info("WhatsOnChain broadcast successful: %s", returned or txid)
            return returned or txid

        for label, as_text in (("ARC", False), ("ARC2", True)):
            try:
                info = await self._arc.broadcast(raw_hex, as_text=as_text)
            except WalletError as exc:
                logger.warning("%s broadcast failed: %s", label, exc)
                errors.append(f"{label}: {exc}")
            else:
                self._check_txid(label, info.txid, txid)
                logger.info("%s broadcast successful: %s", label, info.txid)
                return info.txid

        try:
            returned = await self._mapi.broadcast(raw_hex)
        except WalletError as exc:
            logger.warning("mAPI broadcast failed: %s", exc)
            errors.append(f"mAPI: {exc}")
        else:
            self._check_txid("mAPI", returned, txid)
            logger.info("mAPI broadcast successful: %s", returned)
            return returned

        raise BroadcastFailed(" | ".join(errors))

    @staticmethod
    def _check_txid(source: str, returned: str, expected: str) -> None:
        if returned and expected and returned != expected:
            logger.error("TXID mismatch between %s and local: %s != %s", source, returned, expected)

    # ------------------------------------------------------------------
    # ChainOracle / FeeOracle
    # ------------------------------------------------------------------

    async def get_block_height(self) -> int:
        return await self._woc.get_block_height()

    async def is_output_spent(self, txid: str, vout: int) -> str | None:
        return await self._woc.is_output_spent(txid, vout)

    async def quote_fee_rate(self) -> float:
        quote = await self._mapi.get_fee_quote()
        return quote.rate

    async def healthcheck(self) -> dict[str, str]:
        """Connection status of each client plus a chain-tip probe."""
        status = {
            "woc": "ok" if self._woc.is_connected else "not_connected",
            "arc": "ok" if self._arc.is_connected else "not_connected",
            "mapi": "ok" if self._mapi.is_connected else "not_connected",
        }
        if self._woc.is_connected:
            try:
                await self._woc.get_block_height()
            except WalletError as exc:
                logger.warning("Chain health probe failed: %s", exc)
                status["woc"] = "error"
        return status
