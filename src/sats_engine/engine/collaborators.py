"""Protocols for the network collaborators the engine depends on.

:class:`~sats_engine.chain.service.ChainService` implements all three; tests
substitute small fakes.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Broadcaster(Protocol):
    async def broadcast(self, raw_hex: str, txid: str) -> str:
        """Submit a signed transaction, returning its txid.

        Raises:
            BroadcastFailed: Every broadcast route rejected the transaction.
        """
        ...


@runtime_checkable
class ChainOracle(Protocol):
    async def get_block_height(self) -> int: ...

    async def is_output_spent(self, txid: str, vout: int) -> str | None:
        """Txid of the transaction spending ``txid:vout``, or None if unspent."""
        ...


@runtime_checkable
class FeeOracle(Protocol):
    async def quote_fee_rate(self) -> float:
        """Current network fee rate in sat/byte (unclamped)."""
        ...
