"""WhatsOnChain REST client — chain height, spent status, broadcast.

Async HTTP client for the public WhatsOnChain API:
- GET  /v1/bsv/<network>/chain/info
- GET  /v1/bsv/<network>/tx/<txid>/<vout>/spent
- POST /v1/bsv/<network>/tx/raw

Supports both mainnet and testnet via ``NetworkConfig.network``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from sats_engine.errors.chain_errors import WoCError
from sats_engine.errors.wallet_errors import NetworkTimeout

if TYPE_CHECKING:
    from sats_engine.config.settings import NetworkConfig

logger = logging.getLogger(__name__)


class WoCClient:
    """Async HTTP client for the WhatsOnChain BSV API.

    Usage::

        woc = WoCClient(config.network)
        await woc.connect()
        try:
            height = await woc.get_block_height()
        finally:
            await woc.close()
    """

    def __init__(self, config: NetworkConfig) -> None:
        self._config = config
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        """Create the underlying HTTP client."""
        self._client = httpx.AsyncClient(
            base_url=f"{self._config.woc_url.rstrip('/')}/{self._config.network.value}",
            headers={"Accept": "application/json"},
            timeout=self._config.request_timeout,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_block_height(self) -> int:
        """Current chain tip height.

        Raises:
            WoCError: On HTTP errors.
            NetworkTimeout: If the request times out.
        """
        resp = await self._request("GET", "/chain/info", operation="get_block_height")
        if resp.status_code != 200:
            raise WoCError(f"WoC chain info failed ({resp.status_code})", status_code=resp.status_code)
        data: dict[str, Any] = self._json(resp)
        return int(data.get("blocks", 0))

    async def is_output_spent(self, txid: str, vout: int) -> str | None:
        """Txid spending ``txid:vout``, or None when WoC reports it unspent (404)."""
        timeout = self._config.spent_check_timeout
        resp = await self._request(
            "GET",
            f"/tx/{txid}/{vout}/spent",
            operation="is_output_spent",
            timeout=timeout,
        )
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise WoCError(f"WoC spent check failed ({resp.status_code})", status_code=resp.status_code)
        data: dict[str, Any] = self._json(resp)
        spender = data.get("txid")
        return str(spender) if spender else None

    async def broadcast(self, raw_tx_hex: str) -> str:
        """Broadcast a signed transaction and return the txid WoC reports."""
        resp = await self._request("POST", "/tx/raw", operation="woc_broadcast", json={"txhex": raw_tx_hex})
        text = resp.text.strip()
        if resp.status_code not in (200, 201):
            raise WoCError(text.strip('"') or f"HTTP {resp.status_code}", status_code=resp.status_code)
        # WoC returns the txid as plain text or a JSON string
        return text.strip('"')

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _ensure_connected(self) -> httpx.AsyncClient:
        if self._client is None:
            msg = "WoCClient is not connected — call connect() first"
            raise WoCError(msg, status_code=500)
        return self._client

    @staticmethod
    def _json(resp: httpx.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as exc:
            raise WoCError(f"WoC returned a non-JSON response: {resp.text[:200]}") from exc
        if not isinstance(data, dict):
            raise WoCError(f"WoC returned an unexpected payload: {resp.text[:200]}")
        return data

    async def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        client = self._ensure_connected()
        effective = timeout if timeout is not None else self._config.request_timeout
        try:
            return await client.request(method, path, timeout=effective, **kwargs)
        except httpx.TimeoutException as exc:
            raise NetworkTimeout(operation, effective) from exc
        except httpx.HTTPError as exc:
            raise WoCError(f"WoC {operation} failed: {exc}") from exc
