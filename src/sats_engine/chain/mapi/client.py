"""Merchant API (mAPI) client — fee quotes and fallback broadcast.

- GET  /mapi/feeQuote
- POST /mapi/tx

mAPI wraps its response in an envelope whose ``payload`` is either a JSON
object or a JSON-encoded string.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from sats_engine.errors.chain_errors import MAPIError
from sats_engine.errors.wallet_errors import NetworkTimeout

if TYPE_CHECKING:
    from sats_engine.config.settings import NetworkConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeeQuote:
    """Standard mining fee from a mAPI fee quote."""

    satoshis: int
    bytes: int

    @property
    def rate(self) -> float:
        """Fee rate in sat/byte."""
        return self.satoshis / self.bytes

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> FeeQuote:
        """Pick the ``standard`` fee entry out of a feeQuote payload.

        Raises:
            MAPIError: No usable standard fee entry.
        """
        fees = payload.get("fees")
        if not isinstance(fees, list):
            msg = "mAPI fee quote has no fees list"
            raise MAPIError(msg)
        for entry in fees:
            if not isinstance(entry, dict) or entry.get("feeType") != "standard":
                continue
            mining = entry.get("miningFee") or {}
            sats = mining.get("satoshis")
            size = mining.get("bytes")
            if isinstance(sats, int | float) and isinstance(size, int | float) and size > 0 and sats >= 0:
                return cls(satoshis=int(sats), bytes=int(size))
        msg = "mAPI fee quote has no valid standard mining fee"
        raise MAPIError(msg)


def _payload(envelope: Any) -> dict[str, Any]:
    if not isinstance(envelope, dict) or not envelope.get("payload"):
        msg = "No payload in mAPI response"
        raise MAPIError(msg)
    payload = envelope["payload"]
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError as exc:
            raise MAPIError(f"mAPI payload is not JSON: {exc}") from exc
    if not isinstance(payload, dict):
        msg = "mAPI payload is not an object"
        raise MAPIError(msg)
    return payload


class MAPIClient:
    """Async HTTP client for a merchant API endpoint.

    Usage::

        mapi = MAPIClient(config.network)
        await mapi.connect()
        try:
            quote = await mapi.get_fee_quote()
        finally:
            await mapi.close()
    """

    def __init__(self, config: NetworkConfig) -> None:
        self._config = config
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        """Create the underlying HTTP client."""
        self._client = httpx.AsyncClient(
            base_url=self._config.mapi_url.rstrip("/"),
            headers={"Content-Type": "application/json"},
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

    async def get_fee_quote(self) -> FeeQuote:
        """Fetch the current standard mining fee.

        Raises:
            MAPIError: On HTTP errors or an unusable quote.
            NetworkTimeout: If the request times out.
        """
        resp = await self._request("GET", "/mapi/feeQuote", operation="fee_quote")
        if resp.status_code != 200:
            raise MAPIError(f"mAPI fee quote failed ({resp.status_code})", status_code=resp.status_code)
        return FeeQuote.from_payload(_payload(self._json(resp)))

    async def broadcast(self, raw_tx_hex: str) -> str:
        """Submit a transaction; returns the txid on ``returnResult == "success"``."""
        resp = await self._request("POST", "/mapi/tx", operation="mapi_broadcast", json={"rawtx": raw_tx_hex})
        if resp.status_code not in (200, 201):
            raise MAPIError(f"mAPI broadcast failed ({resp.status_code})", status_code=resp.status_code)
        payload = _payload(self._json(resp))
        if payload.get("returnResult") == "success" and payload.get("txid"):
            return str(payload["txid"])
        message = payload.get("resultDescription") or payload.get("returnResult") or "Unknown mAPI error"
        raise MAPIError(str(message))

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _ensure_connected(self) -> httpx.AsyncClient:
        if self._client is None:
            msg = "mAPI client not connected. Call connect() first."
            raise MAPIError(msg, status_code=500)
        return self._client

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as exc:
            raise MAPIError(f"mAPI returned a non-JSON response: {resp.text[:200]}") from exc

    async def _request(self, method: str, path: str, *, operation: str, **kwargs: Any) -> httpx.Response:
        client = self._ensure_connected()
        try:
            return await client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise NetworkTimeout(operation, self._config.request_timeout) from exc
        except httpx.HTTPError as exc:
            raise MAPIError(f"mAPI {operation} failed: {exc}") from exc
