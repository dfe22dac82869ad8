"""ARC HTTP client — transaction broadcast.

- POST /v1/tx with a JSON body ``{"rawTx": ..., "skipScriptFlags": [...]}``
- POST /v1/tx with the raw hex as a ``text/plain`` body

Both modes send ``X-SkipScriptFlags`` so miners accept the NOP opcodes used
by the timelock script.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from sats_engine.chain.arc.models import SKIP_SCRIPT_FLAGS, TXInfo
from sats_engine.errors.chain_errors import ARCError
from sats_engine.errors.wallet_errors import NetworkTimeout

if TYPE_CHECKING:
    from sats_engine.config.settings import NetworkConfig

logger = logging.getLogger(__name__)


class ARCService:
    """Async HTTP client for the ARC transaction broadcasting API.

    Usage::

        arc = ARCService(config.network)
        await arc.connect()
        try:
            info = await arc.broadcast("raw_hex_here")
        finally:
            await arc.close()
    """

    def __init__(self, config: NetworkConfig) -> None:
        self._config = config
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        """Create the underlying HTTP client."""
        headers: dict[str, str] = {"X-SkipScriptFlags": SKIP_SCRIPT_FLAGS}
        if self._config.arc_token:
            headers["Authorization"] = f"Bearer {self._config.arc_token}"

        self._client = httpx.AsyncClient(
            base_url=self._config.arc_url.rstrip("/"),
            headers=headers,
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

    async def broadcast(self, raw_tx: str, *, as_text: bool = False) -> TXInfo:
        """Broadcast a transaction to ARC.

        Args:
            raw_tx: Raw transaction hex.
            as_text: Send the hex as a ``text/plain`` body instead of JSON.

        Returns:
            TXInfo of an accepted transaction.

        Raises:
            ARCError: On HTTP errors or a response that is not
                ``SEEN_ON_NETWORK`` / ``ACCEPTED``.
            NetworkTimeout: If the request times out.
        """
        client = self._ensure_connected()
        if as_text:
            kwargs: dict[str, object] = {"content": raw_tx, "headers": {"Content-Type": "text/plain"}}
        else:
            kwargs = {"json": {"rawTx": raw_tx, "skipScriptFlags": [SKIP_SCRIPT_FLAGS]}}

        try:
            response = await client.post("/v1/tx", **kwargs)  # type: ignore[arg-type]
        except httpx.TimeoutException as exc:
            raise NetworkTimeout("arc_broadcast", self._config.request_timeout) from exc
        except httpx.HTTPError as exc:
            raise ARCError(f"ARC broadcast failed: {exc}") from exc

        if response.status_code not in (200, 201):
            self._raise_for_status(response)

        try:
            data = response.json()
        except ValueError as exc:
            raise ARCError(f"ARC returned a non-JSON response: {response.text[:200]}") from exc
        if not isinstance(data, dict):
            raise ARCError(f"ARC returned an unexpected response: {response.text[:200]}")
        info = TXInfo.from_dict(data)
        logger.debug("ARC response: txStatus=%s txid=%s", info.tx_status, info.txid)
        if not info.is_accepted:
            raise ARCError(info.error_message, status_code=response.status_code)
        return info

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_connected(self) -> httpx.AsyncClient:
        if self._client is None:
            msg = "ARC service not connected. Call connect() first."
            raise ARCError(msg, status_code=500)
        return self._client

    def _raise_for_status(self, response: httpx.Response) -> None:
        """Raise an ARCError from a non-2xx response."""
        status = response.status_code
        try:
            body = response.json()
        except ValueError:
            body = None
        detail = response.text
        if isinstance(body, dict):
            detail = body.get("detail") or body.get("extraInfo") or body.get("title") or detail

        error_map = {
            401: "ARC authentication failed",
            409: "Transaction already exists (conflict)",
            461: "Transaction is malformed",
            463: "Transaction is malformed (script)",
            465: "Fee too low",
        }

        message = error_map.get(status, f"ARC broadcast failed ({status}): {detail}")
        raise ARCError(message, status_code=status)
