"""Tests for the WhatsOnChain client using httpx mock transport."""

from __future__ import annotations

import json

import httpx
import pytest

from sats_engine.chain.woc.client import WoCClient
from sats_engine.config.settings import Network, NetworkConfig
from sats_engine.errors.chain_errors import WoCError
from sats_engine.errors.wallet_errors import NetworkTimeout

_TXID = "ab" * 32

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _inject_transport(client: WoCClient, transport: httpx.MockTransport) -> None:
    """Replace the internal httpx client with one using mock transport."""
    client._client = httpx.AsyncClient(
        transport=transport,
        base_url="https://api.whatsonchain.com/v1/bsv/main",
    )


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestWoCClientLifecycle:
    async def test_connect_and_close(self) -> None:
        woc = WoCClient(NetworkConfig())
        assert woc.is_connected is False
        await woc.connect()
        assert woc.is_connected is True
        await woc.close()
        assert woc.is_connected is False

    async def test_network_in_base_url(self) -> None:
        woc = WoCClient(NetworkConfig(network=Network.TESTNET))
        await woc.connect()
        assert str(woc._client.base_url).rstrip("/").endswith("/v1/bsv/test")  # type: ignore[union-attr]
        await woc.close()

    async def test_not_connected_raises(self) -> None:
        with pytest.raises(WoCError, match="not connected"):
            await WoCClient(NetworkConfig()).get_block_height()


# ---------------------------------------------------------------------------
# Chain queries
# ---------------------------------------------------------------------------


class TestWoCQueries:
    async def test_block_height(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith("/chain/info")
            return httpx.Response(200, json={"chain": "main", "blocks": 871234})

        woc = WoCClient(NetworkConfig())
        _inject_transport(woc, httpx.MockTransport(handler))
        assert await woc.get_block_height() == 871234

    async def test_block_height_error(self) -> None:
        woc = WoCClient(NetworkConfig())
        _inject_transport(woc, httpx.MockTransport(lambda _r: httpx.Response(503)))
        with pytest.raises(WoCError) as exc_info:
            await woc.get_block_height()
        assert exc_info.value.status_code == 503

    async def test_output_spent(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith(f"/tx/{_TXID}/1/spent")
            return httpx.Response(200, json={"txid": "cd" * 32, "vin": 0})

        woc = WoCClient(NetworkConfig())
        _inject_transport(woc, httpx.MockTransport(handler))
        assert await woc.is_output_spent(_TXID, 1) == "cd" * 32

    async def test_output_unspent_is_404(self) -> None:
        woc = WoCClient(NetworkConfig())
        _inject_transport(woc, httpx.MockTransport(lambda _r: httpx.Response(404)))
        assert await woc.is_output_spent(_TXID, 0) is None

    async def test_spent_check_html_body(self) -> None:
        woc = WoCClient(NetworkConfig())
        _inject_transport(
            woc, httpx.MockTransport(lambda _r: httpx.Response(200, text="<html>rate limited</html>"))
        )
        with pytest.raises(WoCError, match="non-JSON"):
            await woc.is_output_spent(_TXID, 0)

    async def test_block_height_html_body(self) -> None:
        woc = WoCClient(NetworkConfig())
        _inject_transport(
            woc, httpx.MockTransport(lambda _r: httpx.Response(200, text="<html>rate limited</html>"))
        )
        with pytest.raises(WoCError, match="non-JSON"):
            await woc.get_block_height()

    async def test_block_height_unexpected_payload(self) -> None:
        woc = WoCClient(NetworkConfig())
        _inject_transport(woc, httpx.MockTransport(lambda _r: httpx.Response(200, json=[1, 2])))
        with pytest.raises(WoCError, match="unexpected payload"):
            await woc.get_block_height()

    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        woc = WoCClient(NetworkConfig())
        _inject_transport(woc, httpx.MockTransport(handler))
        with pytest.raises(NetworkTimeout) as exc_info:
            await woc.is_output_spent(_TXID, 0)
        assert exc_info.value.timeout == NetworkConfig().spent_check_timeout

    async def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        woc = WoCClient(NetworkConfig())
        _inject_transport(woc, httpx.MockTransport(handler))
        with pytest.raises(WoCError, match="refused"):
            await woc.get_block_height()


# ---------------------------------------------------------------------------
# Broadcast
# ---------------------------------------------------------------------------


class TestWoCBroadcast:
    async def test_broadcast_returns_txid(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            assert request.url.path.endswith("/tx/raw")
            assert json.loads(request.content) == {"txhex": "0100"}
            return httpx.Response(200, text=f'"{_TXID}"')

        woc = WoCClient(NetworkConfig())
        _inject_transport(woc, httpx.MockTransport(handler))
        assert await woc.broadcast("0100") == _TXID

    async def test_broadcast_rejected(self) -> None:
        woc = WoCClient(NetworkConfig())
        _inject_transport(
            woc, httpx.MockTransport(lambda _r: httpx.Response(400, text='"257: txn-already-known"'))
        )
        with pytest.raises(WoCError, match="txn-already-known"):
            await woc.broadcast("0100")
