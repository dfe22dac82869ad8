"""Tests for the ARC broadcast service and its response model."""

from __future__ import annotations

import json

import httpx
import pytest

from sats_engine.chain.arc import ARCService, TXInfo, TXStatus
from sats_engine.chain.arc.models import SKIP_SCRIPT_FLAGS
from sats_engine.config.settings import NetworkConfig
from sats_engine.errors.chain_errors import ARCError
from sats_engine.errors.wallet_errors import NetworkTimeout

_TXID = "ab" * 32


def _inject_transport(service: ARCService, transport: httpx.MockTransport) -> None:
    service._client = httpx.AsyncClient(transport=transport, base_url="https://arc.example.com")


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class TestTXInfo:
    def test_from_dict(self) -> None:
        info = TXInfo.from_dict({"txid": _TXID, "txStatus": "SEEN_ON_NETWORK", "competingTxs": None})
        assert info.status == TXStatus.SEEN_ON_NETWORK
        assert info.is_accepted
        assert info.competing_txs == []

    def test_unknown_status(self) -> None:
        info = TXInfo.from_dict({"txid": _TXID, "txStatus": "SOMETHING_NEW"})
        assert info.status == TXStatus.UNKNOWN
        assert not info.is_accepted

    def test_mined_is_not_a_broadcast_acceptance(self) -> None:
        assert not TXInfo(txid=_TXID, tx_status="MINED").is_accepted

    def test_error_message_priority(self) -> None:
        assert TXInfo(detail="d", extra_info="e").error_message == "d"
        assert TXInfo(extra_info="e", title="t").error_message == "e"
        assert TXInfo().error_message == "Unknown ARC error"


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class TestARCService:
    async def test_connect_sets_headers(self) -> None:
        arc = ARCService(NetworkConfig(arc_token="secret"))
        await arc.connect()
        assert arc._client is not None
        assert arc._client.headers["X-SkipScriptFlags"] == SKIP_SCRIPT_FLAGS
        assert arc._client.headers["Authorization"] == "Bearer secret"
        await arc.close()
        assert not arc.is_connected

    async def test_not_connected(self) -> None:
        with pytest.raises(ARCError, match="not connected"):
            await ARCService(NetworkConfig()).broadcast("0100")

    async def test_json_broadcast(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/tx"
            body = json.loads(request.content)
            assert body == {"rawTx": "0100", "skipScriptFlags": [SKIP_SCRIPT_FLAGS]}
            return httpx.Response(200, json={"txid": _TXID, "txStatus": "SEEN_ON_NETWORK"})

        arc = ARCService(NetworkConfig())
        _inject_transport(arc, httpx.MockTransport(handler))
        info = await arc.broadcast("0100")
        assert info.txid == _TXID

    async def test_text_broadcast(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["Content-Type"] == "text/plain"
            assert request.content == b"0100"
            return httpx.Response(200, json={"txid": _TXID, "txStatus": "ACCEPTED"})

        arc = ARCService(NetworkConfig())
        _inject_transport(arc, httpx.MockTransport(handler))
        info = await arc.broadcast("0100", as_text=True)
        assert info.status == TXStatus.ACCEPTED

    async def test_rejected_status(self) -> None:
        arc = ARCService(NetworkConfig())
        _inject_transport(
            arc,
            httpx.MockTransport(
                lambda _r: httpx.Response(200, json={"txid": _TXID, "txStatus": "REJECTED", "extraInfo": "bad sig"})
            ),
        )
        with pytest.raises(ARCError, match="bad sig"):
            await arc.broadcast("0100")

    @pytest.mark.parametrize(
        ("status", "message"),
        [(401, "authentication"), (465, "Fee too low"), (500, "ARC broadcast failed \\(500\\)")],
    )
    async def test_http_errors(self, status: int, message: str) -> None:
        arc = ARCService(NetworkConfig())
        _inject_transport(arc, httpx.MockTransport(lambda _r: httpx.Response(status, json={"detail": "x"})))
        with pytest.raises(ARCError, match=message) as exc_info:
            await arc.broadcast("0100")
        assert exc_info.value.status_code == status

    async def test_non_json_body(self) -> None:
        arc = ARCService(NetworkConfig())
        _inject_transport(arc, httpx.MockTransport(lambda _r: httpx.Response(200, text="<html>")))
        with pytest.raises(ARCError, match="non-JSON"):
            await arc.broadcast("0100")

    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("slow", request=request)

        arc = ARCService(NetworkConfig())
        _inject_transport(arc, httpx.MockTransport(handler))
        with pytest.raises(NetworkTimeout):
            await arc.broadcast("0100")
