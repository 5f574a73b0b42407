"""Tests for the orchestrator websocket client."""

import json
import logging
import ssl
from unittest.mock import AsyncMock, patch

import pytest

from rec_flow.client import OrchestratorClient, client_ssl_context
from rec_flow.models import RecFlowError


class FakeWebSocket:
    """Replies to each sent request with the next queued response."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.sent = []
        self.closed = False

    async def send(self, message):
        self.sent.append(json.loads(message))

    async def recv(self):
        return json.dumps(self.responses.pop(0))

    async def close(self):
        self.closed = True


def connected(*responses):
    client = OrchestratorClient("ws://localhost:8765")
    client.websocket = FakeWebSocket(*responses)
    return client


class TestSslContext:
    def test_plain_ws_has_no_context(self):
        assert client_ssl_context("ws://localhost:8765") is None

    def test_wss_verifies_by_default(self):
        context = client_ssl_context("wss://example.org")
        assert context.verify_mode == ssl.CERT_REQUIRED

    def test_wss_without_verification(self):
        context = client_ssl_context("wss://example.org", verify_ssl=False)
        assert context.verify_mode == ssl.CERT_NONE
        assert context.check_hostname is False


class TestRequests:
    @pytest.mark.asyncio
    async def test_request_ids_increment(self):
        client = connected({"type": "stats", "data": {"pending": 1}}, {"type": "logs_cleared"})

        assert await client.stats() == {"pending": 1}
        await client.clear_logs()

        assert [m["request_id"] for m in client.websocket.sent] == [1, 2]
        assert [m["type"] for m in client.websocket.sent] == ["stats", "clear_logs"]

    @pytest.mark.asyncio
    async def test_enqueue_many_sends_candidates(self):
        client = connected({"type": "enqueued", "jobs": [{"job_id": "j1"}]})

        jobs = await client.enqueue_many([{"id": "c1", "title": "Heat"}])

        assert jobs == [{"job_id": "j1"}]
        assert client.websocket.sent[0]["candidates"] == [{"id": "c1", "title": "Heat"}]

    @pytest.mark.asyncio
    async def test_enqueue_many_logs_rejected_candidates(self, caplog):
        client = connected(
            {"type": "enqueued", "jobs": [{"job_id": "j1"}], "rejected": [{"index": 1, "message": "bad"}]}
        )

        with caplog.at_level(logging.WARNING, logger="rec_flow.client"):
            jobs = await client.enqueue_many([{"id": "c1", "title": "Heat"}, "oops"])

        assert jobs == [{"job_id": "j1"}]
        assert "Skipped candidate #1: bad" in caplog.text

    @pytest.mark.asyncio
    async def test_score_passes_flags(self):
        client = connected({"type": "scores", "results": []})

        await client.score({"id": "ref", "title": "Gravity"}, [], use_keywords=True)

        assert client.websocket.sent[0]["use_keywords"] is True

    @pytest.mark.asyncio
    async def test_error_response_raises(self):
        client = connected({"type": "error", "message": "Unknown message type: nope"})

        with pytest.raises(RecFlowError, match="Unknown message type"):
            await client.request("nope")

    @pytest.mark.asyncio
    async def test_request_requires_connection(self):
        with pytest.raises(RecFlowError):
            await OrchestratorClient("ws://localhost:8765").snapshot()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_context_manager_connects_and_closes(self):
        fake = FakeWebSocket()
        with patch("rec_flow.client.websockets.connect", AsyncMock(return_value=fake)) as mock_connect:
            async with OrchestratorClient("ws://localhost:8765") as client:
                assert client.websocket is fake

        mock_connect.assert_awaited_once_with("ws://localhost:8765", ssl=None)
        assert fake.closed
        assert client.websocket is None
