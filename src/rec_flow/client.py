"""Async websocket client for the orchestrator's observer API."""

import itertools
import json
import logging
import ssl
from typing import Any, Dict, List, Optional

import websockets

from .models import RecFlowError

logger = logging.getLogger(__name__)


def client_ssl_context(server_url: str, verify_ssl: bool = True) -> Optional[ssl.SSLContext]:
    """SSL context for ``wss://`` URLs, optionally without certificate checks."""
    if not server_url.startswith("wss://"):
        return None
    context = ssl.create_default_context()
    if not verify_ssl:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


class OrchestratorClient:
    """One connection, one outstanding request at a time.

    Usage::

        async with OrchestratorClient("ws://localhost:8765") as client:
            snapshot = await client.snapshot()
    """

    def __init__(self, server_url: str, verify_ssl: bool = True):
        self.server_url = server_url
        self.ssl_context = client_ssl_context(server_url, verify_ssl)
        self.websocket = None
        self._ids = itertools.count(1)

    async def connect(self):
        self.websocket = await websockets.connect(self.server_url, ssl=self.ssl_context)
        logger.debug(f"Connected to {self.server_url}")

    async def close(self):
        if self.websocket is not None:
            await self.websocket.close()
            self.websocket = None

    async def __aenter__(self) -> "OrchestratorClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def request(self, msg_type: str, **fields) -> Dict[str, Any]:
        """Send one request and wait for its response. Error responses raise."""
        if self.websocket is None:
            raise RecFlowError("Client is not connected")

        request_id = next(self._ids)
        await self.websocket.send(json.dumps({"type": msg_type, "request_id": request_id, **fields}))
        response = json.loads(await self.websocket.recv())

        if response.get("type") == "error":
            raise RecFlowError(response.get("message", "unknown orchestrator error"))
        return response

    async def enqueue(self, candidate: Dict[str, Any]) -> Dict[str, Any]:
        return (await self.request("enqueue", candidate=candidate))["job"]

    async def enqueue_many(self, candidates: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Queue a batch. Malformed candidates are skipped and logged, the rest still queue."""
        response = await self.request("enqueue", candidates=candidates)
        for rejected in response.get("rejected", []):
            logger.warning(f"Skipped candidate #{rejected['index']}: {rejected['message']}")
        return response["jobs"]

    async def snapshot(self) -> Dict[str, List[Dict[str, Any]]]:
        return (await self.request("snapshot"))["data"]

    async def clear_logs(self):
        await self.request("clear_logs")

    async def stats(self) -> Dict[str, int]:
        return (await self.request("stats"))["data"]

    async def score(
        self, reference: Dict[str, Any], candidates: List[Dict[str, Any]], use_keywords: bool = False
    ) -> List[Dict[str, Any]]:
        response = await self.request(
            "score", reference=reference, candidates=candidates, use_keywords=use_keywords
        )
        return response["results"]

    async def rank(self, reference: Dict[str, Any], use_keywords: bool = False) -> List[Dict[str, Any]]:
        response = await self.request("rank", reference=reference, use_keywords=use_keywords)
        return response["results"]
