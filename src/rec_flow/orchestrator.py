"""Orchestrator serving the observer API over websockets.

This orchestrator:
1. Loads the durable queue store and recovers interrupted jobs
2. Runs the enrichment workers in the background
3. Answers enqueue/snapshot/clear_logs/score/rank/stats requests
"""

import asyncio
import json
import logging
import ssl
from pathlib import Path
from typing import Any, Dict, Optional, Set

import websockets

from .enrichment import EnrichmentQueue
from .models import MalformedCandidate, RecFlowError, VerifiedContentItem
from .providers import create_provider
from .scoring import SimilarityScorer
from .storage import QueueStore
from .utils.json_utils import safe_json_dumps
from .verifier import MetadataVerifier

logger = logging.getLogger(__name__)


class Orchestrator:
    """Owns the queue, its workers and the websocket API."""

    def __init__(self, config: Dict[str, Any], queue: Optional[EnrichmentQueue] = None):
        self.config = config
        self.host = config.get("host", "0.0.0.0")
        self.port = config.get("port", 8765)

        if queue is None:
            queue = self._build_queue(config)
        self.queue = queue
        self.scorer = queue.scorer

        self.connections: Set[Any] = set()
        self.worker_task: Optional[asyncio.Task] = None
        self.ssl_context = self._setup_ssl()

    @staticmethod
    def _build_queue(config: Dict[str, Any]) -> EnrichmentQueue:
        storage_config = config.get("storage", {})
        data_dir = Path(storage_config.get("data_dir", "./rec_data"))
        data_dir.mkdir(parents=True, exist_ok=True)

        store = QueueStore.in_data_dir(data_dir)
        provider = create_provider(config.get("provider", {}))
        verifier = MetadataVerifier(provider, config.get("verifier", {}))
        scorer = SimilarityScorer(config.get("scoring", {}))
        return EnrichmentQueue(store, verifier, config.get("queue", {}), scorer=scorer)

    def _setup_ssl(self) -> Optional[ssl.SSLContext]:
        """Configure SSL if certificates are provided."""
        ssl_config = self.config.get("ssl", {})
        if not ssl_config.get("cert") or not ssl_config.get("key"):
            return None

        context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
        context.load_cert_chain(ssl_config["cert"], ssl_config["key"])
        return context

    async def start(self):
        """Serve until the workers stop. A worker ``StoreUnavailable`` is re-raised."""
        logger.info(f"Starting RecFlow orchestrator on {self.host}:{self.port}")

        self.queue.recover()
        stats = self.queue.stats()
        logger.info(
            f"Restored queue: {stats['pending']} pending, {stats['succeeded']} succeeded, "
            f"{stats['failed']} failed"
        )

        self.worker_task = asyncio.create_task(self.queue.run())
        async with websockets.serve(
            self.handle_connection, self.host, self.port, ssl=self.ssl_context
        ):
            logger.info("RecFlow orchestrator ready for connections")
            await self.worker_task

    async def handle_connection(self, websocket):
        """Answer each JSON request on this connection with one response."""
        self.connections.add(websocket)
        logger.info(f"Client connected from {websocket.remote_address}")

        try:
            async for message in websocket:
                response = await self.handle_message(message)
                await websocket.send(safe_json_dumps(response))
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            self.connections.discard(websocket)
            logger.info("Client disconnected")

    async def handle_message(self, message: Any) -> Dict[str, Any]:
        """Dispatch one raw message to its handler and build the response."""
        try:
            data = json.loads(message) if isinstance(message, (str, bytes)) else message
        except ValueError as e:
            return {"type": "error", "message": f"Invalid JSON: {e}"}
        if not isinstance(data, dict):
            return {"type": "error", "message": "Request must be a JSON object"}

        msg_type = data.get("type")
        handler = getattr(self, f"_handle_{msg_type}", None) if isinstance(msg_type, str) else None
        if handler is None:
            response = {"type": "error", "message": f"Unknown message type: {msg_type}"}
        else:
            try:
                response = handler(data)
            except (RecFlowError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Rejected {msg_type} request: {e}")
                response = {"type": "error", "message": str(e)}

        if "request_id" in data:
            response["request_id"] = data["request_id"]
        return response

    def _handle_enqueue(self, data: Dict) -> Dict[str, Any]:
        if "candidates" in data:
            candidates = data["candidates"]
            if not isinstance(candidates, list):
                raise ValueError("candidates must be a list")

            # One bad candidate never keeps its siblings out of the queue
            jobs, rejected = [], []
            for index, candidate in enumerate(candidates):
                try:
                    jobs.append(self.queue.enqueue(candidate).to_dict())
                except MalformedCandidate as e:
                    logger.warning(f"Rejected candidate #{index}: {e}")
                    rejected.append({"index": index, "message": str(e)})
            return {"type": "enqueued", "jobs": jobs, "rejected": rejected}

        job = self.queue.enqueue(data.get("candidate"))
        return {"type": "enqueued", "job": job.to_dict()}

    def _handle_snapshot(self, data: Dict) -> Dict[str, Any]:
        return {"type": "snapshot", "data": self.queue.get_snapshot()}

    def _handle_clear_logs(self, data: Dict) -> Dict[str, Any]:
        self.queue.clear_logs()
        return {"type": "logs_cleared"}

    def _handle_stats(self, data: Dict) -> Dict[str, Any]:
        return {"type": "stats", "data": self.queue.stats()}

    def _handle_score(self, data: Dict) -> Dict[str, Any]:
        reference = VerifiedContentItem.from_dict(data["reference"])
        candidates = [VerifiedContentItem.from_dict(c) for c in data.get("candidates", [])]
        results = self.scorer.score(reference, candidates, bool(data.get("use_keywords", False)))
        return {"type": "scores", "results": [r.to_dict() for r in results]}

    def _handle_rank(self, data: Dict) -> Dict[str, Any]:
        reference = VerifiedContentItem.from_dict(data["reference"])
        results = self.queue.rank(reference, bool(data.get("use_keywords", False)))
        return {"type": "scores", "results": [r.to_dict() for r in results]}

    async def shutdown(self):
        """Graceful shutdown."""
        logger.info("Shutting down orchestrator...")

        self.queue.stop()
        if self.worker_task and not self.worker_task.done():
            _, still_running = await asyncio.wait(
                [self.worker_task], timeout=self.queue.job_timeout + 1
            )
            for task in still_running:
                task.cancel()

        for ws in list(self.connections):
            await ws.close()

        self.queue.verifier.provider.close()

        stats = self.queue.stats()
        logger.info(
            f"Shutdown complete. {stats['succeeded']} succeeded, {stats['failed']} failed, "
            f"{stats['pending']} pending"
        )
