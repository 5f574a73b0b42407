"""TUI monitor for RecFlow."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .client import OrchestratorClient

logger = logging.getLogger(__name__)

STATUS_STYLES = {
    "pending": "yellow",
    "processing": "cyan",
    "succeeded": "green",
    "failed": "red",
}

LOG_STYLES = {"info": "dim", "error": "red", "success": "green"}


class Monitor:
    """Polls the orchestrator snapshot on a timer and renders it live."""

    def __init__(self, config: Dict[str, Any], client: Optional[OrchestratorClient] = None):
        self.config = config
        self.server_url = config.get("server", "ws://localhost:8765")
        self.refresh_interval = config.get("refresh_interval", 2)
        self.client = client or OrchestratorClient(
            self.server_url, verify_ssl=config.get("verify_ssl", True)
        )

        # Display state
        self.jobs: List[Dict[str, Any]] = []
        self.logs: List[Dict[str, Any]] = []
        self.last_error: Optional[str] = None
        self.last_update: Optional[datetime] = None
        self.running = False
        self.poll_task: Optional[asyncio.Task] = None

        self.console = Console()

    async def start(self):
        """Start polling and the display loop. Runs until ``stop()`` or Ctrl+C."""
        self.running = True
        self.poll_task = asyncio.create_task(self._poll_loop())
        try:
            await self._display_loop()
        finally:
            await self.stop()

    async def stop(self):
        self.running = False
        if self.poll_task and not self.poll_task.done():
            self.poll_task.cancel()
            try:
                await self.poll_task
            except asyncio.CancelledError:
                pass
        await self.client.close()

    async def _poll_loop(self):
        """Refresh the snapshot every ``refresh_interval`` seconds."""
        while self.running:
            try:
                if self.client.websocket is None:
                    await self.client.connect()
                self.apply_snapshot(await self.client.snapshot())
            except Exception as e:
                self.last_error = f"Connection error: {e}"
                logger.debug(self.last_error)
                await self.client.close()
            await asyncio.sleep(self.refresh_interval)

    def apply_snapshot(self, snapshot: Dict[str, List[Dict[str, Any]]]):
        self.jobs = snapshot.get("jobs", [])
        self.logs = snapshot.get("logs", [])
        self.last_error = None
        self.last_update = datetime.now()

    def status_counts(self) -> Dict[str, int]:
        counts = {status: 0 for status in STATUS_STYLES}
        for job in self.jobs:
            counts[job.get("status", "pending")] = counts.get(job.get("status", "pending"), 0) + 1
        return counts

    async def _display_loop(self):
        layout = self._create_layout()

        with Live(layout, console=self.console, refresh_per_second=1):
            while self.running:
                self._update_layout(layout)
                await asyncio.sleep(0.5)

    def _create_layout(self) -> Layout:
        layout = Layout()

        layout.split_column(
            Layout(name="header", size=3), Layout(name="body"), Layout(name="footer", size=3)
        )
        layout["body"].split_row(
            Layout(name="stats", ratio=1), Layout(name="jobs", ratio=2), Layout(name="logs", ratio=2)
        )
        return layout

    def _update_layout(self, layout: Layout):
        layout["header"].update(
            Panel(
                Text("RecFlow Monitor", style="bold magenta", justify="center"),
                border_style="bright_blue",
            )
        )

        stats_table = Table(show_header=False, expand=True)
        stats_table.add_column("Status")
        stats_table.add_column("Jobs", style="cyan")
        for status, count in self.status_counts().items():
            stats_table.add_row(Text(status.title(), style=STATUS_STYLES.get(status, "")), str(count))
        stats_table.add_row("Log entries", str(len(self.logs)))
        layout["stats"].update(Panel(stats_table, title="Queue", border_style="green"))

        jobs_table = Table(expand=True)
        jobs_table.add_column("Title")
        jobs_table.add_column("Status")
        jobs_table.add_column("Attempts", style="cyan")
        jobs_table.add_column("Last error", style="dim")
        for job in self.jobs[-15:]:
            status = job.get("status", "")
            jobs_table.add_row(
                job.get("payload", {}).get("title", "?"),
                Text(status, style=STATUS_STYLES.get(status, "")),
                str(job.get("attempts", 0)),
                job.get("last_error") or "",
            )
        layout["jobs"].update(Panel(jobs_table, title="Jobs", border_style="yellow"))

        log_text = Text()
        for entry in self.logs[-15:]:
            timestamp = entry.get("timestamp", "")[11:19]
            log_text.append(f"{timestamp} {entry.get('message', '')}\n", style=LOG_STYLES.get(entry.get("type"), ""))
        layout["logs"].update(Panel(log_text, title="Pipeline Log", border_style="blue"))

        footer = f"Updated: {self.last_update.strftime('%H:%M:%S')}" if self.last_update else "Waiting for data"
        if self.last_error:
            footer += f" | {self.last_error}"
        layout["footer"].update(
            Panel(
                Text(f"{footer} | Press Ctrl+C to exit", justify="center", style="dim"),
                border_style="bright_black",
            )
        )
