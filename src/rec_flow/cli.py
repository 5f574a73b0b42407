"""Command-line interface for RecFlow."""

import asyncio
import copy
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .client import OrchestratorClient
from .enrichment import EnrichmentQueue
from .models import RecFlowError, VerifiedContentItem
from .monitor import Monitor
from .orchestrator import Orchestrator
from .providers import create_provider
from .scoring import SimilarityScorer
from .storage import SUPPORTED_FORMATS, QueueStore, ResultExporter
from .verifier import MetadataVerifier

console = Console()
logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Dict[str, Any]] = {
    "orchestrator": {
        "host": "0.0.0.0",
        "port": 8765,
        "storage": {"data_dir": "./rec_data"},
        "provider": {
            "type": "omdb",
            "timeout": 10,
            "rate_limit": 35,
            "rate_window": 10,
        },
        "verifier": {"ambiguity_threshold": 0.4},
        "queue": {
            "max_attempts": 3,
            "backoff_base": 1.0,
            "backoff_cap": 60.0,
            "job_timeout": 15.0,
            "workers": 1,
            "poll_interval": 0.5,
            "result_ttl_hours": 48,
        },
        "scoring": {
            "weights": {"plot": 0.3, "keyword": 0.4, "title": 0.3},
            "derive_keywords": False,
        },
    },
    "monitor": {"server": "ws://localhost:8765", "refresh_interval": 2},
}


class ConfigManager:
    """Locates and merges YAML configuration files."""

    APP_NAME = "rec-flow"

    @staticmethod
    def get_xdg_config_home() -> Path:
        xdg_config = os.environ.get("XDG_CONFIG_HOME")
        if xdg_config:
            return Path(xdg_config)
        return Path.home() / ".config"

    @staticmethod
    def get_xdg_config_dirs() -> List[Path]:
        xdg_dirs = os.environ.get("XDG_CONFIG_DIRS", "/etc/xdg")
        return [Path(d) for d in xdg_dirs.split(":") if d]

    @classmethod
    def find_config(
        cls, component: str, explicit_path: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Find and load a component's config.

        An explicit path is the only candidate when given. Otherwise the search
        order is the XDG config home, the XDG config dirs, the working
        directory and ``~/.rec-flow``.
        """
        if explicit_path:
            path = Path(explicit_path)
            if path.exists():
                logger.info(f"Loading config from {path}")
                return cls.load_yaml(path)
            logger.error(f"Config file not found: {path}")
            return None

        filename = f"{component}.yaml"
        search_paths = [cls.get_xdg_config_home() / cls.APP_NAME / filename]
        search_paths += [d / cls.APP_NAME / filename for d in cls.get_xdg_config_dirs()]
        search_paths += [
            Path.cwd() / filename,
            Path.cwd() / "config" / filename,
            Path.home() / f".{cls.APP_NAME}" / filename,
        ]

        for path in search_paths:
            if path.exists():
                logger.info(f"Found config at {path}")
                return cls.load_yaml(path)

        logger.debug(f"No config file found for {component}")
        return None

    @staticmethod
    def load_yaml(path: Path) -> Optional[Dict[str, Any]]:
        """Load a YAML mapping. Returns None when the file is unreadable or invalid."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Error loading {path}: {e}")
            return None
        if data is None:
            return {}
        if not isinstance(data, dict):
            logger.error(f"Config {path} must contain a mapping, got {type(data).__name__}")
            return None
        return data

    @staticmethod
    def merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep-merge ``override`` into a copy of ``base``."""
        result = copy.deepcopy(base)
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = ConfigManager.merge_configs(result[key], value)
            else:
                result[key] = copy.deepcopy(value)
        return result

    @classmethod
    def load(cls, component: str, explicit_path: Optional[str] = None) -> Dict[str, Any]:
        """Defaults for ``component`` merged with its config file, if any.

        A file may hold the component section at top level or under a key
        named after the component.
        """
        base = DEFAULT_CONFIG.get(component, {})
        found = cls.find_config(component, explicit_path)
        if explicit_path and found is None:
            raise click.ClickException(f"Could not load config file {explicit_path}")
        if not found:
            return copy.deepcopy(base)
        return cls.merge_configs(base, found.get(component, found))


def setup_logging(verbose: bool = False):
    """Configure logging with rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[
            RichHandler(console=console, rich_tracebacks=True, show_path=False, show_time=False)
        ],
    )


def apply_cli_overrides(config: Dict[str, Any], **kwargs) -> Dict[str, Any]:
    """Set top-level keys from CLI options, skipping options left unset."""
    overrides = {k: v for k, v in kwargs.items() if v is not None}
    return ConfigManager.merge_configs(config, overrides)


def _load_json(path: str) -> Any:
    """Read a JSON document, or JSON Lines when the file ends in .jsonl."""
    with open(path, "r", encoding="utf-8") as f:
        if path.endswith(".jsonl"):
            return [json.loads(line) for line in f if line.strip()]
        return json.load(f)


def _local_queue(config: Dict[str, Any], with_provider: bool = False) -> EnrichmentQueue:
    """Queue over the on-disk store. Without a provider it can only enqueue and observe."""
    data_dir = Path(config.get("storage", {}).get("data_dir", "./rec_data"))
    store = QueueStore.in_data_dir(data_dir)
    verifier = None
    if with_provider:
        provider = create_provider(config.get("provider", {}))
        verifier = MetadataVerifier(provider, config.get("verifier", {}))
    scorer = SimilarityScorer(config.get("scoring", {}))
    return EnrichmentQueue(store, verifier, config.get("queue", {}), scorer=scorer)


def _print_stats(stats: Dict[str, int]):
    table = Table(title="Queue")
    table.add_column("Status")
    table.add_column("Jobs", justify="right", style="cyan")
    for key in ("pending", "processing", "succeeded", "failed", "total"):
        table.add_row(key.title(), str(stats.get(key, 0)))
    console.print(table)


def _print_logs(logs: List[Dict[str, Any]], limit: int):
    styles = {"info": "dim", "error": "red", "success": "green"}
    for entry in logs[-limit:]:
        line = f"{entry.get('timestamp', '')[:19]} {entry.get('message', '')}"
        console.print(line, style=styles.get(entry.get("type")), markup=False, highlight=False)


def _print_scores(results: List[Dict[str, Any]], titles: Dict[str, str]):
    table = Table(title="Similarity")
    table.add_column("#", style="yellow")
    table.add_column("Title")
    table.add_column("Plot", justify="right")
    table.add_column("Keywords", justify="right")
    table.add_column("Title sim", justify="right")
    table.add_column("Combined", justify="right", style="cyan")
    for rank, r in enumerate(results, 1):
        keyword = f"{r['keyword_similarity']:.3f}" if r.get("keywords_used") else "-"
        table.add_row(
            str(rank),
            titles.get(r["content_id"], r["content_id"]),
            f"{r['plot_similarity']:.3f}",
            keyword,
            f"{r['title_similarity']:.3f}",
            f"{r['combined_similarity']:.3f}",
        )
    console.print(table)


@click.group()
@click.option("--verbose", is_flag=True, help="Enable verbose logging")
@click.pass_context
def main(ctx, verbose: bool):
    """RecFlow - Recommendation verification and similarity ranking."""
    setup_logging(verbose)
    ctx.ensure_object(dict)


@main.command()
@click.option("--config", type=click.Path(), help="Configuration file")
@click.option("--port", type=int, help="WebSocket server port")
@click.option("--host", help="Bind address")
@click.option("--data-dir", help="Storage directory")
@click.option("--api-key", help="OMDb API key")
@click.option("--cert", help="SSL certificate path")
@click.option("--key", help="SSL key path")
def orchestrator(
    config: Optional[str],
    port: Optional[int],
    host: Optional[str],
    data_dir: Optional[str],
    api_key: Optional[str],
    cert: Optional[str],
    key: Optional[str],
):
    """Start the orchestrator server and enrichment workers."""
    cfg = apply_cli_overrides(ConfigManager.load("orchestrator", config), port=port, host=host)
    if data_dir:
        cfg.setdefault("storage", {})["data_dir"] = data_dir
    if api_key:
        cfg.setdefault("provider", {})["api_key"] = api_key
    if cert and key:
        cfg["ssl"] = {"cert": cert, "key": key}
    elif not cfg.get("ssl"):
        console.print("[yellow]Running without SSL. Use --cert and --key to enable wss://.[/yellow]")

    try:
        server = Orchestrator(cfg)
    except RecFlowError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down orchestrator...[/yellow]")
        asyncio.run(server.shutdown())
    except RecFlowError as e:
        console.print(f"[red]Orchestrator halted: {e}[/red]")
        sys.exit(1)


@main.command()
@click.argument("candidates_file", type=click.Path(exists=True))
@click.option("--server", help="Orchestrator WebSocket URL (default: local store)")
@click.option("--config", type=click.Path(), help="Configuration file")
@click.option("--data-dir", help="Storage directory")
@click.option("--no-verify-ssl", is_flag=True, help="Skip SSL verification")
def enqueue(
    candidates_file: str,
    server: Optional[str],
    config: Optional[str],
    data_dir: Optional[str],
    no_verify_ssl: bool,
):
    """Queue candidates from a JSON or JSONL file for verification."""
    try:
        candidates = _load_json(candidates_file)
    except (OSError, ValueError) as e:
        console.print(f"[red]Failed to read {candidates_file}: {e}[/red]")
        sys.exit(1)
    if isinstance(candidates, dict):
        candidates = candidates.get("candidates", [candidates])

    if server:

        async def send():
            async with OrchestratorClient(server, verify_ssl=not no_verify_ssl) as client:
                return await client.enqueue_many(candidates)

        try:
            jobs = asyncio.run(send())
        except (RecFlowError, OSError) as e:
            console.print(f"[red]Error: {e}[/red]")
            sys.exit(1)
    else:
        cfg = ConfigManager.load("orchestrator", config)
        if data_dir:
            cfg.setdefault("storage", {})["data_dir"] = data_dir
        jobs = []
        try:
            queue = _local_queue(cfg)
            for candidate in candidates:
                try:
                    jobs.append(queue.enqueue(candidate).to_dict())
                except RecFlowError as e:
                    console.print(f"[yellow]Skipping candidate: {e}[/yellow]")
        except RecFlowError as e:
            console.print(f"[red]Error: {e}[/red]")
            sys.exit(1)

    job_ids = {job["job_id"] for job in jobs}
    console.print(f"[green]✓ Queued {len(candidates)} candidates as {len(job_ids)} jobs[/green]")


@main.command()
@click.option("--config", type=click.Path(), help="Configuration file")
@click.option("--data-dir", help="Storage directory")
@click.option("--api-key", help="OMDb API key")
def drain(config: Optional[str], data_dir: Optional[str], api_key: Optional[str]):
    """Process the local queue until no pending job remains."""
    cfg = ConfigManager.load("orchestrator", config)
    if data_dir:
        cfg.setdefault("storage", {})["data_dir"] = data_dir
    if api_key:
        cfg.setdefault("provider", {})["api_key"] = api_key

    try:
        queue = _local_queue(cfg, with_provider=True)
    except RecFlowError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    try:
        queue.recover()
        processed = asyncio.run(queue.run_until_idle())
    except RecFlowError as e:
        console.print(f"[red]Queue halted: {e}[/red]")
        sys.exit(1)
    finally:
        queue.verifier.provider.close()

    console.print(f"[green]✓ Made {processed} verification attempts[/green]")
    _print_stats(queue.stats())


@main.command()
@click.option("--server", help="Orchestrator WebSocket URL (default: local store)")
@click.option("--config", type=click.Path(), help="Configuration file")
@click.option("--data-dir", help="Storage directory")
@click.option("--logs", "log_limit", default=10, help="Number of log entries to show")
@click.option("--no-verify-ssl", is_flag=True, help="Skip SSL verification")
def status(
    server: Optional[str],
    config: Optional[str],
    data_dir: Optional[str],
    log_limit: int,
    no_verify_ssl: bool,
):
    """Show job counts and recent pipeline log entries."""
    try:
        if server:

            async def fetch():
                async with OrchestratorClient(server, verify_ssl=not no_verify_ssl) as client:
                    return await client.stats(), await client.snapshot()

            stats, snapshot = asyncio.run(fetch())
        else:
            cfg = ConfigManager.load("orchestrator", config)
            if data_dir:
                cfg.setdefault("storage", {})["data_dir"] = data_dir
            queue = _local_queue(cfg)
            stats, snapshot = queue.stats(), queue.get_snapshot()
    except (RecFlowError, OSError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    _print_stats(stats)
    _print_logs(snapshot["logs"], log_limit)


@main.command("clear-logs")
@click.option("--server", help="Orchestrator WebSocket URL (default: local store)")
@click.option("--config", type=click.Path(), help="Configuration file")
@click.option("--data-dir", help="Storage directory")
@click.option("--no-verify-ssl", is_flag=True, help="Skip SSL verification")
def clear_logs(server: Optional[str], config: Optional[str], data_dir: Optional[str], no_verify_ssl: bool):
    """Empty the pipeline log. Jobs are left untouched."""
    try:
        if server:

            async def send():
                async with OrchestratorClient(server, verify_ssl=not no_verify_ssl) as client:
                    await client.clear_logs()

            asyncio.run(send())
        else:
            cfg = ConfigManager.load("orchestrator", config)
            if data_dir:
                cfg.setdefault("storage", {})["data_dir"] = data_dir
            _local_queue(cfg).clear_logs()
    except (RecFlowError, OSError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    console.print("[green]✓ Pipeline log cleared[/green]")


@main.command()
@click.argument("reference_file", type=click.Path(exists=True))
@click.argument("candidates_file", type=click.Path(exists=True))
@click.option("--use-keywords", is_flag=True, help="Include keyword similarity")
@click.option("--config", type=click.Path(), help="Configuration file")
@click.option("--json-output", is_flag=True, help="Print results as JSON")
def score(
    reference_file: str,
    candidates_file: str,
    use_keywords: bool,
    config: Optional[str],
    json_output: bool,
):
    """Rank verified items in CANDIDATES_FILE against REFERENCE_FILE."""
    cfg = ConfigManager.load("orchestrator", config)
    try:
        reference = VerifiedContentItem.from_dict(_load_json(reference_file))
        candidates = [VerifiedContentItem.from_dict(c) for c in _load_json(candidates_file)]
        scorer = SimilarityScorer(cfg.get("scoring", {}))
    except (OSError, ValueError, KeyError, TypeError, RecFlowError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    results = [r.to_dict() for r in scorer.score(reference, candidates, use_keywords)]
    if json_output:
        click.echo(json.dumps(results, indent=2))
    else:
        _print_scores(results, {c.id: c.title for c in candidates})


@main.command()
@click.option("--server", help="Orchestrator WebSocket URL")
@click.option("--config", type=click.Path(), help="Configuration file")
@click.option("--refresh-interval", type=float, help="Seconds between snapshots")
@click.option("--no-verify-ssl", is_flag=True, help="Skip SSL verification")
def monitor(
    server: Optional[str], config: Optional[str], refresh_interval: Optional[float], no_verify_ssl: bool
):
    """Start the live monitoring TUI."""
    cfg = apply_cli_overrides(
        ConfigManager.load("monitor", config), server=server, refresh_interval=refresh_interval
    )
    cfg["verify_ssl"] = not no_verify_ssl

    viewer = Monitor(cfg)
    try:
        asyncio.run(viewer.start())
    except KeyboardInterrupt:
        console.print("\n[yellow]Closing monitor...[/yellow]")


@main.command()
@click.argument("fmt", metavar="FORMAT", type=click.Choice(SUPPORTED_FORMATS))
@click.option("--output", "-o", type=click.Path(), help="Output file")
@click.option("--config", type=click.Path(), help="Configuration file")
@click.option("--data-dir", help="Storage directory")
@click.option("--reference", type=click.Path(exists=True), help="Export rankings against this item")
@click.option("--use-keywords", is_flag=True, help="Include keyword similarity in rankings")
def export(
    fmt: str,
    output: Optional[str],
    config: Optional[str],
    data_dir: Optional[str],
    reference: Optional[str],
    use_keywords: bool,
):
    """Export verified results, or rankings against a reference item."""
    cfg = ConfigManager.load("orchestrator", config)
    if data_dir:
        cfg.setdefault("storage", {})["data_dir"] = data_dir

    try:
        queue = _local_queue(cfg)
        if reference:
            ref_item = VerifiedContentItem.from_dict(_load_json(reference))
            rows = [r.to_dict() for r in queue.rank(ref_item, use_keywords)]
            default_name = "rankings"
        else:
            rows = [item.to_dict() for item in queue.results()]
            default_name = "results"

        output_path = output or f"{default_name}.{fmt}"
        count = ResultExporter(rows).export(fmt, output_path)
    except (OSError, ValueError, KeyError, RecFlowError) as e:
        console.print(f"[red]Export failed: {e}[/red]")
        sys.exit(1)

    console.print(f"[green]✓ Exported {count} rows to {output_path}[/green]")


if __name__ == "__main__":
    main()
