"""Comprehensive tests for the CLI module."""

import json
import os
import shutil
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import yaml
from click.testing import CliRunner

from rec_flow.cli import (
    DEFAULT_CONFIG,
    ConfigManager,
    apply_cli_overrides,
    main,
    setup_logging,
)
from rec_flow.models import (
    JobStatus,
    LogEntry,
    QueueJob,
    RecommendationCandidate,
    VerifiedContentItem,
)
from rec_flow.storage import QueueStore


@pytest.fixture
def runner():
    """Click test runner."""
    return CliRunner()


@pytest.fixture
def temp_config_dir():
    """Create a temporary config directory."""
    temp_dir = tempfile.mkdtemp()
    yield Path(temp_dir)
    shutil.rmtree(temp_dir)


@pytest.fixture
def sample_config():
    """Sample configuration for testing."""
    return {
        "orchestrator": {
            "port": 9999,
            "storage": {"data_dir": "./test_data"},
            "queue": {"max_attempts": 5},
        }
    }


@pytest.fixture
def no_config_files():
    """Keep tests independent of config files on the host."""
    with patch.object(ConfigManager, "find_config", return_value=None) as mock_find:
        yield mock_find


def write_json(path: Path, data) -> str:
    path.write_text(json.dumps(data))
    return str(path)


class TestConfigManager:
    """Test ConfigManager class."""

    def test_get_xdg_config_home_env_set(self):
        with patch.dict(os.environ, {"XDG_CONFIG_HOME": "/custom/config"}):
            assert ConfigManager.get_xdg_config_home() == Path("/custom/config")

    def test_get_xdg_config_home_default(self):
        with patch.dict(os.environ, {}, clear=True):
            assert ConfigManager.get_xdg_config_home() == Path.home() / ".config"

    def test_get_xdg_config_dirs_env_set(self):
        with patch.dict(os.environ, {"XDG_CONFIG_DIRS": "/etc/xdg:/usr/local/etc"}):
            assert ConfigManager.get_xdg_config_dirs() == [Path("/etc/xdg"), Path("/usr/local/etc")]

    def test_get_xdg_config_dirs_default(self):
        with patch.dict(os.environ, {}, clear=True):
            assert ConfigManager.get_xdg_config_dirs() == [Path("/etc/xdg")]

    def test_find_config_explicit_path(self, temp_config_dir, sample_config):
        config_file = temp_config_dir / "custom.yaml"
        with open(config_file, "w") as f:
            yaml.dump(sample_config, f)

        assert ConfigManager.find_config("orchestrator", str(config_file)) == sample_config

    def test_find_config_explicit_path_not_found(self):
        assert ConfigManager.find_config("orchestrator", "/nonexistent/config.yaml") is None

    def test_find_config_search_paths(self, temp_config_dir, sample_config):
        app_dir = temp_config_dir / "rec-flow"
        app_dir.mkdir()
        with open(app_dir / "orchestrator.yaml", "w") as f:
            yaml.dump(sample_config, f)

        with patch.object(ConfigManager, "get_xdg_config_home", return_value=temp_config_dir):
            assert ConfigManager.find_config("orchestrator") == sample_config

    def test_find_config_not_found(self, temp_config_dir):
        with patch.object(ConfigManager, "get_xdg_config_home", return_value=temp_config_dir):
            with patch.object(ConfigManager, "get_xdg_config_dirs", return_value=[temp_config_dir]):
                with patch.object(Path, "cwd", return_value=temp_config_dir):
                    with patch.object(Path, "home", return_value=temp_config_dir):
                        assert ConfigManager.find_config("orchestrator") is None

    def test_load_yaml_invalid_file(self, temp_config_dir):
        config_file = temp_config_dir / "invalid.yaml"
        config_file.write_text("invalid: yaml: content:")

        assert ConfigManager.load_yaml(config_file) is None

    def test_load_yaml_empty_file(self, temp_config_dir):
        config_file = temp_config_dir / "empty.yaml"
        config_file.write_text("")

        assert ConfigManager.load_yaml(config_file) == {}

    def test_merge_configs(self):
        base = {"server": {"port": 8000}, "worker": {"name": "base"}}
        override = {"server": {"host": "localhost"}, "new_key": "value"}

        result = ConfigManager.merge_configs(base, override)

        assert result == {
            "server": {"port": 8000, "host": "localhost"},
            "worker": {"name": "base"},
            "new_key": "value",
        }
        assert base == {"server": {"port": 8000}, "worker": {"name": "base"}}

    def test_load_merges_section_over_defaults(self, temp_config_dir, sample_config):
        config_file = temp_config_dir / "orchestrator.yaml"
        with open(config_file, "w") as f:
            yaml.dump(sample_config, f)

        config = ConfigManager.load("orchestrator", str(config_file))

        assert config["port"] == 9999
        assert config["queue"]["max_attempts"] == 5
        assert config["queue"]["backoff_cap"] == DEFAULT_CONFIG["orchestrator"]["queue"]["backoff_cap"]
        assert config["scoring"]["weights"]["keyword"] == 0.4

    def test_load_defaults_are_copies(self, no_config_files):
        config = ConfigManager.load("orchestrator")
        config["queue"]["max_attempts"] = 100
        assert DEFAULT_CONFIG["orchestrator"]["queue"]["max_attempts"] == 3


class TestSetupLogging:
    @patch("rec_flow.cli.logging.basicConfig")
    def test_setup_logging_normal(self, mock_basic_config):
        setup_logging(verbose=False)
        mock_basic_config.assert_called_once()
        assert mock_basic_config.call_args.kwargs["level"] == 20

    @patch("rec_flow.cli.logging.basicConfig")
    def test_setup_logging_verbose(self, mock_basic_config):
        setup_logging(verbose=True)
        assert mock_basic_config.call_args.kwargs["level"] == 10


class TestApplyCliOverrides:
    def test_apply_cli_overrides_basic(self):
        result = apply_cli_overrides({"server": {"port": 8000}}, port=9000)
        assert result == {"server": {"port": 8000}, "port": 9000}

    def test_apply_cli_overrides_none_values(self):
        result = apply_cli_overrides({"server": {"port": 8000}}, port=None, host="localhost")
        assert result == {"server": {"port": 8000}, "host": "localhost"}

    def test_apply_cli_overrides_empty_config(self):
        assert apply_cli_overrides({}, port=8000) == {"port": 8000}


class TestHelp:
    def test_main_help(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "RecFlow" in result.output

    @pytest.mark.parametrize(
        "command", ["orchestrator", "enqueue", "drain", "status", "clear-logs", "score", "monitor", "export"]
    )
    def test_command_help(self, runner, command):
        result = runner.invoke(main, [command, "--help"])
        assert result.exit_code == 0
        assert "Usage" in result.output


class TestOrchestratorCommand:
    @patch("rec_flow.cli.asyncio.run")
    @patch("rec_flow.cli.Orchestrator")
    def test_orchestrator_run(self, mock_orchestrator_class, mock_asyncio_run, runner, no_config_files):
        result = runner.invoke(
            main, ["orchestrator", "--port", "9000", "--data-dir", "/tmp/rec", "--api-key", "k"]
        )

        assert result.exit_code == 0
        no_config_files.assert_called_with("orchestrator", None)
        config = mock_orchestrator_class.call_args.args[0]
        assert config["port"] == 9000
        assert config["host"] == "0.0.0.0"
        assert config["storage"]["data_dir"] == "/tmp/rec"
        assert config["provider"]["api_key"] == "k"
        mock_asyncio_run.assert_called_once()

    def test_orchestrator_bad_config_path(self, runner):
        result = runner.invoke(main, ["orchestrator", "--config", "/nonexistent/orchestrator.yaml"])
        assert result.exit_code != 0


class TestLocalQueueCommands:
    """enqueue/status/clear-logs/export against an on-disk store."""

    def test_enqueue_coalesces_and_status_reports(self, runner, temp_config_dir, no_config_files):
        candidates = write_json(
            temp_config_dir / "candidates.json",
            [
                {"id": "c1", "title": "Heat", "year": 1995},
                {"id": "c1", "title": "Heat", "year": 1995},
                {"id": "c2", "title": "Ronin", "year": 1998},
            ],
        )
        data_dir = str(temp_config_dir / "data")

        result = runner.invoke(main, ["enqueue", candidates, "--data-dir", data_dir])

        assert result.exit_code == 0, result.output
        assert "Queued 3 candidates as 2 jobs" in result.output
        assert QueueStore.in_data_dir(Path(data_dir)).get_stats()["pending"] == 2

        status = runner.invoke(main, ["status", "--data-dir", data_dir])
        assert status.exit_code == 0
        assert "Pending" in status.output

    def test_enqueue_jsonl(self, runner, temp_config_dir, no_config_files):
        path = temp_config_dir / "candidates.jsonl"
        path.write_text('{"id": "a", "title": "Alien"}\n\n{"id": "b", "title": "Aliens"}\n')
        data_dir = str(temp_config_dir / "data")

        result = runner.invoke(main, ["enqueue", str(path), "--data-dir", data_dir])

        assert result.exit_code == 0
        assert "as 2 jobs" in result.output

    def test_enqueue_invalid_json(self, runner, temp_config_dir, no_config_files):
        path = temp_config_dir / "broken.json"
        path.write_text("[{")

        result = runner.invoke(main, ["enqueue", str(path), "--data-dir", str(temp_config_dir)])
        assert result.exit_code == 1

    @patch("rec_flow.cli.OrchestratorClient")
    def test_enqueue_to_server(self, mock_client_class, runner, temp_config_dir):
        client = MagicMock()
        client.__aenter__.return_value = client
        client.enqueue_many = AsyncMock(return_value=[{"job_id": "j1"}])
        mock_client_class.return_value = client
        candidates = write_json(temp_config_dir / "c.json", [{"id": "c1", "title": "Heat"}])

        result = runner.invoke(main, ["enqueue", candidates, "--server", "ws://localhost:8765"])

        assert result.exit_code == 0, result.output
        client.enqueue_many.assert_called_once_with([{"id": "c1", "title": "Heat"}])
        mock_client_class.assert_called_once_with("ws://localhost:8765", verify_ssl=True)

    def test_clear_logs_keeps_jobs(self, runner, temp_config_dir, no_config_files):
        data_dir = temp_config_dir / "data"
        store = QueueStore.in_data_dir(data_dir)
        store.record(
            QueueJob(job_id="j1", payload=RecommendationCandidate(id="c1", title="Heat")),
            LogEntry.create("queued"),
        )

        result = runner.invoke(main, ["clear-logs", "--data-dir", str(data_dir)])

        assert result.exit_code == 0
        reloaded = QueueStore.in_data_dir(data_dir)
        assert reloaded.read_all() == []
        assert reloaded.get("j1") is not None

    def test_export_results(self, runner, temp_config_dir, no_config_files):
        data_dir = temp_config_dir / "data"
        item = VerifiedContentItem(id="tt0113277", title="Heat", year=1995)
        QueueStore.in_data_dir(data_dir).upsert(
            QueueJob(
                job_id="j1",
                payload=RecommendationCandidate(id="c1", title="Heat"),
                status=JobStatus.SUCCEEDED,
                result=item.to_dict(),
            )
        )
        output = temp_config_dir / "results.jsonl"

        result = runner.invoke(
            main, ["export", "jsonl", "--data-dir", str(data_dir), "--output", str(output)]
        )

        assert result.exit_code == 0, result.output
        assert json.loads(output.read_text())["title"] == "Heat"

    def test_export_rejects_unknown_format(self, runner):
        result = runner.invoke(main, ["export", "xml"])
        assert result.exit_code != 0

    def test_drain_without_api_key_fails(self, runner, temp_config_dir, no_config_files):
        with patch.dict(os.environ, {}, clear=True):
            result = runner.invoke(main, ["drain", "--data-dir", str(temp_config_dir)])
        assert result.exit_code == 1
        assert "API key" in result.output


class TestScoreCommand:
    def test_score_json_output(self, runner, temp_config_dir, no_config_files):
        reference = write_json(
            temp_config_dir / "ref.json",
            {"id": "ref", "title": "Gravity", "synopsis": "a lone astronaut drifts through space"},
        )
        candidates = write_json(
            temp_config_dir / "cands.json",
            [
                {"id": "a", "title": "Apollo 13", "synopsis": "astronauts stranded in space"},
                {"id": "b", "title": "Chef", "synopsis": "a cook opens a food truck"},
            ],
        )

        result = runner.invoke(main, ["score", reference, candidates, "--json-output"])

        assert result.exit_code == 0, result.output
        scores = json.loads(result.output[result.output.index("[") :])
        assert [s["content_id"] for s in scores] == ["a", "b"]

    def test_score_table(self, runner, temp_config_dir, no_config_files):
        reference = write_json(temp_config_dir / "ref.json", {"id": "ref", "title": "Gravity"})
        candidates = write_json(temp_config_dir / "cands.json", [{"id": "a", "title": "Gravity"}])

        result = runner.invoke(main, ["score", reference, candidates])

        assert result.exit_code == 0
        assert "Similarity" in result.output

    def test_score_bad_reference(self, runner, temp_config_dir, no_config_files):
        reference = write_json(temp_config_dir / "ref.json", {"title": "no id"})
        candidates = write_json(temp_config_dir / "cands.json", [])

        result = runner.invoke(main, ["score", reference, candidates])
        assert result.exit_code == 1


class TestMonitorCommand:
    @patch("rec_flow.cli.asyncio.run")
    @patch("rec_flow.cli.Monitor")
    def test_monitor_run(self, mock_monitor_class, mock_asyncio_run, runner, no_config_files):
        result = runner.invoke(main, ["monitor", "--server", "ws://example:8765", "--no-verify-ssl"])

        assert result.exit_code == 0
        config = mock_monitor_class.call_args.args[0]
        assert config["server"] == "ws://example:8765"
        assert config["refresh_interval"] == 2
        assert config["verify_ssl"] is False
        mock_asyncio_run.assert_called_once()
