"""Unit tests for the imegasync CLI commands."""

import json
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
from click.testing import CliRunner

from imegasync.cli import main
from imegasync.exceptions import (
    ImegaAuthenticationError,
    ImegaNetworkError,
)
from imegasync.models import User
from imegasync.sync import SyncStateManager
from imegasync.sync.manager import WELCOME_FILE_NAME


@pytest.fixture
def runner():
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def mock_config(tmp_path, sync_root):
    """Mock the config object used by the CLI."""
    with patch("imegasync.cli.config") as mock:
        mock.is_configured.return_value = True
        mock.server_url = "https://cloud.example"
        mock.access_token = "token"
        mock.refresh_token = "refresh"
        mock.sync_folder = sync_root
        mock.auto_sync = True
        mock.sync_interval = 300
        mock.max_workers = 1
        mock.propagate_deletions = False
        mock.get_state_path.return_value = tmp_path / "state" / "sync_state.json"
        mock.get_config_path.return_value = Path("/mock/config.json")
        yield mock


@pytest.fixture
def client_class(remote):
    """Patch ImegaClient so commands talk to the in-memory remote."""
    with patch("imegasync.cli.ImegaClient") as mock:
        mock.return_value = remote
        yield mock


class TestMainGroup:
    """Tests for the main CLI group."""

    def test_main_help(self, runner):
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        assert "CloudImega" in result.output
        for command in ("login", "logout", "status", "sync", "watch", "config"):
            assert command in result.output

    def test_sync_help(self, runner):
        result = runner.invoke(main, ["sync", "--help"])

        assert result.exit_code == 0
        assert "--workers" in result.output
        assert "--propagate-deletions" in result.output


class TestLoginCommand:
    """Tests for the login command."""

    @patch("imegasync.cli.ImegaClient")
    def test_login_success(self, mock_client_class, runner, mock_config, sync_root):
        mock_client = Mock()
        mock_client.login.return_value = User(id="1", email="ana@example.com")
        mock_client_class.return_value = mock_client

        result = runner.invoke(
            main, ["login", "--email", "ana@example.com"], input="secret\n"
        )

        assert result.exit_code == 0
        assert "Login Complete" in result.output
        mock_client.login.assert_called_once_with("ana@example.com", "secret")
        kwargs = mock_client_class.call_args.kwargs
        assert kwargs["on_tokens_changed"] is mock_config.save_tokens
        assert (sync_root / WELCOME_FILE_NAME).exists()

    @patch("imegasync.cli.ImegaClient")
    def test_login_bad_credentials(self, mock_client_class, runner, mock_config):
        mock_client = Mock()
        mock_client.login.side_effect = ImegaAuthenticationError("bad", status_code=401)
        mock_client_class.return_value = mock_client

        result = runner.invoke(
            main, ["login", "-e", "ana@example.com", "-p", "wrong"]
        )

        assert result.exit_code == 1
        assert "invalid email or password" in result.output

    @patch("imegasync.cli.ImegaClient")
    def test_login_with_server(self, mock_client_class, runner, mock_config):
        mock_client = Mock()
        mock_client.login.return_value = User(id="1", email="ana@example.com")
        mock_client_class.return_value = mock_client

        result = runner.invoke(
            main,
            ["login", "-e", "ana@example.com", "-p", "pw", "-s", "https://own.example/"],
        )

        assert result.exit_code == 0
        mock_config.save_settings.assert_called_once_with(
            server_url="https://own.example"
        )


class TestLogoutCommand:
    def test_logout(self, runner, mock_config):
        result = runner.invoke(main, ["logout"])

        assert result.exit_code == 0
        assert "Logged out" in result.output
        mock_config.clear_tokens.assert_called_once()


class TestStatusCommand:
    """Tests for the status command."""

    @patch("imegasync.cli.ImegaClient")
    def test_status_json(self, mock_client_class, runner, mock_config):
        mock_client = Mock()
        mock_client.get_profile.return_value = User(id="1", email="ana@example.com")
        mock_client_class.return_value = mock_client

        result = runner.invoke(main, ["--json", "status"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["status"] == "idle"
        assert data["user"] == "ana@example.com"
        assert data["synced_files"] == 0
        assert data["state"] == "absent"

    def test_status_not_logged_in(self, runner, mock_config):
        mock_config.is_configured.return_value = False

        result = runner.invoke(main, ["--json", "status"])

        data = json.loads(result.output)
        assert data["status"] == "error"
        assert data["message"] == "Not authenticated"

    @patch("imegasync.cli.ImegaClient")
    def test_status_offline(self, mock_client_class, runner, mock_config):
        mock_client = Mock()
        mock_client.get_profile.side_effect = ImegaNetworkError("Network error: down")
        mock_client_class.return_value = mock_client

        result = runner.invoke(main, ["--json", "status"])

        assert json.loads(result.output)["status"] == "offline"

    @patch("imegasync.cli.ImegaClient")
    def test_status_expired_session(self, mock_client_class, runner, mock_config):
        mock_client = Mock()
        mock_client.get_profile.side_effect = ImegaAuthenticationError("expired")
        mock_client_class.return_value = mock_client

        result = runner.invoke(main, ["status"])

        assert result.exit_code == 0
        assert "Session expired" in result.output

    @patch("imegasync.cli.ImegaClient")
    def test_status_reports_corrupt_state(self, mock_client_class, runner, mock_config):
        mock_client_class.return_value = Mock(
            get_profile=Mock(return_value=User(id="1", email="a@b.c"))
        )
        state_file = mock_config.get_state_path.return_value
        state_file.parent.mkdir(parents=True)
        state_file.write_text("{ nope")

        result = runner.invoke(main, ["status"])

        assert result.exit_code == 0
        assert "unreadable" in result.output


class TestSyncCommand:
    """Tests for the sync command."""

    def test_requires_login(self, runner, mock_config):
        mock_config.is_configured.return_value = False

        result = runner.invoke(main, ["sync"])

        assert result.exit_code == 1
        assert "Not logged in" in result.output

    def test_sync_uploads_and_downloads(
        self, runner, mock_config, client_class, remote, sync_root
    ):
        (sync_root / "local.txt").write_text("local")
        remote.add_file("remote.txt", b"remote", updated=1_000_000_000)

        result = runner.invoke(main, ["--json", "sync"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["success"] is True
        assert data["stats"]["uploads"] == 1
        assert data["stats"]["downloads"] == 1
        assert (sync_root / "remote.txt").read_bytes() == b"remote"
        assert "local.txt" in remote.files_in()

        state = SyncStateManager(mock_config.get_state_path.return_value)
        assert len(state.load().state.synced_files) == 2

    def test_sync_summary(self, runner, mock_config, client_class, sync_root):
        (sync_root / "a.txt").write_text("a")

        result = runner.invoke(main, ["sync"])

        assert result.exit_code == 0
        assert "Sync Complete" in result.output

    def test_sync_partial_failure_warns(
        self, runner, mock_config, client_class, remote, sync_root
    ):
        (sync_root / "a.txt").write_text("a")
        (sync_root / "b.txt").write_text("b")
        remote.fail_uploads.add("b.txt")

        result = runner.invoke(main, ["sync"])

        assert result.exit_code == 0
        assert "could not be synced" in result.output

    def test_sync_failure_exits_nonzero(
        self, runner, mock_config, client_class, remote
    ):
        remote.auth_expired = True

        result = runner.invoke(main, ["sync"])

        assert result.exit_code == 1
        assert "Sync failed" in result.output

    def test_sync_passes_options(self, runner, mock_config, client_class, remote):
        with patch("imegasync.cli.SyncEngine") as engine_class:
            engine_class.return_value.synchronize.return_value = {}
            result = runner.invoke(main, ["sync", "-j", "4", "--propagate-deletions"])

        assert result.exit_code == 0, result.output
        kwargs = engine_class.call_args.kwargs
        assert kwargs["max_workers"] == 4
        assert kwargs["propagate_deletions"] is True

    def test_invalid_workers(self, runner, mock_config, client_class):
        result = runner.invoke(main, ["sync", "-j", "0"])

        assert result.exit_code == 1
        assert "at least 1" in result.output


class TestConfigCommand:
    def test_show(self, runner, mock_config):
        mock_config.as_dict.return_value = {"server_url": "https://cloud.example"}

        result = runner.invoke(main, ["--json", "config"])

        assert result.exit_code == 0
        assert json.loads(result.output) == {"server_url": "https://cloud.example"}
        mock_config.save_settings.assert_not_called()

    def test_update(self, runner, mock_config, tmp_path):
        mock_config.as_dict.return_value = {}
        folder = tmp_path / "Elsewhere"

        result = runner.invoke(
            main,
            [
                "config",
                "--sync-folder",
                str(folder),
                "--interval",
                "60",
                "--no-auto-sync",
                "--workers",
                "2",
            ],
        )

        assert result.exit_code == 0
        assert "Settings saved" in result.output
        mock_config.save_settings.assert_called_once_with(
            sync_folder=str(folder),
            auto_sync=False,
            sync_interval=60,
            max_workers=2,
        )

    def test_invalid_interval(self, runner, mock_config):
        result = runner.invoke(main, ["config", "--interval", "0"])

        assert result.exit_code == 1
        mock_config.save_settings.assert_not_called()


class TestResetStateCommand:
    def test_reset_with_confirmation(self, runner, mock_config):
        state = SyncStateManager(mock_config.get_state_path.return_value)
        state.mark_synced()

        result = runner.invoke(main, ["reset-state"], input="y\n")

        assert result.exit_code == 0
        assert "Sync state cleared" in result.output
        assert state.load().state.last_sync_timestamp is None

    def test_reset_declined(self, runner, mock_config):
        state = SyncStateManager(mock_config.get_state_path.return_value)
        state.mark_synced()

        result = runner.invoke(main, ["reset-state"], input="n\n")

        assert result.exit_code == 0
        assert state.load().state.last_sync_timestamp is not None


class TestOpenCommand:
    @patch("imegasync.cli.click.launch")
    def test_open(self, mock_launch, runner, mock_config, sync_root):
        result = runner.invoke(main, ["open"])

        assert result.exit_code == 0
        mock_launch.assert_called_once_with(str(sync_root))

    @patch("imegasync.cli.click.launch")
    def test_open_missing_folder(self, mock_launch, runner, mock_config, tmp_path):
        mock_config.sync_folder = tmp_path / "missing"

        result = runner.invoke(main, ["open"])

        assert result.exit_code == 1
        mock_launch.assert_not_called()
