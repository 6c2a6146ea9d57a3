"""Tests for the typer commands, wired to an in-memory gateway."""

import json
import os

import pytest
from typer.testing import CliRunner

import src.cli.main as cli_main
from src.errors import NetworkError
from src.services.credential_store import MemoryCredentialStore
from tests.helpers import FakeGateway, make_outcome, make_record

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    for key in list(os.environ):
        if key.startswith("DBCHAT_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))


@pytest.fixture
def wired(monkeypatch):
    """Patch the factories so commands talk to a FakeGateway."""
    gateway = FakeGateway()
    store = MemoryCredentialStore("tok-123")
    monkeypatch.setattr(cli_main, "get_client", lambda cfg, credentials=None: gateway)
    monkeypatch.setattr(cli_main, "get_credential_store", lambda cfg: store)
    return gateway, store


class TestHelp:
    """Smoke tests for command registration."""

    @pytest.mark.parametrize(
        "args",
        [
            ["--help"],
            ["connections", "--help"],
            ["connections", "list", "--help"],
            ["ask", "--help"],
            ["chat", "--help"],
            ["history", "--help"],
            ["config", "show", "--help"],
        ],
    )
    def test_help(self, args):
        result = runner.invoke(cli_main.app, args)
        assert result.exit_code == 0
        assert "Usage" in result.stdout


class TestAuthCommands:

    def test_login_stores_token(self, wired):
        gateway, store = wired
        store.clear()
        result = runner.invoke(cli_main.app, ["login", "-u", "alice", "-p", "hunter22"])
        assert result.exit_code == 0
        assert "Logged in as alice" in result.stdout
        assert store.get() == "tok-123"

    def test_login_failure_exits_nonzero(self, wired):
        gateway, store = wired
        store.clear()
        gateway.token = NetworkError("Incorrect username or password")
        result = runner.invoke(cli_main.app, ["login", "-u", "alice", "-p", "bad"])
        assert result.exit_code == 1
        assert "Incorrect username or password" in result.stdout

    def test_logout(self, wired):
        _, store = wired
        result = runner.invoke(cli_main.app, ["logout"])
        assert result.exit_code == 0
        assert store.get() is None

    def test_whoami_json(self, wired):
        result = runner.invoke(cli_main.app, ["whoami", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["username"] == "alice"

    def test_not_logged_in(self, wired):
        _, store = wired
        store.clear()
        result = runner.invoke(cli_main.app, ["whoami"])
        assert result.exit_code == 1
        assert "Not logged in" in result.stdout

    def test_expired_token_is_discarded(self, wired):
        gateway, store = wired
        gateway.user = NetworkError("Could not validate credentials")
        result = runner.invoke(cli_main.app, ["connections", "list"])
        assert result.exit_code == 1
        assert store.get() is None


class TestConnectionCommands:

    def test_list_json(self, wired):
        result = runner.invoke(cli_main.app, ["connections", "list", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)[0]["db_id"] == "db-1"

    def test_update_without_fields(self, wired):
        result = runner.invoke(cli_main.app, ["connections", "update", "db-1"])
        assert result.exit_code == 1
        assert "Nothing to update" in result.stdout

    def test_update_sends_changes(self, wired):
        gateway, _ = wired
        result = runner.invoke(cli_main.app, ["connections", "update", "db-1", "--inactive"])
        assert result.exit_code == 0
        assert ("update_connection", ("db-1",)) in gateway.calls

    def test_delete_with_yes(self, wired):
        gateway, _ = wired
        result = runner.invoke(cli_main.app, ["connections", "delete", "db-1", "--yes"])
        assert result.exit_code == 0
        assert gateway.count("delete_connection") == 1

    def test_invalid_port(self, wired):
        result = runner.invoke(
            cli_main.app,
            [
                "connections", "add", "-n", "w", "--host", "h", "--port", "0",
                "-d", "d", "-u", "u", "-p", "pw",
            ],
        )
        assert result.exit_code == 1
        assert "Invalid input" in result.stdout


class TestAsk:

    def test_prints_answer(self, wired):
        gateway, _ = wired
        result = runner.invoke(cli_main.app, ["ask", "show me three rows", "-c", "db-1"])
        assert result.exit_code == 0
        assert "Found 3 rows" in result.stdout
        assert gateway.calls[-1] == ("submit_query", ("show me three rows", ["db-1"], "chat"))

    def test_requires_connection(self, wired):
        gateway, _ = wired
        result = runner.invoke(cli_main.app, ["ask", "how many users?"])
        assert result.exit_code == 1
        assert "No database selected" in result.stdout
        assert gateway.count("submit_query") == 0

    def test_query_failure(self, wired):
        gateway, _ = wired
        gateway.outcome = NetworkError("connection refused")
        result = runner.invoke(cli_main.app, ["ask", "q", "-c", "db-1"])
        assert result.exit_code == 1
        assert "connection refused" in result.stdout

    def test_email_after_answer(self, wired):
        gateway, _ = wired
        gateway.outcome = make_outcome(conversation_id="conv-9")
        result = runner.invoke(
            cli_main.app, ["ask", "q", "-c", "db-1", "--email", "bob@example.com"]
        )
        assert result.exit_code == 0
        assert gateway.calls[-1] == ("send_email", ("conv-9", "bob@example.com"))


class TestHistory:

    def test_lists_records(self, wired):
        gateway, _ = wired
        gateway.history = [make_record("c1"), make_record("c2", "revenue?")]
        result = runner.invoke(cli_main.app, ["history", "--search", "revenue", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [r["conversation_id"] for r in data] == ["c2"]
        assert gateway.calls[-1] == ("fetch_history", ("chat", 50))

    def test_empty(self, wired):
        result = runner.invoke(cli_main.app, ["history"])
        assert result.exit_code == 0
        assert "No conversations found." in result.stdout


def test_email_command(wired):
    gateway, _ = wired
    result = runner.invoke(cli_main.app, ["email", "c1", "bob@example.com"])
    assert result.exit_code == 0
    assert "Query results sent to bob@example.com" in result.stdout
    assert gateway.calls[-1] == ("send_email", ("c1", "bob@example.com"))


@pytest.mark.parametrize("recipient", ["", "   "])
def test_email_command_blank_recipient(wired, recipient):
    gateway, _ = wired
    result = runner.invoke(cli_main.app, ["email", "c1", recipient])
    assert result.exit_code == 1
    assert "Email required" in result.stdout
    assert gateway.count("send_email") == 0


def test_email_command_backend_failure(wired):
    gateway, _ = wired
    gateway.receipt = NetworkError("SMTP unavailable")
    result = runner.invoke(cli_main.app, ["email", "c1", "bob@example.com"])
    assert result.exit_code == 1
    assert "SMTP unavailable" in result.stdout


class TestConfigCommands:

    def test_show_defaults(self):
        result = runner.invoke(cli_main.app, ["config", "show"])
        assert result.exit_code == 0
        assert "http://localhost:8000" in result.stdout

    def test_validate_missing_file(self, tmp_path):
        result = runner.invoke(
            cli_main.app, ["config", "validate", "--config", str(tmp_path / "missing.yaml")]
        )
        assert result.exit_code == 1
        assert "not found" in result.stdout
