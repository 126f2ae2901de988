"""Tests for the mailmirror command line."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
from rich.logging import RichHandler
from typer.testing import CliRunner

from mailmirror.cli import cli


@pytest.fixture
def runner():
    """Create CLI test runner."""
    return CliRunner()


@pytest.fixture
def index_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    path = tmp_path / "mirror.db"
    monkeypatch.setenv("MAILMIRROR_INDEX_PATH", str(path))
    return path


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    level = root.level
    yield
    for handler in [h for h in root.handlers if isinstance(h, RichHandler)]:
        root.removeHandler(handler)
    root.setLevel(level)


def test_seed_then_search_json(runner, index_path):
    seeded = runner.invoke(cli, ["seed"])
    assert seeded.exit_code == 0
    assert "Seeded 5 mock document(s)" in seeded.stdout

    result = runner.invoke(cli, ["search", "--category", "Spam", "--json"])

    assert result.exit_code == 0
    [doc] = json.loads(result.stdout)
    assert doc["id"] == "mock:INBOX:5"
    assert doc["accountId"] == "demo@example.com"
    assert doc["from"] == "noreply@fake-bank.com"


def test_search_empty_mirror(runner, index_path):
    result = runner.invoke(cli, ["search", "-q", "anything"])

    assert result.exit_code == 0
    assert "No emails found" in result.stdout


def test_sync_once_without_accounts_serves_mock_data(runner, index_path):
    result = runner.invoke(cli, ["sync", "--once"])

    assert result.exit_code == 0
    assert "mock data" in result.stdout

    search = runner.invoke(cli, ["search", "--json"])
    docs = json.loads(search.stdout)
    assert len(docs) == 5
    assert docs[0]["subject"] == "Interested in a quick chat"


def test_accounts_json_hides_passwords(runner, monkeypatch):
    monkeypatch.setenv("IMAP1_USER", "me@example.com")
    monkeypatch.setenv("IMAP1_HOST", "imap.example.com")
    monkeypatch.setenv("IMAP1_PASS", "hunter2")
    monkeypatch.setenv("IMAP1_PORT", "1993")

    result = runner.invoke(cli, ["accounts", "--json"])

    assert result.exit_code == 0
    assert "hunter2" not in result.stdout
    [account] = json.loads(result.stdout)
    assert account == {
        "id": "me@example.com",
        "host": "imap.example.com",
        "port": 1993,
        "use_ssl": True,
        "username": "me@example.com",
    }


@pytest.mark.parametrize("command", ["search", "seed", "sync"])
def test_invalid_config_exits_with_error(runner, tmp_path, command):
    config_path = tmp_path / "config.json"
    config_path.write_text("{broken")

    result = runner.invoke(cli, [command, "--config", str(config_path)])

    assert result.exit_code == 1
    assert "Invalid configuration file" in result.output


def test_categorize_relabels_document(runner, index_path):
    runner.invoke(cli, ["seed"])

    result = runner.invoke(cli, ["categorize", "mock:INBOX:1", "Spam"])

    assert result.exit_code == 0
    assert "mock:INBOX:1" in result.stdout
    search = runner.invoke(cli, ["search", "--category", "Spam", "--json"])
    assert sorted(doc["id"] for doc in json.loads(search.stdout)) == ["mock:INBOX:1", "mock:INBOX:5"]


def test_categorize_unknown_document_exits_with_error(runner, index_path):
    result = runner.invoke(cli, ["categorize", "nobody@example.com:INBOX:9", "Spam"])

    assert result.exit_code == 1
    assert "No indexed email" in result.output
