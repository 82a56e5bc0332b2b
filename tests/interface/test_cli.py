"""Tests for CLI commands: help, queue, item creation and management, config, and server."""

import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from increading.interface.cli import app

from conftest import write_note

runner = CliRunner()

ARTICLE_TEXT = "Photosynthesis turns {{light}} into chemical energy."


@pytest.fixture
def cli(vault, mock_home):
    """Invoke the app against the temporary vault."""

    def invoke(*args):
        return runner.invoke(app, ["--vault", str(vault), *args])

    return invoke


@pytest.fixture
def imported(cli, vault):
    write_note(vault, "inbox/photo.md", ARTICLE_TEXT)
    result = cli("import", "inbox/photo.md", "--priority", "2")
    assert result.exit_code == 0, result.output
    return "increading/articles/photo.md"


# --- Help ---


def test_cli_help():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "incremental reading" in result.stdout
    for command in ("due", "import", "snippet", "card", "review", "serve"):
        assert command in result.stdout


# --- Queue ---


def test_empty_queue(cli):
    result = cli("due")
    assert result.exit_code == 0
    assert "Nothing due." in result.stdout


def test_import_then_due_json(cli, imported, vault):
    assert (vault / imported).exists()

    result = cli("due", "--json")
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["orphans"] == []
    assert len(data["items"]) == 1
    item = data["items"][0]
    assert item["kind"] == "article"
    assert item["reference"] == imported
    assert item["priority"] == 20


def test_due_reports_orphans(cli, imported, vault):
    (vault / imported).unlink()
    result = cli("due", "--json")
    data = json.loads(result.stdout)
    assert data["items"] == []
    assert data["orphans"] == [{"kind": "article", "reference": imported}]

    result = cli("orphans")
    assert imported in result.stdout

    result = cli("orphans", "--dismiss")
    assert result.exit_code == 0
    assert "Dismissed 1" in result.stdout


# --- Items ---


def test_import_twice_fails(cli, imported):
    result = cli("import", "inbox/photo.md")
    assert result.exit_code == 1
    assert "Error:" in result.output


def test_import_rejects_bad_priority(cli, vault):
    write_note(vault, "x.md", "text")
    result = cli("import", "x.md", "--priority", "high")
    assert result.exit_code == 1
    assert "Error:" in result.output


def test_snippet_and_card(cli, imported):
    start = ARTICLE_TEXT.index("Photosynthesis")
    result = cli("snippet", "inbox/photo.md", str(start), str(start + 14))
    assert result.exit_code == 0, result.output
    assert "Snippet 1 created" in result.stdout

    result = cli("card", "inbox/photo.md", "0", str(len(ARTICLE_TEXT)))
    assert result.exit_code == 0, result.output
    assert "Card card_" in result.stdout

    listed = json.loads(cli("list", "snippet").stdout)
    assert [s["id"] for s in listed] == [1]
    cards = json.loads(cli("list", "card").stdout)
    assert cards[0]["state"] == "New"


def test_card_requires_cloze(cli, vault):
    write_note(vault, "plain.md", "No cloze here.")
    result = cli("card", "plain.md", "0", "5")
    assert result.exit_code == 1


def test_review_card_and_history(cli, vault):
    write_note(vault, "c.md", ARTICLE_TEXT)
    cli("card", "c.md", "0", str(len(ARTICLE_TEXT)))
    card_id = json.loads(cli("list", "card").stdout)[0]["id"]

    result = cli("review", "card", card_id, "good")
    assert result.exit_code == 0, result.output
    assert f"Card {card_id} next due" in result.stdout

    history = json.loads(cli("history", card_id).stdout)
    assert [h["rating"] for h in history] == ["Good"]


def test_show_card(cli, vault):
    write_note(vault, "c.md", ARTICLE_TEXT)
    cli("card", "c.md", "0", str(len(ARTICLE_TEXT)))
    card_id = json.loads(cli("list", "card").stdout)[0]["id"]

    result = cli("show", card_id)
    assert result.exit_code == 0, result.output
    assert result.stdout.strip() == "Photosynthesis turns [...] into chemical energy."

    result = cli("show", card_id, "--answer")
    assert result.stdout.splitlines()[-1] == "light"

    assert cli("show", "card_nope").exit_code == 1


def test_review_card_rejects_unknown_grade(cli):
    result = cli("review", "card", "card_x", "perfect")
    assert result.exit_code == 1


def test_review_article(cli, imported):
    result = cli("review", "article", "1")
    assert result.exit_code == 0, result.output
    assert "Article 1 next due" in result.stdout

    result = cli("review", "article", "1", "--interval-days", "3")
    assert result.exit_code == 0


@pytest.mark.parametrize("days", ["nan", "inf", "-1", "1e12"])
def test_review_rejects_unusable_interval(cli, imported, days):
    result = cli("review", "article", "1", "--interval-days", days)
    assert result.exit_code == 1
    assert "Interval" in result.output
    assert json.loads(cli("list", "article").stdout)[0]["due"] is not None


def test_review_missing_snippet(cli):
    result = cli("review", "snippet", "99")
    assert result.exit_code == 1
    assert "No snippet with id 99" in result.output


def test_prioritize(cli, imported):
    result = cli("prioritize", "article", "1", "4.5")
    assert result.exit_code == 0, result.output
    assert "priority 4.5" in result.stdout

    result = cli("prioritize", "card", "1", "3")
    assert result.exit_code == 1


def test_dismiss_and_rename(cli, imported, vault):
    result = cli("rename", "1", "Light reactions")
    assert result.exit_code == 0, result.output
    assert (vault / "increading" / "articles" / "Light reactions.md").exists()

    result = cli("dismiss", "article", "1")
    assert result.exit_code == 0
    assert json.loads(cli("list", "article").stdout) == []
    assert len(json.loads(cli("list", "article", "--all").stdout)) == 1

    result = cli("dismiss", "snippet", "abc")
    assert result.exit_code == 1


def test_query(cli, imported):
    result = cli("query", "SELECT reference, priority FROM article")
    assert json.loads(result.stdout) == [{"reference": imported, "priority": 20}]

    result = cli("query", "DROP TABLE article")
    assert result.exit_code == 1


# --- Config ---


def test_config_show(cli, vault):
    result = cli("config", "show")
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["vault_root"] == str(vault.resolve())
    assert data["rollover_hours"] == 4


# --- Logs ---


def test_commands_write_to_the_log_file(cli, imported, mock_home):
    log_file = mock_home / ".config" / "increading" / "logs" / "increading.log"
    assert log_file.exists()
    assert "Imported inbox/photo.md" in log_file.read_text(encoding="utf-8")


@pytest.mark.parametrize("platform, opener", [("linux", "xdg-open"), ("darwin", "open")])
def test_logs_opens_log_directory(cli, mock_home, platform, opener):
    log_dir = mock_home / ".config" / "increading" / "logs"
    with patch("sys.platform", platform), patch("subprocess.run") as mock_run:
        result = cli("logs")
    assert result.exit_code == 0, result.output
    assert log_dir.is_dir()
    mock_run.assert_called_once_with([opener, str(log_dir)])


# --- Server ---


@patch("uvicorn.run")
def test_server_command(mock_run):
    result = runner.invoke(app, ["serve", "--port", "9000"])
    assert result.exit_code == 0
    mock_run.assert_called_once_with(
        "increading.server:app", host="127.0.0.1", port=9000, reload=False
    )
