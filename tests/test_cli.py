import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from typer.testing import CliRunner

from libraryau.cli import app
from libraryau.database import SqliteRepository
from libraryau.errors import ExternalServiceError
from libraryau.isbn_lookup import BookInfo, IsbnLookupService
from libraryau.lending import LendingService

runner = CliRunner()


@pytest.fixture(autouse=True)
def plain_output(monkeypatch):
    # -o seçeneği modu ortam değişkenine yazar; testler arasında sızmasın
    monkeypatch.setenv("LIBRARYAU_CLI_OUTPUT", "plain")


@pytest.fixture
def db_file(tmp_path):
    return str(tmp_path / "cli.db")


def test_barcode_command():
    result = runner.invoke(app, ["barcode", "LIB001003"])
    assert result.exit_code == 0
    assert "Kind: system" in result.stdout
    assert "Valid: yes" in result.stdout
    assert "Template: 1" in result.stdout
    assert "Copy: 3" in result.stdout


def test_barcode_command_invalid():
    result = runner.invoke(app, ["barcode", "XJ19"])
    assert result.exit_code == 1
    assert "Valid: no" in result.stdout


def test_seed_command_runs_once(db_file, tmp_path):
    catalog = tmp_path / "books.json"
    catalog.write_text(json.dumps([
        {"BAŞLIK": "Nutuk", "YAZAR": "Atatürk", "copyCount": 2},
        {"BAŞLIK": "Çalıkuşu", "YAZAR": "Reşat Nuri"},
    ]), encoding="utf-8")

    result = runner.invoke(app, ["--db", db_file, "seed", str(catalog)])
    assert result.exit_code == 0
    assert "Seeded 2 templates." in result.stdout

    result = runner.invoke(app, ["--db", db_file, "seed", str(catalog)])
    assert "nothing seeded" in result.stdout


def test_seed_command_bad_file(db_file, tmp_path):
    result = runner.invoke(app, ["--db", db_file, "seed", str(tmp_path / "nope.json")])
    assert result.exit_code == 1
    assert "Error [ValidationFailed]" in result.stdout


def test_stats_command(db_file):
    service = LendingService(SqliteRepository(db_file))
    t = service.add_template("Dune", "Frank Herbert")
    service.register_copies(t.id, 2)

    result = runner.invoke(app, ["--db", db_file, "stats"])
    assert result.exit_code == 0
    assert "Templates: 1" in result.stdout
    assert "Copies: 2" in result.stdout

    result = runner.invoke(app, ["--db", db_file, "-o", "json", "stats"])
    assert json.loads(result.stdout)["available_copies"] == 2


def test_overdue_command(db_file):
    past = datetime.now(timezone.utc) - timedelta(days=20)
    service = LendingService(SqliteRepository(db_file), clock=lambda: past)
    t = service.add_template("Dune", "Frank Herbert")
    c = service.register_copies(t.id)[0]
    b = service.add_borrower("Ali", "Demir", "2023005", "ali@school.edu")
    service.borrow(c.id, b.id)

    result = runner.invoke(app, ["--db", db_file, "overdue"])
    assert result.exit_code == 0
    assert c.barcode in result.stdout
    assert "overdue 6d" in result.stdout


def test_overdue_command_empty(db_file):
    result = runner.invoke(app, ["--db", db_file, "overdue"])
    assert "No overdue loans." in result.stdout


def test_lookup_command(monkeypatch):
    lookup = MagicMock(return_value=BookInfo(title="Ulysses", author="James Joyce"))
    monkeypatch.setattr(IsbnLookupService, "fetch_book_info", lookup)

    result = runner.invoke(app, ["lookup", "9780199535675"])
    assert result.exit_code == 0
    assert "Title: Ulysses" in result.stdout
    assert "Author: James Joyce" in result.stdout
    lookup.assert_called_once_with("9780199535675")


def test_lookup_command_service_down(monkeypatch):
    monkeypatch.setattr(IsbnLookupService, "fetch_book_info",
                        MagicMock(side_effect=ExternalServiceError("ISBN services unreachable")))
    result = runner.invoke(app, ["lookup", "9780199535675"])
    assert result.exit_code == 2
    assert "Lookup failed" in result.stdout
