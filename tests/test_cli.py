import json
from datetime import date, timedelta
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from docucenter.cli import StoreManager, app
from docucenter.config import settings
from docucenter.output import OUTPUT_MODE_ENV

runner = CliRunner()


@pytest.fixture
def lib(db_file, monkeypatch):
    monkeypatch.setattr(settings, "db_file", db_file)
    monkeypatch.delenv(OUTPUT_MODE_ENV, raising=False)
    StoreManager.reset()
    try:
        yield StoreManager.get_instance()
    finally:
        StoreManager.reset()


@pytest.fixture
def loan_setup(lib):
    book = lib.add_book(title="Wonder", quantity=1)
    reader = lib.add_participant(number="1000", first_name="Emma", last_name="Reader")
    return book, reader


def test_books_empty(lib):
    result = runner.invoke(app, ["books"])
    assert result.exit_code == 0
    assert "No books in library." in result.stdout


def test_seed_then_list(lib):
    result = runner.invoke(app, ["seed"])
    assert result.exit_code == 0
    assert "Seeded 12 books and 5 participants." in result.stdout

    result = runner.invoke(app, ["books"])
    assert "Harry Potter and the Sorcerer's Stone" in result.stdout

    result = runner.invoke(app, ["seed"])
    assert "nothing seeded" in result.stdout


def test_books_json_output(lib):
    lib.add_book(title="Holes", author="Louis Sachar", quantity=2)
    result = runner.invoke(app, ["--output", "json", "books"])
    assert result.exit_code == 0
    rows = json.loads(result.stdout)
    assert rows[0]["title"] == "Holes"
    assert rows[0]["available_copies"] == 2


def test_lend_and_return(lib, loan_setup):
    book, reader = loan_setup

    result = runner.invoke(app, ["lend", book.id, reader.id, "--days", "7"])
    assert result.exit_code == 0
    assert "created for Emma Reader" in result.stdout
    assert (date.today() + timedelta(days=7)).isoformat() in result.stdout

    loan = StoreManager.get_instance().list_loans()[0]
    result = runner.invoke(app, ["return", loan.id])
    assert result.exit_code == 0
    assert f"Loan {loan.id} returned on {date.today().isoformat()}." in result.stdout


def test_lend_without_copies_fails(lib, loan_setup):
    book, reader = loan_setup
    other = lib.add_participant(number="1001", first_name="Liam", last_name="Reader")
    runner.invoke(app, ["lend", book.id, reader.id])

    result = runner.invoke(app, ["lend", book.id, other.id])

    assert result.exit_code == 1
    assert "Error: No copies available" in result.stdout


def test_return_unknown_loan(lib):
    result = runner.invoke(app, ["return", "missing"])
    assert result.exit_code == 1
    assert "Error: Loan missing not found." in result.stdout


def test_renew(lib, loan_setup):
    book, reader = loan_setup
    loan = lib.create_loan(book.id, reader.id, date.today() + timedelta(days=3))

    result = runner.invoke(app, ["renew", loan.id, "--days", "10"])

    assert result.exit_code == 0
    assert f"is now due {(date.today() + timedelta(days=13)).isoformat()}" in result.stdout


def test_loans_filter(lib, loan_setup):
    book, reader = loan_setup
    lib.create_loan(book.id, reader.id, date.today() + timedelta(days=3))

    result = runner.invoke(app, ["loans", "--status", "overdue"])
    assert "No loans found." in result.stdout

    result = runner.invoke(app, ["loans", "--status", "active"])
    assert "Wonder | Emma Reader" in result.stdout

    result = runner.invoke(app, ["loans", "--status", "lost"])
    assert result.exit_code == 1


def test_overdue_and_stats(lib, loan_setup):
    book, reader = loan_setup
    lib.create_loan(
        book.id, reader.id, date.today() - timedelta(days=1), loan_date=date.today() - timedelta(days=15)
    )

    result = runner.invoke(app, ["overdue"])
    assert "Overdue loans: 1" in result.stdout
    assert "Emma Reader" in result.stdout

    result = runner.invoke(app, ["stats"])
    assert "Overdue Loans: 1" in result.stdout
    assert "Total Books: 1" in result.stdout


def test_activity_and_categories_empty(lib):
    assert "No recent activity." in runner.invoke(app, ["activity"]).stdout
    assert "No categorized books." in runner.invoke(app, ["categories"]).stdout


@patch("subprocess.run")
def test_serve_command(mock_subprocess_run, lib):
    result = runner.invoke(app, ["serve"])
    assert result.exit_code == 0
    assert "Starting API on" in result.stdout
    args = mock_subprocess_run.call_args[0][0]
    assert "docucenter.api:app" in args


def test_default_database_survives_between_runs(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "db_file", None)
    monkeypatch.setattr("typer.get_app_dir", lambda name: str(tmp_path / name))
    monkeypatch.delenv(OUTPUT_MODE_ENV, raising=False)
    StoreManager.reset()
    try:
        assert runner.invoke(app, ["seed"]).exit_code == 0
        # A new process starts with no loaded store
        StoreManager.reset()
        result = runner.invoke(app, ["books"])
    finally:
        StoreManager.reset()

    assert "Harry Potter and the Sorcerer's Stone" in result.stdout
    assert (tmp_path / "docucenter" / "library.db").exists()
