"""
Unit tests for the operator CLI.

Store connections are replaced by the in-memory fakes.
"""

import json
from contextlib import contextmanager
from unittest.mock import patch

import pytest
import yaml

from library_sync import cli
from library_sync.config import Settings
from library_sync.errors import ConnectivityFailure
from library_sync.identity import BOOK_CONTENT
from library_sync.runtime import build_services


class TestCli:

    @pytest.fixture(autouse=True)
    def isolated(self, monkeypatch):
        monkeypatch.delenv("VAULT_ADDR", raising=False)
        with patch("library_sync.cli.configure_logging"):
            yield

    @pytest.fixture
    def services(self, relational, documents, metrics):
        return build_services(Settings(), relational, documents, metrics)

    @pytest.fixture
    def wired(self, services):
        @contextmanager
        def fake_open(settings):
            yield services

        with patch("library_sync.cli.open_services", fake_open):
            yield services

    def run(self, capsys, *argv):
        code = cli.main(list(argv))
        return code, json.loads(capsys.readouterr().out)

    def test_no_command_prints_help(self, capsys):
        assert cli.main([]) == 1
        assert "usage: library-sync" in capsys.readouterr().out

    def test_scan_healthy(self, wired, capsys):
        code, report = self.run(capsys, "scan")

        assert code == 0
        assert report["isHealthy"] is True

    def test_ingest_then_catalog(self, wired, capsys):
        code, created = self.run(capsys, "ingest-book", "--title", "Dune", "--tag", "classic", "--tag", "scifi")
        assert code == 0

        code, book = self.run(capsys, "catalog", "--book-id", str(created["book_id"]))
        assert code == 0
        assert book["title"] == "Dune"
        assert book["tags"] == ["classic", "scifi"]
        assert book["document_id"] == created["document_id"]

    def test_catalog_unknown_book(self, wired, capsys):
        code, body = self.run(capsys, "catalog", "--book-id", "999")

        assert code == 1
        assert body["message"] == "Book not found"

    def test_register_member_validation_error(self, wired, capsys):
        code, body = self.run(capsys, "register-member", "--first-name", "Ada", "--last-name", "Lovelace",
                              "--email", "not-an-email", "--password", "longenough")

        assert code == 1
        assert body["status"] == "error"

    def test_partial_write_is_generic_error(self, wired, documents, capsys):
        documents.fail("create", BOOK_CONTENT, ConnectivityFailure("down", store="document"))

        code, body = self.run(capsys, "ingest-book", "--title", "Dune")

        assert code == 1
        assert body == {"status": "error", "message": "Write failed."}

    def test_repair_dry_run_then_repair(self, wired, relational, capsys):
        relational.add_book(1, "Orphan")

        code, plan = self.run(capsys, "repair", "--dry-run")
        assert code == 0
        assert plan["summary"]["planned"] == 1
        assert wired.scanner.scan().book_orphans

        code, result = self.run(capsys, "repair")
        assert code == 0
        assert result["summary"]["executed"] == 1
        assert wired.scanner.scan().is_healthy

    def test_analytics(self, wired, capsys):
        code, report = self.run(capsys, "analytics")

        assert code == 0
        assert report == {"global_avg_return_days": 0.0, "books": []}

    def test_search_filters_on_availability(self, wired, capsys):
        self.run(capsys, "ingest-book", "--title", "Dune", "--copies", "1")
        self.run(capsys, "ingest-book", "--title", "Dune Messiah", "--copies", "0")

        code, found = self.run(capsys, "search", "--keyword", "dune", "--status", "borrowed")

        assert code == 0
        assert [book["title"] for book in found] == ["Dune Messiah"]

    def test_borrow_until_shelf_is_empty(self, wired, capsys):
        _, created = self.run(capsys, "ingest-book", "--title", "Dune")

        code, book = self.run(capsys, "borrow", "--book-id", str(created["book_id"]))
        assert code == 0
        assert book["inventory"]["available_copies"] == 0

        code, body = self.run(capsys, "borrow", "--book-id", str(created["book_id"]))
        assert code == 1
        assert body == {"status": "error", "message": "No copies available for checkout."}

        code, book = self.run(capsys, "return", "--book-id", str(created["book_id"]), "--days-kept", "3")
        assert code == 0
        assert book["available"] is True

    def test_stats(self, wired, capsys):
        code, stats = self.run(capsys, "stats")

        assert code == 0
        assert stats == {
            "top_viewed": [],
            "top_borrowed": [],
            "hidden_gems": [],
            "common_searches": [],
            "global_avg_return_days": 0.0,
        }

    def test_unreachable_stores(self, capsys):
        @contextmanager
        def unreachable(settings):
            raise ConnectivityFailure("no hosts", store="document")
            yield

        with patch("library_sync.cli.open_services", unreachable):
            code, body = self.run(capsys, "scan")

        assert code == 1
        assert body["message"] == "Database temporarily unavailable."

    def test_alerts_export_needs_no_stores(self, tmp_path):
        output = tmp_path / "alerts.yml"

        with patch("library_sync.cli.open_services") as open_services:
            assert cli.main(["alerts", "--output", str(output)]) == 0

        open_services.assert_not_called()
        assert len(yaml.safe_load(output.read_text())["groups"]) == 3

    def test_invalid_configuration(self, tmp_path, capsys):
        config_file = tmp_path / "bad.yaml"
        config_file.write_text("scan:\n  batch_size: 0\n")

        assert cli.main(["--config", str(config_file), "scan"]) == 1
        assert "Invalid configuration" in capsys.readouterr().err
