"""
Tests for the CLI interface.
"""
import json

import pytest
import yaml
from typer.testing import CliRunner

from offline_books.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL
from offline_books.storage.repository import open_books

runner = CliRunner()


@pytest.fixture
def db_path(tmp_path):
    """Database file for one test."""
    return str(tmp_path / "books.db")


@pytest.fixture
def seeded_db(db_path):
    """Database holding the demo dataset."""
    result = runner.invoke(app, ["--db", db_path, "seed-demo"])
    assert result.exit_code == EXIT_CODE_PASS
    return db_path


class TestCLI:
    """Test CLI commands."""

    def test_no_command_prints_hint(self, db_path):
        """Test running without a command."""
        result = runner.invoke(app, ["--db", db_path])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Use --help" in result.output

    def test_init_creates_database(self, db_path):
        """Test init reports the schema version."""
        result = runner.invoke(app, ["--db", db_path, "init"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Database ready" in result.output
        assert "(schema v1)" in result.output

    def test_seed_demo(self, db_path):
        """Test the demo dataset is inserted."""
        result = runner.invoke(app, ["--db", db_path, "seed-demo"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Demo data inserted (6 records)" in result.output

    def test_stats(self, seeded_db):
        """Test record counts are shown."""
        result = runner.invoke(app, ["--db", seeded_db, "stats"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Database Stats" in result.output
        assert "Clients" in result.output
        assert "6" in result.output

    def test_clients_listing_and_search(self, seeded_db):
        """Test client listing with and without a name filter."""
        result = runner.invoke(app, ["--db", seeded_db, "clients"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Jane Smith" in result.output
        assert "Robert Jones" in result.output

        result = runner.invoke(app, ["--db", seeded_db, "clients", "--search", "SMITH"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Jane Smith" in result.output
        assert "Robert Jones" not in result.output

    def test_clients_empty(self, db_path):
        """Test the empty message."""
        result = runner.invoke(app, ["--db", db_path, "clients"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "No clients found." in result.output

    def test_invoices_filters(self, seeded_db):
        """Test paid and unpaid invoice filters."""
        result = runner.invoke(app, ["--db", seeded_db, "invoices"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "$349.80" in result.output
        assert "$127.20" in result.output

        result = runner.invoke(app, ["--db", seeded_db, "invoices", "--unpaid"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "$349.80" in result.output
        assert "$127.20" not in result.output

        result = runner.invoke(app, ["--db", seeded_db, "invoices", "--paid"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "$127.20" in result.output
        assert "$349.80" not in result.output

    def test_invoices_conflicting_flags(self, db_path):
        """Test --paid and --unpaid together fail."""
        result = runner.invoke(app, ["--db", db_path, "invoices", "--paid", "--unpaid"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "cannot be combined" in result.output

    def test_export_then_import(self, seeded_db, tmp_path):
        """Test a file export imports into a fresh database."""
        export_path = tmp_path / "export.json"
        result = runner.invoke(app, ["--db", seeded_db, "export", "--output", str(export_path)])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Exported to" in result.output
        assert json.loads(export_path.read_text(encoding="utf-8"))["metadata"]["clientCount"] == 2

        target = str(tmp_path / "target.db")
        result = runner.invoke(app, ["--db", target, "import", str(export_path), "--mode", "replace"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Import Result" in result.output

        with open_books(target) as books:
            assert books.clients.count() == 2
            assert books.invoices.count() == 2

    def test_import_missing_file_fails(self, db_path, tmp_path):
        """Test import of an unreadable file exits with failure."""
        result = runner.invoke(app, ["--db", db_path, "import", str(tmp_path / "nope.json")])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Failed to import data" in result.output

    def test_import_rejects_unknown_mode(self, db_path, tmp_path):
        """Test typer validates the mode choice."""
        result = runner.invoke(app, ["--db", db_path, "import", str(tmp_path / "x.json"), "--mode", "append"])
        assert result.exit_code != EXIT_CODE_PASS

    def test_backup_and_restore(self, seeded_db, tmp_path):
        """Test a backup string restores into another database."""
        result = runner.invoke(app, ["--db", seeded_db, "backup"])
        assert result.exit_code == EXIT_CODE_PASS
        backup = result.stdout.strip()

        target = str(tmp_path / "phone.db")
        result = runner.invoke(app, ["--db", target, "restore", backup])
        assert result.exit_code == EXIT_CODE_PASS

        with open_books(target) as books:
            assert books.estimates.count() == 2
            assert {c.name for c in books.clients.list_all()} == {"Jane Smith", "Robert Jones"}

    def test_restore_garbage_fails(self, seeded_db):
        """Test a corrupt backup string exits with failure and changes nothing."""
        result = runner.invoke(app, ["--db", seeded_db, "restore", "@@not-a-backup@@", "--mode", "replace"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Failed to restore backup" in result.output
        with open_books(seeded_db) as books:
            assert books.clients.count() == 2

    def test_config_file_sets_database_and_tax(self, tmp_path):
        """Test the config file supplies the db path and tax rate."""
        db = tmp_path / "configured.db"
        config_path = tmp_path / "config.yaml"
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump({
                "business": {"name": "Solo", "sales_tax_rate": 0.1},
                "storage": {"db_path": str(db)}
            }, f)

        result = runner.invoke(app, ["--config", str(config_path), "seed-demo"])
        assert result.exit_code == EXIT_CODE_PASS
        assert db.exists()

        result = runner.invoke(app, ["--config", str(config_path), "invoices", "--paid"])
        assert "$132.00" in result.output

    def test_invalid_config_fails(self, tmp_path):
        """Test a bad config file exits with failure."""
        config_path = tmp_path / "config.yaml"
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump({"business": {"name": "Solo", "sales_tax": 0.1}}, f)

        result = runner.invoke(app, ["--config", str(config_path), "stats"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid configuration" in result.output
