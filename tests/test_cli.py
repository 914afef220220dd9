"""
Tests for the CLI interface.
"""
import os
import shutil
import tempfile
from datetime import date
from unittest.mock import patch

import pytest
import yaml
from typer.testing import CliRunner

from garage_ledger.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL
from garage_ledger.core.errors import DataUnavailable
from garage_ledger.storage.models import LineItemChange, Part, RepairOrder, UsageChanges, Vehicle
from garage_ledger.storage.repository import LedgerRepository, initialize_schema

runner = CliRunner()


@pytest.fixture
def workspace():
    """Temp directory holding a config file that points at a fresh database."""
    temp_dir = tempfile.mkdtemp()
    db_path = os.path.join(temp_dir, "ledger.db")
    config_path = os.path.join(temp_dir, "ledger.yaml")
    with open(config_path, 'w', encoding='utf-8') as f:
        yaml.dump({"database": {"path": db_path}, "logging": {"level": "WARNING"}}, f)
    yield config_path, db_path
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def seeded(workspace):
    """One part, one vehicle and two orders worth 300 and 200."""
    config_path, db_path = workspace
    initialize_schema(db_path)
    repo = LedgerRepository(db_path)
    repo.add_part(Part(id="P-OIL", name="Engine oil", unit_price="32.00", current_stock=28))
    repo.add_vehicle(Vehicle(id="V1", license_plate="51A-123.45", brand="Toyota",
                             customer_name="An"))
    for order_id, day, quantity, total in (("RO-1", date(2024, 6, 10), 5, "300.00"),
                                           ("RO-2", date(2024, 7, 2), 3, "200.00")):
        repo.create_repair_order(RepairOrder(id=order_id, vehicle_id="V1", reception_date=day))
        repo.apply_usage_changes(order_id, UsageChanges(new_items=[
            LineItemChange(part_id="P-OIL", quantity=quantity, line_total=total)
        ]))
    return config_path


class TestCLI:
    """Test CLI commands."""

    def test_init_creates_database(self, workspace):
        """Test init command against a fresh path."""
        config_path, db_path = workspace

        result = runner.invoke(app, ["--config", config_path, "init"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized successfully" in result.output
        assert os.path.exists(db_path)

    def test_invalid_config_fails(self, workspace):
        config_path, _ = workspace
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump({"budget": {"daily": 1}}, f)

        result = runner.invoke(app, ["--config", config_path, "status"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid configuration" in result.output

    def test_malformed_yaml_fails(self, workspace):
        """A config file that is not valid YAML is reported, not raised."""
        config_path, _ = workspace
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("database: [unclosed\n")

        result = runner.invoke(app, ["--config", config_path, "status"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid configuration" in result.output

    def test_pay_fraction_of_a_cent_is_rejected(self, seeded):
        result = runner.invoke(app, ["--config", seeded, "pay", "V1", "100.004"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "fractions of a cent" in result.output

    def test_status_shows_settings(self, workspace):
        config_path, _ = workspace

        result = runner.invoke(app, ["--config", config_path, "status"])

        assert "Low stock threshold: 5" in result.output
        assert "Write retries: 3" in result.output

    def test_stock_for_period(self, seeded):
        """Test stock command with a bounded period."""
        result = runner.invoke(app, ["--config", seeded, "stock", "--from", "2024-06-01", "--to", "2024-06-30"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Engine oil" in result.output
        assert "28" in result.output
        assert "23" in result.output

    def test_stock_needs_both_bounds(self, seeded):
        result = runner.invoke(app, ["--config", seeded, "stock", "--from", "2024-06-01"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "both a start and an end" in result.output

    def test_stock_degraded_warning(self, seeded):
        """Test that an unreadable usage history is flagged, not fatal."""
        with patch.object(LedgerRepository, "fetch_usage_events",
                          side_effect=DataUnavailable("repair_order_items", "disk I/O error")):
            result = runner.invoke(app, ["--config", seeded, "stock"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Usage history unavailable" in result.output

    def test_debts_lists_outstanding(self, seeded):
        result = runner.invoke(app, ["--config", seeded, "debts"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "500.00" in result.output

    def test_debts_empty(self, seeded):
        result = runner.invoke(app, ["--config", seeded, "debts", "--search", "honda"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "No outstanding debts found." in result.output

    def test_pay_then_overpay(self, seeded):
        """Test accepted payment, then a rejection carrying the remaining debt."""
        result = runner.invoke(app, ["--config", seeded, "pay", "V1", "150"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Payment #1 of 150.00 (cash) recorded for vehicle V1" in result.output

        result = runner.invoke(app, ["--config", seeded, "pay", "V1", "400", "--method", "card"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Payment rejected: Payment amount (400.00) exceeds remaining debt (350.00)" in result.output

    def test_pay_unknown_vehicle(self, seeded):
        result = runner.invoke(app, ["--config", seeded, "pay", "NOPE", "10"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Vehicle not found: NOPE" in result.output

    def test_pay_invalid_amount(self, seeded):
        result = runner.invoke(app, ["--config", seeded, "pay", "V1", "ten"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Not a monetary amount" in result.output

    def test_inventory(self, seeded):
        result = runner.invoke(app, ["--config", seeded, "inventory"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Total value: 640.00" in result.output
        assert "Out of stock: 0" in result.output

    def test_sales(self, seeded):
        runner.invoke(app, ["--config", seeded, "pay", "V1", "150"])

        result = runner.invoke(app, ["--config", seeded, "sales", "--from", "2024-06-01", "--to", "2024-06-30"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Toyota" in result.output
        assert "Total revenue:" in result.output
