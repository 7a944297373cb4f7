"""
Unit tests for storage layer.

Tests schema creation, versioned configuration writes and submission
claim/finalize semantics.
"""

import os
import tempfile
from decimal import Decimal

import pytest

from box_configurator.storage.db import get_connection, transaction
from box_configurator.storage.models import ConfigurationStatus, SubmissionStatus
from box_configurator.storage.repository import (
    ConfigurationRepository,
    SubmissionRepository,
    initialize_schema,
)


def line_values(**overrides):
    values = {
        "item_id": "1001",
        "part_number": "0-102023",
        "manufacturer": "Visonic Americas",
        "description": "Door/Window Contact",
        "unit_cost": Decimal("57.63"),
        "quantity": 10,
        "target_margin": Decimal("0.30"),
        "product_price": Decimal("82.33"),
        "price_override": False,
        "tariff_percent": Decimal("5"),
        "tariff_amount": Decimal("41.17"),
        "margin": Decimal("0.3000"),
        "ext_cost": Decimal("576.30"),
        "total_price": Decimal("823.30"),
    }
    values.update(overrides)
    return values


class StorageTestCase:
    """Temp database per test."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.configurations = ConfigurationRepository(self.db_path)
        self.submissions = SubmissionRepository(self.db_path)

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)


class TestStorageSchema(StorageTestCase):
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Verify tables are created."""
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name").fetchall()
            assert [row[0] for row in rows] == ["configuration", "line_item", "submission"]
        finally:
            conn.close()

    def test_schema_is_idempotent(self):
        initialize_schema(self.db_path)
        initialize_schema(self.db_path)

    def test_transaction_rolls_back_on_error(self):
        config = self.configurations.create(estimate_id="123")
        with pytest.raises(RuntimeError):
            with transaction(self.db_path) as conn:
                conn.execute("UPDATE configuration SET version = 99 WHERE id = ?", (config.id,))
                raise RuntimeError("abort")
        assert self.configurations.get(config.id).version == 1


class TestConfigurationRepository(StorageTestCase):
    """Test configuration and line item persistence."""

    def test_create_starts_at_version_one(self):
        config = self.configurations.create(
            estimate_id="123", estimate_number="EST-00456", customer_id="5001", customer_name="Acme",
        )
        assert config.version == 1
        assert config.status == ConfigurationStatus.DRAFT
        assert config.default_margin == Decimal("0.30")
        assert config.shipping_override is False
        assert self.configurations.get(config.id) == config

    def test_get_missing_returns_none(self):
        assert self.configurations.get("missing") is None

    def test_update_fields_bumps_version_once(self):
        config = self.configurations.create(estimate_id="123")
        updated = self.configurations.update_fields(config.id, {
            "shipping_fee": Decimal("50.00"),
            "shipping_override": True,
            "saas": True,
            "saas_term": 3,
        })
        assert updated.version == 2
        assert updated.shipping_fee == Decimal("50.00")
        assert updated.shipping_override is True
        assert updated.saas_term == 3

    def test_update_fields_rejects_unknown(self):
        config = self.configurations.create(estimate_id="123")
        with pytest.raises(ValueError, match="version"):
            self.configurations.update_fields(config.id, {"version": 10})

    def test_update_missing_configuration(self):
        assert self.configurations.update_fields("missing", {"saas": True}) is None

    def test_set_status_keeps_version(self):
        config = self.configurations.create(estimate_id="123")
        self.configurations.set_status(config.id, ConfigurationStatus.SUBMITTED)
        reloaded = self.configurations.get(config.id)
        assert reloaded.status == ConfigurationStatus.SUBMITTED
        assert reloaded.version == 1

    def test_insert_line_item_numbers_and_versions(self):
        """Verify line numbers increase and each insert bumps the version."""
        config = self.configurations.create(estimate_id="123")
        first = self.configurations.insert_line_item(config.id, line_values())
        second = self.configurations.insert_line_item(config.id, line_values(item_id="1002"))

        assert first.line_number == 1
        assert second.line_number == 2
        assert first.unit_cost == Decimal("57.63")
        assert first.tariff_amount == Decimal("41.17")
        assert first.price_override is False
        assert self.configurations.get(config.id).version == 3

    def test_insert_line_item_missing_configuration(self):
        assert self.configurations.insert_line_item("missing", line_values()) is None

    def test_update_line_item_bumps_version(self):
        config = self.configurations.create(estimate_id="123")
        line = self.configurations.insert_line_item(config.id, line_values())

        updated = self.configurations.update_line_item(line.id, {
            "quantity": 2, "product_price": Decimal("99.99"), "price_override": True,
        })

        assert updated.quantity == 2
        assert updated.product_price == Decimal("99.99")
        assert updated.price_override is True
        assert self.configurations.get(config.id).version == 3

    def test_update_line_item_rejects_unknown(self):
        config = self.configurations.create(estimate_id="123")
        line = self.configurations.insert_line_item(config.id, line_values())
        with pytest.raises(ValueError):
            self.configurations.update_line_item(line.id, {"unit_cost": Decimal("1")})

    def test_delete_line_item(self):
        config = self.configurations.create(estimate_id="123")
        line = self.configurations.insert_line_item(config.id, line_values())

        assert self.configurations.delete_line_item(line.id) is True
        assert self.configurations.delete_line_item(line.id) is False
        assert self.configurations.list_line_items(config.id) == []
        assert self.configurations.get(config.id).version == 3

    def test_load_with_lines(self):
        config = self.configurations.create(estimate_id="123")
        self.configurations.insert_line_item(config.id, line_values())
        self.configurations.insert_line_item(config.id, line_values(item_id="1007"))

        loaded, lines = self.configurations.load_with_lines(config.id)

        assert loaded.version == 3
        assert [line.item_id for line in lines] == ["1001", "1007"]
        assert self.configurations.load_with_lines("missing") is None

    def test_find_active_by_estimate_skips_error(self):
        failed = self.configurations.create(estimate_id="123")
        self.configurations.set_status(failed.id, ConfigurationStatus.ERROR)
        assert self.configurations.find_active_by_estimate("123") is None

        active = self.configurations.create(estimate_id="123")
        assert self.configurations.find_active_by_estimate("123").id == active.id


class TestSubmissionRepository(StorageTestCase):
    """Test claim and finalize semantics."""

    def setup_method(self):
        super().setup_method()
        self.config = self.configurations.create(estimate_id="123")
        self.key = f"{self.config.id}_v1"

    def test_first_claim_inserts(self):
        submission, claimed = self.submissions.claim(self.config.id, 1, self.key)
        assert claimed is True
        assert submission.status == SubmissionStatus.IN_PROGRESS
        assert submission.attempts == 1
        assert submission.request_payload == {}
        assert self.submissions.get_by_key(self.key) == submission

    def test_success_row_not_reclaimed(self):
        submission, _ = self.submissions.claim(self.config.id, 1, self.key)
        self.submissions.mark_success(submission.id, {"success": True}, "123")

        again, claimed = self.submissions.claim(self.config.id, 1, self.key)

        assert claimed is False
        assert again.status == SubmissionStatus.SUCCESS
        assert again.attempts == 1

    def test_failed_row_reclaimed_with_next_attempt(self):
        submission, _ = self.submissions.claim(self.config.id, 1, self.key)
        self.submissions.mark_failed(submission.id, 1, "NetSuite API error: 500 Internal")

        again, claimed = self.submissions.claim(self.config.id, 1, self.key)

        assert claimed is True
        assert again.id == submission.id
        assert again.status == SubmissionStatus.IN_PROGRESS
        assert again.attempts == 2
        assert again.error_message is None

    def test_one_row_per_key(self):
        self.submissions.claim(self.config.id, 1, self.key)
        self.submissions.claim(self.config.id, 1, self.key)
        assert len(self.submissions.list_for_configuration(self.config.id)) == 1

    def test_live_in_progress_row_not_reclaimed(self):
        """Verify a second caller cannot take over an attempt still in flight."""
        submission, _ = self.submissions.claim(self.config.id, 1, self.key)

        again, claimed = self.submissions.claim(self.config.id, 1, self.key)

        assert claimed is False
        assert again == submission
        assert again.attempts == 1

    def test_expired_in_progress_row_reclaimed(self):
        """Verify an attempt orphaned past its lease can be taken over."""
        expired = SubmissionRepository(self.db_path, lease_seconds=0)
        submission, _ = expired.claim(self.config.id, 1, self.key)

        again, claimed = expired.claim(self.config.id, 1, self.key)

        assert claimed is True
        assert again.id == submission.id
        assert again.status == SubmissionStatus.IN_PROGRESS
        assert again.attempts == 2

    def test_mark_success_records_response(self):
        submission, _ = self.submissions.claim(self.config.id, 1, self.key)
        self.submissions.save_request_payload(submission.id, {"estimateId": "123", "lines": []})

        done = self.submissions.mark_success(submission.id, {"success": True, "lineCount": 0}, "123")

        assert done.status == SubmissionStatus.SUCCESS
        assert done.response_payload == {"success": True, "lineCount": 0}
        assert done.request_payload == {"estimateId": "123", "lines": []}
        assert done.netsuite_estimate_id == "123"

    def test_mark_failed_never_overwrites_success(self):
        """Verify a late failure cannot demote a SUCCESS row."""
        submission, _ = self.submissions.claim(self.config.id, 1, self.key)
        self.submissions.mark_success(submission.id, {"success": True}, "123")

        result, failed = self.submissions.mark_failed(submission.id, 1, "late failure")

        assert failed is False
        assert result.status == SubmissionStatus.SUCCESS
        assert result.error_message is None

    def test_mark_failed_ignores_stale_attempt(self):
        """Verify only the current attempt may fail the row."""
        expired = SubmissionRepository(self.db_path, lease_seconds=0)
        submission, _ = expired.claim(self.config.id, 1, self.key)
        expired.claim(self.config.id, 1, self.key)

        stale, failed = self.submissions.mark_failed(submission.id, 1, "stale")
        assert failed is False
        assert stale.status == SubmissionStatus.IN_PROGRESS

        current, failed = self.submissions.mark_failed(submission.id, 2, "current")
        assert failed is True
        assert current.status == SubmissionStatus.FAILED
        assert current.error_message == "current"

    def test_versions_are_independent(self):
        first, _ = self.submissions.claim(self.config.id, 1, self.key)
        self.submissions.mark_success(first.id, {"success": True}, "123")

        second, claimed = self.submissions.claim(self.config.id, 2, f"{self.config.id}_v2")

        assert claimed is True
        assert second.id != first.id
        assert second.version == 2
        assert len(self.submissions.list_for_configuration(self.config.id)) == 2

    def test_list_limit(self):
        for version in range(1, 8):
            self.submissions.claim(self.config.id, version, f"{self.config.id}_v{version}")
        assert len(self.submissions.list_for_configuration(self.config.id)) == 5
        assert len(self.submissions.list_for_configuration(self.config.id, limit=10)) == 7

    def test_get_missing(self):
        assert self.submissions.get("missing") is None
