"""
Repository pattern for data access.

Handles configuration, line item and submission persistence. Every
configuration mutation bumps ``version`` inside the same transaction as the
change itself.
"""

import json
import sqlite3
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .db import get_connection, transaction
from .models import (
    Configuration,
    ConfigurationStatus,
    LineItem,
    Submission,
    SubmissionStatus,
)

DEFAULT_DB_PATH = "box_configurator.db"
DEFAULT_MARGIN = Decimal("0.30")

# Longer than one write with all its retries (4 x 60s timeouts plus backoff)
CLAIM_LEASE_SECONDS = 300

SCHEMA = """
CREATE TABLE IF NOT EXISTS configuration (
    id TEXT PRIMARY KEY,
    estimate_id TEXT,
    estimate_number TEXT,
    customer_id TEXT,
    customer_name TEXT,
    status TEXT NOT NULL DEFAULT 'DRAFT',
    version INTEGER NOT NULL DEFAULT 1,
    default_margin TEXT NOT NULL DEFAULT '0.30',
    shipping_fee TEXT,
    shipping_override INTEGER NOT NULL DEFAULT 0,
    access_control_cards INTEGER NOT NULL DEFAULT 0,
    acs_format TEXT,
    acs_facility_code TEXT,
    acs_quantity INTEGER,
    acs_start_number INTEGER,
    acs_end_number INTEGER,
    licensing_ssa INTEGER NOT NULL DEFAULT 0,
    system_id TEXT,
    saas INTEGER NOT NULL DEFAULT 0,
    saas_term INTEGER,
    saas_start_date TEXT,
    saas_end_date TEXT,
    saas_effective_date_notes TEXT,
    saas_billing_schedule TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS line_item (
    id TEXT PRIMARY KEY,
    configuration_id TEXT NOT NULL REFERENCES configuration(id) ON DELETE CASCADE,
    line_number INTEGER NOT NULL,
    item_id TEXT NOT NULL,
    part_number TEXT NOT NULL,
    manufacturer TEXT,
    description TEXT,
    quantity INTEGER NOT NULL,
    unit_cost TEXT NOT NULL,
    target_margin TEXT NOT NULL,
    product_price TEXT NOT NULL,
    price_override INTEGER NOT NULL DEFAULT 0,
    tariff_percent TEXT NOT NULL DEFAULT '0',
    tariff_amount TEXT NOT NULL DEFAULT '0',
    margin TEXT NOT NULL,
    ext_cost TEXT NOT NULL,
    total_price TEXT NOT NULL,
    UNIQUE (configuration_id, line_number)
);

CREATE TABLE IF NOT EXISTS submission (
    id TEXT PRIMARY KEY,
    configuration_id TEXT NOT NULL REFERENCES configuration(id) ON DELETE CASCADE,
    idempotency_key TEXT NOT NULL UNIQUE,
    version INTEGER NOT NULL,
    status TEXT NOT NULL,
    attempts INTEGER NOT NULL DEFAULT 1,
    request_payload TEXT NOT NULL DEFAULT '{}',
    response_payload TEXT,
    error_message TEXT,
    netsuite_estimate_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

# Fields a caller may change through update_fields
UPDATABLE_CONFIGURATION_FIELDS = frozenset({
    "default_margin",
    "shipping_fee",
    "shipping_override",
    "access_control_cards",
    "acs_format",
    "acs_facility_code",
    "acs_quantity",
    "acs_start_number",
    "acs_end_number",
    "licensing_ssa",
    "system_id",
    "saas",
    "saas_term",
    "saas_start_date",
    "saas_end_date",
    "saas_effective_date_notes",
    "saas_billing_schedule",
})

UPDATABLE_LINE_FIELDS = frozenset({
    "quantity",
    "target_margin",
    "product_price",
    "price_override",
    "tariff_percent",
    "tariff_amount",
    "margin",
    "ext_cost",
    "total_price",
})

_DECIMAL_FIELDS = frozenset({
    "default_margin", "shipping_fee", "unit_cost", "target_margin", "product_price",
    "tariff_percent", "tariff_amount", "margin", "ext_cost", "total_price",
})


def _now() -> str:
    return datetime.now().isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


def _to_column(name: str, value: Any) -> Any:
    """Convert a Python value to its column representation."""
    if value is None:
        return None
    if name in _DECIMAL_FIELDS:
        return str(value)
    if isinstance(value, bool):
        return int(value)
    return value


def _decimal(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


def _json(value: Optional[str]) -> Optional[Dict[str, Any]]:
    return json.loads(value) if value is not None else None


def _row_to_configuration(row: sqlite3.Row) -> Configuration:
    return Configuration(
        id=row["id"],
        estimate_id=row["estimate_id"],
        estimate_number=row["estimate_number"],
        customer_id=row["customer_id"],
        customer_name=row["customer_name"],
        status=ConfigurationStatus(row["status"]),
        version=row["version"],
        default_margin=Decimal(row["default_margin"]),
        shipping_fee=_decimal(row["shipping_fee"]),
        shipping_override=bool(row["shipping_override"]),
        access_control_cards=bool(row["access_control_cards"]),
        acs_format=row["acs_format"],
        acs_facility_code=row["acs_facility_code"],
        acs_quantity=row["acs_quantity"],
        acs_start_number=row["acs_start_number"],
        acs_end_number=row["acs_end_number"],
        licensing_ssa=bool(row["licensing_ssa"]),
        system_id=row["system_id"],
        saas=bool(row["saas"]),
        saas_term=row["saas_term"],
        saas_start_date=row["saas_start_date"],
        saas_end_date=row["saas_end_date"],
        saas_effective_date_notes=row["saas_effective_date_notes"],
        saas_billing_schedule=row["saas_billing_schedule"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _row_to_line_item(row: sqlite3.Row) -> LineItem:
    return LineItem(
        id=row["id"],
        configuration_id=row["configuration_id"],
        line_number=row["line_number"],
        item_id=row["item_id"],
        part_number=row["part_number"],
        manufacturer=row["manufacturer"],
        description=row["description"],
        quantity=row["quantity"],
        unit_cost=Decimal(row["unit_cost"]),
        target_margin=Decimal(row["target_margin"]),
        product_price=Decimal(row["product_price"]),
        price_override=bool(row["price_override"]),
        tariff_percent=Decimal(row["tariff_percent"]),
        tariff_amount=Decimal(row["tariff_amount"]),
        margin=Decimal(row["margin"]),
        ext_cost=Decimal(row["ext_cost"]),
        total_price=Decimal(row["total_price"]),
    )


def _row_to_submission(row: sqlite3.Row) -> Submission:
    return Submission(
        id=row["id"],
        configuration_id=row["configuration_id"],
        idempotency_key=row["idempotency_key"],
        version=row["version"],
        status=SubmissionStatus(row["status"]),
        attempts=row["attempts"],
        request_payload=_json(row["request_payload"]) or {},
        response_payload=_json(row["response_payload"]),
        error_message=row["error_message"],
        netsuite_estimate_id=row["netsuite_estimate_id"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the configuration, line_item and submission tables.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript(SCHEMA)
    finally:
        conn.close()


class ConfigurationRepository:
    """Repository for configurations and their line items."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def create(
        self,
        estimate_id: Optional[str] = None,
        estimate_number: Optional[str] = None,
        customer_id: Optional[str] = None,
        customer_name: Optional[str] = None,
        default_margin: Decimal = DEFAULT_MARGIN,
    ) -> Configuration:
        """Insert a new DRAFT configuration at version 1."""
        config_id = _new_id()
        now = _now()
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO configuration
                (id, estimate_id, estimate_number, customer_id, customer_name,
                 status, version, default_margin, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?, ?)
                """,
                (config_id, estimate_id, estimate_number, customer_id, customer_name,
                 ConfigurationStatus.DRAFT.value, str(default_margin), now, now),
            )
        finally:
            conn.close()
        return self.get(config_id)

    def get(self, config_id: str) -> Optional[Configuration]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("SELECT * FROM configuration WHERE id = ?", (config_id,)).fetchone()
            return _row_to_configuration(row) if row else None
        finally:
            conn.close()

    def find_active_by_estimate(self, estimate_id: str) -> Optional[Configuration]:
        """Most recent configuration for an estimate that is not in ERROR."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                """
                SELECT * FROM configuration
                WHERE estimate_id = ? AND status != ?
                ORDER BY created_at DESC LIMIT 1
                """,
                (estimate_id, ConfigurationStatus.ERROR.value),
            ).fetchone()
            return _row_to_configuration(row) if row else None
        finally:
            conn.close()

    def list_line_items(self, config_id: str) -> List[LineItem]:
        """Line items ordered by line number."""
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM line_item WHERE configuration_id = ? ORDER BY line_number ASC",
                (config_id,),
            ).fetchall()
            return [_row_to_line_item(row) for row in rows]
        finally:
            conn.close()

    def get_line_item(self, line_id: str) -> Optional[LineItem]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("SELECT * FROM line_item WHERE id = ?", (line_id,)).fetchone()
            return _row_to_line_item(row) if row else None
        finally:
            conn.close()

    def load_with_lines(self, config_id: str) -> Optional[Tuple[Configuration, List[LineItem]]]:
        """Read a configuration and its lines as one consistent snapshot."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN")
            try:
                row = conn.execute("SELECT * FROM configuration WHERE id = ?", (config_id,)).fetchone()
                if row is None:
                    return None
                lines = conn.execute(
                    "SELECT * FROM line_item WHERE configuration_id = ? ORDER BY line_number ASC",
                    (config_id,),
                ).fetchall()
            finally:
                conn.execute("ROLLBACK")
            return _row_to_configuration(row), [_row_to_line_item(line) for line in lines]
        finally:
            conn.close()

    def update_fields(self, config_id: str, fields: Mapping[str, Any]) -> Optional[Configuration]:
        """Update configuration fields and bump the version once.

        Args:
            config_id: Configuration to update
            fields: Column values; keys must be in UPDATABLE_CONFIGURATION_FIELDS

        Returns:
            The updated configuration, or None if it doesn't exist

        Raises:
            ValueError: If an unknown field is given
        """
        unknown = set(fields) - UPDATABLE_CONFIGURATION_FIELDS
        if unknown:
            raise ValueError(f"Unknown configuration fields: {sorted(unknown)}")

        assignments = [f"{name} = ?" for name in fields]
        params = [_to_column(name, value) for name, value in fields.items()]
        assignments.extend(["version = version + 1", "updated_at = ?"])
        params.extend([_now(), config_id])

        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"UPDATE configuration SET {', '.join(assignments)} WHERE id = ?",
                params,
            )
            if cursor.rowcount == 0:
                return None
        finally:
            conn.close()
        return self.get(config_id)

    def set_status(self, config_id: str, status: ConfigurationStatus) -> None:
        """Record submission outcome. Not a content change, so no version bump."""
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "UPDATE configuration SET status = ?, updated_at = ? WHERE id = ?",
                (status.value, _now(), config_id),
            )
        finally:
            conn.close()

    def insert_line_item(self, config_id: str, values: Mapping[str, Any]) -> Optional[LineItem]:
        """Append a line at the next line number and bump the version.

        Args:
            config_id: Parent configuration
            values: All LineItem columns except id, configuration_id, line_number

        Returns:
            The new line item, or None if the configuration doesn't exist
        """
        line_id = _new_id()
        columns = ["id", "configuration_id", "line_number"] + list(values)
        with transaction(self.db_path) as conn:
            cursor = conn.execute(
                "UPDATE configuration SET version = version + 1, updated_at = ? WHERE id = ?",
                (_now(), config_id),
            )
            if cursor.rowcount == 0:
                return None
            next_number = conn.execute(
                "SELECT COALESCE(MAX(line_number), 0) + 1 FROM line_item WHERE configuration_id = ?",
                (config_id,),
            ).fetchone()[0]
            params = [line_id, config_id, next_number]
            params.extend(_to_column(name, value) for name, value in values.items())
            conn.execute(
                f"INSERT INTO line_item ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
                params,
            )
        return self.get_line_item(line_id)

    def update_line_item(self, line_id: str, values: Mapping[str, Any]) -> Optional[LineItem]:
        """Update a line's pricing columns and bump its configuration's version."""
        unknown = set(values) - UPDATABLE_LINE_FIELDS
        if unknown:
            raise ValueError(f"Unknown line item fields: {sorted(unknown)}")

        assignments = ", ".join(f"{name} = ?" for name in values)
        params = [_to_column(name, value) for name, value in values.items()]
        with transaction(self.db_path) as conn:
            row = conn.execute("SELECT configuration_id FROM line_item WHERE id = ?", (line_id,)).fetchone()
            if row is None:
                return None
            conn.execute(f"UPDATE line_item SET {assignments} WHERE id = ?", params + [line_id])
            conn.execute(
                "UPDATE configuration SET version = version + 1, updated_at = ? WHERE id = ?",
                (_now(), row["configuration_id"]),
            )
        return self.get_line_item(line_id)

    def delete_line_item(self, line_id: str) -> bool:
        """Delete a line and bump its configuration's version.

        Returns:
            False if the line doesn't exist
        """
        with transaction(self.db_path) as conn:
            row = conn.execute("SELECT configuration_id FROM line_item WHERE id = ?", (line_id,)).fetchone()
            if row is None:
                return False
            conn.execute("DELETE FROM line_item WHERE id = ?", (line_id,))
            conn.execute(
                "UPDATE configuration SET version = version + 1, updated_at = ? WHERE id = ?",
                (_now(), row["configuration_id"]),
            )
        return True


class SubmissionRepository:
    """Repository for submission attempt/result records."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH, lease_seconds: float = CLAIM_LEASE_SECONDS):
        self.db_path = db_path
        self.lease_seconds = lease_seconds

    def claim(self, config_id: str, version: int, idempotency_key: str) -> Tuple[Submission, bool]:
        """Create or re-open the submission row for a key in one write.

        A missing row is inserted with attempts = 1. A FAILED row, or an
        IN_PROGRESS row whose lease has expired, is reset to IN_PROGRESS
        with one more attempt and no error. A SUCCESS row and a live
        IN_PROGRESS row are left untouched. The unique key makes concurrent
        claims collapse onto one row.

        Args:
            config_id: Configuration being submitted
            version: Configuration version being submitted
            idempotency_key: ``"{config_id}_v{version}"``

        Returns:
            (submission, claimed); claimed is False when nothing was
            written and another caller owns or finished the row
        """
        now = datetime.now()
        lease_cutoff = (now - timedelta(seconds=self.lease_seconds)).isoformat()
        now = now.isoformat()
        with transaction(self.db_path) as conn:
            cursor = conn.execute(
                """
                INSERT INTO submission
                (id, configuration_id, idempotency_key, version, status, attempts,
                 request_payload, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, 1, '{}', ?, ?)
                ON CONFLICT(idempotency_key) DO UPDATE SET
                    status = excluded.status,
                    attempts = submission.attempts + 1,
                    error_message = NULL,
                    updated_at = excluded.updated_at
                WHERE submission.status = 'FAILED'
                   OR (submission.status = 'IN_PROGRESS' AND submission.updated_at < ?)
                """,
                (_new_id(), config_id, idempotency_key, version,
                 SubmissionStatus.IN_PROGRESS.value, now, now, lease_cutoff),
            )
            claimed = cursor.rowcount == 1
            row = conn.execute(
                "SELECT * FROM submission WHERE idempotency_key = ?", (idempotency_key,)
            ).fetchone()
        return _row_to_submission(row), claimed

    def save_request_payload(self, submission_id: str, payload: Mapping[str, Any]) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "UPDATE submission SET request_payload = ?, updated_at = ? WHERE id = ?",
                (json.dumps(payload), _now(), submission_id),
            )
        finally:
            conn.close()

    def mark_success(
        self,
        submission_id: str,
        response: Mapping[str, Any],
        netsuite_estimate_id: Optional[str],
    ) -> Submission:
        """Record a successful write. A row that is already SUCCESS is kept."""
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                UPDATE submission
                SET status = ?, response_payload = ?, netsuite_estimate_id = ?,
                    error_message = NULL, updated_at = ?
                WHERE id = ? AND status != ?
                """,
                (SubmissionStatus.SUCCESS.value, json.dumps(response), netsuite_estimate_id,
                 _now(), submission_id, SubmissionStatus.SUCCESS.value),
            )
        finally:
            conn.close()
        return self.get(submission_id)

    def mark_failed(self, submission_id: str, attempts: int, error_message: str) -> Tuple[Submission, bool]:
        """Record a failed attempt.

        Only the caller that owns the current attempt may fail the row, and
        never after another caller has written SUCCESS.

        Returns:
            (submission, failed); failed is False when the row was left
            as another caller wrote it
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                """
                UPDATE submission
                SET status = ?, error_message = ?, updated_at = ?
                WHERE id = ? AND status = ? AND attempts = ?
                """,
                (SubmissionStatus.FAILED.value, error_message, _now(),
                 submission_id, SubmissionStatus.IN_PROGRESS.value, attempts),
            )
            failed = cursor.rowcount == 1
        finally:
            conn.close()
        return self.get(submission_id), failed

    def get(self, submission_id: str) -> Optional[Submission]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("SELECT * FROM submission WHERE id = ?", (submission_id,)).fetchone()
            return _row_to_submission(row) if row else None
        finally:
            conn.close()

    def get_by_key(self, idempotency_key: str) -> Optional[Submission]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT * FROM submission WHERE idempotency_key = ?", (idempotency_key,)
            ).fetchone()
            return _row_to_submission(row) if row else None
        finally:
            conn.close()

    def list_for_configuration(self, config_id: str, limit: int = 5) -> List[Submission]:
        """Most recent submissions for a configuration, newest first."""
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT * FROM submission WHERE configuration_id = ?
                ORDER BY created_at DESC, version DESC LIMIT ?
                """,
                (config_id, limit),
            ).fetchall()
            return [_row_to_submission(row) for row in rows]
        finally:
            conn.close()
