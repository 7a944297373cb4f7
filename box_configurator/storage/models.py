"""
Data models for storage layer.

Defines configurations, line items and submission records.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class ConfigurationStatus(Enum):
    """Lifecycle of a configuration as seen by the sales rep."""
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    ERROR = "ERROR"


class SubmissionStatus(Enum):
    """State of one (configuration, version) submission."""
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass(frozen=True)
class Configuration:
    """A line-item configuration attached to a NetSuite estimate.

    ``version`` increases by exactly one on every persisted mutation and
    identifies the snapshot that a submission carries.
    """
    id: str
    estimate_id: Optional[str]
    estimate_number: Optional[str]
    customer_id: Optional[str]
    customer_name: Optional[str]
    status: ConfigurationStatus
    version: int
    default_margin: Decimal
    shipping_fee: Optional[Decimal] = None
    shipping_override: bool = False
    access_control_cards: bool = False
    acs_format: Optional[str] = None
    acs_facility_code: Optional[str] = None
    acs_quantity: Optional[int] = None
    acs_start_number: Optional[int] = None
    acs_end_number: Optional[int] = None
    licensing_ssa: bool = False
    system_id: Optional[str] = None
    saas: bool = False
    saas_term: Optional[int] = None
    saas_start_date: Optional[str] = None
    saas_end_date: Optional[str] = None
    saas_effective_date_notes: Optional[str] = None
    saas_billing_schedule: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class LineItem:
    """One priced line of a configuration."""
    id: str
    configuration_id: str
    line_number: int
    item_id: str
    part_number: str
    quantity: int
    unit_cost: Decimal
    target_margin: Decimal
    product_price: Decimal
    price_override: bool
    tariff_percent: Decimal
    tariff_amount: Decimal
    margin: Decimal
    ext_cost: Decimal
    total_price: Decimal
    manufacturer: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class Submission:
    """Attempt/result record for one configuration version."""
    id: str
    configuration_id: str
    idempotency_key: str
    version: int
    status: SubmissionStatus
    attempts: int
    request_payload: Dict[str, Any] = field(default_factory=dict)
    response_payload: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    netsuite_estimate_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
