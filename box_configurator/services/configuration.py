"""
Configuration editing.

Every mutation recomputes pricing where needed and bumps the configuration
version in the same write, so a version always names one submittable
snapshot.
"""

from decimal import Decimal
from typing import Any, Optional

from ..core.pricing import (
    ConfigSummary,
    LineItemPricing,
    Number,
    compute_config_summary,
    compute_line_item,
    to_decimal,
)
from ..errors import NotFoundError, ValidationError
from ..logging_config import get_logger
from ..netsuite.gateway import EstimateGateway
from ..storage.models import Configuration, LineItem
from ..storage.repository import UPDATABLE_CONFIGURATION_FIELDS, ConfigurationRepository

logger = get_logger("services.configuration")

SAAS_BILLING_SCHEDULES = ("annual", "monthly", "quarterly", "semi_annual", "other")


def _check_range(name: str, value: Optional[Number], low: Decimal, high: Decimal) -> Optional[Decimal]:
    if value is None:
        return None
    number = to_decimal(value)
    if number < low or number > high:
        raise ValidationError(f"{name} must be between {low} and {high}")
    return number


def _check_non_negative(name: str, value: Optional[Number]) -> Optional[Decimal]:
    if value is None:
        return None
    number = to_decimal(value)
    if number < 0:
        raise ValidationError(f"{name} must be non-negative")
    return number


def _check_quantity(quantity: Any) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    return quantity


def _pricing_columns(pricing: LineItemPricing) -> dict:
    computed = compute_line_item(pricing)
    return {
        "quantity": pricing.quantity,
        "target_margin": pricing.target_margin,
        "product_price": computed.product_price,
        "price_override": pricing.price_override,
        "tariff_percent": pricing.tariff_percent,
        "tariff_amount": computed.tariff_amount,
        "margin": computed.margin,
        "ext_cost": computed.ext_cost,
        "total_price": computed.total_price,
    }


class ConfigurationService:
    """Creates and edits configurations and their line items."""

    def __init__(self, configurations: ConfigurationRepository, gateway: Optional[EstimateGateway] = None):
        self.configurations = configurations
        self.gateway = gateway

    async def create_configuration(self, estimate_id: str) -> Configuration:
        """Return the open configuration for an estimate, creating it if needed.

        A configuration in ERROR does not count as open, so a failed one
        can be replaced.
        """
        if not estimate_id:
            raise ValidationError("Estimate ID is required")

        existing = self.configurations.find_active_by_estimate(estimate_id)
        if existing is not None:
            return existing

        if self.gateway is None:
            raise ValidationError("A NetSuite gateway is required to create configurations")
        data = await self.gateway.get_estimate(estimate_id)
        config = self.configurations.create(
            estimate_id=estimate_id,
            estimate_number=data["estimate"]["tranId"],
            customer_id=data["customer"]["internalId"],
            customer_name=data["customer"]["name"],
        )
        logger.info("Configuration created", extra={"config_id": config.id, "estimate_id": estimate_id})
        return config

    def get_configuration(self, config_id: str) -> Configuration:
        config = self.configurations.get(config_id)
        if config is None:
            raise NotFoundError(f"Configuration not found: {config_id}")
        return config

    def update_configuration(self, config_id: str, **fields: Any) -> Configuration:
        """Update flags and detail fields.

        Raises:
            ValidationError: On unknown fields or out-of-range values
            NotFoundError: If the configuration doesn't exist
        """
        unknown = set(fields) - UPDATABLE_CONFIGURATION_FIELDS
        if unknown:
            raise ValidationError(f"Unknown configuration fields: {sorted(unknown)}")
        if not fields:
            return self.get_configuration(config_id)

        if "default_margin" in fields:
            if fields["default_margin"] is None:
                raise ValidationError("default_margin cannot be empty")
            fields["default_margin"] = _check_range("default_margin", fields["default_margin"], Decimal(0), Decimal(1))
        if "shipping_fee" in fields:
            fields["shipping_fee"] = _check_non_negative("shipping_fee", fields["shipping_fee"])
        term = fields.get("saas_term")
        if term is not None and (not isinstance(term, int) or not 1 <= term <= 5):
            raise ValidationError("saas_term must be between 1 and 5 years")
        schedule = fields.get("saas_billing_schedule")
        if schedule is not None and schedule not in SAAS_BILLING_SCHEDULES:
            raise ValidationError(f"saas_billing_schedule must be one of: {list(SAAS_BILLING_SCHEDULES)}")

        config = self.configurations.update_fields(config_id, fields)
        if config is None:
            raise NotFoundError(f"Configuration not found: {config_id}")
        return config

    def add_line_item(
        self,
        config_id: str,
        item_id: str,
        part_number: str,
        quantity: int,
        unit_cost: Number,
        product_price: Optional[Number] = None,
        target_margin: Optional[Number] = None,
        tariff_percent: Optional[Number] = None,
        manufacturer: Optional[str] = None,
        description: Optional[str] = None,
    ) -> LineItem:
        """Price and append a line item.

        An explicit non-zero ``product_price`` becomes a price override;
        otherwise the price is derived from ``target_margin`` or the
        configuration's default margin.
        """
        if not item_id:
            raise ValidationError("Item ID is required")
        if not part_number:
            raise ValidationError("Part number is required")
        if unit_cost is None:
            raise ValidationError("Unit cost is required")
        quantity = _check_quantity(quantity)
        cost = _check_non_negative("unit_cost", unit_cost)
        price = _check_non_negative("product_price", product_price)
        margin = _check_range("target_margin", target_margin, Decimal(0), Decimal(1))
        tariff = _check_range("tariff_percent", tariff_percent, Decimal(0), Decimal(100))

        config = self.get_configuration(config_id)
        pricing = LineItemPricing(
            unit_cost=cost,
            quantity=quantity,
            target_margin=margin if margin is not None else config.default_margin,
            product_price=price or Decimal(0),
            price_override=bool(price),
            tariff_percent=tariff or Decimal(0),
        )

        values = {
            "item_id": item_id,
            "part_number": part_number,
            "manufacturer": manufacturer,
            "description": description,
            "unit_cost": cost,
        }
        values.update(_pricing_columns(pricing))
        line = self.configurations.insert_line_item(config_id, values)
        if line is None:
            raise NotFoundError(f"Configuration not found: {config_id}")
        return line

    def update_line_item(
        self,
        line_id: str,
        quantity: Optional[int] = None,
        product_price: Optional[Number] = None,
        price_override: Optional[bool] = None,
        target_margin: Optional[Number] = None,
        tariff_percent: Optional[Number] = None,
    ) -> LineItem:
        """Change a line and recompute its pricing.

        Supplying ``product_price`` without ``price_override`` turns the
        override on; ``price_override=False`` reverts to margin pricing.
        """
        existing = self.configurations.get_line_item(line_id)
        if existing is None:
            raise NotFoundError(f"Line item not found: {line_id}")

        price = _check_non_negative("product_price", product_price)
        margin = _check_range("target_margin", target_margin, Decimal(0), Decimal(1))
        tariff = _check_range("tariff_percent", tariff_percent, Decimal(0), Decimal(100))
        if price_override is None:
            price_override = True if price is not None else existing.price_override

        pricing = LineItemPricing(
            unit_cost=existing.unit_cost,
            quantity=_check_quantity(quantity) if quantity is not None else existing.quantity,
            target_margin=margin if margin is not None else existing.target_margin,
            product_price=price if price is not None else existing.product_price,
            price_override=price_override,
            tariff_percent=tariff if tariff is not None else existing.tariff_percent,
        )

        line = self.configurations.update_line_item(line_id, _pricing_columns(pricing))
        if line is None:
            raise NotFoundError(f"Line item not found: {line_id}")
        return line

    def delete_line_item(self, line_id: str) -> None:
        if not self.configurations.delete_line_item(line_id):
            raise NotFoundError(f"Line item not found: {line_id}")

    def get_summary(self, config_id: str) -> ConfigSummary:
        """Summary figures for a configuration's current lines."""
        config = self.get_configuration(config_id)
        lines = self.configurations.list_line_items(config_id)
        return compute_config_summary(
            lines,
            shipping_fee=config.shipping_fee,
            shipping_override=config.shipping_override,
        )
