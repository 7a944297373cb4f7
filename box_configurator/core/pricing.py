"""
Margin-based pricing calculations.

Pricing model:
    product_price = unit_cost / (1 - target_margin)
    ext_cost      = unit_cost * quantity
    total_price   = product_price * quantity
    margin        = (product_price - unit_cost) / product_price
    shipping_fee  = total_ext_cost * 0.05 (default)
    subtotal      = total_price + shipping_fee

All arithmetic is done in Decimal. Currency rounds half-up to cents,
ratios round half-up to four places.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Union

Number = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
RATIO = Decimal("0.0001")
ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")
DEFAULT_SHIPPING_RATE = Decimal("0.05")


def to_decimal(value: Number) -> Decimal:
    """Convert a number to Decimal without inheriting float noise.

    Floats go through ``str`` so that 57.63 becomes Decimal("57.63")
    rather than its binary expansion.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round2(value: Number) -> Decimal:
    """Round to 2 decimal places (currency)."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round4(value: Number) -> Decimal:
    """Round to 4 decimal places (margin ratios)."""
    return to_decimal(value).quantize(RATIO, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LineItemPricing:
    """Inputs for pricing one line item."""
    unit_cost: Decimal
    quantity: int
    target_margin: Decimal
    product_price: Decimal = ZERO
    price_override: bool = False
    tariff_percent: Decimal = ZERO

    def __post_init__(self):
        """Normalize numerics to Decimal and reject contract violations."""
        for name in ("unit_cost", "target_margin", "product_price", "tariff_percent"):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))
        if self.unit_cost < 0:
            raise ValueError("unit_cost must be >= 0")
        if not isinstance(self.quantity, int) or self.quantity < 1:
            raise ValueError("quantity must be a positive integer")
        if self.tariff_percent < 0 or self.tariff_percent > HUNDRED:
            raise ValueError("tariff_percent must be between 0 and 100")


@dataclass(frozen=True)
class LineItemComputed:
    """Derived values for a single line item."""
    product_price: Decimal
    ext_cost: Decimal
    total_price: Decimal
    margin: Decimal
    tariff_amount: Decimal


@dataclass(frozen=True)
class SummaryLine:
    """Minimal line figures needed for a configuration summary."""
    ext_cost: Decimal
    total_price: Decimal
    quantity: int


@dataclass(frozen=True)
class ConfigSummary:
    """Summary figures for a whole configuration."""
    total_equipment_cost: Decimal
    total_price: Decimal
    shipping_fee: Decimal
    subtotal: Decimal
    overall_margin: Decimal
    line_count: int
    total_quantity: int


def calculate_product_price(unit_cost: Number, target_margin: Number) -> Decimal:
    """Calculate product price from cost and target margin.

    A margin of 0 or less sells at cost. A margin of 1 or more cannot be
    priced and also falls back to cost; downstream summaries rely on this.
    """
    cost = to_decimal(unit_cost)
    margin = to_decimal(target_margin)
    if margin >= ONE or margin <= ZERO:
        return cost
    return round2(cost / (ONE - margin))


def calculate_margin(unit_cost: Number, product_price: Number) -> Decimal:
    """Calculate realized margin from cost and price."""
    price = to_decimal(product_price)
    if price <= ZERO:
        return round4(ZERO)
    return round4((price - to_decimal(unit_cost)) / price)


def calculate_ext_cost(unit_cost: Number, quantity: int) -> Decimal:
    return round2(to_decimal(unit_cost) * quantity)


def calculate_total_price(product_price: Number, quantity: int) -> Decimal:
    return round2(to_decimal(product_price) * quantity)


def calculate_tariff_amount(total_price: Number, tariff_percent: Number) -> Decimal:
    return round2(to_decimal(total_price) * (to_decimal(tariff_percent) / HUNDRED))


def calculate_shipping_fee(total_ext_cost: Number) -> Decimal:
    """Default shipping fee: 5% of total equipment cost."""
    return round2(to_decimal(total_ext_cost) * DEFAULT_SHIPPING_RATE)


def compute_line_item(pricing: LineItemPricing) -> LineItemComputed:
    """Compute all derived values for a single line item.

    With ``price_override`` the stored product price is kept verbatim;
    otherwise it is derived from cost and target margin.

    Args:
        pricing: Validated line item inputs

    Returns:
        LineItemComputed with currency rounded to cents
    """
    if pricing.price_override:
        product_price = pricing.product_price
    else:
        product_price = calculate_product_price(pricing.unit_cost, pricing.target_margin)

    ext_cost = calculate_ext_cost(pricing.unit_cost, pricing.quantity)
    total_price = calculate_total_price(product_price, pricing.quantity)

    return LineItemComputed(
        product_price=product_price,
        ext_cost=ext_cost,
        total_price=total_price,
        margin=calculate_margin(pricing.unit_cost, product_price),
        tariff_amount=calculate_tariff_amount(total_price, pricing.tariff_percent),
    )


def compute_config_summary(
    lines: Iterable,
    shipping_fee: Optional[Number] = None,
    shipping_override: bool = False
) -> ConfigSummary:
    """Compute summary values for an entire configuration.

    Args:
        lines: Objects exposing ``ext_cost``, ``total_price`` and ``quantity``
        shipping_fee: Stored shipping fee, used only with ``shipping_override``
        shipping_override: Use ``shipping_fee`` verbatim instead of 5% of cost

    Returns:
        ConfigSummary for the configuration
    """
    total_ext_cost = ZERO
    total_price = ZERO
    total_quantity = 0
    line_count = 0
    for line in lines:
        total_ext_cost += to_decimal(line.ext_cost)
        total_price += to_decimal(line.total_price)
        total_quantity += line.quantity
        line_count += 1

    total_ext_cost = round2(total_ext_cost)
    total_price = round2(total_price)

    if shipping_override and shipping_fee is not None:
        fee = to_decimal(shipping_fee)
    else:
        fee = calculate_shipping_fee(total_ext_cost)

    if total_price > ZERO:
        overall_margin = round4((total_price - total_ext_cost) / total_price)
    else:
        overall_margin = round4(ZERO)

    return ConfigSummary(
        total_equipment_cost=total_ext_cost,
        total_price=total_price,
        shipping_fee=fee,
        subtotal=round2(total_price + fee),
        overall_margin=overall_margin,
        line_count=line_count,
        total_quantity=total_quantity,
    )
