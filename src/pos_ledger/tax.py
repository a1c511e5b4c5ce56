"""Tax policy and money helpers.

Rates live in :class:`TaxPolicy`, built once from ``config.ini`` and handed to
the entry factories and the costing workflows. Nothing else in the package
hard-codes a rate.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Optional, Union

if TYPE_CHECKING:
    from .data_manager import ConfigSettings


CENT = Decimal("0.01")
ZERO = Decimal("0")

Number = Union[Decimal, int, str]


def to_decimal(value: Number) -> Decimal:
    """Coerce ints, strings, and decimals into :class:`Decimal`."""

    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_money(value: Number) -> Decimal:
    """Round a monetary amount to cents using half-up rounding."""

    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def price_without_tax(amount: Number, rate: Number, *, includes_tax: bool = True) -> Decimal:
    """Strip tax from ``amount`` when it is tax inclusive.

    The result is not quantized so unit costs keep their full precision until
    they are multiplied into a line amount.
    """

    amount = to_decimal(amount)
    if not includes_tax:
        return amount
    return amount / (Decimal("1") + to_decimal(rate))


@dataclass(frozen=True)
class TaxPolicy:
    """Explicit tax configuration consumed by factories and costing."""

    default_rate: Decimal = Decimal("0.18")
    card_retention_rate: Decimal = Decimal("0.02")

    @classmethod
    def from_settings(cls, settings: "ConfigSettings") -> "TaxPolicy":
        return cls(
            default_rate=settings.default_tax_rate,
            card_retention_rate=settings.card_retention_rate,
        )

    def rate_or_default(self, rate: Optional[Number]) -> Decimal:
        return self.default_rate if rate is None else to_decimal(rate)

    def estimate_unit_cost(
        self,
        last_purchase_price: Number,
        tax_rate: Optional[Number] = None,
        *,
        includes_tax: bool = True,
    ) -> Decimal:
        """Estimate a tax-exclusive unit cost from the last purchase price.

        Used when FIFO lots cannot cover a draw: last price / (1 + rate).
        """

        return price_without_tax(
            last_purchase_price,
            self.rate_or_default(tax_rate),
            includes_tax=includes_tax,
        )


__all__ = [
    "CENT",
    "ZERO",
    "TaxPolicy",
    "to_decimal",
    "quantize_money",
    "price_without_tax",
]
