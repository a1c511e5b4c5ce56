"""Chart of accounts.

The chart is an immutable lookup table resolved once at construction and
injected into every entry factory and report. Account names are denormalised
onto journal lines when the line is built, so renaming an account never
rewrites history.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterator, Mapping, Optional, Union

from .constants import AccountCode
from .errors import MissingReferenceError


DEBIT_NORMAL_PREFIXES = ("1", "5", "6")
ASSET_PREFIX = "1"
LIABILITY_PREFIX = "2"
REVENUE_PREFIX = "4"
EXPENSE_PREFIX = "6"

CodeLike = Union[AccountCode, str]


DEFAULT_ACCOUNT_NAMES: Mapping[AccountCode, str] = {
    AccountCode.CASH: "Caja",
    AccountCode.BANK: "Bancos",
    AccountCode.ACCOUNTS_RECEIVABLE: "Cuentas por Cobrar Clientes",
    AccountCode.TAX_PAID: "ITBIS Pagado",
    AccountCode.SUPPLIER_ADVANCES: "Anticipos a Proveedores",
    AccountCode.CARD_RECEIVABLE: "Cuentas por Cobrar Tarjetas",
    AccountCode.INVENTORY: "Inventario de Mercancías",
    AccountCode.ACCOUNTS_PAYABLE: "Cuentas por Pagar Proveedores",
    AccountCode.TAX_PAYABLE: "ITBIS Por Pagar",
    AccountCode.TAX_RETAINED: "ITBIS Retenido por Terceros",
    AccountCode.INCOME_TAX_WITHHELD: "Retenciones ISR",
    AccountCode.SALES_REVENUE: "Ventas de Mercancías",
    AccountCode.SALES_DISCOUNTS: "Descuentos en Ventas",
    AccountCode.SALES_RETURNS: "Devoluciones en Ventas",
    AccountCode.COST_OF_GOODS_SOLD: "Costo de Mercancía Vendida",
    AccountCode.SHRINKAGE_EXPENSE: "Gastos por Merma/Rotura",
    AccountCode.EXPIRATION_EXPENSE: "Gastos por Vencimiento",
    AccountCode.THEFT_LOSS_EXPENSE: "Gastos por Pérdida/Robo",
    AccountCode.CARD_COMMISSION_EXPENSE: "Comisiones Bancarias/Tarjetas",
    AccountCode.UTILITIES_EXPENSE: "Gastos de Servicios Públicos",
    AccountCode.MAINTENANCE_EXPENSE: "Gastos de Mantenimiento",
    AccountCode.PAYROLL_EXPENSE: "Gastos de Nómina",
    AccountCode.OTHER_OPERATING_EXPENSE: "Otros Gastos Operativos",
}


def code_value(code: CodeLike) -> str:
    """Return the raw string form of an account code."""

    return code.value if isinstance(code, AccountCode) else str(code)


def is_debit_normal(code: CodeLike) -> bool:
    """Assets, COGS, and expenses carry debit balances; the rest credit."""

    return code_value(code).startswith(DEBIT_NORMAL_PREFIXES)


@dataclass(frozen=True)
class AccountDefinition:
    """One row of the chart: code, display name, and normal balance side."""

    code: AccountCode
    name: str
    debit_normal: bool


class ChartOfAccounts:
    """Read-only mapping of account codes to :class:`AccountDefinition`."""

    def __init__(self, names: Optional[Mapping[AccountCode, str]] = None) -> None:
        source = DEFAULT_ACCOUNT_NAMES if names is None else names
        definitions = {}
        for code in AccountCode:
            if code not in source:
                raise ValueError(f"Chart is missing a name for account {code.value}")
            definitions[code.value] = AccountDefinition(
                code=code,
                name=source[code],
                debit_normal=is_debit_normal(code),
            )
        self._definitions: Mapping[str, AccountDefinition] = MappingProxyType(definitions)

    def __contains__(self, code: object) -> bool:
        if not isinstance(code, (AccountCode, str)):
            return False
        return code_value(code) in self._definitions

    def __iter__(self) -> Iterator[AccountDefinition]:
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)

    def get(self, code: CodeLike) -> AccountDefinition:
        try:
            return self._definitions[code_value(code)]
        except KeyError as exc:
            raise MissingReferenceError(f"Unknown account code: {code_value(code)}") from exc

    def name(self, code: CodeLike) -> str:
        return self.get(code).name

    def is_debit_normal(self, code: CodeLike) -> bool:
        return self.get(code).debit_normal

    def codes(self) -> tuple[str, ...]:
        """Return every account code in chart order."""

        return tuple(self._definitions)


DEFAULT_CHART = ChartOfAccounts()


__all__ = [
    "AccountDefinition",
    "ChartOfAccounts",
    "DEFAULT_CHART",
    "DEFAULT_ACCOUNT_NAMES",
    "is_debit_normal",
    "code_value",
]
