"""Entry factories.

One method per business event turns a domain record (plus any cost computed
by the FIFO tracker) into an unposted :class:`~pos_ledger.journal.EntryDraft`.
Factories read only the injected chart and tax policy; they never touch the
workbook. Every draft balances by construction and ``journal.post`` checks it
again independently.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Mapping, Optional

from .chart import DEFAULT_CHART, ChartOfAccounts, CodeLike, code_value
from .constants import (
    AccountCode,
    InvoiceCategory,
    PaymentMethod,
    RefundMethod,
    ShrinkageReason,
    SourceType,
)
from .data_manager import InvoiceRow, JournalEntryLine, SaleRow, ShiftRow
from .errors import BusinessRuleViolation
from .journal import EntryDraft
from .tax import ZERO, Number, TaxPolicy, quantize_money, to_decimal


SALE_DEBIT_ACCOUNTS: Mapping[PaymentMethod, AccountCode] = {
    PaymentMethod.CASH: AccountCode.CASH,
    PaymentMethod.CARD: AccountCode.CARD_RECEIVABLE,
    PaymentMethod.CREDIT: AccountCode.ACCOUNTS_RECEIVABLE,
}

SALE_LABELS: Mapping[PaymentMethod, str] = {
    PaymentMethod.CASH: "efectivo",
    PaymentMethod.CARD: "tarjeta",
    PaymentMethod.CREDIT: "crédito",
}

PURCHASE_ACCOUNTS: Mapping[InvoiceCategory, AccountCode] = {
    InvoiceCategory.INVENTORY: AccountCode.INVENTORY,
    InvoiceCategory.UTILITIES: AccountCode.UTILITIES_EXPENSE,
    InvoiceCategory.MAINTENANCE: AccountCode.MAINTENANCE_EXPENSE,
    InvoiceCategory.PAYROLL: AccountCode.PAYROLL_EXPENSE,
}

SHRINKAGE_ACCOUNTS: Mapping[ShrinkageReason, AccountCode] = {
    ShrinkageReason.DAMAGE: AccountCode.SHRINKAGE_EXPENSE,
    ShrinkageReason.PHYSICAL_COUNT: AccountCode.SHRINKAGE_EXPENSE,
    ShrinkageReason.CORRECTION: AccountCode.SHRINKAGE_EXPENSE,
    ShrinkageReason.OTHER: AccountCode.SHRINKAGE_EXPENSE,
    ShrinkageReason.EXPIRATION: AccountCode.EXPIRATION_EXPENSE,
    ShrinkageReason.THEFT: AccountCode.THEFT_LOSS_EXPENSE,
}

SHRINKAGE_LABELS: Mapping[ShrinkageReason, str] = {
    ShrinkageReason.DAMAGE: "Daño/Rotura",
    ShrinkageReason.PHYSICAL_COUNT: "Diferencia conteo",
    ShrinkageReason.EXPIRATION: "Vencimiento",
    ShrinkageReason.THEFT: "Pérdida/Robo",
    ShrinkageReason.CORRECTION: "Corrección",
    ShrinkageReason.OTHER: "Otro",
}

SUPPLIER_PAYMENT_ACCOUNTS: Mapping[PaymentMethod, AccountCode] = {
    PaymentMethod.CASH: AccountCode.CASH,
    PaymentMethod.CHECK: AccountCode.BANK,
    PaymentMethod.BANK_TRANSFER: AccountCode.BANK,
    PaymentMethod.CREDIT_CARD: AccountCode.BANK,
    PaymentMethod.DEBIT_CARD: AccountCode.BANK,
}

REFUND_ACCOUNTS: Mapping[RefundMethod, AccountCode] = {
    RefundMethod.CASH: AccountCode.CASH,
    RefundMethod.CARD: AccountCode.CARD_RECEIVABLE,
    RefundMethod.CREDIT: AccountCode.ACCOUNTS_RECEIVABLE,
}


@dataclass(frozen=True)
class SalesReturn:
    """Refund document for goods brought back by a customer."""

    return_id: str
    return_date: date
    original_receipt_number: str
    subtotal: Decimal
    tax_total: Decimal
    total: Decimal
    refund_method: RefundMethod
    customer_name: Optional[str] = None


@dataclass(frozen=True)
class SettlementAmounts:
    gross: Decimal
    commission: Decimal
    retention: Decimal
    net_deposit: Decimal


def build_line(
    chart: ChartOfAccounts,
    code: CodeLike,
    *,
    debit: Number = ZERO,
    credit: Number = ZERO,
    description: Optional[str] = None,
    tax_rate: Optional[Decimal] = None,
) -> JournalEntryLine:
    """Build one line with the chart's account name and cent-rounded amounts.

    Raises:
        MissingReferenceError: If ``code`` is not in ``chart``.
    """

    return JournalEntryLine(
        account_code=code_value(code),
        account_name=chart.name(code),
        debit=quantize_money(debit),
        credit=quantize_money(credit),
        description=description,
        tax_rate=tax_rate,
    )


def settlement_amounts(gross: Number, commission_rate: Number, retention_rate: Number) -> SettlementAmounts:
    """Split a card settlement into commission, tax retention, and net deposit.

    The net deposit is derived by subtraction so the three debits always add
    up to the gross exactly.
    """

    gross = quantize_money(gross)
    commission = quantize_money(gross * to_decimal(commission_rate))
    retention = quantize_money(gross * to_decimal(retention_rate))
    return SettlementAmounts(
        gross=gross,
        commission=commission,
        retention=retention,
        net_deposit=gross - commission - retention,
    )


class EntryFactory:
    """Builds balanced entry drafts for every supported business event."""

    def __init__(self, chart: ChartOfAccounts = DEFAULT_CHART, tax_policy: Optional[TaxPolicy] = None) -> None:
        self.chart = chart
        self.tax_policy = tax_policy or TaxPolicy()

    def _line(self, code: CodeLike, **kwargs) -> JournalEntryLine:
        return build_line(self.chart, code, **kwargs)

    # -- sales ---------------------------------------------------------------

    def sale_entry(self, sale: SaleRow, *, created_by: Optional[str] = None) -> EntryDraft:
        """Dr cash / card receivable / AR for the total; Cr revenue and tax payable.

        Raises:
            BusinessRuleViolation: If the sale's payment method is not cash,
                card, or credit.
        """

        debit_account = SALE_DEBIT_ACCOUNTS.get(sale.payment_method)
        if debit_account is None:
            raise BusinessRuleViolation(f"Unsupported sale payment method: {sale.payment_method.value}")

        label = SALE_LABELS[sale.payment_method]
        receipt = sale.receipt_number
        if sale.payment_method is PaymentMethod.CREDIT:
            suffix = f" - {sale.customer_name or 'Cliente'}"
        else:
            suffix = f" - {sale.customer_name}" if sale.customer_name else ""

        lines = [
            self._line(debit_account, debit=sale.total, description=f"Venta {label} #{receipt}{suffix}"),
            self._line(AccountCode.SALES_REVENUE, credit=sale.subtotal, description=f"Venta #{receipt}"),
        ]
        if sale.tax_total > ZERO:
            lines.append(
                self._line(AccountCode.TAX_PAYABLE, credit=sale.tax_total, description=f"ITBIS venta #{receipt}")
            )

        return EntryDraft(
            entry_date=sale.sale_date,
            description=f"Venta {label} #{receipt}{suffix}",
            source_type=SourceType.SALE,
            source_id=sale.sale_id,
            shift_id=sale.shift_id,
            lines=tuple(lines),
            created_by=created_by,
        )

    def shift_cogs_entry(
        self,
        shift: ShiftRow,
        total_cogs: Number,
        *,
        entry_date: Optional[date] = None,
        created_by: Optional[str] = None,
    ) -> Optional[EntryDraft]:
        """Dr COGS / Cr inventory for the shift's FIFO cost; ``None`` when <= 0."""

        amount = quantize_money(total_cogs)
        if amount <= ZERO:
            return None

        if entry_date is None:
            entry_date = shift.closed_at.date() if shift.closed_at else shift.opened_at.date()

        number = shift.shift_number
        return EntryDraft(
            entry_date=entry_date,
            description=f"Costo de mercancía vendida - Cierre turno #{number}",
            source_type=SourceType.SHIFT_CLOSE,
            source_id=shift.shift_id,
            shift_id=shift.shift_id,
            lines=(
                self._line(AccountCode.COST_OF_GOODS_SOLD, debit=amount, description=f"Costo de ventas - Turno #{number}"),
                self._line(AccountCode.INVENTORY, credit=amount, description=f"Salida inventario - Turno #{number}"),
            ),
            created_by=created_by,
        )

    # -- purchasing ----------------------------------------------------------

    def purchase_entry(self, invoice: InvoiceRow, *, created_by: Optional[str] = None) -> EntryDraft:
        """Dr inventory or expense (net) and tax paid; Cr accounts payable (gross)."""

        account = PURCHASE_ACCOUNTS.get(invoice.category, AccountCode.OTHER_OPERATING_EXPENSE)
        kind = "Compra" if invoice.category is InvoiceCategory.INVENTORY else "Gasto"

        lines = [
            self._line(
                account,
                debit=invoice.subtotal,
                description=f"{kind}: {invoice.provider_name} - NCF {invoice.ncf}",
            )
        ]
        if invoice.tax_total > ZERO:
            lines.append(
                self._line(AccountCode.TAX_PAID, debit=invoice.tax_total, description=f"ITBIS compra NCF {invoice.ncf}")
            )
        lines.append(
            self._line(
                AccountCode.ACCOUNTS_PAYABLE,
                credit=invoice.total,
                description=f"CxP {invoice.provider_name} - NCF {invoice.ncf}",
            )
        )

        return EntryDraft(
            entry_date=invoice.issue_date,
            description=f"Compra {invoice.provider_name} - NCF {invoice.ncf}",
            source_type=SourceType.PURCHASE,
            source_id=invoice.invoice_id,
            lines=tuple(lines),
            created_by=created_by,
        )

    def supplier_payment_entry(
        self,
        amount: Number,
        payment_method: PaymentMethod,
        *,
        payment_date: date,
        provider_name: str,
        ncf: Optional[str] = None,
        reference: Optional[str] = None,
        payment_id: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> EntryDraft:
        """Dr accounts payable; Cr cash or bank depending on ``payment_method``."""

        credit_account = SUPPLIER_PAYMENT_ACCOUNTS.get(payment_method, AccountCode.CASH)
        ncf_suffix = f" - NCF {ncf}" if ncf else ""
        method_label = payment_method.value.replace("_", " ")
        if reference:
            method_label = f"{method_label} {reference}"

        return EntryDraft(
            entry_date=payment_date,
            description=f"Pago a proveedor {provider_name}{ncf_suffix}",
            source_type=SourceType.SUPPLIER_PAYMENT,
            source_id=payment_id,
            lines=(
                self._line(AccountCode.ACCOUNTS_PAYABLE, debit=amount, description=f"Pago a {provider_name}{ncf_suffix}"),
                self._line(credit_account, credit=amount, description=f"Pago {method_label} a {provider_name}"),
            ),
            created_by=created_by,
        )

    # -- inventory adjustments ----------------------------------------------

    def shrinkage_entry(
        self,
        reason: ShrinkageReason,
        product_name: str,
        quantity: Number,
        cost: Number,
        *,
        entry_date: date,
        adjustment_id: Optional[str] = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Optional[EntryDraft]:
        """Book an inventory adjustment; ``None`` when ``cost`` rounds to zero.

        * loss reasons: Dr the reason's expense account / Cr inventory
        * ``found``: Dr inventory / Cr shrinkage expense
        * ``return_supplier``: Dr supplier advances / Cr inventory
        """

        amount = quantize_money(cost)
        if amount <= ZERO:
            return None

        units = f"({quantity} unidades)"

        if reason is ShrinkageReason.FOUND:
            description = f"Producto encontrado: {product_name}"
            lines = (
                self._line(AccountCode.INVENTORY, debit=amount, description=f"{description} {units}"),
                self._line(AccountCode.SHRINKAGE_EXPENSE, credit=amount, description=f"Reverso merma: {product_name}"),
            )
        elif reason is ShrinkageReason.RETURN_SUPPLIER:
            description = f"Devolución a proveedor: {product_name}"
            lines = (
                self._line(AccountCode.SUPPLIER_ADVANCES, debit=amount, description=f"{description} {units}"),
                self._line(AccountCode.INVENTORY, credit=amount, description=f"Salida inventario: {product_name}"),
            )
        else:
            label = SHRINKAGE_LABELS.get(reason, reason.value)
            note = f" - {notes}" if notes else ""
            description = f"Ajuste inventario - {label}: {product_name}"
            lines = (
                self._line(
                    SHRINKAGE_ACCOUNTS.get(reason, AccountCode.SHRINKAGE_EXPENSE),
                    debit=amount,
                    description=f"{label}: {product_name} {units}{note}",
                ),
                self._line(AccountCode.INVENTORY, credit=amount, description=f"Baja inventario: {product_name}"),
            )

        return EntryDraft(
            entry_date=entry_date,
            description=description,
            source_type=SourceType.ADJUSTMENT,
            source_id=adjustment_id,
            lines=lines,
            created_by=created_by,
        )

    # -- card settlement -----------------------------------------------------

    def card_settlement_entry(
        self,
        gross_amount: Number,
        commission_rate: Number,
        *,
        settlement_date: date,
        retention_rate: Optional[Number] = None,
        reference: Optional[str] = None,
        settlement_id: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> EntryDraft:
        """Dr bank (net), commission expense, and tax retained; Cr card receivable.

        ``retention_rate`` defaults to the tax policy's card retention rate.
        """

        if retention_rate is None:
            retention_rate = self.tax_policy.card_retention_rate
        amounts = settlement_amounts(gross_amount, commission_rate, retention_rate)
        ref = f" - {reference}" if reference else ""
        commission_pct = (to_decimal(commission_rate) * 100).quantize(Decimal("0.01"))
        retention_pct = (to_decimal(retention_rate) * 100).quantize(Decimal("0.01"))

        return EntryDraft(
            entry_date=settlement_date,
            description=f"Liquidación tarjetas{ref} (Bruto: {amounts.gross})",
            source_type=SourceType.CARD_SETTLEMENT,
            source_id=settlement_id,
            lines=(
                self._line(AccountCode.BANK, debit=amounts.net_deposit, description=f"Depósito neto tarjetas{ref}"),
                self._line(
                    AccountCode.CARD_COMMISSION_EXPENSE,
                    debit=amounts.commission,
                    description=f"Comisión tarjeta {commission_pct}%",
                ),
                self._line(AccountCode.TAX_RETAINED, debit=amounts.retention, description=f"Retención ITBIS {retention_pct}%"),
                self._line(AccountCode.CARD_RECEIVABLE, credit=amounts.gross, description=f"Liquidación ventas tarjeta{ref}"),
            ),
            created_by=created_by,
        )

    # -- returns -------------------------------------------------------------

    def sales_return_entry(self, document: SalesReturn, *, created_by: Optional[str] = None) -> EntryDraft:
        """Dr sales returns (net) and tax payable; Cr the refund account."""

        receipt = document.original_receipt_number
        lines = [
            self._line(AccountCode.SALES_RETURNS, debit=document.subtotal, description=f"Devolución venta #{receipt}"),
        ]
        if document.tax_total > ZERO:
            lines.append(
                self._line(
                    AccountCode.TAX_PAYABLE,
                    debit=document.tax_total,
                    description=f"Reverso ITBIS devolución #{receipt}",
                )
            )
        lines.append(
            self._line(
                REFUND_ACCOUNTS.get(document.refund_method, AccountCode.ACCOUNTS_RECEIVABLE),
                credit=document.total,
                description=f"Reembolso devolución #{receipt}",
            )
        )

        customer = f" - {document.customer_name}" if document.customer_name else ""
        return EntryDraft(
            entry_date=document.return_date,
            description=f"Devolución venta #{receipt}{customer}",
            source_type=SourceType.RETURN,
            source_id=document.return_id,
            lines=tuple(lines),
            created_by=created_by,
        )


__all__ = [
    "EntryFactory",
    "SalesReturn",
    "SettlementAmounts",
    "build_line",
    "settlement_amounts",
]
