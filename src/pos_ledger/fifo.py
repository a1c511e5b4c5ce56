"""FIFO lot tracker.

Owns the ``InventoryLots`` and ``CostConsumptions`` sheets. Lots for one
product form a queue ordered by their insertion ``sequence``; every draw
walks that queue oldest-first and records one :class:`CostConsumption` per
lot touched.

Reads and writes for a product run under the product's lock taken from
``context.locks`` so two callers can never spend the same lot quantity.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from . import data_manager, log
from .audit import log_accounting_action
from .concurrency import STORE_KEY, product_key
from .constants import AuditAction, LotStatus
from .context import (
    CONSUMPTIONS_CACHE,
    LOTS_CACHE,
    RuntimeContext,
    generate_id,
    get_cache_bucket,
    invalidate_cache,
    resolve_timestamp,
)
from .errors import (
    BusinessRuleViolation,
    InsufficientLotQuantity,
    InvalidQuantity,
    MissingReferenceError,
    NoLotsAvailable,
)
from .tax import ZERO, to_decimal


ESTIMATED_LOT_ID = data_manager.ESTIMATED_LOT_ID
LOT_ENTITY = "fifo_lot"


@dataclass(frozen=True)
class ConsumptionResult:
    """Outcome of one :func:`consume` call.

    ``draws`` holds the persisted consumption records in draw order. When the
    lots could not cover the request and an estimate was supplied, the last
    draw is the estimated portion, ``estimated`` is ``True`` and
    ``shortfall_quantity`` is the unmet quantity.
    """

    product_id: str
    quantity: Decimal
    total_cost: Decimal
    average_unit_cost: Decimal
    draws: tuple[data_manager.CostConsumption, ...] = field(default_factory=tuple)
    shortfall_quantity: Decimal = ZERO
    estimated: bool = False


@dataclass(frozen=True)
class RestoreResult:
    restored: Decimal
    total_cost: Decimal
    average_unit_cost: Decimal


@dataclass(frozen=True)
class ProductValuation:
    product_id: str
    quantity: Decimal
    value: Decimal
    average_cost: Decimal
    lots: tuple[data_manager.InventoryLot, ...]


@dataclass(frozen=True)
class InventoryValuation:
    value: Decimal
    product_count: int
    units: Decimal


@dataclass(frozen=True)
class ProductCogs:
    quantity: Decimal
    cost: Decimal


@dataclass(frozen=True)
class PeriodCogs:
    total: Decimal
    by_product: Dict[str, ProductCogs]


# ---------------------------------------------------------------------------
# Cached reads
# ---------------------------------------------------------------------------


def _ensure_lots_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = get_cache_bucket(context, LOTS_CACHE)
    if "all" not in bucket:
        all_lots = list(data_manager.iter_inventory_lots(context.workbook))
        bucket["all"] = all_lots
        bucket["by_id"] = {lot.lot_id: lot for lot in all_lots}
        log.debug("Populated lots cache with %d entries", len(all_lots))
    return bucket


def _ensure_consumptions_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = get_cache_bucket(context, CONSUMPTIONS_CACHE)
    if "all" not in bucket:
        all_consumptions = list(data_manager.iter_cost_consumptions(context.workbook))
        bucket["all"] = all_consumptions
        log.debug("Populated consumptions cache with %d entries", len(all_consumptions))
    return bucket


def list_lots(context: RuntimeContext, product_id: Optional[str] = None) -> List[data_manager.InventoryLot]:
    """Return every lot (any status), optionally for one product, in sequence order."""

    lots = _ensure_lots_cache(context)["all"]
    if product_id is not None:
        lots = [lot for lot in lots if lot.product_id == product_id]
    return sorted(lots, key=lambda lot: lot.sequence)


def get_lot(context: RuntimeContext, lot_id: str) -> data_manager.InventoryLot:
    lot = _ensure_lots_cache(context)["by_id"].get(lot_id)
    if lot is None:
        log.warning("Lot lookup failed for id '%s'", lot_id)
        raise MissingReferenceError(f"Lot '{lot_id}' does not exist")
    return lot


def get_active_lots(context: RuntimeContext, product_id: str) -> List[data_manager.InventoryLot]:
    """Return the product's active lots with stock left, oldest first."""

    return [
        lot
        for lot in list_lots(context, product_id)
        if lot.status is LotStatus.ACTIVE and lot.remaining_quantity > ZERO
    ]


def list_consumptions(
    context: RuntimeContext,
    *,
    sale_id: Optional[str] = None,
    product_id: Optional[str] = None,
    return_id: Optional[str] = None,
    adjustment_id: Optional[str] = None,
) -> List[data_manager.CostConsumption]:
    """Return consumption records matching every supplied reference."""

    records = list(_ensure_consumptions_cache(context)["all"])
    if sale_id is not None:
        records = [record for record in records if record.sale_id == sale_id]
    if product_id is not None:
        records = [record for record in records if record.product_id == product_id]
    if return_id is not None:
        records = [record for record in records if record.return_id == return_id]
    if adjustment_id is not None:
        records = [record for record in records if record.adjustment_id == adjustment_id]
    return records


def available_quantity(context: RuntimeContext, product_id: str) -> Decimal:
    return sum((lot.remaining_quantity for lot in get_active_lots(context, product_id)), ZERO)


def fifo_cost(context: RuntimeContext, product_id: str) -> Optional[Decimal]:
    """Unit cost of the oldest lot with stock, or ``None`` when there is none."""

    lots = get_active_lots(context, product_id)
    return lots[0].unit_cost if lots else None


def weighted_average_cost(context: RuntimeContext, product_id: str) -> Optional[Decimal]:
    """Remaining-quantity weighted cost across active lots, or ``None``."""

    valuation = product_valuation(context, product_id)
    if valuation.quantity <= ZERO:
        return None
    return valuation.average_cost


# ---------------------------------------------------------------------------
# Lot creation and consumption
# ---------------------------------------------------------------------------


def add_lot(
    context: RuntimeContext,
    product_id: str,
    quantity: Decimal,
    unit_cost: Decimal,
    tax_rate: Optional[Decimal] = None,
    *,
    invoice_id: Optional[str] = None,
    lot_number: Optional[str] = None,
    purchase_date: Optional[date] = None,
    expiration_date: Optional[date] = None,
    timestamp: Optional[datetime] = None,
) -> data_manager.InventoryLot:
    """Append a lot to the end of the product's queue.

    Args:
        context (RuntimeContext): Active runtime context.
        product_id (str): Product the lot belongs to.
        quantity (Decimal): Units received; must be positive.
        unit_cost (Decimal): Tax-exclusive cost per unit.
        tax_rate (Decimal | None): Purchase tax rate; the policy default when
            omitted.
        invoice_id (str | None): Source invoice, if any.
        lot_number (str | None): Supplier lot label.
        purchase_date (date | None): Informational acquisition date; defaults
            to the timestamp's date.
        expiration_date (date | None): Optional best-before date.
        timestamp (datetime | None): Creation time override.

    Returns:
        InventoryLot: The persisted lot. Its ``sequence`` is strictly greater
            than every lot created before it.

    Raises:
        InvalidQuantity: If ``quantity`` is zero or negative.
        BusinessRuleViolation: If ``unit_cost`` is negative.
    """

    quantity = to_decimal(quantity)
    unit_cost = to_decimal(unit_cost)
    if quantity <= ZERO:
        log.error("Lot quantity validation failed for product '%s': %s", product_id, quantity)
        raise InvalidQuantity("Lot quantity must be greater than zero")
    if unit_cost < ZERO:
        log.error("Lot unit cost validation failed for product '%s': %s", product_id, unit_cost)
        raise BusinessRuleViolation("Lot unit cost must be zero or positive")

    when = resolve_timestamp(timestamp)
    rate = context.tax_policy.rate_or_default(tax_rate)

    with context.locks.hold(product_key(product_id)), context.locks.hold(STORE_KEY):
        existing = _ensure_lots_cache(context)["all"]
        sequence = max((lot.sequence for lot in existing), default=0) + 1
        lot = data_manager.InventoryLot(
            lot_id=generate_id("LOT", when=when),
            product_id=product_id,
            sequence=sequence,
            original_quantity=quantity,
            remaining_quantity=quantity,
            unit_cost=unit_cost,
            tax_rate=rate,
            purchase_date=purchase_date or when.date(),
            status=LotStatus.ACTIVE,
            lot_number=lot_number,
            invoice_id=invoice_id,
            expiration_date=expiration_date,
            created_at=when,
        )
        data_manager.append_inventory_lot(context.workbook, lot)
        invalidate_cache(context, LOTS_CACHE)

    log_accounting_action(
        context,
        AuditAction.FIFO_LOT_CREATED,
        entity_type=LOT_ENTITY,
        entity_id=lot.lot_id,
        details={"product_id": product_id, "quantity": quantity, "unit_cost": unit_cost, "tax_rate": rate},
        timestamp=when,
    )
    log.info(
        "Added lot %s for product '%s': %s @ %s (seq %d)",
        lot.lot_id,
        product_id,
        quantity,
        unit_cost,
        sequence,
    )
    return lot


def consume(
    context: RuntimeContext,
    product_id: str,
    quantity: Decimal,
    *,
    sale_id: Optional[str] = None,
    return_id: Optional[str] = None,
    adjustment_id: Optional[str] = None,
    estimated_unit_cost: Optional[Decimal] = None,
    consumed_on: Optional[date] = None,
    timestamp: Optional[datetime] = None,
) -> ConsumptionResult:
    """Draw ``quantity`` units from the product's lots, oldest first.

    Each lot contributes ``min(remaining, still_needed)`` units at its own
    unit cost. Lots reaching zero become ``depleted``.

    When the lots hold less than ``quantity``:

    * without ``estimated_unit_cost`` the call raises and nothing is touched;
    * with it, the lots are drained and the unmet portion is costed at the
      estimate, recorded against :data:`ESTIMATED_LOT_ID`, and logged as a
      warning.

    Raises:
        InvalidQuantity: If ``quantity`` is zero or negative.
        NoLotsAvailable: If the product never had a lot and no estimate was
            supplied.
        InsufficientLotQuantity: If the lots (possibly all depleted) do not
            cover the request and no estimate was supplied.
    """

    quantity = to_decimal(quantity)
    if quantity <= ZERO:
        log.error("Consumption quantity validation failed for product '%s': %s", product_id, quantity)
        raise InvalidQuantity("Consumption quantity must be greater than zero")

    when = resolve_timestamp(timestamp)
    consumed_on = consumed_on or when.date()

    with context.locks.hold(product_key(product_id)):
        lots = get_active_lots(context, product_id)
        available = sum((lot.remaining_quantity for lot in lots), ZERO)

        if available < quantity and estimated_unit_cost is None:
            if not lots and not list_lots(context, product_id):
                log.warning("No FIFO lots for product '%s' (requested %s)", product_id, quantity)
                raise NoLotsAvailable(
                    f"No lots available for product {product_id}",
                    product_id=product_id,
                    requested=quantity,
                )
            log.warning(
                "Insufficient FIFO lots for product '%s': requested %s, available %s",
                product_id,
                quantity,
                available,
            )
            raise InsufficientLotQuantity(
                f"Insufficient lots for product {product_id}. Requested {quantity}, available {available}",
                product_id=product_id,
                requested=quantity,
                available=available,
            )

        draws: List[data_manager.CostConsumption] = []
        still_needed = quantity
        total_cost = ZERO

        with context.locks.hold(STORE_KEY):
            for lot in lots:
                if still_needed <= ZERO:
                    break

                drawn = min(still_needed, lot.remaining_quantity)
                cost = drawn * lot.unit_cost
                new_remaining = lot.remaining_quantity - drawn
                depleted = new_remaining <= ZERO

                data_manager.update_inventory_lot(
                    context.workbook,
                    lot.lot_id,
                    field_values={
                        "RemainingQuantity": new_remaining,
                        "Status": LotStatus.DEPLETED if depleted else LotStatus.ACTIVE,
                        "DepletedAt": when if depleted else None,
                    },
                )
                record = data_manager.CostConsumption(
                    consumption_id=generate_id("CC", when=when),
                    product_id=product_id,
                    lot_id=lot.lot_id,
                    quantity=drawn,
                    unit_cost=lot.unit_cost,
                    total_cost=cost,
                    consumed_on=consumed_on,
                    sale_id=sale_id,
                    return_id=return_id,
                    adjustment_id=adjustment_id,
                    estimated=False,
                    created_at=when,
                )
                data_manager.append_cost_consumption(context.workbook, record)
                draws.append(record)

                total_cost += cost
                still_needed -= drawn

                log_accounting_action(
                    context,
                    AuditAction.FIFO_CONSUMPTION,
                    entity_type=LOT_ENTITY,
                    entity_id=lot.lot_id,
                    details={
                        "product_id": product_id,
                        "quantity": drawn,
                        "sale_id": sale_id,
                        "return_id": return_id,
                        "adjustment_id": adjustment_id,
                    },
                    timestamp=when,
                )

            shortfall = still_needed if still_needed > ZERO else ZERO
            if shortfall > ZERO:
                estimate = to_decimal(estimated_unit_cost)
                record = data_manager.CostConsumption(
                    consumption_id=generate_id("CC", when=when),
                    product_id=product_id,
                    lot_id=ESTIMATED_LOT_ID,
                    quantity=shortfall,
                    unit_cost=estimate,
                    total_cost=shortfall * estimate,
                    consumed_on=consumed_on,
                    sale_id=sale_id,
                    return_id=return_id,
                    adjustment_id=adjustment_id,
                    estimated=True,
                    created_at=when,
                )
                data_manager.append_cost_consumption(context.workbook, record)
                draws.append(record)
                total_cost += record.total_cost
                log_accounting_action(
                    context,
                    AuditAction.FIFO_CONSUMPTION,
                    entity_type=LOT_ENTITY,
                    entity_id=ESTIMATED_LOT_ID,
                    details={
                        "product_id": product_id,
                        "quantity": shortfall,
                        "estimated_unit_cost": estimate,
                        "sale_id": sale_id,
                        "return_id": return_id,
                        "adjustment_id": adjustment_id,
                    },
                    timestamp=when,
                )
                log.warning(
                    "FIFO shortfall for product '%s': %s of %s units costed at estimated %s",
                    product_id,
                    shortfall,
                    quantity,
                    estimate,
                )

            invalidate_cache(context, LOTS_CACHE, CONSUMPTIONS_CACHE)

    log.info(
        "Consumed %s units of product '%s' across %d draw(s) for %s",
        quantity,
        product_id,
        len(draws),
        total_cost,
    )
    return ConsumptionResult(
        product_id=product_id,
        quantity=quantity,
        total_cost=total_cost,
        average_unit_cost=total_cost / quantity,
        draws=tuple(draws),
        shortfall_quantity=shortfall,
        estimated=shortfall > ZERO,
    )


# ---------------------------------------------------------------------------
# Restoration
# ---------------------------------------------------------------------------


def _restore_to_lot(context: RuntimeContext, lot_id: str, quantity: Decimal) -> None:
    if lot_id == ESTIMATED_LOT_ID:
        return
    lot = _ensure_lots_cache(context)["by_id"].get(lot_id)
    if lot is None:
        log.warning("Cannot restore %s units to missing lot '%s'", quantity, lot_id)
        return
    restored = replace(lot, remaining_quantity=lot.remaining_quantity + quantity)
    data_manager.update_inventory_lot(
        context.workbook,
        lot_id,
        field_values={
            "RemainingQuantity": restored.remaining_quantity,
            "Status": LotStatus.ACTIVE,
            "DepletedAt": None,
        },
    )
    # keep the cached view in step for later consumptions in the same loop
    bucket = _ensure_lots_cache(context)
    bucket["by_id"][lot_id] = restored


def restore_for_return(
    context: RuntimeContext,
    sale_id: str,
    product_id: str,
    quantity: Decimal,
    *,
    return_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> RestoreResult:
    """Give back up to ``quantity`` units consumed by ``sale_id``.

    Consumptions are unwound oldest first. Quantities return to the lot each
    came from; estimated portions have no lot and are simply dropped. Fully
    restored consumption rows are deleted; partially restored rows shrink.

    Raises:
        InvalidQuantity: If ``quantity`` is zero or negative.
    """

    quantity = to_decimal(quantity)
    if quantity <= ZERO:
        log.error("Restore quantity validation failed for sale '%s': %s", sale_id, quantity)
        raise InvalidQuantity("Restore quantity must be greater than zero")

    when = resolve_timestamp(timestamp)
    remaining = quantity
    restored = ZERO
    total_cost = ZERO

    with context.locks.hold(product_key(product_id)), context.locks.hold(STORE_KEY):
        consumptions = sorted(
            list_consumptions(context, sale_id=sale_id, product_id=product_id),
            key=lambda record: record.created_at.isoformat() if record.created_at else "",
        )
        for record in consumptions:
            if remaining <= ZERO:
                break
            take = min(remaining, record.quantity)
            cost = take * record.unit_cost

            _restore_to_lot(context, record.lot_id, take)
            if take == record.quantity:
                data_manager.delete_cost_consumption(context.workbook, record.consumption_id)
            else:
                data_manager.update_cost_consumption(
                    context.workbook,
                    record.consumption_id,
                    field_values={
                        "Quantity": record.quantity - take,
                        "TotalCost": record.total_cost - cost,
                    },
                )

            restored += take
            total_cost += cost
            remaining -= take

        invalidate_cache(context, LOTS_CACHE, CONSUMPTIONS_CACHE)

    if restored < quantity:
        log.warning(
            "Sale '%s' only had %s units of product '%s' to restore (asked %s)",
            sale_id,
            restored,
            product_id,
            quantity,
        )

    if restored > ZERO:
        log_accounting_action(
            context,
            AuditAction.FIFO_RESTORED,
            entity_type=LOT_ENTITY,
            entity_id=product_id,
            details={"sale_id": sale_id, "return_id": return_id, "quantity": restored, "cost": total_cost},
            timestamp=when,
        )
        log.info("Restored %s units of product '%s' from sale '%s'", restored, product_id, sale_id)

    average = total_cost / restored if restored > ZERO else ZERO
    return RestoreResult(restored=restored, total_cost=total_cost, average_unit_cost=average)


def revert_consumption(
    context: RuntimeContext,
    *,
    sale_id: Optional[str] = None,
    return_id: Optional[str] = None,
    adjustment_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> List[data_manager.CostConsumption]:
    """Undo every consumption tied to one reference and delete the records.

    Exactly one of ``sale_id``, ``return_id`` or ``adjustment_id`` is used, in
    that order of precedence.

    Returns:
        list[CostConsumption]: The records that were reverted.

    Raises:
        BusinessRuleViolation: If no reference was supplied.
    """

    if sale_id is not None:
        records = list_consumptions(context, sale_id=sale_id)
    elif return_id is not None:
        records = list_consumptions(context, return_id=return_id)
    elif adjustment_id is not None:
        records = list_consumptions(context, adjustment_id=adjustment_id)
    else:
        raise BusinessRuleViolation("A sale, return, or adjustment reference is required")

    when = resolve_timestamp(timestamp)
    # fixed order so two reverts never take product locks in opposite order
    for product_id in sorted({record.product_id for record in records}):
        with context.locks.hold(product_key(product_id)), context.locks.hold(STORE_KEY):
            for record in records:
                if record.product_id != product_id:
                    continue
                _restore_to_lot(context, record.lot_id, record.quantity)
                data_manager.delete_cost_consumption(context.workbook, record.consumption_id)
            invalidate_cache(context, LOTS_CACHE, CONSUMPTIONS_CACHE)

    if records:
        log_accounting_action(
            context,
            AuditAction.FIFO_RESTORED,
            entity_type=LOT_ENTITY,
            entity_id=sale_id or return_id or adjustment_id or "",
            details={"consumptions": len(records)},
            timestamp=when,
        )
        log.info("Reverted %d consumption record(s)", len(records))
    return records


# ---------------------------------------------------------------------------
# Expiration
# ---------------------------------------------------------------------------


def expiring_lots(context: RuntimeContext, days: int = 7, *, today: Optional[date] = None) -> List[data_manager.InventoryLot]:
    """Active lots with stock whose expiration falls within ``days`` from ``today``."""

    today = today or resolve_timestamp(None).date()
    horizon = today + timedelta(days=days)
    return [
        lot
        for lot in list_lots(context)
        if lot.status is LotStatus.ACTIVE
        and lot.remaining_quantity > ZERO
        and lot.expiration_date is not None
        and today <= lot.expiration_date <= horizon
    ]


def expired_lots(context: RuntimeContext, *, today: Optional[date] = None) -> List[data_manager.InventoryLot]:
    today = today or resolve_timestamp(None).date()
    return [
        lot
        for lot in list_lots(context)
        if lot.status is LotStatus.ACTIVE
        and lot.remaining_quantity > ZERO
        and lot.expiration_date is not None
        and lot.expiration_date < today
    ]


def mark_lot_expired(context: RuntimeContext, lot_id: str, *, timestamp: Optional[datetime] = None) -> data_manager.InventoryLot:
    """Take a lot out of the FIFO queue without changing its quantity."""

    lot = get_lot(context, lot_id)
    when = resolve_timestamp(timestamp)
    with context.locks.hold(product_key(lot.product_id)), context.locks.hold(STORE_KEY):
        data_manager.update_inventory_lot(
            context.workbook,
            lot_id,
            field_values={"Status": LotStatus.EXPIRED, "DepletedAt": when},
        )
        invalidate_cache(context, LOTS_CACHE)
    log.info("Marked lot %s of product '%s' as expired", lot_id, lot.product_id)
    return replace(lot, status=LotStatus.EXPIRED, depleted_at=when)


def discard_lot(context: RuntimeContext, lot_id: str) -> None:
    """Delete a lot nothing has drawn from, undoing :func:`add_lot`.

    Raises:
        MissingReferenceError: If the lot does not exist.
        BusinessRuleViolation: If units were already drawn from the lot.
    """

    lot = get_lot(context, lot_id)
    with context.locks.hold(product_key(lot.product_id)), context.locks.hold(STORE_KEY):
        current = get_lot(context, lot_id)
        drawn = any(record.lot_id == lot_id for record in list_consumptions(context, product_id=lot.product_id))
        if drawn or current.remaining_quantity != current.original_quantity:
            log.error("Lot %s was already drawn from and cannot be discarded", lot_id)
            raise BusinessRuleViolation(f"Lot {lot_id} was already drawn from")
        data_manager.delete_inventory_lot(context.workbook, lot_id)
        invalidate_cache(context, LOTS_CACHE)
    log.info("Discarded unused lot %s of product '%s'", lot_id, lot.product_id)


# ---------------------------------------------------------------------------
# Valuation and COGS
# ---------------------------------------------------------------------------


def product_valuation(context: RuntimeContext, product_id: str) -> ProductValuation:
    lots = get_active_lots(context, product_id)
    quantity = sum((lot.remaining_quantity for lot in lots), ZERO)
    value = sum((lot.remaining_quantity * lot.unit_cost for lot in lots), ZERO)
    average = value / quantity if quantity > ZERO else ZERO
    return ProductValuation(
        product_id=product_id,
        quantity=quantity,
        value=value,
        average_cost=average,
        lots=tuple(lots),
    )


def total_valuation(context: RuntimeContext) -> InventoryValuation:
    lots = [
        lot
        for lot in list_lots(context)
        if lot.status is LotStatus.ACTIVE and lot.remaining_quantity > ZERO
    ]
    return InventoryValuation(
        value=sum((lot.remaining_quantity * lot.unit_cost for lot in lots), ZERO),
        product_count=len({lot.product_id for lot in lots}),
        units=sum((lot.remaining_quantity for lot in lots), ZERO),
    )


def cogs_for_period(context: RuntimeContext, start: date, end: date) -> PeriodCogs:
    """Sum consumption costs dated within ``[start, end]``, in total and per product."""

    quantities: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    costs: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    total = ZERO
    for record in _ensure_consumptions_cache(context)["all"]:
        if not start <= record.consumed_on <= end:
            continue
        total += record.total_cost
        quantities[record.product_id] += record.quantity
        costs[record.product_id] += record.total_cost

    by_product = {
        product_id: ProductCogs(quantity=quantities[product_id], cost=costs[product_id])
        for product_id in costs
    }
    return PeriodCogs(total=total, by_product=by_product)


def cogs_for_shift(context: RuntimeContext, shift_id: str) -> Decimal:
    """Sum the FIFO cost of every sale recorded in ``shift_id``."""

    sale_ids = {sale.sale_id for sale in data_manager.iter_sales(context.workbook) if sale.shift_id == shift_id}
    if not sale_ids:
        return ZERO
    return sum(
        (record.total_cost for record in _ensure_consumptions_cache(context)["all"] if record.sale_id in sale_ids),
        ZERO,
    )


__all__ = [
    "ESTIMATED_LOT_ID",
    "ConsumptionResult",
    "RestoreResult",
    "ProductValuation",
    "InventoryValuation",
    "ProductCogs",
    "PeriodCogs",
    "add_lot",
    "consume",
    "get_lot",
    "list_lots",
    "get_active_lots",
    "list_consumptions",
    "available_quantity",
    "fifo_cost",
    "weighted_average_cost",
    "restore_for_return",
    "revert_consumption",
    "expiring_lots",
    "expired_lots",
    "mark_lot_expired",
    "discard_lot",
    "product_valuation",
    "total_valuation",
    "cogs_for_period",
    "cogs_for_shift",
]
