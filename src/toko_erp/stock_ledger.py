"""Per-location stock counters and the append-only stock-movement history.

``location_stocks`` holds the authoritative on-hand quantity for every
(good, location) pair. The ``stock`` field on a good is only a convenience
copy and is not maintained here. ``goods_history`` rows are written once per
processed line and never updated by this module.

Counter writes are conditional on the value just read. When another writer
got there first the update matches nothing, and the delta is recomputed on a
fresh read, up to ``ConfigSettings.max_write_attempts`` times.
"""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from . import data_manager, log
from .constants import Collection, MovementType
from .core_logic import (
    ConcurrentUpdateError,
    RuntimeContext,
    require_nonnegative_money,
    require_positive_quantity,
)


def _location_stock_records(context: RuntimeContext, good_id: str, location_id: str) -> list[dict]:
    return data_manager.select_records(
        context.workbook,
        Collection.LOCATION_STOCKS,
        idgood=good_id,
        idlocation=location_id,
    )


def current_stock(context: RuntimeContext, good_id: str, location_id: str) -> int:
    """Return the on-hand quantity of ``good_id`` at ``location_id``.

    A pair that was never attached reads as zero.
    """
    records = _location_stock_records(context, good_id, location_id)
    if not records:
        return 0
    return data_manager.deserialize_location_stock(records[0]).stock


def attach_good_to_location(context: RuntimeContext, good_id: str, location_id: str) -> data_manager.LocationStockRow:
    """Create the zero stock row for a (good, location) pair.

    Attaching an already attached pair returns the existing row untouched.
    """
    records = _location_stock_records(context, good_id, location_id)
    if records:
        return data_manager.deserialize_location_stock(records[0])
    record = data_manager.insert_record(
        context.workbook,
        Collection.LOCATION_STOCKS,
        {"idgood": good_id, "idlocation": location_id, "stock": 0},
    )
    log.info("Attached good '%s' to location '%s'", good_id, location_id)
    return data_manager.deserialize_location_stock(record)


def record_movement(
    context: RuntimeContext,
    *,
    good_id: str,
    location_id: str,
    movement_type: MovementType | str,
    quantity: int,
    price: Decimal,
    wallet_id: Optional[str] = None,
    transaction_id: Optional[str] = None,
    description: Optional[str] = None,
    note: Optional[str] = None,
) -> data_manager.StockMovementRow:
    """Append one stock-movement history row.

    The quantity is stored as a positive magnitude; ``movement_type`` carries
    the direction.

    Raises:
        ValueError: If the movement type is unknown, the quantity is not
            positive or the price is negative.
    """
    movement_type = MovementType(movement_type)
    require_positive_quantity(quantity)
    require_nonnegative_money(price)

    record = data_manager.insert_record(
        context.workbook,
        Collection.GOODS_HISTORY,
        {
            "idgood": good_id,
            "idlocation": location_id,
            "stock": quantity,
            "type": movement_type,
            "payment_type": wallet_id or None,
            "transaction_id": transaction_id,
            "price": price,
            "description": description,
            "note": note,
        },
    )
    log.info(
        "Recorded %s movement '%s' for good '%s' at '%s' (quantity=%s, transaction=%s)",
        movement_type.value,
        record["id"],
        good_id,
        location_id,
        quantity,
        transaction_id,
    )
    return data_manager.deserialize_stock_movement(record)


def apply_delta(context: RuntimeContext, good_id: str, location_id: str, delta: int) -> int:
    """Add ``delta`` to the on-hand quantity and return the stored result.

    The stored value is ``max(0, current + delta)`` even though callers are
    expected to have validated sufficiency beforehand. A missing row is
    created from zero.

    Raises:
        ConcurrentUpdateError: If every attempt lost its compare-and-set.
    """
    attempts = context.settings.max_write_attempts
    for attempt in range(1, attempts + 1):
        records = _location_stock_records(context, good_id, location_id)
        if not records:
            new_stock = max(0, delta)
            data_manager.insert_record(
                context.workbook,
                Collection.LOCATION_STOCKS,
                {"idgood": good_id, "idlocation": location_id, "stock": new_stock},
            )
            log.info("Created stock row for good '%s' at '%s' with %s", good_id, location_id, new_stock)
            return new_stock

        current = data_manager.deserialize_location_stock(records[0]).stock
        new_stock = max(0, current + delta)
        updated = data_manager.update_records(
            context.workbook,
            Collection.LOCATION_STOCKS,
            {"stock": new_stock},
            where={"idgood": good_id, "idlocation": location_id, "stock": records[0].get("stock")},
        )
        if updated:
            if current + delta < 0:
                log.warning(
                    "Stock for good '%s' at '%s' clamped at zero (%s %+d)",
                    good_id,
                    location_id,
                    current,
                    delta,
                )
            log.info("Stock for good '%s' at '%s': %s -> %s", good_id, location_id, current, new_stock)
            return new_stock

        log.warning(
            "Stock for good '%s' at '%s' changed underneath (attempt %d/%d)",
            good_id,
            location_id,
            attempt,
            attempts,
        )

    raise ConcurrentUpdateError(
        f"Could not update stock for good {good_id} at location {location_id} after {attempts} attempts"
    )


def list_movements(
    context: RuntimeContext,
    *,
    transaction_id: Optional[str] = None,
    good_id: Optional[str] = None,
    location_id: Optional[str] = None,
) -> List[data_manager.StockMovementRow]:
    """Return history rows filtered by any combination of references."""
    filters = {}
    if transaction_id is not None:
        filters["transaction_id"] = transaction_id
    if good_id is not None:
        filters["idgood"] = good_id
    if location_id is not None:
        filters["idlocation"] = location_id
    return [
        data_manager.deserialize_stock_movement(record)
        for record in data_manager.select_records(context.workbook, Collection.GOODS_HISTORY, **filters)
    ]
