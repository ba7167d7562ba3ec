"""Bulk stock-in / stock-out coordinator.

One batch moves many (good, location) pairs in a single direction, paid from
or into a single wallet, under a single financial transaction. The money
flows the other way from the goods: stock coming in is a purchase (financial
``out``), stock going out is a sale (financial ``in``).

Unlike a checkout, the batch is best-effort per line: a line whose good or
location no longer exists is skipped and reported, the rest go through. A
stock-out shortfall is different and aborts the whole batch; every line is
checked before the first movement is written, so the only trace left behind
is the financial transaction row.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from . import cash_ledger, log, stock_ledger, transactions
from .constants import (
    FALLBACK_GOOD_NAME,
    PURCHASE_DESCRIPTION_NAME,
    SALE_DESCRIPTION_NAME,
    Direction,
    MovementType,
)
from .core_logic import (
    BusinessRuleViolation,
    CoordinatorResult,
    InsufficientStockError,
    RuntimeContext,
    find_good,
    find_location,
)


_DIRECTION_LABELS = {
    Direction.IN: "Barang Masuk",
    Direction.OUT: "Barang Keluar",
}
_NOTE_LABELS = {
    Direction.IN: "masuk",
    Direction.OUT: "keluar",
}


@dataclass(frozen=True)
class BulkLine:
    """One good at one location inside a bulk batch."""

    good_id: str
    location_id: str
    quantity: int
    price: Decimal
    good_name: Optional[str] = None


@dataclass(frozen=True)
class BulkStockCommand:
    """User intent for a bulk stock movement paid through one wallet."""

    lines: Sequence[BulkLine] = field(default_factory=tuple)
    movement_type: Direction = Direction.IN
    wallet_id: Optional[str] = None
    note: Optional[str] = None


def financial_direction_for(movement_type: Direction | str) -> Direction:
    """Money moves opposite to goods: stock ``in`` is financial ``out``."""
    return Direction(movement_type).inverse()


def description_name_for(movement_type: Direction | str) -> str:
    return PURCHASE_DESCRIPTION_NAME if Direction(movement_type) is Direction.IN else SALE_DESCRIPTION_NAME


def calculate_total(lines: Sequence[BulkLine]) -> Decimal:
    return sum((Decimal(line.quantity) * line.price for line in lines), Decimal("0"))


def validate_bulk_command(command: BulkStockCommand) -> None:
    """Reject batches that cannot be processed at all.

    Raises:
        ValueError: On an empty batch, a missing wallet, an unknown direction
            or a line with a negative quantity or price.
    """
    if not command.lines:
        raise ValueError("No goods selected")
    if not command.wallet_id or not str(command.wallet_id).strip():
        raise ValueError("No wallet selected")
    try:
        Direction(command.movement_type)
    except ValueError as exc:
        raise ValueError(f"Unsupported stock direction: {command.movement_type}") from exc
    for line in command.lines:
        if line.quantity < 0:
            raise ValueError(f"Quantity for good {line.good_id} must be zero or positive")
        if line.price < 0:
            raise ValueError(f"Price for good {line.good_id} must be zero or positive")


def _line_label(context: RuntimeContext, line: BulkLine) -> str:
    if line.good_name:
        return line.good_name
    good = find_good(context, line.good_id)
    if good is not None and good.name:
        return good.name
    return FALLBACK_GOOD_NAME


def build_summary_note(context: RuntimeContext, command: BulkStockCommand) -> str:
    """``"Barang Masuk: 10 x Kopi, 2 x Gula"`` for the lines with a quantity."""
    details = ", ".join(
        f"{line.quantity} x {_line_label(context, line)}"
        for line in command.lines
        if line.quantity > 0
    )
    return f"{_DIRECTION_LABELS[Direction(command.movement_type)]}: {details}"


def process_bulk_stock(context: RuntimeContext, command: BulkStockCommand) -> CoordinatorResult:
    """Run a bulk stock batch and report the outcome without raising."""
    try:
        return _run_bulk(context, command)
    except Exception:
        log.exception("Unexpected error while processing bulk stock batch")
        return CoordinatorResult.failed("Failed to process the bulk stock transaction")


def _run_bulk(context: RuntimeContext, command: BulkStockCommand) -> CoordinatorResult:
    try:
        validate_bulk_command(command)
    except ValueError as exc:
        log.warning("Bulk stock batch rejected: %s", exc)
        return CoordinatorResult.failed(str(exc))

    movement_type = Direction(command.movement_type)
    wallet_id = str(command.wallet_id)
    total = calculate_total(command.lines)
    summary = build_summary_note(context, command)

    try:
        transaction = transactions.create_transaction(
            context,
            direction=financial_direction_for(movement_type),
            total=total,
            wallet_id=wallet_id,
            description_id=transactions.resolve_description_id(context, description_name_for(movement_type)),
            note=command.note or summary,
        )
    except ValueError as exc:
        log.error("Bulk stock batch aborted, financial transaction rejected: %s", exc)
        return CoordinatorResult.failed("Failed to record the financial transaction")

    included, skipped = _partition_lines(context, command.lines)

    if movement_type is Direction.OUT:
        try:
            _check_sufficiency(context, included)
        except InsufficientStockError as exc:
            log.error(
                "Bulk stock batch '%s' aborted before any movement: %s",
                transaction.transaction_id,
                exc,
            )
            return CoordinatorResult.failed(str(exc), transaction_id=transaction.transaction_id)

    label = _DIRECTION_LABELS[movement_type]
    for line in included:
        try:
            stock_ledger.record_movement(
                context,
                good_id=line.good_id,
                location_id=line.location_id,
                movement_type=MovementType(movement_type.value),
                quantity=line.quantity,
                price=line.price,
                wallet_id=wallet_id,
                transaction_id=transaction.transaction_id,
                description=f"Bulk {label}",
                note=command.note or f"Bulk {_NOTE_LABELS[movement_type]} - {line.good_id}",
            )
            delta = line.quantity if movement_type is Direction.IN else -line.quantity
            stock_ledger.apply_delta(context, line.good_id, line.location_id, delta)
        except BusinessRuleViolation as exc:
            log.error("Bulk stock batch '%s' stopped at good '%s': %s", transaction.transaction_id, line.good_id, exc)
            return CoordinatorResult.failed(str(exc), transaction_id=transaction.transaction_id)

    # Money leaves the wallet for purchases and arrives for sales.
    balance_delta = -total if movement_type is Direction.IN else total
    cash_ledger.adjust_balance(context, wallet_id, balance_delta, note=summary)

    log.info(
        "Bulk stock batch '%s' completed (%s, total=%s, processed=%d, skipped=%d)",
        transaction.transaction_id,
        movement_type.value,
        total,
        len(included),
        len(skipped),
    )
    return CoordinatorResult(
        success=True,
        transaction_id=transaction.transaction_id,
        total=total,
        skipped=tuple(skipped),
    )


def _partition_lines(context: RuntimeContext, lines: Sequence[BulkLine]) -> Tuple[List[BulkLine], List[str]]:
    """Split lines into those to process and the goods ids being skipped."""
    included: List[BulkLine] = []
    skipped: List[str] = []
    for line in lines:
        if line.quantity == 0:
            continue
        if find_good(context, line.good_id) is None:
            log.warning("Skipping bulk line: good '%s' not found", line.good_id)
            skipped.append(line.good_id)
            continue
        if find_location(context, line.location_id) is None:
            log.warning("Skipping bulk line: location '%s' not found", line.location_id)
            skipped.append(line.good_id)
            continue
        included.append(line)
    return included, skipped


def _check_sufficiency(context: RuntimeContext, lines: Sequence[BulkLine]) -> None:
    """Raise for the first pair whose requested total exceeds its stock."""
    requested: Dict[Tuple[str, str], int] = defaultdict(int)
    first_line: Dict[Tuple[str, str], BulkLine] = {}
    for line in lines:
        key = (line.good_id, line.location_id)
        requested[key] += line.quantity
        first_line.setdefault(key, line)

    for key, quantity in requested.items():
        on_hand = stock_ledger.current_stock(context, *key)
        if quantity > on_hand:
            raise InsufficientStockError(_line_label(context, first_line[key]), on_hand, quantity)
