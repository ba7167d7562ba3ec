"""Sale transaction coordinator.

A checkout touches four independent record sets: the financial log, the
stock-movement history, the per-location counters and the wallet balances.
The store cannot group those writes, so the coordinator orders them instead:

1. resolve the revenue and change wallets (no writes yet),
2. record one financial transaction for the whole sale,
3. per line: validate, append the ``out`` movement, decrement the counter,
4. credit the revenue wallet and, for cash sales, pay change out of the
   change wallet.

Step 2 is the only all-or-nothing gate. A failure during step 3 stops the
run but leaves earlier lines, and the financial row, in place; the result
message says what failed and the caller must not assume consistency.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from . import cash_ledger, log, stock_ledger, transactions, wallets
from .constants import (
    ADMIN_SALE_MOVEMENT_DESCRIPTION,
    SALE_DESCRIPTION_NAME,
    Direction,
    MovementType,
    PaymentMethod,
)
from .core_logic import (
    BusinessRuleViolation,
    CoordinatorResult,
    InsufficientStockError,
    MissingReferenceError,
    RuntimeContext,
    find_good,
    find_location,
)


@dataclass(frozen=True)
class SaleLine:
    """One sold good at one location."""

    good_id: str
    location_id: str
    quantity: int
    price: Decimal


@dataclass(frozen=True)
class SaleCommand:
    """User intent for a multi-line checkout."""

    admin_id: str
    lines: Sequence[SaleLine] = field(default_factory=tuple)
    cash_received: Decimal = Decimal("0")
    payment_method: PaymentMethod = PaymentMethod.CASH
    revenue_wallet_name: Optional[str] = None
    note: Optional[str] = None


def qualifying_lines(lines: Iterable[SaleLine]) -> List[SaleLine]:
    """Drop the lines a cashier left at quantity zero."""
    return [line for line in lines if line.quantity > 0]


def calculate_total(lines: Iterable[SaleLine]) -> Decimal:
    return sum((Decimal(line.quantity) * line.price for line in lines), Decimal("0"))


def calculate_change(total: Decimal, cash_received: Decimal, payment_method: PaymentMethod) -> Decimal:
    """Change owed to the customer; digital payments never get change."""
    if payment_method is PaymentMethod.DIGITAL:
        return Decimal("0")
    return max(Decimal("0"), cash_received - total)


def validate_sale_command(command: SaleCommand) -> None:
    """Check everything that can be checked before touching the store.

    Raises:
        ValueError: If the sale has no lines, a line has a non-positive
            quantity or a negative price, the cash received is negative or
            the payment method is unknown.
    """
    if not command.lines:
        raise ValueError("A sale needs at least one line")
    for line in command.lines:
        if line.quantity <= 0:
            raise ValueError(f"Quantity for good {line.good_id} must be greater than zero")
        if line.price < 0:
            raise ValueError(f"Price for good {line.good_id} must be zero or positive")
    if command.cash_received < 0:
        raise ValueError("Cash received must be zero or positive")
    PaymentMethod(command.payment_method)


def process_sale(context: RuntimeContext, command: SaleCommand) -> CoordinatorResult:
    """Run a checkout and report the outcome without raising.

    Expected failures (bad input, missing wallet, missing good or location,
    insufficient stock) come back as failure results with a readable message.
    Anything unexpected is logged and turned into a generic failure.
    """
    try:
        return _run_sale(context, command)
    except Exception:
        log.exception("Unexpected error while processing sale for admin '%s'", command.admin_id)
        return CoordinatorResult.failed("Failed to process the sale")


def _run_sale(context: RuntimeContext, command: SaleCommand) -> CoordinatorResult:
    try:
        validate_sale_command(command)
    except ValueError as exc:
        log.warning("Sale rejected: %s", exc)
        return CoordinatorResult.failed(str(exc))
    payment_method = PaymentMethod(command.payment_method)

    revenue_wallet_name = command.revenue_wallet_name or context.settings.revenue_wallet_name
    try:
        revenue_wallet_id = wallets.resolve_wallet_by_name(context, revenue_wallet_name)
        change_wallet_id = wallets.resolve_change_wallet(context)
    except BusinessRuleViolation as exc:
        log.error("Sale aborted before any write: %s", exc)
        return CoordinatorResult.failed("Revenue wallet or change wallet not found")

    total = calculate_total(command.lines)
    change = calculate_change(total, Decimal(command.cash_received), payment_method)
    log.info(
        "Processing sale: lines=%d total=%s cash_received=%s method=%s change=%s",
        len(command.lines),
        total,
        command.cash_received,
        payment_method.value,
        change,
    )

    try:
        transaction = transactions.create_transaction(
            context,
            direction=Direction.IN,
            total=total,
            wallet_id=revenue_wallet_id,
            description_id=transactions.resolve_description_id(context, SALE_DESCRIPTION_NAME),
            note=command.note or context.settings.default_sale_note,
        )
    except ValueError as exc:
        log.error("Sale aborted, financial transaction rejected: %s", exc)
        return CoordinatorResult.failed("Failed to record the financial transaction")

    for position, line in enumerate(command.lines, start=1):
        try:
            _sell_line(context, line, admin_id=command.admin_id, wallet_id=revenue_wallet_id, transaction_id=transaction.transaction_id)
        except BusinessRuleViolation as exc:
            log.error(
                "Sale '%s' stopped at line %d of %d; earlier lines stay committed: %s",
                transaction.transaction_id,
                position,
                len(command.lines),
                exc,
            )
            return CoordinatorResult.failed(str(exc), transaction_id=transaction.transaction_id)

    cash_ledger.adjust_balance(context, revenue_wallet_id, total, note="Penjualan admin")
    if payment_method is PaymentMethod.CASH and change > 0:
        cash_ledger.adjust_balance(
            context,
            change_wallet_id,
            -change,
            floor=Decimal("0"),
            note="Kembalian penjualan",
        )

    log.info("Sale '%s' completed (total=%s, change=%s)", transaction.transaction_id, total, change)
    return CoordinatorResult(
        success=True,
        transaction_id=transaction.transaction_id,
        total=total,
        change=change,
    )


def _sell_line(context: RuntimeContext, line: SaleLine, *, admin_id: str, wallet_id: str, transaction_id: str) -> None:
    good = find_good(context, line.good_id)
    if good is None:
        raise MissingReferenceError(f"Good not found: {line.good_id}")
    if find_location(context, line.location_id) is None:
        raise MissingReferenceError(f"Location not found: {line.location_id}")

    on_hand = stock_ledger.current_stock(context, line.good_id, line.location_id)
    if line.quantity > on_hand:
        raise InsufficientStockError(good.name or line.good_id, on_hand, line.quantity)

    stock_ledger.record_movement(
        context,
        good_id=line.good_id,
        location_id=line.location_id,
        movement_type=MovementType.OUT,
        quantity=line.quantity,
        price=line.price,
        wallet_id=wallet_id,
        transaction_id=transaction_id,
        description=ADMIN_SALE_MOVEMENT_DESCRIPTION,
        note=f"admin:{admin_id}",
    )
    stock_ledger.apply_delta(context, line.good_id, line.location_id, -line.quantity)
