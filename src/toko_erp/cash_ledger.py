"""Per-wallet running balances stored in ``cash_balances``.

Each wallet owns at most one balance row. The balance is kept equal to the
wallet's ledger total by the coordinators, not by the store.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from . import data_manager, log
from .constants import Collection
from .core_logic import ConcurrentUpdateError, RuntimeContext


def _balance_records(context: RuntimeContext, wallet_id: str) -> list[dict]:
    return data_manager.select_records(context.workbook, Collection.CASH_BALANCES, id_category=wallet_id)


def get_balance(context: RuntimeContext, wallet_id: str) -> Decimal:
    """Return the wallet's balance, zero when it has no balance row yet."""
    records = _balance_records(context, wallet_id)
    if not records:
        return Decimal("0")
    return data_manager.deserialize_cash_balance(records[0]).amount


def set_balance(context: RuntimeContext, wallet_id: str, amount: Decimal, note: Optional[str] = None) -> None:
    """Overwrite the wallet's balance, creating the row if needed."""
    amount = Decimal(amount)
    updated = data_manager.update_records(
        context.workbook,
        Collection.CASH_BALANCES,
        {"amount": amount},
        where={"id_category": wallet_id},
    )
    if not updated:
        data_manager.insert_record(
            context.workbook,
            Collection.CASH_BALANCES,
            {"id_category": wallet_id, "amount": amount, "updated_at": data_manager.utc_now_iso()},
        )
    log.info("Set balance of wallet '%s' to %s%s", wallet_id, amount, f" ({note})" if note else "")


def adjust_balance(
    context: RuntimeContext,
    wallet_id: str,
    delta: Decimal,
    *,
    floor: Optional[Decimal] = None,
    note: Optional[str] = None,
) -> Decimal:
    """Add ``delta`` to the wallet's balance and return the new amount.

    The write only lands if the balance still holds the value that was read;
    otherwise the balance is read again and the delta reapplied. With
    ``floor`` set the result never drops below it.

    Raises:
        ConcurrentUpdateError: If every attempt lost its compare-and-set.
    """
    attempts = context.settings.max_write_attempts
    for attempt in range(1, attempts + 1):
        records = _balance_records(context, wallet_id)
        current = data_manager.deserialize_cash_balance(records[0]).amount if records else Decimal("0")
        new_amount = current + delta
        if floor is not None:
            new_amount = max(floor, new_amount)

        if not records:
            data_manager.insert_record(
                context.workbook,
                Collection.CASH_BALANCES,
                {"id_category": wallet_id, "amount": new_amount, "updated_at": data_manager.utc_now_iso()},
            )
            updated = 1
        else:
            updated = data_manager.update_records(
                context.workbook,
                Collection.CASH_BALANCES,
                {"amount": new_amount},
                where={"id_category": wallet_id, "amount": records[0].get("amount")},
            )

        if updated:
            log.info(
                "Balance of wallet '%s': %s -> %s%s",
                wallet_id,
                current,
                new_amount,
                f" ({note})" if note else "",
            )
            return new_amount

        log.warning(
            "Balance of wallet '%s' changed underneath (attempt %d/%d)",
            wallet_id,
            attempt,
            attempts,
        )

    raise ConcurrentUpdateError(f"Could not update balance of wallet {wallet_id} after {attempts} attempts")
