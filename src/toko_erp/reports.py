"""Read-only summaries over the financial log and the stock counters."""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Tuple

from . import data_manager, log, stock_ledger, transactions, wallets
from .constants import Collection, Direction
from .core_logic import RuntimeContext


def calculate_wallet_summary(context: RuntimeContext) -> Dict[str, Decimal]:
    """Sum the financial log per active wallet.

    ``in`` rows add and ``out`` rows subtract. Every active wallet appears,
    with zero when it has no transactions; rows against inactive or unknown
    wallets are ignored. Change paid out of the change wallet is not part of
    the log, so its summary can legitimately differ from its balance.
    """
    summary: Dict[str, Decimal] = {wallet.wallet_id: Decimal("0") for wallet in wallets.list_wallets(context)}
    for transaction in transactions.list_transactions(context):
        if transaction.wallet_id not in summary:
            continue
        if transaction.direction == Direction.IN.value:
            summary[transaction.wallet_id] += transaction.total
        else:
            summary[transaction.wallet_id] -= transaction.total
    log.debug("Calculated wallet summary for %d wallets", len(summary))
    return summary


def stock_by_location(context: RuntimeContext) -> Dict[Tuple[str, str], int]:
    """Map every (good id, location id) pair to its on-hand quantity."""
    return {
        (row.good_id, row.location_id): row.stock
        for row in (
            data_manager.deserialize_location_stock(record)
            for record in data_manager.iter_records(context.workbook, Collection.LOCATION_STOCKS)
        )
    }


def transaction_movements(context: RuntimeContext, transaction_id: str) -> List[data_manager.StockMovementRow]:
    """Return the stock movements that point back at ``transaction_id``."""
    transactions.get_transaction(context, transaction_id)
    return stock_ledger.list_movements(context, transaction_id=transaction_id)
