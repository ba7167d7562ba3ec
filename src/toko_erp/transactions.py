"""Financial transaction recorder and transaction-description lookups.

Financial rows are append-only: a coordinator writes exactly one per run and
never edits it afterwards. Descriptions ("Penjualan", "Pembelian", ...) tag a
row with a human-readable purpose and are resolved by name so callers never
need to know their identifiers.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import List, Optional

from . import data_manager, log
from .constants import Collection, Direction
from .core_logic import BusinessRuleViolation, MissingReferenceError, RuntimeContext


def create_transaction(
    context: RuntimeContext,
    *,
    direction: Direction | str | None,
    total: Decimal | None,
    wallet_id: Optional[str],
    description_id: Optional[str] = None,
    note: Optional[str] = None,
    goods_history_id: Optional[str] = None,
) -> data_manager.FinancialTransactionRow:
    """Append a financial transaction row.

    Args:
        context (RuntimeContext): Runtime context providing store access.
        direction (Direction | str): ``in`` for money arriving, ``out`` for
            money leaving the wallet.
        total (Decimal): Positive amount of the transaction.
        wallet_id (str | None): Wallet the money moves through. ``None`` is
            accepted; a blank string is not.
        description_id (str | None): Optional transaction description.
        note (str | None): Optional free text.
        goods_history_id (str | None): Legacy single-movement linkage.

    Returns:
        data_manager.FinancialTransactionRow: The stored row.

    Raises:
        ValueError: If direction or total is missing, the direction is not
            ``in``/``out``, the total is negative or zero, or the wallet
            reference is malformed.
    """
    if not direction or not total:
        log.error("Rejected transaction with missing direction or total (%r, %r)", direction, total)
        raise ValueError("Transaction direction and total are required")
    try:
        direction = Direction(direction)
    except ValueError as exc:
        log.error("Rejected transaction with unknown direction %r", direction)
        raise ValueError(f"Unknown transaction direction: {direction}") from exc
    try:
        total = Decimal(total)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Malformed transaction total: {total!r}") from exc
    if total < 0:
        log.error("Rejected transaction with negative total %s", total)
        raise ValueError("Transaction total must be positive")
    if wallet_id is not None and (not isinstance(wallet_id, str) or not wallet_id.strip()):
        log.error("Rejected transaction with malformed wallet reference %r", wallet_id)
        raise ValueError("Wallet reference must be empty or a valid identifier")

    record = data_manager.insert_record(
        context.workbook,
        Collection.TRANSACTIONS,
        {
            "type": direction,
            "total": total,
            "id_description": description_id or None,
            "id_goods_history": goods_history_id or None,
            "note": note or None,
            "payment_type": wallet_id,
        },
    )
    log.info(
        "Recorded financial transaction '%s' (%s %s, wallet=%s)",
        record["id"],
        direction.value,
        total,
        wallet_id,
    )
    return data_manager.deserialize_transaction(record)


def get_transaction(context: RuntimeContext, transaction_id: str) -> data_manager.FinancialTransactionRow:
    """Retrieve a financial transaction by id.

    Raises:
        MissingReferenceError: If the id is unknown.
    """
    records = data_manager.select_records(context.workbook, Collection.TRANSACTIONS, id=transaction_id)
    if not records:
        log.warning("Transaction lookup failed for id '%s'", transaction_id)
        raise MissingReferenceError(f"Unknown transaction id: {transaction_id}")
    return data_manager.deserialize_transaction(records[0])


def list_transactions(context: RuntimeContext, *, wallet_id: Optional[str] = None) -> List[data_manager.FinancialTransactionRow]:
    """Return the financial log in store order, optionally for one wallet."""
    filters = {"payment_type": wallet_id} if wallet_id is not None else {}
    return [
        data_manager.deserialize_transaction(record)
        for record in data_manager.select_records(context.workbook, Collection.TRANSACTIONS, **filters)
    ]


def resolve_description_id(context: RuntimeContext, name: str) -> Optional[str]:
    """Return the oldest active description named ``name``, or ``None``.

    A missing description is not an error: the transaction is then recorded
    without one.
    """
    records = data_manager.select_records(
        context.workbook,
        Collection.TRANSACTION_DESCRIPTIONS,
        descriptionname=name,
        is_active=True,
    )
    if not records:
        log.warning("Transaction description '%s' not found", name)
        return None
    oldest = min(records, key=lambda record: str(record.get("created_at") or ""))
    return str(oldest["id"])


def create_transaction_description(
    context: RuntimeContext,
    name: str,
    direction: Direction | str,
) -> data_manager.TransactionDescriptionRow:
    """Register an active transaction description.

    Raises:
        ValueError: If the name is blank or the direction is unknown.
    """
    if not name or not name.strip():
        raise ValueError("Description name is required")
    direction = Direction(direction)
    record = data_manager.insert_record(
        context.workbook,
        Collection.TRANSACTION_DESCRIPTIONS,
        {"descriptionname": name.strip(), "type": direction, "is_active": True},
    )
    log.info("Created transaction description '%s' (%s)", record["descriptionname"], record["id"])
    return data_manager.deserialize_transaction_description(record)


def list_transaction_descriptions(context: RuntimeContext) -> List[data_manager.TransactionDescriptionRow]:
    """Return active descriptions sorted by name."""
    descriptions = [
        data_manager.deserialize_transaction_description(record)
        for record in data_manager.select_records(context.workbook, Collection.TRANSACTION_DESCRIPTIONS, is_active=True)
    ]
    return sorted(descriptions, key=lambda description: description.name)


def delete_transaction_description(context: RuntimeContext, description_id: str) -> None:
    """Delete a description that no transaction refers to.

    Raises:
        BusinessRuleViolation: If any transaction still references it.
        MissingReferenceError: If the id is unknown.
    """
    in_use = data_manager.select_records(context.workbook, Collection.TRANSACTIONS, id_description=description_id)
    if in_use:
        log.error(
            "Refusing to delete description '%s': referenced by %d transaction(s)",
            description_id,
            len(in_use),
        )
        raise BusinessRuleViolation("Description is referenced by existing transactions")
    removed = data_manager.delete_records(context.workbook, Collection.TRANSACTION_DESCRIPTIONS, where={"id": description_id})
    if not removed:
        raise MissingReferenceError(f"Unknown description id: {description_id}")
    log.info("Deleted transaction description '%s'", description_id)
