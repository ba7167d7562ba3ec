"""Wallet resolution and the wallet write path.

Wallets live in the ``financial_categories`` collection. Two role flags,
``is_primary`` and ``is_change``, may each be carried by at most one wallet.
That invariant is owned here: every write that sets a flag first clears it on
all other wallets. Callers never touch the flags directly.
"""

from __future__ import annotations

from typing import Any, List, Optional

from . import data_manager, log
from .constants import Collection, WalletFlag
from .core_logic import BusinessRuleViolation, MissingReferenceError, RuntimeContext


_UPDATABLE_FIELDS = frozenset({"name", "is_active", "is_primary", "is_change"})


def _single_wallet_id(records: list[dict[str, Any]], label: str) -> str:
    if not records:
        log.warning("Wallet lookup failed: %s", label)
        raise MissingReferenceError(f"Wallet not found: {label}")
    if len(records) > 1:
        log.error("Wallet lookup is ambiguous: %s matched %d wallets", label, len(records))
        raise BusinessRuleViolation(f"More than one wallet matches {label}")
    return str(records[0]["id"])


def resolve_wallet_by_flag(context: RuntimeContext, flag: WalletFlag | str) -> str:
    """Return the id of the active wallet carrying ``flag``.

    Raises:
        ValueError: If ``flag`` is not a wallet role flag.
        MissingReferenceError: If no active wallet carries the flag.
        BusinessRuleViolation: If several wallets carry it.
    """
    flag = WalletFlag(flag)
    records = data_manager.select_records(
        context.workbook,
        Collection.FINANCIAL_CATEGORIES,
        **{flag.value: True, "is_active": True},
    )
    return _single_wallet_id(records, f"flag {flag.value}")


def resolve_wallet_by_name(context: RuntimeContext, name: str) -> str:
    """Return the id of the active wallet named exactly ``name``.

    Raises:
        MissingReferenceError: If no active wallet has that name.
        BusinessRuleViolation: If the name is shared by several wallets.
    """
    records = data_manager.select_records(
        context.workbook,
        Collection.FINANCIAL_CATEGORIES,
        name=name,
        is_active=True,
    )
    return _single_wallet_id(records, f"name '{name}'")


def resolve_primary_wallet(context: RuntimeContext) -> str:
    return resolve_wallet_by_flag(context, WalletFlag.PRIMARY)


def resolve_change_wallet(context: RuntimeContext) -> str:
    return resolve_wallet_by_flag(context, WalletFlag.CHANGE)


def get_wallet(context: RuntimeContext, wallet_id: str) -> data_manager.WalletRow:
    """Resolve a wallet record by id, active or not.

    Raises:
        MissingReferenceError: If ``wallet_id`` is unknown.
    """
    records = data_manager.select_records(context.workbook, Collection.FINANCIAL_CATEGORIES, id=wallet_id)
    if not records:
        raise MissingReferenceError(f"Unknown wallet id: {wallet_id}")
    return data_manager.deserialize_wallet(records[0])


def list_wallets(context: RuntimeContext, *, include_inactive: bool = False) -> List[data_manager.WalletRow]:
    """Return wallets sorted by name, active ones only by default."""
    wallets = [
        data_manager.deserialize_wallet(record)
        for record in data_manager.iter_records(context.workbook, Collection.FINANCIAL_CATEGORIES)
    ]
    if not include_inactive:
        wallets = [wallet for wallet in wallets if wallet.is_active]
    return sorted(wallets, key=lambda wallet: wallet.name)


def _clear_flag(context: RuntimeContext, flag: WalletFlag, *, keep: Optional[str] = None) -> None:
    for record in data_manager.select_records(context.workbook, Collection.FINANCIAL_CATEGORIES, **{flag.value: True}):
        if record["id"] == keep:
            continue
        data_manager.update_records(
            context.workbook,
            Collection.FINANCIAL_CATEGORIES,
            {flag.value: False},
            where={"id": record["id"]},
        )
        log.info("Cleared %s on wallet '%s'", flag.value, record["id"])


def create_wallet(
    context: RuntimeContext,
    name: str,
    *,
    is_primary: bool = False,
    is_change: bool = False,
) -> data_manager.WalletRow:
    """Create an active wallet, moving any requested role flag onto it.

    Raises:
        ValueError: If ``name`` is blank.
    """
    if not name or not name.strip():
        raise ValueError("Wallet name is required")
    if is_primary:
        _clear_flag(context, WalletFlag.PRIMARY)
    if is_change:
        _clear_flag(context, WalletFlag.CHANGE)

    record = data_manager.insert_record(
        context.workbook,
        Collection.FINANCIAL_CATEGORIES,
        {
            "name": name.strip(),
            "is_primary": bool(is_primary),
            "is_change": bool(is_change),
            "is_active": True,
        },
    )
    log.info("Created wallet '%s' (%s)", record["name"], record["id"])
    return data_manager.deserialize_wallet(record)


def update_wallet(context: RuntimeContext, wallet_id: str, **fields: Any) -> data_manager.WalletRow:
    """Update a wallet's name, activity or role flags.

    Setting ``is_primary`` or ``is_change`` to ``True`` clears that flag on
    every other wallet before it is set here.

    Raises:
        KeyError: If ``fields`` names something other than the updatable fields.
        MissingReferenceError: If ``wallet_id`` is unknown.
    """
    unknown = set(fields) - _UPDATABLE_FIELDS
    if unknown:
        raise KeyError(f"Unknown wallet field(s): {', '.join(sorted(unknown))}")
    get_wallet(context, wallet_id)

    for flag in WalletFlag:
        if fields.get(flag.value):
            _clear_flag(context, flag, keep=wallet_id)

    if fields:
        data_manager.update_records(
            context.workbook,
            Collection.FINANCIAL_CATEGORIES,
            fields,
            where={"id": wallet_id},
        )
        log.info("Updated wallet '%s': %s", wallet_id, ", ".join(sorted(fields)))
    return get_wallet(context, wallet_id)


def deactivate_wallet(context: RuntimeContext, wallet_id: str) -> data_manager.WalletRow:
    """Soft-delete a wallet; its history and balance stay in place."""
    return update_wallet(context, wallet_id, is_active=False)
