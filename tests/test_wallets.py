"""Tests for wallet resolution and the flag-exclusive write path."""

from __future__ import annotations

import pytest

from toko_erp import core_logic, wallets
from toko_erp.constants import WalletFlag


def _flag_holders(context, flag: WalletFlag) -> list[str]:
    return [
        wallet.name
        for wallet in wallets.list_wallets(context, include_inactive=True)
        if getattr(wallet, flag.value)
    ]


def test_resolves_seeded_wallets_by_flag_and_name(runtime_context):
    primary = wallets.get_wallet(runtime_context, wallets.resolve_primary_wallet(runtime_context))
    change = wallets.get_wallet(runtime_context, wallets.resolve_change_wallet(runtime_context))
    revenue = wallets.get_wallet(runtime_context, wallets.resolve_wallet_by_name(runtime_context, "Omset"))

    assert (primary.name, change.name, revenue.name) == ("Kas", "Kembalian", "Omset")


def test_resolve_by_name_is_exact(runtime_context):
    with pytest.raises(core_logic.MissingReferenceError):
        wallets.resolve_wallet_by_name(runtime_context, "omset")


def test_resolve_ignores_inactive_wallets(runtime_context):
    change_id = wallets.resolve_change_wallet(runtime_context)
    wallets.deactivate_wallet(runtime_context, change_id)

    with pytest.raises(core_logic.MissingReferenceError):
        wallets.resolve_change_wallet(runtime_context)


def test_duplicate_names_are_ambiguous(runtime_context):
    wallets.create_wallet(runtime_context, "Omset")

    with pytest.raises(core_logic.BusinessRuleViolation, match="More than one wallet"):
        wallets.resolve_wallet_by_name(runtime_context, "Omset")


def test_create_wallet_moves_primary_flag(runtime_context):
    """Creating a primary wallet should clear the flag everywhere else."""

    bank = wallets.create_wallet(runtime_context, "Bank", is_primary=True)

    assert _flag_holders(runtime_context, WalletFlag.PRIMARY) == ["Bank"]
    assert wallets.resolve_primary_wallet(runtime_context) == bank.wallet_id
    assert _flag_holders(runtime_context, WalletFlag.CHANGE) == ["Kembalian"]


def test_update_wallet_moves_change_flag(runtime_context):
    omset_id = wallets.resolve_wallet_by_name(runtime_context, "Omset")

    updated = wallets.update_wallet(runtime_context, omset_id, is_change=True)

    assert updated.is_change is True
    assert _flag_holders(runtime_context, WalletFlag.CHANGE) == ["Omset"]


def test_update_wallet_keeps_flag_when_reasserted(runtime_context):
    kas_id = wallets.resolve_primary_wallet(runtime_context)

    wallets.update_wallet(runtime_context, kas_id, is_primary=True, name="Kas Besar")

    assert _flag_holders(runtime_context, WalletFlag.PRIMARY) == ["Kas Besar"]


def test_update_wallet_rejects_unknown_fields(runtime_context):
    kas_id = wallets.resolve_primary_wallet(runtime_context)
    with pytest.raises(KeyError):
        wallets.update_wallet(runtime_context, kas_id, balance=5)


def test_update_wallet_unknown_id(runtime_context):
    with pytest.raises(core_logic.MissingReferenceError):
        wallets.update_wallet(runtime_context, "missing", name="X")


def test_list_wallets_sorted_by_name(runtime_context):
    names = [wallet.name for wallet in wallets.list_wallets(runtime_context)]
    assert names == sorted(names)


def test_create_wallet_requires_name(runtime_context):
    with pytest.raises(ValueError):
        wallets.create_wallet(runtime_context, "")
