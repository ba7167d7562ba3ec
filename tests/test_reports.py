"""Tests for the read-only summaries."""

from __future__ import annotations

from decimal import Decimal

import pytest

from toko_erp import bulk_stock, core_logic, reports, sales, transactions, wallets
from toko_erp.constants import Direction


def test_wallet_summary_nets_in_and_out(seeded_shop):
    shop = seeded_shop
    transactions.create_transaction(shop.context, direction="in", total=Decimal("700"), wallet_id=shop.primary_wallet_id)
    transactions.create_transaction(shop.context, direction="out", total=Decimal("200"), wallet_id=shop.primary_wallet_id)

    summary = reports.calculate_wallet_summary(shop.context)

    assert summary[shop.primary_wallet_id] == Decimal("500")
    assert summary[shop.change_wallet_id] == Decimal("0")


def test_wallet_summary_skips_inactive_wallets(seeded_shop):
    shop = seeded_shop
    transactions.create_transaction(shop.context, direction="in", total=Decimal("50"), wallet_id=shop.change_wallet_id)
    wallets.deactivate_wallet(shop.context, shop.change_wallet_id)

    summary = reports.calculate_wallet_summary(shop.context)

    assert shop.change_wallet_id not in summary


def test_stock_by_location_reflects_sales(seeded_shop):
    shop = seeded_shop
    sales.process_sale(
        shop.context,
        sales.SaleCommand(
            admin_id="7",
            lines=(sales.SaleLine(shop.coffee_id, shop.location_id, 3, Decimal("1000")),),
            cash_received=Decimal("3000"),
        ),
    )

    snapshot = reports.stock_by_location(shop.context)

    assert snapshot[(shop.coffee_id, shop.location_id)] == 7
    assert snapshot[(shop.sugar_id, shop.location_id)] == 5


def test_transaction_movements_lists_batch_rows(seeded_shop):
    shop = seeded_shop
    result = bulk_stock.process_bulk_stock(
        shop.context,
        bulk_stock.BulkStockCommand(
            lines=(
                bulk_stock.BulkLine(shop.coffee_id, shop.location_id, 1, Decimal("100")),
                bulk_stock.BulkLine(shop.sugar_id, shop.location_id, 2, Decimal("100")),
            ),
            movement_type=Direction.IN,
            wallet_id=shop.primary_wallet_id,
        ),
    )

    movements = reports.transaction_movements(shop.context, result.transaction_id)

    assert {movement.good_id for movement in movements} == {shop.coffee_id, shop.sugar_id}


def test_transaction_movements_unknown_transaction(runtime_context):
    with pytest.raises(core_logic.MissingReferenceError):
        reports.transaction_movements(runtime_context, "missing")
