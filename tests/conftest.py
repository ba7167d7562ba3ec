"""Shared pytest fixtures and utilities for Toko ERP tests."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable

import pytest

from toko_erp import cash_ledger, constants, core_logic, stock_ledger, wallets
from toko_erp.setup_workbook import create_master_workbook

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "ShopName = {shop_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "RevenueWallet = {revenue_wallet}\n"
    "SaleNote = Penjualan (admin)\n\n"
    "[Consistency]\n"
    "MaxWriteAttempts = {max_write_attempts}\n"
    "LockTimeout = {lock_timeout}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    shop_name: str


@dataclass(frozen=True)
class SeededShop:
    """Identifiers of the goods, location and wallets seeded for a test."""

    context: core_logic.RuntimeContext
    location_id: str
    coffee_id: str
    sugar_id: str
    revenue_wallet_id: str
    primary_wallet_id: str
    change_wallet_id: str


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "master_workbook.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh master workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        shop_name: str = "Toko Test",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        revenue_wallet: str = constants.DEFAULT_REVENUE_WALLET_NAME,
        max_write_attempts: int = 3,
        lock_timeout: float = 0.2,
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=bundle_dir_name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                shop_name=shop_name,
                schema_version=schema_version,
                revenue_wallet=revenue_wallet,
                max_write_attempts=max_write_attempts,
                lock_timeout=lock_timeout,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            shop_name=shop_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def seeded_shop(runtime_context: core_logic.RuntimeContext) -> SeededShop:
    """A shop with one location, two stocked goods and funded wallets.

    Kopi (coffee) starts at 10 units and Gula (sugar) at 5, both at the same
    location. Every seeded wallet starts with a balance of 10000.
    """

    context = runtime_context
    location = core_logic.add_location(context, name="Gudang Utama", address="Jl. Merdeka 1")
    coffee = core_logic.add_good(context, code="KP-01", name="Kopi", price=Decimal("1000"))
    sugar = core_logic.add_good(context, code="GL-01", name="Gula", price=Decimal("500"))
    for good, quantity in ((coffee, 10), (sugar, 5)):
        stock_ledger.attach_good_to_location(context, good.good_id, location.location_id)
        stock_ledger.apply_delta(context, good.good_id, location.location_id, quantity)

    revenue_wallet_id = wallets.resolve_wallet_by_name(context, constants.DEFAULT_REVENUE_WALLET_NAME)
    primary_wallet_id = wallets.resolve_primary_wallet(context)
    change_wallet_id = wallets.resolve_change_wallet(context)
    for wallet_id in (revenue_wallet_id, primary_wallet_id, change_wallet_id):
        cash_ledger.set_balance(context, wallet_id, Decimal("10000"))

    return SeededShop(
        context=context,
        location_id=location.location_id,
        coffee_id=coffee.good_id,
        sugar_id=sugar.good_id,
        revenue_wallet_id=revenue_wallet_id,
        primary_wallet_id=primary_wallet_id,
        change_wallet_id=change_wallet_id,
    )
