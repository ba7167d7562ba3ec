"""Enumerations and default names shared across Toko ERP modules.

Centralises domain constants so that the data access layer (DAL), the ledgers,
the coordinators and the CLI rely on a single source of truth for collection
names, direction codes and the seeded wallet/description names.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "2.0.0"

DEFAULT_REVENUE_WALLET_NAME = "Omset"
DEFAULT_SALE_NOTE = "Penjualan (admin)"
DEFAULT_MAX_WRITE_ATTEMPTS = 3
DEFAULT_LOCK_TIMEOUT_SECONDS = 10.0

SALE_DESCRIPTION_NAME = "Penjualan"
PURCHASE_DESCRIPTION_NAME = "Pembelian"
ADMIN_SALE_MOVEMENT_DESCRIPTION = "Penjualan oleh admin"
FALLBACK_GOOD_NAME = "Barang"


class Direction(str, Enum):
    """Direction of a financial transaction or a stock movement."""

    IN = "in"
    OUT = "out"

    def inverse(self) -> "Direction":
        return Direction.OUT if self is Direction.IN else Direction.IN


class MovementType(str, Enum):
    """Enumerate the intent recorded on a stock-movement history row."""

    IN = "in"
    OUT = "out"
    ADJUSTMENT = "adjustment"
    INITIAL = "initial"


class PaymentMethod(str, Enum):
    """Enumerate how a customer settles a sale."""

    CASH = "cash"
    DIGITAL = "digital"


class WalletFlag(str, Enum):
    """Role flags that at most one wallet may carry at a time."""

    PRIMARY = "is_primary"
    CHANGE = "is_change"


class Collection(str, Enum):
    """Enumerate the collections (worksheets) managed by the DAL."""

    GOODS = "goods"
    LOCATIONS = "locations"
    LOCATION_STOCKS = "location_stocks"
    GOODS_HISTORY = "goods_history"
    TRANSACTIONS = "transactions"
    FINANCIAL_CATEGORIES = "financial_categories"
    CASH_BALANCES = "cash_balances"
    TRANSACTION_DESCRIPTIONS = "transaction_descriptions"


# Column layout of every collection, in worksheet order.
COLLECTION_COLUMNS: dict[str, tuple[str, ...]] = {
    Collection.GOODS.value: (
        "id",
        "idcategory",
        "code",
        "name",
        "price",
        "stock",
        "damaged_stock",
        "created_at",
        "updated_at",
    ),
    Collection.LOCATIONS.value: (
        "id",
        "locationname",
        "address",
        "is_active",
        "created_at",
    ),
    Collection.LOCATION_STOCKS.value: (
        "id",
        "idgood",
        "idlocation",
        "stock",
        "created_at",
        "updated_at",
    ),
    Collection.GOODS_HISTORY.value: (
        "id",
        "idgood",
        "idlocation",
        "stock",
        "type",
        "payment_type",
        "transaction_id",
        "price",
        "description",
        "note",
        "created_at",
    ),
    Collection.TRANSACTIONS.value: (
        "id",
        "type",
        "total",
        "id_description",
        "id_goods_history",
        "note",
        "payment_type",
        "created_at",
    ),
    Collection.FINANCIAL_CATEGORIES.value: (
        "id",
        "name",
        "is_primary",
        "is_change",
        "is_active",
        "created_at",
        "updated_at",
    ),
    Collection.CASH_BALANCES.value: (
        "id",
        "id_category",
        "amount",
        "created_at",
        "updated_at",
    ),
    Collection.TRANSACTION_DESCRIPTIONS.value: (
        "id",
        "descriptionname",
        "type",
        "is_active",
        "created_at",
    ),
}


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_REVENUE_WALLET_NAME",
    "DEFAULT_SALE_NOTE",
    "DEFAULT_MAX_WRITE_ATTEMPTS",
    "DEFAULT_LOCK_TIMEOUT_SECONDS",
    "SALE_DESCRIPTION_NAME",
    "PURCHASE_DESCRIPTION_NAME",
    "ADMIN_SALE_MOVEMENT_DESCRIPTION",
    "FALLBACK_GOOD_NAME",
    "Direction",
    "MovementType",
    "PaymentMethod",
    "WalletFlag",
    "Collection",
    "COLLECTION_COLUMNS",
]
