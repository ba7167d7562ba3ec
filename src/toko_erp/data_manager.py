"""Data access layer for Toko ERP.

This module provides low-level helpers that read from and write to the
``master_workbook.xlsx`` workbook. The workbook plays the role of the shop's
record store: every worksheet is a named collection whose first row holds the
column names, and the only operations offered are filter, insert, update and
delete on a single collection. There is no way to group writes to several
collections into one transaction. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Collection operations: loading records, appending rows and conditionally
   updating or deleting rows, plus typed views of each collection.
"""


from __future__ import annotations

import configparser
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Optional

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    COLLECTION_COLUMNS,
    DEFAULT_LOCK_TIMEOUT_SECONDS,
    DEFAULT_MAX_WRITE_ATTEMPTS,
    DEFAULT_REVENUE_WALLET_NAME,
    DEFAULT_SALE_NOTE,
)


CONFIG_FILE_NAME = "config.ini"


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    revenue_wallet_name: str = DEFAULT_REVENUE_WALLET_NAME
    default_sale_note: str = DEFAULT_SALE_NOTE
    max_write_attempts: int = DEFAULT_MAX_WRITE_ATTEMPTS
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS


@dataclass(frozen=True)
class GoodRow:
    """In-memory view of a record from the ``goods`` collection."""

    good_id: str
    category_id: Optional[str]
    code: str
    name: str
    price: Decimal
    stock: int
    damaged_stock: int


@dataclass(frozen=True)
class LocationRow:
    """In-memory view of a record from the ``locations`` collection."""

    location_id: str
    name: str
    address: Optional[str]
    is_active: bool


@dataclass(frozen=True)
class LocationStockRow:
    """In-memory view of a record from the ``location_stocks`` collection."""

    location_stock_id: str
    good_id: str
    location_id: str
    stock: int


@dataclass(frozen=True)
class StockMovementRow:
    """In-memory view of a record from the ``goods_history`` collection."""

    movement_id: str
    good_id: str
    location_id: str
    quantity: int
    movement_type: str
    wallet_id: Optional[str]
    transaction_id: Optional[str]
    price: Decimal
    description: Optional[str]
    note: Optional[str]
    created_at: str


@dataclass(frozen=True)
class FinancialTransactionRow:
    """In-memory view of a record from the ``transactions`` collection."""

    transaction_id: str
    direction: str
    total: Decimal
    description_id: Optional[str]
    goods_history_id: Optional[str]
    note: Optional[str]
    wallet_id: Optional[str]
    created_at: str


@dataclass(frozen=True)
class WalletRow:
    """In-memory view of a record from the ``financial_categories`` collection."""

    wallet_id: str
    name: str
    is_primary: bool
    is_change: bool
    is_active: bool


@dataclass(frozen=True)
class CashBalanceRow:
    """In-memory view of a record from the ``cash_balances`` collection."""

    balance_id: str
    wallet_id: str
    amount: Decimal
    updated_at: Optional[str]


@dataclass(frozen=True)
class TransactionDescriptionRow:
    """In-memory view of a record from the ``transaction_descriptions`` collection."""

    description_id: str
    name: str
    direction: str
    is_active: bool
    created_at: str


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded before the existence check.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data. Validation happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. ``[Defaults]`` and ``[Consistency]``
    are optional and fall back to the package defaults. Relative ``DataFile``
    entries are expanded against ``base_path`` (or the current working
    directory) and resolved to an absolute form.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If ``MaxWriteAttempts`` is not a positive integer or
            ``LockTimeout`` is negative.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    revenue_wallet_name = parser.get("Defaults", "RevenueWallet", fallback=DEFAULT_REVENUE_WALLET_NAME)
    default_sale_note = parser.get("Defaults", "SaleNote", fallback=DEFAULT_SALE_NOTE)
    max_write_attempts = parser.getint("Consistency", "MaxWriteAttempts", fallback=DEFAULT_MAX_WRITE_ATTEMPTS)
    if max_write_attempts < 1:
        raise ValueError("MaxWriteAttempts must be at least 1")
    lock_timeout = parser.getfloat("Consistency", "LockTimeout", fallback=DEFAULT_LOCK_TIMEOUT_SECONDS)
    if lock_timeout < 0:
        raise ValueError("LockTimeout must not be negative")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        revenue_wallet_name=revenue_wallet_name,
        default_sale_note=default_sale_note,
        max_write_attempts=max_write_attempts,
        lock_timeout=lock_timeout,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""

    return datetime.now(UTC).isoformat()


def generate_record_id() -> str:
    """Generate a new opaque record identifier."""

    return uuid.uuid4().hex


def _collection_sheet(workbook: Workbook, collection: str):
    name = _normalize(collection)
    if name not in COLLECTION_COLUMNS:
        raise KeyError(f"Unknown collection: {name}")
    return workbook[name]


def _header_map(sheet) -> dict[str, int]:
    """Map header titles to 1-based column indices."""

    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1]) if cell.value is not None}


def _normalize(value: Any) -> Any:
    """Convert enum members into the plain values stored in cells."""

    if isinstance(value, Enum):
        return value.value
    return value


def _values_match(cell_value: Any, expected: Any) -> bool:
    """Compare a stored cell value with a filter value.

    Numbers are compared by value regardless of whether the workbook handed
    back an ``int``, ``float`` or :class:`~decimal.Decimal`. Boolean filters
    treat blank cells as ``False``.
    """

    expected = _normalize(expected)
    if expected is None:
        return cell_value is None
    if isinstance(expected, bool):
        return bool(cell_value) == expected
    if isinstance(expected, (int, float, Decimal)):
        if cell_value is None or isinstance(cell_value, (bool, str)):
            return False
        return Decimal(str(cell_value)) == Decimal(str(expected))
    return cell_value == expected


def _iter_indexed_records(workbook: Workbook, collection: str) -> Iterator[tuple[int, dict[str, Any]]]:
    sheet = _collection_sheet(workbook, collection)
    headers = [cell.value for cell in sheet[1]]
    for row_idx, raw in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield row_idx, {header: value for header, value in zip(headers, raw) if header is not None}


def iter_records(workbook: Workbook, collection: str) -> Iterable[dict[str, Any]]:
    """Iterate over the records stored in ``collection``.

    Each non-empty row below the header is yielded as a dictionary keyed by
    column name.

    Raises:
        KeyError: If ``collection`` is not a known collection.
    """

    for _, record in _iter_indexed_records(workbook, collection):
        yield record


def select_records(workbook: Workbook, collection: str, **filters: Any) -> list[dict[str, Any]]:
    """Return every record of ``collection`` whose columns equal ``filters``.

    Args:
        workbook (Workbook): Workbook backing the store.
        collection (str): Collection name.
        **filters: Column/value pairs that must all match.

    Returns:
        list[dict[str, Any]]: Matching records in worksheet order.

    Raises:
        KeyError: If a filter names a column the collection does not have.
    """

    _require_columns(collection, filters)
    return [
        record
        for record in iter_records(workbook, collection)
        if all(_values_match(record.get(column), value) for column, value in filters.items())
    ]


def insert_record(workbook: Workbook, collection: str, values: Mapping[str, Any]) -> dict[str, Any]:
    """Append a record to ``collection`` and return it as stored.

    ``id`` and ``created_at`` are filled in when the caller leaves them out.
    Columns absent from ``values`` are written as blanks.

    Args:
        workbook (Workbook): Workbook backing the store.
        collection (str): Collection name.
        values (Mapping[str, Any]): Column values for the new record.

    Returns:
        dict[str, Any]: Complete record including generated fields.

    Raises:
        KeyError: If ``values`` names an unknown column.
    """

    _require_columns(collection, values)
    columns = COLLECTION_COLUMNS[_normalize(collection)]
    record = {column: _normalize(values.get(column)) for column in columns}
    if "id" in columns and record["id"] is None:
        record["id"] = generate_record_id()
    if "created_at" in columns and record["created_at"] is None:
        record["created_at"] = utc_now_iso()

    sheet = _collection_sheet(workbook, collection)
    header_map = _header_map(sheet)
    row = [None] * len(header_map)
    for column, value in record.items():
        row[header_map[column] - 1] = value
    sheet.append(row)
    log.debug("Inserted record '%s' into '%s'", record.get("id"), _normalize(collection))
    return record


def update_records(
    workbook: Workbook,
    collection: str,
    values: Mapping[str, Any],
    *,
    where: Mapping[str, Any],
) -> int:
    """Update the records of ``collection`` that match every ``where`` pair.

    The match and the write happen in one call, so including the previously
    read value of a column in ``where`` turns the update into a
    compare-and-set: it only lands when nobody changed that value in between.
    ``updated_at`` is stamped automatically when the collection has it.

    Args:
        workbook (Workbook): Workbook backing the store.
        collection (str): Collection name.
        values (Mapping[str, Any]): Column values to write.
        where (Mapping[str, Any]): Column/value pairs selecting the rows.

    Returns:
        int: Number of rows updated. Zero means nothing matched.

    Raises:
        KeyError: If ``values`` or ``where`` references an unknown column.
    """

    _require_columns(collection, values)
    _require_columns(collection, where)
    values = dict(values)
    if "updated_at" in COLLECTION_COLUMNS[_normalize(collection)] and "updated_at" not in values:
        values["updated_at"] = utc_now_iso()

    sheet = _collection_sheet(workbook, collection)
    header_map = _header_map(sheet)
    updated = 0
    for row_idx, record in list(_iter_indexed_records(workbook, collection)):
        if not all(_values_match(record.get(column), value) for column, value in where.items()):
            continue
        for column, value in values.items():
            sheet.cell(row=row_idx, column=header_map[column], value=_normalize(value))
        updated += 1
    return updated


def delete_records(workbook: Workbook, collection: str, *, where: Mapping[str, Any]) -> int:
    """Delete the records of ``collection`` that match every ``where`` pair.

    Returns:
        int: Number of rows removed.
    """

    _require_columns(collection, where)
    sheet = _collection_sheet(workbook, collection)
    doomed = [
        row_idx
        for row_idx, record in _iter_indexed_records(workbook, collection)
        if all(_values_match(record.get(column), value) for column, value in where.items())
    ]
    # Delete bottom-up so earlier indices stay valid.
    for row_idx in reversed(doomed):
        sheet.delete_rows(row_idx)
    return len(doomed)


def _require_columns(collection: str, fields: Mapping[str, Any]) -> None:
    name = _normalize(collection)
    try:
        columns = COLLECTION_COLUMNS[name]
    except KeyError as exc:
        raise KeyError(f"Unknown collection: {name}") from exc
    for field in fields:
        if field not in columns:
            raise KeyError(f"Unknown {name} field: {field}")


def _to_decimal(raw: Any, default: str = "0") -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal(default)


def _to_int(raw: Any) -> int:
    if raw is None:
        return 0
    return int(Decimal(str(raw)))


def _to_optional_str(raw: Any) -> Optional[str]:
    return str(raw) if raw is not None else None


def deserialize_good(record: Mapping[str, Any]) -> GoodRow:
    """Convert a ``goods`` record into a :class:`GoodRow`."""

    return GoodRow(
        good_id=str(record["id"]),
        category_id=_to_optional_str(record.get("idcategory")),
        code=str(record.get("code") or ""),
        name=str(record.get("name") or ""),
        price=_to_decimal(record.get("price"), "0.00"),
        stock=_to_int(record.get("stock")),
        damaged_stock=_to_int(record.get("damaged_stock")),
    )


def deserialize_location(record: Mapping[str, Any]) -> LocationRow:
    """Convert a ``locations`` record into a :class:`LocationRow`."""

    return LocationRow(
        location_id=str(record["id"]),
        name=str(record.get("locationname") or ""),
        address=_to_optional_str(record.get("address")),
        is_active=bool(record.get("is_active")),
    )


def deserialize_location_stock(record: Mapping[str, Any]) -> LocationStockRow:
    """Convert a ``location_stocks`` record into a :class:`LocationStockRow`."""

    return LocationStockRow(
        location_stock_id=str(record["id"]),
        good_id=str(record["idgood"]),
        location_id=str(record["idlocation"]),
        stock=_to_int(record.get("stock")),
    )


def deserialize_stock_movement(record: Mapping[str, Any]) -> StockMovementRow:
    """Convert a ``goods_history`` record into a :class:`StockMovementRow`.

    Quantities become ``int``, prices :class:`~decimal.Decimal`, and optional
    references stay ``None`` when the cell is blank.
    """

    return StockMovementRow(
        movement_id=str(record["id"]),
        good_id=str(record["idgood"]),
        location_id=str(record["idlocation"]),
        quantity=_to_int(record.get("stock")),
        movement_type=str(record.get("type") or ""),
        wallet_id=_to_optional_str(record.get("payment_type")),
        transaction_id=_to_optional_str(record.get("transaction_id")),
        price=_to_decimal(record.get("price"), "0.00"),
        description=_to_optional_str(record.get("description")),
        note=_to_optional_str(record.get("note")),
        created_at=str(record.get("created_at") or ""),
    )


def deserialize_transaction(record: Mapping[str, Any]) -> FinancialTransactionRow:
    """Convert a ``transactions`` record into a :class:`FinancialTransactionRow`."""

    return FinancialTransactionRow(
        transaction_id=str(record["id"]),
        direction=str(record.get("type") or ""),
        total=_to_decimal(record.get("total"), "0.00"),
        description_id=_to_optional_str(record.get("id_description")),
        goods_history_id=_to_optional_str(record.get("id_goods_history")),
        note=_to_optional_str(record.get("note")),
        wallet_id=_to_optional_str(record.get("payment_type")),
        created_at=str(record.get("created_at") or ""),
    )


def deserialize_wallet(record: Mapping[str, Any]) -> WalletRow:
    """Convert a ``financial_categories`` record into a :class:`WalletRow`."""

    return WalletRow(
        wallet_id=str(record["id"]),
        name=str(record.get("name") or ""),
        is_primary=bool(record.get("is_primary")),
        is_change=bool(record.get("is_change")),
        is_active=bool(record.get("is_active")),
    )


def deserialize_cash_balance(record: Mapping[str, Any]) -> CashBalanceRow:
    """Convert a ``cash_balances`` record into a :class:`CashBalanceRow`."""

    return CashBalanceRow(
        balance_id=str(record["id"]),
        wallet_id=str(record["id_category"]),
        amount=_to_decimal(record.get("amount"), "0.00"),
        updated_at=_to_optional_str(record.get("updated_at")),
    )


def deserialize_transaction_description(record: Mapping[str, Any]) -> TransactionDescriptionRow:
    """Convert a ``transaction_descriptions`` record into a typed row."""

    return TransactionDescriptionRow(
        description_id=str(record["id"]),
        name=str(record.get("descriptionname") or ""),
        direction=str(record.get("type") or ""),
        is_active=bool(record.get("is_active")),
        created_at=str(record.get("created_at") or ""),
    )
