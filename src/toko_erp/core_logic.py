"""Business logic foundations for Toko ERP.

This module holds what every ledger and coordinator shares: the runtime
context bundling settings with the open record store, the domain exception
hierarchy, the validation guards, the coordinator result type and the
goods/location lookups the coordinators use as referential checks. It
consumes the Data Access Layer (DAL) for all I/O.

No results are cached here. Every lookup goes back to the store so that
coordinators always validate against the latest state.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Iterator, List, Optional

from filelock import FileLock, Timeout
from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, Collection


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced good, location, wallet, or transaction is unknown."""


class InsufficientStockError(BusinessRuleViolation):
    """Raised when a requested quantity exceeds the on-hand stock."""

    def __init__(self, good_label: str, available: int, requested: int) -> None:
        super().__init__(
            f"Insufficient stock for {good_label}. Available: {available}, requested: {requested}"
        )
        self.good_label = good_label
        self.available = available
        self.requested = requested


class ConcurrentUpdateError(BusinessRuleViolation):
    """Raised when a conditional counter update keeps losing to other writers."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook


@dataclass(frozen=True)
class CoordinatorResult:
    """Outcome of a sale or bulk stock run, safe to show to an operator.

    A failure result never implies the store is consistent: writes made before
    the failing step stay in place.
    """

    success: bool
    message: Optional[str] = None
    transaction_id: Optional[str] = None
    total: Decimal = Decimal("0")
    change: Decimal = Decimal("0")
    skipped: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def failed(cls, message: str, *, transaction_id: Optional[str] = None) -> "CoordinatorResult":
        return cls(success=False, message=message, transaction_id=transaction_id)


def load_settings(config_path: Optional[Path] = None) -> data_manager.ConfigSettings:
    """Locate ``config.ini`` and parse it into :class:`ConfigSettings`.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    return data_manager.parse_settings(parser, base_path=resolved_config.parent)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Resolves ``config.ini``, parses settings and opens the workbook that
    stores every collection. The data file is not locked; use
    :func:`locked_session` when the changes will be persisted.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for the ledgers and
            coordinators.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    settings = load_settings(config_path)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def lock_path_for(data_file: Path) -> Path:
    """Return the sidecar lock file guarding ``data_file``."""
    return data_file.with_name(f"{data_file.name}.lock")


@contextmanager
def locked_session(config_path: Optional[Path] = None) -> Iterator[RuntimeContext]:
    """Yield a runtime context while holding the data file's exclusive lock.

    The workbook is opened after the lock is acquired and the lock is only
    released when the block exits, so a caller that persists inside the block
    never overwrites rows another session saved in the meantime.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        ConcurrentUpdateError: If another session keeps the lock for longer
            than ``[Consistency] LockTimeout`` seconds.
    """
    settings = load_settings(config_path)
    if not settings.data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {settings.data_file}")

    lock = FileLock(str(lock_path_for(settings.data_file)), timeout=settings.lock_timeout)
    try:
        lock.acquire()
    except Timeout as exc:
        log.warning("Data file '%s' stayed locked for %ss", settings.data_file, settings.lock_timeout)
        raise ConcurrentUpdateError(
            f"Data file is busy in another session, try again: {settings.data_file}"
        ) from exc

    try:
        workbook = data_manager.open_workbook(settings.data_file)
        log.debug("Acquired lock for workbook '%s'", settings.data_file)
        yield RuntimeContext(settings=settings, workbook=workbook)
    finally:
        lock.release()
        log.debug("Released lock for workbook '%s'", settings.data_file)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to the configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context containing a newly opened workbook.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


def require_positive_quantity(quantity: int) -> None:
    """Validate that a quantity is strictly positive.

    Raises:
        ValueError: If ``quantity`` is zero or negative.
    """
    if quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be greater than zero")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValueError: If ``amount`` is less than zero.
    """
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def add_location(context: RuntimeContext, *, name: str, address: Optional[str] = None) -> data_manager.LocationRow:
    """Register an active location.

    Raises:
        ValueError: If ``name`` is blank.
    """
    if not name or not name.strip():
        raise ValueError("Location name is required")
    record = data_manager.insert_record(
        context.workbook,
        Collection.LOCATIONS,
        {"locationname": name.strip(), "address": address, "is_active": True},
    )
    log.info("Added location '%s' (%s)", record["locationname"], record["id"])
    return data_manager.deserialize_location(record)


def add_good(
    context: RuntimeContext,
    *,
    code: str,
    name: str,
    price: Decimal,
    category_id: Optional[str] = None,
) -> data_manager.GoodRow:
    """Register a good with an empty aggregate stock.

    Per-location stock is attached separately through the stock ledger.

    Raises:
        ValueError: If code or name is blank or the price is negative.
    """
    if not code or not code.strip() or not name or not name.strip():
        raise ValueError("Good code and name are required")
    require_nonnegative_money(price)
    record = data_manager.insert_record(
        context.workbook,
        Collection.GOODS,
        {
            "idcategory": category_id,
            "code": code.strip(),
            "name": name.strip(),
            "price": price,
            "stock": 0,
            "damaged_stock": 0,
        },
    )
    log.info("Added good '%s' (%s)", record["name"], record["id"])
    return data_manager.deserialize_good(record)


def find_good(context: RuntimeContext, good_id: str) -> Optional[data_manager.GoodRow]:
    """Return the good with ``good_id`` or ``None``."""
    records = data_manager.select_records(context.workbook, Collection.GOODS, id=good_id)
    return data_manager.deserialize_good(records[0]) if records else None


def find_location(context: RuntimeContext, location_id: str) -> Optional[data_manager.LocationRow]:
    """Return the location with ``location_id`` or ``None``."""
    records = data_manager.select_records(context.workbook, Collection.LOCATIONS, id=location_id)
    return data_manager.deserialize_location(records[0]) if records else None


def get_good(context: RuntimeContext, good_id: str) -> data_manager.GoodRow:
    """Resolve a good by identifier.

    Raises:
        MissingReferenceError: If ``good_id`` is not in the store.
    """
    good = find_good(context, good_id)
    if good is None:
        log.warning("Good lookup failed for id '%s'", good_id)
        raise MissingReferenceError(f"Unknown good id: {good_id}")
    return good


def get_location(context: RuntimeContext, location_id: str) -> data_manager.LocationRow:
    """Resolve a location by identifier.

    Raises:
        MissingReferenceError: If ``location_id`` is not in the store.
    """
    location = find_location(context, location_id)
    if location is None:
        log.warning("Location lookup failed for id '%s'", location_id)
        raise MissingReferenceError(f"Unknown location id: {location_id}")
    return location


def list_goods(context: RuntimeContext) -> List[data_manager.GoodRow]:
    """Return every good in store order."""
    return [data_manager.deserialize_good(record) for record in data_manager.iter_records(context.workbook, Collection.GOODS)]


def list_locations(context: RuntimeContext, *, include_inactive: bool = False) -> List[data_manager.LocationRow]:
    """Return locations, active ones only unless ``include_inactive`` is set."""
    locations = [
        data_manager.deserialize_location(record)
        for record in data_manager.iter_records(context.workbook, Collection.LOCATIONS)
    ]
    if include_inactive:
        return locations
    return [location for location in locations if location.is_active]
