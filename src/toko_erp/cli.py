"""Command-line entry points for the Toko ERP toolkit (``toko-cli``).

This module only wires argparse, turns arguments into sale and bulk stock
commands and prints results. Line items are passed as repeatable
``--item GOOD_ID:LOCATION_ID:QUANTITY:PRICE`` options.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, ContextManager, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import (
    bulk_stock,
    cash_ledger,
    core_logic,
    log,
    reports,
    sales,
    stock_ledger,
    transactions,
    wallets,
)
from .constants import Direction, PaymentMethod


EXIT_OK = 0
EXIT_GENERIC_ERROR = 1
EXIT_BUSINESS_FAILURE = 2
EXIT_MISSING_FILE = 3


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    writes: bool = True


def parse_decimal(raw: str) -> Decimal:
    """argparse type for monetary values."""
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"Not a number: {raw}") from exc


def parse_item(raw: str) -> tuple[str, str, int, Decimal]:
    """argparse type for ``GOOD_ID:LOCATION_ID:QUANTITY:PRICE`` line items."""
    parts = raw.split(":")
    if len(parts) != 4:
        raise argparse.ArgumentTypeError(f"Expected GOOD_ID:LOCATION_ID:QUANTITY:PRICE, got '{raw}'")
    good_id, location_id, quantity_raw, price_raw = parts
    try:
        quantity = int(quantity_raw)
        price = Decimal(price_raw)
    except (ValueError, InvalidOperation) as exc:
        raise argparse.ArgumentTypeError(f"Invalid quantity or price in '{raw}'") from exc
    return good_id, location_id, quantity, price


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="toko-cli",
        description="Command-line tools for the Toko ERP workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and bulk stock batches."""
    specs = {
        "add-location": register_add_location_command(subparsers),
        "add-good": register_add_good_command(subparsers),
        "add-wallet": register_add_wallet_command(subparsers),
        "add-description": register_add_description_command(subparsers),
        "set-balance": register_set_balance_command(subparsers),
        "sale": register_sale_command(subparsers),
        "bulk-stock": register_bulk_stock_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "stock": register_stock_command(subparsers),
        "balances": register_balances_command(subparsers),
        "wallets": register_wallets_command(subparsers),
        "history": register_history_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_location_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-location``."""
    name = "add-location"
    help_text = "Register a new location."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--address", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_location)


def register_add_good_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-good``."""
    name = "add-good"
    help_text = "Register a new good, optionally attaching it to locations."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--code", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--price", type=parse_decimal, required=True)
        parser.add_argument("--category-id", default=None)
        parser.add_argument(
            "--location",
            dest="locations",
            action="append",
            default=[],
            help="Location id to attach with zero stock (repeatable).",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_good)


def register_add_wallet_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-wallet``."""
    name = "add-wallet"
    help_text = "Create a wallet, optionally taking over the primary or change role."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--primary", action="store_true", help="Make this the primary wallet.")
        parser.add_argument("--change", action="store_true", help="Make this the change wallet.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_wallet)


def register_add_description_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-description``."""
    name = "add-description"
    help_text = "Create a transaction description."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--direction", choices=[member.value for member in Direction], required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_description)


def register_set_balance_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-balance``."""
    name = "set-balance"
    help_text = "Overwrite a wallet's cash balance."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--wallet-name", required=True)
        parser.add_argument("--amount", type=parse_decimal, required=True)
        parser.add_argument("--notes", dest="notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_balance)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a multi-line checkout."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--admin-id", required=True)
        parser.add_argument(
            "--item",
            dest="items",
            type=parse_item,
            action="append",
            required=True,
            help="GOOD_ID:LOCATION_ID:QUANTITY:PRICE (repeatable).",
        )
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod],
            default=PaymentMethod.CASH.value,
        )
        parser.add_argument("--cash-received", type=parse_decimal, default=Decimal("0"))
        parser.add_argument("--revenue-wallet", default=None, help="Revenue wallet name (defaults to config).")
        parser.add_argument("--notes", dest="notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_bulk_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``bulk-stock``."""
    name = "bulk-stock"
    help_text = "Record a bulk stock-in or stock-out batch."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--type", dest="movement_type", choices=[member.value for member in Direction], required=True)
        wallet = parser.add_mutually_exclusive_group(required=True)
        wallet.add_argument("--wallet-id", default=None)
        wallet.add_argument("--wallet-name", default=None)
        wallet.add_argument("--primary-wallet", action="store_true", help="Pay through the primary wallet.")
        parser.add_argument(
            "--item",
            dest="items",
            type=parse_item,
            action="append",
            required=True,
            help="GOOD_ID:LOCATION_ID:QUANTITY:PRICE (repeatable).",
        )
        parser.add_argument("--notes", dest="notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_bulk_stock)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display on-hand stock per good and location."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report, writes=False)


def register_balances_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``balances``."""
    name = "balances"
    help_text = "Display wallet balances next to their ledger totals."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_balances_report, writes=False)


def register_wallets_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``wallets``."""
    name = "wallets"
    help_text = "List wallets and their roles."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--all", dest="include_inactive", action="store_true", help="Include inactive wallets.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_wallets_report, writes=False)


def register_history_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``history``."""
    name = "history"
    help_text = "Display stock movements, optionally for one transaction."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--transaction-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_history_report, writes=False)


def open_session(config_path: Optional[Path] = None) -> ContextManager[core_logic.RuntimeContext]:
    """Open a locked runtime context for one CLI invocation."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.locked_session(target)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_sale(args: argparse.Namespace) -> sales.SaleCommand:
    """Translate CLI args into a sale command, dropping zero-quantity lines."""
    lines = [
        sales.SaleLine(good_id=good_id, location_id=location_id, quantity=quantity, price=price)
        for good_id, location_id, quantity, price in args.items
    ]
    return sales.SaleCommand(
        admin_id=args.admin_id,
        lines=tuple(sales.qualifying_lines(lines)),
        cash_received=args.cash_received,
        payment_method=PaymentMethod(args.payment_method),
        revenue_wallet_name=args.revenue_wallet,
        note=args.notes,
    )


def translate_bulk_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> bulk_stock.BulkStockCommand:
    """Translate CLI args into a bulk stock command, resolving the wallet."""
    if args.primary_wallet:
        wallet_id = wallets.resolve_primary_wallet(context)
    elif args.wallet_name:
        wallet_id = wallets.resolve_wallet_by_name(context, args.wallet_name)
    else:
        wallet_id = args.wallet_id
    lines = tuple(
        bulk_stock.BulkLine(good_id=good_id, location_id=location_id, quantity=quantity, price=price)
        for good_id, location_id, quantity, price in args.items
    )
    return bulk_stock.BulkStockCommand(
        lines=lines,
        movement_type=Direction(args.movement_type),
        wallet_id=wallet_id,
        note=args.notes,
    )


def report_result(result: core_logic.CoordinatorResult) -> int:
    """Print a coordinator result and map it onto an exit code."""
    if result.success:
        print(f"OK transaction={result.transaction_id} total={result.total} change={result.change}")
        if result.skipped:
            print(f"Skipped goods: {', '.join(result.skipped)}")
        return EXIT_OK
    print(f"FAILED: {result.message}")
    if result.transaction_id:
        print(f"Financial transaction {result.transaction_id} was already recorded; check stock and balances.")
    return EXIT_BUSINESS_FAILURE


def run_add_location(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-location workflow."""
    location = core_logic.add_location(context, name=args.name, address=args.address)
    print(location.location_id)
    return EXIT_OK


def run_add_good(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-good workflow and attach requested locations."""
    for location_id in args.locations:
        core_logic.get_location(context, location_id)
    good = core_logic.add_good(
        context,
        code=args.code,
        name=args.name,
        price=args.price,
        category_id=args.category_id,
    )
    for location_id in args.locations:
        stock_ledger.attach_good_to_location(context, good.good_id, location_id)
    print(good.good_id)
    return EXIT_OK


def run_add_wallet(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-wallet workflow."""
    wallet = wallets.create_wallet(context, args.name, is_primary=args.primary, is_change=args.change)
    print(wallet.wallet_id)
    return EXIT_OK


def run_add_description(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-description workflow."""
    description = transactions.create_transaction_description(context, args.name, Direction(args.direction))
    print(description.description_id)
    return EXIT_OK


def run_set_balance(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the set-balance workflow."""
    wallet_id = wallets.resolve_wallet_by_name(context, args.wallet_name)
    cash_ledger.set_balance(context, wallet_id, args.amount, note=args.notes)
    return EXIT_OK


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the coordinator."""
    command = translate_sale(args)
    return report_result(sales.process_sale(context, command))


def run_bulk_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the bulk stock workflow via the coordinator."""
    command = translate_bulk_stock(context, args)
    return report_result(bulk_stock.process_bulk_stock(context, command))


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print on-hand stock for every attached (good, location) pair."""
    goods = {good.good_id: good.name for good in core_logic.list_goods(context)}
    locations = {location.location_id: location.name for location in core_logic.list_locations(context, include_inactive=True)}
    for (good_id, location_id), quantity in sorted(reports.stock_by_location(context).items()):
        print(f"{goods.get(good_id, good_id)}\t{locations.get(location_id, location_id)}\t{quantity}")
    return EXIT_OK


def run_balances_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print each wallet's stored balance and its ledger total."""
    summary = reports.calculate_wallet_summary(context)
    for wallet in wallets.list_wallets(context):
        balance = cash_ledger.get_balance(context, wallet.wallet_id)
        print(f"{wallet.name}\tbalance={balance}\tledger={summary.get(wallet.wallet_id, Decimal('0'))}")
    return EXIT_OK


def run_wallets_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print wallets with their role flags."""
    for wallet in wallets.list_wallets(context, include_inactive=args.include_inactive):
        roles = [role for role, flag in (("primary", wallet.is_primary), ("change", wallet.is_change)) if flag]
        status = "" if wallet.is_active else " (inactive)"
        print(f"{wallet.wallet_id}\t{wallet.name}{status}\t{','.join(roles)}")
    return EXIT_OK


def run_history_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print stock movements, all of them or those of one transaction."""
    if args.transaction_id:
        movements = reports.transaction_movements(context, args.transaction_id)
    else:
        movements = stock_ledger.list_movements(context)
    for movement in movements:
        print(
            f"{movement.created_at}\t{movement.movement_type}\t{movement.good_id}\t{movement.location_id}"
            f"\t{movement.quantity}\t{movement.price}\t{movement.transaction_id or '-'}"
        )
    return EXIT_OK


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return EXIT_BUSINESS_FAILURE
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return EXIT_MISSING_FILE
    log.error("%s", error)
    return EXIT_GENERIC_ERROR


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution.

    The data file stays locked from load to save, so concurrent invocations
    run one after another. Coordinator failures are persisted too: the writes
    made before the failing step have already happened and must not silently
    vanish.
    """
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        with open_session(getattr(args, "config", None)) as context:
            core_logic.ensure_schema_version(context)
            exit_code = dispatch_command(context, args, command_table)
            if command_table[args.command].writes and exit_code in (EXIT_OK, EXIT_BUSINESS_FAILURE):
                persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
