"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
import contextlib
from decimal import Decimal
from pathlib import Path
from typing import Iterable

import pytest

from toko_erp import bulk_stock, cli, core_logic, sales
from toko_erp.constants import Direction, PaymentMethod


WRITE_COMMANDS = {
    "add-location",
    "add-good",
    "add-wallet",
    "add-description",
    "set-balance",
    "sale",
    "bulk-stock",
}

READ_COMMANDS = {
    "stock",
    "balances",
    "wallets",
    "history",
}


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="toko-cli", description="Toko CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    """build_parser should set user-facing program metadata."""

    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "toko-cli"
    assert "Toko" in (parser.description or "")


def test_configure_subcommands_registers_all_commands(cli_parser):
    """configure_subcommands should wire every read and write sub-command."""

    command_table = cli.configure_subcommands(cli_parser)
    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS
    assert _registered_choices(cli_parser) == WRITE_COMMANDS | READ_COMMANDS


def test_read_commands_do_not_write(subparsers_action):
    specs = cli.register_read_commands(subparsers_action)
    assert set(specs) == READ_COMMANDS
    assert not any(spec.writes for spec in specs.values())


def test_write_commands_are_marked_as_writes(subparsers_action):
    specs = cli.register_write_commands(subparsers_action)
    assert set(specs) == WRITE_COMMANDS
    assert all(spec.writes for spec in specs.values())


def test_sale_command_parses_repeated_items():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)

    args = parser.parse_args(
        [
            "sale",
            "--admin-id", "7",
            "--item", "g1:l1:2:1000",
            "--item", "g2:l1:1:500",
            "--cash-received", "3000",
        ]
    )

    assert args.items == [("g1", "l1", 2, Decimal("1000")), ("g2", "l1", 1, Decimal("500"))]
    assert args.payment_method == "cash"
    assert args.cash_received == Decimal("3000")


def test_bulk_stock_command_requires_one_wallet_option():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)

    with pytest.raises(SystemExit):
        parser.parse_args(["bulk-stock", "--type", "in", "--item", "g:l:1:1"])
    with pytest.raises(SystemExit):
        parser.parse_args(
            ["bulk-stock", "--type", "in", "--item", "g:l:1:1", "--wallet-id", "w", "--primary-wallet"]
        )


@pytest.mark.parametrize("raw", ["g1:l1:2", "g1:l1:two:100", "g1:l1:1:abc"])
def test_parse_item_rejects_malformed_values(raw):
    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_item(raw)


# ---------------------------------------------------------------------------
# Runtime context and dispatch helpers
# ---------------------------------------------------------------------------


def test_open_session_uses_provided_path(config_file, monkeypatch):
    """open_session should lock the session named by the specified config path."""

    sentinel_session = object()

    def fake_session(path: Path | None) -> object:
        assert path == config_file
        return sentinel_session

    monkeypatch.setattr(core_logic, "locked_session", fake_session)
    assert cli.open_session(config_file) is sentinel_session


def test_open_session_supports_defaults(monkeypatch, tmp_path):
    """open_session should resolve config.ini from the working directory."""

    config_path = tmp_path / "config.ini"
    sentinel_session = object()

    def fake_session(path: Path | None) -> object:
        assert path == config_path
        return sentinel_session

    monkeypatch.setattr(core_logic, "locked_session", fake_session)
    monkeypatch.chdir(tmp_path)
    assert cli.open_session() is sentinel_session


def test_dispatch_command_invokes_executor(runtime_context):
    called = {}

    def execute(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        called["context"] = context
        return 0

    spec = cli.CommandSpec("probe", "help", lambda s: s.add_parser("probe"), execute)
    result = cli.dispatch_command(runtime_context, argparse.Namespace(command="probe"), {"probe": spec})

    assert result == 0
    assert called["context"] is runtime_context


def test_dispatch_command_handles_unknown_commands(runtime_context):
    """dispatch_command should raise a clear error for unknown commands."""

    with pytest.raises(KeyError):
        cli.dispatch_command(runtime_context, argparse.Namespace(command="unknown"), {})


def test_build_command_table_detects_duplicate_commands():
    """build_command_table should guard against duplicate command names."""

    specs = [
        cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), lambda c, a: 0),
        cli.CommandSpec("alpha", "Duplicate", lambda s: s.add_parser("alpha"), lambda c, a: 0),
    ]
    with pytest.raises(ValueError):
        cli.build_command_table(specs)


# ---------------------------------------------------------------------------
# Translation helpers
# ---------------------------------------------------------------------------


def test_translate_sale_drops_zero_quantity_lines():
    args = argparse.Namespace(
        admin_id="7",
        items=[("g1", "l1", 2, Decimal("1000")), ("g2", "l1", 0, Decimal("500"))],
        cash_received=Decimal("2000"),
        payment_method="digital",
        revenue_wallet=None,
        notes="Meja 3",
    )

    command = cli.translate_sale(args)

    assert command.lines == (sales.SaleLine("g1", "l1", 2, Decimal("1000")),)
    assert command.payment_method is PaymentMethod.DIGITAL
    assert command.note == "Meja 3"


def test_translate_bulk_stock_resolves_primary_wallet(seeded_shop):
    args = argparse.Namespace(
        movement_type="out",
        primary_wallet=True,
        wallet_name=None,
        wallet_id=None,
        items=[("g1", "l1", 1, Decimal("100"))],
        notes=None,
    )

    command = cli.translate_bulk_stock(seeded_shop.context, args)

    assert command.wallet_id == seeded_shop.primary_wallet_id
    assert command.movement_type is Direction.OUT
    assert command.lines == (bulk_stock.BulkLine("g1", "l1", 1, Decimal("100")),)


def test_translate_bulk_stock_resolves_wallet_name(seeded_shop):
    args = argparse.Namespace(
        movement_type="in",
        primary_wallet=False,
        wallet_name="Omset",
        wallet_id=None,
        items=[],
        notes=None,
    )

    assert cli.translate_bulk_stock(seeded_shop.context, args).wallet_id == seeded_shop.revenue_wallet_id


# ---------------------------------------------------------------------------
# Command execution helpers
# ---------------------------------------------------------------------------


def test_run_sale_reports_success(runtime_context, monkeypatch, capsys):
    command = sales.SaleCommand(admin_id="7")
    monkeypatch.setattr(cli, "translate_sale", lambda value: command)
    called = {}

    def fake_process(context, cmd):
        called["context"] = context
        called["cmd"] = cmd
        return core_logic.CoordinatorResult(success=True, transaction_id="t1", total=Decimal("5"))

    monkeypatch.setattr(cli.sales, "process_sale", fake_process)

    assert cli.run_sale(runtime_context, argparse.Namespace()) == cli.EXIT_OK
    assert called["context"] is runtime_context
    assert called["cmd"] is command
    assert "transaction=t1" in capsys.readouterr().out


def test_run_sale_reports_failure(runtime_context, monkeypatch, capsys):
    monkeypatch.setattr(cli, "translate_sale", lambda value: sales.SaleCommand(admin_id="7"))
    monkeypatch.setattr(
        cli.sales,
        "process_sale",
        lambda context, cmd: core_logic.CoordinatorResult.failed("Insufficient stock", transaction_id="t9"),
    )

    assert cli.run_sale(runtime_context, argparse.Namespace()) == cli.EXIT_BUSINESS_FAILURE
    out = capsys.readouterr().out
    assert "FAILED: Insufficient stock" in out
    assert "t9" in out


def test_run_add_good_attaches_locations(runtime_context, capsys):
    location = core_logic.add_location(runtime_context, name="Toko")
    args = argparse.Namespace(
        code="KP-01",
        name="Kopi",
        price=Decimal("1000"),
        category_id=None,
        locations=[location.location_id],
    )

    assert cli.run_add_good(runtime_context, args) == cli.EXIT_OK

    good_id = capsys.readouterr().out.strip()
    assert cli.reports.stock_by_location(runtime_context) == {(good_id, location.location_id): 0}


def test_run_add_good_rejects_unknown_location_before_writing(runtime_context):
    args = argparse.Namespace(code="KP-01", name="Kopi", price=Decimal("1000"), category_id=None, locations=["nope"])

    with pytest.raises(core_logic.MissingReferenceError):
        cli.run_add_good(runtime_context, args)
    assert core_logic.list_goods(runtime_context) == []


def test_run_wallets_report_lists_roles(runtime_context, capsys):
    assert cli.run_wallets_report(runtime_context, argparse.Namespace(include_inactive=False)) == cli.EXIT_OK
    out = capsys.readouterr().out
    assert "Kas\tprimary" in out
    assert "Kembalian\tchange" in out


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


def test_handle_cli_error_maps_exit_codes():
    assert cli.handle_cli_error(core_logic.InsufficientStockError("Kopi", 0, 1)) == cli.EXIT_BUSINESS_FAILURE
    assert cli.handle_cli_error(FileNotFoundError("missing")) == cli.EXIT_MISSING_FILE
    assert cli.handle_cli_error(ValueError("bad")) == cli.EXIT_GENERIC_ERROR


def test_persist_workbook_handles_read_only_workbooks(runtime_context, monkeypatch):
    """persist_workbook should handle read-only workbook scenarios gracefully."""

    def fake_persist(_: core_logic.RuntimeContext) -> None:
        raise PermissionError("read-only")

    monkeypatch.setattr(cli.core_logic, "persist_context", fake_persist)
    with pytest.raises(RuntimeError, match="read-only"):
        cli.persist_workbook(runtime_context)


# ---------------------------------------------------------------------------
# Program entry point
# ---------------------------------------------------------------------------


def _patch_main(monkeypatch, runtime_context, command: str, exit_code: int, *, writes: bool = True) -> dict:
    parser = _stub_parser(command=command)
    spec = cli.CommandSpec(command, "help", lambda _: parser, lambda *_: exit_code, writes=writes)
    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: {command: spec})
    monkeypatch.setattr(cli, "open_session", lambda path=None: contextlib.nullcontext(runtime_context))

    persisted: dict = {}
    monkeypatch.setattr(cli, "persist_workbook", lambda ctx: persisted.setdefault("context", ctx))
    return persisted


def test_main_persists_on_success(monkeypatch, runtime_context):
    persisted = _patch_main(monkeypatch, runtime_context, "sale", cli.EXIT_OK)

    assert cli.main(["sale"]) == cli.EXIT_OK
    assert persisted["context"] is runtime_context


def test_main_persists_partial_writes_after_coordinator_failure(monkeypatch, runtime_context):
    persisted = _patch_main(monkeypatch, runtime_context, "sale", cli.EXIT_BUSINESS_FAILURE)

    assert cli.main(["sale"]) == cli.EXIT_BUSINESS_FAILURE
    assert persisted["context"] is runtime_context


def test_main_skips_persist_for_read_commands(monkeypatch, runtime_context):
    persisted = _patch_main(monkeypatch, runtime_context, "stock", cli.EXIT_OK, writes=False)

    assert cli.main(["stock"]) == cli.EXIT_OK
    assert persisted == {}


def test_main_handles_bll_errors(monkeypatch, runtime_context):
    """main should surface business rule violations as non-zero exits."""

    persisted = _patch_main(monkeypatch, runtime_context, "sale", cli.EXIT_OK)

    def fake_dispatch(*_: object) -> int:
        raise core_logic.BusinessRuleViolation("invalid")

    monkeypatch.setattr(cli, "dispatch_command", fake_dispatch)

    handled = {}

    def fake_handle(error: Exception) -> int:
        handled["error"] = error
        return 99

    monkeypatch.setattr(cli, "handle_cli_error", fake_handle)
    assert cli.main(["sale"]) == 99
    assert isinstance(handled["error"], core_logic.BusinessRuleViolation)
    assert persisted == {}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _stub_parser(command: str) -> argparse.ArgumentParser:
    """Create a stub parser that always returns the supplied command."""

    class _Stub(argparse.ArgumentParser):
        def parse_args(self, args: Iterable[str] | None = None, namespace: argparse.Namespace | None = None):  # type: ignore[override]
            return argparse.Namespace(command=command)

    return _Stub(prog="test")


def _registered_choices(parser: argparse.ArgumentParser) -> set[str]:
    """Return the set of registered sub-command names for assertion helpers."""

    actions = getattr(parser, "_subparsers", None)
    if not actions:
        return set()
    group_actions = actions._group_actions  # type: ignore[attr-defined]
    if not group_actions:
        return set()
    return set(group_actions[0].choices)  # type: ignore[index]
