# Overview: Flask CLI command groups for cash registers, ledger postings and accounting configuration.

# backend/ludocompta/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Cash registers:
# - python -m flask cash registers [--all]
#   List registers with their balance and whether a session is open.
# - python -m flask cash create-register --code CAISSE_PRINC --name "Caisse principale" --opening-balance 150
#   Create a register.
# - python -m flask cash sessions --register-id 1 --limit 20
#   List recent sessions with their reconciliation.
#
# Ledger:
# - python -m flask ledger post-payments 12 13 14
#   Post membership payments (each in its own transaction, retried on lock contention).
# - python -m flask ledger post-payments --unposted
#   Post every active payment that has no piece yet.
# - python -m flask ledger piece VT 2026 COT-2026-000042
#   Show the entries of a piece and its balance.
#
# Accounting configuration:
# - python -m flask accounting set-mapping membership --journal VT --account 7061 --prefix COT
#   Create or replace the mapping of an event type.
# - python -m flask accounting set-encashment cheque --account 5112 --journal BQ
#   Create or replace the treasury account of a payment method.

from functools import partial

import click
from flask.cli import with_appcontext

from .errors import LudocomptaError
from .services import account_mapping_service, cash_service, ledger_service, membership_service
from .services.concurrency import run_with_retry


# =============================================================================
# CASH
# =============================================================================

@click.group('cash')
def cash_group():
    """Cash register inspection and bootstrap commands."""


@cash_group.command('registers')
@click.option('--all', 'show_all', is_flag=True, help='Show inactive registers too')
@with_appcontext
def list_registers_cli(show_all):
    """
    List all registers.

    Example:
        flask cash registers
        flask cash registers --all
    """
    registers = cash_service.list_registers(include_inactive=show_all)

    if not registers:
        click.echo("No registers found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Code':<15} {'Name':<25} {'Balance':>12} {'Active':<8} {'Status'}")
    click.echo("="*90)

    for register in registers:
        status = "OPEN" if cash_service.get_open_session(register.id) else "CLOSED"
        active_str = "Yes" if register.is_active else "No"
        click.echo(f"{register.id:<5} {register.code:<15} {register.name:<25} {register.current_balance:>12} {active_str:<8} {status}")

    click.echo("="*90 + "\n")


@cash_group.command('create-register')
@click.option('--code', required=True, help='Register code (unique)')
@click.option('--name', required=True, help='Register name')
@click.option('--opening-balance', default='0', help='Initial balance')
@click.option('--account', 'accounting_account', default='5300', help='Treasury account')
@click.option('--site', help='Site / location')
@with_appcontext
def create_register_cli(code, name, opening_balance, accounting_account, site):
    """
    Create a cash register.

    Example:
        flask cash create-register --code CAISSE_PRINC --name "Caisse principale" --opening-balance 150
    """
    try:
        register = cash_service.create_register(
            code,
            name,
            opening_balance=opening_balance,
            accounting_account=accounting_account,
            site=site,
        )
    except LudocomptaError as e:
        click.echo(f"FAIL Error: {e.message}")
        return

    click.echo(f"PASS Created register: {register.code} - {register.name}")
    click.echo(f"   Register ID: {register.id}")
    click.echo(f"   Balance: {register.current_balance}")


@cash_group.command('sessions')
@click.option('--register-id', type=int, required=True, help='Register ID')
@click.option('--limit', type=int, default=20, help='Max sessions to show')
@with_appcontext
def list_sessions_cli(register_id, limit):
    """
    List sessions of a register, newest first.

    Example:
        flask cash sessions --register-id 1
    """
    sessions = cash_service.list_sessions(register_id, limit=limit)

    if not sessions:
        click.echo("No sessions found.")
        return

    click.echo("\n" + "="*110)
    click.echo(f"{'ID':<5} {'Status':<8} {'Opened':<22} {'Opening':>10} {'In':>10} {'Out':>10} {'Theoretical':>12} {'Declared':>10} {'Variance':>10}")
    click.echo("="*110)

    for session in sessions:
        opened = session.opened_at.strftime("%Y-%m-%d %H:%M") if session.opened_at else "-"
        click.echo(
            f"{session.id:<5} {session.status:<8} {opened:<22} {session.opening_balance:>10} "
            f"{session.total_in:>10} {session.total_out:>10} "
            f"{session.theoretical_closing_balance or '-':>12} {session.declared_closing_balance or '-':>10} "
            f"{session.variance if session.variance is not None else '-':>10}"
        )

    click.echo("="*110 + "\n")


# =============================================================================
# LEDGER
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Ledger posting and inspection commands."""


@ledger_group.command('post-payments')
@click.argument('payment_ids', nargs=-1, type=int)
@click.option('--unposted', is_flag=True, help='Post every active payment without a piece')
@click.option('--attempts', type=int, default=3, help='Retries on lock contention')
@with_appcontext
def post_payments_cli(payment_ids, unposted, attempts):
    """
    Post membership payments to the ledger.

    Example:
        flask ledger post-payments 12 13
        flask ledger post-payments --unposted
    """
    ids = list(payment_ids)
    if unposted:
        ids.extend(p.id for p in membership_service.list_unposted_payments())
    if not ids:
        click.echo("No payments to post.")
        return

    posted = failed = 0
    for payment_id in ids:
        try:
            entries = run_with_retry(
                partial(ledger_service.generate_for_membership_payment, payment_id),
                attempts=attempts,
            )
        except LudocomptaError as e:
            failed += 1
            click.echo(f"FAIL Payment {payment_id}: {e.message}")
            continue

        posted += 1
        piece = entries[0].piece_number if entries else "(nothing to post)"
        click.echo(f"PASS Payment {payment_id}: {piece}")

    click.echo(f"\n{posted} posted, {failed} failed")


@ledger_group.command('piece')
@click.argument('journal_code')
@click.argument('fiscal_year', type=int)
@click.argument('piece_number')
@with_appcontext
def show_piece_cli(journal_code, fiscal_year, piece_number):
    """
    Show the entries of a piece.

    Example:
        flask ledger piece VT 2026 COT-2026-000042
    """
    entries = ledger_service.entries_for_piece(journal_code, fiscal_year, piece_number)
    if not entries:
        click.echo("Piece not found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'Account':<10} {'Auxiliary':<11} {'Label':<45} {'Debit':>12} {'Credit':>12}")
    click.echo("="*100)
    for entry in entries:
        click.echo(
            f"{entry.account_number:<10} {entry.auxiliary_account or '':<11} {entry.label[:45]:<45} "
            f"{entry.debit:>12} {entry.credit:>12}"
        )
    click.echo("="*100)
    click.echo(f"Balance: {ledger_service.piece_balance(journal_code, fiscal_year, piece_number)}\n")


# =============================================================================
# ACCOUNTING CONFIGURATION
# =============================================================================

@click.group('accounting')
def accounting_group():
    """Account mapping configuration."""


@accounting_group.command('set-mapping')
@click.argument('event_type')
@click.option('--journal', 'journal_code', required=True, help='Journal code (VT, BQ, CA, OD...)')
@click.option('--account', 'product_account', required=True, help='Product account')
@click.option('--prefix', 'piece_prefix', required=True, help='Piece number prefix')
@click.option('--label', 'product_account_label', help='Product account label')
@click.option('--analytic', 'analytic_section', help='Analytic section')
@click.option('--no-entries', is_flag=True, help='Track the event without posting it')
@with_appcontext
def set_mapping_cli(event_type, journal_code, product_account, piece_prefix, product_account_label,
                    analytic_section, no_entries):
    try:
        rule = account_mapping_service.set_account_mapping(
            event_type,
            journal_code=journal_code,
            product_account=product_account,
            piece_prefix=piece_prefix,
            product_account_label=product_account_label,
            analytic_section=analytic_section,
            generate_entries=not no_entries,
        )
    except LudocomptaError as e:
        click.echo(f"FAIL Error: {e.message}")
        return
    click.echo(f"PASS {rule.event_type}: journal {rule.journal_code}, account {rule.product_account}, prefix {rule.piece_prefix}")


@accounting_group.command('set-encashment')
@click.argument('payment_method')
@click.option('--account', 'account_number', required=True, help='Treasury account')
@click.option('--label', 'account_label', help='Account label')
@click.option('--journal', 'journal_code', help='Journal code')
@with_appcontext
def set_encashment_cli(payment_method, account_number, account_label, journal_code):
    try:
        row = account_mapping_service.set_encashment_account(
            payment_method,
            account_number=account_number,
            account_label=account_label,
            journal_code=journal_code,
        )
    except LudocomptaError as e:
        click.echo(f"FAIL Error: {e.message}")
        return
    click.echo(f"PASS {row.payment_method} -> {row.account_number}")


def register_commands(app):
    """Register CLI command groups with the Flask app."""
    app.cli.add_command(cash_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(accounting_group)
