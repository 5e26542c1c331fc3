# Overview: Flask CLI command groups for bootstrap, fiscal diagnostics, ledgers and invoice operations.

# backend/invoicing/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use "flask db upgrade" for migrated databases).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Fiscal authority diagnostics:
# - python -m flask fiscal ticket
#   Obtain (or reuse) an authentication ticket and show its expiration.
# - python -m flask fiscal last-voucher --point-of-sale 1 --voucher-class B
#   Show the last voucher number the authority has authorized.
#
# Inventory:
# - python -m flask inventory create-sku --sku TSHIRT-M-BLK --price-cents 15000 --stock 10
# - python -m flask inventory adjust --sku TSHIRT-M-BLK --delta -2 --description "Damaged"
#
# Accounts:
# - python -m flask accounts create --name "Juan Perez" --document-type DNI --document-number 30111222 --credit-limit-cents 5000000
# - python -m flask accounts update --account-id 1 --credit-limit-cents 8000000 --status SUSPENDED
# - python -m flask accounts post --account-id 1 --direction CREDIT --amount-cents 10000 --description "Payment" --payment-method CASH
# - python -m flask accounts statement --account-id 1 --start 2026-01-01 --end 2026-01-31
#
# Invoices:
# - python -m flask invoices issue --account-id 1 --voucher-class B --point-of-sale 1 --line TSHIRT-M-BLK:2
# - python -m flask invoices void 5 --reason "Returned"
# - python -m flask invoices repair 5
# - python -m flask invoices show 5
#
# Ledger checks:
# - python -m flask ledger reconcile
#   Replay every stock and account journal and report mismatches.

import json
from datetime import date

import click
from flask.cli import with_appcontext

from .errors import InvoicingError
from .extensions import db, fiscal
from .models import Account, StockKeepingUnit
from .services import account_service, inventory_service, invoice_service
from .services.voucher_service import INVOICE_TYPES, invoice_type_code
from .time_utils import to_utc_z


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _fail(exc: InvoicingError):
    raise click.ClickException(f"{exc.kind}: {exc.message}\n{json.dumps(exc.details, indent=2, default=str)}")


def _parse_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise click.BadParameter(f"invalid date {value!r}, expected YYYY-MM-DD")


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including authorized invoices!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('fiscal')
def fiscal_group():
    """Fiscal authority diagnostics."""


@fiscal_group.command('ticket')
@with_appcontext
def fiscal_ticket():
    """Obtain (or reuse) the authentication ticket."""
    try:
        ticket = fiscal.client.ensure_ticket()
    except InvoicingError as e:
        _fail(e)
    click.echo(f"PASS Ticket valid until {to_utc_z(ticket.valid_until)}")


@fiscal_group.command('last-voucher')
@click.option('--point-of-sale', type=int, required=True)
@click.option('--voucher-class', type=click.Choice(sorted(INVOICE_TYPES)), required=True)
@with_appcontext
def fiscal_last_voucher(point_of_sale, voucher_class):
    """Show the last authorized voucher number."""
    voucher_type = invoice_type_code(voucher_class)
    try:
        last = fiscal.client.get_last_voucher_number(point_of_sale, voucher_type)
    except InvoicingError as e:
        _fail(e)
    click.echo(f"{voucher_class} {point_of_sale:05d}: last authorized number {last}")


@click.group('inventory')
def inventory_group():
    """SKU and stock commands."""


@inventory_group.command('create-sku')
@click.option('--sku', required=True)
@click.option('--price-cents', type=int, required=True)
@click.option('--stock', type=int, default=0, show_default=True)
@click.option('--size')
@click.option('--color')
@click.option('--description')
@click.option('--product-id', type=int)
@with_appcontext
def create_sku(sku, price_cents, stock, size, color, description, product_id):
    """Create a SKU with its initial stock."""
    try:
        unit = inventory_service.create_sku(
            sku=sku,
            unit_price_cents=price_cents,
            initial_stock=stock,
            product_id=product_id,
            size=size,
            color=color,
            description=description,
        )
    except InvoicingError as e:
        _fail(e)
    click.echo(f"PASS Created SKU {unit.sku} (ID: {unit.id}) stock={unit.stock_quantity}")


@inventory_group.command('adjust')
@click.option('--sku', required=True)
@click.option('--delta', type=int, required=True, help='Signed quantity change')
@click.option('--description')
@click.option('--reference')
@with_appcontext
def adjust(sku, delta, description, reference):
    """Apply a manual stock adjustment."""
    try:
        unit = inventory_service.get_sku_by_code(sku)
        movement = inventory_service.adjust_stock(
            sku_id=unit.id,
            quantity_delta=delta,
            description=description or "Manual adjustment",
            document_reference=reference,
        )
    except InvoicingError as e:
        _fail(e)
    click.echo(f"PASS {sku.upper()} {movement.direction} {movement.quantity} -> stock {movement.stock_after}")


@click.group('accounts')
def accounts_group():
    """Current account commands."""


@accounts_group.command('create')
@click.option('--name', required=True)
@click.option('--document-type', required=True)
@click.option('--document-number', required=True)
@click.option('--kind', type=click.Choice(['CUSTOMER', 'SUPPLIER']), default='CUSTOMER', show_default=True)
@click.option('--credit-limit-cents', type=int, default=0, show_default=True)
@click.option('--email')
@click.option('--phone')
@click.option('--address')
@with_appcontext
def create_account(name, document_type, document_number, kind, credit_limit_cents, email, phone, address):
    """Open a customer or supplier account."""
    try:
        account = account_service.create_account(
            name=name,
            document_type=document_type,
            document_number=document_number,
            kind=kind,
            credit_limit_cents=credit_limit_cents,
            email=email,
            phone=phone,
            address=address,
        )
    except InvoicingError as e:
        _fail(e)
    click.echo(f"PASS Created account {account.name} (ID: {account.id})")


@accounts_group.command('update')
@click.option('--account-id', type=int, required=True)
@click.option('--name')
@click.option('--credit-limit-cents', type=int)
@click.option('--status', type=click.Choice(list(account_service.ACCOUNT_STATUSES)))
@click.option('--email')
@click.option('--phone')
@click.option('--address')
@click.option('--notes')
@with_appcontext
def update_account(account_id, name, credit_limit_cents, status, email, phone, address, notes):
    """Change holder data, credit limit or status."""
    try:
        account = account_service.update_account(
            account_id,
            name=name,
            credit_limit_cents=credit_limit_cents,
            status=status,
            email=email,
            phone=phone,
            address=address,
            notes=notes,
        )
    except InvoicingError as e:
        _fail(e)
    click.echo(
        f"PASS Updated account {account.name} (ID: {account.id}) "
        f"status={account.status} credit_limit={account.credit_limit_cents}"
    )


@accounts_group.command('post')
@click.option('--account-id', type=int, required=True)
@click.option('--direction', type=click.Choice(['DEBIT', 'CREDIT']), required=True)
@click.option('--amount-cents', type=int, required=True)
@click.option('--description', required=True)
@click.option('--payment-method')
@click.option('--reference-number')
@with_appcontext
def post(account_id, direction, amount_cents, description, payment_method, reference_number):
    """Post a manual debit or credit."""
    try:
        txn = account_service.post_transaction(
            account_id=account_id,
            direction=direction,
            amount_cents=amount_cents,
            description=description,
            payment_method=payment_method,
            reference_number=reference_number,
        )
    except InvoicingError as e:
        _fail(e)
    click.echo(f"PASS {txn.direction} {txn.amount_cents} -> balance {txn.balance_after_cents}")


@accounts_group.command('statement')
@click.option('--account-id', type=int, required=True)
@click.option('--start', help='YYYY-MM-DD (inclusive)')
@click.option('--end', help='YYYY-MM-DD (inclusive)')
@with_appcontext
def statement(account_id, start, end):
    """Print an account statement as JSON."""
    try:
        data = account_service.account_statement(account_id, _parse_date(start), _parse_date(end))
    except InvoicingError as e:
        _fail(e)
    _echo_json(data)


@click.group('invoices')
def invoices_group():
    """Invoice issuance, void and repair."""


def _parse_line(value: str) -> dict:
    # SKU:QTY or SKU:QTY:PRICE_CENTS
    parts = value.split(":")
    if len(parts) not in (2, 3):
        raise click.BadParameter(f"invalid line {value!r}, expected SKU:QTY[:PRICE_CENTS]")
    try:
        line = {"sku": parts[0], "quantity": int(parts[1])}
        if len(parts) == 3:
            line["unit_price_cents"] = int(parts[2])
    except ValueError:
        raise click.BadParameter(f"invalid line {value!r}, quantity and price must be integers")
    return line


@invoices_group.command('issue')
@click.option('--account-id', type=int, required=True)
@click.option('--voucher-class', type=click.Choice(sorted(INVOICE_TYPES)), required=True)
@click.option('--point-of-sale', type=int, required=True)
@click.option('--line', 'raw_lines', multiple=True, required=True, help='SKU:QTY[:PRICE_CENTS], repeatable')
@with_appcontext
def issue(account_id, voucher_class, point_of_sale, raw_lines):
    """Issue and authorize an invoice."""
    try:
        lines = []
        for raw in raw_lines:
            parsed = _parse_line(raw)
            unit = inventory_service.get_sku_by_code(parsed.pop("sku"))
            lines.append({"sku_id": unit.id, **parsed})
        invoice = invoice_service.issue_invoice(
            account_id=account_id,
            voucher_class=voucher_class,
            point_of_sale=point_of_sale,
            lines=lines,
        )
    except InvoicingError as e:
        _fail(e)
    click.echo(
        f"PASS Invoice {invoice.id} {invoice.display_number} "
        f"code={invoice.authorization_code} total={invoice.total_cents}"
    )


@invoices_group.command('void')
@click.argument('invoice_id', type=int)
@click.option('--reason')
@with_appcontext
def void(invoice_id, reason):
    """Void an invoice with a credit note."""
    try:
        invoice = invoice_service.void_invoice(invoice_id, reason=reason)
    except InvoicingError as e:
        _fail(e)
    click.echo(f"PASS Invoice {invoice.id} voided (credit note {invoice.credit_note_number})")


@invoices_group.command('repair')
@click.argument('invoice_id', type=int)
@with_appcontext
def repair(invoice_id):
    """Re-apply stock/account effects recorded as inconsistent."""
    try:
        invoice = invoice_service.repair_side_effects(invoice_id)
    except InvoicingError as e:
        _fail(e)
    click.echo(f"PASS Invoice {invoice.id} side effects now {invoice.side_effects_status}")


@invoices_group.command('show')
@click.argument('invoice_id', type=int)
@with_appcontext
def show(invoice_id):
    """Print an invoice with lines and events as JSON."""
    try:
        invoice = invoice_service.get_invoice(invoice_id)
    except InvoicingError as e:
        _fail(e)
    _echo_json(invoice.to_dict(include_lines=True, include_events=True))


@click.group('ledger')
def ledger_group():
    """Journal consistency checks."""


@ledger_group.command('reconcile')
@with_appcontext
def reconcile():
    """Replay every stock and account journal."""
    problems = 0

    for unit in db.session.query(StockKeepingUnit).order_by(StockKeepingUnit.id).all():
        result = inventory_service.verify_stock_ledger(unit.id)
        if not result["consistent"]:
            problems += 1
            click.echo(
                f"FAIL SKU {unit.sku}: stock={result['stock_quantity']} "
                f"replayed={result['replayed_quantity']}"
            )

    for account in db.session.query(Account).order_by(Account.id).all():
        result = account_service.verify_account_ledger(account.id)
        if not result["consistent"]:
            problems += 1
            click.echo(
                f"FAIL Account {account.id}: balance={result['balance_cents']} "
                f"replayed={result['replayed_balance_cents']}"
            )

    if problems:
        raise click.ClickException(f"{problems} journal(s) out of balance")
    click.echo("PASS All journals reconcile.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(fiscal_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(accounts_group)
    app.cli.add_command(invoices_group)
    app.cli.add_command(ledger_group)
