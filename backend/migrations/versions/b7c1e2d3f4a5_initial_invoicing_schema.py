"""initial invoicing schema

Revision ID: b7c1e2d3f4a5
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the invoicing core schema from scratch:
- stock_keeping_units / stock_movements: stock and its append-only journal
- accounts / account_transactions: current accounts and their journal
- invoices / invoice_lines / invoice_events: authorized documents and audit trail

Optimistic locking: stock_keeping_units, accounts and invoices carry
version_id (mapper version_id_col).
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b7c1e2d3f4a5'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # stock_keeping_units: sellable variants with materialized stock
    # ============================================================================
    op.create_table(
        'stock_keeping_units',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('size', sa.String(length=32), nullable=True),
        sa.Column('color', sa.String(length=64), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('stock_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('stock_quantity >= 0', name='ck_skus_stock_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', name='uq_skus_sku'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_skus_product', 'stock_keeping_units', ['product_id'])

    # ============================================================================
    # stock_movements: append-only stock journal
    # ============================================================================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku_id', sa.Integer(), nullable=False),
        sa.Column('direction', sa.String(length=8), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('stock_after', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('document_reference', sa.String(length=64), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('quantity > 0', name='ck_stock_movements_quantity_positive'),
        sa.ForeignKeyConstraint(['sku_id'], ['stock_keeping_units.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_sku_id', 'stock_movements', ['sku_id'])
    op.create_index('ix_stock_movements_document_reference', 'stock_movements', ['document_reference'])
    op.create_index('ix_stock_movements_occurred_at', 'stock_movements', ['occurred_at'])
    op.create_index('ix_stock_movements_sku_occurred', 'stock_movements', ['sku_id', 'occurred_at'])

    # ============================================================================
    # accounts: customer / supplier current accounts
    # ============================================================================
    op.create_table(
        'accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('document_type', sa.String(length=16), nullable=False),
        sa.Column('document_number', sa.String(length=32), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('kind', sa.String(length=16), nullable=False, server_default='CUSTOMER'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ACTIVE'),
        sa.Column('credit_limit_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_transaction_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_type', 'document_number', name='uq_accounts_document'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_accounts_status', 'accounts', ['status'])
    op.create_index('ix_accounts_kind_status', 'accounts', ['kind', 'status'])

    # ============================================================================
    # invoices: fiscally authorized documents
    # ============================================================================
    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('voucher_class', sa.String(length=2), nullable=False),
        sa.Column('voucher_type', sa.Integer(), nullable=False),
        sa.Column('point_of_sale', sa.Integer(), nullable=False),
        sa.Column('voucher_number', sa.Integer(), nullable=True),
        sa.Column('authorization_code', sa.String(length=32), nullable=True),
        sa.Column('authorization_expires_on', sa.Date(), nullable=True),
        sa.Column('issued_on', sa.Date(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('buyer_name', sa.String(length=255), nullable=False),
        sa.Column('buyer_document_type', sa.String(length=16), nullable=False),
        sa.Column('buyer_document_number', sa.String(length=32), nullable=False),
        sa.Column('buyer_address', sa.String(length=255), nullable=True),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('tax_rate_bps', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('side_effects_status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('credit_note_type', sa.Integer(), nullable=True),
        sa.Column('credit_note_number', sa.Integer(), nullable=True),
        sa.Column('credit_note_authorization_code', sa.String(length=32), nullable=True),
        sa.Column('credit_note_authorization_expires_on', sa.Date(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('voided_by_user_id', sa.Integer(), nullable=True),
        sa.Column('voided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('void_reason', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('point_of_sale', 'voucher_type', 'voucher_number',
                            name='uq_invoices_pos_type_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoices_account_id', 'invoices', ['account_id'])
    op.create_index('ix_invoices_status', 'invoices', ['status'])
    op.create_index('ix_invoices_side_effects_status', 'invoices', ['side_effects_status'])
    op.create_index('ix_invoices_status_created', 'invoices', ['status', 'created_at'])

    op.create_table(
        'invoice_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('sku_id', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('tax_cents', sa.Integer(), nullable=False),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_invoice_lines_quantity_positive'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
        sa.ForeignKeyConstraint(['sku_id'], ['stock_keeping_units.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoice_lines_invoice_id', 'invoice_lines', ['invoice_id'])
    op.create_index('ix_invoice_lines_sku_id', 'invoice_lines', ['sku_id'])

    op.create_table(
        'invoice_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoice_events_invoice_id', 'invoice_events', ['invoice_id'])
    op.create_index('ix_invoice_events_event_type', 'invoice_events', ['event_type'])
    op.create_index('ix_invoice_events_occurred_at', 'invoice_events', ['occurred_at'])
    op.create_index('ix_invoice_events_invoice_occurred', 'invoice_events', ['invoice_id', 'occurred_at'])

    # ============================================================================
    # account_transactions: append-only account journal
    # ============================================================================
    op.create_table(
        'account_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('direction', sa.String(length=8), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('balance_after_cents', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('reference_number', sa.String(length=64), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('amount_cents > 0', name='ck_account_txns_amount_positive'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_account_transactions_account_id', 'account_transactions', ['account_id'])
    op.create_index('ix_account_transactions_direction', 'account_transactions', ['direction'])
    op.create_index('ix_account_transactions_invoice_id', 'account_transactions', ['invoice_id'])
    op.create_index('ix_account_transactions_occurred_at', 'account_transactions', ['occurred_at'])
    op.create_index('ix_account_txns_account_occurred', 'account_transactions', ['account_id', 'occurred_at'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('account_transactions')
    op.drop_table('invoice_events')
    op.drop_table('invoice_lines')
    op.drop_table('invoices')
    op.drop_table('accounts')
    op.drop_table('stock_movements')
    op.drop_table('stock_keeping_units')
