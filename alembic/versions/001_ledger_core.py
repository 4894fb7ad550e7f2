"""Ledger core: chart of accounts, journal, business transactions

Revision ID: 001_ledger_core
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = '001_ledger_core'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENUMS = {
    'accounttype': ('ASSET', 'LIABILITY', 'EQUITY', 'INCOME', 'EXPENSE'),
    'normalbalance': ('DEBIT', 'CREDIT'),
    'sourcemodule': ('MANUAL', 'EXPENSE', 'BILL', 'INVOICE', 'PAYMENT', 'REVERSAL', 'IMPORT'),
    'journalstatus': ('DRAFT', 'POSTED', 'REVERSED'),
    'transactionkind': ('EXPENSE', 'BILL', 'INVOICE'),
    'transactionstatus': ('DRAFT', 'POSTED', 'PARTIAL', 'PAID', 'CANCELLED'),
    'paymentmode': ('CASH', 'ONLINE', 'CREDIT'),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    # Create enums (with IF NOT EXISTS check)
    for name, values in ENUMS.items():
        labels = ", ".join(f"'{value}'" for value in values)
        op.execute(
            f"DO $$ BEGIN CREATE TYPE {name} AS ENUM ({labels}); "
            f"EXCEPTION WHEN duplicate_object THEN null; END $$;"
        )

    # Chart of Accounts
    op.create_table(
        'chart_of_accounts',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('account_type', _enum('accounttype'), nullable=False),
        sa.Column('normal_balance', _enum('normalbalance'), nullable=False),
        sa.Column('parent_code', sa.String(50), nullable=True),
        sa.Column('level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('opening_balance', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('current_balance', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('is_cash', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('is_system', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', 'code', name='uq_chart_of_accounts_org_code'),
    )
    op.create_index('idx_chart_of_accounts_org_parent', 'chart_of_accounts', ['organization_id', 'parent_code'])

    # Journal Entries
    op.create_table(
        'journal_entries',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('reference', sa.String(100), nullable=True),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('source_module', _enum('sourcemodule'), nullable=False, server_default='MANUAL'),
        sa.Column('source_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('status', _enum('journalstatus'), nullable=False, server_default='DRAFT'),
        sa.Column('reversal_of_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('posted_at', sa.DateTime(), nullable=True),
        sa.Column('idempotency_key', sa.String(100), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['reversal_of_id'], ['journal_entries.id']),
        sa.UniqueConstraint('reversal_of_id'),
        sa.UniqueConstraint('organization_id', 'idempotency_key', name='uq_journal_entries_idempotency'),
    )
    op.create_index('idx_journal_entries_org_date', 'journal_entries', ['organization_id', 'date'])

    # Journal Lines
    op.create_table(
        'journal_lines',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('journal_entry_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('line_no', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('account_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('narration', sa.String(500), nullable=True),
        sa.Column('debit', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('credit', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['journal_entry_id'], ['journal_entries.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['account_id'], ['chart_of_accounts.id']),
        sa.CheckConstraint('debit >= 0', name='check_debit_non_negative'),
        sa.CheckConstraint('credit >= 0', name='check_credit_non_negative'),
    )
    op.create_index('idx_journal_lines_account', 'journal_lines', ['account_id'])

    # Business Transactions
    op.create_table(
        'business_transactions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('kind', _enum('transactionkind'), nullable=False),
        sa.Column('reference', sa.String(100), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('contact_id', sa.String(100), nullable=False),
        sa.Column('status', _enum('transactionstatus'), nullable=False, server_default='DRAFT'),
        sa.Column('payment_mode', _enum('paymentmode'), nullable=False, server_default='CREDIT'),
        sa.Column('total_amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('taxable_amount', sa.Numeric(18, 2), nullable=True),
        sa.Column('tax_amount', sa.Numeric(18, 2), nullable=True),
        sa.Column('total_paid', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('account_code', sa.String(50), nullable=True),
        sa.Column('offset_account_code', sa.String(50), nullable=True),
        sa.Column('narration', sa.String(500), nullable=True),
        sa.Column('journal_entry_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('offset_account_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['journal_entry_id'], ['journal_entries.id']),
        sa.ForeignKeyConstraint(['offset_account_id'], ['chart_of_accounts.id']),
        sa.UniqueConstraint('journal_entry_id'),
        sa.CheckConstraint('total_amount >= 0', name='check_total_non_negative'),
        sa.CheckConstraint('total_paid <= total_amount', name='check_paid_within_total'),
    )
    op.create_index('idx_business_transactions_org_kind', 'business_transactions', ['organization_id', 'kind', 'status'])

    # Transaction Items
    op.create_table(
        'transaction_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('transaction_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('line_no', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('account_code', sa.String(50), nullable=True),
        sa.Column('amount', sa.Numeric(18, 2), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['transaction_id'], ['business_transactions.id'], ondelete='CASCADE'),
        sa.CheckConstraint('amount >= 0', name='check_item_amount_non_negative'),
    )

    # Payment Applications
    op.create_table(
        'payment_applications',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('transaction_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('mode', _enum('paymentmode'), nullable=False),
        sa.Column('reference', sa.String(100), nullable=True),
        sa.Column('notes', sa.String(500), nullable=True),
        sa.Column('journal_entry_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('idempotency_key', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['transaction_id'], ['business_transactions.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['journal_entry_id'], ['journal_entries.id']),
        sa.CheckConstraint('amount > 0', name='check_payment_amount_positive'),
        sa.UniqueConstraint('transaction_id', 'idempotency_key', name='uq_payment_idempotency'),
    )


def downgrade() -> None:
    op.drop_table('payment_applications')
    op.drop_table('transaction_items')
    op.drop_index('idx_business_transactions_org_kind', table_name='business_transactions')
    op.drop_table('business_transactions')
    op.drop_index('idx_journal_lines_account', table_name='journal_lines')
    op.drop_table('journal_lines')
    op.drop_index('idx_journal_entries_org_date', table_name='journal_entries')
    op.drop_table('journal_entries')
    op.drop_index('idx_chart_of_accounts_org_parent', table_name='chart_of_accounts')
    op.drop_table('chart_of_accounts')

    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
