"""Initial migration - create invoices and invoice_transactions tables

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('invoice_num', sa.String(64), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='Unpaid'),
        sa.Column('total', sa.Numeric(12, 2), nullable=False),
        sa.Column('payment_method', sa.String(50), nullable=True),
        sa.Column('date_paid', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_invoices_invoice_num', 'invoices', ['invoice_num'])
    op.create_index('ix_invoices_status', 'invoices', ['status'])

    op.create_table(
        'invoice_transactions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('invoice_id', sa.Integer(), sa.ForeignKey('invoices.id'), nullable=False),
        sa.Column('trx_id', sa.String(64), nullable=False),
        sa.Column('gateway', sa.String(50), nullable=False, server_default='bkash'),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('fees', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('invoice_id', 'trx_id', name='uq_invoice_transactions_invoice_trx'),
    )
    op.create_index('ix_invoice_transactions_invoice_id', 'invoice_transactions', ['invoice_id'])
    op.create_index('ix_invoice_transactions_trx_id', 'invoice_transactions', ['trx_id'])


def downgrade() -> None:
    op.drop_index('ix_invoice_transactions_trx_id', table_name='invoice_transactions')
    op.drop_index('ix_invoice_transactions_invoice_id', table_name='invoice_transactions')
    op.drop_table('invoice_transactions')

    op.drop_index('ix_invoices_status', table_name='invoices')
    op.drop_index('ix_invoices_invoice_num', table_name='invoices')
    op.drop_table('invoices')
