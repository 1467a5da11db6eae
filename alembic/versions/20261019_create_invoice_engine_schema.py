"""Create invoice engine schema.

Revision ID: create_invoice_engine_schema
Revises:
Create Date: 2026-10-19

Tables:
- companies, parties, items
- documents, document_items, payment_history, document_conversions
- document_sequences (per company/prefix/day counters)
- stock_adjustments (idempotency record per document line and operation)

Status-like columns are VARCHAR holding UPPERCASE values.
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'create_invoice_engine_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


MONEY = sa.Numeric(14, 2)
QUANTITY = sa.Numeric(14, 3)
RATE = sa.Numeric(5, 2)


def _timestamps(with_updated: bool = True) -> list:
    columns = [sa.Column('created_at', sa.DateTime(timezone=True), nullable=False)]
    if with_updated:
        columns.append(sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False))
    return columns


def upgrade() -> None:
    """Create all invoice engine tables."""

    op.create_table(
        'companies',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('gst_number', sa.String(15), nullable=True),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('address', sa.Text, nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        'parties',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('company_id', sa.Uuid(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('party_type', sa.String(20), nullable=False, comment='CUSTOMER, SUPPLIER, BOTH'),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('gst_number', sa.String(15), nullable=True),
        sa.Column('address', sa.Text, nullable=True),
        sa.Column('linked_company_id', sa.Uuid(), sa.ForeignKey('companies.id', ondelete='SET NULL'), nullable=True),
        sa.Column('is_auto_created', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_by', sa.String(100), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('company_id', 'phone', name='uq_parties_company_phone'),
        sa.UniqueConstraint(
            'company_id', 'party_type', 'linked_company_id',
            name='uq_parties_company_type_linked_company'
        ),
    )
    op.create_index('ix_parties_company_id', 'parties', ['company_id'])
    op.create_index('ix_parties_linked_company_id', 'parties', ['linked_company_id'])

    op.create_table(
        'items',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('company_id', sa.Uuid(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('unit', sa.String(20), nullable=False, server_default='PCS'),
        sa.Column('sale_price', MONEY, nullable=False, server_default='0'),
        sa.Column('purchase_price', MONEY, nullable=False, server_default='0'),
        sa.Column('tax_rate', RATE, nullable=False, server_default='18'),
        sa.Column('current_stock', QUANTITY, nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_items_company_id', 'items', ['company_id'])

    op.create_table(
        'documents',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('document_type', sa.String(20), nullable=False,
                  comment='SALE, SALES_ORDER, PURCHASE, PURCHASE_ORDER'),
        sa.Column('order_type', sa.String(20), nullable=True),
        sa.Column('document_number', sa.String(40), nullable=False),
        sa.Column('number_is_fallback', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('document_date', sa.Date, nullable=False),
        sa.Column('company_id', sa.Uuid(), sa.ForeignKey('companies.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('party_id', sa.Uuid(), sa.ForeignKey('parties.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('gst_enabled', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('tax_mode', sa.String(20), nullable=False, server_default='EXCLUSIVE'),
        sa.Column('notes', sa.Text, nullable=True),
        # Totals
        sa.Column('subtotal', MONEY, nullable=False, server_default='0'),
        sa.Column('total_discount', MONEY, nullable=False, server_default='0'),
        sa.Column('total_taxable_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('total_cgst', MONEY, nullable=False, server_default='0'),
        sa.Column('total_sgst', MONEY, nullable=False, server_default='0'),
        sa.Column('total_igst', MONEY, nullable=False, server_default='0'),
        sa.Column('total_tax', MONEY, nullable=False, server_default='0'),
        sa.Column('round_off_enabled', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('round_off', MONEY, nullable=False, server_default='0'),
        sa.Column('final_total', MONEY, nullable=False, server_default='0'),
        # Payment
        sa.Column('payment_method', sa.String(20), nullable=False, server_default='CASH'),
        sa.Column('payment_status', sa.String(20), nullable=False, server_default='PENDING',
                  comment='PENDING, PARTIAL, PAID, CANCELLED (OVERDUE is derived at read time)'),
        sa.Column('paid_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('pending_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('payment_date', sa.Date, nullable=True),
        sa.Column('due_date', sa.Date, nullable=True),
        sa.Column('credit_days', sa.Integer, nullable=False, server_default='0'),
        sa.Column('payment_reference', sa.String(100), nullable=True),
        # Lifecycle
        sa.Column('status', sa.String(20), nullable=False, server_default='DRAFT'),
        sa.Column('cancellation_reason', sa.Text, nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by', sa.String(100), nullable=True),
        sa.Column('is_converted', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('converted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('converted_by', sa.String(100), nullable=True),
        sa.Column('counter_order_generated', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('counter_order_id', sa.Uuid(), sa.ForeignKey('documents.id', ondelete='SET NULL'), nullable=True),
        sa.Column('counter_order_generated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('counter_order_generated_by', sa.String(100), nullable=True),
        sa.Column('generated_from_id', sa.Uuid(), sa.ForeignKey('documents.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_by', sa.String(100), nullable=False),
        sa.Column('updated_by', sa.String(100), nullable=True),
        *_timestamps(),
        sa.Column('version', sa.Integer, nullable=False),
        sa.UniqueConstraint(
            'company_id', 'document_type', 'document_number',
            name='uq_documents_company_type_number'
        ),
    )
    op.create_index('ix_documents_document_number', 'documents', ['document_number'])
    op.create_index('ix_documents_company_id', 'documents', ['company_id'])
    op.create_index('ix_documents_party_id', 'documents', ['party_id'])
    op.create_index('ix_documents_status', 'documents', ['status'])
    op.create_index(
        'ix_documents_company_type_date', 'documents',
        ['company_id', 'document_type', 'document_date']
    )
    op.create_index('ix_documents_due_date', 'documents', ['due_date'])

    op.create_table(
        'document_items',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('document_id', sa.Uuid(), sa.ForeignKey('documents.id', ondelete='CASCADE'), nullable=False),
        sa.Column('line_number', sa.Integer, nullable=False),
        sa.Column('item_id', sa.Uuid(), sa.ForeignKey('items.id', ondelete='SET NULL'), nullable=True),
        sa.Column('name', sa.String(300), nullable=False),
        sa.Column('quantity', QUANTITY, nullable=False),
        sa.Column('unit', sa.String(20), nullable=False, server_default='PCS'),
        sa.Column('price_per_unit', MONEY, nullable=False),
        sa.Column('tax_rate', RATE, nullable=False, server_default='0'),
        sa.Column('tax_mode', sa.String(20), nullable=False, server_default='EXCLUSIVE'),
        sa.Column('discount_percent', RATE, nullable=False, server_default='0'),
        sa.Column('discount_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('base_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('applied_discount', MONEY, nullable=False, server_default='0'),
        sa.Column('taxable_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('cgst_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('sgst_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('igst_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('tax_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('line_total', MONEY, nullable=False, server_default='0'),
        sa.UniqueConstraint('document_id', 'line_number', name='uq_document_items_line'),
    )
    op.create_index('ix_document_items_document_id', 'document_items', ['document_id'])

    op.create_table(
        'payment_history',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('document_id', sa.Uuid(), sa.ForeignKey('documents.id', ondelete='CASCADE'), nullable=False),
        sa.Column('entry_number', sa.Integer, nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('method', sa.String(20), nullable=False),
        sa.Column('reference', sa.String(100), nullable=True),
        sa.Column('payment_date', sa.Date, nullable=False),
        sa.Column('due_date', sa.Date, nullable=True),
        sa.Column('note', sa.String(255), nullable=True),
        sa.Column('created_by', sa.String(100), nullable=False),
        *_timestamps(with_updated=False),
        sa.UniqueConstraint('document_id', 'entry_number', name='uq_payment_history_entry'),
    )
    op.create_index('ix_payment_history_document_id', 'payment_history', ['document_id'])

    op.create_table(
        'document_conversions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('source_id', sa.Uuid(), sa.ForeignKey('documents.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('source_type', sa.String(20), nullable=False),
        sa.Column('target_id', sa.Uuid(), sa.ForeignKey('documents.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('target_type', sa.String(20), nullable=False),
        sa.Column('target_company_id', sa.Uuid(), sa.ForeignKey('companies.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('converted_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('converted_by', sa.String(100), nullable=False),
    )

    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('company_id', sa.Uuid(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('prefix', sa.String(10), nullable=False),
        sa.Column('sequence_date', sa.Date, nullable=False),
        sa.Column('current_number', sa.Integer, nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            'company_id', 'prefix', 'sequence_date',
            name='uq_document_sequences_company_prefix_date'
        ),
    )

    op.create_table(
        'stock_adjustments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('document_id', sa.Uuid(), sa.ForeignKey('documents.id', ondelete='CASCADE'), nullable=False),
        sa.Column('document_item_id', sa.Uuid(), sa.ForeignKey('document_items.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('item_id', sa.Uuid(), sa.ForeignKey('items.id', ondelete='CASCADE'), nullable=False),
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('operation', sa.String(30), nullable=False),
        sa.Column('delta', QUANTITY, nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING',
                  comment='PENDING, APPLIED, FALLBACK_APPLIED, FAILED, UNCONFIRMED'),
        sa.Column('channel', sa.String(10), nullable=True),
        sa.Column('new_stock', QUANTITY, nullable=True),
        sa.Column('error', sa.Text, nullable=True),
        sa.Column('created_by', sa.String(100), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('document_item_id', 'operation', name='uq_stock_adjustments_line_operation'),
    )
    op.create_index('ix_stock_adjustments_document_id', 'stock_adjustments', ['document_id'])
    op.create_index('ix_stock_adjustments_item_id', 'stock_adjustments', ['item_id'])

    print("Created invoice engine tables")


def downgrade() -> None:
    """Drop all invoice engine tables."""
    for table in (
        'stock_adjustments',
        'document_sequences',
        'document_conversions',
        'payment_history',
        'document_items',
        'documents',
        'items',
        'parties',
        'companies',
    ):
        op.drop_table(table)
