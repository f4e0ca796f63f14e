"""create ledger tables

Revision ID: a7c2e91d4b10
Revises:
Create Date: 2026-10-19 10:12:41.318204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a7c2e91d4b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # 1. income_events
    op.create_table(
        'income_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('family_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('source', sa.String(length=255), nullable=True),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('scheduled_date', sa.Date(), nullable=False),
        sa.Column('frequency', sa.String(length=16), nullable=False, server_default='once'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='scheduled'),
        sa.Column('actual_amount', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('actual_date', sa.Date(), nullable=True),
        sa.Column('allocated_amount', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('remaining_amount', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_income_events_family_id', 'income_events', ['family_id'])
    op.create_index('ix_income_events_family_date', 'income_events', ['family_id', 'scheduled_date'])

    # 2. budget_categories
    op.create_table(
        'budget_categories',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('family_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('target_percentage', sa.Numeric(precision=5, scale=2), nullable=False, server_default='0'),
        sa.Column('color', sa.String(length=16), nullable=False, server_default='#3B82F6'),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_budget_categories_family_id', 'budget_categories', ['family_id'])

    # 3. spending_categories
    op.create_table(
        'spending_categories',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('family_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('budget_category_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.ForeignKeyConstraint(['budget_category_id'], ['budget_categories.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_spending_categories_family_id', 'spending_categories', ['family_id'])

    # 4. payments
    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('family_id', sa.Integer(), nullable=False),
        sa.Column('payee', sa.String(length=255), nullable=False),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('payment_type', sa.String(length=16), nullable=False, server_default='once'),
        sa.Column('frequency', sa.String(length=16), nullable=False, server_default='once'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='scheduled'),
        sa.Column('paid_amount', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('paid_date', sa.Date(), nullable=True),
        sa.Column('spending_category_id', sa.Integer(), nullable=True),
        sa.Column('auto_pay_enabled', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('attributed_amount', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('remaining_amount', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['spending_category_id'], ['spending_categories.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payments_family_id', 'payments', ['family_id'])
    op.create_index('ix_payments_family_due', 'payments', ['family_id', 'due_date'])

    # 5. payment_attributions
    op.create_table(
        'payment_attributions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=False),
        sa.Column('income_event_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('attribution_type', sa.String(length=16), nullable=False, server_default='manual'),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('amount > 0', name='ck_payment_attributions_amount_positive'),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['income_event_id'], ['income_events.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payment_attributions_payment_id', 'payment_attributions', ['payment_id'])
    op.create_index('ix_payment_attributions_income_event_id', 'payment_attributions', ['income_event_id'])

    # 6. budget_templates + budget_allocations
    op.create_table(
        'budget_templates',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('family_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_budget_templates_family_id', 'budget_templates', ['family_id'])

    op.create_table(
        'budget_allocations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('template_id', sa.Integer(), nullable=False),
        sa.Column('budget_category_id', sa.Integer(), nullable=False),
        sa.Column('percentage', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['template_id'], ['budget_templates.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('template_id', 'budget_category_id', name='uq_budget_allocation_template_category'),
    )
    op.create_index('ix_budget_allocations_template_id', 'budget_allocations', ['template_id'])

    # 7. income_budget_allocations
    op.create_table(
        'income_budget_allocations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('income_event_id', sa.Integer(), nullable=False),
        sa.Column('budget_category_id', sa.Integer(), nullable=False),
        sa.Column('template_id', sa.Integer(), nullable=True),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('percentage', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.ForeignKeyConstraint(['income_event_id'], ['income_events.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('income_event_id', 'budget_category_id', name='uq_income_budget_allocation'),
    )
    op.create_index('ix_income_budget_allocations_income_event_id', 'income_budget_allocations', ['income_event_id'])

    # 8. accounts
    op.create_table(
        'accounts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('family_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('account_type', sa.String(length=16), nullable=False),
        sa.Column('current_balance', sa.Numeric(precision=14, scale=2), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_accounts_family_id', 'accounts', ['family_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('accounts')
    op.drop_table('income_budget_allocations')
    op.drop_table('budget_allocations')
    op.drop_table('budget_templates')
    op.drop_table('payment_attributions')
    op.drop_table('payments')
    op.drop_table('spending_categories')
    op.drop_table('budget_categories')
    op.drop_table('income_events')
