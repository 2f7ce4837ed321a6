"""add purchases and transactions

Revision ID: 2026_10_01_0001
Revises: 2026_10_01_0000
Create Date: 2026-10-01 09:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_01_0001'
down_revision: Union[str, None] = '2026_10_01_0000'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PURCHASE_TABLES = (
    'research_paper_purchases',
    'visa_application_purchases',
    'counselling_purchases',
)


def _purchase_columns() -> list:
    """Columns shared by every purchase table."""
    return [
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(30), nullable=True),
        sa.Column('currency', sa.String(3), nullable=False, server_default='INR'),
        sa.Column('actual_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('final_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('amount_paid', sa.Numeric(12, 2), nullable=True),
        sa.Column('payment_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('payment_id', sa.String(255), nullable=True),
        sa.Column('payment_method', sa.String(50), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='initiated'),
        sa.Column('case_status', sa.String(10), nullable=False, server_default='open'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    ]


def _purchase_constraints(table: str) -> list:
    return [
        sa.CheckConstraint('final_amount > 0', name=f'ck_{table}_final_amount_positive'),
        sa.CheckConstraint(
            "payment_status IN ('pending', 'completed', 'failed', 'cancelled')",
            name=f'ck_{table}_payment_status',
        ),
        sa.CheckConstraint(
            "status IN ('initiated', 'in_progress', 'scheduled', 'completed', 'cancelled')",
            name=f'ck_{table}_status',
        ),
        sa.CheckConstraint("case_status IN ('open', 'closed')", name=f'ck_{table}_case_status'),
    ]


def upgrade() -> None:
    """Create the three purchase tables and the transactions table."""

    # ========================================================================
    # Purchase tables
    # ========================================================================
    op.create_table(
        'research_paper_purchases',
        *_purchase_columns(),
        sa.Column('co_authors', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('research_group', sa.String(255), nullable=True),
        sa.Column('duration_weeks', sa.Integer(), nullable=True),
        *_purchase_constraints('research_paper_purchases'),
    )

    op.create_table(
        'visa_application_purchases',
        *_purchase_columns(),
        sa.Column('country', sa.String(100), nullable=False),
        sa.Column('dependents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('mocks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('duration_months', sa.Integer(), nullable=True),
        *_purchase_constraints('visa_application_purchases'),
    )

    op.create_table(
        'counselling_purchases',
        *_purchase_columns(),
        sa.Column('service_name', sa.String(255), nullable=False),
        sa.Column('counsellor_name', sa.String(255), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('preferred_date', sa.DateTime(timezone=True), nullable=True),
        *_purchase_constraints('counselling_purchases'),
    )

    for table in PURCHASE_TABLES:
        op.create_index(f'idx_{table}_user_created', table, ['user_id', 'created_at'])

    # ========================================================================
    # Create transactions table
    # ========================================================================
    op.create_table(
        'transactions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('service_type', sa.String(30), nullable=False),
        sa.Column('service_id', UUID(as_uuid=True), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('payment_gateway', sa.String(30), nullable=False, server_default='stripe'),
        sa.Column('stripe_session_id', sa.String(255), nullable=False),
        sa.Column('stripe_payment_intent_id', sa.String(255), nullable=True),
        sa.Column('payment_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('payment_method', sa.String(50), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('amount > 0', name='ck_transactions_amount_positive'),
        sa.CheckConstraint(
            "payment_status IN ('pending', 'completed', 'failed', 'cancelled')",
            name='ck_transactions_payment_status',
        ),
        sa.CheckConstraint(
            "service_type IN ('research_paper', 'visa_application', 'counselling')",
            name='ck_transactions_service_type',
        ),
        sa.UniqueConstraint('stripe_session_id', name='uq_transactions_stripe_session_id'),
    )

    op.create_index('idx_transactions_user_created', 'transactions', ['user_id', 'created_at'])
    op.create_index('idx_transactions_service', 'transactions', ['service_type', 'service_id'])
    op.create_index('idx_transactions_payment_status', 'transactions', ['payment_status'])


def downgrade() -> None:
    op.drop_table('transactions')
    for table in reversed(PURCHASE_TABLES):
        op.drop_table(table)
