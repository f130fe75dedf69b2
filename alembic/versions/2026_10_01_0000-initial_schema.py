"""initial schema

Revision ID: 2026_10_01_0000
Revises:
Create Date: 2026-10-01 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_01_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create initial database schema."""

    # ========================================================================
    # Create users table
    # ========================================================================
    op.create_table(
        'users',
        sa.Column('uid', sa.String(255), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='user'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('email_verified', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('password_hash', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),

        sa.CheckConstraint("role IN ('admin', 'user')", name='ck_user_role'),
    )
    op.create_index('idx_users_email', 'users', ['email'])

    # ========================================================================
    # Create invoices table
    # ========================================================================
    op.create_table(
        'invoices',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('invoice_number', sa.String(50), nullable=False, unique=True),
        sa.Column('client_name', sa.String(255), nullable=False),
        sa.Column('client_email', sa.String(255), nullable=False),
        sa.Column('client_address', sa.Text(), nullable=True),
        sa.Column('line_items', JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('tax_rate', sa.Numeric(5, 2), nullable=False),
        sa.Column('tax_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('total', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('status', sa.String(20), nullable=False, server_default='draft'),
        sa.Column('issue_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('terms', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),

        # Constraints
        sa.CheckConstraint(
            "status IN ('draft', 'sent', 'paid', 'overdue', 'cancelled')",
            name='ck_invoice_status',
        ),
        sa.CheckConstraint('total = subtotal + tax_amount', name='ck_invoice_total'),
        sa.CheckConstraint('subtotal >= 0', name='ck_invoice_subtotal_non_negative'),
    )
    op.create_index('idx_invoices_status', 'invoices', ['status'])
    op.create_index('idx_invoices_created_at', 'invoices', ['created_at'])
    op.create_index('idx_invoices_client_email', 'invoices', ['client_email'])

    # ========================================================================
    # Create pending_payments table
    # ========================================================================
    op.create_table(
        'pending_payments',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('client_email', sa.String(255), nullable=False),
        sa.Column('client_name', sa.String(255), nullable=False),
        sa.Column('base_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('invoice_number', sa.String(50), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('stripe_session_id', sa.String(255), nullable=True),
        sa.Column('amount_paid', sa.Numeric(12, 2), nullable=True),
        sa.Column('bonus_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),

        sa.CheckConstraint('base_amount >= 0', name='ck_pending_payment_base_non_negative'),
        sa.CheckConstraint(
            "status IN ('pending', 'completed', 'expired', 'cancelled')",
            name='ck_pending_payment_status',
        ),
    )
    op.create_index('idx_pending_payments_email_status', 'pending_payments', ['client_email', 'status'])
    op.create_index('idx_pending_payments_created_at', 'pending_payments', ['created_at'])

    # ========================================================================
    # Create audit_logs table (append-only)
    # ========================================================================
    op.create_table(
        'audit_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('user_email', sa.String(255), nullable=False),
        sa.Column('action', sa.String(20), nullable=False),
        sa.Column('entity', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.String(255), nullable=False),
        sa.Column('details', JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('user_agent', sa.String(512), nullable=True),
        sa.Column('timestamp', sa.BigInteger(), nullable=False),
    )
    op.create_index('idx_audit_logs_timestamp', 'audit_logs', ['timestamp'])
    op.create_index('idx_audit_logs_entity', 'audit_logs', ['entity', 'entity_id'])
    op.create_index('idx_audit_logs_user_id', 'audit_logs', ['user_id'])

    # ========================================================================
    # Create single-use token tables
    # ========================================================================
    for table in ('password_reset_tokens', 'email_verification_tokens'):
        op.create_table(
            table,
            sa.Column('token', sa.String(64), primary_key=True),
            sa.Column('email', sa.String(255), nullable=False),
            sa.Column('user_id', sa.String(255), nullable=False),
            sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('used', sa.Boolean(), nullable=False, server_default=sa.text('false')),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        )
        op.create_index(f'idx_{table}_expires_at', table, ['expires_at'])

    # ========================================================================
    # Create leads table
    # ========================================================================
    op.create_table(
        'leads',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('company', sa.String(255), nullable=True),
        sa.Column('challenges', sa.Text(), nullable=False),
        sa.Column('contact_method', sa.String(20), nullable=False, server_default='email'),
        sa.Column('status', sa.String(20), nullable=False, server_default='new'),
        sa.Column('source', sa.String(20), nullable=False, server_default='website'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('idx_leads_created_at', 'leads', ['created_at'])
    op.create_index('idx_leads_status', 'leads', ['status'])

    # ========================================================================
    # Create resources and testimonials tables
    # ========================================================================
    op.create_table(
        'resources',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('file_url', sa.String(1024), nullable=False),
        sa.Column('download_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )

    op.create_table(
        'testimonials',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('client_name', sa.String(255), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('rating', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('is_approved', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('rating BETWEEN 1 AND 5', name='ck_testimonial_rating'),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('testimonials')
    op.drop_table('resources')
    op.drop_table('leads')
    op.drop_table('email_verification_tokens')
    op.drop_table('password_reset_tokens')
    op.drop_table('audit_logs')
    op.drop_table('pending_payments')
    op.drop_table('invoices')
    op.drop_table('users')
