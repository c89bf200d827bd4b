"""payment reconciliation tables

Revision ID: 0001_payment_reconciliation
Revises:
Create Date: 2026-10-18
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_payment_reconciliation'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table('branches',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('created_at', sa.DateTime(), nullable=False)
    )
    op.create_index('ix_branches_is_active', 'branches', ['is_active'])

    op.create_table('users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False, unique=True),
        sa.Column('branch_id', sa.Integer(), nullable=True),
        sa.Column('is_system', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('created_at', sa.DateTime(), nullable=False)
    )
    op.create_index('ix_users_branch_id', 'users', ['branch_id'])

    op.create_table('sales',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('receipt_number', sa.String(length=64), nullable=False, unique=True),
        sa.Column('branch_id', sa.Integer(), sa.ForeignKey('branches.id'), nullable=False),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('flagged_for_verification', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('flagged_at', sa.DateTime(), nullable=True),
        sa.Column('mpesa_verification_status', sa.String(length=16), nullable=False, server_default='NOT_APPLICABLE'),
        sa.Column('mpesa_receipt_number', sa.String(length=32), nullable=True),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('verified_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('verification_method', sa.String(length=16), nullable=False, server_default='NOT_VERIFIED'),
        sa.Column('verification_notes', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False)
    )
    op.create_index('ix_sales_branch_id', 'sales', ['branch_id'])
    op.create_index('ix_sales_flagged_for_verification', 'sales', ['flagged_for_verification'])
    op.create_index('ix_sales_flagged_at', 'sales', ['flagged_at'])
    op.create_index('ix_sales_mpesa_verification_status', 'sales', ['mpesa_verification_status'])

    op.create_table('sale_payments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('sale_id', sa.Integer(), sa.ForeignKey('sales.id', ondelete='CASCADE'), nullable=False),
        sa.Column('method', sa.String(length=16), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False)
    )
    op.create_index('ix_sale_payments_sale_id', 'sale_payments', ['sale_id'])

    op.create_table('payment_transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('source', sa.String(length=8), nullable=False, server_default='STK'),
        sa.Column('merchant_request_id', sa.String(length=128), nullable=True, unique=True),
        sa.Column('checkout_request_id', sa.String(length=128), nullable=True, unique=True),
        sa.Column('phone_number', sa.String(length=20), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('account_reference', sa.String(length=64), nullable=False),
        sa.Column('transaction_desc', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('result_code', sa.String(length=16), nullable=True),
        sa.Column('result_desc', sa.String(length=255), nullable=True),
        sa.Column('mpesa_receipt_number', sa.String(length=32), nullable=True, unique=True),
        sa.Column('transaction_date', sa.String(length=20), nullable=True),
        sa.Column('branch_id', sa.Integer(), sa.ForeignKey('branches.id'), nullable=False),
        sa.Column('initiated_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('sale_id', sa.Integer(), sa.ForeignKey('sales.id'), nullable=True),
        sa.Column('raw_payload', sa.JSON(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False)
    )
    op.create_index('ix_payment_transactions_checkout_request_id', 'payment_transactions', ['checkout_request_id'])
    op.create_index('ix_payment_transactions_phone_number', 'payment_transactions', ['phone_number'])
    op.create_index('ix_payment_transactions_status', 'payment_transactions', ['status'])
    op.create_index('ix_payment_transactions_mpesa_receipt_number', 'payment_transactions', ['mpesa_receipt_number'])
    op.create_index('ix_payment_transactions_branch_id', 'payment_transactions', ['branch_id'])
    op.create_index('ix_payment_transactions_sale_id', 'payment_transactions', ['sale_id'])
    op.create_index('ix_payment_transactions_created_at', 'payment_transactions', ['created_at'])

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.String(length=64), nullable=False),
        sa.Column('old_value', sa.JSON(), nullable=True),
        sa.Column('new_value', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False)
    )
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])


def downgrade():
    op.drop_table('audit_logs')
    op.drop_table('payment_transactions')
    op.drop_table('sale_payments')
    op.drop_table('sales')
    op.drop_table('users')
    op.drop_table('branches')
