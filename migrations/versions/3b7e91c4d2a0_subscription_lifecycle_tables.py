"""subscription lifecycle tables

Revision ID: 3b7e91c4d2a0
Revises:
Create Date: 2026-10-19 10:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '3b7e91c4d2a0'
down_revision = None
branch_labels = None
depends_on = None

OPEN_STATUS_SQL = "status IN ('pending', 'active', 'past_due')"


def upgrade():
    op.create_table(
        'products',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('payment_type', sa.String(length=32), nullable=False, server_default=sa.text("'one_time'")),
        sa.Column('delivery_method', sa.String(length=32), nullable=True),
        sa.Column('image_url', sa.String(length=1024), nullable=True),
        sa.Column('price', sa.Numeric(12, 2), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_products_user_id', 'products', ['user_id'])

    op.create_table(
        'profiles',
        sa.Column('user_id', sa.String(length=64), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_profiles_email', 'profiles', ['email'])

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default=sa.text("'pending'")),
        sa.Column('plan_interval', sa.String(length=16), nullable=False, server_default=sa.text("'monthly'")),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default=sa.text("'BRL'")),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column('canceled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('external_subscription_id', sa.String(length=100), nullable=True),
        sa.Column('external_customer_id', sa.String(length=100), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete="RESTRICT"),
    )
    op.create_index('ix_subscriptions_user_id', 'subscriptions', ['user_id'])
    op.create_index('ix_subscriptions_product_id', 'subscriptions', ['product_id'])
    op.create_index('ix_subscriptions_status', 'subscriptions', ['status'])
    op.create_index('ix_subscriptions_current_period_end', 'subscriptions', ['current_period_end'])
    op.create_index('ix_subscriptions_external_subscription_id', 'subscriptions', ['external_subscription_id'])
    op.create_index(
        'uq_subscriptions_open_per_user_product', 'subscriptions', ['user_id', 'product_id'],
        unique=True,
        postgresql_where=sa.text(OPEN_STATUS_SQL),
        sqlite_where=sa.text(OPEN_STATUS_SQL),
    )

    op.create_table(
        'students',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('seller_user_id', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default=sa.text("'active'")),
        sa.Column('enrolled_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete="CASCADE"),
        sa.UniqueConstraint('email', 'product_id', name='uq_students_email_product'),
    )
    op.create_index('ix_students_email', 'students', ['email'])
    op.create_index('ix_students_product_id', 'students', ['product_id'])

    op.create_table(
        'enrollments',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('student_id', sa.String(length=36), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('sale_id', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default=sa.text("'active'")),
        sa.Column('enrolled_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('access_revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoke_reason', sa.String(length=255), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['student_id'], ['students.id'], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete="CASCADE"),
    )
    op.create_index('ix_enrollments_student_id', 'enrollments', ['student_id'])
    op.create_index('ix_enrollments_product_id', 'enrollments', ['product_id'])
    op.create_index('ix_enrollments_sale_id', 'enrollments', ['sale_id'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False, server_default=sa.text("'info'")),
        sa.Column('link', sa.String(length=512), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])

    op.create_table(
        'effect_failure_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('kind', sa.String(length=40), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('subscription_id', sa.String(length=36), nullable=True),
        sa.Column('error', sa.String(length=255), nullable=True),
        sa.Column('retries', sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_effect_failure_logs_kind', 'effect_failure_logs', ['kind'])
    op.create_index('ix_effect_failure_logs_subscription_id', 'effect_failure_logs', ['subscription_id'])


def downgrade():
    op.drop_index('ix_effect_failure_logs_subscription_id', table_name='effect_failure_logs')
    op.drop_index('ix_effect_failure_logs_kind', table_name='effect_failure_logs')
    op.drop_table('effect_failure_logs')

    op.drop_index('ix_notifications_user_id', table_name='notifications')
    op.drop_table('notifications')

    op.drop_index('ix_enrollments_sale_id', table_name='enrollments')
    op.drop_index('ix_enrollments_product_id', table_name='enrollments')
    op.drop_index('ix_enrollments_student_id', table_name='enrollments')
    op.drop_table('enrollments')

    op.drop_index('ix_students_product_id', table_name='students')
    op.drop_index('ix_students_email', table_name='students')
    op.drop_table('students')

    op.drop_index('uq_subscriptions_open_per_user_product', table_name='subscriptions')
    op.drop_index('ix_subscriptions_external_subscription_id', table_name='subscriptions')
    op.drop_index('ix_subscriptions_current_period_end', table_name='subscriptions')
    op.drop_index('ix_subscriptions_status', table_name='subscriptions')
    op.drop_index('ix_subscriptions_product_id', table_name='subscriptions')
    op.drop_index('ix_subscriptions_user_id', table_name='subscriptions')
    op.drop_table('subscriptions')

    op.drop_index('ix_profiles_email', table_name='profiles')
    op.drop_table('profiles')

    op.drop_index('ix_products_user_id', table_name='products')
    op.drop_table('products')
