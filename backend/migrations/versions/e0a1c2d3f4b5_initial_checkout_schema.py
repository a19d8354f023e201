"""initial checkout schema

Revision ID: e0a1c2d3f4b5
Revises:
Create Date: 2026-05-04 00:00:00.000000

Creates the event inventory schema from scratch:
- categories / items: catalogue and the stock ledger (quantity + version)
- events / event_reservations: stock earmarked per event
- checkout_tasks / checkout_lines: checkout and check-in batches
- audit_log_entries: append-only record of every stock movement
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'e0a1c2d3f4b5'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """
    Create all tables.

    items.quantity and items.version are only ever changed together by one
    conditional UPDATE; the CHECK constraint backs the non-negative guard.
    """

    # ============================================================================
    # categories: consumable flag drives the check-in reason rule
    # ============================================================================
    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('is_consumable', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # items: stock ledger
    # ============================================================================
    op.create_table(
        'items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('quantity >= 0', name='ck_items_quantity_non_negative'),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_items_name', 'items', ['name'])
    op.create_index('ix_items_category_active', 'items', ['category_id', 'is_active'])

    # ============================================================================
    # events / event_reservations
    # ============================================================================
    op.create_table(
        'events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'event_reservations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('quantity > 0', name='ck_event_reservations_quantity_positive'),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ),
        sa.ForeignKeyConstraint(['item_id'], ['items.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id', 'item_id', name='uq_event_reservations_event_item'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_event_reservations_event_id', 'event_reservations', ['event_id'])
    op.create_index('ix_event_reservations_item_id', 'event_reservations', ['item_id'])

    # ============================================================================
    # checkout_tasks / checkout_lines
    # ============================================================================
    op.create_table(
        'checkout_tasks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('created_by_user_id', sa.String(length=64), nullable=False),
        sa.Column('cancelled_by_user_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_checkout_tasks_event_id', 'checkout_tasks', ['event_id'])
    op.create_index('ix_checkout_tasks_status', 'checkout_tasks', ['status'])
    op.create_index('ix_checkout_tasks_event_type_status', 'checkout_tasks', ['event_id', 'type', 'status'])

    op.create_table(
        'checkout_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('task_id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('reservation_id', sa.Integer(), nullable=True),
        sa.Column('source_line_id', sa.Integer(), nullable=True),
        sa.Column('original_quantity', sa.Integer(), nullable=False),
        sa.Column('actual_quantity', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('checked_by_user_id', sa.String(length=64), nullable=True),
        sa.Column('checked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('actual_quantity >= 0', name='ck_checkout_lines_actual_non_negative'),
        sa.CheckConstraint('original_quantity >= 0', name='ck_checkout_lines_original_non_negative'),
        sa.ForeignKeyConstraint(['task_id'], ['checkout_tasks.id'], ),
        sa.ForeignKeyConstraint(['item_id'], ['items.id'], ),
        sa.ForeignKeyConstraint(['reservation_id'], ['event_reservations.id'], ),
        sa.ForeignKeyConstraint(['source_line_id'], ['checkout_lines.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_checkout_lines_task_id', 'checkout_lines', ['task_id'])
    op.create_index('ix_checkout_lines_item_id', 'checkout_lines', ['item_id'])
    op.create_index('ix_checkout_lines_reservation_id', 'checkout_lines', ['reservation_id'])
    op.create_index('ix_checkout_lines_source_line_id', 'checkout_lines', ['source_line_id'])
    op.create_index('ix_checkout_lines_status', 'checkout_lines', ['status'])

    # ============================================================================
    # audit_log_entries: append-only
    # ============================================================================
    op.create_table(
        'audit_log_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('task_id', sa.Integer(), nullable=True),
        sa.Column('line_id', sa.Integer(), nullable=True),
        sa.Column('quantity_delta', sa.Integer(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['item_id'], ['items.id'], ),
        sa.ForeignKeyConstraint(['task_id'], ['checkout_tasks.id'], ),
        sa.ForeignKeyConstraint(['line_id'], ['checkout_lines.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_audit_log_entries_user_id', 'audit_log_entries', ['user_id'])
    op.create_index('ix_audit_log_entries_action', 'audit_log_entries', ['action'])
    op.create_index('ix_audit_log_entries_task_id', 'audit_log_entries', ['task_id'])
    op.create_index('ix_audit_log_entries_occurred_id', 'audit_log_entries', ['occurred_at', 'id'])
    op.create_index('ix_audit_log_entries_item_occurred', 'audit_log_entries', ['item_id', 'occurred_at'])


def downgrade():
    """Drop all tables in reverse dependency order."""
    op.drop_table('audit_log_entries')
    op.drop_table('checkout_lines')
    op.drop_table('checkout_tasks')
    op.drop_table('event_reservations')
    op.drop_table('events')
    op.drop_table('items')
    op.drop_table('categories')
