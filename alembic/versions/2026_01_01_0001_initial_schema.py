"""
Initial ShelfSync schema: stores, label entities, sync queue and audit log
"""

from alembic import op
import sqlalchemy as sa

# Revision identifiers
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def _sync_columns():
    return [
        sa.Column('sync_status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('last_synced_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    ]


def upgrade():
    """Create the ShelfSync tables."""
    op.create_table(
        'stores',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('name', sa.String(200), nullable=True),
        sa.Column('company_code', sa.String(50), nullable=True),
        sa.Column('sync_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_aims_sync_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_stores_code', 'stores', ['code'])

    op.create_table(
        'spaces',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('store_id', sa.String(36), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('external_id', sa.String(100), nullable=True),
        sa.Column('label_code', sa.String(100), nullable=True),
        sa.Column('data', sa.JSON(), nullable=True),
        *_sync_columns(),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'people',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('store_id', sa.String(36), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('external_id', sa.String(100), nullable=True),
        sa.Column('virtual_space_id', sa.String(100), nullable=True),
        sa.Column('assigned_space_id', sa.String(100), nullable=True),
        sa.Column('data', sa.JSON(), nullable=True),
        *_sync_columns(),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'conference_rooms',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('store_id', sa.String(36), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('external_id', sa.String(100), nullable=True),
        sa.Column('room_name', sa.String(200), nullable=True),
        sa.Column('has_meeting', sa.Boolean(), nullable=True),
        sa.Column('meeting_name', sa.String(200), nullable=True),
        sa.Column('start_time', sa.String(20), nullable=True),
        sa.Column('end_time', sa.String(20), nullable=True),
        sa.Column('participants', sa.JSON(), nullable=True),
        *_sync_columns(),
        sa.PrimaryKeyConstraint('id')
    )

    for table in ('spaces', 'people', 'conference_rooms'):
        op.create_index(f'ix_{table}_store_id', table, ['store_id'])
        op.create_index(f'ix_{table}_external_id', table, ['external_id'])

    op.create_table(
        'sync_queue_items',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('store_id', sa.String(36), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('entity_type', sa.String(20), nullable=False),
        sa.Column('entity_id', sa.String(36), nullable=False),
        sa.Column('action', sa.String(20), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('scheduled_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_sync_queue_items_store_id', 'sync_queue_items', ['store_id'])
    op.create_index('ix_sync_queue_items_status', 'sync_queue_items', ['status'])
    op.create_index('idx_sync_queue_due', 'sync_queue_items', ['status', 'scheduled_at'])
    op.create_index('idx_sync_queue_entity', 'sync_queue_items', ['store_id', 'entity_type', 'entity_id'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('store_id', sa.String(36), nullable=True),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('entity_type', sa.String(20), nullable=True),
        sa.Column('entity_id', sa.String(36), nullable=True),
        sa.Column('new_data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_audit_logs_store_id', 'audit_logs', ['store_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])


def downgrade():
    """Drop the ShelfSync tables."""
    op.drop_table('audit_logs')
    op.drop_table('sync_queue_items')
    op.drop_table('conference_rooms')
    op.drop_table('people')
    op.drop_table('spaces')
    op.drop_table('stores')
