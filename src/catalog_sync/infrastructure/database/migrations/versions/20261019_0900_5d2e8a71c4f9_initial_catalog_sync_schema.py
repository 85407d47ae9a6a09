"""Initial catalog sync schema

Revision ID: 5d2e8a71c4f9
Revises:
Create Date: 2026-10-19 09:00:00.000000+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '5d2e8a71c4f9'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Enums are stored as plain strings (native_enum=False)
    enum_type = sa.String(length=20)

    # Create sync_queue table
    op.create_table('sync_queue',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('batch_id', sa.String(length=64), nullable=False),
    sa.Column('product_slug', sa.String(length=255), nullable=False),
    sa.Column('product_id', sa.String(length=64), nullable=True),
    sa.Column('category_slug', sa.String(length=255), nullable=True),
    sa.Column('status', enum_type, nullable=False),
    sa.Column('result_message', sa.Text(), nullable=True),
    sa.Column('attempts', sa.Integer(), nullable=False),
    sa.Column('claimed_at', sa.DateTime(), nullable=True),
    sa.Column('claim_token', sa.String(length=64), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.Column('completed_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_sync_queue_batch_status', 'sync_queue', ['batch_id', 'status'], unique=False)
    op.create_index('ix_sync_queue_slug', 'sync_queue', ['product_slug'], unique=False)
    op.create_index('ix_sync_queue_created', 'sync_queue', ['created_at'], unique=False)

    # Create sync_activity_log table
    op.create_table('sync_activity_log',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('log_type', enum_type, nullable=False),
    sa.Column('action', enum_type, nullable=False),
    sa.Column('identifier', sa.String(length=255), nullable=True),
    sa.Column('message', sa.Text(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_sync_activity_log_type_action', 'sync_activity_log', ['log_type', 'action'], unique=False)
    op.create_index('ix_sync_activity_log_created', 'sync_activity_log', ['created_at'], unique=False)

    # Create sync_state table
    op.create_table('sync_state',
    sa.Column('key', sa.String(length=191), nullable=False),
    sa.Column('value', sa.JSON(), nullable=True),
    sa.Column('expires_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('key')
    )

    # Create background_tasks table
    op.create_table('background_tasks',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('queue_name', sa.String(length=64), nullable=False),
    sa.Column('batch_id', sa.String(length=64), nullable=True),
    sa.Column('payload', sa.Text(), nullable=False),
    sa.Column('enqueued_at', sa.DateTime(), nullable=False),
    sa.Column('claimed_at', sa.DateTime(), nullable=True),
    sa.Column('claim_token', sa.String(length=64), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_background_tasks_queue_order', 'background_tasks', ['queue_name', 'enqueued_at', 'id'], unique=False)

    # Create scheduled_actions table
    op.create_table('scheduled_actions',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('hook', sa.String(length=128), nullable=False),
    sa.Column('run_at', sa.DateTime(), nullable=False),
    sa.Column('interval_seconds', sa.Integer(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_scheduled_actions_hook'), 'scheduled_actions', ['hook'], unique=False)

    # Create catalog_categories table
    op.create_table('catalog_categories',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('slug', sa.String(length=255), nullable=False),
    sa.Column('description', sa.Text(), nullable=False),
    sa.Column('parent_id', sa.Integer(), nullable=True),
    sa.Column('remote_id', sa.String(length=64), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['parent_id'], ['catalog_categories.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('slug')
    )
    op.create_index(op.f('ix_catalog_categories_remote_id'), 'catalog_categories', ['remote_id'], unique=False)

    # Create catalog_media table
    op.create_table('catalog_media',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('original_url', sa.String(length=1024), nullable=False),
    sa.Column('file_path', sa.String(length=1024), nullable=False),
    sa.Column('url', sa.String(length=1024), nullable=False),
    sa.Column('mime_type', sa.String(length=100), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('original_url')
    )

    # Create catalog_entries table
    op.create_table('catalog_entries',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('slug', sa.String(length=255), nullable=False),
    sa.Column('title', sa.String(length=500), nullable=False),
    sa.Column('description', sa.Text(), nullable=False),
    sa.Column('status', enum_type, nullable=False),
    sa.Column('image_id', sa.Integer(), nullable=True),
    sa.Column('gallery_ids', sa.JSON(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.ForeignKeyConstraint(['image_id'], ['catalog_media.id'], ondelete='SET NULL'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('slug')
    )

    # Create catalog_entry_categories association table
    op.create_table('catalog_entry_categories',
    sa.Column('entry_id', sa.Integer(), nullable=False),
    sa.Column('category_id', sa.Integer(), nullable=False),
    sa.ForeignKeyConstraint(['category_id'], ['catalog_categories.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['entry_id'], ['catalog_entries.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('entry_id', 'category_id')
    )

    # Create catalog_entry_meta table
    op.create_table('catalog_entry_meta',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('entry_id', sa.Integer(), nullable=False),
    sa.Column('meta_key', sa.String(length=191), nullable=False),
    sa.Column('meta_value', sa.Text(), nullable=True),
    sa.ForeignKeyConstraint(['entry_id'], ['catalog_entries.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('entry_id', 'meta_key', name='uq_catalog_entry_meta_key')
    )
    op.create_index('ix_catalog_entry_meta_key_value', 'catalog_entry_meta', ['meta_key'], unique=False)

    # Create product_snapshots table
    op.create_table('product_snapshots',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('remote_id', sa.String(length=64), nullable=True),
    sa.Column('slug', sa.String(length=255), nullable=False),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('description', sa.Text(), nullable=False),
    sa.Column('first_categories', sa.JSON(), nullable=True),
    sa.Column('snapshot_data', sa.JSON(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.Column('updated_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_product_snapshots_remote_id'), 'product_snapshots', ['remote_id'], unique=False)
    op.create_index(op.f('ix_product_snapshots_slug'), 'product_snapshots', ['slug'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_product_snapshots_slug'), table_name='product_snapshots')
    op.drop_index(op.f('ix_product_snapshots_remote_id'), table_name='product_snapshots')
    op.drop_table('product_snapshots')
    op.drop_index('ix_catalog_entry_meta_key_value', table_name='catalog_entry_meta')
    op.drop_table('catalog_entry_meta')
    op.drop_table('catalog_entry_categories')
    op.drop_table('catalog_entries')
    op.drop_table('catalog_media')
    op.drop_index(op.f('ix_catalog_categories_remote_id'), table_name='catalog_categories')
    op.drop_table('catalog_categories')
    op.drop_index(op.f('ix_scheduled_actions_hook'), table_name='scheduled_actions')
    op.drop_table('scheduled_actions')
    op.drop_index('ix_background_tasks_queue_order', table_name='background_tasks')
    op.drop_table('background_tasks')
    op.drop_table('sync_state')
    op.drop_index('ix_sync_activity_log_created', table_name='sync_activity_log')
    op.drop_index('ix_sync_activity_log_type_action', table_name='sync_activity_log')
    op.drop_table('sync_activity_log')
    op.drop_index('ix_sync_queue_created', table_name='sync_queue')
    op.drop_index('ix_sync_queue_slug', table_name='sync_queue')
    op.drop_index('ix_sync_queue_batch_status', table_name='sync_queue')
    op.drop_table('sync_queue')
