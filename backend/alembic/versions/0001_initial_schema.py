"""initial schema: changes, versions, audit_log, sync_history

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('changes',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('entity_type', sa.String(length=50), nullable=False),
    sa.Column('entity_id', sa.String(length=255), nullable=False),
    sa.Column('change_type', sa.String(length=50), nullable=False),
    sa.Column('field_name', sa.String(length=100), nullable=True),
    sa.Column('source_value', sa.Text(), nullable=True),
    sa.Column('target_value', sa.Text(), nullable=True),
    sa.Column('status', sa.String(length=50), nullable=False),
    sa.Column('detected_at', sa.DateTime(), nullable=False),
    sa.Column('approved_by', sa.String(length=255), nullable=True),
    sa.Column('approved_at', sa.DateTime(), nullable=True),
    sa.Column('applied_at', sa.DateTime(), nullable=True),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.Column('metadata', sa.JSON(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_changes_status', 'changes', ['status'], unique=False)
    op.create_index('idx_changes_entity', 'changes', ['entity_type', 'entity_id'], unique=False)
    op.create_index('idx_changes_detected', 'changes', ['detected_at'], unique=False)
    op.create_index(
        'uq_changes_pending_key',
        'changes',
        ['entity_type', 'entity_id', 'change_type', sa.text("coalesce(field_name, '')")],
        unique=True,
        sqlite_where=sa.text("status = 'pending'"),
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table('versions',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('entity_type', sa.String(length=50), nullable=False),
    sa.Column('entity_id', sa.String(length=255), nullable=False),
    sa.Column('version_number', sa.Integer(), nullable=False),
    sa.Column('snapshot_data', sa.JSON(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('created_by', sa.String(length=255), nullable=True),
    sa.Column('description', sa.Text(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_versions_entity', 'versions', ['entity_type', 'entity_id'], unique=False)
    op.create_index('idx_versions_created', 'versions', [sa.text('created_at DESC')], unique=False)
    op.create_index(
        'idx_versions_unique', 'versions',
        ['entity_type', 'entity_id', 'version_number'], unique=True,
    )

    op.create_table('audit_log',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('timestamp', sa.DateTime(), nullable=False),
    sa.Column('action', sa.String(length=100), nullable=False),
    sa.Column('actor', sa.String(length=255), nullable=True),
    sa.Column('entity_type', sa.String(length=50), nullable=True),
    sa.Column('entity_id', sa.String(length=255), nullable=True),
    sa.Column('changes', sa.JSON(), nullable=True),
    sa.Column('source', sa.String(length=50), nullable=True),
    sa.Column('ip_address', sa.String(length=45), nullable=True),
    sa.Column('success', sa.Boolean(), nullable=False),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_audit_timestamp', 'audit_log', [sa.text('timestamp DESC')], unique=False)
    op.create_index('idx_audit_entity', 'audit_log', ['entity_type', 'entity_id'], unique=False)
    op.create_index('idx_audit_action', 'audit_log', ['action'], unique=False)
    op.create_index('idx_audit_actor', 'audit_log', ['actor'], unique=False)

    op.create_table('sync_history',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('cycle_id', sa.String(length=100), nullable=False),
    sa.Column('started_at', sa.DateTime(), nullable=False),
    sa.Column('completed_at', sa.DateTime(), nullable=True),
    sa.Column('duration_ms', sa.Integer(), nullable=True),
    sa.Column('status', sa.String(length=50), nullable=True),
    sa.Column('users_created', sa.Integer(), nullable=True),
    sa.Column('users_updated', sa.Integer(), nullable=True),
    sa.Column('users_deleted', sa.Integer(), nullable=True),
    sa.Column('groups_synced', sa.Integer(), nullable=True),
    sa.Column('errors', sa.Integer(), nullable=True),
    sa.Column('changes_detected', sa.Integer(), nullable=True),
    sa.Column('total_source_users', sa.Integer(), nullable=True),
    sa.Column('total_target_users', sa.Integer(), nullable=True),
    sa.Column('error_details', sa.JSON(), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('cycle_id')
    )
    op.create_index('idx_sync_history_started', 'sync_history', [sa.text('started_at DESC')], unique=False)
    op.create_index('idx_sync_history_status', 'sync_history', ['status'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('idx_sync_history_status', table_name='sync_history')
    op.drop_index('idx_sync_history_started', table_name='sync_history')
    op.drop_table('sync_history')
    op.drop_index('idx_audit_actor', table_name='audit_log')
    op.drop_index('idx_audit_action', table_name='audit_log')
    op.drop_index('idx_audit_entity', table_name='audit_log')
    op.drop_index('idx_audit_timestamp', table_name='audit_log')
    op.drop_table('audit_log')
    op.drop_index('idx_versions_unique', table_name='versions')
    op.drop_index('idx_versions_created', table_name='versions')
    op.drop_index('idx_versions_entity', table_name='versions')
    op.drop_table('versions')
    op.drop_index('uq_changes_pending_key', table_name='changes')
    op.drop_index('idx_changes_detected', table_name='changes')
    op.drop_index('idx_changes_entity', table_name='changes')
    op.drop_index('idx_changes_status', table_name='changes')
    op.drop_table('changes')
