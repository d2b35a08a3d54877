"""create_drive_sync_tables

Revision ID: a1c4e7f2b9d0
Revises:
Create Date: 2026-10-18 09:00:00.000000

Initial schema for the Drive sync engine:
- drive_connections: encrypted OAuth grant per user
- credential_audit_log: one row per credential access
- sync_settings: selected mirror root per user
- sync_state: persisted crawl queue, change cursor and status
- mirror_items / mirror_folders: the mirrored catalog
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c4e7f2b9d0'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the sync engine tables."""

    # === Credentials ===
    op.create_table(
        'drive_connections',
        sa.Column('user_id', sa.String(64), primary_key=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('access_token_encrypted', sa.Text(), nullable=True),
        sa.Column('refresh_token_encrypted', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('scopes', sa.Text(), nullable=False, server_default=''),
        sa.Column('access_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )

    op.create_table(
        'credential_audit_log',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column(
            'action',
            sa.Enum('STORE', 'READ', 'REFRESH', 'STATUS', 'REVOKE', name='auditaction'),
            nullable=False,
        ),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('detail', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_credential_audit_user_created', 'credential_audit_log', ['user_id', 'created_at'])

    # === Settings and crawl state ===
    op.create_table(
        'sync_settings',
        sa.Column('user_id', sa.String(64), primary_key=True),
        sa.Column('folder_id', sa.String(128), nullable=False),
        sa.Column('folder_name', sa.String(512), nullable=True),
        sa.Column('folder_path', sa.Text(), nullable=True),
        sa.Column('downloads_enabled', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )

    op.create_table(
        'sync_state',
        sa.Column('user_id', sa.String(64), primary_key=True),
        sa.Column('root_folder_id', sa.String(128), nullable=False),
        sa.Column('pending', sa.JSON(), nullable=False),
        sa.Column('start_page_token', sa.String(255), nullable=True),
        sa.Column('crawl_page_token', sa.String(255), nullable=True),
        sa.Column(
            'status',
            sa.Enum('idle', 'indexing', 'syncing', 'error', name='syncstatus'),
            nullable=False,
            server_default='idle',
        ),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('stats', sa.JSON(), nullable=False),
        sa.Column('armed_at', sa.DateTime(), nullable=True),
        sa.Column('last_full_scan_at', sa.DateTime(), nullable=True),
        sa.Column('last_changes_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )

    # === Mirror ===
    op.create_table(
        'mirror_items',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('item_key', sa.String(128), nullable=False),
        sa.Column('name', sa.String(1024), nullable=False),
        sa.Column('mime_type', sa.String(255), nullable=True),
        sa.Column('parent_folder_id', sa.String(128), nullable=True),
        sa.Column('path', sa.Text(), nullable=True),
        sa.Column('size', sa.BigInteger(), nullable=True),
        sa.Column('md5_checksum', sa.String(64), nullable=True),
        sa.Column('created_time', sa.DateTime(), nullable=True),
        sa.Column('modified_time', sa.DateTime(), nullable=True),
        sa.Column('thumbnail_link', sa.Text(), nullable=True),
        sa.Column('web_view_link', sa.Text(), nullable=True),
        sa.Column('web_content_link', sa.Text(), nullable=True),
        sa.Column(
            'media_kind',
            sa.Enum('PHOTO', 'VIDEO', 'OTHER', name='mediakind'),
            nullable=False,
            server_default='OTHER',
        ),
        sa.Column('video_duration_ms', sa.BigInteger(), nullable=True),
        sa.Column('video_width', sa.Integer(), nullable=True),
        sa.Column('video_height', sa.Integer(), nullable=True),
        sa.Column(
            'status',
            sa.Enum('ACTIVE', 'TRASHED', 'MISSING', name='itemstatus'),
            nullable=False,
            server_default='ACTIVE',
        ),
        sa.Column('missing_since', sa.DateTime(), nullable=True),
        sa.Column('last_seen_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('user_id', 'item_key', name='uq_mirror_items_user_item'),
    )
    op.create_index('ix_mirror_items_user_status', 'mirror_items', ['user_id', 'status'])
    op.create_index('ix_mirror_items_user_parent', 'mirror_items', ['user_id', 'parent_folder_id'])

    op.create_table(
        'mirror_folders',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('folder_id', sa.String(128), nullable=False),
        sa.Column('name', sa.String(1024), nullable=False),
        sa.Column('parent_folder_id', sa.String(128), nullable=True),
        sa.Column('path', sa.Text(), nullable=True),
        sa.Column('trashed', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('user_id', 'folder_id', name='uq_mirror_folders_user_folder'),
    )


def downgrade() -> None:
    """Drop the sync engine tables."""
    op.drop_table('mirror_folders')
    op.drop_index('ix_mirror_items_user_parent', table_name='mirror_items')
    op.drop_index('ix_mirror_items_user_status', table_name='mirror_items')
    op.drop_table('mirror_items')
    op.drop_table('sync_state')
    op.drop_table('sync_settings')
    op.drop_index('ix_credential_audit_user_created', table_name='credential_audit_log')
    op.drop_table('credential_audit_log')
    op.drop_table('drive_connections')
