"""create scm tables

Revision ID: 3f1c2a9b7d40
Revises:
Create Date: 2026-10-17 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c2a9b7d40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users, commits, merge requests, repositories and connection sync logs."""
    op.create_table('scm_users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tool_config_id', sa.String(length=100), nullable=False),
        sa.Column('username', sa.String(length=200), nullable=False),
        sa.Column('email', sa.String(length=320), nullable=True),
        sa.Column('display_name', sa.String(length=200), nullable=True),
        sa.Column('repository_name', sa.String(length=300), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tool_config_id', 'username', name='uq_user_tool_config_username')
    )
    op.create_index('ix_scm_users_tool_config_id', 'scm_users', ['tool_config_id'])

    op.create_table('scm_commits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tool_config_id', sa.String(length=100), nullable=False),
        sa.Column('revision_id', sa.String(length=100), nullable=False),
        sa.Column('repository_name', sa.String(length=300), nullable=True),
        sa.Column('branch_name', sa.String(length=300), nullable=True),
        sa.Column('commit_message', sa.Text(), nullable=True),
        sa.Column('commit_timestamp', sa.DateTime(), nullable=True),
        sa.Column('author_id', sa.Integer(), nullable=True),
        sa.Column('author_name', sa.String(length=200), nullable=True),
        sa.Column('author_email', sa.String(length=320), nullable=True),
        sa.Column('committer_id', sa.Integer(), nullable=True),
        sa.Column('committer_name', sa.String(length=200), nullable=True),
        sa.Column('committer_email', sa.String(length=320), nullable=True),
        sa.Column('added_lines', sa.Integer(), nullable=False),
        sa.Column('removed_lines', sa.Integer(), nullable=False),
        sa.Column('files_changed', sa.Integer(), nullable=False),
        sa.Column('parent_shas', sa.JSON(), nullable=False),
        sa.Column('is_merge_commit', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['author_id'], ['scm_users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['committer_id'], ['scm_users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tool_config_id', 'revision_id', name='uq_commit_revision')
    )
    op.create_index('ix_scm_commits_tool_config_id', 'scm_commits', ['tool_config_id'])

    op.create_table('scm_merge_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tool_config_id', sa.String(length=100), nullable=False),
        sa.Column('external_id', sa.String(length=100), nullable=False),
        sa.Column('repository_name', sa.String(length=300), nullable=True),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('state', sa.Enum('OPEN', 'MERGED', 'CLOSED', 'DECLINED', name='mergerequeststate'), nullable=False),
        sa.Column('created_on', sa.DateTime(), nullable=True),
        sa.Column('updated_on', sa.DateTime(), nullable=True),
        sa.Column('merged_on', sa.DateTime(), nullable=True),
        sa.Column('closed_on', sa.DateTime(), nullable=True),
        sa.Column('from_branch', sa.String(length=300), nullable=True),
        sa.Column('to_branch', sa.String(length=300), nullable=True),
        sa.Column('author_id', sa.Integer(), nullable=True),
        sa.Column('author_username', sa.String(length=200), nullable=True),
        sa.Column('reviewer_usernames', sa.JSON(), nullable=False),
        sa.Column('added_lines', sa.Integer(), nullable=False),
        sa.Column('removed_lines', sa.Integer(), nullable=False),
        sa.Column('files_changed', sa.Integer(), nullable=False),
        sa.Column('commit_count', sa.Integer(), nullable=False),
        sa.Column('merge_request_url', sa.String(length=500), nullable=True),
        sa.Column('is_draft', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['author_id'], ['scm_users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tool_config_id', 'external_id', name='uq_merge_request_external_id')
    )
    # Open merge request refresh reads by (tool_config_id, state)
    op.create_index('ix_scm_merge_requests_tool_config_id', 'scm_merge_requests', ['tool_config_id'])
    op.create_index('ix_scm_merge_requests_state', 'scm_merge_requests', ['state'])

    op.create_table('scm_repositories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('connection_id', sa.String(length=100), nullable=False),
        sa.Column('tool_type', sa.String(length=50), nullable=True),
        sa.Column('repository_name', sa.String(length=300), nullable=False),
        sa.Column('url', sa.String(length=500), nullable=True),
        sa.Column('default_branch', sa.String(length=300), nullable=True),
        sa.Column('is_private', sa.Boolean(), nullable=False),
        sa.Column('last_updated', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('connection_id', 'repository_name', name='uq_connection_repository')
    )
    op.create_index('ix_scm_repositories_connection_id', 'scm_repositories', ['connection_id'])

    op.create_table('connection_sync_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('connection_id', sa.String(length=100), nullable=False),
        sa.Column('status', sa.Enum('IN_PROGRESS', 'SUCCESS', 'FAILED', name='syncstatus'), nullable=False),
        sa.Column('last_sync_started_at', sa.DateTime(), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(), nullable=True),
        sa.Column('repositories_found', sa.Integer(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('connection_id')
    )


def downgrade() -> None:
    """Drop all scanner tables."""
    op.drop_table('connection_sync_logs')
    op.drop_index('ix_scm_repositories_connection_id', table_name='scm_repositories')
    op.drop_table('scm_repositories')
    op.drop_index('ix_scm_merge_requests_state', table_name='scm_merge_requests')
    op.drop_index('ix_scm_merge_requests_tool_config_id', table_name='scm_merge_requests')
    op.drop_table('scm_merge_requests')
    op.drop_index('ix_scm_commits_tool_config_id', table_name='scm_commits')
    op.drop_table('scm_commits')
    op.drop_index('ix_scm_users_tool_config_id', table_name='scm_users')
    op.drop_table('scm_users')
    # Drop the enum types
    sa.Enum(name='syncstatus').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='mergerequeststate').drop(op.get_bind(), checkfirst=True)
