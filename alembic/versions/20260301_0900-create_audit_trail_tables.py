"""Create audit trail tables

Revision ID: create_audit_trail_tables
Revises:
Create Date: 2026-03-01 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'create_audit_trail_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create users table
    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('role', sa.Enum('ADMIN', 'MANAGER', 'WRITER', 'USER', name='userrole'), nullable=False),

        # Profile
        sa.Column('image', sa.String(), nullable=True),
        sa.Column('profession', sa.String(), nullable=True),
        sa.Column('bio', sa.Text(), nullable=True),

        sa.Column('is_blocked', sa.Boolean(), nullable=False, server_default='false'),

        # Legacy embedded audit log
        sa.Column('audit_log', sa.JSON(), nullable=False, server_default='[]'),

        # Timestamps
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),

        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # Create tools table
    op.create_table(
        'tools',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(), nullable=True),
        sa.Column('url', sa.String(), nullable=True),
        sa.Column('price', sa.String(), nullable=True),
        sa.Column('rating', sa.Float(), nullable=False, server_default='0'),
        sa.Column('review_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_tools_slug', 'tools', ['slug'], unique=True)
    op.create_index('ix_tools_category', 'tools', ['category'])

    # Create reviews table
    op.create_table(
        'reviews',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('tool_id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=True),
        sa.Column('rating', sa.Integer(), nullable=False),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('reply', sa.Text(), nullable=True),
        sa.Column('status', sa.Enum('VISIBLE', 'HIDDEN', 'FLAGGED', name='reviewstatus'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['tool_id'], ['tools.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_reviews_tool_id', 'reviews', ['tool_id'])
    op.create_index('ix_reviews_user_id', 'reviews', ['user_id'])

    # Create blogs table
    op.create_table(
        'blogs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('author_id', sa.String(), nullable=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('excerpt', sa.Text(), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=True),
        sa.Column('status', sa.Enum(
            'DRAFT', 'PENDING_APPROVAL', 'PUBLISHED', 'REJECTED', 'UNPUBLISHED',
            name='blogstatus'
        ), nullable=False),
        sa.Column('views', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('published_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['author_id'], ['users.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_blogs_author_id', 'blogs', ['author_id'])
    op.create_index('ix_blogs_slug', 'blogs', ['slug'], unique=True)
    op.create_index('ix_blogs_status', 'blogs', ['status'])

    # Create audit_entries table (append-only, no foreign keys)
    op.create_table(
        'audit_entries',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('category', sa.String(), nullable=False),
        sa.Column('action', sa.String(), nullable=False),

        # Actor snapshot
        sa.Column('performed_by_id', sa.String(), nullable=False),
        sa.Column('performed_by_name', sa.String(), nullable=False),
        sa.Column('performed_by_role', sa.String(), nullable=False),

        # Target snapshot
        sa.Column('target_id', sa.String(), nullable=False),
        sa.Column('target_type', sa.String(), nullable=False),
        sa.Column('target_name', sa.String(), nullable=False),

        sa.Column('changes', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),

        # Request metadata
        sa.Column('ip_address', sa.String(), nullable=True),
        sa.Column('user_agent', sa.String(), nullable=True),
        sa.Column('session_id', sa.String(), nullable=True),

        sa.Column('timestamp', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),

        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_entries_category', 'audit_entries', ['category'])
    op.create_index('ix_audit_entries_action', 'audit_entries', ['action'])
    op.create_index('ix_audit_entries_performed_by_id', 'audit_entries', ['performed_by_id'])
    op.create_index('ix_audit_entries_target_id', 'audit_entries', ['target_id'])
    op.create_index('ix_audit_entries_timestamp', 'audit_entries', ['timestamp'])


def downgrade() -> None:
    # Drop audit_entries table
    op.drop_index('ix_audit_entries_timestamp', table_name='audit_entries')
    op.drop_index('ix_audit_entries_target_id', table_name='audit_entries')
    op.drop_index('ix_audit_entries_performed_by_id', table_name='audit_entries')
    op.drop_index('ix_audit_entries_action', table_name='audit_entries')
    op.drop_index('ix_audit_entries_category', table_name='audit_entries')
    op.drop_table('audit_entries')

    # Drop blogs table
    op.drop_index('ix_blogs_status', table_name='blogs')
    op.drop_index('ix_blogs_slug', table_name='blogs')
    op.drop_index('ix_blogs_author_id', table_name='blogs')
    op.drop_table('blogs')

    # Drop reviews table
    op.drop_index('ix_reviews_user_id', table_name='reviews')
    op.drop_index('ix_reviews_tool_id', table_name='reviews')
    op.drop_table('reviews')

    # Drop tools table
    op.drop_index('ix_tools_category', table_name='tools')
    op.drop_index('ix_tools_slug', table_name='tools')
    op.drop_table('tools')

    # Drop users table
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')

    # Drop enum types
    op.execute('DROP TYPE IF EXISTS blogstatus')
    op.execute('DROP TYPE IF EXISTS reviewstatus')
    op.execute('DROP TYPE IF EXISTS userrole')
