"""Baseline schema for MAILDECK

Revision ID: 001
Revises:
Create Date: 2026-09-02

Legacy databases already have these tables and are stamped at this revision
instead of running it.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Settings table (key/value, includes db_schema_version)
    op.create_table(
        'settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(128), nullable=False),
        sa.Column('value', sa.Text(), nullable=False, server_default=''),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('key')
    )
    op.create_index('ix_settings_key', 'settings', ['key'])

    # Namespaces table (tree)
    op.create_table(
        'namespaces',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('parent_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['parent_id'], ['namespaces.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_namespaces_parent_id', 'namespaces', ['parent_id'])

    # Users table
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False, server_default=''),
        sa.Column('role', sa.String(64), nullable=False, server_default='nobody'),
        sa.Column('namespace_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['namespace_id'], ['namespaces.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username')
    )
    op.create_index('ix_users_username', 'users', ['username'])

    # Shares table
    op.create_table(
        'shares',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entity_type', sa.String(32), nullable=False),  # namespace, list, campaign
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(64), nullable=False),
        sa.Column('auto', sa.Boolean(), nullable=False, server_default='false'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('entity_type', 'entity_id', 'user_id', name='uq_shares_entity_user')
    )
    op.create_index('ix_shares_user', 'shares', ['user_id'])

    # Reports table
    op.create_table(
        'reports',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('namespace_id', sa.Integer(), nullable=True),
        sa.Column('state', sa.String(32), nullable=False, server_default='scheduled'),
        sa.Column('last_run', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['namespace_id'], ['namespaces.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_reports_state', 'reports', ['state'])


def downgrade() -> None:
    op.drop_table('reports')
    op.drop_table('shares')
    op.drop_table('users')
    op.drop_table('namespaces')
    op.drop_table('settings')
