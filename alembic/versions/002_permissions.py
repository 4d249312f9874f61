"""Derived authorization tables

Revision ID: 002
Revises: 001
Create Date: 2026-09-02

Both tables are rebuilt from the role table and shares at every start.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '002'
down_revision: Union[str, None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'generated_role_names',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entity_type', sa.String(32), nullable=False),
        sa.Column('role', sa.String(64), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('entity_type', 'role', name='uq_generated_role_names')
    )

    op.create_table(
        'permissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entity_type', sa.String(32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('operation', sa.String(64), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('entity_type', 'entity_id', 'user_id', 'operation', name='uq_permissions')
    )
    # Lookup path: "which entities of this type can this user see"
    op.create_index('ix_permissions_lookup', 'permissions', ['entity_type', 'user_id'])


def downgrade() -> None:
    op.drop_index('ix_permissions_lookup', table_name='permissions')
    op.drop_table('permissions')
    op.drop_table('generated_role_names')
