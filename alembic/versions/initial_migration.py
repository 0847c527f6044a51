"""Create files table

Revision ID: initial_migration
Revises: 
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
import sqlmodel

# revision identifiers, used by Alembic.
revision: str = 'initial_migration'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create files table
    op.create_table(
        'files',
        sa.Column('id', sqlmodel.sql.sqltypes.AutoString(length=64), nullable=False),
        sa.Column('name', sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column('tag', sqlmodel.sql.sqltypes.AutoString(length=255), nullable=True),
        sa.Column('size', sa.Integer(), nullable=False),
        sa.Column('mime_type', sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    # Latest-by-tag lookups and expiry scans
    op.create_index('ix_files_tag_created_at', 'files', ['tag', 'created_at'])
    op.create_index('ix_files_expires_at', 'files', ['expires_at'])


def downgrade() -> None:
    op.drop_index('ix_files_expires_at', table_name='files')
    op.drop_index('ix_files_tag_created_at', table_name='files')
    op.drop_table('files')
