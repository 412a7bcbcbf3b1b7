"""Lookup store: create lookup_records and dataset_metadata tables

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create lookup_records table
    op.create_table(
        'lookup_records',
        sa.Column('record_id', sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column('level', sa.VARCHAR(20), nullable=False),
        sa.Column('key', sa.Text, nullable=False),
        sa.Column('name', sa.Text, nullable=False),
        sa.Column('identifier', sa.Text, nullable=False),
        sa.Column('lg_code', sa.VARCHAR(6)),
        sa.Column('lat', sa.Float),
        sa.Column('lon', sa.Float),
        sa.Column('scope', JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('attributes', JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('loaded_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint(
            "level IN ('pref', 'city', 'town', 'rsdtdsp_blk', 'rsdtdsp_rsdt', 'parcel')",
            name='check_lookup_level'
        ),
        sa.CheckConstraint("key <> ''", name='check_lookup_key_not_empty')
    )

    # Create indexes on lookup_records
    op.create_index('idx_lookup_records_level_key', 'lookup_records', ['level', 'key'])
    op.create_index('idx_lookup_records_lg_code', 'lookup_records', ['lg_code'])
    op.create_index('idx_lookup_records_scope', 'lookup_records', ['scope'], postgresql_using='gin')

    # Create dataset_metadata table
    op.create_table(
        'dataset_metadata',
        sa.Column('name', sa.Text, primary_key=True),
        sa.Column('checksum', sa.Text),
        sa.Column('content_length', sa.BigInteger),
        sa.Column('last_modified', sa.Text),
        sa.Column('url', sa.Text),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP'))
    )


def downgrade() -> None:
    # Drop tables in reverse order
    op.drop_table('dataset_metadata')
    op.drop_table('lookup_records')
