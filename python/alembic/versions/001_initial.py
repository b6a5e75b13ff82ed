"""Initial schema - Baseline migration

Revision ID: 001_initial
Revises:
Create Date: 2024-12-01 00:00:00.000000

This is the baseline migration that creates all tables for the postcode
hierarchy service. It corresponds to the schema defined in database/models.py.
For existing databases, use `alembic stamp 001_initial` to mark as applied.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade() -> None:
    """Create initial database schema."""

    # Hierarchy tables
    op.create_table(
        'countries',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False),
        sa.Column('iso', sa.String(3), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('name', name='uq_countries_name'),
        sa.UniqueConstraint('slug', name='uq_countries_slug'),
    )

    op.create_table(
        'counties',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False),
        sa.Column('code', sa.String(9), nullable=False),
        sa.Column('country_id', sa.Integer(), sa.ForeignKey('countries.id'), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('slug', 'country_id', name='uq_county_slug_country'),
    )

    op.create_table(
        'districts',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('slug', sa.String(200), nullable=False),
        sa.Column('code', sa.String(9), nullable=False),
        sa.Column('county_id', sa.Integer(), sa.ForeignKey('counties.id'), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('slug', 'county_id', name='uq_district_slug_county'),
    )

    op.create_table(
        'wards',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('slug', sa.String(200), nullable=False),
        sa.Column('code', sa.String(9), nullable=False),
        sa.Column('district_id', sa.Integer(), sa.ForeignKey('districts.id'), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('slug', 'district_id', name='uq_ward_slug_district'),
    )

    # Decomposed postcode tables
    op.create_table(
        'outcodes',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('code', sa.String(4), nullable=False),
        sa.UniqueConstraint('code', name='uq_outcodes_code'),
    )

    op.create_table(
        'incodes',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('code', sa.String(3), nullable=False),
        sa.UniqueConstraint('code', name='uq_incodes_code'),
    )

    op.create_table(
        'postcodes',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('outcode_id', sa.Integer(), sa.ForeignKey('outcodes.id'), nullable=False),
        sa.Column('incode_id', sa.Integer(), sa.ForeignKey('incodes.id'), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('ward_id', sa.Integer(), sa.ForeignKey('wards.id'), nullable=False),
        sa.UniqueConstraint('outcode_id', 'incode_id', name='uq_postcode_outcode_incode'),
    )
    op.create_index('ix_postcodes_outcode_id', 'postcodes', ['outcode_id'])
    op.create_index('ix_postcodes_ward_id', 'postcodes', ['ward_id'])


def downgrade() -> None:
    """Drop all tables."""
    # Drop tables in reverse order
    op.drop_index('ix_postcodes_ward_id', table_name='postcodes')
    op.drop_index('ix_postcodes_outcode_id', table_name='postcodes')
    op.drop_table('postcodes')
    op.drop_table('incodes')
    op.drop_table('outcodes')
    op.drop_table('wards')
    op.drop_table('districts')
    op.drop_table('counties')
    op.drop_table('countries')
