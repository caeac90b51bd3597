"""catalog baseline: series, seasons, episodes, links

Status columns hold the integer codes from seriesloader.db.codes
(ENUM_CODES_VERSION 1).

Revision ID: 3c1f0a7d9b21
Revises:
Create Date: 2026-10-19 14:50:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c1f0a7d9b21'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _has_table(table: str) -> bool:
    return sa.inspect(op.get_bind()).has_table(table)


def upgrade() -> None:
    """Create catalog tables (idempotent, skips tables that exist)."""

    if not _has_table('series'):
        op.create_table('series',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('name', sa.String(500), nullable=False),
            sa.Column('clean_name', sa.String(500), nullable=False),
            sa.Column('original_url', sa.String(2000), nullable=True),
            sa.Column('status', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('error_message', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False,
                       server_default=sa.text("(datetime('now'))")),
            sa.Column('updated_at', sa.DateTime(), nullable=False,
                       server_default=sa.text("(datetime('now'))")),
        )
        op.create_index('ix_series_name', 'series', ['name'])
        op.create_index('ix_series_clean_name', 'series', ['clean_name'])
        op.create_index('ix_series_status', 'series', ['status'])

    if not _has_table('seasons'):
        op.create_table('seasons',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('series_id', sa.Integer(),
                      sa.ForeignKey('series.id', ondelete='CASCADE'), nullable=False),
            sa.Column('number', sa.Integer(), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False,
                       server_default=sa.text("(datetime('now'))")),
            sa.Column('updated_at', sa.DateTime(), nullable=False,
                       server_default=sa.text("(datetime('now'))")),
            sa.UniqueConstraint('series_id', 'number', name='uq_season_per_series'),
        )
        op.create_index('ix_seasons_series_id', 'seasons', ['series_id'])

    if not _has_table('episodes'):
        op.create_table('episodes',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('season_id', sa.Integer(),
                      sa.ForeignKey('seasons.id', ondelete='CASCADE'), nullable=False),
            sa.Column('number', sa.Integer(), nullable=False),
            sa.Column('title', sa.String(500), nullable=True),
            sa.Column('original_url', sa.String(2000), nullable=True),
            sa.Column('status', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('error_message', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False,
                       server_default=sa.text("(datetime('now'))")),
            sa.Column('processed_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=False,
                       server_default=sa.text("(datetime('now'))")),
            sa.UniqueConstraint('season_id', 'number', name='uq_episode_per_season'),
        )
        op.create_index('ix_episodes_season_id', 'episodes', ['season_id'])
        op.create_index('ix_episodes_status', 'episodes', ['status'])

    if not _has_table('links'):
        op.create_table('links',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('episode_id', sa.Integer(),
                      sa.ForeignKey('episodes.id', ondelete='CASCADE'), nullable=False),
            sa.Column('url', sa.String(2000), nullable=False),
            sa.Column('host_name', sa.String(100), nullable=False),
            sa.Column('type', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('quality', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('is_valid', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('is_tested', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('found_at', sa.DateTime(), nullable=False,
                       server_default=sa.text("(datetime('now'))")),
            sa.Column('last_validated', sa.DateTime(), nullable=True),
            sa.Column('validation_error', sa.Text(), nullable=True),
            sa.Column('download_status', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('download_started', sa.DateTime(), nullable=True),
            sa.Column('download_completed', sa.DateTime(), nullable=True),
            sa.Column('download_path', sa.String(2000), nullable=True),
            sa.Column('download_error', sa.Text(), nullable=True),
            sa.UniqueConstraint('episode_id', 'url', name='uq_link_per_episode_url'),
        )
        op.create_index('ix_links_episode_id', 'links', ['episode_id'])
        op.create_index('ix_links_host_name', 'links', ['host_name'])
        op.create_index('ix_links_is_valid', 'links', ['is_valid'])
        op.create_index('ix_link_download_state', 'links', ['is_valid', 'download_status'])


def downgrade() -> None:
    """Drop catalog tables."""
    op.drop_table('links')
    op.drop_table('episodes')
    op.drop_table('seasons')
    op.drop_table('series')
