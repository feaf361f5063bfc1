"""create round, player and host tables

Revision ID: 3c7a9d21f0b4
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c7a9d21f0b4'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'host' not in existing_tables:
        op.create_table(
            'host',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('username', sa.String(length=64), nullable=False),
            sa.Column('password_hash', sa.String(length=128), nullable=False),
        )
        op.create_index('ix_host_username', 'host', ['username'], unique=True)

    if 'player' not in existing_tables:
        op.create_table(
            'player',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('nickname', sa.String(length=12), nullable=False),
            sa.Column('team', sa.String(length=8), nullable=False),
            sa.Column('joined_at', sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index('ix_player_team', 'player', ['team'])

    if 'round' not in existing_tables:
        op.create_table(
            'round',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('phase', sa.String(length=16), nullable=False),
            sa.Column('round_start_time', sa.DateTime(timezone=True), nullable=True),
            sa.Column('winner', sa.String(length=8), nullable=True),
            sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        )
        # Seed the single canonical round row
        op.execute("INSERT INTO round (id, phase, version) VALUES (1, 'LOBBY', 0)")


def downgrade():
    op.drop_table('round')
    op.drop_index('ix_player_team', table_name='player')
    op.drop_table('player')
    op.drop_index('ix_host_username', table_name='host')
    op.drop_table('host')
