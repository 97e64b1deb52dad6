"""create users, song pool, lobbies and multiplayer game tables

Revision ID: 5c7e9a1d2b3f
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c7e9a1d2b3f'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=256), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_user_email'), 'user', ['email'], unique=True)

    op.create_table(
        'song_pool',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('artist', sa.String(length=255), nullable=False),
        sa.Column('album_cover', sa.String(length=512), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'lobby',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('owner_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('max_players', sa.Integer(), nullable=False),
        sa.Column('song_count', sa.Integer(), nullable=False),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.Column('active_game_id', sa.String(length=32), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['owner_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'lobby_player',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('lobby_id', sa.String(length=32), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('ready', sa.Boolean(), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['lobby_id'], ['lobby.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('lobby_id', 'user_id', name='uq_lobby_player_user'),
    )
    op.create_index(op.f('ix_lobby_player_lobby_id'), 'lobby_player', ['lobby_id'], unique=False)
    op.create_index(op.f('ix_lobby_player_user_id'), 'lobby_player', ['user_id'], unique=False)

    op.create_table(
        'game',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('lobby_id', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_game_lobby_id'), 'game', ['lobby_id'], unique=False)

    op.create_table(
        'target_song',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('game_id', sa.String(length=32), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('artist', sa.String(length=255), nullable=False),
        sa.Column('album_cover', sa.String(length=512), nullable=True),
        sa.Column('preview_url', sa.String(length=512), nullable=False),
        sa.ForeignKeyConstraint(['game_id'], ['game.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_target_song_game_id'), 'target_song', ['game_id'], unique=False)

    op.create_table(
        'player_state',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('game_id', sa.String(length=32), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('user_email', sa.String(length=255), nullable=False),
        sa.Column('current_song_index', sa.Integer(), nullable=False),
        sa.Column('current_song_attempts', sa.Integer(), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['game_id'], ['game.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_player_state_game_id'), 'player_state', ['game_id'], unique=False)

    op.create_table(
        'completed_song',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('player_state_id', sa.Integer(), nullable=False),
        sa.Column('song_index', sa.Integer(), nullable=False),
        sa.Column('correct', sa.Boolean(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['player_state_id'], ['player_state.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_completed_song_player_state_id'), 'completed_song', ['player_state_id'], unique=False)


def downgrade():
    op.drop_index(op.f('ix_completed_song_player_state_id'), table_name='completed_song')
    op.drop_table('completed_song')
    op.drop_index(op.f('ix_player_state_game_id'), table_name='player_state')
    op.drop_table('player_state')
    op.drop_index(op.f('ix_target_song_game_id'), table_name='target_song')
    op.drop_table('target_song')
    op.drop_index(op.f('ix_game_lobby_id'), table_name='game')
    op.drop_table('game')
    op.drop_index(op.f('ix_lobby_player_user_id'), table_name='lobby_player')
    op.drop_index(op.f('ix_lobby_player_lobby_id'), table_name='lobby_player')
    op.drop_table('lobby_player')
    op.drop_table('lobby')
    op.drop_table('song_pool')
    op.drop_index(op.f('ix_user_email'), table_name='user')
    op.drop_table('user')
