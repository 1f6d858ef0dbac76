"""create user, question and battle_match tables

Revision ID: 5c2e9a7d41b0
Revises:
Create Date: 2026-10-17 00:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c2e9a7d41b0'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'user' not in existing_tables:
        op.create_table(
            'user',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('username', sa.String(length=64), nullable=False),
            sa.Column('password_hash', sa.String(length=256), nullable=False),
        )
        op.create_index('ix_user_username', 'user', ['username'], unique=True)

    if 'question' not in existing_tables:
        op.create_table(
            'question',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('category', sa.String(length=64), nullable=True),
            sa.Column('text', sa.Text(), nullable=False),
            sa.Column('options', sa.JSON(), nullable=False),
            sa.Column('correct_option', sa.Integer(), nullable=False),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        )
        op.create_index('ix_question_category', 'question', ['category'])

    if 'battle_match' not in existing_tables:
        op.create_table(
            'battle_match',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('match_id', sa.String(length=32), nullable=False),
            sa.Column('category', sa.String(length=64), nullable=True),
            sa.Column('state', sa.String(length=16), nullable=False),
            sa.Column('player_a_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
            sa.Column('player_b_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
            sa.Column('player_a_score', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('player_b_score', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('winner_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
            sa.Column('forfeit_by_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
            sa.Column('question_ids', sa.JSON(), nullable=False),
            sa.Column('created_at', sa.Float(), nullable=False),
            sa.Column('started_at', sa.Float(), nullable=True),
            sa.Column('finished_at', sa.Float(), nullable=False),
        )
        op.create_index('ix_battle_match_match_id', 'battle_match', ['match_id'], unique=True)
        op.create_index('ix_battle_match_player_a_id', 'battle_match', ['player_a_id'])
        op.create_index('ix_battle_match_player_b_id', 'battle_match', ['player_b_id'])


def downgrade():
    op.drop_table('battle_match')
    op.drop_table('question')
    op.drop_table('user')
