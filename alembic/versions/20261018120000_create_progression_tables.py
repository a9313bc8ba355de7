"""create progression engine tables

Revision ID: 20261018120000
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261018120000'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Users, ledger, projection cache, catalog, quest/badge state, jobs, voting."""
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(), nullable=False),
        sa.Column('job_class', sa.String(length=64), nullable=False, server_default='apprentice'),
        sa.Column('level', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('total_xp', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('hp', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('mp', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stat_coding', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stat_debugging', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stat_design', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stat_communication', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unspent_stat_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('applied_sequence', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_username', 'users', ['username'], unique=True)

    op.create_table(
        'skill_progress',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('skill', sa.String(length=128), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('xp', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'skill', name='uq_user_skill'),
    )
    op.create_index('ix_skill_progress_id', 'skill_progress', ['id'])
    op.create_index('ix_skill_progress_user_id', 'skill_progress', ['user_id'])

    op.create_table(
        'progression_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('idempotency_key', sa.String(length=255), nullable=False),
        sa.Column('source', sa.String(length=32), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('recorded_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'sequence', name='uq_event_user_sequence'),
        sa.UniqueConstraint('user_id', 'idempotency_key', name='uq_event_user_key'),
    )
    op.create_index('ix_progression_events_id', 'progression_events', ['id'])
    op.create_index('ix_progression_events_user_id', 'progression_events', ['user_id'])

    op.create_table(
        'player_status_cache',
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), primary_key=True),
        sa.Column('last_sequence', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('config_fingerprint', sa.String(length=32), nullable=False),
        sa.Column('state_json', sa.Text(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'quests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('category', sa.String(length=16), nullable=False, server_default='side'),
        sa.Column('xp_reward', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('skill_rewards', sa.JSON(), nullable=False),
        sa.Column('tags', sa.JSON(), nullable=False),
        sa.Column('min_level', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('requires_quest', sa.String(length=128), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_quests_id', 'quests', ['id'])
    op.create_index('ix_quests_key', 'quests', ['key'], unique=True)

    op.create_table(
        'quest_instances',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('quest_id', sa.Integer(), sa.ForeignKey('quests.id'), nullable=False),
        sa.Column('period', sa.String(length=16), nullable=False),
        sa.Column('state', sa.String(length=16), nullable=False, server_default='offered'),
        sa.Column('offered_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('claim_key', sa.String(length=255), nullable=True),
        sa.Column('claim_sequence', sa.Integer(), nullable=True),
        sa.UniqueConstraint('user_id', 'quest_id', 'period', name='uq_quest_instance_period'),
    )
    op.create_index('ix_quest_instances_id', 'quest_instances', ['id'])
    op.create_index('ix_quest_instances_user_id', 'quest_instances', ['user_id'])

    op.create_table(
        'badges',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('key', sa.String(length=64), nullable=False),
        sa.Column('label', sa.String(length=255), nullable=False),
        sa.Column('icon', sa.String(length=16), nullable=False, server_default=''),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('predicate', sa.JSON(), nullable=False),
        sa.Column('xp_bonus', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_badges_id', 'badges', ['id'])
    op.create_index('ix_badges_key', 'badges', ['key'], unique=True)

    op.create_table(
        'badge_awards',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('badge_id', sa.Integer(), sa.ForeignKey('badges.id'), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('earned_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'badge_id', name='uq_user_badge'),
    )
    op.create_index('ix_badge_awards_id', 'badge_awards', ['id'])
    op.create_index('ix_badge_awards_user_id', 'badge_awards', ['user_id'])

    op.create_table(
        'analysis_jobs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('content_hash', sa.String(length=128), nullable=True),
        sa.Column('sequence', sa.Integer(), nullable=True),
        sa.Column('accepted', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_analysis_jobs_id', 'analysis_jobs', ['id'])
    op.create_index('ix_analysis_jobs_user_id', 'analysis_jobs', ['user_id'])

    op.create_table(
        'roadmap_proposals',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('author_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('roadmap', sa.String(length=128), nullable=False, server_default=''),
        sa.Column('yes_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('no_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('net', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('state', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_roadmap_proposals_id', 'roadmap_proposals', ['id'])
    op.create_index('ix_roadmap_proposals_author_id', 'roadmap_proposals', ['author_id'])

    op.create_table(
        'votes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('proposal_id', sa.Integer(), sa.ForeignKey('roadmap_proposals.id'), nullable=False),
        sa.Column('direction', sa.String(length=8), nullable=False),
        sa.Column('eligible', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'proposal_id', name='uq_vote_user_proposal'),
    )
    op.create_index('ix_votes_id', 'votes', ['id'])
    op.create_index('ix_votes_user_id', 'votes', ['user_id'])
    op.create_index('ix_votes_proposal_id', 'votes', ['proposal_id'])


def downgrade() -> None:
    """Drop everything in reverse dependency order."""
    for table in (
        'votes',
        'roadmap_proposals',
        'analysis_jobs',
        'badge_awards',
        'badges',
        'quest_instances',
        'quests',
        'player_status_cache',
        'progression_events',
        'skill_progress',
        'users',
    ):
        op.drop_table(table)
