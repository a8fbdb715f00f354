"""Baseline migration - tenants, people, follow-ups, reminders and messaging

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19

Creates every table used by the follow-up scheduler, including the unique
constraints that make reminder logging and quota counting race-safe.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Create all follow-up tables."""

    # ==========================================================================
    # Organizations
    # ==========================================================================
    op.create_table(
        'organizations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False, unique=True),
        sa.Column('plan', sa.String(30), server_default=sa.text("'free'"), nullable=False),
        *_timestamps(),
    )

    # ==========================================================================
    # People (converts, new members, members)
    # ==========================================================================
    op.create_table(
        'people',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'organization_id',
            sa.Uuid(),
            sa.ForeignKey('organizations.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('first_name', sa.String(255), nullable=False),
        sa.Column('last_name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('status', sa.String(30), server_default=sa.text("'NEW'"), nullable=False),
        sa.Column('follow_up_stage', sa.String(30), nullable=True),
        sa.Column('stage_changed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('idx_people_org_kind', 'people', ['organization_id', 'kind'])
    op.create_index('idx_people_kind_status', 'people', ['kind', 'status', 'created_at'])
    op.create_index('idx_people_kind_stage', 'people', ['kind', 'follow_up_stage', 'stage_changed_at'])

    # ==========================================================================
    # Follow-up records (checkins)
    # ==========================================================================
    op.create_table(
        'followup_records',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'organization_id',
            sa.Uuid(),
            sa.ForeignKey('organizations.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'person_id',
            sa.Uuid(),
            sa.ForeignKey('people.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('checkin_date', sa.Date(), nullable=False),
        sa.Column('outcome', sa.String(30), nullable=False),
        sa.Column('next_followup_date', sa.Date(), nullable=True),
        sa.Column('next_followup_time', sa.Time(), nullable=True),
        sa.Column('video_link', sa.String(500), nullable=True),
        sa.Column('notification_method', sa.String(10), server_default=sa.text("'email'"), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('custom_reminder_subject', sa.String(255), nullable=True),
        sa.Column('custom_reminder_message', sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index('idx_followups_person', 'followup_records', ['person_id', 'checkin_date'])
    op.create_index('idx_followups_outcome_next', 'followup_records', ['outcome', 'next_followup_date'])
    op.create_index('idx_followups_next_date', 'followup_records', ['next_followup_date'])

    # ==========================================================================
    # Reminder log (one row per delivered reminder)
    # ==========================================================================
    op.create_table(
        'reminder_sent_log',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'followup_record_id',
            sa.Uuid(),
            sa.ForeignKey('followup_records.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('reminder_type', sa.String(30), nullable=False),
        sa.Column('sent_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint(
            'followup_record_id',
            'reminder_type',
            name='uq_reminder_sent_log_record_type',
        ),
    )

    # ==========================================================================
    # SMS/MMS usage counters
    # ==========================================================================
    op.create_table(
        'message_usage',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'organization_id',
            sa.Uuid(),
            sa.ForeignKey('organizations.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('billing_period', sa.String(7), nullable=False),
        sa.Column('channel', sa.String(10), nullable=False),
        sa.Column('count', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint(
            'organization_id',
            'billing_period',
            'channel',
            name='uq_message_usage_org_period_channel',
        ),
    )

    # ==========================================================================
    # Scheduled announcements
    # ==========================================================================
    op.create_table(
        'scheduled_announcements',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'organization_id',
            sa.Uuid(),
            sa.ForeignKey('organizations.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('subject', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('recipient_groups', sa.JSON(), nullable=False),
        sa.Column('notification_method', sa.String(10), server_default=sa.text("'email'"), nullable=False),
        sa.Column('sms_message', sa.Text(), nullable=True),
        sa.Column('mms_media_url', sa.String(500), nullable=True),
        sa.Column('image_url', sa.String(500), nullable=True),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(20), server_default=sa.text("'PENDING'"), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('idx_announcements_status_due', 'scheduled_announcements', ['status', 'scheduled_at'])


def downgrade() -> None:
    """Drop all follow-up tables."""
    op.drop_table('scheduled_announcements')
    op.drop_table('message_usage')
    op.drop_table('reminder_sent_log')
    op.drop_table('followup_records')
    op.drop_table('people')
    op.drop_table('organizations')
