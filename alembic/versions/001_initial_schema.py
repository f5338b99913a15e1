"""Initial schema

Revision ID: 001
Revises:
Create Date: 2025-01-15 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create call_sessions table
    op.create_table(
        'call_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('call_id', sa.String(), nullable=False),
        sa.Column('org_id', sa.String(), nullable=False),
        sa.Column('direction', sa.String(), nullable=False),
        sa.Column('from_number', sa.String(), nullable=True),
        sa.Column('to_number', sa.String(), nullable=True),
        sa.Column('agent_user_id', sa.String(), nullable=True),
        sa.Column('crm_portal_id', sa.String(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('answered_at', sa.DateTime(), nullable=True),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
        sa.Column('recording_url', sa.Text(), nullable=True),
        sa.Column('recording_status', sa.String(), nullable=False),
        sa.Column('recording_storage_path', sa.String(), nullable=True),
        sa.Column('transcription_status', sa.String(), nullable=False),
        sa.Column('transcription_job_id', sa.String(), nullable=True),
        sa.Column('transcript', sa.Text(), nullable=True),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('sentiment', sa.String(), nullable=True),
        sa.Column('insights', sa.JSON(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('consent_status', sa.String(), nullable=False),
        sa.Column('crm_contact_id', sa.String(), nullable=True),
        sa.Column('crm_deal_id', sa.String(), nullable=True),
        sa.Column('crm_note_id', sa.String(), nullable=True),
        sa.Column('crm_call_object_id', sa.String(), nullable=True),
        sa.Column('crm_engagement_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_call_sessions_id'), 'call_sessions', ['id'], unique=False)
    op.create_index(op.f('ix_call_sessions_call_id'), 'call_sessions', ['call_id'], unique=True)
    op.create_index(op.f('ix_call_sessions_org_id'), 'call_sessions', ['org_id'], unique=False)

    # Create jobs table
    op.create_table(
        'jobs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('job_type', sa.String(), nullable=False),
        sa.Column('call_id', sa.String(), nullable=False),
        sa.Column('org_id', sa.String(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.Column('scheduled_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_jobs_id'), 'jobs', ['id'], unique=False)
    op.create_index(op.f('ix_jobs_job_type'), 'jobs', ['job_type'], unique=False)
    op.create_index(op.f('ix_jobs_call_id'), 'jobs', ['call_id'], unique=False)
    op.create_index(op.f('ix_jobs_status'), 'jobs', ['status'], unique=False)
    op.create_index(op.f('ix_jobs_scheduled_at'), 'jobs', ['scheduled_at'], unique=False)

    # Create consent_requests table
    op.create_table(
        'consent_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('call_id', sa.String(), nullable=False),
        sa.Column('agent_user_id', sa.String(), nullable=False),
        sa.Column('slack_user_id', sa.String(), nullable=False),
        sa.Column('slack_channel_id', sa.String(), nullable=True),
        sa.Column('slack_message_ts', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('sent_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('reminder_sent_at', sa.DateTime(), nullable=True),
        sa.Column('responded_at', sa.DateTime(), nullable=True),
        sa.Column('response_source', sa.String(), nullable=True),
        sa.Column('response_metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_consent_requests_id'), 'consent_requests', ['id'], unique=False)
    op.create_index(op.f('ix_consent_requests_call_id'), 'consent_requests', ['call_id'], unique=False)
    op.create_index(op.f('ix_consent_requests_status'), 'consent_requests', ['status'], unique=False)

    # Create org_configs table
    op.create_table(
        'org_configs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.String(), nullable=False),
        sa.Column('crm_portal_id', sa.String(), nullable=True),
        sa.Column('webhook_secret', sa.String(), nullable=True),
        sa.Column('access_token', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_org_configs_id'), 'org_configs', ['id'], unique=False)
    op.create_index(op.f('ix_org_configs_org_id'), 'org_configs', ['org_id'], unique=True)

    # Create agent_api_keys table
    op.create_table(
        'agent_api_keys',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('agent_user_id', sa.String(), nullable=False),
        sa.Column('api_key', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_agent_api_keys_id'), 'agent_api_keys', ['id'], unique=False)
    op.create_index(op.f('ix_agent_api_keys_agent_user_id'), 'agent_api_keys', ['agent_user_id'], unique=True)

    # Create agent_slack_mappings table
    op.create_table(
        'agent_slack_mappings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('agent_user_id', sa.String(), nullable=False),
        sa.Column('slack_user_id', sa.String(), nullable=False),
        sa.Column('slack_display_name', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_agent_slack_mappings_id'), 'agent_slack_mappings', ['id'], unique=False)
    op.create_index(
        op.f('ix_agent_slack_mappings_agent_user_id'), 'agent_slack_mappings', ['agent_user_id'], unique=True
    )

    # Create blocked_numbers table
    op.create_table(
        'blocked_numbers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('phone_number', sa.String(), nullable=False),
        sa.Column('reason', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_blocked_numbers_id'), 'blocked_numbers', ['id'], unique=False)
    op.create_index(op.f('ix_blocked_numbers_phone_number'), 'blocked_numbers', ['phone_number'], unique=True)

    # Create settings table
    op.create_table(
        'settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(), nullable=False),
        sa.Column('value', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_settings_id'), 'settings', ['id'], unique=False)
    op.create_index(op.f('ix_settings_key'), 'settings', ['key'], unique=True)

    # Create webhook_logs table
    op.create_table(
        'webhook_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('call_id', sa.String(), nullable=True),
        sa.Column('org_id', sa.String(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('source_ip', sa.String(), nullable=True),
        sa.Column('processed', sa.Boolean(), nullable=False),
        sa.Column('skip_reason', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_webhook_logs_id'), 'webhook_logs', ['id'], unique=False)
    op.create_index(op.f('ix_webhook_logs_call_id'), 'webhook_logs', ['call_id'], unique=False)

    # Create crm_webhook_events table
    op.create_table(
        'crm_webhook_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.String(), nullable=True),
        sa.Column('portal_id', sa.String(), nullable=True),
        sa.Column('object_type', sa.String(), nullable=False),
        sa.Column('object_id', sa.String(), nullable=False),
        sa.Column('change_type', sa.String(), nullable=False),
        sa.Column('subscription_type', sa.String(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_crm_webhook_events_id'), 'crm_webhook_events', ['id'], unique=False)
    op.create_index(op.f('ix_crm_webhook_events_event_id'), 'crm_webhook_events', ['event_id'], unique=False)


def downgrade() -> None:
    op.drop_table('crm_webhook_events')
    op.drop_table('webhook_logs')
    op.drop_table('settings')
    op.drop_table('blocked_numbers')
    op.drop_table('agent_slack_mappings')
    op.drop_table('agent_api_keys')
    op.drop_table('org_configs')
    op.drop_table('consent_requests')
    op.drop_table('jobs')
    op.drop_table('call_sessions')
