"""Create query workflow tables.

Revision ID: 001_query_workflow
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_query_workflow'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'query_applications',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('app_no', sa.String(64), nullable=False),
        sa.Column('customer_name', sa.String(200), nullable=False),
        sa.Column('branch', sa.String(120), nullable=False),
        sa.Column('branch_code', sa.String(20), nullable=False),
        sa.Column('send_to_sales', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('send_to_credit', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('marked_for_team', sa.String(10), nullable=False),
        sa.Column('loan_amount', sa.Numeric(14, 2), nullable=True),
        sa.Column('loan_type', sa.String(60), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('is_resolved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_by', sa.String(200), nullable=True),
        sa.Column('resolution_reason', sa.Text(), nullable=True),
        sa.Column('submitted_by', sa.String(200), nullable=False),
        sa.Column('submitted_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('last_updated', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
    )
    op.create_index('ix_query_applications_app_no', 'query_applications', ['app_no'], unique=True)
    op.create_index('ix_query_applications_branch_code', 'query_applications', ['branch_code'])
    op.create_index('ix_query_applications_status', 'query_applications', ['status'])

    op.create_table(
        'queries',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('application_id', sa.String(32), sa.ForeignKey('query_applications.id'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('sender', sa.String(200), nullable=False),
        sa.Column('sender_role', sa.String(20), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('is_resolved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('resolved_by', sa.String(200), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolution_reason', sa.Text(), nullable=True),
        sa.Column('resolution_type', sa.String(20), nullable=True),
        sa.Column('assigned_to', sa.String(200), nullable=True),
        sa.Column('remarks', sa.Text(), nullable=True),
        sa.Column('reverted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reverted_by', sa.String(200), nullable=True),
        sa.Column('revert_reason', sa.Text(), nullable=True),
        sa.Column('last_updated', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_queries_application_id', 'queries', ['application_id'])
    op.create_index('ix_queries_status', 'queries', ['status'])

    op.create_table(
        'approval_requests',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('query_id', sa.String(32), nullable=False),
        sa.Column('application_id', sa.String(32), nullable=False),
        sa.Column('request_type', sa.String(20), nullable=False),
        sa.Column('assigned_to', sa.String(200), nullable=True),
        sa.Column('remarks', sa.Text(), nullable=True),
        sa.Column('requested_by', sa.String(200), nullable=False),
        sa.Column('request_date', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('priority', sa.String(10), nullable=False, server_default='medium'),
        sa.Column('app_no', sa.String(64), nullable=False),
        sa.Column('customer_name', sa.String(200), nullable=False),
        sa.Column('branch', sa.String(120), nullable=False),
        sa.Column('branch_code', sa.String(20), nullable=False),
        sa.Column('marked_for_team', sa.String(10), nullable=False),
        sa.Column('loan_amount', sa.Numeric(14, 2), nullable=True),
        sa.Column('loan_type', sa.String(60), nullable=True),
        sa.Column('query_text', sa.Text(), nullable=False),
        sa.Column('processed_by', sa.String(200), nullable=True),
        sa.Column('process_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('decision_remarks', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
    )
    op.create_index('ix_approval_requests_query_id', 'approval_requests', ['query_id'])
    op.create_index('ix_approval_requests_application_id', 'approval_requests', ['application_id'])
    op.create_index('ix_approval_requests_status', 'approval_requests', ['status'])
    op.create_index('ix_approval_requests_request_date', 'approval_requests', ['request_date'])

    op.create_table(
        'query_events',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('query_id', sa.String(32), nullable=False),
        sa.Column('application_id', sa.String(32), nullable=False),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('actor', sa.String(200), nullable=False),
        sa.Column('actor_role', sa.String(20), nullable=False),
        sa.Column('team', sa.String(40), nullable=True),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('is_system', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_query_events_query_id', 'query_events', ['query_id'])
    op.create_index('ix_query_events_application_id', 'query_events', ['application_id'])
    op.create_index('ix_query_events_kind', 'query_events', ['kind'])
    op.create_index('ix_query_events_timestamp', 'query_events', ['timestamp'])

    op.create_table(
        'error_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('severity', sa.Enum('INFO', 'WARNING', 'ERROR', 'CRITICAL', name='errorseverity'), nullable=False),
        sa.Column('error_type', sa.String(200), nullable=False),
        sa.Column('error_kind', sa.String(60), nullable=True),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('traceback', sa.Text(), nullable=True),
        sa.Column('module', sa.String(300), nullable=True),
        sa.Column('function_name', sa.String(200), nullable=True),
        sa.Column('line_number', sa.Integer(), nullable=True),
        sa.Column('request_method', sa.String(10), nullable=True),
        sa.Column('request_path', sa.String(500), nullable=True),
        sa.Column('request_body', sa.Text(), nullable=True),
        sa.Column('status_code', sa.Integer(), nullable=True),
        sa.Column('response_time_ms', sa.Float(), nullable=True),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('user_role', sa.String(20), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_error_logs_error_kind', 'error_logs', ['error_kind'])


def downgrade() -> None:
    op.drop_table('error_logs')
    op.drop_table('query_events')
    op.drop_table('approval_requests')
    op.drop_table('queries')
    op.drop_table('query_applications')
    # PostgreSQL keeps the enum type after the table is dropped
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP TYPE IF EXISTS errorseverity")
