"""create video interview tables

Revision ID: b7c1e2d3f4a5
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b7c1e2d3f4a5'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'jobs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('company', sa.String(length=255), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'interview_questions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('job_id', sa.Integer(), sa.ForeignKey('jobs.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('question', sa.Text(), nullable=False),
        sa.Column('order_index', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('job_id', 'order_index', name='uq_interview_questions_job_order'),
    )

    op.create_table(
        'interviews',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('job_id', sa.Integer(), sa.ForeignKey('jobs.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('candidate_name', sa.String(length=255), nullable=False),
        sa.Column('candidate_email', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='pending', nullable=False),
        sa.Column('interview_link', sa.String(length=64), nullable=False, unique=True),
        sa.Column('link_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('overall_score', sa.Integer(), nullable=True),
        sa.Column('summary', sa.Text(), nullable=True),
    )

    op.create_table(
        'video_responses',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('interview_id', sa.Integer(), sa.ForeignKey('interviews.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('question_id', sa.Integer(), sa.ForeignKey('interview_questions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('video_url', sa.Text(), nullable=False),
        sa.Column('duration', sa.Integer(), nullable=False),
        sa.Column('content_type', sa.String(length=100), nullable=True),
        sa.Column('size_bytes', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('interview_id', 'question_id', name='uq_video_responses_interview_question'),
    )

    op.create_table(
        'ai_analysis',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('response_id', sa.Integer(), sa.ForeignKey('video_responses.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('transcript', sa.Text(), nullable=True),
        sa.Column('sentiment', sa.String(length=20), nullable=False),
        sa.Column('tone', sa.String(length=100), nullable=True),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('feedback', sa.Text(), nullable=True),
        sa.Column('has_inappropriate_language', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('is_fallback', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('manager_feedback', sa.Text(), nullable=True),
        sa.Column('manager_feedback_by', sa.String(length=255), nullable=True),
        sa.Column('manager_feedback_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('score BETWEEN 1 AND 10', name='ck_ai_analysis_score_range'),
    )


def downgrade():
    op.drop_table('ai_analysis')
    op.drop_table('video_responses')
    op.drop_table('interviews')
    op.drop_table('interview_questions')
    op.drop_table('jobs')
