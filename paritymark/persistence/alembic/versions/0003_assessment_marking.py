"""assessment structure, responses and marks

Revision ID: 0003_assessment_marking
Revises: 0002_config_versions
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0003_assessment_marking"
down_revision = "0002_config_versions"
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "assessment_series",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column(
            "deployment_id",
            sa.Integer(),
            sa.ForeignKey("deployments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("deployment_id", "code", name="uq_assessment_series_deployment_code"),
    )
    op.create_index("ix_assessment_series_deployment_id", "assessment_series", ["deployment_id"], unique=False)
    op.create_table(
        "assessment_papers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column(
            "series_id",
            sa.Integer(),
            sa.ForeignKey("assessment_series.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("series_id", "code", name="uq_assessment_papers_series_code"),
    )
    op.create_index("ix_assessment_papers_series_id", "assessment_papers", ["series_id"], unique=False)
    op.create_table(
        "assessment_qigs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column(
            "paper_id",
            sa.Integer(),
            sa.ForeignKey("assessment_papers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("paper_id", "code", name="uq_assessment_qigs_paper_code"),
    )
    op.create_index("ix_assessment_qigs_paper_id", "assessment_qigs", ["paper_id"], unique=False)
    op.create_table(
        "assessment_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column(
            "qig_id",
            sa.Integer(),
            sa.ForeignKey("assessment_qigs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("max_mark", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("qig_id", "code", name="uq_assessment_items_qig_code"),
    )
    op.create_index("ix_assessment_items_qig_id", "assessment_items", ["qig_id"], unique=False)

    op.create_table(
        "responses",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column(
            "qig_id",
            sa.Integer(),
            sa.ForeignKey("assessment_qigs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("candidate_id", sa.String(), nullable=False),
        sa.Column("script_url", sa.String(), nullable=True),
        sa.Column("manifest", postgresql.JSONB(), nullable=True),
        sa.Column("state", sa.String(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("qig_id", "candidate_id", name="uq_responses_qig_candidate"),
    )
    op.create_index("ix_responses_qig_id", "responses", ["qig_id"], unique=False)
    op.create_table(
        "response_marks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column(
            "response_id",
            sa.Integer(),
            sa.ForeignKey("responses.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "marker_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("state", sa.String(), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("response_id", "marker_user_id", name="uq_response_marks_response_marker"),
    )
    op.create_index("ix_response_marks_response_id", "response_marks", ["response_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_response_marks_response_id", table_name="response_marks")
    op.drop_table("response_marks")
    op.drop_index("ix_responses_qig_id", table_name="responses")
    op.drop_table("responses")
    op.drop_index("ix_assessment_items_qig_id", table_name="assessment_items")
    op.drop_table("assessment_items")
    op.drop_index("ix_assessment_qigs_paper_id", table_name="assessment_qigs")
    op.drop_table("assessment_qigs")
    op.drop_index("ix_assessment_papers_series_id", table_name="assessment_papers")
    op.drop_table("assessment_papers")
    op.drop_index("ix_assessment_series_deployment_id", table_name="assessment_series")
    op.drop_table("assessment_series")
