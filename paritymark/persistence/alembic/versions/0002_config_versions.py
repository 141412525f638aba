"""deployments and config versions

Revision ID: 0002_config_versions
Revises: 0001_identity
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0002_config_versions"
down_revision = "0001_identity"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "deployments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("code", name="uq_deployments_code"),
    )
    op.create_table(
        "config_versions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("deployment_id", sa.Integer(), sa.ForeignKey("deployments.id"), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.UniqueConstraint("deployment_id", "version_number", name="uq_config_versions_deployment_version"),
    )
    op.create_index("ix_config_versions_deployment_id", "config_versions", ["deployment_id"], unique=False)
    # Structural backstop for the single-ACTIVE-version rule.
    op.create_index(
        "uq_config_versions_one_active",
        "config_versions",
        ["deployment_id"],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
    )
    op.create_table(
        "config_artifacts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column(
            "config_version_id",
            sa.Integer(),
            sa.ForeignKey("config_versions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("artifact_type", sa.String(), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("config_version_id", "artifact_type", name="uq_config_artifacts_version_type"),
    )
    op.create_index(
        "ix_config_artifacts_config_version_id",
        "config_artifacts",
        ["config_version_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_config_artifacts_config_version_id", table_name="config_artifacts")
    op.drop_table("config_artifacts")
    op.drop_index("uq_config_versions_one_active", table_name="config_versions")
    op.drop_index("ix_config_versions_deployment_id", table_name="config_versions")
    op.drop_table("config_versions")
    op.drop_table("deployments")
