from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Use JSONB on PostgreSQL and plain JSON elsewhere (SQLite test databases).
JsonPayload = JSON().with_variant(JSONB(), "postgresql")
# BIGSERIAL on PostgreSQL; SQLite only autoincrements INTEGER primary keys.
AuditId = BigInteger().with_variant(Integer(), "sqlite")


CONFIG_STATUS_DRAFT = "DRAFT"
CONFIG_STATUS_APPROVED = "APPROVED"
CONFIG_STATUS_ACTIVE = "ACTIVE"
CONFIG_STATUS_RETIRED = "RETIRED"
CONFIG_STATUSES = (
    CONFIG_STATUS_DRAFT,
    CONFIG_STATUS_APPROVED,
    CONFIG_STATUS_ACTIVE,
    CONFIG_STATUS_RETIRED,
)

MARK_STATE_DRAFT = "DRAFT"
MARK_STATE_SUBMITTED = "SUBMITTED"

RESPONSE_STATE_INGESTED = "INGESTED"
RESPONSE_STATE_LOCKED = "LOCKED"


class Base(DeclarativeBase):
    # Fetch server defaults (created_at, ...) at flush; async sessions cannot lazy-load them.
    __mapper_args__ = {"eager_defaults": True}


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Stable identifier from the upstream identity provider.
    external_id: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    display_name: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String, unique=True)
    name: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    # Archived roles no longer grant permissions or scopes.
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Permission(Base):
    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class UserRole(Base):
    __tablename__ = "user_roles"
    __table_args__ = (
        UniqueConstraint("user_id", "role_id", name="uq_user_roles_user_role"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True)
    role_id: Mapped[int] = mapped_column(Integer, ForeignKey("roles.id", ondelete="CASCADE"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class RolePermission(Base):
    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role_id", "permission_id", name="uq_role_permissions_role_permission"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    role_id: Mapped[int] = mapped_column(Integer, ForeignKey("roles.id", ondelete="CASCADE"), index=True)
    permission_id: Mapped[int] = mapped_column(Integer, ForeignKey("permissions.id", ondelete="CASCADE"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class ReviewerScope(Base):
    __tablename__ = "reviewer_scopes"
    __table_args__ = (
        UniqueConstraint(
            "role_id",
            "deployment_code",
            "qig_code",
            name="uq_reviewer_scopes_role_deployment_qig",
        ),
    )

    # Explicit role -> (deployment, QIG) visibility restriction for reviewers.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    role_id: Mapped[int] = mapped_column(Integer, ForeignKey("roles.id", ondelete="CASCADE"), index=True)
    deployment_code: Mapped[str] = mapped_column(String)
    qig_code: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Deployment(Base):
    __tablename__ = "deployments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String, unique=True)
    name: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    # Deployments are never deleted; archiving soft-disables them.
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ConfigVersion(Base):
    __tablename__ = "config_versions"
    __table_args__ = (
        UniqueConstraint("deployment_id", "version_number", name="uq_config_versions_deployment_version"),
        # At most one ACTIVE version per deployment, enforced by the store.
        Index(
            "uq_config_versions_one_active",
            "deployment_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    deployment_id: Mapped[int] = mapped_column(Integer, ForeignKey("deployments.id"), index=True)
    version_number: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)


class ConfigArtifact(Base):
    __tablename__ = "config_artifacts"
    __table_args__ = (
        UniqueConstraint("config_version_id", "artifact_type", name="uq_config_artifacts_version_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    config_version_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("config_versions.id", ondelete="CASCADE"), index=True
    )
    artifact_type: Mapped[str] = mapped_column(String)
    payload: Mapped[dict[str, Any]] = mapped_column(JsonPayload)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class AssessmentSeries(Base):
    __tablename__ = "assessment_series"
    __table_args__ = (
        UniqueConstraint("deployment_id", "code", name="uq_assessment_series_deployment_code"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    deployment_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("deployments.id", ondelete="CASCADE"), index=True
    )
    code: Mapped[str] = mapped_column(String)
    name: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class AssessmentPaper(Base):
    __tablename__ = "assessment_papers"
    __table_args__ = (
        UniqueConstraint("series_id", "code", name="uq_assessment_papers_series_code"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    series_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("assessment_series.id", ondelete="CASCADE"), index=True
    )
    code: Mapped[str] = mapped_column(String)
    name: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class AssessmentQig(Base):
    __tablename__ = "assessment_qigs"
    __table_args__ = (
        UniqueConstraint("paper_id", "code", name="uq_assessment_qigs_paper_code"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    paper_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("assessment_papers.id", ondelete="CASCADE"), index=True
    )
    code: Mapped[str] = mapped_column(String)
    name: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class AssessmentItem(Base):
    __tablename__ = "assessment_items"
    __table_args__ = (
        UniqueConstraint("qig_id", "code", name="uq_assessment_items_qig_code"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    qig_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("assessment_qigs.id", ondelete="CASCADE"), index=True
    )
    code: Mapped[str] = mapped_column(String)
    max_mark: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Response(Base):
    __tablename__ = "responses"
    __table_args__ = (
        # One Response per candidate per QIG.
        UniqueConstraint("qig_id", "candidate_id", name="uq_responses_qig_candidate"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    qig_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("assessment_qigs.id", ondelete="CASCADE"), index=True
    )
    candidate_id: Mapped[str] = mapped_column(String)
    script_url: Mapped[str | None] = mapped_column(String, nullable=True)
    manifest: Mapped[dict[str, Any] | None] = mapped_column(JsonPayload, nullable=True)
    state: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ResponseMark(Base):
    __tablename__ = "response_marks"
    __table_args__ = (
        UniqueConstraint("response_id", "marker_user_id", name="uq_response_marks_response_marker"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    response_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("responses.id", ondelete="CASCADE"), index=True
    )
    marker_user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"))
    state: Mapped[str] = mapped_column(String)
    # Item code -> awarded mark; always overwritten as a whole.
    payload: Mapped[dict[str, Any]] = mapped_column(JsonPayload)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class AuditEvent(Base):
    __tablename__ = "audit_events"
    __table_args__ = (
        Index("ix_audit_events_event_type_occurred_at", "event_type", "occurred_at"),
    )

    # Use a monotonic numeric id as the tie-breaker for insertion order.
    id: Mapped[int] = mapped_column(AuditId, primary_key=True, autoincrement=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    # Closed vocabulary, see paritymark.services.audit.AUDIT_EVENT_TYPES.
    event_type: Mapped[str] = mapped_column(String, index=True)
    outcome: Mapped[str] = mapped_column(String)
    # Denormalized resolved caller id for investigation queries.
    actor_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    request_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    # Always carries "meta"; "actor" or "subject" where applicable.
    payload: Mapped[dict[str, Any]] = mapped_column(JsonPayload)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
