from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from autobuild.database import Base


class BuildProjectDB(Base):
    """Database model for build projects."""

    __tablename__ = "build_projects"

    id = Column(String, primary_key=True, index=True)
    description = Column(Text, nullable=False)
    project_type = Column(String, nullable=False)
    status = Column(String, nullable=False, default="queued")
    workspace_path = Column(String, nullable=False)  # Stored as string path
    preferred_stack = Column(String, nullable=True)
    deploy_target = Column(String, nullable=False, default="localhost")
    local_port = Column(Integer, nullable=True)
    deploy_url = Column(String, nullable=True)
    production_url = Column(String, nullable=True)
    error = Column(Text, nullable=True)
    build_prompt = Column(Text, nullable=True)
    commit_sha = Column(String, nullable=True)
    github_url = Column(String, nullable=True)
    retried_from = Column(String, nullable=True)
    project_metadata = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)

    logs = relationship(
        "BuildLogDB",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="BuildLogDB.id",
    )


class BuildLogDB(Base):
    """Append-only build log rows; the autoincrement id is the insertion order."""

    __tablename__ = "build_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(
        String,
        ForeignKey("build_projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    phase = Column(String, nullable=False)
    message = Column(Text, nullable=False, default="")
    timestamp = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)

    project = relationship("BuildProjectDB", back_populates="logs")
