"""Canonical issue model"""
from sqlalchemy import Column, Integer, String, DateTime, Text, Enum, JSON
from datetime import datetime, timezone
from issuemirror.models.base import Base
from issuemirror.services.status_model import (
    ExecutionState,
    GithubMirrorStatus,
    HandoffState,
    LocalStatus,
    MirrorState,
)


def utcnow() -> datetime:
    """UTC 'now' as tz-naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CanonicalIssue(Base):
    """A locally-owned record and the state of its tracker mirror"""

    __tablename__ = "canonical_issues"

    id = Column(Integer, primary_key=True, index=True)
    canonical_id = Column(String(50), unique=True, nullable=False, index=True)

    # Semantic content (CanonicalRecord as JSON). Only register_record writes it.
    title = Column(String(200), nullable=False)
    record = Column(JSON, nullable=False)

    # Workflow state
    local_status = Column(Enum(LocalStatus), nullable=False, default=LocalStatus.CREATED)
    execution_state = Column(Enum(ExecutionState), nullable=False, default=ExecutionState.IDLE)
    handoff_state = Column(Enum(HandoffState), nullable=False, default=HandoffState.UNSYNCED)

    # Mirror fields, written by publish
    external_id = Column(Integer, nullable=True)
    external_url = Column(String, nullable=True)
    rendered_hash = Column(String(64), nullable=True)
    last_synced_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)

    # Mirror snapshot, written by refresh / snapshot push
    github_mirror_status = Column(
        Enum(GithubMirrorStatus), nullable=False, default=GithubMirrorStatus.UNKNOWN
    )
    github_status_raw = Column(Text, nullable=True)
    github_status_updated_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_state(self) -> MirrorState:
        return MirrorState(
            local_status=self.local_status or LocalStatus.CREATED,
            github_mirror_status=self.github_mirror_status or GithubMirrorStatus.UNKNOWN,
            execution_state=self.execution_state or ExecutionState.IDLE,
            handoff_state=self.handoff_state or HandoffState.UNSYNCED,
            raw_external_status=self.github_status_raw,
            external_status_updated_at=self.github_status_updated_at,
        )

    def __repr__(self):
        return f"<CanonicalIssue(canonical_id={self.canonical_id}, external_id={self.external_id})>"
