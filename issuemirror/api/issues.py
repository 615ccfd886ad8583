"""Canonical issue endpoints"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import Any, Dict, List, Optional
from pydantic import BaseModel
from datetime import datetime

from issuemirror.models.base import get_db
from issuemirror.services.mirror_service import CanonicalIssueNotFound, MirrorService
from issuemirror.services.records import CanonicalRecord
from issuemirror.services.status_model import (
    ExecutionState,
    GithubMirrorStatus,
    HandoffState,
    LocalStatus,
)

router = APIRouter(prefix="/api/issues", tags=["issues"])


class CanonicalIssueResponse(BaseModel):
    id: int
    canonical_id: str
    title: str
    record: Dict[str, Any]
    local_status: LocalStatus
    execution_state: ExecutionState
    handoff_state: HandoffState
    github_mirror_status: GithubMirrorStatus
    external_id: Optional[int] = None
    external_url: Optional[str] = None
    rendered_hash: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class StateUpdate(BaseModel):
    local_status: Optional[LocalStatus] = None
    execution_state: Optional[ExecutionState] = None


@router.post("", response_model=CanonicalIssueResponse, status_code=201)
def register_issue(
    record: CanonicalRecord,
    local_status: Optional[LocalStatus] = None,
    db: Session = Depends(get_db),
):
    """Register (or update) a canonical record"""
    return MirrorService(db).register_record(record, local_status=local_status)


@router.get("", response_model=List[CanonicalIssueResponse])
def list_issues(
    local_status: Optional[LocalStatus] = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    """List canonical issues"""
    return MirrorService(db).list_issues(local_status=local_status, skip=skip, limit=limit)


@router.get("/{canonical_id}")
def get_issue(canonical_id: str, db: Session = Depends(get_db)):
    """Get a canonical issue with its effective status and drift"""
    try:
        return MirrorService(db).describe(canonical_id)
    except CanonicalIssueNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.patch("/{canonical_id}/state", response_model=CanonicalIssueResponse)
def update_state(canonical_id: str, update: StateUpdate, db: Session = Depends(get_db)):
    """Update the local status and/or execution state"""
    try:
        return MirrorService(db).update_state(
            canonical_id,
            local_status=update.local_status,
            execution_state=update.execution_state,
        )
    except CanonicalIssueNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
