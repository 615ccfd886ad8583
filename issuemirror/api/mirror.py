"""Mirror (publish / refresh) endpoints"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional
from pydantic import BaseModel
from datetime import datetime

from issuemirror.models.base import get_db
from issuemirror.services.errors import VALIDATION_ERROR, ErrorCode, MirrorSyncError
from issuemirror.services.mirror_service import CanonicalIssueNotFound, MirrorService

router = APIRouter(prefix="/api/mirror", tags=["mirror"])


class MirrorLogResponse(BaseModel):
    id: int
    canonical_id: str
    external_id: Optional[int] = None
    status: str
    action: str
    message: Optional[str] = None
    details: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class MirrorSnapshot(BaseModel):
    """Tracker view of an issue, pushed by a webhook or an external poller"""
    project_status: Optional[str] = None
    labels: List[str] = []
    state: Optional[str] = None


def _http_error(e: MirrorSyncError) -> HTTPException:
    if e.code == VALIDATION_ERROR:
        status_code = 422
    elif e.classification is not None and e.classification.code == ErrorCode.RATE_LIMITED:
        status_code = 429
    else:
        status_code = 502
    return HTTPException(status_code=status_code, detail=e.to_dict())


def get_mirror_service(db: Session = Depends(get_db)) -> MirrorService:
    return MirrorService(db)


@router.post("/refresh-all")
def refresh_all(service: MirrorService = Depends(get_mirror_service)):
    """Refresh the mirror status of every published issue"""
    return service.refresh_all()


@router.get("/logs", response_model=List[MirrorLogResponse])
def list_mirror_logs(
    limit: int = 100,
    canonical_id: str = None,
    service: MirrorService = Depends(get_mirror_service),
):
    """List mirror logs"""
    return service.list_logs(canonical_id=canonical_id, limit=limit)


@router.post("/{canonical_id}/publish")
def publish(
    canonical_id: str,
    force: bool = False,
    service: MirrorService = Depends(get_mirror_service),
):
    """Create or update the tracker issue for a canonical issue"""
    try:
        return service.publish(canonical_id, force=force)
    except CanonicalIssueNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except MirrorSyncError as e:
        raise _http_error(e)


@router.post("/{canonical_id}/refresh")
def refresh(canonical_id: str, service: MirrorService = Depends(get_mirror_service)):
    """Pull the current tracker status for a canonical issue"""
    try:
        service.refresh_mirror_status(canonical_id)
        return service.describe(canonical_id)
    except CanonicalIssueNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except MirrorSyncError as e:
        raise _http_error(e)


@router.post("/{canonical_id}/snapshot")
def push_snapshot(
    canonical_id: str,
    snapshot: MirrorSnapshot,
    service: MirrorService = Depends(get_mirror_service),
):
    """Apply a tracker status snapshot pushed by a webhook"""
    try:
        service.apply_mirror_snapshot(
            canonical_id,
            project_status=snapshot.project_status,
            labels=snapshot.labels,
            issue_state=snapshot.state,
        )
        return service.describe(canonical_id)
    except CanonicalIssueNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
