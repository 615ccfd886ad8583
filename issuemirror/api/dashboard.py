"""Dashboard and statistics endpoints"""

from datetime import datetime, timedelta

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from issuemirror.models import CanonicalIssue, MirrorLog
from issuemirror.models.base import get_db
from issuemirror.models.mirror_log import MirrorLogStatus
from issuemirror.services.drift import detect_state_drift

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


def _counts_by(db: Session, column):
    rows = db.query(column, func.count(CanonicalIssue.id)).group_by(column).all()
    return {value.value if value is not None else None: count for value, count in rows}


@router.get("/stats")
def get_dashboard_stats(db: Session = Depends(get_db)):
    """Get dashboard statistics"""
    total_issues = db.query(CanonicalIssue).count()
    published_issues = db.query(CanonicalIssue).filter(CanonicalIssue.external_id.isnot(None)).count()

    drifting = []
    for issue in db.query(CanonicalIssue).filter(CanonicalIssue.external_id.isnot(None)).all():
        drift = detect_state_drift(issue.to_state())
        if drift.has_drift:
            drifting.append(
                {
                    "canonical_id": issue.canonical_id,
                    "severity": drift.severity,
                    "message": drift.message,
                }
            )

    # Recent mirror activity (last 24 hours)
    last_24h = datetime.utcnow() - timedelta(hours=24)
    recent_operations = db.query(MirrorLog).filter(MirrorLog.created_at >= last_24h).count()
    recent_failures = (
        db.query(MirrorLog)
        .filter(MirrorLog.created_at >= last_24h, MirrorLog.status == MirrorLogStatus.FAILED)
        .count()
    )

    return {
        "total_issues": total_issues,
        "published_issues": published_issues,
        "by_local_status": _counts_by(db, CanonicalIssue.local_status),
        "by_handoff_state": _counts_by(db, CanonicalIssue.handoff_state),
        "by_mirror_status": _counts_by(db, CanonicalIssue.github_mirror_status),
        "drift": drifting,
        "recent_operations": recent_operations,
        "recent_failures": recent_failures,
    }
