"""Drift between the local workflow status and the tracker issue state"""

from dataclasses import dataclass
from typing import Optional

from issuemirror.services.status_model import (
    ACTIVE_LOCAL_STATUSES,
    TERMINAL_LOCAL_STATUSES,
    GithubMirrorStatus,
    MirrorState,
    describe_mirror_snapshot,
    has_github_status,
)

SEVERITY_INFO = "info"
SEVERITY_WARNING = "warning"


@dataclass(frozen=True)
class DriftReport:
    has_drift: bool
    severity: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def none(cls) -> "DriftReport":
        return cls(has_drift=False)


def _mirror_issue_state(state: MirrorState) -> Optional[str]:
    """OPEN/CLOSED as seen by the tracker, from the status or the raw payload."""
    if state.github_mirror_status in (GithubMirrorStatus.OPEN, GithubMirrorStatus.CLOSED):
        return state.github_mirror_status.value
    snapshot = describe_mirror_snapshot(state.raw_external_status) or {}
    raw_state = str(snapshot.get("state") or "").strip().lower()
    if raw_state == "closed":
        return GithubMirrorStatus.CLOSED.value
    if raw_state in ("open", "opened"):
        return GithubMirrorStatus.OPEN.value
    return None


def detect_state_drift(state: MirrorState) -> DriftReport:
    """Flag a tracker issue whose open/closed state contradicts the local status.

    KILLED and HOLD are never assessed.
    """
    if not has_github_status(state):
        return DriftReport.none()

    issue_state = _mirror_issue_state(state)
    local = state.local_status

    if local in ACTIVE_LOCAL_STATUSES and issue_state == GithubMirrorStatus.CLOSED.value:
        return DriftReport(
            has_drift=True,
            severity=SEVERITY_WARNING,
            message=(
                f"GitHub issue is CLOSED but local status is still {local.value}; "
                "the issue may have been closed without finishing the work"
            ),
        )

    if local in TERMINAL_LOCAL_STATUSES and issue_state == GithubMirrorStatus.OPEN.value:
        return DriftReport(
            has_drift=True,
            severity=SEVERITY_INFO,
            message=f"Local status is {local.value} but GitHub issue is still OPEN",
        )

    return DriftReport.none()
