"""Effective status precedence

Three signals describe where a canonical issue stands:

* the local workflow status (owned by this service),
* the status mirrored from the tracker (project field, status label or issue state),
* the live execution state of the work itself.

`compute_effective_status` merges them with fixed precedence:

1. execution RUNNING: the local status wins (the executor is authoritative);
2. the mirror status maps onto a local status: the mapped value wins;
3. otherwise the local status.

A tracker issue being *closed* is not evidence that the work is done (it may
have been closed as duplicate or invalid), so "closed" never maps
to DONE, whatever its source. Only an explicit done status can say DONE.
"""

import enum
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict


class LocalStatus(str, enum.Enum):
    CREATED = "CREATED"
    SPEC_READY = "SPEC_READY"
    IMPLEMENTING = "IMPLEMENTING"
    VERIFIED = "VERIFIED"
    MERGE_READY = "MERGE_READY"
    DONE = "DONE"
    HOLD = "HOLD"
    KILLED = "KILLED"


class GithubMirrorStatus(str, enum.Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    IN_REVIEW = "IN_REVIEW"
    DONE = "DONE"
    BLOCKED = "BLOCKED"
    # State-only signals: the issue is open/closed but carries no status.
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    ERROR = "ERROR"
    UNKNOWN = "UNKNOWN"


class ExecutionState(str, enum.Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    FAILED = "FAILED"
    SUCCEEDED = "SUCCEEDED"


class HandoffState(str, enum.Enum):
    UNSYNCED = "UNSYNCED"
    SYNCING = "SYNCING"
    SYNCED = "SYNCED"
    FAILED = "FAILED"


ACTIVE_LOCAL_STATUSES = frozenset(
    {
        LocalStatus.CREATED,
        LocalStatus.SPEC_READY,
        LocalStatus.IMPLEMENTING,
        LocalStatus.VERIFIED,
        LocalStatus.MERGE_READY,
    }
)
TERMINAL_LOCAL_STATUSES = frozenset({LocalStatus.DONE})

_MIRROR_TO_LOCAL: Dict[GithubMirrorStatus, LocalStatus] = {
    GithubMirrorStatus.TODO: LocalStatus.SPEC_READY,
    GithubMirrorStatus.IN_PROGRESS: LocalStatus.IMPLEMENTING,
    GithubMirrorStatus.IN_REVIEW: LocalStatus.MERGE_READY,
    GithubMirrorStatus.DONE: LocalStatus.DONE,
    GithubMirrorStatus.BLOCKED: LocalStatus.HOLD,
}

_RAW_SYNONYMS: Dict[str, GithubMirrorStatus] = {
    "in progress": GithubMirrorStatus.IN_PROGRESS,
    "in_progress": GithubMirrorStatus.IN_PROGRESS,
    "implementing": GithubMirrorStatus.IN_PROGRESS,
    "wip": GithubMirrorStatus.IN_PROGRESS,
    "done": GithubMirrorStatus.DONE,
    "completed": GithubMirrorStatus.DONE,
    "complete": GithubMirrorStatus.DONE,
    "to do": GithubMirrorStatus.TODO,
    "todo": GithubMirrorStatus.TODO,
    "backlog": GithubMirrorStatus.TODO,
    "open-task": GithubMirrorStatus.TODO,
    "in review": GithubMirrorStatus.IN_REVIEW,
    "review": GithubMirrorStatus.IN_REVIEW,
    "pr": GithubMirrorStatus.IN_REVIEW,
    "ready for review": GithubMirrorStatus.IN_REVIEW,
    "blocked": GithubMirrorStatus.BLOCKED,
    "hold": GithubMirrorStatus.BLOCKED,
    "on hold": GithubMirrorStatus.BLOCKED,
    "waiting": GithubMirrorStatus.BLOCKED,
}

STATUS_LABEL_PREFIX = "status:"


class MirrorState(BaseModel):
    """Snapshot of the three status signals for one canonical issue."""

    model_config = ConfigDict(frozen=True)

    local_status: LocalStatus
    github_mirror_status: GithubMirrorStatus = GithubMirrorStatus.UNKNOWN
    execution_state: ExecutionState = ExecutionState.IDLE
    handoff_state: HandoffState = HandoffState.UNSYNCED
    raw_external_status: Optional[str] = None
    external_status_updated_at: Optional[datetime] = None


# Raw status signals, in decreasing order of authority.


@dataclass(frozen=True)
class ProjectFieldSignal:
    value: Optional[str]


@dataclass(frozen=True)
class LabelSignal:
    labels: Sequence[str]


@dataclass(frozen=True)
class IssueStateSignal:
    state: Optional[str]


RawStatusSignal = Union[ProjectFieldSignal, LabelSignal, IssueStateSignal]


def map_raw_github_status(raw: Optional[str], is_from_issue_state: bool = False) -> GithubMirrorStatus:
    """Normalize free text (field value, label text, issue state) to a mirror status."""
    if raw is None:
        return GithubMirrorStatus.UNKNOWN
    value = str(raw).strip().lower()
    if not value:
        return GithubMirrorStatus.UNKNOWN
    if is_from_issue_state and value in ("closed", "open", "opened"):
        return GithubMirrorStatus.UNKNOWN
    return _RAW_SYNONYMS.get(value, GithubMirrorStatus.UNKNOWN)


def _status_from_labels(labels: Iterable[str]) -> GithubMirrorStatus:
    for label in sorted(label for label in labels if label):
        stripped = label.strip()
        if not stripped.lower().startswith(STATUS_LABEL_PREFIX):
            continue
        status = map_raw_github_status(stripped[len(STATUS_LABEL_PREFIX):])
        if status != GithubMirrorStatus.UNKNOWN:
            return status
    return GithubMirrorStatus.UNKNOWN


def normalize_signal(signal: RawStatusSignal) -> GithubMirrorStatus:
    if isinstance(signal, ProjectFieldSignal):
        return map_raw_github_status(signal.value)
    if isinstance(signal, LabelSignal):
        return _status_from_labels(signal.labels)
    if isinstance(signal, IssueStateSignal):
        return map_raw_github_status(signal.state, is_from_issue_state=True)
    raise TypeError(f"Unsupported status signal: {signal!r}")


def extract_github_mirror_status(
    project_status: Optional[str],
    labels: Optional[Iterable[str]] = None,
    issue_state: Optional[str] = None,
) -> GithubMirrorStatus:
    """Project field > status label > issue state > UNKNOWN."""
    signals = (
        ProjectFieldSignal(project_status),
        LabelSignal(tuple(labels or ())),
        IssueStateSignal(issue_state),
    )
    for signal in signals:
        status = normalize_signal(signal)
        if status != GithubMirrorStatus.UNKNOWN:
            return status
    return GithubMirrorStatus.UNKNOWN


def map_github_mirror_status_to_effective(status: GithubMirrorStatus) -> Optional[LocalStatus]:
    return _MIRROR_TO_LOCAL.get(GithubMirrorStatus(status))


def compute_effective_status(state: MirrorState) -> LocalStatus:
    if state.execution_state == ExecutionState.RUNNING:
        return state.local_status
    mapped = map_github_mirror_status_to_effective(state.github_mirror_status)
    if mapped is not None:
        return mapped
    return state.local_status


def is_effective_status_overridden(state: MirrorState) -> bool:
    return compute_effective_status(state) != state.local_status


def has_github_status(state: MirrorState) -> bool:
    if state.github_mirror_status != GithubMirrorStatus.UNKNOWN:
        return True
    return bool(state.raw_external_status and state.raw_external_status.strip())


def describe_mirror_snapshot(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse a stored raw payload; free text comes back as {"text": ...}."""
    if raw is None or not raw.strip():
        return None
    try:
        parsed = json.loads(raw)
    except ValueError:
        return {"text": raw.strip()}
    if isinstance(parsed, dict):
        return parsed
    return {"text": raw.strip()}


def get_effective_status_reason(state: MirrorState) -> str:
    """Human readable explanation of which precedence rule applied."""
    local = state.local_status.value
    mirror = state.github_mirror_status.value
    synced = ""
    if state.external_status_updated_at is not None:
        synced = f" (synced: {state.external_status_updated_at.isoformat()})"

    if state.execution_state == ExecutionState.RUNNING:
        return f"Execution in progress: using local status {local}"

    mapped = map_github_mirror_status_to_effective(state.github_mirror_status)
    if mapped is not None:
        return f"GitHub status available: {mirror} maps to {mapped.value}{synced}"

    if state.github_mirror_status != GithubMirrorStatus.UNKNOWN:
        return f"GitHub mirror reports {mirror}{synced}; no status mapping, using local status {local}"

    if has_github_status(state):
        return f"GitHub data available but not yet mapped{synced}; using local status {local}"

    return f"Local status (no GitHub sync yet): {local}"
