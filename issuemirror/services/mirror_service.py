"""Persistence glue: publish canonical issues and refresh their mirror status"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from issuemirror.config import settings
from issuemirror.models import CanonicalIssue, MirrorLog
from issuemirror.models.mirror_log import MirrorAction, MirrorLogStatus
from issuemirror.services.drift import detect_state_drift
from issuemirror.services.errors import ErrorClassifier, MirrorSyncError
from issuemirror.services.labels import ManagedLabelPolicy
from issuemirror.services.records import CanonicalRecord
from issuemirror.services.renderer import ContentRenderer, parse_machine_marker
from issuemirror.services.status_model import (
    ExecutionState,
    GithubMirrorStatus,
    HandoffState,
    LocalStatus,
    compute_effective_status,
    extract_github_mirror_status,
    get_effective_status_reason,
    is_effective_status_overridden,
)
from issuemirror.services.tracker import TrackerClient, build_tracker_client
from issuemirror.services.upsert import UpsertOrchestrator

logger = logging.getLogger(__name__)


class CanonicalIssueNotFound(ValueError):
    """No canonical issue is registered under the given id"""


class MirrorService:
    """Service for mirroring canonical issues to the tracker"""

    def __init__(
        self,
        db: Session,
        tracker: Optional[TrackerClient] = None,
        label_policy: Optional[ManagedLabelPolicy] = None,
        orchestrator: Optional[UpsertOrchestrator] = None,
    ):
        self.db = db
        self.label_policy = label_policy or ManagedLabelPolicy.from_settings(settings)
        self._tracker = tracker
        self._orchestrator = orchestrator
        self.renderer = orchestrator.renderer if orchestrator else ContentRenderer(self.label_policy)
        self.classifier = ErrorClassifier()

    @property
    def tracker(self) -> TrackerClient:
        """Tracker client, built from settings on first use.

        Missing configuration raises a VALIDATION_ERROR; a failure while
        connecting (e.g. GitLab authentication) is classified like any other
        tracker error.
        """
        if self._tracker is None:
            try:
                self._tracker = build_tracker_client(settings)
            except ValueError as e:
                logger.error(f"Tracker is not configured: {e}")
                raise MirrorSyncError.validation(
                    f"Tracker is not configured: {e}",
                    {"backend": settings.tracker_backend},
                ) from e
            except Exception as e:
                classification = self.classifier.classify(e)
                logger.error(
                    f"Could not connect to the {settings.tracker_backend} tracker "
                    f"({classification.code.value}): {classification.message}"
                )
                raise MirrorSyncError.from_classification(classification, "connect to tracker") from e
        return self._tracker

    @property
    def orchestrator(self) -> UpsertOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = UpsertOrchestrator(
                self.tracker, renderer=self.renderer, label_policy=self.label_policy
            )
        return self._orchestrator

    @staticmethod
    def _utcnow() -> datetime:
        """UTC 'now' as tz-naive datetime for DB + comparisons."""
        return datetime.now(timezone.utc).replace(tzinfo=None)

    # ----- records -----

    def get(self, canonical_id: str) -> CanonicalIssue:
        issue = (
            self.db.query(CanonicalIssue)
            .filter(CanonicalIssue.canonical_id == canonical_id)
            .first()
        )
        if issue is None:
            raise CanonicalIssueNotFound(f"Canonical issue {canonical_id} not found")
        return issue

    def list_issues(
        self, local_status: Optional[LocalStatus] = None, skip: int = 0, limit: int = 100
    ) -> List[CanonicalIssue]:
        query = self.db.query(CanonicalIssue).order_by(CanonicalIssue.canonical_id)
        if local_status is not None:
            query = query.filter(CanonicalIssue.local_status == LocalStatus(local_status))
        return query.offset(skip).limit(limit).all()

    def register_record(
        self,
        record: Union[CanonicalRecord, Dict[str, Any]],
        local_status: Optional[LocalStatus] = None,
    ) -> CanonicalIssue:
        """Insert or update the semantic content of a canonical issue.

        Mirror fields are never touched here; they belong to publish/refresh.
        """
        if not isinstance(record, CanonicalRecord):
            record = CanonicalRecord.model_validate(record)
        payload = record.model_dump(mode="json", exclude_none=True)

        issue = (
            self.db.query(CanonicalIssue)
            .filter(CanonicalIssue.canonical_id == record.canonical_id)
            .first()
        )
        if issue is None:
            issue = CanonicalIssue(
                canonical_id=record.canonical_id,
                title=record.title,
                record=payload,
                local_status=LocalStatus(local_status or LocalStatus.CREATED),
                execution_state=ExecutionState.IDLE,
                handoff_state=HandoffState.UNSYNCED,
                github_mirror_status=GithubMirrorStatus.UNKNOWN,
            )
            self.db.add(issue)
            try:
                self.db.commit()
                self.db.refresh(issue)
                logger.info(f"Registered canonical issue {record.canonical_id}")
                return issue
            except IntegrityError:
                # Another worker registered the same canonical id first.
                self.db.rollback()
                issue = (
                    self.db.query(CanonicalIssue)
                    .filter(CanonicalIssue.canonical_id == record.canonical_id)
                    .first()
                )
                if issue is None:
                    raise
                logger.info(f"Canonical issue {record.canonical_id} registered concurrently; updating")

        issue.title = record.title
        issue.record = payload
        if local_status is not None:
            issue.local_status = LocalStatus(local_status)
        self.db.commit()
        self.db.refresh(issue)
        return issue

    def update_state(
        self,
        canonical_id: str,
        local_status: Optional[LocalStatus] = None,
        execution_state: Optional[ExecutionState] = None,
    ) -> CanonicalIssue:
        issue = self.get(canonical_id)
        if local_status is not None:
            issue.local_status = LocalStatus(local_status)
        if execution_state is not None:
            issue.execution_state = ExecutionState(execution_state)
        self.db.commit()
        self.db.refresh(issue)
        return issue

    # ----- publish -----

    def publish(self, canonical_id: str, force: bool = False) -> Dict[str, Any]:
        """Create or update the tracker issue for a canonical issue.

        Skips the tracker entirely when the rendered content hash is unchanged
        since the last successful publish, unless `force` is set.
        """
        issue = self.get(canonical_id)
        record = CanonicalRecord.model_validate(issue.record)
        rendered = self.renderer.render(record)

        if not force and issue.external_id is not None and issue.rendered_hash == rendered.hash:
            logger.info(f"Skipping publish for {canonical_id}: content unchanged")
            self._log(
                canonical_id,
                MirrorLogStatus.SKIPPED,
                MirrorAction.PUBLISH,
                external_id=issue.external_id,
                message="Content unchanged",
            )
            self.db.commit()
            return self._publish_result("skipped", issue)

        issue.handoff_state = HandoffState.SYNCING
        self.db.commit()

        try:
            result = self.orchestrator.upsert(record)
        except MirrorSyncError as e:
            issue.handoff_state = HandoffState.FAILED
            issue.last_error = e.message
            self._log(
                canonical_id,
                MirrorLogStatus.FAILED,
                MirrorAction.PUBLISH,
                external_id=issue.external_id,
                message=e.message,
                details=e.to_dict(),
            )
            self.db.commit()
            raise

        issue.external_id = result.external_id
        issue.external_url = result.external_url
        issue.rendered_hash = result.rendered_hash
        issue.last_synced_at = self._utcnow()
        issue.last_error = None
        issue.handoff_state = HandoffState.SYNCED
        self._log(
            canonical_id,
            MirrorLogStatus.SUCCESS,
            MirrorAction.CREATE if result.mode == "created" else MirrorAction.UPDATE,
            external_id=result.external_id,
            message=f"Issue #{result.external_id} {result.mode}",
            details={"labels_applied": list(result.labels_applied), "hash": result.rendered_hash},
        )
        self.db.commit()
        self.db.refresh(issue)

        payload = self._publish_result(result.mode, issue)
        payload["labels_applied"] = list(result.labels_applied)
        return payload

    @staticmethod
    def _publish_result(status: str, issue: CanonicalIssue) -> Dict[str, Any]:
        return {
            "status": status,
            "canonical_id": issue.canonical_id,
            "external_id": issue.external_id,
            "external_url": issue.external_url,
            "rendered_hash": issue.rendered_hash,
        }

    # ----- mirror status -----

    def apply_mirror_snapshot(
        self,
        canonical_id: str,
        project_status: Optional[str] = None,
        labels: Optional[Iterable[str]] = None,
        issue_state: Optional[str] = None,
        action: MirrorAction = MirrorAction.SNAPSHOT,
    ) -> CanonicalIssue:
        """Store the tracker's view of an issue and check it for drift."""
        issue = self.get(canonical_id)
        labels = sorted(labels or [])

        status = extract_github_mirror_status(project_status, labels, issue_state)
        if status == GithubMirrorStatus.UNKNOWN:
            # Keep the bare open/closed fact; it never overrides the local status.
            state = (issue_state or "").strip().lower()
            if state == "closed":
                status = GithubMirrorStatus.CLOSED
            elif state in ("open", "opened"):
                status = GithubMirrorStatus.OPEN

        raw: Dict[str, Any] = {"labels": labels}
        if project_status is not None:
            raw["project_status"] = project_status
        if issue_state is not None:
            raw["state"] = issue_state

        issue.github_mirror_status = status
        issue.github_status_raw = json.dumps(raw, sort_keys=True)
        issue.github_status_updated_at = self._utcnow()

        drift = detect_state_drift(issue.to_state())
        if drift.has_drift:
            logger.warning(f"Drift on {canonical_id} ({drift.severity}): {drift.message}")
            self._log(
                canonical_id,
                MirrorLogStatus.DRIFT,
                action,
                external_id=issue.external_id,
                message=drift.message,
                details={"severity": drift.severity},
            )
        self._log(
            canonical_id,
            MirrorLogStatus.SUCCESS,
            action,
            external_id=issue.external_id,
            message=f"Mirror status {status.value}",
        )
        self.db.commit()
        self.db.refresh(issue)
        return issue

    def refresh_mirror_status(self, canonical_id: str) -> CanonicalIssue:
        """Fetch the tracker issue and apply it as a snapshot."""
        issue = self.get(canonical_id)
        if issue.external_id is None:
            raise MirrorSyncError.validation(
                f"Canonical issue {canonical_id} has not been published yet",
                {"canonical_id": canonical_id},
            )

        try:
            remote = self.tracker.get_issue(issue.external_id)
        except MirrorSyncError as e:
            self._record_refresh_failure(issue, e)
            raise
        except Exception as e:
            classification = self.classifier.classify(e)
            error = MirrorSyncError.from_classification(classification, "refresh issue")
            self._record_refresh_failure(issue, error)
            raise error from e

        self._check_published_content(issue, remote.body)
        return self.apply_mirror_snapshot(
            canonical_id,
            labels=remote.labels,
            issue_state=remote.state,
            action=MirrorAction.REFRESH,
        )

    def _check_published_content(self, issue: CanonicalIssue, body: Optional[str]) -> None:
        """Forget the stored hash when the tracker body no longer carries it.

        The next publish then rewrites the issue instead of being skipped.
        """
        if issue.rendered_hash is None:
            return
        marker = parse_machine_marker(body) or {}
        if marker.get("hash") == issue.rendered_hash:
            return
        logger.warning(
            f"Issue #{issue.external_id} for {issue.canonical_id} was edited outside the mirror; "
            "it will be rewritten on the next publish"
        )
        self._log(
            issue.canonical_id,
            MirrorLogStatus.DRIFT,
            MirrorAction.REFRESH,
            external_id=issue.external_id,
            message="Tracker issue body does not carry the last published content hash",
            details={"published_hash": issue.rendered_hash, "tracker_hash": marker.get("hash")},
        )
        issue.rendered_hash = None

    def _record_refresh_failure(self, issue: CanonicalIssue, error: MirrorSyncError) -> None:
        logger.error(f"Refresh failed for {issue.canonical_id}: {error.message}")
        issue.github_mirror_status = GithubMirrorStatus.ERROR
        issue.last_error = error.message
        self._log(
            issue.canonical_id,
            MirrorLogStatus.FAILED,
            MirrorAction.REFRESH,
            external_id=issue.external_id,
            message=error.message,
            details=error.to_dict(),
        )
        self.db.commit()

    def refresh_all(self) -> Dict[str, Any]:
        """Refresh every published issue; failures are counted, not raised."""
        rows = (
            self.db.query(CanonicalIssue.canonical_id)
            .filter(CanonicalIssue.external_id.isnot(None))
            .order_by(CanonicalIssue.canonical_id)
            .all()
        )
        stats = {"refreshed": 0, "failed": 0, "drift": 0}
        for (canonical_id,) in rows:
            try:
                issue = self.refresh_mirror_status(canonical_id)
            except Exception as e:
                self.db.rollback()
                logger.error(f"Failed to refresh {canonical_id}: {e}")
                stats["failed"] += 1
                continue
            stats["refreshed"] += 1
            if detect_state_drift(issue.to_state()).has_drift:
                stats["drift"] += 1
        logger.info(f"Mirror refresh completed: {stats}")
        return stats

    def describe(self, canonical_id: str) -> Dict[str, Any]:
        """Effective status, the rule that produced it and any drift."""
        issue = self.get(canonical_id)
        state = issue.to_state()
        drift = detect_state_drift(state)
        return {
            "canonical_id": issue.canonical_id,
            "title": issue.title,
            "local_status": state.local_status.value,
            "github_mirror_status": state.github_mirror_status.value,
            "execution_state": state.execution_state.value,
            "handoff_state": state.handoff_state.value,
            "effective_status": compute_effective_status(state).value,
            "effective_status_reason": get_effective_status_reason(state),
            "is_overridden": is_effective_status_overridden(state),
            "drift": {
                "has_drift": drift.has_drift,
                "severity": drift.severity,
                "message": drift.message,
            },
            "external_id": issue.external_id,
            "external_url": issue.external_url,
            "rendered_hash": issue.rendered_hash,
            "last_synced_at": issue.last_synced_at,
            "github_status_updated_at": issue.github_status_updated_at,
            "last_error": issue.last_error,
        }

    # ----- logs -----

    def list_logs(self, canonical_id: Optional[str] = None, limit: int = 100) -> List[MirrorLog]:
        query = self.db.query(MirrorLog).order_by(MirrorLog.created_at.desc(), MirrorLog.id.desc())
        if canonical_id:
            query = query.filter(MirrorLog.canonical_id == canonical_id)
        return query.limit(limit).all()

    def _log(
        self,
        canonical_id: str,
        status: MirrorLogStatus,
        action: MirrorAction,
        external_id: Optional[int] = None,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.db.add(
            MirrorLog(
                canonical_id=canonical_id,
                external_id=external_id,
                status=status,
                action=action,
                message=message,
                details=json.dumps(details, sort_keys=True) if details else None,
            )
        )
