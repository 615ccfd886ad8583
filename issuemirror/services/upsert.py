"""Idempotent create-or-update of mirrored issues"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

from issuemirror.services.errors import ErrorClassifier, ErrorCode, MirrorSyncError
from issuemirror.services.labels import ManagedLabelPolicy
from issuemirror.services.records import CanonicalRecord
from issuemirror.services.renderer import ContentRenderer, RenderedContent
from issuemirror.services.resolver import CanonicalResolver, ResolveResult
from issuemirror.services.tracker import TrackerClient

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"


@dataclass(frozen=True)
class UpsertResult:
    mode: str
    canonical_id: str
    external_id: int
    external_url: str
    rendered_hash: str
    labels_applied: Tuple[str, ...]


class UpsertOrchestrator:
    """Publish a canonical record to the tracker exactly once.

    Callers may race on the same canonical id. The tracker (or the store in
    front of it) rejects the losing create with a duplicate error; the loser
    re-resolves once and updates the winner's issue instead. No locks are
    taken and nothing is retried beyond that single re-resolve.
    """

    def __init__(
        self,
        tracker: TrackerClient,
        renderer: Optional[ContentRenderer] = None,
        resolver: Optional[CanonicalResolver] = None,
        classifier: Optional[ErrorClassifier] = None,
        label_policy: Optional[ManagedLabelPolicy] = None,
    ):
        self.tracker = tracker
        self.label_policy = label_policy or ManagedLabelPolicy()
        self.renderer = renderer or ContentRenderer(self.label_policy)
        self.resolver = resolver or CanonicalResolver(tracker, self.label_policy)
        self.classifier = classifier or ErrorClassifier()

    def upsert(self, record: Union[CanonicalRecord, Dict[str, Any]]) -> UpsertResult:
        try:
            content = self.renderer.render(record)
        except ValueError as e:
            # pydantic.ValidationError is a ValueError
            raise MirrorSyncError.validation(f"Invalid canonical record: {e}") from e

        resolved = self._resolve(content.canonical_id)
        if resolved.found:
            return self._update(content, resolved)

        try:
            issue = self.tracker.create_issue(
                content.title,
                content.body,
                self.label_policy.labels_for_create(content.labels),
            )
        except Exception as e:
            classification = self.classifier.classify(e)
            if classification.code != ErrorCode.DUPLICATE:
                logger.error(
                    f"Create failed for {content.canonical_id} ({classification.code.value}): "
                    f"{classification.message}"
                )
                raise MirrorSyncError.from_classification(classification, "create issue") from e

            logger.warning(
                f"Create for {content.canonical_id} lost a race ({classification.message}); re-resolving"
            )
            recovered = self._resolve(content.canonical_id)
            if not recovered.found:
                logger.error(
                    f"Duplicate create for {content.canonical_id} but no issue could be resolved"
                )
                raise MirrorSyncError.from_classification(classification, "create issue") from e
            return self._update(content, recovered)

        labels = self.label_policy.labels_for_create(content.labels)
        logger.info(f"Created issue #{issue.id} for {content.canonical_id}")
        return UpsertResult(
            mode=CREATED,
            canonical_id=content.canonical_id,
            external_id=issue.id,
            external_url=issue.url,
            rendered_hash=content.hash,
            labels_applied=labels,
        )

    def _resolve(self, canonical_id: str) -> ResolveResult:
        try:
            return self.resolver.resolve(canonical_id)
        except MirrorSyncError:
            raise
        except Exception as e:
            classification = self.classifier.classify(e)
            logger.error(
                f"Resolve failed for {canonical_id} ({classification.code.value}): {classification.message}"
            )
            raise MirrorSyncError.from_classification(classification, "resolve issue") from e

    def _update(self, content: RenderedContent, resolved: ResolveResult) -> UpsertResult:
        external_id = resolved.external_id
        try:
            existing = self.tracker.get_issue(external_id)
            labels_applied = self.label_policy.merge_for_update(existing.labels, content.labels)
            issue = self.tracker.update_issue(
                external_id,
                title=content.title,
                body=content.body,
                labels=labels_applied,
            )
        except Exception as e:
            classification = self.classifier.classify(e)
            logger.error(
                f"Update of #{external_id} failed for {content.canonical_id} "
                f"({classification.code.value}): {classification.message}"
            )
            raise MirrorSyncError.from_classification(classification, "update issue") from e

        logger.info(
            f"Updated issue #{external_id} for {content.canonical_id} (matched by {resolved.matched_by})"
        )
        return UpsertResult(
            mode=UPDATED,
            canonical_id=content.canonical_id,
            external_id=external_id,
            external_url=issue.url or resolved.external_url or "",
            rendered_hash=content.hash,
            labels_applied=labels_applied,
        )
