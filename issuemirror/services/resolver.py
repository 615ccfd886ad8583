"""Locate the external issue that mirrors a canonical record"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from issuemirror.services.errors import MirrorSyncError
from issuemirror.services.labels import ManagedLabelPolicy
from issuemirror.services.renderer import (
    TITLE_MARKER_PREFIX,
    body_marker,
    extract_canonical_id_from_title,
)
from issuemirror.services.tracker import SearchQuery, TrackerClient, TrackerIssue

logger = logging.getLogger(__name__)

FOUND = "found"
NOT_FOUND = "not_found"

MATCHED_BY_BODY = "body"
MATCHED_BY_LABEL = "label"
MATCHED_BY_SEARCH = "search"


@dataclass(frozen=True)
class ResolveResult:
    mode: str
    external_id: Optional[int] = None
    external_url: Optional[str] = None
    matched_by: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.mode == FOUND

    @classmethod
    def not_found(cls) -> "ResolveResult":
        return cls(mode=NOT_FOUND)


def _sort_key(issue: TrackerIssue) -> Tuple[int, int, str]:
    # Numeric ids compare numerically; anything else falls back to string order.
    try:
        return (0, int(issue.id), "")
    except (TypeError, ValueError):
        return (1, 0, str(issue.id))


class CanonicalResolver:
    """Find the single tracker issue treated as canonical for an id.

    Stages run in order (body marker, canonical label, keyword search) and the
    first stage with any candidate decides. Among several candidates the lowest
    external id wins, so every caller picks the same resource.
    """

    def __init__(self, tracker: TrackerClient, label_policy: Optional[ManagedLabelPolicy] = None):
        self.tracker = tracker
        self.label_policy = label_policy or ManagedLabelPolicy()

    def resolve(self, canonical_id: str) -> ResolveResult:
        canonical_id = (canonical_id or "").strip()
        if not canonical_id:
            raise MirrorSyncError.validation("canonical_id is required")

        stages: List[Tuple[str, Callable[[str], List[TrackerIssue]]]] = [
            (MATCHED_BY_BODY, self._by_body_marker),
            (MATCHED_BY_LABEL, self._by_label),
            (MATCHED_BY_SEARCH, self._by_title_search),
        ]
        for matched_by, stage in stages:
            candidates = stage(canonical_id)
            if not candidates:
                continue
            chosen = self._choose(canonical_id, candidates, matched_by)
            return ResolveResult(
                mode=FOUND,
                external_id=chosen.id,
                external_url=chosen.url,
                matched_by=matched_by,
            )
        return ResolveResult.not_found()

    def _by_body_marker(self, canonical_id: str) -> List[TrackerIssue]:
        marker = body_marker(canonical_id)
        issues = self.tracker.search_issues(SearchQuery(text=marker, in_body=True))
        # Search is fuzzy; require the exact marker line.
        return [
            issue
            for issue in issues
            if any(line.strip() == marker for line in (issue.body or "").splitlines())
        ]

    def _by_label(self, canonical_id: str) -> List[TrackerIssue]:
        label = self.label_policy.canonical_label(canonical_id)
        issues = self.tracker.search_issues(SearchQuery(label=label))
        return [issue for issue in issues if label in issue.labels]

    def _by_title_search(self, canonical_id: str) -> List[TrackerIssue]:
        issues = self.tracker.search_issues(SearchQuery(text=f"{TITLE_MARKER_PREFIX}{canonical_id}]"))
        return [
            issue for issue in issues if extract_canonical_id_from_title(issue.title) == canonical_id
        ]

    @staticmethod
    def _choose(canonical_id: str, candidates: List[TrackerIssue], matched_by: str) -> TrackerIssue:
        ordered = sorted(candidates, key=_sort_key)
        if len(ordered) > 1:
            logger.warning(
                f"Multiple issues match canonical id {canonical_id} via {matched_by}: "
                f"{[c.id for c in ordered]}; using #{ordered[0].id}"
            )
        return ordered[0]
