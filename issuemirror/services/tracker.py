"""Tracker client contract shared by the GitHub and GitLab adapters"""

from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence, Tuple, runtime_checkable


@dataclass(frozen=True)
class SearchQuery:
    """Backend-neutral issue search.

    `text` is matched as a phrase; `in_body` restricts it to the description;
    `label` (optional) additionally requires that label.
    """

    text: str = ""
    in_body: bool = False
    label: Optional[str] = None


@dataclass(frozen=True)
class TrackerIssue:
    id: int
    url: str
    title: str = ""
    body: str = ""
    labels: Tuple[str, ...] = field(default_factory=tuple)
    state: Optional[str] = None
    updated_at: Optional[str] = None


@runtime_checkable
class TrackerClient(Protocol):
    """Operations the mirror engine consumes from an issue tracker.

    Implementations must not retry: every failure propagates to the caller,
    which classifies it.
    """

    def search_issues(self, query: SearchQuery) -> List[TrackerIssue]: ...

    def create_issue(self, title: str, body: str, labels: Sequence[str]) -> TrackerIssue: ...

    def update_issue(
        self,
        issue_id: int,
        *,
        title: Optional[str] = None,
        body: Optional[str] = None,
        labels: Optional[Sequence[str]] = None,
    ) -> TrackerIssue: ...

    def get_issue(self, issue_id: int) -> TrackerIssue: ...


def build_tracker_client(settings) -> TrackerClient:
    """Instantiate the configured tracker backend."""
    backend = (settings.tracker_backend or "github").strip().lower()
    if backend == "github":
        from issuemirror.services.github_client import GitHubClient

        if not settings.github_owner or not settings.github_repo:
            raise ValueError("GITHUB_OWNER and GITHUB_REPO must be set for the github backend")
        return GitHubClient(
            owner=settings.github_owner,
            repo=settings.github_repo,
            token=settings.github_token,
            base_url=settings.github_api_url,
            timeout=settings.tracker_timeout_seconds,
        )
    if backend == "gitlab":
        from issuemirror.services.gitlab_client import GitLabClient

        if not settings.gitlab_token or not settings.gitlab_project_id:
            raise ValueError("GITLAB_TOKEN and GITLAB_PROJECT_ID must be set for the gitlab backend")
        return GitLabClient(
            settings.gitlab_url,
            settings.gitlab_token,
            settings.gitlab_project_id,
            timeout=settings.tracker_timeout_seconds,
        )
    raise ValueError(f"Unknown tracker backend '{settings.tracker_backend}'")
