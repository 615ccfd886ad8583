"""GitLab API client wrapper"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import gitlab

from issuemirror.services.tracker import SearchQuery, TrackerIssue

logger = logging.getLogger(__name__)


class GitLabClient:
    """Wrapper for the GitLab issue operations used by the mirror engine.

    Issues are addressed by their project-scoped IID.
    """

    def __init__(self, url: str, access_token: str, project_id: str, timeout: float = 30.0):
        """Initialize GitLab client"""
        self.url = url
        self.project_id = project_id
        self.gl = gitlab.Gitlab(url, private_token=access_token, timeout=timeout)
        self.gl.auth()

    @staticmethod
    def _normalize_issue_payload(issue_data: Dict[str, Any], *, for_update: bool) -> Dict[str, Any]:
        """Normalize payload fields for GitLab API quirks."""
        data = dict(issue_data)

        # GitLab API expects comma-separated string for `labels`. Some servers ignore empty lists.
        if "labels" in data:
            labels = data.get("labels")
            if labels is None:
                data.pop("labels", None)
            elif len(labels) == 0:
                if for_update:
                    data["labels"] = ""
                else:
                    data.pop("labels", None)
            else:
                data["labels"] = ",".join(labels)
        return data

    @staticmethod
    def _to_issue(issue: Any) -> TrackerIssue:
        state = getattr(issue, "state", None)
        # GitLab says "opened"; the status engine speaks GitHub's "open".
        if state == "opened":
            state = "open"
        labels = getattr(issue, "labels", None) or []
        if isinstance(labels, str):
            # Not yet refreshed from the server after save(): still our comma-joined payload.
            labels = [label for label in labels.split(",") if label]
        return TrackerIssue(
            id=int(issue.iid),
            url=getattr(issue, "web_url", "") or "",
            title=getattr(issue, "title", "") or "",
            body=getattr(issue, "description", "") or "",
            labels=tuple(labels),
            state=state,
            updated_at=getattr(issue, "updated_at", None),
        )

    def get_project(self):
        """Get the configured project"""
        try:
            return self.gl.projects.get(self.project_id)
        except gitlab.exceptions.GitlabGetError as e:
            logger.error(f"Failed to get project {self.project_id}: {e}")
            raise

    def search_issues(self, query: SearchQuery) -> List[TrackerIssue]:
        """Search issues in the project (open and closed)"""
        project = self.get_project()
        params: Dict[str, Any] = {"state": "all", "per_page": 100}
        if query.text:
            params["search"] = query.text
            # `in` is a Python keyword; python-gitlab forwards unknown kwargs as query params.
            params["in"] = "description" if query.in_body else "title,description"
        if query.label:
            params["labels"] = [query.label]
        issues = project.issues.list(get_all=True, **params)
        return [self._to_issue(issue) for issue in issues]

    def create_issue(self, title: str, body: str, labels: Sequence[str]) -> TrackerIssue:
        """Create a new issue"""
        project = self.get_project()
        payload = self._normalize_issue_payload(
            {"title": title, "description": body, "labels": list(labels)}, for_update=False
        )
        issue = project.issues.create(payload)
        logger.info(f"Created issue #{issue.iid} in project {self.project_id}")
        return self._to_issue(issue)

    def update_issue(
        self,
        issue_id: int,
        *,
        title: Optional[str] = None,
        body: Optional[str] = None,
        labels: Optional[Sequence[str]] = None,
    ) -> TrackerIssue:
        """Update an existing issue"""
        project = self.get_project()
        issue = project.issues.get(int(issue_id))
        data: Dict[str, Any] = {}
        if title is not None:
            data["title"] = title
        if body is not None:
            data["description"] = body
        if labels is not None:
            data["labels"] = list(labels)
        for key, value in self._normalize_issue_payload(data, for_update=True).items():
            setattr(issue, key, value)
        issue.save()
        logger.info(f"Updated issue #{issue_id} in project {self.project_id}")
        return self._to_issue(issue)

    def get_issue(self, issue_id: int) -> TrackerIssue:
        """Get a specific issue by IID"""
        project = self.get_project()
        return self._to_issue(project.issues.get(int(issue_id)))
