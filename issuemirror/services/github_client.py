"""GitHub REST API client wrapper"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from issuemirror.services.tracker import SearchQuery, TrackerIssue

logger = logging.getLogger(__name__)


class GitHubClient:
    """Wrapper for the GitHub issue operations used by the mirror engine"""

    def __init__(
        self,
        owner: str,
        repo: str,
        token: Optional[str] = None,
        base_url: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize GitHub client"""
        self.owner = owner
        self.repo = repo
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout, transport=transport
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    @property
    def repo_full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def _issues_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}/issues"

    @staticmethod
    def _to_issue(data: Dict[str, Any]) -> TrackerIssue:
        labels = []
        for label in data.get("labels") or []:
            name = label.get("name") if isinstance(label, dict) else label
            if name:
                labels.append(str(name))
        return TrackerIssue(
            id=int(data["number"]),
            url=data.get("html_url") or "",
            title=data.get("title") or "",
            body=data.get("body") or "",
            labels=tuple(labels),
            state=data.get("state"),
            updated_at=data.get("updated_at"),
        )

    def build_search_query(self, query: SearchQuery) -> str:
        """Translate a backend-neutral query into GitHub search syntax."""
        parts = [f"repo:{self.repo_full_name}", "is:issue"]
        if query.text:
            escaped = query.text.replace('"', '\\"')
            parts.append(f'"{escaped}"')
            if query.in_body:
                parts.append("in:body")
        if query.label:
            parts.append(f'label:"{query.label}"')
        return " ".join(parts)

    def search_issues(self, query: SearchQuery) -> List[TrackerIssue]:
        """Search issues (pull requests are filtered out)"""
        q = self.build_search_query(query)
        response = self._client.get("/search/issues", params={"q": q, "per_page": 100})
        response.raise_for_status()
        items = response.json().get("items") or []
        return [self._to_issue(item) for item in items if not item.get("pull_request")]

    def create_issue(self, title: str, body: str, labels: Sequence[str]) -> TrackerIssue:
        """Create a new issue"""
        response = self._client.post(
            self._issues_path, json={"title": title, "body": body, "labels": list(labels)}
        )
        response.raise_for_status()
        issue = self._to_issue(response.json())
        logger.info(f"Created issue #{issue.id} in {self.repo_full_name}")
        return issue

    def update_issue(
        self,
        issue_id: int,
        *,
        title: Optional[str] = None,
        body: Optional[str] = None,
        labels: Optional[Sequence[str]] = None,
    ) -> TrackerIssue:
        """Update an existing issue (only the given fields are sent)"""
        payload: Dict[str, Any] = {}
        if title is not None:
            payload["title"] = title
        if body is not None:
            payload["body"] = body
        if labels is not None:
            payload["labels"] = list(labels)
        response = self._client.patch(f"{self._issues_path}/{int(issue_id)}", json=payload)
        response.raise_for_status()
        issue = self._to_issue(response.json())
        logger.info(f"Updated issue #{issue_id} in {self.repo_full_name}")
        return issue

    def get_issue(self, issue_id: int) -> TrackerIssue:
        """Get a specific issue by number"""
        response = self._client.get(f"{self._issues_path}/{int(issue_id)}")
        response.raise_for_status()
        return self._to_issue(response.json())
