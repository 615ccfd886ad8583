"""Shared fakes for tests: an in-memory tracker and an in-memory database."""

import threading
from dataclasses import replace


class ApiError(Exception):
    """Mimics an HTTP error from a tracker API (status + message)."""

    def __init__(self, status_code, message, headers=None):
        super().__init__(message)
        self.status_code = status_code
        self.response = None
        if headers is not None:
            from types import SimpleNamespace

            self.response = SimpleNamespace(status_code=status_code, headers=headers)


class InMemoryTracker:
    """Thread-safe tracker that rejects a second issue for the same canonical id.

    `create_barrier` (a threading.Barrier) holds every creator until all racing
    callers have resolved, which forces the duplicate path deterministically.
    """

    def __init__(self, create_barrier=None):
        from issuemirror.services.renderer import extract_canonical_id_from_body

        self._extract = extract_canonical_id_from_body
        self._lock = threading.RLock()
        self._next_id = 1
        self.issues = {}
        self.create_calls = 0
        self.update_calls = []
        self.search_calls = []
        self.create_barrier = create_barrier
        self.create_error = None
        self.get_error = None

    def seed(self, title, body, labels=(), state="open", issue_id=None):
        from issuemirror.services.tracker import TrackerIssue

        with self._lock:
            if issue_id is None:
                issue_id = self._next_id
            self._next_id = max(self._next_id, issue_id + 1)
            issue = TrackerIssue(
                id=issue_id,
                url=f"https://github.com/acme/work/issues/{issue_id}",
                title=title,
                body=body,
                labels=tuple(labels),
                state=state,
            )
            self.issues[issue_id] = issue
            return issue

    def set_labels(self, issue_id, labels):
        with self._lock:
            self.issues[issue_id] = replace(self.issues[issue_id], labels=tuple(labels))

    def set_state(self, issue_id, state):
        with self._lock:
            self.issues[issue_id] = replace(self.issues[issue_id], state=state)

    def search_issues(self, query):
        with self._lock:
            self.search_calls.append(query)
            issues = sorted(self.issues.values(), key=lambda i: i.id)
        result = []
        for issue in issues:
            if query.label and query.label not in issue.labels:
                continue
            if query.text:
                haystack = issue.body if query.in_body else f"{issue.title}\n{issue.body}"
                if query.text not in haystack:
                    continue
            result.append(issue)
        return result

    def create_issue(self, title, body, labels):
        if self.create_barrier is not None:
            self.create_barrier.wait(timeout=10)
        if self.create_error is not None:
            raise self.create_error
        with self._lock:
            self.create_calls += 1
            canonical_id = self._extract(body)
            for existing in self.issues.values():
                if self._extract(existing.body) == canonical_id:
                    raise ApiError(422, "Validation Failed: issue already exists")
            return self.seed(title, body, labels)

    def update_issue(self, issue_id, *, title=None, body=None, labels=None):
        with self._lock:
            self.update_calls.append(issue_id)
            issue = self.issues[issue_id]
            changes = {}
            if title is not None:
                changes["title"] = title
            if body is not None:
                changes["body"] = body
            if labels is not None:
                changes["labels"] = tuple(labels)
            self.issues[issue_id] = replace(issue, **changes)
            return self.issues[issue_id]

    def get_issue(self, issue_id):
        if self.get_error is not None:
            raise self.get_error
        with self._lock:
            if issue_id not in self.issues:
                raise ApiError(404, "Not Found")
            return self.issues[issue_id]


def make_session_factory():
    """Fresh in-memory SQLite database with all tables created."""
    from sqlalchemy import create_engine
    from sqlalchemy.orm import sessionmaker
    from sqlalchemy.pool import StaticPool

    from issuemirror.models.base import init_db

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
