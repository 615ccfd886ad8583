import unittest


def _record(**overrides):
    record = {
        "canonical_id": "I811",
        "title": "Mirror canonical issues",
        "body": "Publish every canonical issue exactly once.",
        "labels": ["mirror"],
    }
    record.update(overrides)
    return record


class ApiTests(unittest.TestCase):
    def setUp(self):
        from fastapi import Depends
        from fastapi.testclient import TestClient
        from support import InMemoryTracker, make_session_factory

        from issuemirror.api.mirror import get_mirror_service
        from issuemirror.main import app
        from issuemirror.models.base import get_db
        from issuemirror.services.labels import ManagedLabelPolicy
        from issuemirror.services.mirror_service import MirrorService

        Session = make_session_factory()
        self.tracker = InMemoryTracker()

        def override_get_db():
            db = Session()
            try:
                yield db
            finally:
                db.close()

        def override_service(db=Depends(get_db)):
            return MirrorService(db, tracker=self.tracker, label_policy=ManagedLabelPolicy())

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_mirror_service] = override_service
        self.addCleanup(app.dependency_overrides.clear)

        # Not used as a context manager: the lifespan (scheduler, real DB) stays off.
        self.client = TestClient(app)

    def test_health(self):
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "healthy")

    def test_register_list_and_get(self):
        created = self.client.post("/api/issues", json=_record())
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["canonical_id"], "I811")
        self.assertEqual(created.json()["local_status"], "CREATED")

        listed = self.client.get("/api/issues")
        self.assertEqual([i["canonical_id"] for i in listed.json()], ["I811"])

        detail = self.client.get("/api/issues/I811")
        self.assertEqual(detail.status_code, 200)
        body = detail.json()
        self.assertEqual(body["effective_status"], "CREATED")
        self.assertEqual(body["github_mirror_status"], "UNKNOWN")
        self.assertFalse(body["drift"]["has_drift"])

    def test_invalid_record_is_rejected(self):
        response = self.client.post("/api/issues", json=_record(canonical_id="has space"))

        self.assertEqual(response.status_code, 422)

    def test_unknown_issue_is_404(self):
        self.assertEqual(self.client.get("/api/issues/missing").status_code, 404)
        self.assertEqual(self.client.post("/api/mirror/missing/publish").status_code, 404)
        self.assertEqual(
            self.client.patch("/api/issues/missing/state", json={"local_status": "DONE"}).status_code, 404
        )

    def test_publish_then_skip_then_force(self):
        self.client.post("/api/issues", json=_record())

        first = self.client.post("/api/mirror/I811/publish")
        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json()["status"], "created")
        self.assertEqual(first.json()["external_id"], 1)

        second = self.client.post("/api/mirror/I811/publish")
        self.assertEqual(second.json()["status"], "skipped")

        forced = self.client.post("/api/mirror/I811/publish", params={"force": "true"})
        self.assertEqual(forced.json()["status"], "updated")
        self.assertEqual(len(self.tracker.issues), 1)

    def test_rate_limited_publish_is_429(self):
        from support import ApiError

        self.client.post("/api/issues", json=_record())
        self.tracker.create_error = ApiError(429, "Too Many Requests", headers={"retry-after": "60"})

        response = self.client.post("/api/mirror/I811/publish")

        self.assertEqual(response.status_code, 429)
        detail = response.json()["detail"]
        self.assertEqual(detail["code"], "GITHUB_API_ERROR")
        self.assertEqual(detail["details"]["classification"], "RATE_LIMITED")
        self.assertEqual(detail["details"]["retry_after"], 60)

    def test_tracker_failure_is_502(self):
        from support import ApiError

        self.client.post("/api/issues", json=_record())
        self.tracker.create_error = ApiError(500, "Internal Server Error")

        response = self.client.post("/api/mirror/I811/publish")

        self.assertEqual(response.status_code, 502)
        self.assertEqual(self.client.get("/api/issues/I811").json()["handoff_state"], "FAILED")

    def test_unconfigured_tracker_is_422_and_marks_handoff_failed(self):
        from types import SimpleNamespace
        from unittest.mock import patch

        from fastapi import Depends

        from issuemirror.api.mirror import get_mirror_service
        from issuemirror.main import app
        from issuemirror.models.base import get_db
        from issuemirror.services.labels import ManagedLabelPolicy
        from issuemirror.services.mirror_service import MirrorService

        def unconfigured_service(db=Depends(get_db)):
            return MirrorService(db, label_policy=ManagedLabelPolicy())

        app.dependency_overrides[get_mirror_service] = unconfigured_service
        self.client.post("/api/issues", json=_record())
        settings = SimpleNamespace(tracker_backend="github", github_owner=None, github_repo=None)

        with patch("issuemirror.services.mirror_service.settings", settings):
            response = self.client.post("/api/mirror/I811/publish")

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"]["code"], "VALIDATION_ERROR")
        self.assertIn("GITHUB_OWNER", response.json()["detail"]["message"])
        self.assertEqual(self.client.get("/api/issues/I811").json()["handoff_state"], "FAILED")
        logs = self.client.get("/api/mirror/logs", params={"canonical_id": "I811"}).json()
        self.assertEqual([log["status"] for log in logs], ["failed"])

    def test_refresh_of_unpublished_issue_is_422(self):
        self.client.post("/api/issues", json=_record())

        response = self.client.post("/api/mirror/I811/refresh")

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"]["code"], "VALIDATION_ERROR")

    def test_snapshot_push_reports_drift(self):
        self.client.post("/api/issues", json=_record())
        self.client.post("/api/mirror/I811/publish")

        response = self.client.post(
            "/api/mirror/I811/snapshot", json={"labels": ["afu9"], "state": "closed"}
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["github_mirror_status"], "CLOSED")
        self.assertEqual(body["effective_status"], "CREATED")
        self.assertTrue(body["drift"]["has_drift"])

        stats = self.client.get("/api/dashboard/stats").json()
        self.assertEqual(stats["total_issues"], 1)
        self.assertEqual(stats["published_issues"], 1)
        self.assertEqual(stats["drift"][0]["canonical_id"], "I811")

    def test_refresh_and_refresh_all(self):
        self.client.post("/api/issues", json=_record())
        self.client.post("/api/mirror/I811/publish")
        self.tracker.set_labels(1, ["status: in progress"])

        refreshed = self.client.post("/api/mirror/I811/refresh")
        self.assertEqual(refreshed.status_code, 200)
        self.assertEqual(refreshed.json()["effective_status"], "IMPLEMENTING")

        stats = self.client.post("/api/mirror/refresh-all")
        self.assertEqual(stats.json(), {"refreshed": 1, "failed": 0, "drift": 0})

    def test_patch_state_and_logs(self):
        self.client.post("/api/issues", json=_record())
        self.client.post("/api/mirror/I811/publish")

        patched = self.client.patch(
            "/api/issues/I811/state", json={"local_status": "DONE", "execution_state": "SUCCEEDED"}
        )
        self.assertEqual(patched.status_code, 200)
        self.assertEqual(patched.json()["local_status"], "DONE")
        self.assertEqual(patched.json()["execution_state"], "SUCCEEDED")

        logs = self.client.get("/api/mirror/logs", params={"canonical_id": "I811"}).json()
        self.assertEqual(len(logs), 1)
        self.assertEqual(logs[0]["action"], "create")
        self.assertEqual(logs[0]["status"], "success")


if __name__ == "__main__":
    unittest.main()
