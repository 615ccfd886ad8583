import unittest


def _state(**kwargs):
    from issuemirror.services.status_model import MirrorState

    kwargs.setdefault("handoff_state", "SYNCED")
    return MirrorState(**kwargs)


class MapRawGithubStatusTests(unittest.TestCase):
    def test_synonyms_are_case_and_whitespace_insensitive(self):
        from issuemirror.services.status_model import GithubMirrorStatus as G
        from issuemirror.services.status_model import map_raw_github_status

        cases = {
            "In Progress": G.IN_PROGRESS,
            " implementing ": G.IN_PROGRESS,
            "WIP": G.IN_PROGRESS,
            "DoNe": G.DONE,
            "Completed": G.DONE,
            "complete": G.DONE,
            "To Do": G.TODO,
            "backlog": G.TODO,
            "In Review": G.IN_REVIEW,
            "PR": G.IN_REVIEW,
            "ready for review": G.IN_REVIEW,
            "Blocked": G.BLOCKED,
            "On Hold": G.BLOCKED,
            "waiting": G.BLOCKED,
            "Some Random Status": G.UNKNOWN,
            "": G.UNKNOWN,
            None: G.UNKNOWN,
        }
        for raw, expected in cases.items():
            with self.subTest(raw=raw):
                self.assertEqual(map_raw_github_status(raw), expected)

    def test_closed_from_issue_state_is_not_done(self):
        from issuemirror.services.status_model import GithubMirrorStatus, map_raw_github_status

        self.assertEqual(map_raw_github_status("closed", True), GithubMirrorStatus.UNKNOWN)
        self.assertEqual(map_raw_github_status("open", True), GithubMirrorStatus.UNKNOWN)
        # No synonym maps "closed" to DONE, whatever the source.
        self.assertEqual(map_raw_github_status("closed", False), GithubMirrorStatus.UNKNOWN)
        self.assertEqual(map_raw_github_status(" Closed ", False), GithubMirrorStatus.UNKNOWN)


class ExtractGithubMirrorStatusTests(unittest.TestCase):
    def test_project_field_beats_labels_and_state(self):
        from issuemirror.services.status_model import GithubMirrorStatus, extract_github_mirror_status

        result = extract_github_mirror_status("In Progress", ["status: done"], "closed")

        self.assertEqual(result, GithubMirrorStatus.IN_PROGRESS)

    def test_status_label_used_without_project_field(self):
        from issuemirror.services.status_model import GithubMirrorStatus, extract_github_mirror_status

        self.assertEqual(
            extract_github_mirror_status(None, ["bug", "status: implementing"], "open"),
            GithubMirrorStatus.IN_PROGRESS,
        )
        self.assertEqual(
            extract_github_mirror_status(None, ["Status:In Review"], "open"),
            GithubMirrorStatus.IN_REVIEW,
        )

    def test_first_mappable_label_in_sorted_order(self):
        from issuemirror.services.status_model import GithubMirrorStatus, extract_github_mirror_status

        result = extract_github_mirror_status(
            None, ["status: in review", "status: blocked", "status: nonsense"], "open"
        )

        self.assertEqual(result, GithubMirrorStatus.BLOCKED)

    def test_closed_issue_state_alone_is_unknown(self):
        from issuemirror.services.status_model import GithubMirrorStatus, extract_github_mirror_status

        self.assertEqual(extract_github_mirror_status(None, [], "closed"), GithubMirrorStatus.UNKNOWN)
        self.assertEqual(
            extract_github_mirror_status(None, ["bug", "enhancement"], "open"), GithubMirrorStatus.UNKNOWN
        )

    def test_closed_project_field_or_label_keeps_local_status(self):
        from issuemirror.services.status_model import (
            GithubMirrorStatus,
            LocalStatus,
            MirrorState,
            compute_effective_status,
            extract_github_mirror_status,
        )

        self.assertEqual(extract_github_mirror_status("Closed", [], "open"), GithubMirrorStatus.UNKNOWN)
        self.assertEqual(
            extract_github_mirror_status(None, ["status: closed"], "closed"), GithubMirrorStatus.UNKNOWN
        )

        mirror = extract_github_mirror_status("Closed", ["status: closed"], "closed")
        state = MirrorState(local_status="IMPLEMENTING", github_mirror_status=mirror, execution_state="IDLE")
        self.assertEqual(compute_effective_status(state), LocalStatus.IMPLEMENTING)

    def test_normalize_signal_rejects_unknown_shapes(self):
        from issuemirror.services.status_model import (
            GithubMirrorStatus,
            IssueStateSignal,
            LabelSignal,
            ProjectFieldSignal,
            normalize_signal,
        )

        self.assertEqual(normalize_signal(ProjectFieldSignal("closed")), GithubMirrorStatus.UNKNOWN)
        self.assertEqual(normalize_signal(LabelSignal(("status: done",))), GithubMirrorStatus.DONE)
        self.assertEqual(normalize_signal(IssueStateSignal("closed")), GithubMirrorStatus.UNKNOWN)
        with self.assertRaises(TypeError):
            normalize_signal("closed")


class ComputeEffectiveStatusTests(unittest.TestCase):
    def test_running_execution_keeps_local_status(self):
        from issuemirror.services.status_model import LocalStatus, compute_effective_status

        state = _state(local_status="IMPLEMENTING", github_mirror_status="DONE", execution_state="RUNNING")

        self.assertEqual(compute_effective_status(state), LocalStatus.IMPLEMENTING)

    def test_mapped_mirror_status_wins_when_not_running(self):
        from issuemirror.services.status_model import LocalStatus, compute_effective_status

        for execution in ("IDLE", "FAILED", "SUCCEEDED"):
            with self.subTest(execution=execution):
                state = _state(
                    local_status="IMPLEMENTING",
                    github_mirror_status="IN_REVIEW",
                    execution_state=execution,
                )
                self.assertEqual(compute_effective_status(state), LocalStatus.MERGE_READY)

    def test_mirror_mapping_table(self):
        from issuemirror.services.status_model import compute_effective_status

        expected = {
            "TODO": "SPEC_READY",
            "IN_PROGRESS": "IMPLEMENTING",
            "IN_REVIEW": "MERGE_READY",
            "DONE": "DONE",
            "BLOCKED": "HOLD",
            "UNKNOWN": "CREATED",
            "OPEN": "CREATED",
            "CLOSED": "CREATED",
            "ERROR": "CREATED",
        }
        for mirror, effective in expected.items():
            with self.subTest(mirror=mirror):
                state = _state(local_status="CREATED", github_mirror_status=mirror)
                self.assertEqual(compute_effective_status(state).value, effective)

    def test_unknown_never_overrides_any_local_status(self):
        from issuemirror.services.status_model import LocalStatus, compute_effective_status

        for local in LocalStatus:
            with self.subTest(local=local):
                state = _state(local_status=local, github_mirror_status="UNKNOWN")
                self.assertEqual(compute_effective_status(state), local)

    def test_invalid_enum_values_are_rejected(self):
        from pydantic import ValidationError

        with self.assertRaises(ValidationError):
            _state(local_status="INVALID")
        with self.assertRaises(ValidationError):
            _state(local_status="CREATED", github_mirror_status="MAYBE")


class StatusHelperTests(unittest.TestCase):
    def test_override_flag(self):
        from issuemirror.services.status_model import is_effective_status_overridden

        self.assertFalse(
            is_effective_status_overridden(_state(local_status="IMPLEMENTING", github_mirror_status="IN_PROGRESS"))
        )
        self.assertTrue(
            is_effective_status_overridden(_state(local_status="IMPLEMENTING", github_mirror_status="IN_REVIEW"))
        )
        self.assertFalse(
            is_effective_status_overridden(
                _state(local_status="IMPLEMENTING", github_mirror_status="DONE", execution_state="RUNNING")
            )
        )

    def test_has_github_status(self):
        from issuemirror.services.status_model import has_github_status

        self.assertTrue(has_github_status(_state(local_status="CREATED", github_mirror_status="CLOSED")))
        self.assertTrue(
            has_github_status(_state(local_status="CREATED", raw_external_status='{"state":"open"}'))
        )
        self.assertFalse(has_github_status(_state(local_status="CREATED")))
        self.assertFalse(has_github_status(_state(local_status="CREATED", raw_external_status="  ")))

    def test_reason_texts(self):
        from issuemirror.services.status_model import get_effective_status_reason

        running = get_effective_status_reason(
            _state(local_status="IMPLEMENTING", github_mirror_status="OPEN", execution_state="RUNNING")
        )
        self.assertIn("Execution in progress", running)
        self.assertIn("IMPLEMENTING", running)

        mapped = get_effective_status_reason(_state(local_status="IMPLEMENTING", github_mirror_status="IN_REVIEW"))
        self.assertIn("GitHub status available", mapped)
        self.assertIn("IN_REVIEW", mapped)
        self.assertIn("MERGE_READY", mapped)

        state_only = get_effective_status_reason(
            _state(
                local_status="CREATED",
                github_mirror_status="CLOSED",
                raw_external_status='{"state":"closed"}',
                external_status_updated_at="2026-01-07T10:00:00Z",
            )
        )
        self.assertIn("GitHub mirror reports CLOSED", state_only)
        self.assertIn("synced:", state_only)

        unmapped = get_effective_status_reason(
            _state(local_status="CREATED", raw_external_status='{"state":"open","labels":[]}')
        )
        self.assertIn("GitHub data available but not yet mapped", unmapped)

        local = get_effective_status_reason(_state(local_status="SPEC_READY"))
        self.assertIn("no GitHub sync yet", local)
        self.assertIn("SPEC_READY", local)

    def test_describe_mirror_snapshot(self):
        from issuemirror.services.status_model import describe_mirror_snapshot

        self.assertEqual(describe_mirror_snapshot('{"state": "closed"}'), {"state": "closed"})
        self.assertEqual(describe_mirror_snapshot("In Progress"), {"text": "In Progress"})
        self.assertIsNone(describe_mirror_snapshot(""))
        self.assertIsNone(describe_mirror_snapshot(None))


if __name__ == "__main__":
    unittest.main()
