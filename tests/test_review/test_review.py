"""
Tests for post-hooks and asynchronous review posting.

Covers:
- PostHookNotifier (ordering, isolation, run-once, late registration)
- parse_votes
- GerritRestReviewer against a mocked HTTP transport
- verdicts posted from patchset-created through the dispatcher
"""

import json
from pathlib import Path

import httpx
import pytest

from githooks.config.loader import ResolvedConfig
from githooks.config.schema import GerritConfig
from githooks.core.hooks import Dispatcher, DispatchState
from githooks.core.phases import HookPhase
from githooks.core.posthooks import LateRegistrationError, PostHookNotifier
from githooks.core.results import DispatchResult, HandlerResult
from githooks.repo.query import RepositoryQuery
from githooks.repo.review import GerritRestReviewer, ReviewError, ReviewPoster, parse_votes


class FakeRepo(RepositoryQuery):
    def __init__(self, git_dir: Path) -> None:
        self._git_dir = git_dir

    def git_dir(self) -> Path:
        return self._git_dir

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        return True

    def changed_files(self, old: str, new: str) -> list[str]:
        return []

    def list_refs(self, pattern: str = "refs/") -> list[str]:
        return []

    def file_content(self, rev: str, path: str) -> str:
        return ""


class RecordingReviewer(ReviewPoster):
    def __init__(self) -> None:
        self.reviews: list[tuple[str, str, str, dict[str, int]]] = []

    def post_review(self, change, revision, message, labels):
        self.reviews.append((change, revision, message, labels))


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("GITHOOKS_EXTERNALS", raising=False)


# ── Tests: post-hooks ─────────────────────────────────────────────────────


class TestPostHookNotifier:
    def test_runs_in_order_once(self):
        notifier = PostHookNotifier()
        calls = []
        notifier.register(lambda r: calls.append("a"))
        notifier.register(lambda r: calls.append("b"))
        result = DispatchResult(HookPhase.POST_COMMIT)

        assert notifier.run_all(result) == []
        assert notifier.run_all(result) == []
        assert calls == ["a", "b"]
        assert len(notifier) == 2

    def test_failure_isolated(self):
        notifier = PostHookNotifier()
        calls = []

        def broken(result):
            raise RuntimeError("down")

        notifier.register(broken, name="broken")
        notifier.register(lambda r: calls.append(r.phase))
        assert notifier.run_all(DispatchResult(HookPhase.PRE_COMMIT)) == ["broken"]
        assert calls == [HookPhase.PRE_COMMIT]

    def test_register_after_run(self):
        notifier = PostHookNotifier()
        notifier.run_all(DispatchResult(HookPhase.PRE_COMMIT))
        with pytest.raises(LateRegistrationError):
            notifier.register(lambda r: None)


class TestPostHooksInDispatch:
    def _dispatcher(self, tmp_path, **kwargs):
        return Dispatcher(
            config=ResolvedConfig.from_mapping({"githooks.externals": "false"}),
            repo=FakeRepo(tmp_path),
            env={},
            cwd=str(tmp_path),
            **kwargs,
        )

    def test_post_hook_sees_result_and_cannot_change_exit(self, tmp_path):
        dispatcher = self._dispatcher(tmp_path)
        seen = []

        def post(result):
            seen.append((result.success, dispatcher.registry.state))
            raise RuntimeError("ignored")

        dispatcher.registry.register_handler("pre-commit", lambda ctx: False)
        dispatcher.registry.register_post_hook(post)

        assert dispatcher.dispatch("pre-commit", []) == 1
        assert seen == [(False, DispatchState.POST_HOOKS)]
        assert dispatcher.registry.state is DispatchState.DONE

    def test_handler_can_register_post_hook(self, tmp_path):
        dispatcher = self._dispatcher(tmp_path)
        seen = []

        def handler(ctx):
            dispatcher.registry.register_post_hook(lambda r: seen.append(r.success))

        dispatcher.registry.register_handler("post-commit", handler)
        assert dispatcher.dispatch("post-commit", []) == 0
        assert seen == [True]

    def test_late_post_hook(self, tmp_path):
        dispatcher = self._dispatcher(tmp_path)
        dispatcher.dispatch("post-commit", [])
        with pytest.raises(LateRegistrationError):
            dispatcher.registry.register_post_hook(lambda r: None)

    def test_patchset_created_posts_rejection(self, tmp_path):
        reviewer = RecordingReviewer()
        dispatcher = self._dispatcher(tmp_path, reviewer=reviewer)
        dispatcher.registry.register_handler(
            "patchset-created", lambda ctx, *a: HandlerResult.fail("missing Change-Id"), name="cid"
        )
        args = ["--change", "I123", "--commit", "abc", "--patchset", "2"]

        # asynchronous phase: never blocks
        assert dispatcher.dispatch("patchset-created", args) == 0

        assert len(reviewer.reviews) == 1
        change, revision, message, labels = reviewer.reviews[0]
        assert (change, revision) == ("I123", "abc")
        assert "[cid] missing Change-Id" in message
        assert labels == {"Code-Review": -1}

    def test_draft_published_posts_approval(self, tmp_path):
        reviewer = RecordingReviewer()
        dispatcher = Dispatcher(
            config=ResolvedConfig.from_mapping({
                "githooks.externals": "false",
                "githooks.gerrit.votes-to-approve": "Verified+1",
                "githooks.gerrit.comment-ok": "All checks passed",
            }),
            repo=FakeRepo(tmp_path),
            reviewer=reviewer,
            env={},
            cwd=str(tmp_path),
        )
        dispatcher.dispatch("draft-published", ["--change", "I9", "--patchset", "1"])
        assert reviewer.reviews == [("I9", "1", "All checks passed", {"Verified": 1})]

    def test_no_reviewer_configured(self, tmp_path):
        dispatcher = self._dispatcher(tmp_path)
        assert dispatcher.dispatch("patchset-created", ["--change", "I1"]) == 0
        assert len(dispatcher.registry.notifier) == 0


# ── Tests: votes ──────────────────────────────────────────────────────────


class TestParseVotes:
    def test_multiple(self):
        assert parse_votes("Code-Review-1,Verified+1") == {"Code-Review": -1, "Verified": 1}

    def test_whitespace_separated(self):
        assert parse_votes(" Code-Review+2  Verified+1 ") == {"Code-Review": 2, "Verified": 1}

    def test_empty(self):
        assert parse_votes("") == {}

    def test_invalid(self):
        with pytest.raises(ValueError, match="Verified"):
            parse_votes("Verified")


# ── Tests: Gerrit REST ────────────────────────────────────────────────────


class TestGerritRestReviewer:
    def _reviewer(self, handler, **config):
        config.setdefault("url", "https://gerrit.example.com/")
        client = httpx.Client(transport=httpx.MockTransport(handler))
        return GerritRestReviewer(GerritConfig(**config), retries=2, client=client)

    def test_requires_url(self):
        with pytest.raises(ReviewError):
            GerritRestReviewer(GerritConfig())

    def test_posts_review(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={})

        reviewer = self._reviewer(handler)
        reviewer.post_review("I1", "abc", "OK", {"Code-Review": 1})

        assert len(requests) == 1
        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://gerrit.example.com/changes/I1/revisions/abc/review"
        assert json.loads(request.content) == {"message": "OK", "labels": {"Code-Review": 1}}

    def test_authenticated_prefix(self):
        urls = []

        def handler(request):
            urls.append(str(request.url))
            return httpx.Response(200)

        reviewer = self._reviewer(handler, username="bot", password="secret")
        reviewer.post_review("I1", "current", "OK", {})
        assert urls == ["https://gerrit.example.com/a/changes/I1/revisions/current/review"]

    def test_http_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(403, text="forbidden")

        reviewer = self._reviewer(handler)
        with pytest.raises(ReviewError, match="I1"):
            reviewer.post_review("I1", "abc", "nope", {"Code-Review": -1})
        assert calls == [1]

    def test_transport_error_retried(self, monkeypatch):
        monkeypatch.setattr("time.sleep", lambda s: None)
        calls = []

        def handler(request):
            calls.append(1)
            if len(calls) < 3:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200)

        reviewer = self._reviewer(handler)
        reviewer.post_review("I1", "abc", "OK", {})
        assert len(calls) == 3

    def test_transport_error_exhausted(self, monkeypatch):
        monkeypatch.setattr("time.sleep", lambda s: None)

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        reviewer = self._reviewer(handler)
        with pytest.raises(ReviewError):
            reviewer.post_review("I1", "abc", "OK", {})

    def test_context_manager_closes_client(self):
        with self._reviewer(lambda request: httpx.Response(200)) as reviewer:
            reviewer.post_review("I1", "abc", "OK", {})
            assert not reviewer.http.is_closed
        assert reviewer.http.is_closed


class ClosingReviewer(RecordingReviewer):
    instances: list["ClosingReviewer"] = []

    def __init__(self, config) -> None:
        super().__init__()
        self.config = config
        self.closed = False
        ClosingReviewer.instances.append(self)

    def close(self) -> None:
        self.closed = True


class TestReviewerLifecycle:
    def test_configured_reviewer_closed_after_post_hooks(self, tmp_path, monkeypatch):
        ClosingReviewer.instances = []
        monkeypatch.setattr("githooks.core.hooks.GerritRestReviewer", ClosingReviewer)
        dispatcher = Dispatcher(
            config=ResolvedConfig.from_mapping({
                "githooks.externals": "false",
                "githooks.gerrit.url": "https://gerrit.example.com",
            }),
            repo=FakeRepo(tmp_path),
            env={},
            cwd=str(tmp_path),
        )
        dispatcher.dispatch("patchset-created", ["--change", "I5", "--commit", "abc"])

        [reviewer] = ClosingReviewer.instances
        assert reviewer.reviews == [("I5", "abc", "OK", {"Code-Review": 1})]
        assert reviewer.closed

    def test_injected_reviewer_left_open(self, tmp_path):
        reviewer = ClosingReviewer(config=None)
        dispatcher = Dispatcher(
            config=ResolvedConfig.from_mapping({"githooks.externals": "false"}),
            repo=FakeRepo(tmp_path),
            reviewer=reviewer,
            env={},
            cwd=str(tmp_path),
        )
        dispatcher.dispatch("patchset-created", ["--change", "I5"])
        assert len(reviewer.reviews) == 1
        assert not reviewer.closed
