from conftest import pr_payload, push_payload
from core.entities import Event
from processing.fallback import FallbackSynthesizer


def _event(kind, payload):
    return Event(id="evt-1", resource_id="res-1", kind=kind, payload=payload, actor="octocat", occurred_at=0)


def test_push_fallback():
    draft = FallbackSynthesizer().synthesize(_event("push", push_payload(commits=3, branch="release")))
    assert draft.title == "Push: 3 commit(s)"
    assert "3" in draft.summary
    assert "release" in draft.summary
    assert draft.category == "refactor"
    assert draft.perspectives is None


def test_pull_request_fallback_uses_title_and_body_prefix():
    body = "x" * 300
    draft = FallbackSynthesizer().synthesize(_event("pull_request", pr_payload(action="closed", body=body)))
    assert draft.title == "Add dark mode"
    assert draft.summary.startswith("A pull request was closed.")
    assert draft.summary.endswith("x" * 100)
    assert "x" * 101 not in draft.summary


def test_pull_request_without_title():
    payload = {"action": "opened", "pull_request": {"number": 1}}
    draft = FallbackSynthesizer().synthesize(_event("pull_request", payload))
    assert draft.title == "Pull Request"


def test_unknown_kind_gets_generic_digest():
    draft = FallbackSynthesizer().synthesize(_event("release", {"tag": "v1"}))
    assert draft.title == "Code changes"
    assert draft.category == "refactor"
    assert draft.why_this_matters


def test_pull_request_without_action_reads_as_opened():
    payload = {"pull_request": {"number": 1, "title": "Fix typo"}}
    draft = FallbackSynthesizer().synthesize(_event("pull_request", payload))
    assert draft.summary == "A pull request was opened."
    assert draft.why_this_matters == "These changes may affect the application's functionality."
