"""
Deterministic digest used when the structured-output call fails
"""
from core.entities import Event
from core.payloads import PullRequestPayload, PushPayload
from core.schemas import DigestSchema

FALLBACK_CATEGORY = "refactor"
FALLBACK_RATIONALE = "These changes may affect the application's functionality."


class FallbackSynthesizer:
    """
    Builds a minimal digest from the raw payload. Pure, never raises.
    """

    def synthesize(self, event: Event) -> DigestSchema:
        payload = event.typed_payload

        if isinstance(payload, PushPayload):
            count = payload.commit_count
            title = f"Push: {count} commit(s)"
            summary = f"{count} commit(s) pushed to {payload.branch or 'unknown branch'}."

        elif isinstance(payload, PullRequestPayload):
            title = payload.title or "Pull Request"
            summary = f"A pull request was {payload.action or 'opened'}."
            if payload.body:
                summary += f" {payload.body[:100]}"

        else:
            title = "Code changes"
            summary = f"A {event.kind} event was recorded."

        return DigestSchema(
            title=title,
            summary=summary,
            category=FALLBACK_CATEGORY,
            why_this_matters=FALLBACK_RATIONALE,
            perspectives=None,
        )
