"""
Builds the user prompts sent alongside the fixed system instructions.

Everything here is pure string assembly; bounds on how much diff and
digest context goes into a prompt are enforced here.
"""
from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from core.entities import Digest, Event, FileChange, Summary
from core.payloads import PullRequestPayload, PushPayload
from core.periods import Granularity, format_period_date, period_label
from core.schemas import ChangeIntentSchema

MAX_PROMPT_FILES = 10
MAX_INLINE_PATCH_CHARS = 2000
INLINE_PATCH_CHARS = 1000

MAX_IMPACT_FILES = 8
IMPACT_PATCH_CHARS = 2500
IMPACT_COMMIT_CHARS = 1000
IMPACT_PR_BODY_CHARS = 2000


def format_file_changes(changes: Optional[Sequence[FileChange]]) -> str:
    """
    At most 10 files; a patch is inlined only when shorter than 2000
    chars, and then cut to 1000.
    """
    if not changes:
        return ""

    text = f"\n\nFiles changed ({len(changes)}):\n"
    for change in changes[:MAX_PROMPT_FILES]:
        text += f"- {change.filename} ({change.status}): +{change.additions} -{change.deletions}\n"
        if change.patch and len(change.patch) < MAX_INLINE_PATCH_CHARS:
            text += f"  Patch:\n{change.patch[:INLINE_PATCH_CHARS]}...\n"
    if len(changes) > MAX_PROMPT_FILES:
        text += f"\n... and {len(changes) - MAX_PROMPT_FILES} more files"
    return text


def build_event_prompt(event: Event) -> str:
    payload = event.typed_payload

    if isinstance(payload, PushPayload):
        messages = "\n".join(f"- {c.message}" for c in payload.commits)
        prompt = (
            f'A developer pushed {payload.commit_count} commit(s) to the "{payload.branch}" branch.\n\n'
            f"Commit messages:\n{messages or 'No commit messages available'}"
        )
        prompt += format_file_changes(event.file_changes)
        if payload.commit_count > 1:
            prompt += (
                f"\n\nIMPORTANT: This push contains {payload.commit_count} commits. "
                "Synthesize them into a single coherent summary that captures the overall change."
            )
        return prompt + "\n\nAnalyze this push and generate a digest."

    if isinstance(payload, PullRequestPayload):
        prompt = (
            f'A pull request was {payload.action}: "{payload.title or "Untitled"}"\n\n'
            f"Description: {payload.body or 'No description provided'}\n\n"
            f"Stats: {payload.additions} additions, {payload.deletions} deletions, "
            f"{payload.changed_files} files changed"
        )
        prompt += format_file_changes(event.file_changes)
        return prompt + "\n\nAnalyze this pull request and generate a digest."

    return f"Summarize this GitHub {event.kind} event: {payload.raw}"


def _format_digest(digest: Digest, index: Optional[int] = None) -> str:
    header = f"Digest {index}:\n" if index is not None else ""
    text = (
        f"{header}- Title: {digest.title}\n"
        f"- Summary: {digest.narrative}\n"
        f"- Category: {digest.category or 'unknown'}\n"
    )
    if digest.rationale:
        text += f"- Why this matters: {digest.rationale}\n"
    return text


def _bounded_digest_list(digests: Sequence[Digest], max_digests: int) -> str:
    # Most recent first; the remainder is reduced to per-category counts
    recent = sorted(digests, key=lambda d: d.created_at, reverse=True)
    shown, omitted = recent[:max_digests], recent[max_digests:]

    text = "".join(_format_digest(d, i + 1) + "\n" for i, d in enumerate(shown))
    if omitted:
        counts = Counter(d.category for d in omitted)
        detail = ", ".join(f"{category}: {count}" for category, count in sorted(counts.items()))
        text += f"... and {len(omitted)} earlier digests not listed ({detail})\n"
    return text


def build_summary_prompt(
    digests: Sequence[Digest],
    granularity: Granularity,
    period_start: int,
    max_digests: int = 60,
) -> str:
    prompt = (
        f"Generate an executive development report for the {period_label(granularity)} "
        f"of {format_period_date(period_start)}.\n\n"
        f"The following {len(digests)} development activity summaries (digests) were completed:\n\n"
    )
    prompt += _bounded_digest_list(digests, max_digests)
    prompt += (
        "\nGenerate a comprehensive executive report based on these digests. "
        "Focus on business impact and key achievements."
    )
    return prompt


def build_merge_prompt(
    summary: Summary,
    new_digests: Sequence[Digest],
    max_digests: int = 60,
) -> str:
    breakdown = {k: {"count": v.count, "percentage": v.percentage} for k, v in summary.work_breakdown.items()}
    prompt = (
        f"Update the existing executive development report for the "
        f"{period_label(summary.granularity)} of {format_period_date(summary.period_start)}.\n\n"
        "Existing Summary:\n"
        f"- Headline: {summary.headline}\n"
        f"- Accomplishments: {summary.accomplishments}\n"
        f"- Key Features: {', '.join(summary.key_features)}\n"
        f"- Work Breakdown: {breakdown}\n"
    )

    if len(new_digests) == 1:
        prompt += "\nNew Digest to Incorporate:\n" + _format_digest(new_digests[0])
    else:
        prompt += f"\nNew Digests to Incorporate ({len(new_digests)}):\n\n"
        prompt += _bounded_digest_list(new_digests, max_digests)

    prompt += (
        "\nUpdate the summary to include the new material. "
        "Intelligently merge it without rewriting everything."
    )
    return prompt


def build_perspective_prompt(digest: Digest, perspective: str) -> str:
    return (
        f"Based on this code change summary, analyze it from a {perspective} perspective:\n\n"
        f"Title: {digest.title}\n"
        f"Summary: {digest.narrative}\n"
        f"Category: {digest.category or 'unknown'}\n"
        f"Why this matters: {digest.rationale or 'Not specified'}\n\n"
        f"Generate a {perspective}-focused perspective on this change. "
        "Provide a title, summary, and confidence score (0-100)."
    )


@dataclass
class ImpactInputs:
    """
    The slice of an event the impact passes look at.
    """
    files: List[FileChange] = field(default_factory=list)
    files_without_patch: int = 0
    commit_message: Optional[str] = None
    pr_title: Optional[str] = None
    pr_body: Optional[str] = None

    def fingerprint_inputs(self) -> dict:
        return {
            "files": [[f.filename, f.status, f.patch] for f in self.files],
            "commit_message": self.commit_message,
            "pr_title": self.pr_title,
        }


def impact_inputs(event: Event) -> ImpactInputs:
    """
    Largest 8 patched files by churn, patches cut to 2500 chars, plus
    commit or PR context.
    """
    changes = event.file_changes or []
    patched = sorted(
        (c for c in changes if c.patch),
        key=lambda c: c.additions + c.deletions,
        reverse=True,
    )[:MAX_IMPACT_FILES]

    inputs = ImpactInputs(
        files=[
            FileChange(
                filename=c.filename,
                status=c.status,
                additions=c.additions,
                deletions=c.deletions,
                changes=c.changes,
                patch=c.patch[:IMPACT_PATCH_CHARS],
            )
            for c in patched
        ],
        files_without_patch=sum(1 for c in changes if not c.patch),
    )

    payload = event.typed_payload
    if isinstance(payload, PushPayload):
        inputs.commit_message = "\n".join(c.message for c in payload.commits)[:IMPACT_COMMIT_CHARS] or None
    elif isinstance(payload, PullRequestPayload):
        inputs.pr_title = payload.title
        inputs.pr_body = payload.body[:IMPACT_PR_BODY_CHARS] if payload.body else None
        inputs.commit_message = payload.title
    return inputs


def build_intent_prompt(inputs: ImpactInputs) -> str:
    prompt = "Analyze this commit/PR to understand the developer's intent:\n\n"
    prompt += f'Commit message: "{inputs.commit_message}"\n'
    if inputs.pr_title:
        prompt += f'PR title: "{inputs.pr_title}"\n'
    if inputs.pr_body:
        prompt += f'PR description: "{inputs.pr_body}"\n'
    prompt += (
        "\nExtract:\n"
        "1. The primary intent (bugfix, feature, refactor, security, performance, chore, docs)\n"
        "2. What improvements the author claims to make\n"
        "3. Expected behavior changes\n"
        "4. Areas that could be affected"
    )
    return prompt


def build_impact_prompt(inputs: ImpactInputs, intent: Optional[ChangeIntentSchema] = None) -> str:
    prompt = ""
    if intent is not None:
        prompt += (
            "## Change Intent (from commit/PR)\n"
            f"- **Primary intent**: {intent.primary_intent}\n"
            f"- **Claimed improvements**: {', '.join(intent.claimed_improvements) or 'None specified'}\n"
            f"- **Expected behavior changes**: {', '.join(intent.expected_behavior_changes) or 'None specified'}\n\n"
            "**Important**: Verify the code achieves these claims. Mark as improvement if it does. "
            "Only flag as risk if the implementation is flawed or introduces NEW problems.\n\n"
        )
    if inputs.commit_message:
        prompt += f'## Commit Context\nCommit message: "{inputs.commit_message}"\n'
        if inputs.pr_title:
            prompt += f'PR title: "{inputs.pr_title}"\n'
        prompt += "\n"

    prompt += "## Code Changes\n\n"
    prompt += "\n\n".join(
        f"### {f.filename} ({f.status}, +{f.additions} -{f.deletions})\n\n```diff\n{f.patch}\n```"
        for f in inputs.files
    )
    if inputs.files_without_patch:
        prompt += f"\n\n{inputs.files_without_patch} additional files changed without diff data.\n"

    prompt += (
        "\n\n## Analysis Task\n\n"
        "For each file, assess:\n"
        "- Risk level (low/medium/high) - for NEW risks only\n"
        "- Brief reason - explain what NEW risk is introduced (or mark as improvement)\n"
        "- Whether this is an improvement (adds safety, fixes bugs, adds resilience)\n"
        "- Confidence (0-100)\n\n"
    )
    if intent is not None:
        prompt += (
            "Also validate: Does this code achieve the claimed intent? "
            f"({', '.join(intent.claimed_improvements)})\n\n"
        )
    prompt += "Provide overall risk level and 2-3 sentence summary focusing on differential analysis."
    return prompt
