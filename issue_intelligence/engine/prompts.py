"""System prompts and prompt builders for structured generation."""

from __future__ import annotations

from issue_intelligence.engine.models import Issue, IssueQuery, LabelHistoryEntry, RepositoryLabel

# Candidate descriptions are truncated to keep prompts bounded
_CANDIDATE_BODY_CHARS = 200


def _truncate(text: str, limit: int) -> str:
    text = text or ""
    return text[:limit] + "..." if len(text) > limit else text


# --- Label suggestion ---

LABEL_SUGGESTION_SYSTEM_PROMPT = (
    "You are a repository label analyst categorizing GitHub issues. "
    "Always prefer existing repository labels over proposing new ones. "
    "Score each suggestion from 0.0 to 1.0: 0.8+ for direct keyword or explicit category matches, "
    "0.5-0.8 for related concepts or contextual fit, below 0.5 for weak signals. "
    "Explain why each label fits by referencing words or patterns from the issue. "
    "Only propose a new label when no existing label covers the category and the pattern is likely to recur. "
    "Return ONLY valid JSON matching the provided schema. No markdown, no extra keys, no extra text."
)


def build_label_prompt(
    query: IssueQuery,
    labels: list[RepositoryLabel],
    history: list[LabelHistoryEntry] | None = None,
    history_limit: int = 10,
) -> str:
    """Build the user prompt for label suggestion."""
    labels_text = "\n".join(
        f"- {label.name}: {label.description}" if label.description else f"- {label.name}"
        for label in labels
    )

    history_text = ""
    if history and history_limit > 0:
        lines = "\n".join(
            f'{i}. "{entry.title}" -> [{", ".join(entry.labels)}]'
            for i, entry in enumerate(history[:history_limit], start=1)
        )
        history_text = f"\n### Issue History (past labeling patterns)\n{lines}\n"

    return f"""Suggest labels for this GitHub issue.

## Issue: {query.title}

**Description:** {query.body or '(no description)'}

### Available Repository Labels
{labels_text or '(no labels defined)'}
{history_text}
Select the most appropriate labels from the available list and set isExisting accordingly. Give every suggestion a confidence, a rationale and the matched patterns. Set overallConfidence from 0.0 to 1.0 for the suggestion set as a whole."""


# --- Dependency analysis ---

DEPENDENCY_SYSTEM_PROMPT = (
    "You are an issue relationship analyst detecting dependencies between GitHub issues. "
    "A dependency is 'blocks' when the source issue must be completed before the candidate, "
    "'blocked_by' when the candidate must be completed before the source issue, "
    "and 'related_to' when the issues are connected but neither blocks the other. "
    "Use 0.9+ confidence only for explicitly stated relationships. "
    "Return ONLY valid JSON matching the provided schema. No markdown, no extra keys, no extra text."
)


def build_dependency_prompt(query: IssueQuery, candidates: list[Issue]) -> str:
    """Build the user prompt for dependency analysis between the query and candidates."""
    candidates_text = "\n\n".join(
        f"{i}. ID: {issue.id}, #{issue.number}: {issue.title} ({issue.state})\n"
        f"   {_truncate(issue.body, _CANDIDATE_BODY_CHARS)}"
        for i, issue in enumerate(candidates, start=1)
    )

    return f"""Identify dependency relationships between the source issue and the candidate issues.

## Source Issue (ID: {query.issue_id or '(new)'}): {query.title}

**Description:** {query.body or '(no description)'}

### Candidate Issues
{candidates_text}

For each related candidate return its ID as targetIssueId, a subType of "blocks", "blocked_by" or "related_to", a confidence from 0.0 to 1.0 and the reasoning. Only return relationships with confidence >= 0.5. Return an empty relationships array if none are detected."""
