"""Result formatting -- JSON output and Rich terminal rendering."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from issue_intelligence.engine.models import (
    ConfidenceScore,
    ConfidenceTier,
    DetectionPath,
    DuplicateDetectionResult,
    LabelSuggestionResult,
    RelatedIssueResult,
)

_TIER_STYLES = {
    ConfidenceTier.HIGH: "green",
    ConfidenceTier.MEDIUM: "yellow",
    ConfidenceTier.LOW: "dim",
}


def duplicate_result_to_json(result: DuplicateDetectionResult) -> str:
    """Serialize duplicate detection result to JSON."""
    return result.model_dump_json(indent=2)


def label_result_to_json(result: LabelSuggestionResult) -> str:
    """Serialize label suggestion result to JSON."""
    return result.model_dump_json(indent=2)


def related_result_to_json(result: RelatedIssueResult) -> str:
    """Serialize related issue result to JSON."""
    return result.model_dump_json(indent=2)


def _confidence_line(confidence: ConfidenceScore, path: DetectionPath) -> str:
    style = _TIER_STYLES[confidence.tier]
    line = (
        f"Confidence: [{style}]{confidence.score} ({confidence.tier.value})[/{style}]  |  "
        f"Path: {path.value}"
    )
    if confidence.needs_review:
        line += "  |  [bold yellow]needs review[/bold yellow]"
    return line


def _styled(value: float, high: float, medium: float) -> str:
    text = f"{value:.3f}"
    if value >= high:
        return f"[green]{text}[/green]"
    if value >= medium:
        return f"[yellow]{text}[/yellow]"
    return f"[dim]{text}[/dim]"


def render_duplicate_result(
    result: DuplicateDetectionResult,
    title: str = "",
    console: Console | None = None,
) -> None:
    """Render a Rich-formatted duplicate detection result to the console."""
    if console is None:
        console = Console()

    header = (
        f"[bold]Duplicate Detection[/bold]\n\n"
        f"Issue: {escape(title) or '(untitled)'}\n"
        f"High: {len(result.high)}  |  Medium: {len(result.medium)}  |  Low: {len(result.low)}\n"
        f"{_confidence_line(result.confidence, result.path)}\n"
        f"{escape(result.confidence.reasoning)}"
    )
    console.print(Panel(header, title="Issue Intelligence", border_style="red"))

    if not result.ranked():
        console.print("[green]No potential duplicates found.[/green]")
        return

    table = Table(title="Potential Duplicates")
    table.add_column("Tier", style="bold")
    table.add_column("Issue #", style="bold cyan")
    table.add_column("Similarity")
    table.add_column("Title")
    table.add_column("Reasoning", style="dim")

    for tier_name, tier in (("high", result.high), ("medium", result.medium), ("low", result.low)):
        for c in tier:
            table.add_row(
                tier_name,
                f"#{c.issue_number}",
                f"{c.similarity:.3f}",
                escape(c.title[:50]),
                escape(c.reasoning),
            )

    console.print(table)


def render_label_result(
    result: LabelSuggestionResult,
    title: str = "",
    console: Console | None = None,
) -> None:
    """Render a Rich-formatted label suggestion result to the console."""
    if console is None:
        console = Console()

    proposals = result.new_label_proposals or []
    header = (
        f"[bold]Label Suggestions[/bold]\n\n"
        f"Issue: {escape(title) or '(untitled)'}\n"
        f"Suggestions: {len(result.ranked())}  |  New label proposals: {len(proposals)}\n"
        f"{_confidence_line(result.confidence, result.path)}\n"
        f"{escape(result.confidence.reasoning)}"
    )
    console.print(Panel(header, title="Issue Intelligence", border_style="magenta"))

    if result.ranked():
        table = Table(title="Suggested Labels")
        table.add_column("Label", style="bold cyan")
        table.add_column("Confidence")
        table.add_column("Existing")
        table.add_column("Matched Patterns")
        table.add_column("Rationale", style="dim")

        for s in result.ranked():
            table.add_row(
                escape(s.label),
                _styled(s.confidence, 0.8, 0.5),
                "yes" if s.is_existing else "[yellow]new[/yellow]",
                escape(", ".join(s.matched_patterns)) if s.matched_patterns else "-",
                escape(s.rationale),
            )

        console.print(table)
    else:
        console.print("[dim]No labels suggested.[/dim]")

    if proposals:
        proposal_table = Table(title="New Label Proposals")
        proposal_table.add_column("Name", style="bold yellow")
        proposal_table.add_column("Color")
        proposal_table.add_column("Description")
        proposal_table.add_column("Rationale", style="dim")

        for p in proposals:
            proposal_table.add_row(escape(p.name), escape(p.color) or "-", escape(p.description), escape(p.rationale))

        console.print(proposal_table)


def render_related_result(
    result: RelatedIssueResult,
    title: str = "",
    console: Console | None = None,
) -> None:
    """Render a Rich-formatted related issue result to the console."""
    if console is None:
        console = Console()

    strategies = "  |  ".join(
        f"{s.strategy.value}: {s.outcome.value} ({s.found}/{s.evaluated})" for s in result.strategies
    )
    header = (
        f"[bold]Related Issues[/bold]\n\n"
        f"Issue: {escape(title) or '(untitled)'}\n"
        f"Relationships: {len(result.relationships)}\n"
        f"Strategies: {strategies or '(none)'}\n"
        f"{_confidence_line(result.confidence, result.path)}"
    )
    console.print(Panel(header, title="Issue Intelligence", border_style="blue"))

    if not result.relationships:
        console.print("[dim]No related issues found.[/dim]")
        return

    table = Table(title="Related Issues")
    table.add_column("Issue #", style="bold cyan")
    table.add_column("Type")
    table.add_column("Subtype")
    table.add_column("Confidence")
    table.add_column("Title")
    table.add_column("Reasoning", style="dim")

    for rel in result.relationships:
        table.add_row(
            f"#{rel.target_issue_number}",
            rel.relationship_type.value,
            rel.sub_type.value if rel.sub_type else "-",
            _styled(rel.confidence, 0.8, 0.5),
            escape(rel.target_issue_title[:50]),
            escape(rel.reasoning),
        )

    console.print(table)
