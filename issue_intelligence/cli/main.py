"""Typer CLI for issue-intelligence."""

import asyncio
import json
from pathlib import Path

import typer
from pydantic import TypeAdapter, ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from issue_intelligence.engine.config import ConfigurationError
from issue_intelligence.engine.embedding_cache import EmbeddingCache
from issue_intelligence.engine.models import DetectionPath, Issue, IssueQuery, LabelHistoryEntry, RepositoryLabel

app = typer.Typer(
    name="issue-intel",
    help="Duplicate detection, label suggestions and related issue linking for GitHub issues.",
)
console = Console()

# Embeddings computed during this invocation
_cache = EmbeddingCache()


def _load_json_list(path: str, item_type: type) -> list:
    """Load a JSON array file into a list of pydantic models, exiting with an error message on failure."""
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        return TypeAdapter(list[item_type]).validate_python(raw)
    except OSError as e:
        console.print(f"[red]Error:[/red] cannot read {path}: {e}")
    except json.JSONDecodeError as e:
        console.print(f"[red]Error:[/red] {path} is not valid JSON: {e}")
    except ValidationError as e:
        console.print(f"[red]Error:[/red] {path} does not match the expected shape:\n{escape(str(e))}")
    raise typer.Exit(code=1)


def _split_labels(labels: str) -> list[str]:
    return [label.strip() for label in labels.split(",") if label.strip()]


def _build_engine():
    from issue_intelligence.engine.providers import SentenceTransformerEmbedder
    from issue_intelligence.engine.similarity import SimilarityEngine

    return SimilarityEngine(SentenceTransformerEmbedder(), cache=_cache)


def _render_cache_stats() -> None:
    stats = _cache.get_stats()
    table = Table(title="Embedding Cache")
    table.add_column("Metric", style="bold cyan")
    table.add_column("Value")
    table.add_row("Entries", f"{stats.size} / {stats.max_size}")
    table.add_row("TTL", f"{stats.ttl_seconds / 3600:.1f}h")
    table.add_row("Oldest entry", f"{stats.oldest_entry_age:.0f}s" if stats.oldest_entry_age is not None else "-")
    table.add_row("Newest entry", f"{stats.newest_entry_age:.0f}s" if stats.newest_entry_age is not None else "-")
    console.print(table)


def _warn_on_fallback(path: DetectionPath) -> None:
    if path == DetectionPath.FALLBACK:
        console.print("[yellow]Warning:[/yellow] provider unavailable, results come from keyword heuristics.")


@app.command()
def duplicates(
    issues_file: str = typer.Argument(help="JSON file with an array of existing issues"),
    title: str = typer.Option(..., "--title", help="Title of the new issue"),
    body: str = typer.Option("", "--body", help="Body of the new issue"),
    issue_id: str = typer.Option("", "--issue-id", help="Id of the new issue, excluded from the pool"),
    max_results: int = typer.Option(0, "--max-results", help="Max candidates across tiers (0 = config default)"),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON result"),
    cache_stats: bool = typer.Option(False, "--cache-stats", help="Show embedding cache statistics after the run"),
):
    """Detect existing issues that duplicate a new one."""
    from issue_intelligence.engine.duplicates import DuplicateDetector
    from issue_intelligence.engine.reports import duplicate_result_to_json, render_duplicate_result

    issues = _load_json_list(issues_file, Issue)
    query = IssueQuery(issue_id=issue_id, title=title, body=body)
    detector = DuplicateDetector(_build_engine())

    try:
        result = asyncio.run(detector.detect(query, issues, max_results=max_results or None))
    except ConfigurationError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=2)

    if json_output:
        console.print(duplicate_result_to_json(result))
    else:
        _warn_on_fallback(result.path)
        render_duplicate_result(result, title, console)

    if cache_stats:
        _render_cache_stats()


@app.command()
def labels(
    labels_file: str = typer.Argument(help="JSON file with an array of repository labels"),
    title: str = typer.Option(..., "--title", help="Issue title"),
    body: str = typer.Option("", "--body", help="Issue body"),
    history_file: str = typer.Option("", "--history", help="JSON file with past issues and their labels"),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON result"),
):
    """Suggest repository labels for an issue."""
    from issue_intelligence.engine.labeling import LabelSuggester
    from issue_intelligence.engine.providers import build_generator
    from issue_intelligence.engine.reports import label_result_to_json, render_label_result

    catalog = _load_json_list(labels_file, RepositoryLabel)
    history = _load_json_list(history_file, LabelHistoryEntry) if history_file else None
    query = IssueQuery(title=title, body=body)

    suggester = LabelSuggester(generator=build_generator())
    result = asyncio.run(suggester.suggest(query, catalog, history))

    if json_output:
        console.print(label_result_to_json(result))
    else:
        _warn_on_fallback(result.path)
        render_label_result(result, title, console)


@app.command()
def related(
    issues_file: str = typer.Argument(help="JSON file with an array of candidate issues"),
    title: str = typer.Option(..., "--title", help="Issue title"),
    body: str = typer.Option("", "--body", help="Issue body"),
    labels: str = typer.Option("", "--labels", help="Comma-separated issue labels"),
    issue_id: str = typer.Option("", "--issue-id", help="Issue id, excluded from the candidates"),
    number: int = typer.Option(0, "--number", help="Issue number, for references from other issues (0 = unknown)"),
    max_results: int = typer.Option(0, "--max-results", help="Max relationships (0 = config default)"),
    no_semantic: bool = typer.Option(False, "--no-semantic", help="Skip embedding similarity"),
    no_dependencies: bool = typer.Option(False, "--no-dependencies", help="Skip dependency detection"),
    no_component: bool = typer.Option(False, "--no-component", help="Skip label-overlap grouping"),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON result"),
    cache_stats: bool = typer.Option(False, "--cache-stats", help="Show embedding cache statistics after the run"),
):
    """Find issues related to an issue by similarity, dependencies and shared labels."""
    from issue_intelligence.engine.linking import RelatedIssueLinker
    from issue_intelligence.engine.models import RelatedIssueConfig
    from issue_intelligence.engine.providers import build_generator
    from issue_intelligence.engine.reports import related_result_to_json, render_related_result

    candidates = _load_json_list(issues_file, Issue)
    query = IssueQuery(
        issue_id=issue_id,
        number=number or None,
        title=title,
        body=body,
        labels=_split_labels(labels),
    )

    try:
        config = RelatedIssueConfig(
            include_semantic=not no_semantic,
            include_dependencies=not no_dependencies,
            include_component=not no_component,
        )
    except ValidationError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=2)

    linker = RelatedIssueLinker(
        engine=_build_engine() if config.include_semantic else None,
        generator=build_generator(),
        config=config,
    )

    try:
        result = asyncio.run(linker.find(query, candidates, max_results=max_results or None))
    except ConfigurationError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=2)

    if json_output:
        console.print(related_result_to_json(result))
    else:
        _warn_on_fallback(result.path)
        render_related_result(result, title, console)

    if cache_stats:
        _render_cache_stats()


if __name__ == "__main__":
    app()
