#!/usr/bin/env python3
"""
capindex CLI - build and query a capability index from the command line
"""

import asyncio
import dataclasses
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click
from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from capindex import __version__
from capindex.core.exceptions import CapIndexError
from capindex.core.logging import logger
from capindex.index.catalog import load_catalog
from capindex.models.reports import MaintenanceReport
from capindex.services.capability_service import CapabilityIndexService

console = Console()


def _build_service(ctx: click.Context) -> CapabilityIndexService:
    options: Dict[str, Any] = ctx.obj or {}
    overrides: Dict[str, Any] = {}
    if options.get("index"):
        overrides["index"] = {"path": str(options["index"])}
    config = options.get("config")
    return CapabilityIndexService(
        config_path=Path(config) if config else None, overrides=overrides or None
    )


def _run(ctx: click.Context, operation):
    """Start a service, run `operation(service)` and report CapIndexErrors."""

    async def runner():
        service = _build_service(ctx)
        await service.start()
        if service.store is not None and service.store.last_error is not None:
            console.print(f"[yellow]! {escape(service.store.last_error.message)}[/yellow]")
        result = operation(service)
        if asyncio.iscoroutine(result):
            result = await result
        return service, result

    try:
        return asyncio.run(runner())
    except CapIndexError as e:
        console.print(f"[bold red]✗ {escape(e.message)}[/bold red]")
        for suggestion in e.suggestions:
            console.print(f"[dim]  {escape(suggestion)}[/dim]")
        sys.exit(1)


def _to_jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_to_jsonable(v) for v in value]
    return value


def _echo_json(value: Any) -> None:
    click.echo(json.dumps(_to_jsonable(value), indent=2, ensure_ascii=False))


def _print_report(report: MaintenanceReport) -> None:
    table = Table(title="Maintenance summary", show_header=False)
    table.add_column("metric", style="cyan")
    table.add_column("value", justify="right")
    table.add_row("upserted", str(len(report.upserted)))
    table.add_row("unchanged", str(len(report.unchanged)))
    table.add_row("removed", str(len(report.removed)))
    table.add_row("triggers changed", str(report.triggers_changed))
    table.add_row("similarity pairs", str(report.similarity_pairs))
    table.add_row("similarity edges", str(report.similarity_edges_added))
    if report.discovery is not None:
        table.add_row("discovered edges", str(report.discovery.edges_added))
        table.add_row("discovery failures", str(len(report.discovery.failures)))
    console.print(table)

    for warning in report.warnings:
        console.print(f"[yellow]! {escape(warning)}[/yellow]")
    if report.discovery is not None:
        for failure in report.discovery.failures:
            line = f"{failure.element} ({failure.method}): {failure.error_type}: {failure.message}"
            console.print(f"[red]✗ {escape(line)}[/red]")


@click.group()
@click.version_option(version=__version__, prog_name="capindex")
@click.option(
    "--index",
    "index_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Index file (default: from config, .capindex/capability-index.yaml)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Configuration file (default: ./.capindex.yaml or $CAPINDEX_CONFIG)",
)
@click.pass_context
def cli(ctx: click.Context, index_path: Optional[Path], config_path: Optional[Path]):
    """
    capindex - capability index for tool ecosystems

    Index elements by verbs, keywords and relationships; find the right one
    without loading them all.
    """
    ctx.ensure_object(dict)
    ctx.obj["index"] = index_path
    ctx.obj["config"] = config_path


@cli.command()
@click.argument("catalog", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def ingest(ctx: click.Context, catalog: Path):
    """Add or update the elements listed in CATALOG (YAML)."""
    try:
        records = load_catalog(catalog)
    except CapIndexError as e:
        console.print(f"[bold red]✗ {escape(e.message)}[/bold red]")
        sys.exit(1)

    console.print(f"[cyan]Ingesting {len(records)} records from {catalog}[/cyan]")
    _, report = _run(ctx, lambda service: service.upsert_elements(records))
    _print_report(report)
    console.print("[bold green]✓ Index updated[/bold green]")


@cli.command()
@click.argument("refs", nargs=-1, required=True)
@click.pass_context
def remove(ctx: click.Context, refs: Tuple[str, ...]):
    """Remove elements (type:id) and their edges."""
    _, report = _run(ctx, lambda service: service.remove_elements(refs))
    missing = sorted(set(refs) - set(report.removed))
    console.print(f"[green]✓ Removed {len(report.removed)} element(s)[/green]")
    for ref in missing:
        console.print(f"[yellow]! Not indexed: {ref}[/yellow]")


@cli.command()
@click.argument("text")
@click.option("--limit", type=int, default=None, help="Maximum results")
@click.option("--depth", type=int, default=None, help="Relationship expansion depth")
@click.option("--no-expand", is_flag=True, help="Verb matches only")
@click.option("--json", "as_json", is_flag=True, help="JSON output")
@click.pass_context
def query(
    ctx: click.Context,
    text: str,
    limit: Optional[int],
    depth: Optional[int],
    no_expand: bool,
    as_json: bool,
):
    """Find elements for a natural-language request."""
    _, results = _run(
        ctx, lambda service: service.query(text, expand=not no_expand, max_depth=depth, limit=limit)
    )
    if as_json:
        _echo_json(results)
        return
    if not results:
        console.print("[yellow]No matching elements[/yellow]")
        return

    table = Table(title=escape(f"Results for: {text}"))
    table.add_column("#", justify="right")
    table.add_column("element", style="cyan")
    table.add_column("score", justify="right")
    table.add_column("reason")
    for position, result in enumerate(results, 1):
        if result.source == "verb":
            reason = f"verb '{result.verb}'"
        else:
            reason = f"{result.relationship} of {result.via_ref}"
        table.add_row(str(position), result.ref, f"{result.score:.3f}", reason)
    console.print(table)


@cli.command()
@click.argument("from_ref")
@click.argument("to_ref")
@click.option("--bidirectional", is_flag=True, help="Walk edges in both directions")
@click.option("--max-hops", type=int, default=None, help="Hop bound (default 6)")
@click.option("--json", "as_json", is_flag=True, help="JSON output")
@click.pass_context
def explain(
    ctx: click.Context,
    from_ref: str,
    to_ref: str,
    bidirectional: bool,
    max_hops: Optional[int],
    as_json: bool,
):
    """Explain how FROM_REF relates to TO_REF."""
    _, path = _run(
        ctx,
        lambda service: service.explain_relationship(
            from_ref, to_ref, bidirectional=bidirectional, max_hops=max_hops
        ),
    )
    if as_json:
        _echo_json(path)
        return
    if not path.found:
        console.print(f"[yellow]No path from {from_ref} to {to_ref} within {path.max_hops} hops[/yellow]")
        return
    if not path.steps:
        console.print(f"[green]{from_ref} is {to_ref}[/green]")
        return

    console.print(f"[green]✓ Path found ({path.hops} hops, strength {path.strength:.3f})[/green]")
    for step in path.steps:
        arrow = "<-" if step.reversed else "->"
        console.print(escape(f"  {step.source} {arrow}[{step.type} {step.strength:.2f}]{arrow} {step.target}"))


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="JSON output")
@click.pass_context
def stats(ctx: click.Context, as_json: bool):
    """Show index statistics."""
    _, result = _run(ctx, lambda service: service.stats())
    if as_json:
        _echo_json(result)
        return

    console.print(f"[bold cyan]Index schema {result.schema_version}[/bold cyan] ({result.generated_at})")
    console.print(f"Elements: {result.element_count}")
    console.print(f"Relationships: {result.relationship_count}")
    console.print(f"Triggers: {result.trigger_count}")

    if result.counts_by_type:
        table = Table(title="Elements by type")
        table.add_column("type", style="cyan")
        table.add_column("count", justify="right")
        for element_type, count in sorted(result.counts_by_type.items()):
            table.add_row(element_type, str(count))
        console.print(table)

    if result.relationship_types:
        table = Table(title="Relationships by type")
        table.add_column("type", style="cyan")
        table.add_column("count", justify="right")
        table.add_column("mean strength", justify="right")
        for rel_type, rel_stats in result.relationship_types.items():
            table.add_row(rel_type, str(rel_stats.count), f"{rel_stats.mean_strength:.3f}")
        console.print(table)

    if result.metrics:
        table = Table(title="Counters since start")
        table.add_column("name", style="cyan")
        table.add_column("value", justify="right")
        for name, value in result.metrics.items():
            table.add_row(name, f"{value:g}")
        console.print(table)


@cli.command()
@click.pass_context
def rebuild(ctx: click.Context):
    """Regenerate triggers, similarity edges and discovered relationships."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("[cyan]Scoring similarity...", total=None)

        def on_progress(done: int, total: int) -> None:
            progress.update(task, completed=done, total=max(total, 1))

        _, report = _run(ctx, lambda service: service.rebuild(progress=on_progress))

    _print_report(report)
    console.print("[bold green]✓ Rebuild complete[/bold green]")


@cli.command()
@click.argument("ref")
@click.option("--top-k", type=int, default=5, help="Number of matches")
@click.pass_context
def similar(ctx: click.Context, ref: str, top_k: int):
    """List the elements most similar to REF."""
    _, matches = _run(ctx, lambda service: service.similar(ref, top_k=top_k))
    if not matches:
        console.print("[yellow]No other elements indexed[/yellow]")
        return

    table = Table(title=f"Similar to {ref}")
    table.add_column("element", style="cyan")
    table.add_column("score", justify="right")
    table.add_column("jaccard", justify="right")
    table.add_column("interpretation")
    for match in matches:
        table.add_row(
            match.ref,
            f"{match.score.score:.3f}",
            f"{match.score.jaccard:.3f}",
            match.score.interpretation,
        )
    console.print(table)


def main():
    """Main entry point"""
    try:
        cli()
    except KeyboardInterrupt:
        click.echo("\nOperation cancelled by user.")
        sys.exit(0)
    except Exception as e:
        logger.error("Unhandled CLI error", error=str(e))
        click.echo(click.style(f"Error: {e}", fg="red"))
        if os.environ.get("CAPINDEX_DEBUG"):
            import traceback

            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
