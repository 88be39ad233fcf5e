#!/usr/bin/env python3
"""
ng: CLI for querying a notegraph snapshot

Usage:
    ng inspect notes/a.md                 # Context of one note
    ng traverse notes/a.md --hops=2       # Hybrid BFS around a note
    ng path notes/a.md notes/b.md         # Diverse paths between two notes
    ng key-nodes                          # Hubs, authorities and bridges
    ng orphans                            # Unlinked notes with suggestions
    ng dimensions "tag:a AND category:b"  # Boolean tag/category search
    ng search "query" --mode=hybrid       # Local search
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from functools import wraps
from typing import TYPE_CHECKING, Any, NoReturn

import click
from pydantic import BaseModel

from . import __version__ as NOTEGRAPH_VERSION

if TYPE_CHECKING:
    from .context import QueryContext
    from .models import QueryFilters

log = logging.getLogger(__name__)


def run_async(coro):
    """Run async function synchronously."""
    return asyncio.run(coro)


# ─────────────────────────────────────────────────────────────────────────────
# Output Formatting
# ─────────────────────────────────────────────────────────────────────────────


def format_table(rows: list[dict], columns: list[str], max_widths: dict | None = None) -> str:
    """Format rows as a simple table."""
    if not rows:
        return ""

    max_widths = max_widths or {}
    widths = {col: len(col) for col in columns}

    def cell(row: dict, col: str) -> str:
        val = str(row.get(col, ""))
        limit = max_widths.get(col, 50)
        if len(val) > limit:
            val = val[: limit - 3] + "..."
        return val

    for row in rows:
        for col in columns:
            widths[col] = max(widths[col], len(cell(row, col)))

    header = "  ".join(col.upper().ljust(widths[col]) for col in columns)
    separator = "  ".join("-" * widths[col] for col in columns)

    lines = [header, separator]
    for row in rows:
        lines.append("  ".join(cell(row, col).ljust(widths[col]) for col in columns))

    return "\n".join(lines)


def output(data, as_json: bool = False):
    """Output data as JSON or formatted text."""
    if as_json:
        if isinstance(data, BaseModel):
            data = data.model_dump(mode="json")
        click.echo(json.dumps(data, indent=2, default=str))
    else:
        click.echo(data)


def _handle_error(error: Exception, as_json: bool, exit_code: int = 1) -> NoReturn:
    """Report an error as text or a JSON object on stderr and exit."""
    from .errors import ParseError

    if as_json:
        payload: dict[str, Any] = {"error": type(error).__name__, "message": str(error)}
        if isinstance(error, ParseError):
            payload["expression"] = error.expression
            payload["position"] = error.position
        click.echo(json.dumps(payload, indent=2), err=True)
    else:
        click.echo(f"Error: {error}", err=True)
    sys.exit(exit_code)


def _emit_message_or(result, as_json: bool) -> bool:
    """Print a QueryMessage result; returns True when one was printed."""
    from .models import QueryMessage

    if not isinstance(result, QueryMessage):
        return False
    if as_json:
        output(result, as_json=True)
    else:
        click.echo(result.message)
    return True


# ─────────────────────────────────────────────────────────────────────────────
# Context construction
# ─────────────────────────────────────────────────────────────────────────────


def _build_context(click_ctx: click.Context) -> QueryContext:
    from .config import get_graph_path, load_settings
    from .context import QueryContext
    from .store import InMemoryGraphStore

    obj = click_ctx.obj or {}
    if obj.get("query_context") is not None:
        return obj["query_context"]

    graph_path = obj.get("graph") or get_graph_path()
    settings = load_settings(obj.get("config"))
    store = InMemoryGraphStore.from_file(graph_path, model_name=settings.embedding_model)
    query_context = QueryContext.from_store(store, settings)
    click_ctx.ensure_object(dict)["query_context"] = query_context
    return query_context


def query_command(func):
    """Run a command body, turning expected failures into exit code 1."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        from .config import ConfigurationError
        from .errors import ParseError, StorageError

        try:
            return func(*args, **kwargs)
        except (ConfigurationError, ParseError, StorageError) as e:
            log.debug("Command %s failed: %s", func.__name__, e)
            _handle_error(e, kwargs.get("as_json", False))

    return wrapper


def filter_options(func):
    """Shared --type/--path-filter/--modified/--created/--where/--sort options."""
    options = [
        click.option(
            "--type",
            "item_type",
            type=click.Choice(["note", "file", "folder", "all"]),
            help="Only items of this type",
        ),
        click.option("--path-filter", help="'/prefix' for a literal prefix, otherwise a regex"),
        click.option(
            "--modified",
            "modified_within",
            type=click.Choice(["today", "yesterday", "this_week", "this_month", "last_3_months", "this_year"]),
            help="Modified within a time range",
        ),
        click.option(
            "--created",
            "created_within",
            type=click.Choice(["today", "yesterday", "this_week", "this_month", "last_3_months", "this_year"]),
            help="Created within a time range",
        ),
        click.option("--where", "where", help="Tag/category expression, e.g. 'tag:a AND NOT category:b'"),
        click.option("--sort", "sorter", help="Sorter, e.g. modified_desc or backlinks_count_asc"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _filters(
    item_type: str | None,
    path_filter: str | None,
    modified_within: str | None,
    created_within: str | None,
    where: str | None,
) -> QueryFilters | None:
    from .models import QueryFilters

    if not any([item_type, path_filter, modified_within, created_within, where]):
        return None
    return QueryFilters(
        type=item_type,
        path=path_filter,
        modified_within=modified_within,
        created_within=created_within,
        tag_category_boolean_expression=where,
    )


def _semantic_filter(query: str | None, top_k: int):
    from .models import SemanticFilter

    return SemanticFilter(query=query, top_k=top_k) if query else None


def _format_cluster(title: str, cluster) -> list[str]:
    lines = [f"{title}:"]
    if not cluster.document_nodes:
        lines.append("  (none)")
    for node in cluster.document_nodes:
        score = cluster.scores.get(node.id)
        suffix = f"  [{score:.4f}]" if score is not None else ""
        lines.append(f"  {node.path or node.id}  {node.label}{suffix}")
    if cluster.omitted_count:
        lines.append(f"  ... {cluster.omitted_count} more")
    if cluster.tag_desc:
        lines.append(f"  tags: {cluster.tag_desc}")
    if cluster.category_desc:
        lines.append(f"  categories: {cluster.category_desc}")
    return lines


# ─────────────────────────────────────────────────────────────────────────────
# Main CLI Group
# ─────────────────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(version=NOTEGRAPH_VERSION, prog_name="ng")
@click.option(
    "--graph",
    "-g",
    type=click.Path(dir_okay=False),
    envvar="NOTEGRAPH_GRAPH",
    help="Graph snapshot (JSON) to query",
)
@click.option(
    "--config",
    "-c",
    type=click.Path(dir_okay=False),
    help="YAML settings file (default: $NOTEGRAPH_CONFIG or ./notegraph.yaml)",
)
@click.pass_context
def cli(ctx: click.Context, graph: str | None, config: str | None):
    """ng: query a note knowledge graph.

    \b
    Graph modes:
      ng inspect notes/a.md --semantic
      ng traverse notes/a.md --hops=2 --semantic
      ng path notes/a.md notes/b.md --semantic
      ng key-nodes --semantic-query "databases"
      ng orphans --limit=10

    \b
    Retrieval modes:
      ng dimensions "tag:python AND NOT category:archive"
      ng folder projects --depth=2
      ng recent --modified=this_week
      ng search "vector index" --mode=hybrid

    Every listing accepts --where, --path-filter, --type, --modified,
    --created and --sort, applied in that order before --limit.
    """
    from ._logging import configure_logging

    configure_logging()
    ctx.ensure_object(dict)
    ctx.obj["graph"] = graph
    ctx.obj["config"] = config


# ─────────────────────────────────────────────────────────────────────────────
# Graph commands
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.argument("note_path")
@click.option("--limit", "-n", default=20, help="Max documents per cluster")
@click.option("--semantic", is_flag=True, help="Include semantic neighbors")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@query_command
def inspect(ctx: click.Context, note_path: str, limit: int, semantic: bool, as_json: bool):
    """Show tags, categories, linked notes and semantic neighbors of a note.

    \b
    Examples:
      ng inspect notes/postgres.md
      ng inspect notes/postgres.md --semantic --limit=5
    """
    from .core import inspect_note_context

    result = run_async(inspect_note_context(_build_context(ctx), note_path, limit, semantic))
    if _emit_message_or(result, as_json):
        return
    if as_json:
        output(result, as_json=True)
        return

    lines = [f"Note: {result.note_path}"]
    lines.append(f"Tags: {', '.join(result.tags) or '(none)'}")
    lines.append(f"Categories: {', '.join(result.categories) or '(none)'}")
    lines.extend(_format_cluster("Incoming", result.incoming))
    lines.extend(_format_cluster("Outgoing", result.outgoing))
    if semantic:
        lines.extend(_format_cluster("Semantic neighbors", result.semantic_neighbors))
    click.echo("\n".join(lines))


@cli.command()
@click.argument("note_path")
@click.option("--hops", default=1, help="Max traversal depth (0-3)")
@click.option("--limit", "-n", default=40, help="Max edges per type per node")
@click.option("--semantic", is_flag=True, help="Follow semantic neighbors too")
@filter_options
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@query_command
def traverse(
    ctx: click.Context,
    note_path: str,
    hops: int,
    limit: int,
    semantic: bool,
    item_type: str | None,
    path_filter: str | None,
    modified_within: str | None,
    created_within: str | None,
    where: str | None,
    sorter: str | None,
    as_json: bool,
):
    """Walk the graph outward from a note, level by level."""
    from .core import graph_traversal

    filters = _filters(item_type, path_filter, modified_within, created_within, where)
    result = run_async(graph_traversal(_build_context(ctx), note_path, hops, semantic, limit, filters, sorter))
    if _emit_message_or(result, as_json):
        return
    if as_json:
        output(result, as_json=True)
        return

    lines = [f"Traversal from {result.start_note_path} ({result.hops} hops)"]
    if result.is_timeout:
        lines.append("Warning: time limit reached, results are partial")
    for level in result.levels:
        lines.extend(_format_cluster(f"Depth {level.depth}", level))
    lines.append(f"{len(result.nodes)} nodes, {len(result.edges)} edges")
    click.echo("\n".join(lines))


@cli.command()
@click.argument("start_note_path")
@click.argument("end_note_path")
@click.option("--limit", "-n", default=3, help="Max number of paths")
@click.option("--semantic", is_flag=True, help="Allow semantic hops")
@filter_options
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@query_command
def path(
    ctx: click.Context,
    start_note_path: str,
    end_note_path: str,
    limit: int,
    semantic: bool,
    item_type: str | None,
    path_filter: str | None,
    modified_within: str | None,
    created_within: str | None,
    where: str | None,
    sorter: str | None,
    as_json: bool,
):
    """Find diverse paths between two notes.

    --sort is accepted for symmetry and ignored; paths keep discovery order.
    """
    from .core import find_path

    filters = _filters(item_type, path_filter, modified_within, created_within, where)
    result = run_async(find_path(_build_context(ctx), start_note_path, end_note_path, limit, semantic, filters))
    if _emit_message_or(result, as_json):
        return
    if as_json:
        output(result, as_json=True)
        return

    if not result.paths:
        click.echo(result.message or "No path found.")
        return
    for i, found in enumerate(result.paths, 1):
        click.echo(f"Path {i} ({found.steps} steps):")
        parts = [found.labels[0]]
        for label, connection in zip(found.labels[1:], found.connections):
            parts.append(f"--{connection}--> {label}")
        click.echo("  " + " ".join(parts))
    if result.timed_out:
        click.echo(result.message or "Time limit reached.")


@cli.command("key-nodes")
@click.option("--limit", "-n", default=20, help="Max nodes per list")
@click.option("--semantic-query", help="Boost nodes relevant to this query")
@click.option("--top-k", default=20, type=click.IntRange(1, 50), help="Vector hits for --semantic-query")
@filter_options
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@query_command
def key_nodes(
    ctx: click.Context,
    limit: int,
    semantic_query: str | None,
    top_k: int,
    item_type: str | None,
    path_filter: str | None,
    modified_within: str | None,
    created_within: str | None,
    where: str | None,
    sorter: str | None,
    as_json: bool,
):
    """List the most influential notes as sources and sinks."""
    from .core import find_key_nodes

    filters = _filters(item_type, path_filter, modified_within, created_within, where)
    result = run_async(
        find_key_nodes(_build_context(ctx), limit, _semantic_filter(semantic_query, top_k), filters, sorter)
    )
    if as_json:
        output(result, as_json=True)
        return

    for title, items in (("Sources (by out-degree)", result.sources), ("Sinks (by in-degree)", result.sinks)):
        click.echo(f"{title}:")
        rows = [
            {"#": n.index, "label": n.label, "degree": n.degree, "role": n.role, "score": f"{n.rrf_score:.4f}"}
            for n in items
        ]
        click.echo(format_table(rows, ["#", "label", "degree", "role", "score"], {"label": 40}) or "  (none)")


@cli.command()
@click.option("--limit", "-n", default=None, type=int, help="Max orphans")
@filter_options
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@query_command
def orphans(
    ctx: click.Context,
    limit: int | None,
    item_type: str | None,
    path_filter: str | None,
    modified_within: str | None,
    created_within: str | None,
    where: str | None,
    sorter: str | None,
    as_json: bool,
):
    """List notes with no links, each with a suggested connection."""
    from .core import find_orphans

    filters = _filters(item_type, path_filter, modified_within, created_within, where)
    result = run_async(find_orphans(_build_context(ctx), limit, filters, sorter))
    if as_json:
        output(result, as_json=True)
        return

    click.echo(f"{result.filtered_count} of {result.total_count} orphans")
    rows = []
    for orphan in result.orphans:
        suggestion = orphan.revival_suggestion
        rows.append(
            {
                "path": orphan.path or orphan.id,
                "suggest": suggestion.path if suggestion else "",
                "similarity": f"{suggestion.similarity:.1f}%" if suggestion else "",
            }
        )
    if rows:
        click.echo(format_table(rows, ["path", "suggest", "similarity"], {"path": 40, "suggest": 40}))


# ─────────────────────────────────────────────────────────────────────────────
# Retrieval commands
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.argument("expression")
@click.option("--limit", "-n", default=20, help="Max results")
@click.option("--semantic-query", help="Keep only matches relevant to this query")
@click.option("--top-k", default=20, type=click.IntRange(1, 50), help="Vector hits for --semantic-query")
@filter_options
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@query_command
def dimensions(
    ctx: click.Context,
    expression: str,
    limit: int,
    semantic_query: str | None,
    top_k: int,
    item_type: str | None,
    path_filter: str | None,
    modified_within: str | None,
    created_within: str | None,
    where: str | None,
    sorter: str | None,
    as_json: bool,
):
    """Find notes by a tag/category boolean expression.

    \b
    Examples:
      ng dimensions "tag:python"
      ng dimensions "(tag:a OR tag:b) AND NOT category:archive"
    """
    from .core import search_by_dimensions

    filters = _filters(item_type, path_filter, modified_within, created_within, where)
    result = run_async(
        search_by_dimensions(
            _build_context(ctx),
            expression,
            _semantic_filter(semantic_query, top_k),
            filters,
            sorter,
            limit,
        )
    )
    if _emit_message_or(result, as_json):
        return
    if as_json:
        output(result, as_json=True)
        return

    click.echo(f"{len(result.items)} shown, {result.total_found} matched")
    rows = [
        {"path": n.path or n.id, "title": n.label, "semantic": f"{result.semantic_scores[n.id]:.2f}"}
        if n.id in result.semantic_scores
        else {"path": n.path or n.id, "title": n.label}
        for n in result.items
    ]
    columns = ["path", "title", "semantic"] if result.semantic_scores else ["path", "title"]
    if rows:
        click.echo(format_table(rows, columns, {"path": 50, "title": 40}))


@cli.command()
@click.argument("folder_path", default="/")
@click.option("--depth", "max_depth", default=3, help="Max folder depth")
@click.option("--flat", is_flag=True, help="Do not descend into subfolders")
@click.option("--limit", "-n", default=20, help="Max files")
@filter_options
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@query_command
def folder(
    ctx: click.Context,
    folder_path: str,
    max_depth: int,
    flat: bool,
    limit: int,
    item_type: str | None,
    path_filter: str | None,
    modified_within: str | None,
    created_within: str | None,
    where: str | None,
    sorter: str | None,
    as_json: bool,
):
    """Show a folder tree with tag, category and usage summaries."""
    from .core import explore_folder

    filters = _filters(item_type, path_filter, modified_within, created_within, where)
    result = run_async(
        explore_folder(_build_context(ctx), folder_path, not flat, max_depth, limit, filters, sorter)
    )
    if _emit_message_or(result, as_json):
        return
    if as_json:
        output(result, as_json=True)
        return

    def walk(items, indent: int = 0):
        for item in items:
            name = item.path.rsplit("/", 1)[-1]
            click.echo("  " * indent + (f"{name}/" if item.type == "folder" else name))
            if item.children:
                walk(item.children, indent + 1)

    click.echo(f"{result.current_path}")
    walk(result.file_tree, 1)
    if result.tag_desc:
        click.echo(f"Tags: {result.tag_desc}")
    if result.category_desc:
        click.echo(f"Categories: {result.category_desc}")
    click.echo(f"Files: {result.doc_stats.total_files}")


@cli.command()
@click.option("--limit", "-n", default=20, help="Max items")
@filter_options
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@query_command
def recent(
    ctx: click.Context,
    limit: int,
    item_type: str | None,
    path_filter: str | None,
    modified_within: str | None,
    created_within: str | None,
    where: str | None,
    sorter: str | None,
    as_json: bool,
):
    """List recently modified notes."""
    from datetime import datetime

    from .core import recent_changes

    filters = _filters(item_type, path_filter, modified_within, created_within, where)
    result = run_async(recent_changes(_build_context(ctx), limit, filters, sorter or "modified_desc"))
    if as_json:
        output(result, as_json=True)
        return

    rows = [
        {
            "path": item.path,
            "modified": datetime.fromtimestamp(item.last_modified / 1000).strftime("%Y-%m-%d %H:%M")
            if item.last_modified
            else "",
        }
        for item in result.items
    ]
    click.echo(format_table(rows, ["path", "modified"], {"path": 60}) or "No recent changes.")


@cli.command()
@click.argument("query")
@click.option(
    "--mode",
    type=click.Choice(["fulltext", "vector", "hybrid"]),
    default="fulltext",
    help="Search mode",
)
@click.option("--folder", "scope_folder", help="Only search inside this folder")
@click.option("--limit", "-n", default=20, help="Max results")
@filter_options
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@query_command
def search(
    ctx: click.Context,
    query: str,
    mode: str,
    scope_folder: str | None,
    limit: int,
    item_type: str | None,
    path_filter: str | None,
    modified_within: str | None,
    created_within: str | None,
    where: str | None,
    sorter: str | None,
    as_json: bool,
):
    """Search notes by full text, embeddings, or both.

    \b
    Examples:
      ng search "connection pooling"
      ng search "how do I deploy" --mode=vector
      ng search "cache" --mode=hybrid --folder=projects
    """
    from .core import local_search
    from .models import SearchScope

    if not query.strip():
        raise click.UsageError("Query cannot be empty.")

    scope = SearchScope(mode="folder", folder=scope_folder) if scope_folder else None
    filters = _filters(item_type, path_filter, modified_within, created_within, where)
    result = run_async(local_search(_build_context(ctx), query, mode, scope, limit, filters, sorter))
    if as_json:
        output(result, as_json=True)
        return

    for warning in result.warnings:
        click.echo(f"Warning: {warning}", err=True)
    if not result.results:
        click.echo("No results found.")
        return
    rows = [
        {
            "path": hit.path,
            "title": hit.title or "",
            "score": f"{hit.final_score if hit.final_score is not None else hit.score:.2f}",
        }
        for hit in result.results
    ]
    click.echo(format_table(rows, ["path", "title", "score"], {"path": 40, "title": 30}))
    click.echo(f"({result.search_time_ms:.0f} ms)")


if __name__ == "__main__":
    cli()
