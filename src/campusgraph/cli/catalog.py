"""CLI commands for resolution, graph and recommendation queries.

Usage:
    campusgraph resolve NAME --type college [--threshold 0.8]
    campusgraph graph ID --type college [--depth 2]
    campusgraph path FROM_ID FROM_TYPE TO_ID TO_TYPE
    campusgraph crossref [--region ID] [--course ID] [--college ID]
    campusgraph recommend ID --type college [--user USER] [--limit N]
"""

import asyncio
import json
import sys
from typing import Any, Awaitable, Callable

import click

from ..db import close_all_connections
from ..errors import CampusGraphError
from ..models import EntityKind
from ..services import CatalogEngine

KIND_CHOICE = click.Choice([kind.value for kind in EntityKind])


def run_with_engine(action: Callable[[CatalogEngine], Awaitable[Any]]) -> Any:
    """Build an engine from settings, run ``action`` on it and close it.

    Catalog errors are printed and exit with status 1.
    """

    async def _run():
        engine = CatalogEngine.build()
        try:
            return await action(engine)
        finally:
            await engine.close()
            await close_all_connections()

    try:
        return asyncio.run(_run())
    except CampusGraphError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)


def echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.command(name="resolve")
@click.argument("identifiers", nargs=-1, required=True)
@click.option("--type", "kind", type=KIND_CHOICE, default="college", help="Entity type")
@click.option("--threshold", type=click.FloatRange(0.0, 1.0), default=None, help="Fuzzy threshold")
@click.option("--no-cache", is_flag=True, help="Bypass the resolution cache")
def resolve_cmd(identifiers: tuple[str, ...], kind: str, threshold: float | None, no_cache: bool):
    """Resolve identifiers or names to canonical entities.

    Examples:

        campusgraph resolve "A J Institute of Medical Sciences"

        campusgraph resolve CRS0035 CRS0036 --type course
    """

    async def _resolve(engine: CatalogEngine):
        if len(identifiers) == 1:
            result = await engine.resolver.resolve(
                identifiers[0], kind, fuzzy_threshold=threshold, use_cache=not no_cache
            )
            return {identifiers[0]: result}
        return await engine.resolver.resolve_batch(
            list(identifiers), kind, fuzzy_threshold=threshold, use_cache=not no_cache
        )

    results = run_with_engine(_resolve)
    echo_json({key: result.model_dump(mode="json") for key, result in results.items()})

    if not any(result.resolved for result in results.values()):
        sys.exit(2)


@click.command(name="graph")
@click.argument("entity_id")
@click.option("--type", "kind", type=KIND_CHOICE, default="college", help="Root entity type")
@click.option("--depth", type=int, default=None, help="Traversal depth (0-5)")
@click.option("--no-metadata", is_flag=True, help="Omit node metadata")
@click.option(
    "--filter-type",
    "filter_types",
    type=KIND_CHOICE,
    multiple=True,
    help="Keep only these node types (repeatable)",
)
def graph_cmd(
    entity_id: str,
    kind: str,
    depth: int | None,
    no_metadata: bool,
    filter_types: tuple[str, ...],
):
    """Build the relationship graph around an entity."""

    async def _graph(engine: CatalogEngine):
        return await engine.graph.build_graph(
            entity_id,
            kind,
            max_depth=depth,
            include_metadata=not no_metadata,
            filter_types=[EntityKind(t) for t in filter_types] or None,
        )

    graph = run_with_engine(_graph)
    echo_json(
        {
            "graph": graph.model_dump(mode="json", by_alias=True),
            "stats": graph.stats(),
        }
    )


@click.command(name="path")
@click.argument("from_id")
@click.argument("from_type", type=KIND_CHOICE)
@click.argument("to_id")
@click.argument("to_type", type=KIND_CHOICE)
def path_cmd(from_id: str, from_type: str, to_id: str, to_type: str):
    """Find the shortest path between two entities."""

    async def _path(engine: CatalogEngine):
        return await engine.graph.find_path(from_id, from_type, to_id, to_type)

    path = run_with_engine(_path)
    if path is None:
        click.echo("No path found.")
        sys.exit(2)

    click.echo(f"Path ({len(path) - 1} hops):")
    for node in path:
        click.echo(f"  {node.entity_type.value}:{node.id}  {node.display_name}")


@click.command(name="crossref")
@click.option("--region", "region_id", default=None, help="Region id")
@click.option("--course", "course_id", default=None, help="Course id")
@click.option("--college", "college_id", default=None, help="College id")
@click.option("--stream", default=None, help="Stream")
def crossref_cmd(
    region_id: str | None,
    course_id: str | None,
    college_id: str | None,
    stream: str | None,
):
    """Query the region/course/college links."""

    async def _query(engine: CatalogEngine):
        return await engine.cross_reference.query(
            region_id=region_id,
            course_id=course_id,
            college_id=college_id,
            stream=stream,
        )

    result = run_with_engine(_query)
    echo_json(
        {
            "results": result.model_dump(mode="json", by_alias=True),
            "stats": result.stats(),
        }
    )


@click.command(name="recommend")
@click.argument("entity_id")
@click.option(
    "--type",
    "kind",
    type=click.Choice(["college", "course", "user"]),
    default="college",
    help="Source type; 'user' recommends from a user's selections",
)
@click.option("--user", "user_id", default=None, help="Personalize for this user")
@click.option(
    "--limit", type=click.IntRange(min=1), default=None, help="Maximum recommendations"
)
@click.option("--no-reasons", is_flag=True, help="Omit reasons")
def recommend_cmd(
    entity_id: str,
    kind: str,
    user_id: str | None,
    limit: int | None,
    no_reasons: bool,
):
    """Recommend colleges or courses similar to an entity."""

    async def _recommend(engine: CatalogEngine):
        if kind == "user":
            return await engine.recommendations.recommend_for_user(
                entity_id, limit=20 if limit is None else limit
            )
        return await engine.recommendations.recommend(
            entity_id,
            kind,
            user_id=user_id,
            limit=limit,
            include_reasons=not no_reasons,
        )

    results = run_with_engine(_recommend)
    if not results:
        click.echo("No recommendations.")
        return

    for i, candidate in enumerate(results, 1):
        click.echo(f"{i:>2}. {candidate.display_name} ({candidate.id})  score={candidate.score:.1f}")
        for reason in candidate.reasons:
            click.echo(f"      - {reason}")
