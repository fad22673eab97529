"""CLI entry points for campusgraph.

Provides command-line tools for:
- Entity resolution
- Relationship graphs and cross-reference queries
- Recommendations
- Data integrity checks and repairs
"""

import sys

import click

from ..logging import setup_logging
from .catalog import crossref_cmd, graph_cmd, path_cmd, recommend_cmd, resolve_cmd
from .integrity import cli as integrity_cli


@click.group()
@click.version_option(version="0.1.0", prog_name="campusgraph")
def main():
    """campusgraph - college catalog resolution and relationship graph.

    Command-line tools for resolving names, exploring relationships
    and checking catalog integrity.
    """
    setup_logging(stream=sys.stderr)


main.add_command(resolve_cmd)
main.add_command(graph_cmd)
main.add_command(path_cmd)
main.add_command(crossref_cmd)
main.add_command(recommend_cmd)
main.add_command(integrity_cli, name="integrity")


if __name__ == "__main__":
    main()
