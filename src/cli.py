#!/usr/bin/env python3
"""
CLI for the link graph engine.
"""

import click
from importlib.metadata import version
from commands import domains, graph, links, platform


@click.group()
@click.version_option(version=version("linkgraph"))
def cli():
    """Link Graph CLI - Analyze, verify and repair article link graphs."""
    pass


# Register command groups
cli.add_command(platform.platform)
cli.add_command(graph.graph)
cli.add_command(links.links)
cli.add_command(domains.domains)


if __name__ == "__main__":
    cli()
