#!/usr/bin/env python3
"""
Nudge CLI - learned guidance for agent sessions.

Usage:
    nudge learn status
    nudge learn report [--days N] [--json]
    nudge learn thresholds
    nudge learn reset TYPE
    nudge learn patterns [--limit N]
    nudge learn predict
    nudge learn efficiency
    nudge learn audit [--limit N]
    nudge learn export [--output FILE]
    nudge learn clear [--table TABLE] [--confirm]
"""

import click

from nudge import __version__
from nudge.cli_learn import learn_group


@click.group()
@click.version_option(version=__version__, prog_name="nudge")
def main():
    """Nudge - self-learning guidance for agent sessions."""
    pass


main.add_command(learn_group)


if __name__ == "__main__":
    main()
