# cli/main.py
"""Main CLI entry point for specflow."""

from pathlib import Path
from typing import Iterable, Optional

import click

from specflow import __version__
from specflow.config import get_settings
from specflow.utils.logging import setup_logging
from cli.commands.dag import CLIContext, dag


def build_cli(commands: Iterable[click.Command]) -> click.Group:
    """Build the root command group from an explicit command table."""

    @click.group()
    @click.version_option(version=__version__)
    @click.option('--state-dir', type=click.Path(file_okay=False, path_type=Path),
                  default=None, help='Directory holding run state (default: from settings)')
    @click.option('--verbose', '-v', is_flag=True, help='Verbose output')
    @click.pass_context
    def cli(ctx: click.Context, state_dir: Optional[Path], verbose: bool):
        """specflow - run multi-feature workflows as a DAG of layers."""
        if ctx.obj is None:
            ctx.obj = CLIContext(settings=get_settings())
        if state_dir is not None:
            ctx.obj.settings = ctx.obj.settings.model_copy(update={"state_dir": state_dir})
        ctx.obj.verbose = ctx.obj.verbose or verbose

        setup_logging("DEBUG" if ctx.obj.verbose else ctx.obj.settings.log_level)

    for command in commands:
        cli.add_command(command)
    return cli


COMMANDS = [
    dag,
]

cli = build_cli(COMMANDS)


if __name__ == '__main__':
    cli()
