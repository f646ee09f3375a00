"""Root CLI group and version flag."""

import click

from codexline import __version__
from codexline.commands.run import run


@click.group()
@click.version_option(version=__version__, prog_name="codexline")
def cli() -> None:
    """codexline — drive a coding agent over JSONL from the shell."""


cli.add_command(run)
