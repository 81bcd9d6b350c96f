import typer

from kiln import __version__
from kiln.log import stdout_console


def version():
    """Display the version of kiln"""
    stdout_console.print(f"kiln v{__version__}", highlight=False)
    raise typer.Exit()
