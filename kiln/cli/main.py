import typer

from kiln.cli import build, registry, version
from kiln.const import APP_NAME

app = typer.Typer(
    name=APP_NAME,
    no_args_is_help=True,
    rich_markup_mode="markdown",
    help="A tool for building container images without a container daemon",
)

# Import the "build" subcommand
# Since "build" is a single command, we import the function directly rather than adding it as a typer subgroup
app.command(
    name="build",
    help="Build workload images and publish them to a registry (aliases: b)",
    rich_help_panel="Image Building",
)(build.build)
app.command(name="b", hidden=True)(build.build)

# Import the "registry" subcommand
app.add_typer(
    registry.app,
    name="registry",
    help="Manage the local registry container",
    rich_help_panel="Local Development",
)

# Import the "version" subcommand
app.command(name="version", help="Show the kiln version")(version.version)
