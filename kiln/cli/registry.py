import logging

import typer
from python_on_whales import DockerException

from kiln.cli.common import with_verbosity_flags
from kiln.const import LOCAL_REGISTRY_TIP
from kiln.log import stderr_console
from kiln.services.registry_container import RegistryContainer

log = logging.getLogger(__name__)

app = typer.Typer(no_args_is_help=True)


@app.command()
@with_verbosity_flags
def start() -> None:
    """Starts the local registry used by `kiln build --local`

    Requires Docker to be installed and running.
    """
    registry = RegistryContainer()
    try:
        registry.start()
        url = registry.url
    except (DockerException, RuntimeError) as e:
        log.debug("Failed to start registry container", exc_info=True)
        stderr_console.print(f"❌ Failed to start local registry: {e}", style="error", markup=False)
        stderr_console.print(LOCAL_REGISTRY_TIP, style="quiet", highlight=False)
        raise typer.Exit(code=1)

    stderr_console.print(f"✅ Local registry running at {url}", style="success")


@app.command()
@with_verbosity_flags
def stop() -> None:
    """Stops and removes the local registry container"""
    registry = RegistryContainer()
    try:
        stopped = registry.stop()
    except DockerException as e:
        stderr_console.print(f"❌ Failed to stop local registry: {e}", style="error", markup=False)
        raise typer.Exit(code=1)

    if stopped:
        stderr_console.print("✅ Local registry stopped", style="success")
    else:
        stderr_console.print("Local registry is not running", style="quiet")
