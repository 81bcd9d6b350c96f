import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from pydantic import SecretStr
from rich.markup import escape
from rich.table import Table

from kiln.cli.common import with_temporary_storage, with_verbosity_flags
from kiln.config import BuildEnvironment, DefaultsConfig
from kiln.const import DEFAULT_PLATFORM, DEFAULT_TAG, DEFAULTS_FILE, ENV_COSIGN_KEY_PATH, LOCAL_REGISTRY
from kiln.error import KilnError
from kiln.image.descriptor import Platform
from kiln.log import stderr_console, stdout_console
from kiln.registry.publisher import validate_local_registry
from kiln.util import auto_path
from kiln.workload import BuildOptions, BuildSummary, WorkloadBuildResult, WorkloadDriver, discover_workloads

log = logging.getLogger(__name__)


def _fail(message: str) -> typer.Exit:
    stderr_console.print(f"❌ {message}", style="error", markup=False)
    return typer.Exit(code=1)


def _registry_url(context: Path, registry: str | None, local: bool, push: bool) -> str | None:
    if local:
        return LOCAL_REGISTRY
    if registry:
        return registry
    if not push and not (context / DEFAULTS_FILE).is_file():
        return None
    return DefaultsConfig.from_context(context).container_registry.url


def _print_result(result: WorkloadBuildResult) -> None:
    if result.ok:
        action = "Published" if result.pushed else "Built"
        stderr_console.print(
            f"✅ {action} {result.name} as {result.reference}@{result.digest}", style="success", markup=False
        )
    else:
        stderr_console.print(f"❌ Failed to build {result.name}: {result.error}", style="error", markup=False)


def _print_summary(summary: BuildSummary) -> None:
    table = Table(title="Build summary")
    table.add_column("Workload")
    table.add_column("Status")
    table.add_column("Image")
    for result in summary.results:
        if result.ok:
            table.add_row(result.name, "[success]✅ ok", f"{result.reference}@{result.digest}")
        else:
            table.add_row(result.name, "[error]❌ failed", escape(result.error))
    stdout_console.print(table)
    stdout_console.print(f"{len(summary.succeeded)} succeeded, {len(summary.failed)} failed", highlight=False)


@with_verbosity_flags
@with_temporary_storage
def build(
    workload: Annotated[
        Optional[str],
        typer.Argument(show_default=False, help="The workload under 'containers/' to build."),
    ] = None,
    all_workloads: Annotated[
        Optional[bool],
        typer.Option("--all", help="Build every workload under 'containers/', continuing past failures."),
    ] = False,
    context: Annotated[
        Path,
        typer.Option(
            exists=True,
            file_okay=False,
            dir_okay=True,
            readable=True,
            resolve_path=True,
            help="The project root to use. Defaults to the current working directory where invoked.",
        ),
    ] = auto_path(),
    local: Annotated[
        Optional[bool],
        typer.Option(
            "--local",
            "-l",
            help=f"Publish to the local registry at {LOCAL_REGISTRY} instead of the configured registry.",
            rich_help_panel="Publishing",
        ),
    ] = False,
    no_push: Annotated[
        Optional[bool],
        typer.Option("--no-push", help="Build images without publishing them.", rich_help_panel="Publishing"),
    ] = False,
    tag: Annotated[
        str, typer.Option(help="The tag to publish images under.", rich_help_panel="Publishing")
    ] = DEFAULT_TAG,
    registry: Annotated[
        Optional[str],
        typer.Option(
            show_default=False,
            help="Registry to publish to. Overrides 'container_registry.url' from config/defaults.toml.",
            rich_help_panel="Publishing",
        ),
    ] = None,
    token: Annotated[
        Optional[str],
        typer.Option(
            show_default=False,
            help="Registry token. Falls back to GITHUB_TOKEN, then 1Password via OP_SERVICE_ACCOUNT_TOKEN.",
            rich_help_panel="Authentication",
        ),
    ] = None,
    username: Annotated[
        Optional[str],
        typer.Option(
            show_default=False,
            help="Registry username. When set, the token is sent with basic authentication.",
            rich_help_panel="Authentication",
        ),
    ] = None,
    sign: Annotated[
        Optional[bool],
        typer.Option("--sign", help="Sign images with cosign before publishing.", rich_help_panel="Signing"),
    ] = False,
    cosign_key: Annotated[
        Optional[Path],
        typer.Option(
            envvar=ENV_COSIGN_KEY_PATH,
            show_default=False,
            help="Path to a cosign private key for key-based signing.",
            rich_help_panel="Signing",
        ),
    ] = None,
    platform: Annotated[
        str, typer.Option(help="Platform of the base image to build on.", rich_help_panel="Build Configuration")
    ] = DEFAULT_PLATFORM,
) -> None:
    """Builds container images from workloads in the context path without a container daemon

    Each workload's build context is captured as a single layer and added on top of the base image named by the
    `FROM` instruction of its Containerfile (or Dockerfile). The result is published to the configured registry
    unless `--no-push` is given.

    With `--all`, every workload is built and a summary is printed. Individual failures do not stop the batch.
    """
    if workload and all_workloads:
        raise _fail("Specify either a workload or --all, not both.")
    if not workload and not all_workloads:
        raise _fail("Specify a workload to build or use --all.")
    try:
        Platform.parse(platform)
    except ValueError as e:
        raise _fail(str(e))

    push = not no_push
    environment = BuildEnvironment.from_environ()
    try:
        registry_url = _registry_url(context, registry, local, push)
        names = discover_workloads(context) if all_workloads else [workload]
    except KilnError as e:
        raise _fail(str(e))

    options = BuildOptions(
        context=context,
        tag=tag,
        local=local,
        push=push,
        sign=sign,
        token=SecretStr(token) if token else None,
        username=username,
        cosign_key=cosign_key,
        registry_url=registry_url,
        platform=platform,
    )

    if registry_url:
        stderr_console.print(f"Target registry: {registry_url}", style="info", highlight=False)
    if local and push:
        try:
            validate_local_registry()
        except KilnError as e:
            raise _fail(str(e))

    driver = WorkloadDriver(options, environment)
    if not all_workloads:
        try:
            result = driver.build_workload(workload)
        except KilnError as e:
            log.debug("Build failed", exc_info=True)
            raise _fail(f"Failed to build {workload}: {e}")
        _print_result(result)
        return

    summary = driver.build_all(names, on_result=_print_result)
    _print_summary(summary)
