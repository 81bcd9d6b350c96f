import functools
import inspect
import logging
import tempfile
from pathlib import Path
from typing import Annotated, Optional

import typer

from kiln.log import init_logging
from kiln.settings import SETTINGS

log = logging.getLogger(__name__)


def with_verbosity_flags(fn):
    @functools.wraps(fn)
    def wrapper(
        *args,
        verbose: Annotated[Optional[bool], typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
        quiet: Annotated[
            Optional[bool], typer.Option("--quiet", "-q", help="Supress all output except errors")
        ] = False,
        **kwargs,
    ):
        if verbose and quiet:
            raise typer.BadParameter("Cannot set both --verbose and --quiet flags.")

        log_level: str | int = logging.INFO
        if verbose:
            log_level = logging.DEBUG
        elif quiet:
            log_level = logging.ERROR

        init_logging(log_level)
        return fn(*args, **kwargs)

    # Update signature with verbosity flags
    sig = inspect.signature(wrapper)
    params = list(sig.parameters.values())
    params.extend(
        [
            inspect.Parameter(
                "verbose",
                inspect.Parameter.KEYWORD_ONLY,
                default=False,
                annotation=Annotated[Optional[bool], typer.Option("--verbose", "-v", help="Enable debug logging")],
            ),
            inspect.Parameter(
                "quiet",
                inspect.Parameter.KEYWORD_ONLY,
                default=False,
                annotation=Annotated[
                    Optional[bool], typer.Option("--quiet", "-q", help="Supress all output except errors")
                ],
            ),
        ]
    )
    sig = sig.replace(parameters=params)
    wrapper.__signature__ = sig

    return wrapper


def with_temporary_storage(fn):
    @functools.wraps(fn)
    def wrapper(ctx: typer.Context, *args, **kwargs) -> None:
        previous_storage = SETTINGS.temporary_storage
        temp_dir = tempfile.TemporaryDirectory(prefix="kiln")
        SETTINGS.temporary_storage = Path(temp_dir.name)

        def restore_storage() -> None:
            SETTINGS.temporary_storage = previous_storage

        ctx.call_on_close(temp_dir.cleanup)
        ctx.call_on_close(restore_storage)

        log.debug(f"Created temporary directory at {SETTINGS.temporary_storage}")

        return fn(*args, **kwargs)

    # Update signature with the typer context
    sig = inspect.signature(wrapper)
    params = list(sig.parameters.values())
    params.insert(0, inspect.Parameter("ctx", inspect.Parameter.POSITIONAL_OR_KEYWORD, annotation=typer.Context))
    sig = sig.replace(parameters=params)
    wrapper.__signature__ = sig

    return wrapper
