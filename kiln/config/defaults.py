import logging
from pathlib import Path
from typing import Annotated

import pydantic
import tomlkit
from pydantic import BaseModel, ConfigDict, Field
from tomlkit.exceptions import TOMLKitError

from kiln.const import DEFAULTS_FILE
from kiln.error import KilnFileError

log = logging.getLogger(__name__)


class ContainerRegistryConfig(BaseModel):
    """The registry workload images are published to."""

    model_config = ConfigDict(extra="ignore")

    url: Annotated[
        str,
        Field(min_length=1, description="Registry host and namespace.", examples=["ghcr.io/myorg", "localhost:5000"]),
    ]


class DefaultsConfig(BaseModel):
    """The subset of the project defaults file consumed by image builds."""

    model_config = ConfigDict(extra="ignore")

    container_registry: ContainerRegistryConfig

    @classmethod
    def load(cls, path: Path) -> "DefaultsConfig":
        """Load the defaults file.

        :param path: Path to the defaults TOML file.

        :raises KilnFileError: If the file is missing, is not valid TOML, or lacks a registry URL.
        """
        path = Path(path)
        if not path.is_file():
            raise KilnFileError(f"Defaults file not found: {path}", filepath=str(path))
        try:
            document = tomlkit.parse(path.read_text(encoding="utf-8")).unwrap()
        except (OSError, UnicodeDecodeError, TOMLKitError) as e:
            raise KilnFileError(f"Failed to parse defaults file {path}: {e}", filepath=str(path)) from e
        try:
            config = cls.model_validate(document)
        except pydantic.ValidationError as e:
            raise KilnFileError(
                f"Defaults file {path} must define [container_registry] url: {e.error_count()} validation error(s)",
                filepath=str(path),
            ) from e
        log.debug(f"Loaded container registry '{config.container_registry.url}' from {path}")
        return config

    @classmethod
    def from_context(cls, context: Path) -> "DefaultsConfig":
        return cls.load(Path(context) / DEFAULTS_FILE)
