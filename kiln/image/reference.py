import re
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from kiln.const import (
    DOCKER_HUB_API_HOST,
    DOCKER_HUB_REGISTRY,
    LOOPBACK_HOSTS,
    REGEX_DIGEST_PATTERN,
    REGEX_REGISTRY_HOST_PATTERN,
    REGEX_REPOSITORY_PATTERN,
    REGEX_TAG_PATTERN,
    DEFAULT_TAG,
)
from kiln.error import KilnReferenceError


def _looks_like_registry(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost" or component.startswith("[")


def registry_api_host(registry: str) -> str:
    """The host name used to address a registry's HTTP API."""
    if registry == DOCKER_HUB_REGISTRY:
        return DOCKER_HUB_API_HOST
    return registry


def is_loopback_registry(registry: str) -> bool:
    """Check if a registry is addressed on the loopback interface."""
    if registry.startswith("["):
        host = registry[: registry.index("]") + 1]
    else:
        host = registry.split(":", 1)[0]
    return host in LOOPBACK_HOSTS


def registry_scheme(registry: str) -> str:
    """Loopback registries are served over plain HTTP, everything else over HTTPS."""
    return "http" if is_loopback_registry(registry) else "https"


class ImageReference(BaseModel):
    """An immutable reference to an image in a registry.

    References are parsed with the same normalization rules as Docker: a bare name such as ``alpine`` refers to
    ``docker.io/library/alpine:latest``.
    """

    model_config = ConfigDict(frozen=True)

    registry: Annotated[str, Field(description="Registry host, including an optional port.")]
    repository: Annotated[str, Field(description="Repository path within the registry.")]
    tag: Annotated[str | None, Field(default=None, description="Tag of the image.")]
    digest: Annotated[str | None, Field(default=None, description="Content digest of the image manifest.")]

    @classmethod
    def parse(cls, value: str) -> "ImageReference":
        """Parse an image reference string.

        :param value: A reference such as ``example.com/base:1.0`` or ``alpine@sha256:...``.

        :raises KilnReferenceError: If the reference cannot be parsed.
        """
        if not value or value != value.strip():
            raise KilnReferenceError(
                f"Invalid image reference '{value}': reference is empty or padded with whitespace", value
            )

        remainder = value
        digest = None
        if "@" in remainder:
            remainder, digest = remainder.split("@", 1)
            if not re.match(REGEX_DIGEST_PATTERN, digest):
                raise KilnReferenceError(f"Invalid image reference '{value}': malformed digest '{digest}'", value)

        tag = None
        last_slash = remainder.rfind("/")
        last_colon = remainder.rfind(":")
        if last_colon > last_slash:
            remainder, tag = remainder[:last_colon], remainder[last_colon + 1 :]
            if not re.match(REGEX_TAG_PATTERN, tag):
                raise KilnReferenceError(f"Invalid image reference '{value}': malformed tag '{tag}'", value)

        parts = remainder.split("/", 1)
        if len(parts) == 2 and _looks_like_registry(parts[0]):
            registry, repository = parts
            if not re.match(REGEX_REGISTRY_HOST_PATTERN, registry):
                raise KilnReferenceError(f"Invalid image reference '{value}': malformed registry '{registry}'", value)
        else:
            registry, repository = DOCKER_HUB_REGISTRY, remainder

        if registry == DOCKER_HUB_REGISTRY and "/" not in repository:
            repository = f"library/{repository}"
        if not re.match(REGEX_REPOSITORY_PATTERN, repository):
            raise KilnReferenceError(
                f"Invalid image reference '{value}': repository '{repository}' must be lowercase alphanumeric "
                f"components separated by '/', '.', '_' or '-'",
                value,
            )

        if tag is None and digest is None:
            tag = DEFAULT_TAG

        return cls(registry=registry, repository=repository, tag=tag, digest=digest)

    def __str__(self) -> str:
        s = f"{self.registry}/{self.repository}"
        if self.tag:
            s += f":{self.tag}"
        if self.digest:
            s += f"@{self.digest}"
        return s

    @property
    def identifier(self) -> str:
        """The manifest identifier to request from the registry, preferring the digest over the tag."""
        return self.digest or self.tag or DEFAULT_TAG

    @property
    def context(self) -> str:
        """The registry and repository without any tag or digest."""
        return f"{self.registry}/{self.repository}"

    @property
    def api_host(self) -> str:
        return registry_api_host(self.registry)

    @property
    def is_loopback(self) -> bool:
        return is_loopback_registry(self.registry)

    @property
    def scheme(self) -> str:
        return registry_scheme(self.registry)

    def with_digest(self, digest: str) -> "ImageReference":
        """Return a copy of the reference pinned to the given digest."""
        return self.model_copy(update={"digest": digest})
