from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field

from kiln.const import (
    MEDIA_TYPE_DOCKER_LAYER_GZIP,
    MEDIA_TYPE_DOCKER_MANIFEST,
    MEDIA_TYPE_OCI_LAYER_GZIP,
    MEDIA_TYPE_OCI_MANIFEST,
)
from kiln.image.reference import ImageReference


class OCIModel(BaseModel):
    """Base model for OCI JSON documents, which use camelCase keys and may carry unknown fields."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_json_bytes(self) -> bytes:
        """Serialize the document the way it is sent to a registry."""
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")


class Platform(OCIModel):
    architecture: str
    os: str
    variant: Annotated[str | None, Field(default=None)]

    @classmethod
    def parse(cls, value: str) -> "Platform":
        """Parse a platform string such as ``linux/amd64`` or ``linux/arm64/v8``."""
        parts = value.split("/")
        if len(parts) not in (2, 3) or not all(parts):
            raise ValueError(f"Invalid platform '{value}', expected os/architecture[/variant]")
        return cls(os=parts[0], architecture=parts[1], variant=parts[2] if len(parts) == 3 else None)

    def matches(self, other: "Platform") -> bool:
        if self.os != other.os or self.architecture != other.architecture:
            return False
        return other.variant is None or self.variant == other.variant

    def __str__(self) -> str:
        s = f"{self.os}/{self.architecture}"
        if self.variant:
            s += f"/{self.variant}"
        return s


class Descriptor(OCIModel):
    """Content descriptor pointing at a blob or manifest."""

    media_type: Annotated[str, Field(alias="mediaType")]
    digest: str
    size: int
    annotations: Annotated[dict[str, str] | None, Field(default=None)]
    platform: Annotated[Platform | None, Field(default=None)]


class ImageManifest(OCIModel):
    """A single-platform image manifest (OCI or Docker v2 schema 2)."""

    schema_version: Annotated[int, Field(default=2, alias="schemaVersion")]
    media_type: Annotated[str | None, Field(default=None, alias="mediaType")]
    config: Descriptor
    layers: Annotated[list[Descriptor], Field(default_factory=list)]
    annotations: Annotated[dict[str, str] | None, Field(default=None)]

    @property
    def is_docker(self) -> bool:
        return self.media_type == MEDIA_TYPE_DOCKER_MANIFEST

    @property
    def layer_media_type(self) -> str:
        """Layer media type matching the flavour of this manifest."""
        return MEDIA_TYPE_DOCKER_LAYER_GZIP if self.is_docker else MEDIA_TYPE_OCI_LAYER_GZIP

    @property
    def manifest_media_type(self) -> str:
        return self.media_type or MEDIA_TYPE_OCI_MANIFEST


class ImageIndex(OCIModel):
    """A multi-platform image index or Docker manifest list."""

    schema_version: Annotated[int, Field(default=2, alias="schemaVersion")]
    media_type: Annotated[str | None, Field(default=None, alias="mediaType")]
    manifests: Annotated[list[Descriptor], Field(default_factory=list)]

    def select(self, platform: Platform) -> Descriptor | None:
        """Return the first manifest descriptor for the requested platform."""
        for descriptor in self.manifests:
            if descriptor.platform is not None and descriptor.platform.matches(platform):
                return descriptor
        return None


class BaseImage(BaseModel):
    """A resolved base image: its pinned reference, manifest and configuration."""

    model_config = ConfigDict(frozen=True)

    reference: Annotated[ImageReference, Field(description="Reference pinned to the manifest digest.")]
    manifest: ImageManifest
    config: Annotated[dict[str, Any], Field(description="The decoded image configuration document.")]

