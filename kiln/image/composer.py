import copy
import json
import logging
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from kiln.image.descriptor import BaseImage, Descriptor, ImageManifest
from kiln.image.layer import Layer
from kiln.util import sha256_digest

log = logging.getLogger(__name__)

HISTORY_CREATED_BY = "kiln build: COPY . /"


class ComposedImage(BaseModel):
    """A base image with one appended layer, ready to be published.

    Composed images are never mutated after creation.
    """

    model_config = ConfigDict(frozen=True)

    base: Annotated[BaseImage, Field(description="The resolved base image.")]
    layer: Annotated[Layer, Field(description="The layer appended on top of the base image.")]
    layer_descriptor: Descriptor
    config_bytes: Annotated[bytes, Field(description="Serialized image configuration.")]
    config_descriptor: Descriptor
    manifest: ImageManifest
    manifest_bytes: Annotated[bytes, Field(description="Serialized image manifest.")]

    @property
    def digest(self) -> str:
        """The content digest of the image manifest."""
        return sha256_digest(self.manifest_bytes)

    @property
    def media_type(self) -> str:
        return self.manifest.manifest_media_type

    @property
    def config(self) -> dict:
        return json.loads(self.config_bytes)


def compose(base: BaseImage, layer: Layer) -> ComposedImage:
    """Append a layer to a base image.

    Only the layer list, ``rootfs.diff_ids`` and ``history`` change; every other configuration field of the base
    (entrypoint, environment, labels, ...) is carried over unmodified. No registry is contacted.

    :param base: The resolved base image.
    :param layer: The layer to append.
    """
    config = copy.deepcopy(base.config)
    rootfs = config.setdefault("rootfs", {})
    rootfs.setdefault("type", "layers")
    rootfs["diff_ids"] = list(rootfs.get("diff_ids") or []) + [layer.diff_id]
    config["history"] = list(config.get("history") or []) + [{"created_by": HISTORY_CREATED_BY}]
    config_bytes = json.dumps(config, separators=(",", ":")).encode("utf-8")

    config_descriptor = Descriptor(
        media_type=base.manifest.config.media_type,
        digest=sha256_digest(config_bytes),
        size=len(config_bytes),
    )
    layer_descriptor = Descriptor(
        media_type=base.manifest.layer_media_type,
        digest=layer.digest,
        size=layer.size,
    )
    manifest = base.manifest.model_copy(
        update={
            "media_type": base.manifest.manifest_media_type,
            "config": config_descriptor,
            "layers": [*base.manifest.layers, layer_descriptor],
        },
        deep=True,
    )

    log.debug(
        f"Composed image on {base.reference} with {len(manifest.layers)} layer(s), "
        f"new layer {layer.digest} ({layer.size} bytes)"
    )
    return ComposedImage(
        base=base,
        layer=layer,
        layer_descriptor=layer_descriptor,
        config_bytes=config_bytes,
        config_descriptor=config_descriptor,
        manifest=manifest,
        manifest_bytes=manifest.to_json_bytes(),
    )
