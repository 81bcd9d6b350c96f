import json
import logging
from pathlib import Path

import requests

from kiln.const import DEFAULT_PLATFORM, INDEX_MEDIA_TYPES, MANIFEST_MEDIA_TYPES
from kiln.error import KilnManifestError, KilnRegistryError
from kiln.image.descriptor import BaseImage, ImageIndex, ImageManifest, Platform
from kiln.image.manifest import read_base_image_reference
from kiln.image.reference import ImageReference
from kiln.registry.client import RegistryClient

log = logging.getLogger(__name__)


def _load_json_object(content: bytes, what: str) -> dict:
    try:
        document = json.loads(content)
    except ValueError as e:
        raise KilnRegistryError(f"{what} is not valid JSON: {e}") from e
    if not isinstance(document, dict):
        raise KilnRegistryError(f"{what} is not a JSON object")
    return document


class BaseImageResolver:
    """Resolves base image references to their manifest and configuration.

    Base images are pulled anonymously. Registry clients are kept per registry host so the publisher can later copy
    base layers from the same connection.

    :param platform: Platform to select when the base reference points at a multi-platform index.
    :param session: Optional requests session shared by all registry clients.
    """

    def __init__(self, platform: str = DEFAULT_PLATFORM, session: requests.Session | None = None):
        self.platform = Platform.parse(platform)
        self.session = session
        self._clients: dict[str, RegistryClient] = {}

    def client_for(self, registry: str) -> RegistryClient:
        if registry not in self._clients:
            self._clients[registry] = RegistryClient(registry, session=self.session)
        return self._clients[registry]

    def resolve(self, reference: ImageReference) -> BaseImage:
        """Fetch the manifest and configuration of a base image.

        :raises KilnRegistryError: If the image cannot be fetched or has no manifest for the selected platform.
        """
        log.info(f"Resolving base image {reference}")
        client = self.client_for(reference.registry)
        content, media_type, digest = client.get_manifest(reference.repository, reference.identifier)
        if not media_type or media_type == "application/json":
            media_type = _load_json_object(content, f"Manifest of {reference}").get("mediaType", "")

        if media_type in INDEX_MEDIA_TYPES:
            try:
                index = ImageIndex.model_validate_json(content)
            except ValueError as e:
                raise KilnRegistryError(f"Base image {reference} has a malformed image index: {e}") from e
            descriptor = index.select(self.platform)
            if descriptor is None:
                raise KilnRegistryError(f"Base image {reference} has no manifest for platform {self.platform}")
            log.debug(f"Selected {descriptor.digest} for platform {self.platform}")
            content, media_type, digest = client.get_manifest(reference.repository, descriptor.digest)

        if media_type and media_type not in MANIFEST_MEDIA_TYPES:
            raise KilnRegistryError(f"Base image {reference} has unsupported manifest type '{media_type}'")

        try:
            manifest = ImageManifest.model_validate_json(content)
        except ValueError as e:
            raise KilnRegistryError(f"Base image {reference} has a malformed manifest: {e}") from e
        config = client.get_blob(reference.repository, manifest.config.digest)
        config = _load_json_object(config, f"Configuration of {reference}")
        base = BaseImage(reference=reference.with_digest(digest), manifest=manifest, config=config)
        log.debug(f"Resolved base image to {base.reference} with {len(base.manifest.layers)} layer(s)")
        return base

    def resolve_manifest(self, manifest_path: Path) -> BaseImage:
        """Read the base image declaration from a build manifest and resolve it."""
        reference = read_base_image_reference(manifest_path)
        if reference.repository == "library/scratch":
            raise KilnManifestError(f"'FROM scratch' is not supported ({manifest_path})", filepath=str(manifest_path))
        return self.resolve(reference)
