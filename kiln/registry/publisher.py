import logging
from typing import Annotated

import requests
from pydantic import BaseModel, ConfigDict, Field

from kiln.const import LOCAL_REGISTRY, LOCAL_REGISTRY_TIP
from kiln.error import KilnLocalRegistryError, KilnRegistryError
from kiln.image.composer import ComposedImage
from kiln.image.descriptor import Descriptor
from kiln.image.reference import ImageReference
from kiln.registry.auth import Credential
from kiln.registry.client import RegistryClient
from kiln.signing.cosign import SignatureArtifact

log = logging.getLogger(__name__)


def destination_reference(workload: str, tag: str, registry_url: str | None, local: bool = False) -> ImageReference:
    """Compute the reference a workload image is published under.

    In local mode the local registry is always used, regardless of the configured registry.

    :raises KilnRegistryError: If no registry is configured outside of local mode.
    """
    registry = LOCAL_REGISTRY if local else (registry_url or "").strip().rstrip("/")
    for scheme in ("https://", "http://"):
        registry = registry.removeprefix(scheme)
    if not registry:
        raise KilnRegistryError("No container registry configured. Set 'container_registry.url' or use --registry.")
    return ImageReference.parse(f"{registry}/{workload}:{tag}")


def validate_local_registry(client: RegistryClient | None = None) -> None:
    """Check that the local registry is reachable.

    :raises KilnLocalRegistryError: If the registry does not answer its catalog endpoint.
    """
    client = client or RegistryClient(LOCAL_REGISTRY)
    log.debug(f"Checking local registry at {client.origin}")
    try:
        client.catalog()
    except KilnRegistryError as e:
        raise KilnLocalRegistryError(
            f"Local registry at {LOCAL_REGISTRY} is not reachable: {e}",
            url=f"{client.origin}/v2/_catalog",
            tip=LOCAL_REGISTRY_TIP,
        ) from e


class PublishResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    reference: Annotated[ImageReference, Field(description="The reference the image was published under.")]
    digest: Annotated[str, Field(description="Digest of the published image manifest.")]
    signature_tag: Annotated[str | None, Field(default=None, description="Tag of the published signature.")]


class RegistryPublisher:
    """Publishes composed images to a registry.

    Blobs already present in the destination are skipped. Base image layers are mounted across repositories when the
    base image lives in the destination registry and otherwise streamed from the source registry in chunks. The image
    tag is written last so a failed publish never leaves a tag pointing at missing content.

    :param credential: Credential for the destination registry, or None for anonymous access.
    :param source_client: Client for the registry hosting the base image. Created anonymously if omitted.
    :param session: Optional requests session shared by the registry clients.
    """

    def __init__(
        self,
        credential: Credential | None = None,
        source_client: RegistryClient | None = None,
        session: requests.Session | None = None,
    ):
        self.credential = credential
        self.source_client = source_client
        self.session = session

    def publish(
        self, image: ComposedImage, destination: ImageReference, signature: SignatureArtifact | None = None
    ) -> PublishResult:
        """Upload an image, and optionally its signature, to the destination reference.

        :raises KilnRegistryError: If any registry operation fails.
        """
        client = RegistryClient(destination.registry, credential=self.credential, session=self.session)
        repository = destination.repository
        log.info(f"Publishing {destination}")

        base = image.base.reference
        for descriptor in image.base.manifest.layers:
            self._copy_base_blob(client, repository, base, descriptor)
        self._push_blob(client, repository, image.layer.compressed_bytes, image.layer_descriptor)
        self._push_blob(client, repository, image.config_bytes, image.config_descriptor)

        signature_tag = None
        if signature is not None:
            self._push_signature(client, repository, signature)
            signature_tag = signature.tag

        digest = client.put_manifest(repository, destination.tag, image.manifest_bytes, image.media_type)
        if digest != image.digest:
            log.warning(f"Registry reported manifest digest {digest}, expected {image.digest}")
        log.debug(f"Published {destination}@{digest}")
        return PublishResult(reference=destination, digest=digest, signature_tag=signature_tag)

    def _copy_base_blob(
        self, client: RegistryClient, repository: str, base: ImageReference, descriptor: Descriptor
    ) -> None:
        if client.blob_exists(repository, descriptor.digest):
            log.debug(f"Blob {descriptor.digest} already exists in {repository}")
            return
        if base.registry == client.registry and client.mount_blob(repository, descriptor.digest, base.repository):
            return

        source = self.source_client or RegistryClient(base.registry, session=self.session)
        log.debug(f"Copying base layer {descriptor.digest} from {base.context}")
        chunks = source.iter_blob(base.repository, descriptor.digest)
        client.upload_blob_chunks(repository, chunks, descriptor.digest)

    @staticmethod
    def _push_blob(client: RegistryClient, repository: str, data: bytes, descriptor: Descriptor) -> None:
        if client.blob_exists(repository, descriptor.digest):
            log.debug(f"Blob {descriptor.digest} already exists in {repository}")
            return
        client.upload_blob(repository, data, descriptor.digest)

    def _push_signature(self, client: RegistryClient, repository: str, signature: SignatureArtifact) -> None:
        manifest = signature.manifest
        self._push_blob(client, repository, signature.payload, manifest.layers[0])
        self._push_blob(client, repository, signature.config_bytes, manifest.config)
        client.put_manifest(repository, signature.tag, manifest.to_json_bytes(), manifest.manifest_media_type)
        log.info(f"Published signature {signature.tag}")
