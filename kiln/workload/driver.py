import logging
from pathlib import Path
from typing import Annotated, Callable

import requests
from pydantic import BaseModel, ConfigDict, Field, SecretStr

from kiln.config.environment import BuildEnvironment
from kiln.const import CONTAINERS_DIRECTORY, DEFAULT_PLATFORM, DEFAULT_TAG
from kiln.error import KilnContextError, KilnError
from kiln.image.composer import compose
from kiln.image.layer import BuildContext
from kiln.image.reference import ImageReference
from kiln.image.resolver import BaseImageResolver
from kiln.registry.auth import Credential, resolve_credential
from kiln.registry.publisher import RegistryPublisher, destination_reference
from kiln.registry.secret_store import OnePasswordSecretStore, SecretStore
from kiln.signing.orchestrator import SigningOrchestrator

log = logging.getLogger(__name__)


class BuildOptions(BaseModel):
    """Options shared by every workload built in one invocation."""

    model_config = ConfigDict(frozen=True)

    context: Annotated[Path, Field(description="Project root containing the containers directory.")]
    tag: Annotated[str, Field(default=DEFAULT_TAG, description="Tag to publish images under.")]
    local: Annotated[bool, Field(default=False, description="Publish to the local registry.")]
    push: Annotated[bool, Field(default=True, description="Publish images after building.")]
    sign: Annotated[bool, Field(default=False, description="Sign images before publishing.")]
    token: Annotated[SecretStr | None, Field(default=None, description="Registry token given on the command line.")]
    username: Annotated[str | None, Field(default=None, description="Username paired with the registry token.")]
    cosign_key: Annotated[Path | None, Field(default=None, description="Cosign private key path override.")]
    registry_url: Annotated[str | None, Field(default=None, description="Configured destination registry.")]
    platform: Annotated[str, Field(default=DEFAULT_PLATFORM, description="Platform of the base image to build on.")]


class WorkloadBuildResult(BaseModel):
    """The outcome of building a single workload."""

    model_config = ConfigDict(frozen=True)

    name: str
    reference: Annotated[ImageReference | None, Field(default=None, description="Destination image reference.")]
    digest: Annotated[str | None, Field(default=None, description="Digest of the image manifest.")]
    pushed: bool = False
    signed: bool = False
    credential_source: Annotated[str | None, Field(default=None, description="Source of the registry credential.")]
    error: Annotated[str | None, Field(default=None, description="Error message if the build failed.")]

    @property
    def ok(self) -> bool:
        return self.error is None


class BuildSummary(BaseModel):
    """The outcomes of a batch of workload builds, in build order."""

    model_config = ConfigDict(frozen=True)

    results: Annotated[tuple[WorkloadBuildResult, ...], Field(default_factory=tuple)]

    @property
    def succeeded(self) -> list[WorkloadBuildResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> list[WorkloadBuildResult]:
        return [r for r in self.results if not r.ok]

    @property
    def ok(self) -> bool:
        return not self.failed

    def add(self, result: WorkloadBuildResult) -> "BuildSummary":
        return BuildSummary(results=(*self.results, result))


def containers_path(context: Path) -> Path:
    return Path(context) / CONTAINERS_DIRECTORY


def discover_workloads(context: Path) -> list[str]:
    """List the workloads of a project: the sub-directories of its containers directory, sorted by name.

    :raises KilnContextError: If the containers directory is missing or holds no workloads.
    """
    containers = containers_path(context)
    if not containers.is_dir():
        raise KilnContextError(f"No '{CONTAINERS_DIRECTORY}' directory found in '{context}'", str(containers))
    workloads = sorted(p.name for p in containers.iterdir() if p.is_dir())
    if not workloads:
        raise KilnContextError(f"No workloads found in '{containers}'")
    return workloads


def workload_context(context: Path, name: str) -> Path:
    """Return the build context directory of a workload.

    :raises KilnContextError: If the workload directory does not exist.
    """
    path = containers_path(context) / name
    if not path.is_dir():
        raise KilnContextError(
            f"Workload '{name}' not found. kiln expects workloads at '{CONTAINERS_DIRECTORY}/<name>'", str(path)
        )
    return path


class WorkloadDriver:
    """Builds workloads one at a time, from build context to published image.

    Each build archives its context, resolves its base image, composes the new image and, unless pushing is disabled,
    resolves a credential, signs the image if requested, and publishes it. Signing always completes before any
    registry write.

    :param options: Options shared by every build.
    :param environment: The captured build environment.
    :param resolver: Base image resolver. One is created for the configured platform if omitted.
    :param signing: Signing orchestrator. One is created from the environment if omitted.
    :param secret_store_factory: Factory for the secret store consulted during credential resolution.
    :param session: Optional requests session shared by all registry access.
    """

    def __init__(
        self,
        options: BuildOptions,
        environment: BuildEnvironment,
        resolver: BaseImageResolver | None = None,
        signing: SigningOrchestrator | None = None,
        secret_store_factory: Callable[[SecretStr], SecretStore] = OnePasswordSecretStore,
        session: requests.Session | None = None,
    ):
        self.options = options
        self.environment = environment
        self.session = session
        self.resolver = resolver or BaseImageResolver(platform=options.platform, session=session)
        self.signing = signing or SigningOrchestrator(environment, key_path=options.cosign_key, session=session)
        self.secret_store_factory = secret_store_factory

    def destination(self, name: str) -> ImageReference:
        # Unpublished builds without a configured registry are named for the local registry.
        local = self.options.local or (not self.options.push and not self.options.registry_url)
        return destination_reference(name, self.options.tag, self.options.registry_url, local=local)

    def resolve_credential(self) -> Credential:
        return resolve_credential(
            self.environment,
            explicit_token=self.options.token.get_secret_value() if self.options.token is not None else None,
            username=self.options.username,
            secret_store_factory=self.secret_store_factory,
        )

    def build_workload(self, name: str) -> WorkloadBuildResult:
        """Build, and unless disabled, sign and publish a single workload.

        :raises KilnError: If any stage of the build fails.
        """
        destination = self.destination(name)
        context = BuildContext.from_directory(workload_context(self.options.context, name))
        log.info(f"Building {name} from {context.path}")

        layer = context.archive()
        base = self.resolver.resolve_manifest(context.manifest)
        image = compose(base, layer)
        log.debug(f"Composed {name} with manifest digest {image.digest}")

        credential = None
        if self.options.push:
            credential = self.resolve_credential()
            log.info(f"Using authentication: {credential}")

        decision = self.signing.decide(self.options.sign)
        signature = self.signing.sign(decision, destination, image.digest)

        if not self.options.push:
            if signature is not None:
                log.info(f"Discarding signature for {destination}, pushing is disabled")
            return WorkloadBuildResult(name=name, reference=destination, digest=image.digest)

        publisher = RegistryPublisher(
            credential=credential,
            source_client=self.resolver.client_for(base.reference.registry),
            session=self.session,
        )
        published = publisher.publish(image, destination, signature=signature)
        return WorkloadBuildResult(
            name=name,
            reference=published.reference,
            digest=published.digest,
            pushed=True,
            signed=signature is not None,
            credential_source=credential.source.value,
        )

    def build_all(
        self, names: list[str], on_result: Callable[[WorkloadBuildResult], None] | None = None
    ) -> BuildSummary:
        """Build workloads in order, continuing past failures.

        :param names: Workloads to build.
        :param on_result: Optional callback invoked with each result as soon as it is known.
        """
        summary = BuildSummary()
        for name in names:
            try:
                result = self.build_workload(name)
            except KilnError as e:
                log.debug(f"Build of {name} failed", exc_info=True)
                result = WorkloadBuildResult(name=name, error=str(e))
            summary = summary.add(result)
            if on_result is not None:
                on_result(result)
        return summary
