import logging

import python_on_whales
from python_on_whales import Container
from python_on_whales.exceptions import NoSuchContainer

from kiln.const import LOCAL_REGISTRY_CONTAINER_NAME, LOCAL_REGISTRY_IMAGE, LOCAL_REGISTRY_PORT

log = logging.getLogger(__name__)


class RegistryContainer:
    """A ``registry:2`` container serving the local registry used by ``kiln build --local``.

    :param name: Name of the container.
    :param image: Registry image to run.
    :param port: Host port the registry is published on.
    """

    _CONTAINER_PORT = 5000

    def __init__(
        self,
        name: str = LOCAL_REGISTRY_CONTAINER_NAME,
        image: str = LOCAL_REGISTRY_IMAGE,
        port: int = LOCAL_REGISTRY_PORT,
    ):
        self.name = name
        self.image = image
        self.port = port

    @property
    def container(self) -> Container | None:
        """The existing container with this name, if any."""
        if not python_on_whales.docker.container.exists(self.name):
            return None
        return python_on_whales.docker.container.inspect(self.name)

    @property
    def url(self) -> str:
        """Get the address of the registry."""
        container = self.container
        if container is None:
            raise RuntimeError("Registry container does not exist.")

        port_map = container.network_settings.ports.get(f"{self._CONTAINER_PORT}/tcp")
        if not port_map:
            raise RuntimeError("Registry container port is not mapped.")
        mapped_port = port_map[0]["HostPort"]

        return f"localhost:{mapped_port}"

    @property
    def status(self) -> str:
        """Get the status of the registry container."""
        container = self.container
        if container is None:
            return "not_found"
        return container.state.status

    def start(self, restart_policy: str = "always") -> Container:
        """Start the registry, reusing a stopped container of the same name."""
        container = self.container
        if container is not None:
            if container.state.running:
                log.debug(f"Registry container {self.name} is already running.")
                return container
            log.debug(f"Starting existing registry container {self.name}...")
            container.start()
            return container

        log.debug(f"Starting registry container {self.name} at port {self.port}...")
        container = python_on_whales.docker.run(
            image=self.image,
            name=self.name,
            publish=[(self.port, self._CONTAINER_PORT)],
            restart=restart_policy,
            detach=True,
        )
        log.debug("Started registry container.")
        return container

    def stop(self, timeout: int | None = None, remove: bool = True) -> bool:
        """Stop the registry container and, by default, remove it and its data.

        :return: False if there was no container to stop.
        """
        container = self.container
        if container is None:
            log.debug("Registry container does not exist; nothing to clean up.")
            return False

        log.debug(f"Stopping registry container {self.name}...")
        try:
            container.stop(time=timeout)
            if remove:
                log.debug(f"Removing registry container {self.name} and data...")
                container.remove(force=True, volumes=True)
        except NoSuchContainer:
            log.debug(f"Registry container {self.name} disappeared while stopping.")
        log.debug("Stopped registry container.")
        return True

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.stop()
