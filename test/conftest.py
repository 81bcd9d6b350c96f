import os
import stat
from pathlib import Path

import pytest
import requests

from kiln.config import BuildEnvironment
from kiln.const import LOCAL_REGISTRY
from kiln.settings import SETTINGS
from test.helpers import BASE_IMAGE, BASE_REGISTRY, BASE_REPOSITORY, BASE_TAG, FakeRegistry, write_workload

TEST_DIRECTORY = Path(os.path.dirname(os.path.realpath(__file__)))


@pytest.fixture(scope="session")
def test_path():
    """Return the path to the test directory"""
    return TEST_DIRECTORY


@pytest.fixture(autouse=True)
def temporary_storage(tmp_path_factory) -> Path:
    """Point temporary storage at a fresh directory for the duration of the test"""
    previous = SETTINGS.temporary_storage
    storage = tmp_path_factory.mktemp("storage")
    SETTINGS.temporary_storage = storage
    yield storage
    SETTINGS.temporary_storage = previous


@pytest.fixture
def registry_session() -> requests.Session:
    """A requests session with no registries mounted yet"""
    return requests.Session()


@pytest.fixture
def base_registry(registry_session) -> FakeRegistry:
    """The remote registry holding the base image, also used as the publishing destination"""
    registry = FakeRegistry(BASE_REGISTRY)
    registry.mount(registry_session)
    registry.add_image(BASE_REPOSITORY, BASE_TAG, layers=[b"base layer one", b"base layer two"])
    return registry


@pytest.fixture
def local_registry(registry_session) -> FakeRegistry:
    """The local registry at localhost:5000"""
    registry = FakeRegistry(LOCAL_REGISTRY, scheme="http")
    registry.mount(registry_session)
    return registry


@pytest.fixture
def home_path(tmp_path) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    return home


@pytest.fixture
def build_environment(home_path) -> BuildEnvironment:
    """A build environment with no credentials, keys or CI identity"""
    return BuildEnvironment.from_environ({"HOME": str(home_path)})


@pytest.fixture
def get_build_environment(home_path):
    """Return a function that creates a build environment from extra environment variables"""

    def _get_build_environment(**environ: str) -> BuildEnvironment:
        return BuildEnvironment.from_environ({"HOME": str(home_path), **environ})

    return _get_build_environment


@pytest.fixture
def project_path(tmp_path) -> Path:
    """A project with two workloads and a defaults file pointing at the base registry"""
    project = tmp_path / "project"
    containers = project / "containers"
    write_workload(containers, "api")
    write_workload(containers, "web")
    (project / "config").mkdir()
    (project / "config" / "defaults.toml").write_text(f'[container_registry]\nurl = "{BASE_REGISTRY}/acme"\n')
    return project


@pytest.fixture
def context_path(tmp_path) -> Path:
    """A single build context with a Containerfile, nested files, a symlink and a setuid binary"""
    context = tmp_path / "context"
    (context / "etc" / "app").mkdir(parents=True)
    (context / "Containerfile").write_text(f"FROM {BASE_IMAGE}\n")
    (context / "etc" / "app" / "config.toml").write_text("debug = false\n")
    (context / "etc" / "app" / "config.toml").chmod(0o600)
    (context / "etc" / "app" / "Containerfile").write_text("not the build manifest\n")
    (context / "run").write_bytes(b"\x7fELF\x00binary")
    (context / "run").chmod(stat.S_ISUID | 0o755)
    (context / "current").symlink_to("etc/app")
    return context
