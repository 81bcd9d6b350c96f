from enum import Enum

APP_NAME = "kiln"


class CredentialSourceEnum(str, Enum):
    """Enum for the source that satisfied registry credential resolution."""

    CLI = "cli"
    ENV = "env"
    ONEPASSWORD = "1password"


class SigningMethodEnum(str, Enum):
    """Enum for image signing methods."""

    KEYLESS = "keyless"
    KEY_BASED = "key-based"
    NONE = "none"


# Build manifest filenames, in order of preference.
MANIFEST_FILENAMES = ("Containerfile", "Dockerfile")
BASE_IMAGE_KEYWORD = "FROM"

CONTAINERS_DIRECTORY = "containers"
DEFAULTS_FILE = "config/defaults.toml"
DEFAULT_TAG = "latest"
DEFAULT_PLATFORM = "linux/amd64"

LOCAL_REGISTRY = "localhost:5000"
LOCAL_REGISTRY_PORT = 5000
LOCAL_REGISTRY_IMAGE = "docker.io/registry:2"
LOCAL_REGISTRY_CONTAINER_NAME = "registry"

DOCKER_HUB_REGISTRY = "docker.io"
DOCKER_HUB_API_HOST = "registry-1.docker.io"
LOOPBACK_HOSTS = ("localhost", "127.0.0.1", "[::1]")

REGEX_TAG_PATTERN = r"^[\w][\w.-]{0,127}$"
REGEX_DIGEST_PATTERN = r"^[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}$"
REGEX_REGISTRY_HOST_PATTERN = r"^(?:[a-zA-Z0-9.-]+|\[[0-9a-fA-F:]+\])(?::\d+)?$"
REGEX_REPOSITORY_PATTERN = r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*(?:/[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*)*$"

# Environment variables consumed by the build.
ENV_GITHUB_TOKEN = "GITHUB_TOKEN"
ENV_OP_SERVICE_ACCOUNT_TOKEN = "OP_SERVICE_ACCOUNT_TOKEN"
ENV_COSIGN_PRIVATE_KEY = "COSIGN_PRIVATE_KEY"
ENV_COSIGN_PASSWORD = "COSIGN_PASSWORD"
ENV_COSIGN_KEY_PATH = "KILN_COSIGN_KEY_PATH"
ENV_GITHUB_ACTIONS = "GITHUB_ACTIONS"
ENV_CI = "CI"
ENV_ACTIONS_ID_TOKEN_REQUEST_URL = "ACTIONS_ID_TOKEN_REQUEST_URL"
ENV_ACTIONS_ID_TOKEN_REQUEST_TOKEN = "ACTIONS_ID_TOKEN_REQUEST_TOKEN"

DEFAULT_ONEPASSWORD_SECRET_REF = "op://iago/yq55ghqtbgmwvxbnc2xpzix4xm/credential"
DEFAULT_COSIGN_KEY_PATH = "~/.config/sigstore/cosign.key"
SIGSTORE_OIDC_AUDIENCE = "sigstore"

# OCI and Docker media types.
MEDIA_TYPE_OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
MEDIA_TYPE_OCI_INDEX = "application/vnd.oci.image.index.v1+json"
MEDIA_TYPE_OCI_CONFIG = "application/vnd.oci.image.config.v1+json"
MEDIA_TYPE_OCI_LAYER_GZIP = "application/vnd.oci.image.layer.v1.tar+gzip"
MEDIA_TYPE_DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
MEDIA_TYPE_DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
MEDIA_TYPE_DOCKER_CONFIG = "application/vnd.docker.container.image.v1+json"
MEDIA_TYPE_DOCKER_LAYER_GZIP = "application/vnd.docker.image.rootfs.diff.tar.gzip"
MEDIA_TYPE_COSIGN_SIMPLE_SIGNING = "application/vnd.dev.cosign.simplesigning.v1+json"

INDEX_MEDIA_TYPES = (MEDIA_TYPE_OCI_INDEX, MEDIA_TYPE_DOCKER_MANIFEST_LIST)
MANIFEST_MEDIA_TYPES = (MEDIA_TYPE_OCI_MANIFEST, MEDIA_TYPE_DOCKER_MANIFEST)

COSIGN_SIGNATURE_ANNOTATION = "dev.cosignproject.cosign/signature"
COSIGN_CERTIFICATE_ANNOTATION = "dev.sigstore.cosign/certificate"
COSIGN_SIGNATURE_TYPE = "cosign container image signature"

LOCAL_REGISTRY_TIP = (
    "Tip: Start a local registry with: docker run -d -p 5000:5000 --name registry registry:2 "
    "(or run 'kiln registry start')"
)
