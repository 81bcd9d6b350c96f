"""HTTP client for the OCI distribution (registry v2) API.

Implements just the calls needed to pull a base image and push a composed image: manifest and blob reads, blob
existence checks, cross-repository mounts, monolithic and chunked blob uploads, and manifest writes. Authentication
follows the registry's ``WWW-Authenticate`` challenge (Basic or Bearer token exchange).
"""

import base64
import hashlib
import logging
import re
from typing import TYPE_CHECKING, Iterable, Iterator
from urllib.parse import urljoin, urlencode

import requests

from kiln.const import INDEX_MEDIA_TYPES, MANIFEST_MEDIA_TYPES
from kiln.error import KilnRegistryError
from kiln.image.reference import registry_api_host, registry_scheme
from kiln.settings import SETTINGS
from kiln.util import sha256_digest

if TYPE_CHECKING:
    from kiln.registry.auth import Credential

log = logging.getLogger(__name__)

MANIFEST_ACCEPT = ", ".join(MANIFEST_MEDIA_TYPES + INDEX_MEDIA_TYPES)
REGEX_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


def parse_challenge(header: str) -> tuple[str, dict[str, str]]:
    """Parse a ``WWW-Authenticate`` header into its scheme and parameters."""
    scheme, _, params = header.strip().partition(" ")
    return scheme.lower(), dict(REGEX_CHALLENGE_PARAM.findall(params))


class RegistryClient:
    """Client for a single registry host.

    :param registry: Registry host as written in image references, e.g. ``ghcr.io`` or ``localhost:5000``.
    :param credential: Optional credential used for authentication.
    :param session: Optional requests session, primarily for testing.
    """

    def __init__(
        self,
        registry: str,
        credential: "Credential | None" = None,
        session: requests.Session | None = None,
    ):
        self.registry = registry
        self.credential = credential
        self.session = session or requests.Session()
        self.origin = f"{registry_scheme(registry)}://{registry_api_host(registry)}"
        self._authorization: str | None = None
        if credential is not None and credential.is_bearer:
            self._authorization = f"Bearer {credential.token.get_secret_value()}"

    def _url(self, path: str) -> str:
        return urljoin(self.origin, path)

    def _send(self, method: str, url: str, headers: dict[str, str], **kwargs) -> requests.Response:
        if self._authorization:
            headers = {**headers, "Authorization": self._authorization}
        log.debug(f"{method} {url}")
        try:
            return self.session.request(method, url, headers=headers, timeout=SETTINGS.http_timeout, **kwargs)
        except requests.RequestException as e:
            raise KilnRegistryError(f"Failed to reach registry {self.registry}: {e}", url=url) from e

    def request(self, method: str, path: str, headers: dict[str, str] | None = None, **kwargs) -> requests.Response:
        """Send a request to the registry, answering a single authentication challenge if one is issued."""
        url = self._url(path)
        headers = headers or {}
        response = self._send(method, url, headers, **kwargs)
        if response.status_code == 401 and "WWW-Authenticate" in response.headers:
            self._authenticate(response.headers["WWW-Authenticate"])
            response = self._send(method, url, headers, **kwargs)
        return response

    def _authenticate(self, header: str) -> None:
        scheme, params = parse_challenge(header)
        basic_auth = None
        if self.credential is not None:
            basic_auth = (self.credential.username or "token", self.credential.token.get_secret_value())

        if scheme == "basic":
            if basic_auth is None:
                raise KilnRegistryError(f"Registry {self.registry} requires credentials", status_code=401)
            encoded = base64.b64encode(":".join(basic_auth).encode("utf-8")).decode("ascii")
            self._authorization = f"Basic {encoded}"
            return
        if scheme != "bearer" or "realm" not in params:
            raise KilnRegistryError(f"Unsupported authentication challenge from {self.registry}: {header}")

        query = {k: v for k, v in params.items() if k in ("service", "scope")}
        token_url = params["realm"]
        if query:
            token_url += ("&" if "?" in token_url else "?") + urlencode(query)
        log.debug(f"Requesting registry token for scope '{params.get('scope', '')}'")
        try:
            response = self.session.get(token_url, auth=basic_auth, timeout=SETTINGS.http_timeout)
        except requests.RequestException as e:
            raise KilnRegistryError(f"Failed to reach token service for {self.registry}: {e}") from e
        if response.status_code != 200:
            raise KilnRegistryError(
                f"Authentication with {self.registry} failed", url=params["realm"], status_code=response.status_code
            )
        try:
            body = response.json()
        except ValueError as e:
            raise KilnRegistryError(
                f"Token service for {self.registry} returned an invalid response: {e}", url=params["realm"]
            ) from e
        token = (body.get("token") or body.get("access_token")) if isinstance(body, dict) else None
        if not token:
            raise KilnRegistryError(f"Token service for {self.registry} returned no token", url=params["realm"])
        self._authorization = f"Bearer {token}"

    @staticmethod
    def _raise_for_status(response: requests.Response, action: str) -> None:
        if response.ok:
            return
        detail = ""
        try:
            body = response.json()
        except ValueError:
            body = None
        errors = (body.get("errors") if isinstance(body, dict) else None) or []
        if errors and isinstance(errors[0], dict):
            detail = f": {errors[0].get('message', '')}"
        raise KilnRegistryError(f"Failed to {action}{detail}", url=response.url, status_code=response.status_code)

    def catalog(self) -> list[str]:
        """List the repositories of the registry."""
        response = self.request("GET", "/v2/_catalog")
        self._raise_for_status(response, f"list repositories of {self.registry}")
        try:
            body = response.json()
        except ValueError as e:
            raise KilnRegistryError(
                f"Registry {self.registry} returned an invalid catalog: {e}", url=response.url
            ) from e
        return (body.get("repositories") if isinstance(body, dict) else None) or []

    def get_manifest(self, repository: str, reference: str) -> tuple[bytes, str, str]:
        """Fetch a manifest or index.

        :return: The raw manifest bytes, its media type, and its digest.
        """
        response = self.request(
            "GET", f"/v2/{repository}/manifests/{reference}", headers={"Accept": MANIFEST_ACCEPT}
        )
        self._raise_for_status(response, f"fetch manifest {self.registry}/{repository}:{reference}")
        content = response.content
        media_type = response.headers.get("Content-Type", "").split(";")[0].strip()
        digest = response.headers.get("Docker-Content-Digest") or sha256_digest(content)
        return content, media_type, digest

    def get_blob(self, repository: str, digest: str) -> bytes:
        """Fetch a blob and verify its digest."""
        response = self.request("GET", f"/v2/{repository}/blobs/{digest}")
        self._raise_for_status(response, f"fetch blob {digest} from {self.registry}/{repository}")
        content = response.content
        if digest.startswith("sha256:") and sha256_digest(content) != digest:
            raise KilnRegistryError(f"Blob {digest} from {self.registry}/{repository} failed digest verification")
        return content

    def iter_blob(self, repository: str, digest: str, chunk_size: int | None = None) -> Iterator[bytes]:
        """Stream a blob in chunks, verifying its digest once the last chunk has been read.

        :raises KilnRegistryError: If the blob cannot be fetched or fails digest verification.
        """
        chunk_size = chunk_size or SETTINGS.blob_chunk_size
        response = self.request("GET", f"/v2/{repository}/blobs/{digest}", stream=True)
        with response:
            self._raise_for_status(response, f"fetch blob {digest} from {self.registry}/{repository}")
            hasher = hashlib.sha256()
            try:
                for chunk in response.iter_content(chunk_size=chunk_size):
                    hasher.update(chunk)
                    yield chunk
            except requests.RequestException as e:
                raise KilnRegistryError(f"Failed to read blob {digest} from {self.registry}: {e}") from e
        if digest.startswith("sha256:") and f"sha256:{hasher.hexdigest()}" != digest:
            raise KilnRegistryError(f"Blob {digest} from {self.registry}/{repository} failed digest verification")

    def blob_exists(self, repository: str, digest: str) -> bool:
        response = self.request("HEAD", f"/v2/{repository}/blobs/{digest}")
        if response.status_code == 404:
            return False
        self._raise_for_status(response, f"check blob {digest} in {self.registry}/{repository}")
        return True

    def mount_blob(self, repository: str, digest: str, from_repository: str) -> bool:
        """Attempt a cross-repository blob mount.

        :return: True if the blob was mounted, False if the registry declined and a regular upload is required.
        """
        response = self.request(
            "POST", f"/v2/{repository}/blobs/uploads/?{urlencode({'mount': digest, 'from': from_repository})}"
        )
        if response.status_code == 201:
            log.debug(f"Mounted {digest} from {from_repository} into {repository}")
            return True
        if response.status_code == 202:
            return False
        self._raise_for_status(response, f"mount blob {digest} into {self.registry}/{repository}")
        return False

    def upload_blob(self, repository: str, data: bytes, digest: str | None = None) -> str:
        """Upload a blob in a single request.

        :return: The digest of the uploaded blob.
        """
        digest = digest or sha256_digest(data)
        location = self._start_upload(repository)
        self._finish_upload(repository, location, digest, data)
        log.debug(f"Uploaded {digest} ({len(data)} bytes) to {repository}")
        return digest

    def upload_blob_chunks(self, repository: str, chunks: Iterable[bytes], digest: str) -> str:
        """Upload a blob as a sequence of ``PATCH`` requests, one per chunk, followed by the closing ``PUT``.

        Only one chunk is held in memory at a time.

        :return: The digest of the uploaded blob.
        """
        location = self._start_upload(repository)
        offset = 0
        for chunk in chunks:
            if not chunk:
                continue
            response = self.request(
                "PATCH",
                location,
                data=chunk,
                headers={
                    "Content-Type": "application/octet-stream",
                    "Content-Length": str(len(chunk)),
                    "Content-Range": f"{offset}-{offset + len(chunk) - 1}",
                },
            )
            self._raise_for_status(response, f"upload chunk of blob {digest} to {self.registry}/{repository}")
            offset += len(chunk)
            location = urljoin(self.origin, response.headers.get("Location") or location)
        self._finish_upload(repository, location, digest, b"")
        log.debug(f"Uploaded {digest} ({offset} bytes) to {repository}")
        return digest

    def _start_upload(self, repository: str) -> str:
        response = self.request("POST", f"/v2/{repository}/blobs/uploads/")
        self._raise_for_status(response, f"start blob upload to {self.registry}/{repository}")
        location = response.headers.get("Location")
        if not location:
            raise KilnRegistryError(f"Registry {self.registry} did not return an upload location", url=response.url)
        return urljoin(self.origin, location)

    def _finish_upload(self, repository: str, location: str, digest: str, data: bytes) -> None:
        location += ("&" if "?" in location else "?") + urlencode({"digest": digest})
        response = self.request(
            "PUT",
            location,
            data=data,
            headers={"Content-Type": "application/octet-stream", "Content-Length": str(len(data))},
        )
        self._raise_for_status(response, f"upload blob {digest} to {self.registry}/{repository}")

    def put_manifest(self, repository: str, reference: str, content: bytes, media_type: str) -> str:
        """Write a manifest under a tag or digest.

        :return: The digest of the manifest.
        """
        response = self.request(
            "PUT",
            f"/v2/{repository}/manifests/{reference}",
            data=content,
            headers={"Content-Type": media_type},
        )
        self._raise_for_status(response, f"write manifest {self.registry}/{repository}:{reference}")
        return response.headers.get("Docker-Content-Digest") or sha256_digest(content)
