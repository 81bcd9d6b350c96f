"""Test data builders and an in-memory registry serving the distribution API v2 to a requests session.

The registry is a test double; not for production use. Content is kept per repository and blob digests are verified
on upload.
"""

import base64
import hashlib
import io
import json
import re
import uuid
from pathlib import Path
from urllib.parse import parse_qs, urlparse

import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from kiln.const import MEDIA_TYPE_OCI_CONFIG, MEDIA_TYPE_OCI_INDEX, MEDIA_TYPE_OCI_LAYER_GZIP, MEDIA_TYPE_OCI_MANIFEST

_UPLOAD_RE = re.compile(r"^/v2/(?P<repo>.+)/blobs/uploads/(?P<upload_id>[^/]*)$")
_CONTENT_RE = re.compile(r"^/v2/(?P<repo>.+)/(?P<kind>manifests|blobs)/(?P<ref>[^/]+)$")

BASE_REGISTRY = "registry.example.com"
BASE_REPOSITORY = "base/alpine"
BASE_TAG = "3.20"
BASE_IMAGE = f"{BASE_REGISTRY}/{BASE_REPOSITORY}:{BASE_TAG}"

BASE_CONFIG = {
    "architecture": "amd64",
    "os": "linux",
    "config": {
        "Entrypoint": ["/bin/sh", "-c"],
        "Env": ["PATH=/usr/local/bin:/usr/bin:/bin"],
        "Labels": {"org.opencontainers.image.vendor": "Example"},
        "WorkingDir": "/srv",
    },
    "rootfs": {"type": "layers", "diff_ids": []},
    "history": [{"created_by": "base image"}],
}


def write_workload(containers: Path, name: str, from_line: str = f"FROM {BASE_IMAGE}") -> Path:
    workload = containers / name
    (workload / "bin").mkdir(parents=True)
    (workload / "Containerfile").write_text(f"# {name}\n{from_line}\nCOPY . /\n")
    (workload / "bin" / "start.sh").write_text("#!/bin/sh\nexec /srv/app\n")
    (workload / "bin" / "start.sh").chmod(0o755)
    (workload / "app.conf").write_text(f"name = {name}\n")
    (workload / "app.conf").chmod(0o640)
    return workload


def digest_of(data: bytes) -> str:
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


class FakeRegistry(BaseAdapter):
    """A registry host answering requests from a mounted session.

    :param host: Registry host, e.g. ``registry.example.com`` or ``localhost:5000``.
    :param scheme: URL scheme the registry is served on.
    :param token: If set, every API request must carry ``Bearer <token>``. Requests without it receive a bearer
        challenge pointing at the registry's ``/token`` endpoint.
    :param credentials: If set, the token endpoint only issues tokens for this (username, password) pair.
    :param supports_mount: Whether cross-repository mounts are honored.
    """

    def __init__(
        self,
        host: str,
        scheme: str = "https",
        token: str | None = None,
        credentials: tuple[str, str] | None = None,
        supports_mount: bool = True,
    ):
        super().__init__()
        self.host = host
        self.scheme = scheme
        self.token = token
        self.credentials = credentials
        self.supports_mount = supports_mount
        self.blobs: dict[tuple[str, str], bytes] = {}
        self.manifests: dict[tuple[str, str], tuple[bytes, str]] = {}
        self.requests: list[tuple[str, str]] = []
        self.mounts: list[tuple[str, str, str]] = []
        self.uploads: list[tuple[str, str]] = []
        self.chunks: list[tuple[str, str]] = []
        self.partial_uploads: dict[str, bytearray] = {}
        self.manifest_writes: list[tuple[str, str]] = []

    @property
    def origin(self) -> str:
        return f"{self.scheme}://{self.host}"

    def mount(self, session: requests.Session) -> requests.Session:
        session.mount(f"{self.origin}/", self)
        return session

    @property
    def writes(self) -> list[tuple[str, str]]:
        return [(method, url) for method, url in self.requests if method in ("POST", "PUT", "PATCH", "DELETE")]

    # Test setup helpers
    def add_blob(self, repository: str, data: bytes) -> str:
        digest = digest_of(data)
        self.blobs[(repository, digest)] = data
        return digest

    def add_manifest(self, repository: str, reference: str, content: bytes, media_type: str) -> str:
        digest = digest_of(content)
        self.manifests[(repository, reference)] = (content, media_type)
        self.manifests[(repository, digest)] = (content, media_type)
        return digest

    def add_image(
        self,
        repository: str,
        tag: str,
        config: dict | None = None,
        layers: list[bytes] | None = None,
        media_type: str = MEDIA_TYPE_OCI_MANIFEST,
        config_media_type: str = MEDIA_TYPE_OCI_CONFIG,
        layer_media_type: str = MEDIA_TYPE_OCI_LAYER_GZIP,
    ) -> str:
        """Store a single-platform image and return its manifest digest."""
        config = json.loads(json.dumps(config if config is not None else BASE_CONFIG))
        layers = layers if layers is not None else [b"base layer contents"]
        layer_descriptors = []
        for layer in layers:
            layer_digest = self.add_blob(repository, layer)
            config["rootfs"]["diff_ids"].append(layer_digest)
            layer_descriptors.append({"mediaType": layer_media_type, "digest": layer_digest, "size": len(layer)})
        config_bytes = json.dumps(config).encode("utf-8")
        config_digest = self.add_blob(repository, config_bytes)
        manifest = {
            "schemaVersion": 2,
            "mediaType": media_type,
            "config": {"mediaType": config_media_type, "digest": config_digest, "size": len(config_bytes)},
            "layers": layer_descriptors,
        }
        return self.add_manifest(repository, tag, json.dumps(manifest, indent=3).encode("utf-8"), media_type)

    def add_index(self, repository: str, tag: str, platforms: dict[str, str]) -> str:
        """Store an image index over existing manifests, keyed by ``os/architecture`` platform."""
        manifests = []
        for platform, manifest_digest in platforms.items():
            content, media_type = self.manifests[(repository, manifest_digest)]
            _os, architecture = platform.split("/")[:2]
            manifests.append(
                {
                    "mediaType": media_type,
                    "digest": manifest_digest,
                    "size": len(content),
                    "platform": {"os": _os, "architecture": architecture},
                }
            )
        index = {"schemaVersion": 2, "mediaType": MEDIA_TYPE_OCI_INDEX, "manifests": manifests}
        return self.add_manifest(repository, tag, json.dumps(index).encode("utf-8"), MEDIA_TYPE_OCI_INDEX)

    def manifest(self, repository: str, reference: str) -> dict:
        return json.loads(self.manifests[(repository, reference)][0])

    # Transport
    def close(self):
        pass

    def send(self, request, **kwargs):
        url = urlparse(request.url)
        self.requests.append((request.method, request.url))
        query = {k: v[0] for k, v in parse_qs(url.query).items()}

        if url.path == "/token":
            return self._token(request, query)
        if self.token is not None and request.headers.get("Authorization") != f"Bearer {self.token}":
            challenge = f'Bearer realm="{self.origin}/token",service="{self.host}"'
            match = _CONTENT_RE.match(url.path) or _UPLOAD_RE.match(url.path)
            if match:
                challenge += f',scope="repository:{match.group("repo")}:pull,push"'
            return self._response(request, 401, self._error("UNAUTHORIZED"), {"WWW-Authenticate": challenge})

        if url.path == "/v2/_catalog":
            repositories = sorted({repo for repo, _ in self.manifests})
            return self._json(request, 200, {"repositories": repositories})

        match = _UPLOAD_RE.match(url.path)
        if match:
            return self._upload(request, match.group("repo"), match.group("upload_id"), query)

        match = _CONTENT_RE.match(url.path)
        if match is None:
            return self._response(request, 404, self._error("NAME_UNKNOWN"))
        repository, kind, reference = match.group("repo"), match.group("kind"), match.group("ref")
        if kind == "manifests":
            return self._manifest(request, repository, reference)
        return self._blob(request, repository, reference)

    def _token(self, request, query):
        if self.credentials is not None:
            expected = base64.b64encode(":".join(self.credentials).encode("utf-8")).decode("ascii")
            if request.headers.get("Authorization") != f"Basic {expected}":
                return self._response(request, 401, self._error("UNAUTHORIZED"))
        return self._json(request, 200, {"token": self.token})

    def _manifest(self, request, repository, reference):
        key = (repository, reference)
        if request.method in ("GET", "HEAD"):
            if key not in self.manifests:
                return self._response(request, 404, self._error("MANIFEST_UNKNOWN", "manifest unknown"))
            content, media_type = self.manifests[key]
            headers = {"Content-Type": media_type, "Docker-Content-Digest": digest_of(content)}
            return self._response(request, 200, content if request.method == "GET" else b"", headers)
        if request.method == "PUT":
            content = request.body or b""
            media_type = request.headers.get("Content-Type", "")
            manifest = json.loads(content)
            for descriptor in [manifest.get("config"), *manifest.get("layers", [])]:
                if descriptor and (repository, descriptor["digest"]) not in self.blobs:
                    return self._response(request, 400, self._error("BLOB_UNKNOWN", descriptor["digest"]))
            digest = self.add_manifest(repository, reference, content, media_type)
            self.manifest_writes.append((repository, reference))
            return self._response(request, 201, b"", {"Docker-Content-Digest": digest})
        return self._response(request, 405, self._error("UNSUPPORTED"))

    def _blob(self, request, repository, digest):
        key = (repository, digest)
        if key not in self.blobs:
            return self._response(request, 404, self._error("BLOB_UNKNOWN", "blob unknown to registry"))
        data = self.blobs[key]
        return self._response(
            request, 200, data if request.method == "GET" else b"", {"Docker-Content-Digest": digest}
        )

    def _upload(self, request, repository, upload_id, query):
        if request.method == "POST" and not upload_id:
            mount, source = query.get("mount"), query.get("from")
            if mount and source and self.supports_mount and (source, mount) in self.blobs:
                self.blobs[(repository, mount)] = self.blobs[(source, mount)]
                self.mounts.append((repository, mount, source))
                return self._response(request, 201, b"", {"Location": f"/v2/{repository}/blobs/{mount}"})
            location = f"/v2/{repository}/blobs/uploads/{uuid.uuid4().hex}"
            return self._response(request, 202, b"", {"Location": location})
        if request.method == "PATCH" and upload_id:
            received = self.partial_uploads.setdefault(upload_id, bytearray())
            start = int(request.headers.get("Content-Range", f"{len(received)}-").split("-")[0])
            if start != len(received):
                return self._response(request, 416, self._error("BLOB_UPLOAD_INVALID", "invalid content range"))
            received.extend(self._body(request))
            self.chunks.append((repository, upload_id))
            location = f"/v2/{repository}/blobs/uploads/{upload_id}"
            return self._response(request, 202, b"", {"Location": location, "Range": f"0-{len(received) - 1}"})
        if request.method == "PUT" and upload_id:
            data = bytes(self.partial_uploads.pop(upload_id, b"")) + self._body(request)
            digest = query.get("digest")
            if digest != digest_of(data):
                return self._response(request, 400, self._error("DIGEST_INVALID", "provided digest did not match"))
            self.blobs[(repository, digest)] = data
            self.uploads.append((repository, digest))
            return self._response(request, 201, b"", {"Docker-Content-Digest": digest})
        return self._response(request, 405, self._error("UNSUPPORTED"))

    @staticmethod
    def _body(request) -> bytes:
        data = request.body or b""
        return data.encode("utf-8") if isinstance(data, str) else data

    @staticmethod
    def _error(code: str, message: str = "") -> bytes:
        return json.dumps({"errors": [{"code": code, "message": message or code.lower()}]}).encode("utf-8")

    def _json(self, request, status, body):
        return self._response(request, status, json.dumps(body).encode("utf-8"), {"Content-Type": "application/json"})

    @staticmethod
    def _response(request, status, content=b"", headers=None):
        response = requests.Response()
        response.status_code = status
        response.reason = "OK" if status < 400 else "Error"
        response._content = content
        response.raw = io.BytesIO(content)
        response.headers = CaseInsensitiveDict(headers or {})
        response.url = request.url
        response.request = request
        response.encoding = "utf-8"
        return response


class UnreachableRegistry(BaseAdapter):
    """A registry host that refuses every connection."""

    def __init__(self, host: str, scheme: str = "http"):
        super().__init__()
        self.host = host
        self.scheme = scheme

    def mount(self, session: requests.Session) -> requests.Session:
        session.mount(f"{self.scheme}://{self.host}/", self)
        return session

    def close(self):
        pass

    def send(self, request, **kwargs):
        raise requests.ConnectionError(f"Connection refused: {request.url}", request=request)
