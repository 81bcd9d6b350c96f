import gzip
import io
import logging
import os
import stat
import tarfile
from enum import Enum
from functools import cached_property
from pathlib import Path
from typing import Annotated, Iterator

from pydantic import BaseModel, ConfigDict, Field, model_validator

from kiln.error import KilnContextError
from kiln.image.manifest import find_manifest
from kiln.util import sha256_digest

log = logging.getLogger(__name__)


class LayerEntryKind(str, Enum):
    """Enum for the filesystem entry types captured in a layer."""

    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"


class LayerEntry(BaseModel):
    """A single filesystem entry of a layer."""

    model_config = ConfigDict(frozen=True)

    path: Annotated[str, Field(description="Forward-slash path relative to the context root.")]
    kind: LayerEntryKind
    mode: Annotated[int, Field(ge=0, le=0o7777, description="Permission bits of the entry.")]
    mtime: Annotated[int, Field(default=0, description="Modification time in seconds since the epoch.")]
    content: Annotated[bytes | None, Field(default=None, description="File content for regular files.")]
    linkname: Annotated[str | None, Field(default=None, description="Link target for symbolic links.")]

    @model_validator(mode="after")
    def check_kind_fields(self) -> "LayerEntry":
        if self.kind == LayerEntryKind.FILE and self.content is None:
            raise ValueError(f"Regular file entry '{self.path}' requires content.")
        if self.kind == LayerEntryKind.SYMLINK and self.linkname is None:
            raise ValueError(f"Symlink entry '{self.path}' requires a link target.")
        return self

    def tarinfo(self) -> tarfile.TarInfo:
        """Build the tar header for this entry. Ownership is normalized to root."""
        info = tarfile.TarInfo(name=self.path)
        info.mode = self.mode
        info.mtime = self.mtime
        info.uid = info.gid = 0
        info.uname = info.gname = ""
        if self.kind == LayerEntryKind.FILE:
            info.type = tarfile.REGTYPE
            info.size = len(self.content)
        elif self.kind == LayerEntryKind.DIRECTORY:
            info.type = tarfile.DIRTYPE
        else:
            info.type = tarfile.SYMTYPE
            info.linkname = self.linkname
        return info


class Layer(BaseModel):
    """An ordered set of filesystem entries forming one increment of an image.

    The uncompressed tar stream determines the layer's ``diff_id``; the gzip-compressed stream is the blob pushed to
    the registry and determines its ``digest``.
    """

    model_config = ConfigDict(frozen=True)

    entries: Annotated[tuple[LayerEntry, ...], Field(default=())]

    @property
    def paths(self) -> list[str]:
        return [entry.path for entry in self.entries]

    def get(self, path: str) -> LayerEntry | None:
        for entry in self.entries:
            if entry.path == path:
                return entry
        return None

    @cached_property
    def tar_bytes(self) -> bytes:
        """The uncompressed tar stream of the layer."""
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w", format=tarfile.PAX_FORMAT, encoding="utf-8") as tar:
            for entry in self.entries:
                fileobj = io.BytesIO(entry.content) if entry.kind == LayerEntryKind.FILE else None
                tar.addfile(entry.tarinfo(), fileobj)
        return buffer.getvalue()

    @cached_property
    def compressed_bytes(self) -> bytes:
        """The gzip-compressed tar stream, with a fixed header timestamp so equal layers compress equally."""
        return gzip.compress(self.tar_bytes, mtime=0)

    @property
    def diff_id(self) -> str:
        return sha256_digest(self.tar_bytes)

    @property
    def digest(self) -> str:
        return sha256_digest(self.compressed_bytes)

    @property
    def size(self) -> int:
        return len(self.compressed_bytes)


def _walk(directory: Path) -> Iterator[os.DirEntry]:
    """Lexical pre-order walk that never follows symbolic links."""
    with os.scandir(directory) as it:
        dir_entries = sorted(it, key=lambda e: e.name)
    for dir_entry in dir_entries:
        yield dir_entry
        if dir_entry.is_dir(follow_symlinks=False):
            yield from _walk(Path(dir_entry.path))


def archive_context(context_path: str | os.PathLike | None, manifest_name: str) -> Layer:
    """Capture a build context directory as a single layer.

    Regular files keep their content and permission bits, directories keep their permission bits, and symbolic links
    keep their target without being followed. Devices, sockets and FIFOs are skipped. The build manifest at
    ``manifest_name`` (relative to the context root) is left out of the layer.

    :param context_path: The build context directory.
    :param manifest_name: The manifest path relative to the context root, e.g. ``Containerfile``.

    :raises KilnContextError: If the context is empty, missing, or any entry cannot be read.
    """
    if context_path is None or str(context_path) == "":
        raise KilnContextError("context path is empty")
    root = Path(context_path)
    if not root.is_dir():
        raise KilnContextError(f"context path {root} does not exist or is not a directory", filepath=str(root))

    entries = []
    try:
        for dir_entry in _walk(root):
            path = Path(dir_entry.path)
            relpath = path.relative_to(root).as_posix()
            if relpath == manifest_name:
                continue

            st = dir_entry.stat(follow_symlinks=False)
            mode = stat.S_IMODE(st.st_mode)
            mtime = int(st.st_mtime)
            if stat.S_ISLNK(st.st_mode):
                entry = LayerEntry(
                    path=relpath, kind=LayerEntryKind.SYMLINK, mode=mode, mtime=mtime, linkname=os.readlink(path)
                )
            elif stat.S_ISDIR(st.st_mode):
                entry = LayerEntry(path=relpath, kind=LayerEntryKind.DIRECTORY, mode=mode, mtime=mtime)
            elif stat.S_ISREG(st.st_mode):
                entry = LayerEntry(
                    path=relpath, kind=LayerEntryKind.FILE, mode=mode, mtime=mtime, content=path.read_bytes()
                )
            else:
                log.debug(f"Skipping special file {relpath}")
                continue
            entries.append(entry)
    except OSError as e:
        raise KilnContextError(f"failed to create layer from context {root}: {e}", filepath=str(root)) from e

    log.debug(f"Archived {len(entries)} entries from {root}")
    return Layer(entries=tuple(entries))


class BuildContext(BaseModel):
    """A build context directory together with its build manifest."""

    model_config = ConfigDict(frozen=True)

    path: Path
    manifest: Path

    @classmethod
    def from_directory(cls, path: str | os.PathLike) -> "BuildContext":
        """Create a build context, discovering the build manifest inside the directory.

        :raises KilnContextError: If the directory does not exist.
        :raises KilnManifestError: If no build manifest is present.
        """
        if str(path) == "":
            raise KilnContextError("context path is empty")
        path = Path(path)
        if not path.is_dir():
            raise KilnContextError(f"context path {path} does not exist or is not a directory", filepath=str(path))
        return cls(path=path, manifest=find_manifest(path))

    @property
    def manifest_name(self) -> str:
        return self.manifest.relative_to(self.path).as_posix()

    def archive(self) -> Layer:
        return archive_context(self.path, self.manifest_name)
