"""Minimal build manifest (Containerfile/Dockerfile) reader.

Only the base image declaration is consumed by the builder. The manifest is still parsed into a typed instruction
stream so that additional instructions can be handled later without changing the resolver.
"""

import logging
from pathlib import Path
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from kiln.const import BASE_IMAGE_KEYWORD, MANIFEST_FILENAMES
from kiln.error import KilnManifestError
from kiln.image.reference import ImageReference

log = logging.getLogger(__name__)


class Instruction(BaseModel):
    """A single instruction line from a build manifest."""

    model_config = ConfigDict(frozen=True)

    keyword: Annotated[str, Field(description="Upper-cased instruction keyword, e.g. FROM.")]
    arguments: Annotated[tuple[str, ...], Field(default=(), description="Whitespace separated arguments.")]
    line: Annotated[int, Field(description="1-based line number of the instruction in the manifest.")]
    raw: Annotated[str, Field(description="The stripped source line.")]


def find_manifest(context: Path) -> Path:
    """Find the build manifest in a build context, preferring Containerfile over Dockerfile.

    :param context: The build context directory.

    :raises KilnManifestError: If none of the accepted manifest files exist.
    """
    candidates = [Path(context) / name for name in MANIFEST_FILENAMES]
    for candidate in candidates:
        if candidate.is_file():
            log.debug(f"Using build manifest {candidate}")
            return candidate
    raise KilnManifestError(
        f"Neither {' nor '.join(MANIFEST_FILENAMES)} found in {context}",
        filepath=[str(c) for c in candidates],
    )


def parse_instructions(text: str) -> list[Instruction]:
    """Split build manifest text into instructions.

    Blank lines and comment lines are skipped. Line continuations are not joined.
    """
    instructions = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        parts = stripped.split()
        instructions.append(
            Instruction(keyword=parts[0].upper(), arguments=tuple(parts[1:]), line=lineno, raw=stripped)
        )
    return instructions


def base_image_reference(instructions: list[Instruction]) -> ImageReference:
    """Return the base image declared by the first FROM instruction.

    Later FROM instructions are ignored since multi-stage builds are not supported.

    :raises KilnManifestError: If no FROM instruction with an argument is present.
    :raises KilnReferenceError: If the declared reference cannot be parsed.
    """
    for instruction in instructions:
        if instruction.keyword != BASE_IMAGE_KEYWORD or not instruction.arguments:
            continue
        token = instruction.arguments[0]
        log.debug(f"Found base image '{token}' on line {instruction.line}")
        return ImageReference.parse(token)
    raise KilnManifestError(f"No {BASE_IMAGE_KEYWORD} instruction found in build manifest")


def read_base_image_reference(manifest_path: Path) -> ImageReference:
    """Read a build manifest from disk and return its base image reference."""
    try:
        text = Path(manifest_path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise KilnManifestError(f"Failed to read build manifest: {e}", filepath=str(manifest_path)) from e
    try:
        return base_image_reference(parse_instructions(text))
    except KilnManifestError as e:
        raise KilnManifestError(f"{e.message} ({manifest_path})", filepath=str(manifest_path)) from e
