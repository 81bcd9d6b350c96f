from .composer import ComposedImage, compose
from .descriptor import BaseImage, Descriptor, ImageIndex, ImageManifest, Platform
from .layer import BuildContext, Layer, LayerEntry, LayerEntryKind, archive_context
from .manifest import Instruction, base_image_reference, find_manifest, parse_instructions
from .reference import ImageReference

__all__ = [
    "BaseImage",
    "BuildContext",
    "ComposedImage",
    "Descriptor",
    "ImageIndex",
    "ImageManifest",
    "ImageReference",
    "Instruction",
    "Layer",
    "LayerEntry",
    "LayerEntryKind",
    "Platform",
    "archive_context",
    "base_image_reference",
    "compose",
    "find_manifest",
    "parse_instructions",
]
