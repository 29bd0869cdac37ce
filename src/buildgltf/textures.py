"""Texture lookup for persisted materials."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Union

from .errors import MissingTextureError

log = logging.getLogger(__name__)

PathLike = Union[str, Path]

MIME_TYPES: Dict[str, str] = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".dds": "image/vnd-ms.dds",
}
DEFAULT_MIME_TYPE = "image/png"

# Consulted when no texture directory is configured.
TEXTURE_DIR_ENV = "BUILDGLTF_TEXTURE_DIR"


def mime_type_for(path: PathLike) -> str:
    return MIME_TYPES.get(Path(str(path)).suffix.lower(), DEFAULT_MIME_TYPE)


def relative_texture_path(reference: str) -> str:
    """First ``|``-separated token of a bitmap reference, with ``/`` separators."""
    token = str(reference).split("|", 1)[0].strip()
    return token.replace("\\", "/")


@dataclass(frozen=True)
class ResolvedTexture:
    path: Path
    mime_type: str

    @property
    def name(self) -> str:
        return self.path.stem

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()


class TextureResolver:
    """Resolve bitmap references relative to a texture directory."""

    def __init__(self, texture_dir: Optional[PathLike] = None) -> None:
        if texture_dir is None:
            env = os.getenv(TEXTURE_DIR_ENV)
            texture_dir = env if env and env.strip() else None
        self.texture_dir = Path(texture_dir) if texture_dir is not None else None
        self._cache: Dict[str, ResolvedTexture] = {}

    def resolve(self, reference: str) -> ResolvedTexture:
        relative = relative_texture_path(reference)
        cached = self._cache.get(relative)
        if cached is not None:
            return cached
        if not relative:
            raise MissingTextureError(relative, reference)
        candidate = Path(relative)
        if not candidate.is_absolute() and self.texture_dir is not None:
            candidate = self.texture_dir / relative
        if not candidate.is_file():
            raise MissingTextureError(candidate, reference)
        resolved = ResolvedTexture(candidate, mime_type_for(candidate))
        self._cache[relative] = resolved
        log.debug("Resolved texture '%s' -> %s", reference, candidate)
        return resolved


__all__ = [
    "DEFAULT_MIME_TYPE",
    "MIME_TYPES",
    "ResolvedTexture",
    "TextureResolver",
    "mime_type_for",
    "relative_texture_path",
]
