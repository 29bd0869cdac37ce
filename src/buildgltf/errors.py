"""Exception types raised by the exporter."""

from __future__ import annotations

from typing import Any


class BuildGltfError(RuntimeError):
    """Base class for export failures."""


class ExportError(BuildGltfError):
    """The export finished without a coherent result."""


class MissingMaterialError(BuildGltfError):
    """Geometry arrived before any material was selected for the element."""

    def __init__(self, element_id: Any = None) -> None:
        self.element_id = element_id
        super().__init__(f"Polymesh received with no active material (element {element_id})")


class MissingTextureError(BuildGltfError, FileNotFoundError):
    """A material referenced a texture file that is not on disk."""

    def __init__(self, path: Any, reference: str | None = None) -> None:
        self.path = path
        self.reference = reference
        message = f"Texture not found: {path}"
        if reference and str(reference) != str(path):
            message += f" (referenced as '{reference}')"
        super().__init__(message)


class ContainerOverflowError(BuildGltfError, OverflowError):
    """A GLB length field does not fit into 32 bits."""


class CompressionTimeoutError(BuildGltfError, TimeoutError):
    """Outstanding compression tasks did not finish within the timeout."""


class ExportCancelledError(BuildGltfError):
    """Raised when an export is cancelled by the caller."""


def _is_cancelled(cancel_event: Any | None) -> bool:
    if cancel_event is None:
        return False
    is_set = getattr(cancel_event, "is_set", None)
    if callable(is_set):
        return bool(is_set())
    return bool(cancel_event)


def _ensure_not_cancelled(cancel_event: Any | None, *, message: str | None = None) -> None:
    if _is_cancelled(cancel_event):
        raise ExportCancelledError(message or "Export cancelled.")


__all__ = [
    "BuildGltfError",
    "CompressionTimeoutError",
    "ContainerOverflowError",
    "ExportCancelledError",
    "ExportError",
    "MissingMaterialError",
    "MissingTextureError",
]
