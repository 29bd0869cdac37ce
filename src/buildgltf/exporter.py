"""Drive a scene walker through the builder and package the result."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

from .compression import Codec
from .container import ContainerWriter, buffer_uri_for
from .errors import ExportCancelledError, ExportError, _ensure_not_cancelled
from .gltf_data import GltfDocument
from .options import ExportCustomizer, ExportOptions
from .scene_builder import SceneGraphBuilder
from .scene_events import SceneWalker
from .textures import TextureResolver

LOG = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(slots=True)
class ExportResult:
    """Artifacts produced by a single export."""

    document: GltfDocument
    payload: bytes
    data: bytes
    glb: bool = True

    @property
    def suffix(self) -> str:
        return ".glb" if self.glb else ".gltf"

    def save(self, path: PathLike) -> Path:
        """Write ``path`` (``.glb``) or ``path`` + its ``.bin`` sibling (``.gltf``)."""
        target = Path(path)
        if not target.suffix:
            target = target.with_suffix(self.suffix)
        if self.glb:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(self.data)
            LOG.info("Wrote %s (%d bytes)", target, len(self.data))
            return target
        return ContainerWriter(glb=False).write(self.document, self.payload, target)

    def as_dict(self) -> dict[str, Any]:
        return {
            "nodes": len(self.document.nodes),
            "meshes": len(self.document.meshes),
            "materials": len(self.document.materials),
            "accessors": len(self.document.accessors),
            "buffer_views": len(self.document.buffer_views),
            "payload_bytes": len(self.payload),
            "bytes": len(self.data),
            "format": "glb" if self.glb else "gltf",
        }


def export_scene(
    walker: SceneWalker,
    options: Optional[ExportOptions] = None,
    *,
    customizer: Optional[ExportCustomizer] = None,
    codec: Optional[Codec] = None,
    texture_resolver: Optional[TextureResolver] = None,
    cancel_event: Any = None,
    output_name: str = "model",
    logger: Optional[logging.Logger] = None,
) -> ExportResult:
    """Walk the scene, finalise the document and serialise it.

    ``customizer.mutate`` runs once, after the byte layout is final and before
    serialisation.  ``output_name`` only determines the buffer URI written into
    ``.gltf`` output.
    """
    log = logger or LOG
    options = options or ExportOptions()
    customizer = customizer or ExportCustomizer()
    _ensure_not_cancelled(cancel_event)
    builder = SceneGraphBuilder(
        options,
        customizer=customizer,
        codec=codec,
        texture_resolver=texture_resolver,
        cancel_event=cancel_event,
    )
    try:
        walker.walk(builder)
        _ensure_not_cancelled(cancel_event)
    except ExportCancelledError:
        log.info("Export cancelled")
        raise
    finally:
        builder.close()

    payload = builder.payload
    if payload is None:
        raise ExportError("Export finished with no result; the walker never called finish()")
    document = builder.document
    customizer.mutate(document)
    document.check_references()
    if document.buffers and document.buffers[0].byte_length != len(payload):
        raise ExportError(
            f"Buffer byteLength {document.buffers[0].byte_length} does not match payload {len(payload)}"
        )

    writer = ContainerWriter(glb=options.glb)
    uri = None if options.glb else buffer_uri_for(f"{output_name}.gltf")
    data = writer.to_bytes(document, payload, uri=uri)
    log.info(
        "Exported %d nodes / %d meshes (%s, %d bytes)",
        len(document.nodes),
        len(document.meshes),
        "glb" if options.glb else "gltf",
        len(data),
    )
    return ExportResult(document=document, payload=payload, data=data, glb=options.glb)


__all__ = ["ExportResult", "export_scene"]
