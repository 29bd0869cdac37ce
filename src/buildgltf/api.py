from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Optional, Union

from .compression import Codec
from .config.settings import ExportConfig
from .exporter import ExportResult, export_scene
from .ifc_walker import IfcSceneWalker
from .options import OPTIONS as DEFAULT_EXPORT_OPTIONS
from .options import ExportCustomizer, ExportOptions
from .scene_events import SceneWalker
from .scene_model import SceneModel, SceneModelWalker

PathLike = Union[str, Path]
SceneInput = Union[PathLike, SceneModel, SceneWalker]

__all__ = [
    "DEFAULT_EXPORT_OPTIONS",
    "EXPORT_DEFAULTS",
    "ExportDefaults",
    "ExportSettings",
    "export",
    "resolve_output_path",
]


@dataclass(frozen=True)
class ExportDefaults:
    glb: bool = True
    use_draco: bool = False
    export_textures: bool = True
    export_cameras: bool = False
    quality: int = 8

    def options(self) -> ExportOptions:
        return replace(
            DEFAULT_EXPORT_OPTIONS,
            glb=self.glb,
            use_draco=self.use_draco,
            export_textures=self.export_textures,
            export_cameras=self.export_cameras,
            quality=self.quality,
        )


EXPORT_DEFAULTS = ExportDefaults()


@dataclass(slots=True)
class ExportSettings:
    """Inputs that drive an export run via :func:`export`."""

    input: SceneInput
    output_path: Optional[PathLike] = None
    settings_path: Optional[PathLike] = None
    options: Optional[ExportOptions] = None
    customizer: Optional[ExportCustomizer] = None
    codec: Optional[Codec] = None
    logger: Optional[logging.Logger] = None


def _make_walker(source: SceneInput, cancel_event: Any) -> SceneWalker:
    if isinstance(source, SceneModel):
        return SceneModelWalker(source)
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Input not found: {path}")
        if path.suffix.lower() != ".ifc":
            raise ValueError(f"Unsupported input type: {path.suffix or path.name}")
        return IfcSceneWalker(path, cancel_event=cancel_event)
    if callable(getattr(source, "walk", None)):
        return source
    raise TypeError(f"Cannot export {type(source).__name__}; expected a path, SceneModel or walker")


def resolve_output_path(settings: ExportSettings, options: ExportOptions) -> Optional[Path]:
    suffix = ".glb" if options.glb else ".gltf"
    if settings.output_path is not None:
        target = Path(settings.output_path)
        return target if target.suffix else target.with_suffix(suffix)
    if isinstance(settings.input, (str, Path)):
        return Path(settings.input).with_suffix(suffix)
    return None


def export(
    settings: ExportSettings,
    *,
    cancel_event: Any | None = None,
) -> ExportResult:
    """Export the scene described by ``settings``; writes the output when a path is known."""
    log = settings.logger or logging.getLogger(__name__)
    options = replace(settings.options) if settings.options is not None else EXPORT_DEFAULTS.options()
    config: Optional[ExportConfig] = None
    if settings.settings_path is not None:
        config = ExportConfig.from_file(Path(settings.settings_path))
        options = config.apply(options)

    walker = _make_walker(settings.input, cancel_event)
    walker_scale = getattr(walker, "unit_scale", None)
    unit_overridden = (config is not None and "unit_scale" in config.values) or (
        settings.options is not None and settings.options.unit_scale != DEFAULT_EXPORT_OPTIONS.unit_scale
    )
    if walker_scale is not None and not unit_overridden:
        options = replace(options, unit_scale=float(walker_scale))

    target = resolve_output_path(settings, options)
    result = export_scene(
        walker,
        options,
        customizer=settings.customizer,
        codec=settings.codec,
        cancel_event=cancel_event,
        output_name=target.stem if target is not None else "model",
        logger=log,
    )
    if target is not None:
        result.save(target)
    return result
