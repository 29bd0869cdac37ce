from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from ..options import DracoOptions, ExportOptions

LOG = logging.getLogger(__name__)

_BOOL_FIELDS = {
    "glb",
    "export_textures",
    "export_cameras",
    "use_draco",
    "box_instances",
    "export_parameters",
    "export_normals",
    "bake_coordinates",
    "cache_identity_instances",
}
_INT_FIELDS = {"quality", "compression_threads"}
_FLOAT_FIELDS = {"uv_scale", "unit_scale", "compression_timeout"}
_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _as_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"Setting '{key}' expects a boolean, got {value!r}")


def _as_number(key: str, value: Any, kind: type) -> Any:
    if isinstance(value, bool):
        raise ValueError(f"Setting '{key}' expects a number, got {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Setting '{key}' expects a number, got {value!r}") from exc


def _as_int_tuple(key: str, value: Any) -> Tuple[int, ...]:
    if isinstance(value, (str, int)):
        value = [value]
    try:
        return tuple(int(v) for v in value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Setting '{key}' expects a list of element ids, got {value!r}") from exc


def _draco_from_mapping(data: Any) -> DracoOptions:
    if not isinstance(data, dict):
        raise ValueError("Setting 'draco' must be a mapping")
    known = {f.name for f in fields(DracoOptions)}
    values: Dict[str, int] = {}
    for key, value in data.items():
        if key not in known:
            LOG.warning("Ignoring unknown draco setting '%s'", key)
            continue
        values[key] = _as_number(f"draco.{key}", value, int)
    return DracoOptions(**values)


@dataclass
class ExportConfig:
    """Export options loaded from a YAML or JSON settings file.

    Keys may sit at the top level or under an ``export:`` mapping; unknown keys
    are logged and ignored.
    """

    values: Dict[str, Any] = field(default_factory=dict)
    source: Optional[Path] = None

    @classmethod
    def from_mapping(cls, data: Optional[Dict[str, Any]], *, source: Optional[Path] = None) -> "ExportConfig":
        data = dict(data or {})
        section = data.get("export", data)
        if not isinstance(section, dict):
            raise ValueError("Settings 'export' section must be a mapping")
        known = {f.name for f in fields(ExportOptions)}
        values: Dict[str, Any] = {}
        for key, value in section.items():
            if key not in known:
                LOG.warning("Ignoring unknown setting '%s'%s", key, f" in {source}" if source else "")
                continue
            if value is None and key not in {"elements", "texture_dir", "compression_threads", "compression_timeout"}:
                continue
            values[key] = cls._coerce(key, value)
        return cls(values=values, source=source)

    @staticmethod
    def _coerce(key: str, value: Any) -> Any:
        if value is None:
            return None
        if key in _BOOL_FIELDS:
            return _as_bool(key, value)
        if key in _INT_FIELDS:
            return _as_number(key, value, int)
        if key in _FLOAT_FIELDS:
            number = _as_number(key, value, float)
            if key in {"unit_scale", "compression_timeout"} and number <= 0:
                raise ValueError(f"Setting '{key}' must be positive, got {value!r}")
            return number
        if key == "elements":
            return _as_int_tuple(key, value)
        if key == "skip_categories":
            if isinstance(value, str):
                value = [value]
            return tuple(str(v) for v in value)
        if key == "texture_dir":
            return Path(str(value)).expanduser()
        if key == "draco":
            return _draco_from_mapping(value)
        return value

    @classmethod
    def from_file(cls, path: Path) -> "ExportConfig":
        path = Path(path)
        text = path.read_text(encoding="utf-8")
        return cls.from_mapping(cls._load_data_from_text(text, suffix=path.suffix), source=path)

    @classmethod
    def from_text(cls, text: str, *, suffix: str) -> "ExportConfig":
        return cls.from_mapping(cls._load_data_from_text(text, suffix=suffix))

    def apply(self, options: Optional[ExportOptions] = None) -> ExportOptions:
        """Return ``options`` (or the defaults) with these settings applied."""
        return replace(options or ExportOptions(), **self.values)

    @staticmethod
    def _load_data_from_text(text: str, *, suffix: str) -> Dict[str, Any]:
        ext = (suffix or "").lower()
        if ext in {".yaml", ".yml"}:
            loaded = yaml.safe_load(text)
            if loaded is None:
                return {}
            if not isinstance(loaded, dict):
                raise ValueError("YAML settings must define a mapping at the top level")
            return loaded
        if ext == ".json":
            loaded = json.loads(text)
            if not isinstance(loaded, dict):
                raise ValueError("JSON settings must define a mapping at the top level")
            return loaded
        raise ValueError(f"Unsupported settings type: {suffix}")


__all__ = ["ExportConfig"]
