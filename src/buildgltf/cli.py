from __future__ import annotations

import argparse
import logging
import sys
import threading
from dataclasses import replace
from pathlib import Path
from typing import Sequence

from .api import EXPORT_DEFAULTS, ExportSettings, export
from .config.settings import ExportConfig
from .errors import BuildGltfError, ExportCancelledError

LOG = logging.getLogger(__name__)


class _JoinPathAction(argparse.Action):
    """Join successive CLI tokens into a single path string (handles spaces gracefully)."""

    def __call__(self, parser, namespace, values, option_string=None):
        joined = " ".join(values).strip()
        setattr(namespace, self.dest, joined or None)


def _element_ids(text: str) -> tuple[int, ...]:
    try:
        return tuple(int(part) for part in text.replace(",", " ").split())
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid element id list: {text!r}") from exc


def _positive_float(text: str) -> float:
    try:
        value = float(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected a number, got {text!r}") from exc
    if value <= 0:
        raise argparse.ArgumentTypeError(f"Expected a positive number, got {text!r}")
    return value


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse the CLI arguments for the IFC -> glTF exporter."""

    parser = argparse.ArgumentParser(prog="buildgltf", description="Export IFC models to glTF 2.0 / GLB")
    parser.add_argument(
        "--input",
        dest="input_path",
        nargs="+",
        action=_JoinPathAction,
        required=True,
        help="Path to an IFC file",
    )
    parser.add_argument(
        "--output",
        dest="output_path",
        nargs="+",
        action=_JoinPathAction,
        default=None,
        help="Output .glb or .gltf path (default: next to the input)",
    )
    parser.add_argument(
        "--settings",
        dest="settings_path",
        nargs="+",
        action=_JoinPathAction,
        default=None,
        help="Export settings file (YAML or JSON)",
    )
    parser.add_argument("--draco", dest="use_draco", action="store_true", help="Compress meshes with Draco")
    parser.add_argument("--no-textures", dest="no_textures", action="store_true", help="Do not embed textures")
    parser.add_argument("--cameras", dest="export_cameras", action="store_true", help="Export the view camera")
    parser.add_argument(
        "--box-instances",
        dest="box_instances",
        action="store_true",
        help="Replace instance geometry with bounding boxes",
    )
    parser.add_argument(
        "--parameters",
        dest="export_parameters",
        action="store_true",
        help="Write element parameters into node extras",
    )
    parser.add_argument(
        "--elements",
        dest="elements",
        type=_element_ids,
        default=None,
        help="Comma separated element ids to export (default: all)",
    )
    parser.add_argument("--uv-scale", dest="uv_scale", type=float, default=None, help="Texture coordinate scale")
    parser.add_argument(
        "--compression-timeout",
        dest="compression_timeout",
        type=_positive_float,
        default=None,
        help="Seconds to wait for Draco compression before giving up",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        default="INFO",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Logging verbosity (default: %(default)s)",
    )
    return parser.parse_args(argv)


def _settings_from_args(args: argparse.Namespace) -> ExportSettings:
    options = EXPORT_DEFAULTS.options()
    if args.settings_path:
        options = ExportConfig.from_file(Path(args.settings_path)).apply(options)
    overrides = {}
    if args.output_path:
        overrides["glb"] = Path(args.output_path).suffix.lower() != ".gltf"
    if args.use_draco:
        overrides["use_draco"] = True
    if args.no_textures:
        overrides["export_textures"] = False
    if args.export_cameras:
        overrides["export_cameras"] = True
    if args.box_instances:
        overrides["box_instances"] = True
    if args.export_parameters:
        overrides["export_parameters"] = True
    if args.elements is not None:
        overrides["elements"] = args.elements
    if args.uv_scale is not None:
        overrides["uv_scale"] = args.uv_scale
    if args.compression_timeout is not None:
        overrides["compression_timeout"] = args.compression_timeout
    return ExportSettings(
        input=Path(args.input_path),
        output_path=args.output_path,
        options=replace(options, **overrides),
        logger=LOG,
    )


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s: %(message)s")
    cancel_event = threading.Event()
    try:
        result = export(_settings_from_args(args), cancel_event=cancel_event)
    except KeyboardInterrupt:
        cancel_event.set()
        LOG.error("Interrupted")
        return 130
    except ExportCancelledError:
        LOG.error("Export cancelled")
        return 130
    except (BuildGltfError, FileNotFoundError, ValueError) as exc:
        LOG.error("Export failed: %s", exc)
        return 1
    summary = result.as_dict()
    LOG.info(
        "Done: %d nodes, %d meshes, %d materials, %d bytes",
        summary["nodes"],
        summary["meshes"],
        summary["materials"],
        summary["bytes"],
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
