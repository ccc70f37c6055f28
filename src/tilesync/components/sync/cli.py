"""tilesync CLI - copy, diff and patch tile containers."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, List, Optional

import orjson

from tilesync.adapters.sqlite_container import open_container
from tilesync.components.mbtiles.layouts import MbtType
from tilesync.components.mbtiles.metadata import MergePolicy, is_reserved
from tilesync.components.mbtiles.store import LogicalTileStore
from tilesync.components.mbtiles.validation import AggHashMode, IntegrityCheck
from tilesync.components.sync.engine import CopyEngine
from tilesync.components.sync.options import CopyOptions, CopyType, OnDuplicate
from tilesync.components.sync.settings import TileSyncSettings
from tilesync.core.errors import TileSyncError
from tilesync.core.geometry import BBox, TileFilter, polygon_from_wkt
from tilesync.core.schemas import OperationResult, OperationStatus, PatchType

# Logging configuration
_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Exit codes
_EXIT_SUCCESS = OperationStatus.SUCCESS.exit_code

logger = logging.getLogger(__name__)


def _choices(enum_cls) -> List[str]:
    return [member.value for member in enum_cls]


def _parse_args(argv: Optional[List[str]], settings: TileSyncSettings) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Copy, diff and patch MBTiles tile containers.",
        prog="tilesync",
    )
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level (default: %(default)s).")
    parser.add_argument("--no-progress", action="store_true", help="Disable progress bars.")
    sub = parser.add_subparsers(dest="command", required=True)

    copy_parser = sub.add_parser("copy", help="Copy tiles and metadata into another container.")
    copy_parser.add_argument("source", type=Path, help="Container to read from.")
    copy_parser.add_argument("destination", type=Path, help="Container to write to (created if missing).")
    copy_parser.add_argument("--min-zoom", type=int, default=None, help="Lowest zoom level to copy.")
    copy_parser.add_argument("--max-zoom", type=int, default=None, help="Highest zoom level to copy.")
    copy_parser.add_argument("--bbox", default=None, help="Only copy tiles intersecting west,south,east,north.")
    copy_parser.add_argument("--region", default=None, help="Only copy tiles intersecting this WKT geometry.")
    copy_parser.add_argument("--copy-type", choices=_choices(CopyType), default=CopyType.ALL.value)
    copy_parser.add_argument(
        "--on-duplicate",
        choices=_choices(OnDuplicate),
        default=settings.on_duplicate.value,
        help="Behaviour when the destination already holds a tile (default: %(default)s).",
    )
    copy_parser.add_argument(
        "--dst-type",
        choices=_choices(MbtType),
        default=settings.dst_type.value if settings.dst_type else None,
        help="Layout of a new destination (default: same as source).",
    )

    diff_parser = sub.add_parser("diff", help="Write a patch turning base into target.")
    diff_parser.add_argument("base", type=Path)
    diff_parser.add_argument("target", type=Path)
    diff_parser.add_argument("patch", type=Path, help="Patch file to create (must not exist).")
    diff_parser.add_argument(
        "--patch-type",
        choices=_choices(PatchType),
        default=settings.patch_type.value,
        help="Encoding of changed tiles (default: %(default)s).",
    )

    apply_parser = sub.add_parser("apply-patch", help="Apply a patch to a base container.")
    apply_parser.add_argument("base", type=Path)
    apply_parser.add_argument("patch", type=Path)
    apply_parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the patched result to a new file instead of updating base in place.",
    )
    apply_parser.add_argument(
        "--metadata-policy",
        choices=_choices(MergePolicy),
        default=settings.metadata_policy.value,
        help="Whether metadata adds may overwrite different values (default: %(default)s).",
    )

    validate_parser = sub.add_parser("validate", help="Check integrity, tile hashes and agg_tiles_hash.")
    validate_parser.add_argument("path", type=Path)
    validate_parser.add_argument(
        "--integrity-check",
        choices=_choices(IntegrityCheck),
        default=settings.integrity_check.value,
    )
    validate_parser.add_argument("--agg-hash", choices=_choices(AggHashMode), default=AggHashMode.VERIFY.value)
    validate_parser.add_argument("--json", action="store_true", help="Print the report as JSON.")

    summary_parser = sub.add_parser("summary", help="Print per-zoom tile statistics.")
    summary_parser.add_argument("path", type=Path)
    summary_parser.add_argument("--json", action="store_true", help="Print the summary as JSON.")

    meta_get_parser = sub.add_parser("meta-get", help="Print one metadata value.")
    meta_get_parser.add_argument("path", type=Path)
    meta_get_parser.add_argument("name")

    meta_set_parser = sub.add_parser("meta-set", help="Set a metadata value; omit the value to delete the key.")
    meta_set_parser.add_argument("path", type=Path)
    meta_set_parser.add_argument("name")
    meta_set_parser.add_argument("value", nargs="?", default=None)

    args = parser.parse_args(argv)
    if args.command == "copy":
        try:
            args.tile_filter = _build_filter(args)
        except ValueError as exc:
            parser.error(str(exc))
    return args


def _build_filter(args: argparse.Namespace) -> Optional[TileFilter]:
    if args.min_zoom is None and args.max_zoom is None and args.bbox is None and args.region is None:
        return None
    return TileFilter(
        min_zoom=args.min_zoom,
        max_zoom=args.max_zoom,
        bbox=BBox.parse(args.bbox) if args.bbox else None,
        region=polygon_from_wkt(args.region) if args.region else None,
    )


def _report(result: OperationResult) -> int:
    if result.ok:
        tiles = result.tiles
        print(
            f"{result.operation}: ok (read={tiles.read}, written={tiles.written}, skipped={tiles.skipped}, "
            f"removed={tiles.removed}, delta={tiles.delta_encoded}, metadata={result.metadata_changes})"
        )
        if result.agg_tiles_hash:
            print(f"agg_tiles_hash: {result.agg_tiles_hash}")
    else:
        print(f"{result.operation}: {result.status.value} ({result.fault_kind}): {result.message}", file=sys.stderr)
    return result.exit_code


def _print_json(payload: dict) -> None:
    print(orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode())


def _with_store(path: Path, readonly: bool, action: Callable[[LogicalTileStore], None]) -> int:
    try:
        with open_container(path, readonly=readonly) as container:
            store = LogicalTileStore.open(container)
            if readonly:
                action(store)
            else:
                with container.transaction():
                    action(store)
    except TileSyncError as exc:
        logger.error("%s: %s", path, exc)
        return exc.status.exit_code
    return _EXIT_SUCCESS


def _print_summary(store: LogicalTileStore, as_json: bool) -> None:
    summary = store.summary()
    if as_json:
        _print_json(summary.model_dump())
        return
    print(f"File: {summary.path}")
    print(f"Layout: {summary.layout}")
    print(f"Tiles: {summary.tile_count} ({summary.total_bytes} bytes)")
    if summary.agg_tiles_hash:
        print(f"agg_tiles_hash: {summary.agg_tiles_hash}")
    for zoom in summary.zooms:
        print(
            f"  z{zoom.zoom_level}: {zoom.tile_count} tiles, {zoom.total_bytes} bytes, "
            f"x {zoom.min_column}..{zoom.max_column}, y {zoom.min_row}..{zoom.max_row}"
        )


def _print_metadata_value(store: LogicalTileStore, name: str) -> None:
    value = store.get_metadata_value(name)
    if value is not None:
        print(value)


def _set_metadata_value(store: LogicalTileStore, name: str, value: Optional[str]) -> None:
    if is_reserved(name):
        logger.warning("'%s' is maintained by tilesync; setting it by hand may break verification", name)
    store.put_metadata(name, value)


def main(argv: Optional[List[str]] = None) -> int:
    """Run one tilesync command and return its exit code."""
    settings = TileSyncSettings()
    args = _parse_args(argv, settings)
    logging.basicConfig(level=args.log_level.upper(), format=_LOG_FORMAT)
    if args.no_progress:
        settings = settings.model_copy(update={"progress": False})
    engine = CopyEngine(settings)

    if args.command == "copy":
        options = CopyOptions(
            tile_filter=args.tile_filter,
            copy_type=CopyType(args.copy_type),
            on_duplicate=OnDuplicate(args.on_duplicate),
            dst_type=MbtType(args.dst_type) if args.dst_type else None,
        )
        return _report(engine.copy(args.source, args.destination, options))

    if args.command == "diff":
        return _report(engine.diff(args.base, args.target, args.patch, PatchType(args.patch_type)))

    if args.command == "apply-patch":
        result = engine.apply_patch(args.base, args.patch, args.output, MergePolicy(args.metadata_policy))
        return _report(result)

    if args.command == "validate":
        result = engine.validate(args.path, IntegrityCheck(args.integrity_check), AggHashMode(args.agg_hash))
        if args.json and result.ok:
            _print_json(result.details)
            return _EXIT_SUCCESS
        return _report(result)

    if args.command == "summary":
        return _with_store(args.path, True, lambda store: _print_summary(store, args.json))

    if args.command == "meta-get":
        return _with_store(args.path, True, lambda store: _print_metadata_value(store, args.name))

    if args.command == "meta-set":
        return _with_store(args.path, False, lambda store: _set_metadata_value(store, args.name, args.value))

    return _EXIT_SUCCESS


if __name__ == "__main__":
    sys.exit(main())
