"""Serialbox CLI entry points.

This module exposes dataset inspection and legacy upgrade commands.
It maps argparse commands onto Serializer calls.
"""

from __future__ import annotations

import argparse
import json
from typing import Any, Sequence

from core.errors import SerialboxError
from core.types import OpenMode
from core.version import library_version, version_string
from serialize.serializer import Serializer


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(prog="serialbox", description="Serialbox dataset tools")
    parser.add_argument("--archive", help="Override SERIALBOX_ARCHIVE for this command")
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_info_command(subparsers)
    _add_upgrade_command(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the Serialbox CLI.

    Args:
        argv: Optional argument vector.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        if args.command == "info":
            return _run_info_command(args)
        if args.command == "upgrade":
            return _run_upgrade_command(args)
    except SerialboxError as error:
        print(f"serialbox_error={error}")
        return 1
    parser.error(f"Unsupported command: {args.command}")
    return 2


def _add_info_command(subparsers: Any) -> None:
    parser = subparsers.add_parser("info", help="Summarize fields and savepoints of a dataset")
    _add_dataset_arguments(parser)


def _add_upgrade_command(subparsers: Any) -> None:
    parser = subparsers.add_parser(
        "upgrade",
        help="Rewrite legacy <prefix>.json metadata in the current schema",
    )
    _add_dataset_arguments(parser)


def _add_dataset_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("directory", help="Dataset directory")
    parser.add_argument("prefix", help="Dataset prefix")


def _run_info_command(args: argparse.Namespace) -> int:
    """Handle info command.

    Args:
        args: Parsed CLI args.

    Returns:
        Exit code.
    """
    serializer = Serializer(OpenMode.READ, args.directory, args.prefix, args.archive)
    summary = {
        "version": version_string(library_version()),
        "prefix": serializer.prefix,
        "global_meta_info": serializer.global_meta_info.as_dict(),
        "fields": {
            name: {
                "type": serializer.get_field_meta_info(name).type_id.type_name,
                "shape": list(serializer.get_field_meta_info(name).dims),
            }
            for name in sorted(serializer.field_names())
        },
        "savepoints": [
            {
                "name": savepoint.name,
                "meta_info": savepoint.meta_info.as_dict(),
                "fields": serializer.fields_at(savepoint),
            }
            for savepoint in serializer.savepoints()
        ],
    }
    print(json.dumps(summary, indent=2))
    return 0


def _run_upgrade_command(args: argparse.Namespace) -> int:
    """Handle upgrade command.

    Args:
        args: Parsed CLI args.

    Returns:
        Exit code.
    """
    serializer = Serializer(OpenMode.READ, args.directory, args.prefix, args.archive)
    upgraded = serializer.metadata_path.exists()
    print(f"metadata_path={serializer.metadata_path}")
    print(f"upgraded={str(upgraded).lower()}")
    return 0 if upgraded else 1
