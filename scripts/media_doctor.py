#!/usr/bin/env python3
"""Operator entry point for the asset mapping migration.

    media_doctor.py verify
    media_doctor.py export backup.json
    media_doctor.py repair [fix_missing_metadata|rebuild_mappings_from_scenes|remove_duplicate_mappings|all]
    media_doctor.py restore backup.json [--replace]

Runs against DATABASE_URL directly; take an export before repairing.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from scenemedia.core.exceptions import AppError
from scenemedia.core.logging import configure_logging
from scenemedia.core.settings import settings
from scenemedia.db.session import init_engine, session_scope
from scenemedia.services.library import MediaLibrary
from scenemedia.services.migration import REPAIR_OPERATIONS


logger = logging.getLogger("scenemedia.doctor")


def _verify(library: MediaLibrary, args: argparse.Namespace) -> int:
    report = library.verifier.verify()
    print(json.dumps(report.to_dict(), indent=2))
    return 0 if report.ok else 1


def _export(library: MediaLibrary, args: argparse.Namespace) -> int:
    Path(args.output).write_text(library.backup.export_json(), encoding="utf-8")
    print(f"wrote {args.output}")
    return 0


def _repair(library: MediaLibrary, args: argparse.Namespace) -> int:
    if args.operation == "all":
        changed = library.repair.run_all()
    else:
        changed = {args.operation: getattr(library.repair, args.operation)()}
    print(json.dumps(changed, indent=2))
    return 0


def _restore(library: MediaLibrary, args: argparse.Namespace) -> int:
    snapshot = json.loads(Path(args.input).read_text(encoding="utf-8"))
    counts = library.repair.restore_database(snapshot, replace=args.replace)
    print(json.dumps(counts, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect and repair script/asset mappings.")
    parser.add_argument("--database-url", default=None, help="override DATABASE_URL")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("verify", help="print the migration report").set_defaults(func=_verify)

    export = sub.add_parser("export", help="write a JSON backup")
    export.add_argument("output")
    export.set_defaults(func=_export)

    repair = sub.add_parser("repair", help="run a repair operation")
    repair.add_argument("operation", choices=[*REPAIR_OPERATIONS, "all"])
    repair.set_defaults(func=_repair)

    restore = sub.add_parser("restore", help="load a JSON backup")
    restore.add_argument("input")
    restore.add_argument("--replace", action="store_true", help="wipe existing data first")
    restore.set_defaults(func=_restore)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(settings.log_level, settings.log_file)
    init_engine(args.database_url or settings.database_url)

    try:
        with session_scope() as db:
            return args.func(MediaLibrary.build(db), args)
    except AppError as exc:
        logger.error("media_doctor_failed", extra={"command": args.command, "error": str(exc)})
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
