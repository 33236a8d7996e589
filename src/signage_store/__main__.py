"""Entry point for `python -m signage_store` and the `signage-store` CLI script."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
from pathlib import Path
from typing import Any, Sequence

from signage_store.canonical import to_jsonable
from signage_store.engine import ENTITY_NAMES, StorageEngine
from signage_store.errors import NotFoundError, SignageStoreError, describe_failure
from signage_store.integrity import describe_usage
from signage_store.settings import LOG_LEVELS, RuntimeSettings

USAGE_KINDS = ["content", "layout", "playlist"]


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Inspect and maintain a signage content store")
    parser.add_argument("--root", type=Path, default=None, help="Store root directory (default: SIGNAGE_STORE_ROOT)")
    parser.add_argument(
        "--log-level",
        type=lambda value: value.upper(),
        default=None,
        choices=LOG_LEVELS,
        help="Logging verbosity (default: SIGNAGE_LOG_LEVEL)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    list_cmd = commands.add_parser("list", help="Print an entity's summary index")
    list_cmd.add_argument("entity", choices=ENTITY_NAMES)

    show_cmd = commands.add_parser("show", help="Print one detail record")
    show_cmd.add_argument("entity", choices=ENTITY_NAMES)
    show_cmd.add_argument("id")

    usage_cmd = commands.add_parser("usage", help="Report which records reference an id")
    usage_cmd.add_argument("kind", choices=USAGE_KINDS)
    usage_cmd.add_argument("id")

    delete_cmd = commands.add_parser("delete", help="Delete a record, refusing when it is still referenced")
    delete_cmd.add_argument("entity", choices=ENTITY_NAMES)
    delete_cmd.add_argument("id")
    delete_cmd.add_argument(
        "--force",
        action="store_true",
        help="For contents: strip the id from referencing playlists before deleting",
    )

    reindex_cmd = commands.add_parser("reindex", help="Rebuild index files from detail records")
    reindex_cmd.add_argument("entity", choices=[*ENTITY_NAMES, "all"])

    commands.add_parser("migrate", help="Rewrite records stored in a legacy shape")
    commands.add_parser("info", help="Print storage usage")

    clear_cmd = commands.add_parser("clear", help="Delete everything under the store root")
    clear_cmd.add_argument("--yes", action="store_true", help="Confirm the deletion")
    return parser.parse_args(argv)


async def run_command(engine: StorageEngine, args: argparse.Namespace) -> Any:
    """Execute one CLI command and return a JSON-compatible result."""
    if args.command == "list":
        return await engine.repository(args.entity).list_index()

    if args.command == "show":
        record = await engine.repository(args.entity).get_by_id(args.id)
        if record is None:
            raise NotFoundError(f"{args.entity} {args.id} not found", record_id=args.id)
        return record

    if args.command == "usage":
        if args.kind == "content":
            usage = await engine.integrity.check_content_usage(args.id)
        elif args.kind == "layout":
            usage = await engine.integrity.check_layout_usage(args.id)
        else:
            usage = await engine.integrity.check_playlist_usage(args.id)
        return {"usage": usage, "description": describe_usage(usage, noun=args.kind)}

    if args.command == "delete":
        if args.force and args.entity != "contents":
            raise ValueError("--force only applies to contents")
        if args.entity == "contents":
            if args.force:
                stripped = await engine.integrity.delete_content_forced(args.id)
                return {"deleted": args.id, "strippedPlaylists": stripped}
            await engine.integrity.delete_content_safely(args.id)
        elif args.entity == "layouts":
            await engine.integrity.delete_layout_safely(args.id)
        else:
            await engine.repository(args.entity).delete(args.id)
        return {"deleted": args.id}

    if args.command == "reindex":
        if args.entity == "all":
            return await engine.rebuild_indexes()
        return {args.entity: len(await engine.repository(args.entity).rebuild_index())}

    if args.command == "migrate":
        return [dataclasses.asdict(report) for report in await engine.migrate_all()]

    if args.command == "info":
        info = await engine.storage_info()
        return {"root": str(engine.store.root), **dataclasses.asdict(info)}

    if args.command == "clear":
        if not args.yes:
            raise ValueError("refusing to clear the store without --yes")
        await engine.clear_all()
        return {"cleared": str(engine.store.root)}

    raise ValueError(f"unknown command: {args.command}")


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        settings = RuntimeSettings.from_env()
    except ValueError as exc:
        logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
        logging.error("Invalid configuration: %s", exc)
        return 1

    logging.basicConfig(
        level=getattr(logging, args.log_level or settings.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.root is not None:
        settings = dataclasses.replace(settings, store_root=str(args.root))
    engine = StorageEngine.from_settings(settings)

    try:
        result = asyncio.run(run_command(engine, args))
    except SignageStoreError as exc:
        logging.error("%s", describe_failure(exc))
        return 1
    except ValueError as exc:
        logging.error("%s", exc)
        return 1

    print(json.dumps(to_jsonable(result), indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
