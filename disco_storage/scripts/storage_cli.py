#!/usr/bin/env python3
"""
Storage CLI for disco-storage

Stores local files in the configured channel and reads them back, keeping the
object -> message id mapping in a JSON catalog (DISCO_CATALOG_PATH).

Usage:
    python -m disco_storage.scripts.storage_cli upload ./backup.tar --object-id backup-2026-10
    python -m disco_storage.scripts.storage_cli download backup-2026-10 -o ./restored.tar
    python -m disco_storage.scripts.storage_cli delete backup-2026-10
    python -m disco_storage.scripts.storage_cli ls
"""

import argparse
import asyncio
import sys
import uuid
from pathlib import Path
from typing import List
from typing import Optional

from disco_storage.config import get_config
from disco_storage.errors import Result
from disco_storage.logging_config import setup_loki_logging
from disco_storage.main import StorageStack
from disco_storage.main import storage_lifespan
from disco_storage.utils import format_size
from disco_storage.workers.deleter import is_partially_deleted


def _print_errors(result: Result) -> None:
    for error in result.errors:
        print(f"error[{error.kind.value}]: {error.describe()}", file=sys.stderr)


async def _upload(stack: StorageStack, path: Path, object_id: Optional[str]) -> int:
    if not path.is_file():
        print(f"error: {path} is not a file", file=sys.stderr)
        return 2
    object_id = object_id or uuid.uuid4().hex
    result = await stack.service.upload_file(object_id, path.name, path.read_bytes())
    if result.is_failed:
        _print_errors(result)
        return 1
    print(result.value)
    return 0


def _default_target(file_name: str, object_id: str) -> Path:
    """Write into the working directory only, whatever the stored attachment name says."""
    name = Path(file_name).name
    if name in ("", ".", ".."):
        name = object_id
    return Path(name)


async def _download(stack: StorageStack, object_id: str, output: Optional[Path]) -> int:
    result = await stack.service.get_file(object_id)
    if result.is_failed:
        _print_errors(result)
        return 1
    file_model = result.value
    target = output or _default_target(file_model.file_name, object_id)
    target.write_bytes(file_model.content)
    print(f"{target} ({format_size(file_model.size)})")
    return 0


async def _delete(stack: StorageStack, object_id: str) -> int:
    result = await stack.service.delete_file(object_id)
    if result.is_failed:
        _print_errors(result)
        if is_partially_deleted(result):
            print(f"warning: {object_id} was partially deleted and is marked corrupted", file=sys.stderr)
        return 1
    print(f"deleted {object_id}")
    return 0


async def _list(stack: StorageStack) -> int:
    entries = await stack.catalog.list_entries()
    if not entries:
        print("Catalog is empty")
        return 0
    for entry in entries:
        flag = " CORRUPTED" if entry.corrupted else ""
        print(
            f"{entry.object_id}\t{entry.file_name}\t{format_size(entry.size_bytes)}\t"
            f"{len(entry.message_ids)} messages{flag}"
        )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Chunked file storage on a messaging channel")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    upload_parser = subparsers.add_parser("upload", help="Upload a local file")
    upload_parser.add_argument("file", type=Path, help="File to upload")
    upload_parser.add_argument("--object-id", help="Object ID to store it under (default: random)")

    download_parser = subparsers.add_parser("download", help="Download a stored object")
    download_parser.add_argument("object_id", help="Object ID to download")
    download_parser.add_argument("-o", "--output", type=Path, help="Output path (default: original file name)")

    delete_parser = subparsers.add_parser("delete", help="Delete a stored object")
    delete_parser.add_argument("object_id", help="Object ID to delete")

    subparsers.add_parser("ls", help="List catalog entries")
    return parser


async def run(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 2

    config = get_config()
    setup_loki_logging(config, "storage-cli")

    async with storage_lifespan(config) as stack:
        if args.command == "upload":
            return await _upload(stack, args.file, args.object_id)
        if args.command == "download":
            return await _download(stack, args.object_id, args.output)
        if args.command == "delete":
            return await _delete(stack, args.object_id)
        return await _list(stack)


def main() -> None:
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
