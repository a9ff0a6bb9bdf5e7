"""Command line entry point for browsing a bucket as a filesystem."""
from __future__ import annotations

import argparse
import logging
import shutil
import sys
from typing import Sequence, TextIO

from .errors import ObjectStoreError
from .profiles import ProfileStorage
from .settings import SettingsStorage
from .ufs import ObjectUnderFileSystem

COPY_BUFFER_SIZE = 1024 * 1024


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="s3_ufs", description="Use an S3 bucket like a filesystem.")
    parser.add_argument("--profile", required=True, help="name of a saved connection profile")
    parser.add_argument("--verbose", "-v", action="store_true", help="enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    ls = commands.add_parser("ls", help="list a directory")
    ls.add_argument("-R", "--recursive", action="store_true")
    ls.add_argument("uri")

    commands.add_parser("stat", help="show file or directory status").add_argument("uri")
    commands.add_parser("cat", help="write a file to stdout").add_argument("uri")

    put = commands.add_parser("put", help="upload a local file")
    put.add_argument("source")
    put.add_argument("uri")

    commands.add_parser("mkdir", help="create a directory and its parents").add_argument("uri")

    rm = commands.add_parser("rm", help="delete a file or directory")
    rm.add_argument("-r", "--recursive", action="store_true")
    rm.add_argument("uri")

    mv = commands.add_parser("mv", help="rename a file or directory")
    mv.add_argument("source")
    mv.add_argument("destination")

    tag = commands.add_parser("tag", help="set a tag on a file")
    tag.add_argument("uri")
    tag.add_argument("name")
    tag.add_argument("value")

    commands.add_parser("tags", help="show the tags of a file").add_argument("uri")
    return parser


def run(args: argparse.Namespace, ufs: ObjectUnderFileSystem, out: TextIO) -> int:
    command = args.command
    if command == "ls":
        children = ufs.list_status(args.uri, recursive=args.recursive)
        if children is None:
            print(f"{args.uri}: not a directory", file=sys.stderr)
            return 1
        for child in sorted(children, key=lambda status: status.name):
            suffix = "/" if child.is_directory else ""
            print(f"{child.size_bytes:>12}  {child.name}{suffix}", file=out)
    elif command == "stat":
        status = ufs.get_status(args.uri)
        if status is None:
            print(f"{args.uri}: no such file or directory", file=sys.stderr)
            return 1
        kind = "directory" if status.is_directory else "file"
        print(f"{status.path}\t{kind}\t{status.size_bytes}\t{status.etag or '-'}", file=out)
    elif command == "cat":
        with ufs.open(args.uri) as stream:
            shutil.copyfileobj(stream, out.buffer if hasattr(out, "buffer") else out, COPY_BUFFER_SIZE)
    elif command == "put":
        with open(args.source, "rb") as source, ufs.create(args.uri) as sink:
            shutil.copyfileobj(source, sink, COPY_BUFFER_SIZE)
    elif command == "mkdir":
        return 0 if ufs.mkdirs(args.uri) else 1
    elif command == "rm":
        if ufs.is_file(args.uri):
            return 0 if ufs.delete_file(args.uri) else 1
        return 0 if ufs.delete_directory(args.uri, recursive=args.recursive) else 1
    elif command == "mv":
        if ufs.is_file(args.source):
            return 0 if ufs.rename_file(args.source, args.destination) else 1
        return 0 if ufs.rename_directory(args.source, args.destination) else 1
    elif command == "tag":
        ufs.set_object_tag(args.uri, args.name, args.value)
    elif command == "tags":
        tags = ufs.get_object_tags(args.uri)
        if tags is None:
            print(f"{args.uri}: no such file", file=sys.stderr)
            return 1
        for name, value in sorted(tags.items()):
            print(f"{name}={value}", file=out)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        profile = ProfileStorage().get(args.profile)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    settings = SettingsStorage().load()
    uri = getattr(args, "uri", None) or args.source
    try:
        with ObjectUnderFileSystem.create_instance(uri, profile, settings) as ufs:
            return run(args, ufs, sys.stdout)
    except (ObjectStoreError, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
