# src/eyespy/main.py
from __future__ import annotations

import sys
import time
from argparse import ArgumentParser, Namespace
from collections.abc import Sequence

from loguru import logger

from .api.client import EyeSpyClient
from .api.schemas import FaceRecord
from .common.config import ClientConfig
from .common.exceptions import EyeSpyError
from .formatting import format_timestamp, render_segments
from .realtime.connection import RealtimeConnection
from .reconciliation.sync import CollectionSync
from .views.detail import NO_MATCHES_MESSAGE, NO_PROFILE_MESSAGE, FaceDetailView
from .views.upload import UploadView


def configure_logging(level: str) -> None:
    logger.remove()
    _ = logger.add(sys.stderr, level=level.upper(), format="{level}: {message}")


def build_parser() -> ArgumentParser:
    parser = ClientConfig.build_parser()
    commands = parser.add_subparsers(dest="command", required=True)

    list_cmd = commands.add_parser("list", help="List uploaded faces")
    _ = list_cmd.add_argument("--offset", type=int, default=0)

    show_cmd = commands.add_parser("show", help="Show the result bundle of a face")
    _ = show_cmd.add_argument("face_id")
    _ = show_cmd.add_argument("--follow", action="store_true", help="Stream processing logs")

    upload_cmd = commands.add_parser("upload", help="Upload a face image")
    _ = upload_cmd.add_argument("image")

    delete_cmd = commands.add_parser("delete", help="Delete a face and its related data")
    _ = delete_cmd.add_argument("face_id")

    watch_cmd = commands.add_parser("watch", help="Watch the face collection live")
    _ = watch_cmd.add_argument("--duration", type=float, default=None, help="Seconds to watch")
    return parser


def _face_line(face: FaceRecord) -> str:
    status = face.status or "unknown"
    if face.locked:
        status += " (final)"
    if face.deleting:
        status += " (deleting)"
    return f"{face.face_id}  {format_timestamp(face.upload_timestamp)}  {status}"


def cmd_list(client: EyeSpyClient, config: ClientConfig, args: Namespace) -> int:
    page = client.list_faces(limit=config.page_size, offset=args.offset, use_cache=False)
    if not page.faces:
        print("No faces found. Upload a face to get started.")
        return 0
    for face in page.faces:
        print(_face_line(face))
    print(f"-- {len(page.faces)} of {page.total_count} faces")
    return 0


def cmd_show(client: EyeSpyClient, config: ClientConfig, args: Namespace) -> int:
    connection = RealtimeConnection(config) if args.follow else None
    view = FaceDetailView(client, args.face_id, connection=connection)
    if view.load() is None:
        print(view.error, file=sys.stderr)
        return 1

    bundle = view.bundle
    print(view.title)
    print(view.uploaded_label)
    print(f"ID: {bundle.face_info.face_id}")
    if view.processing_banner:
        print(view.processing_banner)

    print("\nIdentity Profile")
    paragraphs = view.bio_paragraphs()
    if paragraphs:
        for paragraph in paragraphs:
            print(render_segments(paragraph, ansi=sys.stdout.isatty()))
            print()
    else:
        print(NO_PROFILE_MESSAGE)

    print("\nTop Matches")
    if not bundle.top_matches:
        print(NO_MATCHES_MESSAGE)
    for match in bundle.top_matches:
        print(f"- {match.source_type or 'web'}: {match.url} ({match.confidence_label})")

    if connection is not None:
        view.start_log_stream()
        try:
            seen = 0
            while True:
                lines = view.log_lines()
                for line in lines[seen:]:
                    print(line)
                seen = len(lines)
                time.sleep(0.5)
        except KeyboardInterrupt:
            pass
        finally:
            view.stop_log_stream()
            connection.close()
    return 0


def cmd_upload(client: EyeSpyClient, config: ClientConfig, args: Namespace) -> int:
    view = UploadView(client)
    view.select(args.image)
    ok, message = view.upload()
    print(message, file=sys.stdout if ok else sys.stderr)
    if ok and view.result and view.result.face_id:
        print(f"face_id: {view.result.face_id}")
    return 0 if ok else 1


def cmd_delete(client: EyeSpyClient, config: ClientConfig, args: Namespace) -> int:
    _ = client.delete_face(args.face_id)
    print(f"Deleted face {args.face_id}")
    return 0


def cmd_watch(client: EyeSpyClient, config: ClientConfig, args: Namespace) -> int:
    connection = RealtimeConnection(config)
    sync = CollectionSync(client, connection=connection, config=config)

    def render(faces: list[FaceRecord]) -> None:
        print(f"\n== {len(faces)} of {sync.collection.total_count} faces ==")
        for face in faces:
            print(_face_line(face))

    sync.add_listener(render)
    deadline = time.monotonic() + args.duration if args.duration else None
    try:
        sync.mount()
        if not config.mqtt_enabled or not connection.wait_connected(
            timeout=config.connect_timeout
        ):
            logger.warning("Real-time channel unavailable, polling for updates")
        while deadline is None or time.monotonic() < deadline:
            time.sleep(0.5)
    except KeyboardInterrupt:
        pass
    finally:
        sync.unmount()
        connection.close()
    return 0


COMMANDS = {
    "list": cmd_list,
    "show": cmd_show,
    "upload": cmd_upload,
    "delete": cmd_delete,
    "watch": cmd_watch,
}


def main(argv: Sequence[str] | None = None) -> int:
    config, args = ClientConfig.from_cli_args(argv, parser=build_parser())
    configure_logging(config.log_level)

    try:
        with EyeSpyClient(config) as client:
            return COMMANDS[args.command](client, config, args)
    except (EyeSpyError, FileNotFoundError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
