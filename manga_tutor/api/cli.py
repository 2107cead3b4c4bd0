"""
Terminal client for manga generation and the manga library.

Architectural role:
- Terminal counterpart of the HTTP adapter; shares `build_services()`.
- Owns the caller-side poll loop for the polling variant.
- Persists an in-progress generation as a session snapshot so that an
  interrupted poll can be continued with `resume`.

Commands:
- `generate --question Q --level L [--mode polling|streaming]`
- `resume`: continue the poll of a saved, unexpired snapshot.
- `library list | show ID | delete ID`

Error handling strategy:
- `MangaTutorError` is printed as a one-line message and exits with code 1.
- Keyboard interrupts exit without traceback output; the snapshot is kept.

Side effects:
- Reads/writes the snapshot file at `SESSION_STATE_PATH`.
- Writes progress to stdout.
"""

from dotenv import load_dotenv

load_dotenv()

import argparse
import json
import os
import sys

from manga_tutor.api.services import Services, build_services
from manga_tutor.core.errors import MangaTutorError, NotFoundError
from manga_tutor.core.polling import poll_until_complete
from manga_tutor.core.types import EventType, GenerationRequest, ResolutionStatus, RunHandle
from manga_tutor.logging_config import configure_logging
from manga_tutor.session.snapshot import JsonFileStorage, SessionSnapshot, SnapshotStore
from manga_tutor.workflow.provider_config import GENERATION_MODE, GENERATION_MODES

SESSION_STATE_PATH = os.getenv(
    "SESSION_STATE_PATH",
    os.path.join(os.path.expanduser("~"), ".manga_tutor", "session.json"),
)


def _print_status(attempt, result):
    print(f"[{attempt}] {result.status.value}")


def _print_images(image_urls):
    for index, url in enumerate(image_urls, start=1):
        print(f"  {index:>2}. {url}")


def _finish_poll(services: Services, snapshots: SnapshotStore, snapshot: SessionSnapshot,
                 initial_delay=None) -> int:
    handle = RunHandle(run_id=snapshot.run_id)
    kwargs = {"on_attempt": _print_status}
    if initial_delay is not None:
        kwargs["initial_delay"] = initial_delay

    result = poll_until_complete(services.resolver, handle, **kwargs)

    if result.status is ResolutionStatus.SUCCEEDED:
        snapshot.step = "result"
        snapshot.image_urls = list(result.image_urls)
        snapshot.is_generating = False
        snapshots.save(snapshot)
        print(f"Manga ready ({len(result.image_urls)} panels):")
        _print_images(result.image_urls)
        return 0

    snapshots.clear()
    print(f"Generation ended with status {result.status.value}: {result.message or ''}".rstrip())
    return 1


def _generate_polling(services: Services, snapshots: SnapshotStore, request: GenerationRequest) -> int:
    started = services.initiator.initiate(request)
    if started.degraded:
        print(f"Degraded mode: {started.message}")
    print(f"Run started: {started.handle.run_id}")

    snapshot = snapshots.save(SessionSnapshot(
        question=request.question,
        level=request.level,
        run_id=started.handle.run_id,
        step="generating",
        is_generating=True,
    ))
    return _finish_poll(services, snapshots, snapshot)


def _generate_streaming(services: Services, request: GenerationRequest) -> int:
    exit_code = 1
    for event in services.streaming_resolver.stream(request):
        data = event.data
        if event.type is EventType.PLAN_COMPLETE:
            print(f"Plan: {data.get('total_panels')} panels - {data.get('story_arc')}")
        elif event.type is EventType.PANEL_GENERATING:
            print(data.get("message", "Generating panel..."))
        elif event.type is EventType.PANEL_COMPLETE:
            print(f"  panel {data.get('panel_id')}: {data.get('image_url')}")
        elif event.type is EventType.PANEL_ERROR:
            print(f"  panel {data.get('panel_id')} failed: {data.get('error')}")
        elif event.type is EventType.COMPLETE:
            print(data.get("message", "Complete"))
            exit_code = 0
        elif event.type is EventType.ERROR:
            print(f"Error: {data.get('error')}")
        else:
            print(data.get("message", event.type.value))
    return exit_code


def cmd_generate(args, services: Services, snapshots: SnapshotStore) -> int:
    request = GenerationRequest.from_payload({"question": args.question, "level": args.level})
    if args.mode == "polling":
        return _generate_polling(services, snapshots, request)
    return _generate_streaming(services, request)


def cmd_resume(args, services: Services, snapshots: SnapshotStore) -> int:
    snapshot = snapshots.load()
    if snapshot is None:
        print("No saved session.")
        return 1

    if not snapshot.is_generating or not snapshot.run_id:
        print(f"Saved session ({snapshot.step}): {snapshot.question}")
        _print_images(snapshot.image_urls)
        return 0

    print(f"Resuming run {snapshot.run_id}")
    return _finish_poll(services, snapshots, snapshot, initial_delay=0)


def cmd_library(args, services: Services, snapshots: SnapshotStore) -> int:
    library = services.library

    if args.action == "list":
        entries = library.list_entries()
        for entry in entries:
            print(f"{entry.id}  {entry.created_at}  {entry.title} ({len(entry.image_urls)} panels)")
        print(f"{len(entries)} manga(s)")
        return 0

    if args.action == "show":
        entry = library.get(args.id)
        if entry is None:
            raise NotFoundError(f"library entry {args.id} not found")
        print(json.dumps(entry.to_dict(), ensure_ascii=False, indent=2))
        return 0

    library.delete(args.id)
    print(f"Deleted {args.id}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="manga-tutor", description="Learning manga generator")
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate = subparsers.add_parser("generate", help="Generate a manga for a question")
    generate.add_argument("--question", required=True)
    generate.add_argument("--level", required=True)
    generate.add_argument("--mode", choices=GENERATION_MODES, default=None)
    generate.set_defaults(handler=cmd_generate)

    resume = subparsers.add_parser("resume", help="Resume the saved generation session")
    resume.set_defaults(handler=cmd_resume)

    library = subparsers.add_parser("library", help="Browse the manga library")
    library_actions = library.add_subparsers(dest="action", required=True)
    library_actions.add_parser("list")
    for action in ("show", "delete"):
        library_actions.add_parser(action).add_argument("id")
    library.set_defaults(handler=cmd_library)

    return parser


def main(argv=None, services: Services | None = None, snapshots: SnapshotStore | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(level=os.getenv("LOG_LEVEL", "WARNING").upper())

    if getattr(args, "mode", None) is None and args.command == "generate":
        args.mode = GENERATION_MODE

    services = services or build_services()
    snapshots = snapshots or SnapshotStore(JsonFileStorage(SESSION_STATE_PATH))

    try:
        return args.handler(args, services, snapshots)
    except MangaTutorError as err:
        print(f"Error: {err}")
        return 1
    except (KeyboardInterrupt, EOFError):
        print("\nInterrupted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
