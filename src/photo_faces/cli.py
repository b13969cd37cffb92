#!/usr/bin/env python3
"""Command line interface for photo face recognition.

Usage:
    photo-faces recognize photo.jpg
    photo-faces batch ./holiday --recursive
    photo-faces people list
    photo-faces people add "Alice"
    photo-faces people rename <person_id> "Alice Smith"
    photo-faces people delete <person_id>
    photo-faces assign <person_id> photo.jpg --box 120 80 64 64
    photo-faces unassign <person_id> <face_id>
    photo-faces cache clear
    photo-faces serve --port 8000

Examples:
    # Recognize with a stricter match threshold
    photo-faces recognize photo.jpg --threshold 0.75

    # Use another data directory and config file
    photo-faces --config my.yaml --data-dir ~/faces people list
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Iterable, List, Optional

from .constants import SUPPORTED_EXTENSIONS, AppConfig
from .exceptions import FaceRecognitionError
from .service import FaceRecognitionService

logger = logging.getLogger(__name__)


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


def _load_config(args) -> AppConfig:
    config = AppConfig.load(Path(args.config) if args.config else None)
    if args.data_dir:
        config.storage.data_dir = Path(args.data_dir)
    return config


def _build_service(args, background: bool = False) -> FaceRecognitionService:
    config = _load_config(args)
    return FaceRecognitionService.from_config(config, auto_start_processing=background)


def collect_images(paths: Iterable[str], recursive: bool = False) -> List[str]:
    """Expand directories into the supported image files they contain."""
    files: List[str] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            pattern = "**/*" if recursive else "*"
            files.extend(
                str(p) for p in sorted(path.glob(pattern))
                if p.is_file() and p.suffix.lower() in SUPPORTED_EXTENSIONS
            )
        else:
            files.append(str(path))
    return files


def _summarize(result) -> dict:
    return result.to_dict(include_embeddings=False)


def cmd_recognize(args, service: FaceRecognitionService) -> int:
    """Recognize faces in a single image."""
    if args.threshold is not None:
        service.configure(match_confidence_threshold=args.threshold)

    result = service.recognize_one(args.image)
    _print_json(_summarize(result))

    if not result.succeeded:
        logger.error(f"Recognition failed: {result.error}")
        return 1

    for face in result.faces:
        who = face.person_name or "unknown"
        conf = f" ({face.match_confidence:.0%})" if face.match_confidence is not None else ""
        logger.info(f"  face {face.id[:8]}: {who}{conf}")
    return 0


def cmd_batch(args, service: FaceRecognitionService) -> int:
    """Recognize faces in many images with progress reporting."""
    if args.threshold is not None:
        service.configure(match_confidence_threshold=args.threshold)

    files = collect_images(args.paths, recursive=args.recursive)
    if not files:
        logger.warning("No images to process")
        return 0

    def on_progress(processed: int, total: int):
        logger.info(f"[{processed}/{total}] {Path(files[processed - 1]).name}")

    results = service.recognize_batch(files, on_progress=on_progress)
    _print_json([_summarize(r) for r in results])

    failed = sum(1 for r in results if not r.succeeded)
    logger.info(f"Processed {len(results)} images, {failed} failed")
    return 1 if failed else 0


def cmd_people(args, service: FaceRecognitionService) -> int:
    """Manage people."""
    if args.people_command == "list":
        people = service.list_people()
        _print_json([p.to_dict(include_embeddings=False) for p in people])
        logger.info(f"{len(people)} people")
        return 0

    if args.people_command == "add":
        person = service.create_or_update_person(args.name)
        _print_json(person.to_dict(include_embeddings=False))
        return 0

    if args.people_command == "rename":
        person = service.rename_person(args.person_id, args.name)
        _print_json(person.to_dict(include_embeddings=False))
        return 0

    if args.people_command == "delete":
        if not service.delete_person(args.person_id):
            logger.error(f"Person not found: {args.person_id}")
            return 1
        logger.info(f"Deleted person {args.person_id}")
        return 0

    return 1


def cmd_assign(args, service: FaceRecognitionService) -> int:
    """Add a face from an image to a person."""
    person = service.assign_face(args.person_id, args.image, args.box)
    _print_json(person.to_dict(include_embeddings=False))
    return 0


def cmd_unassign(args, service: FaceRecognitionService) -> int:
    """Remove a face from a person."""
    person = service.unassign_face(args.person_id, args.face_id)
    _print_json(person.to_dict(include_embeddings=False))
    return 0


def cmd_cache(args, service: FaceRecognitionService) -> int:
    """Manage the detection cache."""
    removed = service.clear_cache()
    logger.info(f"Removed {removed} cached results")
    return 0


def cmd_serve(args, service: FaceRecognitionService) -> int:
    """Start the HTTP API server."""
    import uvicorn

    from .api import create_app

    config = _load_config(args)
    host = args.host or config.api.host
    port = args.port or config.api.port

    service.processing_queue.start()
    app = create_app(service, cors_origins=config.api.cors_origins)

    logger.info("Starting Photo Face Recognition API")
    logger.info(f"  URL: http://{host}:{port}")
    logger.info(f"  Docs: http://{host}:{port}/docs")

    uvicorn.run(app, host=host, port=port, log_level="warning")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="photo-faces",
        description="Recognize known people in photo libraries",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  photo-faces recognize photo.jpg
  photo-faces batch ./photos --recursive
  photo-faces people add "Alice"
  photo-faces assign <person_id> photo.jpg --box 120 80 64 64
  photo-faces serve --port 8000
        """
    )
    parser.add_argument("--config", "-c", help="YAML config file (default: config/config.yaml)")
    parser.add_argument("--data-dir", "-d", help="Override storage data directory")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    recognize_parser = subparsers.add_parser("recognize", help="Recognize faces in an image")
    recognize_parser.add_argument("image", help="Image file")
    recognize_parser.add_argument("--threshold", "-t", type=float, help="Match confidence threshold")

    batch_parser = subparsers.add_parser("batch", help="Recognize faces in many images")
    batch_parser.add_argument("paths", nargs="+", help="Image files or directories")
    batch_parser.add_argument("--recursive", "-r", action="store_true", help="Descend into subdirectories")
    batch_parser.add_argument("--threshold", "-t", type=float, help="Match confidence threshold")

    people_parser = subparsers.add_parser("people", help="Manage people")
    people_sub = people_parser.add_subparsers(dest="people_command", required=True)
    people_sub.add_parser("list", help="List people")
    add_parser = people_sub.add_parser("add", help="Create a person (or update by name)")
    add_parser.add_argument("name")
    rename_parser = people_sub.add_parser("rename", help="Rename a person")
    rename_parser.add_argument("person_id")
    rename_parser.add_argument("name")
    delete_parser = people_sub.add_parser("delete", help="Delete a person and their samples")
    delete_parser.add_argument("person_id")

    assign_parser = subparsers.add_parser("assign", help="Assign a face in an image to a person")
    assign_parser.add_argument("person_id")
    assign_parser.add_argument("image")
    assign_parser.add_argument("--box", "-b", nargs=4, type=float, required=True,
                               metavar=("X", "Y", "W", "H"), help="Face bounding box")

    unassign_parser = subparsers.add_parser("unassign", help="Remove a face from a person")
    unassign_parser.add_argument("person_id")
    unassign_parser.add_argument("face_id")

    cache_parser = subparsers.add_parser("cache", help="Manage the detection cache")
    cache_sub = cache_parser.add_subparsers(dest="cache_command", required=True)
    cache_sub.add_parser("clear", help="Remove all cached detection results")

    serve_parser = subparsers.add_parser("serve", help="Start API server")
    serve_parser.add_argument("--host", help="Host to bind to")
    serve_parser.add_argument("--port", "-p", type=int, help="Port to bind to")

    return parser


COMMANDS = {
    "recognize": cmd_recognize,
    "batch": cmd_batch,
    "people": cmd_people,
    "assign": cmd_assign,
    "unassign": cmd_unassign,
    "cache": cmd_cache,
    "serve": cmd_serve,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
    )

    if args.command is None:
        parser.print_help()
        return 0

    handler = COMMANDS[args.command]
    service = _build_service(args)
    try:
        return handler(args, service)
    except FaceRecognitionError as e:
        logger.error(str(e))
        return 1
    except ValueError as e:
        logger.error(f"Invalid input: {e}")
        return 2
    finally:
        service.shutdown()


if __name__ == "__main__":
    sys.exit(main())
