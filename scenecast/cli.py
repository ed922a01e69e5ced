"""
SceneCast CLI

Commands:
    describe FILE    Describe scene descriptors from a JSON/YAML file ("-" = stdin)
    clip FILE        Describe a recorded video clip as a scenic view
    watch SOURCE     Live commentary from a camera index, file or stream URL
    serve            Run the HTTP API
    config           Show the effective configuration

Exit codes: 0 ok, 1 error, 2 invalid input, 130 interrupted.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import yaml

from .exceptions import SceneCastError, ValidationError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INVALID = 2
EXIT_INTERRUPTED = 130


# ============================================================================
# Input / output helpers
# ============================================================================

def load_scene_payloads(path: str) -> List[dict]:
    """Read one scene or a list of scenes from JSON or YAML."""
    try:
        if path == "-":
            text = sys.stdin.read()
        else:
            text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ValidationError(f"cannot read {path}: {e}") from e

    try:
        if path.endswith((".yaml", ".yml")) or path == "-":
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ValidationError(f"cannot parse {path}: {e}") from e

    if isinstance(data, dict):
        return [data]
    if isinstance(data, list) and all(isinstance(item, dict) for item in data):
        return data
    raise ValidationError(f"{path} must contain a scene object or a list of scene objects")


def render_output(records: List[dict], fmt: str) -> str:
    if fmt == "json":
        return json.dumps(records if len(records) != 1 else records[0], indent=2)
    if fmt == "yaml":
        return yaml.safe_dump(records if len(records) != 1 else records[0], sort_keys=False).rstrip()
    return "\n".join(r["description"] for r in records)


def _output_format(args) -> str:
    if getattr(args, "json", False):
        return "json"
    if getattr(args, "yaml", False):
        return "yaml"
    return "text"


def _settings(args):
    from .config import Config, Settings, config

    if getattr(args, "env_file", None):
        return Settings.from_env(Config(Path(args.env_file)))
    return Settings.from_env(config)


# ============================================================================
# Handlers
# ============================================================================

def handle_describe(args) -> int:
    from .description_queue import DescriptionQueue, build_queue
    from .scene import parse_scene

    scenes = [parse_scene(p) for p in load_scene_payloads(args.file)]
    settings = _settings(args)

    async def describe_all():
        if args.offline:
            queue = DescriptionQueue(None, settings)
        else:
            queue = build_queue(settings)
        results = await asyncio.gather(*(queue.enqueue(scene) for scene in scenes))
        await queue.close()
        return results

    descriptions = asyncio.run(describe_all())
    records = [
        {"scene": scene.to_dict(), "description": text}
        for scene, text in zip(scenes, descriptions)
    ]
    print(render_output(records, _output_format(args)))
    return EXIT_OK


def handle_clip(args) -> int:
    from .frames import read_clip_frames
    from .pipeline import build_pipeline

    settings = _settings(args)
    try:
        frames = read_clip_frames(args.file)
    except IOError as e:
        raise SceneCastError(str(e)) from e

    async def describe():
        pipeline = build_pipeline(settings, detector=_NullDetector())
        text = await pipeline.describe_clip(frames)
        await pipeline.queue.close()
        return text

    text = asyncio.run(describe())
    print(render_output([{"source": args.file, "description": text}], _output_format(args)))
    return EXIT_OK


class _NullDetector:
    """Clips are described as scenic views; no detection needed."""

    def detect(self, frame):
        return []


def handle_watch(args) -> int:
    from rich.console import Console

    from .frames import aiter_video_frames
    from .pipeline import build_pipeline

    settings = _settings(args)
    out = Console()
    fmt = _output_format(args)

    def on_commentary(text: str):
        if fmt == "text":
            out.print(f"[bold cyan]>[/bold cyan] {text}")
        else:
            print(render_output([{"description": text}], fmt), flush=True)

    async def watch():
        pipeline = build_pipeline(settings, on_commentary=on_commentary)
        stop = asyncio.Event()
        if args.duration:
            asyncio.get_running_loop().call_later(args.duration, stop.set)
        try:
            count = await pipeline.run(aiter_video_frames(args.source, fps=args.fps), stop_event=stop)
        finally:
            await pipeline.queue.close()
        logger.info(f"Analyzed {count} frames from {args.source}")

    try:
        asyncio.run(watch())
    except IOError as e:
        raise SceneCastError(str(e)) from e
    return EXIT_OK


def handle_serve(args) -> int:
    from .web import run_server

    run_server(_settings(args), host=args.host, port=args.port)
    return EXIT_OK


def handle_config(args) -> int:
    from .config import Config, config
    from .diagnostics import print_active_configuration

    cfg = Config(Path(args.env_file)) if args.env_file else config
    if _output_format(args) == "text":
        print_active_configuration(cfg)
        return EXIT_OK

    from .diagnostics import mask_value
    values = {key: mask_value(key, value) if value else "" for key, value in cfg.to_dict().items()}
    print(render_output([values], _output_format(args)))
    return EXIT_OK


HANDLERS = {
    "describe": handle_describe,
    "clip": handle_clip,
    "watch": handle_watch,
    "serve": handle_serve,
    "config": handle_config,
}


# ============================================================================
# Parser
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scenecast",
        description="SceneCast - rate-limited natural-language commentary for video scenes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Describe a scene file (template only, no API calls)
  scenecast describe scene.json --offline

  # Live commentary from the default camera for one minute
  scenecast watch 0 --duration 60

  # Describe an uploaded clip
  scenecast clip holiday.mp4 --json

  # HTTP API
  scenecast serve --port 8080
        """,
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--quiet", "-q", action="store_true", help="Suppress error output")
    parser.add_argument("--env-file", help="Read configuration from this .env file")

    # Options accepted after the subcommand as well
    common_parser = argparse.ArgumentParser(add_help=False)
    common_parser.add_argument(
        "--quiet", "-q", action="store_true", default=argparse.SUPPRESS, help="Suppress error output"
    )

    # Parent parser for common output format options
    format_parser = argparse.ArgumentParser(add_help=False, parents=[common_parser])
    format_parser.add_argument("--yaml", "-Y", action="store_true", help="Output as YAML")
    format_parser.add_argument("--json", "-J", action="store_true", help="Output as JSON")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    describe_parser = subparsers.add_parser("describe", help="Describe scenes from a file", parents=[format_parser])
    describe_parser.add_argument("file", help="JSON or YAML scene file, '-' for stdin")
    describe_parser.add_argument("--offline", action="store_true", help="Template descriptions only")

    clip_parser = subparsers.add_parser("clip", help="Describe a recorded video clip", parents=[format_parser])
    clip_parser.add_argument("file", help="Video file")

    watch_parser = subparsers.add_parser("watch", help="Live commentary for a video source", parents=[format_parser])
    watch_parser.add_argument("source", help="Camera index, video file or stream URL")
    watch_parser.add_argument("--fps", type=float, default=0.0, help="Frame rate to read (0 = native)")
    watch_parser.add_argument("--duration", type=float, default=0.0, help="Stop after N seconds (0 = until end)")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API", parents=[common_parser])
    serve_parser.add_argument("--host", default=None, help="Bind address (default: SC_WEB_HOST)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port (default: SC_WEB_PORT)")

    subparsers.add_parser("config", help="Show configuration", parents=[format_parser])

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_ERROR

    from .diagnostics import enable_diagnostics

    try:
        settings = _settings(args)
        enable_diagnostics(
            level="DEBUG" if args.debug else settings.log_level,
            log_file=settings.log_file or None,
        )
        return HANDLERS[args.command](args)

    except ValidationError as e:
        if not args.quiet:
            print(f"Invalid input: {e}", file=sys.stderr)
        return EXIT_INVALID
    except SceneCastError as e:
        if not args.quiet:
            print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        if not args.quiet:
            print("\nInterrupted", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
