"""Thin CLI entry point: loads an edit plan and calls the engine."""

import argparse
import json
import logging
import sys
from pathlib import Path

from cutline.config import RenderConfig, load_config
from cutline.engine import render
from cutline.errors import EngineError, RenderError
from cutline.plan import load_plan


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="cutline",
        description="cutline: render non-destructive video edit plans with ffmpeg.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command")

    rend = sub.add_parser("render", help="Render an edit plan")
    rend.add_argument("plan", type=Path, help="Path to a JSON edit plan")
    rend.add_argument("--output-dir", "-o", type=Path, help="Directory for the rendered file")
    rend.add_argument("--config", "-c", type=Path, help="Path to a JSON render config")
    rend.add_argument("--json", action="store_true", help="Print the result as JSON")

    serve = sub.add_parser("serve", help="Launch the render API")
    serve.add_argument("--port", type=int, default=4000, help="Port to listen on")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")
    serve.add_argument("--config", "-c", type=Path, help="Path to a JSON render config")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    config = load_config(args.config) if args.config else RenderConfig()

    if args.command == "serve":
        from cutline.web import create_app
        app = create_app(config=config)
        print(f"cutline render API: http://{args.host}:{args.port}")
        app.run(host=args.host, port=args.port, debug=False, threaded=True)
        return

    try:
        plan = load_plan(args.plan)
    except (OSError, ValueError) as e:
        print(f"Error: could not load plan: {e}", file=sys.stderr)
        sys.exit(1)

    def on_progress(stage: str, percent: int) -> None:
        print(f"  [{percent:3d}%] {stage}")

    try:
        result = render(plan, config=config, output_dir=args.output_dir, on_progress=on_progress)
    except RenderError as e:
        print(f"Error ({e.stage}): {e.message}", file=sys.stderr)
        if isinstance(e, EngineError) and e.diagnostics:
            print(e.diagnostics, file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
        return

    print()
    print(f"Done! Output: {result.output_path}")
    print(f"  Segments kept: {len(result.segments)}")
    print(f"  Transcoded: {'yes' if result.transcoded else 'no'}")
    if result.warning:
        print(f"  Warning: {result.warning}")
