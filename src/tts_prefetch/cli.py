"""
Command-Line Interface for tts-prefetch.

Offline tools for inspecting how content will be prefetched, plus the
HTTP server.

Usage Examples:
    # How a long text is segmented
    tts-prefetch split --id intro.1.1.1 --text "A very long text..." --max-chars 200

    # Segment text from a file, JSON output
    tts-prefetch split --id intro.1.1.1 --file dialogue.txt --json

    # Order the default sequencer produces, resuming after 1.2.1
    tts-prefetch order 1.1.1 1.2.1 1.2.2 1.3.1 --after 1.2.1

    # Run the API
    tts-prefetch serve --host 0.0.0.0 --port 8000

Environment Variables:
    TTS_PREFETCH_SETTINGS: Settings file (default config/settings.yaml)
    TTS_PREFETCH_LOG_LEVEL: 1..4 or MINIMAL/NORMAL/VERBOSE/DEBUG
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import List, Optional

from tts_prefetch.core.config import Defaults
from tts_prefetch.core.errors import PrefetchError
from tts_prefetch.core.logging import configure_logging, get_logger, info
from tts_prefetch.tts.accessibility import AccessibilitySettings
from tts_prefetch.tts.ids import apply_accessibility_markers, has_accessibility_markers, validate_identity
from tts_prefetch.tts.request import PrefetchRequest
from tts_prefetch.tts.segmenter import remove_formatting, split
from tts_prefetch.tts.sequencer import PriorityIdSequencer


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="tts-prefetch", description="tts-prefetch CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    p_split = sub.add_parser("split", help="Show how a text is segmented")
    p_split.add_argument("--id", required=True, help="Content ID of the text")
    source = p_split.add_mutually_exclusive_group(required=True)
    source.add_argument("--text", help="Text to segment")
    source.add_argument("--file", help="Read the text from a file")
    p_split.add_argument("--max-chars", type=int, default=Defaults.SEGMENTER_MAX_CHARS,
                         help="Longest chunk in characters")
    p_split.add_argument("--json", action="store_true", help="Print JSON")

    p_order = sub.add_parser("order", help="Show the prefetch order for a set of IDs")
    p_order.add_argument("ids", nargs="+", help="Content IDs (markers optional)")
    p_order.add_argument("--speed", type=int, default=Defaults.ACCESSIBILITY_SPEED,
                         help="Current speech speed")
    gender = p_order.add_mutually_exclusive_group()
    gender.add_argument("--male", dest="is_male", action="store_true", default=True)
    gender.add_argument("--female", dest="is_male", action="store_false")
    p_order.add_argument("--after", help="Last content the consumer reached")
    p_order.add_argument("--json", action="store_true", help="Print JSON")

    p_serve = sub.add_parser("serve", help="Run the HTTP API")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)

    return parser.parse_args(argv)


def _cmd_split(args: argparse.Namespace) -> int:
    validate_identity(args.id)
    text = args.text if args.text is not None else Path(args.file).read_text(encoding="utf-8")
    result = split(args.id, remove_formatting(text).strip(), max_chars=args.max_chars)

    if args.json:
        payload = {
            "ok": True,
            "id": args.id,
            "max_chars": args.max_chars,
            "chunks": [{"id": c.chunk_id, "chars": len(c.text), "text": c.text} for c in result.chunks],
            "dropped": result.dropped,
        }
        print(json.dumps(payload, ensure_ascii=False))
        return 0

    for c in result.chunks:
        print(f"{c.chunk_id}\t{len(c.text)}\t{c.text}")
    for fragment in result.dropped:
        print(f"DROPPED\t{len(fragment)}\t{fragment}")
    return 0


def _cmd_order(args: argparse.Namespace) -> int:
    settings = AccessibilitySettings(speed=args.speed, is_male=args.is_male)
    sequencer = PriorityIdSequencer(lambda: settings)
    for clip_id in args.ids:
        marked = clip_id if has_accessibility_markers(clip_id) else apply_accessibility_markers(clip_id, args.speed)
        sequencer.enqueue(PrefetchRequest(id=marked, text=""))
    if args.after:
        sequencer.notify_interaction(args.after)

    order: List[str] = []
    while True:
        request = sequencer.dequeue_highest_priority()
        if request is None:
            break
        order.append(request.id)
    skipped = sequencer.pending_ids()

    if args.json:
        print(json.dumps({"ok": True, "order": order, "skipped": skipped}, ensure_ascii=False))
        return 0

    for n, clip_id in enumerate(order, start=1):
        print(f"{n:>3}  {clip_id}")
    for clip_id in skipped:
        print(f"  -  {clip_id} (other settings)")
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("tts_prefetch.main:app", host=args.host, port=args.port)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Returns:
        Exit code (0 for success, 2 for malformed input).
    """
    args = _parse_args(argv)

    configure_logging()
    log = get_logger("tts-prefetch.cli")
    info(log, "cli_command", command=args.command)

    try:
        if args.command == "split":
            return _cmd_split(args)
        if args.command == "order":
            return _cmd_order(args)
        return _cmd_serve(args)
    except PrefetchError as e:
        if getattr(args, "json", False):
            print(json.dumps(e.to_dict(), ensure_ascii=False))
        else:
            print(f"error: {e.message}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
