"""Local deterministic runner used by integration tests and demos.

Invoked as ``python -m comment_responder.review.backend.echo_agent [options]
<payload.json>``; it reads the task payload and answers with the reply in the
requested output shape.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Emit a reply for the payload and exit with the requested code."""

    parser = argparse.ArgumentParser()
    parser.add_argument("payload_path")
    parser.add_argument("--reply", default=None)
    parser.add_argument(
        "--format",
        choices=["json", "jsonl", "codex", "plain", "result-file", "stderr-json"],
        default="json",
    )
    parser.add_argument("--interleave", type=int, default=0)
    parser.add_argument("--noise", action="store_true")
    parser.add_argument("--sleep-before", type=float, default=0.0)
    parser.add_argument("--sleep-after", type=float, default=0.0)
    parser.add_argument("--exit-code", type=int, default=0)
    args = parser.parse_args(argv)

    payload = json.loads(Path(args.payload_path).read_text("utf-8"))
    reply = args.reply if args.reply is not None else f"Echo: {payload.get('comment_text', '')}"

    for index in range(args.interleave):
        _emit(sys.stdout, f"progress stdout {index}")
        _emit(sys.stderr, f"progress stderr {index}")
    if args.noise:
        _emit(sys.stderr, "WARN state db missing rollout path for thread 42")

    if args.sleep_before > 0:
        time.sleep(args.sleep_before)

    if args.format == "json":
        _emit(sys.stdout, json.dumps({"final_reply_markdown": reply}, ensure_ascii=False))
    elif args.format == "jsonl":
        _emit(sys.stdout, json.dumps({"type": "thinking"}))
        _emit(sys.stdout, json.dumps({"final_reply_markdown": reply}, ensure_ascii=False))
    elif args.format == "codex":
        item = {
            "type": "item.completed",
            "item": {
                "id": "item_1",
                "type": "agent_message",
                "text": json.dumps({"final_reply_markdown": reply}, ensure_ascii=False),
            },
        }
        _emit(sys.stdout, json.dumps(item, ensure_ascii=False))
        _emit(sys.stdout, json.dumps({"type": "turn.completed", "usage": {"output_tokens": 1}}))
    elif args.format == "stderr-json":
        _emit(sys.stderr, json.dumps({"final_reply_markdown": reply}, ensure_ascii=False))
    elif args.format == "result-file":
        result_path = Path(os.environ["COMMENT_AI_RESULT_PATH"])
        result_path.parent.mkdir(parents=True, exist_ok=True)
        result_path.write_text(f"{reply}\n", "utf-8")
        _emit(sys.stdout, "result written")
    else:
        _emit(sys.stdout, reply)

    if args.sleep_after > 0:
        time.sleep(args.sleep_after)
    return args.exit_code


def _emit(handle, line: str) -> None:
    handle.write(f"{line}\n")
    handle.flush()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
