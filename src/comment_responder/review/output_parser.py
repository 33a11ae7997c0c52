"""Best-effort recovery of the final reply from untrusted runner output.

Runners are asked to print a JSON object carrying ``final_reply_markdown``,
but real agents wrap it in streaming events, emit JSON-Lines, double-encode
it inside string fields or print typographic quotes. Extraction walks every
JSON value it can parse and falls back to a marker scan over the raw text.
When several candidates exist the last non-empty one wins, since later events
in a stream supersede earlier partial ones.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterator
from dataclasses import dataclass

from comment_responder.review.errors import ParseFailureError
from comment_responder.review.models import ChunkStream

FINAL_REPLY_FIELD = "final_reply_markdown"
PARSER_VERSION = "v1"

_FIELD_MARKER = f'"{FINAL_REPLY_FIELD}"'
_SMART_QUOTES = str.maketrans({"“": '"', "”": '"', "‘": "'", "’": "'"})
_CODEX_EVENT = re.compile(r'"type"\s*:\s*"(?:turn|item)\.completed"')
_JSON_STARTS = ("{", "[", '"')
_DECODER = json.JSONDecoder()
_MISSING = object()


@dataclass(slots=True)
class OutputDiagnostics:
    """Line and event counters reported when no reply could be extracted."""

    line_count: int = 0
    json_line_count: int = 0
    item_completed_count: int = 0
    agent_message_item_count: int = 0
    turn_completed_count: int = 0
    final_reply_candidate_count: int = 0

    def summary(self) -> str:
        return (
            f"lines={self.line_count}, json_lines={self.json_line_count}, "
            f"item_completed={self.item_completed_count}, "
            f"agent_message_items={self.agent_message_item_count}, "
            f"turn_completed={self.turn_completed_count}, "
            f"final_reply_candidates={self.final_reply_candidate_count}"
        )


def extract_reply(raw: str) -> str:
    """Return the last non-empty final reply found in `raw`.

    Raises:
        ParseFailureError: no strategy produced a candidate; the message
            carries line and event counts for troubleshooting.
    """

    text = raw.strip()
    if not text:
        raise ParseFailureError(
            "runner returned empty output",
            diagnostics=OutputDiagnostics(line_count=1).summary(),
        )

    reply = _extract_structured(text)
    if reply is not None:
        return reply

    normalized = text.translate(_SMART_QUOTES)
    if normalized != text:
        reply = _extract_structured(normalized)
        if reply is not None:
            return reply

    reply = scan_marker(normalized)
    if reply is not None:
        return reply

    unescaped = _unescape(normalized)
    if unescaped != normalized:
        reply = _extract_structured(unescaped) or scan_marker(unescaped)
        if reply is not None:
            return reply

    diagnostics = inspect_output(normalized).summary()
    if looks_like_codex_stream(normalized):
        message = (
            f"codex stream completed but no `{FINAL_REPLY_FIELD}` payload was extracted "
            f"({diagnostics})"
        )
    else:
        message = f"runner output missing `{FINAL_REPLY_FIELD}` payload ({diagnostics})"
    raise ParseFailureError(message, diagnostics=diagnostics)


def extract_reply_with_fallback(stdout: str, stderr: str) -> tuple[str, ChunkStream]:
    """Prefer the reply on stdout; fall back to stderr when stdout has none."""

    try:
        return extract_reply(stdout), ChunkStream.STDOUT
    except ParseFailureError as stdout_error:
        try:
            return extract_reply(stderr), ChunkStream.STDERR
        except ParseFailureError as stderr_error:
            raise ParseFailureError(
                f"stdout_parse_error={stdout_error}; stderr_parse_error={stderr_error}",
                diagnostics=f"stdout: {stdout_error.diagnostics}; "
                f"stderr: {stderr_error.diagnostics}",
            ) from stderr_error


def collect_candidates(value: object, output: list[str]) -> None:
    """Append every final-reply value found anywhere inside a parsed JSON value."""

    if isinstance(value, dict):
        field = value.get(FINAL_REPLY_FIELD)
        if isinstance(field, str) and field.strip():
            output.append(field.strip())
        for nested in value.values():
            collect_candidates(nested, output)
    elif isinstance(value, list):
        for item in value:
            collect_candidates(item, output)
    elif isinstance(value, str):
        parsed = _try_load(value)
        if parsed is not _MISSING:
            collect_candidates(parsed, output)
            return
        found = scan_marker(value)
        if found is not None:
            output.append(found)
            return
        found = scan_marker(_unescape(value))
        if found is not None:
            output.append(found)


def scan_marker(raw: str) -> str | None:
    """Find ``"final_reply_markdown": "<json string>"`` in free text, last match wins."""

    latest: str | None = None
    cursor = 0
    while True:
        index = raw.find(_FIELD_MARKER, cursor)
        if index == -1:
            return latest
        position = _skip_whitespace(raw, index + len(_FIELD_MARKER))
        cursor = index + len(_FIELD_MARKER)
        if position >= len(raw) or raw[position] != ":":
            continue
        position = _skip_whitespace(raw, position + 1)
        if position >= len(raw) or raw[position] != '"':
            continue
        try:
            value, end = _DECODER.raw_decode(raw, position)
        except json.JSONDecodeError:
            continue
        if isinstance(value, str) and value.strip():
            latest = value.strip()
        cursor = end


def inspect_output(raw: str) -> OutputDiagnostics:
    diagnostics = OutputDiagnostics()
    for line in raw.splitlines():
        diagnostics.line_count += 1
        stripped = line.strip()
        if not stripped:
            continue
        value = _try_load(stripped)
        if value is _MISSING:
            continue
        diagnostics.json_line_count += 1
        if isinstance(value, dict):
            event_type = value.get("type")
            if event_type == "item.completed":
                diagnostics.item_completed_count += 1
                item = value.get("item")
                if isinstance(item, dict) and item.get("type") == "agent_message":
                    diagnostics.agent_message_item_count += 1
            elif event_type == "turn.completed":
                diagnostics.turn_completed_count += 1
        candidates: list[str] = []
        collect_candidates(value, candidates)
        diagnostics.final_reply_candidate_count += len(candidates)
    diagnostics.line_count = max(1, diagnostics.line_count)
    return diagnostics


def looks_like_codex_stream(raw: str) -> bool:
    return _CODEX_EVENT.search(raw) is not None


def _extract_structured(text: str) -> str | None:
    # Candidates from all three passes are pooled in order and the last one wins,
    # so a non-JSON line that stops the concatenated pass cannot hide later replies.
    candidates: list[str] = []
    for values in (_load_whole(text), _iter_concatenated(text), _iter_json_lines(text)):
        for value in values:
            collect_candidates(value, candidates)
    return candidates[-1] if candidates else None


def _load_whole(text: str) -> Iterator[object]:
    value = _try_load(text)
    if value is not _MISSING:
        yield value


def _iter_concatenated(text: str) -> Iterator[object]:
    """Yield back-to-back JSON values until the first unparsable position."""

    position = _skip_whitespace(text, 0)
    while position < len(text):
        try:
            value, position = _DECODER.raw_decode(text, position)
        except json.JSONDecodeError:
            return
        yield value
        position = _skip_whitespace(text, position)


def _iter_json_lines(text: str) -> Iterator[object]:
    for line in text.splitlines():
        value = _try_load(line.strip())
        if value is not _MISSING:
            yield value


def _try_load(raw: str) -> object:
    candidate = raw.strip()
    if not candidate.startswith(_JSON_STARTS):
        return _MISSING
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        return _MISSING


def _unescape(raw: str) -> str:
    return raw.replace('\\"', '"').replace("\\\\", "\\")


def _skip_whitespace(raw: str, position: int) -> int:
    while position < len(raw) and raw[position].isspace():
        position += 1
    return position
