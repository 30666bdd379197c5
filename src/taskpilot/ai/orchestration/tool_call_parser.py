"""Text-level parsing of tool calls embedded in model output.

Three notations are recognised:

* XML elements named after a registered tool, one child element per
  argument (or a JSON object as the body)::

      <read_file>
      <path>src/app.py</path>
      </read_file>

* Delimited markers (``<|tool_calls_begin|>...<|tool_calls_end|>``) that
  some models emit in place of native function calls.
* Bare JSON objects of the form ``{"name": ..., "arguments": {...}}``,
  either fenced as ```json or making up the whole response.

Everything here works on plain strings and dictionaries; building
:class:`~taskpilot.ai.orchestration.types.ToolCall` records is left to
:mod:`taskpilot.ai.orchestration.tool_processor`.
"""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass
from typing import Any, Collection, Iterable

__all__ = [
    "TOOL_MARKER_TRANSLATION",
    "TOOL_CALLS_BLOCK_RE",
    "TOOL_CALL_ENTRY_RE",
    "ParsedBlock",
    "strip_think_tags",
    "detect_malformed_notation",
    "parse_xml_tool_blocks",
    "parse_embedded_tool_calls",
    "parse_json_tool_blocks",
    "normalize_tool_marker_text",
    "normalize_whitespace",
    "parsed_tool_call_id",
    "try_parse_json_block",
    "decode_parameter_value",
]

# Normalizes stylized glyphs inside <|tool ...|> markers emitted by some models.
TOOL_MARKER_TRANSLATION = str.maketrans(
    {
        ord("＜"): "<",
        ord("﹤"): "<",
        ord("〈"): "<",
        ord("＞"): ">",
        ord("﹥"): ">",
        ord("〉"): ">",
        ord("｜"): "|",
        ord("￨"): "|",
        ord("│"): "|",
        ord("▁"): "_",
        ord("\u00a0"): " ",
        ord("\u200b"): " ",
        ord("\u3000"): " ",
        ord("\ufeff"): " ",
    }
)

TOOL_CALLS_BLOCK_RE = re.compile(
    r"<\s*\|?\s*tool[\s_]*calls[\s_]*begin\s*\|?\s*>(?P<body>.*?)<\s*\|?\s*tool[\s_]*calls[\s_]*end\s*\|?\s*>",
    re.IGNORECASE | re.DOTALL,
)

TOOL_CALL_ENTRY_RE = re.compile(
    r"<\s*\|?\s*tool[\s_]*call[\s_]*begin\s*\|?\s*>(?P<name>.*?)<\s*\|?\s*tool[\s_]*sep\s*\|?\s*>(?P<args>.*?)<\s*\|?\s*tool[\s_]*call[\s_]*end\s*\|?\s*>",
    re.IGNORECASE | re.DOTALL,
)

_THINK_RE = re.compile(r"<think>.*?</think>", re.IGNORECASE | re.DOTALL)
_OPEN_THINK_RE = re.compile(r"<think>.*\Z", re.IGNORECASE | re.DOTALL)
_STRAY_THINK_CLOSE_RE = re.compile(r"</think>", re.IGNORECASE)
_LINE_START_TAG_RE = re.compile(r"^[ \t]*<(?P<name>[A-Za-z_][\w\-]*)(?:\s[^<>]*)?(?P<close>/?)>", re.MULTILINE)
_PARAM_RE = re.compile(r"<(?P<key>[A-Za-z_][\w\-]*)>(?P<value>.*?)</(?P=key)\s*>", re.DOTALL)
_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*\n(?P<body>.*?)\n?```", re.IGNORECASE | re.DOTALL)

# Pseudo-syntax some models fall into when they cannot emit native calls.
_PSEUDO_SYNTAX_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\[tool_use:\s*[^\]]*\]", re.IGNORECASE), "'[tool_use: ...]' is not a supported tool call format"),
    (re.compile(r"<function=[^>]*>", re.IGNORECASE), "'<function=...>' is not a supported tool call format"),
    (re.compile(r"<parameter=[^>]*>", re.IGNORECASE), "'<parameter=...>' is not a supported tool call format"),
)

# Incomplete JSON calls; anchored to a line start so inline prose mentioning JSON is left alone.
_MALFORMED_JSON_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r'(?:^|\n)\s*\{\s*"name"\s*:\s*"[^"]+"\s*,?\s*\}'),
        'Incomplete tool call: missing "arguments" field',
    ),
    (
        re.compile(r'(?:^|\n)\s*\{\s*"arguments"\s*:\s*\{[^}]*\}\s*\}'),
        'Incomplete tool call: missing "name" field',
    ),
    (
        re.compile(r'(?:^|\n)\s*\{\s*"name"\s*:\s*"[^"]+"\s*,\s*"arguments"\s*:\s*"[^"]*"\s*\}'),
        'Invalid tool call: "arguments" must be an object, not a string',
    ),
)
JSON_FORMAT_HINT = 'Use {"name": "tool_name", "arguments": {...}} with both fields present.'

# HTML void elements never carry a closing tag.
_VOID_TAGS = frozenset(
    {"br", "hr", "img", "input", "meta", "link", "area", "base", "col", "embed", "source", "track", "wbr"}
)

FORMAT_HINT = "Use the format <tool_name><param>value</param></tool_name> with every tag closed."


@dataclass(slots=True, frozen=True)
class ParsedBlock:
    """A tool invocation located in text.

    ``span`` is the (start, end) slice of the text the block occupied.
    """

    name: str
    arguments: dict[str, Any] | str
    span: tuple[int, int]


# -----------------------------------------------------------------------------
# Pre-processing
# -----------------------------------------------------------------------------


def strip_think_tags(text: str) -> str:
    """Remove ``<think>...</think>`` reasoning blocks.

    A ``<think>`` that is never closed (truncated reasoning) is dropped along
    with everything after it, as are stray ``</think>`` tags.
    """
    if not text:
        return text
    text = _THINK_RE.sub("", text)
    text = _OPEN_THINK_RE.sub("", text)
    return _STRAY_THINK_CLOSE_RE.sub("", text)


def normalize_tool_marker_text(text: str) -> str:
    """Normalize stylized Unicode glyphs to ASCII equivalents for tool parsing."""
    return text.translate(TOOL_MARKER_TRANSLATION)


def normalize_whitespace(text: str) -> str:
    """Tidy prose left behind once tool blocks are removed."""
    if not text:
        return ""
    lines = [line.rstrip() for line in text.splitlines()]
    collapsed = re.sub(r"\n{3,}", "\n\n", "\n".join(lines))
    return collapsed.strip()


# -----------------------------------------------------------------------------
# Malformed detection
# -----------------------------------------------------------------------------


def detect_malformed_notation(text: str, tool_names: Collection[str]) -> str | None:
    """Return a description of the first malformed construct, or None.

    Malformed means pseudo-syntax (``[tool_use: x]``, ``<function=x>``,
    ``<parameter=x>``), an opening tag at the start of a line that is never
    closed, a registered tool block whose body is neither argument
    elements nor a JSON object, or a JSON call missing ``name`` or
    ``arguments`` (or passing ``arguments`` as a plain string).
    """
    if not text:
        return None

    for pattern, message in _PSEUDO_SYNTAX_PATTERNS:
        if pattern.search(text):
            return f"{message}. {FORMAT_HINT}"

    for pattern, message in _MALFORMED_JSON_PATTERNS:
        if pattern.search(text):
            return f"{message}. {JSON_FORMAT_HINT}"

    for match in _LINE_START_TAG_RE.finditer(text):
        name = match.group("name")
        if match.group("close") or name.lower() in _VOID_TAGS:
            continue
        closing = re.compile(rf"</\s*{re.escape(name)}\s*>", re.IGNORECASE)
        if not closing.search(text, match.end()):
            return f"Unclosed <{name}> tag. {FORMAT_HINT}"

    for block in _iter_xml_blocks(text, tool_names):
        body = block.group("body")
        if _split_xml_body(body) is None:
            return f"Could not parse the arguments of <{block.group('name')}>. {FORMAT_HINT}"
    return None


# -----------------------------------------------------------------------------
# XML notation
# -----------------------------------------------------------------------------


def _xml_block_re(tool_names: Collection[str]) -> re.Pattern[str] | None:
    names = sorted({name for name in tool_names if name}, key=len, reverse=True)
    if not names:
        return None
    alternation = "|".join(re.escape(name) for name in names)
    return re.compile(rf"<(?P<name>{alternation})\s*>(?P<body>.*?)</(?P=name)\s*>", re.DOTALL)


def _iter_xml_blocks(text: str, tool_names: Collection[str]) -> Iterable[re.Match[str]]:
    pattern = _xml_block_re(tool_names)
    if pattern is None:
        return ()
    return pattern.finditer(text)


def _split_xml_body(body: str) -> dict[str, Any] | None:
    stripped = body.strip()
    if not stripped:
        return {}
    if stripped.startswith("{"):
        return try_parse_json_block(stripped)
    arguments: dict[str, Any] = {}
    cursor = 0
    for match in _PARAM_RE.finditer(stripped):
        if stripped[cursor:match.start()].strip():
            return None
        arguments[match.group("key")] = decode_parameter_value(match.group("value"))
        cursor = match.end()
    if stripped[cursor:].strip():
        return None
    return arguments


def parse_xml_tool_blocks(text: str, tool_names: Collection[str]) -> list[ParsedBlock]:
    """Locate XML tool blocks for registered tools, in order of appearance."""
    blocks: list[ParsedBlock] = []
    for match in _iter_xml_blocks(text, tool_names):
        arguments = _split_xml_body(match.group("body"))
        if arguments is None:
            continue
        blocks.append(ParsedBlock(name=match.group("name"), arguments=arguments, span=match.span()))
    return blocks


def decode_parameter_value(raw: str) -> Any:
    """Decode an argument element's text, keeping it a string unless it is JSON."""
    value = raw.strip("\r\n")
    candidate = value.strip()
    if not candidate:
        return value
    try:
        return json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return value


# -----------------------------------------------------------------------------
# Delimited markers
# -----------------------------------------------------------------------------


def parse_embedded_tool_calls(text: str) -> list[ParsedBlock]:
    """Parse ``<|tool_calls_begin|>`` marker blocks.

    Spans refer to ``text`` after glyph normalization, which preserves
    string length.
    """
    if not text or not isinstance(text, str):
        return []
    normalized = normalize_tool_marker_text(text)
    blocks: list[ParsedBlock] = []
    for block in TOOL_CALLS_BLOCK_RE.finditer(normalized):
        entries = list(TOOL_CALL_ENTRY_RE.finditer(block.group("body") or ""))
        for position, entry in enumerate(entries):
            name = (entry.group("name") or "").strip().strip("\"' \t\n\r")
            args_raw = (entry.group("args") or "").strip()
            parsed = try_parse_json_block(args_raw)
            # The whole block is removed once, attached to its first entry.
            span = block.span() if position == 0 else (block.end(), block.end())
            blocks.append(ParsedBlock(name=name, arguments=parsed if parsed is not None else args_raw, span=span))
        if not entries:
            blocks.append(ParsedBlock(name="", arguments="", span=block.span()))
    return blocks


# -----------------------------------------------------------------------------
# JSON notation
# -----------------------------------------------------------------------------


def parse_json_tool_blocks(text: str, tool_names: Collection[str]) -> list[ParsedBlock]:
    """Find ``{"name": ..., "arguments": {...}}`` objects naming registered tools."""
    if not text:
        return []
    candidates: list[tuple[str, tuple[int, int]]] = [
        (match.group("body"), match.span()) for match in _JSON_FENCE_RE.finditer(text)
    ]
    if not candidates and text.strip().startswith("{"):
        candidates.append((text, (0, len(text))))

    blocks: list[ParsedBlock] = []
    for body, span in candidates:
        payload = try_parse_json_block(body.strip())
        if payload is None:
            continue
        name = payload.get("name") or payload.get("tool")
        if not isinstance(name, str) or name not in tool_names:
            continue
        arguments = payload.get("arguments", payload.get("parameters", {}))
        # Stringified JSON objects are accepted; any other non-object is not a call.
        if isinstance(arguments, str):
            arguments = try_parse_json_block(arguments)
        if not isinstance(arguments, dict):
            continue
        blocks.append(ParsedBlock(name=name, arguments=arguments, span=span))
    return blocks


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def parsed_tool_call_id(name: str, index: int) -> str:
    """Generate a unique tool call ID for parsed tool calls."""
    return f"parsed_{name}_{index}_{uuid.uuid4().hex[:8]}"


def try_parse_json_block(text: str) -> dict[str, Any] | None:
    """Attempt to parse text as a JSON object, returning None on failure."""
    if not text:
        return None
    try:
        result = json.loads(text)
    except json.JSONDecodeError:
        return None
    if isinstance(result, dict):
        return result
    return None
