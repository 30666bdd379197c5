"""Keyword heuristics that classify a user goal before planning."""

from __future__ import annotations

import re
from typing import Iterable

from .types import Complexity, QueryAnalysis, TaskType

__all__ = ["analyze_query", "detect_task_type", "extract_context_needs", "estimate_complexity"]

QUESTION_KEYWORDS = (
    "what is",
    "what are",
    "how do i",
    "how does",
    "why does",
    "can you explain",
    "tell me about",
    "what does",
    "is there",
    "are there",
)

DEBUGGING_KEYWORDS = (
    "fix",
    "debug",
    "troubleshoot",
    "solve",
    "resolve",
    "error",
    "bug",
    "issue",
    "problem",
    "broken",
    "doesn't work",
    "isn't working",
    "not working",
    "failing",
)

REFACTORING_KEYWORDS = (
    "refactor",
    "improve",
    "optimize",
    "clean up",
    "cleanup",
    "reorganize",
    "restructure",
    "simplify",
    "extract",
    "rename",
    "move",
)

IMPLEMENTATION_KEYWORDS = (
    "create",
    "build",
    "implement",
    "add",
    "make",
    "write",
    "develop",
    "set up",
    "setup",
    "integrate",
    "connect",
)

RESEARCH_KEYWORDS = (
    "find",
    "search",
    "look for",
    "where is",
    "locate",
    "show me",
    "list",
    "explain",
    "understand",
    "analyze",
)

# Most specific first; the first group with a hit wins.
_TASK_TYPE_ORDER: tuple[tuple[TaskType, tuple[str, ...]], ...] = (
    (TaskType.QUESTION, QUESTION_KEYWORDS),
    (TaskType.DEBUGGING, DEBUGGING_KEYWORDS),
    (TaskType.REFACTORING, REFACTORING_KEYWORDS),
    (TaskType.IMPLEMENTATION, IMPLEMENTATION_KEYWORDS),
    (TaskType.RESEARCH, RESEARCH_KEYWORDS),
)

_PATH_PATTERNS = (
    re.compile(r"(?:^|\s)([\w./\\-]+\.\w{2,4})(?=\s|$|[,;:!?)])"),
    re.compile(r"(?:^|\s)(src/[\w./\\-]+)(?=\s|$)"),
    re.compile(r"(?:^|\s)(\./[\w./\\-]+)(?=\s|$)"),
)
_IDENTIFIER_PATTERN = re.compile(r"\b([A-Z][a-z0-9]+(?:[A-Z][a-zA-Z0-9]*)+)\b")
_STEP_MARKERS = re.compile(r"\b(?:and then|then|after that|also|finally|and)\b|[;\n]")


def analyze_query(query: str) -> QueryAnalysis:
    """Classify ``query`` and pull out the files and identifiers it mentions."""
    text = query.strip()
    context = extract_context_needs(text)
    return QueryAnalysis(
        task_type=detect_task_type(text),
        required_context=tuple(context),
        complexity=estimate_complexity(text, context),
    )


def detect_task_type(query: str) -> TaskType:
    lowered = query.lower()
    for task_type, keywords in _TASK_TYPE_ORDER:
        if _contains_any(lowered, keywords):
            return task_type
    return TaskType.OTHER


def extract_context_needs(query: str) -> list[str]:
    """File paths first, then PascalCase identifiers, without duplicates."""
    found: list[str] = []
    for pattern in _PATH_PATTERNS:
        for match in pattern.finditer(query):
            candidate = match.group(1).rstrip(".")
            if candidate and candidate not in found:
                found.append(candidate)
    for match in _IDENTIFIER_PATTERN.finditer(query):
        name = match.group(1)
        if name not in found and not any(name in path for path in found):
            found.append(name)
    return found


def estimate_complexity(query: str, context: Iterable[str] = ()) -> Complexity:
    words = len(query.split())
    steps = len(_STEP_MARKERS.findall(query.lower()))
    mentions = len(list(context))
    if words > 60 or steps >= 4 or mentions >= 5:
        return Complexity.COMPLEX
    if words > 20 or steps >= 2 or mentions >= 2:
        return Complexity.MODERATE
    return Complexity.SIMPLE


def _contains_any(text: str, keywords: Iterable[str]) -> bool:
    for keyword in keywords:
        if re.search(rf"(?<![\w']){re.escape(keyword)}(?:s|es|d|ed|ing)?(?![\w'])", text):
            return True
    return False
