"""Tests for goal classification heuristics."""

from __future__ import annotations

import pytest

from taskpilot.ai.planning.query_analyzer import (
    analyze_query,
    detect_task_type,
    estimate_complexity,
    extract_context_needs,
)
from taskpilot.ai.planning.types import Complexity, TaskType


@pytest.mark.parametrize(
    ("query", "expected"),
    [
        ("What is the TaskStore used for?", TaskType.QUESTION),
        ("How does retry work here", TaskType.QUESTION),
        ("Fix the crash in src/app/settings.py", TaskType.DEBUGGING),
        ("The importer is failing on empty files", TaskType.DEBUGGING),
        ("fixing flaky tests", TaskType.DEBUGGING),
        ("Refactor the settings loader", TaskType.REFACTORING),
        ("Add a --verbose flag to the CLI", TaskType.IMPLEMENTATION),
        ("Find where we parse config", TaskType.RESEARCH),
        ("Hello there", TaskType.OTHER),
    ],
)
def test_detect_task_type(query: str, expected: TaskType) -> None:
    assert detect_task_type(query) is expected


def test_keywords_match_whole_words_only() -> None:
    assert detect_task_type("prefix the names") is TaskType.OTHER


class TestContextNeeds:
    def test_paths_then_identifiers(self) -> None:
        found = extract_context_needs("Why does SettingsStore break in src/app/settings.py and ./scripts/run?")
        assert found == ["src/app/settings.py", "SettingsStore"]

    def test_identifiers_keep_their_case(self) -> None:
        assert extract_context_needs("Explain how TaskStore and PlanController interact") == [
            "TaskStore",
            "PlanController",
        ]

    def test_nothing_to_extract(self) -> None:
        assert extract_context_needs("just say hi") == []


class TestComplexity:
    def test_simple(self) -> None:
        assert estimate_complexity("Explain Foo") is Complexity.SIMPLE

    def test_moderate_from_mentions(self) -> None:
        query = "Compare a.py with b.py"
        assert estimate_complexity(query, extract_context_needs(query)) is Complexity.MODERATE

    def test_complex_from_steps(self) -> None:
        query = "Read a.py and then update it; finally run the tests and report back"
        assert estimate_complexity(query) is Complexity.COMPLEX

    def test_complex_from_length(self) -> None:
        assert estimate_complexity("word " * 61) is Complexity.COMPLEX


def test_analyze_query_combines_heuristics() -> None:
    analysis = analyze_query("  Fix the bug in ConfigLoader  ")
    assert analysis.task_type is TaskType.DEBUGGING
    assert analysis.required_context == ("ConfigLoader",)
    assert analysis.complexity is Complexity.SIMPLE
