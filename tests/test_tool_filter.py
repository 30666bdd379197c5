"""Tests for the tool-call filter."""

from __future__ import annotations

from taskpilot.ai.orchestration.tool_filter import UNKNOWN_TOOL_MESSAGE, filter_valid_tool_calls
from taskpilot.ai.orchestration.tool_processor import malformed_sentinel
from taskpilot.ai.orchestration.types import ToolCall, ToolFunction
from taskpilot.ai.tools.registry import ToolRegistry


def test_known_and_unknown_tools(registry: ToolRegistry) -> None:
    calls = [ToolCall.create("c1", "git_status"), ToolCall.create("c2", "nope")]

    result = filter_valid_tool_calls(calls, registry)

    assert result.valid_tool_calls == (calls[0],)
    (error,) = result.error_results
    assert error.tool_call_id == "c2"
    assert error.name == "nope"
    assert error.content == UNKNOWN_TOOL_MESSAGE


def test_calls_without_id_or_name_are_dropped(registry: ToolRegistry) -> None:
    calls = [
        None,
        ToolCall.create("", "git_status"),
        ToolCall(id="c3", function=ToolFunction(name="   ")),
        ToolCall.create("c4", "read_file", {"path": "README.md"}),
    ]

    result = filter_valid_tool_calls(calls, registry)

    assert [call.id for call in result.valid_tool_calls] == ["c4"]
    assert result.error_results == ()


def test_repeated_ids_keep_the_first_call(registry: ToolRegistry) -> None:
    calls = [
        ToolCall.create("1", "read_file", {"path": "README.md"}),
        ToolCall.create("1", "git_status"),
        ToolCall.create("2", "nope"),
        ToolCall.create("2", "git_status"),
    ]

    result = filter_valid_tool_calls(calls, registry)

    assert result.valid_tool_calls == (calls[0],)
    assert [error.tool_call_id for error in result.error_results] == ["2"]


def test_sentinel_becomes_error_result(registry: ToolRegistry) -> None:
    sentinel = malformed_sentinel("Unclosed <tool> tag.")

    result = filter_valid_tool_calls([sentinel], registry)

    assert result.valid_tool_calls == ()
    (error,) = result.error_results
    assert error.tool_call_id == sentinel.id
    assert error.content == "Error: Unclosed <tool> tag."


def test_none_registry_skips_unknown_check() -> None:
    calls = [ToolCall.create("c1", "anything"), malformed_sentinel("bad")]

    result = filter_valid_tool_calls(calls, None)

    assert [call.id for call in result.valid_tool_calls] == ["c1"]
    assert len(result.error_results) == 1


def test_order_is_preserved_and_counts_add_up(registry: ToolRegistry) -> None:
    names = ["read_file", "nope", "list_directory", "git_status", "other", "search_files"]
    calls = [ToolCall.create(f"c{index}", name) for index, name in enumerate(names)]

    result = filter_valid_tool_calls(calls, registry)

    assert [call.name for call in result.valid_tool_calls] == [
        "read_file",
        "list_directory",
        "git_status",
        "search_files",
    ]
    assert len(result.valid_tool_calls) + len(result.error_results) == len(calls)
    assert len({call.id for call in result.valid_tool_calls}) == len(result.valid_tool_calls)
