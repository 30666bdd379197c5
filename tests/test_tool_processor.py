"""Tests for fallback tool-call extraction."""

from __future__ import annotations

import pytest

from taskpilot.ai.orchestration.tool_call_parser import (
    detect_malformed_notation,
    normalize_tool_marker_text,
    strip_think_tags,
)
from taskpilot.ai.orchestration.tool_processor import (
    extract_tool_calls,
    process_xml_tool_calls,
    resolve_tool_names,
)
from taskpilot.ai.orchestration.types import (
    MALFORMED_CALL_ID,
    MALFORMED_CALL_NAME,
    NormalizedResponse,
    ToolCall,
)
from taskpilot.ai.tools.registry import ToolRegistry

TOOLS = frozenset({"read_file", "list_directory", "search_files", "git_status"})


class TestXmlNotation:
    def test_single_block_with_parameters(self) -> None:
        text = "I'll read the file.\n<read_file>\n<path>src/app.py</path>\n</read_file>"
        result = extract_tool_calls(text, TOOLS)

        (call,) = result.tool_calls
        assert call.name == "read_file"
        assert call.function.arguments == {"path": "src/app.py"}
        assert call.id.startswith("parsed_read_file_0_")
        assert result.cleaned_content == "I'll read the file."
        assert not result.malformed

    def test_json_scalars_are_decoded(self) -> None:
        text = "<read_file><path>a.py</path><start_line>3</start_line><end_line>9</end_line></read_file>"
        (call,) = extract_tool_calls(text, TOOLS).tool_calls
        assert call.function.arguments == {"path": "a.py", "start_line": 3, "end_line": 9}

    def test_json_body(self) -> None:
        (call,) = extract_tool_calls('<search_files>{"query": "TODO", "glob": "*.py"}</search_files>', TOOLS).tool_calls
        assert call.function.arguments == {"query": "TODO", "glob": "*.py"}

    def test_empty_body(self) -> None:
        result = extract_tool_calls("Checking.\n<git_status></git_status>\nDone soon.", TOOLS)
        assert [call.name for call in result.tool_calls] == ["git_status"]
        assert result.tool_calls[0].function.arguments == {}
        assert result.cleaned_content == "Checking.\n\nDone soon."

    def test_multiple_blocks_keep_order_and_unique_ids(self) -> None:
        text = (
            "<list_directory><path>src</path></list_directory>\n"
            "<read_file><path>a.py</path></read_file>\n"
            "<read_file><path>b.py</path></read_file>"
        )
        calls = extract_tool_calls(text, TOOLS).tool_calls
        assert [call.name for call in calls] == ["list_directory", "read_file", "read_file"]
        assert [call.function.arguments["path"] for call in calls] == ["src", "a.py", "b.py"]  # type: ignore[index]
        assert len({call.id for call in calls}) == 3

    def test_unregistered_element_is_left_as_prose(self) -> None:
        result = extract_tool_calls("Use <code>x</code> here.", TOOLS)
        assert result.tool_calls == ()
        assert result.cleaned_content == "Use <code>x</code> here."


class TestSecondaryNotations:
    def test_delimited_markers(self) -> None:
        text = (
            "Let me look.\n"
            "<|tool_calls_begin|><|tool_call_begin|>read_file<|tool_sep|>{\"path\": \"a.py\"}<|tool_call_end|>"
            "<|tool_call_begin|>git_status<|tool_sep|>{}<|tool_call_end|><|tool_calls_end|>"
        )
        result = extract_tool_calls(text, TOOLS)
        assert [call.name for call in result.tool_calls] == ["read_file", "git_status"]
        assert result.tool_calls[0].function.arguments == {"path": "a.py"}
        assert result.cleaned_content == "Let me look."

    def test_stylized_marker_glyphs(self) -> None:
        text = "＜｜tool_calls_begin｜＞＜｜tool_call_begin｜＞git_status" \
            "＜｜tool_sep｜＞{}＜｜tool_call_end｜＞＜｜tool_calls_end｜＞"
        assert normalize_tool_marker_text(text).startswith("<|tool_calls_begin|>")
        assert [call.name for call in extract_tool_calls(text, TOOLS).tool_calls] == ["git_status"]

    def test_fenced_json_block(self) -> None:
        text = 'Searching now.\n```json\n{"name": "search_files", "arguments": {"query": "TODO"}}\n```'
        result = extract_tool_calls(text, TOOLS)
        (call,) = result.tool_calls
        assert call.name == "search_files"
        assert call.function.arguments == {"query": "TODO"}
        assert result.cleaned_content == "Searching now."

    def test_json_for_unknown_tool_is_ignored(self) -> None:
        text = '{"name": "delete_everything", "arguments": {}}'
        result = extract_tool_calls(text, TOOLS)
        assert result.tool_calls == ()
        assert result.cleaned_content == text


class TestMalformedNotation:
    def test_unclosed_tag_yields_single_sentinel(self) -> None:
        result = extract_tool_calls("Let's proceed.\n<tool>broken", TOOLS)

        (call,) = result.tool_calls
        assert call.id == MALFORMED_CALL_ID
        assert call.name == MALFORMED_CALL_NAME
        assert call.is_malformed_sentinel
        assert "Unclosed <tool> tag" in call.function.arguments["error"]  # type: ignore[index]
        assert result.cleaned_content == ""
        assert result.malformed

    @pytest.mark.parametrize(
        "text",
        [
            "[tool_use: read_file]",
            "<function=read_file>\n<parameter=path>a.py</parameter>\n</function>",
            "<read_file>\nread a.py please\n</read_file>",
            "<read_file>\n<path>a.py</path>\n</read_file>\n<search_files>\n<query>x</query>",
        ],
    )
    def test_malformed_forms(self, text: str) -> None:
        result = extract_tool_calls(text, TOOLS)
        assert len(result.tool_calls) == 1
        assert result.tool_calls[0].is_malformed_sentinel
        assert result.cleaned_content == ""

    @pytest.mark.parametrize(
        ("text", "message"),
        [
            ('{"name": "read_file"}', 'missing "arguments"'),
            ('Reading now.\n{"arguments": {"path": "a.py"}}', 'missing "name"'),
            ('{"name": "read_file", "arguments": "README.md"}', "must be an object"),
        ],
    )
    def test_incomplete_json_calls(self, text: str, message: str) -> None:
        result = extract_tool_calls(text, TOOLS)
        (call,) = result.tool_calls
        assert call.is_malformed_sentinel
        assert message in call.function.arguments["error"]  # type: ignore[index]
        assert result.cleaned_content == ""

    def test_inline_json_mention_is_not_malformed(self) -> None:
        text = 'I tried {"name": "read_file"} earlier.'
        assert detect_malformed_notation(text, TOOLS) is None

    def test_many_malformed_blocks_still_one_sentinel(self) -> None:
        result = extract_tool_calls("<one>\n<two>\n<three>", TOOLS)
        assert len(result.tool_calls) == 1

    def test_void_and_self_closing_tags_are_not_malformed(self) -> None:
        assert detect_malformed_notation("Line one\n<br>\n<img src='x'/>\ntext", TOOLS) is None

    def test_think_blocks_are_ignored(self) -> None:
        text = "<think>\n<read_file>\nmaybe\n</think>\nNothing to do."
        assert strip_think_tags(text) == "\nNothing to do."
        result = extract_tool_calls(text, TOOLS)
        assert result.tool_calls == ()
        assert result.cleaned_content == "Nothing to do."

    def test_unclosed_think_is_dropped_to_the_end(self) -> None:
        text = "Let me check.\n<think>\nI should look at the README first..."
        assert strip_think_tags(text) == "Let me check.\n"
        result = extract_tool_calls(text, TOOLS)
        assert result.tool_calls == ()
        assert result.cleaned_content == "Let me check."

    def test_stray_think_close_is_removed(self) -> None:
        text = "reasoning leftovers</think>\n<git_status></git_status>\nDone."
        assert strip_think_tags(text) == "reasoning leftovers\n<git_status></git_status>\nDone."
        result = extract_tool_calls(text, TOOLS)
        assert [call.name for call in result.tool_calls] == ["git_status"]
        assert result.cleaned_content == "reasoning leftovers\n\nDone."


class TestExtractionContract:
    @pytest.mark.parametrize("content", ["", None])
    def test_empty_content(self, content: str | None) -> None:
        result = extract_tool_calls(content, TOOLS)
        assert result.tool_calls == ()
        assert result.cleaned_content == ""

    def test_no_tools_leaves_content_untouched(self) -> None:
        text = "<read_file><path>a</path></read_file>\n<tool>broken"
        result = extract_tool_calls(text, frozenset())
        assert result.tool_calls == ()
        assert result.cleaned_content == text

    def test_content_without_calls_is_returned_verbatim(self) -> None:
        text = "Answer line   \n\n\n\nMore text\n"
        result = extract_tool_calls(text, TOOLS)
        assert result.tool_calls == ()
        assert result.cleaned_content == text

    def test_stringified_json_arguments_are_decoded(self) -> None:
        text = '{"name": "read_file", "arguments": "{\\"path\\": \\"a.py\\"}"}'
        (call,) = extract_tool_calls(text, TOOLS).tool_calls
        assert call.function.arguments == {"path": "a.py"}

    @pytest.mark.parametrize(
        "text",
        [
            "Reading.\n<read_file>\n<path>a.py</path>\n</read_file>\nThen summarising.",
            "Plain answer with no tools.",
            'Mixed ```json\n{"name": "git_status", "arguments": {}}\n``` and <list_directory></list_directory>',
        ],
    )
    def test_extraction_is_idempotent(self, text: str) -> None:
        first = extract_tool_calls(text, TOOLS)
        second = extract_tool_calls(first.cleaned_content, TOOLS)
        assert second.tool_calls == ()
        assert second.cleaned_content == first.cleaned_content


class TestProcessXmlToolCalls:
    def test_callbacks_receive_calls_in_parse_order(self) -> None:
        seen: list[str] = []

        class Callbacks:
            def on_tool_call(self, call: ToolCall) -> None:
                seen.append(call.name)

        text = "<git_status></git_status><read_file><path>a</path></read_file>"
        result = process_xml_tool_calls(text, TOOLS, Callbacks())
        assert seen == ["git_status", "read_file"]
        assert len(result.tool_calls) == 2

    def test_plain_callable_callback(self) -> None:
        seen: list[ToolCall] = []
        process_xml_tool_calls("Let's proceed.\n<tool>broken", TOOLS, seen.append)
        assert len(seen) == 1 and seen[0].is_malformed_sentinel

    def test_native_calls_bypass_extraction(self) -> None:
        native = ToolCall.create("call_1", "git_status")
        response = NormalizedResponse(content="<tool>broken", native_tool_calls=(native,))
        result = process_xml_tool_calls(response, TOOLS)
        assert result.tool_calls == (native,)
        assert result.cleaned_content == "<tool>broken"

    def test_accepts_registry(self, registry: ToolRegistry) -> None:
        assert resolve_tool_names(registry) == TOOLS
        result = process_xml_tool_calls(NormalizedResponse(content="<git_status></git_status>"), registry)
        assert [call.name for call in result.tool_calls] == ["git_status"]
