"""Tests for goal decomposition into task plans."""

from __future__ import annotations

import json

import pytest

from taskpilot.ai.orchestration.cancellation import CancellationToken, OperationCancelledError
from taskpilot.ai.planning.context import PlanContext
from taskpilot.ai.planning.task_decomposer import (
    PLANNER_SYSTEM_PROMPT,
    build_decomposition_prompt,
    create_fallback_plan,
    create_task_plan,
    decompose_query,
    parse_decomposition_response,
)
from taskpilot.ai.planning.types import Complexity, PlanningConfig, QueryAnalysis, TaskType
from taskpilot.ai.tools.registry import ToolRegistry

from tests.helpers import FakeClient, RecordingCallbacks, completion, plan_reply

ANALYSIS = QueryAnalysis(task_type=TaskType.RESEARCH, required_context=("load_settings",), complexity=Complexity.MODERATE)


def _task(title: str, **extra: object) -> dict[str, object]:
    return {"title": title, "description": f"Do {title.lower()}", **extra}


class TestParseDecompositionResponse:
    def test_fenced_json_with_dependencies(self) -> None:
        response = "Here is the plan:\n```json\n" + json.dumps(
            [
                _task("Search", acceptanceCriteria=["Found usages"], requiredTools=["search_files"]),
                _task("Read", dependencies=[0]),
                _task("Answer", dependencies=[0, 1, 5, "1", -1, True]),
            ]
        ) + "\n```"

        definitions = parse_decomposition_response(response, max_tasks=10, stamp="abc")

        assert definitions is not None
        assert [d.id for d in definitions] == ["task-1-abc", "task-2-abc", "task-3-abc"]
        assert definitions[0].acceptance_criteria == ("Found usages",)
        assert definitions[0].required_tools == ("search_files",)
        assert definitions[1].dependencies == ("task-1-abc",)
        assert definitions[2].dependencies == ("task-1-abc", "task-2-abc")

    def test_incomplete_items_and_their_dependents_links_are_dropped(self) -> None:
        response = json.dumps(
            [
                _task("First"),
                {"title": "No description"},
                _task("Third", dependencies=[1, 0]),
                "not an object",
            ]
        )

        definitions = parse_decomposition_response(response, max_tasks=10, stamp="s")

        assert definitions is not None
        assert [d.title for d in definitions] == ["First", "Third"]
        assert definitions[1].id == "task-2-s"
        assert definitions[1].dependencies == ("task-1-s",)

    def test_truncates_to_max_tasks(self) -> None:
        response = json.dumps([_task(f"T{n}") for n in range(5)])
        definitions = parse_decomposition_response(response, max_tasks=2)
        assert definitions is not None
        assert len(definitions) == 2

    def test_required_tools_are_limited_to_known_names(self) -> None:
        response = json.dumps([_task("Look", required_tools=["read_file", "teleport"])])
        (definition,) = parse_decomposition_response(
            response, max_tasks=5, tool_names=["read_file", "git_status"]
        ) or []
        assert definition.required_tools == ("read_file",)

    @pytest.mark.parametrize(
        "response",
        ["not json at all", '{"title": "x", "description": "y"}', "[]", "[{}]", ""],
    )
    def test_unusable_responses(self, response: str) -> None:
        assert parse_decomposition_response(response, max_tasks=5) is None


class TestFallbackPlan:
    def test_short_query(self) -> None:
        (definition,) = create_fallback_plan("Explain the cache", ["read_file"])
        assert definition.title == "Complete: Explain the cache"
        assert definition.description == "Explain the cache"
        assert definition.acceptance_criteria == ("Task completed successfully",)
        assert definition.required_tools == ("read_file",)
        assert definition.dependencies == ()

    def test_long_query_is_truncated_in_title(self) -> None:
        query = "x" * 80
        (definition,) = create_fallback_plan(query)
        assert definition.title == "Complete: " + "x" * 50 + "..."
        assert definition.description == query


def test_prompt_mentions_request_analysis_and_tools() -> None:
    prompt = build_decomposition_prompt(
        "Where is load_settings used?", ANALYSIS, PlanningConfig(max_tasks=4), ["read_file", "search_files"]
    )
    assert "Where is load_settings used?" in prompt
    assert "- Task Type: research" in prompt
    assert "- Complexity: moderate" in prompt
    assert "- Mentioned Context: load_settings" in prompt
    assert "Available tools: read_file, search_files" in prompt
    assert "Maximum 4 tasks total" in prompt


class TestDecomposeQuery:
    @pytest.mark.asyncio
    async def test_model_plan_is_used(self, registry: ToolRegistry) -> None:
        client = FakeClient([plan_reply(_task("Search"), _task("Answer", dependencies=[0]))])
        context = PlanContext(client=client, registry=registry)

        definitions, used_fallback = await decompose_query("Where is load_settings used?", ANALYSIS, context)

        assert used_fallback is False
        assert [d.title for d in definitions] == ["Search", "Answer"]
        (conversation,) = client.conversations
        assert conversation[0].role == "system"
        assert conversation[0].content == PLANNER_SYSTEM_PROMPT
        assert "Where is load_settings used?" in conversation[1].content
        assert client.tools == [[]]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "reply",
        [RuntimeError("model offline"), completion(""), completion("I cannot plan this.")],
    )
    async def test_falls_back_to_single_task(self, registry: ToolRegistry, reply: object) -> None:
        context = PlanContext(client=FakeClient([reply]), registry=registry)

        definitions, used_fallback = await decompose_query("Summarise the README", ANALYSIS, context)

        assert used_fallback is True
        assert [d.title for d in definitions] == ["Complete: Summarise the README"]

    @pytest.mark.asyncio
    async def test_cancelled_before_request(self, registry: ToolRegistry) -> None:
        token = CancellationToken()
        token.cancel()
        client = FakeClient([plan_reply(_task("Search"))])
        context = PlanContext(client=client, registry=registry, cancel_token=token)

        with pytest.raises(OperationCancelledError):
            await decompose_query("anything", ANALYSIS, context)
        assert client.calls == 0

    @pytest.mark.asyncio
    async def test_cancelled_while_waiting_for_model(self, registry: ToolRegistry) -> None:
        token = CancellationToken()

        def cancel_then_reply(conversation: object) -> object:
            token.cancel("stop")
            return plan_reply(_task("Search"))

        context = PlanContext(client=FakeClient([cancel_then_reply]), registry=registry, cancel_token=token)

        with pytest.raises(OperationCancelledError) as excinfo:
            await decompose_query("anything", ANALYSIS, context)
        assert excinfo.value.stage == "planning"


@pytest.mark.asyncio
async def test_create_task_plan_registers_plan(registry: ToolRegistry) -> None:
    callbacks = RecordingCallbacks()
    context = PlanContext(
        client=FakeClient([plan_reply(_task("Search"), _task("Answer", dependencies=[0]))]),
        registry=registry,
        callbacks=callbacks,
    )

    plan = await create_task_plan("Where is load_settings used?", ANALYSIS, context)

    assert plan.original_goal == "Where is load_settings used?"
    assert context.store.get_plan() is not None
    assert [task.title for task in context.store.get_plan().ordered_tasks()] == ["Search", "Answer"]
    assert callbacks.events == [("plan_created", plan.id)]
