"""
Executor Tests: the agentic loop

These tests verify the executor can:
1. Finish normally, via a forced re-request, or via the error fallback
2. Bound the loop at 15 iterations
3. Run every tool call of a turn in order and survive tool faults
4. Prompt a human only when a handler is attached, and never twice for one name
5. Track routing, referenced entities, tools used and token usage

Test list:
1. test_plain_completion - No tool calls, long answer, confidence 0.9
2. test_error_fallback - Reasoning failure returns the original text, 0.5
3. test_iteration_cap - Endless tool calls stop at 15 iterations
4. test_turn_ordering - All calls of a turn run; tool messages precede the continuation
5. test_tool_exception_becomes_result - Exceptions fed back as {"error": ...}
6. test_tools_used_deduplicated - Same tool across turns listed once
7. test_forced_request - Short answer triggers one tool-less request, 0.8
8. test_forced_request_empty - Empty forced answer falls back to the original
9. test_handler_gates_clarification - Handler presence, not interactive_mode
10. test_jon_smth_scenario - Answer cached, second lookup returns cached=True
11. test_route_capture - route_note and lookup_project feed the route decision
12. test_clean_response_content - Leaked tool chatter removed
13. test_available_tools - Five tool names
"""

import json
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
import yaml

from transcript_agent.config import RoutingConfig
from transcript_agent.context import YamlContextStore
from transcript_agent.execution import (
    MAX_ITERATIONS,
    ToolRegistry,
    clean_response_content,
    create,
    describe_result,
)
from transcript_agent.routing import PhraseRouter
from transcript_agent.schemas import (
    ClarificationResponse,
    ReasoningResponse,
    TokenUsage,
    ToolCall,
)
from transcript_agent.session import ToolContext


TRANSCRIPT = "Met with Jon Smth about Phoenix."
LONG_ANSWER = "# Meeting\n\nMet with Jon Smith about Phoenix. We agreed on the next milestones."


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def context_dir():
    directory = Path(tempfile.mkdtemp(prefix="transcript_agent_test_"))
    project = {
        "id": "phoenix",
        "name": "Phoenix",
        "classification": {"explicit_phrases": ["phoenix"]},
        "routing": {"destination": "~/notes/phoenix"},
    }
    (directory / "projects").mkdir(parents=True)
    with open(directory / "projects" / "phoenix.yaml", "w") as f:
        yaml.safe_dump(project, f)

    yield directory
    shutil.rmtree(directory, ignore_errors=True)


@pytest.fixture
def ctx(context_dir):
    store = YamlContextStore(context_dir)
    return ToolContext(
        transcript_text=TRANSCRIPT,
        audio_date=datetime(2026, 3, 15, 14, 30),
        source_file="meeting.m4a",
        context_store=store,
        routing_engine=PhraseRouter(RoutingConfig(default_destination="/tmp/notes"), store),
    )


def call(name: str, call_id: str = "c1", /, **arguments) -> ToolCall:
    return ToolCall(id=call_id, name=name, arguments=arguments)


def reply(content: str = "", *calls: ToolCall, tokens: int = 0) -> ReasoningResponse:
    return ReasoningResponse(
        content=content,
        tool_calls=list(calls),
        usage=TokenUsage(total_tokens=tokens) if tokens else None,
    )


def make_reasoning(*responses: ReasoningResponse) -> MagicMock:
    reasoning = MagicMock()
    reasoning.complete = AsyncMock(side_effect=list(responses))
    return reasoning


def request_at(reasoning: MagicMock, index: int):
    return reasoning.complete.call_args_list[index].args[0]


# =============================================================================
# TEST 1-3: Outcomes and bounds
# =============================================================================

@pytest.mark.asyncio
async def test_plain_completion(ctx):
    """
    Test 1: No tool calls, long answer, confidence 0.9.

    Verifies:
    - First request carries system prompt, transcript markers and tools
    - Optional fields are None when nothing was reported or changed
    """
    reasoning = make_reasoning(reply(LONG_ANSWER))

    result = await create(reasoning, ctx).process(TRANSCRIPT)

    assert result.enhanced_text == LONG_ANSWER
    assert result.state.confidence == 0.9
    assert result.iterations == 0
    assert result.tools_used == []
    assert result.total_tokens is None
    assert result.context_changes is None
    assert "total_tokens" not in result.to_dict()

    first = request_at(reasoning, 0)
    assert "--- BEGIN TRANSCRIPT ---" in first.prompt
    assert TRANSCRIPT in first.prompt
    assert first.max_iterations == MAX_ITERATIONS
    assert len(first.tools) == 5
    assert [m.role for m in first.messages] == ["system", "user"]

    print("✓ Test 1 passed: Plain completion")


@pytest.mark.asyncio
async def test_error_fallback(ctx):
    """
    Test 2: Reasoning failure returns the original text with confidence 0.5.

    Verifies:
    - process() never raises
    - Failure on a later turn still returns the original text wholesale
    """
    reasoning = MagicMock()
    reasoning.complete = AsyncMock(side_effect=RuntimeError("API down"))

    result = await create(reasoning, ctx).process(TRANSCRIPT)
    assert result.enhanced_text == TRANSCRIPT
    assert result.state.confidence == 0.5

    reasoning = make_reasoning(
        reply("", call("route_note")),
        RuntimeError("API down mid-run"),
    )
    result = await create(reasoning, ctx).process(TRANSCRIPT)
    assert result.enhanced_text == TRANSCRIPT
    assert result.state.corrected_text == TRANSCRIPT
    assert result.state.confidence == 0.5
    assert result.iterations == 1

    print("✓ Test 2 passed: Error fallback")


@pytest.mark.asyncio
async def test_iteration_cap(ctx):
    """
    Test 3: A model that always calls tools stops at 15 iterations.
    """
    reasoning = MagicMock()
    reasoning.complete = AsyncMock(return_value=reply("", call("store_context", entityType="term", name="x")))

    result = await create(reasoning, ctx).process(TRANSCRIPT)

    assert result.iterations == MAX_ITERATIONS
    # first turn + one per iteration + the forced request
    assert reasoning.complete.await_count == MAX_ITERATIONS + 2
    assert result.state.confidence == 0.8
    assert result.enhanced_text == TRANSCRIPT

    print("✓ Test 3 passed: Iteration cap")


# =============================================================================
# TEST 4-6: Tool turns
# =============================================================================

@pytest.mark.asyncio
async def test_turn_ordering(ctx):
    """
    Test 4: All calls of a turn run, in order, before the continuation.

    Verifies:
    - One tool message per call, same order as the calls
    - Continuation prompt follows the tool messages and restates the transcript
    """
    reasoning = make_reasoning(
        reply(
            "",
            call("store_context", "a", entityType="term", name="x"),
            call("verify_spelling", "b", term="Smth"),
            call("route_note", "c"),
        ),
        reply(LONG_ANSWER),
    )

    result = await create(reasoning, ctx).process(TRANSCRIPT)

    assert result.iterations == 1
    assert result.tools_used == ["store_context", "verify_spelling", "route_note"]

    messages = request_at(reasoning, 1).messages
    assert [m.role for m in messages] == ["system", "user", "assistant", "tool", "tool", "tool", "user"]
    assert [m.tool_call_id for m in messages[3:6]] == ["a", "b", "c"]
    assert [c.id for c in messages[2].tool_calls] == ["a", "b", "c"]
    assert "Tool results received" in messages[-1].content
    assert TRANSCRIPT in messages[-1].content
    assert "Corrections made so far: none yet" in messages[-1].content

    print("✓ Test 4 passed: Turn ordering")


@pytest.mark.asyncio
async def test_tool_exception_becomes_result(ctx):
    """
    Test 5: A tool exception is fed back as {"error": ...} and the loop continues.
    """
    store = MagicMock()
    store.search.side_effect = RuntimeError("store down")
    ctx.context_store = store

    reasoning = make_reasoning(
        reply("", call("lookup_person", "p1", name="Jon Smth"), call("nonexistent", "p2")),
        reply(LONG_ANSWER),
    )

    result = await create(reasoning, ctx).process(TRANSCRIPT)

    assert result.state.confidence == 0.9
    tool_messages = [m for m in request_at(reasoning, 1).messages if m.role == "tool"]
    assert json.loads(tool_messages[0].content) == {"error": "store down"}
    assert json.loads(tool_messages[1].content) == {
        "success": False,
        "message": "Unknown tool: nonexistent",
    }

    print("✓ Test 5 passed: Tool exception becomes result")


@pytest.mark.asyncio
async def test_tools_used_deduplicated(ctx):
    """
    Test 6: The same tool across turns is listed once; tokens are summed.
    """
    reasoning = make_reasoning(
        reply("", call("route_note", "a"), tokens=100),
        reply("", call("route_note", "b"), call("store_context", "c", entityType="term", name="x"), tokens=50),
        reply(LONG_ANSWER, tokens=25),
    )

    result = await create(reasoning, ctx).process(TRANSCRIPT)

    assert result.tools_used == ["route_note", "store_context"]
    assert result.iterations == 2
    assert result.total_tokens == 175

    print("✓ Test 6 passed: tools_used deduplicated")


# =============================================================================
# TEST 7-8: Forced request
# =============================================================================

@pytest.mark.asyncio
async def test_forced_request(ctx):
    """
    Test 7: A short final answer triggers one tool-less request.

    Verifies:
    - Forced request has no tools and no history
    - It restates the original transcript
    - Confidence 0.8
    """
    reasoning = make_reasoning(reply("Done."), reply(LONG_ANSWER))

    result = await create(reasoning, ctx).process(TRANSCRIPT)

    assert result.enhanced_text == LONG_ANSWER
    assert result.state.confidence == 0.8

    forced = request_at(reasoning, 1)
    assert forced.tools is None
    assert forced.messages == []
    assert TRANSCRIPT in forced.prompt
    assert "None identified" in forced.prompt

    print("✓ Test 7 passed: Forced request")


@pytest.mark.asyncio
async def test_forced_request_empty(ctx):
    """
    Test 8: An empty forced answer falls back to the original text.
    """
    reasoning = make_reasoning(reply(""), reply(""))

    result = await create(reasoning, ctx).process(TRANSCRIPT)

    assert result.enhanced_text == TRANSCRIPT
    assert result.state.confidence == 0.8

    print("✓ Test 8 passed: Empty forced request")


# =============================================================================
# TEST 9-10: Clarifications
# =============================================================================

@pytest.mark.asyncio
async def test_handler_gates_clarification(ctx):
    """
    Test 9: The handler's presence, not interactive_mode, gates prompting.

    Verifies:
    - interactive_mode=True without a handler: no prompt, no cache entry
    - interactive_mode=False with a handler: prompted
    """
    ctx.interactive_mode = True
    reasoning = make_reasoning(reply("", call("lookup_person", name="Jon Smth")), reply(LONG_ANSWER))
    result = await create(reasoning, ctx).process(TRANSCRIPT)
    assert len(result.state.resolved_entities) == 0

    handler = MagicMock()
    handler.handle_clarification = AsyncMock(return_value=ClarificationResponse(response="Jon Smith"))
    ctx.interactive_mode = False
    ctx.interactive_handler = handler
    reasoning = make_reasoning(reply("", call("lookup_person", name="Jon Smth")), reply(LONG_ANSWER))
    result = await create(reasoning, ctx).process(TRANSCRIPT)

    handler.handle_clarification.assert_awaited_once()
    request = handler.handle_clarification.call_args.args[0]
    assert request.type == "new_person"
    assert request.term == "Jon Smth"
    assert "Unknown person mentioned" in request.context
    assert result.state.resolved_entities.get("Jon Smth") == "Jon Smith"

    print("✓ Test 9 passed: Handler gates clarification")


@pytest.mark.asyncio
async def test_jon_smth_scenario(ctx):
    """
    Test 10: Answer is cached, the second lookup returns cached=True.

    Verifies:
    - The human is asked exactly once
    - The second tool result is a cached suggestion naming "Jon Smith"
    - Continuation prompts list the correction
    """
    handler = MagicMock()
    handler.handle_clarification = AsyncMock(return_value=ClarificationResponse(response="Jon Smith"))
    ctx.interactive_handler = handler

    reasoning = make_reasoning(
        reply("", call("lookup_person", "first", name="Jon Smth")),
        reply("", call("lookup_person", "second", name="Jon Smth")),
        reply(LONG_ANSWER),
    )

    result = await create(reasoning, ctx).process(TRANSCRIPT)

    handler.handle_clarification.assert_awaited_once()
    assert result.iterations == 2

    messages = request_at(reasoning, 2).messages
    second = next(m for m in messages if m.tool_call_id == "second")
    payload = json.loads(second.content)
    assert payload["cached"] is True
    assert "Jon Smith" in payload["suggestion"]
    assert "Jon Smth -> Jon Smith" in messages[-1].content

    print("✓ Test 10 passed: Jon Smth scenario")


# =============================================================================
# TEST 11: Routing capture
# =============================================================================

@pytest.mark.asyncio
async def test_route_capture(ctx):
    """
    Test 11: route_note and lookup_project feed the route decision.

    Verifies:
    - route_note's routing_decision is adopted
    - A found project with a destination overrides it (confidence 1.0)
    - Project ids land in referenced_entities
    """
    reasoning = make_reasoning(
        reply("", call("route_note", "r")),
        reply("", call("lookup_project", "p", name="Phoenix")),
        reply(LONG_ANSWER),
    )

    result = await create(reasoning, ctx).process(TRANSCRIPT)

    decision = result.state.route_decision
    assert decision is not None
    assert decision.project_id == "phoenix"
    assert decision.destination.path == "~/notes/phoenix"
    assert decision.confidence == 1.0
    assert "phoenix" in result.state.referenced_entities.projects
    assert result.to_dict()["route_decision"]["project_id"] == "phoenix"
    assert describe_result(result) == "phoenix -> ~/notes/phoenix (100%)"

    print("✓ Test 11 passed: Route capture")


# =============================================================================
# TEST 12-13: Helpers
# =============================================================================

def test_clean_response_content():
    """
    Test 12: Leaked tool chatter is removed from the final answer.
    """
    leaked = (
        "Let me check the names first.\n"
        "Verifying spelling with the tools...\n"
        '{"tool": "lookup_person", "input": {"name": "Jon"}}\n'
        "# Meeting\n"
        "Met with Jon Smith."
    )
    assert clean_response_content(leaked) == "# Meeting\nMet with Jon Smith."

    assert clean_response_content('lookup_person({"name": "Jon"})\n# Notes\nHi.') == "# Notes\nHi."
    assert clean_response_content("# Notes\nAll good.") == "# Notes\nAll good."

    # Narration in first person
    assert clean_response_content("I'm analyzing the transcript now.\n\n## Transcript\nHi.") == "## Transcript\nHi."
    assert clean_response_content("I am done checking names.\nExecuting final pass.\nMet Priya.") == "Met Priya."

    # Capitalized words that only contain a marker are real content
    reasoning_line = "Reasoning engine sync with Priya.\nWe agreed to ship in May."
    assert clean_response_content(reasoning_line) == reasoning_line
    tooling_line = "Tooling budget review.\nApproved."
    assert clean_response_content(tooling_line) == tooling_line

    print("✓ Test 12 passed: Response clean-up")


def test_available_tools(ctx):
    """
    Test 13: get_available_tools lists the five tool names.
    """
    executor = create(MagicMock(), ctx)
    assert executor.get_available_tools() == [
        "lookup_person",
        "lookup_project",
        "verify_spelling",
        "route_note",
        "store_context",
    ]

    registry = ToolRegistry(ctx)
    assert [t.name for t in registry.get_tools()] == executor.get_available_tools()
    assert [d.name for d in registry.get_tool_definitions()] == executor.get_available_tools()

    print("✓ Test 13 passed: Available tools")
