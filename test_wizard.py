"""
Wizard Tests: clarification answers turned into context entities

These tests verify the clarification resolver can:
1. Create projects with and without an explicit destination
2. Link unknown words to existing terms and projects
3. Define terms (with nested project creation) and ignore words
4. Create people from the new_person wizard
5. Survive persistence failures and malformed answers without side effects

Test list:
1. test_create_project_without_destination - No routing.destination, no route decision
2. test_create_project_with_destination - Synthetic route decision, confidence 1.0
3. test_link_alias_to_term - sounds_like extended, both names resolved, term's project routed
4. test_link_to_project_by_index - explicit phrase added, notes extended, project routed
5. test_malformed_answers_are_noops - Bad payloads change nothing
6. test_define_term_with_nested_project - Term linked to the project created with it
7. test_ignore_then_lookup - Ignored word is skipped on the next lookup
8. test_create_person - Person saved with heard name as sounds-like
9. test_persistence_failure_is_tolerated - Routing/cache still applied, no change record
10. test_skip_and_response_only - Response feeds the cache, skip writes nothing
11. test_resolved_entities_first_answer_wins - Monotonic cache
"""

import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
import yaml

from transcript_agent.config import RoutingConfig
from transcript_agent.context import YamlContextStore
from transcript_agent.routing import PhraseRouter
from transcript_agent.schemas import ClarificationResponse, ProjectWizardCreate
from transcript_agent.session import ResolvedEntities, ToolContext, TranscriptionState
from transcript_agent.tools import LookupPersonTool, LookupProjectTool
from transcript_agent.wizard import ClarificationResolver


TRANSCRIPT = "Met with Jon Smth about Zephyr. The cube nettys cluster is down."


# =============================================================================
# FIXTURES
# =============================================================================

def write_entity(base: Path, subdir: str, data: dict) -> None:
    path = base / subdir / f"{data['id']}.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(data, f)


def read_entity(base: Path, subdir: str, entity_id: str) -> dict:
    with open(base / subdir / f"{entity_id}.yaml") as f:
        return yaml.safe_load(f)


@pytest.fixture
def context_dir():
    directory = Path(tempfile.mkdtemp(prefix="transcript_agent_test_"))

    write_entity(directory, "projects", {
        "id": "phoenix",
        "name": "Phoenix",
        "description": "Platform rewrite",
        "notes": "Started in Q1",
        "classification": {"explicit_phrases": ["project phoenix"]},
        "routing": {"destination": "~/notes/phoenix"},
    })
    write_entity(directory, "projects", {
        "id": "garden",
        "name": "Garden",
    })
    write_entity(directory, "terms", {
        "id": "kubernetes",
        "name": "Kubernetes",
        "sounds_like": ["cube netties"],
        "projects": ["phoenix"],
    })

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


@pytest.fixture
def state(ctx):
    return TranscriptionState(
        original_text=TRANSCRIPT,
        corrected_text=TRANSCRIPT,
        resolved_entities=ctx.resolved_entities,
    )


def answer(ctx: ToolContext, response=None, info=None) -> MagicMock:
    handler = MagicMock()
    handler.handle_clarification = AsyncMock(
        return_value=ClarificationResponse(response=response, additional_info=info)
    )
    ctx.interactive_handler = handler
    return handler


async def clarify(ctx, state, changes, tool_class, args):
    """Run a lookup and hand its clarification to a fresh resolver."""
    result = await tool_class(ctx).execute(args)
    assert result.needs_user_input is True
    resolver = ClarificationResolver(ctx, state, changes)
    await resolver.resolve(tool_class.name, args, result)
    return result


# =============================================================================
# TEST 1-2: create
# =============================================================================

@pytest.mark.asyncio
async def test_create_project_without_destination(ctx, state, context_dir):
    """
    Test 1: No destination means no routing.destination and no route decision.

    Verifies:
    - Project id is slugified from the name
    - explicit_phrases seeded from heard term and name, lowercased, deduplicated
    - The saved file has no destination key at all
    - The new project is visible to the next lookup (save + reload)
    """
    changes = []
    answer(ctx, response="New Project", info={"action": "create", "project_name": "New Project"})

    await clarify(ctx, state, changes, LookupProjectTool, {"name": "Zephyr"})

    assert state.route_decision is None

    saved = read_entity(context_dir, "projects", "new-project")
    assert saved["name"] == "New Project"
    assert saved["classification"]["explicit_phrases"] == ["zephyr", "new project"]
    assert "destination" not in saved["routing"]

    assert len(changes) == 1
    assert changes[0].action == "created"
    assert changes[0].entity_id == "new-project"
    assert "destination" not in changes[0].details

    found = await LookupProjectTool(ctx).execute({"name": "new project"})
    assert found.data["found"] is True

    print("✓ Test 1 passed: Create project without destination")


@pytest.mark.asyncio
async def test_create_project_with_destination(ctx, state, context_dir):
    """
    Test 2: A destination produces a synthetic route decision.

    Verifies:
    - Wizard payload may be a model instance, not just a dict
    """
    changes = []
    answer(ctx, info=ProjectWizardCreate(project_name="Zephyr", destination="~/notes/zephyr"))

    await clarify(ctx, state, changes, LookupProjectTool, {"name": "Zephyr"})

    decision = state.route_decision
    assert decision.project_id == "zephyr"
    assert decision.destination.path == "~/notes/zephyr"
    assert decision.confidence == 1.0
    assert decision.signals[0].type == "explicit_phrase"

    saved = read_entity(context_dir, "projects", "zephyr")
    assert saved["routing"]["destination"] == "~/notes/zephyr"
    assert saved["classification"]["explicit_phrases"] == ["zephyr"]

    print("✓ Test 2 passed: Create project with destination")


# =============================================================================
# TEST 3-5: link
# =============================================================================

@pytest.mark.asyncio
async def test_link_alias_to_term(ctx, state, context_dir):
    """
    Test 3: Alias of an existing term.

    Verifies:
    - Alias appended to sounds_like (deduplicated)
    - Both queried name and alias resolved to the term's canonical name
    - Routing adopted from the term's first project
    """
    changes = []
    answer(ctx, info={"action": "link", "linked_term_name": "kubernetes"})

    await clarify(ctx, state, changes, LookupProjectTool, {"name": "cube nettys"})

    saved = read_entity(context_dir, "terms", "kubernetes")
    assert saved["sounds_like"] == ["cube netties", "cube nettys"]
    assert state.resolved_entities.get("cube nettys") == "Kubernetes"
    assert state.route_decision.project_id == "phoenix"
    assert changes[0].action == "updated"
    assert changes[0].details["added_alias"] == "cube nettys"

    print("✓ Test 3 passed: Link alias to term")


@pytest.mark.asyncio
async def test_link_to_project_by_index(ctx, state, context_dir):
    """
    Test 4: Link to a known project by index.

    Verifies:
    - Heard term appended to explicit_phrases
    - Description appended to notes
    - Existing destination kept and adopted as the route
    """
    changes = []
    answer(ctx, info={"action": "link", "linked_project_index": 1, "term_description": "codename"})

    result = await clarify(ctx, state, changes, LookupProjectTool, {"name": "Zephyr"})
    assert [p["id"] for p in result.data["known_projects"]] == ["garden", "phoenix"]

    saved = read_entity(context_dir, "projects", "phoenix")
    assert saved["classification"]["explicit_phrases"] == ["project phoenix", "zephyr"]
    assert saved["notes"] == "Started in Q1\n\nZephyr: codename"
    assert saved["routing"]["destination"] == "~/notes/phoenix"
    assert state.route_decision.project_id == "phoenix"

    print("✓ Test 4 passed: Link to project by index")


@pytest.mark.asyncio
async def test_malformed_answers_are_noops(ctx, state, context_dir):
    """
    Test 5: Malformed wizard answers change nothing.

    Verifies:
    - link with neither term nor index
    - link with an out-of-range index
    - link to a term that doesn't exist
    - an unknown action
    """
    before = sorted(str(p) for p in context_dir.rglob("*.yaml"))

    for info in [
        {"action": "link"},
        {"action": "link", "linked_project_index": 7},
        {"action": "link", "linked_term_name": "Nonexistent"},
        {"action": "explode"},
        "not a wizard result",
    ]:
        changes = []
        answer(ctx, info=info)
        await clarify(ctx, state, changes, LookupProjectTool, {"name": "Zephyr"})
        assert changes == []

    assert sorted(str(p) for p in context_dir.rglob("*.yaml")) == before
    assert state.route_decision is None

    print("✓ Test 5 passed: Malformed answers are no-ops")


# =============================================================================
# TEST 6-8: term, ignore, person
# =============================================================================

@pytest.mark.asyncio
async def test_define_term_with_nested_project(ctx, state, context_dir):
    """
    Test 6: Term created together with a new project.

    Verifies:
    - Known-project indices resolved to ids
    - Nested project created first and appended to the term's projects
    - Route decision taken from the nested project's destination
    """
    changes = []
    answer(ctx, response="Zephyr", info={
        "action": "term",
        "term_name": "Zephyr",
        "term_expansion": "Zero Effort Provisioning",
        "term_projects": [0, 9],
        "created_project": {
            "action": "create",
            "project_name": "Provisioning",
            "destination": "~/notes/provisioning",
        },
    })

    await clarify(ctx, state, changes, LookupProjectTool, {"name": "Zephyr"})

    term = read_entity(context_dir, "terms", "zephyr")
    assert term["projects"] == ["garden", "provisioning"]
    assert term["expansion"] == "Zero Effort Provisioning"
    assert term["sounds_like"] == ["zephyr"]

    project = read_entity(context_dir, "projects", "provisioning")
    assert project["classification"]["explicit_phrases"] == ["provisioning", "zephyr"]

    assert [c.entity_type for c in changes] == ["project", "term"]
    assert state.route_decision.project_id == "provisioning"

    print("✓ Test 6 passed: Define term with nested project")


@pytest.mark.asyncio
async def test_ignore_then_lookup(ctx, state, context_dir):
    """
    Test 7: An ignored word is skipped without prompting next time.
    """
    changes = []
    answer(ctx, info={"action": "ignore"})

    await clarify(ctx, state, changes, LookupProjectTool, {"name": "Um, Yeah"})

    saved = read_entity(context_dir, "ignored", "um-yeah")
    assert saved["name"] == "Um, Yeah"
    assert saved["ignored_at"]
    assert changes[0].entity_type == "ignored"

    again = await LookupProjectTool(ctx).execute({"name": "um, yeah"})
    assert again.needs_user_input is False
    assert again.data["ignored"] is True

    print("✓ Test 7 passed: Ignore then lookup")


@pytest.mark.asyncio
async def test_create_person(ctx, state, context_dir):
    """
    Test 8: new_person wizard creates a person linked to a known project.

    Verifies:
    - sounds_like seeded from the heard name
    - projects set from the linked index
    - heard name resolved to the canonical name
    - routing adopted from the linked project
    """
    changes = []
    answer(ctx, info={
        "action": "create",
        "person_name": "Jon Smith",
        "organization": "Acme",
        "linked_project_index": 1,
    })

    await clarify(ctx, state, changes, LookupPersonTool, {"name": "Jon Smth"})

    person = read_entity(context_dir, "people", "jon-smith")
    assert person["name"] == "Jon Smith"
    assert person["organization"] == "Acme"
    assert person["sounds_like"] == ["jon smth"]
    assert person["projects"] == ["phoenix"]

    assert state.resolved_entities.get("Jon Smth") == "Jon Smith"
    assert state.route_decision.project_id == "phoenix"
    assert changes[0].details["heard_as"] == "Jon Smth"

    found = await LookupPersonTool(ctx).execute({"name": "Jon Smith", "phonetic": "jon smth"})
    assert found.data["found"] is True

    print("✓ Test 8 passed: Create person")


# =============================================================================
# TEST 9-11: Failures, skip, cache
# =============================================================================

@pytest.mark.asyncio
async def test_persistence_failure_is_tolerated(ctx, state, context_dir):
    """
    Test 9: A failing store never aborts the wizard.

    Verifies:
    - No exception escapes
    - No change record for the failed write
    - Route decision and cache updates still applied
    """
    ctx.context_store.save_entity = AsyncMock(side_effect=OSError("disk full"))
    changes = []

    answer(ctx, info={"action": "create", "destination": "~/notes/zephyr"})
    await clarify(ctx, state, changes, LookupProjectTool, {"name": "Zephyr"})
    assert changes == []
    assert state.route_decision.project_id == "zephyr"

    answer(ctx, info={"action": "create", "person_name": "Jon Smith"})
    await clarify(ctx, state, changes, LookupPersonTool, {"name": "Jon Smth"})
    assert changes == []
    assert state.resolved_entities.get("Jon Smth") == "Jon Smith"
    assert not (context_dir / "people").exists()

    print("✓ Test 9 passed: Persistence failure tolerated")


@pytest.mark.asyncio
async def test_skip_and_response_only(ctx, state, context_dir):
    """
    Test 10: Response feeds the cache; skip writes nothing.
    """
    before = sorted(str(p) for p in context_dir.rglob("*.yaml"))
    changes = []

    answer(ctx, response="Zephyr Labs", info={"action": "skip"})
    await clarify(ctx, state, changes, LookupProjectTool, {"name": "Zephyr"})

    assert state.resolved_entities.get("Zephyr") == "Zephyr Labs"
    assert changes == []
    assert sorted(str(p) for p in context_dir.rglob("*.yaml")) == before

    cached = await LookupProjectTool(ctx).execute({"name": "Zephyr"})
    assert cached.data["cached"] is True

    print("✓ Test 10 passed: Skip and response only")


def test_resolved_entities_first_answer_wins():
    """
    Test 11: The session cache is monotonic.
    """
    resolved = ResolvedEntities()

    assert resolved.record("Jon Smth", "Jon Smith") is True
    assert resolved.record("Jon Smth", "John Smyth") is False
    assert resolved.record("", "x") is False

    assert resolved.get("Jon Smth") == "Jon Smith"
    assert "Jon Smth" in resolved
    assert len(resolved) == 1
    assert resolved.items() == [("Jon Smth", "Jon Smith")]

    print("✓ Test 11 passed: First answer wins")
