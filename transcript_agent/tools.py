"""
Tools the reasoning model can call while enhancing a transcript.

WHAT THIS FILE DOES:
-------------------
1. TranscriptionTool: the contract every tool satisfies
   (name, description, JSON-schema parameters, async execute -> ToolResult)
2. The five concrete tools:
   - lookup_person    resolve a (possibly misheard) name
   - lookup_project   resolve a project, directly or through a term
   - verify_spelling  ask a human about a term (interactive mode only)
   - route_note       ask the routing engine where the note goes
   - store_context    acknowledged but never persisted
3. Helpers shared by the lookups: transcript excerpting and id slugs

HOW A LOOKUP RESOLVES:
---------------------
    session cache (already answered?)  -> cached=True, never prompts
            │ miss
            ▼
    context store (search, sounds-like, trigger phrases)
            │ miss
            ▼
    needs_user_input=True + clarification payload

A tool never decides whether a human is actually asked. It always returns
the clarification payload; the executor prompts only if a handler exists.
Tools never call other tools and never write to the context store.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Optional

from .schemas import (
    BaseEntity,
    Project,
    RoutingContext,
    ToolDefinition,
    ToolResult,
    dump_entity,
)
from .session import ToolContext

logger = logging.getLogger(__name__)

SENTENCE_BOUNDARY = ".!?"
MAX_CONTEXT_LENGTH = 300


# =============================================================================
# SECTION 1: HELPERS
# =============================================================================

def slugify(name: str, strict: bool = False) -> str:
    """
    Build an entity id from a display name.

    Default: lowercase, whitespace runs -> "-". "New Project" -> "new-project".
    strict=True also folds every non-alphanumeric run into a single "-" and
    trims leading/trailing dashes (used for ignore-list ids).

    Both forms are idempotent: slugify(slugify(x)) == slugify(x).
    """
    if strict:
        slug = re.sub(r"[^a-z0-9]+", "-", name.lower())
        return slug.strip("-")
    return re.sub(r"\s+", "-", name.lower())


def _find_boundary(text: str, start: int, stop: int, step: int, count: int) -> Optional[int]:
    """Index of the `count`-th sentence boundary walking from start towards stop."""
    found = 0
    for i in range(start, stop, step):
        if text[i] in SENTENCE_BOUNDARY:
            found += 1
            if found == count:
                return i
    return None


def extract_transcript_context(transcript: str, target: str) -> Optional[str]:
    """
    Excerpt of the transcript around the first mention of `target`.

    The window covers the sentence containing the match plus one sentence on
    either side. Excerpts longer than 300 characters are narrowed to the
    single sentence containing the match, and hard-truncated with "..." if
    that still doesn't fit.

    Example:
        extract_transcript_context("A. B. TARGET is here. C. D.", "TARGET")
        # "B. TARGET is here. C."

    Returns:
        The excerpt, or None if `target` does not occur in the transcript
    """
    if not target:
        return None

    index = transcript.lower().find(target.lower())
    if index == -1:
        return None

    # Two boundaries back = end of the previous-but-one sentence
    before = _find_boundary(transcript, index - 1, -1, -1, 2)
    start = before + 1 if before is not None else 0

    after = _find_boundary(transcript, index + len(target), len(transcript), 1, 2)
    end = after + 1 if after is not None else len(transcript)

    context = transcript[start:end].strip()
    if len(context) <= MAX_CONTEXT_LENGTH:
        return context

    match = context.lower().find(target.lower())
    if match != -1:
        sentence_start = _find_boundary(context, match - 1, -1, -1, 1)
        sentence_end = _find_boundary(context, match + len(target), len(context), 1, 1)
        sentence = context[
            (sentence_start + 1 if sentence_start is not None else 0):
            (sentence_end + 1 if sentence_end is not None else len(context))
        ].strip()
        if len(sentence) <= MAX_CONTEXT_LENGTH:
            return sentence

    return context[:MAX_CONTEXT_LENGTH] + "..."


def describe_source(ctx: ToolContext) -> list[str]:
    """The "File: ... / Date: ..." header lines used in clarification prompts."""
    file_name = ctx.source_file.rsplit("/", 1)[-1] or ctx.source_file
    file_date = ctx.audio_date.strftime("%a, %b %d, %Y, %I:%M %p")
    return [f"File: {file_name}", f"Date: {file_date}"]


def project_option(project: Project) -> str:
    if project.description:
        return f"{project.name} - {project.description}"
    return project.name


def _first_of_type(entities: list[BaseEntity], entity_type: str) -> Optional[BaseEntity]:
    for entity in entities:
        if entity.type == entity_type:
            return entity
    return None


# =============================================================================
# SECTION 2: TOOL CONTRACT
# =============================================================================

class TranscriptionTool(ABC):
    """
    Base class for every tool.

    Subclasses set `name`, `description` and `parameters` (a JSON schema
    object) and implement `execute`. The session cache is captured by
    reference at construction: tools read it, never write it.
    """

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {"type": "object", "properties": {}}

    def __init__(self, ctx: ToolContext):
        self.ctx = ctx
        self.resolved = ctx.resolved_entities

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )

    @abstractmethod
    async def execute(self, args: dict[str, Any]) -> ToolResult:
        """Run the tool against an argument bag from the model."""

    def _cached(self, name: str) -> Optional[ToolResult]:
        answer = self.resolved.get(name)
        if answer is None:
            return None
        return ToolResult(
            success=True,
            data={
                "found": True,
                "suggestion": f'Already resolved: use "{answer}"',
                "cached": True,
            },
        )

    @staticmethod
    def _missing(param: str) -> ToolResult:
        return ToolResult(success=False, error=f"Missing required parameter: {param}")


# =============================================================================
# SECTION 3: CONCRETE TOOLS
# =============================================================================

class LookupPersonTool(TranscriptionTool):
    """Resolve a person's name against the session cache and the context store."""

    name = "lookup_person"
    description = (
        "Look up information about a person mentioned in the transcript. Use when you "
        "encounter a name that might need spelling verification or additional context."
    )
    parameters = {
        "type": "object",
        "properties": {
            "name": {
                "type": "string",
                "description": "The name to look up (as heard in transcript)",
            },
            "phonetic": {
                "type": "string",
                "description": "How the name sounds (for alias matching)",
            },
        },
        "required": ["name"],
    }

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        name = str(args.get("name") or "").strip()
        if not name:
            return self._missing("name")
        phonetic = args.get("phonetic")

        cached = self._cached(name)
        if cached:
            return cached

        store = self.ctx.context_store

        person = _first_of_type(store.search(name), "person")
        if person:
            return ToolResult(
                success=True,
                data={
                    "found": True,
                    "person": dump_entity(person),
                    "suggestion": f'Use "{person.name}" for correct spelling',
                },
            )

        if phonetic:
            match = store.find_by_sounds_like(str(phonetic), types=("person",))
            if match is not None and match.type == "person":
                return ToolResult(
                    success=True,
                    data={
                        "found": True,
                        "person": dump_entity(match),
                        "suggestion": f'"{phonetic}" likely refers to "{match.name}"',
                    },
                )

        known_projects = [p for p in store.get_all_projects() if p.is_active]

        prompt_lines = describe_source(self.ctx) + ["", f'Unknown person mentioned: "{name}"']
        excerpt = extract_transcript_context(self.ctx.transcript_text, name)
        if excerpt:
            prompt_lines += ["", "Context from transcript:", f'"{excerpt}"']

        return ToolResult(
            success=True,
            needs_user_input=True,
            user_prompt="\n".join(prompt_lines),
            data={
                "found": False,
                "clarification_type": "new_person",
                "term": name,
                "message": f'Person "{name}" not found. Asking user for details.',
                "known_projects": [dump_entity(p) for p in known_projects],
                "options": [project_option(p) for p in known_projects],
            },
        )


class LookupProjectTool(TranscriptionTool):
    """
    Resolve a project name.

    Resolution order after the cache and the ignore list:
    1. Project whose name/id matches
    2. Term whose name matches and which lists associated projects
    3. Sounds-like match (a project, or a term pointing at one)
    4. A project's explicit phrase contained in `triggerPhrase`
    """

    name = "lookup_project"
    description = (
        "Look up project information for routing and context. Use when you need to "
        "determine where this note should be filed."
    )
    parameters = {
        "type": "object",
        "properties": {
            "name": {
                "type": "string",
                "description": "The project name or identifier",
            },
            "triggerPhrase": {
                "type": "string",
                "description": "A phrase from the transcript that might indicate the project",
            },
        },
        "required": ["name"],
    }

    def _project_for_term(self, term: BaseEntity) -> Optional[Project]:
        project_ids = getattr(term, "projects", [])
        if not project_ids:
            return None
        by_id = {p.id: p for p in self.ctx.context_store.get_all_projects()}
        for project_id in project_ids:
            if project_id in by_id:
                return by_id[project_id]
        return None

    @staticmethod
    def _found(project: Project, **extra: Any) -> ToolResult:
        data = {"found": True, "project": dump_entity(project)}
        data.update(extra)
        return ToolResult(success=True, data=data)

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        name = str(args.get("name") or "").strip()
        if not name:
            return self._missing("name")
        trigger_phrase = args.get("triggerPhrase")

        cached = self._cached(name)
        if cached:
            return cached

        store = self.ctx.context_store

        if store.is_ignored(name):
            return ToolResult(
                success=True,
                data={
                    "found": False,
                    "ignored": True,
                    "message": f'"{name}" is on the ignore list. Skipping.',
                },
            )

        matches = store.search(name)

        project = _first_of_type(matches, "project")
        if project:
            return self._found(project)

        for entity in matches:
            if entity.type != "term":
                continue
            project = self._project_for_term(entity)
            if project:
                return self._found(project, term=dump_entity(entity), matched_via="term")

        sounds_like = store.find_by_sounds_like(name, types=("project", "term"))
        if sounds_like is not None:
            if sounds_like.type == "project":
                return self._found(sounds_like, matched_via="sounds_like")
            if sounds_like.type == "term":
                project = self._project_for_term(sounds_like)
                if project:
                    return self._found(project, term=dump_entity(sounds_like), matched_via="sounds_like")

        all_projects = store.get_all_projects()

        if trigger_phrase:
            phrase = str(trigger_phrase).lower()
            for candidate in all_projects:
                if any(p and p.lower() in phrase for p in candidate.classification.explicit_phrases):
                    return self._found(candidate, matched_trigger=trigger_phrase)

        known_projects = [p for p in all_projects if p.is_active]

        prompt_lines = describe_source(self.ctx) + ["", f'Unknown project or term: "{name}"']
        excerpt = extract_transcript_context(self.ctx.transcript_text, name) or trigger_phrase
        if excerpt:
            prompt_lines += ["", "Context from transcript:", f'"{excerpt}"']

        return ToolResult(
            success=True,
            needs_user_input=True,
            user_prompt="\n".join(prompt_lines),
            data={
                "found": False,
                "clarification_type": "new_project",
                "term": name,
                "trigger_phrase": trigger_phrase,
                "message": f'Project "{name}" not found. Asking user if this is a new project.',
                "known_projects": [dump_entity(p) for p in known_projects],
                "options": [project_option(p) for p in known_projects],
            },
        )


class VerifySpellingTool(TranscriptionTool):
    """Best guess in batch mode, a question for the human in interactive mode."""

    name = "verify_spelling"
    description = (
        "Request user verification for an unknown name or term. Use when you "
        "encounter something that needs human confirmation."
    )
    parameters = {
        "type": "object",
        "properties": {
            "term": {
                "type": "string",
                "description": "The term that needs verification",
            },
            "context": {
                "type": "string",
                "description": "Context around where this term appears",
            },
            "suggestedSpelling": {
                "type": "string",
                "description": "Your best guess at the correct spelling",
            },
        },
        "required": ["term"],
    }

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        term = str(args.get("term") or "").strip()
        if not term:
            return self._missing("term")
        context = args.get("context")
        suggested = args.get("suggestedSpelling")

        if not self.ctx.interactive_mode:
            return ToolResult(
                success=True,
                data={
                    "verified": False,
                    "use_suggestion": True,
                    "spelling": suggested or term,
                    "message": "Non-interactive mode: using best guess",
                },
            )

        prompt = f'Unknown term: "{term}"'
        if context:
            prompt += f' (context: "{context}")'
        if suggested:
            prompt += f'\nSuggested spelling: "{suggested}"'
        prompt += "\nPlease provide the correct spelling:"

        return ToolResult(
            success=True,
            needs_user_input=True,
            user_prompt=prompt,
            data={
                "clarification_type": "name_spelling",
                "term": term,
                "suggestion": suggested,
                "suggested_spelling": suggested,
            },
        )


class RouteNoteTool(TranscriptionTool):
    """Thin pass-through to the routing engine."""

    name = "route_note"
    description = "Determine the destination for this note based on content analysis."
    parameters = {
        "type": "object",
        "properties": {
            "projectHint": {
                "type": "string",
                "description": "The detected project name or hint",
            },
            "contentSummary": {
                "type": "string",
                "description": "Brief summary of what the note is about",
            },
        },
    }

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        routing = self.ctx.routing_engine
        routing_context = RoutingContext(
            transcript_text=self.ctx.transcript_text,
            audio_date=self.ctx.audio_date,
            source_file=self.ctx.source_file,
        )

        decision = routing.route(routing_context)
        output_path = routing.build_output_path(decision, routing_context)

        return ToolResult(
            success=True,
            data={
                "project_id": decision.project_id,
                "destination": output_path,
                "confidence": decision.confidence,
                "reasoning": decision.reasoning,
                "project_hint": args.get("projectHint"),
                "content_summary": args.get("contentSummary"),
                "routing_decision": decision.model_dump(mode="json"),
            },
        )


class StoreContextTool(TranscriptionTool):
    """
    Acknowledges "remember this" requests without writing anything.

    Durable writes only happen through the clarification wizard.
    """

    name = "store_context"
    description = (
        "Store new context information for future use. Use when you learn "
        "something new that should be remembered."
    )
    parameters = {
        "type": "object",
        "properties": {
            "entityType": {
                "type": "string",
                "enum": ["person", "project", "company", "term"],
                "description": "Type of entity to store",
            },
            "name": {
                "type": "string",
                "description": "Name of the entity",
            },
            "details": {
                "type": "object",
                "description": "Additional details about the entity",
            },
        },
        "required": ["entityType", "name"],
    }

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        return ToolResult(
            success=True,
            data={
                "stored": False,
                "message": (
                    "Context storage is not enabled for model requests. "
                    "Information noted but not persisted."
                ),
                "entity_type": args.get("entityType"),
                "name": args.get("name"),
            },
        )


def create_default_tools(ctx: ToolContext) -> list[TranscriptionTool]:
    """The fixed tool set, all bound to one ToolContext."""
    return [
        LookupPersonTool(ctx),
        LookupProjectTool(ctx),
        VerifySpellingTool(ctx),
        RouteNoteTool(ctx),
        StoreContextTool(ctx),
    ]
