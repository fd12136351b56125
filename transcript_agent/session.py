"""
Session-scoped state for one transcript.

WHY THIS FILE EXISTS:
--------------------
Everything here lives exactly as long as one `process()` call:
- ToolContext: the handles every tool is built from
- ResolvedEntities: "names already answered this session"
- TranscriptionState: what the executor accumulates while it works
- ProcessResult: what the caller gets back

None of it is persisted. Only entities written through the context store
(and the route decision, via the caller) outlive the call.

SINGLE-WRITER RULE:
------------------
ResolvedEntities is shared by reference between the executor and every tool
built from the same ToolContext. Tools only read it (`in`, `get`). The
executor's clarification resolver is the only writer (`record`). Entries are
never removed and never replaced with a different answer, so a tool that sees
a name once will see the same answer for the rest of the session.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Iterator, Optional

from .schemas import ContextChangeRecord, RouteDecision

if TYPE_CHECKING:
    from .context import ContextStore
    from .interactive import InteractiveHandler
    from .routing import RoutingEngine

logger = logging.getLogger(__name__)


# =============================================================================
# RESOLVED ENTITY CACHE
# =============================================================================

class ResolvedEntities:
    """
    Monotonic map of heard name -> canonical name / user answer.

    Example:
        resolved = ResolvedEntities()
        resolved.record("Jon Smth", "Jon Smith")
        resolved.record("Jon Smth", "Someone Else")   # ignored, first answer wins
        resolved.get("Jon Smth")                      # "Jon Smith"
    """

    def __init__(self):
        self._answers: dict[str, str] = {}

    def record(self, name: str, answer: str) -> bool:
        """
        Record an answer for a name.

        Returns:
            True if the entry was added, False if the name already had one
        """
        if not name or not answer:
            return False
        existing = self._answers.get(name)
        if existing is not None:
            if existing != answer:
                logger.debug(f"Keeping first answer for '{name}': '{existing}' (ignoring '{answer}')")
            return False
        self._answers[name] = answer
        return True

    def get(self, name: str) -> Optional[str]:
        return self._answers.get(name)

    def items(self) -> list[tuple[str, str]]:
        return list(self._answers.items())

    def __contains__(self, name: object) -> bool:
        return name in self._answers

    def __len__(self) -> int:
        return len(self._answers)

    def __iter__(self) -> Iterator[str]:
        return iter(self._answers)

    def __repr__(self) -> str:
        return f"ResolvedEntities({self._answers!r})"


# =============================================================================
# TOOL CONTEXT
# =============================================================================

@dataclass
class ToolContext:
    """
    Handles shared by every tool for one transcript.

    `interactive_mode` only changes how `verify_spelling` behaves. Whether a
    human is actually asked is decided by the executor, and only by the
    presence of `interactive_handler`.
    """
    transcript_text: str
    audio_date: datetime
    source_file: str
    context_store: "ContextStore"
    routing_engine: "RoutingEngine"
    interactive_mode: bool = False
    interactive_handler: Optional["InteractiveHandler"] = None
    resolved_entities: ResolvedEntities = field(default_factory=ResolvedEntities)


# =============================================================================
# TRANSCRIPTION STATE
# =============================================================================

@dataclass
class ReferencedEntities:
    """Ids of entities this transcript touched, for downstream indexing."""
    people: set[str] = field(default_factory=set)
    projects: set[str] = field(default_factory=set)
    terms: set[str] = field(default_factory=set)
    companies: set[str] = field(default_factory=set)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "people": sorted(self.people),
            "projects": sorted(self.projects),
            "terms": sorted(self.terms),
            "companies": sorted(self.companies),
        }


@dataclass
class TranscriptionState:
    """
    What the executor accumulates for one transcript.

    `corrected_text` is written once at the end, `confidence` is set exactly
    once by the outcome branch (0.9 normal, 0.8 forced re-request, 0.5
    fallback), and `route_decision` is overwritten by the latest
    authoritative routing signal.
    """
    original_text: str
    corrected_text: str
    resolved_entities: ResolvedEntities = field(default_factory=ResolvedEntities)
    referenced_entities: ReferencedEntities = field(default_factory=ReferencedEntities)
    unknown_entities: list[str] = field(default_factory=list)
    route_decision: Optional[RouteDecision] = None
    confidence: float = 0.0


# =============================================================================
# PROCESS RESULT
# =============================================================================

@dataclass
class ProcessResult:
    """
    Terminal output of `AgenticExecutor.process()`.

    `total_tokens` and `context_changes` are None (not 0 / []) when nothing
    was reported or changed.
    """
    enhanced_text: str
    state: TranscriptionState
    tools_used: list[str]
    iterations: int
    total_tokens: Optional[int] = None
    context_changes: Optional[list[ContextChangeRecord]] = None

    def to_dict(self) -> dict[str, Any]:
        """Summary dict with the optional fields omitted when unset."""
        result: dict[str, Any] = {
            "enhanced_text": self.enhanced_text,
            "tools_used": self.tools_used,
            "iterations": self.iterations,
            "confidence": self.state.confidence,
            "referenced_entities": self.state.referenced_entities.to_dict(),
        }
        if self.state.route_decision:
            result["route_decision"] = self.state.route_decision.model_dump(mode="json")
        if self.total_tokens is not None:
            result["total_tokens"] = self.total_tokens
        if self.context_changes is not None:
            result["context_changes"] = [c.model_dump(mode="json") for c in self.context_changes]
        return result
