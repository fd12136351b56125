"""
Routing: decide where a transcript is filed and build its output path.

The agentic loop only needs the RoutingEngine interface. PhraseRouter is the
simple implementation: the first active project whose explicit
phrase appears in the transcript wins, otherwise the default destination
is used.

PATH LAYOUT:
-----------
    structure="month", filename_options=["date", "time", "subject"]
    audio_date=2026-03-15 14:30, first sentence "Phoenix kickoff notes."

    ~/notes/2026/3/15-1430-phoenix-kickoff-notes.md

The date part of the filename drops whatever the directory already encodes.
"""

import logging
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

from .schemas import (
    ClassificationSignal,
    FilenameOption,
    FilesystemStructure,
    RouteDecision,
    RouteDestination,
    RoutingContext,
)

if TYPE_CHECKING:
    from .config import RoutingConfig
    from .context import ContextStore

logger = logging.getLogger(__name__)

SUBJECT_PREFIXES = re.compile(
    r"^(this is a note about|note about|regarding|re:|meeting notes?:?)",
    re.IGNORECASE,
)


# =============================================================================
# ROUTING INTERFACE
# =============================================================================

class RoutingEngine(ABC):
    """What the route_note tool depends on."""

    @abstractmethod
    def route(self, context: RoutingContext) -> RouteDecision:
        pass

    @abstractmethod
    def build_output_path(self, decision: RouteDecision, context: RoutingContext) -> str:
        pass


# =============================================================================
# PHRASE ROUTER
# =============================================================================

class PhraseRouter(RoutingEngine):
    """
    Routes by explicit trigger phrases on the projects in a context store.

    Projects are read from the store on every call, so projects created by
    the clarification wizard earlier in the run are routable immediately.
    """

    def __init__(self, config: "RoutingConfig", context_store: "ContextStore"):
        self.config = config
        self.context_store = context_store

    def default_destination(self) -> RouteDestination:
        return RouteDestination(
            path=self.config.default_destination,
            structure=self.config.structure,
            filename_options=list(self.config.filename_options),
        )

    def route(self, context: RoutingContext) -> RouteDecision:
        text = context.transcript_text.lower()

        for project in self.context_store.get_all_projects():
            if not project.is_active or not project.routing.destination:
                continue
            for phrase in project.classification.explicit_phrases:
                if phrase and phrase.lower() in text:
                    logger.debug(f"Routed to '{project.id}' via phrase '{phrase}'")
                    return RouteDecision(
                        project_id=project.id,
                        destination=RouteDestination(
                            path=project.routing.destination,
                            structure=project.routing.structure,
                            filename_options=list(project.routing.filename_options),
                        ),
                        confidence=1.0,
                        signals=[ClassificationSignal(type="explicit_phrase", value=phrase, weight=1.0)],
                        reasoning=f'Matched explicit phrase "{phrase}" for project "{project.name}"',
                    )

        return RouteDecision(
            project_id=None,
            destination=self.default_destination(),
            confidence=1.0,
            signals=[],
            reasoning="No project matches found, using default routing",
        )

    def build_output_path(self, decision: RouteDecision, context: RoutingContext) -> str:
        destination = decision.destination
        base = Path(os.path.expanduser(destination.path))
        directory = build_directory_path(base, destination.structure, context)
        filename = build_filename(destination.filename_options, context, destination.structure)
        return str(directory / f"{filename}.md")


# =============================================================================
# PATH HELPERS
# =============================================================================

def build_directory_path(base: Path, structure: FilesystemStructure, context: RoutingContext) -> Path:
    date = context.audio_date
    if structure == "year":
        return base / str(date.year)
    if structure == "month":
        return base / str(date.year) / str(date.month)
    if structure == "day":
        return base / str(date.year) / str(date.month) / str(date.day)
    return base


def build_filename(
    options: list[FilenameOption],
    context: RoutingContext,
    structure: FilesystemStructure,
) -> str:
    date = context.audio_date
    parts = []

    for option in options:
        if option == "date":
            if structure == "month":
                parts.append(f"{date.day:02d}")
            elif structure == "year":
                parts.append(f"{date.month:02d}-{date.day:02d}")
            elif structure == "none":
                parts.append(date.strftime("%y%m%d"))
        elif option == "time":
            parts.append(f"{date.hour:02d}{date.minute:02d}")
        elif option == "subject":
            subject = extract_subject(context.transcript_text, context.source_file)
            if subject:
                parts.append(subject)

    return re.sub(r"-{2,}", "-", "-".join(parts))


def extract_subject(text: str, source_file: str) -> str:
    """Slug of the first sentence, or of the source file name."""
    first_sentence = re.split(r"[.!?]", text, maxsplit=1)[0].strip()
    cleaned = SUBJECT_PREFIXES.sub("", first_sentence).strip()

    if 3 < len(cleaned) < 50:
        return slugify_subject(cleaned)

    return re.sub(r"[^a-zA-Z0-9-]", "-", Path(source_file).stem).lower()


def slugify_subject(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower())
    slug = re.sub(r"-{2,}", "-", slug).strip("-")
    return slug[:40]
