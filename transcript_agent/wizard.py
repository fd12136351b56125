"""
Clarification resolver: turns "I don't know this name" into context entities.

WHAT THIS FILE DOES:
-------------------
When a lookup tool returns `needs_user_input=True` and an interactive
handler is attached, the executor hands the result to `ClarificationResolver`:

    ToolResult(needs_user_input)
            │
            ▼
    ClarificationRequest ──► handler.handle_clarification() ──► ClarificationResponse
                                                                      │
            ┌─────────────────────────────────────────────────────────┤
            ▼                                                         ▼
    response text -> resolved cache                 additional_info -> wizard branch
                                                     (create / link / term / ignore / skip)

The resolver is also the only writer of the session's resolved-entity cache
and of the transcription state's routing and referenced entities: the
executor routes every successful lookup result through `absorb()` too.

PERSISTENCE IS BEST-EFFORT:
--------------------------
Every entity write goes through `ContextStore.commit_entity()` (save + reload).
A failed write is logged and skipped. Routing and cache updates that the
branch computed are still applied, and the change log only lists writes
that actually happened.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, TypeAdapter, ValidationError

from .schemas import (
    PERSON_WIZARD_ADAPTER,
    PROJECT_LIST_ADAPTER,
    PROJECT_WIZARD_ADAPTER,
    BaseEntity,
    ClarificationRequest,
    ClassificationSignal,
    ContextChangeRecord,
    IgnoredTerm,
    NestedProject,
    Person,
    PersonWizardCreate,
    Project,
    ProjectClassification,
    ProjectRouting,
    ProjectWizardCreate,
    ProjectWizardIgnore,
    ProjectWizardLink,
    ProjectWizardTerm,
    RouteDecision,
    RouteDestination,
    Term,
    ToolResult,
)
from .session import ToolContext, TranscriptionState
from .tools import slugify

logger = logging.getLogger(__name__)


def _dedupe(values: list[str]) -> list[str]:
    """Drop empties and repeats, keeping first-seen order."""
    seen: list[str] = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


def _details(**kwargs: Any) -> dict[str, Any]:
    return {k: v for k, v in kwargs.items() if v is not None}


class ClarificationResolver:
    """
    Applies human answers and lookup results to one transcript's state.

    Example usage:
        resolver = ClarificationResolver(ctx, state, changes)
        await resolver.resolve("lookup_person", {"name": "Jon Smth"}, result)
        state.resolved_entities.get("Jon Smth")   # "Jon Smith"
    """

    def __init__(self, ctx: ToolContext, state: TranscriptionState, changes: list[ContextChangeRecord]):
        self.ctx = ctx
        self.state = state
        self.changes = changes
        self.store = ctx.context_store
        self.resolved = state.resolved_entities

    # =========================================================================
    # CLARIFICATION
    # =========================================================================

    async def resolve(self, tool_name: str, args: dict[str, Any], result: ToolResult) -> None:
        """Ask the interactive handler and apply whatever it answers."""
        handler = self.ctx.interactive_handler
        if handler is None:
            return

        data = result.data or {}
        heard = str(args.get("name") or args.get("term") or "")

        request = ClarificationRequest(
            type=data.get("clarification_type") or "general",
            term=data.get("term") or heard,
            context=result.user_prompt or "",
            suggestion=data.get("suggestion"),
            options=data.get("options"),
        )

        logger.info(f"Interactive: {tool_name} requires clarification for '{request.term}'")
        response = await handler.handle_clarification(request)

        if response.response and self.resolved.record(heard, response.response):
            logger.info(f"Clarified: {heard} -> {response.response}")

        if response.additional_info is None:
            return

        known_projects = PROJECT_LIST_ADAPTER.validate_python(data.get("known_projects") or [])

        if request.type == "new_project":
            wizard = self._validate(PROJECT_WIZARD_ADAPTER, response.additional_info)
            if wizard is not None:
                await self._apply_project_wizard(wizard, heard, known_projects)
        elif request.type == "new_person":
            wizard = self._validate(PERSON_WIZARD_ADAPTER, response.additional_info)
            if wizard is not None:
                await self._apply_person_wizard(wizard, heard, known_projects)

    @staticmethod
    def _validate(adapter: TypeAdapter, info: Any) -> Optional[BaseModel]:
        if isinstance(info, BaseModel):
            info = info.model_dump()
        try:
            return adapter.validate_python(info)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed wizard result: {e}")
            return None

    # =========================================================================
    # SUCCESSFUL LOOKUPS
    # =========================================================================

    def absorb(self, tool_name: str, args: dict[str, Any], result: ToolResult) -> None:
        """
        Fold a tool result's resolved entities and routing into the state.

        Runs for every tool result, clarification or not.
        """
        data = result.data or {}
        referenced = self.state.referenced_entities

        person = data.get("person")
        if isinstance(person, dict):
            referenced.people.add(person["id"])
            heard = str(args.get("name") or "")
            if heard and heard != person["name"]:
                self.resolved.record(heard, person["name"])

        term = data.get("term")
        if isinstance(term, dict):
            referenced.terms.add(term["id"])

        company = data.get("company")
        if isinstance(company, dict):
            referenced.companies.add(company["id"])

        decision = data.get("routing_decision")
        if isinstance(decision, dict) and decision.get("destination"):
            self.state.route_decision = RouteDecision.model_validate(decision)
            if self.state.route_decision.project_id:
                referenced.projects.add(self.state.route_decision.project_id)

        project = data.get("project")
        if data.get("found") and isinstance(project, dict):
            referenced.projects.add(project["id"])
            routing = project.get("routing") or {}
            if routing.get("destination"):
                self._route_to(
                    project["id"],
                    routing["destination"],
                    signal=project["name"],
                    reasoning=f'Matched project "{project["name"]}" with routing to {routing["destination"]}',
                    structure=routing.get("structure", "month"),
                )
                logger.debug(f"Captured routing from project lookup: {project['name']} -> {routing['destination']}")

    # =========================================================================
    # SHARED HELPERS
    # =========================================================================

    async def _commit(self, entity: BaseEntity, change: ContextChangeRecord) -> bool:
        try:
            await self.store.commit_entity(entity)
        except Exception as e:
            logger.warning(f"Failed to save {entity.type} '{entity.name}': {e}")
            return False
        self.changes.append(change)
        return True

    def _route_to(
        self,
        project_id: str,
        destination: str,
        signal: str,
        reasoning: str,
        structure: str = "month",
    ) -> None:
        self.state.route_decision = RouteDecision(
            project_id=project_id,
            destination=RouteDestination(path=destination, structure=structure),
            confidence=1.0,
            signals=[ClassificationSignal(type="explicit_phrase", value=signal or project_id, weight=1.0)],
            reasoning=reasoning,
        )

    def _route_to_project(self, project: Project, signal: str, reasoning: str) -> None:
        if project.routing.destination:
            self._route_to(
                project.id,
                project.routing.destination,
                signal=signal,
                reasoning=reasoning,
                structure=project.routing.structure,
            )

    @staticmethod
    def _pick(known_projects: list[Project], index: Optional[int]) -> Optional[Project]:
        if index is None or not 0 <= index < len(known_projects):
            return None
        return known_projects[index]

    async def _create_project(
        self,
        name: str,
        destination: Optional[str],
        description: Optional[str],
        phrases: list[str],
        reasoning: str,
        **details: Any,
    ) -> Optional[str]:
        """
        Create and commit a project; route to it when a destination was given.

        Without a destination the project has no `routing.destination` at all,
        so the global default keeps applying to it.

        Returns:
            The new project's id, or None if the write failed
        """
        project_id = slugify(name)
        project = Project(
            id=project_id,
            name=name,
            description=description or f'Project for "{name}"',
            classification=ProjectClassification(
                context_type="work",
                explicit_phrases=_dedupe([p.lower() for p in phrases]),
            ),
            routing=ProjectRouting(destination=destination or None),
            active=True,
        )

        saved = await self._commit(
            project,
            ContextChangeRecord(
                entity_type="project",
                entity_id=project_id,
                entity_name=name,
                action="created",
                details=_details(destination=destination or None, description=description, **details),
            ),
        )
        if saved:
            logger.info(
                f"Created new project: {name}"
                + (f" -> {destination}" if destination else " (using default destination)")
            )

        if destination:
            self._route_to(project_id, destination, signal=phrases[0] if phrases else name, reasoning=reasoning)

        return project_id if saved else None

    async def _create_nested_project(
        self, nested: Optional[NestedProject], phrases: list[str], reasoning: str, **details: Any
    ) -> Optional[str]:
        if nested is None or nested.action != "create" or not nested.project_name:
            return None
        return await self._create_project(
            nested.project_name,
            nested.destination,
            nested.description,
            [nested.project_name] + phrases,
            reasoning,
            **details,
        )

    # =========================================================================
    # NEW PROJECT WIZARD
    # =========================================================================

    async def _apply_project_wizard(self, wizard: BaseModel, heard: str, known_projects: list[Project]) -> None:
        if isinstance(wizard, ProjectWizardCreate):
            name = wizard.project_name or heard
            if not name:
                return
            await self._create_project(
                name,
                wizard.destination,
                wizard.description,
                [heard, name],
                reasoning=f'User created new project "{name}" routing to {wizard.destination}',
                triggered_by_term=heard,
            )

        elif isinstance(wizard, ProjectWizardLink):
            if wizard.linked_term_name:
                await self._link_to_term(wizard, heard)
            elif self._pick(known_projects, wizard.linked_project_index):
                await self._link_to_project(wizard, heard, known_projects[wizard.linked_project_index])
            else:
                logger.debug(f"Link for '{heard}' has no term and no valid project index; nothing to do")

        elif isinstance(wizard, ProjectWizardTerm):
            await self._define_term(wizard, heard, known_projects)

        elif isinstance(wizard, ProjectWizardIgnore):
            await self._ignore(wizard.ignored_term or heard)

        # ProjectWizardSkip: nothing to do

    async def _link_to_term(self, wizard: ProjectWizardLink, heard: str) -> None:
        """Add the heard word as a sounds-like variant of an existing term."""
        target = wizard.linked_term_name.lower()
        term = next(
            (e for e in self.store.search(wizard.linked_term_name) if e.type == "term" and e.name.lower() == target),
            None,
        )
        if term is None:
            logger.warning(f"Could not find existing term '{wizard.linked_term_name}' to link alias")
            return

        alias = wizard.alias_name or heard
        variants = _dedupe(list(term.sounds_like) + [alias.lower()])
        updated = term.model_copy(update={"sounds_like": variants})

        if await self._commit(
            updated,
            ContextChangeRecord(
                entity_type="term",
                entity_id=term.id,
                entity_name=term.name,
                action="updated",
                details={"added_alias": alias, "sounds_like": variants},
            ),
        ):
            logger.info(f"Added alias '{alias}' to existing term '{term.name}'")

        self.resolved.record(heard, term.name)
        self.resolved.record(alias, term.name)

        if term.projects:
            primary = next((p for p in self.store.get_all_projects() if p.id == term.projects[0]), None)
            if primary:
                self._route_to_project(
                    primary,
                    signal=term.name,
                    reasoning=(
                        f'User linked "{alias}" as alias for term "{term.name}" '
                        f'associated with project "{primary.name}"'
                    ),
                )

    async def _link_to_project(self, wizard: ProjectWizardLink, heard: str, project: Project) -> None:
        """Teach an existing project to recognise the heard word."""
        phrases = _dedupe(list(project.classification.explicit_phrases) + [heard.lower()])

        notes = project.notes
        if wizard.term_description:
            base = project.notes or project.description or ""
            notes = f"{base}\n\n{heard}: {wizard.term_description}".strip()

        updated = project.model_copy(
            update={
                "notes": notes,
                "classification": project.classification.model_copy(update={"explicit_phrases": phrases}),
            }
        )

        if await self._commit(
            updated,
            ContextChangeRecord(
                entity_type="project",
                entity_id=project.id,
                entity_name=project.name,
                action="updated",
                details=_details(
                    added_alias=heard,
                    term_description=wizard.term_description,
                    explicit_phrases=phrases,
                ),
            ),
        ):
            logger.info(f"Linked '{heard}' to project '{project.name}'")

        self._route_to_project(
            project,
            signal=heard,
            reasoning=f'User linked "{heard}" to existing project "{project.name}"',
        )

    async def _define_term(self, wizard: ProjectWizardTerm, heard: str, known_projects: list[Project]) -> None:
        term_name = wizard.term_name or heard
        if not term_name:
            return

        project_ids = [
            known_projects[i].id for i in wizard.term_projects if 0 <= i < len(known_projects)
        ]

        nested = wizard.created_project
        new_project_id = await self._create_nested_project(
            nested,
            [term_name],
            reasoning=f'User created project "{nested.project_name if nested else term_name}" for term "{term_name}"',
            created_for_term=term_name,
        )
        if new_project_id:
            project_ids.append(new_project_id)

        term = Term(
            id=slugify(term_name),
            name=term_name,
            expansion=wizard.term_expansion,
            notes=wizard.term_description,
            projects=project_ids,
            sounds_like=_dedupe([heard.lower()]),
        )

        if await self._commit(
            term,
            ContextChangeRecord(
                entity_type="term",
                entity_id=term.id,
                entity_name=term_name,
                action="created",
                details=_details(
                    expansion=wizard.term_expansion,
                    projects=project_ids,
                    description=wizard.term_description,
                ),
            ),
        ):
            logger.info(f"Created new term: {term_name} (projects: {', '.join(project_ids) or 'none'})")

        if project_ids and self.state.route_decision is None:
            primary = next((p for p in known_projects if p.id == project_ids[0]), None)
            if primary:
                self._route_to_project(
                    primary,
                    signal=term_name,
                    reasoning=f'User created term "{term_name}" associated with project "{primary.name}"',
                )

    async def _ignore(self, name: str) -> None:
        if not name:
            return
        ignored = IgnoredTerm(
            id=slugify(name, strict=True),
            name=name,
            reason="User chose to ignore this term",
            ignored_at=datetime.now(timezone.utc).isoformat(),
        )
        if await self._commit(
            ignored,
            ContextChangeRecord(
                entity_type="ignored",
                entity_id=ignored.id,
                entity_name=name,
                action="created",
                details={"reason": ignored.reason},
            ),
        ):
            logger.info(f"Added to ignore list: {name}")

    # =========================================================================
    # NEW PERSON WIZARD
    # =========================================================================

    async def _apply_person_wizard(self, wizard: BaseModel, heard: str, known_projects: list[Project]) -> None:
        if not isinstance(wizard, PersonWizardCreate):
            return

        person_name = wizard.person_name or heard
        if not person_name:
            return

        linked_project_id = await self._create_nested_project(
            wizard.created_project,
            [],
            reasoning=f'User created project for person "{person_name}"',
            created_for_person=person_name,
        )

        if linked_project_id is None:
            linked = self._pick(known_projects, wizard.linked_project_index)
            if linked:
                linked_project_id = linked.id
                self._route_to_project(
                    linked,
                    signal=person_name,
                    reasoning=f'User linked person "{person_name}" to project "{linked.name}"',
                )
            elif wizard.linked_project_id:
                linked_project_id = wizard.linked_project_id

        person = Person(
            id=slugify(person_name),
            name=person_name,
            organization=wizard.organization,
            notes=wizard.notes,
            projects=[linked_project_id] if linked_project_id else [],
            sounds_like=_dedupe([heard.lower()]),
        )

        if await self._commit(
            person,
            ContextChangeRecord(
                entity_type="person",
                entity_id=person.id,
                entity_name=person_name,
                action="created",
                details=_details(
                    organization=wizard.organization,
                    linked_project=linked_project_id,
                    notes=wizard.notes,
                    heard_as=heard,
                ),
            ),
        ):
            logger.info(
                f"Created new person: {person_name} "
                f"(org: {wizard.organization or 'none'}, project: {linked_project_id or 'none'})"
            )

        self.resolved.record(heard, person_name)
