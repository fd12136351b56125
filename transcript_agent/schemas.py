"""
Pydantic schemas for the agentic transcript enhancer.

WHY THIS FILE EXISTS:
--------------------
Everything that crosses a boundary in this system has a shape:
- Entities loaded from (and written back to) the context store
- Tool definitions handed to the reasoning model, and tool results fed back
- Conversation messages replayed to the model on every turn
- Clarification requests shown to a human, and the wizard answers they give

Defining those shapes here gives us:
1. Validation at the boundary (a malformed wizard answer fails loudly here,
   not three branches deep in the resolver)
2. JSON schema / JSON dumps for free when talking to the model
3. Typed Python objects everywhere else

WIZARD RESULTS ARE CLOSED UNIONS:
--------------------------------
A human answering "who is Jon Smth?" picks exactly one follow-up action.
Each action is its own model, keyed by the `action` discriminator:

    ProjectWizardResult = create | link | term | ignore | skip
    PersonWizardResult  = create | skip

so the resolver can `match` on the variant instead of checking a dozen
optional fields.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator


# =============================================================================
# ENTITY SCHEMAS
# =============================================================================
# These mirror what the context store holds. Extra keys are preserved so that
# a load -> modify -> save cycle never drops fields we don't model.

EntityType = Literal["person", "project", "company", "term", "ignored"]
ContextType = Literal["work", "personal", "mixed"]
FilesystemStructure = Literal["none", "year", "month", "day"]
FilenameOption = Literal["date", "time", "subject"]


class BaseEntity(BaseModel):
    """Common fields for every stored entity."""
    model_config = ConfigDict(extra="allow")

    id: str = Field(description="Unique identifier (slug)")
    name: str = Field(description="Display name, always the correct spelling")
    notes: Optional[str] = Field(default=None, description="Free-form notes")


class Person(BaseEntity):
    """
    A named individual the user mentions.

    Example:
        Person(
            id="jon-smith",
            name="Jon Smith",
            organization="Acme",
            sounds_like=["jon smth", "john smith"],
            projects=["phoenix"],
        )
    """
    type: Literal["person"] = "person"
    organization: Optional[str] = None
    role: Optional[str] = None
    sounds_like: list[str] = Field(
        default_factory=list,
        description="Common mishearings of this name"
    )
    projects: list[str] = Field(default_factory=list)


class ProjectClassification(BaseModel):
    """Signals that tie a transcript to a project."""
    model_config = ConfigDict(extra="allow")

    context_type: ContextType = "work"
    explicit_phrases: list[str] = Field(
        default_factory=list,
        description="High-confidence trigger phrases"
    )
    topics: list[str] = Field(default_factory=list)
    associated_people: list[str] = Field(default_factory=list)
    associated_companies: list[str] = Field(default_factory=list)


class ProjectRouting(BaseModel):
    """
    Where notes for a project are filed.

    `destination` is optional on purpose: a project without one uses the
    global default destination, which must never be copied into the entity.
    """
    model_config = ConfigDict(extra="allow")

    destination: Optional[str] = None
    structure: FilesystemStructure = "month"
    filename_options: list[FilenameOption] = Field(
        default_factory=lambda: ["date", "time", "subject"]
    )
    auto_tags: list[str] = Field(default_factory=list)


class Project(BaseEntity):
    """A work or personal context that affects routing."""
    type: Literal["project"] = "project"
    description: Optional[str] = None
    classification: ProjectClassification = Field(default_factory=ProjectClassification)
    routing: ProjectRouting = Field(default_factory=ProjectRouting)
    sounds_like: list[str] = Field(default_factory=list)
    active: Optional[bool] = None

    @property
    def is_active(self) -> bool:
        """Projects are active unless explicitly switched off."""
        return self.active is not False


class Company(BaseEntity):
    """An organization referenced in notes."""
    type: Literal["company"] = "company"
    full_name: Optional[str] = None
    industry: Optional[str] = None
    sounds_like: list[str] = Field(default_factory=list)


class Term(BaseEntity):
    """Domain terminology or an acronym, optionally tied to projects."""
    type: Literal["term"] = "term"
    expansion: Optional[str] = None
    domain: Optional[str] = None
    description: Optional[str] = None
    sounds_like: list[str] = Field(default_factory=list)
    projects: list[str] = Field(default_factory=list)
    topics: list[str] = Field(default_factory=list)


class IgnoredTerm(BaseEntity):
    """A phrase the user never wants to be asked about again."""
    type: Literal["ignored"] = "ignored"
    reason: Optional[str] = None
    ignored_at: Optional[str] = None


Entity = Annotated[
    Union[Person, Project, Company, Term, IgnoredTerm],
    Field(discriminator="type"),
]

ENTITY_ADAPTER: TypeAdapter = TypeAdapter(Entity)
PROJECT_LIST_ADAPTER: TypeAdapter = TypeAdapter(list[Project])


# =============================================================================
# TOOL SCHEMAS
# =============================================================================

class ToolDefinition(BaseModel):
    """
    What the reasoning model sees for each tool.

    `parameters` is a JSON-schema object, passed through verbatim.
    """
    name: str = Field(description="Tool name, e.g. 'lookup_person'")
    description: str = Field(description="Description shown to the model")
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


class ToolResult(BaseModel):
    """
    Uniform result envelope returned by every tool.

    A result with `needs_user_input=True` is a request for a human; it must
    carry a non-empty `user_prompt`. Anything else is final.
    """
    success: bool
    data: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    needs_user_input: bool = False
    user_prompt: Optional[str] = None

    @model_validator(mode="after")
    def prompt_required_for_input(self) -> "ToolResult":
        if self.needs_user_input and not (self.user_prompt or "").strip():
            raise ValueError("needs_user_input requires a non-empty user_prompt")
        return self


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""
    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# CONVERSATION + REASONING SCHEMAS
# =============================================================================

class ConversationMessage(BaseModel):
    """
    One entry in the replay log sent to the reasoning client.

    Assistant turns may carry `tool_calls`; tool turns carry the
    `tool_call_id` of the call they answer.
    """
    role: Literal["system", "user", "assistant", "tool"]
    content: str = ""
    tool_call_id: Optional[str] = None
    tool_calls: Optional[list[ToolCall]] = None


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ReasoningRequest(BaseModel):
    """A single completion request."""
    prompt: str
    system_prompt: Optional[str] = None
    messages: list[ConversationMessage] = Field(
        default_factory=list,
        description="Full history; when empty, the prompt is sent on its own"
    )
    tools: Optional[list[ToolDefinition]] = None
    max_iterations: Optional[int] = None


class ReasoningResponse(BaseModel):
    """What a reasoning client hands back."""
    content: str = ""
    model: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    usage: Optional[TokenUsage] = None
    finish_reason: Optional[str] = None


# =============================================================================
# ROUTING SCHEMAS
# =============================================================================

class RouteDestination(BaseModel):
    path: str
    structure: FilesystemStructure = "month"
    filename_options: list[FilenameOption] = Field(
        default_factory=lambda: ["date", "time", "subject"]
    )


class ClassificationSignal(BaseModel):
    type: Literal[
        "explicit_phrase", "associated_person", "associated_company", "topic", "context_type"
    ]
    value: str
    weight: float = Field(ge=0.0, le=1.0)


class RouteDecision(BaseModel):
    """
    Where a transcript should be filed, and why.

    `project_id` is None when the default destination was used.
    """
    project_id: Optional[str] = None
    destination: RouteDestination
    confidence: float = Field(ge=0.0, le=1.0)
    signals: list[ClassificationSignal] = Field(default_factory=list)
    reasoning: str = ""


class RoutingContext(BaseModel):
    transcript_text: str
    audio_date: datetime
    source_file: str


# =============================================================================
# CLARIFICATION SCHEMAS
# =============================================================================

ClarificationType = Literal[
    "name_spelling",
    "new_person",
    "new_project",
    "new_company",
    "new_term",
    "general",
]


class ClarificationRequest(BaseModel):
    """What is shown to a human when automated resolution is ambiguous."""
    type: ClarificationType = "general"
    term: str
    context: str = ""
    suggestion: Optional[str] = None
    options: Optional[list[str]] = None


class NestedProject(BaseModel):
    """A project created inline while answering a term or person wizard."""
    action: Literal["create", "link", "skip"] = "create"
    project_name: Optional[str] = None
    destination: Optional[str] = None
    description: Optional[str] = None


class ProjectWizardCreate(BaseModel):
    """Create a brand new project for the unknown term."""
    action: Literal["create"] = "create"
    project_name: Optional[str] = None
    destination: Optional[str] = None
    description: Optional[str] = None


class ProjectWizardLink(BaseModel):
    """
    Link the unknown term to something that already exists.

    Either `linked_term_name` (the term becomes an alias of an existing
    term) or `linked_project_index` (an index into the `known_projects`
    list returned with the tool result) should be set. Neither is a no-op.
    """
    action: Literal["link"] = "link"
    linked_term_name: Optional[str] = None
    alias_name: Optional[str] = None
    linked_project_index: Optional[int] = None
    term_description: Optional[str] = None


class ProjectWizardTerm(BaseModel):
    """Define the unknown word as a term entity."""
    action: Literal["term"] = "term"
    term_name: Optional[str] = None
    term_expansion: Optional[str] = None
    term_description: Optional[str] = None
    term_projects: list[int] = Field(
        default_factory=list,
        description="Indices into known_projects"
    )
    created_project: Optional[NestedProject] = None


class ProjectWizardIgnore(BaseModel):
    action: Literal["ignore"] = "ignore"
    ignored_term: Optional[str] = None


class ProjectWizardSkip(BaseModel):
    action: Literal["skip"] = "skip"


ProjectWizardResult = Annotated[
    Union[
        ProjectWizardCreate,
        ProjectWizardLink,
        ProjectWizardTerm,
        ProjectWizardIgnore,
        ProjectWizardSkip,
    ],
    Field(discriminator="action"),
]


class PersonWizardCreate(BaseModel):
    """Save the unknown name as a new person."""
    action: Literal["create"] = "create"
    person_name: Optional[str] = None
    organization: Optional[str] = None
    notes: Optional[str] = None
    linked_project_id: Optional[str] = None
    linked_project_index: Optional[int] = None
    created_project: Optional[NestedProject] = None


class PersonWizardSkip(BaseModel):
    action: Literal["skip"] = "skip"


PersonWizardResult = Annotated[
    Union[PersonWizardCreate, PersonWizardSkip],
    Field(discriminator="action"),
]

PROJECT_WIZARD_ADAPTER: TypeAdapter = TypeAdapter(ProjectWizardResult)
PERSON_WIZARD_ADAPTER: TypeAdapter = TypeAdapter(PersonWizardResult)


class ClarificationResponse(BaseModel):
    """
    A human's answer to a clarification.

    `additional_info` holds a wizard result. It is kept loosely typed here
    because its variant set depends on the request type; the resolver
    validates it against the matching union.
    """
    type: ClarificationType = "general"
    term: str = ""
    response: Optional[str] = None
    should_remember: bool = False
    additional_info: Optional[Any] = None


# =============================================================================
# AUDIT SCHEMAS
# =============================================================================

class ContextChangeRecord(BaseModel):
    """
    Audit entry for one durable write to the context store.

    Frozen: once appended to the change log it is never modified.
    """
    model_config = ConfigDict(frozen=True)

    entity_type: EntityType
    entity_id: str
    entity_name: str
    action: Literal["created", "updated"]
    details: Optional[dict[str, Any]] = None


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def dump_entity(entity: BaseModel) -> dict:
    """
    Serialize an entity for storage or for a tool result.

    None-valued fields are dropped, so a project with no destination has no
    `routing.destination` key at all.
    """
    return entity.model_dump(mode="json", exclude_none=True)


def parse_entity(data: dict) -> BaseEntity:
    """Validate a raw dict into the matching entity model."""
    return ENTITY_ADAPTER.validate_python(data)
