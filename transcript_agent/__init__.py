"""
transcript-agent - agentic enhancement of speech-to-text transcripts.

A reasoning model reads the raw transcript, calls tools to check names,
projects and terms against a context store, asks a human when nothing
matches, and returns a corrected Markdown transcript with a routing
decision and a log of the context entities it created or updated.

MODULES:
-------
schemas      Pydantic models for entities, tools, messages and wizard results
session      Per-transcript state (resolved cache, tool context, result)
tools        The five tools the model can call
execution    Tool registry and the agentic loop
wizard       Clarification resolver and entity wizard
context      Context store interface + YAML implementation
routing      Routing interface + phrase router
providers    OpenAI / Anthropic reasoning clients
interactive  Clarification handlers
"""

__version__ = "0.1.0"

# Re-export key classes for convenience
from .schemas import (
    ClarificationRequest,
    ClarificationResponse,
    ContextChangeRecord,
    Person,
    Project,
    ReasoningRequest,
    ReasoningResponse,
    RouteDecision,
    Term,
    ToolCall,
    ToolResult,
)

from .session import (
    ProcessResult,
    ResolvedEntities,
    ToolContext,
    TranscriptionState,
)

from .execution import (
    AgenticExecutor,
    ToolRegistry,
    create,
)

from .context import (
    ContextStore,
    YamlContextStore,
)

from .routing import (
    PhraseRouter,
    RoutingEngine,
)

from .providers import (
    AnthropicReasoningClient,
    OpenAIReasoningClient,
    ReasoningClient,
    get_provider,
)

from .interactive import (
    ConsoleInteractiveHandler,
    InteractiveHandler,
)

from .config import (
    Config,
    load_config,
    save_config,
)

from .cli import main as cli_main

__all__ = [
    # Schemas
    "ClarificationRequest",
    "ClarificationResponse",
    "ContextChangeRecord",
    "Person",
    "Project",
    "ReasoningRequest",
    "ReasoningResponse",
    "RouteDecision",
    "Term",
    "ToolCall",
    "ToolResult",
    # Session
    "ProcessResult",
    "ResolvedEntities",
    "ToolContext",
    "TranscriptionState",
    # Execution
    "AgenticExecutor",
    "ToolRegistry",
    "create",
    # Context + routing
    "ContextStore",
    "YamlContextStore",
    "PhraseRouter",
    "RoutingEngine",
    # Providers
    "AnthropicReasoningClient",
    "OpenAIReasoningClient",
    "ReasoningClient",
    "get_provider",
    # Interactive
    "ConsoleInteractiveHandler",
    "InteractiveHandler",
    # Config
    "Config",
    "load_config",
    "save_config",
    # CLI
    "cli_main",
]
