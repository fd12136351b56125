"""
Execution engine: the agentic transcript enhancement loop.

WHAT THIS FILE DOES:
-------------------
1. ToolRegistry: name -> tool map for one transcript, plus definitions for
   the reasoning client
2. clean_response_content: strips tool chatter the model leaks into its
   final answer
3. AgenticExecutor: drives the multi-turn conversation until the model
   stops calling tools (or the iteration cap is hit)

EXECUTION FLOW:
--------------
    INIT          system prompt + transcript between sentinel markers
      │
      ▼
    FIRST_TURN    complete(tools=...)
      │
      ▼
    TOOL_TURN*    while reply has tool calls and iterations < 15:
      │             run every call in order (never in parallel)
      │             clarify via the interactive handler when needed
      │             append tool messages, then a continuation prompt
      │             complete() again
      ▼
    FINALIZE      reply > 50 chars      -> corrected text, confidence 0.9
                  otherwise              -> one forced request, confidence 0.8
      │
      ▼
    DONE          ProcessResult

Any exception escaping the loop lands in ERROR_FALLBACK: the original
transcript comes back unchanged with confidence 0.5. A partially enhanced
transcript is never returned. `process()` does not raise.
"""

import json
import logging
import re
from typing import Any, Optional

from .providers import ReasoningClient
from .schemas import (
    ContextChangeRecord,
    ConversationMessage,
    ReasoningRequest,
    ReasoningResponse,
    ToolDefinition,
    ToolResult,
)
from .session import ProcessResult, ResolvedEntities, ToolContext, TranscriptionState
from .tools import TranscriptionTool, create_default_tools
from .wizard import ClarificationResolver

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 15
MIN_TRANSCRIPT_LENGTH = 50


# =============================================================================
# SECTION 1: TOOL REGISTRY
# =============================================================================

class ToolRegistry:
    """
    The fixed tool set for one transcript.

    Built once per `process()` call from a ToolContext. Unknown tool names
    come back as a failed ToolResult. Exceptions raised by a tool are not
    caught here; the executor turns them into error results.

    Example usage:
        registry = ToolRegistry(ctx)
        registry.get_tool_definitions()            # handed to the model
        await registry.execute_tool("lookup_person", {"name": "Jon Smth"})
    """

    def __init__(self, ctx: ToolContext):
        self._tools: dict[str, TranscriptionTool] = {
            tool.name: tool for tool in create_default_tools(ctx)
        }

    def get_tools(self) -> list[TranscriptionTool]:
        return list(self._tools.values())

    def get_tool_definitions(self) -> list[ToolDefinition]:
        """Name, description and parameter schema of every tool."""
        return [tool.definition() for tool in self._tools.values()]

    async def execute_tool(self, name: str, args: dict[str, Any]) -> ToolResult:
        tool = self._tools.get(name)
        if tool is None:
            return ToolResult(success=False, error=f"Unknown tool: {name}")
        return await tool.execute(args)


# =============================================================================
# SECTION 2: RESPONSE CLEAN-UP
# =============================================================================

JSON_TOOL_CALL = re.compile(r'\{\s*"tool"\s*:\s*"[^"]*"\s*,\s*"input"\s*:\s*\{.*?\}\s*\}', re.DOTALL)
TOOL_CALL_TEXT = re.compile(r"\b[a-z]+_[a-z_]+\(\s*\{.*?\}\s*\)", re.DOTALL)
ANNOUNCEMENT = re.compile(r"^(let me|i'll|i will|i'm|i am|using|now i|first,? i)\b", re.IGNORECASE)
PROGRESS = re.compile(
    r"^(checking|verifying|looking|searching|analyzing|processing|reviewing|determining|calling|executing)\b",
    re.IGNORECASE,
)
COMMENTARY_MARKERS = ("tool", '{"', "reasoning")


def _is_commentary(line: str) -> bool:
    stripped = line.strip()
    if not stripped:
        return True
    if ANNOUNCEMENT.match(stripped) or PROGRESS.match(stripped):
        return True
    # Case-sensitive: "Reasoning engine sync" or "Tooling budget" is content
    return any(marker in stripped for marker in COMMENTARY_MARKERS)


def clean_response_content(content: str) -> str:
    """
    Remove leaked tool-use commentary from a final model answer.

    Drops JSON tool-call artifacts, `tool_name({...})` call text and any
    leading lines of narration ("Let me check...", "Verifying names...").

    Example:
        clean_response_content('Let me look that up.\\n# Notes\\nMet Jon Smith.')
        # "# Notes\\nMet Jon Smith."
    """
    text = JSON_TOOL_CALL.sub("", content)
    text = TOOL_CALL_TEXT.sub("", text)

    lines = text.splitlines()
    while lines and _is_commentary(lines[0]):
        lines.pop(0)

    return "\n".join(lines).strip()


# =============================================================================
# SECTION 3: PROMPTS
# =============================================================================

SYSTEM_PROMPT = """You are an intelligent transcription assistant. Your job is to:
1. Analyze the transcript for names, projects, and companies
2. Use the available tools to verify spellings and gather context
3. Correct any misheard names or terms
4. Determine the appropriate destination for this note
5. Produce a clean, accurate Markdown transcript

CRITICAL RULES:
- This is NOT a summary. Preserve ALL content from the original transcript.
- Only fix obvious transcription errors like misheard names.
- When you have finished processing, output the COMPLETE corrected transcript as Markdown.
- Do NOT say you don't have the transcript - it's in the conversation history.

Available tools:
- lookup_person: Find information about people (use for any name that might be misspelled)
- lookup_project: Find project routing information
- verify_spelling: Ask user about unknown terms (if interactive mode)
- route_note: Determine where to file this note
- store_context: Remember new information for future use"""


def build_initial_prompt(transcript_text: str) -> str:
    return f"""Here is the raw transcript to process:

--- BEGIN TRANSCRIPT ---
{transcript_text}
--- END TRANSCRIPT ---

Please:
1. Identify any names, companies, or technical terms that might be misspelled
2. Use the lookup_person tool to verify spelling of any names you find
3. Use route_note to determine the destination
4. Then output the COMPLETE corrected transcript as clean Markdown

Remember: preserve ALL content, only fix transcription errors."""


def build_continuation_prompt(transcript_text: str, resolved: ResolvedEntities) -> str:
    corrections = ", ".join(f"{heard} -> {answer}" for heard, answer in resolved.items()) or "none yet"
    return f"""Tool results received. Here's a reminder of your task:

ORIGINAL TRANSCRIPT (process this):
--- BEGIN TRANSCRIPT ---
{transcript_text}
--- END TRANSCRIPT ---

Corrections made so far: {corrections}

Continue analyzing. If you need more information, use the tools.
When you're done with tool calls, output the COMPLETE corrected transcript as Markdown.
Do NOT summarize - include ALL original content with corrections applied."""


def build_final_request(transcript_text: str, resolved: ResolvedEntities) -> str:
    corrections = "\n".join(
        f'- "{heard}" should be "{answer}"' for heard, answer in resolved.items()
    ) or "None identified"
    return f"""Please output the COMPLETE corrected transcript now.

ORIGINAL:
{transcript_text}

CORRECTIONS TO APPLY:
{corrections}

Output the full transcript as clean Markdown. Do NOT summarize."""


# =============================================================================
# SECTION 4: AGENTIC EXECUTOR
# =============================================================================

class AgenticExecutor:
    """
    Runs the bounded tool-calling loop for one transcript at a time.

    Example usage:
        executor = create(reasoning_client, tool_context)
        result = await executor.process("Met with Jon Smth about Phoenix.")
        result.enhanced_text        # corrected Markdown
        result.state.confidence     # 0.9 / 0.8 / 0.5
    """

    def __init__(self, reasoning: ReasoningClient, ctx: ToolContext):
        self.reasoning = reasoning
        self.ctx = ctx

    def get_available_tools(self) -> list[str]:
        return [tool.name for tool in create_default_tools(self.ctx)]

    async def _complete(self, request: ReasoningRequest, usage: list[int]) -> ReasoningResponse:
        response = await self.reasoning.complete(request)
        if response.usage:
            usage.append(response.usage.total_tokens)
        return response

    @staticmethod
    def _assistant_message(response: ReasoningResponse) -> ConversationMessage:
        return ConversationMessage(
            role="assistant",
            content=response.content,
            tool_calls=list(response.tool_calls) or None,
        )

    @staticmethod
    def _tool_payload(result: ToolResult) -> dict[str, Any]:
        if result.data:
            return result.data
        return {"success": result.success, "message": result.error or "OK"}

    async def process(self, transcript_text: str) -> ProcessResult:
        """
        Enhance one transcript.

        Never raises for reasoning, tool or persistence failures; check
        `result.state.confidence` for degraded output.
        """
        resolved = ResolvedEntities()
        self.ctx.resolved_entities = resolved
        registry = ToolRegistry(self.ctx)

        state = TranscriptionState(
            original_text=transcript_text,
            corrected_text=transcript_text,
            resolved_entities=resolved,
        )
        changes: list[ContextChangeRecord] = []
        resolver = ClarificationResolver(self.ctx, state, changes)

        tools_used: list[str] = []
        usage: list[int] = []
        iterations = 0

        tool_definitions = registry.get_tool_definitions()
        initial_prompt = build_initial_prompt(transcript_text)
        history: list[ConversationMessage] = [
            ConversationMessage(role="system", content=SYSTEM_PROMPT),
            ConversationMessage(role="user", content=initial_prompt),
        ]

        try:
            logger.debug("Starting agentic transcription - analyzing for names and routing...")
            response = await self._complete(
                ReasoningRequest(
                    prompt=initial_prompt,
                    system_prompt=SYSTEM_PROMPT,
                    messages=list(history),
                    tools=tool_definitions,
                    max_iterations=MAX_ITERATIONS,
                ),
                usage,
            )
            history.append(self._assistant_message(response))

            while response.tool_calls and iterations < MAX_ITERATIONS:
                iterations += 1
                logger.debug(f"Iteration {iterations}: Processing {len(response.tool_calls)} tool calls...")

                tool_messages: list[ConversationMessage] = []

                for call in response.tool_calls:
                    logger.debug(f"Executing tool: {call.name}")
                    tools_used.append(call.name)

                    try:
                        result = await registry.execute_tool(call.name, call.arguments)
                        payload = self._tool_payload(result)
                        logger.debug(f"Tool {call.name} result: {'success' if result.success else 'failed'}")

                        if result.needs_user_input and self.ctx.interactive_handler is not None:
                            await resolver.resolve(call.name, call.arguments, result)

                        resolver.absorb(call.name, call.arguments, result)
                    except Exception as e:
                        logger.error(f"Tool execution failed: {call.name}: {e}")
                        payload = {"error": str(e)}

                    tool_messages.append(
                        ConversationMessage(
                            role="tool",
                            tool_call_id=call.id,
                            content=json.dumps(payload, default=str),
                        )
                    )

                history.extend(tool_messages)

                continuation = build_continuation_prompt(transcript_text, resolved)
                history.append(ConversationMessage(role="user", content=continuation))

                response = await self._complete(
                    ReasoningRequest(
                        prompt=continuation,
                        system_prompt=SYSTEM_PROMPT,
                        messages=list(history),
                        tools=tool_definitions,
                    ),
                    usage,
                )
                history.append(self._assistant_message(response))

            if response.content and len(response.content) > MIN_TRANSCRIPT_LENGTH:
                state.corrected_text = clean_response_content(response.content) or response.content
                state.confidence = 0.9
                logger.debug(f"Final transcript generated: {len(state.corrected_text)} characters")
            else:
                logger.debug("Model did not produce transcript, requesting explicitly...")
                final = await self._complete(
                    ReasoningRequest(
                        prompt=build_final_request(transcript_text, resolved),
                        system_prompt=SYSTEM_PROMPT,
                    ),
                    usage,
                )
                state.corrected_text = clean_response_content(final.content) or transcript_text
                state.confidence = 0.8

        except Exception as e:
            logger.error(f"Agentic processing failed, returning original transcript: {e}")
            state.corrected_text = transcript_text
            state.confidence = 0.5

        total_tokens = sum(usage)
        return ProcessResult(
            enhanced_text=state.corrected_text,
            state=state,
            tools_used=list(dict.fromkeys(tools_used)),
            iterations=iterations,
            total_tokens=total_tokens if total_tokens > 0 else None,
            context_changes=changes or None,
        )


def create(reasoning: ReasoningClient, ctx: ToolContext) -> AgenticExecutor:
    """Build an executor bound to a reasoning client and a tool context."""
    return AgenticExecutor(reasoning, ctx)


def describe_result(result: ProcessResult) -> Optional[str]:
    """One-line route summary for logs and the CLI, or None when unrouted."""
    decision = result.state.route_decision
    if decision is None:
        return None
    target = decision.project_id or "default"
    return f"{target} -> {decision.destination.path} ({decision.confidence:.0%})"
