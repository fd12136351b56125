"""
Rich terminal UI components for the transcript agent.

WHY THIS FILE EXISTS:
--------------------
Two things need a terminal:
1. The CLI summary after a transcript is processed (tools used, routing,
   context changes)
2. The clarification wizards, when a human is asked about an unknown name

Everything here is synchronous and blocking. The interactive handler runs
the prompt functions in a worker thread so the executor can await them.

COMPONENTS:
----------
- show_clarification()     - Panel with file/date/context for an unknown term
- prompt_person_wizard()   - new_person wizard (create / skip)
- prompt_project_wizard()  - new_project wizard (create / link / alias / term / ignore / skip)
- prompt_spelling()        - free-text spelling answer
- show_process_result()    - Summary of a finished run
"""

from typing import Optional, Union

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, IntPrompt, Prompt
from rich.table import Table

from .schemas import (
    ClarificationRequest,
    ContextChangeRecord,
    NestedProject,
    PersonWizardCreate,
    PersonWizardSkip,
    ProjectWizardCreate,
    ProjectWizardIgnore,
    ProjectWizardLink,
    ProjectWizardSkip,
    ProjectWizardTerm,
)
from .session import ProcessResult

# Global console instance for consistent output
console = Console()


# =============================================================================
# COLOR SCHEMES
# =============================================================================

CONFIDENCE_COLORS = {
    0.9: "green",
    0.8: "yellow",
    0.5: "red",
}

CHANGE_COLORS = {
    "created": "green",
    "updated": "yellow",
}


# =============================================================================
# HEADER/SECTION UTILITIES
# =============================================================================

def show_header(title: str, subtitle: str = "") -> None:
    """Display a styled header."""
    console.print()
    console.rule(f"[bold blue]{title}[/bold blue]")
    if subtitle:
        console.print(f"[dim]{subtitle}[/dim]", justify="center")
    console.print()


def show_section(title: str) -> None:
    """Display a section divider."""
    console.print(f"\n[bold cyan]{title}[/bold cyan]")
    console.print("─" * 40)


def show_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def show_error(message: str) -> None:
    console.print(f"[red]✗[/red] {message}")


def show_warning(message: str) -> None:
    console.print(f"[yellow]⚠[/yellow] {message}")


def show_thinking(message: str = "Enhancing transcript..."):
    """
    Context manager that shows a spinner while processing.

    Usage:
        with show_thinking():
            result = await executor.process(text)
    """
    return console.status(f"[bold blue]{message}[/bold blue]", spinner="dots")


# =============================================================================
# CLARIFICATION DISPLAY
# =============================================================================

CLARIFICATION_TITLES = {
    "new_person": "Unknown Person",
    "new_project": "Unknown Project or Term",
    "name_spelling": "Spelling Check",
}


def show_clarification(request: ClarificationRequest) -> None:
    """Display the prompt context for a clarification request."""
    title = CLARIFICATION_TITLES.get(request.type, "Clarification Needed")
    body = request.context or f'"{request.term}"'
    if request.suggestion:
        body += f"\n\n[dim]Suggestion:[/dim] {request.suggestion}"

    console.print()
    console.print(Panel(body, title=f"[bold yellow]{title}[/bold yellow]", border_style="yellow"))


def show_options(options: list[str]) -> None:
    """Numbered list of known projects (1-based for humans)."""
    if not options:
        console.print("[dim]No known projects.[/dim]")
        return
    for i, option in enumerate(options, 1):
        console.print(f"  [cyan]{i}[/cyan]. {option}")


def _ask_optional(label: str, default: str = "") -> Optional[str]:
    answer = Prompt.ask(label, default=default).strip()
    return answer or None


def _ask_index(options: list[str], label: str = "Project number") -> Optional[int]:
    """0-based index into options, or None if the list is empty."""
    if not options:
        return None
    show_options(options)
    while True:
        number = IntPrompt.ask(label, default=1)
        if 1 <= number <= len(options):
            return number - 1
        show_error(f"Pick a number between 1 and {len(options)}")


def _ask_indices(options: list[str]) -> list[int]:
    """Comma-separated 1-based numbers -> valid 0-based indices."""
    if not options:
        return []
    show_options(options)
    raw = Prompt.ask("Associated projects (comma-separated numbers, blank for none)", default="")
    indices = []
    for part in raw.split(","):
        part = part.strip()
        if part.isdigit() and 1 <= int(part) <= len(options):
            indices.append(int(part) - 1)
    return indices


def _ask_nested_project(default_name: str) -> Optional[NestedProject]:
    if not Confirm.ask("Create a new project for this?", default=False):
        return None
    return NestedProject(
        action="create",
        project_name=Prompt.ask("Project name", default=default_name).strip() or default_name,
        destination=_ask_optional("Destination folder (blank for default)"),
        description=_ask_optional("Description"),
    )


# =============================================================================
# WIZARD PROMPTS
# =============================================================================

def prompt_spelling(request: ClarificationRequest) -> Optional[str]:
    """Ask for the correct spelling, defaulting to the suggestion."""
    show_clarification(request)
    return _ask_optional("[bold]Correct spelling[/bold]", default=request.suggestion or request.term)


def prompt_person_wizard(
    request: ClarificationRequest,
) -> tuple[Optional[str], Union[PersonWizardCreate, PersonWizardSkip]]:
    """
    Run the new_person wizard.

    Returns:
        (canonical name or None, wizard result)
    """
    show_clarification(request)

    if not Confirm.ask(f'Save "{request.term}" as a new person?', default=True):
        return None, PersonWizardSkip()

    name = Prompt.ask("Full name (correct spelling)", default=request.term).strip() or request.term
    organization = _ask_optional("Organization")
    notes = _ask_optional("Notes")

    options = request.options or []
    console.print("\n[bold]Project:[/bold] [cyan]l[/cyan]ink to existing, [cyan]n[/cyan]ew project, [dim]blank[/dim] for none")
    choice = Prompt.ask("Project", choices=["l", "n", ""], default="", show_choices=False)

    linked_index = None
    created_project = None
    if choice == "l":
        linked_index = _ask_index(options)
    elif choice == "n":
        created_project = NestedProject(
            action="create",
            project_name=Prompt.ask("Project name").strip() or None,
            destination=_ask_optional("Destination folder (blank for default)"),
            description=_ask_optional("Description"),
        )

    return name, PersonWizardCreate(
        person_name=name,
        organization=organization,
        notes=notes,
        linked_project_index=linked_index,
        created_project=created_project,
    )


def prompt_project_wizard(request: ClarificationRequest):
    """
    Run the new_project wizard.

    Returns:
        (answer text or None, one of the ProjectWizard* results)
    """
    show_clarification(request)
    term = request.term
    options = request.options or []

    console.print(f'\n[bold]What is "{term}"?[/bold]')
    console.print("  [green]p[/green] - A new project")
    console.print("  [green]l[/green] - Another name for an existing project")
    console.print("  [green]a[/green] - Another spelling of an existing term")
    console.print("  [green]t[/green] - A term (jargon, acronym, product)")
    console.print("  [yellow]i[/yellow] - Not important, never ask again")
    console.print("  [dim]s[/dim] - Skip for now")

    choice = Prompt.ask("\n[bold]Choice[/bold]", choices=["p", "l", "a", "t", "i", "s"], default="s")

    if choice == "p":
        name = Prompt.ask("Project name", default=term).strip() or term
        return name, ProjectWizardCreate(
            project_name=name,
            destination=_ask_optional("Destination folder (blank for default)"),
            description=_ask_optional("Description"),
        )

    if choice == "l":
        index = _ask_index(options)
        if index is None:
            show_warning("No projects to link to")
            return None, ProjectWizardSkip()
        return options[index].split(" - ", 1)[0], ProjectWizardLink(
            linked_project_index=index,
            term_description=_ask_optional(f'What does "{term}" mean here? (optional)'),
        )

    if choice == "a":
        existing = Prompt.ask("Existing term name").strip()
        if not existing:
            return None, ProjectWizardSkip()
        return existing, ProjectWizardLink(linked_term_name=existing, alias_name=term)

    if choice == "t":
        term_name = Prompt.ask("Term (correct spelling)", default=term).strip() or term
        return term_name, ProjectWizardTerm(
            term_name=term_name,
            term_expansion=_ask_optional("Expansion (for acronyms)"),
            term_description=_ask_optional("Description"),
            term_projects=_ask_indices(options),
            created_project=_ask_nested_project(term_name),
        )

    if choice == "i":
        return None, ProjectWizardIgnore(ignored_term=term)

    return None, ProjectWizardSkip()


# =============================================================================
# RESULT DISPLAY
# =============================================================================

def show_context_changes(changes: list[ContextChangeRecord]) -> None:
    table = Table(box=box.SIMPLE)
    table.add_column("Action")
    table.add_column("Type")
    table.add_column("Id")
    table.add_column("Name")

    for change in changes:
        color = CHANGE_COLORS.get(change.action, "white")
        table.add_row(f"[{color}]{change.action}[/{color}]", change.entity_type, change.entity_id, change.entity_name)

    console.print(table)


def show_process_result(result: ProcessResult, output_path: Optional[str] = None) -> None:
    """Display the summary of a processed transcript."""
    confidence = result.state.confidence
    color = CONFIDENCE_COLORS.get(confidence, "white")

    show_header("Transcript Enhanced", f"{len(result.enhanced_text):,} characters")

    console.print(f"[bold]Confidence:[/bold] [{color}]{confidence:.0%}[/{color}]")
    console.print(f"[bold]Iterations:[/bold] {result.iterations}")
    console.print(f"[bold]Tools Used:[/bold] {', '.join(result.tools_used) or 'none'}")
    if result.total_tokens:
        console.print(f"[bold]Token Usage:[/bold] {result.total_tokens:,} tokens")

    decision = result.state.route_decision
    if decision:
        console.print(f"\n[bold]Route:[/bold] {decision.project_id or 'default'} -> {decision.destination.path}")
        if decision.reasoning:
            console.print(f"  [dim]{decision.reasoning}[/dim]")

    corrections = result.state.resolved_entities.items()
    if corrections:
        show_section("Corrections")
        for heard, answer in corrections:
            console.print(f"  {heard} [dim]->[/dim] [green]{answer}[/green]")

    if result.context_changes:
        show_section(f"Context Changes ({len(result.context_changes)})")
        show_context_changes(result.context_changes)

    if output_path:
        console.print(f"\n[bold]Output:[/bold] {output_path}")
