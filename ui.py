"""Terminal output and prompts, rendered with `rich`."""
from typing import TYPE_CHECKING, Iterable, Optional

from rich.console import Console
from rich.table import Table

from path_matcher import SelectionOutcome
from utils import format_size

if TYPE_CHECKING:
    from qbit_migrate import PathResolution

_console = Console()


def get_console() -> Console:
    return _console


def prompt_user_input(question: str, default: Optional[str] = None, console: Optional[Console] = None) -> str:
    """Asks a question, returning the answer or `default` when it is left empty."""
    console = console or _console
    prompt_text = f"{question} ({default}): " if default else f"{question}: "
    answer = console.input(prompt_text).strip()
    return answer or default or ''


def confirm(question: str, console: Optional[Console] = None) -> bool:
    answer = prompt_user_input(f"{question} (y/n)", console=console)
    return answer.lower() in ('y', 'yes')


def display_candidates(outcome: SelectionOutcome, title: str, console: Optional[Console] = None) -> None:
    """Shows every scored hypothesis for one torrent, marking the selected one."""
    console = console or _console
    if not outcome.candidates:
        console.print(f"[yellow]No viable candidates for {title}.[/yellow]")
        return
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("", width=1)
    table.add_column("Base Path", overflow="fold")
    table.add_column("Structure")
    table.add_column("Files Found", justify="right")
    table.add_column("Size Matches", justify="right")
    table.add_column("Confidence", justify="right")
    for result in outcome.candidates:
        selected = result is outcome.best
        style = "green" if selected else "dim"
        table.add_row(
            "✓" if selected else "",
            result.base_path,
            result.hypothesis.kind.value.replace('_', ' '),
            f"{result.existing_count}/{result.total_count}",
            str(result.perfect_match_count),
            f"[{style}]{result.confidence:.2f}[/{style}]",
        )
    console.print(table)


def display_path_map(resolutions: Iterable["PathResolution"], console: Optional[Console] = None) -> None:
    """Prints the Windows-to-Linux save path mapping as a table."""
    console = console or _console
    table = Table(title="Save Path Mapping", show_header=True, header_style="bold magenta")
    table.add_column("Windows Path", overflow="fold")
    table.add_column("Linux Path", overflow="fold")
    table.add_column("Torrents", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Method")
    for resolution in resolutions:
        linux_path = resolution.linux_path or "[red]unresolved[/red]"
        method = resolution.method
        if resolution.outcome is not None and resolution.outcome.matched:
            method = f"{method} ({resolution.outcome.confidence:.2f})"
        table.add_row(
            resolution.group.windows_path,
            linux_path,
            str(len(resolution.group.entries)),
            format_size(resolution.total_size),
            method,
        )
    console.print(table)
