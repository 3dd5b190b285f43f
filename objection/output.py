"""Rich console rendering for matches and history."""

import logging
from collections.abc import Sequence
from datetime import datetime

from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from objection.models import (
    CaseDefinition,
    ClaimPoint,
    EvidenceCard,
    HealthState,
    Message,
    RoundResult,
    SavedMatch,
    Suggestion,
)

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_STATUS_STYLE = {
    "unchallenged": "white",
    "challenged": "yellow",
    "refuted": "red strike",
    "proven": "green",
}


def _hp_bar(hp: int, max_hp: int, width: int = 20) -> str:
    filled = round(width * hp / max_hp) if max_hp else 0
    return "#" * filled + "-" * (width - filled)


def _points_table(title: str, points: Sequence[ClaimPoint]) -> Table:
    table = Table(title=title, show_lines=False, expand=True)
    table.add_column("ID", style="bold", no_wrap=True)
    table.add_column("Claim")
    table.add_column("Evidence", style="dim")
    table.add_column("Status", no_wrap=True)
    for p in points:
        table.add_row(p.id, p.claim, p.evidence_text, Text(p.status, style=_STATUS_STYLE.get(p.status, "")))
    return table


def print_case(case: CaseDefinition, prosecution: Sequence[ClaimPoint] = (), defense: Sequence[ClaimPoint] = ()) -> None:
    """Case reveal: charge, context, and both point tables."""
    console.print(Rule(f"[bold red]{case.title}[/bold red]"))
    console.print(Panel(case.charge, title="Charge", border_style="red"))
    console.print(case.context)
    if case.central_tension:
        console.print(Text(f"The real question: {case.central_tension}", style="italic"))
    console.print(_points_table("Prosecution", prosecution or case.prosecution_points))
    console.print(_points_table("Defense", defense or case.defense_points))


def print_evidence(cards: Sequence[EvidenceCard]) -> None:
    if not cards:
        console.print("[dim]No evidence cards.[/dim]")
        return
    for card in cards:
        style = "dim strike" if card.used else "bold cyan"
        console.print(Text(f"[{card.id}] {card.claim}", style=style))


def print_health(health: HealthState) -> None:
    # Text.assemble, not markup: the bar's brackets would parse as tags
    console.print(
        Text.assemble(
            (f"Attorney [{_hp_bar(health.attorney_hp, health.max_hp)}] {health.attorney_hp}/{health.max_hp}", "red"),
            "   ",
            (f"Defense [{_hp_bar(health.defendant_hp, health.max_hp)}] {health.defendant_hp}/{health.max_hp}", "blue"),
        )
    )


def print_message(msg: Message) -> None:
    if msg.sender == "attorney":
        border = "bright_red" if (msg.intensity or 0) >= 7 else "red"
        subtitle = f"intensity {msg.intensity}" if msg.intensity is not None else None
        console.print(Panel(msg.text, title="[bold]Prosecution[/bold]", subtitle=subtitle, border_style=border))
    else:
        console.print(Panel(msg.text, title="[bold]You[/bold]", border_style="blue"))


def print_suggestions(suggestions: Sequence[Suggestion]) -> None:
    for i, s in enumerate(suggestions, start=1):
        style = "bold magenta" if s.variant == "surrender" else ""
        console.print(Text(f"  {i}. ({s.type}) {s.text}", style=style))


def print_round(result: RoundResult) -> None:
    if result.evidence_used:
        console.print(f"[bold cyan]TAKE THAT![/bold cyan] Evidence {result.evidence_used} presented.")
    if result.attorney_message is not None:
        print_message(result.attorney_message)
    if result.user_damage or result.counter_damage:
        console.print(f"[dim]You dealt {result.user_damage}, took {result.counter_damage}.[/dim]")
    if result.ko == "attorney_ko":
        console.print(Rule("[bold green]NOT GUILTY! The prosecution collapses.[/bold green]"))
    elif result.ko == "defendant_ko":
        console.print(Rule("[bold red]GUILTY! The defense is out of arguments.[/bold red]"))
    elif result.outcome == "lost":
        console.print(Rule("[bold red]GUILTY! The defense rests... in defeat.[/bold red]"))


def _fmt_created(created_at: int) -> str:
    return datetime.fromtimestamp(created_at / 1000).strftime("%Y-%m-%d %H:%M")


def print_history(matches: Sequence[SavedMatch]) -> None:
    if not matches:
        console.print("No saved matches.")
        return
    table = Table(title="Match History")
    table.add_column("", no_wrap=True)
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Case")
    table.add_column("Outcome", no_wrap=True)
    table.add_column("Score", justify="right")
    table.add_column("Rounds", justify="right")
    table.add_column("Visibility", no_wrap=True)
    table.add_column("Date", no_wrap=True)
    for m in matches:
        table.add_row(
            "*" if m.starred else "",
            m.id,
            m.case.title,
            m.outcome,
            str(m.score),
            str(m.exchange_count),
            m.visibility,
            _fmt_created(m.created_at),
        )
    console.print(table)


def print_saved_match(match: SavedMatch) -> None:
    console.print(Rule(f"[bold]{match.case.title}[/bold]"))
    console.print(
        Text(
            f"Outcome: {match.outcome} | Score: {match.score} | "
            f"Rounds: {match.exchange_count} | {_fmt_created(match.created_at)}",
            style="dim",
        )
    )
    print_health(match.final_health)
    for msg in match.messages:
        print_message(msg)
