"""Click CLI: play a match in the terminal and browse match history."""

import asyncio
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.logging import RichHandler

from config.config_loader import AppConfig, load_config
from objection.agents import CaseGenerator, OpposingCounsel, SuggestionAgent
from objection.controller import MatchController, MatchError
from objection.history import HistoryStore
from objection.models import SURRENDER_TEXT, Suggestion
from objection.output import (
    console,
    print_case,
    print_evidence,
    print_health,
    print_history,
    print_message,
    print_round,
    print_saved_match,
    print_suggestions,
)
from objection.providers.anthropic import AnthropicProvider
from objection.providers.base import AIProvider, ProviderError
from objection.providers.gemini import GeminiProvider
from objection.providers.openai_provider import OpenAIProvider
from objection.schemas import AgentValidationError

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "gemini": GeminiProvider,
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _build_provider(config: AppConfig, name: str) -> AIProvider:
    """Instantiate the provider named in settings. Raises click.UsageError if unusable."""
    if name not in config.models:
        raise click.UsageError(f"Unknown provider '{name}'. Configured: {', '.join(sorted(config.models))}")
    if name not in config.available_providers:
        raise click.UsageError(f"Provider '{name}' has no API key. Set {config.models[name].api_key_env} in .env")
    model_cfg = config.models[name]
    provider_cls = PROVIDER_CLASSES.get(model_cfg.sdk)
    if provider_cls is None:
        raise click.UsageError(f"Provider '{name}' uses unsupported sdk '{model_cfg.sdk}'")
    try:
        return provider_cls(model_cfg)
    except ProviderError as exc:
        raise click.UsageError(str(exc)) from exc


def _build_controller(config: AppConfig, provider_override: str | None, history_dir: Path) -> MatchController:
    names = {
        "case_creator": provider_override or config.agents.case_creator,
        "lawyer": provider_override or config.agents.lawyer,
        "defendant": provider_override or config.agents.defendant,
    }
    providers: dict[str, AIProvider] = {}
    for name in set(names.values()):
        providers[name] = _build_provider(config, name)

    return MatchController(
        game=config.game,
        counsel=OpposingCounsel(providers[names["lawyer"]], config.prompts, config.game),
        suggester=SuggestionAgent(providers[names["defendant"]], config.prompts, config.game),
        case_generator=CaseGenerator(providers[names["case_creator"]], config.prompts),
        store=HistoryStore(history_dir),
    )


def _parse_evidence_choice(raw: str, defense_ids: Sequence[str], max_cards: int) -> list[str]:
    """Parse "D1, d3" into ["D1", "D3"]. Raises click.BadParameter on unknown ids or too many."""
    by_lower = {i.lower(): i for i in defense_ids}
    chosen: list[str] = []
    for part in raw.replace(" ", ",").split(","):
        part = part.strip()
        if not part:
            continue
        if part.lower() not in by_lower:
            raise click.BadParameter(f"'{part}' is not a defense point")
        point_id = by_lower[part.lower()]
        if point_id not in chosen:
            chosen.append(point_id)
    if len(chosen) > max_cards:
        raise click.BadParameter(f"Choose at most {max_cards} evidence cards")
    return chosen


def _parse_turn(raw: str, suggestions: Sequence[Suggestion]) -> tuple[str | None, str | None, str | None]:
    """Interpret one line of player input.

    Returns:
        (command, text, evidence_id). command is "quit", "case", "evidence"
        or None for a plain message. A bare number picks that suggestion;
        "/surrender" sends the surrender line.
    """
    raw = raw.strip()
    if raw in ("/quit", "/q"):
        return "quit", None, None
    if raw == "/case":
        return "case", None, None
    if raw == "/evidence":
        return "evidence", None, None
    if raw == "/surrender":
        return None, SURRENDER_TEXT, None
    if raw.startswith("/evidence "):
        rest = raw[len("/evidence "):].strip()
        card_id, _, text = rest.partition(" ")
        return None, text.strip() or f"I present evidence {card_id}!", card_id
    if raw.isdigit() and 1 <= int(raw) <= len(suggestions):
        return None, suggestions[int(raw) - 1].text, None
    return None, raw, None


async def _ask(prompt: str, default: str | None = None) -> str:
    return await asyncio.to_thread(click.prompt, prompt, default=default, show_default=False)


async def _play(controller: MatchController, max_cards: int) -> None:
    with console.status("Generating case..."):
        case = await controller.start_match()
    print_case(case)

    defense_ids = [p.id for p in case.defense_points]
    while True:
        raw = await _ask(f"Evidence to bring (up to {max_cards}, comma separated, blank for none)", default="")
        try:
            chosen = _parse_evidence_choice(raw, defense_ids, max_cards)
            break
        except click.BadParameter as exc:
            console.print(f"[red]{exc.message}[/red]")
    controller.select_evidence(chosen)

    with console.status("Court is in session..."):
        suggestions = await controller.begin_chat()
    print_message(controller.state.messages[-1])

    while controller.state.phase == "chat":
        state = controller.state
        print_health(state.health)
        print_suggestions(suggestions)
        command, text, evidence_id = _parse_turn(await _ask("Your move"), suggestions)
        if command == "quit":
            console.print(f"[dim]Match abandoned. Progress so far is saved as {state.id}.[/dim]")
            break
        if command == "case":
            print_case(case, state.prosecution_points, state.defense_points)
            continue
        if command == "evidence":
            print_evidence(state.evidence_cards)
            continue
        if not text:
            continue

        try:
            with console.status("The prosecution is thinking..."):
                result = await controller.submit_message(text, evidence_id=evidence_id)
        except (ProviderError, AgentValidationError) as exc:
            console.print(f"[red]The court is confused ({exc}). Try again.[/red]")
            continue
        except MatchError as exc:
            console.print(f"[red]{exc}[/red]")
            continue

        print_round(result)
        suggestions = list(result.suggestions)

    await controller.flush()
    if controller.saved_match is not None:
        saved = controller.saved_match
        print_health(saved.final_health)
        console.print(f"\n[bold]Final score: {saved.score}[/bold] [dim](saved as {saved.id})[/dim]")


@click.group()
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--history-dir", default=None, help="History folder (default: from config)")
@click.pass_context
def main(ctx: click.Context, verbose: bool, history_dir: str | None) -> None:
    """Objection! -- argue your case against an AI prosecutor.

    \b
    Examples:
      objection play
      objection play --provider openai
      objection history list
      objection history star match_1712345678901_ab12cd
    """
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    ctx.obj = {
        "config": config,
        "history_dir": Path(history_dir) if history_dir else config.game.history_dir,
    }


@main.command()
@click.option("--provider", default=None, help="Use this provider for every agent (default: from config)")
@click.pass_context
def play(ctx: click.Context, provider: str | None) -> None:
    """Play one match."""
    config: AppConfig = ctx.obj["config"]
    controller = _build_controller(config, provider, ctx.obj["history_dir"])
    try:
        asyncio.run(_play(controller, config.game.max_evidence_cards))
    except (ProviderError, AgentValidationError) as exc:
        console.print(f"[bold red]Could not start the match:[/bold red] {exc}")
        sys.exit(1)


@main.group()
def history() -> None:
    """Browse and manage saved matches."""


def _store(ctx: click.Context) -> HistoryStore:
    return HistoryStore(ctx.find_root().obj["history_dir"])


@history.command("list")
@click.pass_context
def history_list(ctx: click.Context) -> None:
    """List saved matches, newest first."""
    print_history(_store(ctx).list_matches())


@history.command("show")
@click.argument("match_id")
@click.pass_context
def history_show(ctx: click.Context, match_id: str) -> None:
    """Show one saved match."""
    try:
        print_saved_match(_store(ctx).load(match_id))
    except KeyError:
        raise click.ClickException(f"No match with id {match_id}")


@history.command("star")
@click.argument("match_id")
@click.pass_context
def history_star(ctx: click.Context, match_id: str) -> None:
    """Toggle the star on a saved match."""
    try:
        match = _store(ctx).toggle_star(match_id)
    except KeyError:
        raise click.ClickException(f"No match with id {match_id}")
    click.echo(f"{match.id}: {'starred' if match.starred else 'unstarred'}")


@history.command("visibility")
@click.argument("match_id")
@click.argument("visibility", type=click.Choice(["public", "private"]))
@click.pass_context
def history_visibility(ctx: click.Context, match_id: str, visibility: str) -> None:
    """Make a saved match public or private."""
    try:
        match = _store(ctx).set_visibility(match_id, visibility)
    except KeyError:
        raise click.ClickException(f"No match with id {match_id}")
    click.echo(f"{match.id}: {match.visibility}")


@history.command("delete")
@click.argument("match_id")
@click.confirmation_option(prompt="Delete this match?")
@click.pass_context
def history_delete(ctx: click.Context, match_id: str) -> None:
    """Delete a saved match."""
    try:
        _store(ctx).delete(match_id)
    except KeyError:
        raise click.ClickException(f"No match with id {match_id}")
    click.echo(f"Deleted {match_id}")


if __name__ == "__main__":
    main()
