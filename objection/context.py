"""Markdown context bundle sent to every agent. Built fresh per call, never stored."""

import logging
from collections.abc import Sequence
from typing import Literal

from objection.models import AnalysisState, CaseDefinition, ClaimPoint, MatchState, Message

logger = logging.getLogger(__name__)


def format_issue(case: CaseDefinition) -> str:
    return (
        f"# {case.title}\n\n"
        f"## Charge\n{case.charge}\n\n"
        f"## Context\n{case.context}\n\n"
        f"## The Real Question\n{case.central_tension}\n"
    )


def format_points(points: Sequence[ClaimPoint], side: Literal["prosecution", "defense"]) -> str:
    title = "Prosecution Arguments" if side == "prosecution" else "Defense Arguments"
    rows = "\n".join(f"| {p.id} | {p.claim} | {p.evidence_text} | {p.status} |" for p in points)
    concessions = "\n".join(f"- {p.id}: {p.claim}" for p in points if p.status == "refuted")
    return (
        f"# {title}\n\n"
        "| ID | Claim | Evidence | Status |\n"
        "|----|-------|----------|--------|\n"
        f"{rows}\n\n"
        f"## Concessions\n{concessions or '- None'}\n"
    )


def format_transcript(messages: Sequence[Message]) -> str:
    """Transcript grouped into exchanges; each attorney turn opens a new exchange."""
    if not messages:
        return "# Conversation Log\n\n(No exchanges yet)\n"

    parts: list[str] = ["# Conversation Log", ""]
    exchange = 0
    last_sender = ""
    for msg in messages:
        if msg.sender == "attorney" and last_sender != "attorney":
            exchange += 1
            parts.append(f"## Exchange {exchange}")
        label = "Attorney" if msg.sender == "attorney" else "User"
        parts.append(f"**{label}:** {msg.text}")
        parts.append("")
        last_sender = msg.sender
    return "\n".join(parts)


def format_analysis(analysis: AnalysisState) -> str:
    assumption_rows = "\n".join(
        f"| {a.side} | {a.assumption_text} | {a.state} |" for a in analysis.assumptions
    )
    fallacy_rows = "\n".join(
        f"| {f.side} | {f.type} | {f.context} | {f.exchange_number} |" for f in analysis.fallacies
    )
    att, dfn = analysis.attorney_score, analysis.defendant_score
    return (
        "# Argument Analysis\n\n"
        "## Key Assumptions\n"
        "| Side | Assumption | State |\n"
        "|------|------------|-------|\n"
        f"{assumption_rows or '| - | - | - |'}\n\n"
        "## Fallacies Identified\n"
        "| Side | Type | Context | Exchange # |\n"
        "|------|------|---------|------------|\n"
        f"{fallacy_rows or '| - | - | - | - |'}\n\n"
        "## Score\n"
        f"- Attorney: {att.valid_points} valid points, {att.fallacies} fallacies, {att.challenged} challenged\n"
        f"- Defendant: {dfn.valid_points} valid points, {dfn.fallacies} fallacies, {dfn.challenged} challenged\n"
    )


def build_context(state: MatchState) -> str:
    """Serialize the current match into labeled markdown sections."""
    parts: list[str] = []
    if state.case is not None:
        parts += ["=== issue.md ===", format_issue(state.case)]
    if state.prosecution_points:
        parts += ["=== prosecution_points.md ===", format_points(state.prosecution_points, "prosecution")]
    if state.defense_points:
        parts += ["=== defense_points.md ===", format_points(state.defense_points, "defense")]
    if state.messages:
        parts += ["=== conversation.md ===", format_transcript(state.messages)]
    parts += ["=== analysis.md ===", format_analysis(state.analysis)]

    bundle = "\n\n".join(parts)
    logger.debug("Context bundle: %d chars, %d messages", len(bundle), len(state.messages))
    return bundle
