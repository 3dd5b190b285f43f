"""Fallacy and assumption tracking across a match."""

from collections.abc import Iterable
from dataclasses import replace

from objection.ledger import recalc_scores
from objection.models import (
    AnalysisState,
    AssumptionRecord,
    AssumptionUpdate,
    CaseDefinition,
    FallacyRecord,
)


def create_initial_analysis() -> AnalysisState:
    return AnalysisState()


def initial_analysis_for(case: CaseDefinition) -> AnalysisState:
    """Empty analysis with scores seeded from the case's opening point statuses."""
    return recalc_scores(AnalysisState(), case.prosecution_points, case.defense_points)


def apply_fallacies(
    analysis: AnalysisState,
    records: Iterable[FallacyRecord],
    exchange_number: int,
) -> AnalysisState:
    """Append fallacies tagged with `exchange_number`, then recount per side.

    Counts are cumulative over the whole match, not per round.
    """
    fallacies = analysis.fallacies + tuple(
        replace(r, exchange_number=exchange_number) for r in records
    )
    attorney_count = sum(1 for f in fallacies if f.side == "attorney")
    defendant_count = sum(1 for f in fallacies if f.side == "defendant")
    return replace(
        analysis,
        fallacies=fallacies,
        attorney_score=replace(analysis.attorney_score, fallacies=attorney_count),
        defendant_score=replace(analysis.defendant_score, fallacies=defendant_count),
    )


def apply_assumptions(
    analysis: AnalysisState,
    updates: Iterable[AssumptionUpdate],
) -> AnalysisState:
    """Upsert assumption records keyed by (side, assumption_text). Last writer wins."""
    assumptions = list(analysis.assumptions)
    for update in updates:
        idx = next(
            (
                i for i, a in enumerate(assumptions)
                if a.side == update.side and a.assumption_text == update.assumption_text
            ),
            None,
        )
        if idx is not None:
            assumptions[idx] = replace(assumptions[idx], state=update.new_state)
        else:
            assumptions.append(
                AssumptionRecord(
                    side=update.side,
                    assumption_text=update.assumption_text,
                    state=update.new_state,
                )
            )
    return replace(analysis, assumptions=tuple(assumptions))
