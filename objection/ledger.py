"""Point ledger: per-claim challenge status and the per-side scores derived from it."""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import replace

from objection.models import AnalysisState, ClaimPoint, PointUpdate, Score

logger = logging.getLogger(__name__)

_VALID_STATUSES = ("unchallenged", "proven")


def apply_point_updates(
    prosecution: Sequence[ClaimPoint],
    defense: Sequence[ClaimPoint],
    updates: Iterable[PointUpdate],
) -> tuple[list[ClaimPoint], list[ClaimPoint]]:
    """Apply status updates to copies of both point lists.

    The prosecution list is searched first, then the defense list. Ids found
    in neither are dropped: the updates come from an LLM and may name points
    that do not exist. `reason` is informational and not stored.

    Returns:
        (new_prosecution, new_defense)
    """
    new_prosecution = list(prosecution)
    new_defense = list(defense)

    for update in updates:
        for points in (new_prosecution, new_defense):
            idx = next((i for i, p in enumerate(points) if p.id == update.id), None)
            if idx is not None:
                points[idx] = replace(points[idx], status=update.new_status)
                break
        else:
            logger.debug("Dropping update for unknown point id %r", update.id)

    return new_prosecution, new_defense


def _side_score(points: Sequence[ClaimPoint], base: Score) -> Score:
    return replace(
        base,
        valid_points=sum(1 for p in points if p.status in _VALID_STATUSES),
        challenged=sum(1 for p in points if p.status == "challenged"),
    )


def recalc_scores(
    analysis: AnalysisState,
    prosecution: Sequence[ClaimPoint],
    defense: Sequence[ClaimPoint],
) -> AnalysisState:
    """Recompute valid/challenged counts for both sides. Fallacy counts are kept.

    Refuted points count toward neither total.
    """
    return replace(
        analysis,
        attorney_score=_side_score(prosecution, analysis.attorney_score),
        defendant_score=_side_score(defense, analysis.defendant_score),
    )
