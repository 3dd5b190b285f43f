"""Evidence cards: pre-selected defense claims, each usable once per match."""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import replace

from objection.models import ClaimPoint, EvidenceCard

logger = logging.getLogger(__name__)


def select_evidence_cards(
    defense_points: Sequence[ClaimPoint],
    ids: Iterable[str],
) -> list[EvidenceCard]:
    """Build one unused card per chosen defense point id, in the order given.

    The card cap is enforced by the caller. Ids that are not defense points
    (or repeat an earlier id) are skipped.
    """
    by_id = {p.id: p for p in defense_points}
    cards: list[EvidenceCard] = []
    seen: set[str] = set()
    for point_id in ids:
        point = by_id.get(point_id)
        if point is None or point_id in seen:
            logger.debug("Skipping evidence selection %r", point_id)
            continue
        seen.add(point_id)
        cards.append(EvidenceCard(id=point.id, claim=point.claim, evidence_text=point.evidence_text))
    return cards


def use_evidence_card(cards: Sequence[EvidenceCard], card_id: str) -> list[EvidenceCard]:
    """Return a copy of `cards` with `card_id` marked used. No-op if already used or unknown."""
    return [replace(c, used=True) if c.id == card_id and not c.used else c for c in cards]


def available_card(cards: Sequence[EvidenceCard], card_id: str) -> EvidenceCard | None:
    """The unused card with this id (case-insensitive), if any."""
    wanted = card_id.strip().lower()
    return next((c for c in cards if not c.used and c.id.lower() == wanted), None)


def detect_evidence(cards: Sequence[EvidenceCard], text: str) -> EvidenceCard | None:
    """First unused card, in registration order, whose id appears in `text`.

    Matching is a case-insensitive substring test, so "d2" in "...see d2!" hits
    card "D2". Only one card is returned even if several ids appear.
    """
    lowered = text.lower()
    return next((c for c in cards if not c.used and c.id.lower() in lowered), None)
