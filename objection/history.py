"""Match history: scoring, export, and a markdown-with-frontmatter record store.

Each match is one file `<match id>.md`. The YAML frontmatter holds the full
structured record (enough to rebuild the SavedMatch exactly); the body is a
readable transcript that can be shared as-is.
"""

import logging
from dataclasses import asdict, replace
from datetime import datetime
from pathlib import Path

import frontmatter

from objection.models import (
    CaseDefinition,
    ClaimPoint,
    HealthState,
    MatchState,
    Message,
    SavedMatch,
    SavedOutcome,
    Visibility,
)

logger = logging.getLogger(__name__)

_TERMINAL = ("won", "lost")
_MAX_EXCHANGE_BONUS = 30
_WIN_BONUS = 50


def compute_score(final_attorney_hp: int, exchange_count: int, outcome: str, max_hp: int = 100) -> int:
    """(max_hp - attorney hp) + min(exchanges * 3, 30) + 50 on a win."""
    return (
        (max_hp - final_attorney_hp)
        + min(exchange_count * 3, _MAX_EXCHANGE_BONUS)
        + (_WIN_BONUS if outcome == "won" else 0)
    )


def export_match(
    state: MatchState,
    outcome: SavedOutcome,
    *,
    created_at: int | None = None,
    starred: bool = False,
    visibility: Visibility = "public",
) -> SavedMatch:
    """Freeze a match into a history record. Transient flags are not carried.

    `created_at` defaults to the match start, so every record of one match
    carries the same timestamp.
    """
    if state.case is None:
        raise ValueError("Cannot export a match without a case")
    return SavedMatch(
        id=state.id,
        case=state.case,
        messages=list(state.messages),
        outcome=outcome,
        final_health=state.health,
        exchange_count=state.exchange_count,
        score=compute_score(state.health.attorney_hp, state.exchange_count, outcome, state.health.max_hp),
        starred=starred,
        visibility=visibility,
        created_at=created_at if created_at is not None else state.created_at,
    )


def _to_metadata(match: SavedMatch) -> dict:
    data = asdict(match)
    data["case"]["prosecution_points"] = list(data["case"]["prosecution_points"])
    data["case"]["defense_points"] = list(data["case"]["defense_points"])
    return data


def _from_metadata(meta: dict) -> SavedMatch:
    case_raw = meta["case"]
    case = CaseDefinition(
        title=case_raw["title"],
        charge=case_raw["charge"],
        context=case_raw["context"],
        central_tension=case_raw["central_tension"],
        opening_statement=case_raw["opening_statement"],
        prosecution_points=tuple(ClaimPoint(**p) for p in case_raw["prosecution_points"]),
        defense_points=tuple(ClaimPoint(**p) for p in case_raw["defense_points"]),
    )
    return SavedMatch(
        id=str(meta["id"]),
        case=case,
        messages=[Message(**m) for m in meta.get("messages") or []],
        outcome=meta["outcome"],
        final_health=HealthState(**meta["final_health"]),
        exchange_count=int(meta["exchange_count"]),
        score=int(meta.get("score", 0)),
        starred=bool(meta.get("starred", False)),
        visibility=meta.get("visibility", "public"),
        created_at=int(meta["created_at"]),
    )


def render_transcript(match: SavedMatch) -> str:
    """Human-readable markdown body for a saved match."""
    created = datetime.fromtimestamp(match.created_at / 1000).strftime("%Y-%m-%d %H:%M:%S")
    health = match.final_health
    lines: list[str] = [
        f"# {match.case.title}",
        "",
        f"**Charge:** {match.case.charge}",
        f"**Date:** {created}",
        f"**Outcome:** {match.outcome}",
        f"**Score:** {match.score}",
        f"**Exchanges:** {match.exchange_count}",
        f"**Final HP:** attorney {health.attorney_hp}/{health.max_hp}, "
        f"defendant {health.defendant_hp}/{health.max_hp}",
        "",
        "---",
        "",
    ]
    for msg in match.messages:
        label = "Attorney" if msg.sender == "attorney" else "Defense"
        lines.append(f"**{label}:** {msg.text}")
        lines.append("")
    return "\n".join(lines)


class HistoryStore:
    """File-backed history of saved matches.

    Only `starred` and `visibility` may change once a record is terminal.
    """

    def __init__(self, directory: Path) -> None:
        self._dir = directory

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, match_id: str) -> Path:
        return self._dir / f"{match_id}.md"

    def save(self, match: SavedMatch) -> Path:
        self._dir.mkdir(parents=True, exist_ok=True)
        path = self._path(match.id)
        post = frontmatter.Post(render_transcript(match), **_to_metadata(match))
        path.write_text(frontmatter.dumps(post), encoding="utf-8")
        logger.debug("History record written: %s", path)
        return path

    def load(self, match_id: str) -> SavedMatch:
        path = self._path(match_id)
        if not path.exists():
            raise KeyError(match_id)
        return _from_metadata(frontmatter.load(str(path)).metadata)

    def exists(self, match_id: str) -> bool:
        return self._path(match_id).exists()

    def list_matches(self) -> list[SavedMatch]:
        """All records, newest first. Unreadable files are skipped."""
        if not self._dir.exists():
            return []
        records: list[SavedMatch] = []
        for path in self._dir.glob("*.md"):
            try:
                records.append(_from_metadata(frontmatter.load(str(path)).metadata))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable history file %s: %s", path.name, exc)
        return sorted(records, key=lambda m: m.created_at, reverse=True)

    def delete(self, match_id: str) -> None:
        path = self._path(match_id)
        if not path.exists():
            raise KeyError(match_id)
        path.unlink()

    def toggle_star(self, match_id: str) -> SavedMatch:
        match = self.load(match_id)
        updated = replace(match, starred=not match.starred)
        self.save(updated)
        return updated

    def set_visibility(self, match_id: str, visibility: Visibility) -> SavedMatch:
        if visibility not in ("public", "private"):
            raise ValueError(f"Unknown visibility: {visibility!r}")
        updated = replace(self.load(match_id), visibility=visibility)
        self.save(updated)
        return updated

    def snapshot(self, state: MatchState) -> Path | None:
        """Upsert the in-progress record for a live match.

        Returns None (and writes nothing) once the match has a terminal record.
        """
        existing = self.load(state.id) if self.exists(state.id) else None
        if existing is not None and existing.outcome in _TERMINAL:
            logger.debug("Match %s already finalized, snapshot skipped", state.id)
            return None
        if existing is None:
            return self.save(export_match(state, "in-progress"))
        return self.save(
            export_match(state, "in-progress", starred=existing.starred, visibility=existing.visibility)
        )

    def finalize(self, record: SavedMatch) -> SavedMatch:
        """Write the terminal record for a finished match, as built by the caller.

        `starred` and `visibility` set on the in-progress record are carried
        over. Raises ValueError if the record is not terminal or the match was
        already finalized.
        """
        if record.outcome not in _TERMINAL:
            raise ValueError(f"Match {record.id} has no terminal outcome ({record.outcome!r})")
        existing = self.load(record.id) if self.exists(record.id) else None
        if existing is not None:
            if existing.outcome in _TERMINAL:
                raise ValueError(f"Match {record.id} already finalized")
            record = replace(record, starred=existing.starred, visibility=existing.visibility)
        self.save(record)
        logger.info("Saved %s match %s (score %d)", record.outcome, record.id, record.score)
        return record
