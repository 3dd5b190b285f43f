"""Wire schemas for agent payloads plus the normalization step into engine types.

Each `normalize_*` function takes the raw model text and returns either the
normalized value or an AgentValidationError. Nothing here raises on a bad
payload; callers decide what to do with the error.
"""

import json
import logging
import math
import re
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from config.config_loader import GameConfig
from objection.damage import clamp
from objection.models import (
    SUGGESTION_TYPES,
    SURRENDER_TEXT,
    AssumptionUpdate,
    CaseDefinition,
    ClaimPoint,
    CounselReply,
    FallacyRecord,
    PointUpdate,
    Suggestion,
    SuggestionSet,
)

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

_StatusField = Literal["unchallenged", "challenged", "refuted", "proven"]
_SideField = Literal["attorney", "defendant"]


class AgentValidationError(Exception):
    """Raised (or returned) when an agent payload is missing required fields or malformed."""

    def __init__(self, agent: str, message: str) -> None:
        self.agent = agent
        super().__init__(f"[{agent}] {message}")


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CasePointPayload(_Lenient):
    id: str
    claim: str = ""
    evidence: str = Field(default="", validation_alias=AliasChoices("evidence", "evidence_text"))
    status: _StatusField | None = None


class CasePayload(_Lenient):
    title: str = ""
    charge: str = ""
    context: str = ""
    philosophical_tension: str = Field(
        default="",
        validation_alias=AliasChoices("philosophical_tension", "central_tension"),
    )
    opening_statement: str = ""
    attorney_points: list[CasePointPayload] | None = None
    defendant_points: list[CasePointPayload] | None = None


class PointUpdatePayload(_Lenient):
    id: str
    new_status: _StatusField
    reason: str = ""


class FallacyPayload(_Lenient):
    side: _SideField
    type: str
    context: str = ""


class AssumptionPayload(_Lenient):
    side: _SideField
    assumption: str
    new_state: Literal["HELD", "CHALLENGED", "BROKEN"]


class CounselPayload(_Lenient):
    message: str = ""
    updated_points: list[PointUpdatePayload] | None = None
    fallacies_identified: list[FallacyPayload] | None = None
    assumptions_challenged: list[AssumptionPayload] | None = None
    intensity_level: float | None = Field(
        default=None,
        validation_alias=AliasChoices("intensity_level", "intensity"),
    )
    damage_to_attorney: float | None = None
    damage_to_defendant: float | None = None


class SuggestionPayload(_Lenient):
    text: str = ""
    type: str | None = None
    variant: str | None = None


class SuggestionsPayload(_Lenient):
    suggestions: list[SuggestionPayload] | None = None
    defense_analysis: str | None = None
    recommended_strategy: str | None = None


def extract_json(agent: str, text: str) -> dict | AgentValidationError:
    """Parse the first {...} span in a model reply. Models often wrap JSON in prose."""
    match = _JSON_OBJECT.search(text or "")
    if not match:
        return AgentValidationError(agent, "No JSON object found in agent response")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        return AgentValidationError(agent, f"Invalid JSON: {exc}")
    if not isinstance(data, dict):
        return AgentValidationError(agent, "Agent response is not a JSON object")
    return data


def _parse(agent: str, text: str, model: type[BaseModel]) -> BaseModel | AgentValidationError:
    data = extract_json(agent, text)
    if isinstance(data, AgentValidationError):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        return AgentValidationError(agent, f"Schema mismatch: {exc.error_count()} error(s): {exc.errors()[0]['msg']}")


def _to_points(payloads: list[CasePointPayload]) -> tuple[ClaimPoint, ...]:
    return tuple(
        ClaimPoint(
            id=p.id,
            claim=p.claim,
            evidence_text=p.evidence,
            status=p.status or "unchallenged",
        )
        for p in payloads
    )


def normalize_case(text: str) -> CaseDefinition | AgentValidationError:
    """Validate a case generator reply. Any missing required field rejects the whole case."""
    parsed = _parse("case_creator", text, CasePayload)
    if isinstance(parsed, AgentValidationError):
        return parsed

    missing = [
        name for name in ("title", "charge", "context", "opening_statement")
        if not getattr(parsed, name).strip()
    ]
    if missing:
        return AgentValidationError("case_creator", f"Missing required fields: {', '.join(missing)}")
    if not parsed.attorney_points or not parsed.defendant_points:
        return AgentValidationError("case_creator", "Missing argument points")

    prosecution = _to_points(parsed.attorney_points)
    defense = _to_points(parsed.defendant_points)
    ids = [p.id for p in prosecution + defense]
    if len(set(ids)) != len(ids):
        return AgentValidationError("case_creator", "Duplicate point ids")

    return CaseDefinition(
        title=parsed.title.strip(),
        charge=parsed.charge.strip(),
        context=parsed.context.strip(),
        central_tension=parsed.philosophical_tension.strip(),
        opening_statement=parsed.opening_statement.strip(),
        prosecution_points=prosecution,
        defense_points=defense,
    )


def _number(value: float | None, default: int, low: int, high: int) -> int:
    if value is None or not math.isfinite(value):
        return default
    return clamp(round(value), low, high)


def normalize_counsel(
    text: str,
    game: GameConfig,
    surrender: bool = False,
) -> CounselReply | AgentValidationError:
    """Validate an opposing-counsel reply and clamp its numeric fields.

    On surrender the reply is forced to intensity 10 and zero damage whatever
    the payload says.
    """
    parsed = _parse("lawyer", text, CounselPayload)
    if isinstance(parsed, AgentValidationError):
        return parsed
    if not parsed.message.strip():
        return AgentValidationError("lawyer", "Missing message")

    default = game.default_damage
    if surrender:
        intensity, to_attorney, to_defendant = 10, 0, 0
    else:
        intensity = _number(parsed.intensity_level, 3, 1, 10)
        to_attorney = _number(parsed.damage_to_attorney, default, 0, game.attack_damage_cap)
        to_defendant = _number(parsed.damage_to_defendant, default, 0, game.counter_damage_cap)

    return CounselReply(
        message=parsed.message.strip(),
        updated_points=tuple(
            PointUpdate(id=u.id, new_status=u.new_status, reason=u.reason)
            for u in parsed.updated_points or []
        ),
        fallacies=tuple(
            FallacyRecord(side=f.side, type=f.type, context=f.context)
            for f in parsed.fallacies_identified or []
        ),
        assumptions=tuple(
            AssumptionUpdate(side=a.side, assumption_text=a.assumption, new_state=a.new_state)
            for a in parsed.assumptions_challenged or []
        ),
        intensity=intensity,
        damage_to_attorney=to_attorney,
        damage_to_defendant=to_defendant,
    )


def _to_suggestion(payload: SuggestionPayload) -> Suggestion:
    kind = payload.type if payload.type in SUGGESTION_TYPES else "strategic"
    if payload.type is not None and kind != payload.type:
        logger.debug("Unknown suggestion type %r, using %r", payload.type, kind)
    variant = "surrender" if payload.variant == "surrender" or kind == "surrender" else "default"
    if variant == "surrender":
        return Suggestion(text=SURRENDER_TEXT, type="surrender", variant="surrender")
    return Suggestion(text=payload.text.strip(), type=kind, variant=variant)


def normalize_suggestions(text: str) -> SuggestionSet | AgentValidationError:
    """Validate a suggestion agent reply. Unknown types fall back to "strategic"."""
    parsed = _parse("defendant", text, SuggestionsPayload)
    if isinstance(parsed, AgentValidationError):
        return parsed
    entries = [s for s in parsed.suggestions or [] if s.text.strip()]
    if not entries:
        return AgentValidationError("defendant", "No suggestions")

    return SuggestionSet(
        suggestions=tuple(_to_suggestion(s) for s in entries),
        defense_analysis=parsed.defense_analysis or "No analysis",
        recommended_strategy=parsed.recommended_strategy or "No recommendation",
    )
