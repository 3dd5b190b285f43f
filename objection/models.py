"""Dataclasses for the courtroom match engine. Stdlib only."""

import random
import string
import time
from dataclasses import dataclass, field
from typing import Literal

PointStatus = Literal["unchallenged", "challenged", "refuted", "proven"]
Side = Literal["attorney", "defendant"]
Sender = Literal["attorney", "user"]
AssumptionState = Literal["HELD", "CHALLENGED", "BROKEN"]
SuggestionType = Literal["objection", "evidence", "dramatic", "strategic", "surrender"]
SuggestionVariant = Literal["default", "surrender"]
Phase = Literal["splash", "generating", "intro", "chat", "surrender", "ended"]
Outcome = Literal["pending", "won", "lost"]
SavedOutcome = Literal["won", "lost", "in-progress"]
Visibility = Literal["public", "private"]
KOResult = Literal["none", "attorney_ko", "defendant_ko"]

POINT_STATUSES: tuple[str, ...] = ("unchallenged", "challenged", "refuted", "proven")
SIDES: tuple[str, ...] = ("attorney", "defendant")
ASSUMPTION_STATES: tuple[str, ...] = ("HELD", "CHALLENGED", "BROKEN")
SUGGESTION_TYPES: tuple[str, ...] = ("objection", "evidence", "dramatic", "strategic", "surrender")

SURRENDER_TEXT = "...I surrender."


def new_id(prefix: str) -> str:
    """Return `<prefix>_<epoch ms>_<6 base36 chars>`."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


@dataclass
class ModelResponse:
    provider: str          # "claude", "openai", "gemini", "grok"
    model: str             # actual model string used
    content: str
    latency_sec: float
    token_count: int | None


@dataclass(frozen=True)
class ClaimPoint:
    id: str                # "A1", "D2", ... unique within a match
    claim: str
    evidence_text: str
    status: PointStatus = "unchallenged"


@dataclass(frozen=True)
class CaseDefinition:
    title: str
    charge: str
    context: str
    central_tension: str
    opening_statement: str
    prosecution_points: tuple[ClaimPoint, ...]
    defense_points: tuple[ClaimPoint, ...]


@dataclass(frozen=True)
class HealthState:
    attorney_hp: int = 100
    defendant_hp: int = 100
    max_hp: int = 100


@dataclass(frozen=True)
class EvidenceCard:
    id: str
    claim: str
    evidence_text: str
    used: bool = False


@dataclass(frozen=True)
class Message:
    id: str
    text: str
    sender: Sender
    timestamp: int         # epoch ms
    intensity: int | None = None


@dataclass(frozen=True)
class Suggestion:
    text: str
    type: SuggestionType = "strategic"
    variant: SuggestionVariant = "default"


@dataclass(frozen=True)
class PointUpdate:
    id: str
    new_status: PointStatus
    reason: str = ""


@dataclass(frozen=True)
class AssumptionRecord:
    side: Side
    assumption_text: str
    state: AssumptionState


@dataclass(frozen=True)
class AssumptionUpdate:
    side: Side
    assumption_text: str
    new_state: AssumptionState


@dataclass(frozen=True)
class FallacyRecord:
    side: Side
    type: str
    context: str
    exchange_number: int = 0


@dataclass(frozen=True)
class Score:
    valid_points: int = 0
    fallacies: int = 0
    challenged: int = 0


@dataclass(frozen=True)
class AnalysisState:
    assumptions: tuple[AssumptionRecord, ...] = ()
    fallacies: tuple[FallacyRecord, ...] = ()
    attorney_score: Score = field(default_factory=Score)
    defendant_score: Score = field(default_factory=Score)


@dataclass(frozen=True)
class CounselReply:
    """Normalized opposing-counsel response for one round."""
    message: str
    updated_points: tuple[PointUpdate, ...] = ()
    fallacies: tuple[FallacyRecord, ...] = ()
    assumptions: tuple[AssumptionUpdate, ...] = ()
    intensity: int = 3
    damage_to_attorney: int = 5
    damage_to_defendant: int = 5


@dataclass(frozen=True)
class SuggestionSet:
    suggestions: tuple[Suggestion, ...]
    defense_analysis: str = "No analysis"
    recommended_strategy: str = "No recommendation"


@dataclass
class MatchState:
    id: str = field(default_factory=lambda: new_id("match"))
    phase: Phase = "splash"
    case: CaseDefinition | None = None
    prosecution_points: list[ClaimPoint] = field(default_factory=list)
    defense_points: list[ClaimPoint] = field(default_factory=list)
    analysis: AnalysisState = field(default_factory=AnalysisState)
    health: HealthState = field(default_factory=HealthState)
    messages: list[Message] = field(default_factory=list)
    pending_suggestions: list[Suggestion] = field(default_factory=list)
    evidence_cards: list[EvidenceCard] = field(default_factory=list)
    exchange_count: int = 0
    outcome: Outcome | None = None
    created_at: int = field(default_factory=lambda: int(time.time() * 1000))
    busy: bool = False     # transient, never persisted


@dataclass(frozen=True)
class RoundResult:
    attorney_message: Message | None = None
    user_damage: int = 0
    counter_damage: int = 0
    evidence_used: str | None = None
    ko: KOResult = "none"
    suggestions: tuple[Suggestion, ...] = ()
    outcome: Outcome | None = None


@dataclass
class SavedMatch:
    id: str
    case: CaseDefinition
    messages: list[Message]
    outcome: SavedOutcome
    final_health: HealthState
    exchange_count: int
    score: int
    starred: bool = False
    visibility: Visibility = "public"
    created_at: int = field(default_factory=lambda: int(time.time() * 1000))
