"""Match phase controller: the per-match state machine.

    splash -> generating -> intro -> chat -> surrender -> ended (lost)
                                          -> ended (won, attorney KO)
                                          -> ended (lost, defendant KO)

reset() returns to splash from anywhere. One controller owns one MatchState;
there is no process-wide store. Only one round runs at a time: while a round
is in flight `state.busy` is set and new input is rejected. A round that is
still running when reset() is called stops with MatchError at its next step
and never writes to the new state.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import replace

from config.config_loader import GameConfig
from objection.agents import CaseGenerator, OpposingCounsel, SuggestionAgent
from objection.analysis import apply_assumptions, apply_fallacies, initial_analysis_for
from objection.damage import apply_simultaneous, resolve_attack, resolve_counter
from objection.evidence import available_card, detect_evidence, select_evidence_cards, use_evidence_card
from objection.history import HistoryStore, export_match
from objection.ledger import apply_point_updates, recalc_scores
from objection.models import (
    SURRENDER_TEXT,
    CaseDefinition,
    EvidenceCard,
    HealthState,
    MatchState,
    Message,
    RoundResult,
    SavedMatch,
    Sender,
    Suggestion,
    new_id,
)
from objection.providers.base import ProviderError
from objection.schemas import AgentValidationError

logger = logging.getLogger(__name__)

SURRENDER_SUGGESTION = Suggestion(text=SURRENDER_TEXT, type="surrender", variant="surrender")

OPENING_FALLBACK: tuple[Suggestion, ...] = (
    Suggestion("OBJECTION! I demand to see the evidence!", "objection"),
    Suggestion("That opening statement is misleading!", "strategic"),
    Suggestion("The defense is ready to present its case!", "dramatic"),
    Suggestion("Let's examine the facts more carefully.", "strategic"),
)

ROUND_FALLBACK: tuple[Suggestion, ...] = (
    Suggestion("OBJECTION! That argument is flawed!", "objection"),
    Suggestion("Let me present my evidence.", "evidence"),
    Suggestion("The truth will prevail!", "dramatic"),
)

_AGENT_ERRORS = (ProviderError, AgentValidationError)


class MatchError(Exception):
    """Base for controller usage errors."""


class PhaseError(MatchError):
    """Operation not allowed in the current phase."""


class MatchBusyError(MatchError):
    """A round is already in flight for this match."""


def enforce_surrender_rule(
    suggestions: Sequence[Suggestion],
    exchange_count: int,
    threshold: int = 6,
) -> list[Suggestion]:
    """Put a single canonical surrender entry last when one is present or required.

    From `threshold` exchanges on, the entry is appended if the agent left it out.
    Before that, it only appears if the agent supplied one.
    """
    regular = [s for s in suggestions if s.variant != "surrender"]
    has_surrender = len(regular) != len(suggestions)
    if has_surrender or exchange_count >= threshold:
        regular.append(SURRENDER_SUGGESTION)
    return regular


def _copy_state(state: MatchState) -> MatchState:
    return replace(
        state,
        prosecution_points=list(state.prosecution_points),
        defense_points=list(state.defense_points),
        messages=list(state.messages),
        pending_suggestions=list(state.pending_suggestions),
        evidence_cards=list(state.evidence_cards),
    )


class MatchController:
    """Drives one match from case generation to a saved result."""

    def __init__(
        self,
        game: GameConfig,
        counsel: OpposingCounsel,
        suggester: SuggestionAgent,
        case_generator: CaseGenerator | None = None,
        store: HistoryStore | None = None,
        state: MatchState | None = None,
    ) -> None:
        self._game = game
        self._counsel = counsel
        self._suggester = suggester
        self._case_generator = case_generator
        self._store = store
        self._state = state if state is not None else MatchState(health=self._full_health())
        self._saved: SavedMatch | None = None
        self._pending: set[asyncio.Task] = set()
        self._persist_lock = asyncio.Lock()

    @property
    def state(self) -> MatchState:
        return self._state

    @property
    def saved_match(self) -> SavedMatch | None:
        """The terminal history record, once the match has ended."""
        return self._saved

    # --- lifecycle ---

    def reset(self) -> MatchState:
        """Discard the current match and return to splash with default state."""
        self._state = MatchState(health=self._full_health())
        self._saved = None
        logger.info("Match reset")
        return self._state

    async def start_match(self) -> CaseDefinition:
        """splash -> generating -> intro. Returns to splash if the case cannot be built."""
        self._require_phase("splash")
        if self._case_generator is None:
            raise MatchError("No case generator configured")
        state = self._state
        state.phase = "generating"
        try:
            case = await self._case_generator.generate()
        except _AGENT_ERRORS:
            state.phase = "splash"
            raise
        self._ensure_live(state)
        self.init_case(case)
        return case

    def init_case(self, case: CaseDefinition) -> None:
        """Load a case into fresh match state and move to intro."""
        self._require_phase("splash", "generating")
        state = self._state
        state.case = case
        state.prosecution_points = list(case.prosecution_points)
        state.defense_points = list(case.defense_points)
        state.analysis = initial_analysis_for(case)
        state.health = self._full_health()
        state.messages = []
        state.pending_suggestions = []
        state.evidence_cards = []
        state.exchange_count = 0
        state.outcome = None
        state.phase = "intro"
        logger.info("Case loaded: %s", case.title)

    def select_evidence(self, ids: Sequence[str]) -> list[EvidenceCard]:
        """Choose evidence cards from the defense points. Only before the chat starts."""
        self._require_phase("intro")
        self._state.evidence_cards = select_evidence_cards(self._state.defense_points, ids)
        logger.info("Evidence selected: %s", ", ".join(c.id for c in self._state.evidence_cards) or "none")
        return list(self._state.evidence_cards)

    async def begin_chat(self) -> list[Suggestion]:
        """intro -> chat: post the opening statement and fetch the first suggestions.

        The match is snapshotted to history once the opening is on the record.
        """
        self._require_phase("intro")
        state = self._claim()
        try:
            state.phase = "chat"
            state.outcome = "pending"
            await asyncio.sleep(self._game.pacing.reveal_sec)
            self._ensure_live(state)
            self._add_message(state, state.case.opening_statement, "attorney", 5)
            suggestions = await self._fetch_suggestions(state, OPENING_FALLBACK)
            self._ensure_live(state)
            state.pending_suggestions = suggestions
            self._snapshot(state)
            return list(suggestions)
        finally:
            state.busy = False

    # --- rounds ---

    async def submit_message(self, text: str, evidence_id: str | None = None) -> RoundResult:
        """Play one exchange.

        Args:
            text: The player's message. The exact surrender text ends the match.
            evidence_id: Card the player deployed with this message. When None
                and substring detection is enabled, the text is scanned for
                an unused card id.

        Raises:
            MatchBusyError: A round is already running.
            PhaseError: The match is not in the chat phase.
            ValueError: Empty message.
            ProviderError, AgentValidationError: The counsel call failed; the
                match state is left exactly as it was before the call.
            MatchError: The match was reset while the round was running.
        """
        if self._state.busy:
            raise MatchBusyError("A round is already in progress")
        self._require_phase("chat")
        text = text.strip()
        if not text:
            raise ValueError("Message is empty")
        if text == SURRENDER_TEXT:
            return await self.surrender()

        state = self._claim()
        before = _copy_state(state)
        before.busy = False
        try:
            return await self._play_round(state, text, evidence_id, before)
        finally:
            state.busy = False

    async def _play_round(
        self,
        state: MatchState,
        text: str,
        evidence_id: str | None,
        before: MatchState,
    ) -> RoundResult:
        card = self._pick_evidence(state, text, evidence_id)
        if card is not None:
            state.evidence_cards = use_evidence_card(state.evidence_cards, card.id)
            logger.info("Evidence %s deployed", card.id)
        self._add_message(state, text, "user")
        state.exchange_count += 1
        state.pending_suggestions = []

        try:
            reply = await self._counsel.respond(state, text)
        except _AGENT_ERRORS:
            if self._state is state:
                logger.warning("Round %d rolled back", before.exchange_count + 1)
                self._state = before
            raise
        self._ensure_live(state)

        prosecution, defense = apply_point_updates(state.prosecution_points, state.defense_points, reply.updated_points)
        state.prosecution_points, state.defense_points = prosecution, defense
        analysis = recalc_scores(state.analysis, prosecution, defense)
        if reply.fallacies:
            analysis = apply_fallacies(analysis, reply.fallacies, state.exchange_count)
        if reply.assumptions:
            analysis = apply_assumptions(analysis, reply.assumptions)
        state.analysis = analysis

        user_damage = reply.damage_to_attorney + (self._game.evidence_bonus if card is not None else 0)
        counter_damage = 0
        await asyncio.sleep(self._game.pacing.reveal_sec)
        self._ensure_live(state)

        if self._game.damage_policy == "simultaneous":
            attorney_message = self._add_message(state, reply.message, "attorney", reply.intensity)
            counter_damage = reply.damage_to_defendant
            state.health, ko = apply_simultaneous(state.health, user_damage, counter_damage)
        else:
            state.health, ko = resolve_attack(state.health, user_damage)
            attorney_message = self._add_message(state, reply.message, "attorney", reply.intensity)
            if ko == "none":
                await asyncio.sleep(self._game.pacing.counter_sec)
                self._ensure_live(state)
                counter_damage = reply.damage_to_defendant
                state.health, ko = resolve_counter(state.health, counter_damage)

        logger.info(
            "Exchange %d: %d to attorney (%d HP), %d to defendant (%d HP)%s",
            state.exchange_count, user_damage, state.health.attorney_hp,
            counter_damage, state.health.defendant_hp,
            f", {ko}" if ko != "none" else "",
        )

        if ko != "none":
            self._end(state, "won" if ko == "attorney_ko" else "lost")
            return RoundResult(
                attorney_message=attorney_message,
                user_damage=user_damage,
                counter_damage=counter_damage,
                evidence_used=card.id if card else None,
                ko=ko,
                outcome=state.outcome,
            )

        suggestions = await self._fetch_suggestions(state, ROUND_FALLBACK)
        self._ensure_live(state)
        state.pending_suggestions = suggestions
        self._snapshot(state)
        return RoundResult(
            attorney_message=attorney_message,
            user_damage=user_damage,
            counter_damage=counter_damage,
            evidence_used=card.id if card else None,
            ko=ko,
            suggestions=tuple(suggestions),
            outcome=state.outcome,
        )

    async def surrender(self) -> RoundResult:
        """Concede. Ends the match lost with no health change.

        The victory speech is best effort: if the counsel call fails the match
        still ends, just without the speech.
        """
        if self._state.busy:
            raise MatchBusyError("A round is already in progress")
        self._require_phase("chat")
        state = self._claim()
        try:
            state.phase = "surrender"
            self._add_message(state, SURRENDER_TEXT, "user")
            state.exchange_count += 1
            state.pending_suggestions = []
            await asyncio.sleep(self._game.pacing.surrender_sec)
            self._ensure_live(state)

            try:
                reply = await self._counsel.respond(state, SURRENDER_TEXT, surrender=True)
            except _AGENT_ERRORS as exc:
                logger.warning("Victory speech unavailable: %s", exc)
                reply = None
            self._ensure_live(state)

            attorney_message: Message | None = None
            if reply is not None:
                attorney_message = self._add_message(state, reply.message, "attorney", 10)
            self._end(state, "lost")
            return RoundResult(attorney_message=attorney_message, outcome="lost")
        finally:
            state.busy = False

    # --- persistence ---

    async def flush(self) -> None:
        """Wait for outstanding background saves. Their errors are already logged."""
        if self._pending:
            await asyncio.gather(*self._pending)

    def _snapshot(self, state: MatchState) -> None:
        if self._store is None:
            return
        store, copy = self._store, _copy_state(state)
        self._persist_in_background(lambda: store.snapshot(copy), "snapshot", state.id)

    def _persist_in_background(self, target: Callable[[], object], label: str, match_id: str) -> asyncio.Task:
        task = asyncio.create_task(self._run_persist(target, label, match_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _run_persist(self, target: Callable[[], object], label: str, match_id: str) -> object:
        # Writes run one at a time, in the order they were scheduled.
        try:
            async with self._persist_lock:
                return await asyncio.to_thread(target)
        except Exception as exc:
            logger.warning("History %s failed for match %s: %s", label, match_id, exc)
            return None

    def _adopt_saved(self, task: asyncio.Task) -> None:
        """Take the record the store wrote, which may carry flags edited mid-match."""
        if task.cancelled():
            return
        record = task.result()
        if isinstance(record, SavedMatch) and self._saved is not None and self._saved.id == record.id:
            self._saved = record

    # --- helpers ---

    def _end(self, state: MatchState, outcome: str) -> None:
        state.outcome = outcome
        state.phase = "ended"
        state.pending_suggestions = []
        logger.info("Match %s ended: %s", state.id, outcome)
        if self._saved is not None:
            return
        record = export_match(state, outcome)
        self._saved = record
        if self._store is not None:
            store = self._store
            task = self._persist_in_background(lambda: store.finalize(record), "save", state.id)
            task.add_done_callback(self._adopt_saved)

    async def _fetch_suggestions(self, state: MatchState, fallback: Sequence[Suggestion]) -> list[Suggestion]:
        try:
            result = await self._suggester.suggest(state)
            suggestions: Sequence[Suggestion] = result.suggestions
        except _AGENT_ERRORS as exc:
            logger.warning("Suggestions unavailable, using defaults: %s", exc)
            suggestions = fallback
        return enforce_surrender_rule(suggestions, state.exchange_count, self._game.surrender_after)

    def _pick_evidence(self, state: MatchState, text: str, evidence_id: str | None) -> EvidenceCard | None:
        cards = state.evidence_cards
        if evidence_id is not None:
            return available_card(cards, evidence_id)
        if self._game.evidence_detection == "substring":
            return detect_evidence(cards, text)
        return None

    @staticmethod
    def _add_message(state: MatchState, text: str, sender: Sender, intensity: int | None = None) -> Message:
        msg = Message(
            id=new_id("msg"),
            text=text,
            sender=sender,
            timestamp=int(time.time() * 1000),
            intensity=intensity,
        )
        state.messages.append(msg)
        return msg

    def _full_health(self) -> HealthState:
        hp = self._game.max_hp
        return HealthState(attorney_hp=hp, defendant_hp=hp, max_hp=hp)

    def _claim(self) -> MatchState:
        """Mark the current match busy and return it. Callers work on that object only."""
        state = self._state
        if state.busy:
            raise MatchBusyError("A round is already in progress")
        state.busy = True
        return state

    def _ensure_live(self, state: MatchState) -> None:
        # reset() swaps in a new state; a call that outlives it must not touch the new one
        if self._state is not state:
            raise MatchError(f"Match {state.id} was reset while a call was in flight")

    def _require_phase(self, *phases: str) -> None:
        if self._state.phase not in phases:
            raise PhaseError(f"Expected phase {' or '.join(phases)}, match is in {self._state.phase}")
