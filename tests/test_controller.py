"""Tests for objection/controller.py: phases, rounds, surrender, persistence."""

import asyncio
from dataclasses import replace

import pytest

from config.config_loader import PacingConfig
from objection.agents import OpposingCounsel, SuggestionAgent
from objection.controller import (
    OPENING_FALLBACK,
    ROUND_FALLBACK,
    SURRENDER_SUGGESTION,
    MatchBusyError,
    MatchController,
    MatchError,
    PhaseError,
    enforce_surrender_rule,
)
from objection.models import SURRENDER_TEXT, HealthState, Suggestion
from objection.providers.base import ProviderError
from objection.schemas import AgentValidationError
from tests.conftest import case_payload, counsel_payload, model_response, suggestions_payload


# ---------------------------------------------------------------------------
# enforce_surrender_rule
# ---------------------------------------------------------------------------

def test_surrender_rule_no_entry_before_threshold():
    result = enforce_surrender_rule([Suggestion("Hold it!")], exchange_count=2)
    assert SURRENDER_SUGGESTION not in result


def test_surrender_rule_appended_at_threshold():
    result = enforce_surrender_rule([Suggestion("Hold it!")], exchange_count=6)
    assert result[-1] == SURRENDER_SUGGESTION


def test_surrender_rule_moves_existing_entry_last_and_dedupes():
    suggestions = [SURRENDER_SUGGESTION, Suggestion("A"), SURRENDER_SUGGESTION, Suggestion("B")]
    result = enforce_surrender_rule(suggestions, exchange_count=1)
    assert [s.text for s in result] == ["A", "B", SURRENDER_TEXT]


def test_surrender_rule_custom_threshold():
    assert enforce_surrender_rule([], exchange_count=3, threshold=3) == [SURRENDER_SUGGESTION]


# ---------------------------------------------------------------------------
# Setup phases
# ---------------------------------------------------------------------------

def test_initial_state(controller):
    assert controller.state.phase == "splash"
    assert controller.state.health == HealthState()
    assert controller.saved_match is None


async def test_start_match_generates_case(controller):
    case = await controller.start_match()
    assert controller.state.phase == "intro"
    assert controller.state.case == case
    assert [p.id for p in controller.state.defense_points] == ["D1", "D2", "D3"]
    assert controller.state.analysis.defendant_score.valid_points == 3


async def test_start_match_failure_returns_to_splash(controller, case_provider):
    case_provider.queue(ProviderError("case", "timeout"))
    with pytest.raises(ProviderError):
        await controller.start_match()
    assert controller.state.phase == "splash"
    assert controller.state.case is None


async def test_start_match_invalid_case_returns_to_splash(controller, case_provider):
    case_provider.queue({"title": "Only a title"})
    with pytest.raises(AgentValidationError):
        await controller.start_match()
    assert controller.state.phase == "splash"


async def test_start_match_without_generator(game_config, prompts_config, lawyer_provider, defendant_provider):
    controller = MatchController(
        game=game_config,
        counsel=OpposingCounsel(lawyer_provider, prompts_config, game_config),
        suggester=SuggestionAgent(defendant_provider, prompts_config, game_config),
    )
    with pytest.raises(MatchError):
        await controller.start_match()


def test_select_evidence_only_in_intro(controller, sample_case):
    with pytest.raises(PhaseError):
        controller.select_evidence(["D1"])
    controller.init_case(sample_case)
    cards = controller.select_evidence(["D3", "A1"])
    assert [c.id for c in cards] == ["D3"]


async def test_begin_chat_posts_opening(chat_controller, sample_case):
    state = chat_controller.state
    assert state.phase == "chat"
    assert state.outcome == "pending"
    assert len(state.messages) == 1
    opening = state.messages[0]
    assert (opening.text, opening.sender, opening.intensity) == (sample_case.opening_statement, "attorney", 5)
    assert [s.text for s in state.pending_suggestions] == ["Hold it!", "Take that!"]


async def test_begin_chat_fallback_suggestions(controller, sample_case, defendant_provider):
    defendant_provider.queue(ProviderError("defendant", "down"))
    controller.init_case(sample_case)
    suggestions = await controller.begin_chat()
    assert suggestions == list(OPENING_FALLBACK)
    assert controller.state.busy is False


async def test_init_case_rejected_mid_match(chat_controller, sample_case):
    with pytest.raises(PhaseError):
        chat_controller.init_case(sample_case)


# ---------------------------------------------------------------------------
# Rounds
# ---------------------------------------------------------------------------

async def test_round_applies_both_damage_phases(chat_controller):
    result = await chat_controller.submit_message("The umbrella was abandoned!")
    state = chat_controller.state
    assert (result.user_damage, result.counter_damage, result.ko) == (10, 8, "none")
    assert (state.health.attorney_hp, state.health.defendant_hp) == (90, 92)
    assert state.exchange_count == 1
    assert [m.sender for m in state.messages] == ["attorney", "user", "attorney"]
    assert result.attorney_message.intensity == 5
    assert result.suggestions == tuple(state.pending_suggestions)
    assert state.busy is False


async def test_round_counsel_sees_user_message(chat_controller, lawyer_provider):
    await chat_controller.submit_message("Hold it!")
    _, prompt = lawyer_provider.generate.call_args.args
    assert "**User:** Hold it!" in prompt


async def test_round_applies_ledger_and_analysis(chat_controller, lawyer_provider):
    lawyer_provider.queue(counsel_payload(
        updated_points=[{"id": "D1", "new_status": "refuted"}, {"id": "Z9", "new_status": "proven"}],
        fallacies_identified=[{"side": "defendant", "type": "strawman", "context": "x"}],
        assumptions_challenged=[{"side": "defendant", "assumption": "Dust means abandoned", "new_state": "BROKEN"}],
    ))
    await chat_controller.submit_message("It was dusty!")
    state = chat_controller.state
    assert state.defense_points[0].status == "refuted"
    assert state.analysis.defendant_score.valid_points == 2
    assert state.analysis.defendant_score.fallacies == 1
    assert state.analysis.fallacies[0].exchange_number == 1
    assert state.analysis.assumptions[0].state == "BROKEN"


async def test_empty_message_rejected(chat_controller):
    with pytest.raises(ValueError):
        await chat_controller.submit_message("   ")
    assert chat_controller.state.exchange_count == 0


async def test_submit_outside_chat_rejected(controller):
    with pytest.raises(PhaseError):
        await controller.submit_message("Hello?")


async def test_busy_rejects_second_message(chat_controller, lawyer_provider):
    release = asyncio.Event()

    async def slow_reply(system_prompt, prompt):
        await release.wait()
        return model_response(counsel_payload())

    lawyer_provider.generate.side_effect = slow_reply
    first = asyncio.create_task(chat_controller.submit_message("First!"))
    await asyncio.sleep(0)
    assert chat_controller.state.busy is True
    with pytest.raises(MatchBusyError):
        await chat_controller.submit_message("Second!")
    release.set()
    await first
    assert chat_controller.state.exchange_count == 1
    assert chat_controller.state.busy is False


async def test_counsel_failure_rolls_back(chat_controller, lawyer_provider):
    before_messages = list(chat_controller.state.messages)
    before_suggestions = list(chat_controller.state.pending_suggestions)
    lawyer_provider.queue(ProviderError("lawyer", "503"))
    with pytest.raises(ProviderError):
        await chat_controller.submit_message("I present D1!")
    state = chat_controller.state
    assert state.messages == before_messages
    assert state.pending_suggestions == before_suggestions
    assert state.exchange_count == 0
    assert state.health == HealthState()
    assert not any(c.used for c in state.evidence_cards)
    assert state.busy is False
    assert state.phase == "chat"


async def test_invalid_counsel_reply_rolls_back(chat_controller, lawyer_provider):
    lawyer_provider.queue("I am not JSON")
    with pytest.raises(AgentValidationError):
        await chat_controller.submit_message("Hold it!")
    assert chat_controller.state.exchange_count == 0
    assert len(chat_controller.state.messages) == 1


async def test_round_after_rollback_succeeds(chat_controller, lawyer_provider):
    lawyer_provider.queue(ProviderError("lawyer", "503"), counsel_payload())
    with pytest.raises(ProviderError):
        await chat_controller.submit_message("Hold it!")
    result = await chat_controller.submit_message("Hold it!")
    assert result.ko == "none"
    assert chat_controller.state.exchange_count == 1


async def test_round_fallback_suggestions(chat_controller, defendant_provider):
    defendant_provider.queue(ProviderError("defendant", "down"))
    result = await chat_controller.submit_message("Take that!")
    assert list(result.suggestions) == list(ROUND_FALLBACK)


async def test_surrender_suggestion_forced_from_threshold(chat_controller):
    chat_controller.state.exchange_count = 5
    result = await chat_controller.submit_message("Take that!")
    assert chat_controller.state.exchange_count == 6
    assert result.suggestions[-1] == SURRENDER_SUGGESTION
    assert sum(1 for s in result.suggestions if s.variant == "surrender") == 1


async def test_agent_surrender_suggestion_kept_early(chat_controller, defendant_provider):
    defendant_provider.queue(suggestions_payload("Hold it!", surrender=True))
    result = await chat_controller.submit_message("Take that!")
    assert [s.variant for s in result.suggestions] == ["default", "surrender"]


# ---------------------------------------------------------------------------
# Evidence
# ---------------------------------------------------------------------------

async def test_explicit_evidence_adds_bonus_once(chat_controller):
    first = await chat_controller.submit_message("Behold!", evidence_id="D1")
    assert first.evidence_used == "D1"
    assert first.user_damage == 20
    second = await chat_controller.submit_message("Behold again!", evidence_id="D1")
    assert second.evidence_used is None
    assert second.user_damage == 10
    assert [c.used for c in chat_controller.state.evidence_cards] == [True, False]


async def test_substring_detection(chat_controller):
    result = await chat_controller.submit_message("I present exhibit d2!")
    assert result.evidence_used == "D2"
    assert result.user_damage == 20


async def test_unselected_evidence_gives_no_bonus(chat_controller):
    result = await chat_controller.submit_message("Look at D3!")
    assert result.evidence_used is None
    assert result.user_damage == 10


async def test_explicit_mode_ignores_text(game_config, prompts_config, lawyer_provider, defendant_provider, sample_case):
    game = replace(game_config, evidence_detection="explicit")
    controller = MatchController(
        game=game,
        counsel=OpposingCounsel(lawyer_provider, prompts_config, game),
        suggester=SuggestionAgent(defendant_provider, prompts_config, game),
    )
    controller.init_case(sample_case)
    controller.select_evidence(["D1"])
    await controller.begin_chat()
    result = await controller.submit_message("I present D1!")
    assert result.evidence_used is None


# ---------------------------------------------------------------------------
# Knockouts
# ---------------------------------------------------------------------------

async def test_attorney_ko_wins_without_counter(chat_controller, store):
    chat_controller.state.health = HealthState(attorney_hp=10)
    result = await chat_controller.submit_message("Final blow!")
    state = chat_controller.state
    assert result.ko == "attorney_ko"
    assert result.counter_damage == 0
    assert state.health.defendant_hp == 100
    assert state.outcome == "won"
    assert state.phase == "ended"
    assert state.messages[-1].sender == "attorney"
    assert state.pending_suggestions == []
    assert chat_controller.saved_match.score == 100 + 3 + 50
    await chat_controller.flush()
    assert store.load(state.id).outcome == "won"


async def test_defendant_ko_loses(chat_controller):
    chat_controller.state.health = HealthState(defendant_hp=8)
    result = await chat_controller.submit_message("Uh oh")
    assert result.ko == "defendant_ko"
    assert chat_controller.state.outcome == "lost"
    assert chat_controller.state.health.attorney_hp == 90


async def test_no_input_after_end(chat_controller):
    chat_controller.state.health = HealthState(attorney_hp=1)
    await chat_controller.submit_message("Final blow!")
    with pytest.raises(PhaseError):
        await chat_controller.submit_message("One more")


async def test_simultaneous_double_ko_is_a_win(game_config, prompts_config, lawyer_provider, defendant_provider, sample_case):
    game = replace(game_config, damage_policy="simultaneous")
    controller = MatchController(
        game=game,
        counsel=OpposingCounsel(lawyer_provider, prompts_config, game),
        suggester=SuggestionAgent(defendant_provider, prompts_config, game),
    )
    controller.init_case(sample_case)
    await controller.begin_chat()
    controller.state.health = HealthState(attorney_hp=5, defendant_hp=5)
    result = await controller.submit_message("Together!")
    assert result.ko == "attorney_ko"
    assert result.counter_damage == 8
    assert controller.state.health.defendant_hp == 0
    assert controller.state.outcome == "won"


# ---------------------------------------------------------------------------
# Surrender
# ---------------------------------------------------------------------------

async def test_surrender_ends_lost_without_damage(chat_controller, lawyer_provider, prompts_config):
    lawyer_provider.queue(counsel_payload(message="Justice is served!", damage_to_defendant=20))
    result = await chat_controller.submit_message(SURRENDER_TEXT)
    state = chat_controller.state
    assert result.outcome == "lost"
    assert state.phase == "ended"
    assert state.health == HealthState()
    assert state.exchange_count == 1
    assert [m.text for m in state.messages[-2:]] == [SURRENDER_TEXT, "Justice is served!"]
    assert state.messages[-1].intensity == 10
    system_prompt, _ = lawyer_provider.generate.call_args.args
    assert system_prompt.endswith(prompts_config.lawyer_surrender)


async def test_surrender_without_speech(chat_controller, lawyer_provider):
    lawyer_provider.queue(ProviderError("lawyer", "timeout"))
    result = await chat_controller.surrender()
    assert result.attorney_message is None
    assert chat_controller.state.outcome == "lost"
    assert chat_controller.saved_match.outcome == "lost"


async def test_surrender_outside_chat(controller):
    with pytest.raises(PhaseError):
        await controller.surrender()


# ---------------------------------------------------------------------------
# Reset and persistence
# ---------------------------------------------------------------------------

async def test_reset_from_chat(chat_controller):
    old_id = chat_controller.state.id
    state = chat_controller.reset()
    assert state.phase == "splash"
    assert state.case is None
    assert state.messages == []
    assert state.id != old_id


async def test_reset_after_end_clears_saved_match(chat_controller):
    await chat_controller.surrender()
    assert chat_controller.saved_match is not None
    chat_controller.reset()
    assert chat_controller.saved_match is None


async def test_round_snapshot_written(chat_controller, store):
    await chat_controller.submit_message("Hold it!")
    await chat_controller.flush()
    saved = store.load(chat_controller.state.id)
    assert saved.outcome == "in-progress"
    assert saved.exchange_count == 1


async def test_finalize_replaces_snapshot(chat_controller, store):
    await chat_controller.submit_message("Hold it!")
    await chat_controller.surrender()
    await chat_controller.flush()
    records = store.list_matches()
    assert len(records) == 1
    assert records[0].outcome == "lost"
    assert records[0].exchange_count == 2


async def test_persistence_failure_does_not_break_round(chat_controller, store, monkeypatch, caplog):
    def broken(state):
        raise OSError("disk full")

    monkeypatch.setattr(store, "snapshot", broken)
    result = await chat_controller.submit_message("Hold it!")
    await chat_controller.flush()
    assert result.ko == "none"
    assert any("disk full" in m for m in caplog.messages)


async def test_no_store_still_exports(game_config, prompts_config, lawyer_provider, defendant_provider, sample_case):
    controller = MatchController(
        game=game_config,
        counsel=OpposingCounsel(lawyer_provider, prompts_config, game_config),
        suggester=SuggestionAgent(defendant_provider, prompts_config, game_config),
    )
    controller.init_case(sample_case)
    await controller.begin_chat()
    await controller.surrender()
    assert controller.saved_match.outcome == "lost"
    assert controller.saved_match.score == 3


async def test_opening_snapshot_written(chat_controller, store):
    await chat_controller.flush()
    saved = store.load(chat_controller.state.id)
    assert saved.outcome == "in-progress"
    assert saved.exchange_count == 0
    assert [m.sender for m in saved.messages] == ["attorney"]


async def test_saved_match_is_the_stored_record(chat_controller, store):
    await chat_controller.submit_message("Hold it!")
    await chat_controller.flush()
    snapshot = store.load(chat_controller.state.id)
    store.toggle_star(snapshot.id)
    chat_controller.state.health = HealthState(attorney_hp=10)
    await chat_controller.submit_message("Final blow!")
    await chat_controller.flush()
    stored = store.load(chat_controller.state.id)
    assert stored.outcome == "won"
    assert stored.created_at == snapshot.created_at
    assert stored.starred is True
    assert chat_controller.saved_match == stored


async def test_persistence_warning_names_match_after_reset(chat_controller, store, monkeypatch, caplog):
    def broken(state):
        raise OSError("disk full")

    monkeypatch.setattr(store, "snapshot", broken)
    old_id = chat_controller.state.id
    await chat_controller.submit_message("Hold it!")
    new_id = chat_controller.reset().id
    await chat_controller.flush()
    warnings = [m for m in caplog.messages if "disk full" in m]
    assert warnings
    assert all(old_id in m and new_id not in m for m in warnings)


# ---------------------------------------------------------------------------
# Reset while a call is in flight
# ---------------------------------------------------------------------------

def _paced_controller(game_config, prompts_config, lawyer_provider, defendant_provider, store, **pacing):
    game = replace(game_config, pacing=PacingConfig(**pacing))
    return MatchController(
        game=game,
        counsel=OpposingCounsel(lawyer_provider, prompts_config, game),
        suggester=SuggestionAgent(defendant_provider, prompts_config, game),
        store=store,
    )


def _assert_fresh(controller, fresh):
    assert controller.state is fresh
    assert fresh.phase == "splash"
    assert fresh.outcome is None
    assert fresh.messages == []
    assert fresh.pending_suggestions == []
    assert fresh.exchange_count == 0
    assert fresh.health == HealthState()
    assert fresh.busy is False
    assert controller.saved_match is None


async def test_reset_during_reveal_pause(game_config, prompts_config, lawyer_provider, defendant_provider, store, sample_case):
    controller = _paced_controller(game_config, prompts_config, lawyer_provider, defendant_provider, store, reveal_sec=0.05)
    controller.init_case(sample_case)
    await controller.begin_chat()
    controller.state.health = HealthState(attorney_hp=10)
    task = asyncio.create_task(controller.submit_message("Final blow!"))
    await asyncio.sleep(0.01)
    fresh = controller.reset()
    with pytest.raises(MatchError):
        await task
    _assert_fresh(controller, fresh)
    await controller.flush()
    assert [m.outcome for m in store.list_matches()] == ["in-progress"]


async def test_reset_during_counter_pause(game_config, prompts_config, lawyer_provider, defendant_provider, store, sample_case):
    controller = _paced_controller(game_config, prompts_config, lawyer_provider, defendant_provider, store, counter_sec=0.05)
    controller.init_case(sample_case)
    await controller.begin_chat()
    task = asyncio.create_task(controller.submit_message("Hold it!"))
    await asyncio.sleep(0.01)
    fresh = controller.reset()
    with pytest.raises(MatchError):
        await task
    _assert_fresh(controller, fresh)


async def test_reset_during_opening_pause(game_config, prompts_config, lawyer_provider, defendant_provider, store, sample_case):
    controller = _paced_controller(game_config, prompts_config, lawyer_provider, defendant_provider, store, reveal_sec=0.05)
    controller.init_case(sample_case)
    task = asyncio.create_task(controller.begin_chat())
    await asyncio.sleep(0.01)
    fresh = controller.reset()
    with pytest.raises(MatchError):
        await task
    _assert_fresh(controller, fresh)
    assert defendant_provider.generate.await_count == 0


async def test_reset_during_surrender_pause(game_config, prompts_config, lawyer_provider, defendant_provider, store, sample_case):
    controller = _paced_controller(game_config, prompts_config, lawyer_provider, defendant_provider, store, surrender_sec=0.05)
    controller.init_case(sample_case)
    await controller.begin_chat()
    task = asyncio.create_task(controller.surrender())
    await asyncio.sleep(0.01)
    fresh = controller.reset()
    with pytest.raises(MatchError):
        await task
    _assert_fresh(controller, fresh)
    assert lawyer_provider.generate.await_count == 0


async def test_reset_during_victory_speech(chat_controller, lawyer_provider):
    started, release = asyncio.Event(), asyncio.Event()

    async def slow_speech(system_prompt, prompt):
        started.set()
        await release.wait()
        return model_response(counsel_payload(message="Justice is served!"))

    lawyer_provider.generate.side_effect = slow_speech
    task = asyncio.create_task(chat_controller.surrender())
    await started.wait()
    fresh = chat_controller.reset()
    release.set()
    with pytest.raises(MatchError):
        await task
    _assert_fresh(chat_controller, fresh)


async def test_reset_during_counsel_call(chat_controller, lawyer_provider):
    started, release = asyncio.Event(), asyncio.Event()

    async def slow_reply(system_prompt, prompt):
        started.set()
        await release.wait()
        return model_response(counsel_payload())

    lawyer_provider.generate.side_effect = slow_reply
    task = asyncio.create_task(chat_controller.submit_message("Hold it!"))
    await started.wait()
    fresh = chat_controller.reset()
    release.set()
    with pytest.raises(MatchError):
        await task
    _assert_fresh(chat_controller, fresh)


async def test_reset_during_suggestion_call(chat_controller, defendant_provider):
    started, release = asyncio.Event(), asyncio.Event()

    async def slow_suggestions(system_prompt, prompt):
        started.set()
        await release.wait()
        return model_response(suggestions_payload())

    defendant_provider.generate.side_effect = slow_suggestions
    task = asyncio.create_task(chat_controller.submit_message("Hold it!"))
    await started.wait()
    fresh = chat_controller.reset()
    release.set()
    with pytest.raises(MatchError):
        await task
    _assert_fresh(chat_controller, fresh)


async def test_reset_during_case_generation(controller, case_provider):
    started, release = asyncio.Event(), asyncio.Event()

    async def slow_case(system_prompt, prompt):
        started.set()
        await release.wait()
        return model_response(case_payload())

    case_provider.generate.side_effect = slow_case
    task = asyncio.create_task(controller.start_match())
    await started.wait()
    fresh = controller.reset()
    release.set()
    with pytest.raises(MatchError):
        await task
    _assert_fresh(controller, fresh)
    assert fresh.case is None
