"""Shared pytest fixtures."""

import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import GameConfig, PromptsConfig
from objection.agents import CaseGenerator, OpposingCounsel, SuggestionAgent
from objection.controller import MatchController
from objection.history import HistoryStore
from objection.models import CaseDefinition, ClaimPoint, ModelResponse
from objection.providers.base import AIProvider


def case_payload() -> dict:
    return {
        "title": "The People v. Gerald Mossbottom",
        "charge": "Grand theft of the town's last working umbrella during a drought.",
        "context": "It has not rained in Puddleton for 400 days. Gerald took the umbrella anyway.",
        "philosophical_tension": "Can you steal something nobody needs?",
        "attorney_points": [
            {"id": "A1", "claim": "Gerald removed the umbrella", "evidence": "Doorbell footage", "status": "unchallenged"},
            {"id": "A2", "claim": "The umbrella was town property", "evidence": "Council ledger"},
        ],
        "defendant_points": [
            {"id": "D1", "claim": "The umbrella was abandoned", "evidence": "Dust layer 3cm thick"},
            {"id": "D2", "claim": "Gerald used it for shade, a public good", "evidence": "Sunburn statistics"},
            {"id": "D3", "claim": "The council never opened it", "evidence": "Factory tag still attached"},
        ],
        "opening_statement": "The prosecution will show that shade is NOT free!",
    }


def counsel_payload(**overrides) -> dict:
    payload = {
        "message": "OBJECTION! The dust proves nothing!",
        "updated_points": [],
        "fallacies_identified": [],
        "assumptions_challenged": [],
        "intensity_level": 5,
        "damage_to_attorney": 10,
        "damage_to_defendant": 8,
    }
    payload.update(overrides)
    return payload


def suggestions_payload(*texts: str, surrender: bool = False) -> dict:
    items = [{"text": t, "type": "objection", "variant": "default"} for t in texts or ("Hold it!", "Take that!")]
    if surrender:
        items.append({"text": "...I surrender.", "type": "surrender", "variant": "surrender"})
    return {"suggestions": items, "defense_analysis": "6/10", "recommended_strategy": "Press on D1"}


def model_response(payload: dict | str, provider: str = "mock") -> ModelResponse:
    content = payload if isinstance(payload, str) else json.dumps(payload)
    return ModelResponse(provider=provider, model="mock-model", content=content, latency_sec=0.1, token_count=10)


class MockProvider(AIProvider):
    """Test double AIProvider."""

    def __init__(self, provider_name: str = "mock", payload: dict | str | None = None) -> None:
        self._name = provider_name
        # Shadow the class method with an AsyncMock at the instance level.
        # ABC check passes because generate is defined in the class body below.
        self.generate = AsyncMock(  # type: ignore[assignment]
            return_value=model_response(payload if payload is not None else {}, provider_name)
        )

    def queue(self, *payloads: dict | str | Exception) -> None:
        """Replies returned in order, one per call. Exceptions are raised."""
        self.generate.side_effect = [
            p if isinstance(p, Exception) else model_response(p, self._name) for p in payloads
        ]

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return "mock-model"

    async def generate(self, system_prompt: str, prompt: str) -> ModelResponse:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return model_response({}, self._name)


@pytest.fixture
def game_config(tmp_path: Path) -> GameConfig:
    return GameConfig(history_dir=tmp_path / "history")


@pytest.fixture
def prompts_config() -> PromptsConfig:
    return PromptsConfig(
        case_creator="Make a case.",
        lawyer="You are the prosecutor.",
        lawyer_surrender="\nThey surrendered.",
        defendant="Suggest replies.",
    )


@pytest.fixture
def sample_case() -> CaseDefinition:
    return CaseDefinition(
        title="The People v. Gerald Mossbottom",
        charge="Grand theft of an umbrella.",
        context="A long drought.",
        central_tension="Can you steal something nobody needs?",
        opening_statement="Shade is NOT free!",
        prosecution_points=(
            ClaimPoint("A1", "Gerald removed the umbrella", "Doorbell footage"),
            ClaimPoint("A2", "The umbrella was town property", "Council ledger"),
        ),
        defense_points=(
            ClaimPoint("D1", "The umbrella was abandoned", "Dust layer"),
            ClaimPoint("D2", "Shade is a public good", "Sunburn statistics"),
            ClaimPoint("D3", "The council never opened it", "Factory tag"),
        ),
    )


@pytest.fixture
def case_provider() -> MockProvider:
    return MockProvider("case", case_payload())


@pytest.fixture
def lawyer_provider() -> MockProvider:
    return MockProvider("lawyer", counsel_payload())


@pytest.fixture
def defendant_provider() -> MockProvider:
    return MockProvider("defendant", suggestions_payload())


@pytest.fixture
def store(tmp_path: Path) -> HistoryStore:
    return HistoryStore(tmp_path / "history")


@pytest.fixture
def controller(
    game_config, prompts_config, case_provider, lawyer_provider, defendant_provider, store
) -> MatchController:
    return MatchController(
        game=game_config,
        counsel=OpposingCounsel(lawyer_provider, prompts_config, game_config),
        suggester=SuggestionAgent(defendant_provider, prompts_config, game_config),
        case_generator=CaseGenerator(case_provider, prompts_config),
        store=store,
    )


@pytest.fixture
async def chat_controller(controller: MatchController, sample_case: CaseDefinition) -> MatchController:
    """Controller already in the chat phase with D1 and D2 as evidence."""
    controller.init_case(sample_case)
    controller.select_evidence(["D1", "D2"])
    await controller.begin_chat()
    yield controller
    await controller.flush()
