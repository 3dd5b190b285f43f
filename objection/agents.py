"""Agent wrappers: build the per-call prompt, call one provider, normalize the reply.

Transport failures surface as ProviderError straight from the provider;
malformed payloads surface as AgentValidationError. No retries.
"""

import logging

from config.config_loader import GameConfig, PromptsConfig
from objection.context import build_context
from objection.models import CaseDefinition, CounselReply, MatchState, SuggestionSet
from objection.providers.base import AIProvider
from objection.schemas import (
    AgentValidationError,
    normalize_case,
    normalize_counsel,
    normalize_suggestions,
)

logger = logging.getLogger(__name__)

_CASE_REQUEST = (
    "Generate a new absurd but philosophically deep court case. "
    "Output ONLY the JSON object."
)


class CaseGenerator:
    def __init__(self, provider: AIProvider, prompts: PromptsConfig) -> None:
        self._provider = provider
        self._prompts = prompts

    async def generate(self) -> CaseDefinition:
        response = await self._provider.generate(self._prompts.case_creator, _CASE_REQUEST)
        result = normalize_case(response.content)
        if isinstance(result, AgentValidationError):
            logger.warning("Case generator returned an invalid case: %s", result)
            raise result
        logger.info("Generated case %r (%d vs %d points)",
                    result.title, len(result.prosecution_points), len(result.defense_points))
        return result


class OpposingCounsel:
    """The prosecuting attorney. One request per round."""

    def __init__(self, provider: AIProvider, prompts: PromptsConfig, game: GameConfig) -> None:
        self._provider = provider
        self._prompts = prompts
        self._game = game

    def build_prompt(self, state: MatchState, user_message: str, surrender: bool) -> tuple[str, str]:
        """Return (system_prompt, user_content) for this round."""
        context = build_context(state)
        if surrender:
            return (
                self._prompts.lawyer + self._prompts.lawyer_surrender,
                f"{context}\n\nThe defendant has surrendered. Deliver your victory speech.",
            )
        return (
            self._prompts.lawyer,
            f'{context}\n\nThe defendant just said: "{user_message}"\n\n'
            "Respond as the prosecuting attorney. Output ONLY the JSON object.",
        )

    async def respond(self, state: MatchState, user_message: str, surrender: bool = False) -> CounselReply:
        system_prompt, prompt = self.build_prompt(state, user_message, surrender)
        response = await self._provider.generate(system_prompt, prompt)
        result = normalize_counsel(response.content, self._game, surrender=surrender)
        if isinstance(result, AgentValidationError):
            logger.warning("Opposing counsel returned an invalid reply: %s", result)
            raise result
        return result


class SuggestionAgent:
    """Defense counsel proposing replies for the player."""

    def __init__(self, provider: AIProvider, prompts: PromptsConfig, game: GameConfig) -> None:
        self._provider = provider
        self._prompts = prompts
        self._game = game

    def build_prompt(self, state: MatchState) -> str:
        reminder = ""
        if state.exchange_count >= self._game.surrender_after:
            reminder = (
                "IMPORTANT: Include a surrender option as the last suggestion since we are past "
                f"{self._game.surrender_after} exchanges."
            )
        return (
            f"{build_context(state)}\n\nExchange count: {state.exchange_count}\n\n"
            f"Generate contextual suggested replies for the defendant. {reminder}\n\n"
            "Output ONLY the JSON object."
        )

    async def suggest(self, state: MatchState) -> SuggestionSet:
        response = await self._provider.generate(self._prompts.defendant, self.build_prompt(state))
        result = normalize_suggestions(response.content)
        if isinstance(result, AgentValidationError):
            logger.warning("Suggestion agent returned an invalid reply: %s", result)
            raise result
        return result
