"""Load settings.yaml into typed dataclasses. Validates API keys at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

DAMAGE_POLICIES = ("sequential", "simultaneous")
EVIDENCE_DETECTION_MODES = ("substring", "explicit")


@dataclass
class ModelConfig:
    name: str
    sdk: str
    model: str
    api_key_env: str
    timeout_sec: int | None
    max_tokens: int
    base_url: str | None = None


@dataclass
class PromptsConfig:
    case_creator: str
    lawyer: str
    lawyer_surrender: str
    defendant: str


@dataclass
class PacingConfig:
    reveal_sec: float = 0.0      # pause before the attorney reply is shown
    counter_sec: float = 0.0     # pause between the two damage phases
    surrender_sec: float = 0.0   # pause before the victory speech


@dataclass
class GameConfig:
    max_hp: int = 100
    evidence_bonus: int = 10
    max_evidence_cards: int = 3
    surrender_after: int = 6
    attack_damage_cap: int = 25
    counter_damage_cap: int = 20
    default_damage: int = 5
    damage_policy: str = "sequential"
    evidence_detection: str = "substring"
    history_dir: Path = Path("./history")
    pacing: PacingConfig = field(default_factory=PacingConfig)


@dataclass
class AgentsConfig:
    case_creator: str
    lawyer: str
    defendant: str


@dataclass
class AppConfig:
    game: GameConfig
    agents: AgentsConfig
    models: dict[str, ModelConfig]
    prompts: PromptsConfig
    available_providers: set[str] = field(default_factory=set)


def _load_game(raw: dict) -> GameConfig:
    pacing_raw = raw.get("pacing", {}) or {}
    game = GameConfig(
        max_hp=int(raw.get("max_hp", 100)),
        evidence_bonus=int(raw.get("evidence_bonus", 10)),
        max_evidence_cards=int(raw.get("max_evidence_cards", 3)),
        surrender_after=int(raw.get("surrender_after", 6)),
        attack_damage_cap=int(raw.get("attack_damage_cap", 25)),
        counter_damage_cap=int(raw.get("counter_damage_cap", 20)),
        default_damage=int(raw.get("default_damage", 5)),
        damage_policy=str(raw.get("damage_policy", "sequential")),
        evidence_detection=str(raw.get("evidence_detection", "substring")),
        history_dir=Path(raw.get("history_dir", "./history")),
        pacing=PacingConfig(
            reveal_sec=float(pacing_raw.get("reveal_sec", 0.0)),
            counter_sec=float(pacing_raw.get("counter_sec", 0.0)),
            surrender_sec=float(pacing_raw.get("surrender_sec", 0.0)),
        ),
    )
    if game.damage_policy not in DAMAGE_POLICIES:
        raise ValueError(f"Unknown damage_policy: {game.damage_policy!r}")
    if game.evidence_detection not in EVIDENCE_DETECTION_MODES:
        raise ValueError(f"Unknown evidence_detection: {game.evidence_detection!r}")
    return game


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing, ValueError on an
    unknown damage policy or evidence detection mode.
    Logs missing API keys but does not raise; callers check
    available_providers.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    game = _load_game(raw.get("game", {}) or {})

    agents_raw = raw["agents"]
    agents = AgentsConfig(
        case_creator=str(agents_raw["case_creator"]),
        lawyer=str(agents_raw["lawyer"]),
        defendant=str(agents_raw["defendant"]),
    )

    prompts_raw = raw["prompts"]
    prompts = PromptsConfig(
        case_creator=prompts_raw["case_creator"],
        lawyer=prompts_raw["lawyer"],
        lawyer_surrender=prompts_raw["lawyer_surrender"],
        defendant=prompts_raw["defendant"],
    )

    models: dict[str, ModelConfig] = {}
    available_providers: set[str] = set()

    for provider_name, model_raw in raw["models"].items():
        timeout = model_raw.get("timeout_sec")
        model_cfg = ModelConfig(
            name=provider_name,
            sdk=model_raw["sdk"],
            model=model_raw["model"],
            api_key_env=model_raw["api_key_env"],
            timeout_sec=int(timeout) if timeout is not None else None,
            max_tokens=int(model_raw["max_tokens"]),
            base_url=model_raw.get("base_url"),
        )
        models[provider_name] = model_cfg

        api_key = os.environ.get(model_raw["api_key_env"], "").strip()
        if api_key:
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider skipped (no API key): %s, set %s in .env",
                provider_name,
                model_raw["api_key_env"],
            )

    return AppConfig(
        game=game,
        agents=agents,
        models=models,
        prompts=prompts,
        available_providers=available_providers,
    )
