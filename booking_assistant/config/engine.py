"""Engine configuration: model, timeouts, pricing, feature flags and persona."""
from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from booking_assistant.core.exceptions import ConfigurationError

_DEFAULT_PERSONA = (
    "You are a friendly, concise rental assistant for a peer-to-peer car "
    "marketplace in Arizona. Keep replies short, warm and practical."
)

_DEFAULT_TONE_RULES = [
    "Ask for one missing detail at a time.",
    "Mention prices per day and round to whole dollars.",
    "Match the language the guest writes in.",
]


# Dollars per million (input, output) tokens.
_DEFAULT_TOKEN_PRICES = {
    "gpt-4o-mini": [0.15, 0.60],
    "gpt-4o": [2.50, 10.00],
}


@dataclass(frozen=True)
class EngineConfig:
    """User-configurable engine behaviour.

    Timeouts
    --------
    ``llm_timeout_seconds`` bounds each extractor call. ``tool_timeout_seconds``
    bounds auxiliary tools (weather, reviews, risk); a timeout there only drops
    that tool's context. ``search_timeout_seconds`` bounds inventory search; a
    timeout there ends the turn with a retryable error.
    """

    llm_provider: str = "openai"
    model_id: str = "gpt-4o-mini"
    max_tokens: int = 1024
    llm_timeout_seconds: Optional[float] = 30.0
    tool_timeout_seconds: float = 4.0
    search_timeout_seconds: float = 10.0
    max_tool_rounds: int = 4
    """Upper bound on extractor → tools → extractor rounds within one turn."""

    max_context_messages: int = 30
    """History messages sent to the extractor; older ones are trimmed."""

    static_cache_ttl_seconds: int = 3600
    static_cache_max_size: int = 1000

    service_fee_percent: float = 0.15
    tax_rate: float = 0.084
    default_pickup_time: str = "10:00"

    token_prices: Dict[str, List[float]] = field(
        default_factory=lambda: {model: list(rates) for model, rates in _DEFAULT_TOKEN_PRICES.items()}
    )
    """Model id to [input, output] dollars per million tokens. Turns on other models cost 0."""

    risk_assessment_enabled: bool = True
    weather_enabled: bool = True
    weather_base_url: str = "https://api.open-meteo.com/v1/forecast"

    bot_name: str = "Choe"
    persona: str = _DEFAULT_PERSONA
    tone_rules: List[str] = field(default_factory=lambda: list(_DEFAULT_TONE_RULES))
    """Persona and tone are data: they are rendered into the static
    instructions verbatim and never interpreted by the engine."""

    def __post_init__(self) -> None:
        if not self.model_id.strip():
            raise ConfigurationError("model_id must be non-empty")
        if self.max_tool_rounds < 1:
            raise ConfigurationError("max_tool_rounds must be >= 1")
        if self.max_context_messages < 2:
            raise ConfigurationError("max_context_messages must be >= 2")
        if not 0 <= self.service_fee_percent < 1 or not 0 <= self.tax_rate < 1:
            raise ConfigurationError("service_fee_percent and tax_rate must be fractions in [0, 1)")
        for name in ("tool_timeout_seconds", "search_timeout_seconds"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if not isinstance(self.token_prices, dict):
            raise ConfigurationError("token_prices must map model ids to [input, output] prices")
        for model, rates in self.token_prices.items():
            if (not isinstance(rates, (list, tuple)) or len(rates) != 2
                    or not all(isinstance(r, (int, float)) and r >= 0 for r in rates)):
                raise ConfigurationError(
                    f"token_prices[{model!r}] must be two non-negative numbers",
                    details={"model": model, "value": rates},
                )

    def token_rates(self, model_id: Optional[str] = None) -> Optional[Tuple[float, float]]:
        """(input, output) dollars per million tokens for *model_id*, default the configured model."""
        rates = self.token_prices.get(model_id or self.model_id)
        if rates is None:
            return None
        return float(rates[0]), float(rates[1])

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]] = None) -> "EngineConfig":
        """Load from a dict (e.g. JSON file). Unknown keys are ignored, missing keys use defaults."""
        if not data:
            return cls()
        known = {f for f in cls.__dataclass_fields__}
        kwargs = {k: v for k, v in data.items() if k in known}
        if "tone_rules" in kwargs:
            kwargs["tone_rules"] = [str(r) for r in kwargs["tone_rules"] or []]
        try:
            return cls(**kwargs)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid engine config: {exc}", cause=exc) from exc

    @classmethod
    def from_file(cls, path: str | Path) -> "EngineConfig":
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Cannot read engine config {path}", cause=exc) from exc
        return cls.from_dict(raw)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Env overrides: ENGINE_CONFIG_FILE, LLM_PROVIDER, LLM_MODEL, LLM_TIMEOUT, TOOL_TIMEOUT, SEARCH_TIMEOUT,
        RISK_ASSESSMENT_ENABLED, WEATHER_ENABLED."""
        base = cls.from_file(os.environ["ENGINE_CONFIG_FILE"]) if os.environ.get("ENGINE_CONFIG_FILE") else cls()
        data = base.to_dict()
        if os.environ.get("LLM_PROVIDER"):
            data["llm_provider"] = os.environ["LLM_PROVIDER"].strip().lower()
        if os.environ.get("LLM_MODEL"):
            data["model_id"] = os.environ["LLM_MODEL"]
        for env, key in (
            ("LLM_TIMEOUT", "llm_timeout_seconds"),
            ("TOOL_TIMEOUT", "tool_timeout_seconds"),
            ("SEARCH_TIMEOUT", "search_timeout_seconds"),
        ):
            if os.environ.get(env):
                data[key] = float(os.environ[env])
        for env, key in (
            ("RISK_ASSESSMENT_ENABLED", "risk_assessment_enabled"),
            ("WEATHER_ENABLED", "weather_enabled"),
        ):
            if os.environ.get(env):
                data[key] = os.environ[env].strip().lower() in ("1", "true", "yes")
        return cls.from_dict(data)
