"""Runtime configuration loaded from environment variables.

Settings are read once into an immutable object and handed to the
factories in ``fiscalia.api.deps``. Optional integrations are disabled
when their credentials are absent.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Literal, Mapping

DEFAULT_CONFIDENCE_THRESHOLD = 0.6
DEFAULT_PAY_PER_USE_PRICE_CENTS = 900


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}")


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class LanguageModelConfig:
    """Generative model endpoint (OpenAI-compatible chat completions)."""

    api_key: str
    model: str = "gpt-4o-mini"
    base_url: str = "https://api.openai.com/v1"
    timeout_seconds: float = 15.0


@dataclass(frozen=True)
class FiscalProviderConfig:
    """Nuvem Fiscal OAuth client credentials."""

    client_id: str
    client_secret: str
    environment: Literal["sandbox", "production"] = "sandbox"
    timeout_seconds: float = 30.0

    @property
    def api_base_url(self) -> str:
        if self.environment == "production":
            return "https://api.nuvemfiscal.com.br"
        return "https://api.sandbox.nuvemfiscal.com.br"

    @property
    def auth_url(self) -> str:
        return "https://auth.nuvemfiscal.com.br/oauth/token"


@dataclass(frozen=True)
class Settings:
    """Process-wide settings.

    Attributes:
        confidence_threshold: Minimum classifier confidence for resolving a
            message without the language model.
        pay_per_use_price_cents: Charge per invoice for pay-per-use plans.
        llm: None disables the language-model stage.
        fiscal: None leaves the fiscal gateway unconfigured.
        stripe_secret_key: None disables pay-per-use charging.
    """

    database_url: str | None = None
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD
    history_limit: int = 20
    pay_per_use_price_cents: int = DEFAULT_PAY_PER_USE_PRICE_CENTS
    llm: LanguageModelConfig | None = None
    fiscal: FiscalProviderConfig | None = None
    stripe_secret_key: str | None = None

    @property
    def pay_per_use_price(self) -> Decimal:
        return Decimal(self.pay_per_use_price_cents) / 100

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        """Build settings from environment variables.

        Raises:
            ValueError: If a numeric variable cannot be parsed or the
                confidence threshold is outside 0..1.
        """
        env = os.environ if env is None else env

        threshold = _float(env, "ASSISTANT_CONFIDENCE_THRESHOLD", DEFAULT_CONFIDENCE_THRESHOLD)
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("ASSISTANT_CONFIDENCE_THRESHOLD must be between 0 and 1")

        llm: LanguageModelConfig | None = None
        if env.get("OPENAI_API_KEY"):
            llm = LanguageModelConfig(
                api_key=env["OPENAI_API_KEY"],
                model=env.get("OPENAI_MODEL") or "gpt-4o-mini",
                base_url=(env.get("OPENAI_BASE_URL") or "https://api.openai.com/v1").rstrip("/"),
                timeout_seconds=_float(env, "LLM_TIMEOUT_SECONDS", 15.0),
            )

        fiscal: FiscalProviderConfig | None = None
        if env.get("NUVEM_FISCAL_CLIENT_ID") and env.get("NUVEM_FISCAL_CLIENT_SECRET"):
            environment = env.get("NUVEM_FISCAL_ENV", "sandbox")
            if environment not in ("sandbox", "production"):
                raise ValueError("NUVEM_FISCAL_ENV must be 'sandbox' or 'production'")
            fiscal = FiscalProviderConfig(
                client_id=env["NUVEM_FISCAL_CLIENT_ID"],
                client_secret=env["NUVEM_FISCAL_CLIENT_SECRET"],
                environment=environment,  # type: ignore[arg-type]
                timeout_seconds=_float(env, "FISCAL_TIMEOUT_SECONDS", 30.0),
            )

        return cls(
            database_url=env.get("DATABASE_URL"),
            confidence_threshold=threshold,
            history_limit=_int(env, "ASSISTANT_HISTORY_LIMIT", 20),
            pay_per_use_price_cents=_int(
                env, "PAY_PER_USE_PRICE_CENTS", DEFAULT_PAY_PER_USE_PRICE_CENTS
            ),
            llm=llm,
            fiscal=fiscal,
            stripe_secret_key=env.get("STRIPE_SECRET_KEY") or None,
        )
