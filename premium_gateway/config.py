import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from premium_gateway.errors import ConfigError

PAYPAL_API_BASES = {
    "sandbox": "https://api-m.sandbox.paypal.com",
    "live": "https://api-m.paypal.com",
}
PAYPAL_SDK_URL = "https://www.paypal.com/sdk/js"


def _is_truthy(value: str) -> bool:
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _parse_csv(raw: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in (raw or "").split(",") if item.strip())


def _parse_positive_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}.")
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}.")
    return value


@dataclass(frozen=True)
class Settings:
    paypal_client_id: str
    paypal_client_secret: str
    paypal_webhook_id: str = ""
    paypal_mode: str = "sandbox"
    paypal_api_base: str = PAYPAL_API_BASES["sandbox"]
    paypal_timeout_seconds: int = 15
    default_currency: str = "EUR"
    brand_name: str = "Premium Gateway"
    locale: str = "fr-FR"
    database_url: str = "sqlite:///./premium_gateway.db"
    allowed_origins: tuple[str, ...] = ("http://localhost:3000",)
    base_url: str = "http://localhost:3000"
    port: int = 3001
    expose_provider_errors: bool = False
    log_level: str = "INFO"

    @property
    def script_url(self) -> str:
        return f"{PAYPAL_SDK_URL}?client-id={self.paypal_client_id}&currency={self.default_currency}"


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build settings from the environment (and a .env file when env is not given).

    Raises ConfigError when the provider credentials are missing or a value
    cannot be parsed.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    client_id = (env.get("PAYPAL_CLIENT_ID") or "").strip()
    client_secret = (env.get("PAYPAL_CLIENT_SECRET") or "").strip()
    if not client_id or not client_secret:
        raise ConfigError("PAYPAL_CLIENT_ID and PAYPAL_CLIENT_SECRET must be set.")

    mode = (env.get("PAYPAL_MODE") or "sandbox").strip().lower()
    if mode in {"production", "prod"}:
        mode = "live"
    if mode not in PAYPAL_API_BASES:
        raise ConfigError(f"PAYPAL_MODE must be 'sandbox' or 'live', got {mode!r}.")
    api_base = (env.get("PAYPAL_API_BASE") or "").strip().rstrip("/") or PAYPAL_API_BASES[mode]

    currency = (env.get("PAYPAL_CURRENCY") or "EUR").strip().upper()
    if len(currency) != 3 or not currency.isalpha():
        raise ConfigError(f"PAYPAL_CURRENCY must be a 3-letter code, got {currency!r}.")

    return Settings(
        paypal_client_id=client_id,
        paypal_client_secret=client_secret,
        paypal_webhook_id=(env.get("PAYPAL_WEBHOOK_ID") or "").strip(),
        paypal_mode=mode,
        paypal_api_base=api_base,
        paypal_timeout_seconds=_parse_positive_int(env, "PAYPAL_TIMEOUT_SECONDS", 15),
        default_currency=currency,
        brand_name=(env.get("PAYPAL_BRAND_NAME") or "Premium Gateway").strip(),
        locale=(env.get("PAYPAL_LOCALE") or "fr-FR").strip(),
        database_url=(env.get("DATABASE_URL") or "sqlite:///./premium_gateway.db").strip(),
        allowed_origins=_parse_csv(env.get("ALLOWED_ORIGINS") or "http://localhost:3000"),
        base_url=(env.get("BASE_URL") or "http://localhost:3000").strip().rstrip("/"),
        port=_parse_positive_int(env, "PORT", 3001),
        expose_provider_errors=_is_truthy(env.get("EXPOSE_PROVIDER_ERRORS", "false")),
        log_level=(env.get("LOG_LEVEL") or "INFO").strip().upper(),
    )
