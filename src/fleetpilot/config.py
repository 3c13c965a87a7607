"""Application settings loaded from environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings


class MissingTokenError(RuntimeError):
    """Raised when no agent token is configured or stored."""


class Settings(BaseSettings):
    """Fleet configuration from .env file."""

    token: str = ""
    token_file: Path = Path("AGENT_TOKEN")
    callsign: str = ""
    faction: str = "COSMIC"
    base_url: str = "https://api.spacetraders.io/v2"
    data_dir: Path = Path("data")

    # auto | trade | mine
    strategy: str = "auto"

    # Request channel: the game allows 2 req/s with a short burst
    rate_limit: float = 2.0
    burst: int = 10
    max_in_flight: int = 1
    request_timeout: float = 30.0

    # Retries for transient failures (5xx, transport errors)
    max_retries: int = 5
    backoff_schedule: tuple[float, ...] = (5, 10, 20, 40, 60)

    # 429 handling: fleet-wide exponential cooldown
    rate_limit_retries: int = 10
    rate_limit_cooldown: float = 1.0
    rate_limit_cooldown_max: float = 60.0

    # World view / strategy
    market_max_age: float = 900.0
    idle_interval: float = 60.0
    failed_route_ttl: float = 1800.0

    # Ship actor error handling
    error_backoff: float = 10.0
    degraded_threshold: int = 3
    degraded_cooldown: float = 300.0

    # Commander supervision
    restart_backoff: tuple[float, ...] = (10, 30, 60, 120, 300)
    fleet_sync_interval: float = 300.0

    model_config = {"env_prefix": "SPACETRADERS_", "env_file": ".env", "extra": "ignore"}


def load_settings() -> Settings:
    """Load and return application settings."""
    return Settings()


def load_token(settings: Settings) -> str:
    """Return the agent token from settings or the token file.

    Raises MissingTokenError if neither provides one.
    """
    if settings.token.strip():
        return settings.token.strip()
    try:
        token = settings.token_file.read_text().strip()
    except FileNotFoundError:
        raise MissingTokenError(
            f"No agent token: set SPACETRADERS_TOKEN or create {settings.token_file}",
        ) from None
    if not token:
        raise MissingTokenError(f"Token file {settings.token_file} is empty")
    return token


def save_token(settings: Settings, token: str) -> Path:
    """Persist a freshly registered agent token to the token file."""
    settings.token_file.parent.mkdir(parents=True, exist_ok=True)
    settings.token_file.write_text(token + "\n")
    return settings.token_file
