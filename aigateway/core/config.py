from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Tier ceilings keyed "{ACTION}_{WINDOW}" where WINDOW is TOTAL, HOURLY or MONTHLY.
DEFAULT_RATE_LIMITS: dict[str, dict[str, int]] = {
    "ANONYMOUS": {
        "MESSAGES_TOTAL": 10,
        "IMAGES_TOTAL": 2,
        "VIDEOS_TOTAL": 0,
        "AUDIOS_TOTAL": 0,
        "FILE_ANALYSIS_TOTAL": 3,
    },
    "NEW": {
        "MESSAGES_TOTAL": 50,
        "IMAGES_TOTAL": 5,
        "VIDEOS_TOTAL": 2,
        "AUDIOS_TOTAL": 3,
        "FILE_ANALYSIS_TOTAL": 10,
    },
    "PRO": {
        "MESSAGES_HOURLY": 100,
        "MESSAGES_MONTHLY": 5000,
        "IMAGES_MONTHLY": 50,
        "VIDEOS_MONTHLY": 10,
        "AUDIOS_MONTHLY": 20,
        "FILE_ANALYSIS_MONTHLY": 200,
    },
    "TEAM": {
        "MESSAGES_HOURLY": 300,
        "MESSAGES_MONTHLY": 15000,
        "IMAGES_MONTHLY": 200,
        "VIDEOS_MONTHLY": 50,
        "AUDIOS_MONTHLY": 100,
        "FILE_ANALYSIS_MONTHLY": 1000,
    },
    "BUSINESS": {
        "MESSAGES_HOURLY": 1000,
        "MESSAGES_MONTHLY": 50000,
        "IMAGES_MONTHLY": 1000,
        "VIDEOS_MONTHLY": 200,
        "AUDIOS_MONTHLY": 500,
        "FILE_ANALYSIS_MONTHLY": 5000,
    },
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Provider credentials (empty = provider unavailable)
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    google_gemini_api_key: str = ""
    groq_api_key: str = ""

    # Provider endpoints
    openai_base_url: str = "https://api.openai.com/v1"
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    google_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    groq_base_url: str = "https://api.groq.com/openai/v1"
    ollama_base_url: str = ""  # e.g. "http://localhost:11434"

    # Defaults when neither the request nor the caller picks a provider
    default_provider: str = "test"
    default_models: dict[str, str] = Field(default_factory=dict)  # capability -> "provider:model"

    # Circuit breaker
    circuit_failure_threshold: int = 5
    circuit_success_threshold: int = 2
    circuit_timeout: int = 60  # seconds OPEN before a probe is allowed
    circuit_half_open_max_calls: int = 3
    circuit_state_ttl: int = 3600
    circuit_counter_ttl: int = 300

    # Per capability-class timeouts (seconds)
    timeout_text: float = 60.0
    timeout_stream: float = 120.0
    timeout_media: float = 120.0
    timeout_video: float = 300.0
    video_poll_interval: float = 5.0
    video_poll_max_attempts: int = 60

    # Quotas
    rate_limits: dict[str, dict[str, int]] = Field(default_factory=lambda: DEFAULT_RATE_LIMITS)
    limits_cache_ttl: int = 300

    # Model selection
    min_model_rating: float | None = None  # None = no rating floor

    # Shared state / persistence
    redis_url: str = ""  # empty = in-process store
    database_url: str = "sqlite+aiosqlite:///./aigateway.db"

    # App
    app_env: str = "development"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs


settings = Settings()


def validate_settings_for_production() -> None:
    """Validate critical settings. Called on startup in non-test environments."""
    errors: list[str] = []

    if settings.app_env == "production":
        if not settings.redis_url:
            errors.append("REDIS_URL must be set in production (circuit and limit state is shared)")
        if settings.database_url.startswith("sqlite"):
            errors.append("DATABASE_URL must point to a server database in production")
        if settings.default_provider == "test":
            errors.append("DEFAULT_PROVIDER must not be 'test' in production")

    if settings.circuit_failure_threshold < 1 or settings.circuit_success_threshold < 1:
        errors.append("CIRCUIT_FAILURE_THRESHOLD and CIRCUIT_SUCCESS_THRESHOLD must be >= 1")

    if settings.video_poll_interval <= 0:
        errors.append("VIDEO_POLL_INTERVAL must be positive")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
