from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Gemini
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    ai_temperature: float = 0.3
    ai_max_output_tokens: int = 8192
    # None leaves the call unbounded; the hosting platform's limit applies.
    ai_timeout_seconds: float | None = None

    # Identity provider (GoTrue-compatible)
    auth_url: str = "http://127.0.0.1:54321/auth/v1"
    auth_anon_key: str = "anon_placeholder"

    # Processing function
    functions_url: str = "http://127.0.0.1:8000/functions/v1"
    dispatch_grace_seconds: float = 0.5
    dispatch_drain_seconds: float = 5.0

    # Audio storage
    audio_root: str = "lesson-audio"
    signing_secret: str = "change-me"
    signed_url_ttl_seconds: int = 3600

    # Recording
    sample_rate: int = 16000
    flush_interval_seconds: float = 1.0

    # Database
    database_path: str = "notera.db"

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"
    cors_origins: list[str] = ["*"]

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
