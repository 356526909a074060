from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # LLM provider: gemini | anthropic
    llm_provider: str = "gemini"

    # Up to three credentials, one per rater (see KeyRotationPool)
    llm_api_key: str = ""
    llm_api_key_2: str = ""
    llm_api_key_3: str = ""

    # Anthropic Messages API
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_version: str = "2023-06-01"
    anthropic_model: str = "claude-opus-4-20250514"

    # Google Gemini API
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_model: str = "gemini-2.5-flash"

    # HTTP behaviour
    llm_timeout: float = 60.0  # read timeout per chunk / response
    llm_connect_timeout: float = 15.0
    llm_max_retries: int = 0  # 0 = fail on first error
    llm_retry_delay: float = 2.0  # first retry delay (seconds), doubles afterwards
    llm_max_concurrent: int = 3  # provider calls in flight per client

    # Wall-clock budget for one stage call, including streamed bodies
    stage_timeout_seconds: float = 120.0

    # Relay provider tokens as evaluator_chunk / comprehensive_chunk events
    stream_tokens: bool = True

    # OCR
    page_break_marker: str = "--- 페이지 구분 ---"

    # Upload settings
    max_upload_size_mb: int = 20

    # CORS
    cors_origins: list[str] = ["http://localhost:3000"]

    @property
    def api_keys(self) -> list[str]:
        """Configured credentials in order, empty slots skipped."""
        keys = [self.llm_api_key, self.llm_api_key_2, self.llm_api_key_3]
        return [k.strip() for k in keys if k and k.strip()]

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


settings = Settings()
