from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Provider credentials (read from the environment or .env)
    anthropic_api_key: str = ""
    gemini_api_key: str = ""
    openai_api_key: str = ""

    # Global model default -- last step of model resolution
    default_provider: str = "claude"
    default_model: str = "claude-sonnet-4-5-20250929"

    # Project layout
    project_dir: str = "."
    templates_dir: str = "./agents"

    # Retry policy for generation calls
    retry_max_retries: int = 2
    retry_base_delay: float = 1.0
    retry_max_delay: float = 8.0
    retry_budget_seconds: float = 30.0

    # Validation
    smart_validator_selection: bool = False

    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def avc_dir(self) -> Path:
        return Path(self.project_dir) / ".avc"

    @property
    def ceremony_config_path(self) -> Path:
        return self.avc_dir / "avc.json"

    @property
    def usage_history_path(self) -> Path:
        return self.avc_dir / "token-history.json"


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings; call ``get_settings.cache_clear()`` to reload."""
    return Settings()


settings = get_settings()
