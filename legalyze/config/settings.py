from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DocumentLockPolicy = Literal["none", "compare_and_swap"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="LEGALYZE_",
        extra="ignore",
    )

    environment: str = "local"
    sqlite_path: Path = Path("data/legalyze.sqlite3")
    prompts_root: Path = Path("legalyze/prompts")
    providers_config_path: Path = Path("legalyze/config/providers.yaml")

    default_provider: Literal["google", "openai"] = "google"
    default_model: str = "gemini-1.5-flash"
    llm_temperature: float | None = Field(default=None, ge=0, le=2)
    openai_reasoning_effort: Literal["low", "medium", "high"] | None = None
    analysis_prompt_version: str = "v001"
    party_prompt_version: str = "v001"
    legal_check_prompt_version: str = "v001"
    chat_prompt_version: str = "v001"

    analysis_max_attempts: int = Field(default=5, ge=1, le=10)
    party_max_attempts: int = Field(default=3, ge=1, le=10)
    max_delay_seconds: float = Field(default=30.0, gt=0)
    party_content_char_limit: int = Field(default=10_000, ge=1)
    legal_check_char_limit: int = Field(default=20_000, ge=1)

    cache_enabled: bool = False
    cache_max_items: int = Field(default=256, ge=1)
    document_lock_policy: DocumentLockPolicy = "none"

    log_level: str = "INFO"
    log_file: Path | None = None

    google_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("LEGALYZE_GOOGLE_API_KEY", "GOOGLE_API_KEY"),
    )
    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("LEGALYZE_OPENAI_API_KEY", "OPENAI_API_KEY"),
    )

    @property
    def project_root(self) -> Path:
        return Path(__file__).resolve().parents[2]

    @property
    def resolved_sqlite_path(self) -> Path:
        # Data lives under the working directory, not next to the installed package.
        if self.sqlite_path.is_absolute():
            return self.sqlite_path
        return (Path.cwd() / self.sqlite_path).resolve()

    @property
    def resolved_prompts_root(self) -> Path:
        return self._resolve_path(self.prompts_root)

    @property
    def resolved_providers_config_path(self) -> Path:
        return self._resolve_path(self.providers_config_path)

    def load_yaml(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open("r", encoding="utf-8") as file:
            data = yaml.safe_load(file) or {}

        if not isinstance(data, dict):
            raise ValueError(f"YAML config must contain object root: {path}")

        return data

    @property
    def providers_config(self) -> dict[str, Any]:
        return self.load_yaml(self.resolved_providers_config_path)

    def _resolve_path(self, path: Path) -> Path:
        if path.is_absolute():
            return path
        return (self.project_root / path).resolve()

