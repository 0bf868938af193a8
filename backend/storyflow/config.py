"""Configuration management with YAML and environment variable support."""

from pathlib import Path
from typing import ClassVar, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads configuration from YAML file."""

    def get_field_value(self, field, field_name: str):
        # Not used with prepare method
        pass

    def prepare_field_value(self, field_name: str, field, value, value_is_complex: bool):
        return value

    def __call__(self):
        # Load from config.yaml in current directory
        yaml_path = Path("config.yaml")
        if not yaml_path.exists():
            return {}

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return data


class GoogleCloudConfig(BaseModel):
    """Google Cloud configuration.

    project_id must be set via .env or environment variable before any
    Vertex-backed generator is used.
    """

    project_id: str = ""
    location: str = "us-central1"
    use_vertex_ai: bool = True


class OllamaConfig(BaseModel):
    """Ollama endpoint used for "ollama/" text models."""

    endpoint: str = "http://localhost:11434"
    api_key: Optional[str] = None


class ModelsConfig(BaseModel):
    """AI model identifiers per stage."""

    story_llm: str = "gemini-2.5-flash"
    image_standard: str = "gemini-2.5-flash-image"
    image_premium: str = "gemini-3-pro-image-preview"
    narration_tts: str = "gemini-2.5-flash-preview-tts"


class PipelineConfig(BaseModel):
    """Pipeline execution parameters."""

    languages: list[str] = Field(default_factory=lambda: ["zh", "en", "fr"])
    durations: list[int] = Field(default_factory=lambda: [30, 60, 90])
    list_limit: int = 100
    adapter_timeout_seconds: float = 600.0
    image_aspect_ratio: str = "9:16"
    render_resolution: str = "1080x1920"
    # Prebuilt TTS voice per project language
    narration_voices: dict[str, str] = Field(default_factory=lambda: {
        "zh": "Puck",
        "en": "Kore",
        "fr": "Aoede",
    })
    default_narration_voice: str = "Kore"
    retry_max_attempts: int = 3


class PricingConfig(BaseModel):
    """USD prices used by the concrete generators to report cost."""

    text_per_call: dict[str, float] = Field(default_factory=lambda: {
        "gemini-2.5-flash": 0.006,
        "gemini-2.5-flash-lite": 0.001,
        "gemini-2.5-pro": 0.023,
    })
    default_text_per_call: float = 0.01
    image_standard: float = 0.04
    image_premium: float = 0.13
    narration_per_1k_chars: float = 0.15


class StorageConfig(BaseModel):
    """Storage and database configuration."""

    database_url: str = "sqlite+aiosqlite:///storyflow.db"
    tmp_dir: Path = Path("tmp")

    @field_validator("tmp_dir", mode="before")
    @classmethod
    def convert_tmp_dir_to_path(cls, v):
        """Convert string to Path object."""
        if isinstance(v, str):
            return Path(v)
        return v


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:5173"])


class Settings(BaseSettings):
    """Main application settings with YAML and environment variable support.

    Configuration sources (in priority order):
    1. Environment variables (prefix: STORYFLOW_, delimiter: __)
    2. YAML file (config.yaml)
    3. Field defaults
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="STORYFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    google_cloud: GoogleCloudConfig = Field(default_factory=GoogleCloudConfig)
    ollama: OllamaConfig = Field(default_factory=OllamaConfig)
    models: ModelsConfig = Field(default_factory=ModelsConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    pricing: PricingConfig = Field(default_factory=PricingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        """Customize settings sources to include YAML configuration.

        Priority order (highest to lowest):
        1. Environment variables
        2. YAML file
        3. Init settings (programmatic defaults)
        """
        return (
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            init_settings,
        )


# Singleton instance
settings = Settings()
