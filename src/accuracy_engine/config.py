"""Application configuration using pydantic-settings."""

import functools
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


def _find_project_root() -> Path:
    """Find project root by locating pyproject.toml."""
    current = Path(__file__).resolve()
    for parent in [current] + list(current.parents):
        if (parent / "pyproject.toml").exists():
            return parent
    return Path(__file__).resolve().parent.parent.parent


class YamlSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads from config/settings.yaml."""

    def get_field_value(self, field_name: str) -> tuple[Any, str, bool]:
        """Not used - we implement __call__ instead."""
        return None, "", False

    def __call__(self) -> dict[str, Any]:
        """Load settings from YAML file."""
        yaml_path = _find_project_root() / "config" / "settings.yaml"
        if not yaml_path.exists():
            return {}

        with open(yaml_path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        # Flatten nested structure to match Settings field names
        flattened = {}
        if 'server' in data:
            flattened['host'] = data['server'].get('host')
            flattened['port'] = data['server'].get('port')
        if 'redis' in data:
            flattened['redis_url'] = data['redis'].get('url')
            flattened['redis_enabled'] = data['redis'].get('enabled')
        if 'cache' in data:
            cache = data['cache']
            flattened['realtime_cache_ttl_seconds'] = cache.get('realtime_ttl_seconds')
            flattened['historical_context_ttl_seconds'] = cache.get('historical_ttl_seconds')
            flattened['autosave_interval_seconds'] = cache.get('autosave_interval_seconds')
            flattened['historical_persist_every'] = cache.get('historical_persist_every')
        if 'coordinator' in data:
            coordinator = data['coordinator']
            flattened['max_in_flight'] = coordinator.get('max_in_flight')
            flattened['retry_after_seconds'] = coordinator.get('retry_after_seconds')
            flattened['idempotency_ttl_seconds'] = coordinator.get('idempotency_ttl_seconds')

        # Remove None values
        return {k: v for k, v in flattened.items() if v is not None}


class Settings(BaseSettings):
    """Application settings loaded from environment and config files."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Redis
    redis_url: str = Field(default="redis://localhost:6379/0")
    redis_enabled: bool = Field(default=True)

    # Caches
    realtime_cache_ttl_seconds: int = Field(default=3600)
    historical_context_ttl_seconds: int = Field(default=3600)
    autosave_interval_seconds: float = Field(default=30.0)
    historical_persist_every: int = Field(default=5, ge=1)

    # Request coordination
    max_in_flight: int = Field(default=1000, ge=1)
    retry_after_seconds: int = Field(default=5, ge=1)
    idempotency_ttl_seconds: int = Field(default=86400)

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    app_secret: str | None = Field(default=None)

    # Paths
    project_root: Path = Field(default_factory=_find_project_root)

    @property
    def profiles_dir(self) -> Path:
        d = self.project_root / "data" / "profiles"
        d.mkdir(parents=True, exist_ok=True)
        return d

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customise settings sources to include YAML file.

        Priority order (highest to lowest):
        1. init_settings (arguments passed to Settings())
        2. env_settings (environment variables)
        3. dotenv_settings (.env file)
        4. YamlSettingsSource (settings.yaml)
        5. file_secret_settings
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlSettingsSource(settings_cls),
            file_secret_settings,
        )


@functools.lru_cache
def get_settings() -> Settings:
    """Get application settings singleton."""
    return Settings()
