"""Configuration management for Pathkeeper."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field


class ServerConfig(BaseModel):
    """Web server configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    broadcast_timeout_ms: int = 100
    max_slow_strikes: int = 3


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: Path = Path("./data/pathkeeper.db")


class SyncConfig(BaseModel):
    """Rules content sync configuration."""

    base_url: str = "https://2e.aonprd.com"
    request_delay_ms: int = 1000
    max_retries: int = 3
    timeout_seconds: float = 30.0
    user_agent: str = "PathfinderCampaignManager/1.0"
    history_limit: int = 100


class SearchConfig(BaseModel):
    """Omni search configuration."""

    default_page_size: int = 20
    max_page_size: int = 100
    autocomplete_limit: int = 10
    recent_query_limit: int = 1000


class CombatConfig(BaseModel):
    """Combat tracking configuration."""

    auto_sort_initiative: bool = True
    combat_log_length: int = 200


class CampaignConfig(BaseModel):
    """Campaign and session membership configuration."""

    alias_max_length: int = 50


class AppConfig(BaseModel):
    """Main application configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    combat: CombatConfig = Field(default_factory=CombatConfig)
    campaign: CampaignConfig = Field(default_factory=CampaignConfig)


def load_config(config_path: Path | str | None = None) -> AppConfig:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to ./config.yaml

    Returns:
        AppConfig instance with loaded or default values
    """
    if config_path is None:
        config_path = Path("config.yaml")
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return AppConfig(**data)

    return AppConfig()


def save_config(config: AppConfig, config_path: Path | str | None = None) -> None:
    """Save configuration to YAML file.

    Args:
        config: AppConfig instance to save
        config_path: Path to save to. Defaults to ./config.yaml
    """
    if config_path is None:
        config_path = Path("config.yaml")
    else:
        config_path = Path(config_path)

    data = config.model_dump()
    # yaml.safe_dump cannot represent Path objects
    data["database"]["path"] = str(data["database"]["path"])

    with open(config_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


# Global config instance
_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config(config_path: Path | str | None = None) -> AppConfig:
    """Reload configuration from disk.

    Args:
        config_path: Path to config file

    Returns:
        Newly loaded AppConfig instance
    """
    global _config
    _config = load_config(config_path)
    return _config
