"""Configuration management for Turnkeeper."""

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Paths
DEFAULT_CONFIG_PATH = Path("~/.turnkeeper/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"

# Environment variables consulted when no api key is configured
API_KEY_ENV_FALLBACKS = ("ANTHROPIC_API_KEY", "CLAUDE_API_KEY")

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant with access to tools.\n"
    "When you receive a request that requires access to files or directories,\n"
    "use the tools available to you instead of saying you don't have access.\n"
    "Always use the appropriate tools for each task and explain your actions."
)


class ModelConfig(BaseModel):
    """Remote model configuration."""

    provider: str = "anthropic"
    model: str = "claude-3-5-sonnet-20240620"
    max_tokens: int = 4096
    api_key: str = ""
    base_url: str = "https://api.anthropic.com/v1/messages"
    api_version: str = "2023-06-01"
    timeout: float = 120.0


class OrchestratorConfig(BaseModel):
    """Turn loop limits."""

    max_depth: int = Field(default=5, ge=1)
    max_concurrency: int = Field(default=5, ge=1)
    duplicate_window_seconds: float = Field(default=60.0, ge=0.0)
    system_prompt: str = DEFAULT_SYSTEM_PROMPT


class ToolsConfig(BaseModel):
    """Tools configuration."""

    enabled: list[str] = [
        "viewFile",
        "listDirectory",
        "editFile",
    ]
    auto_approve: list[str] = []
    timeout_seconds: float = 30.0


class WorkspaceConfig(BaseModel):
    """Workspace root that file tools are confined to."""

    path: str = "."


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["console", "json"] = "console"


class Config(BaseSettings):
    """Main configuration for Turnkeeper."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="TURNKEEPER_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML values arrive as init kwargs; environment wins over them
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls) -> "Config":
        """Load configuration, preferring env vars over YAML."""
        config = cls.from_yaml()

        if not config.model.api_key:
            for env_name in API_KEY_ENV_FALLBACKS:
                value = os.environ.get(env_name, "").strip()
                if value:
                    config.model.api_key = value
                    break
        return config

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH

        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def resolved_workspace_path(self, runtime_base: Path | str | None = None) -> Path:
        """Resolve workspace path, anchoring relative paths to runtime base/cwd."""
        raw = Path(self.workspace.path).expanduser()
        if raw.is_absolute():
            return raw.resolve()
        anchor = Path(runtime_base).expanduser().resolve() if runtime_base is not None else Path.cwd().resolve()
        return (anchor / raw).resolve()


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
