"""Bridge configuration.

Resolved in layers, later layers winning:

1. Defaults
2. YAML file: ``--config PATH``, else ``$ACP_BRIDGE_CONFIG``, else
   ``~/.acp-bridge/config.yaml`` when it exists
3. ``ACP_BRIDGE_*`` environment variables
4. CLI flags (applied by the caller with ``model_copy(update=...)``)

Example config.yaml:

    agent: mypackage.agent:MyLoop
    permission_timeout: 60
    default_mode: manual
    models:
      - value: anthropic/claude-sonnet
        name: Claude Sonnet
      - value: openai/gpt-4o
        name: GPT-4o
    default_model: anthropic/claude-sonnet
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "ACP_BRIDGE_CONFIG"
ENV_PREFIX = "ACP_BRIDGE_"
DEFAULT_CONFIG_PATH = Path.home() / ".acp-bridge" / "config.yaml"

# Scalar settings that may be overridden from the environment
ENV_OVERRIDES = (
    "agent",
    "agent_name",
    "log_level",
    "permission_timeout",
    "list_page_size",
    "default_mode",
    "default_model",
)


class ConfigError(Exception):
    """The configuration file or an override is invalid."""


class ModeConfig(BaseModel):
    """A session mode offered to the client.

    Attributes:
        id: Mode id sent on the wire
        name: Display name
        description: Shown by the client next to the name
        confirm_tools: Ask the user before the agent loop runs a tool
    """

    id: str
    name: str
    description: str | None = None
    confirm_tools: bool = False


class ModelConfig(BaseModel):
    """A choice of the ``model`` config option."""

    value: str
    name: str
    description: str | None = None


def _default_modes() -> list[ModeConfig]:
    return [
        ModeConfig(
            id="auto",
            name="Auto",
            description="Agent runs tools without confirmation",
        ),
        ModeConfig(
            id="manual",
            name="Manual",
            description="Confirm each tool call before it runs",
            confirm_tools=True,
        ),
    ]


class BridgeConfig(BaseModel):
    """Resolved bridge configuration."""

    agent: str | None = None
    agent_name: str = "acp-bridge"
    log_level: str = "INFO"
    permission_timeout: float | None = None
    list_page_size: int = Field(default=50, gt=0)
    modes: list[ModeConfig] = Field(default_factory=_default_modes)
    default_mode: str = "auto"
    models: list[ModelConfig] = Field(default_factory=list)
    default_model: str | None = None

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("permission_timeout")
    @classmethod
    def _positive_timeout(cls, value: float | None) -> float | None:
        # 0 disables the deadline, same as leaving it unset
        if value is not None and value <= 0:
            return None
        return value

    @model_validator(mode="after")
    def _check_defaults(self) -> BridgeConfig:
        if not self.modes:
            raise ValueError("At least one mode must be configured")
        if self.default_mode not in {m.id for m in self.modes}:
            raise ValueError(f"default_mode {self.default_mode!r} is not a configured mode")
        if self.default_model is not None and self.models:
            if self.default_model not in {m.value for m in self.models}:
                raise ValueError(
                    f"default_model {self.default_model!r} is not a configured model"
                )
        return self

    def get_mode(self, mode_id: str) -> ModeConfig | None:
        return next((m for m in self.modes if m.id == mode_id), None)

    @property
    def initial_model(self) -> str | None:
        """Model selected for new sessions."""
        if self.default_model is not None:
            return self.default_model
        return self.models[0].value if self.models else None


def find_config_file(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Path | None:
    """Locate the config file; an explicit path must exist."""
    env = os.environ if environ is None else environ
    if path is not None:
        explicit = Path(path).expanduser()
        if not explicit.is_file():
            raise ConfigError(f"Config file not found: {explicit}")
        return explicit

    from_env = env.get(CONFIG_ENV_VAR)
    if from_env:
        candidate = Path(from_env).expanduser()
        if not candidate.is_file():
            raise ConfigError(f"Config file from ${CONFIG_ENV_VAR} not found: {candidate}")
        return candidate

    return DEFAULT_CONFIG_PATH if DEFAULT_CONFIG_PATH.is_file() else None


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not read {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for name in ENV_OVERRIDES:
        value = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if value is not None and value != "":
            overrides[name] = value
    return overrides


def load_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
    **overrides: Any,
) -> BridgeConfig:
    """Load the configuration from file, environment and explicit overrides.

    Keyword overrides set to None are ignored, so CLI options that were not
    given can be passed straight through.
    """
    env = os.environ if environ is None else environ

    data: dict[str, Any] = {}
    config_file = find_config_file(path, env)
    if config_file is not None:
        data.update(_read_yaml(config_file))
        logger.debug(f"Loaded config from {config_file}")

    data.update(_env_overrides(env))
    data.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return BridgeConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
