from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Literal, Mapping, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .constants import (
    BUILD_TIMEOUT_SECONDS,
    DEFAULT_API_URL,
    DEFAULT_CONFIG_PATH,
    DEFAULT_MODEL,
    INSTALL_TIMEOUT_SECONDS,
    MAX_FIX_ATTEMPTS,
    PAUSE_POLL_INTERVAL_SECONDS,
    PAUSE_TIMEOUT_SECONDS,
)
from .contracts import ConfigurationError, StageKind


class BuildConfig(BaseModel):
    """Commands used to verify that a working tree builds."""

    manifest: str = "package.json"
    install_command: list[str] = Field(default_factory=lambda: ["npm", "install"])
    build_command: list[str] = Field(default_factory=lambda: ["npm", "run", "build"])
    typecheck_command: list[str] = Field(
        default_factory=lambda: ["npx", "tsc", "--noEmit"]
    )
    typecheck_config: str = "tsconfig.json"
    typecheck_dependency: str = "typescript"
    install_timeout: float = INSTALL_TIMEOUT_SECONDS
    build_timeout: float = BUILD_TIMEOUT_SECONDS


class HealingConfig(BaseModel):
    """Bounds for automatic fix workflows."""

    max_attempts: int = MAX_FIX_ATTEMPTS


class InterruptConfig(BaseModel):
    """Pause polling settings."""

    poll_interval: float = PAUSE_POLL_INTERVAL_SECONDS
    pause_timeout: float = PAUSE_TIMEOUT_SECONDS


class ModelConfig(BaseModel):
    """Credential and model selection handed to stage capabilities."""

    api_key_env: str = "OPENROUTER_API_KEY"
    default_model: str = DEFAULT_MODEL


class PipewrightConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    api_url: str = DEFAULT_API_URL
    git_remote: str = "origin"
    # "http" posts sub-tasks to api_url; "repository" writes children directly.
    sub_workflow_creator: Literal["http", "repository"] = "http"
    build: BuildConfig = BuildConfig()
    healing: HealingConfig = HealingConfig()
    interrupts: InterruptConfig = InterruptConfig()
    models: ModelConfig = ModelConfig()


def load_config(path: Optional[str] = None) -> PipewrightConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to PIPEWRIGHT_CONFIG env
            variable or 'pipewright.yaml' in the current directory.
    """

    config_path = path or os.getenv("PIPEWRIGHT_CONFIG", DEFAULT_CONFIG_PATH)
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = PipewrightConfig(**data)
    else:
        config = PipewrightConfig()

    env_db_url = os.getenv("PIPEWRIGHT_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_api_url = os.getenv("PIPEWRIGHT_API_URL")
    if env_api_url:
        config.api_url = env_api_url
    return config


# Env var suffix used for each stage's model override.
STAGE_MODEL_SUFFIXES: Dict[StageKind, str] = {
    StageKind.PLAN: "PLANNING",
    StageKind.CODE: "CODING",
    StageKind.TEST: "TESTING",
    StageKind.REVIEW: "REVIEW",
    StageKind.DOCUMENT: "DOCS",
    StageKind.SCAFFOLD: "SCAFFOLD",
}


def load_dotenv_defaults(env_file: str | Path = ".env") -> int:
    """Merge ``env_file`` into ``os.environ`` without overriding existing keys.

    Returns the number of variables that were added.
    """
    path = Path(env_file)
    if not path.is_file():
        return 0
    before = set(os.environ)
    load_dotenv(path, override=False)
    return len(set(os.environ) - before)


def resolve_stage_environment(
    config: ModelConfig, environ: Optional[Mapping[str, str]] = None
) -> Dict[str, str]:
    """Build the environment handed to every stage.

    Each stage's model is looked up from ``OPENROUTER_MODEL_<STAGE>``, then
    ``WORKFLOW_OPENROUTER_MODEL_<STAGE>``, then ``PIPEWRIGHT_MODEL``, then the
    configured default.

    Raises:
        ConfigurationError: If the credential named by ``config.api_key_env``
            is not set.
    """
    environ = os.environ if environ is None else environ
    api_key = environ.get(config.api_key_env)
    if not api_key:
        raise ConfigurationError(
            f"{config.api_key_env} environment variable is required"
        )

    global_model = environ.get("PIPEWRIGHT_MODEL") or config.default_model
    resolved = {config.api_key_env: api_key}
    for suffix in STAGE_MODEL_SUFFIXES.values():
        key = f"OPENROUTER_MODEL_{suffix}"
        resolved[key] = (
            environ.get(key)
            or environ.get(f"WORKFLOW_OPENROUTER_MODEL_{suffix}")
            or global_model
        )
    return resolved
