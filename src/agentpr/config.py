"""Configuration management for agentpr."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

import yaml
from dotenv import load_dotenv

from .models import ROLES, normalize_model_assignment

DEFAULT_MODEL = "qwen2.5-coder:7b"


def _env_flag(name: str, default: str = "") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class ModelSettings:
    """Default model per stage role, loaded from models.yaml."""

    default: str = DEFAULT_MODEL
    roles: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> ModelSettings:
        """Create ModelSettings from dictionary."""
        return cls(
            default=str(data.get("default") or DEFAULT_MODEL),
            roles=normalize_model_assignment(data.get("roles") or {}),
        )

    @classmethod
    def load_from_file(cls, path: Path) -> ModelSettings:
        """Load model settings from a YAML file; defaults if it does not exist."""
        if path.exists():
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            return cls.from_dict(data)
        return cls()

    def assignment(self, overrides: Optional[Mapping[str, str]] = None) -> dict[str, str]:
        """Build the full role -> model mapping.

        Args:
            overrides: Per-role models that win over the file settings.

        Returns:
            A model for every role.
        """
        models = {role: self.roles.get(role) or self.default for role in ROLES}
        for role, model in normalize_model_assignment(overrides).items():
            if model:
                models[role] = model
        return models


@dataclass
class Config:
    """Configuration settings for agentpr."""

    # Generation backend
    ollama_url: str = "http://localhost:11434"
    generation_timeout: int = 300

    # GitHub
    github_token: Optional[str] = None
    github_api_url: str = "https://api.github.com"
    github_timeout: int = 30

    # Working copies
    workspace_dir: Path = field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "agentpr-workspaces"
    )
    git_author_name: str = "agentpr"
    git_author_email: str = "agentpr@users.noreply.github.com"
    default_branch_prefix: str = "feature"

    # Paths
    config_dir: Path = field(default_factory=lambda: Path.cwd() / "config")

    # Server
    host: str = "127.0.0.1"
    port: int = 3001

    # Runtime Settings
    log_level: str = "INFO"
    mock_mode: bool = False

    models: ModelSettings = field(default_factory=ModelSettings)

    @classmethod
    def from_env(cls, config_dir: Optional[Path] = None) -> Config:
        """Load configuration from environment variables and models.yaml.

        Args:
            config_dir: Directory holding models.yaml. Defaults to ./config.

        Returns:
            Config instance populated from environment.
        """
        load_dotenv()

        cfg_dir = Path(config_dir) if config_dir else Path(
            os.getenv("AGENTPR_CONFIG_DIR", str(Path.cwd() / "config"))
        )
        workspace = os.getenv("AGENTPR_WORKSPACE_DIR")

        config = cls(
            ollama_url=os.getenv("AGENTPR_OLLAMA_URL", "http://localhost:11434"),
            generation_timeout=int(os.getenv("AGENTPR_GENERATION_TIMEOUT", "300")),
            github_token=os.getenv("GITHUB_TOKEN"),
            github_api_url=os.getenv("AGENTPR_GITHUB_API_URL", "https://api.github.com"),
            github_timeout=int(os.getenv("AGENTPR_GITHUB_TIMEOUT", "30")),
            workspace_dir=Path(workspace) if workspace else Path(tempfile.gettempdir()) / "agentpr-workspaces",
            git_author_name=os.getenv("AGENTPR_GIT_AUTHOR_NAME", "agentpr"),
            git_author_email=os.getenv("AGENTPR_GIT_AUTHOR_EMAIL", "agentpr@users.noreply.github.com"),
            default_branch_prefix=os.getenv("AGENTPR_DEFAULT_BRANCH_PREFIX", "feature"),
            config_dir=cfg_dir,
            host=os.getenv("AGENTPR_HOST", "127.0.0.1"),
            port=int(os.getenv("AGENTPR_PORT", "3001")),
            log_level=os.getenv("AGENTPR_LOG_LEVEL", "INFO"),
            mock_mode=_env_flag("AGENTPR_MOCK_MODE"),
        )
        config.models = ModelSettings.load_from_file(config.models_file)
        return config

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors.

        Returns:
            List of validation error messages. Empty if valid.
        """
        errors = []

        if self.generation_timeout <= 0:
            errors.append("AGENTPR_GENERATION_TIMEOUT must be positive")

        if self.github_timeout <= 0:
            errors.append("AGENTPR_GITHUB_TIMEOUT must be positive")

        if not self.default_branch_prefix.strip("-/ "):
            errors.append("AGENTPR_DEFAULT_BRANCH_PREFIX must not be empty")

        if not 0 < self.port < 65536:
            errors.append(f"Invalid port: {self.port}")

        if self.workspace_dir.exists() and not self.workspace_dir.is_dir():
            errors.append(f"Workspace path is not a directory: {self.workspace_dir}")

        return errors

    @property
    def models_file(self) -> Path:
        """Path to models.yaml file."""
        return self.config_dir / "models.yaml"
