"""Dockyard configuration management."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml

# Keys never written back to config.yaml by save()
_SECRET_KEYS = {
    "jwt_secret",
    "callback_secret",
    "github_webhook_secret",
    "github_token",
    "yc_iam_token",
}


@dataclass
class Config:
    """Dockyard configuration."""

    data_path: Path = field(default_factory=lambda: Path.home() / ".dockyard")
    log_level: str = "INFO"
    wal_mode: bool = True
    host: str = "127.0.0.1"
    port: int = 8080

    # Shared secrets
    jwt_secret: str = ""
    callback_secret: str = ""
    github_webhook_secret: str = ""

    # Build runner (GitHub Actions workflow_dispatch)
    github_token: str = ""
    github_api_url: str = "https://api.github.com"
    builder_repo_owner: str = "kamranezi"
    builder_repo_name: str = "ruvercel-builder"
    builder_workflow: str = "universal-builder.yml"
    builder_ref: str = "main"

    # Hosting platform (Yandex Serverless Containers)
    yc_folder_id: str = ""
    yc_iam_token: str = ""
    yc_api_url: str = "https://serverless-containers.api.cloud.yandex.net/containers/v1"
    yc_metadata_url: str = (
        "http://169.254.169.254/computeMetadata/v1/instance/service-accounts/default/token"
    )

    # Timeouts in seconds
    dispatch_timeout: float = 15.0
    probe_timeout: float = 10.0
    persist_timeout: float = 5.0

    default_branch: str = "main"
    allow_anonymous_create: bool = False
    admin_emails: list[str] = field(default_factory=list)
    operator_email: str = "operator@localhost"

    @classmethod
    def load(cls, data_path: Path | None = None) -> Config:
        """Load config from defaults, env vars, then the YAML file."""
        config = cls()

        if data_path:
            config.data_path = data_path

        env_path = os.environ.get("DOCKYARD_DATA_PATH")
        if env_path and not data_path:
            config.data_path = Path(env_path)

        for f in fields(cls):
            if f.name == "data_path":
                continue
            raw = os.environ.get(f"DOCKYARD_{f.name.upper()}")
            if raw is not None:
                setattr(config, f.name, _coerce(getattr(config, f.name), raw))

        config_file = config.data_path / "config.yaml"
        if config_file.exists():
            with open(config_file) as f:
                data = yaml.safe_load(f) or {}
            for key, value in data.items():
                if hasattr(config, key):
                    setattr(config, key, _coerce(getattr(config, key), value))

        return config

    @property
    def db_path(self) -> Path:
        return self.data_path / "dockyard.db"

    def is_admin_email(self, email: str | None) -> bool:
        return bool(email) and email in self.admin_emails

    def save(self) -> None:
        """Save non-secret settings to YAML."""
        self.data_path.mkdir(parents=True, exist_ok=True)
        config_file = self.data_path / "config.yaml"
        data = {}
        for f in fields(self):
            if f.name in _SECRET_KEYS or f.name == "data_path":
                continue
            data[f.name] = getattr(self, f.name)
        with open(config_file, "w") as f:
            yaml.dump(data, f, default_flow_style=False)


def _coerce(current: object, value: object) -> object:
    """Cast a raw env/YAML value to the type of the current field value."""
    if isinstance(current, bool):
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)
    if isinstance(current, list):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return list(value or [])
    if isinstance(current, Path):
        return Path(value)
    return type(current)(value)
