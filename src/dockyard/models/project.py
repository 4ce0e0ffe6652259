"""Project record and related models."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> str:
    return datetime.now(UTC).isoformat()


class ProjectStatus(StrEnum):
    QUEUED = "queued"
    BUILDING = "building"
    ACTIVE = "active"
    ERROR = "error"


class EnvVar(BaseModel):
    """A single environment variable. Values are opaque strings."""

    key: str
    value: str = ""


class Project(BaseModel):
    """A deployable unit bound to a source repository."""

    id: str
    name: str
    status: ProjectStatus = ProjectStatus.QUEUED
    repo_url: str
    owner: str
    owner_login: str | None = None
    domain: str | None = None
    is_public: bool = False
    autodeploy: bool = True
    env_vars: list[EnvVar] = Field(default_factory=list)
    build_errors: list[str] = Field(default_factory=list)
    missing_env_vars: list[str] = Field(default_factory=list)
    deployment_logs: str = ""
    last_callback_status: str | None = None
    attempt: int = 0
    created_at: str = Field(default_factory=utc_now)
    updated_at: str | None = None
    last_deployed: str | None = None

    def to_storage(self) -> dict:
        data = self.model_dump()
        data["status"] = self.status.value
        return data

    def to_response(self, *, include_private: bool = True, reveal_env: bool = False) -> dict:
        """Render the record with the field names the dashboard expects.

        Viewers who may not mutate the project never see env vars or logs.
        Env var values are masked unless ``reveal_env`` is set.
        """
        data = {
            "_v": "1.0",
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "repoUrl": self.repo_url,
            "owner": self.owner,
            "ownerLogin": self.owner_login,
            "domain": self.domain,
            "isPublic": self.is_public,
            "autodeploy": self.autodeploy,
            "buildErrors": list(self.build_errors),
            "missingEnvVars": list(self.missing_env_vars),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "lastDeployed": self.last_deployed,
        }
        if include_private:
            # core.envvars imports this module
            from dockyard.core.envvars import mask_pairs

            pairs = self.env_vars if reveal_env else mask_pairs(self.env_vars)
            data["envVars"] = [{"key": v.key, "value": v.value} for v in pairs]
            data["deploymentLogs"] = self.deployment_logs
        return data


class BuildCallback(BaseModel):
    """Completion payload posted by the build runner."""

    model_config = ConfigDict(populate_by_name=True)

    status: str | None = None
    deployment_logs: str | None = Field(default=None, alias="deploymentLogs")
    domain: str | None = None
    build_errors: list[str] | str | None = Field(default=None, alias="buildErrors")
    missing_env_vars: list[str] | str | None = Field(default=None, alias="missingEnvVars")
    attempt: int | None = None


class PushResult(BaseModel):
    """Outcome of a push webhook."""

    ignored: bool = False
    reason: str | None = None
    deployed: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)

    def to_response(self) -> dict:
        data = self.model_dump()
        data["_v"] = "1.0"
        data["message"] = self.reason or f"Deployed {len(self.deployed)} project(s)"
        return data
