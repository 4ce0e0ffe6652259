"""GitHub Actions build dispatcher and repository listing."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from dockyard.clients.base import BuildDispatcher, RepositoryLister
from dockyard.config import Config
from dockyard.core.envvars import serialize_for_dispatch
from dockyard.errors import DispatchFailed, SourceControlUnavailable
from dockyard.models.project import EnvVar

logger = logging.getLogger(__name__)

_HEADERS = {
    "Accept": "application/vnd.github+json",
    "X-GitHub-Api-Version": "2022-11-28",
}


class GitHubClient(BuildDispatcher, RepositoryLister):
    """Triggers the builder repository's ``workflow_dispatch`` event."""

    def __init__(
        self,
        *,
        token: str,
        repo_owner: str,
        repo_name: str,
        workflow: str,
        ref: str = "main",
        api_url: str = "https://api.github.com",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = token
        self._repo_owner = repo_owner
        self._repo_name = repo_name
        self._workflow = workflow
        self._ref = ref
        self._client = httpx.AsyncClient(
            base_url=api_url,
            headers=_HEADERS,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(
        cls, config: Config, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> GitHubClient:
        return cls(
            token=config.github_token,
            repo_owner=config.builder_repo_owner,
            repo_name=config.builder_repo_name,
            workflow=config.builder_workflow,
            ref=config.builder_ref,
            api_url=config.github_api_url,
            timeout=config.dispatch_timeout,
            transport=transport,
        )

    async def dispatch(
        self,
        *,
        project_id: str,
        repo_url: str,
        owner: str,
        env_vars: list[EnvVar],
        access_token: str | None = None,
        attempt: int = 0,
    ) -> None:
        if not self._token:
            raise DispatchFailed("No build runner token configured")

        path = (
            f"/repos/{self._repo_owner}/{self._repo_name}"
            f"/actions/workflows/{self._workflow}/dispatches"
        )
        body = {
            "ref": self._ref,
            "inputs": {
                "gitUrl": repo_url,
                "projectName": project_id,
                "gitToken": access_token or "",
                "owner": owner,
                "envVars": serialize_for_dispatch(env_vars),
                "attempt": str(attempt),
            },
        }
        try:
            response = await self._client.post(
                path,
                json=body,
                headers={"Authorization": f"Bearer {self._token}"},
            )
        except httpx.TimeoutException as e:
            raise DispatchFailed("Build runner timed out") from e
        except httpx.HTTPError as e:
            raise DispatchFailed(f"Build runner unreachable: {e}") from e

        if response.status_code >= 400:
            raise DispatchFailed(
                f"Build runner rejected dispatch ({response.status_code}): {_message(response)}"
            )
        logger.info("Dispatched build for %s (attempt %d) as %s", project_id, attempt, owner)

    async def list_repositories(self, access_token: str) -> list[dict[str, Any]]:
        try:
            response = await self._client.get(
                "/user/repos",
                params={"per_page": 100, "sort": "updated"},
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            raise SourceControlUnavailable(f"GitHub unreachable: {e}") from e

        if response.status_code >= 400:
            raise SourceControlUnavailable(
                f"GitHub returned {response.status_code}: {_message(response)}"
            )
        try:
            repos = response.json()
        except ValueError as e:
            raise SourceControlUnavailable("GitHub returned a non-JSON body") from e
        if not isinstance(repos, list):
            raise SourceControlUnavailable("GitHub returned an unexpected payload")
        return [
            {
                "name": repo.get("name"),
                "fullName": repo.get("full_name"),
                "url": repo.get("html_url"),
                "private": repo.get("private", False),
                "defaultBranch": repo.get("default_branch"),
                "updatedAt": repo.get("updated_at"),
            }
            for repo in repos
            if isinstance(repo, dict)
        ]

    async def aclose(self) -> None:
        await self._client.aclose()


def _message(response: httpx.Response) -> str:
    try:
        return str(response.json().get("message", response.text))
    except (ValueError, AttributeError):
        return response.text
