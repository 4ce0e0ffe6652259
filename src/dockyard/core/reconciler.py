"""Deployment Reconciliation Engine.

Owns the project lifecycle (queued -> building -> active/error), decides when
a build may be dispatched and merges the three status signals: push webhooks,
build-runner callbacks and platform probes.

All coordination goes through merge-patches against the record store. The
callback is authoritative for status; the probe only refreshes a stale
active/error record and never touches a build in progress.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from pydantic import ValidationError

from dockyard.auth.permissions import can_mutate, can_view
from dockyard.auth.signatures import secret_matches
from dockyard.clients.base import (
    BuildDispatcher,
    PlatformProbe,
    ProbeState,
    RepositoryLister,
)
from dockyard.config import Config
from dockyard.core import envvars
from dockyard.core.status import (
    PROBE_REFRESHABLE,
    REDEPLOYABLE,
    can_transition,
    status_from_callback,
)
from dockyard.errors import (
    DispatchFailed,
    Forbidden,
    InvalidInput,
    NotFound,
    ProbeUnavailable,
    SourceControlUnavailable,
    Unauthorized,
)
from dockyard.events.bus import EventBus
from dockyard.events.types import EventType
from dockyard.models.identity import ANONYMOUS, Identity
from dockyard.models.project import (
    BuildCallback,
    Project,
    ProjectStatus,
    PushResult,
    utc_now,
)
from dockyard.storage.base import StorageBackend

logger = logging.getLogger(__name__)

SETTINGS_FIELDS = {"name", "is_public", "autodeploy", "env_vars"}

_UNIT_NAME_INVALID = re.compile(r"[^a-z0-9-]")
_UNIT_NAME_MAX = 63


@dataclass
class ProjectView:
    """A project as seen by one viewer."""

    project: Project
    can_mutate: bool

    def to_response(self, *, reveal_env: bool = False) -> dict[str, Any]:
        return self.project.to_response(
            include_private=self.can_mutate,
            reveal_env=reveal_env and self.can_mutate,
        )


def unit_name(project_name: str) -> str:
    """Platform-safe unit name: lowercase alphanumerics and hyphens."""
    name = _UNIT_NAME_INVALID.sub("-", project_name.strip().lower()).strip("-")
    if not name:
        raise InvalidInput("Project name must contain letters or digits")
    if len(name) > _UNIT_NAME_MAX:
        raise InvalidInput(f"Project name longer than {_UNIT_NAME_MAX} characters")
    return name


def normalize_repo_url(repo_url: str) -> str:
    """Canonical repository URL: http(s), no trailing slash or ``.git``."""
    if not repo_url or not repo_url.strip():
        raise InvalidInput("repoUrl is required")
    parts = urlsplit(repo_url.strip())
    path = parts.path.rstrip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    if parts.scheme not in {"http", "https"} or not parts.netloc or not path.strip("/"):
        raise InvalidInput(f"Malformed repository URL: {repo_url}")
    return urlunsplit((parts.scheme, parts.netloc.lower(), path, "", ""))


class ReconciliationEngine:
    """Lifecycle and status reconciliation for deployable projects."""

    def __init__(
        self,
        store: StorageBackend,
        dispatcher: BuildDispatcher,
        probe: PlatformProbe,
        event_bus: EventBus,
        *,
        config: Config,
        repositories: RepositoryLister | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Record store holding project and user records
            dispatcher: Build runner adapter
            probe: Hosting platform adapter
            event_bus: Event bus for lifecycle events
            config: Timeouts, secrets and behavior flags
            repositories: Optional source-control adapter for repository listing
        """
        self._store = store
        self._dispatcher = dispatcher
        self._probe = probe
        self._event_bus = event_bus
        self._config = config
        self._repositories = repositories
        self._background: set[asyncio.Task[None]] = set()

    # --- Lifecycle operations ---

    async def create_and_deploy(
        self,
        identity: Identity | None,
        *,
        repo_url: str,
        project_name: str,
        name: str | None = None,
        env_vars: Any = None,
        is_public: bool = False,
        autodeploy: bool = True,
    ) -> Project:
        """Create a project and dispatch its first build.

        Args:
            identity: Authenticated caller, or None for anonymous creation
            repo_url: Source repository URL
            project_name: Requested unit name, normalized into the project id
            name: Display name (defaults to ``project_name``)
            env_vars: Env vars in any format the vault accepts
            is_public: Whether anyone may view the project
            autodeploy: Whether pushes to the default branch rebuild it

        Returns:
            The project, in status ``building``

        Raises:
            Unauthorized: No identity and anonymous creation is disabled
            InvalidInput: Bad name, repository URL or env vars
            AlreadyExists: The project id is taken
            DispatchFailed: The build runner refused; the project is left in ``error``
        """
        if identity is None and not self._config.allow_anonymous_create:
            raise Unauthorized("Sign in to deploy a project")
        if not project_name or not project_name.strip():
            raise InvalidInput("projectName is required")

        repo = normalize_repo_url(repo_url)
        project_id = unit_name(project_name)
        pairs = envvars.coerce(env_vars)

        if identity is None:
            owner, owner_login, access_token = ANONYMOUS, ANONYMOUS, None
        else:
            owner = identity.email
            owner_login = identity.login or identity.email
            access_token = await self._access_token_for(identity.email)

        project = Project(
            id=project_id,
            name=(name or project_name).strip(),
            status=ProjectStatus.QUEUED,
            repo_url=repo,
            owner=owner,
            owner_login=owner_login,
            is_public=is_public,
            autodeploy=autodeploy,
            env_vars=pairs,
            attempt=1,
            updated_at=utc_now(),
        )
        await self._store.insert_project(project.to_storage())
        logger.info("Created project %s for %s (%s)", project.id, owner, repo)

        await self._event_bus.emit(
            EventType.PROJECT_CREATED,
            {"project_id": project.id, "actor": owner, "description": repo},
        )

        await self._dispatch(project, actor=owner, access_token=access_token)

        data = await self._store.update_project(
            project.id,
            {"status": ProjectStatus.BUILDING},
            expected_status=ProjectStatus.QUEUED.value,
        )
        if data is None:
            # A callback got there first
            return await self._load(project.id)
        return Project(**data)

    async def redeploy(self, project_id: str, identity: Identity | None) -> Project:
        """Start a new build of an existing project.

        Permitted while a build is already running: diagnostics are reset and the
        build is dispatched again; the last callback to arrive wins.
        """
        project = await self._load(project_id)
        caller = await self._authorize(identity, project)
        if project.status not in REDEPLOYABLE:
            raise InvalidInput(f"Project {project.id} is still {project.status.value}")
        token = await self._access_token_for(project.owner) or await self._access_token_for(
            caller.email
        )
        return await self._rebuild(project, actor=caller.email, access_token=token)

    async def handle_push_event(
        self,
        *,
        ref: str,
        repo_url: str,
        default_branch: str | None = None,
        pusher: str | None = None,
    ) -> PushResult:
        """Rebuild every autodeploy project tracking the pushed repository.

        Only pushes to the default branch count; anything else is acknowledged
        and ignored without touching the store.
        """
        branch = default_branch or self._config.default_branch
        if ref != f"refs/heads/{branch}":
            logger.info("Ignoring push to %s", ref)
            return PushResult(ignored=True, reason=f"Ignoring push to {ref}")

        repo = normalize_repo_url(repo_url)
        logger.info("Push to %s by %s: %s", branch, pusher or "unknown", repo)
        await self._event_bus.emit(
            EventType.PUSH_RECEIVED,
            {"actor": pusher, "description": f"{repo} {ref}"},
        )

        records = [Project(**data) for data in await self._store.find_by_repo_url(repo)]
        if not records:
            logger.info("No projects found for %s", repo)
            return PushResult(reason=f"No projects track {repo}")

        result = PushResult()
        targets: list[Project] = []
        for project in records:
            if project.autodeploy:
                targets.append(project)
            else:
                logger.info("Autodeploy disabled for %s", project.id)
                result.skipped.append(project.id)

        outcomes = await asyncio.gather(
            *(self._autodeploy(project) for project in targets),
            return_exceptions=True,
        )
        for project, outcome in zip(targets, outcomes, strict=True):
            if isinstance(outcome, DispatchFailed):
                result.failed.append(project.id)
            elif isinstance(outcome, NotFound):
                result.skipped.append(project.id)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                result.deployed.append(project.id)
        return result

    async def handle_build_callback(
        self,
        project_id: str,
        *,
        secret: str | None,
        payload: BuildCallback | dict[str, Any],
    ) -> Project:
        """Apply the build runner's status report.

        Gated by the shared callback secret instead of the Access Guard. A wrong
        or missing secret never reaches the store.
        """
        if not secret_matches(secret, self._config.callback_secret):
            logger.warning("Rejected build callback for %s: bad secret", project_id)
            raise Unauthorized("Invalid webhook secret")

        if isinstance(payload, dict):
            try:
                payload = BuildCallback.model_validate(payload)
            except ValidationError as e:
                fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
                raise InvalidInput(f"Malformed build callback: {fields}") from e

        project = await self._load(project_id)
        if payload.attempt is not None and payload.attempt < project.attempt:
            logger.info(
                "Ignoring stale callback for %s (attempt %d < %d)",
                project_id,
                payload.attempt,
                project.attempt,
            )
            return project

        updates: dict[str, Any] = {}
        new_status: ProjectStatus | None = None
        if payload.status:
            new_status, known = status_from_callback(payload.status)
            if not known:
                logger.warning(
                    "Unknown build status %r for %s, recording as error",
                    payload.status,
                    project_id,
                )
            if not can_transition(project.status, new_status):
                logger.info(
                    "Callback moves %s from %s to %s", project_id, project.status, new_status
                )
            updates["status"] = new_status
            updates["last_callback_status"] = payload.status
            if new_status == ProjectStatus.ACTIVE and project.status != ProjectStatus.ACTIVE:
                updates["last_deployed"] = utc_now()

        if payload.domain:
            updates["domain"] = payload.domain
        if payload.deployment_logs is not None:
            updates["deployment_logs"] = payload.deployment_logs
        if payload.build_errors is not None:
            updates["build_errors"] = _as_list(payload.build_errors)
        if payload.missing_env_vars is not None:
            updates["missing_env_vars"] = _as_list(payload.missing_env_vars)

        data = await self._store.update_project(project_id, updates)
        if data is None:
            raise NotFound(f"Project not found: {project_id}")
        updated = Project(**data)

        if new_status in (ProjectStatus.ACTIVE, ProjectStatus.ERROR):
            await self._event_bus.emit(
                EventType.BUILD_COMPLETED,
                {
                    "project_id": project_id,
                    "actor": "build-runner",
                    "description": f"{payload.status} -> {updated.status.value}",
                },
            )
        return updated

    async def get_project_view(
        self, project_id: str, identity: Identity | None = None
    ) -> ProjectView:
        """Read a project, refreshing a stale active/error status from the platform.

        The response reflects the probe's view immediately; persisting it runs in
        the background and never delays the caller.
        """
        project = await self._load(project_id)
        viewer = await self._fresh(identity) if identity else None
        if not can_view(viewer, project):
            if viewer is None:
                raise Unauthorized("Sign in to view this project")
            raise Forbidden("You cannot view this project")

        if project.status in PROBE_REFRESHABLE:
            project = await self._reconcile(project)
        return ProjectView(project=project, can_mutate=can_mutate(viewer, project))

    async def update_settings(
        self, project_id: str, identity: Identity | None, **changes: Any
    ) -> Project:
        """Change name, visibility, autodeploy or env vars."""
        unknown = set(changes) - SETTINGS_FIELDS
        if unknown:
            raise InvalidInput(f"Cannot update fields: {', '.join(sorted(unknown))}")

        project = await self._load(project_id)
        caller = await self._authorize(identity, project)

        updates: dict[str, Any] = {}
        if changes.get("name") is not None:
            name = str(changes["name"]).strip()
            if not name:
                raise InvalidInput("name cannot be empty")
            updates["name"] = name
        if changes.get("is_public") is not None:
            updates["is_public"] = bool(changes["is_public"])
        if changes.get("autodeploy") is not None:
            updates["autodeploy"] = bool(changes["autodeploy"])
        if "env_vars" in changes and changes["env_vars"] is not None:
            pairs = envvars.coerce(changes["env_vars"])
            updates["env_vars"] = [v.model_dump() for v in pairs]

        data = await self._store.update_project(project_id, updates)
        if data is None:
            raise NotFound(f"Project not found: {project_id}")

        await self._event_bus.emit(
            EventType.PROJECT_UPDATED,
            {
                "project_id": project_id,
                "actor": caller.email,
                "description": ", ".join(sorted(updates)) or "no changes",
            },
        )
        return Project(**data)

    async def delete(self, project_id: str, identity: Identity | None) -> None:
        """Remove the project record. The platform unit itself is left alone."""
        project = await self._load(project_id)
        caller = await self._authorize(identity, project)

        if not await self._store.delete_project(project_id):
            raise NotFound(f"Project not found: {project_id}")
        logger.info("Deleted project %s by %s", project_id, caller.email)

        await self._event_bus.emit(
            EventType.PROJECT_DELETED,
            {"project_id": project_id, "actor": caller.email},
        )

    # --- Account and listing operations ---

    async def list_projects(
        self, identity: Identity | None, *, all_projects: bool = False
    ) -> list[Project]:
        """The caller's projects; admins may ask for every project."""
        if identity is None:
            raise Unauthorized("Sign in to list projects")
        caller = await self._fresh(identity)
        if all_projects:
            if not caller.is_admin:
                raise Forbidden("Only admins can list all projects")
            rows = await self._store.list_projects()
        else:
            rows = await self._store.list_projects(owner=caller.email)
        return [Project(**row) for row in rows]

    async def list_repositories(self, identity: Identity | None) -> list[dict[str, Any]]:
        """Repositories the caller can deploy, fetched with their linked token."""
        if identity is None:
            raise Unauthorized("Sign in to list repositories")
        if self._repositories is None:
            raise SourceControlUnavailable("Repository listing is not configured")
        token = await self._access_token_for(identity.email)
        if not token:
            raise InvalidInput("No GitHub account linked")
        return await self._repositories.list_repositories(token)

    async def link_account(self, identity: Identity | None, access_token: str) -> dict[str, Any]:
        """Store the caller's source-control token for builds and listings."""
        if identity is None:
            raise Unauthorized("Sign in to link an account")
        if not access_token or not access_token.strip():
            raise InvalidInput("accessToken is required")
        user = await self._store.upsert_user(
            identity.email, login=identity.login, access_token=access_token.strip()
        )
        return {"email": user["email"], "login": user["login"], "role": user["role"], "linked": True}

    async def activity(
        self, project_id: str, identity: Identity | None, *, limit: int = 20
    ) -> list[dict[str, Any]]:
        project = await self._load(project_id)
        await self._authorize(identity, project)
        return await self._store.get_activity_log(project_id=project_id, limit=limit)

    # --- Background work ---

    async def drain(self) -> None:
        """Wait for pending background persistence."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self._dispatcher.aclose()
        await self._probe.aclose()

    # --- Internals ---

    async def _load(self, project_id: str) -> Project:
        data = await self._store.get_project(project_id)
        if data is None:
            raise NotFound(f"Project not found: {project_id}")
        return Project(**data)

    async def _fresh(self, identity: Identity) -> Identity:
        """Re-read the caller's role; never cached across calls."""
        role = identity.role
        user = await self._store.get_user(identity.email)
        if user is not None:
            role = user["role"]
        if self._config.is_admin_email(identity.email):
            role = "admin"
        return identity.model_copy(update={"role": role})

    async def _authorize(self, identity: Identity | None, project: Project) -> Identity:
        if identity is None:
            raise Unauthorized("Authentication required")
        caller = await self._fresh(identity)
        if not can_mutate(caller, project):
            raise Forbidden(f"{caller.email} cannot modify {project.id}")
        return caller

    async def _access_token_for(self, email: str) -> str | None:
        if not email or email == ANONYMOUS:
            return None
        user = await self._store.get_user(email)
        return user["access_token"] if user else None

    async def _autodeploy(self, project: Project) -> Project:
        token = await self._access_token_for(project.owner)
        return await self._rebuild(project, actor=project.owner, access_token=token)

    async def _rebuild(
        self, project: Project, *, actor: str, access_token: str | None
    ) -> Project:
        data = await self._store.update_project(
            project.id,
            {
                "status": ProjectStatus.BUILDING,
                "build_errors": [],
                "missing_env_vars": [],
                "deployment_logs": "",
                "last_callback_status": None,
                "attempt": project.attempt + 1,
            },
        )
        if data is None:
            raise NotFound(f"Project not found: {project.id}")
        building = Project(**data)
        await self._dispatch(building, actor=actor, access_token=access_token)
        return building

    async def _dispatch(
        self, project: Project, *, actor: str, access_token: str | None
    ) -> None:
        """Dispatch a build, or force the project into ``error`` and raise."""
        owner = project.owner_login or project.owner
        try:
            async with asyncio.timeout(self._config.dispatch_timeout):
                await self._dispatcher.dispatch(
                    project_id=project.id,
                    repo_url=project.repo_url,
                    owner=owner,
                    env_vars=project.env_vars,
                    access_token=access_token,
                    attempt=project.attempt,
                )
        except (DispatchFailed, TimeoutError) as e:
            reason = str(e) if isinstance(e, DispatchFailed) else "Build runner timed out"
            logger.error("Dispatch failed for %s: %s", project.id, reason)
            await self._store.update_project(
                project.id,
                {
                    "status": ProjectStatus.ERROR,
                    "build_errors": [f"Dispatch failed: {reason}"],
                    "deployment_logs": f"Dispatch failed: {reason}",
                },
            )
            await self._event_bus.emit(
                EventType.BUILD_DISPATCH_FAILED,
                {"project_id": project.id, "actor": actor, "description": reason},
            )
            raise DispatchFailed(reason) from e

        await self._event_bus.emit(
            EventType.BUILD_DISPATCHED,
            {
                "project_id": project.id,
                "actor": actor,
                "description": f"attempt {project.attempt}",
            },
        )

    async def _reconcile(self, project: Project) -> Project:
        try:
            async with asyncio.timeout(self._config.probe_timeout):
                result = await self._probe.lookup(project.id)
        except (ProbeUnavailable, TimeoutError) as e:
            logger.warning("Probe unavailable for %s: %s", project.id, str(e) or "timed out")
            return project

        if result.state == ProbeState.ABSENT:
            return project

        observed = ProjectStatus.ACTIVE if result.state == ProbeState.ACTIVE else ProjectStatus.ERROR
        updates: dict[str, Any] = {}
        if observed != project.status:
            updates["status"] = observed
        if result.url and result.url != project.domain:
            updates["domain"] = result.url
        if not updates:
            return project

        self._persist_in_background(project.id, updates, expected_status=project.status)
        return project.model_copy(update=updates)

    def _persist_in_background(
        self, project_id: str, updates: dict[str, Any], *, expected_status: ProjectStatus
    ) -> None:
        task = asyncio.create_task(self._persist(project_id, updates, expected_status))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _persist(
        self, project_id: str, updates: dict[str, Any], expected_status: ProjectStatus
    ) -> None:
        try:
            async with asyncio.timeout(self._config.persist_timeout):
                data = await self._store.update_project(
                    project_id, updates, expected_status=expected_status.value
                )
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("Failed to persist probe status for %s", project_id, exc_info=True)
            return

        if data is None:
            logger.info("Skipped probe refresh for %s: status changed meanwhile", project_id)
            return
        await self._event_bus.emit(
            EventType.STATUS_RECONCILED,
            {
                "project_id": project_id,
                "actor": "platform-probe",
                "description": f"{expected_status.value} -> {data['status']}",
            },
        )


def _as_list(value: list[str] | str) -> list[str]:
    if isinstance(value, str):
        return [value] if value else []
    return [str(v) for v in value]
