"""FastAPI application: dashboard API, push webhook and build callback."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from dockyard import __version__
from dockyard.api.deps import get_engine, get_runtime, optional_identity
from dockyard.auth.signatures import verify_push_signature
from dockyard.bootstrap import Runtime, open_runtime
from dockyard.config import Config
from dockyard.core import envvars
from dockyard.core.reconciler import ReconciliationEngine
from dockyard.core.status import status_label
from dockyard.errors import DockyardError, InvalidInput, Unauthorized
from dockyard.models.identity import Identity
from dockyard.models.project import ProjectStatus

logger = logging.getLogger(__name__)


# ============================================
# REQUEST MODELS
# ============================================


class DeployRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    repo_url: str = Field(validation_alias=AliasChoices("repoUrl", "gitUrl", "repo_url"))
    project_name: str = Field(validation_alias=AliasChoices("projectName", "project_name"))
    name: str | None = None
    env_vars: list[dict[str, Any]] | dict[str, Any] | str | None = Field(
        default=None, validation_alias=AliasChoices("envVars", "env_vars")
    )
    is_public: bool = Field(default=False, validation_alias=AliasChoices("isPublic", "is_public"))
    autodeploy: bool = True


class SettingsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    is_public: bool | None = Field(
        default=None, validation_alias=AliasChoices("isPublic", "is_public")
    )
    autodeploy: bool | None = None
    env_vars: list[dict[str, Any]] | dict[str, Any] | str | None = Field(
        default=None, validation_alias=AliasChoices("envVars", "env_vars")
    )


class LinkAccountRequest(BaseModel):
    access_token: str = Field(validation_alias=AliasChoices("accessToken", "access_token"))


class EnvParseRequest(BaseModel):
    content: str | dict[str, Any]
    filename: str = ".env"


# ============================================
# APP
# ============================================


def create_app(config: Config | None = None, *, runtime: Runtime | None = None) -> FastAPI:
    """Create the HTTP app.

    With ``runtime`` the app uses it as-is; otherwise one is opened on startup
    and closed on shutdown.
    """
    config = config or (runtime.config if runtime else Config.load())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = app.state.runtime is None
        if owned:
            app.state.runtime = await open_runtime(config)
        try:
            yield
        finally:
            if owned:
                await app.state.runtime.close()
                app.state.runtime = None

    app = FastAPI(title="Dockyard API", version=__version__, lifespan=lifespan)
    app.state.runtime = runtime

    @app.exception_handler(DockyardError)
    async def dockyard_error_handler(request: Request, exc: DockyardError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "code": exc.code},
        )

    # --- Projects ---

    @app.post("/api/deploy", status_code=201)
    async def deploy(
        body: DeployRequest,
        identity: Identity | None = Depends(optional_identity),
        engine: ReconciliationEngine = Depends(get_engine),
    ) -> dict[str, Any]:
        project = await engine.create_and_deploy(
            identity,
            repo_url=body.repo_url,
            project_name=body.project_name,
            name=body.name,
            env_vars=body.env_vars,
            is_public=body.is_public,
            autodeploy=body.autodeploy,
        )
        return project.to_response()

    @app.get("/api/projects")
    async def list_projects(
        all_projects: bool = Query(default=False, alias="all"),
        lang: str | None = None,
        identity: Identity | None = Depends(optional_identity),
        engine: ReconciliationEngine = Depends(get_engine),
    ) -> list[dict[str, Any]]:
        projects = await engine.list_projects(identity, all_projects=all_projects)
        return [_localize(p.to_response(include_private=False), lang) for p in projects]

    @app.get("/api/projects/{project_id}")
    async def get_project(
        project_id: str,
        lang: str | None = None,
        reveal: bool = False,
        identity: Identity | None = Depends(optional_identity),
        engine: ReconciliationEngine = Depends(get_engine),
    ) -> dict[str, Any]:
        view = await engine.get_project_view(project_id, identity)
        return _localize(view.to_response(reveal_env=reveal), lang)

    @app.put("/api/projects/{project_id}")
    async def update_project(
        project_id: str,
        body: SettingsRequest,
        identity: Identity | None = Depends(optional_identity),
        engine: ReconciliationEngine = Depends(get_engine),
    ) -> dict[str, Any]:
        changes = body.model_dump(exclude_unset=True)
        project = await engine.update_settings(project_id, identity, **changes)
        return project.to_response()

    @app.delete("/api/projects/{project_id}")
    async def delete_project(
        project_id: str,
        identity: Identity | None = Depends(optional_identity),
        engine: ReconciliationEngine = Depends(get_engine),
    ) -> dict[str, Any]:
        await engine.delete(project_id, identity)
        return {"success": True}

    @app.post("/api/projects/{project_id}/redeploy")
    async def redeploy(
        project_id: str,
        identity: Identity | None = Depends(optional_identity),
        engine: ReconciliationEngine = Depends(get_engine),
    ) -> dict[str, Any]:
        project = await engine.redeploy(project_id, identity)
        return project.to_response()

    @app.get("/api/projects/{project_id}/activity")
    async def project_activity(
        project_id: str,
        limit: int = 20,
        identity: Identity | None = Depends(optional_identity),
        engine: ReconciliationEngine = Depends(get_engine),
    ) -> dict[str, Any]:
        entries = await engine.activity(project_id, identity, limit=min(max(limit, 1), 100))
        return {"count": len(entries), "activity": entries}

    # --- Machine callers ---

    @app.post("/api/projects/{project_id}/update-status")
    async def update_status(
        project_id: str,
        payload: dict[str, Any],
        x_webhook_secret: str | None = Header(default=None),
        engine: ReconciliationEngine = Depends(get_engine),
    ) -> dict[str, Any]:
        project = await engine.handle_build_callback(
            project_id, secret=x_webhook_secret, payload=payload
        )
        return {"success": True, "status": project.status.value}

    @app.post("/api/webhook/github")
    async def github_webhook(
        request: Request,
        x_github_event: str | None = Header(default=None),
        x_hub_signature_256: str | None = Header(default=None),
        runtime: Runtime = Depends(get_runtime),
    ) -> dict[str, Any]:
        raw = await request.body()
        secret = runtime.config.github_webhook_secret
        if secret and not verify_push_signature(raw, x_hub_signature_256, secret):
            raise Unauthorized("Invalid signature")

        try:
            payload = json.loads(raw or b"{}")
        except ValueError as e:
            raise InvalidInput("Webhook body is not JSON") from e
        if not isinstance(payload, dict):
            raise InvalidInput("Webhook body must be a JSON object")

        if x_github_event == "ping" or "zen" in payload:
            return {"message": "Pong!"}
        if x_github_event != "push":
            logger.info("Ignored webhook event: %s", x_github_event)
            return {"message": "Event ignored", "ignored": True}

        repository = payload.get("repository") or {}
        pusher = payload.get("pusher") or {}
        if not isinstance(repository, dict) or not isinstance(pusher, dict):
            raise InvalidInput("Push payload repository and pusher must be objects")
        ref = payload.get("ref")
        repo_url = repository.get("html_url") or repository.get("url")
        if not isinstance(ref, str) or not isinstance(repo_url, str) or not ref or not repo_url:
            raise InvalidInput("Push payload needs ref and repository.html_url")

        result = await runtime.engine.handle_push_event(
            ref=ref,
            repo_url=repo_url,
            default_branch=repository.get("default_branch"),
            pusher=pusher.get("name"),
        )
        return result.to_response()

    # --- Account ---

    @app.get("/api/github/repos")
    async def list_repositories(
        identity: Identity | None = Depends(optional_identity),
        engine: ReconciliationEngine = Depends(get_engine),
    ) -> list[dict[str, Any]]:
        return await engine.list_repositories(identity)

    @app.put("/api/me/github-token")
    async def link_account(
        body: LinkAccountRequest,
        identity: Identity | None = Depends(optional_identity),
        engine: ReconciliationEngine = Depends(get_engine),
    ) -> dict[str, Any]:
        return await engine.link_account(identity, body.access_token)

    # --- Env var import ---

    @app.post("/api/env/parse")
    async def parse_env(body: EnvParseRequest) -> dict[str, Any]:
        if isinstance(body.content, dict):
            pairs = envvars.parse_mapping(body.content)
        else:
            pairs = envvars.parse_file(body.filename, body.content)
        return {
            "envVars": [v.model_dump() for v in pairs],
            "text": envvars.to_dotenv(pairs),
        }

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "version": __version__}

    return app


def _localize(data: dict[str, Any], lang: str | None) -> dict[str, Any]:
    if lang:
        data["statusLabel"] = status_label(ProjectStatus(data["status"]), lang)
    return data
