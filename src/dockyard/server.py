"""FastMCP server with 2 operator tools, 1 resource."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Annotated, Any, Literal

from fastmcp import FastMCP
from pydantic import Field

from dockyard import __version__
from dockyard.bootstrap import Runtime, open_runtime
from dockyard.config import Config
from dockyard.core import envvars
from dockyard.core.status import status_label
from dockyard.errors import DockyardError
from dockyard.models.identity import Identity

logger = logging.getLogger(__name__)


def _json(data: dict[str, Any]) -> str:
    return json.dumps(data, default=str, ensure_ascii=False)


def _ok(data: dict[str, Any]) -> str:
    """Return a versioned JSON success response."""
    return _json({**data, "_v": "1.0"})


def _err(msg: str) -> str:
    """Return a versioned JSON error response."""
    return _json({"_v": "1.0", "error": msg})


def create_server(config: Config, *, runtime: Runtime | None = None) -> FastMCP:
    """Create the operator MCP server.

    Tools act as the configured operator, who has admin rights on every project.
    """
    mcp = FastMCP("dockyard", version=__version__)

    state: dict[str, Any] = {}
    if runtime is not None:
        state["runtime"] = runtime
    _lock = asyncio.Lock()
    operator = Identity(email=config.operator_email, login="operator", role="admin")

    async def _init() -> Runtime:
        async with _lock:
            if "init_failed" in state:
                raise RuntimeError(f"Dockyard init previously failed for {config.db_path}")
            if "runtime" not in state:
                try:
                    state["runtime"] = await open_runtime(config)
                except Exception as e:
                    state["init_failed"] = True
                    logger.error("Failed to initialize runtime: %s", e)
                    raise RuntimeError(f"Dockyard init failed: {config.db_path}") from e
        return state["runtime"]

    # ── dy_project ────────────────────────────────────────────

    @mcp.tool()
    async def dy_project(
        action: Annotated[
            Literal["list", "get", "redeploy", "settings", "delete", "activity"],
            Field(description="list | get | redeploy | settings | delete | activity"),
        ],
        project_id: Annotated[
            str | None,
            Field(description="Project ID (all actions except list)"),
        ] = None,
        name: Annotated[
            str | None,
            Field(description="New display name (settings)"),
        ] = None,
        is_public: Annotated[
            bool | None,
            Field(description="Visibility (settings)"),
        ] = None,
        autodeploy: Annotated[
            bool | None,
            Field(description="Rebuild on push to the default branch (settings)"),
        ] = None,
        env_vars: Annotated[
            str | None,
            Field(description="Env vars as dotenv text or a JSON object (settings)"),
        ] = None,
        lang: Annotated[
            str | None,
            Field(description="Status label language: en or ru (list, get)"),
        ] = None,
        limit: Annotated[
            int,
            Field(description="Max entries 1-100 (activity)", ge=1, le=100),
        ] = 20,
    ) -> str:
        """Operate on deployed projects as the platform operator.

Actions: list (every project), get (project with live platform status), redeploy (dispatch a new build), settings (name, visibility, autodeploy, env vars), delete (remove the record), activity (recent lifecycle events)."""  # noqa: E501
        rt = await _init()
        engine = rt.engine

        if action == "list":
            projects = await engine.list_projects(operator, all_projects=True)
            items = []
            for p in projects:
                item = p.to_response(include_private=False)
                if lang:
                    item["statusLabel"] = status_label(p.status, lang)
                items.append(item)
            return _ok({"count": len(items), "projects": items})

        if not project_id or not project_id.strip():
            return _err(f"project_id is required for {action}")
        pid = project_id.strip()

        try:
            if action == "get":
                view = await engine.get_project_view(pid, operator)
                data = view.to_response()
                if lang:
                    data["statusLabel"] = status_label(view.project.status, lang)
                return _ok(data)

            if action == "redeploy":
                project = await engine.redeploy(pid, operator)
                return _ok(project.to_response())

            if action == "settings":
                changes: dict[str, Any] = {}
                if name is not None:
                    changes["name"] = name
                if is_public is not None:
                    changes["is_public"] = is_public
                if autodeploy is not None:
                    changes["autodeploy"] = autodeploy
                if env_vars is not None:
                    changes["env_vars"] = env_vars
                if not changes:
                    return _err("Nothing to change")
                project = await engine.update_settings(pid, operator, **changes)
                return _ok(project.to_response())

            if action == "delete":
                await engine.delete(pid, operator)
                return _ok({"deleted": pid})

            if action == "activity":
                entries = await engine.activity(pid, operator, limit=limit)
                return _ok({"count": len(entries), "activity": entries})
        except DockyardError as e:
            return _err(e.message)

        return _err(f"Unknown action: {action}")

    # ── dy_env ────────────────────────────────────────────────

    @mcp.tool()
    async def dy_env(
        action: Annotated[
            Literal["parse", "render"],
            Field(description="parse | render"),
        ],
        content: Annotated[
            str,
            Field(description="Dotenv text, or a JSON object of KEY: value"),
        ],
        filename: Annotated[
            str,
            Field(description="Source file name; .json selects JSON parsing (parse)"),
        ] = ".env",
    ) -> str:
        """Validate env vars before attaching them to a project.

Actions: parse (file content to validated pairs), render (pairs to dotenv text and the compact build-runner form)."""  # noqa: E501
        try:
            if action == "parse":
                pairs = envvars.parse_file(filename, content)
                return _ok({"count": len(pairs), "envVars": [v.model_dump() for v in pairs]})
            if action == "render":
                pairs = envvars.coerce(content)
                return _ok({
                    "dotenv": envvars.to_dotenv(pairs),
                    "dispatch": envvars.serialize_for_dispatch(pairs),
                })
        except DockyardError as e:
            return _err(e.message)

        return _err(f"Unknown action: {action}")

    # ── Resources (1) ──────────────────────────────────────────

    @mcp.resource("dy://status")
    async def dy_resource_status() -> str:
        """Record store overview."""
        rt = await _init()
        stats = await rt.store.get_stats()
        return _ok({"store": stats, "operator": operator.email})

    return mcp
