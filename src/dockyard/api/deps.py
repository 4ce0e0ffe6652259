"""Request dependencies: runtime access and caller identity."""

from __future__ import annotations

from fastapi import Depends, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from dockyard.auth.jwt import TokenExpiredError, TokenInvalidError, identity_from_token
from dockyard.bootstrap import Runtime
from dockyard.core.reconciler import ReconciliationEngine
from dockyard.errors import StoreUnavailable, Unauthorized
from dockyard.models.identity import Identity

optional_security = HTTPBearer(auto_error=False)


def get_runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise StoreUnavailable("Dockyard is still starting")
    return runtime


def get_engine(runtime: Runtime = Depends(get_runtime)) -> ReconciliationEngine:
    return runtime.engine


async def optional_identity(
    runtime: Runtime = Depends(get_runtime),
    credentials: HTTPAuthorizationCredentials | None = Security(optional_security),
) -> Identity | None:
    """Identity from a Bearer token, or None when no token was sent.

    A token that is present but invalid is always rejected.
    """
    if credentials is None:
        return None
    try:
        return identity_from_token(credentials.credentials, runtime.config.jwt_secret)
    except TokenExpiredError as e:
        raise Unauthorized("Token expired") from e
    except TokenInvalidError as e:
        raise Unauthorized("Invalid token") from e
