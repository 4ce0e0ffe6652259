"""Error taxonomy shared by the engine, the HTTP app and the MCP server."""

from __future__ import annotations


class DockyardError(Exception):
    """Base class for all errors surfaced to callers."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class Unauthorized(DockyardError):
    """No identity, an invalid token, or a wrong shared secret."""

    status_code = 401
    code = "unauthorized"


class Forbidden(DockyardError):
    """Authenticated, but neither owner nor admin."""

    status_code = 403
    code = "forbidden"


class NotFound(DockyardError):
    status_code = 404
    code = "not_found"


class InvalidInput(DockyardError):
    status_code = 400
    code = "invalid_input"


class AlreadyExists(InvalidInput):
    status_code = 409
    code = "already_exists"


class DispatchFailed(DockyardError):
    """The build runner could not be reached or rejected the dispatch."""

    status_code = 502
    code = "dispatch_failed"


class ProbeUnavailable(DockyardError):
    """The hosting platform could not be queried. Never fatal."""

    status_code = 503
    code = "probe_unavailable"


class StoreUnavailable(DockyardError):
    """The record store is unreachable. Fatal for the current request."""

    status_code = 503
    code = "store_unavailable"


class SourceControlUnavailable(DockyardError):
    """The source-control host could not list repositories."""

    status_code = 502
    code = "source_control_unavailable"
