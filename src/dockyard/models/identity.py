"""Caller identity as handed over by the identity provider."""

from __future__ import annotations

from pydantic import BaseModel

ANONYMOUS = "anonymous"


class Identity(BaseModel):
    """A verified caller. ``login`` is a display handle, never an authority on its own."""

    email: str
    login: str | None = None
    role: str = "user"
    uid: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
