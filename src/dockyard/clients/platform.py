"""Yandex Cloud Serverless Containers status probe."""

from __future__ import annotations

import logging
import time

import httpx

from dockyard.clients.base import PlatformProbe, ProbeResult, ProbeState
from dockyard.config import Config
from dockyard.errors import ProbeUnavailable

logger = logging.getLogger(__name__)

# IAM tokens live 12h; refresh an hour early
_TOKEN_TTL_SECONDS = 11 * 60 * 60
_METADATA_TIMEOUT = 3.0

_STATE_MAP = {
    "ACTIVE": ProbeState.ACTIVE,
    "ERROR": ProbeState.ERROR,
    "STOPPED": ProbeState.ERROR,
}


class YandexContainerProbe(PlatformProbe):
    """Looks up a container by name in one folder."""

    def __init__(
        self,
        *,
        folder_id: str,
        iam_token: str = "",
        api_url: str = "https://serverless-containers.api.cloud.yandex.net/containers/v1",
        metadata_url: str = (
            "http://169.254.169.254/computeMetadata/v1/instance/service-accounts/default/token"
        ),
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._folder_id = folder_id
        self._static_token = iam_token
        self._api_url = api_url.rstrip("/")
        self._metadata_url = metadata_url
        self._cached_token: tuple[str, float] | None = None
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def from_config(
        cls, config: Config, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> YandexContainerProbe:
        return cls(
            folder_id=config.yc_folder_id,
            iam_token=config.yc_iam_token,
            api_url=config.yc_api_url,
            metadata_url=config.yc_metadata_url,
            timeout=config.probe_timeout,
            transport=transport,
        )

    async def lookup(self, unit_name: str) -> ProbeResult:
        if not self._folder_id:
            raise ProbeUnavailable("Platform folder is not configured")

        token = await self._iam_token()
        try:
            response = await self._client.get(
                f"{self._api_url}/containers",
                params={"folderId": self._folder_id},
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            raise ProbeUnavailable(f"Platform unreachable: {e}") from e

        if response.status_code >= 400:
            raise ProbeUnavailable(f"Platform returned {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise ProbeUnavailable("Platform returned a non-JSON body") from e
        if not isinstance(data, dict):
            raise ProbeUnavailable("Platform returned an unexpected payload")

        containers = data.get("containers") or []
        if not isinstance(containers, list):
            raise ProbeUnavailable("Platform returned an unexpected payload")
        containers = [c for c in containers if isinstance(c, dict)]
        container = next((c for c in containers if c.get("name") == unit_name), None)
        if container is None:
            return ProbeResult(ProbeState.ABSENT)

        state = _STATE_MAP.get(str(container.get("status", "")).upper(), ProbeState.ABSENT)
        return ProbeResult(state, url=container.get("url"))

    async def _iam_token(self) -> str:
        if self._static_token:
            return self._static_token
        if self._cached_token and self._cached_token[1] > time.monotonic():
            return self._cached_token[0]

        try:
            response = await self._client.get(
                self._metadata_url,
                headers={"Metadata-Flavor": "Google"},
                timeout=_METADATA_TIMEOUT,
            )
            response.raise_for_status()
            token = response.json()["access_token"]
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.warning("Failed to get IAM token from metadata service: %s", e)
            raise ProbeUnavailable("No IAM token available") from e

        self._cached_token = (token, time.monotonic() + _TOKEN_TTL_SECONDS)
        return token

    async def aclose(self) -> None:
        await self._client.aclose()
