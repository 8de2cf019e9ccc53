"""httpx-backed implementation of the HttpTransport port."""
from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from realtime_sync.application.exceptions import TransientRequestError, error_for_status

logger = logging.getLogger(__name__)


class HttpxTransport:
    def __init__(
        self,
        base_url: str,
        *,
        token: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url, timeout=timeout, headers=headers, transport=transport,
        )

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        try:
            response = await self._client.request(
                method, endpoint, params=dict(params) if params else None, json=json,
            )
        except httpx.TimeoutException as exc:
            raise TransientRequestError(f"{method} {endpoint} timed out") from exc
        except httpx.TransportError as exc:
            raise TransientRequestError(f"{method} {endpoint} failed: {exc}") from exc

        if response.is_error:
            logger.debug("%s %s -> %d", method, endpoint, response.status_code)
            raise error_for_status(response.status_code, _detail(response))

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return response.text
