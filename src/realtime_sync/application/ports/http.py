from __future__ import annotations

from typing import Any, Mapping, Protocol


class HttpTransport(Protocol):
    """Executes one REST round trip.

    Returns the decoded JSON body (None when empty). Raises a
    ``RequestError`` subclass on failure.
    """

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
    ) -> Any: ...

    async def aclose(self) -> None: ...
