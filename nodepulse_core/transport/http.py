"""HTTP client for the JSON-RPC endpoint."""

from __future__ import annotations

from typing import Any

import aiohttp

from ..errors import (
    NodepulseConnectionError,
    NodepulseProtocolError,
    NodepulseResponseError,
    NodepulseTimeout,
)


class NodepulseHttpClient:
    """HTTP client wrapper posting JSON-RPC envelopes to one endpoint."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        url: str,
        *,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._session = session
        self._url = url
        self._headers = dict(headers or {})

    @property
    def url(self) -> str:
        return self._url

    async def post_json(
        self,
        payload: dict[str, Any] | list[Any],
        *,
        timeout: float | None = None,
        expect_body: bool = True,
    ) -> Any:
        """POST payload as JSON and return the decoded response body.

        Args:
            payload: Request envelope or batch.
            timeout: Total request timeout in seconds (None = no limit).
            expect_body: When False the body is not read and None is
                returned (notifications).

        Raises:
            NodepulseResponseError: Non-2xx status.
            NodepulseProtocolError: Body is not valid JSON.
            NodepulseTimeout: Request timed out.
            NodepulseConnectionError: Network failure.
        """
        try:
            async with self._session.post(
                self._url,
                json=payload,
                headers=self._headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                if not 200 <= resp.status < 300:
                    raise NodepulseResponseError(
                        resp.status, f"HTTP {resp.status}: {resp.reason}"
                    )
                if not expect_body:
                    return None
                try:
                    return await resp.json(content_type=None)
                except ValueError as err:
                    raise NodepulseProtocolError(
                        "Response body is not valid JSON"
                    ) from err
        except TimeoutError as err:
            raise NodepulseTimeout("RPC request timed out") from err
        except aiohttp.ClientError as err:
            raise NodepulseConnectionError("RPC request failed") from err
