"""Server-sent-events transport shared by the provider facades."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any

import httpx

from llm_bridge.classify import classify_http_response
from llm_bridge.errors import (
    ApiReadResponseError,
    BuildRequestBody,
    DeserializeResponse,
    HttpSend,
    SerializeRequest,
)


class SseTransport:
    """POSTs a JSON payload and yields the decoded ``data:`` records of the reply."""

    _logger = logging.getLogger(__name__)

    def __init__(
        self,
        provider: str,
        *,
        base_url: str,
        timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.provider = provider
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout_s, transport=transport)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def send(
        self,
        path: str,
        payload: dict[str, Any],
        headers: Mapping[str, str],
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield wire events in arrival order, raising canonical errors on failure."""
        try:
            content = json.dumps(payload)
        except (TypeError, ValueError) as exc:
            raise SerializeRequest(self.provider, exc) from exc

        try:
            request = self._client.build_request("POST", path, headers=dict(headers), content=content)
        except (httpx.InvalidURL, TypeError, ValueError) as exc:
            raise BuildRequestBody(self.provider, exc) from exc

        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise HttpSend(self.provider, exc) from exc

        try:
            if response.status_code >= 400:
                body = await response.aread()
                error = classify_http_response(
                    self.provider, response.status_code, body, response.headers
                )
                self._logger.warning(
                    "%s request failed with status %s: %s",
                    self.provider,
                    response.status_code,
                    type(error).__name__,
                )
                raise error

            async for line in response.aiter_lines():
                line = line.strip()
                # Anthropic also sends "event:" lines; the data record carries the type.
                if not line.startswith("data:"):
                    continue

                data_str = line[len("data:") :].strip()
                if data_str == "[DONE]":
                    return

                try:
                    event = json.loads(data_str)
                except json.JSONDecodeError as exc:
                    raise DeserializeResponse(self.provider, exc) from exc
                if not isinstance(event, dict):
                    self._logger.debug("Skipping non-object streaming record: %s", data_str)
                    continue
                yield event
        except httpx.HTTPError as exc:
            raise ApiReadResponseError(self.provider, exc) from exc
        finally:
            await response.aclose()
