from __future__ import annotations

import asyncio
import json

import httpx

from boundload.config import LoadConfig
from boundload.outcome import Outcome
from boundload.schemas import SetParams, SetPayload


class HttpRequestIssuer:
    """Start one POST per sequence number against the configured instance.

    The client is built once, so basic-auth credentials and the connection
    pool (capped at ``max_sockets``) are shared by every request of the run.
    """

    def __init__(
        self,
        config: LoadConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._params = SetParams(from_address=config.from_address).model_dump(by_alias=True)
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            auth=(config.username, config.password),
            limits=httpx.Limits(
                max_connections=config.max_sockets,
                max_keepalive_connections=config.max_sockets,
            ),
            timeout=config.request_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "HttpRequestIssuer":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def issue(self, sequence: int) -> asyncio.Task[Outcome]:
        # A malformed URL raises here, at admission, not as a per-request failure.
        request = self._client.build_request(
            "POST",
            self._config.resource_path,
            json=SetPayload.for_sequence(sequence).model_dump(),
            params=self._params,
        )
        return asyncio.ensure_future(self._send(sequence, request))

    async def _send(self, sequence: int, request: httpx.Request) -> Outcome:
        try:
            response = await self._client.send(request)
        except httpx.HTTPError as exc:
            return Outcome.fail(sequence, None, str(exc) or type(exc).__name__)

        if response.is_success:
            return Outcome.ok(sequence, response.status_code)
        return Outcome.fail(sequence, response.status_code, _describe_failure(response))


def _describe_failure(response: httpx.Response) -> str:
    """Message for a non-2xx response.

    A body is rendered as compact JSON: parsed JSON as-is, anything else as a
    quoted JSON string. Without a body the generic status message is used.
    """
    text = response.text
    if not text:
        return f"Request failed with status code {response.status_code}"
    try:
        data = response.json()
    except ValueError:
        data = text
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)
