"""``http-request`` module: a guarded outbound HTTP call."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlsplit

import httpx

from ..errors import ModuleConfigurationError
from ..utils.circuit_breaker import CircuitBreakerRegistry
from ..utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., httpx.AsyncClient]


class RetryableHTTPError(Exception):
    """Server-side or throttling response worth retrying."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        super().__init__(
            f"{response.request.method} {response.request.url} returned {response.status_code}"
        )


# transport failures and 5xx/429 are retried and trip the breaker; other 4xx are not
RETRYABLE_ERRORS = (httpx.TransportError, RetryableHTTPError)


def check_response(response: httpx.Response) -> httpx.Response:
    if response.status_code >= 500 or response.status_code == 429:
        raise RetryableHTTPError(response)
    response.raise_for_status()
    return response


def parse_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    if "json" in response.headers.get("content-type", ""):
        return response.json()
    return response.text


class HttpRequestModule:
    """Perform one HTTP request per step invocation.

    Configuration keys: ``url`` (required), ``method`` (GET), ``headers``,
    ``params``, ``json`` (defaults to the step input for POST/PUT/PATCH when
    ``send_input`` is true) and ``timeout``.
    """

    def __init__(
        self,
        retry_policy: RetryPolicy,
        breakers: CircuitBreakerRegistry,
        timeout: float = 30.0,
        client_factory: ClientFactory = httpx.AsyncClient,
    ) -> None:
        self._retry = retry_policy
        self._breakers = breakers
        self._timeout = timeout
        self._client_factory = client_factory

    async def __call__(self, configuration: Dict[str, Any], input_data: Any) -> Any:
        url = configuration.get("url")
        if not url:
            raise ModuleConfigurationError("http-request requires a 'url'")
        method = str(configuration.get("method", "GET")).upper()
        body: Optional[Any] = configuration.get("json")
        if body is None and configuration.get("send_input") and method in ("POST", "PUT", "PATCH"):
            body = input_data

        async def _call() -> Any:
            async with self._client_factory(
                timeout=configuration.get("timeout", self._timeout)
            ) as client:
                response = await client.request(
                    method,
                    url,
                    headers=configuration.get("headers"),
                    params=configuration.get("params"),
                    json=body,
                )
            return parse_body(check_response(response))

        breaker = self._breakers.get(urlsplit(url).netloc or url)
        logger.debug(f"http-request {method} {url}")
        return await breaker.execute(lambda: self._retry.execute(_call))
