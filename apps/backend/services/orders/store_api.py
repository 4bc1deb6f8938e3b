from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from apps.backend.services.settings import Settings

from .errors import StoreRequestError

log = logging.getLogger("pointvest.store_api")

R = TypeVar("R", bound=BaseModel)


class StoreApiClient:
    """
    Shared JSON client for the store endpoints (wallet, orders, ledger,
    notification sinks).

    Design goals:
    - One pooled httpx.AsyncClient per process
    - Per-call timeout, bounded retries with linear backoff
    - 429 Retry-After awareness
    - Non-idempotent calls are only retried when the request never left
      the process (connect errors)
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 10.0,
        max_retries: int = 2,
        retry_backoff_seconds: float = 0.5,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not base_url:
            raise ValueError("StoreApiClient requires base_url")

        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = float(timeout_seconds)
        self.max_retries = max(0, int(max_retries))
        self.retry_backoff_seconds = max(0.0, float(retry_backoff_seconds))
        self._http = http_client
        self._owns_http = http_client is None

    @classmethod
    def from_settings(cls, cfg: Settings) -> "StoreApiClient":
        return cls(
            cfg.store_api_base_url,
            timeout_seconds=cfg.store_api_timeout_seconds,
            max_retries=cfg.store_api_max_retries,
            retry_backoff_seconds=cfg.store_api_retry_backoff_seconds,
        )

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_seconds,
                headers={"Content-Type": "application/json", "Accept": "application/json"},
            )
        return self._http

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    # ---------------------------------------------------------
    # Low-level request handler
    # ---------------------------------------------------------
    async def post(
        self,
        endpoint: str,
        payload: Dict[str, Any],
        *,
        idempotent: bool = True,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        POST a JSON body and return the decoded JSON object.

        4xx bodies are returned as-is (the store explains failures in
        `success`/`error`); 5xx, 429 and transport errors are retried and then
        raised as StoreRequestError.
        """
        path = "/" + endpoint.lstrip("/")
        attempts = 1 + self.max_retries
        last_error = "no attempt made"
        last_status: Optional[int] = None

        for attempt in range(1, attempts + 1):
            try:
                response = await self._client().post(
                    self.base_url + path,
                    json=payload,
                    timeout=timeout if timeout is not None else self.timeout_seconds,
                )
            except (httpx.ConnectError, httpx.ConnectTimeout) as e:
                last_error, last_status = f"connect failed: {e}", None
            except httpx.HTTPError as e:
                last_error, last_status = f"transport error: {e}", None
                if not idempotent:
                    break
            else:
                last_status = response.status_code
                if response.status_code == 429 or response.status_code >= 500:
                    last_error = f"HTTP {response.status_code}"
                    if not idempotent and response.status_code != 429:
                        break
                    if response.status_code == 429 and attempt < attempts:
                        await asyncio.sleep(self._retry_after(response))
                        continue
                else:
                    return self._decode(endpoint, response)

            if attempt < attempts:
                log.info(f"[store_api] retrying {endpoint} (attempt {attempt + 1}/{attempts}): {last_error}")
                await asyncio.sleep(self.retry_backoff_seconds * attempt)

        raise StoreRequestError(endpoint, last_error, last_status)

    async def call(
        self,
        endpoint: str,
        request: BaseModel,
        response_model: Type[R],
        *,
        idempotent: bool = True,
        timeout: Optional[float] = None,
    ) -> R:
        """Typed round trip: validated request in, validated response out."""
        body = await self.post(
            endpoint,
            request.model_dump(mode="json"),
            idempotent=idempotent,
            timeout=timeout,
        )
        try:
            return response_model.model_validate(body)
        except ValidationError as e:
            raise StoreRequestError(endpoint, f"unexpected response shape: {e.error_count()} error(s)")

    # ---------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------
    def _retry_after(self, response: httpx.Response) -> float:
        retry_after = response.headers.get("Retry-After")
        try:
            return float(retry_after) if retry_after else self.retry_backoff_seconds
        except ValueError:
            return self.retry_backoff_seconds

    @staticmethod
    def _decode(endpoint: str, response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            raise StoreRequestError(endpoint, f"non-JSON response (HTTP {response.status_code})", response.status_code)
        if not isinstance(data, dict):
            raise StoreRequestError(endpoint, "response is not a JSON object", response.status_code)
        return data
