"""
HTTP client for a llama-dashboard server.

Speaks two dialects over one httpx.AsyncClient:
  - OpenAI-compatible inference (/v1/chat/completions, /v1/models)
  - the JSON management API (/api/models, /api/config, /api/system)

Every failure leaves here as a llamadash error: ApiError when the server
answered with an error status, TransportError when it never answered.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator
from urllib.parse import quote

import httpx

from llamadash.errors import ApiError, TransportError
from llamadash.types import ChatCompletion, ModelEntry

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_PATH = "/v1/chat/completions"


def _model_path(model_id: str, action: str = "") -> str:
    path = f"/api/models/{quote(model_id, safe='')}"
    return f"{path}/{action}" if action else path


class ApiClient:
    """
    Thin async wrapper over the server's endpoints.
    Construct once and share; close with aclose() or `async with`.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 600,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    @classmethod
    def from_config(cls, cfg: dict, transport: httpx.AsyncBaseTransport | None = None) -> "ApiClient":
        server = cfg.get("server", {})
        return cls(
            base_url=server.get("url", "http://localhost:8080"),
            api_key=server.get("api_key") or "",
            timeout=server.get("timeout", 600),
            transport=transport,
        )

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    def _headers(self) -> dict:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _transport_error(self, method: str, path: str, e: httpx.HTTPError) -> TransportError:
        if isinstance(e, httpx.TimeoutException):
            logger.warning("%s %s timed out after %ss", method, path, self.timeout)
            return TransportError(f"Timeout after {self.timeout}s")
        logger.warning("%s %s failed: %s", method, path, e)
        return TransportError(str(e) or e.__class__.__name__)

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            resp = await self._client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            raise self._transport_error(method, path, e) from e

        if resp.status_code >= 400:
            logger.warning("%s %s returned HTTP %d", method, path, resp.status_code)
            raise ApiError(resp.status_code, resp.text[:200])
        return resp

    async def _json(self, method: str, path: str, **kwargs):
        resp = await self._request(method, path, **kwargs)
        if not resp.content:
            return {}
        return resp.json()

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def stream_chat_completion(self, body: dict) -> AsyncIterator[httpx.Response]:
        """
        Open a streaming chat completion and yield the raw response.
        The body is read by the caller (see llamadash.streaming); httpx
        failures while it reads are re-raised here as TransportError too.
        """
        payload = {**body, "stream": True}
        try:
            async with self._client.stream(
                "POST",
                CHAT_COMPLETIONS_PATH,
                json=payload,
                headers=self._headers(),
            ) as resp:
                if resp.status_code >= 400:
                    raise TransportError(
                        f"HTTP {resp.status_code}: {resp.reason_phrase}",
                        status_code=resp.status_code,
                    )
                yield resp
        except httpx.HTTPError as e:
            raise self._transport_error("POST", CHAT_COMPLETIONS_PATH, e) from e

    async def chat_completion(self, body: dict) -> ChatCompletion:
        """Non-streaming completion: one JSON object with message and usage."""
        data = await self._json("POST", CHAT_COMPLETIONS_PATH, json={**body, "stream": False})
        return ChatCompletion.from_dict(data)

    async def openai_models(self) -> list[str]:
        data = await self._json("GET", "/v1/models")
        return [m["id"] for m in data.get("data", []) if m.get("id")]

    async def health(self) -> bool:
        """True when /health answers 200. Never raises."""
        try:
            await self._request("GET", "/health")
            return True
        except (ApiError, TransportError):
            return False

    # ------------------------------------------------------------------
    # Model management
    # ------------------------------------------------------------------

    async def get_models(self) -> list[ModelEntry]:
        data = await self._json("GET", "/api/models")
        return [ModelEntry.from_dict(item) for item in data]

    async def get_model_details(self, model_id: str) -> ModelEntry:
        data = await self._json("GET", _model_path(model_id, "details"))
        return ModelEntry.from_dict(data)

    async def list_loaded_models(self) -> list[dict]:
        return await self._json("GET", "/api/models/loaded")

    async def load_model(
        self,
        model_id: str,
        ctx_size: int | None = None,
        n_gpu_layers: int | None = None,
    ) -> dict:
        params = {}
        if ctx_size is not None:
            params["ctx_size"] = ctx_size
        if n_gpu_layers is not None:
            params["n_gpu_layers"] = n_gpu_layers
        return await self._json("POST", _model_path(model_id, "load"), json=params)

    async def unload_model(self, model_id: str) -> dict:
        return await self._json("POST", _model_path(model_id, "unload"))

    async def scan_models(self) -> dict:
        return await self._json("POST", "/api/models/scan")

    async def toggle_favorite(self, model_id: str) -> dict:
        return await self._json("PUT", _model_path(model_id, "favorite"))

    # ------------------------------------------------------------------
    # Tokenizer, config, system
    # ------------------------------------------------------------------

    async def tokenize(self, content: str, add_special: bool = False, parse_special: bool = False) -> list[int]:
        data = await self._json(
            "POST",
            "/tokenize",
            json={"content": content, "add_special": add_special, "parse_special": parse_special},
        )
        return data.get("tokens", [])

    async def detokenize(self, tokens: list[int]) -> str:
        data = await self._json("POST", "/detokenize", json={"tokens": tokens})
        return data.get("content", "")

    async def get_server_config(self) -> dict:
        return await self._json("GET", "/api/config")

    async def update_server_config(self, **changes) -> dict:
        return await self._json("PUT", "/api/config", json=changes)

    async def system_info(self) -> dict:
        return await self._json("GET", "/api/system/info")
