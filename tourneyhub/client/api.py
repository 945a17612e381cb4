"""Thin httpx wrapper for the TourneyHub JSON API."""

from __future__ import annotations

import json
import logging
from typing import Any, Literal, Optional

import httpx

logger = logging.getLogger(__name__)

HTML_ERROR_MESSAGE = "Server returned an HTML response instead of JSON. Please try again."
UNKNOWN_ERROR_MESSAGE = "An unknown error occurred"

Unauthorized = Literal["throw", "return_none"]


class ApiError(Exception):
    """Non-2xx response from the API."""

    def __init__(self, status_code: int, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.code = code

    def __repr__(self) -> str:
        return f"ApiError({self.status_code}, {self.message!r}, code={self.code!r})"


def error_from_response(response: httpx.Response) -> ApiError:
    """Build an ``ApiError`` with the most useful message the body offers."""

    text = response.text or ""
    message = response.reason_phrase or UNKNOWN_ERROR_MESSAGE
    code = None
    if text:
        lowered = text.lstrip()[:200].lower()
        if lowered.startswith("<!doctype") or "<html" in lowered:
            message = HTML_ERROR_MESSAGE
        else:
            try:
                body = json.loads(text)
            except ValueError:
                message = text
            else:
                if isinstance(body, dict):
                    detail = body.get("detail", body.get("message"))
                    if detail is not None:
                        message = detail if isinstance(detail, str) else json.dumps(detail)
                    code = body.get("code")
                else:
                    message = text
    return ApiError(response.status_code, message or UNKNOWN_ERROR_MESSAGE, code)


class ApiClient:
    """Authenticated JSON requests against ``base_url``.

    ``transport`` lets tests route requests to an ASGI app or a mock handler.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ) -> None:
        self.token = token
        self._client = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        data: Optional[dict] = None,
        params: Optional[dict] = None,
        on_401: Unauthorized = "throw",
    ) -> Any:
        response = await self._client.request(
            method, path, json=json, data=data, params=params, headers=self._headers()
        )
        if response.status_code == 401 and on_401 == "return_none":
            return None
        if response.is_error:
            error = error_from_response(response)
            logger.debug("%s %s -> %s %s", method, path, error.status_code, error.message)
            raise error
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(
                response.status_code, "Failed to parse server response. Please try again."
            ) from exc

    async def get(self, path: str, **kwargs) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs) -> Any:
        return await self.request("POST", path, **kwargs)

    async def patch(self, path: str, **kwargs) -> Any:
        return await self.request("PATCH", path, **kwargs)

    async def delete(self, path: str, **kwargs) -> Any:
        return await self.request("DELETE", path, **kwargs)

    async def login(self, identifier: str, password: str) -> str:
        body = await self.post(
            "/api/auth/login", data={"username": identifier, "password": password}
        )
        self.token = body["access_token"]
        return self.token
