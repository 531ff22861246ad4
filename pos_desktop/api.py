"""
Server boundary for the register agent.

Every call is converted into an `ApiResult` at this boundary: callers never see
raw transport exceptions. The blocking urllib call runs in a worker thread so the
event loop stays responsive while a request is in flight.
"""

import asyncio
import http.client
import json
import socket
from dataclasses import dataclass
from typing import Any, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .log import json_log

DEFAULT_TIMEOUT_S = 30
# Validation-style refusals. Any other non-2xx (404, 408, 429, 5xx) is treated like an outage.
REJECTION_STATUSES = {400, 409, 422}


@dataclass
class ApiResult:
    ok: bool
    status: Optional[int] = None
    data: Any = None
    error: Optional[str] = None

    @property
    def rejected(self) -> bool:
        # The server answered and refused the payload. Distinct from "could not reach it".
        return self.status in REJECTION_STATUSES and self.data is not None


def _is_json(content_type: str) -> bool:
    return "application/json" in (content_type or "").lower()


class ApiClient:
    def __init__(self, base_url: str, timeout_s: float = DEFAULT_TIMEOUT_S, headers: Optional[dict] = None):
        self.base_url = (base_url or "").strip().rstrip("/")
        self.timeout_s = float(timeout_s or DEFAULT_TIMEOUT_S)
        self.headers = dict(headers or {})

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request_blocking(self, method: str, path: str, payload=None, timeout_s: Optional[float] = None) -> ApiResult:
        url = self._url(path)
        timeout = float(timeout_s or self.timeout_s)
        data = None
        headers = {"Accept": "application/json", **self.headers}
        if payload is not None:
            data = json.dumps(payload).encode("utf-8")
            headers["Content-Type"] = "application/json"
        req = Request(url, data=data, headers=headers, method=method)
        try:
            with urlopen(req, timeout=timeout) as resp:
                status = resp.status
                ctype = resp.headers.get("Content-Type") or ""
                raw = resp.read()
        except HTTPError as ex:
            status = ex.code
            ctype = ex.headers.get("Content-Type") if ex.headers else ""
            try:
                raw = ex.read()
            except (OSError, http.client.HTTPException):
                raw = b""
            parsed = None
            if _is_json(ctype) and raw:
                try:
                    parsed = json.loads(raw.decode("utf-8"))
                except ValueError:
                    parsed = None
            detail = parsed.get("detail") if isinstance(parsed, dict) else None
            json_log("error", "api.http_error", method=method, url=url, status=status, detail=detail)
            return ApiResult(ok=False, status=status, data=parsed, error=str(detail or ex.reason or status))
        except (socket.timeout, TimeoutError):
            json_log("error", "api.timeout", method=method, url=url, timeout_s=timeout)
            return ApiResult(ok=False, error=f"timed out after {timeout}s")
        except http.client.HTTPException as ex:
            # Garbled status line, connection cut mid-body, server hung up.
            json_log("error", "api.protocol_error", method=method, url=url, error=repr(ex))
            return ApiResult(ok=False, error=f"protocol error: {ex!r}")
        except (URLError, OSError) as ex:
            json_log("error", "api.fetch_error", method=method, url=url, error=str(ex))
            return ApiResult(ok=False, error=str(ex))

        if not _is_json(ctype):
            # Usually a proxy/SPA fallback page instead of the API.
            json_log(
                "error",
                "api.unexpected_content_type",
                method=method,
                url=url,
                status=status,
                content_type=ctype,
                body_preview=raw[:100].decode("utf-8", errors="replace"),
            )
            return ApiResult(ok=False, status=status, error=f"expected JSON, got {ctype or 'no content type'}")
        try:
            # UnicodeDecodeError is a ValueError: a non-UTF-8 body is malformed JSON.
            parsed = json.loads(raw.decode("utf-8")) if raw else None
        except ValueError as ex:
            json_log("error", "api.malformed_json", method=method, url=url, status=status, error=str(ex))
            return ApiResult(ok=False, status=status, error="malformed JSON body")
        return ApiResult(ok=True, status=status, data=parsed)

    async def request(self, method: str, path: str, payload=None, timeout_s: Optional[float] = None) -> ApiResult:
        return await asyncio.to_thread(self._request_blocking, method, path, payload, timeout_s)

    async def get_json(self, path: str, timeout_s: Optional[float] = None):
        res = await self.request("GET", path, timeout_s=timeout_s)
        return res.data if res.ok else None

    async def post_json(self, path: str, payload: dict, timeout_s: Optional[float] = None) -> ApiResult:
        return await self.request("POST", path, payload, timeout_s=timeout_s)
