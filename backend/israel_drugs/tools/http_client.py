from __future__ import annotations

import json
import logging
import random
import time
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any
from urllib import parse, request
from urllib.error import HTTPError, URLError

from israel_drugs.tools.errors import ToolExecutionError

if TYPE_CHECKING:
    from israel_drugs.engine.cancellation import CancellationToken


logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 409, 425, 429, 500, 502, 503, 504}


@dataclass(frozen=True)
class HttpResponse:
    url: str
    status_code: int
    headers: dict[str, str]
    body: bytes


class SimpleHttpClient:
    """Stateless urllib client; one instance is shared by concurrent requests."""

    def __init__(
        self,
        *,
        timeout_seconds: int = 30,
        max_retries: int = 2,
        user_agent: str = "israel-drugs-agent/0.1",
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.user_agent = user_agent

    def _retry_after_seconds(self, headers: dict[str, Any] | None) -> float | None:
        if not headers:
            return None
        raw = None
        for key in ("retry-after", "Retry-After"):
            if key in headers:
                raw = headers.get(key)
                break
        if raw is None:
            return None
        text = str(raw).strip()
        if not text:
            return None
        try:
            return max(float(text), 0.0)
        except ValueError:
            pass
        try:
            dt = parsedate_to_datetime(text)
        except (TypeError, ValueError):
            return None
        return max(dt.timestamp() - time.time(), 0.0)

    def _backoff_seconds(self, *, attempt: int, retry_after_seconds: float | None = None) -> float:
        if retry_after_seconds is not None:
            return max(0.0, retry_after_seconds + random.uniform(0.0, 0.25))
        base = min(0.5 * (2**attempt), 8.0)
        return base + random.uniform(0.0, 0.25)

    def _build_url(self, url: str, params: dict[str, Any] | None = None) -> str:
        if not params:
            return url
        clean_params: dict[str, Any] = {k: v for k, v in params.items() if v is not None}
        encoded = parse.urlencode(clean_params, doseq=True)
        separator = "&" if "?" in url else "?"
        return f"{url}{separator}{encoded}" if encoded else url

    def _sleep(self, delay: float, cancel: CancellationToken | None) -> None:
        if cancel is not None:
            remaining = cancel.remaining()
            if remaining is not None:
                delay = min(delay, remaining)
        time.sleep(delay)

    def request(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
        cancel: CancellationToken | None = None,
    ) -> HttpResponse:
        full_url = self._build_url(url, params)
        req_headers = {
            "User-Agent": self.user_agent,
            "Accept": "application/json, text/plain, */*",
        }
        if headers:
            req_headers.update(headers)

        body: bytes | None = None
        if json_body is not None:
            body = json.dumps(json_body, ensure_ascii=False).encode("utf-8")
            req_headers["Content-Type"] = "application/json"

        last_exc: Exception | None = None
        retry_meta: dict[str, Any] = {
            "attempts": 0,
            "retry_count": 0,
            "delays_seconds": [],
            "retry_after_seconds": None,
        }
        for attempt in range(self.max_retries + 1):
            if cancel is not None:
                cancel.raise_if_cancelled(stage=f"http {method.upper()} {url}")
            timeout = cancel.bound_timeout(self.timeout_seconds) if cancel is not None else self.timeout_seconds
            try:
                retry_meta["attempts"] = attempt + 1
                req = request.Request(full_url, headers=req_headers, data=body, method=method.upper())
                with request.urlopen(req, timeout=timeout) as resp:
                    response_headers = {k.lower(): v for k, v in dict(resp.headers).items()}
                    return HttpResponse(
                        url=full_url,
                        status_code=int(resp.status),
                        headers=response_headers,
                        body=resp.read(),
                    )
            except HTTPError as exc:
                retryable = exc.code in RETRYABLE_STATUS_CODES
                retry_after = self._retry_after_seconds(dict(exc.headers or {}))
                if retry_after is not None:
                    retry_meta["retry_after_seconds"] = retry_after
                if retryable and attempt < self.max_retries:
                    delay = self._backoff_seconds(attempt=attempt, retry_after_seconds=retry_after)
                    retry_meta["retry_count"] = int(retry_meta["retry_count"]) + 1
                    retry_meta["delays_seconds"].append(round(delay, 3))
                    logger.warning("HTTP %s from %s, retrying in %.2fs", exc.code, full_url, delay)
                    self._sleep(delay, cancel)
                    continue
                if exc.code == 404:
                    raise ToolExecutionError(code="NOT_FOUND", message=f"Upstream resource not found: {full_url}") from exc
                if exc.code == 429:
                    raise ToolExecutionError(
                        code="RATE_LIMIT",
                        message=f"Rate limited by upstream source: {full_url}",
                        retryable=True,
                        details={"url": full_url, "status_code": 429, "retry": retry_meta},
                    ) from exc
                raise ToolExecutionError(
                    code="UPSTREAM_ERROR",
                    message=f"HTTP {exc.code} from upstream source",
                    retryable=retryable,
                    details={"url": full_url, "status_code": exc.code, "retry": retry_meta},
                ) from exc
            except (URLError, TimeoutError) as exc:
                last_exc = exc
                if attempt < self.max_retries:
                    delay = self._backoff_seconds(attempt=attempt)
                    retry_meta["retry_count"] = int(retry_meta["retry_count"]) + 1
                    retry_meta["delays_seconds"].append(round(delay, 3))
                    logger.warning("Network error contacting %s (%s), retrying in %.2fs", full_url, exc, delay)
                    self._sleep(delay, cancel)
                    continue
                raise ToolExecutionError(
                    code="UPSTREAM_ERROR",
                    message="Network error while contacting upstream source",
                    retryable=True,
                    details={"url": full_url, "retry": retry_meta},
                ) from exc

        raise ToolExecutionError(
            code="UPSTREAM_ERROR",
            message="Unexpected HTTP client failure",
            details={"url": full_url, "last_error": str(last_exc) if last_exc else None, "retry": retry_meta},
        )

    def _decode_json(self, resp: HttpResponse) -> Any:
        text = resp.body.decode("utf-8", errors="replace")
        if not text.strip():
            raise ToolExecutionError(
                code="UPSTREAM_ERROR",
                message="Upstream returned an empty response",
                details={"url": resp.url, "status_code": resp.status_code},
            )
        try:
            return json.loads(text)
        except ValueError as exc:
            raise ToolExecutionError(
                code="UPSTREAM_ERROR",
                message="Upstream returned non-JSON payload",
                details={"url": resp.url, "status_code": resp.status_code, "preview": text[:200]},
            ) from exc

    def get_json(
        self,
        *,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        cancel: CancellationToken | None = None,
    ) -> tuple[Any, dict[str, str]]:
        resp = self.request(method="GET", url=url, params=params, headers=headers, cancel=cancel)
        return self._decode_json(resp), resp.headers

    def post_json(
        self,
        *,
        url: str,
        json_body: dict[str, Any],
        headers: dict[str, str] | None = None,
        cancel: CancellationToken | None = None,
    ) -> tuple[Any, dict[str, str]]:
        resp = self.request(method="POST", url=url, headers=headers, json_body=json_body, cancel=cancel)
        return self._decode_json(resp), resp.headers
