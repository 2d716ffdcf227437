from __future__ import annotations

import logging
import time
from typing import Any, Callable, Literal, Mapping

import httpx

from channel_hub.marketplaces.results import AdapterResult, ErrorType, classify_status
from channel_hub.services.rate_limit import RateLimiter
from channel_hub.services.retry import RetryPolicy

log = logging.getLogger(__name__)

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]

USER_AGENT = "channel-hub/{version} (marketplace-integration)"
DEFAULT_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
}

# pulls a readable message out of a marketplace error body
ErrorExtractor = Callable[[Any], "str | None"]


def _is_json_response(resp: httpx.Response) -> bool:
    ct = (resp.headers.get("content-type") or "").lower()
    return "application/json" in ct or ct.endswith("+json")


def _cap_text(s: str, *, max_chars: int) -> str:
    if len(s) <= max_chars:
        return s
    return s[:max_chars] + f"...(truncated, {len(s)} chars)"


def default_error_message(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    for key in ("message", "error_description", "error", "errors"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
        if isinstance(value, dict) and value:
            return "; ".join(f"{k}: {v}" for k, v in value.items())
        if isinstance(value, list) and value:
            first = value[0]
            if isinstance(first, dict):
                return str(first.get("message") or first.get("longMessage") or first.get("code") or first)
            return str(first)
    return None


class RequestExecutor:
    """
    Executes one outbound marketplace call.

    - Paces through the shared rate limiter (keyed by marketplace).
    - Merges default headers, auth headers and the fixed user agent.
    - Retries transport errors and 408/429/5xx for idempotent requests only.
    - Never raises for HTTP or transport failures: returns an AdapterResult.
    """

    def __init__(
        self,
        *,
        marketplace: str,
        http: httpx.AsyncClient,
        limiter: RateLimiter,
        requests_per_minute: int | None,
        retry: RetryPolicy | None = None,
        timeout_seconds: float = 30.0,
        account_id: str | None = None,
        error_extractor: ErrorExtractor | None = None,
        version: str = "0.1.0",
        max_response_body_chars: int = 20_000,
    ):
        self.marketplace = marketplace
        self.account_id = account_id
        self.requests_per_minute = requests_per_minute
        self.retry = retry or RetryPolicy()
        self._http = http
        self._limiter = limiter
        self._timeout = httpx.Timeout(timeout_seconds)
        self._extract = error_extractor or default_error_message
        self._user_agent = USER_AGENT.format(version=version)
        self._max_body = max_response_body_chars

    def headers(self, extra: Mapping[str, str] | None = None) -> dict[str, str]:
        h = dict(DEFAULT_HEADERS)
        h["User-Agent"] = self._user_agent
        if extra:
            # caller wins
            h.update(dict(extra))
        return h

    def _parse_body(self, resp: httpx.Response) -> Any:
        if not resp.content:
            return {}
        if _is_json_response(resp):
            try:
                return resp.json()
            except ValueError:
                pass
        return {"raw": _cap_text(resp.text, max_chars=self._max_body)}

    async def execute(
        self,
        method: HttpMethod,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, Any] | None = None,
        json_body: Any = None,
        form: Mapping[str, str] | None = None,
        content: bytes | None = None,
        idempotent: bool | None = None,
    ) -> AdapterResult:
        h = self.headers(headers)
        if form is not None:
            h["Content-Type"] = "application/x-www-form-urlencoded"

        attempt = 0
        t0 = time.perf_counter()
        while True:
            attempt += 1
            await self._limiter.acquire(self.marketplace, self.requests_per_minute)

            try:
                resp = await self._http.request(
                    method,
                    url,
                    headers=h,
                    params={k: v for k, v in (params or {}).items() if v is not None} or None,
                    json=json_body if form is None and content is None else None,
                    data=dict(form) if form is not None else None,
                    content=content,
                    timeout=self._timeout,
                )
            except httpx.HTTPError as e:
                if self.retry.should_retry(attempt, method=method, status=None, idempotent=idempotent):
                    log.warning(
                        "marketplace=%s account=%s %s %s transport error, retrying attempt=%s error=%s",
                        self.marketplace, self.account_id, method, url, attempt, e,
                    )
                    await self.retry.wait(attempt)
                    continue
                duration_ms = int((time.perf_counter() - t0) * 1000)
                log.error(
                    "marketplace=%s account=%s %s %s failed after %s attempt(s) duration_ms=%s error=%s",
                    self.marketplace, self.account_id, method, url, attempt, duration_ms, e,
                )
                return AdapterResult.fail(
                    f"Request failed: {e}" if str(e) else f"Request failed: {type(e).__name__}",
                    error_type=ErrorType.EXCEPTION,
                    error_details={"exception": type(e).__name__, "attempts": attempt},
                    duration_ms=duration_ms,
                )

            if not resp.is_success and self.retry.should_retry(
                attempt, method=method, status=resp.status_code, idempotent=idempotent
            ):
                log.warning(
                    "marketplace=%s account=%s %s %s status=%s, retrying attempt=%s",
                    self.marketplace, self.account_id, method, url, resp.status_code, attempt,
                )
                await self.retry.wait(attempt)
                continue
            break

        duration_ms = int((time.perf_counter() - t0) * 1000)
        body = self._parse_body(resp)

        if resp.is_success:
            log.info(
                "marketplace=%s account=%s %s %s status=%s duration_ms=%s",
                self.marketplace, self.account_id, method, url, resp.status_code, duration_ms,
            )
            return AdapterResult.ok(
                body,
                status=resp.status_code,
                duration_ms=duration_ms,
                next_link=resp.links.get("next", {}).get("url"),
            )

        error_type = classify_status(resp.status_code)
        message = self._extract(body) or (body.get("raw") if isinstance(body, dict) else None) or f"HTTP {resp.status_code}"
        log.warning(
            "marketplace=%s account=%s %s %s status=%s error_type=%s duration_ms=%s",
            self.marketplace, self.account_id, method, url, resp.status_code, error_type.value, duration_ms,
        )
        return AdapterResult.fail(
            f"HTTP {resp.status_code}: {message}",
            error_type=error_type,
            error_details=body,
            status=resp.status_code,
            duration_ms=duration_ms,
        )
