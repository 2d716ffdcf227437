import httpx
import pytest

from channel_hub.marketplaces.executor import RequestExecutor
from channel_hub.marketplaces.results import ErrorType, classify_status
from channel_hub.services.rate_limit import NoopRateLimiter
from channel_hub.services.retry import RetryPolicy


async def _no_sleep(_seconds):
    return None


class CountingLimiter:
    def __init__(self):
        self.calls = []

    async def acquire(self, key, requests_per_minute):
        self.calls.append((key, requests_per_minute))


def _executor(handler, *, attempts=3, limiter=None):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RequestExecutor(
        marketplace="shopify",
        http=http,
        limiter=limiter or NoopRateLimiter(),
        requests_per_minute=40,
        retry=RetryPolicy(attempts=attempts, delay_ms=0, sleep=_no_sleep),
        account_id="mka_test",
    )


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,expected",
    [
        (429, ErrorType.RATE_LIMIT_EXCEEDED),
        (401, ErrorType.AUTHENTICATION_FAILED),
        (403, ErrorType.AUTHORIZATION_FAILED),
        (500, ErrorType.SERVER_ERROR),
        (422, ErrorType.HTTP_ERROR),
    ],
)
async def test_http_failures_are_classified_with_recommendation(status, expected):
    ex = _executor(lambda req: httpx.Response(status, json={"errors": "nope"}), attempts=1)

    res = await ex.execute("GET", "https://demo.myshopify.com/admin/api/2024-07/shop.json")

    assert res.success is False
    assert res.error_type is expected
    assert res.status == status
    assert res.error.startswith(f"HTTP {status}: ")
    if expected is not ErrorType.HTTP_ERROR:
        assert res.recommendation


def test_classify_status_table():
    assert classify_status(401) is ErrorType.AUTHENTICATION_FAILED
    assert classify_status(429) is ErrorType.RATE_LIMIT_EXCEEDED
    assert classify_status(503) is ErrorType.SERVER_ERROR
    assert classify_status(404) is ErrorType.HTTP_ERROR


@pytest.mark.asyncio
async def test_non_json_error_body_falls_back_to_raw_text():
    ex = _executor(lambda req: httpx.Response(502, text="<html>Bad Gateway</html>"), attempts=1)

    res = await ex.execute("GET", "https://example.test/x")

    assert res.error_type is ErrorType.SERVER_ERROR
    assert res.error_details == {"raw": "<html>Bad Gateway</html>"}
    assert "Bad Gateway" in res.error


@pytest.mark.asyncio
async def test_get_is_retried_until_success_and_paced_each_attempt():
    calls = []

    def handler(req):
        calls.append(req)
        if len(calls) < 3:
            return httpx.Response(503, json={"errors": "busy"})
        return httpx.Response(200, json={"ok": True})

    limiter = CountingLimiter()
    ex = _executor(handler, limiter=limiter)

    res = await ex.execute("GET", "https://example.test/things")

    assert res.success is True
    assert res.data == {"ok": True}
    assert len(calls) == 3
    assert limiter.calls == [("shopify", 40)] * 3


@pytest.mark.asyncio
async def test_post_is_not_retried_by_default():
    calls = []

    def handler(req):
        calls.append(req)
        return httpx.Response(500, json={"errors": "boom"})

    res = await _executor(handler).execute("POST", "https://example.test/products.json", json_body={"a": 1})

    assert res.error_type is ErrorType.SERVER_ERROR
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_post_marked_idempotent_is_retried():
    calls = []

    def handler(req):
        calls.append(req)
        return httpx.Response(429 if len(calls) == 1 else 200, json={})

    res = await _executor(handler).execute("POST", "https://example.test/token", form={"a": "b"}, idempotent=True)

    assert res.success is True
    assert len(calls) == 2
    assert calls[0].headers["content-type"] == "application/x-www-form-urlencoded"


@pytest.mark.asyncio
async def test_transport_error_becomes_exception_result():
    def handler(req):
        raise httpx.ConnectError("connection refused", request=req)

    res = await _executor(handler, attempts=2).execute("GET", "https://example.test/x")

    assert res.success is False
    assert res.error_type is ErrorType.EXCEPTION
    assert res.error_details["attempts"] == 2
    assert res.recommendation


@pytest.mark.asyncio
async def test_default_headers_and_user_agent():
    seen = {}

    def handler(req):
        seen.update(req.headers)
        return httpx.Response(204)

    res = await _executor(handler).execute("GET", "https://example.test/x", headers={"X-Extra": "1"})

    assert res.success is True
    assert res.data == {}
    assert seen["accept"] == "application/json"
    assert seen["user-agent"].startswith("channel-hub/")
    assert seen["x-extra"] == "1"


def test_retry_policy_rules():
    p = RetryPolicy(attempts=3, delay_ms=10)
    assert p.should_retry(1, method="GET", status=503)
    assert p.should_retry(1, method="PUT", status=None)
    assert not p.should_retry(1, method="GET", status=404)
    assert not p.should_retry(1, method="PATCH", status=503)
    assert p.should_retry(1, method="PATCH", status=503, idempotent=True)
    assert not p.should_retry(3, method="GET", status=503)
    assert RetryPolicy.none().attempts == 1
    with pytest.raises(ValueError):
        RetryPolicy(attempts=0)
