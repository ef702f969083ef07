import asyncio

import httpx
import pytest

from fee_tracker.core.errors import ProviderError, RateLimitError
from fee_tracker.services.etherscan import (
    PAGE_SIZE_CAP,
    EtherscanClient,
    decode_method,
    parse_envelope,
)
from fee_tracker.services.models import Data, EmptySuccess, Error


def make_client(handler, sleep, **kwargs):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return EtherscanClient(
        api_key=kwargs.pop("api_key", "test-key"),
        base_url="https://explorer.test/v2/api",
        client=http,
        backoff_seconds=1.0,
        sleep=sleep,
        **kwargs,
    )


def test_envelope_with_rows_is_data():
    envelope = parse_envelope({"status": "1", "message": "OK", "result": [{"hash": "0x1"}]})
    assert isinstance(envelope, Data)
    assert envelope.records == ({"hash": "0x1"},)
    assert envelope.possibly_truncated is False


def test_envelope_at_page_cap_is_flagged():
    rows = [{"hash": str(i)} for i in range(PAGE_SIZE_CAP)]
    envelope = parse_envelope({"status": "1", "message": "OK", "result": rows})
    assert envelope.possibly_truncated is True

    below = parse_envelope({"status": "1", "message": "OK", "result": rows[:-1]})
    assert below.possibly_truncated is False


def test_no_transactions_found_is_empty_success():
    envelope = parse_envelope({"status": "0", "message": "No transactions found", "result": []})
    assert isinstance(envelope, EmptySuccess)
    assert envelope.records == ()


def test_status_zero_errors_are_classified():
    limited = parse_envelope({"status": "0", "message": "NOTOK", "result": "Max rate limit reached"})
    assert isinstance(limited, Error)
    assert limited.rate_limited

    bad_key = parse_envelope({"status": "0", "message": "NOTOK", "result": "Invalid API Key"})
    assert bad_key.invalid_key

    deprecated = parse_envelope({"status": "0", "message": "NOTOK", "result": "This endpoint is deprecated"})
    assert deprecated.deprecated


def test_non_object_payload_is_error():
    assert isinstance(parse_envelope(["not", "an", "object"]), Error)


@pytest.mark.asyncio
async def test_fetch_sends_api_key_and_params(sleep):
    seen = []

    def handler(request):
        seen.append(dict(request.url.params))
        return httpx.Response(200, json={"status": "1", "message": "OK", "result": [{"hash": "0x1"}]})

    client = make_client(handler, sleep)
    page = await client.fetch({"chainid": 1, "module": "account", "action": "tokentx"})

    assert isinstance(page, Data)
    assert seen[0]["apikey"] == "test-key"
    assert seen[0]["action"] == "tokentx"
    await client.close()


@pytest.mark.asyncio
async def test_rate_limit_retried_with_linear_backoff(sleep):
    attempts = {"n": 0}

    def handler(request):
        attempts["n"] += 1
        if attempts["n"] < 3:
            return httpx.Response(200, json={"status": "0", "message": "NOTOK", "result": "Max rate limit reached"})
        return httpx.Response(200, json={"status": "1", "message": "OK", "result": [{"hash": "0x1"}]})

    client = make_client(handler, sleep, max_retries=3)
    page = await client.fetch({"chainid": 1, "action": "tokentx"})

    assert isinstance(page, Data)
    assert attempts["n"] == 3
    assert sleep.calls == [1.0, 2.0]
    await client.close()


@pytest.mark.asyncio
async def test_error_propagates_after_retries(sleep):
    attempts = {"n": 0}

    def handler(request):
        attempts["n"] += 1
        return httpx.Response(200, json={"status": "0", "message": "NOTOK", "result": "Max rate limit reached"})

    client = make_client(handler, sleep, max_retries=3)
    with pytest.raises(RateLimitError):
        await client.fetch({"chainid": 1, "action": "tokentx"})
    assert attempts["n"] == 3
    await client.close()


@pytest.mark.asyncio
async def test_explicit_zero_retries_is_not_replaced_by_default(sleep):
    attempts = {"n": 0}

    def handler(request):
        attempts["n"] += 1
        return httpx.Response(200, json={"status": "0", "message": "NOTOK", "result": "Max rate limit reached"})

    client = make_client(handler, sleep, max_retries=0)
    assert client.max_retries == 0
    with pytest.raises(RateLimitError):
        await client.fetch({"chainid": 1, "action": "tokentx"})
    assert attempts["n"] == 1
    assert sleep.calls == []

    attempts["n"] = 0
    with pytest.raises(RateLimitError):
        await client.fetch({"chainid": 1, "action": "tokentx"}, max_retries=2)
    assert attempts["n"] == 2
    await client.close()


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(sleep):
    attempts = {"n": 0}

    def handler(request):
        attempts["n"] += 1
        return httpx.Response(400, json={})

    client = make_client(handler, sleep, max_retries=3)
    with pytest.raises(httpx.HTTPStatusError):
        await client.fetch({"chainid": 1, "action": "tokentx"})
    assert attempts["n"] == 1
    assert sleep.calls == []
    await client.close()


@pytest.mark.asyncio
async def test_slow_response_hits_deadline(sleep):
    async def handler(request):
        await asyncio.sleep(1)
        return httpx.Response(200, json={"status": "1", "message": "OK", "result": []})

    client = make_client(handler, sleep)
    with pytest.raises(asyncio.TimeoutError):
        await client.fetch({"chainid": 1, "action": "tokentx"}, max_retries=1, timeout=0.01)
    await client.close()


@pytest.mark.asyncio
async def test_latest_block_parses_hex(sleep):
    def handler(request):
        assert request.url.params["action"] == "eth_blockNumber"
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 83, "result": "0x10d4f"})

    client = make_client(handler, sleep)
    assert await client.latest_block(1) == 0x10d4f
    await client.close()


@pytest.mark.asyncio
async def test_resolve_method_decodes_selector(sleep):
    inputs = {
        "0xsell": "0x8b661592000000000000000000000000",
        "0xother": "0xdeadbeef00000000",
    }

    def handler(request):
        tx_hash = request.url.params["txhash"]
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {"input": inputs[tx_hash]}})

    client = make_client(handler, sleep)
    assert await client.resolve_method("0xsell", 1) == "Execute Sell"
    assert await client.resolve_method("0xother", 1) is None
    await client.close()


@pytest.mark.asyncio
async def test_resolve_method_failure_returns_none(sleep):
    def handler(request):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"message": "boom"}})

    client = make_client(handler, sleep)
    assert await client.resolve_method("0xabc", 1) is None
    await client.close()


def test_decode_method():
    assert decode_method("0x761976ea0000") == "Refinance From Loan Execution Data"
    assert decode_method("0x") is None
    assert decode_method(None) is None


@pytest.mark.asyncio
async def test_provider_error_carries_reason(sleep):
    def handler(request):
        return httpx.Response(200, json={"status": "0", "message": "NOTOK", "result": "Invalid API Key"})

    client = make_client(handler, sleep, max_retries=1)
    with pytest.raises(ProviderError) as exc_info:
        await client.fetch({"chainid": 1, "action": "tokentx"})
    assert exc_info.value.reason == "Invalid API Key"
    await client.close()
