import asyncio

import pytest

from incident_rca.config import HTTP_TIMEOUT_SECONDS
from incident_rca.models import ParsedLogs
from incident_rca.utils import (
    compact_json,
    decode_user_data,
    gather_or_cancel,
    get_keys,
    get_mongo_client,
    http_timeout,
    with_timeout,
)


def test_get_keys_flattens_nested_dicts() -> None:
    row = {"level": "ERROR", "kubernetes": {"pod": {"name": "api-1"}, "ns": "prod"}, "tags": ["a"]}

    assert get_keys(row) == ["level", "kubernetes.pod.name", "kubernetes.ns", "tags"]


def test_decode_user_data() -> None:
    row = decode_user_data('{"level": "ERROR"}')
    assert row.user_data == {"level": "ERROR"}

    broken = decode_user_data("{level: ERROR")
    assert broken.user_data is None
    assert broken.raw == "{level: ERROR"

    assert ParsedLogs(results=[row, broken]).rows() == [{"level": "ERROR"}, "{level: ERROR"]


def test_compact_json() -> None:
    assert compact_json({"a": 1, "b": [1, 2]}) == '{"a":1,"b":[1,2]}'


def test_with_timeout() -> None:
    async def slow():
        await asyncio.sleep(1)

    async def fast():
        return "ok"

    assert asyncio.run(with_timeout(fast(), None)) == "ok"
    assert asyncio.run(with_timeout(fast(), 1)) == "ok"
    with pytest.raises(asyncio.TimeoutError):
        asyncio.run(with_timeout(slow(), 0.01))


def test_get_mongo_client_requires_url(monkeypatch) -> None:
    monkeypatch.setattr("incident_rca.utils.MONGO_DB_URL", None)

    with pytest.raises(ValueError):
        get_mongo_client()


def test_gather_or_cancel_keeps_input_order() -> None:
    async def value(result, delay):
        await asyncio.sleep(delay)
        return result

    results = asyncio.run(gather_or_cancel([value("a", 0.05), value("b", 0)]))

    assert results == ["a", "b"]


def test_gather_or_cancel_cancels_siblings_on_error() -> None:
    cancelled = []

    async def slow():
        try:
            await asyncio.sleep(1)
        except asyncio.CancelledError:
            cancelled.append("slow")
            raise

    async def broken():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        asyncio.run(gather_or_cancel([slow(), broken()]))

    assert cancelled == ["slow"]


def test_http_timeout() -> None:
    assert http_timeout(12) == 12
    assert http_timeout(None) == HTTP_TIMEOUT_SECONDS
