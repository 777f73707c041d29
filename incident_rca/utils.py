"""
Incident RCA - Utilities Module
================================

Shared helpers used across the pipeline: database connections, call
timeouts and JSON handling for vendor payloads.
"""

import asyncio
import json
from typing import Any, Awaitable, Iterable, Optional, TypeVar

import certifi
from pymongo import MongoClient

from incident_rca.config import HTTP_TIMEOUT_SECONDS, MONGO_DB_URL
from incident_rca.models import LogRow

T = TypeVar("T")


# =============================================================================
# DATABASE UTILITIES
# =============================================================================

def get_mongo_client(url: Optional[str] = None) -> MongoClient:
    """
    Create a MongoDB client connection.

    Handles TLS certificates for MongoDB Atlas (cloud) connections.
    """
    url = url or MONGO_DB_URL
    if not url:
        raise ValueError(
            "MONGO_DB_URL not set. "
            "Add it to your .env file or set the environment variable."
        )

    if "mongodb+srv" in url or "mongodb.net" in url:
        return MongoClient(url, tlsCAFile=certifi.where())
    else:
        return MongoClient(url)


# =============================================================================
# ASYNC UTILITIES
# =============================================================================

async def with_timeout(awaitable: Awaitable[T], timeout: Optional[float]) -> T:
    """
    Await ``awaitable``, raising ``asyncio.TimeoutError`` after ``timeout``
    seconds. ``None`` waits indefinitely.
    """
    if timeout is None:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout)


async def gather_or_cancel(awaitables: Iterable[Awaitable[T]]) -> list[T]:
    """
    Run awaitables concurrently and return their results in input order.

    On the first error the remaining ones are cancelled and awaited before
    the error is re-raised.
    """
    tasks = [asyncio.ensure_future(awaitable) for awaitable in awaitables]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def http_timeout(timeout: Optional[float]) -> float:
    """httpx client timeout for a call limited to ``timeout`` seconds."""
    return HTTP_TIMEOUT_SECONDS if timeout is None else timeout


# =============================================================================
# JSON UTILITIES
# =============================================================================

def compact_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), default=str)


def get_keys(obj: dict, path: Optional[list[str]] = None) -> list[str]:
    """
    Flatten the keys of a nested dict into dotted paths.

    Example:
        get_keys({"a": 1, "b": {"c": 2}})  # ["a", "b.c"]
    """
    path = path or []
    keys = []
    for key, value in obj.items():
        current = path + [str(key)]
        if isinstance(value, dict):
            keys.extend(get_keys(value, current))
        else:
            keys.append(".".join(current))
    return keys


def decode_user_data(raw: str) -> LogRow:
    """
    Decode the JSON string a vendor stores inside a result envelope.

    Rows whose inner string is not a JSON object keep only the raw string.
    """
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError):
        return LogRow(raw=str(raw))
    if not isinstance(decoded, dict):
        return LogRow(raw=raw)
    return LogRow(user_data=decoded, raw=raw)
