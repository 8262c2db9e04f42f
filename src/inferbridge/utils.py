from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Utility functions shared across the package: JSON helpers, id generation and
backoff/sync helpers used by the transport and the sync call wrappers.
"""
import asyncio
import json
import random
import uuid
from typing import Any


def try_parse_json(s: str) -> tuple[bool, Any]:
    """Parse any JSON value; returns `(ok, value)` instead of raising."""
    try:
        return True, json.loads(s)
    except (TypeError, ValueError):
        return False, None


def compact_json(value: Any) -> str:
    """Serialize without insignificant whitespace (`{"a":1}`)."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def generate_id() -> str:
    return uuid.uuid4().hex[:16]


def backoff_delay(attempt: int, base_s: float, jitter_s: float) -> float:
    """
    Exponential backoff with jitter.
    attempt=0 => base, attempt=1 => 2*base, etc.
    """
    exp = base_s * (2 ** attempt)
    jitter = random.uniform(0.0, jitter_s)
    return exp + jitter


def run_sync(coro):
    """
    Run an async coroutine from sync context.
    If already inside a running event loop, raise a clear error.
    """
    try:
        # If this succeeds, we're inside a running event loop context.
        asyncio.get_running_loop()
    except RuntimeError:
        # No running loop in this thread => safe to use asyncio.run
        return asyncio.run(coro)

    coro.close()
    raise RuntimeError(
        "Cannot use *_sync methods inside a running event loop. Use async methods instead."
    )
