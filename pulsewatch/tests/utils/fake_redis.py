from __future__ import annotations

import re
from typing import AsyncIterator


class FakeRedis:
    """Async stand-in for the redis.asyncio calls the key-value adapter makes.

    Values come back as bytes, like a client created without
    ``decode_responses``, so the adapter's decoding path is exercised.
    """

    def __init__(self) -> None:
        self.data: dict[str, bytes] = {}
        self.closed = False

    async def get(self, key: str) -> bytes | None:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value.encode("utf-8")

    async def scan_iter(self, match: str) -> AsyncIterator[bytes]:
        pattern = _glob_to_regex(match)
        for key in list(self.data):
            if pattern.fullmatch(key):
                yield key.encode("utf-8")

    async def aclose(self) -> None:
        self.closed = True


def _glob_to_regex(pattern: str) -> re.Pattern[str]:
    # Support escapes plus "*" and "?", the subset MATCH patterns use here.
    parts: list[str] = []
    chars = iter(pattern)
    for char in chars:
        if char == "\\":
            parts.append(re.escape(next(chars, "\\")))
        elif char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.DOTALL)
