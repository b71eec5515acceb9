"""
Small helpers shared across Jarvoice

- Environment parsing: ``parse_bool``, ``parse_int``, ``parse_float`` never
  raise; unusable input yields the caller's default.
- Async: ``await_with_timeout`` and ``chunk_bytes`` for the Wyoming calls.
- Text: ``capitalize_first`` for honorifics that open a sentence.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterator
from typing import Any, TypeVar

_Number = TypeVar("_Number", int, float)

TRUTHY = frozenset({"1", "true", "yes", "on"})


def parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in TRUTHY


def _parse_number(value: str | None, default: _Number, cast: Callable[[str], _Number]) -> _Number:
    if value is None:
        return default
    try:
        return cast(value.strip())
    except (AttributeError, TypeError, ValueError):
        return default


def parse_int(value: str | None, default: int) -> int:
    return _parse_number(value, default, int)


def parse_float(value: str | None, default: float) -> float:
    return _parse_number(value, default, float)


def capitalize_first(text: str) -> str:
    """Upper-case only the first character ("сэр" -> "Сэр")."""
    return text[:1].upper() + text[1:]


async def await_with_timeout(awaitable: Awaitable[Any], timeout: float | None) -> Any:
    if timeout is None:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout=timeout)


def chunk_bytes(data: bytes, size: int) -> Iterator[bytes]:
    """Slice ``data`` into ``size``-byte pieces; the last one may be shorter."""
    if size <= 0:
        raise ValueError("Chunk size must be positive")
    return (data[offset : offset + size] for offset in range(0, len(data), size))
