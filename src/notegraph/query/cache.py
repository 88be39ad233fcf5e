"""Bounded caches for compiled path regexes and boolean expressions.

One QueryCache is built per process (or per QueryContext) and passed to the
components that need it; nothing here is a module-level singleton.
"""

import re
from collections import OrderedDict
from typing import Generic, TypeVar

from ..config import EXPRESSION_CACHE_SIZE, REGEX_CACHE_SIZE
from .expression import BooleanExpression

V = TypeVar("V")


class _LRU(Generic[V]):
    def __init__(self, max_size: int):
        self.max_size = max_size
        self._items: OrderedDict[str, V] = OrderedDict()

    def get(self, key: str) -> V | None:
        value = self._items.get(key)
        if value is not None:
            self._items.move_to_end(key)
        return value

    def put(self, key: str, value: V) -> None:
        self._items[key] = value
        self._items.move_to_end(key)
        while len(self._items) > self.max_size:
            self._items.popitem(last=False)

    def __len__(self) -> int:
        return len(self._items)

    def clear(self) -> None:
        self._items.clear()


class QueryCache:
    """LRU caches keyed by source text. Failed compilations are never cached."""

    def __init__(
        self,
        regex_size: int = REGEX_CACHE_SIZE,
        expression_size: int = EXPRESSION_CACHE_SIZE,
    ):
        self._regexes: _LRU[re.Pattern[str]] = _LRU(regex_size)
        self._expressions: _LRU[BooleanExpression] = _LRU(expression_size)

    def regex(self, pattern: str) -> re.Pattern[str]:
        """Compile (or reuse) a path regex. Raises re.error on invalid patterns."""
        compiled = self._regexes.get(pattern)
        if compiled is None:
            compiled = re.compile(pattern)
            self._regexes.put(pattern, compiled)
        return compiled

    def expression(self, text: str) -> BooleanExpression:
        """Parse (or reuse) a boolean expression. Raises ParseError."""
        parsed = self._expressions.get(text)
        if parsed is None:
            parsed = BooleanExpression(text)
            self._expressions.put(text, parsed)
        return parsed

    def stats(self) -> dict[str, int]:
        return {"regexes": len(self._regexes), "expressions": len(self._expressions)}

    def clear(self) -> None:
        self._regexes.clear()
        self._expressions.clear()
