"""Lexical retry classification and exponential backoff."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Tuple

# "5" matches any message containing the digit, not only 5xx statuses. Kept
# for compatibility with existing batches; see DESIGN.md.
DEFAULT_RETRYABLE_KEYWORDS: Tuple[str, ...] = (
    "rate limited",
    "timeout",
    "network",
    "server error",
    "temporary",
    "429",
    "5",
)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_seconds: float = 1.0
    max_backoff_seconds: float | None = None
    keywords: Tuple[str, ...] = DEFAULT_RETRYABLE_KEYWORDS

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "RetryPolicy":
        keywords: Iterable[str] = config.get("keywords") or DEFAULT_RETRYABLE_KEYWORDS
        max_backoff = config.get("max_backoff_seconds")
        return cls(
            max_attempts=int(config.get("max_attempts", 3)),
            backoff_seconds=float(config.get("backoff_seconds", 1.0)),
            max_backoff_seconds=float(max_backoff) if max_backoff is not None else None,
            keywords=tuple(str(keyword).lower() for keyword in keywords),
        )

    def is_retryable(self, message: str) -> bool:
        haystack = (message or "").lower()
        return any(keyword in haystack for keyword in self.keywords)

    def should_retry(self, message: str, attempts: int) -> bool:
        return attempts < self.max_attempts and self.is_retryable(message)

    def backoff(self, attempts: int) -> float:
        delay = self.backoff_seconds * math.pow(2, max(0, attempts - 1))
        if self.max_backoff_seconds is not None:
            delay = min(self.max_backoff_seconds, delay)
        return float(delay)


__all__ = ["DEFAULT_RETRYABLE_KEYWORDS", "RetryPolicy"]
