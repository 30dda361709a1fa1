"""Shared result type for outbound provider calls."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class SendResult:
    """Result of a fire-and-forget send."""

    success: bool
    provider: str
    error: Optional[str] = None

    @classmethod
    def ok(cls, provider: str) -> "SendResult":
        return cls(success=True, provider=provider)

    @classmethod
    def fail(cls, provider: str, error: str) -> "SendResult":
        return cls(success=False, provider=provider, error=error)
