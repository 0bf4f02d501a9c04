"""Message as handed out by the storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(order=True)
class Message:
    """A stored message; equality and ordering look at the id only."""

    id: str
    data: bytes = field(default=b"", compare=False)
    delivered: bool = field(default=False, compare=False)