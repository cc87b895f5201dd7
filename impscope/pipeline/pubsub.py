"""
Message Publishing
===================

:class:`Publisher` is the async interface the orchestrator emits routing
events through.  Wire transports live outside this package;
:class:`MemoryPublisher` keeps published messages in memory for local runs
and tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@runtime_checkable
class Publisher(Protocol):
    """Async topic publisher."""

    async def publish(self, topic: str, body: bytes) -> None:
        ...


@dataclass(frozen=True, slots=True)
class PublishedMessage:
    topic: str
    body: bytes


@dataclass(slots=True)
class MemoryPublisher:
    """Publisher that records every message in order.

    Usage::

        pub = MemoryPublisher()
        await pub.publish("topic-pe", sha256.encode())
        pub.topics()  # ["topic-pe"]
    """

    messages: list[PublishedMessage] = field(default_factory=list)

    async def publish(self, topic: str, body: bytes) -> None:
        self.messages.append(PublishedMessage(topic=topic, body=bytes(body)))

    def topics(self) -> list[str]:
        return [m.topic for m in self.messages]

    def clear(self) -> None:
        self.messages.clear()
