"""
Sample Orchestrator
====================

Entry point of the scanning pipeline.  Each message body is the SHA-256 of
a submitted sample.  The orchestrator downloads the sample into the volume
shared by all scanners, then fans the hash out to the scanner topics:

    always          topic-multiav, topic-meta
    PE              topic-pe, topic-ml
    ELF             topic-elf
    Mach-O          topic-mach-o
    PDF             topic-pdf

Raising from :meth:`Orchestrator.handle_message` tells the transport to
re-queue the message.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

from shared.config import OrchestratorConfig
from shared.logger import ScopeLogger

from impscope.core.models import BinaryFormat
from impscope.parsers.magic import MagicIdentifier
from impscope.pipeline.pubsub import Publisher
from impscope.pipeline.storage import LocalStorage, Storage

TOPIC_MULTIAV = "topic-multiav"
TOPIC_META = "topic-meta"

FORMAT_TOPICS: dict[BinaryFormat, tuple[str, ...]] = {
    BinaryFormat.PE: ("topic-pe", "topic-ml"),
    BinaryFormat.ELF: ("topic-elf",),
    BinaryFormat.MACHO: ("topic-mach-o",),
    BinaryFormat.PDF: ("topic-pdf",),
}

# Enough to reach the PE signature behind any realistic DOS stub
_SNIFF_SIZE = 0x10000


def _read_head(path: Path) -> bytes:
    with open(path, "rb") as fh:
        return fh.read(_SNIFF_SIZE)


class Orchestrator:
    """Download, identify and route submitted samples.

    Usage::

        orch = Orchestrator(config.orchestrator, storage, publisher)
        topics = await orch.handle_message(sha256.encode())
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        storage: Storage,
        publisher: Publisher,
        logger: ScopeLogger | None = None,
    ) -> None:
        self._config = config
        self._storage = storage
        self._publisher = publisher
        self._logger: ScopeLogger = logger or ScopeLogger("orchestrator")
        self._magic = MagicIdentifier()

    async def handle_message(self, body: bytes) -> list[str]:
        """Process one submission.

        Args:
            body: The sample's SHA-256 as ASCII bytes.

        Returns:
            Topics the message was published to, in publish order.

        Raises:
            ValueError: The body is blank, not ASCII, or not a bare
                file name.
            TimeoutError: The download exceeded the configured timeout.
            StorageError: The sample could not be fetched.
        """
        if not body or not body.strip():
            raise ValueError("body is blank, re-enqueue message")
        sha256 = body.decode("ascii").strip()
        if Path(sha256).name != sha256 or sha256 in (".", ".."):
            raise ValueError(f"not a sample identifier: {sha256!r}")

        with self._logger.sample(sha256):
            self._logger.info("start processing")
            file_path = await self._download(sha256)

            published: list[str] = []
            for topic in (TOPIC_MULTIAV, TOPIC_META):
                await self._publish(topic, body, published)

            fmt = await self.identify(file_path)
            self._logger.info("file type is: %s", fmt.value)
            for topic in FORMAT_TOPICS.get(fmt, ()):
                await self._publish(topic, body, published)

            return published

    async def identify(self, file_path: Path) -> BinaryFormat:
        """Format of the downloaded sample, sniffed from its first bytes."""
        head = await asyncio.to_thread(_read_head, file_path)
        return self._magic.identify_format(head)

    # ------------------------------------------------------------------ #
    #  Internal helpers
    # ------------------------------------------------------------------ #

    async def _download(self, sha256: str) -> Path:
        """Fetch the sample into the shared volume; no partial file is kept."""
        volume = Path(self._config.shared_volume)
        volume.mkdir(parents=True, exist_ok=True)
        file_path = volume / sha256
        bucket = self._config.storage.bucket

        try:
            with open(file_path, "wb") as fh:
                await asyncio.wait_for(
                    self._storage.download(bucket, sha256, fh),
                    timeout=self._config.download_timeout,
                )
        except BaseException:
            self._logger.error("failed downloading file %s/%s", bucket, sha256)
            file_path.unlink(missing_ok=True)
            raise
        return file_path

    async def _publish(self, topic: str, body: bytes, published: list[str]) -> None:
        await self._publisher.publish(topic, body)
        published.append(topic)
        self._logger.info("published message to %s", topic)


def route_topics(fmt: BinaryFormat) -> list[str]:
    """All topics a sample of format *fmt* is published to."""
    return [TOPIC_MULTIAV, TOPIC_META, *FORMAT_TOPICS.get(fmt, ())]


def build_orchestrator(
    config: OrchestratorConfig,
    publisher: Publisher,
    logger: Optional[ScopeLogger] = None,
) -> Orchestrator:
    """Orchestrator backed by the configured local object store."""
    return Orchestrator(
        config, LocalStorage.from_config(config.storage), publisher, logger
    )
