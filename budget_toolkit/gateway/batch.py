"""Batch Dispatcher — fans independent chat requests out under one concurrency cap.

The input is processed in chunks of ``batch_size``; a single semaphore of
``max_concurrent`` bounds in-flight calls across the whole batch. Results are
placed by input index, so output order never depends on completion order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def chunked(items: Sequence[T], size: int) -> list[Sequence[T]]:
    """Split ``items`` into consecutive chunks of at most ``size``."""
    return [items[i : i + size] for i in range(0, len(items), size)]


class BatchDispatcher(Generic[T, R]):
    """Runs ``worker`` over a list of inputs with bounded concurrency.

    Usage:
        dispatcher = BatchDispatcher(gateway.chat, batch_size=10, max_concurrent=3)
        results = await dispatcher.run(conversations)
    """

    def __init__(
        self,
        worker: Callable[[T], Awaitable[R]],
        batch_size: int,
        max_concurrent: int,
    ):
        self.worker = worker
        self.batch_size = max(1, batch_size)
        self.max_concurrent = max(1, max_concurrent)

    async def run(
        self,
        items: Sequence[T],
        *,
        return_exceptions: bool = False,
    ) -> list[R | BaseException]:
        """Execute every item and return results in input order.

        A failing item never cancels its siblings. With ``return_exceptions``
        the exception takes the item's slot; otherwise the first failure by
        input index is raised once the whole batch has settled.
        """
        if not items:
            return []

        results: list[R | BaseException | None] = [None] * len(items)
        failed: list[int] = []
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def _execute(index: int, item: T) -> None:
            async with semaphore:
                try:
                    results[index] = await self.worker(item)
                except Exception as e:
                    results[index] = e
                    failed.append(index)

        chunks = chunked(items, self.batch_size)
        offset = 0
        for number, chunk in enumerate(chunks, start=1):
            await asyncio.gather(*(_execute(offset + i, item) for i, item in enumerate(chunk)))
            offset += len(chunk)
            logger.debug("Batch chunk %d/%d done (%d items)", number, len(chunks), len(chunk))

        if failed:
            logger.warning("Batch finished with %d/%d failed item(s)", len(failed), len(items))
            if not return_exceptions:
                raise results[min(failed)]  # type: ignore[misc]
        else:
            logger.info("Batch of %d item(s) completed", len(items))

        return results  # type: ignore[return-value]
