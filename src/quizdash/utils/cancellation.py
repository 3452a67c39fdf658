import asyncio
from typing import Optional

from loguru import logger


class CancellationToken:
    """Cooperative shutdown flag passed down the discovery and results loops.

    Loops check it before starting an iteration; work already in flight is
    allowed to finish.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "shutdown requested") -> None:
        if not self._event.is_set():
            self.reason = reason
            logger.info(f"Cancellation requested: {reason}")
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()
