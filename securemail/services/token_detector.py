"""
Hardware token detection with change coalescing.

``HardwareTokenDetector`` owns the last emitted sample and only notifies
subscribers when presence, serial or key presence differ from it. Polling runs
as a background task between ``start()`` and ``stop()``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Protocol, Union

from securemail.core.exceptions import DetectError, TokenNotPresentError
from securemail.models.hardware import DetectionResult, HardwareTokenIdentity

logger = logging.getLogger(__name__)

DetectionCallback = Callable[[DetectionResult], Union[None, Awaitable[None]]]


class CardDriver(Protocol):
    async def detect(self) -> bool: ...

    async def read_identity(self) -> HardwareTokenIdentity: ...


class HardwareTokenDetector:
    def __init__(self, driver: CardDriver, *, poll_interval: float = 15.0) -> None:
        self._driver = driver
        self._poll_interval = poll_interval
        self._subscribers: List[DetectionCallback] = []
        self._last_emitted = DetectionResult.not_present()
        self._last_result = DetectionResult.not_present()
        self._lock = asyncio.Lock()
        self._poll_task: Optional[asyncio.Task[None]] = None

    @property
    def last_result(self) -> DetectionResult:
        return self._last_result

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def subscribe(self, callback: DetectionCallback) -> Callable[[], None]:
        """Register ``callback`` for change notifications; returns an unsubscriber."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def detect(self) -> DetectionResult:
        """
        Sample the token once.

        A missing token is a normal ``not_present`` result. Driver faults such
        as ``DriverUnavailableError`` propagate to the caller.
        """
        async with self._lock:
            result = await self._sample()
            self._last_result = result
            await self._publish(result)
            return result

    async def _sample(self) -> DetectionResult:
        if not await self._driver.detect():
            return DetectionResult.not_present()
        try:
            identity = await self._driver.read_identity()
        except TokenNotPresentError:
            # Unplugged between the two queries.
            return DetectionResult.not_present()
        return DetectionResult(detected=True, identity=identity)

    async def _publish(self, result: DetectionResult) -> None:
        if result.change_key() == self._last_emitted.change_key():
            return
        self._last_emitted = result
        logger.info(
            "Hardware token %s",
            f"detected (serial {result.identity.serial})"
            if result.detected and result.identity
            else "removed",
        )
        for callback in list(self._subscribers):
            try:
                outcome = callback(result)
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception:  # pylint: disable=broad-except
                logger.exception("Hardware token subscriber %r failed", callback)

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.detect()
            except DetectError as exc:
                logger.warning("Hardware token poll failed: %s", exc)
                async with self._lock:
                    self._last_result = DetectionResult.not_present()
                    await self._publish(self._last_result)
            except Exception:  # pylint: disable=broad-except
                logger.exception("Unexpected error while polling the hardware token")
            await asyncio.sleep(self._poll_interval)

    def start(self) -> None:
        """Begin polling on the running event loop. No-op if already polling."""
        if self.is_polling:
            return
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def __aenter__(self) -> "HardwareTokenDetector":
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()


__all__ = ["CardDriver", "DetectionCallback", "HardwareTokenDetector"]
