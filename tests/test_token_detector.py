try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import asyncio

import pytest

from securemail.core.exceptions import DriverUnavailableError, TokenNotPresentError
from securemail.models.hardware import (
    DetectionResult,
    HardwareTokenIdentity,
    KeyFingerprints,
)
from securemail.services.token_detector import HardwareTokenDetector

SIG = "A" * 40
DEC = "B" * 40


def _identity(serial: str = "12345678", **fingerprints: str) -> HardwareTokenIdentity:
    return HardwareTokenIdentity(
        serial=serial,
        firmware_version="5.4.3",
        key_fingerprints=KeyFingerprints(**fingerprints),
    )


class FakeDriver:
    def __init__(self) -> None:
        self.identity: HardwareTokenIdentity | None = None
        self.error: Exception | None = None
        self.detect_calls = 0

    async def detect(self) -> bool:
        self.detect_calls += 1
        if self.error is not None:
            raise self.error
        return self.identity is not None

    async def read_identity(self) -> HardwareTokenIdentity:
        if self.identity is None:
            raise TokenNotPresentError("unplugged")
        return self.identity


@pytest.mark.asyncio
async def test_identical_detections_notify_once() -> None:
    driver = FakeDriver()
    driver.identity = _identity(signature=SIG)
    detector = HardwareTokenDetector(driver)
    events: list[DetectionResult] = []
    detector.subscribe(events.append)

    await detector.detect()
    await detector.detect()

    assert len(events) == 1
    assert events[0].detected
    assert events[0].identity.serial == "12345678"


@pytest.mark.asyncio
async def test_changes_in_serial_or_keys_are_notified_in_order() -> None:
    driver = FakeDriver()
    detector = HardwareTokenDetector(driver)
    events: list[DetectionResult] = []
    detector.subscribe(events.append)

    driver.identity = _identity(signature=SIG)
    await detector.detect()
    driver.identity = _identity(signature=SIG, decryption=DEC)
    await detector.detect()
    driver.identity = _identity(serial="87654321", signature=SIG, decryption=DEC)
    await detector.detect()
    # Firmware differences alone are not worth a notification.
    driver.identity = HardwareTokenIdentity(
        serial="87654321",
        firmware_version="5.7.1",
        key_fingerprints=KeyFingerprints(signature=SIG, decryption=DEC),
    )
    await detector.detect()
    driver.identity = None
    await detector.detect()

    assert [event.change_key() for event in events] == [
        (True, "12345678", (True, False, False)),
        (True, "12345678", (True, True, False)),
        (True, "87654321", (True, True, False)),
        (False, "", (False, False, False)),
    ]


@pytest.mark.asyncio
async def test_absent_token_is_not_an_error_and_not_announced() -> None:
    detector = HardwareTokenDetector(FakeDriver())
    events: list[DetectionResult] = []
    detector.subscribe(events.append)

    result = await detector.detect()

    assert result.detected is False
    assert events == []


@pytest.mark.asyncio
async def test_unsubscribe_and_async_callbacks() -> None:
    driver = FakeDriver()
    detector = HardwareTokenDetector(driver)
    received: list[bool] = []

    async def on_change(result: DetectionResult) -> None:
        received.append(result.detected)

    unsubscribe = detector.subscribe(on_change)
    driver.identity = _identity()
    await detector.detect()
    unsubscribe()
    driver.identity = None
    await detector.detect()

    assert received == [True]


@pytest.mark.asyncio
async def test_driver_fault_propagates_from_detect() -> None:
    driver = FakeDriver()
    driver.error = DriverUnavailableError("ykman is not installed")
    detector = HardwareTokenDetector(driver)

    with pytest.raises(DriverUnavailableError):
        await detector.detect()


@pytest.mark.asyncio
async def test_polling_runs_until_stopped() -> None:
    driver = FakeDriver()
    driver.identity = _identity(signature=SIG)
    events: list[DetectionResult] = []

    async with HardwareTokenDetector(driver, poll_interval=0.01) as detector:
        detector.subscribe(events.append)
        while driver.detect_calls < 3:
            await asyncio.sleep(0.01)
        assert detector.is_polling

    calls_after_stop = driver.detect_calls
    await asyncio.sleep(0.05)

    assert not detector.is_polling
    assert driver.detect_calls == calls_after_stop
    assert len(events) == 1


@pytest.mark.asyncio
async def test_poll_failure_reports_removal_once() -> None:
    driver = FakeDriver()
    driver.identity = _identity(signature=SIG)
    detector = HardwareTokenDetector(driver, poll_interval=0.01)
    events: list[DetectionResult] = []
    detector.subscribe(events.append)

    await detector.detect()
    driver.error = DriverUnavailableError("gone")
    detector.start()
    while driver.detect_calls < 4:
        await asyncio.sleep(0.01)
    await detector.stop()

    assert [event.detected for event in events] == [True, False]


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_stop_polling() -> None:
    driver = FakeDriver()
    driver.identity = _identity("1", signature=SIG)
    detector = HardwareTokenDetector(driver, poll_interval=0.01)
    broken_calls = 0
    seen: list[str | None] = []

    def broken(result: DetectionResult) -> None:
        nonlocal broken_calls
        broken_calls += 1
        raise RuntimeError("ui callback bug")

    detector.subscribe(broken)
    detector.subscribe(lambda result: seen.append(result.identity.serial))

    detector.start()
    while not seen:
        await asyncio.sleep(0.01)
    driver.identity = _identity("2", signature=SIG)
    for _ in range(100):
        if len(seen) == 2:
            break
        await asyncio.sleep(0.01)

    assert detector.is_polling
    await detector.stop()

    assert seen == ["1", "2"]
    assert broken_calls == 2
    assert not detector.is_polling
