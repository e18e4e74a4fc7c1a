"""Tests for page observation and screenshot encoding."""

from __future__ import annotations

import asyncio
from dataclasses import replace

import cv2
import numpy as np
import pytest
from fakes import FakeBrowser

from webtask_agent.config.settings import Settings, get_default_settings
from webtask_agent.core.errors import BrowserDisconnectedError
from webtask_agent.core.event_bus import EventBus
from webtask_agent.core.page_observer import PageObserver, encode_screenshot
from webtask_agent.core.snapshot_compressor import SnapshotCompressor
from webtask_agent.models.events import Event, EventType


def _png(width: int, height: int) -> bytes:
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:, : width // 2] = (255, 0, 0)
    ok, encoded = cv2.imencode(".png", image)
    assert ok
    return encoded.tobytes()


def _observer(
    browser: FakeBrowser,
    settings: Settings | None = None,
) -> tuple[PageObserver, list[Event]]:
    bus = EventBus(task_id="t")
    events: list[Event] = []
    bus.subscribe(None, events.append)
    observer = PageObserver(
        browser, SnapshotCompressor(), bus, settings or get_default_settings()
    )
    return observer, events


# ------------------------------------------------------------------
# Screenshot encoding
# ------------------------------------------------------------------


class TestEncodeScreenshot:
    """JPEG re-encoding with cv2."""

    def test_downscales_wide_images(self) -> None:
        """Images wider than max_width keep their aspect ratio."""
        jpeg, width, height = encode_screenshot(_png(400, 200), max_width=200, quality=80)
        assert (width, height) == (200, 100)
        assert jpeg[:2] == b"\xff\xd8"

    def test_keeps_small_images(self) -> None:
        _, width, height = encode_screenshot(_png(100, 50), max_width=200, quality=80)
        assert (width, height) == (100, 50)

    def test_output_decodes(self) -> None:
        """The JPEG can be decoded again."""
        jpeg, _, _ = encode_screenshot(_png(64, 32), max_width=1280, quality=50)
        image = cv2.imdecode(np.frombuffer(jpeg, dtype=np.uint8), cv2.IMREAD_COLOR)
        assert image.shape == (32, 64, 3)

    def test_garbage_raises(self) -> None:
        with pytest.raises(ValueError):
            encode_screenshot(b"not an image", max_width=100, quality=80)


# ------------------------------------------------------------------
# Observation
# ------------------------------------------------------------------


class TestObserve:
    """PageObserver.observe."""

    def test_compresses_snapshot(self) -> None:
        """The snapshot is compressed but the raw one is kept."""
        browser = FakeBrowser(url="https://example.com/pricing", title="Pricing")
        observer, _ = _observer(browser)
        observation = asyncio.run(observer.observe("t-1"))
        assert observation.url == "https://example.com/pricing"
        assert observation.snapshot.startswith('h1 "Pricing"')
        assert "/url:" in observation.raw_snapshot
        assert "/url:" not in observation.snapshot
        assert observation.screenshot is None
        assert not observation.is_fallback

    def test_snapshot_failure_falls_back(self) -> None:
        """A failed snapshot still yields URL and title."""
        browser = FakeBrowser(url="https://example.com/", title="Example")
        browser.snapshot_errors = [RuntimeError("frame detached")]
        observer, _ = _observer(browser)
        observation = asyncio.run(observer.observe())
        assert observation.is_fallback
        assert observation.title == "Example"

    def test_disconnect_propagates(self) -> None:
        browser = FakeBrowser()
        browser.snapshot_errors = [BrowserDisconnectedError("Target closed")]
        observer, _ = _observer(browser)
        with pytest.raises(BrowserDisconnectedError):
            asyncio.run(observer.observe())

    def test_debug_compression_event(self) -> None:
        """debug=True publishes compression statistics."""
        settings = replace(get_default_settings(), debug=True)
        observer, events = _observer(FakeBrowser(), settings)
        asyncio.run(observer.observe("t-1"))
        compression = [e for e in events if e.type is EventType.SYSTEM_DEBUG_COMPRESSION]
        assert len(compression) == 1
        assert compression[0].payload.compressed_size < compression[0].payload.original_size

    def test_no_debug_event_by_default(self) -> None:
        observer, events = _observer(FakeBrowser())
        asyncio.run(observer.observe())
        assert events == []

    def test_vision_attaches_screenshot(self) -> None:
        """vision=True captures, encodes, and announces a screenshot."""
        browser = FakeBrowser()
        browser.screenshot = _png(2000, 1000)
        settings = replace(get_default_settings(), vision=True)
        observer, events = _observer(browser, settings)

        observation = asyncio.run(observer.observe())

        assert observation.screenshot is not None
        captured = [e for e in events if e.type is EventType.BROWSER_SCREENSHOT_CAPTURED]
        assert captured[0].payload.width == settings.screenshot_max_width
        assert captured[0].payload.size_bytes == len(observation.screenshot)

    def test_bad_screenshot_is_skipped(self) -> None:
        """An undecodable screenshot leaves the observation text-only."""
        browser = FakeBrowser()
        browser.screenshot = b"broken"
        settings = replace(get_default_settings(), vision=True)
        observer, _ = _observer(browser, settings)
        observation = asyncio.run(observer.observe())
        assert observation.screenshot is None
        assert not observation.is_fallback
