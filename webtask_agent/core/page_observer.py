"""Page observation: snapshot, compression, and optional screenshot.

The ``PageObserver`` produces the ``PageObservation`` the model decides
on.  It reads the URL, title and accessibility snapshot from the
browser, compresses the snapshot with the ``SnapshotCompressor``, and
in vision mode attaches a downscaled JPEG screenshot.

A page that cannot be snapshotted (for example a download or a PDF
viewer) does not stop the agent: the observer falls back to an
observation carrying only the URL and title.  A lost browser
connection, on the other hand, is raised so the Director can restart
the browser.

Typical usage::

    observer = PageObserver(browser, SnapshotCompressor(), bus, settings)
    observation = await observer.observe(iteration_id="a1b2c3d4-3")
    print(observation.render())
"""

from __future__ import annotations

import logging

import cv2
import numpy as np

from webtask_agent.config.settings import Settings
from webtask_agent.core.errors import BrowserDisconnectedError
from webtask_agent.core.event_bus import EventBus
from webtask_agent.core.snapshot_compressor import SnapshotCompressor
from webtask_agent.models.events import (
    BrowserScreenshotCapturedPayload,
    DebugCompressionPayload,
    EventType,
)
from webtask_agent.models.page import PageObservation
from webtask_agent.platform.interface import BrowserInterface

logger = logging.getLogger(__name__)


def encode_screenshot(
    data: bytes,
    max_width: int,
    quality: int,
) -> tuple[bytes, int, int]:
    """Decode a screenshot, downscale it, and re-encode it as JPEG.

    Images no wider than *max_width* keep their size.  Wider images
    are shrunk with ``INTER_AREA`` preserving the aspect ratio.

    Args:
        data: PNG or JPEG bytes from the browser.
        max_width: Maximum output width in pixels.
        quality: JPEG quality in ``[0, 100]``.

    Returns:
        A ``(jpeg_bytes, width, height)`` tuple.

    Raises:
        ValueError: If *data* is not a decodable image.
    """
    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError("Screenshot bytes could not be decoded")

    height, width = image.shape[:2]
    if max_width > 0 and width > max_width:
        scale = max_width / width
        new_size = (max_width, max(1, round(height * scale)))
        image = cv2.resize(image, new_size, interpolation=cv2.INTER_AREA)
        height, width = image.shape[:2]

    ok, encoded = cv2.imencode(
        ".jpg",
        image,
        [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)],
    )
    if not ok:
        raise ValueError("Screenshot could not be encoded as JPEG")
    return encoded.tobytes(), int(width), int(height)


class PageObserver:
    """Builds observations of the browser's current page.

    Args:
        browser: The browser to observe.
        compressor: Compressor applied to every snapshot.
        bus: Bus receiving ``system:debug_compression`` and
            ``browser:screenshot_captured`` events.
        settings: Provides ``debug``, ``vision`` and the screenshot
            encoding parameters.
    """

    def __init__(
        self,
        browser: BrowserInterface,
        compressor: SnapshotCompressor,
        bus: EventBus,
        settings: Settings,
    ) -> None:
        self._browser = browser
        self._compressor = compressor
        self._bus = bus
        self._settings = settings

    async def observe(self, iteration_id: str = "") -> PageObservation:
        """Observe the current page.

        Returns:
            A full observation, or a fallback one carrying only the URL
            and title when the snapshot could not be taken.

        Raises:
            BrowserDisconnectedError: The browser connection was lost.
        """
        try:
            url = await self._browser.get_url()
            title = await self._browser.get_title()
        except BrowserDisconnectedError:
            raise
        except Exception as exc:
            logger.warning("Reading page URL and title failed: %s", exc)
            return PageObservation(url="", title="", is_fallback=True)

        try:
            raw = await self._browser.get_accessibility_snapshot()
        except BrowserDisconnectedError:
            raise
        except Exception as exc:
            logger.warning("Snapshot of %s failed, using fallback: %s", url, exc)
            return PageObservation(url=url, title=title, is_fallback=True)

        result = self._compressor.compress_with_metrics(raw)
        if self._settings.debug:
            self._bus.publish(
                EventType.SYSTEM_DEBUG_COMPRESSION,
                DebugCompressionPayload(
                    original_size=result.original_size,
                    compressed_size=result.compressed_size,
                    compression_ratio=result.compression_ratio,
                    lines_removed=result.lines_removed,
                    transformations_applied=result.transformations_applied,
                    duplicates_removed=result.duplicates_removed,
                ),
                iteration_id,
            )

        screenshot = None
        if self._settings.vision:
            screenshot = await self._capture_screenshot(iteration_id)

        return PageObservation(
            url=url,
            title=title,
            raw_snapshot=raw,
            snapshot=result.text,
            screenshot=screenshot,
        )

    async def _capture_screenshot(self, iteration_id: str) -> bytes | None:
        """Capture and encode a screenshot, or ``None`` if it fails."""
        try:
            data = await self._browser.get_screenshot()
            jpeg, width, height = encode_screenshot(
                data,
                self._settings.screenshot_max_width,
                self._settings.screenshot_jpeg_quality,
            )
        except BrowserDisconnectedError:
            raise
        except Exception as exc:
            logger.warning("Screenshot capture failed: %s", exc)
            return None

        self._bus.publish(
            EventType.BROWSER_SCREENSHOT_CAPTURED,
            BrowserScreenshotCapturedPayload(
                size_bytes=len(jpeg),
                width=width,
                height=height,
            ),
            iteration_id,
        )
        return jpeg
