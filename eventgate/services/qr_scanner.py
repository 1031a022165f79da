import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Optional

import cv2

from eventgate.core.config import settings

logger = logging.getLogger(__name__)


class CameraUnavailable(Exception):
    """The camera could not be opened (missing device or permission denied)."""


class OpenCVQRDecoder:
    """Decode the first QR code found in a BGR frame."""

    def __init__(self):
        self.detector = cv2.QRCodeDetector()

    def __call__(self, frame: Any) -> Optional[str]:
        try:
            data, _points, _ = self.detector.detectAndDecode(frame)
        except cv2.error as e:
            logger.debug(f"QR decode failed on frame: {e}")
            return None
        return data or None


class QRScannerAdapter:
    """
    Owns one camera for the lifetime of a scan session and turns frames into
    QR payload strings.

    A payload is emitted only when it differs from the previous emission, so
    holding a ticket in front of the lens produces a single scan. ``resume()``
    forgets the previous emission.
    """

    def __init__(
        self,
        camera_index: Optional[int] = None,
        capture_factory: Optional[Callable[[int], Any]] = None,
        decoder: Optional[Callable[[Any], Optional[str]]] = None,
        poll_interval: Optional[float] = None,
    ):
        self.camera_index = settings.CAMERA_INDEX if camera_index is None else camera_index
        self.poll_interval = settings.SCANNER_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        self._capture_factory = capture_factory or cv2.VideoCapture
        self._decoder = decoder or OpenCVQRDecoder()
        self._capture = None
        self._paused = False
        self._last_payload: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self._capture is not None

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def last_payload(self) -> Optional[str]:
        return self._last_payload

    def open(self) -> "QRScannerAdapter":
        if self._capture is not None:
            return self

        try:
            capture = self._capture_factory(self.camera_index)
        except Exception as e:
            raise CameraUnavailable(f"Camera {self.camera_index} could not be opened: {e}") from e

        if capture is None or not capture.isOpened():
            if capture is not None:
                capture.release()
            raise CameraUnavailable(
                f"Camera {self.camera_index} could not be opened. Grant camera permission or select another device."
            )

        self._capture = capture
        self._paused = False
        self._last_payload = None
        logger.info(f"Camera {self.camera_index} opened for scanning")
        return self

    def close(self) -> None:
        capture, self._capture = self._capture, None
        self._last_payload = None
        if capture is not None:
            capture.release()
            logger.info(f"Camera {self.camera_index} released")

    def __enter__(self) -> "QRScannerAdapter":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    async def __aenter__(self) -> "QRScannerAdapter":
        return self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    def pause(self) -> None:
        if not self._paused:
            logger.debug("Scanner paused")
        self._paused = True

    def resume(self) -> None:
        if self._paused:
            logger.debug("Scanner resumed")
        self._paused = False
        self._last_payload = None

    def read_payload(self) -> Optional[str]:
        """Read one frame; return a new payload or None."""
        capture = self._capture
        if capture is None:
            raise CameraUnavailable("Scanner is not open")
        if self._paused:
            return None

        ok, frame = capture.read()
        if not ok or frame is None:
            return None

        payload = self._decoder(frame)
        if not payload or payload == self._last_payload:
            return None

        self._last_payload = payload
        return payload

    async def payloads(self) -> AsyncIterator[str]:
        """Yield new payloads until the scanner is closed."""
        while self._capture is not None:
            if self._paused:
                await asyncio.sleep(self.poll_interval)
                continue

            # Frame reads block; keep them off the event loop
            try:
                payload = await asyncio.to_thread(self.read_payload)
            except CameraUnavailable:
                break
            if payload is not None and not self._paused:
                yield payload
            else:
                await asyncio.sleep(self.poll_interval)
