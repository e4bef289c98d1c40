from dataclasses import dataclass
import logging
from typing import List, Tuple

import cv2
import numpy as np

from .config import Config
from .geometry import FULL_PAGE, Rect
from .utils import decode_image

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectedPanel:
    """A proposed panel; confidence is informational."""
    rect: Rect
    confidence: float


class PanelDetector:
    """Finds full-width panels separated by horizontal white gutters."""

    def __init__(self, config: Config = None):
        self.config = config or Config()

    def detect_image_bytes(self, data: bytes) -> List[DetectedPanel]:
        """Decode an encoded page and detect its panels. Never raises."""
        try:
            raster = decode_image(data)
        except Exception as e:
            logger.warning(f"⚠️ Could not decode page, using full-page panel: {e}")
            return self._fallback()
        return self.detect(raster)

    def detect(self, raster: np.ndarray) -> List[DetectedPanel]:
        """Detect panels in a decoded page (gray, RGB or RGBA). Never raises."""
        try:
            gray = self._to_grayscale(raster)
            spans = self._find_panel_rows(gray)
        except Exception as e:
            logger.warning(f"⚠️ Panel detection failed, using full-page panel: {e}")
            return self._fallback()

        if not spans:
            logger.info("⚠️ No panel survived detection, using full-page panel")
            return self._fallback()

        height = gray.shape[0]
        panels = [
            DetectedPanel(Rect(0.0, y1 / height, 1.0, (y2 - y1) / height), self.config.detection_confidence)
            for y1, y2 in spans
        ]
        logger.info(f"✅ Detected {len(panels)} panels")
        return panels

    def _fallback(self) -> List[DetectedPanel]:
        return [DetectedPanel(FULL_PAGE, self.config.fallback_confidence)]

    def _to_grayscale(self, raster: np.ndarray) -> np.ndarray:
        raster = np.asarray(raster)
        if raster.ndim == 2:
            gray = raster
        elif raster.ndim == 3 and raster.shape[2] == 4:
            gray = cv2.cvtColor(raster.astype(np.uint8), cv2.COLOR_RGBA2GRAY)
        elif raster.ndim == 3 and raster.shape[2] == 3:
            gray = cv2.cvtColor(raster.astype(np.uint8), cv2.COLOR_RGB2GRAY)
        elif raster.ndim == 3 and raster.shape[2] == 1:
            gray = raster[:, :, 0]
        else:
            raise ValueError(f"Unsupported raster shape: {raster.shape}")

        if gray.shape[0] == 0 or gray.shape[1] == 0:
            raise ValueError("Empty raster")
        return gray

    def _find_panel_rows(self, gray: np.ndarray) -> List[Tuple[int, int]]:
        """
        Split the page at confirmed gutters.

        A gutter starts at a row whose mean intensity is above the whiteness
        threshold and is confirmed when the following rows, up to
        min_gutter_rows in total, are at least that white as well. A boundary
        goes at a confirmed gutter start lying more than min_panel_ratio of
        the page height below the previous boundary.
        """
        height = gray.shape[0]
        threshold = self.config.whiteness_threshold
        min_gutter = self.config.min_gutter_rows
        min_panel_height = height * self.config.min_panel_ratio

        row_means = gray.astype(np.float64).mean(axis=1)

        boundaries = [0]
        in_gutter = False
        for y in range(height):
            if row_means[y] > threshold:
                if not in_gutter:
                    in_gutter = True
                    lookahead = row_means[y + 1:min(y + min_gutter, height)]
                    if np.all(lookahead >= threshold) and y - boundaries[-1] > min_panel_height:
                        boundaries.append(y)
            else:
                in_gutter = False
        boundaries.append(height)

        spans = [
            (y1, y2) for y1, y2 in zip(boundaries, boundaries[1:])
            if y2 - y1 > min_panel_height
        ]
        logger.debug(f"📄 Row boundaries: {boundaries}")
        return spans
