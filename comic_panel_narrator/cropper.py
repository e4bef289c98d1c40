import asyncio
import io
import logging
from typing import Callable, Dict, Optional, Union

import numpy as np
from PIL import Image

from . import geometry
from .geometry import Rect
from .utils import decode_image

logger = logging.getLogger(__name__)

ImageSource = Union[bytes, np.ndarray]
CropResultHandler = Callable[[str, Rect, Optional[bytes]], None]


def crop_panel(image: ImageSource, width: int, height: int, rect: Rect) -> Optional[bytes]:
    """
    Cut `rect` out of a page and encode it as PNG.

    `image` is the encoded page or an already decoded array. Returns None for a
    zero-size box or an unreadable page. Same inputs give the same bytes.
    """
    left, top, right, bottom = geometry.to_pixels(rect, width, height)
    if right - left <= 0 or bottom - top <= 0:
        return None

    try:
        raster = decode_image(image) if isinstance(image, (bytes, bytearray)) else np.asarray(image)
    except (OSError, ValueError) as e:
        logger.warning(f"⚠️ Could not decode page for cropping: {e}")
        return None

    panel = raster[top:bottom, left:right]
    if panel.size == 0:
        return None

    buffer = io.BytesIO()
    Image.fromarray(np.ascontiguousarray(panel)).save(buffer, format="PNG")
    return buffer.getvalue()


class CropScheduler:
    """
    Runs crops off the event loop, at most one per panel.

    Every request bumps the panel's generation; a result is delivered only if
    no newer request for the same panel came in meanwhile.
    """

    def __init__(self, crop_fn: Callable[[ImageSource, int, int, Rect], Optional[bytes]] = crop_panel):
        self.crop_fn = crop_fn
        self._generation: Dict[str, int] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    def generation(self, panel_id: str) -> int:
        return self._generation.get(panel_id, 0)

    def in_flight(self, panel_id: Optional[str] = None) -> int:
        tasks = self._tasks.values() if panel_id is None else [self._tasks.get(panel_id)]
        return sum(1 for t in tasks if t is not None and not t.done())

    def schedule(self, panel_id: str, page, rect: Rect, on_result: CropResultHandler) -> asyncio.Task:
        """Crop `rect` from `page` (anything with image_bytes, width, height). Needs a running loop."""
        generation = self._generation.get(panel_id, 0) + 1
        self._generation[panel_id] = generation

        previous = self._tasks.get(panel_id)
        if previous is not None and not previous.done():
            previous.cancel()

        task = asyncio.get_running_loop().create_task(
            self._run(panel_id, generation, page.image_bytes, page.width, page.height, rect, on_result)
        )
        self._tasks[panel_id] = task
        return task

    async def _run(self, panel_id: str, generation: int, image: ImageSource, width: int, height: int,
                   rect: Rect, on_result: CropResultHandler) -> Optional[bytes]:
        result = await asyncio.to_thread(self.crop_fn, image, width, height, rect)
        if self._generation.get(panel_id) != generation:
            logger.debug(f"⚠️ Dropping stale crop for {panel_id} (generation {generation})")
            return None

        self._tasks.pop(panel_id, None)
        on_result(panel_id, rect, result)
        return result

    def cancel(self, panel_id: str) -> None:
        """Forget a panel: its pending crop, if any, will never be delivered."""
        self._generation[panel_id] = self._generation.get(panel_id, 0) + 1
        task = self._tasks.pop(panel_id, None)
        if task is not None and not task.done():
            task.cancel()

    async def drain(self) -> None:
        """Wait until no crop is in flight, including crops scheduled while waiting."""
        while True:
            pending = [t for t in self._tasks.values() if not t.done()]
            if not pending:
                break
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks = {k: t for k, t in self._tasks.items() if not t.done()}
