import io
import logging
import os
import wave
import zipfile

from .exceptions import ExportError
from .models import AudioStatus
from .state_store import StateStore

logger = logging.getLogger(__name__)


def pcm_to_wav(pcm: bytes, sample_rate: int = 24000) -> bytes:
    """Wrap raw 16-bit mono PCM in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


def export_chapter_archive(store: StateStore, chapter_id: str, path: str,
                           language: str = None, sample_rate: int = None) -> int:
    """
    Write a chapter's panels to a zip: `panel_<n>.png` in reading order, plus
    `panel_<n>.wav` for panels with ready audio in `language`.

    Returns the number of images written.
    """
    language = language or store.config.primary_language
    sample_rate = sample_rate or store.config.sample_rate
    panels = [p for p in store.export_chapter(chapter_id) if p.cropped_image]
    if not panels:
        raise ExportError(f"Chapter {chapter_id} has no cropped panels to export", {"chapter_id": chapter_id})

    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)

    with zipfile.ZipFile(path, "w", zipfile.ZIP_DEFLATED) as archive:
        for n, panel in enumerate(panels, 1):
            archive.writestr(f"panel_{n}.png", panel.cropped_image)
            audio = panel.audio.get(language)
            if audio is not None and audio.status == AudioStatus.READY and audio.pcm:
                archive.writestr(f"panel_{n}.wav", pcm_to_wav(audio.pcm, sample_rate))

    logger.info(f"✅ Exported {len(panels)} panels to {path}")
    return len(panels)
