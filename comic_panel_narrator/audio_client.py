"""
Per-panel narration audio.

When the previous panel's text is sent along, the speech model voices both
segments so the intonation carries over; only the audio for the current
text, the last part of the reply, is kept.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence

import numpy as np
from google import genai
from google.genai import types

from .config import Config
from .exceptions import AudioGenerationError, ModelCallError
from .retry import ModelPool, call_with_fallbacks

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpeechParams:
    speaking_rate: float = 1.0
    pitch: float = 0.0
    volume_gain_db: float = 0.0


@dataclass(frozen=True)
class SpeechRequest:
    text: str
    voice: str
    params: SpeechParams = SpeechParams()
    previous_text: Optional[str] = None

    def segments(self) -> List[str]:
        """Text parts in send order: the previous text (when not blank) first, the current text last."""
        if self.previous_text and self.previous_text.strip():
            return [self.previous_text, self.text]
        return [self.text]


@dataclass(frozen=True)
class SpeechResponse:
    audio_parts: Sequence[bytes] = field(default=(), repr=False)
    finish_reason: Optional[str] = None


class SpeechModel:
    """Backend interface: one call against one named speech model."""

    async def synthesize(self, model: str, request: SpeechRequest) -> SpeechResponse:
        raise NotImplementedError


def delivery_instruction(params: SpeechParams) -> str:
    """Spoken-style prefix for rate and pitch; empty for the defaults."""
    pieces = []
    if params.speaking_rate != 1.0:
        pieces.append(f"at {params.speaking_rate:g} times the normal speaking rate")
    if params.pitch != 0.0:
        direction = "raised" if params.pitch > 0 else "lowered"
        pieces.append(f"with the pitch {direction} by {abs(params.pitch):g} semitones")
    if not pieces:
        return ""
    return f"Say {' and '.join(pieces)}: "


def apply_gain(pcm: bytes, gain_db: float) -> bytes:
    """Scale 16-bit little-endian PCM by `gain_db`, clipping to the sample range."""
    if not pcm or gain_db == 0.0:
        return pcm
    samples = np.frombuffer(pcm[: len(pcm) - len(pcm) % 2], dtype="<i2").astype(np.float64)
    scaled = np.clip(np.round(samples * 10 ** (gain_db / 20)), -32768, 32767)
    return scaled.astype("<i2").tobytes()


class GeminiSpeechModel(SpeechModel):
    """
    SpeechModel on the google-genai SDK.

    Prebuilt voices take only a voice name, so rate and pitch travel as a
    delivery instruction in front of each text part and the volume gain is
    applied to the returned PCM.
    """

    def __init__(self, api_key: str = None, client: "genai.Client" = None):
        self.client = client or genai.Client(api_key=api_key)

    async def synthesize(self, model: str, request: SpeechRequest) -> SpeechResponse:
        prefix = delivery_instruction(request.params)
        try:
            response = await self.client.aio.models.generate_content(
                model=model,
                contents=[types.Content(
                    role="user",
                    parts=[types.Part.from_text(text=prefix + t) for t in request.segments()],
                )],
                config=types.GenerateContentConfig(
                    response_modalities=["AUDIO"],
                    speech_config=types.SpeechConfig(
                        voice_config=types.VoiceConfig(
                            prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=request.voice),
                        ),
                    ),
                ),
            )
        except Exception as e:
            raise ModelCallError(model, str(e)) from e

        parts = []
        finish_reason = None
        candidates = response.candidates or []
        if candidates:
            candidate = candidates[0]
            if candidate.finish_reason is not None:
                finish_reason = getattr(candidate.finish_reason, "value", str(candidate.finish_reason))
            content_parts = candidate.content.parts if candidate.content and candidate.content.parts else []
            for part in content_parts:
                inline = getattr(part, "inline_data", None)
                data = inline.data if inline is not None and inline.data else b""
                parts.append(apply_gain(data, request.params.volume_gain_db))
        return SpeechResponse(audio_parts=tuple(parts), finish_reason=finish_reason)


def select_current_segment(response: SpeechResponse) -> bytes:
    """Audio for the current text: the last part of the reply. Raises AudioGenerationError when it holds no audio."""
    if response.audio_parts and response.audio_parts[-1]:
        return bytes(response.audio_parts[-1])
    raise AudioGenerationError(response.finish_reason)


class NarrationAudioClient:
    """Speech synthesis with the same retry and fallback policy as narrative calls."""

    def __init__(self, model: SpeechModel = None, config: Config = None, pool: ModelPool = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.config = config or Config()
        self.model = model or GeminiSpeechModel(api_key=self.config.api_key or None)
        self.pool = pool or ModelPool(self.config.speech_models, self.config.model_cooldown_seconds)
        self.sleep = sleep

    def default_params(self) -> SpeechParams:
        return SpeechParams(self.config.speaking_rate, self.config.pitch, self.config.volume_gain_db)

    async def generate_audio(self, text: str, previous_text: Optional[str] = None,
                             voice: Optional[str] = None, params: Optional[SpeechParams] = None) -> bytes:
        """
        Raw 16-bit mono PCM for `text`; empty bytes for blank text without calling the model.

        Failed calls are retried and fall back across models; a reply that
        carries no audio raises AudioGenerationError right away.
        """
        if not text or not text.strip():
            return b""

        request = SpeechRequest(
            text=text,
            voice=voice or self.config.voice,
            params=params or self.default_params(),
            previous_text=previous_text,
        )

        async def attempt(model: str) -> SpeechResponse:
            return await self.model.synthesize(model, request)

        # A reply without audio (e.g. a SAFETY stop) is final, not retried.
        response = await call_with_fallbacks(
            attempt,
            self.pool,
            self.config.speech_retries_per_model,
            self.config.retry_base_delay,
            sleep=self.sleep,
        )
        pcm = select_current_segment(response)
        logger.info(f"✅ Audio segment generated ({len(pcm)} bytes)")
        return pcm
