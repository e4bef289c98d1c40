"""
Per-chapter narrative generation.

A whole chapter goes to the vision/language model in one request: every
cropped panel image preceded by its id marker, the optional character guide
and the trailing context handed over from the previous chapter. The reply
must be a JSON array with one entry per submitted panel; anything less is
a failed attempt and goes through retry and model fallback.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from google import genai
from google.genai import types

from .config import Config
from .exceptions import MissingCropError, ModelCallError, NarrativeContractError
from .retry import ModelPool, call_with_fallbacks

logger = logging.getLogger(__name__)

PANEL_MARKER = "--- PANEL START (ID: {panel_id}) ---"

SYSTEM_INSTRUCTION = """You are a master storyteller and scriptwriter for a "manhwa recap" video channel. Your goal is to transform a series of static comic panels into a script for an engaging, fast-paced video.

Your tone must be conversational, exciting and slightly informal, as if you're passionately explaining the story to a friend.

**YOUR PROCESS:**
For each panel image provided in the batch, analyze the visual action, read any dialogue in bubbles, and synthesize them into a cohesive narrative segment for every requested language.

{character_guide}

**RULES:**
1.  **Describe the Action First:** Start with the key visual action of the panel.
2.  **Integrate Dialogue Naturally:** Weave speech bubble text into the narration instead of listing it.
3.  **Connect the Panels:** The batch is one continuous scene; the narration must flow from panel to panel.
4.  **Adhere to Schema:** Fill out every field of the JSON schema for every panel, including `key_action_description`, `dialogue_summary` and `narration_tone`.
5.  **Strict JSON Output:** Respond with a single valid JSON array and nothing else.

**CONTEXT:**
Use the "Context from previous chapter/page chunk" to ensure a smooth narrative transition if it is provided."""

CHARACTER_GUIDE = """---
**CHARACTER CONSISTENCY GUIDE**
You MUST refer to these character descriptions to keep names, personalities and key features consistent.
{notes}
---"""

_FENCE_RE = re.compile(r"^```(\w*)?\s*\n?(.*?)\n?\s*```$", re.DOTALL)


@dataclass(frozen=True)
class PanelImage:
    panel_id: str
    image: bytes = field(repr=False)
    mime_type: str = "image/png"


@dataclass(frozen=True)
class NarrativeRequest:
    """Everything one narrative call sends to the model."""
    panels: Tuple[PanelImage, ...]
    languages: Tuple[str, ...]
    character_notes: str = ""
    context: Optional[str] = None

    @property
    def panel_ids(self) -> List[str]:
        return [p.panel_id for p in self.panels]

    def system_instruction(self) -> str:
        notes = self.character_notes.strip()
        guide = CHARACTER_GUIDE.format(notes=notes) if notes else ""
        return SYSTEM_INSTRUCTION.format(character_guide=guide)

    def prompt_text(self) -> str:
        prompt = (
            f"Analyze this batch of panels. For each panel, generate a story recap for the following "
            f"languages: {', '.join(self.languages)}. Use the provided context and the character guide "
            f"in the system prompt to ensure narrative flow."
        )
        if self.context:
            prompt += f' Context from previous chapter/page chunk: "{self.context}"'
        return prompt

    def response_schema(self) -> dict:
        language_properties = {
            lang: {"type": "STRING", "description": f"The narrative recap in {lang}."}
            for lang in self.languages
        }
        return {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "panel_id": {"type": "STRING", "description": "The panel id, matching the input."},
                    "key_action_description": {"type": "STRING", "description": "Brief objective summary of the key visual action."},
                    "dialogue_summary": {"type": "STRING", "description": 'Concise summary of the dialogue, or "None".'},
                    "narration_tone": {"type": "STRING", "description": "Dominant tone, e.g. Tense, Humorous."},
                    "recap_texts": {
                        "type": "OBJECT",
                        "properties": language_properties,
                        "required": list(self.languages),
                    },
                },
                "required": ["panel_id", "key_action_description", "dialogue_summary", "narration_tone", "recap_texts"],
            },
        }


@dataclass(frozen=True)
class StoryResult:
    panel_id: str
    texts: Mapping[str, str]
    key_action_description: str = ""
    dialogue_summary: str = ""
    narration_tone: str = ""


class NarrativeModel:
    """Backend interface: one call against one named model, returning the raw reply text."""

    async def generate(self, model: str, request: NarrativeRequest) -> str:
        raise NotImplementedError


class GeminiNarrativeModel(NarrativeModel):
    """NarrativeModel on the google-genai SDK."""

    def __init__(self, api_key: str = None, client: "genai.Client" = None, temperature: float = 0.5):
        self.client = client or genai.Client(api_key=api_key)
        self.temperature = temperature

    def build_contents(self, request: NarrativeRequest) -> List[types.Content]:
        parts = [types.Part.from_text(text=request.prompt_text())]
        for panel in request.panels:
            parts.append(types.Part.from_text(text=PANEL_MARKER.format(panel_id=panel.panel_id)))
            parts.append(types.Part.from_bytes(data=panel.image, mime_type=panel.mime_type))
        return [types.Content(role="user", parts=parts)]

    async def generate(self, model: str, request: NarrativeRequest) -> str:
        try:
            response = await self.client.aio.models.generate_content(
                model=model,
                contents=self.build_contents(request),
                config=types.GenerateContentConfig(
                    system_instruction=request.system_instruction(),
                    temperature=self.temperature,
                    response_mime_type="application/json",
                    response_schema=request.response_schema(),
                ),
            )
        except Exception as e:
            raise ModelCallError(model, str(e)) from e

        if not response.text:
            raise ModelCallError(model, "empty response")
        return response.text


def strip_fences(text: str) -> str:
    text = text.strip()
    match = _FENCE_RE.match(text)
    if match and match.group(2):
        return match.group(2).strip()
    return text


def parse_story_response(text: str, submitted_ids: Sequence[str]) -> List[StoryResult]:
    """
    Parse and validate a narrative reply.

    Raises NarrativeContractError for anything but a JSON array, and when any
    submitted panel id is missing from it. Entries for ids that were not
    submitted are dropped.
    """
    try:
        parsed = json.loads(strip_fences(text))
    except (TypeError, ValueError) as e:
        raise NarrativeContractError(f"AI response was not valid JSON: {e}") from e

    if not isinstance(parsed, list):
        raise NarrativeContractError("AI response was not a valid JSON array.")

    by_id: Dict[str, StoryResult] = {}
    for item in parsed:
        if not isinstance(item, dict) or "panel_id" not in item:
            continue
        texts = item.get("recap_texts") or {}
        if not isinstance(texts, dict):
            texts = {}
        by_id[str(item["panel_id"])] = StoryResult(
            panel_id=str(item["panel_id"]),
            texts={str(k): str(v) for k, v in texts.items() if v is not None},
            key_action_description=str(item.get("key_action_description") or ""),
            dialogue_summary=str(item.get("dialogue_summary") or ""),
            narration_tone=str(item.get("narration_tone") or ""),
        )

    missing = [pid for pid in submitted_ids if pid not in by_id]
    if missing:
        raise NarrativeContractError(
            f"AI response is incomplete. Missing stories for panel IDs: {', '.join(missing)}",
            missing_ids=missing,
        )
    return [by_id[pid] for pid in submitted_ids]


class NarrativeClient:
    """Narrative generation with retry within a model and fallback across models."""

    def __init__(self, model: NarrativeModel = None, config: Config = None, pool: ModelPool = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.config = config or Config()
        self.model = model or GeminiNarrativeModel(
            api_key=self.config.api_key or None, temperature=self.config.narrative_temperature)
        self.pool = pool or ModelPool(self.config.narrative_models, self.config.model_cooldown_seconds)
        self.sleep = sleep

    def build_request(self, panels: Sequence, character_notes: str = "",
                      languages: Optional[Sequence[str]] = None,
                      context: Optional[str] = None) -> NarrativeRequest:
        """Panels are anything with `panel_id` and `cropped_image`; all of them must be cropped."""
        missing = [p.panel_id for p in panels if not p.cropped_image]
        if missing:
            raise MissingCropError(missing)
        images = tuple(
            PanelImage(p.panel_id, p.cropped_image, getattr(p, "mime_type", None) or "image/png")
            for p in panels
        )
        return NarrativeRequest(
            panels=images,
            languages=tuple(languages or self.config.target_languages),
            character_notes=character_notes or "",
            context=context or None,
        )

    async def generate_stories(self, panels: Sequence, character_notes: str = "",
                               languages: Optional[Sequence[str]] = None,
                               context: Optional[str] = None) -> List[StoryResult]:
        request = self.build_request(panels, character_notes, languages, context)
        if not request.panels:
            return []

        async def attempt(model: str) -> List[StoryResult]:
            text = await self.model.generate(model, request)
            return parse_story_response(text, request.panel_ids)

        logger.info(f"📄 Generating stories for {len(request.panels)} panels")
        results = await call_with_fallbacks(
            attempt,
            self.pool,
            self.config.narrative_retries_per_model,
            self.config.retry_base_delay,
            sleep=self.sleep,
        )
        logger.info(f"✅ Generated {len(results)} stories")
        return results
