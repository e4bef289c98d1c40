"""
Tests for comic_panel_narrator/narrative_client.py
"""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from comic_panel_narrator.config import Config
from comic_panel_narrator.exceptions import MissingCropError, ModelExhaustedError, NarrativeContractError
from comic_panel_narrator.narrative_client import (
    PANEL_MARKER,
    GeminiNarrativeModel,
    NarrativeClient,
    NarrativeRequest,
    PanelImage,
    parse_story_response,
    strip_fences,
)

from .conftest import FakeNarrativeModel


def cropped(*panel_ids):
    return [SimpleNamespace(panel_id=pid, cropped_image=b"png-" + pid.encode()) for pid in panel_ids]


def story(panel_id, text="story"):
    return {
        "panel_id": panel_id,
        "key_action_description": "action",
        "dialogue_summary": "None",
        "narration_tone": "Calm",
        "recap_texts": {"en-US": text},
    }


class TestParseStoryResponse:
    def test_results_follow_submitted_order(self):
        text = json.dumps([story("b", "second"), story("a", "first")])
        results = parse_story_response(text, ["a", "b"])
        assert [r.panel_id for r in results] == ["a", "b"]
        assert results[0].texts == {"en-US": "first"}
        assert results[0].narration_tone == "Calm"

    def test_fenced_reply(self):
        text = "```json\n" + json.dumps([story("a")]) + "\n```"
        assert parse_story_response(text, ["a"])[0].panel_id == "a"

    def test_strip_fences_leaves_plain_text(self):
        assert strip_fences('  [{"a": 1}] ') == '[{"a": 1}]'

    def test_missing_ids_reported(self):
        with pytest.raises(NarrativeContractError) as excinfo:
            parse_story_response(json.dumps([story("a")]), ["a", "b", "c"])
        assert excinfo.value.missing_ids == ["b", "c"]

    def test_unrequested_ids_ignored(self):
        results = parse_story_response(json.dumps([story("a"), story("zzz")]), ["a"])
        assert [r.panel_id for r in results] == ["a"]

    @pytest.mark.parametrize("text", ["not json", '{"panel_id": "a"}', ""])
    def test_malformed_reply(self, text):
        with pytest.raises(NarrativeContractError):
            parse_story_response(text, ["a"])


class TestNarrativeRequest:
    def test_context_in_prompt(self):
        request = NarrativeRequest((PanelImage("a", b"x"),), ("en-US", "fr-FR"), context="X")
        prompt = request.prompt_text()
        assert "en-US, fr-FR" in prompt
        assert prompt.endswith('Context from previous chapter/page chunk: "X"')

    def test_no_context(self):
        request = NarrativeRequest((PanelImage("a", b"x"),), ("en-US",))
        assert "Context from previous" not in request.prompt_text()

    def test_character_guide(self):
        with_notes = NarrativeRequest((), ("en-US",), character_notes="Jin: tall, scar")
        without = NarrativeRequest((), ("en-US",))
        assert "CHARACTER CONSISTENCY GUIDE" in with_notes.system_instruction()
        assert "Jin: tall, scar" in with_notes.system_instruction()
        assert "CHARACTER CONSISTENCY GUIDE" not in without.system_instruction()

    def test_schema_requires_every_language(self):
        schema = NarrativeRequest((), ("en-US", "ko-KR")).response_schema()
        recap = schema["items"]["properties"]["recap_texts"]
        assert schema["type"] == "ARRAY"
        assert recap["required"] == ["en-US", "ko-KR"]


class TestGeminiNarrativeModel:
    def test_markers_precede_images(self):
        model = GeminiNarrativeModel(client=MagicMock())
        request = NarrativeRequest((PanelImage("p1", b"one"), PanelImage("p2", b"two")), ("en-US",))
        parts = model.build_contents(request)[0].parts

        assert len(parts) == 5
        assert parts[0].text == request.prompt_text()
        assert parts[1].text == PANEL_MARKER.format(panel_id="p1")
        assert parts[2].inline_data.data == b"one"
        assert parts[3].text == PANEL_MARKER.format(panel_id="p2")
        assert parts[4].inline_data.mime_type == "image/png"

    def test_generate_returns_text(self):
        client = MagicMock()
        client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(text="[]"))
        model = GeminiNarrativeModel(client=client)
        request = NarrativeRequest((PanelImage("p1", b"one"),), ("en-US",))

        assert asyncio.run(model.generate("gemini-test", request)) == "[]"
        kwargs = client.aio.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "gemini-test"
        assert kwargs["config"].response_mime_type == "application/json"


class TestNarrativeClient:
    def test_generates_for_every_panel(self, config, sleep):
        fake = FakeNarrativeModel(texts={"a": "Hello"})
        client = NarrativeClient(fake, config, sleep=sleep)

        results = asyncio.run(client.generate_stories(cropped("a", "b"), context="before"))

        assert [r.texts["en-US"] for r in results] == ["Hello", "story b"]
        model, request = fake.calls[0]
        assert model == config.narrative_models[0]
        assert request.context == "before"
        assert request.languages == config.target_languages

    def test_incomplete_reply_is_retried_then_exhausted(self, config, sleep):
        fake = FakeNarrativeModel(drop=["p5"])
        client = NarrativeClient(fake, config, sleep=sleep)

        with pytest.raises(ModelExhaustedError) as excinfo:
            asyncio.run(client.generate_stories(cropped("p1", "p2", "p3", "p4", "p5")))

        assert len(fake.calls) == config.narrative_retries_per_model
        assert excinfo.value.missing_ids == ["p5"]
        assert sleep.delays == [1.5]

    def test_recovers_after_transient_failure(self, config, sleep):
        fake = FakeNarrativeModel(fail_times=1)
        client = NarrativeClient(fake, config, sleep=sleep)
        results = asyncio.run(client.generate_stories(cropped("a")))
        assert results[0].panel_id == "a"
        assert len(fake.calls) == 2

    def test_falls_back_across_models(self, sleep):
        config = Config(api_key="test-key", narrative_models=["primary", "backup"])
        fake = FakeNarrativeModel(fail_times=2)
        client = NarrativeClient(fake, config, sleep=sleep)

        asyncio.run(client.generate_stories(cropped("a")))
        assert [model for model, _ in fake.calls] == ["primary", "primary", "backup"]

    def test_uncropped_panels_rejected(self, config, sleep):
        panels = cropped("a") + [SimpleNamespace(panel_id="b", cropped_image=None)]
        client = NarrativeClient(FakeNarrativeModel(), config, sleep=sleep)
        with pytest.raises(MissingCropError) as excinfo:
            asyncio.run(client.generate_stories(panels))
        assert excinfo.value.panel_ids == ["b"]

    def test_no_panels_no_call(self, config, sleep):
        fake = FakeNarrativeModel()
        assert asyncio.run(NarrativeClient(fake, config, sleep=sleep).generate_stories([])) == []
        assert fake.calls == []
