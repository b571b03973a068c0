"""Tests for the OpenAI transport: model fallback and failure mapping."""

import io
from types import SimpleNamespace

import httpx
import openai
import pytest
from PIL import Image

from conftest import PNG_BYTES

from usersense.errors import VisionError
from usersense.vision import OpenAIVisionClient, normalize_screenshot

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _not_found(model):
    return openai.NotFoundError(
        f"The model `{model}` does not exist",
        response=httpx.Response(404, request=REQUEST),
        body=None,
    )


def _reply(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


class FakeCompletions:
    def __init__(self, behaviours):
        self.behaviours = behaviours
        self.models = []
        self.kwargs = []

    def create(self, **kwargs):
        model = kwargs["model"]
        self.models.append(model)
        self.kwargs.append(kwargs)
        outcome = self.behaviours[model]
        if isinstance(outcome, Exception):
            raise outcome
        return _reply(outcome)


class FakeOpenAI:
    def __init__(self, behaviours):
        self.completions = FakeCompletions(behaviours)
        self.chat = SimpleNamespace(completions=self.completions)
        self.options = []

    def with_options(self, **options):
        self.options.append(options)
        return self


def test_unavailable_model_falls_back_to_next_candidate():
    fake = FakeOpenAI({"gpt-4o-mini": _not_found("gpt-4o-mini"), "gpt-4o": '{"issues": []}'})
    client = OpenAIVisionClient(["gpt-4o-mini", "gpt-4o"], client=fake)

    text = client.complete("system", "prompt", PNG_BYTES, timeout=10.0)

    assert text == '{"issues": []}'
    assert fake.completions.models == ["gpt-4o-mini", "gpt-4o"]
    assert fake.options[0] == {"timeout": 10.0, "max_retries": 0}


def test_working_model_is_remembered():
    fake = FakeOpenAI({"gpt-4o-mini": _not_found("gpt-4o-mini"), "gpt-4o": "{}"})
    client = OpenAIVisionClient(["gpt-4o-mini", "gpt-4o"], client=fake)

    client.complete("system", "prompt", PNG_BYTES, timeout=10.0)
    client.complete("system", "prompt", PNG_BYTES, timeout=10.0)

    assert fake.completions.models == ["gpt-4o-mini", "gpt-4o", "gpt-4o"]


def test_timeout_stops_the_walk():
    fake = FakeOpenAI({"gpt-4o-mini": openai.APITimeoutError(request=REQUEST), "gpt-4o": "{}"})
    client = OpenAIVisionClient(["gpt-4o-mini", "gpt-4o"], client=fake)

    with pytest.raises(VisionError, match="timed out"):
        client.complete("system", "prompt", PNG_BYTES, timeout=3.0)
    assert fake.completions.models == ["gpt-4o-mini"]


def test_no_compatible_model():
    fake = FakeOpenAI({"a": _not_found("a"), "b": _not_found("b")})
    client = OpenAIVisionClient(["a", "b"], client=fake)

    with pytest.raises(VisionError, match="No compatible vision model found"):
        client.complete("system", "prompt", PNG_BYTES, timeout=3.0)


def test_exhausted_budget_skips_the_call():
    fake = FakeOpenAI({"gpt-4o": "{}"})
    client = OpenAIVisionClient(["gpt-4o"], client=fake)

    with pytest.raises(VisionError):
        client.complete("system", "prompt", PNG_BYTES, timeout=0)
    assert fake.completions.models == []


def test_request_carries_screenshot_and_json_mode():
    fake = FakeOpenAI({"gpt-4o": "{}"})
    OpenAIVisionClient(["gpt-4o"], client=fake).complete("be terse", "what now?", PNG_BYTES, timeout=5.0)

    sent = fake.completions.kwargs[0]
    assert sent["response_format"] == {"type": "json_object"}
    assert sent["messages"][0] == {"role": "system", "content": "be terse"}
    image_part = sent["messages"][1]["content"][1]
    assert image_part["image_url"]["url"].startswith("data:image/png;base64,")


def test_empty_candidate_list_is_rejected():
    with pytest.raises(ValueError):
        OpenAIVisionClient([])


def test_screenshot_is_resampled_to_logical_viewport():
    buffer = io.BytesIO()
    Image.new("RGB", (640, 400), "white").save(buffer, format="PNG")

    resized = normalize_screenshot(buffer.getvalue())

    with Image.open(io.BytesIO(resized)) as image:
        assert image.size == (1280, 800)


def test_undecodable_screenshot_is_passed_through():
    assert normalize_screenshot(PNG_BYTES) == PNG_BYTES
