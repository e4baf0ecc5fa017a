"""Shared fixtures: a scripted Gemini upstream and a recording sleep."""
import dataclasses
import json

import httpx
import pytest

from nenua.ai import AIConfig, AIService, GeminiClient, RetryPolicy


API_KEY = "test-key"


def gemini_response(text, sources=None):
    """Build a generateContent success body."""
    candidate = {"content": {"role": "model", "parts": [{"text": text}]}}
    if sources:
        candidate["groundingMetadata"] = {
            "groundingChunks": [{"web": {"title": title, "uri": uri}} for title, uri in sources]
        }
    return {"candidates": [candidate]}


def gemini_json(payload, sources=None):
    return gemini_response(json.dumps(payload), sources)


def gemini_error(status, code, message="upstream error"):
    return httpx.Response(status, json={"error": {"code": status, "message": message, "status": code}})


class Upstream:
    """Scripted upstream: replays responses in order and records requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def handler(self, request):
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json=response)

    def transport(self):
        return httpx.MockTransport(self.handler)

    @property
    def bodies(self):
        return [json.loads(request.content) for request in self.requests]


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def config():
    return AIConfig(api_key=API_KEY, log_dir=None)


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def make_service(config, sleeps):
    """Build an AIService wired to a scripted upstream."""
    def _make(upstream, **overrides):
        cfg = dataclasses.replace(config, **overrides)
        client = GeminiClient.from_config(cfg, transport=upstream.transport())
        retry = RetryPolicy(max_attempts=cfg.max_attempts,
                            base_delay=cfg.base_delay,
                            max_jitter=cfg.max_jitter,
                            sleep=sleeps)
        return AIService(cfg, client=client, retry_policy=retry)

    return _make
