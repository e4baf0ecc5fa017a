"""End-to-end gateway tests against a scripted Gemini upstream."""
import base64

import pytest

from nenua.ai import (
    AIConfig,
    AIService,
    CapacityExhaustedError,
    ChatRole,
    ConfigurationError,
    MalformedResponseError,
    RequestFailureError,
    TriageLevel,
    create_ai_service,
)
from nenua.ai.chat import EMPTY_REPLY_TEXT, TUTOR_SYSTEM_INSTRUCTION
from nenua.ai.schemas import ANALYSIS_SCHEMA, CORNELL_NOTE_SCHEMA

from conftest import Upstream, gemini_error, gemini_json, gemini_response


WEATHER_PAYLOAD = {
    "location": "New York",
    "temperature": "18°C",
    "condition": "Light rain",
    "humidity": "81%",
    "forecast": [
        {"day": "Tue", "temp": "17°C", "condition": "Showers"},
        {"day": "Wed", "temp": "20°C"},
    ],
    "advisory": "Umbrella or soggy notes, choose.",
}


class TestConstruction:

    def test_missing_key_raises_configuration_error(self):
        with pytest.raises(ConfigurationError):
            create_ai_service(AIConfig(api_key=None, log_dir=None))

    def test_status(self, make_service):
        service = make_service(Upstream())

        status = service.get_status()

        assert status["provider"] == "gemini"
        assert status["max_attempts"] == 3
        assert status["vision_available"] is False
        service.vision()
        assert service.get_status()["vision_available"] is True


class TestChat:

    def test_create_session_makes_no_call(self, make_service):
        upstream = Upstream()
        service = make_service(upstream)

        session = service.create_chat_session([{"role": "model", "text": "hey"}])

        assert upstream.requests == []
        assert session.system_instruction == TUTOR_SYSTEM_INSTRUCTION
        assert session.history[0].role is ChatRole.MODEL

    def test_create_session_rejects_malformed_history(self, make_service):
        service = make_service(Upstream())

        with pytest.raises(ValueError):
            service.create_chat_session([{"role": "narrator", "text": "once upon a time"}])
        with pytest.raises(ValueError):
            service.create_chat_session([{"role": "user"}])

    @pytest.mark.asyncio
    async def test_history_order_is_preserved(self, make_service):
        upstream = Upstream(gemini_response("Start with spaced repetition."))
        service = make_service(upstream)
        session = service.create_chat_session([
            {"role": "model", "text": "h0"},
            {"role": "user", "text": "h1"},
            {"role": "assistant", "text": "h2"},
        ])

        reply, updated = await service.send_message(session, "m")

        body = upstream.bodies[0]
        assert body["contents"] == [
            {"role": "model", "parts": [{"text": "h0"}]},
            {"role": "user", "parts": [{"text": "h1"}]},
            {"role": "model", "parts": [{"text": "h2"}]},
            {"role": "user", "parts": [{"text": "m"}]},
        ]
        assert body["systemInstruction"]["parts"][0]["text"] == TUTOR_SYSTEM_INSTRUCTION
        assert "generationConfig" not in body

        assert reply == "Start with spaced repetition."
        assert [t.text for t in updated.history] == ["h0", "h1", "h2", "m", reply]
        # the original session value is untouched
        assert len(session.history) == 3

    @pytest.mark.asyncio
    async def test_empty_reply_uses_fallback(self, make_service):
        service = make_service(Upstream({"candidates": []}))

        reply, updated = await service.send_message(service.create_chat_session(), "hi")

        assert reply == EMPTY_REPLY_TEXT
        assert updated.history[-1].text == EMPTY_REPLY_TEXT

    @pytest.mark.asyncio
    async def test_chat_retries_on_capacity(self, make_service, sleeps):
        upstream = Upstream(gemini_error(429, "RESOURCE_EXHAUSTED"), gemini_response("ok"))
        service = make_service(upstream)

        reply, _ = await service.send_message(service.create_chat_session(), "hi")

        assert reply == "ok"
        assert len(upstream.requests) == 2
        assert len(sleeps.delays) == 1


class TestHealthAdvice:

    @pytest.mark.asyncio
    async def test_symptom_to_advice(self, make_service):
        upstream = Upstream(gemini_json({
            "advice": "Take a break and stretch.",
            "triageLevel": "Self-Care",
            "tips": ["Stand up every hour", "Check your chair height"],
        }))
        service = make_service(upstream)

        advice = await service.get_health_advice("I feel exhausted and my back hurts")

        assert advice.triage_level is TriageLevel.SELF_CARE
        assert advice.to_dict() == {
            "advice": "Take a break and stretch.",
            "triageLevel": "Self-Care",
            "tips": ["Stand up every hour", "Check your chair height"],
        }
        body = upstream.bodies[0]
        assert "I feel exhausted and my back hurts" in body["contents"][0]["parts"][0]["text"]
        schema = body["generationConfig"]["responseSchema"]
        assert schema["required"] == ["advice", "triageLevel", "tips"]
        assert schema["properties"]["triageLevel"]["enum"] == ["Self-Care", "Consult Pharmacist", "See a Doctor"]

    @pytest.mark.asyncio
    async def test_unknown_triage_is_most_cautious(self, make_service):
        service = make_service(Upstream(gemini_json({"advice": "hmm", "triageLevel": "Vibes", "tips": []})))

        advice = await service.get_health_advice("weird rash")

        assert advice.triage_level is TriageLevel.SEE_A_DOCTOR


class TestWeather:

    @pytest.mark.asyncio
    async def test_two_chained_calls(self, make_service):
        upstream = Upstream(
            gemini_response("NYC: 18C light rain. Roast: your umbrella misses you.",
                            sources=[("weather.com", "https://weather.com/nyc")]),
            gemini_json(WEATHER_PAYLOAD),
        )
        service = make_service(upstream)

        weather = await service.fetch_weather_prep("New York")

        assert len(upstream.requests) == 2
        grounding, formatting = upstream.bodies
        assert grounding["tools"] == [{"google_search": {}}]
        assert "Weather for New York" in grounding["contents"][0]["parts"][0]["text"]
        assert "generationConfig" not in grounding

        assert "tools" not in formatting
        assert "your umbrella misses you" in formatting["contents"][0]["parts"][0]["text"]
        assert formatting["generationConfig"]["responseMimeType"] == "application/json"

        assert weather.temperature == "18°C"
        assert weather.condition == "Light rain"
        assert weather.forecast[1].condition == ""
        assert weather.to_dict()["sources"] == [{"title": "weather.com", "uri": "https://weather.com/nyc"}]

    @pytest.mark.asyncio
    async def test_blank_location_uses_default(self, make_service):
        upstream = Upstream(gemini_response("sunny"), gemini_json(WEATHER_PAYLOAD))
        service = make_service(upstream, default_location="Boston")

        await service.fetch_weather_prep("   ")

        assert "Weather for Boston" in upstream.bodies[0]["contents"][0]["parts"][0]["text"]

    @pytest.mark.asyncio
    async def test_first_stage_failure_skips_second(self, make_service, sleeps):
        upstream = Upstream(gemini_error(403, "PERMISSION_DENIED"), gemini_json(WEATHER_PAYLOAD))
        service = make_service(upstream)

        with pytest.raises(RequestFailureError) as exc_info:
            await service.fetch_weather_prep("New York")

        assert exc_info.value.status == 403
        assert len(upstream.requests) == 1
        assert sleeps.delays == []

    @pytest.mark.asyncio
    async def test_each_stage_retries_independently(self, make_service, sleeps):
        upstream = Upstream(
            gemini_error(429, "RESOURCE_EXHAUSTED"),
            gemini_response("sunny"),
            gemini_error(429, "RESOURCE_EXHAUSTED"),
            gemini_json(WEATHER_PAYLOAD),
        )
        service = make_service(upstream)

        weather = await service.fetch_weather_prep("New York")

        assert weather.location == "New York"
        assert len(upstream.requests) == 4
        assert len(sleeps.delays) == 2
        assert all(3.0 <= delay < 4.0 for delay in sleeps.delays)


class TestStructured:

    @pytest.mark.asyncio
    async def test_request_structured_with_retrieval(self, make_service):
        upstream = Upstream(gemini_response("grounded facts"), gemini_json({"title": "T"}))
        service = make_service(upstream)

        data = await service.request_structured("Explain X", ANALYSIS_SCHEMA, retrieval_enabled=True)

        assert data == {"title": "T", "explanation": "", "keyPoints": []}
        assert upstream.bodies[1]["contents"][0]["parts"][0]["text"] == 'Format this into JSON: "grounded facts"'

    @pytest.mark.asyncio
    async def test_notes_truncated_and_use_notes_model(self, make_service):
        upstream = Upstream(gemini_json({"title": "Photosynthesis", "cues": ["What is ATP?"]}))
        service = make_service(upstream)

        note = await service.generate_cornell_notes("x" * 6000)

        assert upstream.requests[0].url.path.endswith("/models/gemini-3-pro-preview:generateContent")
        prompt = upstream.bodies[0]["contents"][0]["parts"][0]["text"]
        assert prompt == "Synthesize this into Cornell Notes JSON: " + "x" * 5000
        assert note.to_dict() == {
            "title": "Photosynthesis",
            "topic": "",
            "date": "",
            "cues": ["What is ATP?"],
            "notes": [],
            "summary": "",
        }

    @pytest.mark.asyncio
    async def test_empty_text_gives_defaults(self, make_service):
        service = make_service(Upstream(gemini_response("")))

        data = await service.request_structured("p", CORNELL_NOTE_SCHEMA)

        assert data == {"title": "", "topic": "", "date": "", "cues": [], "notes": [], "summary": ""}

    @pytest.mark.asyncio
    async def test_malformed_json_raises_without_retry(self, make_service, sleeps):
        upstream = Upstream(gemini_response("Sorry, I can't do JSON today"))
        service = make_service(upstream)

        with pytest.raises(MalformedResponseError) as exc_info:
            await service.request_structured("p", CORNELL_NOTE_SCHEMA)

        assert exc_info.value.raw_text == "Sorry, I can't do JSON today"
        assert len(upstream.requests) == 1
        assert sleeps.delays == []

    @pytest.mark.asyncio
    async def test_malformed_json_lenient_mode(self, make_service):
        service = make_service(Upstream(gemini_response("[1, 2")), lenient_json=True)

        data = await service.request_structured("p", ANALYSIS_SCHEMA)

        assert data == {"title": "", "explanation": "", "keyPoints": []}


class TestVision:

    @pytest.mark.asyncio
    async def test_data_url_frame(self, make_service):
        upstream = Upstream(gemini_json({
            "title": "Quadratic formula",
            "explanation": "The board derives the roots of ax^2 + bx + c.",
            "keyPoints": ["Discriminant decides root count"],
        }))
        service = make_service(upstream)
        image = b"\xff\xd8\xff\xe0whiteboard"
        data_url = "data:image/jpeg;base64," + base64.b64encode(image).decode()

        result = await service.analyze_camera_frame(data_url)

        assert result.title == "Quadratic formula"
        assert result.explanation
        assert result.key_points == ["Discriminant decides root count"]

        parts = upstream.bodies[0]["contents"][0]["parts"]
        assert parts[0]["inlineData"] == {"mimeType": "image/jpeg", "data": base64.b64encode(image).decode()}
        assert parts[1] == {"text": "Explain visual. JSON: {title, explanation, keyPoints: string[]}"}

    @pytest.mark.asyncio
    async def test_request_vision_analysis_mime_type(self, make_service):
        upstream = Upstream(gemini_json({"title": "t", "explanation": "e", "keyPoints": []}))
        service = make_service(upstream)

        await service.request_vision_analysis(b"png-bytes", "what is this", ANALYSIS_SCHEMA, mime_type="image/png")

        assert upstream.bodies[0]["contents"][0]["parts"][0]["inlineData"]["mimeType"] == "image/png"

    @pytest.mark.asyncio
    async def test_capacity_twice_then_success(self, make_service, sleeps):
        upstream = Upstream(
            gemini_error(429, "RESOURCE_EXHAUSTED"),
            gemini_error(429, "RESOURCE_EXHAUSTED"),
            gemini_json({"title": "t", "explanation": "e", "keyPoints": ["k"]}),
        )
        service = make_service(upstream)

        result = await service.analyze_camera_frame(b"\xff\xd8frame")

        assert result.key_points == ["k"]
        assert len(upstream.requests) == 3
        assert len(sleeps.delays) == 2

    @pytest.mark.asyncio
    async def test_capacity_exhausted_propagates(self, make_service, sleeps):
        upstream = Upstream(*[gemini_error(429, "RESOURCE_EXHAUSTED", f"attempt {n}") for n in range(3)])
        service = make_service(upstream)

        with pytest.raises(CapacityExhaustedError) as exc_info:
            await service.analyze_camera_frame(b"\xff\xd8frame")

        assert exc_info.value.error["message"] == "attempt 2"
        assert len(upstream.requests) == 3
        assert len(sleeps.delays) == 2


def test_service_accepts_injected_dependencies(config):
    class StubClient:
        pass

    client = StubClient()
    service = AIService(config, client=client)

    assert service.client is client
    assert service.retry.max_attempts == config.max_attempts
