import asyncio
import json

import httpx
import pytest
from sqlalchemy import func, select

from advisory import SmartAdvisory, parse_due_date, recommendation_alerts
from conftest import FARM_ID, FOREIGN_FARM_ID, USER_ID, StubModel, sse_stream
from context_builder import ContextBuilder
from errors import FarmNotFound, InvalidRequest, QuotaExceededError, RateLimitedError
from llm import AdvisoryModel, UpstreamStream
from models import AIReport, Alert, FarmTask

IRRIGATION = {
    "type": "irrigation", "emoji": "💧", "title_bn": "সেচ দিন", "title_en": "Irrigate",
    "description_bn": "৫ দিন বৃষ্টি নেই, ধানে সেচ দিন।", "description_en": "No rain for 5 days.",
    "explanation_bn": "মাটির আর্দ্রতা কম।", "action_steps_bn": ["সকালে সেচ দিন"],
    "urgency": "জরুরি", "confidence": 88, "priority": "high",
}

TASKS = [
    {"title": "Irrigate rice", "title_bn": "ধানে সেচ", "due_date": "2026-10-20", "priority": "high",
     "task_type": "irrigation"},
    {"title": "Vaccinate goats", "title_bn": "ছাগলের টিকা", "due_date": "2026-10-22", "priority": "medium",
     "task_type": "vaccination", "description": "পিপিআর টিকা"},
    {"title": "Bad date", "title_bn": "ভুল", "due_date": "next week", "priority": "low", "task_type": "general"},
]


def advisory(settings, session_factory, model):
    return SmartAdvisory(settings, model, ContextBuilder(session_factory, None), session_factory)


def run(service, mode, farm_id=FARM_ID):
    return asyncio.run(service.run(mode, USER_ID, farm_id))


def count(session_factory, model):
    with session_factory() as session:
        return session.execute(select(func.count(model.id))).scalar_one()


def test_recommendations_are_returned_and_mirrored_into_alerts(settings, session_factory, farm):
    model = StubModel({"generate_recommendations": {"recommendations": [IRRIGATION]}})
    result = run(advisory(settings, session_factory, model), "recommendations")

    assert result["weather"] is None
    assert result["recommendations"][0]["title_bn"] == "সেচ দিন"
    assert result["recommendations"][0]["explanation_en"] == "মাটির আর্দ্রতা কম।"

    with session_factory() as session:
        row = session.execute(select(Alert)).scalars().one()
        assert (row.alert_type, row.severity, row.title_bn) == ("ai_irrigation", "high", "সেচ দিন")
        assert row.message_bn == IRRIGATION["description_bn"]

        report = session.execute(select(AIReport)).scalars().one()
        assert report.report_type == "smart_advisory"
        assert (report.urgency, report.confidence) == ("জরুরি", 88)
        assert report.action_steps == [{"title": "সেচ দিন", "steps": ["সকালে সেচ দিন"]}]
        assert json.loads(report.explanation_bn)[0]["type"] == "irrigation"

    prompt = model.calls[0]["messages"]
    assert model.calls[0]["tool"] == "generate_recommendations"
    assert prompt[0]["role"] == "system"
    assert "### ফসল (0টি):" in prompt[1]["content"]


def test_repeated_recommendations_insert_no_new_alerts(settings, session_factory, farm):
    model = StubModel({"generate_recommendations": {"recommendations": [IRRIGATION]}})
    service = advisory(settings, session_factory, model)

    run(service, "recommendations")
    second = run(service, "recommendations")

    assert len(second["recommendations"]) == 1
    assert count(session_factory, Alert) == 1
    assert count(session_factory, AIReport) == 2


def test_missing_tool_call_gives_empty_recommendations(settings, session_factory, farm):
    result = run(advisory(settings, session_factory, StubModel()), "recommendations")

    assert result["recommendations"] == []
    assert count(session_factory, Alert) == 0
    with session_factory() as session:
        report = session.execute(select(AIReport)).scalars().one()
        assert (report.urgency, report.confidence) == ("মাঝারি", 75)


def test_smart_schedule_saves_tasks_every_time(settings, session_factory, farm):
    model = StubModel({"generate_schedule": {"tasks": TASKS}})
    service = advisory(settings, session_factory, model)

    first = run(service, "smart_schedule")
    second = run(service, "smart_schedule")

    assert len(first["tasks"]) == 3
    assert first["saved"] == second["saved"] == 2
    assert count(session_factory, FarmTask) == 4
    with session_factory() as session:
        sources = set(session.execute(select(FarmTask.source)).scalars())
        assert sources == {"ai"}


def test_finance_analysis_returns_stream(settings, session_factory, farm):
    stream = sse_stream({"choices": [{"delta": {"content": "লাভ ৳৩৫০০"}}]})
    model = StubModel(stream=stream)

    result = run(advisory(settings, session_factory, model), "finance_analysis")

    assert isinstance(result, UpstreamStream)
    assert model.calls[0]["kind"] == "stream"
    assert "আর্থিক বিশ্লেষণ" in model.calls[0]["messages"][1]["content"]

    async def drain():
        return b"".join([chunk async for chunk in result.iter_bytes()])
    body = asyncio.run(drain())
    assert body.endswith(b"data: [DONE]\n\n")
    assert "লাভ ৳৩৫০০".encode("utf-8") in body


def test_unknown_mode_is_rejected_before_any_work(settings, session_factory, farm):
    model = StubModel()
    with pytest.raises(InvalidRequest):
        run(advisory(settings, session_factory, model), "poetry")
    assert model.calls == []


def test_foreign_farm_stops_before_llm(settings, session_factory, farm):
    model = StubModel()
    with pytest.raises(FarmNotFound):
        run(advisory(settings, session_factory, model), "recommendations", farm_id=FOREIGN_FARM_ID)
    assert model.calls == []


@pytest.mark.parametrize("error", [RateLimitedError(), QuotaExceededError()])
def test_provider_errors_propagate(settings, session_factory, farm, error):
    with pytest.raises(type(error)):
        run(advisory(settings, session_factory, StubModel(error=error)), "smart_schedule")
    assert count(session_factory, FarmTask) == 0


def test_recommendation_alerts_mapping():
    candidates = recommendation_alerts([dict(IRRIGATION, priority="low", type="fish_feeding")])
    assert candidates == [{"type": "ai_fish_feeding", "severity": "low", "title_bn": "সেচ দিন",
                           "message_bn": IRRIGATION["description_bn"]}]


@pytest.mark.parametrize("value, expected", [
    ("2026-10-20", "2026-10-20"),
    ("2026-10-20T08:00:00Z", "2026-10-20"),
    ("20/10/2026", None),
    (None, None),
])
def test_parse_due_date(value, expected):
    parsed = parse_due_date(value)
    assert (parsed.isoformat() if parsed else None) == expected


def gateway_reply(choices):
    return {"id": "chatcmpl-9", "object": "chat.completion", "created": 1760000000,
            "model": "google/gemini-3-flash-preview", "choices": choices}


def recommendation_choice(arguments):
    return [{"index": 0, "finish_reason": "tool_calls", "message": {
        "role": "assistant", "content": None,
        "tool_calls": [{"id": "call_1", "type": "function",
                        "function": {"name": "generate_recommendations", "arguments": arguments}}],
    }}]


def run_through_gateway(settings, session_factory, body):
    async def go():
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=body))
        async with httpx.AsyncClient(transport=transport) as http:
            service = advisory(settings, session_factory, AdvisoryModel(settings, http))
            return await service.run("recommendations", USER_ID, FARM_ID)
    return asyncio.run(go())


@pytest.mark.parametrize("choices", [
    [],
    None,
    recommendation_choice("{broken"),
    [{"index": 0, "finish_reason": "stop", "message": {"role": "assistant", "content": "দুঃখিত"}}],
])
def test_unusable_gateway_replies_give_no_recommendations(settings, session_factory, farm, choices):
    result = run_through_gateway(settings, session_factory, gateway_reply(choices))

    assert result["recommendations"] == []
    assert count(session_factory, Alert) == 0
    assert count(session_factory, AIReport) == 1


def test_object_arguments_from_gateway_are_used(settings, session_factory, farm):
    body = gateway_reply(recommendation_choice({"recommendations": [IRRIGATION]}))
    result = run_through_gateway(settings, session_factory, body)

    assert [r["title_bn"] for r in result["recommendations"]] == ["সেচ দিন"]
    assert count(session_factory, Alert) == 1
