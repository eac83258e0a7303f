import json
from datetime import date, datetime, timedelta

import httpx
import pytest
from langchain_core.messages import AIMessage

from database import init_db, make_engine, make_session_factory
from llm import UpstreamStream
from models import Farm, Profile
from settings import Settings

USER_ID = "11111111-1111-4111-8111-111111111111"
OTHER_USER_ID = "22222222-2222-4222-8222-222222222222"
FARM_ID = "33333333-3333-4333-8333-333333333333"
FOREIGN_FARM_ID = "44444444-4444-4444-8444-444444444444"


@pytest.fixture
def settings():
    return Settings(
        llm_api_key="test-llm-key",
        llm_api_base="https://llm.test/v1",
        openweather_api_key="test-weather-key",
        openweather_base_url="https://weather.test",
        resend_api_key="test-resend-key",
        resend_base_url="https://resend.test",
        supabase_url="https://supabase.test",
        supabase_anon_key="test-anon-key",
        database_url="sqlite://",
    )


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'krishios-test.db'}")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def farm(session_factory):
    """One farm owned by USER_ID and one owned by somebody else."""
    with session_factory() as session:
        session.add(Profile(user_id=USER_ID, full_name="রহিম", district="রাজশাহী",
                            farmer_type=["crop", "livestock"], land_size_category="small"))
        session.add(Farm(id=FARM_ID, user_id=USER_ID, name="রহিমের খামার", district="রাজশাহী"))
        session.add(Farm(id=FOREIGN_FARM_ID, user_id=OTHER_USER_ID, name="অন্য খামার"))
        session.commit()
    return FARM_ID


# --- OpenWeather fakes ---

def current_payload(temp=30.0, humidity=70, wind_ms=2.0, main="Clear", name="Rajshahi"):
    return {
        "name": name,
        "main": {"temp": temp, "feels_like": temp + 1, "humidity": humidity},
        "wind": {"speed": wind_ms},
        "weather": [{"main": main, "description": main.lower(), "icon": "01d"}],
    }


def forecast_payload(conditions, start=date(2026, 10, 18)):
    """Eight 3-hourly buckets per day; the day's condition sits in the first bucket."""
    items = []
    for offset, condition in enumerate(conditions):
        day = start + timedelta(days=offset)
        for hour in range(0, 24, 3):
            items.append({
                "dt_txt": f"{day.isoformat()} {hour:02d}:00:00",
                "main": {"temp": 28.4 + offset, "humidity": 60},
                "wind": {"speed": 3.0},
                "weather": [{"main": condition if hour == 0 else "Clouds", "description": "", "icon": "10d"}],
            })
    return {"list": items}


def openweather_handler(current=None, forecast=None, geocode=None, current_status=200,
                        forecast_status=200, calls=None):
    def handler(request: httpx.Request):
        if calls is not None:
            calls.append((request.url.path, dict(request.url.params)))
        if request.url.path == "/geo/1.0/direct":
            return httpx.Response(200, json=geocode(request.url.params["q"]) if callable(geocode) else (geocode or []))
        if request.url.path == "/data/2.5/weather":
            return httpx.Response(current_status, json=current or current_payload())
        if request.url.path == "/data/2.5/forecast":
            return httpx.Response(forecast_status, json=forecast or forecast_payload(["Clear"] * 5))
        return httpx.Response(404, json={})
    return handler


def openweather_transport(**kwargs):
    return httpx.MockTransport(openweather_handler(**kwargs))


# --- LLM fake ---

def sse_stream(*chunks) -> UpstreamStream:
    body = b"".join(f"data: {json.dumps(c, ensure_ascii=False)}\n\n".encode("utf-8") for c in chunks)
    body += b"data: [DONE]\n\n"
    return UpstreamStream(httpx.Response(200, content=body), max_seconds=60)


class StubModel:
    """Stands in for AdvisoryModel: answers every tool by name and records what it was asked."""

    def __init__(self, tool_args=None, error=None, stream=None):
        self.tool_args = tool_args or {}
        self.error = error
        self.stream = stream
        self.calls = []

    async def call_tool(self, messages, tool, vision=False):
        name = tool["function"]["name"]
        self.calls.append({"kind": "tool", "tool": name, "messages": messages, "vision": vision})
        if self.error:
            raise self.error
        if name not in self.tool_args:
            return AIMessage(content="")
        return AIMessage(content="", tool_calls=[{"name": name, "args": self.tool_args[name], "id": "call_1"}])

    async def open_stream(self, messages, vision=False):
        self.calls.append({"kind": "stream", "messages": messages, "vision": vision})
        if self.error:
            raise self.error
        return self.stream or sse_stream({"choices": [{"delta": {"content": "লাভ"}}]})


def utc_today() -> date:
    return datetime.utcnow().date()
