import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from conftest import StubModel
from errors import ToolPayloadError
from market import MarketPrices, parse_price_quotes
from models import MarketPrice

NOW = datetime(2026, 10, 18, 9, 30)

QUOTES = [
    {"product": "পেঁয়াজ", "price": 85, "unit": "কেজি", "source": "কারওয়ান বাজার"},
    {"product": "ডিম (হালি)", "price": 48, "unit": "হালি", "source": "কারওয়ান বাজার"},
]


def market(session_factory, model):
    return MarketPrices(model, session_factory)


def test_first_call_of_the_day_generates_and_stores(session_factory):
    model = StubModel({"save_market_prices": {"prices": QUOTES}})
    result = asyncio.run(market(session_factory, model).get_prices(now=NOW))

    assert result["source"] == "fresh"
    assert [p["product"] for p in result["prices"]] == ["পেঁয়াজ", "ডিম (হালি)"]
    assert result["prices"][0]["recorded_at"] == NOW.isoformat()
    assert "2026-10-18" in model.calls[0]["messages"][1]["content"]


def test_later_calls_same_day_are_served_from_cache(session_factory):
    model = StubModel({"save_market_prices": {"prices": QUOTES}})
    service = market(session_factory, model)

    asyncio.run(service.get_prices(now=NOW))
    again = asyncio.run(service.get_prices(now=NOW + timedelta(hours=5)))

    assert again["source"] == "cache"
    assert len(again["prices"]) == 2
    assert len(model.calls) == 1


def test_new_day_refreshes_and_prunes_week_old_rows(session_factory):
    with session_factory() as session:
        session.add(MarketPrice(product="পাট", price=3200, unit="মণ", recorded_at=NOW - timedelta(days=8)))
        session.add(MarketPrice(product="আলু", price=30, unit="কেজি", recorded_at=NOW - timedelta(days=2)))
        session.commit()

    model = StubModel({"save_market_prices": {"prices": QUOTES}})
    result = asyncio.run(market(session_factory, model).get_prices(now=NOW))

    assert result["source"] == "fresh"
    with session_factory() as session:
        products = set(session.execute(select(MarketPrice.product)).scalars())
    assert products == {"আলু", "পেঁয়াজ", "ডিম (হালি)"}


def test_malformed_quotes_are_dropped():
    quotes = parse_price_quotes({"prices": QUOTES + [{"product": "গম"}, "junk", {"price": "cheap"}]})
    assert [q["product"] for q in quotes] == ["পেঁয়াজ", "ডিম (হালি)"]


@pytest.mark.parametrize("arguments", [{}, {"prices": {"পেঁয়াজ": 85}}, {"prices": None}])
def test_payload_without_price_list_is_an_error(arguments):
    with pytest.raises(ToolPayloadError):
        parse_price_quotes(arguments)


def test_missing_tool_call_stores_nothing(session_factory):
    with pytest.raises(ToolPayloadError):
        asyncio.run(market(session_factory, StubModel()).get_prices(now=NOW))
    with session_factory() as session:
        assert session.execute(select(MarketPrice)).scalars().all() == []


def test_essential_prices_keep_numeric_values_only(session_factory):
    model = StubModel({"return_prices": {"prices": {"urea_50kg": 1350, "tsp_50kg": 1480.5, "mop_50kg": "n/a"}}})
    result = asyncio.run(market(session_factory, model).essential_prices(now=NOW))

    assert result == {"prices": {"urea_50kg": 1350, "tsp_50kg": 1480.5}}
    assert "urea_50kg" in model.calls[0]["messages"][1]["content"]


def test_essential_prices_without_tool_call_are_empty(session_factory):
    assert asyncio.run(market(session_factory, StubModel()).essential_prices()) == {"prices": {}}
