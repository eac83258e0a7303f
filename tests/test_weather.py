import asyncio
from datetime import datetime, timedelta

import httpx
import pytest
from sqlalchemy import func, select

from conftest import (FARM_ID, FOREIGN_FARM_ID, OTHER_USER_ID, USER_ID, current_payload,
                      forecast_payload, openweather_transport)
from errors import ConfigurationError, WeatherProviderError
from models import Alert, WeatherLog
from weather import (CAPITAL, WeatherService, derive_weather_alerts, reduce_forecast,
                     record_weather, unique_by_title, validate_location_text)


def run_report(transport, district=None, upazila=None, api_key="test-weather-key"):
    async def go():
        async with httpx.AsyncClient(transport=transport) as http:
            service = WeatherService(api_key, http, "https://weather.test")
            return await service.get_report(district, upazila)
    return asyncio.run(go())


def titles(alerts):
    return {a["title_bn"] for a in alerts}


def test_district_in_table_skips_geocoding():
    calls = []
    report = run_report(openweather_transport(calls=calls), district="ঢাকা")

    assert report["location"] == {"lat": 23.8103, "lon": 90.4125, "locationName": "ঢাকা"}
    assert all(path != "/geo/1.0/direct" for path, _ in calls)
    assert report["current"]["city"] == "ঢাকা"


def test_unknown_district_falls_back_to_capital_when_geocoding_finds_nothing():
    calls = []
    report = run_report(openweather_transport(geocode=[], calls=calls), district="Atlantis")

    lat, lon, name = CAPITAL
    assert report["location"] == {"lat": lat, "lon": lon, "locationName": name}
    geocoded = [params["q"] for path, params in calls if path == "/geo/1.0/direct"]
    assert geocoded == ["Atlantis,BD"]


def test_unknown_district_uses_geocoding_hit():
    report = run_report(openweather_transport(geocode=[{"lat": 21.5, "lon": 92.1}]), district="Teknaf")

    assert report["location"] == {"lat": 21.5, "lon": 92.1, "locationName": "Teknaf"}


def test_upazila_geocode_overrides_district():
    def geocode(query):
        return [{"lat": 24.1, "lon": 88.9}] if query.startswith("পুঠিয়া") else []

    calls = []
    report = run_report(openweather_transport(geocode=geocode, calls=calls),
                        district="রাজশাহী", upazila="পুঠিয়া")

    assert report["location"]["locationName"] == "পুঠিয়া"
    assert (report["location"]["lat"], report["location"]["lon"]) == (24.1, 88.9)
    assert [p["q"] for path, p in calls if path == "/geo/1.0/direct"] == ["পুঠিয়া,রাজশাহী,BD"]


def test_geocoding_transport_failure_is_not_fatal():
    def handler(request):
        if request.url.path == "/geo/1.0/direct":
            raise httpx.ConnectError("geocoder down")
        if request.url.path == "/data/2.5/weather":
            return httpx.Response(200, json=current_payload())
        return httpx.Response(200, json=forecast_payload(["Clear"] * 5))

    report = run_report(httpx.MockTransport(handler), district="Nowhere")
    assert report["location"]["locationName"] == CAPITAL[2]


def test_current_conditions_failure_propagates():
    with pytest.raises(WeatherProviderError):
        run_report(openweather_transport(current_status=503), district="ঢাকা")


def test_forecast_failure_degrades_to_empty_list():
    report = run_report(openweather_transport(forecast_status=500), district="ঢাকা")
    assert report["forecast"] == []


def test_missing_api_key_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        run_report(openweather_transport(), district="ঢাকা", api_key=None)


def test_hot_humid_rainy_week_raises_exactly_heat_disease_and_rain_alerts():
    transport = openweather_transport(
        current=current_payload(temp=39, humidity=90, wind_ms=2),
        forecast=forecast_payload(["Rain", "Rain", "Clear", "Rain", "Rain"]),
    )
    report = run_report(transport, district="ঢাকা")

    severities = {a["title_bn"]: a["severity"] for a in report["alerts"]}
    assert severities == {
        "ছত্রাক রোগের ঝুঁকি": "high",
        "তীব্র গরম সতর্কতা": "high",
        "দীর্ঘ বৃষ্টির পূর্বাভাস": "medium",
    }


@pytest.mark.parametrize("temp, humidity, wind, rainy, expected", [
    (38, 85, 40, 2, set()),
    (38.1, 50, 20, 1, {"তীব্র গরম সতর্কতা"}),
    (30, 85.5, 20, 1, {"ছত্রাক রোগের ঝুঁকি"}),
    (30, 60, 40.5, 1, {"ঝড়ের সতর্কতা"}),
    (30, 60, 20, 3, {"দীর্ঘ বৃষ্টির পূর্বাভাস"}),
    (10, 60, 20, 1, set()),
    (9.9, 60, 20, 1, {"শীতের সতর্কতা"}),
    (30, 50, 20, 0, set()),
    (30, 49, 20, 0, {"সেচ পরামর্শ"}),
])
def test_thresholds_are_strict(temp, humidity, wind, rainy, expected):
    forecast = [{"weather": "Rain"}] * rainy + [{"weather": "Clear"}] * (5 - rainy)
    assert titles(derive_weather_alerts(temp, humidity, wind, forecast)) == expected


def test_thunderstorm_counts_as_rain():
    forecast = [{"weather": "Thunderstorm"}] * 3 + [{"weather": "Clouds"}] * 2
    assert "দীর্ঘ বৃষ্টির পূর্বাভাস" in titles(derive_weather_alerts(25, 60, 10, forecast))


def test_reduce_forecast_keeps_first_bucket_per_day_up_to_five():
    daily = reduce_forecast(forecast_payload(["Rain", "Clear", "Clouds", "Rain", "Clear", "Rain"])["list"])

    assert [d["date"] for d in daily] == ["2026-10-18", "2026-10-19", "2026-10-20", "2026-10-21", "2026-10-22"]
    assert [d["weather"] for d in daily] == ["Rain", "Clear", "Clouds", "Rain", "Clear"]
    assert daily[0]["temp"] == 28
    assert daily[0]["wind"] == 11


def test_reduce_forecast_skips_malformed_buckets():
    items = [{"dt_txt": "2026-10-18 00:00:00"}, forecast_payload(["Clear"])["list"][0]]
    assert len(reduce_forecast(items)) == 1


@pytest.mark.parametrize("raw, expected", [
    ("  ঢাকা ", "ঢাকা"),
    ("Cox's Bazar", None),
    ("Sirajganj-Sadar", "Sirajganj-Sadar"),
    ("<script>", None),
    ("", None),
    (42, None),
])
def test_validate_location_text(raw, expected):
    assert validate_location_text(raw) == expected


def test_unique_by_title_keeps_first():
    alerts = [{"title_bn": "a", "message_bn": "1"}, {"title_bn": "a", "message_bn": "2"},
              {"title_bn": "b", "message_bn": "3"}]
    assert [a["message_bn"] for a in unique_by_title(alerts)] == ["1", "3"]


def _report(alerts):
    return {
        "alerts": alerts,
        "forecast": [{"weather": "Rain"}, {"weather": "Clear"}],
        "measurements": {"temp": 31.6, "humidity": 72, "wind_kmh": 12.4, "main": {"temp": 31.6}},
    }


def test_record_weather_writes_one_log_per_rolling_hour(session_factory, farm):
    heat = {"type": "weather", "severity": "high", "title_bn": "তীব্র গরম সতর্কতা", "message_bn": "৩৯°C"}
    now = datetime(2026, 10, 18, 9, 0)
    with session_factory() as session:
        first = record_weather(session, USER_ID, FARM_ID, _report([heat]), now=now)
        second = record_weather(session, USER_ID, FARM_ID, _report([heat]), now=now + timedelta(minutes=30))
        third = record_weather(session, USER_ID, FARM_ID, _report([]), now=now + timedelta(minutes=61))

        assert first == {"alerts_saved": 1, "weather_logged": True}
        assert second == {"alerts_saved": 0, "weather_logged": False}
        assert third["weather_logged"] is True

        log = session.execute(select(WeatherLog).order_by(WeatherLog.fetched_at)).scalars().first()
        assert (log.temperature, log.humidity, log.wind, log.rain_forecast) == (32, 72, 12, "1 days")


def test_record_weather_ignores_foreign_farm(session_factory, farm):
    heat = {"type": "weather", "severity": "high", "title_bn": "তীব্র গরম সতর্কতা", "message_bn": "৩৯°C"}
    with session_factory() as session:
        result = record_weather(session, USER_ID, FOREIGN_FARM_ID, _report([heat]))

        assert result == {"alerts_saved": 0, "weather_logged": False}
        assert session.execute(select(func.count(Alert.id))).scalar_one() == 0
        assert session.execute(select(func.count(WeatherLog.id))).scalar_one() == 0
